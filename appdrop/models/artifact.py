from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class Uploader(BaseModel):
    email: str
    name: Optional[str] = None


class VersionHistoryEntry(BaseModel):
    """Snapshot of a superseded version, taken before the record is overwritten."""

    model_config = ConfigDict(frozen=True)

    version: str
    file_name: str
    file_size: int
    uploaded_at: datetime
    uploaded_by: Optional[Uploader] = None


class DownloadEvent(BaseModel):
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    user_agent: str = "Unknown"
    browser: str = "Unknown"
    os: str = "Unknown"
    ip: str = "unknown"


class ArtifactRecord(BaseModel):
    id: str = Field(frozen=True)
    file_name: str
    app_name: str
    package_name: Optional[str] = None
    version: str
    file_size: int
    file_type: str
    uploaded_at: datetime
    uploaded_by: Optional[Uploader] = None
    # data URL, e.g. data:image/png;base64,...
    icon: Optional[str] = None
    version_history: List[VersionHistoryEntry] = Field(default_factory=list)
    download_count: int = 0
    downloads: List[DownloadEvent] = Field(default_factory=list)

    def snapshot(self) -> VersionHistoryEntry:
        return VersionHistoryEntry(
            version=self.version,
            file_name=self.file_name,
            file_size=self.file_size,
            uploaded_at=self.uploaded_at,
            uploaded_by=self.uploaded_by,
        )
