import logging
import os
import re
import secrets
import shutil
import tempfile
import threading
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Dict, Iterator, List, Optional

from pydantic import ValidationError

from appdrop.errors import ArtifactNotFound, InvalidFileName, InvalidIdentifier, StorageFailure
from appdrop.models.artifact import ArtifactRecord, DownloadEvent, Uploader

logger = logging.getLogger(__name__)

METADATA_FILE = "metadata.json"
PARTIAL_SUFFIX = ".partial"
IDENTIFIER_RE = re.compile(r"^[A-Za-z0-9_-]{1,128}$")

FILE_TYPES = {
    ".apk": "Android",
    ".aab": "Android",
    ".ipa": "iOS",
    ".exe": "Windows",
    ".msi": "Windows",
    ".dmg": "macOS",
    ".pkg": "macOS",
    ".deb": "Linux",
    ".rpm": "Linux",
    ".appimage": "Linux",
}


def file_type_for(file_name: str) -> str:
    dot = file_name.rfind(".")
    return FILE_TYPES.get(file_name[dot:].lower() if dot != -1 else "", "App")


def validate_identifier(share_id: str) -> str:
    if not isinstance(share_id, str) or not IDENTIFIER_RE.match(share_id):
        raise InvalidIdentifier(share_id)
    return share_id


def safe_file_name(file_name: str) -> str:
    name = Path(file_name.replace("\\", "/")).name
    if not name or name.startswith(".") or name == METADATA_FILE:
        raise InvalidFileName(file_name)
    return name


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ArtifactStore:
    """One directory per share identifier holding the payload and metadata.json.

    metadata.json is the only source of truth; there is no index. Writers to
    the same identifier are serialized within the process.
    """

    def __init__(
        self,
        root,
        *,
        download_history_limit: int = 1000,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.root = Path(root)
        self.download_history_limit = download_history_limit
        self.clock = clock
        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    # ------------------------------------------------------------------
    # Paths
    # ------------------------------------------------------------------

    def _dir(self, share_id: str) -> Path:
        return self.root / validate_identifier(share_id)

    def _metadata_path(self, share_id: str) -> Path:
        return self._dir(share_id) / METADATA_FILE

    def payload_path(self, record: ArtifactRecord) -> Path:
        return self._dir(record.id) / record.file_name

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def create(
        self, *, file_name: str, payload: bytes, app_name: str, version: str,
        package_name: Optional[str] = None, icon: Optional[str] = None,
        uploaded_by: Optional[Uploader] = None,
    ) -> ArtifactRecord:
        file_name = safe_file_name(file_name)
        try:
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StorageFailure(f"Cannot create storage root: {exc}") from exc

        for _ in range(5):  # retry on rare token collisions
            share_id = self.new_token_b62()
            try:
                self._dir(share_id).mkdir()
            except FileExistsError:
                continue
            except OSError as exc:
                raise StorageFailure(f"Cannot create artifact directory: {exc}") from exc
            break
        else:
            raise StorageFailure("Failed to generate unique share identifier")

        record = ArtifactRecord(
            id=share_id,
            file_name=file_name,
            app_name=app_name,
            package_name=package_name,
            version=version,
            file_size=len(payload),
            file_type=file_type_for(file_name),
            uploaded_at=self.clock(),
            uploaded_by=uploaded_by,
            icon=icon,
        )
        try:
            (self._dir(share_id) / file_name).write_bytes(payload)
            self._save(record)
        except OSError as exc:
            raise StorageFailure(f"Failed to store artifact {share_id}: {exc}") from exc
        logger.info("Created artifact %s (%s, %d bytes)", share_id, file_name, len(payload))
        return record

    def update(
        self, share_id: str, *, file_name: str, payload: bytes, app_name: str, version: str,
        package_name: Optional[str] = None, icon: Optional[str] = None,
        uploaded_by: Optional[Uploader] = None,
    ) -> ArtifactRecord:
        """Replace the payload of an existing artifact, keeping the old version in history.

        The new payload is written and the metadata swapped before the old
        payload is removed, so the record never points at a missing file.
        """
        file_name = safe_file_name(file_name)
        with self._lock(share_id):
            return self._update(share_id, file_name, payload, app_name=app_name, version=version,
                                package_name=package_name, icon=icon, uploaded_by=uploaded_by)

    def _update(self, share_id, file_name, payload, **fields):
        current = self.get(share_id)
        artifact_dir = self._dir(share_id)
        partial = artifact_dir / f".{self.new_token_b62(8)}{PARTIAL_SUFFIX}"

        updated = current.model_copy(
            update={
                **fields,
                "file_name": file_name,
                "file_size": len(payload),
                "file_type": file_type_for(file_name),
                "uploaded_at": self.clock(),
                "version_history": [*current.version_history, current.snapshot()],
            }
        )
        try:
            partial.write_bytes(payload)
            os.replace(partial, artifact_dir / file_name)
            self._save(updated)
            if current.file_name != file_name:
                (artifact_dir / current.file_name).unlink(missing_ok=True)
        except OSError as exc:
            raise StorageFailure(f"Failed to update artifact {share_id}: {exc}") from exc
        finally:
            if partial.exists():
                partial.unlink()
        logger.info(
            "Updated artifact %s from %s to %s", share_id, current.version, updated.version
        )
        return updated

    def get(self, share_id: str) -> ArtifactRecord:
        path = self._metadata_path(share_id)
        try:
            raw = path.read_bytes()
        except FileNotFoundError:
            raise ArtifactNotFound(share_id)
        except OSError as exc:
            raise StorageFailure(f"Cannot read metadata for {share_id}: {exc}") from exc
        try:
            return ArtifactRecord.model_validate_json(raw)
        except (ValidationError, UnicodeDecodeError) as exc:
            raise StorageFailure(f"Corrupt metadata for {share_id}") from exc

    def delete(self, share_id: str) -> None:
        artifact_dir = self._dir(share_id)
        metadata = artifact_dir / METADATA_FILE
        with self._lock(share_id):
            if not metadata.is_file():
                raise ArtifactNotFound(share_id)
            try:
                # list() ignores directories without metadata.json
                metadata.unlink()
                shutil.rmtree(artifact_dir)
            except OSError as exc:
                raise StorageFailure(f"Failed to delete artifact {share_id}: {exc}") from exc
        with self._locks_guard:
            self._locks.pop(share_id, None)
        logger.info("Deleted artifact %s", share_id)

    def list(self) -> List[ArtifactRecord]:
        if not self.root.is_dir():
            return []
        records = []
        for child in self.root.iterdir():
            if not child.is_dir() or not IDENTIFIER_RE.match(child.name):
                continue
            try:
                records.append(self.get(child.name))
            except (ArtifactNotFound, StorageFailure) as exc:
                logger.debug("Skipping %s: %s", child.name, exc)
        records.sort(key=lambda r: r.uploaded_at, reverse=True)
        return records

    def record_download(self, share_id: str, event: DownloadEvent) -> ArtifactRecord:
        with self._lock(share_id):
            return self._record_download(share_id, event)

    def _record_download(self, share_id, event):
        record = self.get(share_id)
        downloads = [*record.downloads, event]
        if self.download_history_limit and len(downloads) > self.download_history_limit:
            downloads = downloads[-self.download_history_limit:]
        updated = record.model_copy(
            update={"downloads": downloads, "download_count": record.download_count + 1}
        )
        try:
            self._save(updated)
        except OSError as exc:
            raise StorageFailure(f"Failed to record download for {share_id}: {exc}") from exc
        return updated

    def iter_payload(self, record: ArtifactRecord, chunk_size: int = 1024 * 1024) -> Iterator[bytes]:
        with open(self.payload_path(record), "rb") as handle:
            while True:
                chunk = handle.read(chunk_size)
                if not chunk:
                    break
                yield chunk

    def prune_orphans(self, max_age: float = 3600.0) -> int:
        """Remove stale partial writes and payloads no record points at."""
        if not self.root.is_dir():
            return 0
        removed = 0
        cutoff = time.time() - max_age
        for child in self.root.iterdir():
            if not child.is_dir() or not IDENTIFIER_RE.match(child.name):
                continue
            try:
                record = self.get(child.name)
            except (ArtifactNotFound, StorageFailure):
                # possibly mid-write; leave it alone
                continue
            for entry in child.iterdir():
                if entry.name in (METADATA_FILE, record.file_name) or not entry.is_file():
                    continue
                if entry.stat().st_mtime > cutoff:
                    continue
                entry.unlink(missing_ok=True)
                removed += 1
                logger.info("Removed orphaned file %s", entry)
        return removed

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _lock(self, share_id: str) -> threading.Lock:
        validate_identifier(share_id)
        with self._locks_guard:
            return self._locks.setdefault(share_id, threading.Lock())

    def _save(self, record: ArtifactRecord) -> None:
        path = self._metadata_path(record.id)
        with tempfile.NamedTemporaryFile(
            "w", encoding="utf-8", dir=path.parent, prefix=".metadata-", suffix=".tmp", delete=False
        ) as handle:
            handle.write(record.model_dump_json(indent=2))
        try:
            os.replace(handle.name, path)
        except OSError:
            os.unlink(handle.name)
            raise

    def new_token_b62(self, nbytes: int = 16) -> str:
        alphabet = "0123456789abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ"
        n = int.from_bytes(secrets.token_bytes(nbytes), "big")
        out = []
        while n:
            n, r = divmod(n, 62)
            out.append(alphabet[r])
        return "".join(reversed(out)) or "0"
