import base64
import re
from dataclasses import dataclass
from typing import Optional

DATA_URL_RE = re.compile(r"^data:(image/[\w.+-]+);base64,(.+)$", re.DOTALL)


@dataclass(frozen=True)
class IconBlob:
    mime: str
    data: bytes

    @property
    def data_url(self) -> str:
        return f"data:{self.mime};base64,{base64.b64encode(self.data).decode('ascii')}"

    @classmethod
    def from_data_url(cls, value: str) -> Optional["IconBlob"]:
        match = DATA_URL_RE.match(value.strip())
        if not match:
            return None
        try:
            data = base64.b64decode(match.group(2), validate=True)
        except ValueError:
            return None
        return cls(mime=match.group(1), data=data)


@dataclass
class PackageIdentity:
    """Identity recovered from an application archive.

    ``display_name`` is always populated; every other field may be absent.
    """

    display_name: str
    package_id: Optional[str] = None
    version_name: Optional[str] = None
    version_code: Optional[int] = None
    icon: Optional[IconBlob] = None

    def __post_init__(self):
        if not self.display_name:
            raise ValueError("display_name must not be empty")


def display_name_from_filename(filename: str) -> str:
    base = filename.replace("\\", "/").rsplit("/", 1)[-1]
    stem, dot, _ext = base.rpartition(".")
    name = stem if dot and stem else base
    return name or "Untitled App"
