import io
import logging
import zipfile
import zlib
from typing import List, Optional

from appdrop.errors import EntryNotFound, MalformedArchive

logger = logging.getLogger(__name__)

# local file header, end of central directory (empty archive)
ZIP_SIGNATURES = (b"PK\x03\x04", b"PK\x05\x06")


class Archive:
    """Random-access view over a ZIP-family buffer (APK, IPA, AAB).

    Entries are only decompressed when read.
    """

    def __init__(self, buffer: bytes):
        if buffer[:4] not in ZIP_SIGNATURES:
            raise MalformedArchive("Buffer does not start with a ZIP signature")
        try:
            self._zip = zipfile.ZipFile(io.BytesIO(buffer))
        except (zipfile.BadZipFile, zipfile.LargeZipFile, ValueError, EOFError) as exc:
            raise MalformedArchive(f"Unreadable central directory: {exc}") from exc
        self._entries = {info.filename: info for info in self._zip.infolist()}

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()

    def close(self):
        self._zip.close()

    def names(self) -> List[str]:
        return list(self._entries)

    def get(self, path: str) -> Optional[zipfile.ZipInfo]:
        return self._entries.get(path)

    def __contains__(self, path: str) -> bool:
        return path in self._entries

    def is_dir(self, path: str) -> bool:
        info = self._entries.get(path)
        return info is not None and info.is_dir()

    def size(self, path: str) -> int:
        info = self._entries.get(path)
        if info is None:
            raise EntryNotFound(path)
        return info.file_size

    def read(self, path: str) -> Optional[bytes]:
        """Decompress one entry. Directory entries return None."""
        info = self._entries.get(path)
        if info is None:
            raise EntryNotFound(path)
        if info.is_dir():
            return None
        try:
            return self._zip.read(info)
        except (zipfile.BadZipFile, zlib.error, NotImplementedError, EOFError, RuntimeError) as exc:
            # RuntimeError: encrypted entry
            raise MalformedArchive(f"Cannot decompress {path!r}: {exc}") from exc

    def read_text(self, path: str, encoding: str = "utf-8", errors: str = "replace") -> Optional[str]:
        data = self.read(path)
        if data is None:
            return None
        return data.decode(encoding, errors=errors)
