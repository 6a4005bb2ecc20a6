import logging
import tempfile
from dataclasses import dataclass
from typing import Optional, Protocol

from pyaxmlparser import APK

logger = logging.getLogger(__name__)


@dataclass
class ManifestInfo:
    package: Optional[str] = None
    version_name: Optional[str] = None
    version_code: Optional[int] = None
    label: Optional[str] = None
    icon: Optional[str] = None


class ManifestReader(Protocol):
    def read(self, payload: bytes) -> Optional[ManifestInfo]:
        ...


def _as_int(value) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


class AxmlManifestReader:
    """Structured AndroidManifest.xml reader backed by pyaxmlparser.

    pyaxmlparser opens packages by path, so the buffer goes through a
    temporary file that is removed when the ``with`` block exits.
    """

    def read(self, payload: bytes) -> Optional[ManifestInfo]:
        with tempfile.NamedTemporaryFile(prefix="appdrop-", suffix=".apk") as handle:
            handle.write(payload)
            handle.flush()
            apk = APK(handle.name)
            if not apk.package:
                return None
            return ManifestInfo(
                package=apk.package,
                version_name=apk.version_name or None,
                version_code=_as_int(apk.version_code),
                label=apk.application or None,
                icon=apk.get_app_icon() or None,
            )


def get_manifest_reader() -> Optional[ManifestReader]:
    return AxmlManifestReader()
