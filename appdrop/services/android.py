"""Best-effort identity recovery for Android packages.

The binary AndroidManifest.xml is not decoded structurally. Instead the raw
bytes are searched as text, once decoded as UTF-8 and once as UTF-16LE (the
usual string pool encoding), with an ordered list of patterns per field. A
structured reader, when one is wired in, always wins over these guesses.
"""

import logging
import re
from dataclasses import dataclass
from typing import Optional, Sequence

from appdrop.errors import AppDropError, ManifestNotFound
from appdrop.models.identity import PackageIdentity, display_name_from_filename
from appdrop.services.archive import Archive
from appdrop.services.icons import IconResolver
from appdrop.services.manifest_reader import ManifestInfo, ManifestReader

logger = logging.getLogger(__name__)

MANIFEST_PATH = "AndroidManifest.xml"

VERSION_NAME_PATTERNS = (
    re.compile(r"""versionName\s*=\s*["']([^"']+)["']""", re.IGNORECASE),
    re.compile(r"versionName\s*[:=]\s*([\d.]+[\w.-]*)", re.IGNORECASE | re.ASCII),
    # Last resort, may pick up an SDK level or an unrelated number.
    re.compile(r"(\d+\.\d+(?:\.\d+)?(?:\.\d+)?(?:-\w+)?)", re.ASCII),
)

PACKAGE_PATTERNS = (
    re.compile(r"""package\s*=\s*["']([^"']+)["']""", re.IGNORECASE),
    re.compile(r"package\s*[:=]\s*([\w.]+)", re.IGNORECASE | re.ASCII),
)

VERSION_CODE_PATTERNS = (
    re.compile(r"""versionCode\s*=\s*["'](\d+)["']""", re.IGNORECASE),
    re.compile(r"versionCode\s*[:=]\s*(\d+)", re.IGNORECASE),
)

APP_NAME_RE = re.compile(r"""<string\s+name=["']app_name["']\s*>([^<]+)</string>""", re.IGNORECASE)
STRINGS_PATH_RE = re.compile(r"^res/values[^/]*/strings\.xml$")


@dataclass
class ManifestHints:
    package: Optional[str] = None
    version_name: Optional[str] = None
    version_code: Optional[int] = None


def search_text(data: bytes) -> str:
    return data.decode("utf-8", errors="replace") + " " + data.decode("utf-16-le", errors="replace")


def first_match(patterns: Sequence[re.Pattern], text: str) -> Optional[str]:
    for pattern in patterns:
        match = pattern.search(text)
        if match:
            value = match.group(1).strip()
            if value:
                return value
    return None


def scan_manifest(data: bytes) -> ManifestHints:
    text = search_text(data)
    code = first_match(VERSION_CODE_PATTERNS, text)
    return ManifestHints(
        package=first_match(PACKAGE_PATTERNS, text),
        version_name=first_match(VERSION_NAME_PATTERNS, text),
        version_code=int(code) if code else None,
    )


def is_unresolved_label(label: Optional[str]) -> bool:
    return not label or label.startswith("@") or label.startswith("resourceId:")


def label_from_package(package: Optional[str]) -> Optional[str]:
    if not package:
        return None
    last = package.rsplit(".", 1)[-1]
    return last[:1].upper() + last[1:] if last else None


def label_from_strings(archive: Archive) -> Optional[str]:
    # Only present in packages that ship uncompiled resources.
    for path in sorted(p for p in archive.names() if STRINGS_PATH_RE.match(p)):
        try:
            text = archive.read_text(path)
        except AppDropError:
            continue
        if not text:
            continue
        match = APP_NAME_RE.search(text)
        if match and match.group(1).strip():
            return match.group(1).strip()
    return None


class AndroidParser:
    def __init__(
        self,
        manifest_reader: Optional[ManifestReader] = None,
        icon_resolver: Optional[IconResolver] = None,
    ):
        self.manifest_reader = manifest_reader
        self.icon_resolver = icon_resolver or IconResolver()

    def parse(self, archive: Archive, buffer: bytes, filename: str) -> PackageIdentity:
        if MANIFEST_PATH not in archive:
            raise ManifestNotFound(f"{filename} has no {MANIFEST_PATH}")

        info = self._read_structured(buffer, filename) or ManifestInfo()
        if not (info.package and info.version_name and info.version_code is not None):
            hints = scan_manifest(archive.read(MANIFEST_PATH) or b"")
            info.package = info.package or hints.package
            info.version_name = info.version_name or hints.version_name
            if info.version_code is None:
                info.version_code = hints.version_code

        display_name = info.label
        if is_unresolved_label(display_name):
            display_name = (
                label_from_strings(archive)
                or label_from_package(info.package)
                or display_name_from_filename(filename)
            )

        return PackageIdentity(
            display_name=display_name,
            package_id=info.package,
            version_name=info.version_name,
            version_code=info.version_code,
            icon=self.icon_resolver.resolve(archive, info.icon),
        )

    def _read_structured(self, buffer, filename):
        if self.manifest_reader is None:
            return None
        try:
            return self.manifest_reader.read(buffer)
        except Exception:
            logger.info("Structured manifest read failed for %s, using heuristics", filename, exc_info=True)
            return None
