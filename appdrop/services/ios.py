import logging
import plistlib
import re
from typing import Optional
from xml.parsers.expat import ExpatError

from appdrop.errors import AppDropError, BundleNotFound, InvalidPropertyList
from appdrop.models.identity import IconBlob, PackageIdentity, display_name_from_filename
from appdrop.services.archive import Archive

logger = logging.getLogger(__name__)

BUNDLE_RE = re.compile(r"^Payload/([^/]+\.app)/")

DEFAULT_ICON_NAMES = (
    "AppIcon60x60@3x.png",
    "AppIcon60x60@2x.png",
    "AppIcon76x76@2x~ipad.png",
)

MIN_ICON_BYTES = 512


def find_bundle_dir(archive: Archive) -> str:
    bundles = sorted({m.group(0) for m in map(BUNDLE_RE.match, archive.names()) if m})
    if not bundles:
        raise BundleNotFound("No Payload/*.app directory in archive")
    if len(bundles) > 1:
        logger.warning("Multiple app bundles found, using %s", bundles[0])
    return bundles[0]


def load_plist(data: bytes) -> dict:
    try:
        parsed = plistlib.loads(data, fmt=plistlib.FMT_XML)
    except (plistlib.InvalidFileException, ExpatError, ValueError):
        try:
            parsed = plistlib.loads(data, fmt=plistlib.FMT_BINARY)
        except (plistlib.InvalidFileException, ValueError, IndexError, OverflowError) as exc:
            raise InvalidPropertyList(f"Info.plist is neither XML nor binary: {exc}") from exc
    if not isinstance(parsed, dict):
        raise InvalidPropertyList("Info.plist root is not a dictionary")
    return parsed


def primary_icon_name(info: dict) -> Optional[str]:
    icons = info.get("CFBundleIcons")
    primary = icons.get("CFBundlePrimaryIcon") if isinstance(icons, dict) else None
    files = primary.get("CFBundleIconFiles") if isinstance(primary, dict) else None
    if not files or not isinstance(files, list):
        return None
    # later entries are the higher resolution variants
    name = str(files[-1])
    return name[:-4] if name.lower().endswith(".png") else name


def _text(value) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


class IosParser:
    def parse(self, archive: Archive, filename: str) -> PackageIdentity:
        bundle = find_bundle_dir(archive)
        plist_path = bundle + "Info.plist"
        if plist_path not in archive:
            raise InvalidPropertyList(f"{plist_path} missing")
        info = load_plist(archive.read(plist_path) or b"")

        version = _text(info.get("CFBundleShortVersionString")) or _text(info.get("CFBundleVersion"))
        display_name = (
            _text(info.get("CFBundleDisplayName"))
            or _text(info.get("CFBundleName"))
            or display_name_from_filename(filename)
        )
        return PackageIdentity(
            display_name=display_name,
            package_id=_text(info.get("CFBundleIdentifier")),
            version_name=version,
            icon=self.find_icon(archive, bundle, primary_icon_name(info)),
        )

    def find_icon(self, archive: Archive, bundle: str, icon_name: Optional[str]) -> Optional[IconBlob]:
        probes = []
        if icon_name:
            probes += [f"{icon_name}@3x.png", f"{icon_name}@2x.png", f"{icon_name}.png"]
        probes += DEFAULT_ICON_NAMES
        for name in probes:
            data = self._read(archive, bundle + name)
            if data:
                return IconBlob(mime="image/png", data=data)

        fallbacks = [
            path
            for path in archive.names()
            if path.startswith(bundle)
            and path.lower().endswith(".png")
            and ("AppIcon" in path or "Icon" in path)
        ]
        fallbacks.sort(key=len, reverse=True)
        for path in fallbacks:
            if archive.size(path) <= MIN_ICON_BYTES:
                continue
            data = self._read(archive, path)
            if data:
                return IconBlob(mime="image/png", data=data)

        if bundle + "Assets.car" in archive:
            logger.info("Only a compiled asset catalog holds the icon for %s", bundle)
        return None

    @staticmethod
    def _read(archive: Archive, path: str) -> Optional[bytes]:
        if path not in archive:
            return None
        try:
            return archive.read(path)
        except AppDropError as exc:
            logger.debug("Skipping icon %s: %s", path, exc)
            return None
