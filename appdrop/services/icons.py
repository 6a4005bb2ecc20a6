"""Select a representative launcher icon from an Android package."""

import logging
import re
from typing import Iterable, List, Optional, Sequence

from appdrop.errors import AppDropError
from appdrop.models.identity import IconBlob
from appdrop.services.archive import Archive

logger = logging.getLogger(__name__)

PNG_SIGNATURE = b"\x89PNG"

DENSITY_ORDER = ("xxxhdpi", "xxhdpi", "xhdpi", "hdpi", "mdpi", "anydpi")
DENSITY_SCORES = {"xxxhdpi": 4, "xxhdpi": 3, "xhdpi": 2}

LAUNCHER_HINTS = ("mipmap", "ic_launcher", "app_icon", "launcher")
LAYER_SUFFIXES = ("_foreground", "_background", "_round", "_monochrome")

KEYWORD_SCORES = (("mipmap", 10), ("ic_launcher", 20), ("icon", 5), ("logo", 5))

# Bundled SDK artwork that often outranks the real icon in obfuscated builds.
DEFAULT_BRAND_DENYLIST = (
    "facebook",
    "google",
    "twitter",
    "instagram",
    "whatsapp",
    "telegram",
    "messenger",
    "wechat",
    "kakao",
    "tiktok",
    "snapchat",
    "linkedin",
    "youtube",
    "paypal",
    "viber",
    "zalo",
    "naver",
    "alipay",
    "weibo",
    "discord",
    "skype",
)

MIN_FALLBACK_BYTES = 2_000
MAX_FALLBACK_BYTES = 100_000

ALIAS_RE = re.compile(r"^@(?:[\w.]+:)?([\w-]+)/([\w.]+)$")


def has_png_signature(data: Optional[bytes]) -> bool:
    return bool(data) and len(data) > 8 and data[:4] == PNG_SIGNATURE


def density_rank(path: str) -> int:
    for rank, density in enumerate(DENSITY_ORDER):
        if density in path:
            return rank
    return len(DENSITY_ORDER)


def is_resource_id(reference: str) -> bool:
    ref = reference.strip().lower()
    return ref.startswith("resourceid:") or ref.startswith("0x") or ref.lstrip("@").isdigit()


class IconResolver:
    def __init__(self, brand_denylist: Iterable[str] = DEFAULT_BRAND_DENYLIST):
        self.brand_denylist = tuple(name.lower() for name in brand_denylist)

    def resolve(self, archive: Archive, reference: Optional[str] = None) -> Optional[IconBlob]:
        """Return the best icon candidate, or None. Never raises."""
        try:
            found = (
                self._from_reference(archive, reference)
                or self._from_launcher_paths(archive)
                or self._from_scored_candidates(archive)
            )
        except AppDropError as exc:
            logger.warning("Icon lookup aborted: %s", exc)
            return None
        if found is None:
            logger.info("No icon found among %d archive entries", len(archive.names()))
            return None
        path, data = found
        logger.debug("Selected icon %s (%d bytes)", path, len(data))
        return IconBlob(mime="image/png", data=data)

    def reference_candidates(self, reference: Optional[str]) -> List[str]:
        if not reference or is_resource_id(reference):
            return []
        reference = reference.strip()
        if reference.startswith("res/"):
            return [reference]
        match = ALIAS_RE.match(reference)
        if not match:
            return []
        folder, name = match.groups()
        paths = []
        for density in DENSITY_ORDER:
            paths.append(f"res/{folder}-{density}-v4/{name}.png")
            paths.append(f"res/{folder}-{density}/{name}.png")
        paths.append(f"res/{folder}/{name}.png")
        return paths

    def _from_reference(self, archive, reference):
        for path in self.reference_candidates(reference):
            data = self._read_png(archive, path)
            if data is not None:
                return path, data
        return None

    def _from_launcher_paths(self, archive):
        candidates = []
        for path in self._res_pngs(archive):
            lower = path.lower()
            if not any(hint in lower for hint in LAUNCHER_HINTS):
                continue
            if any(suffix in lower for suffix in LAYER_SUFFIXES):
                continue
            candidates.append(path)
        candidates.sort(key=density_rank)
        return self._first_png(archive, candidates)

    def _from_scored_candidates(self, archive):
        scored = []
        for path in self._res_pngs(archive):
            lower = path.lower()
            if any(brand in lower for brand in self.brand_denylist):
                continue
            folder = lower.split("/")[1] if lower.count("/") >= 2 else ""
            if folder.startswith("drawable") and "icon" not in lower and "logo" not in lower:
                continue
            score = self.score(lower)
            if score == 0:
                continue
            size = archive.size(path)
            if not MIN_FALLBACK_BYTES <= size <= MAX_FALLBACK_BYTES:
                continue
            scored.append((score, size, path))
        scored.sort(key=lambda item: (-item[0], -item[1]))
        return self._first_png(archive, [path for _, _, path in scored])

    @staticmethod
    def score(path: str) -> int:
        lower = path.lower()
        total = sum(weight for keyword, weight in KEYWORD_SCORES if keyword in lower)
        rank = density_rank(lower)
        if rank < len(DENSITY_ORDER):
            total += DENSITY_SCORES.get(DENSITY_ORDER[rank], 0)
        return total

    @staticmethod
    def _res_pngs(archive: Archive) -> List[str]:
        return [
            name
            for name in archive.names()
            if name.startswith("res/")
            and name.lower().endswith(".png")
            and not name.lower().endswith(".9.png")
            and not archive.is_dir(name)
        ]

    def _first_png(self, archive, paths: Sequence[str]):
        for path in paths:
            data = self._read_png(archive, path)
            if data is not None:
                return path, data
        return None

    @staticmethod
    def _read_png(archive: Archive, path: str) -> Optional[bytes]:
        if path not in archive:
            return None
        try:
            data = archive.read(path)
        except AppDropError as exc:
            logger.debug("Skipping icon candidate %s: %s", path, exc)
            return None
        return data if has_png_signature(data) else None


def resolve_icon(archive: Archive, reference: Optional[str] = None) -> Optional[IconBlob]:
    return IconResolver().resolve(archive, reference)
