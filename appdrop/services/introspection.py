import logging
from dataclasses import dataclass
from typing import Optional

from appdrop.errors import IntrospectionError
from appdrop.models.identity import PackageIdentity, display_name_from_filename
from appdrop.services.android import AndroidParser
from appdrop.services.archive import Archive
from appdrop.services.icons import IconResolver
from appdrop.services.ios import IosParser
from appdrop.services.manifest_reader import ManifestReader

logger = logging.getLogger(__name__)


@dataclass
class IntrospectionResult:
    identity: PackageIdentity
    success: bool
    error: Optional[str] = None


def file_extension(filename: str) -> str:
    dot = filename.rfind(".")
    return filename[dot:].lower() if dot != -1 else ""


def fallback_identity(filename: str) -> PackageIdentity:
    return PackageIdentity(display_name=display_name_from_filename(filename))


def introspect(
    buffer: bytes,
    filename: str,
    manifest_reader: Optional[ManifestReader] = None,
    icon_resolver: Optional[IconResolver] = None,
) -> IntrospectionResult:
    """Extract identity from an uploaded package.

    Always returns an identity. Parser failures are logged and replaced by
    the filename-derived fallback with ``success=False``.
    """
    ext = file_extension(filename)
    if ext not in (".apk", ".ipa"):
        return IntrospectionResult(
            identity=fallback_identity(filename),
            success=False,
            error=f"Introspection is not supported for '{ext or filename}' files",
        )

    try:
        with Archive(buffer) as archive:
            if ext == ".apk":
                parser = AndroidParser(manifest_reader=manifest_reader, icon_resolver=icon_resolver)
                identity = parser.parse(archive, buffer, filename)
            else:
                identity = IosParser().parse(archive, filename)
    except IntrospectionError as exc:
        logger.info("Falling back to filename identity for %s: %s", filename, exc)
        return IntrospectionResult(identity=fallback_identity(filename), success=False, error=str(exc))
    except Exception:
        logger.exception("Unexpected failure while introspecting %s", filename)
        return IntrospectionResult(
            identity=fallback_identity(filename),
            success=False,
            error="Failed to parse package",
        )
    return IntrospectionResult(identity=identity, success=True)
