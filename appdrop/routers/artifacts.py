import logging
from typing import Optional
from urllib.parse import quote

from fastapi import APIRouter, Depends, File, Form, HTTPException, Request, UploadFile
from fastapi.responses import Response, StreamingResponse
from starlette.concurrency import run_in_threadpool

from appdrop.auth import get_current_user
from appdrop.errors import ArtifactNotFound, InvalidFileName, InvalidIdentifier, RateLimited, StorageFailure
from appdrop.models.artifact import ArtifactRecord, DownloadEvent, Uploader
from appdrop.models.identity import IconBlob
from appdrop.services.artifact_store import ArtifactStore, validate_identifier
from appdrop.services.introspection import file_extension, introspect
from appdrop.services.manifest_reader import ManifestReader, get_manifest_reader
from appdrop.services.rate_limiter import RateLimiter, get_download_limiter
from appdrop.services.user_agent import get_client_ip, parse_user_agent
from appdrop.storage import get_store

logger = logging.getLogger(__name__)

router = APIRouter()

SUPPORTED_EXTENSIONS = [".apk", ".ipa", ".aab", ".exe", ".dmg", ".pkg", ".msi", ".deb", ".rpm", ".appimage"]

MEDIA_TYPES = {
    ".apk": "application/vnd.android.package-archive",
    ".ipa": "application/octet-stream",
}


def _record_json(record: ArtifactRecord) -> dict:
    return record.model_dump(mode="json")


def content_disposition(file_name: str) -> str:
    quoted = quote(file_name, safe="")
    if quoted == file_name:
        return f'attachment; filename="{file_name}"'
    # RFC 6266: ASCII fallback plus the exact name in filename*
    fallback = "".join(c for c in file_name if c.isascii() and c.isprintable() and c not in '"\\') or "download"
    return f"attachment; filename=\"{fallback}\"; filename*=utf-8''{quoted}"


def _load(store: ArtifactStore, share_id: str) -> ArtifactRecord:
    try:
        return store.get(share_id)
    except InvalidIdentifier:
        logger.warning("Rejected invalid share identifier %r", share_id)
        raise HTTPException(status_code=400, detail="Invalid share identifier")
    except ArtifactNotFound:
        raise HTTPException(status_code=404, detail="App not found")
    except StorageFailure:
        logger.exception("Failed to read artifact %s", share_id)
        raise HTTPException(status_code=500, detail="Failed to read app metadata")


@router.post("/upload")
async def upload_app(
    file: UploadFile = File(...),
    app_name: Optional[str] = Form(default=None),
    version: Optional[str] = Form(default=None),
    package_name: Optional[str] = Form(default=None),
    app_icon: Optional[str] = Form(default=None),
    existing_share_id: Optional[str] = Form(default=None),
    user: Uploader = Depends(get_current_user),
    store: ArtifactStore = Depends(get_store),
):
    filename = file.filename or ""
    if file_extension(filename) not in SUPPORTED_EXTENSIONS:
        raise HTTPException(
            status_code=400,
            detail=f"Unsupported file type. Allowed: {', '.join(SUPPORTED_EXTENSIONS)}",
        )

    if app_icon and IconBlob.from_data_url(app_icon) is None:
        raise HTTPException(status_code=400, detail="app_icon must be an image data URL")

    payload = await file.read()
    fields = dict(
        file_name=filename,
        payload=payload,
        app_name=app_name or "Untitled App",
        version=version or "1.0.0",
        package_name=package_name or None,
        icon=app_icon or None,
        uploaded_by=user,
    )

    is_update = bool(existing_share_id)
    try:
        if is_update:
            record = await run_in_threadpool(store.update, existing_share_id, **fields)
        else:
            record = await run_in_threadpool(store.create, **fields)
    except InvalidFileName:
        raise HTTPException(status_code=400, detail="Invalid file name")
    except InvalidIdentifier:
        logger.warning("Rejected upload for invalid share identifier %r", existing_share_id)
        raise HTTPException(status_code=400, detail="Invalid share identifier")
    except ArtifactNotFound:
        raise HTTPException(status_code=404, detail="Existing share not found")
    except StorageFailure:
        logger.exception("Upload of %s failed", filename)
        raise HTTPException(status_code=500, detail="Failed to upload file")

    return {
        "success": True,
        "upload_id": record.id,
        "share_url": f"/share/{record.id}",
        "metadata": _record_json(record),
        "is_update": is_update,
    }


@router.post("/introspect")
async def introspect_app(
    file: UploadFile = File(...),
    user: Uploader = Depends(get_current_user),
    manifest_reader: Optional[ManifestReader] = Depends(get_manifest_reader),
):
    filename = file.filename or "Untitled App"
    payload = await file.read()
    result = await run_in_threadpool(introspect, payload, filename, manifest_reader=manifest_reader)
    identity = result.identity
    body = {
        "success": result.success,
        "package_name": identity.package_id,
        "app_name": identity.display_name,
        "version_name": identity.version_name,
        "version_code": identity.version_code,
        "icon": identity.icon.data_url if identity.icon else None,
    }
    if result.error:
        body["error"] = result.error
    return body


@router.get("/apps")
def list_apps(
    user: Uploader = Depends(get_current_user),
    store: ArtifactStore = Depends(get_store),
):
    return [_record_json(record) for record in store.list()]


@router.get("/share/{share_id}")
def get_share(share_id: str, store: ArtifactStore = Depends(get_store)):
    return _record_json(_load(store, share_id))


@router.get("/share/{share_id}/icon")
def get_share_icon(share_id: str, store: ArtifactStore = Depends(get_store)):
    record = _load(store, share_id)
    icon = IconBlob.from_data_url(record.icon) if record.icon else None
    if icon is None:
        raise HTTPException(status_code=404, detail="App has no icon")
    return Response(
        content=icon.data,
        media_type=icon.mime,
        headers={"Cache-Control": "public, max-age=3600"},
    )


@router.delete("/share/{share_id}")
def delete_share(
    share_id: str,
    user: Uploader = Depends(get_current_user),
    store: ArtifactStore = Depends(get_store),
):
    try:
        validate_identifier(share_id)
    except InvalidIdentifier:
        logger.warning("Rejected delete with invalid identifier %r from %s", share_id, user.email)
        raise HTTPException(status_code=400, detail="Invalid share identifier")
    try:
        store.delete(share_id)
    except ArtifactNotFound:
        raise HTTPException(status_code=404, detail="App not found")
    except StorageFailure:
        logger.exception("Failed to delete artifact %s", share_id)
        raise HTTPException(status_code=500, detail="Failed to delete app")
    logger.info("Artifact %s deleted by %s", share_id, user.email)
    return {"success": True}


@router.get("/download/{share_id}")
def download_app(
    share_id: str,
    request: Request,
    store: ArtifactStore = Depends(get_store),
    limiter: RateLimiter = Depends(get_download_limiter),
):
    record = _load(store, share_id)
    payload_path = store.payload_path(record)
    if not payload_path.is_file():
        raise HTTPException(status_code=404, detail="App file not found")

    client_ip = get_client_ip(request)
    try:
        decision = limiter.check(client_ip).raise_for_limit()
    except RateLimited as exc:
        retry_after = str(exc.decision.retry_after)
        logger.info("Download rate limit hit for %s on %s", client_ip, share_id)
        raise HTTPException(
            status_code=429,
            detail="Rate limit exceeded",
            headers={
                "X-RateLimit-Limit": str(exc.decision.limit),
                "X-RateLimit-Remaining": "0",
                "X-RateLimit-Reset": retry_after,
                "Retry-After": retry_after,
            },
        )

    user_agent = request.headers.get("user-agent") or "Unknown"
    browser, os_name = parse_user_agent(user_agent)
    try:
        store.record_download(
            share_id,
            DownloadEvent(user_agent=user_agent, browser=browser, os=os_name, ip=client_ip),
        )
    except StorageFailure:
        logger.exception("Failed to record download of %s", share_id)
        raise HTTPException(status_code=500, detail="Failed to download file")

    return StreamingResponse(
        store.iter_payload(record),
        media_type=MEDIA_TYPES.get(file_extension(record.file_name), "application/octet-stream"),
        headers={
            "Content-Disposition": content_disposition(record.file_name),
            "Content-Length": str(payload_path.stat().st_size),
            "X-RateLimit-Limit": str(decision.limit),
            "X-RateLimit-Remaining": str(decision.remaining),
        },
    )


@router.get("/downloads/{share_id}")
def get_download_stats(
    share_id: str,
    user: Uploader = Depends(get_current_user),
    store: ArtifactStore = Depends(get_store),
):
    record = _load(store, share_id)
    return {
        "app_name": record.app_name,
        "version": record.version,
        "download_count": record.download_count,
        "downloads": [event.model_dump(mode="json") for event in reversed(record.downloads)],
    }
