import io
import zipfile

import pytest
from fastapi.testclient import TestClient
from limits.storage import MemoryStorage

from appdrop.main import app
from appdrop.services.artifact_store import ArtifactStore
from appdrop.services.manifest_reader import get_manifest_reader
from appdrop.services.rate_limiter import RateLimiter, get_download_limiter
from appdrop.storage import get_store

PNG_HEADER = b"\x89PNG\r\n\x1a\n"


def png_bytes(size: int = 64, fill: bytes = b"\x01") -> bytes:
    return PNG_HEADER + fill * max(0, size - len(PNG_HEADER))


def zip_bytes(entries: dict) -> bytes:
    """Build a ZIP buffer; keys ending in '/' become directory entries."""
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED) as zf:
        for path, data in entries.items():
            zf.writestr(path, b"" if path.endswith("/") else data)
    return buffer.getvalue()


def mark_encrypted(buffer: bytes) -> bytes:
    """Set the encryption flag on every central directory entry."""
    data = bytearray(buffer)
    start = data.find(b"PK\x01\x02")
    while start != -1:
        data[start + 8] |= 0x01
        start = data.find(b"PK\x01\x02", start + 4)
    return bytes(data)


@pytest.fixture
def make_png():
    return png_bytes


@pytest.fixture
def make_zip():
    return zip_bytes


@pytest.fixture
def make_encrypted():
    return mark_encrypted


@pytest.fixture
def store(tmp_path):
    return ArtifactStore(tmp_path / "uploads")


@pytest.fixture
def limiter():
    return RateLimiter(limit=50, window=3600, storage=MemoryStorage())


@pytest.fixture
def auth_headers():
    return {"X-Forwarded-Email": "dev@example.com", "X-Forwarded-User": "Dev"}


@pytest.fixture
def client(store, limiter):
    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_download_limiter] = lambda: limiter
    app.dependency_overrides[get_manifest_reader] = lambda: None
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
