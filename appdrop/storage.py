import os

from appdrop.services.artifact_store import ArtifactStore


# UPLOADS_DIR example:
# /var/lib/appdrop/uploads  (one sub-directory per share identifier)
UPLOADS_DIR = os.getenv("UPLOADS_DIR", "uploads")
DOWNLOAD_HISTORY_LIMIT = int(os.getenv("DOWNLOAD_HISTORY_LIMIT", "1000"))


def get_store() -> ArtifactStore:
    return ArtifactStore(UPLOADS_DIR, download_history_limit=DOWNLOAD_HISTORY_LIMIT)
