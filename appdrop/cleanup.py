import os

from . import celery_app
from .storage import get_store

STALE_PARTIAL_SECONDS = float(os.getenv("STALE_PARTIAL_SECONDS", "3600"))

@celery_app.task(name="appdrop.cleanup.cleanup_stale_payloads")
def cleanup_stale_payloads():
    # Interrupted updates can leave .partial files or a superseded payload
    # next to the live one; only files older than the threshold are removed.
    removed = get_store().prune_orphans(max_age=STALE_PARTIAL_SECONDS)
    return {"removed": removed}
