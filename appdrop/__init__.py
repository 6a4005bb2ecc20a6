from celery import Celery
import os

# Celery configuration
CELERY_BROKER_URL = os.getenv("CELERY_BROKER_URL", "redis://redis:6379/0")
CELERY_RESULT_BACKEND = os.getenv("CELERY_RESULT_BACKEND", "redis://redis:6379/1")
CLEANUP_INTERVAL_SECONDS = float(os.getenv("CLEANUP_INTERVAL_SECONDS", "600"))

celery_app = Celery(
    "appdrop",
    broker=CELERY_BROKER_URL,
    backend=CELERY_RESULT_BACKEND,
    include=["appdrop.cleanup"],
)

celery_app.conf.beat_schedule = {
    # Every 10 minutes remove partial writes and orphaned payloads
    "cleanup-stale-payloads": {
        "task": "appdrop.cleanup.cleanup_stale_payloads",
        "schedule": CLEANUP_INTERVAL_SECONDS,
    },
}
