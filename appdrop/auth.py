import logging
import os

from fastapi import HTTPException, Request

from appdrop.models.artifact import Uploader

logger = logging.getLogger(__name__)

# Login is handled by the OAuth proxy in front of the service, which forwards
# the authenticated identity in these headers.
ALLOWED_EMAIL_DOMAIN = os.getenv("ALLOWED_EMAIL_DOMAIN", "").lstrip("@").lower()
EMAIL_HEADER = "X-Forwarded-Email"
NAME_HEADER = "X-Forwarded-User"


def get_current_user(request: Request) -> Uploader:
    email = (request.headers.get(EMAIL_HEADER) or "").strip()
    if not email:
        raise HTTPException(status_code=401, detail="Unauthorized")
    if ALLOWED_EMAIL_DOMAIN and not email.lower().endswith(f"@{ALLOWED_EMAIL_DOMAIN}"):
        logger.warning("Rejected login from outside %s: %s", ALLOWED_EMAIL_DOMAIN, email)
        raise HTTPException(status_code=401, detail="Unauthorized")
    return Uploader(email=email, name=request.headers.get(NAME_HEADER) or None)
