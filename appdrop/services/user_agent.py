from typing import Tuple

from fastapi import Request


def parse_user_agent(user_agent: str) -> Tuple[str, str]:
    """Coarse (browser, os) labels for download statistics."""
    browser = "Unknown"
    if "Firefox/" in user_agent:
        browser = "Firefox"
    elif "Edg/" in user_agent:
        browser = "Edge"
    elif "OPR/" in user_agent or "Opera" in user_agent:
        browser = "Opera"
    elif "Chrome/" in user_agent:
        browser = "Chrome"
    elif "Safari/" in user_agent:
        browser = "Safari"

    os_name = "Unknown"
    # mobile first: Android and iOS agents also mention Linux / Mac OS X
    if "Android" in user_agent:
        os_name = "Android"
    elif "iPhone" in user_agent or "iPad" in user_agent:
        os_name = "iOS"
    elif "Windows" in user_agent:
        os_name = "Windows"
    elif "Mac OS" in user_agent:
        os_name = "macOS"
    elif "Linux" in user_agent:
        os_name = "Linux"
    return browser, os_name


def get_client_ip(request: Request) -> str:
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip.strip()
    return request.client.host if request.client else "unknown"
