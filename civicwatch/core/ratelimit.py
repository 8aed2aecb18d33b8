# File: civicwatch/core/ratelimit.py

from slowapi import Limiter
from starlette.requests import Request

from civicwatch.core.config import settings

# matches the reporter_fingerprint / user_ip column width
FINGERPRINT_MAX_LENGTH = 100


def client_fingerprint(request: Request) -> str:
    """First X-Forwarded-For hop, else the peer address."""
    forwarded = request.headers.get("x-forwarded-for", "")
    first = forwarded.split(",")[0].strip()
    if first:
        return first[:FINGERPRINT_MAX_LENGTH]
    if request.client and request.client.host:
        return request.client.host[:FINGERPRINT_MAX_LENGTH]
    return "127.0.0.1"


limiter = Limiter(key_func=client_fingerprint, enabled=settings.rate_limit_enabled)
