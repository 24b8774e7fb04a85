from __future__ import annotations

from fastapi import Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from screener.core.config import settings


def recruiter_key(request: Request) -> str:
    """Limit per recruiter when the user header is present, else per client address."""
    user_id = (request.headers.get("X-User-Id") or "").strip()
    if user_id:
        return f"user:{user_id}"
    return f"addr:{get_remote_address(request)}"


limiter = Limiter(key_func=recruiter_key, enabled=settings.rate_limit_enabled)


def rate_limit(limit: str | None = None):
    """Apply ``limit`` (default ``RATE_LIMIT``) unless rate limiting is switched off."""
    if not settings.rate_limit_enabled:
        return lambda func: func
    return limiter.limit(limit or settings.rate_limit)
