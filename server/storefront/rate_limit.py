"""Rate limiter configuration shared across all routers."""

import hashlib
from typing import Optional
from fastapi import Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from .settings import settings


def get_rate_limit_key(request: Request) -> str:
    """
    Get rate limit key from request.

    Uses the bearer token if present, otherwise the client IP address.
    Tokens are hashed to avoid storing raw secrets.
    """
    authz = request.headers.get("Authorization")

    bearer_token: Optional[str] = None
    if authz and authz.lower().startswith("bearer "):
        bearer_token = authz.split(" ", 1)[1].strip() or None

    if bearer_token:
        return "key:" + hashlib.sha256(bearer_token.encode("utf-8")).hexdigest()
    return get_remote_address(request)


limiter = Limiter(key_func=get_rate_limit_key, enabled=settings.limits_enabled)
