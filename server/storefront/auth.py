"""
Terra Storefront Authentication

Password hashing and signed session tokens:
- bcrypt password hashes via passlib (salted, one-way)
- HS256 JWT session tokens carrying user id, username and admin flag
- FastAPI dependencies resolving the bearer token into a UserContext
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from passlib.context import CryptContext
from pydantic import BaseModel

from .errors import AuthError, ForbiddenError, InvalidTokenError
from .models import TokenClaims, UserRecord
from .settings import Settings, settings


pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

bearer_scheme = HTTPBearer(auto_error=False)

REQUIRED_CLAIMS = ("sub", "username", "is_admin", "iat", "exp")


def get_settings() -> Settings:
    """Dependency returning the process-wide settings loaded at startup."""
    return settings


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return pwd_context.verify(password, password_hash)
    except ValueError:
        # Malformed or unknown hash format
        return False


def issue_token(
    user: UserRecord,
    secret: str,
    ttl_seconds: int,
    now: Optional[datetime] = None,
    algorithm: str = "HS256",
) -> str:
    """Sign a session token for ``user`` valid for ``ttl_seconds`` from ``now``."""
    now = now or datetime.now(timezone.utc)
    payload = {
        "sub": str(user.id),
        "username": user.username,
        "is_admin": user.is_admin,
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(seconds=ttl_seconds)).timestamp()),
    }
    return jwt.encode(payload, secret, algorithm=algorithm)


def validate_token(
    token: str,
    secret: str,
    now: Optional[datetime] = None,
    algorithm: str = "HS256",
) -> TokenClaims:
    """
    Verify a session token's signature and expiry against ``now``.

    Expiry is checked here rather than by PyJWT so the result depends only
    on the arguments. Raises InvalidTokenError on any failure.
    """
    now = now or datetime.now(timezone.utc)
    try:
        payload = jwt.decode(
            token,
            secret,
            algorithms=[algorithm],
            options={"verify_exp": False, "verify_iat": False, "require": list(REQUIRED_CLAIMS)},
        )
    except jwt.InvalidTokenError as e:
        raise InvalidTokenError() from e

    try:
        claims = TokenClaims(
            user_id=int(payload["sub"]),
            username=payload["username"],
            is_admin=bool(payload["is_admin"]),
            issued_at=datetime.fromtimestamp(int(payload["iat"]), tz=timezone.utc),
            expires_at=datetime.fromtimestamp(int(payload["exp"]), tz=timezone.utc),
        )
    except (TypeError, ValueError) as e:
        raise InvalidTokenError() from e

    if claims.expires_at <= now:
        raise InvalidTokenError("Token expired.")
    return claims


class UserContext(BaseModel):
    """
    Authenticated user context.
    """
    user_id: int
    username: str
    is_admin: bool = False


async def get_current_user(
    bearer: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    config: Settings = Depends(get_settings),
) -> UserContext:
    """Validate the bearer token and return the user context."""
    if not bearer or not bearer.credentials:
        raise AuthError("Missing bearer token. Provide Authorization: Bearer <token>.")

    claims = validate_token(bearer.credentials, config.jwt_secret, algorithm=config.jwt_algorithm)
    return UserContext(user_id=claims.user_id, username=claims.username, is_admin=claims.is_admin)


async def require_admin(current_user: UserContext = Depends(get_current_user)) -> UserContext:
    """Dependency that requires a session whose admin flag is set."""
    if not current_user.is_admin:
        raise ForbiddenError()
    return current_user
