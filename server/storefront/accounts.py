"""Account registration and credential checks."""

import logging

from .auth import hash_password, issue_token, verify_password
from .errors import InvalidCredentialsError
from .models import LoginRequest, SignupRequest, TokenResponse, UserPublic, UserRecord
from .settings import Settings
from .storage import Store

logger = logging.getLogger(__name__)

# Compared against when the username is unknown so both failure paths cost a bcrypt verify
_DUMMY_HASH = hash_password("not-a-real-password")


def _token_response(user: UserRecord, config: Settings) -> TokenResponse:
    token = issue_token(
        user,
        config.jwt_secret,
        config.token_ttl_seconds,
        algorithm=config.jwt_algorithm,
    )
    return TokenResponse(
        token=token,
        user=UserPublic(id=user.id, username=user.username, email=user.email, is_admin=user.is_admin),
    )


async def signup(store: Store, body: SignupRequest, config: Settings) -> TokenResponse:
    """Register a user and issue a session token. Raises DuplicateIdentityError."""
    is_admin = body.username in config.admin_usernames
    user = await store.create_user(
        username=body.username,
        email=str(body.email),
        password_hash=hash_password(body.password),
        is_admin=is_admin,
    )
    logger.info("Registered user id=%s admin=%s", user.id, user.is_admin)
    return _token_response(user, config)


async def login(store: Store, body: LoginRequest, config: Settings) -> TokenResponse:
    """Check credentials and issue a session token. Raises InvalidCredentialsError."""
    user = await store.get_user_by_username(body.username)
    if user is None:
        verify_password(body.password, _DUMMY_HASH)
        raise InvalidCredentialsError()
    if not verify_password(body.password, user.password_hash):
        raise InvalidCredentialsError()
    return _token_response(user, config)
