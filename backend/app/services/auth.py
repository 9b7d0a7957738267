"""Authentication gate for JWT sessions.

Per-request pipeline::

    extract token (Authorization header, then session cookie)
      -> verify signature and expiry        (TokenInvalid / TokenExpired)
      -> check the revocation denylist      (SessionRevoked)
      -> resolve the user fresh             (Unauthorized if missing/inactive)

Revocation is checked before the user lookup so revoked tokens never cost a
directory round-trip. Identities are never cached across requests, so
deactivating a user takes effect on their next request.
"""

import asyncio
import logging
import secrets
import uuid
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any, Protocol

import jwt
from jwt.exceptions import PyJWTError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core import settings
from app.models.user import User
from app.services.session_revocation import SessionRevocationStore, hash_token

logger = logging.getLogger(__name__)


class AuthError(Exception):
    """Base authentication error."""

    code = "UNAUTHORIZED"


class MissingTokenError(AuthError):
    """No token in the Authorization header or session cookie."""


class TokenError(AuthError):
    """JWT token error."""

    code = "TOKEN_INVALID"


class TokenExpiredError(TokenError):
    """JWT token has expired."""

    code = "TOKEN_EXPIRED"


class InvalidTokenError(TokenError):
    """JWT token is invalid."""


class SessionRevokedError(AuthError):
    """Token was valid but its session has been terminated (logout)."""

    code = "SESSION_REVOKED"


class UserInactiveError(AuthError):
    """User account is deactivated or no longer exists."""


@dataclass(frozen=True)
class Identity:
    id: str
    role: str
    email: str

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


@dataclass(frozen=True)
class DirectoryUser:
    id: str
    role: str
    email: str
    is_active: bool


class UserDirectory(Protocol):
    """User lookup owned by the account service."""

    async def find_active_user_by_id(self, user_id: str) -> DirectoryUser | None: ...


class SqlUserDirectory:
    """UserDirectory over the ``users`` table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def find_active_user_by_id(self, user_id: str) -> DirectoryUser | None:
        try:
            key = uuid.UUID(user_id)
        except ValueError:
            return None
        async with self._session_factory() as session:
            result = await session.execute(select(User).where(User.id == key))
            user = result.scalar_one_or_none()
        if user is None:
            return None
        return DirectoryUser(
            id=str(user.id), role=user.role, email=user.email, is_active=user.is_active
        )


def create_access_token(
    user_id: str,
    role: str,
    email: str,
    expires_delta: timedelta | None = None,
) -> str:
    """Create a signed access token."""
    now = datetime.now(UTC)
    expire = now + (expires_delta or timedelta(minutes=settings.jwt_access_token_expire_minutes))
    payload = {
        "sub": str(user_id),
        "role": role,
        "email": email,
        "iat": now,
        "exp": expire,
        "type": "access",
        "jti": secrets.token_hex(16),
    }
    return str(jwt.encode(payload, settings.jwt_secret_key, algorithm=settings.jwt_algorithm))


def decode_token(token: str) -> dict[str, Any]:
    """Decode and validate a JWT token."""
    try:
        return jwt.decode(
            token,
            settings.jwt_secret_key,
            algorithms=[settings.jwt_algorithm],
            options={"require": ["exp", "sub"]},
        )
    except jwt.ExpiredSignatureError as e:
        raise TokenExpiredError("Token has expired") from e
    except PyJWTError as e:
        raise InvalidTokenError(f"Invalid token: {e}") from e


def validate_access_token(token: str) -> dict[str, Any]:
    """Validate an access token and return its payload."""
    payload = decode_token(token)
    if payload.get("type") != "access":
        raise InvalidTokenError("Not an access token")
    return payload


def extract_token(
    headers: Mapping[str, str],
    cookies: Mapping[str, str],
    cookie_name: str | None = None,
) -> str | None:
    """Find the session token; the Authorization header wins over the cookie."""
    auth_header = headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        token = auth_header[7:].strip()
        if token:
            return token
    return cookies.get(cookie_name or settings.session_cookie_name) or None


class AuthGate:
    """Verifies tokens, enforces revocation and resolves identities."""

    def __init__(
        self,
        revocations: SessionRevocationStore,
        users: UserDirectory,
        io_timeout: float = 5.0,
    ) -> None:
        self.revocations = revocations
        self.users = users
        self._io_timeout = io_timeout

    async def authenticate(self, token: str | None) -> Identity:
        """Run the full pipeline, raising an AuthError subclass on rejection."""
        if not token:
            raise MissingTokenError("Not authorized to access this route")

        payload = validate_access_token(token)

        if await self.revocations.is_revoked(hash_token(token)):
            raise SessionRevokedError("Session has been terminated. Please log in again.")

        user_id = str(payload["sub"])
        try:
            user = await asyncio.wait_for(
                self.users.find_active_user_by_id(user_id), timeout=self._io_timeout
            )
        except TimeoutError as e:
            logger.warning(f"User lookup timed out for {user_id}")
            raise UserInactiveError("Unable to verify user") from e
        except Exception as e:
            logger.warning(f"User lookup failed for {user_id}: {e}")
            raise UserInactiveError("Unable to verify user") from e

        if user is None:
            raise UserInactiveError("User not found")
        if not user.is_active:
            raise UserInactiveError("User account is deactivated")
        return Identity(id=user.id, role=user.role, email=user.email)

    async def optional_authenticate(self, token: str | None) -> Identity | None:
        """Same pipeline, but every rejection means "anonymous" instead of an error."""
        if not token:
            return None
        try:
            return await self.authenticate(token)
        except AuthError as e:
            logger.debug(f"Optional auth ignored rejected token: {e}")
            return None

    async def logout(self, token: str) -> None:
        """Revoke ``token`` for the rest of its lifetime. Best-effort."""
        try:
            payload = decode_token(token)
        except TokenError as e:
            logger.debug(f"Logout with unusable token, nothing to revoke: {e}")
            return
        await self.revocations.revoke_token(token, payload)
