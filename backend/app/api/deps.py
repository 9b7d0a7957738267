"""Shared FastAPI dependencies for the security layer."""

import logging

from fastapi import Depends, Request

from app.core.container import SecurityContainer
from app.core.errors import APIError, ForbiddenError, UnauthorizedError
from app.services.auth import (
    AuthError,
    Identity,
    SessionRevokedError,
    TokenExpiredError,
    TokenError,
    extract_token,
)

logger = logging.getLogger(__name__)

_BEARER = {"WWW-Authenticate": "Bearer"}


class TokenInvalidError(UnauthorizedError):
    code = "TOKEN_INVALID"


class TokenExpiredAPIError(UnauthorizedError):
    code = "TOKEN_EXPIRED"


class SessionRevokedAPIError(UnauthorizedError):
    code = "SESSION_REVOKED"


def get_container(request: Request) -> SecurityContainer:
    """The SecurityContainer attached by the app factory."""
    return request.app.state.security


def get_request_token(request: Request) -> str | None:
    return extract_token(
        request.headers,
        request.cookies,
        get_container(request).settings.session_cookie_name,
    )


def auth_error_to_api_error(error: AuthError) -> APIError:
    """Map an AuthGate rejection onto its envelope code."""
    if isinstance(error, TokenExpiredError):
        return TokenExpiredAPIError("Token failed: token has expired", headers=_BEARER)
    if isinstance(error, TokenError):
        return TokenInvalidError("Token failed", headers=_BEARER)
    if isinstance(error, SessionRevokedError):
        return SessionRevokedAPIError(str(error), headers=_BEARER)
    return UnauthorizedError("Not authorized to access this route", headers=_BEARER)


async def get_current_identity(
    request: Request,
    container: SecurityContainer = Depends(get_container),
) -> Identity:
    """Dependency to get the authenticated identity for this request."""
    try:
        return await container.auth.authenticate(get_request_token(request))
    except AuthError as e:
        logger.info(
            f"Authentication rejected for {request.method} {request.url.path}: {e}",
            extra={"reason_code": e.code, "path": request.url.path},
        )
        raise auth_error_to_api_error(e) from e


async def get_optional_identity(
    request: Request,
    container: SecurityContainer = Depends(get_container),
) -> Identity | None:
    """Like get_current_identity, but anonymous requests resolve to None."""
    return await container.auth.optional_authenticate(get_request_token(request))


async def require_admin(identity: Identity = Depends(get_current_identity)) -> Identity:
    """Dependency that only lets admin identities through."""
    if not identity.is_admin:
        raise ForbiddenError("Admin access required")
    return identity
