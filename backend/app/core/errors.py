"""Uniform JSON error envelopes for the security layer.

Every user-visible failure is rendered as::

    {"success": false, "error": "<CODE>", "message": "...", "details": {...}}

``details`` carries diagnostics (offending value, allowed origins) and is
dropped entirely when the deployment environment is production.
"""

import logging
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from app.core.config import settings

logger = logging.getLogger(__name__)


class APIError(Exception):
    """Base error rendered as a JSON envelope with a stable code."""

    code = "INTERNAL_ERROR"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.details = details
        self.headers = headers


class UnauthorizedError(APIError):
    code = "UNAUTHORIZED"
    status_code = status.HTTP_401_UNAUTHORIZED


class ForbiddenError(APIError):
    code = "FORBIDDEN"
    status_code = status.HTTP_403_FORBIDDEN


class NotFoundError(APIError):
    code = "NOT_FOUND"
    status_code = status.HTTP_404_NOT_FOUND


class BadRequestError(APIError):
    code = "BAD_REQUEST"
    status_code = status.HTTP_400_BAD_REQUEST


class ConflictError(APIError):
    code = "CONFLICT"
    status_code = status.HTTP_409_CONFLICT


class ServiceUnavailableError(APIError):
    code = "SERVICE_UNAVAILABLE"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE


def error_response(
    status_code: int,
    code: str,
    message: str,
    details: dict[str, Any] | None = None,
    headers: dict[str, str] | None = None,
    production: bool | None = None,
) -> JSONResponse:
    """Build the error envelope, suppressing diagnostics in production.

    ``production`` defaults to the process-wide settings; callers holding a
    SecurityContainer pass its environment instead.
    """
    if production is None:
        production = settings.is_production
    content: dict[str, Any] = {
        "success": False,
        "error": code,
        "message": message,
    }
    if details and not production:
        content["details"] = details
    return JSONResponse(status_code=status_code, content=content, headers=headers)


def _is_production(request: Request) -> bool:
    security = getattr(request.app.state, "security", None)
    if security is None:
        return settings.is_production
    return security.settings.is_production


async def _api_error_handler(request: Request, exc: Exception) -> JSONResponse:
    assert isinstance(exc, APIError)
    if exc.status_code >= 500:
        logger.error(f"{exc.code} on {request.method} {request.url.path}: {exc.message}")
    return error_response(
        exc.status_code,
        exc.code,
        exc.message,
        exc.details,
        exc.headers,
        production=_is_production(request),
    )


async def _validation_error_handler(request: Request, exc: Exception) -> JSONResponse:
    assert isinstance(exc, RequestValidationError)
    return error_response(
        422,
        "VALIDATION_ERROR",
        "Request validation failed",
        {"errors": [{"loc": list(e.get("loc", ())), "msg": e.get("msg")} for e in exc.errors()]},
        production=_is_production(request),
    )


def register_error_handlers(app: FastAPI) -> None:
    """Install the envelope handlers on an application."""
    app.add_exception_handler(APIError, _api_error_handler)
    app.add_exception_handler(RequestValidationError, _validation_error_handler)
