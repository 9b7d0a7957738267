"""Origin admission middleware - dynamic CORS on top of the admission gate.

Replaces Starlette's static CORSMiddleware: the allow-list is re-read from
the origin registry on every request, so origins added through the admin
API take effect immediately.

Rejected requests get a JSON error envelope and no CORS headers. Accepted
cross-origin requests get the origin echoed in Access-Control-Allow-Origin
with credentials allowed; preflights are answered here with 200.
"""

import logging

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.types import ASGIApp

from app.core.errors import error_response
from app.core.request_utils import get_client_ip
from app.middleware.warming import is_warming_request
from app.services.admission import AdmissionRequest, Reject, RejectReason, Throttle

logger = logging.getLogger(__name__)

ALLOWED_METHODS = ["GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS"]
ALLOWED_HEADERS = [
    "Content-Type",
    "Authorization",
    "X-Requested-With",
    "Accept",
    "Origin",
    "Cache-Control",
    "X-File-Name",
    "X-Warming-Request",
    "X-Warming-Source",
]
EXPOSED_HEADERS = ["X-Total-Count", "X-RateLimit-Remaining", "X-RateLimit-Reset"]
PREFLIGHT_MAX_AGE = 86400


def cors_headers(origin: str, preflight: bool = False) -> dict[str, str]:
    """Response headers granting ``origin`` credentialed access."""
    headers = {
        "Access-Control-Allow-Origin": origin,
        "Access-Control-Allow-Credentials": "true",
        "Access-Control-Expose-Headers": ", ".join(EXPOSED_HEADERS),
    }
    if preflight:
        headers["Access-Control-Allow-Methods"] = ", ".join(ALLOWED_METHODS)
        headers["Access-Control-Allow-Headers"] = ", ".join(ALLOWED_HEADERS)
        headers["Access-Control-Max-Age"] = str(PREFLIGHT_MAX_AGE)
    return headers


def _add_vary_origin(response: Response) -> None:
    vary = response.headers.get("Vary")
    if not vary:
        response.headers["Vary"] = "Origin"
    elif "origin" not in vary.lower():
        response.headers["Vary"] = f"{vary}, Origin"


class OriginAdmissionMiddleware(BaseHTTPMiddleware):
    """Run every request through the admission gate before routing.

    Args:
        app: The ASGI application
        exclude_paths: Paths that skip admission (health probes); they still
            get CORS headers for allow-listed origins
    """

    def __init__(self, app: ASGIApp, exclude_paths: list[str] | None = None):
        super().__init__(app)
        self.exclude_paths = set(exclude_paths or [])

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        security = request.app.state.security
        production = security.settings.is_production
        origin = request.headers.get("Origin")
        is_preflight = (
            request.method == "OPTIONS"
            and origin is not None
            and "access-control-request-method" in request.headers
        )

        if request.url.path in self.exclude_paths or is_warming_request(request.headers):
            return await self._bypass(request, call_next, origin, is_preflight)

        admission = AdmissionRequest(
            method=request.method,
            path=request.url.path,
            client_addr=get_client_ip(request, security.settings.trusted_proxy_ip_set),
            origin=origin,
            referer=request.headers.get("Referer"),
            user_agent=request.headers.get("User-Agent"),
        )
        try:
            decision = await security.gate.admit(admission)
        except Exception:
            logger.exception(f"Admission gate failed for {request.method} {request.url.path}")
            return error_response(
                500, "INTERNAL_ERROR", "Request admission failed", production=production
            )

        if isinstance(decision, Reject):
            details: dict = {"origin": origin, "warnings": list(decision.check.warnings)}
            if decision.reason is RejectReason.CORS_POLICY_VIOLATION:
                details["allowed_origins"] = security.registry.active_origins()
            response = error_response(
                403, decision.reason.value, decision.message, details, production=production
            )
            _add_vary_origin(response)
            return response

        if isinstance(decision, Throttle):
            response = error_response(
                429,
                "RATE_LIMIT_EXCEEDED",
                "Too many requests, please try again later.",
                {"tier": decision.rate_limit.tier.value, "retry_after": decision.retry_after},
                headers=decision.rate_limit.headers,
                production=production,
            )
            if origin:
                response.headers.update(cors_headers(origin))
            _add_vary_origin(response)
            return response

        if is_preflight:
            response = Response(status_code=200)
        else:
            response = await call_next(request)

        if origin:
            response.headers.update(cors_headers(origin, preflight=is_preflight))
        if decision.rate_limit is not None:
            response.headers.update(decision.rate_limit.headers)
        _add_vary_origin(response)
        return response

    async def _bypass(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
        origin: str | None,
        is_preflight: bool,
    ) -> Response:
        if is_preflight:
            response = Response(status_code=200)
        else:
            response = await call_next(request)
        if origin and request.app.state.security.registry.is_allowed(origin):
            response.headers.update(cors_headers(origin, preflight=is_preflight))
        _add_vary_origin(response)
        return response
