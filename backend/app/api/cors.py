"""CORS diagnostics API.

``/cors/status`` is public so a frontend can check why its requests are
refused; the registered origin list is omitted from it in production.
Everything else here requires an admin.
"""

from datetime import UTC, datetime

from fastapi import APIRouter, Depends, Query, Request

from app.api.deps import get_container, require_admin
from app.core.container import SecurityContainer
from app.middleware.origin_admission import (
    ALLOWED_HEADERS,
    ALLOWED_METHODS,
    EXPOSED_HEADERS,
    PREFLIGHT_MAX_AGE,
)
from app.middleware.rate_limit import Tier
from app.schemas.cors import (
    AlertListResponse,
    AlertSummary,
    CorsConfiguration,
    CorsStatusResponse,
    OriginTestRequest,
    OriginTestResponse,
    RateLimitStatsResponse,
)
from app.services.alert_system import Severity
from app.services.auth import Identity

router = APIRouter(prefix="/cors", tags=["cors"])

_RECOMMENDATIONS_ALLOWED = ["Origin is properly configured"]
_RECOMMENDATIONS_BLOCKED = [
    "Register this origin through the origins admin API",
    "Ensure the origin URL exactly matches (including protocol and port)",
    "Check for typos in the domain name",
]


@router.get("/status", response_model=CorsStatusResponse)
async def cors_status(
    request: Request,
    container: SecurityContainer = Depends(get_container),
) -> CorsStatusResponse:
    """Report whether the calling origin is allowed and how CORS is configured."""
    origin = request.headers.get("Origin")
    registry = container.registry
    production = container.settings.is_production
    user_agent = request.headers.get("User-Agent")

    return CorsStatusResponse(
        current_origin=origin,
        is_origin_allowed=bool(origin) and registry.is_allowed(origin or ""),
        allowed_origins=None
        if production
        else [
            {"url": e.url, "environment": e.environment.value, "description": e.description}
            for e in registry.list_all()
            if e.is_active
        ],
        request_headers={
            "origin": origin,
            "referer": request.headers.get("Referer"),
            "user_agent": user_agent[:100] if user_agent else None,
            "host": request.headers.get("Host"),
            "accept": request.headers.get("Accept"),
        },
        cors_configuration=CorsConfiguration(
            allowed_methods=ALLOWED_METHODS,
            allowed_headers=ALLOWED_HEADERS,
            exposed_headers=EXPOSED_HEADERS,
            max_age=PREFLIGHT_MAX_AGE,
        ),
        environment=None if production else container.settings.environment,
        registry_stale=registry.stale,
        timestamp=datetime.now(UTC).isoformat(),
    )


@router.get("/alerts", response_model=AlertListResponse)
async def cors_alerts(
    limit: int = Query(50, ge=1, le=1000),
    container: SecurityContainer = Depends(get_container),
    admin: Identity = Depends(require_admin),
) -> AlertListResponse:
    """Most recent CORS alerts, newest first, with aggregate statistics."""
    alerts = container.alerts.recent(limit)
    return AlertListResponse(
        alerts=[alert.to_dict() for alert in alerts],
        stats=container.alerts.stats(),
        summary=AlertSummary(
            total_alerts=len(alerts),
            critical_alerts=sum(1 for a in alerts if a.severity is Severity.CRITICAL),
            last_alert=alerts[0].timestamp.isoformat() if alerts else None,
        ),
    )


@router.post("/test-origin", response_model=OriginTestResponse)
async def dry_run_origin(
    data: OriginTestRequest,
    container: SecurityContainer = Depends(get_container),
    admin: Identity = Depends(require_admin),
) -> OriginTestResponse:
    """Dry-run an origin through validation without recording alerts."""
    check = container.validator.validate(data.test_origin, data.referer)
    entry = container.registry.get_by_url(data.test_origin)
    return OriginTestResponse(
        test_origin=data.test_origin,
        is_allowed=check.allowed,
        warnings=list(check.warnings),
        origin_info=(
            {
                "id": entry.id,
                "url": entry.url,
                "environment": entry.environment.value,
                "description": entry.description,
                "is_active": entry.is_active,
            }
            if entry
            else None
        ),
        recommendations=_RECOMMENDATIONS_ALLOWED if check.allowed else _RECOMMENDATIONS_BLOCKED,
    )


@router.get("/rate-limits", response_model=RateLimitStatsResponse)
async def rate_limit_stats(
    container: SecurityContainer = Depends(get_container),
    admin: Identity = Depends(require_admin),
) -> RateLimitStatsResponse:
    """Current rate limit windows and tier budgets."""
    limiter = container.rate_limiter
    return RateLimitStatsResponse(
        enabled=container.settings.rate_limit_enabled,
        policies={
            tier.value: {
                "max_requests": limiter.policy_for(tier).max_requests,
                "window_seconds": limiter.policy_for(tier).window_seconds,
            }
            for tier in Tier
        },
        windows=await limiter.get_stats(),
    )
