"""Health check endpoints.

Accessible without authentication. Health probes skip origin admission, so
monitoring is never rate limited.
"""

from typing import Any

from fastapi import APIRouter, Depends, Response, status
from pydantic import BaseModel

from app.api.deps import get_container
from app.core import check_db_connection, settings
from app.core.container import SecurityContainer

router = APIRouter(prefix="/health", tags=["health"])


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    database: str
    origin_registry: str


@router.get(
    "",
    response_model=HealthResponse,
    responses={
        status.HTTP_200_OK: {"description": "Service is healthy"},
        status.HTTP_503_SERVICE_UNAVAILABLE: {"description": "Service is unhealthy"},
    },
)
async def health_check(
    response: Response,
    container: SecurityContainer = Depends(get_container),
) -> HealthResponse:
    """
    Health check endpoint.

    Returns 503 if the database is unavailable. A stale origin registry
    (a write failed since the last load) is reported as degraded but does
    not fail the probe.
    """
    db_healthy = await check_db_connection()

    if not db_healthy:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    return HealthResponse(
        status="healthy" if db_healthy else "unhealthy",
        version=settings.app_version,
        database="connected" if db_healthy else "disconnected",
        origin_registry="degraded" if container.registry.stale else "ok",
    )


@router.get("/warming-stats")
async def warming_stats(
    container: SecurityContainer = Depends(get_container),
) -> dict[str, Any]:
    """Counters for keep-warm requests received by this instance."""
    return container.warming.stats()
