"""Pydantic schemas for the CORS diagnostics API."""

from pydantic import BaseModel, Field


class CorsConfiguration(BaseModel):
    credentials_enabled: bool = True
    allowed_methods: list[str]
    allowed_headers: list[str]
    exposed_headers: list[str]
    max_age: int


class CorsStatusResponse(BaseModel):
    """What the server thinks of the calling origin."""

    current_origin: str | None
    is_origin_allowed: bool
    allowed_origins: list[dict] | None = Field(
        None, description="Registered origins; omitted in production"
    )
    request_headers: dict[str, str | None]
    cors_configuration: CorsConfiguration
    environment: str | None = None
    registry_stale: bool
    timestamp: str


class AlertSummary(BaseModel):
    total_alerts: int
    critical_alerts: int
    last_alert: str | None


class AlertListResponse(BaseModel):
    alerts: list[dict]
    stats: dict
    summary: AlertSummary


class OriginTestRequest(BaseModel):
    """Request to dry-run an origin against the allow-list."""

    test_origin: str = Field(..., min_length=1, max_length=2048)
    referer: str | None = Field(None, max_length=2048)


class OriginTestResponse(BaseModel):
    test_origin: str
    is_allowed: bool
    warnings: list[str]
    origin_info: dict | None
    recommendations: list[str]


class RateLimitStatsResponse(BaseModel):
    enabled: bool
    policies: dict[str, dict[str, int]]
    windows: dict[str, dict]
