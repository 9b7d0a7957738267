"""Pydantic schemas for the allowed-origins admin API."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from app.services.origin_registry import OriginEnvironment


class OriginCreate(BaseModel):
    """Request to register a new allowed origin."""

    url: str = Field(
        ...,
        min_length=1,
        max_length=2048,
        description="Origin as scheme://host[:port], no path",
    )
    environment: OriginEnvironment = Field(
        default=OriginEnvironment.DEV,
        description="dev, staging or prod (prod requires https)",
    )
    description: str = Field(default="", max_length=500)
    tags: list[str] = Field(default_factory=list, max_length=20)
    is_active: bool = True


class OriginUpdate(BaseModel):
    """Partial update for an allowed origin. Omitted fields are unchanged."""

    url: str | None = Field(None, min_length=1, max_length=2048)
    environment: OriginEnvironment | None = None
    description: str | None = Field(None, max_length=500)
    tags: list[str] | None = Field(None, max_length=20)
    is_active: bool | None = None


class OriginResponse(BaseModel):
    """An allowed origin."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    url: str
    environment: OriginEnvironment
    description: str
    added_by: str
    added_at: datetime
    last_used_at: datetime | None
    usage_count: int
    is_active: bool
    tags: list[str]


class OriginListResponse(BaseModel):
    """All allowed origins plus registry statistics."""

    origins: list[OriginResponse]
    stats: dict
