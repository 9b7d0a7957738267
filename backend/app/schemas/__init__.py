# SecurityX Pydantic Schemas
from app.schemas.auth import IdentityResponse, MessageResponse
from app.schemas.cors import (
    AlertListResponse,
    CorsStatusResponse,
    OriginTestRequest,
    OriginTestResponse,
    RateLimitStatsResponse,
)
from app.schemas.origin import OriginCreate, OriginListResponse, OriginResponse, OriginUpdate

__all__ = [
    "AlertListResponse",
    "CorsStatusResponse",
    "IdentityResponse",
    "MessageResponse",
    "OriginCreate",
    "OriginListResponse",
    "OriginResponse",
    "OriginTestRequest",
    "OriginTestResponse",
    "OriginUpdate",
    "RateLimitStatsResponse",
]
