"""Allowed origins admin API.

Changes apply to the live allow-list immediately; there is no restart or
cache to flush.
"""

import logging

from fastapi import APIRouter, Depends, status

from app.api.deps import get_container, require_admin
from app.core.container import SecurityContainer
from app.core.errors import (
    APIError,
    BadRequestError,
    ConflictError,
    NotFoundError,
    ServiceUnavailableError,
)
from app.schemas.auth import MessageResponse
from app.schemas.origin import OriginCreate, OriginListResponse, OriginResponse, OriginUpdate
from app.services.auth import Identity
from app.services.origin_registry import (
    DuplicateOriginError,
    OriginNotFoundError,
    RegistryError,
    RegistryPersistenceError,
)
from app.services.origin_url import InvalidOriginURLError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/origins", tags=["origins"])


class OriginNotFoundAPIError(NotFoundError):
    code = "ORIGIN_NOT_FOUND"


class InvalidOriginURLAPIError(BadRequestError):
    code = "INVALID_ORIGIN_URL"


class DuplicateOriginAPIError(ConflictError):
    code = "DUPLICATE_ORIGIN"


class RegistryUnavailableError(ServiceUnavailableError):
    code = "REGISTRY_UNAVAILABLE"


def _to_api_error(error: RegistryError | InvalidOriginURLError) -> APIError:
    if isinstance(error, InvalidOriginURLError):
        return InvalidOriginURLAPIError(str(error))
    if isinstance(error, DuplicateOriginError):
        return DuplicateOriginAPIError(str(error))
    if isinstance(error, OriginNotFoundError):
        return OriginNotFoundAPIError(str(error))
    if isinstance(error, RegistryPersistenceError):
        return RegistryUnavailableError("Origin registry storage is unavailable, try again")
    return APIError(str(error))


@router.get("", response_model=OriginListResponse)
async def list_origins(
    container: SecurityContainer = Depends(get_container),
    admin: Identity = Depends(require_admin),
) -> OriginListResponse:
    """List every registered origin with usage statistics."""
    registry = container.registry
    return OriginListResponse(
        origins=[OriginResponse.model_validate(entry) for entry in registry.list_all()],
        stats=registry.stats(),
    )


@router.post("", response_model=OriginResponse, status_code=status.HTTP_201_CREATED)
async def add_origin(
    data: OriginCreate,
    container: SecurityContainer = Depends(get_container),
    admin: Identity = Depends(require_admin),
) -> OriginResponse:
    """Register a new allowed origin."""
    try:
        entry = await container.registry.add(
            data.url,
            data.environment,
            description=data.description,
            added_by=admin.email,
            tags=data.tags,
            is_active=data.is_active,
        )
    except (RegistryError, InvalidOriginURLError) as e:
        raise _to_api_error(e) from e
    logger.info(f"Origin {entry.url} added by {admin.email}")
    return OriginResponse.model_validate(entry)


@router.put("/{origin_id}", response_model=OriginResponse)
async def update_origin(
    origin_id: str,
    data: OriginUpdate,
    container: SecurityContainer = Depends(get_container),
    admin: Identity = Depends(require_admin),
) -> OriginResponse:
    """Update an allowed origin. Only supplied fields change."""
    try:
        entry = await container.registry.update(origin_id, data.model_dump(exclude_unset=True))
    except (RegistryError, InvalidOriginURLError) as e:
        raise _to_api_error(e) from e
    logger.info(f"Origin {entry.url} updated by {admin.email}")
    return OriginResponse.model_validate(entry)


@router.delete("/{origin_id}", response_model=MessageResponse)
async def remove_origin(
    origin_id: str,
    container: SecurityContainer = Depends(get_container),
    admin: Identity = Depends(require_admin),
) -> MessageResponse:
    """Remove an allowed origin."""
    try:
        removed = await container.registry.remove(origin_id)
    except RegistryError as e:
        raise _to_api_error(e) from e
    if not removed:
        raise OriginNotFoundAPIError(f"Origin not found: {origin_id}")
    logger.info(f"Origin {origin_id} removed by {admin.email}")
    return MessageResponse(message="Origin removed successfully")
