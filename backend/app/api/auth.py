"""Authentication API endpoints.

Login and registration live in the account service; this router only
exposes the session as the security layer sees it and terminates it.
"""

import logging

from fastapi import APIRouter, Depends, Request, Response

from app.api.deps import get_container, get_current_identity, get_request_token
from app.core.container import SecurityContainer
from app.schemas.auth import IdentityResponse, MessageResponse
from app.services.auth import Identity

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


@router.get("/me", response_model=IdentityResponse)
async def get_current_identity_info(
    identity: Identity = Depends(get_current_identity),
) -> IdentityResponse:
    """Get the identity behind the current session."""
    return IdentityResponse.model_validate(identity)


@router.post("/logout", response_model=MessageResponse)
async def logout(
    request: Request,
    response: Response,
    identity: Identity = Depends(get_current_identity),
    container: SecurityContainer = Depends(get_container),
) -> MessageResponse:
    """Log out the current user.

    Revokes the presented token for the remainder of its lifetime and clears
    the session cookie. Revocation is best-effort: a storage failure is
    logged but the logout still succeeds.
    """
    token = get_request_token(request)
    if token:
        await container.auth.logout(token)
    response.delete_cookie(
        container.settings.session_cookie_name,
        httponly=True,
        secure=container.settings.is_production,
        samesite="lax",
    )
    logger.info(f"User logged out: {identity.email}")
    return MessageResponse(message="Logged out successfully")
