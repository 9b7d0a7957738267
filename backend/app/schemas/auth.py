"""Pydantic schemas for authentication API."""

from pydantic import BaseModel, ConfigDict, Field


class MessageResponse(BaseModel):
    """Generic message response."""

    message: str


class IdentityResponse(BaseModel):
    """The identity resolved for the current request."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    role: str = Field(description="Role used for authorization checks, e.g. user or admin")
    email: str
