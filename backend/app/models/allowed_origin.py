"""Allowed origin model - durable CORS allow-list entries."""

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Integer, String
from sqlalchemy.dialects.postgresql import ARRAY
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import BaseModel


class AllowedOrigin(BaseModel):
    """An origin permitted to receive credentialed cross-origin responses.

    ``url`` holds the canonical origin (scheme://host[:port]) and is unique.
    Usage counters are bumped on every admitted request from the origin.
    """

    __tablename__ = "allowed_origins"

    url: Mapped[str] = mapped_column(String(2048), nullable=False, unique=True, index=True)
    environment: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
        comment="dev, staging or prod",
    )
    description: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    added_by: Mapped[str] = mapped_column(String(255), nullable=False, default="system")
    added_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    last_used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    usage_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    tags: Mapped[list[str]] = mapped_column(ARRAY(String(64)), nullable=False, default=list)

    def __repr__(self) -> str:
        return f"<AllowedOrigin {self.url} ({self.environment})>"
