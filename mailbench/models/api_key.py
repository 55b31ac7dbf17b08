"""Stored AI provider API key model."""

import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from mailbench.db import Base

PROVIDERS = ("gemini", "openai", "anthropic")
VALIDATION_STATUSES = ("pending", "valid", "invalid", "expired")


class StoredApiKey(Base):
    """A user's API key for an AI provider, encrypted at rest.

    Deletion is soft (``is_active = False``). At most one active key per
    (user, provider) carries ``is_default``.
    """

    __tablename__ = "user_api_keys"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    provider: Mapped[str] = mapped_column(String(32), nullable=False)  # gemini, openai, anthropic
    key_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    encrypted_api_key: Mapped[str] = mapped_column(Text, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    is_default: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    validation_status: Mapped[str] = mapped_column(String(16), default="pending", nullable=False)
    validation_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_validated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (Index("idx_user_api_keys_user_provider", "user_id", "provider"),)

    def __repr__(self):
        return f"<StoredApiKey(id={self.id}, provider={self.provider})>"
