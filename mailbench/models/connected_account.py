"""Connected Gmail account model holding encrypted OAuth credentials."""

import uuid
from datetime import UTC, datetime

from sqlalchemy import DateTime, ForeignKey, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from mailbench.db import Base


class ConnectedAccount(Base):
    """A Gmail account connected by a user through Google OAuth.

    Tokens are stored as encryption envelopes (see
    ``mailbench.utils.encryption``) and are never returned by the API.
    """

    __tablename__ = "gmail_accounts"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False
    )
    email: Mapped[str] = mapped_column(String(320), nullable=False)
    access_token: Mapped[str] = mapped_column(Text, nullable=False)  # Encrypted
    refresh_token: Mapped[str] = mapped_column(Text, nullable=False)  # Encrypted
    token_expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (UniqueConstraint("user_id", "email", name="uq_gmail_accounts_user_email"),)

    def __repr__(self):
        return f"<ConnectedAccount(id={self.id}, user_id={self.user_id})>"

    @property
    def expires_at_utc(self) -> datetime | None:
        """Token expiry as an aware UTC datetime."""
        expires = self.token_expires_at
        # Handle timezone-naive datetimes from SQLite
        if expires is not None and expires.tzinfo is None:
            expires = expires.replace(tzinfo=UTC)
        return expires
