"""Permission grant model for sharing connected accounts with viewers."""

import uuid
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from mailbench.db import Base


class AccountPermission(Base):
    """Read access to a connected account granted by its owner to another user."""

    __tablename__ = "gmail_account_permissions"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    gmail_account_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("gmail_accounts.id", ondelete="CASCADE"),
        index=True,
        nullable=False,
    )
    viewer_user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False
    )
    created_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        UniqueConstraint(
            "gmail_account_id", "viewer_user_id", name="uq_gmail_account_permissions_viewer"
        ),
    )

    def __repr__(self):
        return (
            f"<AccountPermission(account={self.gmail_account_id}, viewer={self.viewer_user_id})>"
        )
