"""Audit log model for connected-account actions."""

import uuid
from datetime import datetime

from sqlalchemy import JSON, DateTime, Index, String
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from mailbench.db import Base


class AuditLogEntry(Base):
    """Append-only record of an action taken on a connected account.

    Actions: connect, disconnect, refresh, search, share, unshare.
    """

    __tablename__ = "gmail_audit_log"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    user_id: Mapped[str] = mapped_column(String(36), index=True, nullable=False)
    # No FK: entries outlive the account they describe
    gmail_account_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    action: Mapped[str] = mapped_column(String(32), nullable=False)
    # "metadata" is reserved on declarative classes
    details: Mapped[dict | None] = mapped_column("metadata", JSON, nullable=True)
    created_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (Index("idx_gmail_audit_log_user_created", "user_id", "created_at"),)

    def __repr__(self):
        return f"<AuditLogEntry(action={self.action}, user_id={self.user_id})>"
