"""Audit trail for actions on connected Gmail accounts.

Entries are written to the ``gmail_audit_log`` table. Writing is
best-effort: a failed insert is logged and never fails the request.
"""

import logging
from typing import Any, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from mailbench.models.audit_log import AuditLogEntry
from mailbench.utils.error_handling import log_and_continue

logger = logging.getLogger(__name__)

ACTION_CONNECT = "connect"
ACTION_DISCONNECT = "disconnect"
ACTION_REFRESH = "refresh"
ACTION_SEARCH = "search"
ACTION_SHARE = "share"
ACTION_UNSHARE = "unshare"

SENSITIVE_KEYS = {
    "password",
    "token",
    "secret",
    "access_token",
    "refresh_token",
    "client_secret",
    "authorization",
    "api_key",
    "code",
}


def redact_sensitive(details: dict[str, Any]) -> dict[str, Any]:
    """Redact sensitive values from audit metadata."""
    redacted: dict[str, Any] = {}
    for key, value in details.items():
        if key.lower() in SENSITIVE_KEYS:
            redacted[key] = "[REDACTED]"
        elif isinstance(value, dict):
            redacted[key] = redact_sensitive(value)
        else:
            redacted[key] = value
    return redacted


async def record_event(
    db: AsyncSession,
    user_id: str,
    action: str,
    gmail_account_id: Optional[str] = None,
    details: Optional[dict[str, Any]] = None,
) -> None:
    """Append an audit entry.

    Args:
        db: Database session
        user_id: Acting user
        action: One of the ACTION_* constants
        gmail_account_id: Affected account, if any
        details: Extra context (sensitive keys are redacted)
    """
    entry = AuditLogEntry(
        user_id=user_id,
        gmail_account_id=gmail_account_id,
        action=action,
        details=redact_sensitive(details or {}),
    )
    try:
        db.add(entry)
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        log_and_continue(logger, e, f"Failed to write audit log entry ({action})")
        return

    logger.debug("Audit: user=%s action=%s account=%s", user_id, action, gmail_account_id)
