"""Database models for Mailbench."""

from mailbench.models.user import User
from mailbench.models.connected_account import ConnectedAccount
from mailbench.models.account_permission import AccountPermission
from mailbench.models.audit_log import AuditLogEntry
from mailbench.models.api_key import StoredApiKey

__all__ = [
    "User",
    "ConnectedAccount",
    "AccountPermission",
    "AuditLogEntry",
    "StoredApiKey",
]
