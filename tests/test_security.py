"""Tests for log safety utilities and the audit trail.

Covers mailbench/utils/security.py, mailbench/utils/error_handling.py and
mailbench/services/audit.py:
- Log injection prevention via sanitize_log_message()
- Secret and email masking
- Audit metadata redaction
- Best-effort audit writes
"""

import logging

from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from mailbench.models.audit_log import AuditLogEntry
from mailbench.services import audit
from mailbench.utils.error_handling import log_and_continue
from mailbench.utils.security import mask_email, mask_sensitive, sanitize_log_message


class TestSanitizeLogMessage:
    """Test suite for log injection prevention."""

    def test_removes_newlines(self):
        assert sanitize_log_message("viewer@example.com\nfake entry") == "viewer@example.comfake entry"

    def test_removes_control_characters(self):
        assert sanitize_log_message("a\r\tb\x00c\x1bd") == "abcd"

    def test_handles_non_strings(self):
        assert sanitize_log_message(None) == ""
        assert sanitize_log_message(42) == "42"


class TestMasking:
    """Test suite for masking helpers."""

    def test_mask_sensitive(self):
        assert mask_sensitive("AIzaSyD-1234567890abcdef") == "***cdef"
        assert mask_sensitive("abc") == "***"
        assert mask_sensitive(None) == "***"

    def test_mask_email(self):
        assert mask_email("jane.doe@example.com") == "j***@example.com"
        assert mask_email("no-at-sign") == "***"


class TestAudit:
    """Test suite for audit entries."""

    def test_redact_sensitive(self):
        details = {
            "email": "inbox@gmail.com",
            "refresh_token": "1//secret",
            "nested": {"Authorization": "Bearer abc", "count": 2},
        }

        redacted = audit.redact_sensitive(details)

        assert redacted == {
            "email": "inbox@gmail.com",
            "refresh_token": "[REDACTED]",
            "nested": {"Authorization": "[REDACTED]", "count": 2},
        }

    async def test_record_event(self, db, owner):
        await audit.record_event(
            db, owner.id, audit.ACTION_SHARE, gmail_account_id="acct-1", details={"viewer_user_id": "v1"}
        )

        entry = (await db.execute(select(AuditLogEntry))).scalar_one()
        assert entry.user_id == owner.id
        assert entry.action == "share"
        assert entry.gmail_account_id == "acct-1"
        assert entry.details == {"viewer_user_id": "v1"}

    async def test_record_event_failure_is_logged_not_raised(self, db, owner, monkeypatch, caplog):
        async def failing_commit():
            raise OperationalError("INSERT", {}, Exception("database is locked"))

        monkeypatch.setattr(db, "commit", failing_commit)

        with caplog.at_level(logging.WARNING):
            await audit.record_event(db, owner.id, audit.ACTION_SEARCH)

        assert "Failed to write audit log entry (search)" in caplog.text

    def test_log_and_continue(self, caplog):
        logger = logging.getLogger("mailbench.tests")

        with caplog.at_level(logging.WARNING):
            log_and_continue(logger, RuntimeError("boom"), "Revocation failed")

        assert "Revocation failed" in caplog.text
