"""Custom exceptions for the Mailbench application.

Every error raised by a service carries the HTTP status it maps to, so the
application-level exception handler can render it without inspecting the
message. Messages are written for end users; internal details are logged
server-side and never placed in them.
"""

from typing import Any, Dict, Optional


class MailbenchError(Exception):
    """Base exception for all Mailbench errors."""

    status_code: int = 500

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        status_code: Optional[int] = None,
    ):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        if status_code is not None:
            self.status_code = status_code


class AuthenticationError(MailbenchError):
    """Caller is not logged in."""

    status_code = 401


class AuthorizationError(MailbenchError):
    """Caller is logged in but lacks permission for the resource."""

    status_code = 403


class NotFoundError(MailbenchError):
    """Record is absent or scoped out for the caller."""

    status_code = 404


class ValidationError(MailbenchError):
    """Malformed or disallowed input."""

    status_code = 400


class ConflictError(MailbenchError):
    """Record already exists."""

    status_code = 409


class ConfigurationError(MailbenchError):
    """Required server configuration (secret, client credentials) is missing."""

    status_code = 500


# ============================================================================
# Upstream provider errors
# ============================================================================


class UpstreamError(MailbenchError):
    """A third-party provider call failed."""

    status_code = 502


class UpstreamAuthError(UpstreamError):
    """Provider rejected our credentials (expired or revoked token)."""

    status_code = 401


class UpstreamRateLimitError(UpstreamError):
    """Provider rate limit or quota exceeded."""

    status_code = 429


class UpstreamUnavailableError(UpstreamError):
    """Provider unreachable or returned an unexpected error."""

    status_code = 502


# ============================================================================
# Envelope errors
# ============================================================================


class EncryptionError(MailbenchError):
    """Base class for envelope failures.

    Never rendered to clients as-is: callers treat a failed decryption as
    "credentials unavailable, reconnect required".
    """

    status_code = 404


class FormatError(EncryptionError):
    """Envelope is not four well-formed base64 segments."""


class IntegrityError(EncryptionError):
    """Authentication tag did not verify (tampered data or wrong key)."""
