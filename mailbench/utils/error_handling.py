"""Centralized error handling utilities.

Best-effort side effects (upstream token revocation, audit log writes)
must never fail the request that triggered them. Their failures are
logged server-side with the stack trace and execution continues.

Security:
    - CWE-209: Generation of Error Message Containing Sensitive Information
"""

import logging


def log_and_continue(
    logger_instance: logging.Logger,
    error: Exception,
    context_message: str,
    log_level: str = "warning",
) -> None:
    """Log error but continue execution (for non-critical errors).

    Only the exception type is placed in the message; the traceback goes
    to ``exc_info`` so provider payloads never land in the message text.

    Examples:
        >>> try:
        ...     await audit_session.commit()
        ... except SQLAlchemyError as e:
        ...     log_and_continue(logger, e, "Failed to write audit log entry")
    """
    log_method = getattr(logger_instance, log_level, logger_instance.warning)
    log_method("%s: %s", context_message, type(error).__name__, exc_info=True)
