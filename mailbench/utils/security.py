"""Security utilities for log sanitization and secret masking.

This module provides functions to prevent security vulnerabilities:
- Log injection: Sanitize user input before logging
- Sensitive data exposure: Mask tokens and keys in logs
"""

import re
from typing import Union


def sanitize_log_message(msg: Union[str, bytes, int, float, None]) -> str:
    """Remove newlines and control characters from log messages.

    Prevents log injection attacks where attackers inject newlines or control
    characters to corrupt log files or hide malicious activity.

    Args:
        msg: Message to sanitize (will be converted to string)

    Returns:
        Sanitized message with control characters removed

    Examples:
        >>> sanitize_log_message("viewer@example.com\\nfake entry")
        'viewer@example.comfake entry'
    """
    if msg is None:
        return ""

    # Pattern matches: \n, \r, \t, and control chars (0x00-0x1f, 0x7f-0x9f)
    return re.sub(r'[\n\r\t\x00-\x1f\x7f-\x9f]', '', str(msg))


def mask_sensitive(value: Union[str, None], visible_chars: int = 4, mask_char: str = "*") -> str:
    """Mask sensitive values, showing only the last N characters.

    Args:
        value: Sensitive value to mask (API keys, tokens)
        visible_chars: Number of characters to show at the end (default: 4)
        mask_char: Character to use for masking (default: "*")

    Returns:
        Masked string showing only last visible_chars characters

    Examples:
        >>> mask_sensitive("AIzaSyD-1234567890abcdef")
        '***cdef'
        >>> mask_sensitive("abc")
        '***'
        >>> mask_sensitive(None)
        '***'
    """
    if not value or len(value) <= visible_chars:
        return mask_char * 3

    return f"{mask_char * 3}{value[-visible_chars:]}"


def mask_email(email: Union[str, None]) -> str:
    """Mask the local part of an email address for logging.

    Examples:
        >>> mask_email("jane.doe@example.com")
        'j***@example.com'
    """
    if not email or "@" not in email:
        return "***"

    local, _, domain = email.partition("@")
    return f"{local[:1]}***@{domain}"
