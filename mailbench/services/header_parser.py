"""Extract the sending IP and sending domain from email headers."""

import re
from typing import Optional

# Google's own relays; the first hop outside these is the real sender
INTERNAL_HOP_PATTERNS = [
    re.compile(r"google\.com", re.IGNORECASE),
    re.compile(r"gmail\.com", re.IGNORECASE),
    re.compile(r"googlemail\.com", re.IGNORECASE),
    re.compile(r"mx\.google\.com", re.IGNORECASE),
    re.compile(r"aspmx\.l\.google\.com", re.IGNORECASE),
]

IPV4_PATTERN = re.compile(
    r"\b(?:(?:25[0-5]|2[0-4][0-9]|[01]?[0-9][0-9]?)\.){3}"
    r"(?:25[0-5]|2[0-4][0-9]|[01]?[0-9][0-9]?)\b"
)
# Full eight-group form only
IPV6_PATTERN = re.compile(r"\b(?:[0-9a-fA-F]{1,4}:){7}[0-9a-fA-F]{1,4}\b")

RECEIVED_FROM_PATTERN = re.compile(r"from\s+([^\s(]+)", re.IGNORECASE)
DKIM_DOMAIN_PATTERN = re.compile(r"(?:^|;)\s*d=([^;]+)", re.IGNORECASE)
ANGLE_ADDRESS_PATTERN = re.compile(r"<([^>]+)>")
BARE_ADDRESS_PATTERN = re.compile(r"(\S+@\S+)")
ADDRESS_DOMAIN_PATTERN = re.compile(r"@([^\s>]+)")


def is_internal_hop(hostname: str) -> bool:
    return any(pattern.search(hostname) for pattern in INTERNAL_HOP_PATTERNS)


def extract_ip_address(text: str) -> Optional[str]:
    """Return the first IPv4 address in ``text``, else the first IPv6 address."""
    match = IPV4_PATTERN.search(text) or IPV6_PATTERN.search(text)
    return match.group(0) if match else None


def extract_sending_ip(received_headers: list[str]) -> Optional[str]:
    """Find the IP of the earliest external hop.

    Received headers are prepended by each relay, so the list is walked
    from the end (oldest hop first). Hops through Google's own servers are
    skipped. If no external hop carries an IP, the first IP found in any
    header is returned.

    Examples:
        >>> extract_sending_ip([
        ...     "from mail-sor-f41.google.com (mail-sor-f41.google.com. [209.85.220.41]) by mx.google.com",
        ...     "from mta.sender.example (mta.sender.example [203.0.113.7]) by relay.sender.example",
        ... ])
        '203.0.113.7'
    """
    if not received_headers:
        return None

    for header in reversed(received_headers):
        from_match = RECEIVED_FROM_PATTERN.search(header)
        if not from_match:
            continue

        hostname = from_match.group(1).lower()
        if is_internal_hop(hostname):
            continue

        ip = extract_ip_address(header)
        if ip:
            return ip

        if extract_ip_address(hostname):
            return hostname

    for header in received_headers:
        ip = extract_ip_address(header)
        if ip:
            return ip

    return None


def _address_domain(address: str) -> Optional[str]:
    match = ADDRESS_DOMAIN_PATTERN.search(address)
    return match.group(1).strip() if match else None


def extract_dkim_domain(dkim_header: str) -> Optional[str]:
    # v=1; a=rsa-sha256; d=example.com; s=selector; ...
    match = DKIM_DOMAIN_PATTERN.search(dkim_header)
    if not match:
        return None
    return match.group(1).strip() or None


def extract_return_path_domain(return_path: str) -> Optional[str]:
    match = ANGLE_ADDRESS_PATTERN.search(return_path)
    if not match:
        return None
    return _address_domain(match.group(1))


def extract_from_domain(from_header: str) -> Optional[str]:
    # Name <user@domain.com> or user@domain.com
    match = ANGLE_ADDRESS_PATTERN.search(from_header) or BARE_ADDRESS_PATTERN.search(from_header)
    if not match:
        return None
    return _address_domain(match.group(1))


def extract_sending_domain(
    dkim_signature: Optional[str] = None,
    return_path: Optional[str] = None,
    from_: Optional[str] = None,
) -> Optional[str]:
    """Determine the sending domain.

    Priority: DKIM ``d=`` tag, then the Return-Path address, then From.
    """
    if dkim_signature:
        domain = extract_dkim_domain(dkim_signature)
        if domain:
            return domain

    if return_path:
        domain = extract_return_path_domain(return_path)
        if domain:
            return domain

    if from_:
        domain = extract_from_domain(from_)
        if domain:
            return domain

    return None
