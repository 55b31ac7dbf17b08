"""Gmail REST API client returning deliverability metadata.

Only message metadata is requested (``format=metadata``); message bodies
never leave Google.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Optional

import httpx

from mailbench.exceptions import (
    UpstreamAuthError,
    UpstreamError,
    UpstreamRateLimitError,
    UpstreamUnavailableError,
)
from mailbench.services.header_parser import extract_sending_domain, extract_sending_ip
from mailbench.utils.security import sanitize_log_message

logger = logging.getLogger(__name__)

GMAIL_API_BASE = "https://gmail.googleapis.com/gmail/v1/users/me"
HTTP_TIMEOUT = 10.0
DEFAULT_MAX_RESULTS = 25

METADATA_HEADERS = [
    "From",
    "Subject",
    "Received",
    "Return-Path",
    "DKIM-Signature",
    "Authentication-Results",
]

LABEL_QUERIES = {
    "PRIMARY": "in:inbox category:primary",
    "PROMOTIONS": "in:inbox category:promotions",
    "SPAM": "in:spam",
    "SOCIAL": "in:inbox category:social",
}

# Pause between metadata fetches to stay under Gmail's per-user quota
BATCH_SIZE = 10
BATCH_DELAY_SECONDS = 0.1

RATE_LIMIT_REASONS = {"rateLimitExceeded", "userRateLimitExceeded"}


@dataclass
class GmailMessage:
    id: str
    subject: str
    from_: str
    snippet: str
    labels: list[str]
    date: str
    sending_ip: Optional[str] = None
    sending_domain: Optional[str] = None


@dataclass
class SearchResult:
    messages: list[GmailMessage] = field(default_factory=list)
    next_page_token: Optional[str] = None


def build_search_query(query: Optional[str], label: Optional[str] = None) -> str:
    """Combine a free-text query with the category filter for ``label``.

    ``ALL``, an empty label and unknown labels add no filter.
    """
    gmail_query = (query or "").strip()
    if not label or label.upper() == "ALL":
        return gmail_query

    label_query = LABEL_QUERIES.get(label.upper())
    if not label_query:
        return gmail_query

    return f"{gmail_query} {label_query}" if gmail_query else label_query


def _raise_for_status(response: httpx.Response, action: str) -> None:
    if response.status_code < 400:
        return

    try:
        body = response.json()
    except ValueError:
        body = None

    reasons = set()
    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict):
        reasons = {item.get("reason") for item in error.get("errors", []) if isinstance(item, dict)}

    logger.error(
        "Gmail %s failed with status %s: %s",
        action,
        response.status_code,
        sanitize_log_message(response.text[:200]),
    )

    if response.status_code == 401:
        raise UpstreamAuthError("Token expired. Please reconnect your Gmail account.")
    if response.status_code == 429 or (response.status_code == 403 and reasons & RATE_LIMIT_REASONS):
        raise UpstreamRateLimitError("Rate limit exceeded. Please try again later.")
    raise UpstreamUnavailableError(
        "Failed to search messages", details={"status": response.status_code}
    )


def parse_message(message: dict[str, Any]) -> GmailMessage:
    """Build a ``GmailMessage`` from a ``format=metadata`` API response."""
    headers: dict[str, str] = {}
    received: list[str] = []

    for header in message.get("payload", {}).get("headers", []):
        name = header.get("name")
        value = header.get("value")
        if not name or not value:
            continue
        name = name.lower()
        headers[name] = value
        if name == "received":
            received.append(value)

    internal_date = message.get("internalDate")
    if internal_date:
        sent_at = datetime.fromtimestamp(int(internal_date) / 1000, tz=UTC)
    else:
        sent_at = datetime.now(UTC)

    return GmailMessage(
        id=message["id"],
        subject=headers.get("subject") or "(No Subject)",
        from_=headers.get("from") or "Unknown",
        snippet=message.get("snippet") or "",
        labels=message.get("labelIds") or [],
        date=sent_at.isoformat(timespec="milliseconds").replace("+00:00", "Z"),
        sending_ip=extract_sending_ip(received),
        sending_domain=extract_sending_domain(
            dkim_signature=headers.get("dkim-signature"),
            return_path=headers.get("return-path"),
            from_=headers.get("from"),
        ),
    )


class GmailClient:
    """Read-only Gmail client for one mailbox.

    Args:
        access_token: Decrypted OAuth access token
        http_client: Shared ``httpx.AsyncClient``
    """

    def __init__(self, access_token: str, http_client: httpx.AsyncClient):
        self.http_client = http_client
        self._headers = {"Authorization": f"Bearer {access_token}"}

    async def _get(self, path: str, params: dict[str, Any], action: str) -> dict[str, Any]:
        try:
            response = await self.http_client.get(
                f"{GMAIL_API_BASE}{path}",
                params=params,
                headers=self._headers,
                timeout=HTTP_TIMEOUT,
            )
        except httpx.HTTPError as e:
            logger.error("Cannot reach Gmail for %s: %s", action, type(e).__name__)
            raise UpstreamUnavailableError("Gmail is unavailable. Please try again later.") from e

        _raise_for_status(response, action)

        try:
            body = response.json()
        except ValueError:
            body = None
        if not isinstance(body, dict):
            logger.error("Gmail %s returned a non-JSON body", action)
            raise UpstreamUnavailableError("Gmail returned an unexpected response. Please try again later.")
        return body

    async def search_messages(
        self,
        query: Optional[str],
        label: Optional[str] = None,
        max_results: int = DEFAULT_MAX_RESULTS,
        page_token: Optional[str] = None,
    ) -> tuple[list[str], Optional[str]]:
        """List message ids matching the query.

        Returns:
            Tuple of (message_ids, next_page_token)
        """
        params: dict[str, Any] = {
            "q": build_search_query(query, label),
            "maxResults": max_results,
        }
        if page_token:
            params["pageToken"] = page_token

        data = await self._get("/messages", params, "search")
        ids = [item["id"] for item in data.get("messages", []) if item.get("id")]
        return ids, data.get("nextPageToken")

    async def get_message_metadata(self, message_id: str) -> Optional[GmailMessage]:
        """Fetch headers for one message.

        Credential and rate-limit errors propagate; any other failure skips
        the message and returns None.
        """
        try:
            data = await self._get(
                f"/messages/{message_id}",
                {"format": "metadata", "metadataHeaders": METADATA_HEADERS},
                "message metadata",
            )
        except (UpstreamAuthError, UpstreamRateLimitError):
            raise
        except UpstreamError as e:
            logger.warning("Skipping message %s: %s", message_id, e.message)
            return None

        return parse_message(data)

    async def search_and_get_messages(
        self,
        query: Optional[str],
        label: Optional[str] = None,
        max_results: int = DEFAULT_MAX_RESULTS,
        page_token: Optional[str] = None,
    ) -> SearchResult:
        """Search and fetch metadata for every hit, pausing every 10 fetches."""
        message_ids, next_page_token = await self.search_messages(
            query, label, max_results, page_token
        )

        messages = []
        for index, message_id in enumerate(message_ids):
            metadata = await self.get_message_metadata(message_id)
            if metadata:
                messages.append(metadata)

            if (index + 1) % BATCH_SIZE == 0 and index < len(message_ids) - 1:
                await asyncio.sleep(BATCH_DELAY_SECONDS)

        return SearchResult(messages=messages, next_page_token=next_page_token)
