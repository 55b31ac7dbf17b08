"""Validate AI provider API keys with a cheap authenticated call.

Each provider's list-models endpoint is requested with the key. No tokens
are generated, so validation costs nothing against the user's quota.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import httpx

from mailbench.utils.security import mask_sensitive

logger = logging.getLogger(__name__)

HTTP_TIMEOUT = 10.0
ANTHROPIC_VERSION = "2023-06-01"

PROVIDER_ENDPOINTS = {
    "gemini": "https://generativelanguage.googleapis.com/v1beta/models",
    "openai": "https://api.openai.com/v1/models",
    "anthropic": "https://api.anthropic.com/v1/models",
}

INVALID_KEY = "Invalid API key. Please check your key and try again."
EXPIRED_KEY = "API key has expired. Please create a new key."
QUOTA_EXCEEDED = "API quota exceeded. Please check your billing."
MISSING_PERMISSIONS = "API key does not have required permissions."
UNREACHABLE = "Could not reach the provider to validate the key. Please try again."
KEY_REQUIRED = "API key is required"


@dataclass
class ValidationResult:
    """Outcome of validating one key.

    ``status`` is the value to store in ``validation_status``: "valid",
    "invalid", "expired", or "pending" when the check was inconclusive.
    """

    valid: bool
    status: str
    error: Optional[str] = None


def _auth_headers(provider: str, api_key: str) -> dict[str, str]:
    if provider == "gemini":
        return {"x-goog-api-key": api_key}
    if provider == "anthropic":
        return {"x-api-key": api_key, "anthropic-version": ANTHROPIC_VERSION}
    return {"Authorization": f"Bearer {api_key}"}


def _is_gemini_key_error(response: httpx.Response, reason: str) -> bool:
    # Gemini reports bad keys as 400 with an ErrorInfo reason
    try:
        body = response.json()
    except ValueError:
        return False

    error = body.get("error") if isinstance(body, dict) else None
    details = error.get("details", []) if isinstance(error, dict) else []
    return any(isinstance(item, dict) and item.get("reason") == reason for item in details)


async def validate_api_key(
    provider: str, api_key: str, http_client: httpx.AsyncClient
) -> ValidationResult:
    """Check a key against the provider.

    Args:
        provider: gemini, openai or anthropic
        api_key: Plaintext key
        http_client: Shared ``httpx.AsyncClient``
    """
    if not api_key or not api_key.strip():
        return ValidationResult(valid=False, status="invalid", error=KEY_REQUIRED)

    endpoint = PROVIDER_ENDPOINTS.get(provider)
    if not endpoint:
        return ValidationResult(
            valid=False, status="invalid", error=f"Unsupported provider: {provider}"
        )

    try:
        response = await http_client.get(
            endpoint,
            headers=_auth_headers(provider, api_key.strip()),
            timeout=HTTP_TIMEOUT,
        )
    except httpx.HTTPError as e:
        logger.warning("Cannot reach %s to validate key: %s", provider, type(e).__name__)
        return ValidationResult(valid=False, status="pending", error=UNREACHABLE)

    status_code = response.status_code
    if status_code == 200:
        logger.info("Validated %s key %s", provider, mask_sensitive(api_key))
        return ValidationResult(valid=True, status="valid")

    logger.info("%s rejected key %s with status %s", provider, mask_sensitive(api_key), status_code)

    if status_code == 401:
        return ValidationResult(valid=False, status="invalid", error=INVALID_KEY)
    if status_code == 429:
        return ValidationResult(valid=False, status="invalid", error=QUOTA_EXCEEDED)
    if status_code == 403:
        return ValidationResult(valid=False, status="invalid", error=MISSING_PERMISSIONS)
    if provider == "gemini" and status_code == 400:
        if _is_gemini_key_error(response, "API_KEY_EXPIRED"):
            return ValidationResult(valid=False, status="expired", error=EXPIRED_KEY)
        if _is_gemini_key_error(response, "API_KEY_INVALID"):
            return ValidationResult(valid=False, status="invalid", error=INVALID_KEY)

    return ValidationResult(
        valid=False, status="pending", error="Failed to validate API key. Please try again."
    )
