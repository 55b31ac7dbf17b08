"""Google OAuth 2.0 provider client.

Every call to Google goes through ``GoogleOAuthClient``, which turns the
HTTP response into a ``ProviderResult`` at the boundary. Raw provider error
strings stay in the result (for logging) and are reduced to a fixed set of
categories that are safe to show in a redirect URL:

- access_denied: user declined consent
- client_misconfigured: client id/secret rejected by Google
- invalid_request: bad or expired code, redirect URI mismatch
- provider_unavailable: Google unreachable or returned a server error
- oauth_error: anything else
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional
from urllib.parse import urlencode

import httpx

from mailbench.exceptions import ConfigurationError
from mailbench.utils.security import mask_sensitive, sanitize_log_message

logger = logging.getLogger(__name__)

AUTHORIZATION_ENDPOINT = "https://accounts.google.com/o/oauth2/v2/auth"
TOKEN_ENDPOINT = "https://oauth2.googleapis.com/token"
REVOKE_ENDPOINT = "https://oauth2.googleapis.com/revoke"
GMAIL_PROFILE_ENDPOINT = "https://www.googleapis.com/gmail/v1/users/me/profile"

GMAIL_READONLY_SCOPE = "https://www.googleapis.com/auth/gmail.readonly"
HTTP_TIMEOUT = 10.0
DEFAULT_EXPIRES_IN = 3600

# Error categories
ACCESS_DENIED = "access_denied"
CLIENT_MISCONFIGURED = "client_misconfigured"
INVALID_REQUEST = "invalid_request"
PROVIDER_UNAVAILABLE = "provider_unavailable"
OAUTH_ERROR = "oauth_error"

_ERROR_CATEGORIES = {
    "access_denied": ACCESS_DENIED,
    "invalid_client": CLIENT_MISCONFIGURED,
    "unauthorized_client": CLIENT_MISCONFIGURED,
    "invalid_request": INVALID_REQUEST,
    "invalid_grant": INVALID_REQUEST,
    "invalid_scope": INVALID_REQUEST,
    "redirect_uri_mismatch": INVALID_REQUEST,
    "unsupported_grant_type": INVALID_REQUEST,
    "unsupported_response_type": INVALID_REQUEST,
    "server_error": PROVIDER_UNAVAILABLE,
    "temporarily_unavailable": PROVIDER_UNAVAILABLE,
}


def categorize_error(error_code: Optional[str]) -> str:
    """Map a Google OAuth error code to a display-safe category."""
    if not error_code:
        return OAUTH_ERROR
    return _ERROR_CATEGORIES.get(error_code.strip().lower(), OAUTH_ERROR)


@dataclass
class ProviderResult:
    """Outcome of a single provider call."""

    success: bool
    data: Dict[str, Any] = field(default_factory=dict)
    category: Optional[str] = None
    raw_message: Optional[str] = None
    status_code: Optional[int] = None

    @classmethod
    def ok(cls, data: Optional[Dict[str, Any]] = None, status_code: int = 200) -> "ProviderResult":
        return cls(success=True, data=data or {}, status_code=status_code)

    @classmethod
    def failure(
        cls,
        category: str,
        raw_message: Optional[str] = None,
        status_code: Optional[int] = None,
    ) -> "ProviderResult":
        return cls(success=False, category=category, raw_message=raw_message, status_code=status_code)


def _json_object(response: httpx.Response) -> Optional[Dict[str, Any]]:
    """Decode a JSON object body, or None if the body is anything else."""
    try:
        body = response.json()
    except ValueError:
        return None
    return body if isinstance(body, dict) else None


def _failure_from_response(response: httpx.Response) -> ProviderResult:
    """Build a failure result from a non-2xx Google response."""
    error_code = None
    raw_message = response.text
    try:
        body = response.json()
    except ValueError:
        body = None

    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict):
            # Google API style: {"error": {"code": 401, "status": "UNAUTHENTICATED", ...}}
            error_code = error.get("status")
            raw_message = error.get("message", raw_message)
        else:
            error_code = error
            raw_message = body.get("error_description") or error or raw_message

    if response.status_code >= 500:
        category = PROVIDER_UNAVAILABLE
    else:
        category = categorize_error(error_code)

    return ProviderResult.failure(category, raw_message=raw_message, status_code=response.status_code)


class GoogleOAuthClient:
    """Client for Google's OAuth token endpoints and the Gmail profile.

    Args:
        client_id: OAuth client id
        client_secret: OAuth client secret
        http_client: Shared ``httpx.AsyncClient`` (injected so tests can stub Google)
    """

    def __init__(
        self,
        client_id: Optional[str],
        client_secret: Optional[str],
        http_client: httpx.AsyncClient,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.http_client = http_client

    def _require_credentials(self) -> None:
        if not self.client_id or not self.client_secret:
            raise ConfigurationError(
                "Google OAuth is not configured. Set GOOGLE_CLIENT_ID and GOOGLE_CLIENT_SECRET."
            )

    def build_authorization_url(self, state: str, redirect_uri: str) -> str:
        """Build the consent URL requesting offline, read-only Gmail access."""
        self._require_credentials()
        params = {
            "client_id": self.client_id,
            "redirect_uri": redirect_uri,
            "response_type": "code",
            "scope": GMAIL_READONLY_SCOPE,
            "access_type": "offline",
            "prompt": "consent",
            "state": state,
        }
        return f"{AUTHORIZATION_ENDPOINT}?{urlencode(params)}"

    async def _post_form(self, url: str, data: Dict[str, str], action: str) -> ProviderResult:
        try:
            response = await self.http_client.post(
                url,
                data=data,
                headers={"Content-Type": "application/x-www-form-urlencoded"},
                timeout=HTTP_TIMEOUT,
            )
        except httpx.TimeoutException:
            logger.error("Google %s request timed out", action)
            return ProviderResult.failure(PROVIDER_UNAVAILABLE, raw_message="timeout")
        except httpx.HTTPError as e:
            logger.error("Cannot connect to Google for %s: %s", action, type(e).__name__)
            return ProviderResult.failure(PROVIDER_UNAVAILABLE, raw_message=str(e))

        if response.status_code != 200:
            result = _failure_from_response(response)
            logger.error(
                "Google %s failed with status %s: %s",
                action,
                response.status_code,
                sanitize_log_message(result.raw_message),
            )
            return result

        if not response.content:
            return ProviderResult.ok(status_code=response.status_code)

        body = _json_object(response)
        if body is None:
            logger.error("Google %s returned a non-JSON body", action)
            return ProviderResult.failure(OAUTH_ERROR, raw_message="invalid JSON response")

        return ProviderResult.ok(body, status_code=response.status_code)

    async def exchange_code(self, code: str, redirect_uri: str) -> ProviderResult:
        """Exchange an authorization code for tokens.

        A successful exchange must return both an access token and a refresh
        token; ``expires_in`` defaults to one hour when absent.
        """
        self._require_credentials()
        result = await self._post_form(
            TOKEN_ENDPOINT,
            {
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": redirect_uri,
                "client_id": self.client_id,
                "client_secret": self.client_secret,
            },
            "token exchange",
        )
        if not result.success:
            return result

        if not result.data.get("access_token") or not result.data.get("refresh_token"):
            logger.error("Token exchange response missing access or refresh token")
            return ProviderResult.failure(OAUTH_ERROR, raw_message="Missing tokens in response")

        result.data.setdefault("expires_in", DEFAULT_EXPIRES_IN)
        logger.info("Successfully exchanged authorization code for tokens")
        return result

    async def refresh_access_token(self, refresh_token: str) -> ProviderResult:
        """Obtain a new access token. Google may also rotate the refresh token."""
        self._require_credentials()
        result = await self._post_form(
            TOKEN_ENDPOINT,
            {
                "grant_type": "refresh_token",
                "refresh_token": refresh_token,
                "client_id": self.client_id,
                "client_secret": self.client_secret,
            },
            "token refresh",
        )
        if not result.success:
            return result

        if not result.data.get("access_token"):
            logger.error("Token refresh response missing access token")
            return ProviderResult.failure(OAUTH_ERROR, raw_message="Missing access token in response")

        result.data.setdefault("expires_in", DEFAULT_EXPIRES_IN)
        return result

    async def revoke_token(self, token: str) -> ProviderResult:
        logger.debug("Revoking Google token %s", mask_sensitive(token))
        return await self._post_form(REVOKE_ENDPOINT, {"token": token}, "token revocation")

    async def get_profile_email(self, access_token: str) -> ProviderResult:
        """Fetch the Gmail address the access token belongs to.

        On success ``data["email"]`` holds the address.
        """
        try:
            response = await self.http_client.get(
                GMAIL_PROFILE_ENDPOINT,
                headers={"Authorization": f"Bearer {access_token}"},
                timeout=HTTP_TIMEOUT,
            )
        except httpx.HTTPError as e:
            logger.error("Cannot fetch Gmail profile: %s", type(e).__name__)
            return ProviderResult.failure(PROVIDER_UNAVAILABLE, raw_message=str(e))

        if response.status_code != 200:
            logger.error("Gmail profile request failed with status %s", response.status_code)
            return _failure_from_response(response)

        body = _json_object(response)
        if body is None:
            logger.error("Gmail profile returned a non-JSON body")
            return ProviderResult.failure(OAUTH_ERROR, raw_message="invalid JSON response")

        email = body.get("emailAddress")
        if not email:
            return ProviderResult.failure(OAUTH_ERROR, raw_message="Profile missing emailAddress")

        return ProviderResult.ok({"email": email})
