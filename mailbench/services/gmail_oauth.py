"""Gmail connection lifecycle: OAuth consent, callback, refresh and disconnect.

Flow states for one connection attempt:

    INIT -> AUTH_URL_ISSUED -> CALLBACK_RECEIVED -> TOKENS_EXCHANGED | FAILED

The state token is bound to the browser through the ``gmail_oauth_state``
cookie. A callback whose state does not match the cookie fails before any
call to Google is made.
"""

import hmac
import logging
import secrets
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Optional
from urllib.parse import urlencode

from sqlalchemy.ext.asyncio import AsyncSession

from mailbench.exceptions import ConfigurationError, NotFoundError
from mailbench.models.connected_account import ConnectedAccount
from mailbench.services import audit
from mailbench.services.credential_store import CredentialStore
from mailbench.services.google_oauth import (
    CLIENT_MISCONFIGURED,
    DEFAULT_EXPIRES_IN,
    GoogleOAuthClient,
    categorize_error,
)
from mailbench.utils.error_handling import log_and_continue
from mailbench.utils.security import mask_email, sanitize_log_message

logger = logging.getLogger(__name__)

STATE_COOKIE_NAME = "gmail_oauth_state"
STATE_COOKIE_MAX_AGE = 600  # 10 minutes
STATE_BYTES = 32

CALLBACK_PATH = "/api/v1/gmail/callback"
RESULT_PAGE = "/gmail-deliverability"
LOGIN_PAGE = "/auth/login"

MISSING_CODE_OR_STATE = "missing_code_or_state"
INVALID_STATE = "invalid_state"
REFRESH_ERROR = "refresh_error"

REFRESH_MARGIN = timedelta(minutes=5)
BATCH_REFRESH_WINDOW = timedelta(hours=1)


# ============================================================================
# State Management
# ============================================================================


def generate_state_token() -> str:
    """Generate the per-attempt state token (32 random bytes, hex encoded)."""
    return secrets.token_hex(STATE_BYTES)


def states_match(expected: Optional[str], received: Optional[str]) -> bool:
    """Constant-time comparison of the cookie state and the callback state."""
    if not expected or not received:
        return False
    return hmac.compare_digest(expected.encode("utf-8"), received.encode("utf-8"))


def resolve_redirect_uri(configured: Optional[str], base_url: str) -> str:
    """Use the configured redirect URI, or derive it from the request origin."""
    if configured:
        return configured
    return f"{base_url.rstrip('/')}{CALLBACK_PATH}"


def result_redirect_path(success: bool, error: Optional[str] = None) -> str:
    if success:
        return f"{RESULT_PAGE}?{urlencode({'success': 'connected'})}"
    return f"{RESULT_PAGE}?{urlencode({'error': error or 'oauth_error'})}"


# ============================================================================
# Callback
# ============================================================================


@dataclass
class CallbackResult:
    """Outcome of handling the OAuth callback."""

    success: bool
    error: Optional[str] = None
    account: Optional[ConnectedAccount] = None

    @property
    def redirect_path(self) -> str:
        return result_redirect_path(self.success, self.error)


async def complete_connection(
    db: AsyncSession,
    oauth_client: GoogleOAuthClient,
    store: CredentialStore,
    user_id: str,
    code: Optional[str],
    state: Optional[str],
    expected_state: Optional[str],
    redirect_uri: str,
    provider_error: Optional[str] = None,
) -> CallbackResult:
    """Handle the OAuth callback for ``user_id``.

    Checks run in order: provider error, presence of code and state, state
    match. Only then is the code exchanged, the Gmail address looked up and
    the credentials stored. Nothing is persisted on failure.

    Returns:
        CallbackResult whose ``error`` is a display-safe category
    """
    if provider_error:
        category = categorize_error(provider_error)
        logger.warning(
            "OAuth callback returned provider error %s (category %s)",
            sanitize_log_message(provider_error),
            category,
        )
        return CallbackResult(success=False, error=category)

    if not code or not state:
        logger.warning("OAuth callback missing code or state")
        return CallbackResult(success=False, error=MISSING_CODE_OR_STATE)

    if not states_match(expected_state, state):
        logger.warning("OAuth callback state mismatch for user %s", user_id)
        return CallbackResult(success=False, error=INVALID_STATE)

    try:
        exchange = await oauth_client.exchange_code(code, redirect_uri)
    except ConfigurationError as e:
        log_and_continue(logger, e, "Google OAuth client is not configured", log_level="error")
        return CallbackResult(success=False, error=CLIENT_MISCONFIGURED)

    if not exchange.success:
        return CallbackResult(success=False, error=exchange.category)

    access_token = exchange.data["access_token"]
    refresh_token = exchange.data["refresh_token"]
    expires_at = datetime.now(UTC) + timedelta(
        seconds=int(exchange.data.get("expires_in") or DEFAULT_EXPIRES_IN)
    )

    profile = await oauth_client.get_profile_email(access_token)
    if not profile.success:
        return CallbackResult(success=False, error=profile.category)
    email = profile.data["email"]

    account = await store.store_tokens(user_id, email, access_token, refresh_token, expires_at)
    await audit.record_event(
        db, user_id, audit.ACTION_CONNECT, gmail_account_id=account.id, details={"email": email}
    )

    logger.info("Connected Gmail account %s for user %s", mask_email(email), user_id)
    return CallbackResult(success=True, account=account)


# ============================================================================
# Token Refresh
# ============================================================================


class RefreshStatus(str, Enum):
    SKIPPED = "skipped"  # Token still valid beyond the refresh margin
    REFRESHED = "refreshed"
    FAILED = "failed"  # Google rejected the refresh; reconnect required
    MISSING = "missing"  # No credentials, or they cannot be decrypted


@dataclass
class RefreshOutcome:
    status: RefreshStatus
    access_token: Optional[str] = None
    error: Optional[str] = None

    @property
    def usable(self) -> bool:
        return self.status in (RefreshStatus.SKIPPED, RefreshStatus.REFRESHED)


async def refresh_account_token(
    store: CredentialStore,
    oauth_client: GoogleOAuthClient,
    account_id: str,
    now: Optional[datetime] = None,
) -> RefreshOutcome:
    """Return a usable access token, refreshing it if it expires within 5 minutes.

    A token with no recorded expiry is always refreshed. Failures are
    returned as outcomes, not raised.
    """
    now = now or datetime.now(UTC)

    tokens = await store.get_tokens(account_id)
    if not tokens:
        return RefreshOutcome(status=RefreshStatus.MISSING, error="Account not found or tokens unavailable")

    if tokens.expires_at and tokens.expires_at > now + REFRESH_MARGIN:
        return RefreshOutcome(status=RefreshStatus.SKIPPED, access_token=tokens.access_token)

    try:
        result = await oauth_client.refresh_access_token(tokens.refresh_token)
    except ConfigurationError as e:
        log_and_continue(logger, e, "Cannot refresh token without Google client credentials", log_level="error")
        return RefreshOutcome(status=RefreshStatus.FAILED, error=CLIENT_MISCONFIGURED)

    if not result.success:
        logger.warning("Token refresh failed for account %s (%s)", account_id, result.category)
        return RefreshOutcome(status=RefreshStatus.FAILED, error=result.category)

    access_token = result.data["access_token"]
    expires_at = now + timedelta(seconds=int(result.data.get("expires_in") or DEFAULT_EXPIRES_IN))
    await store.update_access_token(
        account_id,
        access_token,
        expires_at,
        refresh_token=result.data.get("refresh_token"),
    )

    logger.info("Refreshed access token for account %s", account_id)
    return RefreshOutcome(status=RefreshStatus.REFRESHED, access_token=access_token)


async def refresh_expiring_accounts(
    store: CredentialStore,
    oauth_client: GoogleOAuthClient,
    user_id: str,
    now: Optional[datetime] = None,
) -> list[tuple[str, RefreshOutcome]]:
    """Refresh every owned account expiring within the hour (or with no expiry).

    Each account is refreshed independently; one failure does not stop the batch.
    """
    now = now or datetime.now(UTC)
    accounts = await store.list_accounts_expiring_before(user_id, now + BATCH_REFRESH_WINDOW)
    # A rollback expires loaded rows, so ids are read up front
    account_ids = [account.id for account in accounts]

    results = []
    for account_id in account_ids:
        try:
            outcome = await refresh_account_token(store, oauth_client, account_id, now=now)
        except Exception as e:
            await store.db.rollback()
            log_and_continue(logger, e, f"Batch refresh failed for account {account_id}", log_level="error")
            outcome = RefreshOutcome(status=RefreshStatus.FAILED, error=REFRESH_ERROR)
        results.append((account_id, outcome))

    logger.info(
        "Batch refresh for user %s: %d/%d usable",
        user_id,
        sum(1 for _, outcome in results if outcome.usable),
        len(results),
    )
    return results


# ============================================================================
# Disconnect
# ============================================================================


async def disconnect_account(
    db: AsyncSession,
    store: CredentialStore,
    oauth_client: GoogleOAuthClient,
    account_id: str,
    owner_id: str,
) -> None:
    """Revoke (best-effort) and delete an owned account.

    Raises:
        NotFoundError: Account absent or not owned by ``owner_id``
    """
    account = await store.get_owned_account(account_id, owner_id)
    if not account:
        raise NotFoundError("Account not found or access denied")
    email = account.email

    tokens = await store.get_tokens(account_id)
    if tokens:
        # Revoking the refresh token ends the whole grant, access tokens included
        revoke = await oauth_client.revoke_token(tokens.refresh_token)
        if not revoke.success:
            logger.warning(
                "Token revocation failed for account %s (%s); deleting anyway",
                account_id,
                revoke.category,
            )
    else:
        logger.warning("No readable tokens for account %s; skipping revocation", account_id)

    if not await store.delete_credential(account_id, owner_id):
        raise NotFoundError("Account not found or access denied")

    await audit.record_event(
        db, owner_id, audit.ACTION_DISCONNECT, gmail_account_id=account_id, details={"email": email}
    )
    logger.info("Disconnected Gmail account %s", account_id)
