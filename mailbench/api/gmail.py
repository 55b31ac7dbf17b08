"""Gmail connection, sharing and search endpoints.

Provides endpoints under /api/v1/gmail:
- GET /auth-url - Start the Google consent flow (sets the state cookie)
- GET /callback - Google redirect target; stores credentials
- POST /disconnect - Revoke and delete an owned account
- POST /refresh - Refresh one account, or all owned accounts expiring soon
- GET /accounts - Owned and shared accounts
- GET|POST|DELETE /permissions - Manage viewers of an owned account
- POST /search - Search a mailbox and return deliverability metadata
"""

import logging
from typing import Optional
from urllib.parse import urlparse

import httpx
from fastapi import APIRouter, Depends, Query, Request, Response, status
from fastapi.responses import RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession

from mailbench.config import AppConfig, get_config
from mailbench.db import get_db
from mailbench.dependencies import get_credential_store, get_google_oauth_client, get_http_client
from mailbench.exceptions import (
    AuthorizationError,
    NotFoundError,
    UpstreamAuthError,
)
from mailbench.models.user import User
from mailbench.schemas.gmail import (
    AccountRequest,
    AccountsResponse,
    AccountSummary,
    AddViewerRequest,
    AddViewerResponse,
    AuthUrlResponse,
    BatchRefreshResponse,
    MessageSchema,
    RefreshAccountResponse,
    RefreshItem,
    RefreshRequest,
    RemoveViewerRequest,
    SearchRequest,
    SearchResponse,
    SuccessResponse,
    ViewerSchema,
    ViewersResponse,
)
from mailbench.services import audit, gmail_oauth, permissions
from mailbench.services.auth import get_current_user, optional_user
from mailbench.services.credential_store import CredentialStore
from mailbench.services.gmail_client import GmailClient
from mailbench.services.gmail_oauth import RefreshStatus
from mailbench.services.google_oauth import OAUTH_ERROR, GoogleOAuthClient
from mailbench.utils.error_handling import log_and_continue
from mailbench.utils.security import sanitize_log_message

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/gmail", tags=["gmail"])

TOKENS_UNAVAILABLE = "Account not found or tokens unavailable"
RECONNECT_REQUIRED = "Token expired. Please reconnect your Gmail account."


def _origin(request: Request, config: AppConfig) -> str:
    """Public origin for redirects.

    A configured GOOGLE_REDIRECT_URI pins the origin; otherwise the ASGI
    server's view of the request is used, never raw forwarding headers.
    """
    if config.google_redirect_uri:
        configured = urlparse(config.google_redirect_uri)
        return f"{configured.scheme}://{configured.netloc}"
    return str(request.base_url).rstrip("/")


def _redirect(request: Request, config: AppConfig, path: str) -> RedirectResponse:
    response = RedirectResponse(url=f"{_origin(request, config)}{path}", status_code=status.HTTP_302_FOUND)
    # One state per attempt, whatever the outcome
    response.delete_cookie(key=gmail_oauth.STATE_COOKIE_NAME, path="/")
    return response


# ============================================================================
# OAuth Flow
# ============================================================================


@router.get("/auth-url", response_model=AuthUrlResponse)
async def get_auth_url(
    request: Request,
    response: Response,
    user: User = Depends(get_current_user),
    config: AppConfig = Depends(get_config),
    oauth_client: GoogleOAuthClient = Depends(get_google_oauth_client),
):
    """Issue the Google consent URL and bind a fresh state token to the browser."""
    state = gmail_oauth.generate_state_token()
    redirect_uri = gmail_oauth.resolve_redirect_uri(config.google_redirect_uri, _origin(request, config))
    auth_url = oauth_client.build_authorization_url(state, redirect_uri)

    response.set_cookie(
        key=gmail_oauth.STATE_COOKIE_NAME,
        value=state,
        httponly=True,
        secure=config.secure_cookies,
        samesite="lax",
        max_age=gmail_oauth.STATE_COOKIE_MAX_AGE,
        path="/",
    )

    logger.info("Issued Gmail consent URL for user %s", user.id)
    return {"authUrl": auth_url}


@router.get("/callback")
async def oauth_callback(
    request: Request,
    code: Optional[str] = None,
    state: Optional[str] = None,
    error: Optional[str] = None,
    user: Optional[User] = Depends(optional_user),
    db: AsyncSession = Depends(get_db),
    config: AppConfig = Depends(get_config),
    store: CredentialStore = Depends(get_credential_store),
    oauth_client: GoogleOAuthClient = Depends(get_google_oauth_client),
):
    """Handle Google's redirect after consent.

    Always answers with a redirect to the deliverability page carrying either
    ``success=connected`` or an ``error`` category.
    """
    if not user:
        return _redirect(request, config, f"{gmail_oauth.LOGIN_PAGE}?error=unauthorized")

    expected_state = request.cookies.get(gmail_oauth.STATE_COOKIE_NAME)
    redirect_uri = gmail_oauth.resolve_redirect_uri(config.google_redirect_uri, _origin(request, config))

    try:
        result = await gmail_oauth.complete_connection(
            db,
            oauth_client,
            store,
            user_id=user.id,
            code=code,
            state=state,
            expected_state=expected_state,
            redirect_uri=redirect_uri,
            provider_error=error,
        )
    except Exception as e:
        # The browser still gets a redirect and the state cookie is cleared
        await db.rollback()
        log_and_continue(logger, e, f"Gmail callback failed for user {user.id}", log_level="error")
        return _redirect(
            request, config, gmail_oauth.result_redirect_path(False, OAUTH_ERROR)
        )

    if not result.success:
        logger.warning("Gmail connection failed for user %s: %s", user.id, result.error)

    return _redirect(request, config, result.redirect_path)


@router.post("/disconnect", response_model=SuccessResponse)
async def disconnect(
    disconnect_data: AccountRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    store: CredentialStore = Depends(get_credential_store),
    oauth_client: GoogleOAuthClient = Depends(get_google_oauth_client),
):
    """Revoke (best-effort) and delete a connected account the caller owns."""
    await gmail_oauth.disconnect_account(db, store, oauth_client, disconnect_data.account_id, user.id)
    return {"success": True}


@router.post("/refresh", response_model=RefreshAccountResponse | BatchRefreshResponse)
async def refresh(
    refresh_data: Optional[RefreshRequest] = None,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    store: CredentialStore = Depends(get_credential_store),
    oauth_client: GoogleOAuthClient = Depends(get_google_oauth_client),
):
    """Refresh access tokens.

    With ``accountId``: refresh that account (owner or viewer). Without it:
    refresh every account the caller owns that expires within the hour.
    """
    account_id = refresh_data.account_id if refresh_data else None

    if account_id:
        if not await permissions.check_viewer_permission(db, account_id, user.id):
            raise NotFoundError(permissions.ACCOUNT_NOT_FOUND)

        outcome = await gmail_oauth.refresh_account_token(store, oauth_client, account_id)
        if outcome.status == RefreshStatus.MISSING:
            raise NotFoundError(TOKENS_UNAVAILABLE)
        if outcome.status == RefreshStatus.FAILED:
            raise UpstreamAuthError("Failed to refresh token. Please reconnect your Gmail account.")

        if outcome.status == RefreshStatus.REFRESHED:
            await audit.record_event(db, user.id, audit.ACTION_REFRESH, gmail_account_id=account_id)
        return RefreshAccountResponse(account_id=account_id)

    results = await gmail_oauth.refresh_expiring_accounts(store, oauth_client, user.id)
    items = [
        RefreshItem(
            account_id=result_account_id,
            success=outcome.usable,
            status=outcome.status.value,
            error=outcome.error,
        )
        for result_account_id, outcome in results
    ]
    refreshed = sum(1 for item in items if item.success)

    if results:
        await audit.record_event(
            db,
            user.id,
            audit.ACTION_REFRESH,
            details={"refreshed": refreshed, "total": len(items)},
        )

    return BatchRefreshResponse(
        refreshed=refreshed,
        failed=len(items) - refreshed,
        total=len(items),
        results=items,
    )


# ============================================================================
# Accounts and Sharing
# ============================================================================


@router.get("/accounts", response_model=AccountsResponse)
async def list_accounts(
    user: User = Depends(get_current_user),
    store: CredentialStore = Depends(get_credential_store),
):
    """Accounts the caller owns and accounts shared with them."""
    owned = await store.list_owned_accounts(user.id)
    shared = await store.list_shared_accounts(user.id)
    return AccountsResponse(
        owned=[AccountSummary.model_validate(account) for account in owned],
        shared=[AccountSummary.model_validate(account) for account in shared],
    )


@router.get("/permissions", response_model=ViewersResponse)
async def list_viewers(
    account_id: str = Query(..., min_length=1, alias="accountId"),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """List viewers of an account the caller owns."""
    viewers = await permissions.get_account_viewers(db, account_id, user.id)
    return ViewersResponse(viewers=[ViewerSchema.model_validate(viewer) for viewer in viewers])


@router.post("/permissions", response_model=AddViewerResponse)
async def add_viewer(
    viewer_data: AddViewerRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Share an owned account with another registered user, by email."""
    _, viewer = await permissions.add_viewer_permission(
        db, viewer_data.account_id, user.id, viewer_data.viewer_email
    )
    await audit.record_event(
        db,
        user.id,
        audit.ACTION_SHARE,
        gmail_account_id=viewer_data.account_id,
        details={"viewer_user_id": viewer.id},
    )
    return AddViewerResponse(
        viewer=ViewerSchema(id=viewer.id, email=viewer.email, name=viewer.display_name or viewer.email)
    )


@router.delete("/permissions", response_model=SuccessResponse)
async def remove_viewer(
    viewer_data: RemoveViewerRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Revoke a viewer's access to an owned account."""
    await permissions.remove_viewer_permission(
        db, viewer_data.account_id, user.id, viewer_data.viewer_id
    )
    await audit.record_event(
        db,
        user.id,
        audit.ACTION_UNSHARE,
        gmail_account_id=viewer_data.account_id,
        details={"viewer_user_id": viewer_data.viewer_id},
    )
    return {"success": True}


# ============================================================================
# Search
# ============================================================================


@router.post("/search", response_model=SearchResponse)
async def search_messages(
    search_data: SearchRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    store: CredentialStore = Depends(get_credential_store),
    oauth_client: GoogleOAuthClient = Depends(get_google_oauth_client),
    http_client: httpx.AsyncClient = Depends(get_http_client),
):
    """Search a mailbox the caller owns or views.

    Returns message metadata only: subject, sender, labels, date, and the
    sending IP and domain derived from the headers.
    """
    account_id = search_data.account_id
    if not await permissions.check_viewer_permission(db, account_id, user.id):
        raise AuthorizationError("Access denied")

    outcome = await gmail_oauth.refresh_account_token(store, oauth_client, account_id)
    if outcome.status == RefreshStatus.MISSING:
        raise NotFoundError(TOKENS_UNAVAILABLE)
    if outcome.status == RefreshStatus.FAILED:
        raise UpstreamAuthError(RECONNECT_REQUIRED)

    client = GmailClient(outcome.access_token, http_client)
    result = await client.search_and_get_messages(
        search_data.query,
        label=search_data.label,
        max_results=search_data.max_results,
        page_token=search_data.page_token,
    )

    logger.info(
        "Search on account %s by user %s returned %d messages (query=%s)",
        account_id,
        user.id,
        len(result.messages),
        sanitize_log_message(search_data.query[:100]),
    )
    await audit.record_event(
        db,
        user.id,
        audit.ACTION_SEARCH,
        gmail_account_id=account_id,
        details={
            "query": search_data.query,
            "label": search_data.label,
            "resultCount": len(result.messages),
        },
    )

    return SearchResponse(
        messages=[MessageSchema.model_validate(message) for message in result.messages],
        next_page_token=result.next_page_token,
    )
