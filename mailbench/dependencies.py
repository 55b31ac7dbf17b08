"""Shared FastAPI dependencies for route handlers.

Every external collaborator (database session, encryption service, outbound
HTTP client, Google OAuth client) is provided here so tests can replace it
through ``app.dependency_overrides``.
"""

from typing import AsyncIterator

import httpx
from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from mailbench.config import AppConfig, get_config
from mailbench.db import get_db
from mailbench.services.credential_store import CredentialStore
from mailbench.services.google_oauth import HTTP_TIMEOUT, GoogleOAuthClient
from mailbench.utils.encryption import EncryptionService, get_encryption_service


async def get_http_client() -> AsyncIterator[httpx.AsyncClient]:
    """Outbound HTTP client for Google, Gmail and AI providers."""
    async with httpx.AsyncClient(timeout=HTTP_TIMEOUT) as client:
        yield client


def get_google_oauth_client(
    config: AppConfig = Depends(get_config),
    http_client: httpx.AsyncClient = Depends(get_http_client),
) -> GoogleOAuthClient:
    return GoogleOAuthClient(
        client_id=config.google_client_id,
        client_secret=config.google_client_secret,
        http_client=http_client,
    )


def get_credential_store(
    db: AsyncSession = Depends(get_db),
    encryption: EncryptionService = Depends(get_encryption_service),
) -> CredentialStore:
    return CredentialStore(db, encryption)
