"""AI provider API key endpoints.

Keys are validated against the provider before they are stored and are
encrypted at rest. Responses never include key material.
"""

import logging
from typing import Optional

import httpx
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from mailbench.db import get_db
from mailbench.dependencies import get_http_client
from mailbench.exceptions import ValidationError
from mailbench.models.user import User
from mailbench.schemas.api_key import (
    ApiKeyCreate,
    ApiKeyCreateResponse,
    ApiKeyListResponse,
    ApiKeySchema,
    ApiKeyStatusResponse,
    ApiKeyUpdate,
    ApiKeyUpdateResponse,
    ApiKeyValidationResponse,
    Provider,
)
from mailbench.services import api_keys as api_key_service
from mailbench.services.api_key_validation import validate_api_key
from mailbench.services.auth import get_current_user, optional_user
from mailbench.utils.encryption import EncryptionService, get_encryption_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api-keys", tags=["api-keys"])


@router.get("", response_model=ApiKeyListResponse)
async def list_keys(
    provider: Optional[Provider] = Query(None),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """List the caller's active keys, default first."""
    keys = await api_key_service.list_api_keys(db, user.id, provider)
    return ApiKeyListResponse(keys=[ApiKeySchema.model_validate(key) for key in keys])


@router.post("", response_model=ApiKeyCreateResponse, status_code=status.HTTP_201_CREATED)
async def create_key(
    key_data: ApiKeyCreate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    encryption: EncryptionService = Depends(get_encryption_service),
    http_client: httpx.AsyncClient = Depends(get_http_client),
):
    """Validate a key with its provider, then store it."""
    validation = await validate_api_key(key_data.provider, key_data.api_key, http_client)
    # Inconclusive checks (provider unreachable) store the key as pending
    if validation.status in ("invalid", "expired"):
        raise ValidationError(
            "API key validation failed",
            details={"validation_error": validation.error},
        )

    key = await api_key_service.create_api_key(
        db,
        encryption,
        user.id,
        provider=key_data.provider,
        api_key=key_data.api_key,
        key_name=key_data.key_name,
        set_as_default=key_data.set_as_default,
        validation_status=validation.status,
        validation_error=validation.error,
    )
    return ApiKeyCreateResponse(key=ApiKeySchema.model_validate(key))


@router.get("/status", response_model=ApiKeyStatusResponse)
async def key_status(
    user: Optional[User] = Depends(optional_user),
    db: AsyncSession = Depends(get_db),
):
    """Whether the caller is logged in and has at least one usable key.

    Public: answers ``authenticated: false`` instead of 401.
    """
    if not user:
        return {"authenticated": False, "hasAnyKey": False}

    keys = await api_key_service.list_api_keys(db, user.id)
    return {"authenticated": True, "hasAnyKey": bool(keys)}


@router.put("/{key_id}", response_model=ApiKeyUpdateResponse)
async def update_key(
    key_id: str,
    key_data: ApiKeyUpdate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    encryption: EncryptionService = Depends(get_encryption_service),
):
    """Rename a key, replace its material, or change the default flag."""
    key = await api_key_service.update_api_key(
        db,
        encryption,
        user.id,
        key_id,
        key_name=key_data.key_name,
        api_key=key_data.api_key,
        is_default=key_data.is_default,
    )
    return ApiKeyUpdateResponse(key=ApiKeySchema.model_validate(key))


@router.delete("/{key_id}")
async def delete_key(
    key_id: str,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await api_key_service.delete_api_key(db, user.id, key_id)
    return {"success": True}


@router.post("/{key_id}/validate", response_model=ApiKeyValidationResponse)
async def revalidate_key(
    key_id: str,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    encryption: EncryptionService = Depends(get_encryption_service),
    http_client: httpx.AsyncClient = Depends(get_http_client),
):
    """Re-check a stored key with its provider and record the result."""
    key = await api_key_service.get_api_key(db, user.id, key_id)
    plaintext = api_key_service.decrypt_api_key(encryption, key)
    if plaintext is None:
        key = await api_key_service.record_validation(
            db, user.id, key_id, "invalid", "Stored key cannot be read. Please add it again."
        )
        return ApiKeyValidationResponse(
            valid=False,
            validation_status=key.validation_status,
            validation_error=key.validation_error,
        )

    validation = await validate_api_key(key.provider, plaintext, http_client)
    key = await api_key_service.record_validation(
        db, user.id, key_id, validation.status, validation.error
    )
    return ApiKeyValidationResponse(
        valid=validation.valid,
        validation_status=key.validation_status,
        validation_error=key.validation_error,
    )
