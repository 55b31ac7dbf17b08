"""Stored AI provider API keys, encrypted at rest."""

import logging
from datetime import UTC, datetime
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from mailbench.exceptions import EncryptionError, NotFoundError, ValidationError
from mailbench.models.api_key import PROVIDERS, VALIDATION_STATUSES, StoredApiKey
from mailbench.utils.encryption import EncryptionService

logger = logging.getLogger(__name__)

KEY_NOT_FOUND = "API key not found"


def default_key_name(provider: str) -> str:
    return f"{provider.capitalize()} Key"


def _check_provider(provider: str) -> None:
    if provider not in PROVIDERS:
        raise ValidationError(f"Invalid provider. Must be one of: {', '.join(PROVIDERS)}")


async def _clear_default(db: AsyncSession, user_id: str, provider: str, keep_id: Optional[str] = None) -> None:
    stmt = update(StoredApiKey).where(
        StoredApiKey.user_id == user_id,
        StoredApiKey.provider == provider,
        StoredApiKey.is_default.is_(True),
    )
    if keep_id:
        stmt = stmt.where(StoredApiKey.id != keep_id)
    await db.execute(stmt.values(is_default=False))


async def get_api_key(db: AsyncSession, user_id: str, key_id: str) -> StoredApiKey:
    """Fetch an active key owned by ``user_id``.

    Raises:
        NotFoundError: Key absent, deleted, or owned by someone else
    """
    result = await db.execute(
        select(StoredApiKey).where(
            StoredApiKey.id == key_id,
            StoredApiKey.user_id == user_id,
            StoredApiKey.is_active.is_(True),
        )
    )
    key = result.scalar_one_or_none()
    if not key:
        raise NotFoundError(KEY_NOT_FOUND)
    return key


async def list_api_keys(
    db: AsyncSession, user_id: str, provider: Optional[str] = None
) -> list[StoredApiKey]:
    """Active keys for a user, default first, then newest first."""
    stmt = select(StoredApiKey).where(
        StoredApiKey.user_id == user_id, StoredApiKey.is_active.is_(True)
    )
    if provider:
        stmt = stmt.where(StoredApiKey.provider == provider)

    result = await db.execute(
        stmt.order_by(StoredApiKey.is_default.desc(), StoredApiKey.created_at.desc())
    )
    return list(result.scalars().all())


async def create_api_key(
    db: AsyncSession,
    encryption: EncryptionService,
    user_id: str,
    provider: str,
    api_key: str,
    key_name: Optional[str] = None,
    set_as_default: bool = False,
    validation_status: str = "pending",
    validation_error: Optional[str] = None,
) -> StoredApiKey:
    """Encrypt and store a new key.

    Raises:
        ValidationError: Unknown provider or empty key
    """
    _check_provider(provider)
    if not api_key or not api_key.strip():
        raise ValidationError("API key is required")

    if set_as_default:
        await _clear_default(db, user_id, provider)

    now = datetime.now(UTC)
    key = StoredApiKey(
        user_id=user_id,
        provider=provider,
        key_name=(key_name or "").strip() or default_key_name(provider),
        encrypted_api_key=encryption.encrypt(api_key.strip()),
        is_active=True,
        is_default=set_as_default,
        validation_status=validation_status,
        validation_error=validation_error,
        last_validated_at=now if validation_status == "valid" else None,
    )
    db.add(key)
    await db.commit()
    await db.refresh(key)

    logger.info("Created %s API key %s for user %s", provider, key.id, user_id)
    return key


async def update_api_key(
    db: AsyncSession,
    encryption: EncryptionService,
    user_id: str,
    key_id: str,
    key_name: Optional[str] = None,
    api_key: Optional[str] = None,
    is_default: Optional[bool] = None,
) -> StoredApiKey:
    """Update a key's label, material or default flag.

    New key material resets validation to "pending".

    Raises:
        NotFoundError: Key not owned by ``user_id``
        ValidationError: Empty key material
    """
    key = await get_api_key(db, user_id, key_id)

    if key_name is not None:
        key.key_name = key_name.strip() or default_key_name(key.provider)

    if api_key is not None:
        if not api_key.strip():
            raise ValidationError("API key is required")
        key.encrypted_api_key = encryption.encrypt(api_key.strip())
        key.validation_status = "pending"
        key.validation_error = None
        key.last_validated_at = None

    if is_default is not None:
        if is_default:
            await _clear_default(db, user_id, key.provider, keep_id=key.id)
        key.is_default = is_default

    await db.commit()
    await db.refresh(key)
    return key


async def delete_api_key(db: AsyncSession, user_id: str, key_id: str) -> None:
    """Soft delete: the row stays, marked inactive and no longer default."""
    key = await get_api_key(db, user_id, key_id)
    key.is_active = False
    key.is_default = False
    await db.commit()
    logger.info("Deleted API key %s for user %s", key_id, user_id)


async def record_validation(
    db: AsyncSession,
    user_id: str,
    key_id: str,
    status: str,
    error: Optional[str] = None,
) -> StoredApiKey:
    """Store the outcome of a validation check."""
    if status not in VALIDATION_STATUSES:
        raise ValueError(f"Unknown validation status: {status}")

    key = await get_api_key(db, user_id, key_id)
    key.validation_status = status
    key.validation_error = None if status == "valid" else error
    if status == "valid":
        key.last_validated_at = datetime.now(UTC)

    await db.commit()
    await db.refresh(key)
    return key


def decrypt_api_key(encryption: EncryptionService, key: StoredApiKey) -> Optional[str]:
    try:
        return encryption.decrypt(key.encrypted_api_key)
    except EncryptionError as e:
        logger.error("Cannot decrypt API key %s: %s", key.id, type(e).__name__)
        return None


async def get_user_api_key(
    db: AsyncSession,
    encryption: EncryptionService,
    user_id: str,
    provider: str = "gemini",
) -> Optional[str]:
    """Return the plaintext key to use for ``provider``.

    Priority: the default key, then the newest active key. A key that cannot
    be decrypted is skipped.
    """
    for key in await list_api_keys(db, user_id, provider):
        plaintext = decrypt_api_key(encryption, key)
        if plaintext:
            return plaintext
    return None
