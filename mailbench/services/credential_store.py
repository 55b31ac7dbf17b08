"""Encrypted storage for connected Gmail account credentials.

Tokens are encrypted before every write and decrypted on every read; there
is no in-process cache. Owner-scoped operations take the caller's user id
and behave as "not found" for rows the caller does not own.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Optional

from sqlalchemy import delete, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from mailbench.db import dialect_insert
from mailbench.exceptions import EncryptionError
from mailbench.models.account_permission import AccountPermission
from mailbench.models.connected_account import ConnectedAccount
from mailbench.utils.encryption import EncryptionService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DecryptedTokens:
    """Plaintext tokens for one connected account (never serialized)."""

    account_id: str
    user_id: str
    email: str
    access_token: str
    refresh_token: str
    expires_at: Optional[datetime]

    def __repr__(self):
        return f"<DecryptedTokens(account_id={self.account_id})>"


class CredentialStore:
    """Read and write connected-account credentials.

    Args:
        db: Database session
        encryption: Envelope service used for both tokens
    """

    def __init__(self, db: AsyncSession, encryption: EncryptionService):
        self.db = db
        self.encryption = encryption

    async def store_tokens(
        self,
        user_id: str,
        email: str,
        access_token: str,
        refresh_token: str,
        expires_at: Optional[datetime],
    ) -> ConnectedAccount:
        """Create or update the credential record for (user_id, email).

        Reconnecting the same Gmail address replaces the stored tokens in
        place and keeps the record id, so existing permission grants survive.
        """
        values = {
            "user_id": user_id,
            "email": email,
            "access_token": self.encryption.encrypt(access_token),
            "refresh_token": self.encryption.encrypt(refresh_token),
            "token_expires_at": expires_at,
        }
        stmt = dialect_insert(self.db, ConnectedAccount.__table__).values(
            id=str(uuid.uuid4()), **values
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["user_id", "email"],
            set_={
                "access_token": stmt.excluded.access_token,
                "refresh_token": stmt.excluded.refresh_token,
                "token_expires_at": stmt.excluded.token_expires_at,
                "updated_at": datetime.now(UTC),
            },
        )
        await self.db.execute(stmt)
        await self.db.commit()

        result = await self.db.execute(
            select(ConnectedAccount).where(
                ConnectedAccount.user_id == user_id, ConnectedAccount.email == email
            )
        )
        account = result.scalar_one()
        # Upsert bypassed the identity map; reload persisted values
        await self.db.refresh(account)
        logger.info("Stored credentials for account %s", account.id)
        return account

    async def get_account(self, account_id: str) -> Optional[ConnectedAccount]:
        result = await self.db.execute(
            select(ConnectedAccount).where(ConnectedAccount.id == account_id)
        )
        return result.scalar_one_or_none()

    async def get_tokens(self, account_id: str) -> Optional[DecryptedTokens]:
        """Load and decrypt the tokens for an account.

        Returns:
            DecryptedTokens, or None if the account is absent or its tokens
            cannot be decrypted (the account then needs reconnecting)
        """
        account = await self.get_account(account_id)
        if not account:
            return None

        try:
            access_token = self.encryption.decrypt(account.access_token)
            refresh_token = self.encryption.decrypt(account.refresh_token)
        except EncryptionError as e:
            logger.error("Cannot decrypt tokens for account %s: %s", account_id, type(e).__name__)
            return None

        return DecryptedTokens(
            account_id=account.id,
            user_id=account.user_id,
            email=account.email,
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=account.expires_at_utc,
        )

    async def update_access_token(
        self,
        account_id: str,
        access_token: str,
        expires_at: Optional[datetime],
        refresh_token: Optional[str] = None,
    ) -> None:
        """Persist a refreshed access token (and a rotated refresh token, if any)."""
        values = {
            "access_token": self.encryption.encrypt(access_token),
            "token_expires_at": expires_at,
            "updated_at": datetime.now(UTC),
        }
        if refresh_token:
            values["refresh_token"] = self.encryption.encrypt(refresh_token)

        await self.db.execute(
            update(ConnectedAccount).where(ConnectedAccount.id == account_id).values(**values)
        )
        await self.db.commit()

    async def get_owned_account(self, account_id: str, owner_id: str) -> Optional[ConnectedAccount]:
        """Return the account only if ``owner_id`` owns it."""
        result = await self.db.execute(
            select(ConnectedAccount).where(
                ConnectedAccount.id == account_id, ConnectedAccount.user_id == owner_id
            )
        )
        return result.scalar_one_or_none()

    async def delete_credential(self, account_id: str, owner_id: str) -> bool:
        """Delete an owned account and its permission grants.

        Returns:
            False if the account does not exist or is not owned by ``owner_id``
        """
        account = await self.get_owned_account(account_id, owner_id)
        if not account:
            return False

        # Grants are removed explicitly as SQLite may run without FK enforcement
        await self.db.execute(
            delete(AccountPermission).where(AccountPermission.gmail_account_id == account_id)
        )
        await self.db.execute(
            delete(ConnectedAccount).where(
                ConnectedAccount.id == account_id, ConnectedAccount.user_id == owner_id
            )
        )
        await self.db.commit()
        logger.info("Deleted credentials for account %s", account_id)
        return True

    async def list_owned_accounts(self, user_id: str) -> list[ConnectedAccount]:
        result = await self.db.execute(
            select(ConnectedAccount)
            .where(ConnectedAccount.user_id == user_id)
            .order_by(ConnectedAccount.created_at.desc())
        )
        return list(result.scalars().all())

    async def list_shared_accounts(self, user_id: str) -> list[ConnectedAccount]:
        """Accounts other users have shared with ``user_id``."""
        result = await self.db.execute(
            select(ConnectedAccount)
            .join(AccountPermission, AccountPermission.gmail_account_id == ConnectedAccount.id)
            .where(AccountPermission.viewer_user_id == user_id)
            .order_by(ConnectedAccount.created_at.desc())
        )
        return list(result.scalars().all())

    async def list_accounts_expiring_before(
        self, user_id: str, cutoff: datetime
    ) -> list[ConnectedAccount]:
        """Owned accounts whose token expires before ``cutoff`` or has no recorded expiry."""
        result = await self.db.execute(
            select(ConnectedAccount).where(
                ConnectedAccount.user_id == user_id,
                or_(
                    ConnectedAccount.token_expires_at.is_(None),
                    ConnectedAccount.token_expires_at <= cutoff,
                ),
            )
        )
        return list(result.scalars().all())
