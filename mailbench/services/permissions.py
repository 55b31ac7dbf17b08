"""Owner/viewer sharing for connected Gmail accounts.

Only the owner of an account can grant, revoke or list viewer access.
Every ownership check fails closed with the same message whether the
account is absent or belongs to someone else.
"""

import logging
import re
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from mailbench.db import dialect_insert
from mailbench.exceptions import NotFoundError, ValidationError
from mailbench.models.account_permission import AccountPermission
from mailbench.models.connected_account import ConnectedAccount
from mailbench.models.user import User
from mailbench.services.auth import get_user_by_email, get_users_by_ids, normalize_email
from mailbench.utils.security import mask_email

logger = logging.getLogger(__name__)

ACCOUNT_NOT_FOUND = "Account not found or access denied"
USER_NOT_REGISTERED = "User not found. The email address must be registered in the system."
SELF_SHARE = "You cannot share an account with yourself."

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


@dataclass(frozen=True)
class ViewerIdentity:
    """A user with viewer access, as shown to the account owner."""

    id: str
    email: str
    name: str
    granted_at: Optional[datetime] = None

    @classmethod
    def placeholder(cls, user_id: str, granted_at: Optional[datetime] = None) -> "ViewerIdentity":
        """Identity for a grant whose user row no longer resolves."""
        short_id = user_id[:8]
        return cls(
            id=user_id,
            email=f"user-{short_id}@example.com",
            name=f"User {short_id}",
            granted_at=granted_at,
        )


async def _require_owned_account(
    db: AsyncSession, account_id: str, owner_id: str
) -> ConnectedAccount:
    result = await db.execute(
        select(ConnectedAccount).where(
            ConnectedAccount.id == account_id, ConnectedAccount.user_id == owner_id
        )
    )
    account = result.scalar_one_or_none()
    if not account:
        raise NotFoundError(ACCOUNT_NOT_FOUND)
    return account


async def check_viewer_permission(db: AsyncSession, account_id: str, user_id: str) -> bool:
    """Return True if ``user_id`` owns the account or has been granted access."""
    result = await db.execute(
        select(ConnectedAccount.user_id).where(ConnectedAccount.id == account_id)
    )
    owner_id = result.scalar_one_or_none()
    if owner_id is None:
        return False
    if owner_id == user_id:
        return True

    result = await db.execute(
        select(AccountPermission.id).where(
            AccountPermission.gmail_account_id == account_id,
            AccountPermission.viewer_user_id == user_id,
        )
    )
    return result.scalar_one_or_none() is not None


async def add_viewer_permission(
    db: AsyncSession, account_id: str, owner_id: str, viewer_email: str
) -> tuple[AccountPermission, User]:
    """Grant a registered user read access to an owned account.

    Granting the same viewer twice succeeds and leaves a single grant.

    Raises:
        NotFoundError: Account not owned by ``owner_id``, or email not registered
        ValidationError: Malformed email or an attempt to share with yourself
    """
    await _require_owned_account(db, account_id, owner_id)

    email = normalize_email(viewer_email or "")
    if not EMAIL_PATTERN.match(email):
        raise ValidationError("Invalid email format")

    viewer = await get_user_by_email(db, email)
    if not viewer:
        logger.info("Share target %s is not a registered user", mask_email(email))
        raise NotFoundError(USER_NOT_REGISTERED)

    if viewer.id == owner_id:
        raise ValidationError(SELF_SHARE)

    stmt = (
        dialect_insert(db, AccountPermission.__table__)
        .values(id=str(uuid.uuid4()), gmail_account_id=account_id, viewer_user_id=viewer.id)
        .on_conflict_do_nothing(index_elements=["gmail_account_id", "viewer_user_id"])
    )
    await db.execute(stmt)
    await db.commit()

    result = await db.execute(
        select(AccountPermission).where(
            AccountPermission.gmail_account_id == account_id,
            AccountPermission.viewer_user_id == viewer.id,
        )
    )
    permission = result.scalar_one()

    logger.info("Account %s shared with user %s", account_id, viewer.id)
    return permission, viewer


async def remove_viewer_permission(
    db: AsyncSession, account_id: str, owner_id: str, viewer_user_id: str
) -> None:
    """Revoke a viewer's access. Removing a grant that does not exist is a no-op.

    Raises:
        NotFoundError: Account not owned by ``owner_id``
    """
    await _require_owned_account(db, account_id, owner_id)

    await db.execute(
        delete(AccountPermission).where(
            AccountPermission.gmail_account_id == account_id,
            AccountPermission.viewer_user_id == viewer_user_id,
        )
    )
    await db.commit()
    logger.info("Viewer %s removed from account %s", viewer_user_id, account_id)


async def get_account_viewers(
    db: AsyncSession, account_id: str, owner_id: str
) -> list[ViewerIdentity]:
    """List viewers of an owned account with their identities.

    Raises:
        NotFoundError: Account not owned by ``owner_id``
    """
    await _require_owned_account(db, account_id, owner_id)

    result = await db.execute(
        select(AccountPermission)
        .where(AccountPermission.gmail_account_id == account_id)
        .order_by(AccountPermission.created_at)
    )
    grants = list(result.scalars().all())

    users = await get_users_by_ids(db, [grant.viewer_user_id for grant in grants])

    viewers = []
    for grant in grants:
        user = users.get(grant.viewer_user_id)
        if user is None:
            logger.warning("Viewer %s of account %s has no user record", grant.viewer_user_id, account_id)
            viewers.append(ViewerIdentity.placeholder(grant.viewer_user_id, grant.created_at))
        else:
            viewers.append(
                ViewerIdentity(
                    id=user.id,
                    email=user.email,
                    name=user.display_name or user.email,
                    granted_at=grant.created_at,
                )
            )
    return viewers
