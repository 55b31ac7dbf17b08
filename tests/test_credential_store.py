"""Tests for the credential store (mailbench/services/credential_store.py).

Tests encrypted storage of connected Gmail accounts:
- Tokens are encrypted at rest and decrypted on read
- Reconnecting the same address updates the record in place
- Undecryptable tokens read as "unavailable"
- Owner-scoped delete removes permission grants
- Owned/shared listings and expiry selection
"""

from datetime import UTC, datetime, timedelta

from sqlalchemy import func, select

from mailbench.models.account_permission import AccountPermission
from mailbench.models.connected_account import ConnectedAccount
from mailbench.services.credential_store import CredentialStore
from mailbench.utils.encryption import EncryptionService


class TestStoreTokens:
    """Test suite for CredentialStore.store_tokens()."""

    async def test_tokens_encrypted_at_rest(self, db, store, owner):
        """Test stored token columns never contain the plaintext."""
        account = await store.store_tokens(
            owner.id, "inbox@gmail.com", "ya29.access", "1//refresh", datetime.now(UTC)
        )

        row = (await db.execute(select(ConnectedAccount).where(ConnectedAccount.id == account.id))).scalar_one()
        assert "ya29.access" not in row.access_token
        assert "1//refresh" not in row.refresh_token
        assert row.access_token.count(":") == 3

    async def test_get_tokens_roundtrip(self, store, owner):
        """Test decrypted tokens match what was stored."""
        expires_at = datetime.now(UTC) + timedelta(hours=1)
        account = await store.store_tokens(
            owner.id, "inbox@gmail.com", "ya29.access", "1//refresh", expires_at
        )

        tokens = await store.get_tokens(account.id)

        assert tokens.access_token == "ya29.access"
        assert tokens.refresh_token == "1//refresh"
        assert tokens.user_id == owner.id
        assert tokens.email == "inbox@gmail.com"
        assert tokens.expires_at.tzinfo is not None
        assert abs((tokens.expires_at - expires_at).total_seconds()) < 1

    async def test_repr_hides_tokens(self, store, owner):
        """Test decrypted tokens never appear in a repr (and so in logs)."""
        account = await store.store_tokens(
            owner.id, "inbox@gmail.com", "ya29.access", "1//refresh", None
        )
        tokens = await store.get_tokens(account.id)

        assert "ya29.access" not in repr(tokens)
        assert "1//refresh" not in repr(tokens)

    async def test_reconnect_updates_in_place(self, db, store, owner, viewer):
        """Test reconnecting the same address keeps the id and existing grants."""
        first = await store.store_tokens(owner.id, "inbox@gmail.com", "old-access", "old-refresh", None)
        db.add(AccountPermission(gmail_account_id=first.id, viewer_user_id=viewer.id))
        await db.commit()

        second = await store.store_tokens(
            owner.id, "inbox@gmail.com", "new-access", "new-refresh", datetime.now(UTC)
        )

        assert second.id == first.id
        count = (await db.execute(select(func.count()).select_from(ConnectedAccount))).scalar()
        assert count == 1

        tokens = await store.get_tokens(first.id)
        assert tokens.access_token == "new-access"
        assert tokens.refresh_token == "new-refresh"

        grants = (await db.execute(select(AccountPermission))).scalars().all()
        assert len(grants) == 1

    async def test_same_address_for_different_users(self, store, owner, viewer):
        """Test two users may connect the same Gmail address independently."""
        first = await store.store_tokens(owner.id, "shared@gmail.com", "a1", "r1", None)
        second = await store.store_tokens(viewer.id, "shared@gmail.com", "a2", "r2", None)

        assert first.id != second.id


class TestGetTokens:
    """Test reading tokens back."""

    async def test_missing_account_returns_none(self, store):
        """Test an unknown id reads as unavailable."""
        assert await store.get_tokens("does-not-exist") is None

    async def test_undecryptable_tokens_return_none(self, db, owner, make_account):
        """Test tokens written under another secret read as unavailable."""
        account = await make_account(owner)
        rotated = CredentialStore(db, EncryptionService(master_secret="rotated-secret"))

        assert await rotated.get_tokens(account.id) is None

    async def test_corrupted_envelope_returns_none(self, db, store, owner, make_account):
        """Test a malformed stored envelope reads as unavailable."""
        account = await make_account(owner)
        account.access_token = "corrupted"
        await db.commit()

        assert await store.get_tokens(account.id) is None


class TestUpdateAccessToken:
    """Test persisting refreshed tokens."""

    async def test_update_access_token_keeps_refresh_token(self, store, owner, make_account):
        """Test a refresh without rotation keeps the stored refresh token."""
        account = await make_account(owner, refresh_token="1//original")
        new_expiry = datetime.now(UTC) + timedelta(hours=2)

        await store.update_access_token(account.id, "ya29.new", new_expiry)

        tokens = await store.get_tokens(account.id)
        assert tokens.access_token == "ya29.new"
        assert tokens.refresh_token == "1//original"
        assert abs((tokens.expires_at - new_expiry).total_seconds()) < 1

    async def test_update_access_token_rotates_refresh_token(self, store, owner, make_account):
        """Test a rotated refresh token replaces the stored one."""
        account = await make_account(owner, refresh_token="1//original")

        await store.update_access_token(account.id, "ya29.new", None, refresh_token="1//rotated")

        tokens = await store.get_tokens(account.id)
        assert tokens.refresh_token == "1//rotated"


class TestDeleteCredential:
    """Test owner-scoped deletion."""

    async def test_owner_can_delete(self, db, store, owner, viewer, make_account):
        """Test deleting removes the account and its grants."""
        account = await make_account(owner)
        db.add(AccountPermission(gmail_account_id=account.id, viewer_user_id=viewer.id))
        await db.commit()

        assert await store.delete_credential(account.id, owner.id) is True

        assert await store.get_account(account.id) is None
        grants = (await db.execute(select(AccountPermission))).scalars().all()
        assert grants == []

    async def test_non_owner_cannot_delete(self, store, owner, viewer, make_account):
        """Test another user's delete is a no-op reported as not found."""
        account = await make_account(owner)

        assert await store.delete_credential(account.id, viewer.id) is False
        assert await store.get_account(account.id) is not None

    async def test_delete_unknown_account(self, store, owner):
        """Test deleting an unknown id reports not found."""
        assert await store.delete_credential("missing", owner.id) is False


class TestListings:
    """Test owned/shared listings and expiry selection."""

    async def test_owned_and_shared(self, db, store, owner, viewer, make_account):
        """Test owned accounts and accounts shared with a viewer."""
        shared = await make_account(owner, email="team@gmail.com")
        await make_account(owner, email="private@gmail.com")
        db.add(AccountPermission(gmail_account_id=shared.id, viewer_user_id=viewer.id))
        await db.commit()

        owned = await store.list_owned_accounts(owner.id)
        assert {account.email for account in owned} == {"team@gmail.com", "private@gmail.com"}

        viewer_shared = await store.list_shared_accounts(viewer.id)
        assert [account.id for account in viewer_shared] == [shared.id]
        assert await store.list_owned_accounts(viewer.id) == []

    async def test_get_owned_account_scoped_to_owner(self, store, owner, viewer, make_account):
        """Test ownership lookup hides other users' accounts."""
        account = await make_account(owner)

        assert (await store.get_owned_account(account.id, owner.id)).id == account.id
        assert await store.get_owned_account(account.id, viewer.id) is None

    async def test_accounts_expiring_before(self, store, owner, make_account):
        """Test selection of expiring and expiry-less accounts."""
        soon = await make_account(owner, email="soon@gmail.com", expires_in=timedelta(minutes=30))
        later = await make_account(owner, email="later@gmail.com", expires_in=timedelta(hours=5))
        unknown = await make_account(owner, email="unknown@gmail.com", expires_in=None)

        cutoff = datetime.now(UTC) + timedelta(hours=1)
        expiring = await store.list_accounts_expiring_before(owner.id, cutoff)

        ids = {account.id for account in expiring}
        assert soon.id in ids
        assert unknown.id in ids
        assert later.id not in ids
