"""Tests for the authentication service (mailbench/services/auth.py).

Tests the user directory and session tokens:
- Argon2 password hashing and verification
- JWT creation, expiry and tamper detection
- Registration and login
- Email normalization for directory lookups
"""

from datetime import timedelta

import pytest
from fastapi import HTTPException

from mailbench.exceptions import ConflictError
from mailbench.services.auth import (
    authenticate_user,
    create_access_token,
    decode_token,
    get_user_by_email,
    get_users_by_ids,
    hash_password,
    normalize_email,
    register_user,
    verify_password,
)


class TestPasswordHashing:
    """Test Argon2 password operations."""

    def test_hash_and_verify(self):
        password_hash = hash_password("Password123")

        assert password_hash.startswith("$argon2id$")
        assert verify_password("Password123", password_hash)
        assert not verify_password("Password124", password_hash)

    def test_verify_against_garbage_hash(self):
        assert not verify_password("Password123", "not-a-hash")


class TestTokens:
    """Test JWT creation and validation."""

    def test_roundtrip(self):
        token = create_access_token({"sub": "user-1"})

        payload = decode_token(token)

        assert payload["sub"] == "user-1"
        assert payload["exp"] > payload["iat"]

    def test_expired_token_rejected(self):
        token = create_access_token({"sub": "user-1"}, expires_delta=timedelta(seconds=-10))

        with pytest.raises(HTTPException) as exc_info:
            decode_token(token)

        assert exc_info.value.status_code == 401

    def test_tampered_token_rejected(self):
        header, payload, signature = create_access_token({"sub": "user-1"}).split(".")
        forged = ".".join([header, payload, signature[:-2] + ("AA" if signature[-2:] != "AA" else "BB")])

        with pytest.raises(HTTPException):
            decode_token(forged)


class TestUserDirectory:
    """Test registration, login and lookups."""

    def test_normalize_email(self):
        assert normalize_email("  Jane.Doe@Example.COM ") == "jane.doe@example.com"

    async def test_register_normalizes_email(self, db):
        user = await register_user(db, " New.User@Example.com ", "Password123", display_name=" New ")

        assert user.email == "new.user@example.com"
        assert user.display_name == "New"
        assert user.password_hash != "Password123"
        assert (await get_user_by_email(db, "NEW.USER@example.com")).id == user.id

    async def test_duplicate_email_conflicts(self, db, owner):
        with pytest.raises(ConflictError):
            await register_user(db, "OWNER@example.com", "Password123")

    async def test_authenticate(self, db, owner):
        user = await authenticate_user(db, "owner@example.com", "Password123")

        assert user.id == owner.id
        assert user.last_login is not None

    async def test_authenticate_wrong_password(self, db, owner):
        assert await authenticate_user(db, "owner@example.com", "wrong-password1") is None

    async def test_authenticate_unknown_email(self, db):
        assert await authenticate_user(db, "ghost@example.com", "Password123") is None

    async def test_get_users_by_ids(self, db, owner, viewer):
        users = await get_users_by_ids(db, [owner.id, viewer.id, "missing"])

        assert set(users) == {owner.id, viewer.id}
        assert await get_users_by_ids(db, []) == {}
