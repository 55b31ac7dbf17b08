"""Tests for encryption service (mailbench/utils/encryption.py).

Tests the AES-256-GCM envelope used for OAuth tokens and API keys:
- Encryption/decryption roundtrips
- Fresh salt and IV per encryption
- Envelope format (salt:iv:tag:ciphertext)
- Tamper and wrong-key detection
- Malformed envelope detection
- Secret handling per environment
"""

import base64

import pytest

from mailbench.exceptions import ConfigurationError, EncryptionError, FormatError, IntegrityError
from mailbench.utils.encryption import (
    IV_LENGTH,
    SALT_LENGTH,
    TAG_LENGTH,
    EncryptionService,
)


class TestEncryptionService:
    """Test suite for EncryptionService class."""

    def test_encrypt_decrypt_roundtrip(self, encryption):
        """Test encryption/decryption returns original value."""
        plaintext = "ya29.a0AfH6SMBx-access-token"

        envelope = encryption.encrypt(plaintext)

        assert envelope != plaintext
        assert plaintext not in envelope
        assert encryption.decrypt(envelope) == plaintext

    def test_encrypt_unicode_and_empty(self, encryption):
        """Test non-ASCII and empty strings survive a roundtrip."""
        for plaintext in ["", "pässwörd-ключ-🔑"]:
            assert encryption.decrypt(encryption.encrypt(plaintext)) == plaintext

    def test_each_encryption_is_unique(self, encryption):
        """Test the same plaintext never produces the same envelope."""
        first = encryption.encrypt("same-token")
        second = encryption.encrypt("same-token")

        assert first != second
        assert first.split(":")[0] != second.split(":")[0]  # salt
        assert first.split(":")[1] != second.split(":")[1]  # iv

    def test_envelope_format(self, encryption):
        """Test envelope has four base64 segments of the expected sizes."""
        envelope = encryption.encrypt("1//0gRefreshToken")

        salt, iv, tag, ciphertext = (base64.b64decode(part) for part in envelope.split(":"))

        assert len(salt) == SALT_LENGTH
        assert len(iv) == IV_LENGTH
        assert len(tag) == TAG_LENGTH
        assert len(ciphertext) == len("1//0gRefreshToken")

    def test_decrypt_with_different_secret_fails(self, encryption):
        """Test an envelope cannot be opened with another secret."""
        envelope = encryption.encrypt("secret-value")
        other = EncryptionService(master_secret="another-secret")

        with pytest.raises(IntegrityError):
            other.decrypt(envelope)

    def test_tampered_ciphertext_detected(self, encryption):
        """Test flipping a ciphertext bit fails authentication."""
        salt, iv, tag, ciphertext = encryption.encrypt("secret-value").split(":")
        raw = bytearray(base64.b64decode(ciphertext))
        raw[0] ^= 0x01
        tampered = ":".join([salt, iv, tag, base64.b64encode(bytes(raw)).decode()])

        with pytest.raises(IntegrityError):
            encryption.decrypt(tampered)

    def test_tampered_tag_detected(self, encryption):
        """Test replacing the tag fails authentication."""
        salt, iv, _, ciphertext = encryption.encrypt("secret-value").split(":")
        forged_tag = base64.b64encode(b"\x00" * TAG_LENGTH).decode()

        with pytest.raises(IntegrityError):
            encryption.decrypt(":".join([salt, iv, forged_tag, ciphertext]))

    @pytest.mark.parametrize(
        "envelope",
        [
            "not-an-envelope",
            "a:b:c",
            "a:b:c:d:e",
            "!!!:???:###:$$$",
        ],
    )
    def test_malformed_envelope_raises_format_error(self, encryption, envelope):
        """Test malformed envelopes are rejected before decryption."""
        with pytest.raises(FormatError):
            encryption.decrypt(envelope)

    def test_wrong_segment_length_raises_format_error(self, encryption):
        """Test a short salt is treated as a format error."""
        _, iv, tag, ciphertext = encryption.encrypt("secret-value").split(":")
        short_salt = base64.b64encode(b"\x01" * 8).decode()

        with pytest.raises(FormatError):
            encryption.decrypt(":".join([short_salt, iv, tag, ciphertext]))

    def test_envelope_errors_share_base_class(self):
        """Test callers can catch every envelope failure at once."""
        assert issubclass(FormatError, EncryptionError)
        assert issubclass(IntegrityError, EncryptionError)

    def test_none_values_rejected(self, encryption):
        """Test None cannot be encrypted or decrypted."""
        with pytest.raises(ValueError):
            encryption.encrypt(None)
        with pytest.raises(ValueError):
            encryption.decrypt(None)


class TestSecretConfiguration:
    """Test master secret handling per environment."""

    def test_missing_secret_in_production_raises(self):
        """Test production refuses to start without a secret."""
        with pytest.raises(ConfigurationError) as exc_info:
            EncryptionService(master_secret=None, environment="production")

        assert "API_KEY_ENCRYPTION_SECRET" in exc_info.value.message

    def test_missing_secret_in_development_uses_default(self, caplog):
        """Test development falls back to the default secret with a warning."""
        service = EncryptionService(master_secret=None, environment="development")

        assert service.decrypt(service.encrypt("value")) == "value"
        assert "NOT SECURE FOR PRODUCTION" in caplog.text

    def test_same_secret_decrypts_across_instances(self, encryption):
        """Test a restarted process with the same secret can read old envelopes."""
        envelope = encryption.encrypt("persisted-token")
        restarted = EncryptionService(master_secret="test-encryption-secret")

        assert restarted.decrypt(envelope) == "persisted-token"
