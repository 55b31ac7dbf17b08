"""Encryption utilities for secrets stored at rest.

Protects sensitive database fields such as:
- Gmail OAuth access and refresh tokens
- User-supplied AI provider API keys (Gemini, OpenAI, Anthropic)

Envelope format (all segments standard base64, joined with ':'):
    salt:iv:tag:ciphertext

Key schedule:
- The master secret is stretched once with scrypt into a 32-byte base key
- Every encryption draws a fresh 64-byte salt and derives a per-operation
  key from the base key with PBKDF2-HMAC-SHA256 (100,000 iterations)
- AES-256-GCM with a 16-byte random IV and 16-byte authentication tag
"""

import base64
import binascii
import logging
import os
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

from mailbench.config import AppConfig, get_config
from mailbench.exceptions import ConfigurationError, FormatError, IntegrityError

logger = logging.getLogger(__name__)

IV_LENGTH = 16
SALT_LENGTH = 64
TAG_LENGTH = 16
KEY_LENGTH = 32
ITERATIONS = 100_000
SEPARATOR = ":"

# Fixed salt for stretching the master secret into the base key
BASE_KEY_SALT = b"api-key-encryption-salt"
DEVELOPMENT_SECRET = "default-dev-key-change-in-production"


def _derive_base_key(master_secret: str) -> bytes:
    kdf = Scrypt(salt=BASE_KEY_SALT, length=KEY_LENGTH, n=2**14, r=8, p=1)
    return kdf.derive(master_secret.encode("utf-8"))


def _b64decode(segment: str) -> bytes:
    try:
        return base64.b64decode(segment.encode("ascii"), validate=True)
    except (binascii.Error, UnicodeEncodeError) as e:
        raise FormatError("Invalid encrypted data format") from e


class EncryptionService:
    """Service for encrypting and decrypting secrets.

    Example:
        >>> service = EncryptionService(master_secret="s3cret")
        >>> envelope = service.encrypt("ya29.a0Af...")
        >>> service.decrypt(envelope)
        'ya29.a0Af...'
    """

    def __init__(self, master_secret: Optional[str] = None, environment: str = "development"):
        """Initialize encryption service.

        Args:
            master_secret: Server-held secret the base key is derived from
            environment: Deployment environment; a missing secret is fatal in "production"

        Raises:
            ConfigurationError: If the secret is missing in production
        """
        if not master_secret:
            if environment.lower() == "production":
                raise ConfigurationError(
                    "API_KEY_ENCRYPTION_SECRET environment variable is required in production"
                )
            logger.warning(
                "API_KEY_ENCRYPTION_SECRET not set. Using default key (NOT SECURE FOR PRODUCTION)"
            )
            master_secret = DEVELOPMENT_SECRET

        self._base_key = _derive_base_key(master_secret)
        logger.debug("Encryption service initialized successfully")

    def _derive_key(self, salt: bytes) -> bytes:
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=KEY_LENGTH,
            salt=salt,
            iterations=ITERATIONS,
        )
        return kdf.derive(self._base_key)

    def encrypt(self, plaintext: str) -> str:
        """Encrypt a plaintext string into an envelope.

        Args:
            plaintext: String to encrypt (token, API key)

        Returns:
            Envelope string ``salt:iv:tag:ciphertext``

        Raises:
            ValueError: If plaintext is None
        """
        if plaintext is None:
            raise ValueError("Cannot encrypt None value")

        salt = os.urandom(SALT_LENGTH)
        iv = os.urandom(IV_LENGTH)
        key = self._derive_key(salt)

        # AESGCM appends the 16-byte tag to the ciphertext
        sealed = AESGCM(key).encrypt(iv, plaintext.encode("utf-8"), None)
        ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]

        return SEPARATOR.join(
            base64.b64encode(part).decode("ascii") for part in (salt, iv, tag, ciphertext)
        )

    def decrypt(self, envelope: str) -> str:
        """Decrypt an envelope produced by ``encrypt``.

        Args:
            envelope: Envelope string ``salt:iv:tag:ciphertext``

        Returns:
            Decrypted plaintext

        Raises:
            ValueError: If envelope is None
            FormatError: If the envelope is malformed
            IntegrityError: If the tag does not verify (tampering or wrong key)
        """
        if envelope is None:
            raise ValueError("Cannot decrypt None value")

        parts = envelope.split(SEPARATOR)
        if len(parts) != 4:
            raise FormatError("Invalid encrypted data format")

        salt, iv, tag, ciphertext = (_b64decode(part) for part in parts)
        if len(salt) != SALT_LENGTH or len(iv) != IV_LENGTH or len(tag) != TAG_LENGTH:
            raise FormatError("Invalid encrypted data format")

        key = self._derive_key(salt)
        try:
            plaintext = AESGCM(key).decrypt(iv, ciphertext + tag, None)
        except InvalidTag:
            logger.error("Decryption failed: authentication tag mismatch (wrong key or tampered data)")
            raise IntegrityError(
                "Failed to decrypt data - it may be corrupted or encrypted with a different key"
            ) from None

        return plaintext.decode("utf-8")


# Global encryption service instance (lazy initialization)
_encryption_service: Optional[EncryptionService] = None


def build_encryption_service(config: AppConfig) -> EncryptionService:
    return EncryptionService(master_secret=config.encryption_secret, environment=config.environment)


def get_encryption_service() -> EncryptionService:
    """Get or create the global encryption service instance.

    Also used as a FastAPI dependency (overridable in tests).

    Raises:
        ConfigurationError: If the secret is missing in production
    """
    global _encryption_service

    if _encryption_service is None:
        _encryption_service = build_encryption_service(get_config())

    return _encryption_service
