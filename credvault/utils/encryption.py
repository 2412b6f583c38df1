"""Encryption utilities for AI-provider API keys.

Provides authenticated symmetric encryption for secrets stored in the
``api_keys`` table.

Uses AES-256-GCM from the cryptography library:
- A fresh 64-byte salt and 16-byte nonce for every encryption
- Per-blob key derived from the master secret with PBKDF2-HMAC-SHA256
  (100,000 iterations)
- The GCM authentication tag detects tampering and wrong-key decryption
- Output layout: base64(salt || nonce || tag || ciphertext)
"""

import base64
import binascii
import logging
import os
import secrets
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from credvault.exceptions import DecryptionIntegrityError, MissingMasterKey

logger = logging.getLogger(__name__)

MASTER_KEY_ENV = "CREDVAULT_ENCRYPTION_KEY"

SALT_LENGTH = 64
NONCE_LENGTH = 16
TAG_LENGTH = 16
KEY_LENGTH = 32
KDF_ITERATIONS = 100_000

HEADER_LENGTH = SALT_LENGTH + NONCE_LENGTH + TAG_LENGTH


class EncryptionService:
    """Service for encrypting and decrypting API keys.

    The master secret is any high-entropy string; it is never used as a
    cipher key directly. Each call derives its own key from the master
    secret and a random salt, so identical plaintexts never produce the
    same blob.

    Key Generation:
        python -m credvault.utils.encryption

    Environment Variable:
        CREDVAULT_ENCRYPTION_KEY: master secret (read once at startup)

    Security Notes:
        - The KDF iteration count is a deliberate latency floor, do not lower it
        - Changing the master secret makes every stored key undecryptable
        - Decryption never returns unauthenticated data

    Example:
        >>> service = EncryptionService("master-secret")
        >>> blob = service.encrypt("sk-test-123")
        >>> service.decrypt(blob)
        'sk-test-123'
    """

    def __init__(self, master_key: Optional[str] = None):
        """Initialize encryption service.

        Args:
            master_key: Master secret (default: from CREDVAULT_ENCRYPTION_KEY)

        Raises:
            MissingMasterKey: If no master secret is configured
        """
        key_str = master_key if master_key is not None else os.getenv(MASTER_KEY_ENV)

        if not key_str:
            raise MissingMasterKey(
                f"Encryption key not configured. Set {MASTER_KEY_ENV} environment variable. "
                "Generate a key with: python -m credvault.utils.encryption"
            )

        self._master_key = key_str.encode("utf-8")
        logger.debug("Encryption service initialized successfully")

    def _derive_key(self, salt: bytes) -> bytes:
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=KEY_LENGTH,
            salt=salt,
            iterations=KDF_ITERATIONS,
        )
        return kdf.derive(self._master_key)

    def encrypt(self, plaintext: str) -> str:
        """Encrypt a plaintext string.

        Args:
            plaintext: String to encrypt (API key)

        Returns:
            Base64-encoded blob: salt || nonce || tag || ciphertext

        Raises:
            ValueError: If plaintext is None
        """
        if plaintext is None:
            raise ValueError("Cannot encrypt None value")

        salt = secrets.token_bytes(SALT_LENGTH)
        nonce = secrets.token_bytes(NONCE_LENGTH)
        key = self._derive_key(salt)

        # AESGCM appends the tag to the ciphertext
        sealed = AESGCM(key).encrypt(nonce, plaintext.encode("utf-8"), None)
        ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]

        return base64.b64encode(salt + nonce + tag + ciphertext).decode("ascii")

    def decrypt(self, ciphertext: str) -> str:
        """Decrypt a blob produced by :meth:`encrypt`.

        Args:
            ciphertext: Base64-encoded blob

        Returns:
            Decrypted plaintext string

        Raises:
            ValueError: If ciphertext is None
            DecryptionIntegrityError: If the blob is malformed, was tampered
                with, or was encrypted under a different master secret
        """
        if ciphertext is None:
            raise ValueError("Cannot decrypt None value")

        try:
            raw = base64.b64decode(ciphertext.encode("ascii"), validate=True)
        except (binascii.Error, UnicodeEncodeError):
            logger.error("Decryption failed: blob is not valid base64")
            raise DecryptionIntegrityError("Encrypted value is not valid base64")

        # Unused bits in the final base64 character are ignored by b64decode
        if base64.b64encode(raw) != ciphertext.encode("ascii"):
            logger.error("Decryption failed: blob is not canonical base64")
            raise DecryptionIntegrityError("Encrypted value is not canonical base64")

        if len(raw) < HEADER_LENGTH:
            logger.error("Decryption failed: blob shorter than header (%d bytes)", len(raw))
            raise DecryptionIntegrityError("Encrypted value is truncated")

        salt = raw[:SALT_LENGTH]
        nonce = raw[SALT_LENGTH:SALT_LENGTH + NONCE_LENGTH]
        tag = raw[SALT_LENGTH + NONCE_LENGTH:HEADER_LENGTH]
        body = raw[HEADER_LENGTH:]

        key = self._derive_key(salt)
        try:
            plaintext = AESGCM(key).decrypt(nonce, body + tag, None)
        except InvalidTag:
            logger.error("Decryption failed: authentication tag mismatch (wrong key or tampered data)")
            raise DecryptionIntegrityError(
                "Failed to decrypt data. The encryption key has changed or the data was tampered with."
            )

        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError:
            raise DecryptionIntegrityError("Decrypted value is not valid UTF-8")


def generate_master_key() -> str:
    """Generate a random master secret suitable for CREDVAULT_ENCRYPTION_KEY.

    Returns:
        Base64-encoded 32 random bytes
    """
    return base64.b64encode(secrets.token_bytes(KEY_LENGTH)).decode("ascii")


if __name__ == "__main__":
    key = generate_master_key()
    print("\nGenerated Encryption Key:")
    print("------------------------")
    print(key)
    print(f"\nAdd this to your .env file as:\n{MASTER_KEY_ENV}={key}\n")
