"""Tests for encryption service (credvault/utils/encryption.py).

Tests AES-256-GCM encryption of AI-provider API keys:
- Encryption/decryption roundtrip, including the empty string
- Blob layout and per-call randomness
- Tamper and wrong-key detection
- Malformed blob handling
- Master key configuration
"""

import base64

import pytest

from credvault.exceptions import DecryptionError, DecryptionIntegrityError, MissingMasterKey
from credvault.utils.encryption import (
    HEADER_LENGTH,
    MASTER_KEY_ENV,
    NONCE_LENGTH,
    SALT_LENGTH,
    EncryptionService,
    generate_master_key,
)


class TestEncryptionService:
    """Test suite for EncryptionService class."""

    def test_initialization_without_key_raises_error(self, monkeypatch):
        """Test EncryptionService refuses to start without a master key."""
        monkeypatch.delenv(MASTER_KEY_ENV, raising=False)

        with pytest.raises(MissingMasterKey) as exc_info:
            EncryptionService()

        assert MASTER_KEY_ENV in str(exc_info.value)

    def test_initialization_with_empty_key_raises_error(self):
        """Test an empty master key is treated as missing."""
        with pytest.raises(MissingMasterKey):
            EncryptionService("")

    def test_initialization_from_environment_variable(self, monkeypatch, encryption):
        """Test EncryptionService reads the master key from the environment."""
        monkeypatch.setenv(MASTER_KEY_ENV, "test-master-secret-0123456789abcdef")
        service = EncryptionService()

        # Same master key, so blobs are interchangeable
        blob = encryption.encrypt("sk-env-check")
        assert service.decrypt(blob) == "sk-env-check"

    def test_encrypt_decrypt_roundtrip(self, encryption):
        """Test encrypting then decrypting returns the original key."""
        plaintext = "sk-proj-abcdefghijklmnop"
        assert encryption.decrypt(encryption.encrypt(plaintext)) == plaintext

    def test_encrypt_empty_string(self, encryption):
        """Test the empty string is encrypted, not passed through."""
        blob = encryption.encrypt("")

        assert blob != ""
        assert len(base64.b64decode(blob)) == HEADER_LENGTH
        assert encryption.decrypt(blob) == ""

    def test_encrypt_unicode(self, encryption):
        """Test non-ASCII plaintext survives the roundtrip."""
        plaintext = "clé-секрет-鍵"
        assert encryption.decrypt(encryption.encrypt(plaintext)) == plaintext

    def test_encrypt_none_raises_error(self, encryption):
        with pytest.raises(ValueError, match="Cannot encrypt None"):
            encryption.encrypt(None)

    def test_decrypt_none_raises_error(self, encryption):
        with pytest.raises(ValueError, match="Cannot decrypt None"):
            encryption.decrypt(None)

    def test_blob_layout(self, encryption):
        """Test the blob is salt || nonce || tag || ciphertext, base64 encoded."""
        plaintext = "sk-test-123"  # 11 bytes
        blob = encryption.encrypt(plaintext)
        raw = base64.b64decode(blob)

        assert len(raw) == HEADER_LENGTH + len(plaintext.encode())
        assert len(raw) == 107
        assert len(blob) == 144

    def test_same_plaintext_produces_different_blobs(self, encryption):
        """Test fresh salt and nonce are drawn on every call."""
        first = encryption.encrypt("sk-same-key")
        second = encryption.encrypt("sk-same-key")

        assert first != second
        raw_first, raw_second = base64.b64decode(first), base64.b64decode(second)
        assert raw_first[:SALT_LENGTH] != raw_second[:SALT_LENGTH]
        assert raw_first[SALT_LENGTH:SALT_LENGTH + NONCE_LENGTH] != raw_second[SALT_LENGTH:SALT_LENGTH + NONCE_LENGTH]

    def test_wrong_master_key_fails(self, encryption):
        """Test a blob cannot be decrypted under a different master key."""
        blob = encryption.encrypt("sk-secret-value")
        other = EncryptionService("a-completely-different-master-secret")

        with pytest.raises(DecryptionIntegrityError):
            other.decrypt(blob)

    @pytest.mark.parametrize(
        "offset",
        [0, SALT_LENGTH, SALT_LENGTH + NONCE_LENGTH, HEADER_LENGTH],
        ids=["salt", "nonce", "tag", "ciphertext"],
    )
    def test_tampered_blob_fails(self, encryption, offset):
        """Test flipping a single byte in any field is detected."""
        raw = bytearray(base64.b64decode(encryption.encrypt("sk-tamper-test")))
        raw[offset] ^= 0x01
        tampered = base64.b64encode(bytes(raw)).decode()

        with pytest.raises(DecryptionIntegrityError):
            encryption.decrypt(tampered)

    def test_tampered_padding_bits_fail(self, encryption):
        """Test editing the last base64 character is detected even when the decoded bytes match."""
        blob = encryption.encrypt("sk-test-123")
        assert blob.endswith("=") and not blob.endswith("==")

        # The final data character carries two unused bits; flipping the
        # lowest one leaves the decoded bytes unchanged
        alphabet = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789+/"
        last = blob[-2]
        neighbour = alphabet[alphabet.index(last) ^ 0x01]
        tampered = blob[:-2] + neighbour + "="

        assert base64.b64decode(tampered) == base64.b64decode(blob)
        with pytest.raises(DecryptionIntegrityError, match="canonical"):
            encryption.decrypt(tampered)

    def test_truncated_blob_fails(self, encryption):
        """Test a blob shorter than the header is rejected before any KDF work."""
        short = base64.b64encode(b"x" * (HEADER_LENGTH - 1)).decode()

        with pytest.raises(DecryptionIntegrityError, match="truncated"):
            encryption.decrypt(short)

    def test_invalid_base64_fails(self, encryption):
        with pytest.raises(DecryptionIntegrityError, match="base64"):
            encryption.decrypt("not*valid*base64!!")

    def test_non_ascii_blob_fails(self, encryption):
        with pytest.raises(DecryptionIntegrityError):
            encryption.decrypt("blob-with-ünicode")

    def test_decryption_error_alias(self):
        """Test the short alias names the same exception class."""
        assert DecryptionError is DecryptionIntegrityError


class TestGenerateMasterKey:
    """Test master key generation helper."""

    def test_generates_base64_32_bytes(self):
        key = generate_master_key()
        assert len(base64.b64decode(key)) == 32

    def test_generates_unique_keys(self):
        assert generate_master_key() != generate_master_key()

    def test_generated_key_is_usable(self):
        service = EncryptionService(generate_master_key())
        assert service.decrypt(service.encrypt("sk-generated")) == "sk-generated"
