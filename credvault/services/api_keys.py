"""API key controller: encrypt, store, fetch and delete AI-provider keys."""

import logging
from typing import Optional

from credvault.exceptions import DecryptionIntegrityError
from credvault.utils.encryption import EncryptionService
from credvault.utils.security import sanitize_log_message
from credvault.utils.validators import validate_api_key, validate_provider

logger = logging.getLogger(__name__)


class ApiKeyController:
    """Business rules for AI-provider API keys.

    Plaintext keys exist only in memory for the duration of a call and
    never reach a log line. Storage sees ciphertext only.
    """

    def __init__(self, store, encryption: EncryptionService):
        self._store = store
        self._encryption = encryption

    async def save_api_key(self, user_id: str, site_id: str, provider: str, plaintext_key: str) -> None:
        """Validate, encrypt and store a key; its provider becomes the selected one.

        Raises:
            APIKeyValidationError: If the provider or key shape is rejected
            StorageError: If the store fails
        """
        provider = validate_provider(provider)
        validate_api_key(provider, plaintext_key)

        encrypted_key = self._encryption.encrypt(plaintext_key)
        await self._store.save_api_key(user_id, site_id, provider, encrypted_key)

    async def get_api_key(self, user_id: str, site_id: str, provider: str) -> Optional[str]:
        """Return the decrypted key, or None if absent or undecryptable.

        A blob that fails authentication (tampering, rotated master key) is
        logged as an integrity error and reported as absent.
        """
        provider = validate_provider(provider)
        encrypted_key = await self._store.get_api_key(user_id, site_id, provider)
        if encrypted_key is None:
            return None

        try:
            return self._encryption.decrypt(encrypted_key)
        except DecryptionIntegrityError:
            logger.error(
                "Integrity check failed for stored API key (user=%s, site=%s, provider=%s)",
                sanitize_log_message(user_id),
                sanitize_log_message(site_id),
                provider,
            )
            return None

    async def delete_api_key(self, user_id: str, site_id: str, provider: str) -> None:
        """Delete a key. Deleting a key that does not exist is not an error."""
        provider = validate_provider(provider)
        await self._store.delete_api_key(user_id, site_id, provider)

    async def get_selected_provider(self, user_id: str, site_id: str) -> Optional[str]:
        return await self._store.get_selected_provider(user_id, site_id)
