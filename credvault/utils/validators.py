"""Input validation for AI-provider API keys."""

import re
from typing import Dict, Optional

from credvault.exceptions import APIKeyValidationError

# Known key prefixes per provider; None means the provider has no fixed prefix
PROVIDER_KEY_PREFIXES: Dict[str, Optional[str]] = {
    "openai": "sk-",
    "anthropic": "sk-ant-",
    "google": "AIza",
    "cohere": None,
}

SUPPORTED_PROVIDERS = tuple(PROVIDER_KEY_PREFIXES)

MIN_KEY_LENGTH = 8
MAX_KEY_LENGTH = 256


def validate_provider(provider: str) -> str:
    """Validate and normalize a provider name.

    Returns:
        Lower-cased provider name

    Raises:
        APIKeyValidationError: If the provider is empty or not supported
    """
    if not provider or not provider.strip():
        raise APIKeyValidationError("Provider is required")

    normalized = provider.strip().lower()
    if normalized not in PROVIDER_KEY_PREFIXES:
        raise APIKeyValidationError(
            f"Unsupported provider. Expected one of: {', '.join(SUPPORTED_PROVIDERS)}"
        )
    return normalized


def validate_api_key(provider: str, api_key: str) -> str:
    """Validate an API key's shape for ``provider``.

    Error messages describe the problem but never include the key itself.

    Args:
        provider: AI provider name
        api_key: Plaintext key submitted by the user

    Returns:
        The key, unchanged

    Raises:
        APIKeyValidationError: If the provider or key is rejected
    """
    provider = validate_provider(provider)

    if not api_key:
        raise APIKeyValidationError("API key is required")

    if re.search(r"\s", api_key):
        raise APIKeyValidationError("API key must not contain whitespace")

    if len(api_key) < MIN_KEY_LENGTH:
        raise APIKeyValidationError(f"API key too short (min {MIN_KEY_LENGTH} characters)")

    if len(api_key) > MAX_KEY_LENGTH:
        raise APIKeyValidationError(f"API key too long (max {MAX_KEY_LENGTH} characters)")

    prefix = PROVIDER_KEY_PREFIXES[provider]
    if prefix and not api_key.startswith(prefix):
        raise APIKeyValidationError(f'Invalid API key format. {provider} API keys should start with "{prefix}"')

    return api_key
