"""Custom exceptions for the credential vault.

Every error that can cross the service boundary is mapped to one of these
classes before it reaches a route handler. Handlers registered in
``credvault.main`` turn them into structured JSON responses.
"""

from typing import List, Optional


class CredentialVaultError(Exception):
    """Base class for all credential vault errors."""

    #: Short machine-readable code included in error responses
    code = "credential_vault_error"


class ConfigurationError(CredentialVaultError):
    """Raised when required process configuration is missing or invalid.

    This is a startup condition: the application refuses to start rather
    than failing individual requests later.
    """

    code = "configuration_error"


class MissingMasterKey(ConfigurationError):
    """Raised when the master encryption secret is not configured."""

    code = "missing_master_key"


class UpstreamProtocolError(CredentialVaultError):
    """Raised when the identity provider returns a non-2xx or malformed response.

    Carries the provider's HTTP status code and a redacted copy of the
    response body so misconfiguration (wrong client secret, expired code)
    can be diagnosed without leaking secrets.
    """

    code = "upstream_protocol_error"

    def __init__(
        self,
        message: str,
        provider_status: Optional[int] = None,
        detail: Optional[str] = None,
    ):
        self.provider_status = provider_status
        self.detail = detail
        super().__init__(message)


class InvalidTokenResponse(UpstreamProtocolError):
    """Raised when a 2xx token response carries no ``access_token``."""

    code = "invalid_token_response"


class UpstreamTimeout(CredentialVaultError):
    """Raised when a call to the identity provider times out.

    ``retryable`` is False for the authorization code exchange: codes are
    single use, so the user has to restart the flow instead.
    """

    code = "upstream_timeout"

    def __init__(self, message: str, retryable: bool = True):
        self.retryable = retryable
        super().__init__(message)


class AuthorizationIncomplete(CredentialVaultError):
    """Raised when some sub-steps of completing an authorization failed.

    Every site upsert is idempotent, so the caller can safely retry the
    whole authorization.
    """

    code = "authorization_incomplete"

    def __init__(self, message: str, failed_site_ids: Optional[List[str]] = None, user_failed: bool = False):
        self.failed_site_ids = failed_site_ids or []
        self.user_failed = user_failed
        super().__init__(message)


class InvalidState(CredentialVaultError):
    """Raised when an OAuth callback presents an unknown, expired or mismatched state."""

    code = "invalid_state"


class Unauthorized(CredentialVaultError):
    """Raised when a caller lacks a valid authorization."""

    code = "unauthorized"


class DecryptionIntegrityError(CredentialVaultError):
    """Raised when a ciphertext blob fails authentication or cannot be parsed.

    Covers tampered data, data encrypted under a different master key and
    truncated or non-base64 blobs.
    """

    code = "decryption_integrity_error"


# Short name used by the encryption service contract
DecryptionError = DecryptionIntegrityError


class NotFound(CredentialVaultError):
    """Raised when no record exists for the requested key tuple."""

    code = "not_found"


class StorageError(CredentialVaultError):
    """Raised when the storage engine fails. The driver error is logged, never returned."""

    code = "storage_error"


class APIKeyValidationError(CredentialVaultError):
    """Raised when a submitted AI-provider key or provider name is rejected."""

    code = "api_key_validation_error"
