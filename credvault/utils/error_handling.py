"""Centralized error handling utilities for secure error responses.

This module maps credential vault exceptions to HTTP responses without
disclosing internals:
- Stack traces and driver errors logged server-side only
- Stable machine-readable error codes for clients
- Provider diagnostics included only after secrets are redacted

Security:
    - CWE-209: Generation of Error Message Containing Sensitive Information
    - CWE-532: Insertion of Sensitive Information into Log File
"""

import logging
from typing import Any, Dict

from fastapi import status
from fastapi.responses import JSONResponse

from credvault.exceptions import (
    APIKeyValidationError,
    AuthorizationIncomplete,
    CredentialVaultError,
    DecryptionIntegrityError,
    InvalidState,
    NotFound,
    StorageError,
    Unauthorized,
    UpstreamProtocolError,
    UpstreamTimeout,
)

logger = logging.getLogger(__name__)

# Checked in order, so subclasses must precede their bases
_STATUS_CODES = (
    (InvalidState, status.HTTP_400_BAD_REQUEST),
    (APIKeyValidationError, status.HTTP_400_BAD_REQUEST),
    (Unauthorized, status.HTTP_401_UNAUTHORIZED),
    (NotFound, status.HTTP_404_NOT_FOUND),
    (DecryptionIntegrityError, status.HTTP_404_NOT_FOUND),
    (AuthorizationIncomplete, status.HTTP_502_BAD_GATEWAY),
    (UpstreamProtocolError, status.HTTP_502_BAD_GATEWAY),
    (UpstreamTimeout, status.HTTP_504_GATEWAY_TIMEOUT),
    (StorageError, status.HTTP_500_INTERNAL_SERVER_ERROR),
)

# Messages for errors whose text may carry internal detail
_GENERIC_MESSAGES = {
    StorageError: "A storage error occurred",
    DecryptionIntegrityError: "Not found",
}


def status_code_for(error: CredentialVaultError) -> int:
    """Return the HTTP status code for a credential vault exception."""
    for exc_type, code in _STATUS_CODES:
        if isinstance(error, exc_type):
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def error_payload(error: CredentialVaultError) -> Dict[str, Any]:
    """Build the JSON body for ``error``.

    The body always has ``error`` (machine-readable code) and ``detail``
    (safe message). Upstream errors add the provider status and the
    already-redacted provider body; partial authorizations add the failed
    site ids.
    """
    message = str(error)
    for exc_type, generic in _GENERIC_MESSAGES.items():
        if isinstance(error, exc_type):
            message = generic
            break

    payload: Dict[str, Any] = {"error": error.code, "detail": message}

    if isinstance(error, UpstreamProtocolError):
        if error.provider_status is not None:
            payload["provider_status"] = error.provider_status
        if error.detail:
            payload["provider_detail"] = error.detail
    elif isinstance(error, UpstreamTimeout):
        payload["retryable"] = error.retryable
    elif isinstance(error, AuthorizationIncomplete):
        payload["failed_site_ids"] = error.failed_site_ids
        payload["retryable"] = True

    return payload


def vault_error_response(error: CredentialVaultError) -> JSONResponse:
    """Log ``error`` at a level matching its severity and return its JSON response."""
    status_code = status_code_for(error)

    if status_code >= 500:
        logger.error("Request failed with %s: %s", type(error).__name__, error)
    elif isinstance(error, NotFound):
        logger.debug("Not found: %s", error)
    else:
        logger.warning("Request rejected with %s: %s", type(error).__name__, error)

    headers = {"WWW-Authenticate": "Bearer"} if status_code == status.HTTP_401_UNAUTHORIZED else None
    return JSONResponse(status_code=status_code, content=error_payload(error), headers=headers)


def log_and_continue(
    logger_instance: logging.Logger,
    error: Exception,
    context_message: str,
    log_level: str = "warning",
) -> None:
    """Log error but continue execution (for sub-steps that must not halt a batch).

    Args:
        logger_instance: Logger instance to use
        error: The exception that was caught
        context_message: Context about where/why this error occurred
        log_level: Logging level to use (default: warning)
    """
    log_method = getattr(logger_instance, log_level, logger_instance.warning)
    log_method(f"{context_message}: {type(error).__name__}", exc_info=True)
