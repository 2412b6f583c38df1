"""Pydantic schemas for API validation."""

from credvault.schemas.auth import SessionTokenRequest, SessionTokenResponse
from credvault.schemas.keys import ApiKeyDeleteRequest, ApiKeySaveRequest, SuccessResponse

__all__ = [
    "SessionTokenRequest",
    "SessionTokenResponse",
    "ApiKeySaveRequest",
    "ApiKeyDeleteRequest",
    "SuccessResponse",
]
