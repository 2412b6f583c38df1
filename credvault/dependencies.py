"""Shared FastAPI dependencies for route handlers.

Long-lived collaborators (settings, store, encryption service) are created
once by the application factory and kept on ``app.state``; controllers are
cheap and built per request around them.
"""

from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from credvault.config import Settings
from credvault.exceptions import Unauthorized
from credvault.services.api_keys import ApiKeyController
from credvault.services.oauth import OAuthFlowController
from credvault.services.session import Identity, SessionTokenManager
from credvault.utils.encryption import EncryptionService

bearer_scheme = HTTPBearer(auto_error=False)


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_store(request: Request):
    return request.app.state.store


def get_encryption_service(request: Request) -> EncryptionService:
    return request.app.state.encryption


def get_oauth_controller(request: Request) -> OAuthFlowController:
    return OAuthFlowController(
        request.app.state.settings,
        request.app.state.store,
        transport=request.app.state.provider_transport,
    )


def get_session_manager(request: Request) -> SessionTokenManager:
    return SessionTokenManager(
        request.app.state.settings,
        request.app.state.store,
        transport=request.app.state.provider_transport,
    )


def get_api_key_controller(
    store=Depends(get_store),
    encryption: EncryptionService = Depends(get_encryption_service),
) -> ApiKeyController:
    return ApiKeyController(store, encryption)


async def require_session(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    sessions: SessionTokenManager = Depends(get_session_manager),
) -> Identity:
    """Resolve the caller's identity from the ``Authorization: Bearer`` session token.

    Raises:
        Unauthorized: If the header is missing or the token is invalid or expired
    """
    if credentials is None or not credentials.credentials:
        raise Unauthorized("Missing session token")

    identity = sessions.verify_session_token(credentials.credentials)
    if identity is None:
        raise Unauthorized("Invalid or expired session token")
    return identity
