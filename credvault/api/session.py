"""Session token exchange endpoint used by the designer extension."""

import logging

from fastapi import APIRouter, Depends

from credvault.dependencies import get_session_manager
from credvault.schemas.auth import SessionTokenRequest, SessionTokenResponse
from credvault.services.session import SessionTokenManager
from credvault.utils.security import sanitize_log_message

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/session")


@router.post("/token", response_model=SessionTokenResponse)
async def exchange_session_token(
    payload: SessionTokenRequest,
    sessions: SessionTokenManager = Depends(get_session_manager),
):
    """Exchange a provider ID token for a session token.

    The site must already be authorized: its stored access token is what
    authenticates the ID token lookup. On success the user authorization
    is refreshed with that same token.
    """
    logger.info("Session token requested for site %s", sanitize_log_message(payload.site_id))

    issued = await sessions.exchange_id_token(payload.site_id, payload.id_token)
    return SessionTokenResponse(session_token=issued.token, exp=issued.expires_at)
