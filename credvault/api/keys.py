"""AI-provider API key endpoints. Every route requires a session token."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query

from credvault.dependencies import get_api_key_controller, require_session
from credvault.exceptions import NotFound
from credvault.schemas.keys import (
    DEFAULT_SITE_ID,
    ApiKeyDeleteRequest,
    ApiKeySaveRequest,
    SuccessResponse,
)
from credvault.services.api_keys import ApiKeyController
from credvault.services.session import Identity
from credvault.utils.security import sanitize_log_message

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/keys")


@router.post("", response_model=SuccessResponse)
async def save_api_key(
    payload: ApiKeySaveRequest,
    identity: Identity = Depends(require_session),
    controller: ApiKeyController = Depends(get_api_key_controller),
):
    """Encrypt and store a key; its provider becomes the selected provider."""
    logger.info(
        "Saving API key for user %s, site %s, provider %s",
        sanitize_log_message(identity.user_id),
        sanitize_log_message(payload.site_id),
        sanitize_log_message(payload.provider),
    )
    await controller.save_api_key(identity.user_id, payload.site_id, payload.provider, payload.api_key)
    return SuccessResponse()


@router.get("")
async def get_api_key(
    provider: Optional[str] = None,
    site_id: str = Query(DEFAULT_SITE_ID, alias="siteId", max_length=128),
    identity: Identity = Depends(require_session),
    controller: ApiKeyController = Depends(get_api_key_controller),
):
    """Return the decrypted key for ``provider``.

    Without ``provider``, returns the currently selected provider instead.
    """
    site_id = site_id or DEFAULT_SITE_ID

    if not provider:
        selected = await controller.get_selected_provider(identity.user_id, site_id)
        return {"provider": selected}

    api_key = await controller.get_api_key(identity.user_id, site_id, provider)
    if api_key is None:
        raise NotFound("API key not found")
    return {"apiKey": api_key}


@router.delete("", response_model=SuccessResponse)
async def delete_api_key(
    payload: ApiKeyDeleteRequest,
    identity: Identity = Depends(require_session),
    controller: ApiKeyController = Depends(get_api_key_controller),
):
    """Delete a stored key. Succeeds whether or not the key existed."""
    await controller.delete_api_key(identity.user_id, payload.site_id, payload.provider)
    return SuccessResponse()
