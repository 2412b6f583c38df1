"""OAuth authorization endpoints (consent redirect and callback)."""

import html
import json
import logging
import secrets
from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse

from credvault.config import Settings
from credvault.dependencies import get_oauth_controller, get_settings
from credvault.services.oauth import FLOW_POPUP, FLOW_REDIRECT, OAuthFlowController
from credvault.utils.security import sanitize_log_message

logger = logging.getLogger(__name__)

router = APIRouter()

# Message the designer extension listens for on window.opener
AUTH_COMPLETE_MESSAGE = "authComplete"

_POPUP_TEMPLATE = """<!DOCTYPE html>
<html>
  <head><meta charset="utf-8"><title>Authorization complete</title></head>
  <body>
    <p>{message}</p>
    <script nonce="{nonce}">
      if (window.opener) {{
        window.opener.postMessage({payload}, "*");
      }}
      window.close();
    </script>
  </body>
</html>
"""


def _popup_response(message: str) -> HTMLResponse:
    """Page that notifies the opener window and closes itself."""
    nonce = secrets.token_urlsafe(16)
    body = _POPUP_TEMPLATE.format(
        message=html.escape(message),
        nonce=nonce,
        payload=json.dumps(AUTH_COMPLETE_MESSAGE),
    )
    return HTMLResponse(
        content=body,
        headers={
            "Content-Security-Policy": f"default-src 'none'; script-src 'nonce-{nonce}'",
            "Cache-Control": "no-store",
        },
    )


def _redirect_uri(request: Request, settings: Settings) -> str:
    if settings.redirect_uri:
        return settings.redirect_uri
    return str(request.url_for("oauth_callback"))


@router.get("/authorize")
async def authorize(
    request: Request,
    popup: bool = False,
    settings: Settings = Depends(get_settings),
    oauth: OAuthFlowController = Depends(get_oauth_controller),
):
    """Redirect the browser to the provider consent screen.

    Query Parameters:
        popup: Set when opened from the designer extension; the callback
            then answers with a page that messages the opener window
    """
    flow = FLOW_POPUP if popup else FLOW_REDIRECT
    auth_url, _ = await oauth.build_authorization_url(_redirect_uri(request, settings), flow)
    return RedirectResponse(url=auth_url, status_code=302)


@router.get("/callback", name="oauth_callback")
async def oauth_callback(
    code: Optional[str] = None,
    state: Optional[str] = None,
    error: Optional[str] = None,
    error_description: Optional[str] = None,
    settings: Settings = Depends(get_settings),
    oauth: OAuthFlowController = Depends(get_oauth_controller),
):
    """Handle the provider's redirect back after consent.

    Validates and consumes the state, exchanges the code, then records the
    access token for the user and every authorized site. Failures surface
    as structured JSON through the application's exception handlers.
    """
    if error:
        logger.warning(
            "Provider returned authorization error: %s (%s)",
            sanitize_log_message(error),
            sanitize_log_message(error_description),
        )
        return JSONResponse(
            status_code=400,
            content={
                "error": "authorization_denied",
                "detail": error_description or error,
            },
        )

    if not code:
        return JSONResponse(
            status_code=400,
            content={"error": "missing_code", "detail": "No authorization code provided"},
        )

    record = await oauth.validate_state(state)
    token_data = await oauth.exchange_code_for_token(code, record.redirect_uri)
    outcome = await oauth.complete_authorization(token_data["access_token"])

    logger.info(
        "OAuth callback complete (%s flow, user %s, %s)",
        record.flow,
        sanitize_log_message(outcome.user_id),
        outcome.phase.value,
    )

    if record.flow == FLOW_POPUP:
        return _popup_response("Authorization complete. You can close this window.")
    return RedirectResponse(url=settings.auth_success_url, status_code=302)
