"""OAuth 2.0 authorization code flow against the identity provider.

Handles:
- Building the consent URL and persisting a one-time state value
- Validating and consuming the state on callback
- Exchanging the authorization code for an access token
- Recording the token against the authorizing user and every site it covers
"""

import asyncio
import enum
import logging
import secrets
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlencode

import httpx

from credvault.config import OAUTH_SCOPES, Settings
from credvault.exceptions import (
    AuthorizationIncomplete,
    CredentialVaultError,
    InvalidState,
    InvalidTokenResponse,
    UpstreamProtocolError,
    UpstreamTimeout,
)
from credvault.store.base import OAuthStateRecord
from credvault.utils.error_handling import log_and_continue
from credvault.utils.security import mask_sensitive, redact_secrets, sanitize_log_message

logger = logging.getLogger(__name__)

FLOW_REDIRECT = "redirect"
FLOW_POPUP = "popup"

# Provider API version header required by the v2 endpoints
API_VERSION_HEADER = {"accept-version": "2.0.0"}


class AuthorizationPhase(str, enum.Enum):
    """Where a browser is in the authorization flow."""

    UNAUTHENTICATED = "unauthenticated"
    AUTHORIZING = "authorizing"
    AUTHENTICATED = "authenticated"


@dataclass
class AuthorizationOutcome:
    """Result of recording a freshly issued access token."""

    user_id: str
    site_ids: List[str] = field(default_factory=list)
    phase: AuthorizationPhase = AuthorizationPhase.AUTHENTICATED


def generate_state() -> str:
    """Generate a secure random state parameter (32 bytes = 256 bits)."""
    return secrets.token_urlsafe(32)


class OAuthFlowController:
    """Drives the authorization code flow.

    ``phase`` follows one browser through the flow: ``AUTHORIZING`` once a
    state is issued or accepted, ``AUTHENTICATED`` once the token is
    recorded, and back to ``UNAUTHENTICATED`` on any failure.

    Args:
        settings: Application settings (client credentials, endpoints, timeout)
        store: Credential store for states and authorizations
        transport: Optional httpx transport, used by tests to stand in for
            the identity provider
    """

    def __init__(self, settings: Settings, store, transport: Optional[httpx.AsyncBaseTransport] = None):
        self._settings = settings
        self._store = store
        self._transport = transport
        self.phase = AuthorizationPhase.UNAUTHENTICATED

    def _transition(self, phase: AuthorizationPhase) -> None:
        if phase is not self.phase:
            logger.debug("Authorization phase %s -> %s", self.phase.value, phase.value)
        self.phase = phase

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self._settings.upstream_timeout, transport=self._transport)

    def _redact(self, text: str, *extra: Optional[str]) -> str:
        return redact_secrets(text, [self._settings.client_secret, *extra])

    # ------------------------------------------------------------------
    # Consent redirect
    # ------------------------------------------------------------------

    async def build_authorization_url(self, redirect_uri: str, flow: str = FLOW_REDIRECT) -> Tuple[str, str]:
        """Create the provider consent URL and persist its state.

        Args:
            redirect_uri: Callback URL registered with the provider
            flow: ``redirect`` or ``popup``; decides how the callback answers

        Returns:
            Tuple of (authorization_url, state)
        """
        if flow not in (FLOW_REDIRECT, FLOW_POPUP):
            raise ValueError(f"Unknown authorization flow: {flow}")

        state = generate_state()
        await self._store.save_oauth_state(state, redirect_uri, flow)
        self._transition(AuthorizationPhase.AUTHORIZING)

        params = {
            "client_id": self._settings.client_id,
            "response_type": "code",
            "scope": " ".join(OAUTH_SCOPES),
            "redirect_uri": redirect_uri,
            "state": state,
        }
        auth_url = f"{self._settings.endpoints.authorize_url}?{urlencode(params)}"

        logger.info("Created authorization URL (%s flow) for state %s", flow, mask_sensitive(state))
        return auth_url, state

    async def validate_state(self, state: Optional[str]) -> OAuthStateRecord:
        """Consume a callback's state value.

        Raises:
            InvalidState: If the state is missing, unknown, expired or
                already used
        """
        if not state:
            logger.warning("OAuth callback without state parameter")
            self._transition(AuthorizationPhase.UNAUTHENTICATED)
            raise InvalidState("Missing state parameter")

        record = await self._store.consume_oauth_state(state)
        if record is None:
            logger.warning("Invalid or expired OAuth state: %s", mask_sensitive(sanitize_log_message(state)))
            self._transition(AuthorizationPhase.UNAUTHENTICATED)
            raise InvalidState("Invalid state parameter")

        logger.debug("Validated and consumed OAuth state %s", mask_sensitive(state))
        self._transition(AuthorizationPhase.AUTHORIZING)
        return record

    # ------------------------------------------------------------------
    # Code exchange
    # ------------------------------------------------------------------

    async def exchange_code_for_token(self, code: str, redirect_uri: str) -> Dict[str, Any]:
        """Exchange an authorization code for an access token.

        A failed exchange returns the controller to ``UNAUTHENTICATED``.
        See :meth:`_request_token` for the errors raised.
        """
        try:
            return await self._request_token(code, redirect_uri)
        except CredentialVaultError:
            self._transition(AuthorizationPhase.UNAUTHENTICATED)
            raise

    async def _request_token(self, code: str, redirect_uri: str) -> Dict[str, Any]:
        """POST the code to the token endpoint.

        Codes are single use, so a failed exchange is never retried.

        Returns:
            The provider's token response (contains ``access_token``)

        Raises:
            UpstreamProtocolError: Non-2xx or non-JSON response
            InvalidTokenResponse: 2xx response without an access token
            UpstreamTimeout: The provider did not answer in time
        """
        body = {
            "client_id": self._settings.client_id,
            "client_secret": self._settings.client_secret,
            "code": code,
            "grant_type": "authorization_code",
            "redirect_uri": redirect_uri,
        }

        logger.info("Exchanging authorization code at %s", self._settings.endpoints.token_url)
        logger.debug("Using redirect_uri: %s", sanitize_log_message(redirect_uri))

        try:
            async with self._client() as client:
                response = await client.post(self._settings.endpoints.token_url, json=body)
        except httpx.TimeoutException:
            logger.error("Token exchange request timed out")
            raise UpstreamTimeout("Token exchange timed out; restart authorization", retryable=False)
        except httpx.HTTPError as e:
            logger.error("Cannot connect to identity provider for token exchange: %s", type(e).__name__)
            raise UpstreamProtocolError("Identity provider is unreachable") from e

        if not response.is_success:
            detail = self._redact(response.text, code)
            logger.error("Token exchange failed with status %s: %s", response.status_code, sanitize_log_message(detail))
            raise UpstreamProtocolError(
                "Token exchange failed",
                provider_status=response.status_code,
                detail=detail,
            )

        try:
            token_data = response.json()
        except ValueError as e:
            raise UpstreamProtocolError(
                "Token exchange returned a malformed body",
                provider_status=response.status_code,
            ) from e

        if not isinstance(token_data, dict) or not token_data.get("access_token"):
            logger.error("Token response did not contain an access token")
            raise InvalidTokenResponse(
                "No access token in response",
                provider_status=response.status_code,
                detail=self._redact(response.text, code),
            )

        logger.info("Successfully exchanged authorization code for an access token")
        return token_data

    # ------------------------------------------------------------------
    # Recording the grant
    # ------------------------------------------------------------------

    async def _get_json(self, client: httpx.AsyncClient, url: str, access_token: str) -> Any:
        try:
            response = await client.get(
                url,
                headers={"Authorization": f"Bearer {access_token}", **API_VERSION_HEADER},
            )
        except httpx.TimeoutException:
            logger.error("Request to %s timed out", url)
            raise UpstreamTimeout(f"Identity provider timed out: {url}", retryable=True)
        except httpx.HTTPError as e:
            logger.error("Cannot reach %s: %s", url, type(e).__name__)
            raise UpstreamProtocolError("Identity provider is unreachable") from e

        if not response.is_success:
            detail = self._redact(response.text, access_token)
            logger.error("GET %s failed with status %s", url, response.status_code)
            raise UpstreamProtocolError(
                "Failed to fetch authorization data",
                provider_status=response.status_code,
                detail=detail,
            )

        try:
            return response.json()
        except ValueError as e:
            raise UpstreamProtocolError("Identity provider returned a malformed body") from e

    async def _fetch_user_and_sites(self, access_token: str) -> Tuple[Any, Any]:
        """Fetch the authorized user and the site list concurrently.

        If either request fails the other is cancelled before the client
        closes.
        """
        async with self._client() as client:
            user_task = asyncio.ensure_future(
                self._get_json(client, self._settings.endpoints.user_url, access_token)
            )
            sites_task = asyncio.ensure_future(
                self._get_json(client, self._settings.endpoints.sites_url, access_token)
            )
            try:
                return await asyncio.gather(user_task, sites_task)
            except BaseException:
                for task in (user_task, sites_task):
                    task.cancel()
                await asyncio.gather(user_task, sites_task, return_exceptions=True)
                raise

    async def complete_authorization(self, access_token: str) -> AuthorizationOutcome:
        """Record ``access_token`` for the authorizing user and every site it covers.

        The user and site list are fetched concurrently. Each upsert is
        attempted independently so one failing site does not block the
        others; upserts are idempotent, so a retry of the whole
        authorization converges.

        Raises:
            UpstreamProtocolError, UpstreamTimeout: Fetching user or sites
                failed, or either response lacks an id
            AuthorizationIncomplete: One or more upserts failed
        """
        try:
            outcome = await self._record_authorization(access_token)
        except CredentialVaultError:
            self._transition(AuthorizationPhase.UNAUTHENTICATED)
            raise

        self._transition(AuthorizationPhase.AUTHENTICATED)
        outcome.phase = self.phase
        return outcome

    async def _record_authorization(self, access_token: str) -> AuthorizationOutcome:
        user_data, sites_data = await self._fetch_user_and_sites(access_token)

        if not isinstance(user_data, dict) or not user_data.get("id"):
            logger.error("Authorized-user response carried no user id")
            raise UpstreamProtocolError("Authorized-user response is missing the user id")
        user_id = str(user_data["id"])

        if isinstance(sites_data, dict):
            sites_data = sites_data.get("sites", [])
        if not isinstance(sites_data, list):
            raise UpstreamProtocolError("Site list response is malformed")
        if any(not isinstance(site, dict) or not site.get("id") for site in sites_data):
            logger.error("Site list response contains an entry without an id")
            raise UpstreamProtocolError("Site list response contains a site without an id")
        site_ids = [str(site["id"]) for site in sites_data]

        failed_site_ids = []
        for site_id in site_ids:
            try:
                await self._store.upsert_site_authorization(site_id, access_token)
            except CredentialVaultError as e:
                log_and_continue(logger, e, f"Failed to store authorization for site {sanitize_log_message(site_id)}", "error")
                failed_site_ids.append(site_id)

        user_failed = False
        try:
            await self._store.upsert_user_authorization(user_id, access_token)
        except CredentialVaultError as e:
            log_and_continue(logger, e, f"Failed to store authorization for user {sanitize_log_message(user_id)}", "error")
            user_failed = True

        if failed_site_ids or user_failed:
            raise AuthorizationIncomplete(
                "Authorization was only partially recorded; retry the authorization",
                failed_site_ids=failed_site_ids,
                user_failed=user_failed,
            )

        logger.info(
            "Authorization complete for user %s across %d site(s)",
            sanitize_log_message(user_id),
            len(site_ids),
        )
        return AuthorizationOutcome(user_id=user_id, site_ids=site_ids)
