"""Session tokens for authenticated extension users.

A session token is an HS256 JWT minted after the identity provider vouches
for a user's ID token. It carries the user's identity and an expiry; there
is no server-side revocation, so the lifetime is kept short.
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

import httpx
from authlib.jose import JoseError, JsonWebToken

from credvault.config import Settings
from credvault.exceptions import NotFound, Unauthorized, UpstreamProtocolError, UpstreamTimeout
from credvault.utils.security import mask_sensitive, sanitize_log_message

logger = logging.getLogger(__name__)

JWT_ALGORITHM = "HS256"

# Restrict decoding to the one algorithm we sign with
_jwt = JsonWebToken([JWT_ALGORITHM])


@dataclass(frozen=True)
class Identity:
    """Authenticated user as reported by the identity provider."""

    user_id: str
    email: str = ""
    first_name: str = ""
    last_name: str = ""

    @classmethod
    def from_provider(cls, payload: Dict[str, Any]) -> "Identity":
        """Build an identity from a provider user object (camelCase keys).

        Raises:
            UpstreamProtocolError: If the payload has no user id
        """
        user_id = payload.get("id") if isinstance(payload, dict) else None
        if not user_id:
            raise UpstreamProtocolError("Identity provider response is missing the user id")
        return cls(
            user_id=str(user_id),
            email=payload.get("email") or "",
            first_name=payload.get("firstName") or "",
            last_name=payload.get("lastName") or "",
        )


@dataclass(frozen=True)
class IssuedSessionToken:
    token: str
    expires_at: int


class SessionTokenManager:
    """Issues and verifies session tokens, and resolves ID tokens upstream.

    Args:
        settings: Application settings (signing secret, TTL, endpoints)
        store: Credential store used to look up the site's access token
        transport: Optional httpx transport, used by tests to stand in for
            the identity provider
    """

    def __init__(self, settings: Settings, store, transport: Optional[httpx.AsyncBaseTransport] = None):
        self._secret = settings.session_secret
        self._ttl = settings.session_ttl_seconds
        self._timeout = settings.upstream_timeout
        self._introspect_url = settings.endpoints.introspect_url
        self._store = store
        self._transport = transport

    def issue_session_token(self, identity: Identity, now: Optional[int] = None) -> IssuedSessionToken:
        """Sign a session token for ``identity`` valid for the configured TTL."""
        issued_at = int(time.time()) if now is None else int(now)
        expires_at = issued_at + self._ttl

        payload = {
            "sub": identity.user_id,
            "user_id": identity.user_id,
            "email": identity.email,
            "first_name": identity.first_name,
            "last_name": identity.last_name,
            "iat": issued_at,
            "exp": expires_at,
        }
        encoded = _jwt.encode({"alg": JWT_ALGORITHM}, payload, self._secret)
        token = encoded.decode("utf-8") if isinstance(encoded, bytes) else encoded

        logger.info("Issued session token for user %s (expires %s)", sanitize_log_message(identity.user_id), expires_at)
        return IssuedSessionToken(token=token, expires_at=expires_at)

    def verify_session_token(self, token: str, now: Optional[int] = None) -> Optional[Identity]:
        """Return the token's identity, or None if it is invalid or expired.

        Bad signatures, malformed tokens, missing claims and expiry all
        yield None; callers only learn that the token was rejected.
        """
        if not token:
            return None

        try:
            claims = _jwt.decode(token, self._secret)
        except (JoseError, ValueError) as e:
            logger.debug("Session token rejected: %s", type(e).__name__)
            return None

        current = int(time.time()) if now is None else int(now)
        exp = claims.get("exp")
        user_id = claims.get("user_id") or claims.get("sub")
        if not isinstance(exp, (int, float)) or not user_id:
            logger.debug("Session token rejected: missing claims")
            return None

        # authlib does not check expiry on decode
        if exp <= current:
            logger.debug("Session token rejected: expired")
            return None

        return Identity(
            user_id=str(user_id),
            email=claims.get("email") or "",
            first_name=claims.get("first_name") or "",
            last_name=claims.get("last_name") or "",
        )

    async def verify_identity_assertion(self, site_id: str, id_token: str) -> Identity:
        """Ask the identity provider who ``id_token`` belongs to.

        See :meth:`_resolve_identity` for the errors raised.
        """
        identity, _ = await self._resolve_identity(site_id, id_token)
        return identity

    async def exchange_id_token(self, site_id: str, id_token: str) -> IssuedSessionToken:
        """Resolve ``id_token`` and issue a session token for its user.

        The user authorization is refreshed with the site access token that
        authenticated the lookup, so later per-user calls find it.
        """
        identity, access_token = await self._resolve_identity(site_id, id_token)
        await self._store.upsert_user_authorization(identity.user_id, access_token)
        return self.issue_session_token(identity)

    async def _resolve_identity(self, site_id: str, id_token: str) -> Tuple[Identity, str]:
        """Resolve ``id_token`` upstream; returns the identity and the site access token.

        The request is authenticated with the access token stored for
        ``site_id``, which proves the site installed the app.

        Raises:
            Unauthorized: If the site is not authorized or the provider
                rejects the ID token
            UpstreamProtocolError: If the provider fails or answers with an
                unusable body
            UpstreamTimeout: If the provider does not answer in time
        """
        try:
            access_token = await self._store.get_access_token_by_site(site_id)
        except NotFound:
            logger.warning("Identity assertion for unauthorized site %s", sanitize_log_message(site_id))
            raise Unauthorized("Site is not authorized")

        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.post(
                    self._introspect_url,
                    json={"idToken": id_token},
                    headers={
                        "Accept": "application/json",
                        "Authorization": f"Bearer {access_token}",
                    },
                )
        except httpx.TimeoutException:
            logger.error("ID token resolution timed out")
            raise UpstreamTimeout("Identity provider timed out resolving the ID token", retryable=True)
        except httpx.HTTPError as e:
            logger.error("Cannot reach identity provider for ID token resolution: %s", type(e).__name__)
            raise UpstreamProtocolError("Identity provider is unreachable") from e

        if 400 <= response.status_code < 500:
            logger.warning("Identity provider rejected ID token with status %s", response.status_code)
            raise Unauthorized("Failed to verify token with identity provider")
        if response.status_code >= 500:
            logger.error("Identity provider returned %s resolving ID token", response.status_code)
            raise UpstreamProtocolError(
                "Identity provider failed to resolve the ID token",
                provider_status=response.status_code,
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise UpstreamProtocolError(
                "Identity provider returned a malformed body",
                provider_status=response.status_code,
            ) from e

        identity = Identity.from_provider(payload)
        logger.info(
            "Resolved ID token for user %s on site %s (site token %s)",
            sanitize_log_message(identity.user_id),
            sanitize_log_message(site_id),
            mask_sensitive(access_token),
        )
        return identity, access_token
