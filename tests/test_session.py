"""Tests for session tokens and ID token resolution (credvault/services/session.py)."""

import base64
import json
from dataclasses import replace
from unittest.mock import patch

import httpx
import pytest
from authlib.jose import jwt

from credvault.exceptions import Unauthorized, UpstreamProtocolError, UpstreamTimeout
from credvault.services.session import Identity, SessionTokenManager

NOW = 1_700_000_000


class TestIssueSessionToken:
    def test_expiry_is_now_plus_ttl(self, session_manager, identity):
        issued = session_manager.issue_session_token(identity, now=NOW)
        assert issued.expires_at == NOW + 3600

    def test_claims(self, session_manager, identity):
        issued = session_manager.issue_session_token(identity, now=NOW)
        claims = jwt.decode(issued.token, "test-session-secret")

        assert claims["sub"] == "user-1"
        assert claims["user_id"] == "user-1"
        assert claims["email"] == "ada@example.com"
        assert claims["first_name"] == "Ada"
        assert claims["last_name"] == "Lovelace"
        assert claims["iat"] == NOW
        assert claims["exp"] == NOW + 3600

    def test_header_is_hs256(self, session_manager, identity):
        issued = session_manager.issue_session_token(identity, now=NOW)
        header = json.loads(_b64url_decode(issued.token.split(".")[0]))
        assert header["alg"] == "HS256"


class TestVerifySessionToken:
    """Test session token verification."""

    def test_valid_token_roundtrip(self, session_manager, identity):
        issued = session_manager.issue_session_token(identity, now=NOW)
        assert session_manager.verify_session_token(issued.token, now=NOW) == identity

    def test_valid_just_before_expiry(self, session_manager, identity):
        issued = session_manager.issue_session_token(identity, now=NOW)
        assert session_manager.verify_session_token(issued.token, now=NOW + 3599) == identity

    def test_rejected_at_expiry(self, session_manager, identity):
        issued = session_manager.issue_session_token(identity, now=NOW)
        assert session_manager.verify_session_token(issued.token, now=NOW + 3600) is None

    def test_rejected_after_expiry(self, session_manager, identity):
        issued = session_manager.issue_session_token(identity, now=NOW)
        assert session_manager.verify_session_token(issued.token, now=NOW + 3601) is None

    def test_wrong_secret_rejected(self, settings, store, identity):
        other = SessionTokenManager(replace(settings, session_secret="another-secret"), store)
        issued = other.issue_session_token(identity, now=NOW)

        manager = SessionTokenManager(settings, store)
        assert manager.verify_session_token(issued.token, now=NOW) is None

    def test_tampered_payload_rejected(self, session_manager, identity):
        issued = session_manager.issue_session_token(identity, now=NOW)
        header, payload, signature = issued.token.split(".")
        forged_payload = _b64url_encode(
            json.dumps({"sub": "admin", "user_id": "admin", "iat": NOW, "exp": NOW + 3600}).encode()
        )

        forged = ".".join([header, forged_payload, signature])
        assert session_manager.verify_session_token(forged, now=NOW) is None

    @pytest.mark.parametrize("token", ["", "not-a-jwt", "a.b.c", "x" * 500])
    def test_malformed_tokens_rejected(self, session_manager, token):
        assert session_manager.verify_session_token(token, now=NOW) is None

    def test_unsigned_token_rejected(self, session_manager):
        header = _b64url_encode(json.dumps({"alg": "none", "typ": "JWT"}).encode())
        payload = _b64url_encode(json.dumps({"sub": "user-1", "user_id": "user-1", "exp": NOW + 3600}).encode())

        assert session_manager.verify_session_token(f"{header}.{payload}.", now=NOW) is None

    def test_missing_claims_rejected(self, session_manager):
        token = jwt.encode({"alg": "HS256"}, {"email": "ada@example.com"}, "test-session-secret")
        token = token.decode() if isinstance(token, bytes) else token

        assert session_manager.verify_session_token(token, now=NOW) is None


class TestVerifyIdentityAssertion:
    """Test ID token resolution against the identity provider."""

    async def test_resolves_identity(self, session_manager, store, provider):
        await store.upsert_site_authorization("site-1", "site-access-token")

        identity = await session_manager.verify_identity_assertion("site-1", "id-token-xyz")

        assert identity == Identity(
            user_id="user-1", email="ada@example.com", first_name="Ada", last_name="Lovelace"
        )
        (request,) = provider.requests_to("/beta/token/resolve")
        assert request.headers["Authorization"] == "Bearer site-access-token"
        assert json.loads(request.content) == {"idToken": "id-token-xyz"}

    async def test_unknown_site_is_unauthorized(self, session_manager, provider):
        with pytest.raises(Unauthorized):
            await session_manager.verify_identity_assertion("unknown-site", "id-token-xyz")

        assert provider.requests == []

    @pytest.mark.parametrize("status_code", [400, 401, 403, 404])
    async def test_provider_4xx_is_unauthorized(self, session_manager, store, provider, status_code):
        await store.upsert_site_authorization("site-1", "site-access-token")
        provider.routes[("POST", "/beta/token/resolve")] = (status_code, {"message": "invalid token"})

        with pytest.raises(Unauthorized):
            await session_manager.verify_identity_assertion("site-1", "id-token-xyz")

    async def test_provider_5xx_is_protocol_error(self, session_manager, store, provider):
        await store.upsert_site_authorization("site-1", "site-access-token")
        provider.routes[("POST", "/beta/token/resolve")] = (503, {"message": "unavailable"})

        with pytest.raises(UpstreamProtocolError) as exc_info:
            await session_manager.verify_identity_assertion("site-1", "id-token-xyz")

        assert exc_info.value.provider_status == 503

    async def test_malformed_body_is_protocol_error(self, session_manager, store, provider):
        await store.upsert_site_authorization("site-1", "site-access-token")
        provider.routes[("POST", "/beta/token/resolve")] = (200, {"email": "no-id@example.com"})

        with pytest.raises(UpstreamProtocolError):
            await session_manager.verify_identity_assertion("site-1", "id-token-xyz")

    async def test_timeout_is_retryable(self, session_manager, store, provider):
        await store.upsert_site_authorization("site-1", "site-access-token")

        def timeout(request):
            raise httpx.ReadTimeout("timed out", request=request)

        provider.routes[("POST", "/beta/token/resolve")] = timeout

        with pytest.raises(UpstreamTimeout) as exc_info:
            await session_manager.verify_identity_assertion("site-1", "id-token-xyz")

        assert exc_info.value.retryable is True


class TestExchangeIdToken:
    """Test issuing a session token from a provider ID token."""

    async def test_issues_token_for_resolved_user(self, session_manager, store):
        await store.upsert_site_authorization("site-1", "site-access-token")

        issued = await session_manager.exchange_id_token("site-1", "id-token-xyz")

        assert session_manager.verify_session_token(issued.token).user_id == "user-1"

    async def test_refreshes_user_with_the_resolved_site_token(self, session_manager, store):
        await store.upsert_site_authorization("site-1", "site-access-token")
        await store.upsert_user_authorization("user-1", "stale-token")

        with patch.object(
            store, "get_access_token_by_site", wraps=store.get_access_token_by_site
        ) as site_lookup:
            await session_manager.exchange_id_token("site-1", "id-token-xyz")

        site_lookup.assert_awaited_once_with("site-1")
        assert await store.get_access_token_by_user("user-1") == "site-access-token"
        assert await store.get_access_token_by_site("site-1") == "site-access-token"

    async def test_rejected_id_token_records_nothing(self, session_manager, store, provider):
        await store.upsert_site_authorization("site-1", "site-access-token")
        provider.routes[("POST", "/beta/token/resolve")] = (401, {"message": "invalid token"})

        with pytest.raises(Unauthorized):
            await session_manager.exchange_id_token("site-1", "bad-token")

        assert (await store.list_authorizations())["users"] == []

def _b64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode()


def _b64url_decode(data: str) -> bytes:
    return base64.urlsafe_b64decode(data + "=" * (-len(data) % 4))
