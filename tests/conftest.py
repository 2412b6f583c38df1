"""Pytest configuration and fixtures."""

import os
from typing import AsyncGenerator

import httpx
import pytest

# Configure the environment BEFORE importing credvault.main, which builds
# the module-level app from it
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["CREDVAULT_ENCRYPTION_KEY"] = "test-master-secret-0123456789abcdef"
os.environ["CREDVAULT_OAUTH_CLIENT_ID"] = "test-client-id"
os.environ["CREDVAULT_OAUTH_CLIENT_SECRET"] = "test-client-secret"
os.environ["CREDVAULT_SESSION_SECRET"] = "test-session-secret"

from credvault.config import ProviderEndpoints, Settings  # noqa: E402
from credvault.main import create_app  # noqa: E402
from credvault.services.session import Identity, SessionTokenManager  # noqa: E402
from credvault.store import create_credential_store  # noqa: E402
from credvault.utils.encryption import EncryptionService  # noqa: E402

PROVIDER_API = "https://api.provider.test"
PROVIDER_AUTHORIZE = "https://provider.test/oauth/authorize"


class FakeProvider:
    """In-process stand-in for the identity provider.

    Routes are keyed by (method, path). A route value is either a
    ``(status, json_body)`` tuple or a callable taking the request and
    returning an ``httpx.Response`` (or raising an httpx error).
    """

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.routes = {
            ("POST", "/oauth/access_token"): (200, {"access_token": "wf-access-token", "token_type": "bearer"}),
            ("GET", "/v2/token/authorized_by"): (
                200,
                {"id": "user-1", "email": "ada@example.com", "firstName": "Ada", "lastName": "Lovelace"},
            ),
            ("GET", "/v2/sites"): (200, {"sites": [{"id": "site-1"}, {"id": "site-2"}]}),
            ("POST", "/beta/token/resolve"): (
                200,
                {"id": "user-1", "email": "ada@example.com", "firstName": "Ada", "lastName": "Lovelace"},
            ),
        }

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.routes.get((request.method, request.url.path))
        if route is None:
            return httpx.Response(404, json={"message": "not found"})
        if callable(route):
            return route(request)
        status_code, body = route
        return httpx.Response(status_code, json=body)

    def requests_to(self, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path == path]

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest.fixture
def settings() -> Settings:
    """Test settings pointing at the fake provider."""
    return Settings(
        encryption_key="test-master-secret-0123456789abcdef",
        client_id="test-client-id",
        client_secret="test-client-secret",
        session_secret="test-session-secret",
        database_url="sqlite+aiosqlite:///:memory:",
        redirect_uri="https://vault.test/api/v1/callback",
        session_ttl_seconds=3600,
        upstream_timeout=5.0,
        auth_success_url="/auth-success",
        endpoints=ProviderEndpoints(authorize_url=PROVIDER_AUTHORIZE, api_base_url=PROVIDER_API),
    )


@pytest.fixture
async def store():
    """Credential store over a fresh in-memory SQLite database."""
    credential_store = create_credential_store("sqlite+aiosqlite:///:memory:")
    await credential_store.initialize_schema()
    yield credential_store
    await credential_store.close()


@pytest.fixture(scope="session")
def encryption() -> EncryptionService:
    return EncryptionService("test-master-secret-0123456789abcdef")


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def session_manager(settings, store, provider) -> SessionTokenManager:
    return SessionTokenManager(settings, store, transport=provider.transport)


@pytest.fixture
def app(settings, store, provider):
    """Application wired to the in-memory store and fake provider."""
    return create_app(settings=settings, store=store, provider_transport=provider.transport)


@pytest.fixture
async def client(app) -> AsyncGenerator[httpx.AsyncClient, None]:
    """HTTP client for the application (lifespan is not run; the store fixture initializes the schema)."""
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture
def identity() -> Identity:
    return Identity(user_id="user-1", email="ada@example.com", first_name="Ada", last_name="Lovelace")


@pytest.fixture
def auth_headers(session_manager, identity) -> dict:
    """Authorization header carrying a valid session token for ``identity``."""
    issued = session_manager.issue_session_token(identity)
    return {"Authorization": f"Bearer {issued.token}"}
