"""Process configuration loaded from environment variables.

Settings are read once by the application factory. Missing secrets are a
startup failure, never a per-request one.
"""

import logging
import os
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from credvault.exceptions import ConfigurationError, MissingMasterKey
from credvault.utils.encryption import MASTER_KEY_ENV

logger = logging.getLogger(__name__)

DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///./credvault.db"

# Default CORS origins (designer extension dev server and local API)
DEFAULT_CORS_ORIGINS = [
    "http://localhost:1337",
    "http://localhost:3000",
    "http://127.0.0.1:1337",
    "http://127.0.0.1:3000",
]

# Scopes requested on every authorization; not caller-controlled
OAUTH_SCOPES = [
    "assets:read",
    "assets:write",
    "sites:read",
    "sites:write",
    "custom_code:read",
    "custom_code:write",
    "authorized_user:read",
    "pages:read",
    "pages:write",
    "cms:read",
]


@dataclass(frozen=True)
class ProviderEndpoints:
    """Identity provider endpoints (Webflow by default)."""

    authorize_url: str = "https://webflow.com/oauth/authorize"
    api_base_url: str = "https://api.webflow.com"

    @property
    def token_url(self) -> str:
        return f"{self.api_base_url}/oauth/access_token"

    @property
    def sites_url(self) -> str:
        return f"{self.api_base_url}/v2/sites"

    @property
    def user_url(self) -> str:
        return f"{self.api_base_url}/v2/token/authorized_by"

    @property
    def introspect_url(self) -> str:
        return f"{self.api_base_url}/beta/token/resolve"


@dataclass(frozen=True)
class Settings:
    """Immutable application settings."""

    encryption_key: str
    client_id: str
    client_secret: str
    session_secret: str
    database_url: str = DEFAULT_DATABASE_URL
    redirect_uri: str = ""
    session_ttl_seconds: int = 3600
    upstream_timeout: float = 15.0
    auth_success_url: str = "/auth-success"
    endpoints: ProviderEndpoints = field(default_factory=ProviderEndpoints)
    cors_origins: List[str] = field(default_factory=lambda: list(DEFAULT_CORS_ORIGINS))
    debug: bool = False

    @classmethod
    def from_env(cls, environ: Optional[Dict[str, str]] = None) -> "Settings":
        """Build settings from the process environment.

        Args:
            environ: Mapping to read instead of ``os.environ`` (tests)

        Raises:
            MissingMasterKey: If CREDVAULT_ENCRYPTION_KEY is unset
            ConfigurationError: If OAuth client credentials are unset or a
                numeric setting cannot be parsed
        """
        env = os.environ if environ is None else environ

        encryption_key = env.get(MASTER_KEY_ENV, "").strip()
        if not encryption_key:
            raise MissingMasterKey(
                f"{MASTER_KEY_ENV} is not set. Generate one with: python -m credvault.utils.encryption"
            )

        client_id = env.get("CREDVAULT_OAUTH_CLIENT_ID", "").strip()
        client_secret = env.get("CREDVAULT_OAUTH_CLIENT_SECRET", "").strip()
        missing = [
            name
            for name, value in (
                ("CREDVAULT_OAUTH_CLIENT_ID", client_id),
                ("CREDVAULT_OAUTH_CLIENT_SECRET", client_secret),
            )
            if not value
        ]
        if missing:
            raise ConfigurationError(f"OAuth client credentials not configured: {', '.join(missing)}")

        session_secret = env.get("CREDVAULT_SESSION_SECRET", "").strip()
        if not session_secret:
            logger.warning(
                "CREDVAULT_SESSION_SECRET is not set - signing session tokens with the OAuth client secret"
            )
            session_secret = client_secret

        cors_env = env.get("CORS_ORIGINS", "")
        if cors_env:
            cors_origins = [origin.strip() for origin in cors_env.split(",") if origin.strip()]
        else:
            cors_origins = list(DEFAULT_CORS_ORIGINS)

        return cls(
            encryption_key=encryption_key,
            client_id=client_id,
            client_secret=client_secret,
            session_secret=session_secret,
            database_url=env.get("DATABASE_URL", DEFAULT_DATABASE_URL),
            redirect_uri=env.get("CREDVAULT_OAUTH_REDIRECT_URI", "").strip(),
            session_ttl_seconds=_parse_number(env, "CREDVAULT_SESSION_TTL_SECONDS", 3600, int),
            upstream_timeout=_parse_number(env, "CREDVAULT_UPSTREAM_TIMEOUT", 15.0, float),
            auth_success_url=env.get("CREDVAULT_AUTH_SUCCESS_URL", "/auth-success"),
            endpoints=ProviderEndpoints(
                authorize_url=env.get("CREDVAULT_AUTHORIZE_URL", ProviderEndpoints.authorize_url),
                api_base_url=env.get("CREDVAULT_PROVIDER_BASE_URL", ProviderEndpoints.api_base_url).rstrip("/"),
            ),
            cors_origins=cors_origins,
            debug=env.get("CREDVAULT_DEBUG", "false").lower() == "true",
        )


def _parse_number(env, key, default, kind):
    raw = env.get(key)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = kind(raw)
    except ValueError:
        raise ConfigurationError(f"{key} must be a number, got {raw!r}")
    if value <= 0:
        raise ConfigurationError(f"{key} must be positive")
    return value
