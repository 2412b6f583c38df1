"""Backend-agnostic credential store contract."""

from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional, Protocol


@dataclass(frozen=True)
class OAuthStateRecord:
    """A consumed OAuth state row."""

    state: str
    redirect_uri: str
    flow: str
    created_at: datetime


class CredentialStore(Protocol):
    """Persistent mapping from site, user and provider identities to secrets.

    Implementations must make every multi-table write atomic and must
    release their connection on every call, error paths included.
    """

    async def initialize_schema(self) -> None: ...

    async def upsert_site_authorization(self, site_id: str, access_token: str) -> None: ...

    async def upsert_user_authorization(self, user_id: str, access_token: str) -> None: ...

    async def get_access_token_by_site(self, site_id: str) -> str: ...

    async def get_access_token_by_user(self, user_id: str) -> str: ...

    async def save_api_key(self, user_id: str, site_id: str, provider: str, encrypted_key: str) -> None: ...

    async def get_api_key(self, user_id: str, site_id: str, provider: str) -> Optional[str]: ...

    async def delete_api_key(self, user_id: str, site_id: str, provider: str) -> None: ...

    async def get_selected_provider(self, user_id: str, site_id: str) -> Optional[str]: ...

    async def save_oauth_state(self, state: str, redirect_uri: str, flow: str, ttl_minutes: int = 10) -> None: ...

    async def consume_oauth_state(self, state: str) -> Optional[OAuthStateRecord]: ...

    async def list_authorizations(self) -> Dict[str, List[str]]: ...

    async def close(self) -> None: ...
