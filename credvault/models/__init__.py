"""Database models for the credential vault."""

from credvault.models.site_authorization import SiteAuthorization
from credvault.models.user_authorization import UserAuthorization
from credvault.models.api_key import ApiKeyEntry
from credvault.models.provider_selection import ProviderSelection
from credvault.models.oauth_state import OAuthState

__all__ = [
    "SiteAuthorization",
    "UserAuthorization",
    "ApiKeyEntry",
    "ProviderSelection",
    "OAuthState",
]
