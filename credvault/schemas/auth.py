"""Session token exchange schemas."""

from pydantic import BaseModel, ConfigDict, Field


class SessionTokenRequest(BaseModel):
    """ID token exchange request sent by the designer extension."""

    model_config = ConfigDict(populate_by_name=True)

    id_token: str = Field(..., alias="idToken", min_length=1)
    site_id: str = Field(..., alias="siteId", min_length=1, max_length=128)


class SessionTokenResponse(BaseModel):
    """Issued session token and its expiry (Unix seconds)."""

    model_config = ConfigDict(populate_by_name=True)

    session_token: str = Field(..., alias="sessionToken")
    exp: int
