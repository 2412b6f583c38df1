"""API key management schemas."""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

DEFAULT_SITE_ID = "default"


class ApiKeySaveRequest(BaseModel):
    """Request to store an AI-provider key."""

    model_config = ConfigDict(populate_by_name=True)

    provider: str = Field(..., min_length=1, max_length=32)
    api_key: str = Field(..., alias="apiKey", min_length=1, repr=False)
    site_id: str = Field(DEFAULT_SITE_ID, alias="siteId", max_length=128)

    @field_validator("site_id", mode="before")
    @classmethod
    def default_site(cls, v: Optional[str]) -> str:
        """Treat a blank or null siteId as the default site."""
        return v or DEFAULT_SITE_ID


class ApiKeyDeleteRequest(BaseModel):
    """Request to delete an AI-provider key."""

    model_config = ConfigDict(populate_by_name=True)

    provider: str = Field(..., min_length=1, max_length=32)
    site_id: str = Field(DEFAULT_SITE_ID, alias="siteId", max_length=128)

    @field_validator("site_id", mode="before")
    @classmethod
    def default_site(cls, v: Optional[str]) -> str:
        return v or DEFAULT_SITE_ID


class SuccessResponse(BaseModel):
    success: bool = True
