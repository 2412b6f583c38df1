"""Site authorization model: one provider access token per site."""

from datetime import datetime

from sqlalchemy import DateTime, String, Text
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from credvault.db import Base


class SiteAuthorization(Base):
    """Current OAuth access token for a site.

    Re-authorizing a site overwrites the token in place (upsert on site_id).
    """

    __tablename__ = "site_authorizations"

    site_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    access_token: Mapped[str] = mapped_column(Text, nullable=False)
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    def __repr__(self):
        return f"<SiteAuthorization(site_id={self.site_id})>"
