"""Active AI provider per user and site."""

from datetime import datetime

from sqlalchemy import DateTime, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from credvault.db import Base


class ProviderSelection(Base):
    """The provider whose key was saved last for a (user, site) pair.

    Written in the same transaction as the ApiKeyEntry it points at and
    removed together with it.
    """

    __tablename__ = "selected_providers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    site_id: Mapped[str] = mapped_column(String(255), nullable=False)
    provider: Mapped[str] = mapped_column(String(64), nullable=False)
    created_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (UniqueConstraint("user_id", "site_id", name="uq_selected_providers_user_site"),)

    def __repr__(self):
        return f"<ProviderSelection(user_id={self.user_id}, site_id={self.site_id}, provider={self.provider})>"
