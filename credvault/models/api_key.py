"""Encrypted AI-provider API key model."""

from datetime import datetime

from sqlalchemy import DateTime, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from credvault.db import Base


class ApiKeyEntry(Base):
    """API key for one (user, site, provider) triple.

    ``encrypted_key`` always holds an EncryptionService blob; plaintext keys
    never reach this table.
    """

    __tablename__ = "api_keys"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    site_id: Mapped[str] = mapped_column(String(255), nullable=False)
    provider: Mapped[str] = mapped_column(String(64), nullable=False)
    encrypted_key: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        UniqueConstraint("user_id", "site_id", "provider", name="uq_api_keys_user_site_provider"),
    )

    def __repr__(self):
        return f"<ApiKeyEntry(user_id={self.user_id}, site_id={self.site_id}, provider={self.provider})>"
