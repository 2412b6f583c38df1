"""Pending authorization state issued with each consent redirect."""

from datetime import UTC, datetime, timedelta
from typing import Optional

from sqlalchemy import DateTime, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from credvault.db import Base

DEFAULT_STATE_TTL_MINUTES = 10


class OAuthState(Base):
    """A state value the provider must echo back to ``/callback``.

    The row also remembers where the code must be redeemed
    (``redirect_uri``) and how the browser expects to be answered
    (``flow``). It is deleted as soon as a callback presents it.
    """

    __tablename__ = "oauth_states"

    state: Mapped[str] = mapped_column(String(128), primary_key=True, nullable=False)
    redirect_uri: Mapped[str] = mapped_column(String(512), nullable=False)
    flow: Mapped[str] = mapped_column(String(16), nullable=False, default="redirect")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    # Purges delete by expiry on every save and consume
    __table_args__ = (Index("idx_oauth_states_expires_at", "expires_at"),)

    def __repr__(self):
        return f"<OAuthState(flow={self.flow}, expires_at={self.expires_at})>"

    @classmethod
    def issue(
        cls,
        state: str,
        redirect_uri: str,
        flow: str,
        ttl_minutes: int = DEFAULT_STATE_TTL_MINUTES,
    ) -> "OAuthState":
        """Build a new pending state row that expires ``ttl_minutes`` from now."""
        issued_at = datetime.now(UTC)
        return cls(
            state=state,
            redirect_uri=redirect_uri,
            flow=flow,
            created_at=issued_at,
            expires_at=issued_at + timedelta(minutes=ttl_minutes),
        )

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        # aiosqlite hands back naive datetimes; they were written as UTC
        expires_at = self.expires_at
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=UTC)
        return (now or datetime.now(UTC)) >= expires_at
