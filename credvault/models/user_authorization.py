"""User authorization model."""

from datetime import datetime

from sqlalchemy import DateTime, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from credvault.db import Base


class UserAuthorization(Base):
    """Access token obtained when a user last authorized the app.

    Lookups take the newest row (highest id), so databases created before
    the unique constraint existed still resolve to the latest token.
    """

    __tablename__ = "user_authorizations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    access_token: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (UniqueConstraint("user_id", name="uq_user_authorizations_user_id"),)

    def __repr__(self):
        return f"<UserAuthorization(user_id={self.user_id})>"
