"""SQLAlchemy model for linked third-party accounts (tokens stored by the auth service)."""
from __future__ import annotations
from datetime import datetime
from typing import Any

from sqlalchemy import Integer, String, Text, Enum, JSON, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from aftermeet.database import Base, UTCDateTime
from aftermeet.utils.time import utc_now
from .enums import AccountProvider


class Account(Base):
    __tablename__ = "accounts"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    provider: Mapped[AccountProvider] = mapped_column(Enum(AccountProvider), nullable=False)
    provider_account_id: Mapped[str] = mapped_column(String(255), nullable=False)

    access_token: Mapped[str | None] = mapped_column(Text, nullable=True)
    refresh_token: Mapped[str | None] = mapped_column(Text, nullable=True)
    expires_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    scope: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    account_metadata: Mapped[dict[str, Any] | None] = mapped_column("metadata", JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=utc_now)

    __table_args__ = (
        UniqueConstraint("user_id", "provider", name="uq_account_user_provider"),
    )

    def credentials(self) -> dict[str, Any]:
        """Credential bundle handed to publishers and calendar clients."""
        return {
            "access_token": self.access_token,
            "provider_account_id": self.provider_account_id,
            "metadata": self.account_metadata or {},
        }
