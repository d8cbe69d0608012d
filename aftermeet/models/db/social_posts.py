"""SQLAlchemy model for generated social media posts."""
from __future__ import annotations
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import Integer, String, Text, Enum, ForeignKey
from sqlalchemy.orm import relationship, Mapped, mapped_column

if TYPE_CHECKING:  # pragma: no cover
    from .meetings import Meeting
from aftermeet.database import Base, UTCDateTime
from aftermeet.utils.time import utc_now
from .enums import PostStatus, SocialPlatform


class SocialPost(Base):
    __tablename__ = "social_posts"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    meeting_id: Mapped[int] = mapped_column(Integer, ForeignKey("meetings.id"), nullable=False, index=True)

    platform: Mapped[SocialPlatform] = mapped_column(Enum(SocialPlatform), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[PostStatus] = mapped_column(Enum(PostStatus), nullable=False, default=PostStatus.DRAFT, index=True)

    scheduled_time: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    posted_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    platform_post_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=utc_now)

    meeting: Mapped["Meeting"] = relationship("Meeting", back_populates="social_posts")

    @property
    def is_approved_draft(self) -> bool:
        return self.status == PostStatus.DRAFT and self.approved_at is not None
