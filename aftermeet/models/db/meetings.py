"""SQLAlchemy model for calendar meetings tracked for recording."""
from __future__ import annotations
from datetime import datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import Integer, String, Text, Boolean, Enum, JSON, UniqueConstraint
from sqlalchemy.orm import relationship, Mapped, mapped_column

if TYPE_CHECKING:  # pragma: no cover
    from .social_posts import SocialPost
from aftermeet.database import Base, UTCDateTime
from aftermeet.utils.time import utc_now
from .enums import MeetingStatus, MeetingPlatform


class Meeting(Base):
    __tablename__ = "meetings"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    start_time: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, index=True)
    end_time: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    platform: Mapped[MeetingPlatform | None] = mapped_column(Enum(MeetingPlatform), nullable=True)
    meeting_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    attendees: Mapped[list[Any] | None] = mapped_column(JSON, nullable=True)

    recall_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    bot_id: Mapped[str | None] = mapped_column(String(128), nullable=True, index=True)
    status: Mapped[MeetingStatus] = mapped_column(Enum(MeetingStatus), nullable=False, default=MeetingStatus.SCHEDULED, index=True)
    transcript: Mapped[str | None] = mapped_column(Text, nullable=True)

    calendar_event_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=utc_now)

    social_posts: Mapped[list["SocialPost"]] = relationship(
        "SocialPost", back_populates="meeting", cascade="all, delete-orphan"
    )

    # One row per synced calendar event
    __table_args__ = (
        UniqueConstraint("user_id", "calendar_event_id", name="uq_meeting_calendar_event"),
    )
