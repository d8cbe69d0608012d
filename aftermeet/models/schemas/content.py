"""
Schemas exchanged with collaborator services (content generator, calendar).
"""
from datetime import datetime
from typing import Optional, List
from pydantic import BaseModel, Field


class MeetingInsights(BaseModel):
    """Structured insights extracted from a transcript by the language model."""
    summary: str = Field(min_length=1)
    key_decisions: List[str] = Field(default_factory=list)
    action_items: List[str] = Field(default_factory=list)
    participants: List[str] = Field(default_factory=list)
    topics: List[str] = Field(default_factory=list)
    sentiment: str = "neutral"
    key_quotes: List[str] = Field(default_factory=list)


class CalendarEvent(BaseModel):
    """Upcoming calendar event as returned by the calendar source."""
    event_id: str
    title: str
    start_time: datetime
    end_time: Optional[datetime] = None
    meeting_url: Optional[str] = None
    attendees: List[str] = Field(default_factory=list)
