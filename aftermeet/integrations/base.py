"""Collaborator contracts consumed by the job handlers, plus shared upstream errors."""
from __future__ import annotations

from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

from aftermeet.models.schemas.content import MeetingInsights, CalendarEvent


class UpstreamError(Exception):
    """A collaborator call failed.

    Network errors, timeouts, 429 and 5xx are retryable; other 4xx are not.
    """

    def __init__(self, service: str, message: str, *, status_code: Optional[int] = None, retryable: Optional[bool] = None):
        super().__init__(f"{service}: {message}")
        self.service = service
        self.status_code = status_code
        self.retryable = classify_status(status_code) if retryable is None else retryable


class UpstreamNotReadyError(UpstreamError):
    """The resource does not exist (yet); distinct from a hard failure."""

    def __init__(self, service: str, message: str = "not found", *, status_code: Optional[int] = 404):
        super().__init__(service, message, status_code=status_code, retryable=True)


def classify_status(status_code: Optional[int]) -> bool:
    """True when a failure with this HTTP status is worth retrying."""
    if status_code is None:
        return True
    if status_code == 429 or status_code >= 500:
        return True
    return False


@runtime_checkable
class RecordingService(Protocol):
    async def create_bot(self, meeting_url: str, options: Dict[str, Any]) -> str: ...
    async def delete_bot(self, bot_id: str) -> None: ...
    async def get_status(self, bot_id: str) -> str: ...
    async def get_transcript(self, bot_id: str) -> Optional[str]: ...


@runtime_checkable
class ContentGenerator(Protocol):
    async def generate_insights(self, transcript: str, title: str) -> MeetingInsights: ...
    async def generate_post(self, insights: MeetingInsights, platform: str, title: str, *, tone: Optional[str] = None) -> str: ...


@runtime_checkable
class SocialPublisher(Protocol):
    async def publish(self, platform: str, credentials: Dict[str, Any], content: str, *, idempotency_key: Optional[str] = None) -> str: ...
    async def delete(self, platform: str, credentials: Dict[str, Any], post_id: str) -> None: ...


@runtime_checkable
class CalendarSource(Protocol):
    async def list_upcoming_events(self, user_id: str) -> List[CalendarEvent]: ...


__all__ = [
    "UpstreamError",
    "UpstreamNotReadyError",
    "classify_status",
    "RecordingService",
    "ContentGenerator",
    "SocialPublisher",
    "CalendarSource",
]
