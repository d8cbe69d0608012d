"""
Google Calendar integration for discovering upcoming meetings.
"""
from datetime import timedelta
from typing import Callable, List, Optional

from sqlalchemy.orm import Session

from aftermeet.config import GOOGLE_CALENDAR_SETTINGS
from aftermeet.database import SessionLocal
from aftermeet.models.db import Account, AccountProvider
from aftermeet.models.schemas.content import CalendarEvent
from aftermeet.utils import get_logger
from aftermeet.utils.time import utc_now
from .base import UpstreamError
from .http import request_json

logger = get_logger(__name__)


def _event_meeting_url(item: dict) -> Optional[str]:
    if item.get("hangoutLink"):
        return item["hangoutLink"]
    for entry in (item.get("conferenceData") or {}).get("entryPoints") or []:
        if entry.get("entryPointType") == "video" and entry.get("uri"):
            return entry["uri"]
    location = item.get("location") or ""
    return location if location.startswith("https://") else None


def parse_event(item: dict) -> Optional[CalendarEvent]:
    """Map a Calendar API event to ``CalendarEvent``; all-day events are skipped."""
    start = (item.get("start") or {}).get("dateTime")
    if not start or not item.get("id"):
        return None
    end = (item.get("end") or {}).get("dateTime")
    return CalendarEvent(
        event_id=item["id"],
        title=item.get("summary") or "Untitled meeting",
        start_time=start,
        end_time=end,
        meeting_url=_event_meeting_url(item),
        attendees=[a["email"] for a in item.get("attendees") or [] if a.get("email")],
    )


class GoogleCalendarClient:
    """Lists a user's upcoming primary-calendar events using their stored google token."""

    service = "google_calendar"

    def __init__(self, session_factory: Callable[[], Session] = SessionLocal, base_url: Optional[str] = None):
        self.session_factory = session_factory
        self.base_url = str(base_url or GOOGLE_CALENDAR_SETTINGS["base_url"]).rstrip("/")

    def _access_token(self, user_id: str) -> str:
        session = self.session_factory()
        try:
            account = session.query(Account).filter(
                Account.user_id == user_id,
                Account.provider == AccountProvider.GOOGLE,
            ).first()
            if account is None or not account.access_token:
                raise UpstreamError(self.service, f"no google account linked for user {user_id}", retryable=False)
            return account.access_token
        finally:
            session.close()

    async def list_upcoming_events(self, user_id: str) -> List[CalendarEvent]:
        token = self._access_token(user_id)
        now = utc_now()
        params = {
            "timeMin": now.isoformat(),
            "timeMax": (now + timedelta(days=int(GOOGLE_CALENDAR_SETTINGS["lookahead_days"]))).isoformat(),
            "singleEvents": "true",
            "orderBy": "startTime",
            "maxResults": str(GOOGLE_CALENDAR_SETTINGS["max_results"]),
        }
        _, data = await request_json(
            self.service,
            "GET",
            f"{self.base_url}/calendars/primary/events",
            headers={"Authorization": f"Bearer {token}"},
            params=params,
        )
        events = [parse_event(item) for item in (data or {}).get("items") or []]
        result = [e for e in events if e is not None]
        logger.info("Calendar events listed", user_id=user_id, count=len(result))
        return result


__all__ = ["GoogleCalendarClient", "parse_event"]
