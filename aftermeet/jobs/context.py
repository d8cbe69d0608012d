"""Execution context handed to job handlers."""
from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Iterator, Optional

from sqlalchemy.orm import Session

from aftermeet.database import SessionLocal
from aftermeet.jobs.errors import PermanentJobError
from aftermeet.jobs.store import JobRecord
from aftermeet.integrations.base import RecordingService, ContentGenerator, SocialPublisher, CalendarSource
from aftermeet.utils.time import utc_now


@dataclass
class Collaborators:
    """External services and storage the handlers operate on."""
    session_factory: Callable[[], Session] = SessionLocal
    recording: Optional[RecordingService] = None
    content: Optional[ContentGenerator] = None
    publisher: Optional[SocialPublisher] = None
    calendar: Optional[CalendarSource] = None
    temp_dir: Optional[str] = None

    def require(self, name: str) -> Any:
        service = getattr(self, name, None)
        if service is None:
            raise PermanentJobError(f"collaborator '{name}' is not configured")
        return service


@dataclass
class JobContext:
    job: JobRecord
    collaborators: Collaborators
    report_progress: Callable[[int], None] = field(default=lambda pct: None)
    now: Callable[[], datetime] = utc_now

    @property
    def is_final_attempt(self) -> bool:
        return self.job.is_final_attempt

    @contextmanager
    def session(self) -> Iterator[Session]:
        session = self.collaborators.session_factory()
        try:
            yield session
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()


__all__ = ["Collaborators", "JobContext"]
