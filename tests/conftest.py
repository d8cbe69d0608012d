"""Pytest fixtures, fakes and factories.

Every test gets its own file-based SQLite database under ``tmp_path`` so worker
threads and the test thread can share it through separate connections. Time is
driven by ``FakeClock`` so backoff and scheduling windows are deterministic.
"""
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from aftermeet.main import app
from aftermeet.database import Base, build_engine
from aftermeet.integrations.social import SocialPublisherService
from aftermeet.jobs.context import Collaborators
from aftermeet.jobs.dispatcher import JobDispatcher
from aftermeet.jobs.handlers import default_registry
from aftermeet.jobs.store import JobStore
from aftermeet.models.db import Meeting, SocialPost, Account
from aftermeet.models.db.enums import (
    AccountProvider,
    MeetingPlatform,
    MeetingStatus,
    PostStatus,
    SocialPlatform,
)
from aftermeet.models.schemas.content import MeetingInsights
from aftermeet.scheduler.locking import LocalSweepLock
from aftermeet.scheduler.reconciler import Reconciler
from aftermeet.services.jobs_service import JobsService
from aftermeet.utils.circuit_breaker import CircuitBreaker, GLOBAL_CIRCUIT_BREAKER

LONG_TRANSCRIPT = (
    "Alice: We agreed to ship the new onboarding flow next sprint. "
    "Bob: I will own the analytics dashboard and report back on Friday. "
    "Alice: Customers asked for SSO, so we will prioritise it in Q3."
)


class FakeClock:
    """Mutable clock handed to the store; tests move time with ``advance``."""

    def __init__(self, start: Optional[datetime] = None):
        self.current = start or datetime(2025, 1, 6, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.current

    def advance(self, seconds: float = 0, **kwargs) -> datetime:
        self.current = self.current + timedelta(seconds=seconds, **kwargs)
        return self.current


# ---------- Collaborator fakes ----------

class FakeRecordingService:
    def __init__(self) -> None:
        self.created: List[tuple] = []
        self.deleted: List[str] = []
        self.statuses: Dict[str, str] = {}
        self.transcripts: Dict[str, str] = {}
        self.create_errors: List[Exception] = []
        self.delete_errors: Dict[str, Exception] = {}
        self._counter = 0

    async def create_bot(self, meeting_url: str, options: Dict[str, Any]) -> str:
        if self.create_errors:
            raise self.create_errors.pop(0)
        self._counter += 1
        self.created.append((meeting_url, options))
        return f"bot-{self._counter}"

    async def delete_bot(self, bot_id: str) -> None:
        if bot_id in self.delete_errors:
            raise self.delete_errors[bot_id]
        self.deleted.append(bot_id)

    async def get_status(self, bot_id: str) -> str:
        return self.statuses.get(bot_id, "in_call_recording")

    async def get_transcript(self, bot_id: str) -> Optional[str]:
        return self.transcripts.get(bot_id)


class FakeContentGenerator:
    def __init__(self) -> None:
        self.insight_errors: List[Exception] = []
        self.post_errors: Dict[str, Exception] = {}
        self.posts_requested: List[tuple] = []

    async def generate_insights(self, transcript: str, title: str) -> MeetingInsights:
        if self.insight_errors:
            raise self.insight_errors.pop(0)
        return MeetingInsights(summary=f"Summary of {title}", key_decisions=["Ship onboarding"], topics=["roadmap"])

    async def generate_post(self, insights: MeetingInsights, platform: str, title: str, *, tone: Optional[str] = None) -> str:
        self.posts_requested.append((platform, title, tone))
        if platform in self.post_errors:
            raise self.post_errors[platform]
        return f"[{platform}] {insights.summary}"


class FakePlatformPublisher:
    """Stands in for one network; ``outcomes`` is consumed per publish call."""

    def __init__(self, name: str) -> None:
        self.name = name
        self.outcomes: List[Any] = []
        self.published: List[tuple] = []
        self.deleted: List[str] = []

    async def publish(self, credentials: Dict[str, Any], content: str) -> str:
        outcome = self.outcomes.pop(0) if self.outcomes else None
        if isinstance(outcome, Exception):
            raise outcome
        post_id = outcome or f"{self.name}-post-{len(self.published) + 1}"
        self.published.append((credentials, content, post_id))
        return post_id

    async def delete(self, credentials: Dict[str, Any], post_id: str) -> None:
        self.deleted.append(post_id)


class FakeCalendarSource:
    def __init__(self) -> None:
        self.events: Dict[str, list] = {}
        self.error: Optional[Exception] = None

    async def list_upcoming_events(self, user_id: str) -> list:
        if self.error is not None:
            raise self.error
        return list(self.events.get(user_id, []))


# ---------- Core fixtures ----------

@pytest.fixture(autouse=True)
def _reset_circuit_breaker():
    GLOBAL_CIRCUIT_BREAKER.reset()
    yield
    GLOBAL_CIRCUIT_BREAKER.reset()


@pytest.fixture()
def engine(tmp_path):
    test_engine = build_engine(f"sqlite+pysqlite:///{tmp_path / 'test.db'}")
    Base.metadata.create_all(bind=test_engine)
    yield test_engine
    test_engine.dispose()


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture()
def db_session(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def store(session_factory, clock):
    return JobStore(session_factory, clock=clock)


@pytest.fixture()
def jobs_service(store):
    return JobsService(store)


@pytest.fixture()
def recording():
    return FakeRecordingService()


@pytest.fixture()
def content_generator():
    return FakeContentGenerator()


@pytest.fixture()
def platform_publishers():
    return {"linkedin": FakePlatformPublisher("linkedin"), "facebook": FakePlatformPublisher("facebook")}


@pytest.fixture()
def calendar():
    return FakeCalendarSource()


@pytest.fixture()
def collaborators(session_factory, recording, content_generator, platform_publishers, calendar, tmp_path):
    temp_dir = tmp_path / "scratch"
    temp_dir.mkdir()
    return Collaborators(
        session_factory=session_factory,
        recording=recording,
        content=content_generator,
        publisher=SocialPublisherService(platform_publishers, breaker=CircuitBreaker()),
        calendar=calendar,
        temp_dir=str(temp_dir),
    )


@pytest.fixture()
def dispatcher(store, collaborators):
    return JobDispatcher(store, default_registry(), collaborators, poll_interval=0.01)


@pytest.fixture()
def reconciler(jobs_service, session_factory):
    return Reconciler(jobs_service, session_factory, lock=LocalSweepLock())


@pytest.fixture()
def client(jobs_service):
    app.state.jobs_service = jobs_service  # type: ignore[attr-defined]
    yield TestClient(app)
    app.state.jobs_service = None  # type: ignore[attr-defined]


# ---------- Data factory helpers ----------

@pytest.fixture()
def meeting_factory(session_factory, clock):
    def _create(**overrides) -> Meeting:
        values = dict(
            user_id="user-1",
            title="Weekly product sync",
            start_time=clock() + timedelta(hours=1),
            meeting_url="https://zoom.us/j/123456789",
            platform=MeetingPlatform.ZOOM,
            recall_enabled=True,
            status=MeetingStatus.SCHEDULED,
        )
        values.update(overrides)
        session = session_factory()
        try:
            meeting = Meeting(**values)
            session.add(meeting)
            session.commit()
            session.refresh(meeting)
            return meeting
        finally:
            session.close()
    return _create


@pytest.fixture()
def post_factory(session_factory):
    def _create(meeting_id: int, platform: SocialPlatform = SocialPlatform.LINKEDIN, **overrides) -> SocialPost:
        values = dict(
            meeting_id=meeting_id,
            platform=platform,
            content=f"Highlights from our meeting ({platform.value})",
            status=PostStatus.DRAFT,
        )
        values.update(overrides)
        session = session_factory()
        try:
            post = SocialPost(**values)
            session.add(post)
            session.commit()
            session.refresh(post)
            return post
        finally:
            session.close()
    return _create


@pytest.fixture()
def account_factory(session_factory):
    def _create(user_id: str = "user-1", provider: AccountProvider = AccountProvider.LINKEDIN, **overrides) -> Account:
        values = dict(
            user_id=user_id,
            provider=provider,
            provider_account_id=f"{provider.value}-acct",
            access_token="token-123",
        )
        values.update(overrides)
        session = session_factory()
        try:
            account = Account(**values)
            session.add(account)
            session.commit()
            session.refresh(account)
            return account
        finally:
            session.close()
    return _create


@pytest.fixture()
def transcript() -> str:
    return LONG_TRANSCRIPT
