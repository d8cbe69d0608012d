"""
Jobs service: domain-level scheduling on top of the job store.

Routes and the reconciler go through this layer so queue choice, job kinds and
per-kind retry options are decided in one place.
"""
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Mapping, Optional

from aftermeet.config import (
    BOT_LIFECYCLE_QUEUE,
    CONTENT_GENERATION_QUEUE,
    SOCIAL_PUBLISHING_QUEUE,
    CLEANUP_QUEUE,
    QUEUE_NAMES,
    QUEUE_SETTINGS,
    RETRY_SWEEP,
)
from aftermeet.jobs import kinds
from aftermeet.jobs.kinds import ensure_queue
from aftermeet.jobs.store import JobStore, JobRecord
from aftermeet.models.db.enums import BackoffStrategy, CleanupResource, JobState, SocialPlatform
from aftermeet.models.schemas.jobs import BackoffOptions, BotConfig
from aftermeet.utils import get_logger
from aftermeet.utils.time import ensure_utc

logger = get_logger(__name__)

# Recordings take a while to process; poll patiently.
TRANSCRIPT_FETCH_ATTEMPTS = 5
TRANSCRIPT_FETCH_BACKOFF = BackoffOptions(strategy=BackoffStrategy.EXPONENTIAL, delay_seconds=60)


class JobsService:
    def __init__(self, store: JobStore):
        self.store = store

    # ------------------------------------------------------------------ #
    # Bot lifecycle
    # ------------------------------------------------------------------ #
    def schedule_meeting_bot(
        self,
        meeting_id: int,
        scheduled_time: datetime,
        bot_config: Optional[BotConfig] = None,
    ) -> JobRecord:
        """Enqueue bot creation to run at ``scheduled_time``; a past time runs immediately."""
        scheduled_time = ensure_utc(scheduled_time)
        if scheduled_time <= self.store.now():
            logger.warning("Meeting bot time already passed; scheduling immediately", meeting_id=meeting_id)
        payload: Dict[str, Any] = {"meeting_id": meeting_id, "scheduled_time": scheduled_time}
        if bot_config is not None:
            payload["bot_config"] = bot_config.model_dump()
        record = self.store.enqueue(BOT_LIFECYCLE_QUEUE, kinds.CREATE_BOT, payload, run_at=scheduled_time)
        logger.info("Scheduled bot creation", meeting_id=meeting_id, job_id=record.id, run_at=record.run_at.isoformat())
        return record

    def cancel_meeting_bot(self, meeting_id: int) -> bool:
        cancelled = self.store.cancel(
            BOT_LIFECYCLE_QUEUE,
            lambda job: job.kind == kinds.CREATE_BOT and job.payload.get("meeting_id") == meeting_id,
        )
        if cancelled:
            logger.info("Cancelled bot creation", meeting_id=meeting_id)
        return cancelled

    def schedule_bot_stop(self, meeting_id: int, bot_id: Optional[str] = None, delay: float = 0.0) -> JobRecord:
        return self.store.enqueue(
            BOT_LIFECYCLE_QUEUE, kinds.STOP_BOT, {"meeting_id": meeting_id, "bot_id": bot_id}, delay=delay
        )

    def schedule_transcript_fetch(self, meeting_id: int, delay: float = 0.0) -> JobRecord:
        return self.store.enqueue(
            BOT_LIFECYCLE_QUEUE,
            kinds.FETCH_TRANSCRIPT,
            {"meeting_id": meeting_id},
            delay=delay,
            max_attempts=TRANSCRIPT_FETCH_ATTEMPTS,
            backoff=TRANSCRIPT_FETCH_BACKOFF,
        )

    def schedule_calendar_sync(self, user_id: str) -> JobRecord:
        return self.store.enqueue(BOT_LIFECYCLE_QUEUE, kinds.SYNC_CALENDAR, {"user_id": user_id})

    # ------------------------------------------------------------------ #
    # Content & publishing
    # ------------------------------------------------------------------ #
    def schedule_content_generation(
        self,
        meeting_id: int,
        platforms: Optional[Iterable[SocialPlatform | str]] = None,
        tone: Optional[str] = None,
        delay: float = 0.0,
    ) -> JobRecord:
        payload: Dict[str, Any] = {"meeting_id": meeting_id}
        if platforms:
            payload["platforms"] = [SocialPlatform(p).value for p in platforms]
        if tone:
            payload["tone"] = tone
        record = self.store.enqueue(CONTENT_GENERATION_QUEUE, kinds.GENERATE_CONTENT, payload, delay=delay)
        logger.info("Scheduled content generation", meeting_id=meeting_id, job_id=record.id)
        return record

    def schedule_social_post(
        self,
        social_post_id: int,
        scheduled_time: Optional[datetime] = None,
        platform: Optional[SocialPlatform | str] = None,
    ) -> JobRecord:
        payload: Dict[str, Any] = {"social_post_id": social_post_id}
        if platform is not None:
            payload["platform"] = SocialPlatform(platform).value
        run_at = ensure_utc(scheduled_time) if scheduled_time is not None else None
        record = self.store.enqueue(SOCIAL_PUBLISHING_QUEUE, kinds.POST_CONTENT, payload, run_at=run_at)
        logger.info("Scheduled social post", social_post_id=social_post_id, job_id=record.id)
        return record

    def cancel_social_post(self, social_post_id: int) -> bool:
        cancelled = self.store.cancel(
            SOCIAL_PUBLISHING_QUEUE,
            lambda job: job.kind == kinds.POST_CONTENT and job.payload.get("social_post_id") == social_post_id,
        )
        if cancelled:
            logger.info("Cancelled social post", social_post_id=social_post_id)
        return cancelled

    # ------------------------------------------------------------------ #
    # Cleanup
    # ------------------------------------------------------------------ #
    def schedule_cleanup(
        self,
        older_than: datetime,
        resources: Optional[Iterable[CleanupResource | str]] = None,
    ) -> JobRecord:
        payload: Dict[str, Any] = {"older_than": ensure_utc(older_than)}
        if resources:
            payload["resources"] = [CleanupResource(r).value for r in resources]
        record = self.store.enqueue(CLEANUP_QUEUE, kinds.CLEANUP_RESOURCES, payload)
        logger.info("Scheduled cleanup", older_than=payload["older_than"].isoformat(), job_id=record.id)
        return record

    # ------------------------------------------------------------------ #
    # Generic / administration
    # ------------------------------------------------------------------ #
    def add_job(
        self,
        queue_name: str,
        kind: str,
        payload: Mapping[str, Any],
        *,
        delay: float = 0.0,
        max_attempts: Optional[int] = None,
        backoff: Optional[BackoffOptions] = None,
    ) -> JobRecord:
        record = self.store.enqueue(queue_name, kind, payload, delay=delay, max_attempts=max_attempts, backoff=backoff)
        logger.info("Created job", queue=queue_name, kind=kind, job_id=record.id)
        return record

    def queue_status(self, queue_name: str) -> Dict[str, Any]:
        return self.store.summarize(queue_name)

    def all_queue_statuses(self) -> List[Dict[str, Any]]:
        return [self.store.summarize(name) for name in QUEUE_NAMES]

    def get_jobs(
        self,
        queue_name: str,
        states: Optional[Iterable[JobState | str]] = None,
        limit: Optional[int] = None,
    ) -> List[JobRecord]:
        if limit is None:
            limit = int(QUEUE_SETTINGS.get("list_limit", 100))  # type: ignore[arg-type]
        return self.store.list_by_queue(queue_name, states, limit=limit)

    def pause_queue(self, queue_name: str) -> None:
        self.store.pause(queue_name)

    def resume_queue(self, queue_name: str) -> None:
        self.store.resume(queue_name)

    def clean_queue(self, queue_name: str, grace_seconds: float = 5) -> int:
        """Drop completed and failed jobs that finished more than ``grace_seconds`` ago."""
        ensure_queue(queue_name)
        removed = self.store.prune(queue_name, self.store.now() - timedelta(seconds=grace_seconds))
        logger.info("Cleaned queue", queue=queue_name, removed=removed)
        return removed

    def retry_failed(self, queue_name: str) -> int:
        retried = self.store.retry_failed(
            queue_name,
            max_resubmits=int(RETRY_SWEEP["max_resubmits"]),  # type: ignore[arg-type]
            exclude_kinds=RETRY_SWEEP["exclude_kinds"],  # type: ignore[arg-type]
        )
        logger.info("Retried failed jobs", queue=queue_name, retried=retried)
        return retried


__all__ = ["JobsService", "TRANSCRIPT_FETCH_ATTEMPTS"]
