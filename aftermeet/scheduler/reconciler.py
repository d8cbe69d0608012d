"""Periodic reconciliation sweeps.

Each sweep reads domain state (meetings, posts, accounts) and turns it into
jobs through ``JobsService``; domain rows are only ever written by handlers.
Sweeps run under a sweep lock, and a failure on one item is logged without
stopping the rest of the sweep.
"""
from __future__ import annotations

import time
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from aftermeet.config import QUEUE_NAMES, RETRY_SWEEP, SCHEDULER_SETTINGS
from aftermeet.database import SessionLocal
from aftermeet.jobs.errors import DuplicateJobError, JobStoreError
from aftermeet.models.db import (
    Account,
    AccountProvider,
    Meeting,
    MeetingStatus,
    PostStatus,
    SocialPost,
)
from aftermeet.models.db.enums import CleanupResource
from aftermeet.scheduler.locking import SweepLock, create_sweep_lock
from aftermeet.scheduler.ticker import IntervalScheduler
from aftermeet.services.jobs_service import JobsService
from aftermeet.utils import get_logger, log_business_event, log_performance

logger = get_logger(__name__)


def _setting(key: str) -> int:
    return int(SCHEDULER_SETTINGS[key])  # type: ignore[arg-type]


class Reconciler:
    def __init__(
        self,
        jobs: JobsService,
        session_factory: Callable[[], Session] = SessionLocal,
        *,
        lock: Optional[SweepLock] = None,
    ):
        self.jobs = jobs
        self._session_factory = session_factory
        self.lock = lock or create_sweep_lock()

    # ------------------------------------------------------------------ #
    # Sweep wrapper
    # ------------------------------------------------------------------ #
    def _run_sweep(self, name: str, now: datetime, sweep: Callable[[datetime], int]) -> Optional[int]:
        token = self.lock.acquire(name)
        if token is None:
            logger.info("Sweep skipped; lock held elsewhere", sweep=name)
            return None
        started = time.perf_counter()
        try:
            count = sweep(now)
        finally:
            self.lock.release(name, token)
        log_performance(
            operation=f"sweep.{name}",
            duration_ms=round((time.perf_counter() - started) * 1000, 2),
            additional_data={"count": count},
        )
        if count:
            log_business_event(event_type="sweep_completed", details={"sweep": name, "count": count})
        return count

    def _schedule(self, sweep: str, description: str, fn: Callable[[], object], **context) -> bool:
        try:
            fn()
            return True
        except DuplicateJobError:
            logger.debug("Job already pending; skipping", sweep=sweep, item=description, **context)
        except JobStoreError as e:
            logger.error("Sweep item rejected", sweep=sweep, item=description, error=str(e), **context)
        except Exception as e:
            logger.error("Sweep item failed", sweep=sweep, item=description, error=str(e), exc_info=True, **context)
        return False

    # ------------------------------------------------------------------ #
    # Sweeps
    # ------------------------------------------------------------------ #
    def schedule_upcoming_bots(self, now: datetime) -> Optional[int]:
        return self._run_sweep("schedule_upcoming_bots", now, self._schedule_upcoming_bots)

    def _schedule_upcoming_bots(self, now: datetime) -> int:
        horizon = now + timedelta(minutes=_setting("bot_lookahead_minutes"))
        lead = timedelta(minutes=_setting("bot_lead_minutes"))
        with self._session_factory() as session:
            meetings = session.execute(
                select(Meeting.id, Meeting.start_time).where(
                    Meeting.recall_enabled.is_(True),
                    Meeting.bot_id.is_(None),
                    Meeting.status == MeetingStatus.SCHEDULED,
                    Meeting.start_time >= now,
                    Meeting.start_time <= horizon,
                )
            ).all()
        scheduled = 0
        for meeting_id, start_time in meetings:
            if self._schedule(
                "schedule_upcoming_bots",
                f"meeting-{meeting_id}",
                lambda: self.jobs.schedule_meeting_bot(meeting_id, start_time - lead),
            ):
                scheduled += 1
        return scheduled

    def prune_finished_jobs(self, now: datetime) -> Optional[int]:
        return self._run_sweep("prune_finished_jobs", now, self._prune_finished_jobs)

    def _prune_finished_jobs(self, now: datetime) -> int:
        cutoff = now - timedelta(minutes=_setting("prune_age_minutes"))
        removed = 0
        for queue_name in QUEUE_NAMES:
            try:
                removed += self.jobs.store.prune(queue_name, cutoff)
            except Exception as e:
                logger.error("Prune failed", queue=queue_name, error=str(e), exc_info=True)
        return removed

    def schedule_cleanup(self, now: datetime) -> Optional[int]:
        return self._run_sweep("schedule_cleanup", now, self._schedule_cleanup)

    def _schedule_cleanup(self, now: datetime) -> int:
        older_than = now - timedelta(days=_setting("stale_data_days"))
        ok = self._schedule(
            "schedule_cleanup",
            "resources",
            lambda: self.jobs.schedule_cleanup(older_than, list(CleanupResource)),
        )
        return int(ok)

    def retry_failed_jobs(self, now: datetime) -> Optional[int]:
        return self._run_sweep("retry_failed_jobs", now, self._retry_failed_jobs)

    def _retry_failed_jobs(self, now: datetime) -> int:
        retried = 0
        for queue_name in RETRY_SWEEP["queues"]:  # type: ignore[union-attr]
            try:
                retried += self.jobs.retry_failed(str(queue_name))
            except Exception as e:
                logger.error("Retry sweep failed", queue=queue_name, error=str(e), exc_info=True)
        return retried

    def requeue_stalled_jobs(self, now: datetime) -> Optional[int]:
        return self._run_sweep("requeue_stalled_jobs", now, self._requeue_stalled_jobs)

    def _requeue_stalled_jobs(self, now: datetime) -> int:
        cutoff = now - timedelta(minutes=_setting("stalled_job_minutes"))
        recovered = 0
        for queue_name in QUEUE_NAMES:
            try:
                recovered += self.jobs.store.requeue_stalled(queue_name, cutoff)
            except Exception as e:
                logger.error("Stalled job recovery failed", queue=queue_name, error=str(e), exc_info=True)
        return recovered

    def check_content_triggers(self, now: datetime) -> Optional[int]:
        return self._run_sweep("check_content_triggers", now, self._check_content_triggers)

    def _check_content_triggers(self, now: datetime) -> int:
        default_length = timedelta(minutes=_setting("default_meeting_minutes"))
        with self._session_factory() as session:
            recorded = session.execute(
                select(Meeting.id, Meeting.start_time, Meeting.end_time).where(
                    Meeting.status == MeetingStatus.IN_PROGRESS,
                    Meeting.bot_id.is_not(None),
                    Meeting.transcript.is_(None),
                    Meeting.start_time <= now,
                )
            ).all()
            ended = [
                meeting_id
                for meeting_id, start_time, end_time in recorded
                if (end_time or start_time + default_length) <= now
            ]
            without_posts = session.scalars(
                select(Meeting.id).where(
                    Meeting.status == MeetingStatus.COMPLETED,
                    Meeting.transcript.is_not(None),
                    ~Meeting.social_posts.any(),
                )
            ).all()
            due_posts = session.scalars(
                select(SocialPost.id).where(
                    SocialPost.status == PostStatus.DRAFT,
                    SocialPost.approved_at.is_not(None),
                    SocialPost.scheduled_time.is_not(None),
                    SocialPost.scheduled_time <= now,
                )
            ).all()

        triggered = 0
        for meeting_id in ended:
            if self._schedule(
                "check_content_triggers",
                f"transcript meeting-{meeting_id}",
                lambda: self.jobs.schedule_transcript_fetch(meeting_id),
            ):
                triggered += 1
        for meeting_id in without_posts:
            if self._schedule(
                "check_content_triggers",
                f"content meeting-{meeting_id}",
                lambda: self.jobs.schedule_content_generation(meeting_id),
            ):
                triggered += 1
        for post_id in due_posts:
            if self._schedule(
                "check_content_triggers",
                f"post-{post_id}",
                lambda: self.jobs.schedule_social_post(post_id),
            ):
                triggered += 1
        return triggered

    def sync_calendars(self, now: datetime) -> Optional[int]:
        return self._run_sweep("sync_calendars", now, self._sync_calendars)

    def _sync_calendars(self, now: datetime) -> int:
        with self._session_factory() as session:
            user_ids = session.scalars(
                select(Account.user_id).where(
                    Account.provider == AccountProvider.GOOGLE,
                    Account.access_token.is_not(None),
                ).distinct()
            ).all()
        synced = 0
        for user_id in user_ids:
            if self._schedule(
                "sync_calendars",
                f"user-{user_id}",
                lambda: self.jobs.schedule_calendar_sync(user_id),
            ):
                synced += 1
        return synced

    # ------------------------------------------------------------------ #
    # Wiring
    # ------------------------------------------------------------------ #
    def sweeps(self) -> Dict[str, tuple[int, Callable[[datetime], Optional[int]]]]:
        """Sweep name -> (interval seconds, callable)."""
        return {
            "schedule_upcoming_bots": (_setting("bot_scheduling_interval"), self.schedule_upcoming_bots),
            "prune_finished_jobs": (_setting("prune_interval"), self.prune_finished_jobs),
            "schedule_cleanup": (_setting("cleanup_interval"), self.schedule_cleanup),
            "retry_failed_jobs": (_setting("retry_failed_interval"), self.retry_failed_jobs),
            "requeue_stalled_jobs": (_setting("stalled_check_interval"), self.requeue_stalled_jobs),
            "check_content_triggers": (_setting("content_trigger_interval"), self.check_content_triggers),
            "sync_calendars": (_setting("calendar_sync_interval"), self.sync_calendars),
        }

    def build_scheduler(self, scheduler: Optional[IntervalScheduler] = None) -> IntervalScheduler:
        scheduler = scheduler or IntervalScheduler()
        for name, (interval, fn) in self.sweeps().items():
            scheduler.register(name, interval, fn)
        return scheduler


__all__ = ["Reconciler"]
