"""Durable job store backed by the ``jobs`` table.

Every state change is a single conditional UPDATE/DELETE guarded by the state
the caller expects, so concurrent dispatchers (threads or processes sharing the
database) never both win the same transition:

 - claim_next: ``UPDATE ... SET state=active WHERE id=:id AND state IN (waiting, delayed)``;
   a rowcount of 1 means this caller owns the job.
 - one active job per (queue, resource): ``UNIQUE(queue_name, active_key)`` where
   ``active_key`` is cleared when a job reaches a terminal state.

Operations return frozen ``JobRecord`` snapshots, never live ORM rows.
"""
from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Iterable, Iterator, Mapping, Optional

from sqlalchemy import select, update, delete, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from aftermeet.config import QUEUE_SETTINGS, RETRY_SWEEP
from aftermeet.database import SessionLocal
from aftermeet.jobs.errors import (
    DuplicateJobError,
    InvalidJobStateError,
    InvalidPayloadError,
    JobNotFoundError,
)
from aftermeet.jobs.kinds import ensure_queue, validate_payload, resource_key
from aftermeet.models.db.enums import JobState, BackoffStrategy, PENDING_JOB_STATES, TERMINAL_JOB_STATES
from aftermeet.models.db.jobs import Job, QueueState
from aftermeet.models.schemas.jobs import BackoffOptions, JobPayload
from aftermeet.utils import get_logger, log_business_event
from aftermeet.utils.backoff import compute_backoff_seconds
from aftermeet.utils.observability import job_log_context
from aftermeet.utils.time import utc_now, ensure_utc

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class JobRecord:
    id: int
    queue_name: str
    kind: str
    payload: dict[str, Any]
    state: JobState
    attempts_made: int
    max_attempts: int
    backoff_strategy: BackoffStrategy
    backoff_delay: float
    run_at: datetime
    progress: int
    created_at: datetime
    resource_key: str
    processed_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    failure_reason: Optional[str] = None
    permanent_failure: bool = False
    result: Optional[dict[str, Any]] = None
    generation: int = 0
    retry_of: Optional[int] = None
    resubmitted_at: Optional[datetime] = field(default=None, compare=False)

    @classmethod
    def from_row(cls, row: Job) -> "JobRecord":
        return cls(
            id=row.id,
            queue_name=row.queue_name,
            kind=row.kind,
            payload=dict(row.payload or {}),
            state=row.state,
            attempts_made=row.attempts_made,
            max_attempts=row.max_attempts,
            backoff_strategy=row.backoff_strategy,
            backoff_delay=row.backoff_delay,
            run_at=row.run_at,
            progress=row.progress,
            created_at=row.created_at,
            resource_key=row.resource_key,
            processed_at=row.processed_at,
            finished_at=row.finished_at,
            failure_reason=row.failure_reason,
            permanent_failure=bool(row.permanent_failure),
            result=row.result,
            generation=row.generation,
            retry_of=row.retry_of,
            resubmitted_at=row.resubmitted_at,
        )

    @property
    def is_final_attempt(self) -> bool:
        return self.attempts_made + 1 >= self.max_attempts

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "queue_name": self.queue_name,
            "kind": self.kind,
            "payload": self.payload,
            "state": self.state.value,
            "attempts_made": self.attempts_made,
            "max_attempts": self.max_attempts,
            "backoff": {"strategy": self.backoff_strategy.value, "delay_seconds": self.backoff_delay},
            "progress": self.progress,
            "run_at": self.run_at,
            "created_at": self.created_at,
            "processed_at": self.processed_at,
            "finished_at": self.finished_at,
            "failure_reason": self.failure_reason,
            "permanent_failure": self.permanent_failure,
            "result": self.result,
        }


def queue_defaults(queue_name: str) -> dict[str, Any]:
    cfg = QUEUE_SETTINGS.get(ensure_queue(queue_name), {})
    return dict(cfg) if isinstance(cfg, dict) else {}


def _coerce_states(states: Optional[Iterable[JobState | str]]) -> list[JobState]:
    if not states:
        return []
    try:
        return [s if isinstance(s, JobState) else JobState(str(s)) for s in states]
    except ValueError as e:
        raise InvalidPayloadError(str(e)) from e


class JobStore:
    def __init__(self, session_factory: Callable[[], Session] = SessionLocal, *, clock: Callable[[], datetime] = utc_now):
        self._session_factory = session_factory
        self._clock = clock

    def now(self) -> datetime:
        return self._clock()

    @contextmanager
    def _session(self) -> Iterator[Session]:
        session = self._session_factory()
        try:
            yield session
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    # ------------------------------------------------------------------ #
    # Producers
    # ------------------------------------------------------------------ #
    def enqueue(
        self,
        queue_name: str,
        kind: str,
        payload: Mapping[str, Any] | JobPayload,
        *,
        delay: float = 0.0,
        run_at: Optional[datetime] = None,
        max_attempts: Optional[int] = None,
        backoff: Optional[BackoffOptions] = None,
    ) -> JobRecord:
        """Validate and insert a job; ``delayed`` when it may not run yet.

        Raises InvalidQueueError, InvalidPayloadError or DuplicateJobError; nothing
        is stored in those cases.
        """
        model = validate_payload(queue_name, kind, payload)
        if delay < 0:
            raise InvalidPayloadError("delay must be >= 0")
        defaults = queue_defaults(queue_name)
        attempts = int(max_attempts if max_attempts is not None else defaults.get("max_attempts", 1))
        if attempts < 1:
            raise InvalidPayloadError("max_attempts must be >= 1")
        if backoff is None:
            strategy = BackoffStrategy(str(defaults.get("backoff_strategy", BackoffStrategy.EXPONENTIAL.value)))
            backoff_delay = float(defaults.get("backoff_delay", 0.0))
        else:
            strategy, backoff_delay = backoff.strategy, float(backoff.delay_seconds)

        now = self.now()
        effective_run_at = ensure_utc(run_at) if run_at is not None else now + timedelta(seconds=delay)
        state = JobState.DELAYED if effective_run_at > now else JobState.WAITING
        key = resource_key(kind, model)

        with self._session() as session:
            job = Job(
                queue_name=queue_name,
                kind=kind,
                payload=model.model_dump(mode="json"),
                state=state,
                attempts_made=0,
                max_attempts=attempts,
                backoff_strategy=strategy,
                backoff_delay=backoff_delay,
                run_at=effective_run_at,
                progress=0,
                created_at=now,
                resource_key=key,
                active_key=key,
            )
            session.add(job)
            try:
                session.commit()
            except IntegrityError:
                session.rollback()
                logger.info("Duplicate job rejected", queue=queue_name, kind=kind, resource_key=key)
                raise DuplicateJobError(queue_name, key) from None
            record = JobRecord.from_row(job)

        log_business_event(
            event_type="job_enqueued",
            details={**job_log_context(record), "state": record.state.value, "run_at": record.run_at.isoformat()},
        )
        return record

    # ------------------------------------------------------------------ #
    # Consumers
    # ------------------------------------------------------------------ #
    def claim_next(self, queue_name: str) -> Optional[JobRecord]:
        """Atomically move the oldest eligible job to ``active``; None when idle or paused."""
        ensure_queue(queue_name)
        batch = int(QUEUE_SETTINGS.get("claim_batch_size", 10))  # type: ignore[arg-type]
        with self._session() as session:
            if self._is_paused(session, queue_name):
                return None
            while True:
                now = self.now()
                candidates = session.scalars(
                    select(Job.id)
                    .where(
                        Job.queue_name == queue_name,
                        Job.state.in_(PENDING_JOB_STATES),
                        Job.run_at <= now,
                    )
                    .order_by(Job.run_at, Job.id)
                    .limit(batch)
                ).all()
                session.commit()
                if not candidates:
                    return None
                for job_id in candidates:
                    result = session.execute(
                        update(Job)
                        .where(Job.id == job_id, Job.state.in_(PENDING_JOB_STATES), Job.run_at <= now)
                        .values(state=JobState.ACTIVE, processed_at=now)
                        .execution_options(synchronize_session=False)
                    )
                    session.commit()
                    if result.rowcount == 1:
                        record = JobRecord.from_row(session.get(Job, job_id))  # type: ignore[arg-type]
                        logger.debug("Job claimed", **job_log_context(record))
                        return record
                # Every candidate went to another dispatcher; look again.

    def report_progress(self, job_id: int, percent: int | float) -> None:
        """Raise ``progress`` of an active job; lower values are ignored."""
        pct = max(0, min(100, int(percent)))
        with self._session() as session:
            session.execute(
                update(Job)
                .where(Job.id == job_id, Job.state == JobState.ACTIVE, Job.progress < pct)
                .values(progress=pct)
                .execution_options(synchronize_session=False)
            )
            session.commit()

    def complete(self, job_id: int, result: Optional[dict[str, Any]] = None) -> JobRecord:
        now = self.now()
        with self._session() as session:
            res = session.execute(
                update(Job)
                .where(Job.id == job_id, Job.state == JobState.ACTIVE)
                .values(state=JobState.COMPLETED, finished_at=now, active_key=None, result=result)
                .execution_options(synchronize_session=False)
            )
            session.commit()
            if res.rowcount != 1:
                self._raise_not_active(session, job_id)
            record = JobRecord.from_row(session.get(Job, job_id))  # type: ignore[arg-type]

        log_business_event(event_type="job_completed", details=job_log_context(record))
        return record

    def fail(self, job_id: int, reason: str, *, retryable: bool = True) -> JobRecord:
        """Record a failed attempt.

        Retries (state ``delayed``) while attempts remain and the failure is
        retryable; otherwise the job becomes ``failed`` for good.
        """
        now = self.now()
        with self._session() as session:
            job = session.get(Job, job_id)
            if job is None:
                raise JobNotFoundError(job_id)
            if job.state != JobState.ACTIVE:
                raise InvalidJobStateError(job_id, job.state.value, JobState.ACTIVE.value)
            attempts = job.attempts_made
            if retryable and attempts + 1 < job.max_attempts:
                delay = compute_backoff_seconds(attempts, strategy=job.backoff_strategy.value, delay=job.backoff_delay)
                values: dict[str, Any] = {
                    "state": JobState.DELAYED,
                    "attempts_made": attempts + 1,
                    "run_at": now + timedelta(seconds=delay),
                    "failure_reason": reason,
                }
            else:
                values = {
                    "state": JobState.FAILED,
                    "attempts_made": attempts + 1,
                    "finished_at": now,
                    "failure_reason": reason,
                    "permanent_failure": not retryable,
                    "active_key": None,
                }
            res = session.execute(
                update(Job)
                .where(Job.id == job_id, Job.state == JobState.ACTIVE, Job.attempts_made == attempts)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            session.commit()
            if res.rowcount != 1:
                self._raise_not_active(session, job_id)
            session.expire_all()
            record = JobRecord.from_row(session.get(Job, job_id))  # type: ignore[arg-type]

        if record.state == JobState.FAILED:
            log_business_event(
                event_type="job_failed",
                details={**job_log_context(record), "reason": reason, "permanent": not retryable},
            )
        else:
            logger.warning(
                "Job attempt failed; retry scheduled",
                reason=reason,
                run_at=record.run_at.isoformat(),
                **job_log_context(record),
            )
        return record

    def requeue_stalled(self, queue_name: str, stalled_before: datetime) -> int:
        """Recover active jobs claimed before ``stalled_before`` whose worker never reported back.

        A stall counts as a failed attempt: the job goes back to ``delayed`` with
        its usual backoff while attempts remain, otherwise it becomes ``failed``
        and releases its resource.
        """
        ensure_queue(queue_name)
        cutoff = ensure_utc(stalled_before)
        recovered = 0
        with self._session() as session:
            stalled = [
                JobRecord.from_row(row)
                for row in session.scalars(
                    select(Job)
                    .where(
                        Job.queue_name == queue_name,
                        Job.state == JobState.ACTIVE,
                        Job.processed_at < cutoff,
                    )
                    .order_by(Job.id)
                ).all()
            ]
            session.commit()
            for job in stalled:
                now = self.now()
                reason = f"Job stalled: no result since {job.processed_at.isoformat() if job.processed_at else 'claim'}"
                if job.attempts_made + 1 < job.max_attempts:
                    delay = compute_backoff_seconds(
                        job.attempts_made, strategy=job.backoff_strategy.value, delay=job.backoff_delay
                    )
                    values: dict[str, Any] = {
                        "state": JobState.DELAYED,
                        "attempts_made": job.attempts_made + 1,
                        "run_at": now + timedelta(seconds=delay),
                        "failure_reason": reason,
                    }
                else:
                    values = {
                        "state": JobState.FAILED,
                        "attempts_made": job.attempts_made + 1,
                        "finished_at": now,
                        "failure_reason": reason,
                        "active_key": None,
                    }
                res = session.execute(
                    update(Job)
                    .where(
                        Job.id == job.id,
                        Job.state == JobState.ACTIVE,
                        Job.attempts_made == job.attempts_made,
                        Job.processed_at < cutoff,
                    )
                    .values(**values)
                    .execution_options(synchronize_session=False)
                )
                session.commit()
                if res.rowcount != 1:
                    # Finished (or already recovered) in the meantime.
                    continue
                recovered += 1
                logger.warning(
                    "Stalled job recovered",
                    new_state=values["state"].value,
                    processed_at=job.processed_at.isoformat() if job.processed_at else None,
                    **job_log_context(job),
                )
        if recovered:
            log_business_event(
                event_type="stalled_jobs_recovered",
                details={"queue": queue_name, "count": recovered},
            )
        return recovered

    # ------------------------------------------------------------------ #
    # Administration
    # ------------------------------------------------------------------ #
    def cancel(self, queue_name: str, predicate: Callable[[JobRecord], bool]) -> bool:
        """Remove waiting/delayed jobs matching ``predicate``; active jobs are left alone."""
        ensure_queue(queue_name)
        with self._session() as session:
            rows = session.scalars(
                select(Job).where(Job.queue_name == queue_name, Job.state.in_(PENDING_JOB_STATES))
            ).all()
            ids = [row.id for row in rows if predicate(JobRecord.from_row(row))]
            if not ids:
                return False
            res = session.execute(
                delete(Job)
                .where(Job.id.in_(ids), Job.state.in_(PENDING_JOB_STATES))
                .execution_options(synchronize_session=False)
            )
            session.commit()
            removed = res.rowcount or 0
        if removed:
            logger.info("Jobs cancelled", queue=queue_name, removed=removed, job_ids=ids)
        return removed > 0

    def prune(self, queue_name: str, older_than: datetime) -> int:
        """Delete completed/failed jobs finished before ``older_than``."""
        ensure_queue(queue_name)
        cutoff = ensure_utc(older_than)
        with self._session() as session:
            res = session.execute(
                delete(Job)
                .where(
                    Job.queue_name == queue_name,
                    Job.state.in_(TERMINAL_JOB_STATES),
                    Job.finished_at < cutoff,
                )
                .execution_options(synchronize_session=False)
            )
            session.commit()
            removed = res.rowcount or 0
        if removed:
            logger.info("Finished jobs pruned", queue=queue_name, removed=removed, cutoff=cutoff.isoformat())
        return removed

    def get(self, job_id: int) -> JobRecord:
        with self._session() as session:
            job = session.get(Job, job_id)
            if job is None:
                raise JobNotFoundError(job_id)
            return JobRecord.from_row(job)

    def list_by_queue(
        self,
        queue_name: str,
        states: Optional[Iterable[JobState | str]] = None,
        *,
        limit: Optional[int] = None,
    ) -> list[JobRecord]:
        ensure_queue(queue_name)
        wanted = _coerce_states(states)
        stmt = select(Job).where(Job.queue_name == queue_name)
        if wanted:
            stmt = stmt.where(Job.state.in_(wanted))
        stmt = stmt.order_by(Job.id)
        if limit is not None:
            stmt = stmt.limit(limit)
        with self._session() as session:
            return [JobRecord.from_row(row) for row in session.scalars(stmt).all()]

    def summarize(self, queue_name: str) -> dict[str, Any]:
        ensure_queue(queue_name)
        counts = {state.value: 0 for state in JobState}
        with self._session() as session:
            rows = session.execute(
                select(Job.state, func.count(Job.id)).where(Job.queue_name == queue_name).group_by(Job.state)
            ).all()
            for state, count in rows:
                counts[JobState(state).value] = int(count)
            paused = self._is_paused(session, queue_name)
        return {"name": queue_name, **counts, "paused": paused}

    def pause(self, queue_name: str) -> None:
        self._set_paused(queue_name, True)
        logger.info("Queue paused", queue=queue_name)

    def resume(self, queue_name: str) -> None:
        self._set_paused(queue_name, False)
        logger.info("Queue resumed", queue=queue_name)

    def is_paused(self, queue_name: str) -> bool:
        ensure_queue(queue_name)
        with self._session() as session:
            return self._is_paused(session, queue_name)

    def retry_failed(
        self,
        queue_name: str,
        *,
        max_resubmits: Optional[int] = None,
        exclude_kinds: Optional[Iterable[str]] = None,
    ) -> int:
        """Resubmit retryable failed jobs as fresh copies; returns how many were resubmitted.

        The failed job keeps its terminal state and is marked ``resubmitted_at``
        so it is copied at most once. Copies carry ``generation + 1`` and stop
        once ``max_resubmits`` is reached.
        """
        ensure_queue(queue_name)
        limit = int(max_resubmits if max_resubmits is not None else RETRY_SWEEP["max_resubmits"])  # type: ignore[arg-type]
        excluded = set(exclude_kinds if exclude_kinds is not None else RETRY_SWEEP["exclude_kinds"])  # type: ignore[arg-type]
        resubmitted = 0
        with self._session() as session:
            candidates = [
                JobRecord.from_row(row)
                for row in session.scalars(
                    select(Job)
                    .where(
                        Job.queue_name == queue_name,
                        Job.state == JobState.FAILED,
                        Job.permanent_failure.is_(False),
                        Job.resubmitted_at.is_(None),
                    )
                    .order_by(Job.id)
                ).all()
            ]
            session.commit()
            for failed in candidates:
                if failed.kind in excluded or failed.generation >= limit:
                    continue
                now = self.now()
                marked = session.execute(
                    update(Job)
                    .where(Job.id == failed.id, Job.resubmitted_at.is_(None))
                    .values(resubmitted_at=now)
                    .execution_options(synchronize_session=False)
                )
                if marked.rowcount != 1:
                    session.rollback()
                    continue
                session.add(
                    Job(
                        queue_name=failed.queue_name,
                        kind=failed.kind,
                        payload=failed.payload,
                        state=JobState.WAITING,
                        attempts_made=0,
                        max_attempts=failed.max_attempts,
                        backoff_strategy=failed.backoff_strategy,
                        backoff_delay=failed.backoff_delay,
                        run_at=now,
                        progress=0,
                        created_at=now,
                        resource_key=failed.resource_key,
                        active_key=failed.resource_key,
                        generation=failed.generation + 1,
                        retry_of=failed.id,
                    )
                )
                try:
                    session.commit()
                    resubmitted += 1
                except IntegrityError:
                    # A newer job already owns the resource; the failed one is superseded.
                    session.rollback()
                    session.execute(
                        update(Job)
                        .where(Job.id == failed.id, Job.resubmitted_at.is_(None))
                        .values(resubmitted_at=now)
                        .execution_options(synchronize_session=False)
                    )
                    session.commit()
                    logger.info("Failed job superseded by an active job", **job_log_context(failed))
        if resubmitted:
            log_business_event(
                event_type="failed_jobs_resubmitted",
                details={"queue": queue_name, "count": resubmitted},
            )
        return resubmitted

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #
    @staticmethod
    def _is_paused(session: Session, queue_name: str) -> bool:
        row = session.get(QueueState, queue_name)
        return bool(row and row.paused)

    def _set_paused(self, queue_name: str, paused: bool) -> None:
        ensure_queue(queue_name)
        now = self.now()
        with self._session() as session:
            row = session.get(QueueState, queue_name)
            if row is None:
                session.add(QueueState(name=queue_name, paused=paused, updated_at=now))
                try:
                    session.commit()
                    return
                except IntegrityError:
                    session.rollback()
            session.execute(
                update(QueueState)
                .where(QueueState.name == queue_name)
                .values(paused=paused, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            session.commit()

    @staticmethod
    def _raise_not_active(session: Session, job_id: int) -> None:
        session.expire_all()
        job = session.get(Job, job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        raise InvalidJobStateError(job_id, job.state.value, JobState.ACTIVE.value)


__all__ = ["JobStore", "JobRecord", "queue_defaults"]
