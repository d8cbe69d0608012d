"""SQLAlchemy models for durable background jobs and per-queue state."""
from __future__ import annotations
from datetime import datetime
from typing import Any

from sqlalchemy import Integer, String, Text, Boolean, Float, Enum, JSON, UniqueConstraint, Index
from sqlalchemy.orm import Mapped, mapped_column

from aftermeet.database import Base, UTCDateTime
from .enums import JobState, BackoffStrategy


class Job(Base):
    __tablename__ = "jobs"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    queue_name: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    kind: Mapped[str] = mapped_column(String(64), nullable=False)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    state: Mapped[JobState] = mapped_column(Enum(JobState), nullable=False, index=True)

    attempts_made: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    backoff_strategy: Mapped[BackoffStrategy] = mapped_column(Enum(BackoffStrategy), nullable=False)
    backoff_delay: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)

    run_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    progress: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    processed_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    finished_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    permanent_failure: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    result: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    # Logical resource (e.g. "create-bot:42"); active_key mirrors it until the job is terminal.
    resource_key: Mapped[str] = mapped_column(String(255), nullable=False)
    active_key: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Retry-failed sweep bookkeeping
    generation: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    retry_of: Mapped[int | None] = mapped_column(Integer, nullable=True)
    resubmitted_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    __table_args__ = (
        UniqueConstraint("queue_name", "active_key", name="uq_jobs_one_active_per_resource"),
        Index("ix_jobs_claim_order", "queue_name", "state", "run_at", "id"),
        Index("ix_jobs_finished", "queue_name", "finished_at"),
    )

    def __repr__(self) -> str:
        return f"<Job id={self.id} {self.queue_name}/{self.kind} state={self.state.value}>"


class QueueState(Base):
    __tablename__ = "queue_states"
    name: Mapped[str] = mapped_column(String(64), primary_key=True)
    paused: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    updated_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
