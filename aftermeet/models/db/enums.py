"""Central Enum definitions for job and domain states.

These replace scattered string literals to ensure consistency across
DB models, schemas, handlers and the reconciler.
"""
from __future__ import annotations
import enum


# ------------------------------ Job Enums ------------------------------- #

class JobState(str, enum.Enum):
    WAITING = "waiting"
    DELAYED = "delayed"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobState.COMPLETED, JobState.FAILED)


PENDING_JOB_STATES = (JobState.WAITING, JobState.DELAYED)
TERMINAL_JOB_STATES = (JobState.COMPLETED, JobState.FAILED)


class BackoffStrategy(str, enum.Enum):
    FIXED = "fixed"
    EXPONENTIAL = "exponential"

# ----------------------------- Domain Enums ----------------------------- #

class MeetingStatus(str, enum.Enum):
    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class MeetingPlatform(str, enum.Enum):
    ZOOM = "zoom"
    TEAMS = "teams"
    MEET = "meet"


class PostStatus(str, enum.Enum):
    DRAFT = "draft"
    POSTED = "posted"
    FAILED = "failed"


class SocialPlatform(str, enum.Enum):
    LINKEDIN = "linkedin"
    FACEBOOK = "facebook"


class AccountProvider(str, enum.Enum):
    GOOGLE = "google"
    LINKEDIN = "linkedin"
    FACEBOOK = "facebook"


class CleanupResource(str, enum.Enum):
    BOTS = "bots"
    TRANSCRIPTS = "transcripts"
    SOCIAL_POSTS = "social-posts"
    TEMP_FILES = "temp-files"

__all__ = [
    "JobState",
    "PENDING_JOB_STATES",
    "TERMINAL_JOB_STATES",
    "BackoffStrategy",
    "MeetingStatus",
    "MeetingPlatform",
    "PostStatus",
    "SocialPlatform",
    "AccountProvider",
    "CleanupResource",
]
