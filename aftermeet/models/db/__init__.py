from .jobs import Job, QueueState
from .meetings import Meeting
from .social_posts import SocialPost
from .accounts import Account
from .enums import (
    JobState,
    BackoffStrategy,
    MeetingStatus,
    MeetingPlatform,
    PostStatus,
    SocialPlatform,
    AccountProvider,
    CleanupResource,
)

__all__ = [
    "Job",
    "QueueState",
    "Meeting",
    "SocialPost",
    "Account",
    "JobState",
    "BackoffStrategy",
    "MeetingStatus",
    "MeetingPlatform",
    "PostStatus",
    "SocialPlatform",
    "AccountProvider",
    "CleanupResource",
]
