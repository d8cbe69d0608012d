from .base import ResponseBase
from .jobs import (
    JobPayload,
    BotConfig,
    CreateBotPayload,
    StopBotPayload,
    FetchTranscriptPayload,
    SyncCalendarPayload,
    GenerateContentPayload,
    PostContentPayload,
    CleanupPayload,
    BackoffOptions,
    JobRead,
    QueueSummary,
    MeetingBotRequest,
    ContentGenerationRequest,
    SocialPostingRequest,
    CleanupRequest,
    GenericJobRequest,
)
from .content import MeetingInsights, CalendarEvent

__all__ = [
    # Base
    "ResponseBase",

    # Job payloads
    "JobPayload",
    "BotConfig",
    "CreateBotPayload",
    "StopBotPayload",
    "FetchTranscriptPayload",
    "SyncCalendarPayload",
    "GenerateContentPayload",
    "PostContentPayload",
    "CleanupPayload",

    # Jobs API
    "BackoffOptions",
    "JobRead",
    "QueueSummary",
    "MeetingBotRequest",
    "ContentGenerationRequest",
    "SocialPostingRequest",
    "CleanupRequest",
    "GenericJobRequest",

    # Collaborators
    "MeetingInsights",
    "CalendarEvent",
]
