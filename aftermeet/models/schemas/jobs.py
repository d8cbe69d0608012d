"""
Pydantic schemas for job payloads and the jobs admin API.

Every job kind has a payload model; ``resource_id`` names the logical resource
the job acts on and feeds the one-active-job-per-resource rule.
"""
from datetime import datetime
from typing import Optional, List, Dict, Any
from pydantic import BaseModel, Field, ConfigDict

from aftermeet.config import CONTENT_SETTINGS, CLEANUP_SETTINGS
from aftermeet.models.db.enums import SocialPlatform, CleanupResource, BackoffStrategy


class JobPayload(BaseModel):
    """Base for job payloads; unknown fields are rejected."""
    model_config = ConfigDict(extra="forbid")

    def resource_id(self) -> str:
        raise NotImplementedError


# ------------------------------ Bot lifecycle ---------------------------- #

class BotConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    record_video: bool = True
    record_audio: bool = True
    output_transcription: bool = True


class CreateBotPayload(JobPayload):
    meeting_id: int = Field(gt=0)
    scheduled_time: Optional[datetime] = Field(None, description="When the bot should join")
    bot_config: BotConfig = Field(default_factory=BotConfig)

    def resource_id(self) -> str:
        return f"meeting-{self.meeting_id}"


class StopBotPayload(JobPayload):
    meeting_id: int = Field(gt=0)
    bot_id: Optional[str] = Field(None, description="Defaults to the bot currently assigned")

    def resource_id(self) -> str:
        return f"meeting-{self.meeting_id}"


class FetchTranscriptPayload(JobPayload):
    meeting_id: int = Field(gt=0)

    def resource_id(self) -> str:
        return f"meeting-{self.meeting_id}"


class SyncCalendarPayload(JobPayload):
    user_id: str = Field(min_length=1)

    def resource_id(self) -> str:
        return f"user-{self.user_id}"


# --------------------------- Content generation -------------------------- #

def _default_platforms() -> List[SocialPlatform]:
    return [SocialPlatform(p) for p in CONTENT_SETTINGS["default_platforms"]]  # type: ignore[union-attr]


class GenerateContentPayload(JobPayload):
    meeting_id: int = Field(gt=0)
    platforms: List[SocialPlatform] = Field(default_factory=_default_platforms, min_length=1)
    tone: Optional[str] = Field(None, max_length=64)

    def resource_id(self) -> str:
        return f"meeting-{self.meeting_id}"


# ---------------------------- Social publishing -------------------------- #

class PostContentPayload(JobPayload):
    social_post_id: int = Field(gt=0)
    platform: Optional[SocialPlatform] = None

    def resource_id(self) -> str:
        return f"post-{self.social_post_id}"


# --------------------------------- Cleanup ------------------------------- #

def _default_resources() -> List[CleanupResource]:
    return [CleanupResource(r) for r in CLEANUP_SETTINGS["default_resources"]]  # type: ignore[union-attr]


class CleanupPayload(JobPayload):
    older_than: datetime
    resources: List[CleanupResource] = Field(default_factory=_default_resources, min_length=1)

    def resource_id(self) -> str:
        # A single cleanup pass at a time
        return "resources"


# ---------------------------------- API ---------------------------------- #

class BackoffOptions(BaseModel):
    strategy: BackoffStrategy = BackoffStrategy.EXPONENTIAL
    delay_seconds: float = Field(ge=0)


class JobRead(BaseModel):
    """Serialized job record for inspection endpoints."""
    id: int
    queue_name: str
    kind: str
    payload: Dict[str, Any]
    state: str
    attempts_made: int
    max_attempts: int
    backoff: BackoffOptions
    progress: int
    run_at: datetime
    created_at: datetime
    processed_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    failure_reason: Optional[str] = None
    permanent_failure: bool = False
    result: Optional[Dict[str, Any]] = None


class QueueSummary(BaseModel):
    name: str
    waiting: int = 0
    delayed: int = 0
    active: int = 0
    completed: int = 0
    failed: int = 0
    paused: bool = False


class MeetingBotRequest(BaseModel):
    scheduled_time: datetime = Field(description="When the bot should join the meeting")
    bot_config: Optional[BotConfig] = None


class ContentGenerationRequest(BaseModel):
    meeting_id: int = Field(gt=0)
    platforms: Optional[List[SocialPlatform]] = None
    tone: Optional[str] = None
    delay_seconds: float = Field(0, ge=0)


class SocialPostingRequest(BaseModel):
    scheduled_time: Optional[datetime] = Field(None, description="Publish at this time; immediately when omitted")


class CleanupRequest(BaseModel):
    older_than_days: int = Field(30, ge=0)
    resources: Optional[List[CleanupResource]] = None


class GenericJobRequest(BaseModel):
    kind: str = Field(min_length=1)
    payload: Dict[str, Any] = Field(default_factory=dict)
    delay_seconds: float = Field(0, ge=0)
    max_attempts: Optional[int] = Field(None, ge=1)
    backoff: Optional[BackoffOptions] = None
