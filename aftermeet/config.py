"""Core application configuration & tunable orchestration rules.

Queue defaults, sweep cadences, retry limits and collaborator endpoints are
centralized here so they can be adjusted without diving into handler logic.
Values are module constants (mutable dicts so tests can monkeypatch them) with
environment overrides where a deployment is expected to change them.
"""
from __future__ import annotations

import os


def _env_bool(name: str, default: bool) -> bool:
	raw = os.getenv(name)
	if raw is None or not raw.strip():
		return default
	return raw.strip().lower() in ("1", "true", "yes", "on")


# --------------------------------- Queues --------------------------------- #
BOT_LIFECYCLE_QUEUE = "bot-lifecycle"
CONTENT_GENERATION_QUEUE = "content-generation"
SOCIAL_PUBLISHING_QUEUE = "social-publishing"
CLEANUP_QUEUE = "cleanup"

QUEUE_NAMES: tuple[str, ...] = (
	BOT_LIFECYCLE_QUEUE,
	CONTENT_GENERATION_QUEUE,
	SOCIAL_PUBLISHING_QUEUE,
	CLEANUP_QUEUE,
)

QUEUE_SETTINGS: dict[str, dict[str, int | float | str] | int | float] = {
	# Per-queue job defaults; backoff delays are seconds.
	BOT_LIFECYCLE_QUEUE: {
		"max_attempts": 3,
		"backoff_strategy": "exponential",
		"backoff_delay": 5.0,
		"concurrency": 2,
	},
	CONTENT_GENERATION_QUEUE: {
		"max_attempts": 2,
		"backoff_strategy": "exponential",
		"backoff_delay": 10.0,
		"concurrency": 2,
	},
	SOCIAL_PUBLISHING_QUEUE: {
		"max_attempts": 3,
		"backoff_strategy": "exponential",
		"backoff_delay": 5.0,
		"concurrency": 2,
	},
	CLEANUP_QUEUE: {
		"max_attempts": 2,
		"backoff_strategy": "fixed",
		"backoff_delay": 30.0,
		"concurrency": 1,
	},
	"poll_interval_seconds": float(os.getenv("QUEUE_POLL_INTERVAL", "1.0")),
	"claim_batch_size": 10,  # candidates fetched per claim attempt
	"list_limit": 100,
}

# --------------------------------- Backoff -------------------------------- #
BACKOFF_POLICY: dict[str, int | float | str] = {
	# Fallback when a queue has no explicit policy.
	"strategy": "exponential",
	"delay_seconds": 2.0,
	"max_seconds": 3600,
	"jitter_pct": 0.0,
}

# -------------------------------- Scheduler ------------------------------- #
SCHEDULER_SETTINGS: dict[str, int | float | bool | str] = {
	"tick_seconds": float(os.getenv("SCHEDULER_TICK_SECONDS", "5")),
	# Sweep cadences (seconds)
	"bot_scheduling_interval": 5 * 60,
	"prune_interval": 60 * 60,
	"cleanup_interval": 24 * 60 * 60,
	"retry_failed_interval": 30 * 60,
	"content_trigger_interval": 15 * 60,
	"calendar_sync_interval": 15 * 60,
	"stalled_check_interval": 5 * 60,
	# Bot scheduling window
	"bot_lookahead_minutes": 20,
	"bot_lead_minutes": 15,
	# Retention
	"prune_age_minutes": 60,
	"stale_data_days": 30,
	# Active jobs with no result after this long are treated as crashed
	"stalled_job_minutes": int(os.getenv("STALLED_JOB_MINUTES", "10")),
	# Assumed meeting length when no end time is known
	"default_meeting_minutes": 60,
	# Cross-instance sweep lock
	"use_redis_lock": _env_bool("SCHEDULER_USE_REDIS_LOCK", False),
	"redis_url": os.getenv("REDIS_URL", "redis://localhost:6379/0"),
	"lock_prefix": "aftermeet:sweep:",
	"lock_ttl_seconds": 300,
	"redis_health_check_timeout": 2.0,
}

# ------------------------------- Retry Sweep ------------------------------ #
RETRY_SWEEP: dict[str, int | tuple[str, ...]] = {
	"max_resubmits": 3,
	# Publishing is bounded by its own attempt budget to avoid double posts.
	"exclude_kinds": ("post-content",),
	"queues": (BOT_LIFECYCLE_QUEUE, CONTENT_GENERATION_QUEUE, SOCIAL_PUBLISHING_QUEUE),
}

# ---------------------------- Content Generation -------------------------- #
CONTENT_SETTINGS: dict[str, int | str | list[str]] = {
	"min_transcript_chars": 100,
	"default_platforms": ["linkedin", "facebook"],
	"default_tone": "professional",
}

# --------------------------------- Cleanup -------------------------------- #
CLEANUP_SETTINGS: dict[str, str | list[str]] = {
	"temp_dir": os.getenv("AFTERMEET_TEMP_DIR", "./tmp"),
	"default_resources": ["bots", "transcripts", "social-posts", "temp-files"],
}

# ----------------------------- Circuit Breaker ---------------------------- #
CIRCUIT_BREAKER: dict[str, int | float] = {
	"failure_threshold": 5,          # Consecutive failures before OPEN
	"open_cooldown_seconds": 300,    # Stay OPEN for 5 minutes
	"half_open_probe_count": 1,      # Probes allowed in HALF_OPEN
}

# ------------------------------ Collaborators ----------------------------- #
HTTP_TIMEOUT_SECONDS: float = float(os.getenv("HTTP_TIMEOUT_SECONDS", "30"))

RECALL_SETTINGS: dict[str, str | None] = {
	"base_url": os.getenv("RECALL_API_URL", "https://api.recall.ai/api/v1"),
	"api_key": os.getenv("RECALL_API_KEY") or None,
	"bot_name": os.getenv("RECALL_BOT_NAME", "AfterMeet Notetaker"),
}

OPENAI_SETTINGS: dict[str, str | float | None] = {
	"base_url": os.getenv("OPENAI_API_URL", "https://api.openai.com/v1"),
	"api_key": os.getenv("OPENAI_API_KEY") or None,
	"model": os.getenv("OPENAI_MODEL", "gpt-4o-mini"),
	"temperature": 0.7,
}

LINKEDIN_SETTINGS: dict[str, str] = {
	"base_url": os.getenv("LINKEDIN_API_URL", "https://api.linkedin.com/v2"),
}

FACEBOOK_SETTINGS: dict[str, str] = {
	"base_url": os.getenv("FACEBOOK_API_URL", "https://graph.facebook.com/v18.0"),
}

GOOGLE_CALENDAR_SETTINGS: dict[str, str | int] = {
	"base_url": os.getenv("GOOGLE_CALENDAR_API_URL", "https://www.googleapis.com/calendar/v3"),
	"lookahead_days": 7,
	"max_results": 50,
}

# ------------------------------- Application ------------------------------ #
ENABLE_BACKGROUND_WORKERS: bool = _env_bool("ENABLE_BACKGROUND_WORKERS", True)

__all__ = [
	"BOT_LIFECYCLE_QUEUE",
	"CONTENT_GENERATION_QUEUE",
	"SOCIAL_PUBLISHING_QUEUE",
	"CLEANUP_QUEUE",
	"QUEUE_NAMES",
	# Rule groups
	"QUEUE_SETTINGS",
	"BACKOFF_POLICY",
	"SCHEDULER_SETTINGS",
	"RETRY_SWEEP",
	"CONTENT_SETTINGS",
	"CLEANUP_SETTINGS",
	"CIRCUIT_BREAKER",
	# Collaborators
	"HTTP_TIMEOUT_SECONDS",
	"RECALL_SETTINGS",
	"OPENAI_SETTINGS",
	"LINKEDIN_SETTINGS",
	"FACEBOOK_SETTINGS",
	"GOOGLE_CALENDAR_SETTINGS",
	"ENABLE_BACKGROUND_WORKERS",
]
