from aftermeet.config import (
    BOT_LIFECYCLE_QUEUE,
    CONTENT_GENERATION_QUEUE,
    SOCIAL_PUBLISHING_QUEUE,
    CLEANUP_QUEUE,
)
from aftermeet.jobs import kinds
from aftermeet.jobs.registry import HandlerRegistry
from .bot_lifecycle import create_bot, stop_bot, fetch_transcript, sync_calendar
from .content_generation import generate_content
from .social_publishing import post_content
from .cleanup import cleanup_resources


def default_registry() -> HandlerRegistry:
    """Registry with a handler for every known job kind."""
    registry = HandlerRegistry()
    registry.add(BOT_LIFECYCLE_QUEUE, kinds.CREATE_BOT, create_bot)
    registry.add(BOT_LIFECYCLE_QUEUE, kinds.STOP_BOT, stop_bot)
    registry.add(BOT_LIFECYCLE_QUEUE, kinds.FETCH_TRANSCRIPT, fetch_transcript)
    registry.add(BOT_LIFECYCLE_QUEUE, kinds.SYNC_CALENDAR, sync_calendar)
    registry.add(CONTENT_GENERATION_QUEUE, kinds.GENERATE_CONTENT, generate_content)
    registry.add(SOCIAL_PUBLISHING_QUEUE, kinds.POST_CONTENT, post_content)
    registry.add(CLEANUP_QUEUE, kinds.CLEANUP_RESOURCES, cleanup_resources)
    return registry


__all__ = [
    "default_registry",
    "create_bot",
    "stop_bot",
    "fetch_transcript",
    "sync_calendar",
    "generate_content",
    "post_content",
    "cleanup_resources",
]
