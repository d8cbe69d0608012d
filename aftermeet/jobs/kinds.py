"""Job kinds per queue and the payload schema each one accepts."""
from __future__ import annotations

from typing import Any, Mapping, Type

from pydantic import ValidationError

from aftermeet.config import (
    BOT_LIFECYCLE_QUEUE,
    CONTENT_GENERATION_QUEUE,
    SOCIAL_PUBLISHING_QUEUE,
    CLEANUP_QUEUE,
    QUEUE_NAMES,
)
from aftermeet.jobs.errors import InvalidQueueError, InvalidPayloadError
from aftermeet.models.schemas.jobs import (
    JobPayload,
    CreateBotPayload,
    StopBotPayload,
    FetchTranscriptPayload,
    SyncCalendarPayload,
    GenerateContentPayload,
    PostContentPayload,
    CleanupPayload,
)

CREATE_BOT = "create-bot"
STOP_BOT = "stop-bot"
FETCH_TRANSCRIPT = "fetch-transcript"
SYNC_CALENDAR = "sync-calendar"
GENERATE_CONTENT = "generate-content"
POST_CONTENT = "post-content"
CLEANUP_RESOURCES = "cleanup-resources"

PAYLOAD_SCHEMAS: dict[str, dict[str, Type[JobPayload]]] = {
    BOT_LIFECYCLE_QUEUE: {
        CREATE_BOT: CreateBotPayload,
        STOP_BOT: StopBotPayload,
        FETCH_TRANSCRIPT: FetchTranscriptPayload,
        SYNC_CALENDAR: SyncCalendarPayload,
    },
    CONTENT_GENERATION_QUEUE: {
        GENERATE_CONTENT: GenerateContentPayload,
    },
    SOCIAL_PUBLISHING_QUEUE: {
        POST_CONTENT: PostContentPayload,
    },
    CLEANUP_QUEUE: {
        CLEANUP_RESOURCES: CleanupPayload,
    },
}


def ensure_queue(queue_name: str) -> str:
    if queue_name not in QUEUE_NAMES:
        raise InvalidQueueError(queue_name)
    return queue_name


def validate_payload(queue_name: str, kind: str, payload: Mapping[str, Any] | JobPayload) -> JobPayload:
    """Parse ``payload`` with the schema registered for (queue, kind)."""
    schemas = PAYLOAD_SCHEMAS[ensure_queue(queue_name)]
    schema = schemas.get(kind)
    if schema is None:
        raise InvalidPayloadError(f"Unknown job kind '{kind}' for queue '{queue_name}'")
    if isinstance(payload, schema):
        return payload
    if isinstance(payload, JobPayload):
        payload = payload.model_dump(mode="json")
    if not isinstance(payload, Mapping):
        raise InvalidPayloadError(f"Payload for '{kind}' must be an object")
    try:
        return schema.model_validate(dict(payload))
    except ValidationError as e:
        raise InvalidPayloadError(f"Invalid payload for '{kind}'", errors=e.errors(include_url=False, include_context=False, include_input=False)) from e


def resource_key(kind: str, payload: JobPayload) -> str:
    return f"{kind}:{payload.resource_id()}"


__all__ = [
    "CREATE_BOT",
    "STOP_BOT",
    "FETCH_TRANSCRIPT",
    "SYNC_CALENDAR",
    "GENERATE_CONTENT",
    "POST_CONTENT",
    "CLEANUP_RESOURCES",
    "PAYLOAD_SCHEMAS",
    "ensure_queue",
    "validate_payload",
    "resource_key",
]
