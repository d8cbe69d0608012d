"""Bot-lifecycle handlers: deploy and remove recording bots, collect transcripts, sync calendars."""
from __future__ import annotations

from typing import Any, Dict

from aftermeet.integrations.base import UpstreamError, UpstreamNotReadyError
from aftermeet.integrations.recall import FINISHED_STATUSES, detect_meeting_platform
from aftermeet.jobs.context import JobContext
from aftermeet.jobs.errors import PermanentJobError, TransientJobError
from aftermeet.models.db import Meeting, MeetingStatus
from aftermeet.models.schemas.jobs import (
    CreateBotPayload,
    StopBotPayload,
    FetchTranscriptPayload,
    SyncCalendarPayload,
)
from aftermeet.utils import get_logger
from .common import upstream_failure

logger = get_logger(__name__)


async def create_bot(payload: CreateBotPayload, ctx: JobContext) -> Dict[str, Any]:
    """Send a recording bot to an upcoming meeting and remember its id."""
    resource = payload.resource_id()
    with ctx.session() as session:
        meeting = session.get(Meeting, payload.meeting_id)
        if meeting is None:
            raise PermanentJobError("meeting not found", resource_id=resource)
        if meeting.bot_id:
            logger.info("Bot already assigned; nothing to do", meeting_id=meeting.id, bot_id=meeting.bot_id)
            return {"meeting_id": meeting.id, "bot_id": meeting.bot_id, "skipped": "bot_already_assigned"}
        if not meeting.recall_enabled:
            raise PermanentJobError("recording disabled for meeting", resource_id=resource)
        if meeting.status != MeetingStatus.SCHEDULED:
            raise PermanentJobError(f"meeting is {meeting.status.value}", resource_id=resource)
        if meeting.start_time <= ctx.now():
            raise PermanentJobError("meeting already started", resource_id=resource)
        meeting_url = meeting.meeting_url
        if detect_meeting_platform(meeting_url) is None:
            raise PermanentJobError(f"invalid meeting URL: {meeting_url!r}", resource_id=resource)
    ctx.report_progress(25)

    recording = ctx.collaborators.require("recording")
    options: Dict[str, Any] = payload.bot_config.model_dump()
    if payload.scheduled_time is not None:
        options["join_at"] = payload.scheduled_time.isoformat()
    try:
        bot_id = await recording.create_bot(meeting_url, options)
    except UpstreamError as e:
        raise upstream_failure(e, resource) from e
    ctx.report_progress(75)

    with ctx.session() as session:
        meeting = session.get(Meeting, payload.meeting_id)
        if meeting is None:
            raise PermanentJobError(f"meeting deleted while bot {bot_id} was created", resource_id=resource)
        meeting.bot_id = bot_id
        meeting.status = MeetingStatus.IN_PROGRESS
        session.commit()
    ctx.report_progress(100)
    logger.info("Recording bot assigned", meeting_id=payload.meeting_id, bot_id=bot_id)
    return {"meeting_id": payload.meeting_id, "bot_id": bot_id}


async def stop_bot(payload: StopBotPayload, ctx: JobContext) -> Dict[str, Any]:
    """Remove a meeting's bot; a bot the service no longer knows counts as removed."""
    resource = payload.resource_id()
    with ctx.session() as session:
        meeting = session.get(Meeting, payload.meeting_id)
        if meeting is None:
            raise PermanentJobError("meeting not found", resource_id=resource)
        bot_id = payload.bot_id or meeting.bot_id
    if not bot_id:
        return {"meeting_id": payload.meeting_id, "skipped": "no_bot"}

    recording = ctx.collaborators.require("recording")
    try:
        await recording.delete_bot(bot_id)
    except UpstreamNotReadyError:
        logger.info("Bot already gone", meeting_id=payload.meeting_id, bot_id=bot_id)
    except UpstreamError as e:
        raise upstream_failure(e, resource) from e

    with ctx.session() as session:
        meeting = session.get(Meeting, payload.meeting_id)
        if meeting is not None and meeting.bot_id == bot_id:
            meeting.bot_id = None
            session.commit()
    return {"meeting_id": payload.meeting_id, "bot_id": bot_id, "deleted": True}


async def fetch_transcript(payload: FetchTranscriptPayload, ctx: JobContext) -> Dict[str, Any]:
    """Attach the finished recording's transcript and mark the meeting completed."""
    resource = payload.resource_id()
    with ctx.session() as session:
        meeting = session.get(Meeting, payload.meeting_id)
        if meeting is None:
            raise PermanentJobError("meeting not found", resource_id=resource)
        if meeting.transcript:
            return {"meeting_id": meeting.id, "skipped": "transcript_present"}
        if not meeting.bot_id:
            raise PermanentJobError("meeting has no recording bot", resource_id=resource)
        bot_id = meeting.bot_id

    recording = ctx.collaborators.require("recording")
    try:
        status = await recording.get_status(bot_id)
        if status not in FINISHED_STATUSES:
            raise TransientJobError(f"recording not finished (status {status})", resource_id=resource)
        transcript = await recording.get_transcript(bot_id)
    except UpstreamError as e:
        raise upstream_failure(e, resource) from e
    if not transcript:
        raise TransientJobError("transcript not ready", resource_id=resource)
    ctx.report_progress(80)

    with ctx.session() as session:
        meeting = session.get(Meeting, payload.meeting_id)
        if meeting is None:
            raise PermanentJobError("meeting not found", resource_id=resource)
        meeting.transcript = transcript
        meeting.status = MeetingStatus.COMPLETED
        session.commit()
    return {"meeting_id": payload.meeting_id, "transcript_chars": len(transcript)}


async def sync_calendar(payload: SyncCalendarPayload, ctx: JobContext) -> Dict[str, Any]:
    """Upsert meetings from the user's upcoming calendar events."""
    calendar = ctx.collaborators.require("calendar")
    try:
        events = await calendar.list_upcoming_events(payload.user_id)
    except UpstreamError as e:
        raise upstream_failure(e, payload.resource_id()) from e

    created = updated = 0
    with ctx.session() as session:
        for event in events:
            meeting = session.query(Meeting).filter(
                Meeting.user_id == payload.user_id,
                Meeting.calendar_event_id == event.event_id,
            ).first()
            platform = detect_meeting_platform(event.meeting_url)
            if meeting is None:
                session.add(Meeting(
                    user_id=payload.user_id,
                    calendar_event_id=event.event_id,
                    title=event.title,
                    start_time=event.start_time,
                    end_time=event.end_time,
                    meeting_url=event.meeting_url,
                    platform=platform,
                    attendees=event.attendees,
                    recall_enabled=bool(event.meeting_url),
                    status=MeetingStatus.SCHEDULED,
                ))
                created += 1
            elif meeting.status == MeetingStatus.SCHEDULED and meeting.bot_id is None:
                meeting.title = event.title
                meeting.start_time = event.start_time
                meeting.end_time = event.end_time
                meeting.meeting_url = event.meeting_url
                meeting.platform = platform
                meeting.attendees = event.attendees
                updated += 1
        session.commit()
    logger.info("Calendar synced", user_id=payload.user_id, created=created, updated=updated)
    return {"user_id": payload.user_id, "events": len(events), "created": created, "updated": updated}


__all__ = ["create_bot", "stop_bot", "fetch_transcript", "sync_calendar"]
