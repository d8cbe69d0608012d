"""Cleanup handler: remove stale bots, transcripts, finished posts and temp files."""
from __future__ import annotations

import os
from datetime import datetime
from typing import Any, Dict, List

from sqlalchemy import delete, select

from aftermeet.config import CLEANUP_SETTINGS
from aftermeet.integrations.base import UpstreamError, UpstreamNotReadyError
from aftermeet.jobs.context import JobContext
from aftermeet.jobs.errors import TransientJobError
from aftermeet.models.db import Meeting, MeetingStatus, SocialPost, PostStatus, CleanupResource
from aftermeet.models.schemas.jobs import CleanupPayload
from aftermeet.utils import get_logger
from aftermeet.utils.time import ensure_utc

logger = get_logger(__name__)

_CLOSED_MEETING_STATES = (MeetingStatus.COMPLETED, MeetingStatus.CANCELLED)
_FINISHED_POST_STATES = (PostStatus.POSTED, PostStatus.FAILED)


async def _cleanup_bots(ctx: JobContext, cutoff: datetime, errors: List[str]) -> int:
    with ctx.session() as session:
        rows = session.execute(
            select(Meeting.id, Meeting.bot_id).where(
                Meeting.bot_id.is_not(None),
                Meeting.start_time < cutoff,
                Meeting.status.in_(_CLOSED_MEETING_STATES),
            )
        ).all()
    if not rows:
        return 0
    recording = ctx.collaborators.require("recording")
    removed = 0
    for meeting_id, bot_id in rows:
        try:
            await recording.delete_bot(bot_id)
        except UpstreamNotReadyError:
            pass
        except UpstreamError as e:
            logger.warning("Bot cleanup failed", meeting_id=meeting_id, bot_id=bot_id, error=str(e))
            errors.append(f"bot {bot_id}: {e}")
            continue
        with ctx.session() as session:
            meeting = session.get(Meeting, meeting_id)
            if meeting is not None and meeting.bot_id == bot_id:
                meeting.bot_id = None
                session.commit()
        removed += 1
    return removed


def _cleanup_transcripts(ctx: JobContext, cutoff: datetime) -> int:
    cleared = 0
    with ctx.session() as session:
        meetings = session.scalars(
            select(Meeting).where(
                Meeting.transcript.is_not(None),
                Meeting.start_time < cutoff,
                Meeting.status.in_(_CLOSED_MEETING_STATES),
            )
        ).all()
        for meeting in meetings:
            # Completed meetings still waiting for drafts keep their transcript
            if meeting.status == MeetingStatus.COMPLETED and not meeting.social_posts:
                continue
            meeting.transcript = None
            cleared += 1
        session.commit()
    return cleared


def _cleanup_social_posts(ctx: JobContext, cutoff: datetime) -> int:
    with ctx.session() as session:
        result = session.execute(
            delete(SocialPost).where(
                SocialPost.status.in_(_FINISHED_POST_STATES),
                SocialPost.created_at < cutoff,
            )
        )
        session.commit()
        return int(result.rowcount or 0)


def _cleanup_temp_files(ctx: JobContext, cutoff: datetime, errors: List[str]) -> int:
    temp_dir = ctx.collaborators.temp_dir or str(CLEANUP_SETTINGS["temp_dir"])
    if not os.path.isdir(temp_dir):
        return 0
    threshold = cutoff.timestamp()
    removed = 0
    for entry in os.scandir(temp_dir):
        if not entry.is_file(follow_symlinks=False):
            continue
        try:
            if entry.stat().st_mtime < threshold:
                os.remove(entry.path)
                removed += 1
        except FileNotFoundError:
            continue
        except OSError as e:
            logger.warning("Temp file cleanup failed", path=entry.path, error=str(e))
            errors.append(f"{entry.name}: {e}")
    return removed


async def cleanup_resources(payload: CleanupPayload, ctx: JobContext) -> Dict[str, Any]:
    """Run each requested cleanup category; returns removed counts per category."""
    cutoff = ensure_utc(payload.older_than)
    requested = list(dict.fromkeys(payload.resources))
    counts: Dict[str, int] = {}
    errors: List[str] = []
    for index, resource in enumerate(requested, start=1):
        if resource == CleanupResource.BOTS:
            counts[resource.value] = await _cleanup_bots(ctx, cutoff, errors)
        elif resource == CleanupResource.TRANSCRIPTS:
            counts[resource.value] = _cleanup_transcripts(ctx, cutoff)
        elif resource == CleanupResource.SOCIAL_POSTS:
            counts[resource.value] = _cleanup_social_posts(ctx, cutoff)
        elif resource == CleanupResource.TEMP_FILES:
            counts[resource.value] = _cleanup_temp_files(ctx, cutoff, errors)
        ctx.report_progress(int(100 * index / len(requested)))

    logger.info("Cleanup pass finished", cutoff=cutoff.isoformat(), counts=counts, errors=len(errors))
    if errors:
        raise TransientJobError(
            f"cleanup incomplete ({len(errors)} errors): " + "; ".join(errors[:5]),
            resource_id=payload.resource_id(),
        )
    return {"older_than": cutoff.isoformat(), "counts": counts}


__all__ = ["cleanup_resources"]
