"""Content-generation handler: turn a meeting transcript into per-platform drafts."""
from __future__ import annotations

from typing import Any, Dict, List

from aftermeet.config import CONTENT_SETTINGS
from aftermeet.integrations.base import UpstreamError
from aftermeet.jobs.context import JobContext
from aftermeet.jobs.errors import PermanentJobError, TransientJobError
from aftermeet.models.db import Meeting, SocialPost, PostStatus
from aftermeet.models.schemas.jobs import GenerateContentPayload
from aftermeet.utils import get_logger, log_business_event

logger = get_logger(__name__)


async def generate_content(payload: GenerateContentPayload, ctx: JobContext) -> Dict[str, Any]:
    """Create a draft post for every requested platform that has none yet.

    Generation failures are transient; a platform that fails does not block the
    others, but the job fails (transiently) when no platform succeeded.
    """
    resource = payload.resource_id()
    min_chars = int(CONTENT_SETTINGS["min_transcript_chars"])  # type: ignore[arg-type]
    with ctx.session() as session:
        meeting = session.get(Meeting, payload.meeting_id)
        if meeting is None:
            raise PermanentJobError("meeting not found", resource_id=resource)
        transcript = meeting.transcript
        if not transcript:
            raise PermanentJobError("transcript not available", resource_id=resource)
        if len(transcript) < min_chars:
            raise PermanentJobError(
                f"transcript too short ({len(transcript)} < {min_chars} characters)", resource_id=resource
            )
        title = meeting.title
        existing = {post.platform for post in meeting.social_posts}

    pending = [p for p in dict.fromkeys(payload.platforms) if p not in existing]
    if not pending:
        return {"meeting_id": payload.meeting_id, "created": [], "skipped": [p.value for p in payload.platforms]}

    generator = ctx.collaborators.require("content")
    try:
        insights = await generator.generate_insights(transcript, title)
    except UpstreamError as e:
        raise TransientJobError(f"insight generation failed: {e}", resource_id=resource, status_code=e.status_code) from e
    except ValueError as e:
        raise TransientJobError(f"malformed insights: {e}", resource_id=resource) from e
    ctx.report_progress(20)

    tone = payload.tone or str(CONTENT_SETTINGS["default_tone"])
    created: List[str] = []
    errors: Dict[str, str] = {}
    for index, platform in enumerate(pending, start=1):
        try:
            content = await generator.generate_post(insights, platform.value, title, tone=tone)
        except (UpstreamError, ValueError) as e:
            logger.warning("Post generation failed", meeting_id=payload.meeting_id, platform=platform.value, error=str(e))
            errors[platform.value] = str(e)
        else:
            with ctx.session() as session:
                session.add(SocialPost(
                    meeting_id=payload.meeting_id,
                    platform=platform,
                    content=content,
                    status=PostStatus.DRAFT,
                ))
                session.commit()
            created.append(platform.value)
        ctx.report_progress(20 + int(80 * index / len(pending)))

    if not created:
        raise TransientJobError(
            "content generation failed for every platform: "
            + "; ".join(f"{k}: {v}" for k, v in errors.items()),
            resource_id=resource,
        )

    log_business_event(
        event_type="content_generated",
        details={"meeting_id": payload.meeting_id, "created": created, "failed": sorted(errors)},
    )
    return {"meeting_id": payload.meeting_id, "created": created, "failed": errors}


__all__ = ["generate_content"]
