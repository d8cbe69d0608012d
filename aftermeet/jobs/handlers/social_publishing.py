"""Social-publishing handler: publish an approved draft to its network."""
from __future__ import annotations

from typing import Any, Dict

from aftermeet.integrations.base import UpstreamError
from aftermeet.jobs.context import JobContext
from aftermeet.jobs.errors import PermanentJobError
from aftermeet.models.db import Account, AccountProvider, SocialPost, PostStatus
from aftermeet.models.schemas.jobs import PostContentPayload
from aftermeet.utils import get_logger, log_business_event
from .common import upstream_failure

logger = get_logger(__name__)


def idempotency_key(social_post_id: int) -> str:
    return f"social-post-{social_post_id}"


def _record_failure(ctx: JobContext, social_post_id: int, message: str, *, final: bool) -> None:
    with ctx.session() as session:
        post = session.get(SocialPost, social_post_id)
        if post is None or post.status == PostStatus.POSTED:
            return
        post.error_message = message
        if final:
            post.status = PostStatus.FAILED
        session.commit()


async def post_content(payload: PostContentPayload, ctx: JobContext) -> Dict[str, Any]:
    resource = payload.resource_id()
    with ctx.session() as session:
        post = session.get(SocialPost, payload.social_post_id)
        if post is None:
            raise PermanentJobError("social post not found", resource_id=resource)
        if post.status == PostStatus.POSTED:
            return {"social_post_id": post.id, "platform_post_id": post.platform_post_id, "skipped": "already_posted"}
        platform = payload.platform or post.platform
        content = post.content
        account = session.query(Account).filter(
            Account.user_id == post.meeting.user_id,
            Account.provider == AccountProvider(platform.value),
        ).first()
        credentials = account.credentials() if account is not None else None

    if credentials is None:
        message = f"no linked {platform.value} account"
        _record_failure(ctx, payload.social_post_id, message, final=True)
        raise PermanentJobError(message, resource_id=resource)

    publisher = ctx.collaborators.require("publisher")
    try:
        platform_post_id = await publisher.publish(
            platform.value,
            credentials,
            content,
            idempotency_key=idempotency_key(payload.social_post_id),
        )
    except UpstreamError as e:
        failure = upstream_failure(e, resource)
        _record_failure(
            ctx,
            payload.social_post_id,
            str(e),
            final=not failure.retryable or ctx.is_final_attempt,
        )
        raise failure from e

    with ctx.session() as session:
        post = session.get(SocialPost, payload.social_post_id)
        if post is not None:
            post.status = PostStatus.POSTED
            post.posted_at = ctx.now()
            post.platform_post_id = platform_post_id
            post.error_message = None
            session.commit()
    log_business_event(
        event_type="social_post_published",
        details={"social_post_id": payload.social_post_id, "platform": platform.value, "platform_post_id": platform_post_id},
    )
    return {"social_post_id": payload.social_post_id, "platform": platform.value, "platform_post_id": platform_post_id}


__all__ = ["post_content", "idempotency_key"]
