"""
Social network publishers (LinkedIn, Facebook) and the dispatching service.
"""
from typing import Dict, Any, Optional

from aftermeet.config import LINKEDIN_SETTINGS, FACEBOOK_SETTINGS
from aftermeet.utils import get_logger
from aftermeet.utils.circuit_breaker import CircuitBreaker, GLOBAL_CIRCUIT_BREAKER
from .base import UpstreamError
from .http import request_json

logger = get_logger(__name__)


def _access_token(service: str, credentials: Dict[str, Any]) -> str:
    token = credentials.get("access_token")
    if not token:
        raise UpstreamError(service, "account has no access token", status_code=401, retryable=False)
    return str(token)


class LinkedInPublisher:
    """Publishes member shares through the UGC posts API."""

    platform_name = "linkedin"

    def __init__(self, base_url: Optional[str] = None):
        self.base_url = (base_url or LINKEDIN_SETTINGS["base_url"]).rstrip("/")
        self.logger = get_logger(f"integration.{self.platform_name}")

    def _headers(self, credentials: Dict[str, Any]) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {_access_token(self.platform_name, credentials)}",
            "Content-Type": "application/json",
            "X-Restli-Protocol-Version": "2.0.0",
        }

    async def publish(self, credentials: Dict[str, Any], content: str) -> str:
        author = f"urn:li:person:{credentials.get('provider_account_id')}"
        body = {
            "author": author,
            "lifecycleState": "PUBLISHED",
            "specificContent": {
                "com.linkedin.ugc.ShareContent": {
                    "shareCommentary": {"text": content},
                    "shareMediaCategory": "NONE",
                }
            },
            "visibility": {"com.linkedin.ugc.MemberNetworkVisibility": "PUBLIC"},
        }
        _, data = await request_json(
            self.platform_name, "POST", f"{self.base_url}/ugcPosts", headers=self._headers(credentials), json=body
        )
        post_id = data.get("id") if isinstance(data, dict) else None
        if not post_id:
            raise UpstreamError(self.platform_name, "publish response missing id")
        return str(post_id)

    async def delete(self, credentials: Dict[str, Any], post_id: str) -> None:
        await request_json(
            self.platform_name, "DELETE", f"{self.base_url}/ugcPosts/{post_id}", headers=self._headers(credentials)
        )


class FacebookPublisher:
    """Publishes to the page feed configured on the linked account."""

    platform_name = "facebook"

    def __init__(self, base_url: Optional[str] = None):
        self.base_url = (base_url or FACEBOOK_SETTINGS["base_url"]).rstrip("/")
        self.logger = get_logger(f"integration.{self.platform_name}")

    async def publish(self, credentials: Dict[str, Any], content: str) -> str:
        metadata = credentials.get("metadata") or {}
        target = metadata.get("page_id") or credentials.get("provider_account_id")
        token = metadata.get("page_access_token") or _access_token(self.platform_name, credentials)
        _, data = await request_json(
            self.platform_name,
            "POST",
            f"{self.base_url}/{target}/feed",
            json={"message": content, "access_token": token},
        )
        post_id = data.get("id") if isinstance(data, dict) else None
        if not post_id:
            raise UpstreamError(self.platform_name, "publish response missing id")
        return str(post_id)

    async def delete(self, credentials: Dict[str, Any], post_id: str) -> None:
        await request_json(
            self.platform_name,
            "DELETE",
            f"{self.base_url}/{post_id}",
            params={"access_token": _access_token(self.platform_name, credentials)},
        )


class SocialPublisherService:
    """Routes publish/delete calls to the platform publisher behind a circuit breaker."""

    def __init__(self, publishers: Optional[Dict[str, Any]] = None, breaker: Optional[CircuitBreaker] = None):
        self.publishers = publishers or {
            "linkedin": LinkedInPublisher(),
            "facebook": FacebookPublisher(),
        }
        self.breaker = breaker or GLOBAL_CIRCUIT_BREAKER
        self.logger = get_logger("social_publisher_service")

    def _publisher(self, platform: str):
        publisher = self.publishers.get(platform.lower())
        if publisher is None:
            raise UpstreamError(platform, "unsupported platform", retryable=False)
        return publisher

    async def publish(
        self,
        platform: str,
        credentials: Dict[str, Any],
        content: str,
        *,
        idempotency_key: Optional[str] = None,
    ) -> str:
        """Publish ``content``; returns the platform post id.

        Neither network accepts client idempotency keys, so ``idempotency_key``
        only tags log lines for tracing duplicate attempts.
        """
        publisher = self._publisher(platform)
        allowed, reason = self.breaker.allow_call(platform)
        if not allowed:
            raise UpstreamError(platform, reason or "circuit_open", retryable=True)
        try:
            post_id = await publisher.publish(credentials, content)
        except UpstreamError as e:
            if e.retryable:
                self.breaker.record_failure(platform)
            self.logger.warning(
                "Publish failed",
                platform=platform,
                idempotency_key=idempotency_key,
                status_code=e.status_code,
                retryable=e.retryable,
                error=str(e),
            )
            raise
        self.breaker.record_success(platform)
        self.logger.info("Publish succeeded", platform=platform, idempotency_key=idempotency_key, platform_post_id=post_id)
        return post_id

    async def delete(self, platform: str, credentials: Dict[str, Any], post_id: str) -> None:
        await self._publisher(platform).delete(credentials, post_id)


__all__ = ["LinkedInPublisher", "FacebookPublisher", "SocialPublisherService"]
