"""
Language-model content generation via the OpenAI chat completions API.
Extracts structured meeting insights and drafts platform-specific posts.
"""
import json
from typing import Dict, Any, Optional, List

from pydantic import ValidationError

from aftermeet.config import OPENAI_SETTINGS, CONTENT_SETTINGS
from aftermeet.models.schemas.content import MeetingInsights
from aftermeet.utils import get_logger
from .base import UpstreamError
from .http import request_json

logger = get_logger(__name__)

PLATFORM_GUIDELINES: Dict[str, str] = {
    "linkedin": "Professional tone, 1-3 short paragraphs, at most 3 relevant hashtags, under 1300 characters.",
    "facebook": "Conversational and engaging, 1-2 short paragraphs, light use of emoji, under 600 characters.",
}

INSIGHTS_PROMPT = (
    "Analyze the meeting transcript and reply with a JSON object with keys: "
    "summary (string), key_decisions, action_items, participants, topics, key_quotes "
    "(arrays of strings) and sentiment (positive|neutral|negative)."
)


class OpenAIContentGenerator:
    """Content generator backed by chat completions."""

    service = "openai"

    def __init__(self, api_key: Optional[str] = None, model: Optional[str] = None, base_url: Optional[str] = None):
        self.api_key = api_key or OPENAI_SETTINGS["api_key"]
        self.model = model or str(OPENAI_SETTINGS["model"])
        self.base_url = str(base_url or OPENAI_SETTINGS["base_url"]).rstrip("/")
        self.logger = get_logger("integration.openai")

    async def _complete(self, messages: List[Dict[str, str]], *, json_mode: bool = False) -> str:
        if not self.api_key:
            raise UpstreamError(self.service, "OPENAI_API_KEY is not configured", retryable=False)
        body: Dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "temperature": OPENAI_SETTINGS["temperature"],
        }
        if json_mode:
            body["response_format"] = {"type": "json_object"}
        _, data = await request_json(
            self.service,
            "POST",
            f"{self.base_url}/chat/completions",
            headers={"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"},
            json=body,
        )
        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError):
            raise UpstreamError(self.service, "malformed completion response", retryable=True) from None
        if not isinstance(content, str) or not content.strip():
            raise UpstreamError(self.service, "empty completion", retryable=True)
        return content.strip()

    async def generate_insights(self, transcript: str, title: str) -> MeetingInsights:
        raw = await self._complete(
            [
                {"role": "system", "content": INSIGHTS_PROMPT},
                {"role": "user", "content": f"Meeting: {title}\n\nTranscript:\n{transcript}"},
            ],
            json_mode=True,
        )
        try:
            return MeetingInsights.model_validate(json.loads(raw))
        except (ValueError, ValidationError) as e:
            self.logger.warning("Malformed insights payload", error=str(e))
            raise UpstreamError(self.service, "malformed insights payload", retryable=True) from e

    async def generate_post(self, insights: MeetingInsights, platform: str, title: str, *, tone: Optional[str] = None) -> str:
        guideline = PLATFORM_GUIDELINES.get(platform)
        if guideline is None:
            raise UpstreamError(self.service, f"unsupported platform '{platform}'", retryable=False)
        tone = tone or str(CONTENT_SETTINGS["default_tone"])
        prompt = (
            f"Write a {platform} post about the meeting '{title}' in a {tone} tone. {guideline}\n\n"
            f"Summary: {insights.summary}\n"
            f"Key decisions: {'; '.join(insights.key_decisions) or 'none'}\n"
            f"Topics: {', '.join(insights.topics) or 'general'}\n"
            "Reply with the post text only."
        )
        return await self._complete([{"role": "user", "content": prompt}])


__all__ = ["OpenAIContentGenerator", "PLATFORM_GUIDELINES"]
