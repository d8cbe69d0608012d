"""
Recall.ai recording bot integration.
Creates meeting bots, polls their status and downloads transcripts.
"""
import re
from typing import Dict, Any, Optional

from aftermeet.config import RECALL_SETTINGS
from aftermeet.models.db.enums import MeetingPlatform
from aftermeet.utils import get_logger
from .base import UpstreamError, UpstreamNotReadyError
from .http import request_json

logger = get_logger(__name__)

MEETING_URL_PATTERNS: Dict[MeetingPlatform, re.Pattern[str]] = {
    MeetingPlatform.ZOOM: re.compile(r"^https://([a-z0-9-]+\.)?zoom\.us/j/\d+", re.IGNORECASE),
    MeetingPlatform.MEET: re.compile(r"^https://meet\.google\.com/[a-z-]+$", re.IGNORECASE),
    MeetingPlatform.TEAMS: re.compile(r"^https://teams\.microsoft\.com/l/meetup-join/", re.IGNORECASE),
}

# Bot status codes after which a transcript can be requested
FINISHED_STATUSES = {"done", "call_ended", "analysis_done"}


def detect_meeting_platform(meeting_url: Optional[str]) -> Optional[MeetingPlatform]:
    """Return the platform whose URL pattern matches, or None."""
    if not meeting_url:
        return None
    for platform, pattern in MEETING_URL_PATTERNS.items():
        if pattern.match(meeting_url):
            return platform
    return None


class RecallClient:
    """Thin aiohttp client for the Recall.ai bot API."""

    service = "recall"

    def __init__(self, api_key: Optional[str] = None, base_url: Optional[str] = None):
        self.api_key = api_key or RECALL_SETTINGS["api_key"]
        self.base_url = (base_url or RECALL_SETTINGS["base_url"] or "").rstrip("/")
        self.logger = get_logger("integration.recall")

    def _headers(self) -> Dict[str, str]:
        if not self.api_key:
            raise UpstreamError(self.service, "RECALL_API_KEY is not configured", retryable=False)
        return {"Authorization": f"Token {self.api_key}", "Content-Type": "application/json"}

    async def create_bot(self, meeting_url: str, options: Dict[str, Any]) -> str:
        body: Dict[str, Any] = {
            "meeting_url": meeting_url,
            "bot_name": options.get("bot_name") or RECALL_SETTINGS["bot_name"],
        }
        if options.get("output_transcription", True):
            body["transcription_options"] = {"provider": "meeting_captions"}
        if options.get("record_video", True) or options.get("record_audio", True):
            body["recording_mode"] = "speaker_view" if options.get("record_video", True) else "audio_only"
        if options.get("join_at"):
            body["join_at"] = options["join_at"]

        _, data = await request_json(self.service, "POST", f"{self.base_url}/bot/", headers=self._headers(), json=body)
        bot_id = data.get("id") if isinstance(data, dict) else None
        if not bot_id:
            raise UpstreamError(self.service, "bot creation response missing id")
        self.logger.info("Recall bot created", bot_id=bot_id, meeting_url=meeting_url)
        return str(bot_id)

    async def delete_bot(self, bot_id: str) -> None:
        await request_json(self.service, "DELETE", f"{self.base_url}/bot/{bot_id}/", headers=self._headers())
        self.logger.info("Recall bot deleted", bot_id=bot_id)

    async def get_status(self, bot_id: str) -> str:
        _, data = await request_json(self.service, "GET", f"{self.base_url}/bot/{bot_id}/", headers=self._headers())
        changes = (data or {}).get("status_changes") or []
        if not changes:
            return "unknown"
        return str(changes[-1].get("code", "unknown"))

    async def get_transcript(self, bot_id: str) -> Optional[str]:
        """Transcript text, or None while Recall has not produced it yet."""
        try:
            _, data = await request_json(
                self.service, "GET", f"{self.base_url}/bot/{bot_id}/transcript/", headers=self._headers()
            )
        except UpstreamNotReadyError:
            self.logger.info("Transcript not ready", bot_id=bot_id)
            return None
        if not data:
            return None
        lines = []
        for segment in data:
            speaker = segment.get("speaker") or "Speaker"
            words = " ".join(w.get("text", "") for w in segment.get("words") or [])
            if words.strip():
                lines.append(f"{speaker}: {words.strip()}")
        return "\n".join(lines) or None


__all__ = ["RecallClient", "MEETING_URL_PATTERNS", "FINISHED_STATUSES", "detect_meeting_platform"]
