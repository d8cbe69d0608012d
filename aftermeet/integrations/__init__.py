"""
Integrations package initialization.
Exports the collaborator clients used by the job handlers.
"""
from .base import UpstreamError, UpstreamNotReadyError
from .recall import RecallClient
from .openai_content import OpenAIContentGenerator
from .social import LinkedInPublisher, FacebookPublisher, SocialPublisherService
from .google_calendar import GoogleCalendarClient

__all__ = [
    "UpstreamError",
    "UpstreamNotReadyError",
    "RecallClient",
    "OpenAIContentGenerator",
    "LinkedInPublisher",
    "FacebookPublisher",
    "SocialPublisherService",
    "GoogleCalendarClient",
]
