"""Helpers shared by the handler families."""
from __future__ import annotations

from typing import Optional

from aftermeet.integrations.base import UpstreamError
from aftermeet.jobs.errors import JobFailure, PermanentJobError, TransientJobError


def upstream_failure(error: UpstreamError, resource_id: Optional[str] = None) -> JobFailure:
    """Translate a collaborator error into the matching job failure."""
    cls = TransientJobError if error.retryable else PermanentJobError
    return cls(str(error), resource_id=resource_id, status_code=error.status_code)


__all__ = ["upstream_failure"]
