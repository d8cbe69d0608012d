"""Observability helpers (correlation IDs, job log context)."""
from __future__ import annotations
import uuid
from typing import Any, Dict, Mapping

REQUEST_ID_HEADER = "X-Request-ID"

def ensure_request_id(headers: Mapping[str, str]) -> str:
    return headers.get(REQUEST_ID_HEADER, None) or str(uuid.uuid4())

def job_log_context(job: Any) -> Dict[str, Any]:
    """Structured fields identifying a job in log lines."""
    return {
        "job_id": getattr(job, "id", None),
        "queue": getattr(job, "queue_name", None),
        "kind": getattr(job, "kind", None),
        "resource_key": getattr(job, "resource_key", None),
        "attempt": getattr(job, "attempts_made", None),
    }

__all__ = ["ensure_request_id", "job_log_context", "REQUEST_ID_HEADER"]
