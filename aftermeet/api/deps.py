"""
Dependencies for the jobs service and request metadata.
"""
from fastapi import HTTPException, Request, status
from aftermeet.services.jobs_service import JobsService
from aftermeet.utils import get_logger
from aftermeet.utils.observability import REQUEST_ID_HEADER

logger = get_logger(__name__)


def get_jobs_service(request: Request) -> JobsService:
    """Jobs service attached to ``app.state`` during startup (or by tests)."""
    service = getattr(request.app.state, "jobs_service", None)
    if service is None:
        logger.warning("Jobs service requested before startup completed")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Job queues not available",
        )
    return service


def get_request_id(request: Request) -> str:
    return getattr(request.state, "request_id", None) or request.headers.get(REQUEST_ID_HEADER, "unknown")
