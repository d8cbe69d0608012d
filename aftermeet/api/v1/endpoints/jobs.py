"""
Job queue management endpoints: queue inspection, administration and scheduling.
"""
from datetime import timedelta
from typing import List, Optional, NoReturn
from fastapi import APIRouter, Depends, HTTPException, Query, status

from aftermeet.api.deps import get_jobs_service, get_request_id
from aftermeet.jobs.errors import (
    JobStoreError,
    InvalidQueueError,
    InvalidPayloadError,
    DuplicateJobError,
    JobNotFoundError,
)
from aftermeet.jobs.store import JobRecord
from aftermeet.models.schemas.base import ResponseBase
from aftermeet.models.schemas.jobs import (
    JobRead,
    QueueSummary,
    MeetingBotRequest,
    ContentGenerationRequest,
    SocialPostingRequest,
    CleanupRequest,
    GenericJobRequest,
)
from aftermeet.services.jobs_service import JobsService
from aftermeet.utils import get_logger, log_business_event

router = APIRouter()
logger = get_logger(__name__)

_STATUS_BY_ERROR = (
    (InvalidQueueError, status.HTTP_404_NOT_FOUND),
    (JobNotFoundError, status.HTTP_404_NOT_FOUND),
    (InvalidPayloadError, 422),
    (DuplicateJobError, status.HTTP_409_CONFLICT),
)


def _raise_http(error: JobStoreError, request_id: str) -> NoReturn:
    code = status.HTTP_400_BAD_REQUEST
    for error_type, mapped in _STATUS_BY_ERROR:
        if isinstance(error, error_type):
            code = mapped
            break
    logger.warning(
        "Job request rejected",
        error=str(error),
        error_type=type(error).__name__,
        status_code=code,
        request_id=request_id,
    )
    raise HTTPException(status_code=code, detail=str(error))


def _job_data(record: JobRecord) -> dict:
    return JobRead.model_validate(record.to_dict()).model_dump(mode="json")


def _summary_data(summary: dict) -> dict:
    return QueueSummary.model_validate(summary).model_dump(mode="json")


# ------------------------------ Queue inspection ------------------------------ #

@router.get("/queues", response_model=ResponseBase, summary="Status of every queue")
async def get_all_queue_statuses(jobs: JobsService = Depends(get_jobs_service)) -> ResponseBase:
    queues = [_summary_data(s) for s in jobs.all_queue_statuses()]
    return ResponseBase(message=f"{len(queues)} queue(s)", data={"queues": queues})


@router.get("/queues/{queue_name}", response_model=ResponseBase, summary="Status of one queue")
async def get_queue_status(
    queue_name: str,
    jobs: JobsService = Depends(get_jobs_service),
    request_id: str = Depends(get_request_id),
) -> ResponseBase:
    try:
        summary = jobs.queue_status(queue_name)
    except JobStoreError as e:
        _raise_http(e, request_id)
    return ResponseBase(data=_summary_data(summary))


@router.get("/queues/{queue_name}/jobs", response_model=ResponseBase, summary="List jobs in a queue")
async def get_queue_jobs(
    queue_name: str,
    states: Optional[List[str]] = Query(None, description="Filter by state; repeat or comma-separate"),
    limit: Optional[int] = Query(None, ge=1, le=1000),
    jobs: JobsService = Depends(get_jobs_service),
    request_id: str = Depends(get_request_id),
) -> ResponseBase:
    wanted = [s.strip() for raw in (states or []) for s in raw.split(",") if s.strip()]
    try:
        records = jobs.get_jobs(queue_name, wanted or None, limit=limit)
    except JobStoreError as e:
        _raise_http(e, request_id)
    return ResponseBase(
        message=f"{len(records)} job(s)",
        data={"queue": queue_name, "jobs": [_job_data(r) for r in records]},
    )


# ---------------------------- Queue administration ---------------------------- #

@router.put("/queues/{queue_name}/pause", response_model=ResponseBase, summary="Pause a queue")
async def pause_queue(
    queue_name: str,
    jobs: JobsService = Depends(get_jobs_service),
    request_id: str = Depends(get_request_id),
) -> ResponseBase:
    try:
        jobs.pause_queue(queue_name)
    except JobStoreError as e:
        _raise_http(e, request_id)
    log_business_event(event_type="queue_paused", details={"queue": queue_name}, request_id=request_id)
    return ResponseBase(message=f"Queue {queue_name} paused")


@router.put("/queues/{queue_name}/resume", response_model=ResponseBase, summary="Resume a queue")
async def resume_queue(
    queue_name: str,
    jobs: JobsService = Depends(get_jobs_service),
    request_id: str = Depends(get_request_id),
) -> ResponseBase:
    try:
        jobs.resume_queue(queue_name)
    except JobStoreError as e:
        _raise_http(e, request_id)
    log_business_event(event_type="queue_resumed", details={"queue": queue_name}, request_id=request_id)
    return ResponseBase(message=f"Queue {queue_name} resumed")


@router.delete("/queues/{queue_name}/clean", response_model=ResponseBase, summary="Remove finished jobs")
async def clean_queue(
    queue_name: str,
    grace: float = Query(5, ge=0, description="Only remove jobs finished more than this many seconds ago"),
    jobs: JobsService = Depends(get_jobs_service),
    request_id: str = Depends(get_request_id),
) -> ResponseBase:
    try:
        removed = jobs.clean_queue(queue_name, grace_seconds=grace)
    except JobStoreError as e:
        _raise_http(e, request_id)
    return ResponseBase(message=f"Removed {removed} finished job(s)", data={"removed": removed})


@router.post("/queues/{queue_name}/retry-failed", response_model=ResponseBase, summary="Resubmit failed jobs")
async def retry_failed_jobs(
    queue_name: str,
    jobs: JobsService = Depends(get_jobs_service),
    request_id: str = Depends(get_request_id),
) -> ResponseBase:
    try:
        retried = jobs.retry_failed(queue_name)
    except JobStoreError as e:
        _raise_http(e, request_id)
    return ResponseBase(message=f"Resubmitted {retried} failed job(s)", data={"retried": retried})


# --------------------------------- Scheduling --------------------------------- #

@router.post(
    "/meeting-bot/{meeting_id}",
    response_model=ResponseBase,
    status_code=status.HTTP_201_CREATED,
    summary="Schedule a recording bot for a meeting",
)
async def schedule_meeting_bot(
    meeting_id: int,
    body: MeetingBotRequest,
    jobs: JobsService = Depends(get_jobs_service),
    request_id: str = Depends(get_request_id),
) -> ResponseBase:
    try:
        record = jobs.schedule_meeting_bot(meeting_id, body.scheduled_time, body.bot_config)
    except JobStoreError as e:
        _raise_http(e, request_id)
    return ResponseBase(message="Meeting bot scheduled", data=_job_data(record))


@router.delete("/meeting-bot/{meeting_id}", response_model=ResponseBase, summary="Cancel a scheduled bot")
async def cancel_meeting_bot(meeting_id: int, jobs: JobsService = Depends(get_jobs_service)) -> ResponseBase:
    cancelled = jobs.cancel_meeting_bot(meeting_id)
    return ResponseBase(
        success=cancelled,
        message="Meeting bot cancelled" if cancelled else "No pending bot job for meeting",
        data={"cancelled": cancelled},
    )


@router.post(
    "/content-generation",
    response_model=ResponseBase,
    status_code=status.HTTP_201_CREATED,
    summary="Schedule content generation for a meeting",
)
async def schedule_content_generation(
    body: ContentGenerationRequest,
    jobs: JobsService = Depends(get_jobs_service),
    request_id: str = Depends(get_request_id),
) -> ResponseBase:
    try:
        record = jobs.schedule_content_generation(
            body.meeting_id, platforms=body.platforms, tone=body.tone, delay=body.delay_seconds
        )
    except JobStoreError as e:
        _raise_http(e, request_id)
    return ResponseBase(message="Content generation scheduled", data=_job_data(record))


@router.post(
    "/social-posting/{post_id}",
    response_model=ResponseBase,
    status_code=status.HTTP_201_CREATED,
    summary="Schedule publication of a social post",
)
async def schedule_social_post(
    post_id: int,
    body: Optional[SocialPostingRequest] = None,
    jobs: JobsService = Depends(get_jobs_service),
    request_id: str = Depends(get_request_id),
) -> ResponseBase:
    scheduled_time = body.scheduled_time if body else None
    try:
        record = jobs.schedule_social_post(post_id, scheduled_time)
    except JobStoreError as e:
        _raise_http(e, request_id)
    return ResponseBase(message="Social post scheduled", data=_job_data(record))


@router.delete("/social-posting/{post_id}", response_model=ResponseBase, summary="Cancel a scheduled social post")
async def cancel_social_post(post_id: int, jobs: JobsService = Depends(get_jobs_service)) -> ResponseBase:
    cancelled = jobs.cancel_social_post(post_id)
    return ResponseBase(
        success=cancelled,
        message="Social post cancelled" if cancelled else "No pending publish job for post",
        data={"cancelled": cancelled},
    )


@router.post(
    "/cleanup",
    response_model=ResponseBase,
    status_code=status.HTTP_201_CREATED,
    summary="Schedule a cleanup pass",
)
async def schedule_cleanup(
    body: CleanupRequest,
    jobs: JobsService = Depends(get_jobs_service),
    request_id: str = Depends(get_request_id),
) -> ResponseBase:
    older_than = jobs.store.now() - timedelta(days=body.older_than_days)
    try:
        record = jobs.schedule_cleanup(older_than, body.resources)
    except JobStoreError as e:
        _raise_http(e, request_id)
    return ResponseBase(message="Cleanup scheduled", data=_job_data(record))


# Registered last: the fixed paths above take precedence over a queue named the same.
@router.post(
    "/{queue_name}",
    response_model=ResponseBase,
    status_code=status.HTTP_201_CREATED,
    summary="Enqueue a job of any known kind",
)
async def create_job(
    queue_name: str,
    body: GenericJobRequest,
    jobs: JobsService = Depends(get_jobs_service),
    request_id: str = Depends(get_request_id),
) -> ResponseBase:
    try:
        record = jobs.add_job(
            queue_name,
            body.kind,
            body.payload,
            delay=body.delay_seconds,
            max_attempts=body.max_attempts,
            backoff=body.backoff,
        )
    except JobStoreError as e:
        _raise_http(e, request_id)
    log_business_event(
        event_type="job_created_via_api",
        details={"queue": queue_name, "kind": body.kind, "job_id": record.id},
        request_id=request_id,
    )
    return ResponseBase(message=f"Job {record.id} created", data=_job_data(record))
