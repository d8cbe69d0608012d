"""Job store errors and the typed failures handlers raise."""
from __future__ import annotations

from typing import Optional


class JobStoreError(Exception):
    """Base for errors raised synchronously by the job store."""


class InvalidQueueError(JobStoreError):
    def __init__(self, queue_name: str):
        super().__init__(f"Unknown queue '{queue_name}'")
        self.queue_name = queue_name


class InvalidPayloadError(JobStoreError):
    def __init__(self, message: str, *, errors: Optional[list] = None):
        super().__init__(message)
        self.errors = errors or []


class DuplicateJobError(JobStoreError):
    def __init__(self, queue_name: str, resource_key: str):
        super().__init__(f"An active job already exists for '{resource_key}' on queue '{queue_name}'")
        self.queue_name = queue_name
        self.resource_key = resource_key


class JobNotFoundError(JobStoreError):
    def __init__(self, job_id: int):
        super().__init__(f"Job {job_id} not found")
        self.job_id = job_id


class InvalidJobStateError(JobStoreError):
    def __init__(self, job_id: int, state: str, expected: str):
        super().__init__(f"Job {job_id} is {state}, expected {expected}")
        self.job_id = job_id
        self.state = state


class JobFailure(Exception):
    """Raised by handlers to report a failed attempt.

    ``retryable`` tells the dispatcher whether the remaining attempts are worth
    spending. ``status_code`` carries the upstream HTTP status when known.
    """
    retryable: bool = True

    def __init__(self, message: str, *, resource_id: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message)
        self.resource_id = resource_id
        self.status_code = status_code


class TransientJobError(JobFailure):
    retryable = True


class PermanentJobError(JobFailure):
    retryable = False


__all__ = [
    "JobStoreError",
    "InvalidQueueError",
    "InvalidPayloadError",
    "DuplicateJobError",
    "JobNotFoundError",
    "InvalidJobStateError",
    "JobFailure",
    "TransientJobError",
    "PermanentJobError",
]
