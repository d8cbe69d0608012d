"""Background dispatcher: claims jobs per queue and runs their handlers."""
from __future__ import annotations

import asyncio
import threading
import time
from functools import partial
from typing import Iterable, Optional

from aftermeet.config import QUEUE_NAMES, QUEUE_SETTINGS
from aftermeet.jobs.context import Collaborators, JobContext
from aftermeet.jobs.errors import JobFailure, InvalidPayloadError
from aftermeet.jobs.kinds import validate_payload
from aftermeet.jobs.registry import HandlerRegistry
from aftermeet.jobs.store import JobStore, JobRecord
from aftermeet.utils import get_logger, log_performance
from aftermeet.utils.observability import job_log_context

logger = get_logger(__name__)


class JobDispatcher:
    def __init__(
        self,
        store: JobStore,
        registry: HandlerRegistry,
        collaborators: Collaborators,
        *,
        queues: Optional[Iterable[str]] = None,
        poll_interval: Optional[float] = None,
    ):
        self.store = store
        self.registry = registry
        self.collaborators = collaborators
        self.queues = tuple(queues) if queues is not None else QUEUE_NAMES
        self.poll_interval = float(
            poll_interval if poll_interval is not None else QUEUE_SETTINGS.get("poll_interval_seconds", 1.0)  # type: ignore[arg-type]
        )
        self._threads: list[threading.Thread] = []
        self._stop_event = threading.Event()

    # ------------------------------------------------------------------ #
    # Worker threads
    # ------------------------------------------------------------------ #
    def start(self) -> None:
        if any(t.is_alive() for t in self._threads):  # pragma: no cover
            return
        self._stop_event.clear()
        self._threads = []
        for queue_name in self.queues:
            cfg = QUEUE_SETTINGS.get(queue_name, {})
            concurrency = int(cfg.get("concurrency", 1)) if isinstance(cfg, dict) else 1
            for n in range(max(1, concurrency)):
                thread = threading.Thread(
                    target=self._loop,
                    args=(queue_name,),
                    name=f"dispatcher-{queue_name}-{n}",
                    daemon=True,
                )
                thread.start()
                self._threads.append(thread)
        logger.info("Job dispatcher started", queues=list(self.queues), workers=len(self._threads))

    def stop(self, timeout: float = 5.0) -> None:
        self._stop_event.set()
        for thread in self._threads:
            thread.join(timeout=timeout)
        logger.info("Job dispatcher stopped")

    def _loop(self, queue_name: str) -> None:
        while not self._stop_event.is_set():
            try:
                if self.run_once(queue_name) is None:
                    self._stop_event.wait(self.poll_interval)
            except Exception as e:  # pragma: no cover - store outage
                logger.error("Dispatcher loop error", queue=queue_name, error=str(e), exc_info=True)
                self._stop_event.wait(1.0)

    # ------------------------------------------------------------------ #
    # Single-step execution
    # ------------------------------------------------------------------ #
    def run_once(self, queue_name: str) -> Optional[JobRecord]:
        """Claim and process one job; returns its record after processing, or None when idle."""
        job = self.store.claim_next(queue_name)
        if job is None:
            return None
        return self._process(job)

    def drain(self, queue_name: str, max_jobs: int = 100) -> list[JobRecord]:
        """Process eligible jobs until the queue is idle (or ``max_jobs`` ran)."""
        processed: list[JobRecord] = []
        while len(processed) < max_jobs:
            record = self.run_once(queue_name)
            if record is None:
                break
            processed.append(record)
        return processed

    def _process(self, job: JobRecord) -> JobRecord:
        context = job_log_context(job)
        handler = self.registry.get(job.queue_name, job.kind)
        if handler is None:
            logger.error("No handler registered", **context)
            return self.store.fail(job.id, f"No handler registered for {job.queue_name}/{job.kind}", retryable=False)

        logger.info("Processing job", **context)
        started = time.perf_counter()
        try:
            payload = validate_payload(job.queue_name, job.kind, job.payload)
            ctx = JobContext(
                job=job,
                collaborators=self.collaborators,
                report_progress=partial(self.store.report_progress, job.id),
                now=self.store.now,
            )
            result = asyncio.run(handler(payload, ctx))
        except JobFailure as e:
            logger.warning(
                "Job handler reported failure",
                error=str(e),
                retryable=e.retryable,
                resource_id=e.resource_id,
                status_code=e.status_code,
                **context,
            )
            return self.store.fail(job.id, str(e), retryable=e.retryable)
        except InvalidPayloadError as e:
            logger.error("Stored payload no longer valid", error=str(e), **context)
            return self.store.fail(job.id, str(e), retryable=False)
        except Exception as e:
            logger.error("Job handler raised", error=str(e), error_type=type(e).__name__, exc_info=True, **context)
            return self.store.fail(job.id, f"{type(e).__name__}: {e}", retryable=True)

        duration_ms = (time.perf_counter() - started) * 1000
        log_performance(
            operation=f"job.{job.kind}",
            duration_ms=round(duration_ms, 2),
            additional_data={"job_id": job.id, "queue": job.queue_name},
        )
        return self.store.complete(job.id, result if isinstance(result, dict) else None)


__all__ = ["JobDispatcher"]
