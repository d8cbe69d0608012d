"""Interval timer that runs registered tasks from a single daemon thread."""
from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from aftermeet.config import SCHEDULER_SETTINGS
from aftermeet.utils import get_logger
from aftermeet.utils.time import utc_now, ensure_utc

logger = get_logger(__name__)

Task = Callable[[datetime], object]


@dataclass(slots=True)
class ScheduledTask:
    name: str
    interval: timedelta
    fn: Task
    next_run: Optional[datetime] = None
    last_run: Optional[datetime] = None
    runs: int = 0


class IntervalScheduler:
    """Runs each task every ``interval_seconds``.

    A newly registered task runs on the first tick. ``tick(now)`` is the whole
    scheduling step, so tests drive it with simulated times and no thread.
    """

    def __init__(self, tick_seconds: Optional[float] = None, clock: Callable[[], datetime] = utc_now):
        self.tick_seconds = float(
            tick_seconds if tick_seconds is not None else SCHEDULER_SETTINGS.get("tick_seconds", 5.0)  # type: ignore[arg-type]
        )
        self._clock = clock
        self._tasks: Dict[str, ScheduledTask] = {}
        self._lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()

    def register(self, name: str, interval_seconds: float, fn: Task, *, first_run: Optional[datetime] = None) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be > 0")
        with self._lock:
            self._tasks[name] = ScheduledTask(
                name=name,
                interval=timedelta(seconds=interval_seconds),
                fn=fn,
                next_run=ensure_utc(first_run) if first_run is not None else None,
            )

    @property
    def task_names(self) -> List[str]:
        return list(self._tasks)

    def get_task(self, name: str) -> ScheduledTask:
        return self._tasks[name]

    def tick(self, now: Optional[datetime] = None) -> List[str]:
        """Run every due task; returns the names that ran."""
        current = ensure_utc(now) if now is not None else self._clock()
        with self._lock:
            due = [t for t in self._tasks.values() if t.next_run is None or t.next_run <= current]
            for task in due:
                task.next_run = current + task.interval
        ran: List[str] = []
        for task in due:
            try:
                task.fn(current)
            except Exception as e:
                logger.error("Scheduled task failed", task=task.name, error=str(e), exc_info=True)
            task.last_run = current
            task.runs += 1
            ran.append(task.name)
        return ran

    # ------------------------------------------------------------------ #
    # Background thread
    # ------------------------------------------------------------------ #
    def start(self) -> None:
        if self._thread and self._thread.is_alive():  # pragma: no cover
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, name="interval-scheduler", daemon=True)
        self._thread.start()
        logger.info("Interval scheduler started", tasks=self.task_names, tick_seconds=self.tick_seconds)

    def stop(self, timeout: float = 5.0) -> None:
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=timeout)
        logger.info("Interval scheduler stopped")

    def _loop(self) -> None:
        while not self._stop_event.is_set():
            self.tick()
            self._stop_event.wait(self.tick_seconds)


__all__ = ["IntervalScheduler", "ScheduledTask"]
