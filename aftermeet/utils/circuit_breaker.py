"""In-memory circuit breaker for outbound collaborators (process-local).

Keys are collaborator names such as ``linkedin`` or ``facebook``. Worker threads
share one breaker, so state changes happen under a lock.
"""
from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

from aftermeet.config import CIRCUIT_BREAKER


@dataclass
class BreakerState:
    failures: int = 0
    state: str = "CLOSED"
    opened_at: datetime | None = None
    half_open_probes: int = 0


class CircuitBreaker:
    def __init__(
        self,
        *,
        failure_threshold: Optional[int] = None,
        cooldown_seconds: Optional[float] = None,
        half_open_probes: Optional[int] = None,
    ):
        self._states: Dict[str, BreakerState] = {}
        self._lock = threading.Lock()
        self._failure_threshold = failure_threshold
        self._cooldown_seconds = cooldown_seconds
        self._half_open_probes = half_open_probes

    @property
    def failure_threshold(self) -> int:
        if self._failure_threshold is not None:
            return self._failure_threshold
        return int(CIRCUIT_BREAKER["failure_threshold"])

    @property
    def cooldown(self) -> timedelta:
        seconds = self._cooldown_seconds
        if seconds is None:
            seconds = float(CIRCUIT_BREAKER["open_cooldown_seconds"])
        return timedelta(seconds=seconds)

    @property
    def probe_limit(self) -> int:
        if self._half_open_probes is not None:
            return self._half_open_probes
        return int(CIRCUIT_BREAKER["half_open_probe_count"])

    def _get(self, key: str) -> BreakerState:
        return self._states.setdefault(key, BreakerState())

    def allow_call(self, key: str) -> tuple[bool, str | None]:
        with self._lock:
            st = self._get(key)
            if st.state == "CLOSED":
                return True, None
            if st.state == "OPEN":
                if st.opened_at and datetime.now(timezone.utc) - st.opened_at >= self.cooldown:
                    st.state = "HALF_OPEN"
                    st.half_open_probes = 0
                else:
                    return False, "circuit_open"
            if st.half_open_probes >= self.probe_limit:
                return False, "half_open_probe_exhausted"
            st.half_open_probes += 1
            return True, None

    def record_success(self, key: str) -> None:
        with self._lock:
            st = self._get(key)
            st.failures = 0
            st.state = "CLOSED"
            st.opened_at = None
            st.half_open_probes = 0

    def record_failure(self, key: str) -> None:
        with self._lock:
            st = self._get(key)
            st.failures += 1
            if st.state == "HALF_OPEN" or (st.state == "CLOSED" and st.failures >= self.failure_threshold):
                st.state = "OPEN"
                st.opened_at = datetime.now(timezone.utc)

    def reset(self) -> None:
        with self._lock:
            self._states.clear()

    def snapshot(self) -> dict[str, dict[str, object]]:
        with self._lock:
            return {
                k: {
                    "failures": v.failures,
                    "state": v.state,
                    "opened_at": v.opened_at.isoformat() if v.opened_at else None,
                    "half_open_probes": v.half_open_probes,
                }
                for k, v in self._states.items()
            }


GLOBAL_CIRCUIT_BREAKER = CircuitBreaker()

__all__ = ["CircuitBreaker", "BreakerState", "GLOBAL_CIRCUIT_BREAKER"]
