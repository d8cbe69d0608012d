"""Lookup table from (queue, kind) to handler coroutine."""
from __future__ import annotations

from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

from aftermeet.jobs.context import JobContext
from aftermeet.jobs.kinds import PAYLOAD_SCHEMAS, ensure_queue

Handler = Callable[[Any, JobContext], Awaitable[Optional[Dict[str, Any]]]]


class HandlerRegistry:
    def __init__(self) -> None:
        self._handlers: Dict[Tuple[str, str], Handler] = {}

    def add(self, queue_name: str, kind: str, handler: Handler) -> None:
        ensure_queue(queue_name)
        if kind not in PAYLOAD_SCHEMAS[queue_name]:
            raise ValueError(f"Unknown job kind '{kind}' for queue '{queue_name}'")
        self._handlers[(queue_name, kind)] = handler

    def register(self, queue_name: str, kind: str) -> Callable[[Handler], Handler]:
        def decorator(fn: Handler) -> Handler:
            self.add(queue_name, kind, fn)
            return fn
        return decorator

    def get(self, queue_name: str, kind: str) -> Optional[Handler]:
        return self._handlers.get((queue_name, kind))

    def __contains__(self, key: Tuple[str, str]) -> bool:
        return key in self._handlers

    def __len__(self) -> int:
        return len(self._handlers)


__all__ = ["HandlerRegistry", "Handler"]
