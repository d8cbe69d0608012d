"""Retry delay helpers for fixed and exponential backoff policies."""
from __future__ import annotations

import random
from typing import Optional

from aftermeet.config import BACKOFF_POLICY

FIXED = "fixed"
EXPONENTIAL = "exponential"


def compute_backoff_seconds(
    attempts_made: int,
    *,
    strategy: Optional[str] = None,
    delay: Optional[float] = None,
    max_seconds: Optional[float] = None,
    jitter_pct: Optional[float] = None,
) -> float:
    """Delay before the next try after ``attempts_made`` failed attempts.

    fixed: ``delay`` every time. exponential: ``delay * 2 ** attempts_made``.
    """
    if attempts_made < 0:
        attempts_made = 0
    strategy = str(strategy if strategy is not None else BACKOFF_POLICY["strategy"])
    delay = float(delay if delay is not None else BACKOFF_POLICY["delay_seconds"])  # type: ignore[arg-type]
    max_seconds = float(max_seconds if max_seconds is not None else BACKOFF_POLICY["max_seconds"])  # type: ignore[arg-type]
    jitter_pct = float(jitter_pct if jitter_pct is not None else BACKOFF_POLICY["jitter_pct"])  # type: ignore[arg-type]

    if strategy == FIXED:
        seconds = delay
    elif strategy == EXPONENTIAL:
        seconds = delay * (2 ** attempts_made)
    else:
        raise ValueError(f"Unknown backoff strategy '{strategy}'")
    seconds = min(seconds, max_seconds)
    if jitter_pct > 0:
        jitter_amount = seconds * jitter_pct
        seconds = random.uniform(seconds - jitter_amount, seconds + jitter_amount)
    return max(seconds, 0.0)


__all__ = ["compute_backoff_seconds", "FIXED", "EXPONENTIAL"]
