"""Run-time estimates derived from a Task's history of completed runs.

History is a list of whole-second durations in completion order, oldest
first. Only the most recent ``MAX_RUN_HISTORY`` runs are kept.
"""

from __future__ import annotations

import math
from collections.abc import Sequence

# Used when a Task has never completed a run.
DEFAULT_ESTIMATE_S = 10
MAX_RUN_HISTORY = 10


def fold_duration(history: Sequence[int], duration_s: int) -> list[int]:
    """Append a completed run and drop the oldest entries beyond the cap."""
    merged = [*history, int(duration_s)]
    return merged[-MAX_RUN_HISTORY:]


def estimate_duration(history: Sequence[int]) -> int:
    if not history:
        return DEFAULT_ESTIMATE_S
    return sum(history) // len(history)


def estimate_progress_percent(start_time: float, estimate_s: float, now: float) -> int:
    """Percentage of the estimated run time elapsed since ``start_time``, 0..100."""
    if estimate_s <= 0:
        return 100
    percent = math.floor(100 * (now - start_time) / estimate_s)
    return max(0, min(100, percent))


def seconds_until_allowed(last_stop: float | None, rate_limit_s: int, now: float) -> int:
    """Whole seconds left before a Task may run again; 0 when it may run now."""
    if rate_limit_s <= 0 or last_stop is None:
        return 0
    remaining = rate_limit_s - (now - last_stop)
    if remaining <= 0:
        return 0
    return math.ceil(remaining)
