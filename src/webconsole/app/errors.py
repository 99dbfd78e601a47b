"""Error types raised by the task engine.

Every error here is reported to API callers as ``ERROR: <message>``.
"""

from __future__ import annotations


class WebConsoleError(Exception):
    """Base class for errors that are surfaced to API callers."""


class TaskNotFoundError(WebConsoleError):
    def __init__(self, task_id: str) -> None:
        super().__init__("Invalid taskID")
        self.task_id = task_id


class TaskStoreError(WebConsoleError):
    """Task config or run-time history could not be read or written."""


class TaskConfigError(TaskStoreError):
    """config.txt exists but contains a malformed line or value."""


class NotAuthorisedError(WebConsoleError):
    def __init__(self, reason: str) -> None:
        super().__init__(f"Not authorised - {reason}.")
        self.reason = reason


class RateLimitedError(WebConsoleError):
    def __init__(self, rate_limit_s: int, retry_after_s: int) -> None:
        super().__init__(
            f"Rate limit ({rate_limit_s} seconds) exceeded - "
            f"try again in {retry_after_s} seconds."
        )
        self.rate_limit_s = rate_limit_s
        self.retry_after_s = retry_after_s


class SpawnError(WebConsoleError):
    """The Task's process could not be started."""
