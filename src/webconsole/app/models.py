"""Typed records shared by the task store, runner, authorizer and API.

Beginner terms used in this file:
- TaskConfig: the parsed contents of one Task's config.txt file.
- Y/N flag: config.txt stores booleans as "Y" or "N"; the model turns them into bool.
- Literal: restricts a value to a fixed set of allowed strings.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

# Outcome of ProcessRunner.start when no error is raised.
StartResult = Literal["started", "already_running"]


class TaskConfig(BaseModel):
    """One Task definition as read from ``<tasks_dir>/<task_id>/config.txt``."""

    model_config = ConfigDict(frozen=True)

    task_id: str = Field(pattern=r"^[a-z0-9]+$")
    title: str = ""
    description: str = ""
    # bcrypt hash of the Task secret; empty means anyone may use the Task.
    secret: str = ""
    public: bool = False
    # Minimum seconds between the end of one run and the start of the next.
    rate_limit: int = Field(default=0, ge=0)
    progress: bool = False
    command: str = ""

    @field_validator("public", "progress", mode="before")
    @classmethod
    def _parse_flag(cls, value: Any) -> Any:
        if isinstance(value, str):
            normalized = value.strip().upper()
            if normalized == "Y":
                return True
            if normalized in {"N", ""}:
                return False
            raise ValueError(f"expected Y or N, got {value!r}")
        return value

    @property
    def has_secret(self) -> bool:
        return self.secret != ""


@dataclass(frozen=True)
class PollResult:
    """Slice of captured output returned to a polling caller."""

    lines: list[str] = field(default_factory=list)
    running: bool = False
    # Cursor to pass as ``from_line`` on the next poll.
    next_line: int = 0
    # Percentage estimate, only set for Tasks with progress reporting enabled.
    progress: int | None = None


@dataclass(frozen=True)
class Authorization:
    """Successful authorization: the Task acted on and the caller's token."""

    task: TaskConfig
    token: str
