"""Shared test helpers: Task folder builders and a controllable clock."""

from __future__ import annotations

import sys
from pathlib import Path

from webconsole.app.auth import hash_secret


class FakeClock:
    """Manually advanced replacement for time.time."""

    def __init__(self, now: float = 1_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def python_command(code: str) -> str:
    """Command line running ``code`` with the current interpreter (no double quotes in code)."""
    return f'"{sys.executable}" -c "{code}"'


def write_task(tasks_dir: Path, task_id: str, **fields: str) -> Path:
    """Create ``tasks_dir/task_id/config.txt`` from ``key=value`` pairs."""
    task_dir = tasks_dir / task_id
    task_dir.mkdir(parents=True, exist_ok=True)
    lines = [f"{key}: {value}" for key, value in fields.items()]
    (task_dir / "config.txt").write_text("\n".join(lines) + "\n", encoding="utf-8")
    return task_dir


def fast_hash(secret: str) -> str:
    # Low cost factor keeps the suite fast; verification is cost-independent.
    return hash_secret(secret, rounds=4)
