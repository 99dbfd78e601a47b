"""Filesystem storage for Task definitions and their run-time history.

Beginner terms:
- Task directory: ``<tasks_dir>/<task_id>/``; also the working directory of the Task's process.
- config.txt: operator-authored ``key: value`` lines describing the Task.
- runTimes.txt: one integer per line, the durations (seconds) of recent completed runs.
- Atomic replace: write a temp file, then rename it over the old one so readers
  never see a half-written file.
"""

from __future__ import annotations

import logging
import os
import re
import tempfile
import threading
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from .errors import TaskConfigError, TaskNotFoundError, TaskStoreError
from .estimator import fold_duration
from .models import TaskConfig

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "config.txt"
RUN_TIMES_FILENAME = "runTimes.txt"

_TASK_ID_PATTERN = re.compile(r"^[a-z0-9]+$")

# config.txt key -> TaskConfig field.
_CONFIG_KEYS = {
    "title": "title",
    "description": "description",
    "secret": "secret",
    "public": "public",
    "ratelimit": "rate_limit",
    "progress": "progress",
    "command": "command",
}


def normalize_task_id(task_id: str) -> str:
    return task_id.strip().lower()


class TaskStore:
    """Reads Task configs and keeps each Task's runTimes.txt up to date."""

    def __init__(self, tasks_dir: str | Path) -> None:
        self.tasks_dir = Path(tasks_dir)
        # Serializes read-merge-write cycles on runTimes.txt files.
        self._history_lock = threading.Lock()

    def task_dir(self, task_id: str) -> Path:
        normalized = normalize_task_id(task_id)
        if not _TASK_ID_PATTERN.match(normalized):
            raise TaskNotFoundError(task_id)
        return self.tasks_dir / normalized

    def get_task(self, task_id: str) -> TaskConfig:
        task_dir = self.task_dir(task_id)
        config_path = task_dir / CONFIG_FILENAME
        if not config_path.is_file():
            raise TaskNotFoundError(task_id)
        try:
            raw_text = config_path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            raise TaskStoreError("Can't open Task config file.") from exc
        return _parse_config(task_dir.name, raw_text)

    def list_tasks(self) -> list[TaskConfig]:
        """Return every Task, sorted by id; the first broken Task aborts the listing."""
        try:
            entries = sorted(self.tasks_dir.iterdir(), key=lambda path: path.name)
        except OSError as exc:
            raise TaskStoreError("Can't read Tasks folder.") from exc
        return [self.get_task(entry.name) for entry in entries if entry.is_dir()]

    def read_run_times(self, task_id: str) -> list[int]:
        path = self.task_dir(task_id) / RUN_TIMES_FILENAME
        try:
            raw_text = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return []
        except (OSError, UnicodeDecodeError) as exc:
            raise TaskStoreError(f"Can't read run times for Task {task_id}.") from exc

        durations: list[int] = []
        for raw_line in raw_text.splitlines():
            line = raw_line.strip()
            if not line:
                continue
            try:
                durations.append(int(line))
            except ValueError:
                logger.warning(
                    "run_times event=skip_line task_id=%s line=%r", task_id, raw_line
                )
        return durations

    def append_run_duration(self, task_id: str, duration_s: int) -> list[int]:
        """Fold one completed run into runTimes.txt and return the new history."""
        with self._history_lock:
            history = fold_duration(self.read_run_times(task_id), duration_s)
            self._write_run_times(task_id, history)
        return history

    def _write_run_times(self, task_id: str, history: list[int]) -> None:
        task_dir = self.task_dir(task_id)
        content = "".join(f"{duration}\n" for duration in history)
        try:
            fd, tmp_name = tempfile.mkstemp(dir=task_dir, prefix=".runTimes-", suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as handle:
                    handle.write(content)
                os.replace(tmp_name, task_dir / RUN_TIMES_FILENAME)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as exc:
            raise TaskStoreError(f"Can't write run times for Task {task_id}.") from exc


def _parse_config(task_id: str, raw_text: str) -> TaskConfig:
    """Turn config.txt text into a validated TaskConfig."""
    values: dict[str, Any] = {"task_id": task_id}
    for line_number, raw_line in enumerate(raw_text.splitlines(), start=1):
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        key, sep, value = line.partition(":")
        if not sep:
            raise TaskConfigError(
                f"Task {task_id}: config.txt line {line_number} is not 'key: value'."
            )
        field_name = _CONFIG_KEYS.get(key.strip().lower())
        if field_name is None:
            logger.warning(
                "task_config event=unknown_key task_id=%s key=%s", task_id, key.strip()
            )
            continue
        value = value.strip()
        if field_name == "rate_limit" and not value:
            continue
        values[field_name] = value

    try:
        return TaskConfig.model_validate(values)
    except ValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}"
            for error in exc.errors()
        )
        raise TaskConfigError(f"Task {task_id}: invalid config.txt ({problems}).") from exc
