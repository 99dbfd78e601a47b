"""Launches Task processes and captures their output for polling callers.

Beginner terms:
- Running-set: Tasks whose process has been started and whose output has not hit EOF yet.
- Capture thread: one background thread per running Task that reads stdout
  and appends each non-blank line to that Task's output buffer.
- Cursor: the line index a caller has already read up to; the next poll starts there.

Lifecycle per Task id is Idle -> Running -> Idle. A non-zero exit status does
not change that; it is only logged.
"""

from __future__ import annotations

import codecs
import logging
import subprocess
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field

from .errors import RateLimitedError, SpawnError, TaskStoreError
from .estimator import (
    estimate_duration,
    estimate_progress_percent,
    fold_duration,
    seconds_until_allowed,
)
from .models import PollResult, StartResult, TaskConfig
from .task_store import TaskStore

logger = logging.getLogger(__name__)

READ_CHUNK_SIZE = 10240


def split_command_line(command: str) -> list[str]:
    """Split a command line into argv.

    Fields are separated by whitespace. A field that starts with a double
    quote runs to the next double quote and the quotes are dropped. There is no
    escape character.
    """
    fields: list[str] = []
    rest = command.strip()
    while rest:
        if rest.startswith('"'):
            field_value, _, rest = rest[1:].partition('"')
        else:
            parts = rest.split(None, 1)
            field_value = parts[0]
            rest = parts[1] if len(parts) > 1 else ""
        fields.append(field_value)
        rest = rest.strip()
    return fields


@dataclass
class _RunRecord:
    """Runtime state of one Task; only touched while holding the runner lock."""

    running: bool = False
    capture_thread: threading.Thread | None = None
    start_time: float | None = None
    stop_time: float | None = None
    progress: bool = False
    lines: list[str] = field(default_factory=list)
    history: list[int] = field(default_factory=list)


class ProcessRunner:
    """Owns the running-set, the per-Task output buffers and run statistics."""

    def __init__(
        self,
        store: TaskStore,
        *,
        clock: Callable[[], float] = time.time,
        read_chunk_size: int = READ_CHUNK_SIZE,
    ) -> None:
        self.store = store
        self._clock = clock
        self._read_chunk_size = read_chunk_size
        self._records: dict[str, _RunRecord] = {}
        # Guards _records and every _RunRecord in it.
        self._lock = threading.Lock()

    def start(self, task_id: str, task: TaskConfig) -> StartResult:
        """Start the Task unless it is already running.

        Raises RateLimitedError when the Task stopped less than ``rate_limit``
        seconds ago and SpawnError when the process cannot be launched.
        """
        argv = split_command_line(task.command)
        if not argv:
            raise SpawnError("Task has no command.")
        task_dir = self.store.task_dir(task_id)
        history = self._load_history(task_id)

        with self._lock:
            record = self._records.setdefault(task_id, _RunRecord())
            if record.running:
                return "already_running"

            retry_after = seconds_until_allowed(record.stop_time, task.rate_limit, self._clock())
            if retry_after > 0:
                raise RateLimitedError(task.rate_limit, retry_after)

            # Claim the slot; a concurrent start now sees the Task as running.
            previous_stop = record.stop_time
            record.running = True
            record.start_time = self._clock()
            record.stop_time = None
            record.progress = task.progress
            record.lines = []
            record.history = history
            record.capture_thread = None

        try:
            process = subprocess.Popen(  # noqa: S603
                argv,
                cwd=task_dir,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
            )
        except (OSError, ValueError) as exc:
            with self._lock:
                record.running = False
                record.start_time = None
                record.stop_time = previous_stop
            logger.error(
                "task_run event=spawn_failed task_id=%s command=%r error=%s",
                task_id,
                task.command,
                exc,
            )
            raise SpawnError(str(exc)) from exc

        capture_thread = threading.Thread(
            target=self._capture_output,
            args=(task_id, record, process),
            name=f"webconsole-capture-{task_id}",
            daemon=True,
        )
        with self._lock:
            record.capture_thread = capture_thread
        capture_thread.start()

        logger.info("task_run event=start task_id=%s pid=%s", task_id, process.pid)
        return "started"

    def is_running(self, task_id: str) -> bool:
        with self._lock:
            record = self._records.get(task_id)
            return record is not None and record.running

    def poll(self, task_id: str, from_line: int = 0) -> PollResult:
        """Return output captured from ``from_line`` onward without blocking."""
        from_line = max(0, from_line)
        with self._lock:
            record = self._records.get(task_id)
            if record is None:
                return PollResult(lines=[], running=False, next_line=from_line)
            lines = record.lines[from_line:]
            progress: int | None = None
            if record.progress:
                if record.running and record.start_time is not None:
                    progress = estimate_progress_percent(
                        record.start_time, estimate_duration(record.history), self._clock()
                    )
                else:
                    progress = 100
            return PollResult(
                lines=lines,
                running=record.running,
                next_line=from_line + len(lines),
                progress=progress,
            )

    def wait(self, task_id: str, timeout: float | None = None) -> bool:
        """Block until the Task's capture thread has finished and reaped the process."""
        with self._lock:
            record = self._records.get(task_id)
            thread = record.capture_thread if record else None
        if thread is None:
            return True
        thread.join(timeout)
        return not thread.is_alive()

    def history(self, task_id: str) -> list[int]:
        """Run-time history as of the Task's last start or completion."""
        with self._lock:
            record = self._records.get(task_id)
            return list(record.history) if record else []

    def _load_history(self, task_id: str) -> list[int]:
        try:
            return self.store.read_run_times(task_id)
        except TaskStoreError as exc:
            logger.warning("task_run event=history_unreadable task_id=%s error=%s", task_id, exc)
            return []

    def _capture_output(
        self,
        task_id: str,
        record: _RunRecord,
        process: subprocess.Popen[bytes],
    ) -> None:
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        pending = ""
        try:
            stdout = process.stdout
            if stdout is None:
                return
            try:
                while True:
                    chunk = stdout.read1(self._read_chunk_size)
                    if not chunk:
                        break
                    pending = self._append_lines(record, pending + decoder.decode(chunk))
            except (OSError, ValueError) as exc:
                # A broken pipe ends the run the same way EOF does.
                logger.warning("task_run event=read_error task_id=%s error=%s", task_id, exc)
            pending += decoder.decode(b"", final=True)
            if pending.strip():
                self._append_lines(record, pending + "\n")
            stdout.close()
        finally:
            self._finish_run(task_id, record)

        # The Task is already Idle; a child that outlives its stdout is reaped here.
        returncode = process.wait()
        logger.info(
            "task_run event=exited task_id=%s pid=%s returncode=%s",
            task_id,
            process.pid,
            returncode,
        )

    def _append_lines(self, record: _RunRecord, text: str) -> str:
        """Append complete non-blank lines of ``text``; return the unfinished tail."""
        *complete, tail = text.split("\n")
        new_lines = [line.rstrip("\r") for line in complete if line.strip()]
        if new_lines:
            with self._lock:
                record.lines.extend(new_lines)
        return tail

    def _finish_run(self, task_id: str, record: _RunRecord) -> None:
        """Record the stop time at end of output and move the Task back to Idle."""
        stop_time = self._clock()
        start_time = record.start_time if record.start_time is not None else stop_time
        duration_s = max(0, int(stop_time - start_time))

        try:
            history = self.store.append_run_duration(task_id, duration_s)
        except TaskStoreError as exc:
            logger.warning(
                "task_run event=history_write_failed task_id=%s error=%s", task_id, exc
            )
            history = fold_duration(record.history, duration_s)

        with self._lock:
            record.history = history
            record.stop_time = stop_time
            record.running = False

        logger.info(
            "task_run event=completed task_id=%s duration_s=%s lines=%d",
            task_id,
            duration_s,
            len(record.lines),
        )
