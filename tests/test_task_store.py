from __future__ import annotations

import logging
from pathlib import Path

import pytest

from helpers import write_task
from webconsole.app.errors import TaskConfigError, TaskNotFoundError, TaskStoreError
from webconsole.app.task_store import TaskStore


def test_get_task_applies_defaults(tasks_dir: Path) -> None:
    write_task(tasks_dir, "abc123", command="echo hello")

    task = TaskStore(tasks_dir).get_task("abc123")

    assert task.task_id == "abc123"
    assert task.title == ""
    assert task.description == ""
    assert task.secret == ""
    assert task.has_secret is False
    assert task.public is False
    assert task.rate_limit == 0
    assert task.progress is False
    assert task.command == "echo hello"


def test_get_task_parses_every_key(tasks_dir: Path) -> None:
    write_task(
        tasks_dir,
        "full01",
        Title="Nightly backup",
        description="Copies the archive",
        secret="$2b$04$abcdefghijklmnopqrstuu",
        public="y",
        ratelimit="30",
        progress="Y",
        command='"C:\\Program Files\\tool.exe" --url http://example.com',
    )

    task = TaskStore(tasks_dir).get_task("FULL01")

    assert task.task_id == "full01"
    assert task.title == "Nightly backup"
    assert task.description == "Copies the archive"
    assert task.has_secret is True
    assert task.public is True
    assert task.rate_limit == 30
    assert task.progress is True
    # Only the first colon separates key from value.
    assert task.command.endswith("--url http://example.com")


def test_unknown_keys_are_ignored_with_warning(
    tasks_dir: Path, caplog: pytest.LogCaptureFixture
) -> None:
    write_task(tasks_dir, "abc123", title="T", colour="blue")

    with caplog.at_level(logging.WARNING):
        task = TaskStore(tasks_dir).get_task("abc123")

    assert task.title == "T"
    assert "unknown_key" in caplog.text
    assert "colour" in caplog.text


def test_blank_and_comment_lines_are_skipped(tasks_dir: Path) -> None:
    task_dir = tasks_dir / "abc123"
    task_dir.mkdir()
    (task_dir / "config.txt").write_text(
        "# operator notes\n\ntitle: Hello\n\n", encoding="utf-8"
    )

    assert TaskStore(tasks_dir).get_task("abc123").title == "Hello"


def test_malformed_line_is_rejected(tasks_dir: Path) -> None:
    task_dir = tasks_dir / "abc123"
    task_dir.mkdir()
    (task_dir / "config.txt").write_text("title: ok\nthis line has no separator\n")

    with pytest.raises(TaskConfigError, match="line 2"):
        TaskStore(tasks_dir).get_task("abc123")


@pytest.mark.parametrize(
    ("key", "value"),
    [("public", "maybe"), ("progress", "1x"), ("ratelimit", "-5"), ("ratelimit", "soon")],
)
def test_invalid_values_are_rejected(tasks_dir: Path, key: str, value: str) -> None:
    write_task(tasks_dir, "abc123", **{key: value})

    with pytest.raises(TaskConfigError):
        TaskStore(tasks_dir).get_task("abc123")


@pytest.mark.parametrize("task_id", ["missing", "../abc123", "abc/123", "", "abc 123"])
def test_unknown_or_unsafe_ids_are_not_found(tasks_dir: Path, task_id: str) -> None:
    write_task(tasks_dir, "abc123", title="exists")

    with pytest.raises(TaskNotFoundError, match="Invalid taskID"):
        TaskStore(tasks_dir).get_task(task_id)


def test_unreadable_config_is_a_store_error(
    tasks_dir: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    write_task(tasks_dir, "abc123", title="Locked")

    def denied(self: Path, *args, **kwargs) -> str:
        raise PermissionError(13, "Permission denied", str(self))

    monkeypatch.setattr(Path, "read_text", denied)

    with pytest.raises(TaskStoreError, match="Can't open Task config file."):
        TaskStore(tasks_dir).get_task("abc123")


def test_list_tasks_is_sorted_and_skips_plain_files(tasks_dir: Path) -> None:
    write_task(tasks_dir, "zzz", title="Last")
    write_task(tasks_dir, "aaa", title="First")
    (tasks_dir / "README").write_text("not a task")

    tasks = TaskStore(tasks_dir).list_tasks()

    assert [task.task_id for task in tasks] == ["aaa", "zzz"]


def test_list_tasks_fails_fast_on_broken_task(tasks_dir: Path) -> None:
    write_task(tasks_dir, "aaa", title="Fine")
    write_task(tasks_dir, "bbb", public="perhaps")

    with pytest.raises(TaskConfigError):
        TaskStore(tasks_dir).list_tasks()


def test_list_tasks_without_tasks_folder(tmp_path: Path) -> None:
    with pytest.raises(TaskStoreError, match="Can't read Tasks folder."):
        TaskStore(tmp_path / "nope").list_tasks()


def test_append_run_duration_writes_capped_history(tasks_dir: Path) -> None:
    write_task(tasks_dir, "abc123", title="T")
    store = TaskStore(tasks_dir)

    for duration in range(12):
        history = store.append_run_duration("abc123", duration)

    assert history == list(range(2, 12))
    assert store.read_run_times("abc123") == history
    content = (tasks_dir / "abc123" / "runTimes.txt").read_text()
    assert content == "".join(f"{value}\n" for value in range(2, 12))
    # The temp file used for the atomic replace is gone.
    assert sorted(path.name for path in (tasks_dir / "abc123").iterdir()) == [
        "config.txt",
        "runTimes.txt",
    ]


def test_read_run_times_skips_garbage(tasks_dir: Path) -> None:
    task_dir = write_task(tasks_dir, "abc123", title="T")
    (task_dir / "runTimes.txt").write_text("5\n\nabc\n7\n")

    assert TaskStore(tasks_dir).read_run_times("abc123") == [5, 7]


def test_read_run_times_without_history(tasks_dir: Path) -> None:
    write_task(tasks_dir, "abc123", title="T")

    assert TaskStore(tasks_dir).read_run_times("abc123") == []
