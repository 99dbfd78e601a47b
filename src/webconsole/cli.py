"""Command-line entry point: run the server or list configured Tasks.

Examples:
    webconsole serve --port 8090
    webconsole list
"""

from __future__ import annotations

import argparse
import sys
from collections.abc import Sequence
from pathlib import Path

from .app.errors import WebConsoleError
from .app.models import TaskConfig
from .app.settings import Settings, get_settings
from .app.task_store import TaskStore
from .logging_setup import configure_logging


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="webconsole",
        description="Run predefined command-line Tasks over HTTP.",
    )
    parser.add_argument(
        "--tasks-dir",
        type=Path,
        default=None,
        help="Folder holding one sub-folder per Task (default: WEBCONSOLE_TASKS_DIR or ./tasks).",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    serve_parser = subparsers.add_parser("serve", help="Start the web server.")
    serve_parser.add_argument("--host", default=None)
    serve_parser.add_argument("--port", type=int, default=None)

    subparsers.add_parser("list", help="Print every configured Task.")
    return parser


def format_task_line(task: TaskConfig) -> str:
    secret = "Y" if task.has_secret else "N"
    public = "Y" if task.public else "N"
    return f"{task.task_id}: {task.title}, Secret: {secret}, Public: {public}, Command: {task.command}"


def list_tasks(store: TaskStore) -> int:
    try:
        tasks = store.list_tasks()
    except WebConsoleError as exc:
        print(f"ERROR: {exc}")
        return 1
    for task in tasks:
        print(format_task_line(task))
    return 0


def serve(settings: Settings, host: str, port: int) -> int:
    import uvicorn

    from .main import create_app

    uvicorn.run(create_app(settings_override=settings), host=host, port=port, log_config=None)
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    settings = get_settings()
    if args.tasks_dir is not None:
        settings = settings.model_copy(update={"tasks_dir": args.tasks_dir})

    if args.command == "list":
        return list_tasks(TaskStore(settings.tasks_dir))

    configure_logging(settings.log_level)
    return serve(settings, args.host or settings.host, args.port or settings.port)


if __name__ == "__main__":
    sys.exit(main())
