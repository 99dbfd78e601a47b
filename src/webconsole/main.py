"""FastAPI application wiring for the web console service.

Beginner terms used in this file:
- FastAPI app: the main web application object.
- app.state: a place to store shared runtime objects (store, sessions, runner, authorizer).
- Lifespan: code that runs when the server starts and stops; here it runs the token sweeper.
- Plain-text API: every /api/ call answers with text, errors look like "ERROR: <reason>".
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse, PlainTextResponse, Response

from .app.auth import Authorizer
from .app.errors import WebConsoleError
from .app.models import Authorization
from .app.runner import ProcessRunner
from .app.sessions import SessionManager
from .app.settings import Settings, get_settings
from .app.task_store import TaskStore

logger = logging.getLogger(__name__)

API_METHODS = ["GET", "POST"]

EOF_MARKER = "ERROR: EOF"


def create_app(*, settings_override: Settings | None = None) -> FastAPI:
    """Application factory.

    Each call builds fresh components, so tests can create isolated apps that
    point at their own tasks directory.
    """
    settings = settings_override or get_settings()

    store = TaskStore(settings.tasks_dir)
    sessions = SessionManager(
        token_timeout_s=settings.token_timeout_s,
        check_period_s=settings.token_check_period_s,
    )
    runner = ProcessRunner(store)
    authorizer = Authorizer(store, sessions)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        app.state.sessions.start()
        logger.info("service event=started tasks_dir=%s", settings.tasks_dir)
        try:
            yield
        finally:
            app.state.sessions.stop()

    app = FastAPI(title=settings.app_name, version="0.1.0", lifespan=lifespan)
    # Shared objects live in app.state so route handlers can reuse them.
    app.state.settings = settings
    app.state.store = store
    app.state.sessions = sessions
    app.state.runner = runner
    app.state.authorizer = authorizer

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok", "service": settings.app_name}

    @app.api_route("/api/getPublicTaskList", methods=API_METHODS)
    def get_public_task_list() -> Response:
        try:
            tasks = app.state.store.list_tasks()
        except WebConsoleError as exc:
            return _error(str(exc))
        return JSONResponse({task.task_id: task.title for task in tasks if task.public})

    @app.api_route("/api/{call}", methods=API_METHODS)
    async def task_api(call: str, request: Request) -> Response:
        params = await _request_params(request)
        # bcrypt checks and file reads are blocking, so run them off the event loop.
        return await run_in_threadpool(_handle_task_call, app, call, request.url.path, params)

    return app


def _handle_task_call(app: FastAPI, call: str, path: str, params: dict[str, str]) -> Response:
    task_id = params.get("taskID", "")
    if not task_id:
        return _error("Missing parameter taskID.")

    # 1) Every Task call needs a valid token or the Task's secret.
    try:
        auth: Authorization = app.state.authorizer.authorize(
            task_id,
            token=params.get("token", ""),
            secret=params.get("secret", ""),
        )
    except WebConsoleError as exc:
        return _error(str(exc))

    # 2) Dispatch the authorised call.
    handler = _TASK_CALLS.get(call)
    if handler is None:
        return _error(f"Unknown API call: {path}")
    try:
        return handler(app, auth, params)
    except WebConsoleError as exc:
        return _error(str(exc))


def _get_token(app: FastAPI, auth: Authorization, params: dict[str, str]) -> Response:
    return PlainTextResponse(auth.token)


def _get_task_title(app: FastAPI, auth: Authorization, params: dict[str, str]) -> Response:
    return PlainTextResponse(auth.task.title)


def _get_task_details(app: FastAPI, auth: Authorization, params: dict[str, str]) -> Response:
    return JSONResponse({"title": auth.task.title, "description": auth.task.description})


def _run_task(app: FastAPI, auth: Authorization, params: dict[str, str]) -> Response:
    # A second start while running is still reported as OK.
    outcome = app.state.runner.start(auth.task.task_id, auth.task)
    logger.info("api event=run_task task_id=%s outcome=%s", auth.task.task_id, outcome)
    return PlainTextResponse("OK")


def _get_task_output(app: FastAPI, auth: Authorization, params: dict[str, str]) -> Response:
    raw_line = params.get("line", "").strip() or "0"
    try:
        from_line = int(raw_line)
    except ValueError:
        return _error("Invalid parameter line.")
    if from_line < 0:
        return _error("Invalid parameter line.")

    result = app.state.runner.poll(auth.task.task_id, from_line)
    body = list(result.lines)
    if result.progress is not None:
        body.append(f"Progress: Progress {result.progress}%")
    if not result.running:
        body.append(EOF_MARKER)
    return PlainTextResponse("\n".join(body))


def _get_task_running(app: FastAPI, auth: Authorization, params: dict[str, str]) -> Response:
    return PlainTextResponse("YES" if app.state.runner.is_running(auth.task.task_id) else "NO")


def _keep_alive(app: FastAPI, auth: Authorization, params: dict[str, str]) -> Response:
    return PlainTextResponse("OK")


_TASK_CALLS = {
    "getToken": _get_token,
    "getTaskTitle": _get_task_title,
    "getTaskDetails": _get_task_details,
    "runTask": _run_task,
    "getTaskOutput": _get_task_output,
    "getTaskRunning": _get_task_running,
    "keepAlive": _keep_alive,
}


async def _request_params(request: Request) -> dict[str, str]:
    """Merge query-string and form parameters; form values win."""
    params: dict[str, str] = dict(request.query_params)
    if request.method == "POST":
        content_type = request.headers.get("content-type", "")
        if content_type.startswith(("application/x-www-form-urlencoded", "multipart/form-data")):
            form = await request.form()
            params.update({key: value for key, value in form.items() if isinstance(value, str)})
    return params


def _error(message: str) -> PlainTextResponse:
    return PlainTextResponse(f"ERROR: {message}")


# Module-level app for `uvicorn webconsole.main:app`.
app = create_app()
