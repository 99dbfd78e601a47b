from __future__ import annotations

import os
import socket
import subprocess
import sys
import time
from collections.abc import Iterator
from pathlib import Path
from urllib import parse, request

import pytest

SRC_DIR = Path(__file__).resolve().parents[2] / "src"


def _free_local_port() -> int:
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            sock.bind(("127.0.0.1", 0))
            return int(sock.getsockname()[1])
    except PermissionError:
        pytest.skip("Sockets are not available here.")


def _await_healthy(base_url: str, timeout_s: float = 20.0) -> None:
    deadline = time.monotonic() + timeout_s
    while time.monotonic() < deadline:
        try:
            with request.urlopen(f"{base_url}/health", timeout=1.0) as response:
                if response.status == 200:
                    return
        except OSError:
            time.sleep(0.2)
    raise TimeoutError(f"webconsole did not answer /health within {timeout_s:.1f}s")


def _start_server(tasks_dir: Path, port: int) -> subprocess.Popen[bytes]:
    """Launch ``webconsole serve`` from the source tree against ``tasks_dir``."""
    env = os.environ.copy()
    env["PYTHONPATH"] = os.pathsep.join(filter(None, [str(SRC_DIR), env.get("PYTHONPATH")]))
    cmd = [
        sys.executable,
        "-m",
        "webconsole.cli",
        "--tasks-dir",
        str(tasks_dir),
        "serve",
        "--host",
        "127.0.0.1",
        "--port",
        str(port),
    ]
    return subprocess.Popen(  # noqa: S603
        cmd,
        cwd=tasks_dir.parent,
        env=env,
        stdout=subprocess.DEVNULL,
        stderr=subprocess.DEVNULL,
    )


@pytest.fixture
def server_tasks_dir(tmp_path: Path) -> Path:
    path = tmp_path / "tasks"
    path.mkdir()
    return path


@pytest.fixture
def api_base_url(server_tasks_dir: Path) -> Iterator[str]:
    if os.getenv("RUN_HTTP_INTEGRATION_TESTS") != "1":
        pytest.skip("Set RUN_HTTP_INTEGRATION_TESTS=1 to run tests against a live server.")

    port = _free_local_port()
    base_url = f"http://127.0.0.1:{port}"
    server = _start_server(server_tasks_dir, port)
    try:
        _await_healthy(base_url)
        yield base_url
    finally:
        server.terminate()
        try:
            server.wait(timeout=5)
        except subprocess.TimeoutExpired:
            server.kill()
            server.wait(timeout=5)


def http_post_form(base_url: str, path: str, fields: dict[str, str]) -> str:
    req = request.Request(
        url=f"{base_url}{path}",
        method="POST",
        data=parse.urlencode(fields).encode("utf-8"),
        headers={"Content-Type": "application/x-www-form-urlencoded"},
    )
    with request.urlopen(req, timeout=20.0) as response:
        return response.read().decode("utf-8")


def http_get_text(base_url: str, path: str, params: dict[str, str]) -> str:
    url = f"{base_url}{path}?{parse.urlencode(params)}"
    with request.urlopen(url, timeout=20.0) as response:
        return response.read().decode("utf-8")


@pytest.fixture
def post_form():
    return http_post_form


@pytest.fixture
def get_text():
    return http_get_text
