from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from helpers import FakeClock
from webconsole.app.settings import Settings
from webconsole.main import create_app


@pytest.fixture
def tasks_dir(tmp_path: Path) -> Path:
    path = tmp_path / "tasks"
    path.mkdir()
    return path


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def client(tasks_dir: Path) -> Iterator[TestClient]:
    app = create_app(settings_override=Settings(tasks_dir=tasks_dir))
    with TestClient(app) as test_client:
        yield test_client
