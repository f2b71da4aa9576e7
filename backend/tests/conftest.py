from __future__ import annotations

import uuid
from collections.abc import AsyncIterator, Callable, Iterator
from datetime import datetime
from typing import Any

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient

from tracedock.core.config import Settings
from tracedock.db.dialects import SQLITE, build_async_url
from tracedock.db.repository import Repository
from tracedock.db.session import Database
from tracedock.main import create_app
from tracedock.schemas.logs import LogEntry

BASE_TIME = datetime(2024, 1, 15, 12, 0, 0)


def sqlite_database(path) -> Database:
    return Database(SQLITE, build_async_url(SQLITE, str(path)))


@pytest_asyncio.fixture
async def database(tmp_path) -> AsyncIterator[Database]:
    db = sqlite_database(tmp_path / "trace-dock.sqlite")
    await db.init()
    yield db
    await db.dispose()


@pytest_asyncio.fixture
async def repository(database: Database) -> Repository:
    return Repository(database)


@pytest.fixture
def make_log() -> Callable[..., LogEntry]:
    def _make(**overrides: Any) -> LogEntry:
        fields: dict[str, Any] = {
            "id": str(uuid.uuid4()),
            "timestamp": BASE_TIME,
            "level": "info",
            "message": "service started",
            "app_name": "svc",
            "session_id": "session-1",
            "environment": {"type": "node", "nodeVersion": "20.11.0"},
        }
        fields.update(overrides)
        return LogEntry(**fields)

    return _make


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        ENV="test",
        DB_TYPE="sqlite",
        DATABASE_URL=str(tmp_path / "api.sqlite"),
        SPAN_TIMEOUT_MS=0,
        CORS_ALLOW_ORIGINS=["*"],
    )


@pytest.fixture
def client(settings: Settings) -> Iterator[TestClient]:
    app = create_app(settings)
    with TestClient(app) as c:
        yield c


def log_payload(**overrides: Any) -> dict[str, Any]:
    """Wire-format (camelCase) log entry for POST /ingest."""
    body: dict[str, Any] = {
        "id": str(uuid.uuid4()),
        "timestamp": "2024-01-15T12:00:00.000Z",
        "level": "info",
        "message": "service started",
        "appName": "svc",
        "sessionId": "session-1",
        "environment": {"type": "node"},
    }
    body.update(overrides)
    return body
