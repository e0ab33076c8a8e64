"""Shared test fixtures."""

import itertools
import sys
from collections.abc import Callable, Iterator
from datetime import datetime, timedelta
from typing import Any

import pytest

# Ensure src is in path
sys.path.insert(0, "src")

from fastapi.testclient import TestClient
from sqlalchemy import Engine
from sqlalchemy.orm import Session

from k6fleet.api import create_app
from k6fleet.config import DatabaseSettings, DispatchSettings, ServerSettings
from k6fleet.dispatch import InMemoryResultSink
from k6fleet.storage import (
    AgentRow,
    AgentStatus,
    ScriptRow,
    SessionFactory,
    TaskRow,
    TaskStatus,
    create_engine_from_settings,
    create_session_factory,
    init_db,
    utcnow,
)

ADMIN_TOKEN = "test-admin-token"
ADMIN_USER = "admin-1"

# Fixed base so task creation order is deterministic regardless of clock resolution
BASE_TIME = datetime(2024, 1, 1, 12, 0, 0)


@pytest.fixture
def engine() -> Iterator[Engine]:
    """Fresh in-memory database with tables created."""
    engine = create_engine_from_settings(DatabaseSettings(url="sqlite://"))
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine: Engine) -> SessionFactory:
    return create_session_factory(engine)


@pytest.fixture
def session(session_factory: SessionFactory) -> Iterator[Session]:
    with session_factory() as session:
        yield session


@pytest.fixture
def make_agent() -> Callable[..., AgentRow]:
    """Insert an agent directly. Defaults: ONLINE, enabled, capacity 1, fresh heartbeat."""
    counter = itertools.count(1)

    def _make(session: Session, **overrides: Any) -> AgentRow:
        n = next(counter)
        fields: dict[str, Any] = {
            "name": f"agent-{n}",
            "hostname": f"host-{n}",
            "ip_address": f"10.0.0.{n}",
            "status": AgentStatus.ONLINE,
            "is_enabled": True,
            "max_concurrent_tasks": 1,
            "current_tasks": 0,
            "total_tasks_executed": 0,
            "last_heartbeat": utcnow(),
        }
        fields.update(overrides)
        agent = AgentRow(**fields)
        session.add(agent)
        session.commit()
        return agent

    return _make


@pytest.fixture
def make_script() -> Callable[..., ScriptRow]:
    def _make(session: Session, **overrides: Any) -> ScriptRow:
        fields: dict[str, Any] = {
            "name": "smoke",
            "content": "export default function () {}",
        }
        fields.update(overrides)
        script = ScriptRow(**fields)
        session.add(script)
        session.commit()
        return script

    return _make


@pytest.fixture
def make_task(make_script: Callable[..., ScriptRow]) -> Callable[..., TaskRow]:
    """Insert a PENDING task. Each call is one second newer than the previous one."""
    counter = itertools.count()

    def _make(session: Session, **overrides: Any) -> TaskRow:
        n = next(counter)
        if "script_id" not in overrides:
            overrides["script_id"] = make_script(session).id
        fields: dict[str, Any] = {
            "name": f"task-{n}",
            "status": TaskStatus.PENDING,
            "config": {"vus": 1, "duration": "30s"},
            "creator_id": ADMIN_USER,
            "created_at": BASE_TIME + timedelta(seconds=n),
        }
        fields.update(overrides)
        task = TaskRow(**fields)
        session.add(task)
        session.commit()
        return task

    return _make


@pytest.fixture
def result_sink() -> InMemoryResultSink:
    return InMemoryResultSink()


@pytest.fixture
def app(result_sink: InMemoryResultSink):
    """Application on a private in-memory database, sweeper disabled."""
    return create_app(
        db_settings=DatabaseSettings(url="sqlite://"),
        dispatch_settings=DispatchSettings(sweep_enabled=False),
        server_settings=ServerSettings(admin_tokens={ADMIN_TOKEN: ADMIN_USER}),
        result_sink=result_sink,
    )


@pytest.fixture
def client(app) -> Iterator[TestClient]:
    with TestClient(app) as client:
        yield client


@pytest.fixture
def admin_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {ADMIN_TOKEN}"}
