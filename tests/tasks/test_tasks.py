"""Tests for the task catalog and administrative stop."""

import pytest

from k6fleet.dispatch import poll_jobs
from k6fleet.errors import ConflictError, NotFoundError
from k6fleet.storage import TaskStatus, TriggerType
from k6fleet.tasks import (
    ScriptCreate,
    TaskConfig,
    TaskCreate,
    TaskQuery,
    create_script,
    create_task,
    list_tasks,
    stop_task,
    task_statistics,
)


@pytest.fixture
def script(session):
    return create_script(
        session, ScriptCreate(name="checkout", content="export default function () {}")
    )


def test_create_task_is_pending(session, script):
    task = create_task(
        session,
        TaskCreate(name="nightly", script_id=script.id, config=TaskConfig(vus=10, duration="1m")),
        creator_id="admin-1",
    )

    assert task.status == TaskStatus.PENDING
    assert task.agent_id is None
    assert task.creator_id == "admin-1"
    assert task.trigger_type == TriggerType.MANUAL
    assert task.config == {"vus": 10, "duration": "1m"}


def test_create_task_keeps_unknown_config_keys(session, script):
    """Config is forwarded to agents verbatim, including options we do not model."""
    task = create_task(
        session,
        TaskCreate(
            name="custom",
            script_id=script.id,
            config=TaskConfig.model_validate({"vus": 2, "discardResponseBodies": True}),
        ),
        creator_id="admin-1",
    )

    assert task.config["discardResponseBodies"] is True


def test_create_task_unknown_script(session):
    with pytest.raises(NotFoundError):
        create_task(session, TaskCreate(name="x", script_id="missing"), creator_id="admin-1")


def test_create_task_unknown_pinned_agent(session, script):
    with pytest.raises(NotFoundError):
        create_task(
            session,
            TaskCreate(name="x", script_id=script.id, agent_id="missing"),
            creator_id="admin-1",
        )


def test_stop_pending_task(session, make_task):
    task = make_task(session)

    stopped = stop_task(session, task.id)

    assert stopped.status == TaskStatus.CANCELLED
    assert stopped.completed_at is not None


def test_stop_running_task_releases_slot(session, make_agent, make_task):
    """CRITICAL: Cancelling a RUNNING task frees the agent's slot.

    Why: Otherwise the agent stays at capacity for a task it no longer runs.
    """
    agent = make_agent(session)
    task = make_task(session)
    poll_jobs(session, agent.id)

    stop_task(session, task.id)

    session.refresh(agent)
    session.refresh(task)
    assert task.status == TaskStatus.CANCELLED
    assert agent.current_tasks == 0
    assert agent.total_tasks_executed == 0


def test_stop_finished_task_conflicts(session, make_task):
    task = make_task(session, status=TaskStatus.COMPLETED)
    with pytest.raises(ConflictError):
        stop_task(session, task.id)


def test_stop_unknown_task(session):
    with pytest.raises(NotFoundError):
        stop_task(session, "missing")


def test_list_tasks_filters(session, make_agent, make_task):
    agent = make_agent(session)
    make_task(session, agent_id=agent.id)
    make_task(session)
    make_task(session, status=TaskStatus.FAILED)

    rows, total = list_tasks(session, TaskQuery(agent_id=agent.id))
    assert total == 1

    rows, total = list_tasks(session, TaskQuery(status=TaskStatus.PENDING))
    assert total == 2
    # Newest first
    assert rows[0].created_at > rows[1].created_at


def test_task_statistics(session, make_task):
    make_task(session)
    make_task(session, status=TaskStatus.COMPLETED)
    make_task(session, status=TaskStatus.COMPLETED)

    stats = task_statistics(session)

    assert stats.total == 3
    assert stats.pending == 1
    assert stats.completed == 2
    assert stats.running == 0
