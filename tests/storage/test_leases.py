"""Tests for the conditional lease updates.

Critical Invariants:
- Each helper either applies fully or changes nothing
- Slot counters never go below zero or above capacity
"""

import pytest

from k6fleet.storage import AgentStatus, TaskStatus, utcnow
from k6fleet.storage.leases import claim_task, release_lease, release_slot, reserve_slot


def test_reserve_slot_stops_at_capacity(session, make_agent):
    agent = make_agent(session, max_concurrent_tasks=2)

    assert reserve_slot(session, agent.id) is True
    assert reserve_slot(session, agent.id) is True
    assert reserve_slot(session, agent.id) is False
    session.commit()

    session.refresh(agent)
    assert agent.current_tasks == 2


@pytest.mark.parametrize(
    "overrides", [{"is_enabled": False}, {"status": AgentStatus.OFFLINE}]
)
def test_reserve_slot_requires_available_agent(session, make_agent, overrides):
    agent = make_agent(session, **overrides)
    assert reserve_slot(session, agent.id) is False


def test_release_slot_floors_at_zero(session, make_agent):
    agent = make_agent(session, current_tasks=0)

    release_slot(session, agent.id)
    session.commit()

    session.refresh(agent)
    assert agent.current_tasks == 0


def test_claim_task_is_single_winner(session, make_agent, make_task):
    """CRITICAL: Only the first claim on a task succeeds."""
    first = make_agent(session)
    second = make_agent(session)
    task = make_task(session)
    now = utcnow()

    assert claim_task(session, task.id, first.id, now) is True
    assert claim_task(session, task.id, second.id, now) is False
    session.commit()

    session.refresh(task)
    assert task.agent_id == first.id
    assert task.status == TaskStatus.RUNNING
    assert task.started_at == now


def test_claim_task_honours_pin(session, make_agent, make_task):
    owner = make_agent(session)
    other = make_agent(session)
    task = make_task(session, agent_id=owner.id)

    assert claim_task(session, task.id, other.id, utcnow()) is False
    assert claim_task(session, task.id, owner.id, utcnow()) is True


def test_release_lease_requires_holder(session, make_agent, make_task):
    holder = make_agent(session, current_tasks=1)
    other = make_agent(session)
    task = make_task(session, agent_id=holder.id, status=TaskStatus.RUNNING)

    assert release_lease(session, task.id, other.id, TaskStatus.COMPLETED, utcnow()) is False
    assert release_lease(session, task.id, holder.id, TaskStatus.COMPLETED, utcnow()) is True
    session.commit()

    session.refresh(holder)
    assert holder.current_tasks == 0
    assert holder.total_tasks_executed == 1


def test_release_lease_cancel_does_not_count_execution(session, make_agent, make_task):
    holder = make_agent(session, current_tasks=1)
    task = make_task(session, agent_id=holder.id, status=TaskStatus.RUNNING)

    release_lease(session, task.id, holder.id, TaskStatus.CANCELLED, utcnow())
    session.commit()

    session.refresh(holder)
    assert holder.current_tasks == 0
    assert holder.total_tasks_executed == 0


def test_release_lease_rejects_non_terminal_status(session):
    with pytest.raises(ValueError):
        release_lease(session, "t", "a", TaskStatus.RUNNING, utcnow())
