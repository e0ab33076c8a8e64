"""Tests for the agent registry.

Critical Invariants:
- Registration is idempotent per hostname (one row, fresh heartbeat)
- Re-registration never touches load counters or the admin flag
- Batch operations report per-element outcomes without cross-element rollback
"""

from datetime import timedelta

import pytest
from sqlalchemy import func, select

from k6fleet.dispatch import poll_jobs
from k6fleet.errors import ConflictError, NotFoundError
from k6fleet.registry import (
    AgentCreate,
    AgentDescriptor,
    AgentQuery,
    AgentUpdate,
    Capabilities,
)
from k6fleet.registry import service as registry
from k6fleet.storage import AgentRow, AgentStatus, TaskStatus, utcnow


def _descriptor(**overrides) -> AgentDescriptor:
    fields = {"agent_id": "agent-a", "hostname": "load-01", "ip": "10.0.0.5"}
    fields.update(overrides)
    return AgentDescriptor(**fields)


def _agent_count(session) -> int:
    return session.scalar(select(func.count()).select_from(AgentRow))


# Registration


def test_register_creates_online_agent(session):
    """First registration creates an ONLINE agent with a heartbeat."""
    now = utcnow()
    agent = registry.register_or_update(session, _descriptor(), now=now)

    assert agent.status == AgentStatus.ONLINE
    assert agent.name == "agent-a"
    assert agent.ip_address == "10.0.0.5"
    assert agent.last_heartbeat == now
    assert agent.current_tasks == 0
    assert agent.is_enabled is True


def test_register_is_idempotent_per_hostname(session):
    """CRITICAL: Same hostname twice yields one row with the same id.

    Why: Agents re-register after every restart; duplicates would split
    their task history and capacity accounting.
    """
    first = registry.register_or_update(session, _descriptor())
    later = utcnow() + timedelta(seconds=5)
    second = registry.register_or_update(session, _descriptor(ip="10.0.0.9"), now=later)

    assert second.id == first.id
    assert second.ip_address == "10.0.0.9"
    assert second.last_heartbeat == later
    assert _agent_count(session) == 1


def test_reregister_preserves_counters_and_admin_flag(session, make_agent):
    """Re-registration brings an agent back online without resetting its load."""
    agent = make_agent(
        session,
        hostname="load-01",
        status=AgentStatus.OFFLINE,
        is_enabled=False,
        max_concurrent_tasks=3,
        current_tasks=2,
        total_tasks_executed=7,
    )

    updated = registry.register_or_update(session, _descriptor())

    assert updated.id == agent.id
    assert updated.status == AgentStatus.ONLINE
    assert updated.is_enabled is False
    assert updated.current_tasks == 2
    assert updated.total_tasks_executed == 7
    assert updated.max_concurrent_tasks == 3


def test_register_uses_default_capacity(session):
    agent = registry.register_or_update(session, _descriptor(), default_max_concurrent_tasks=4)
    assert agent.max_concurrent_tasks == 4


def test_register_stores_declared_capabilities(session):
    agent = registry.register_or_update(
        session,
        _descriptor(
            max_concurrent_tasks=3,
            k6_version="0.49.0",
            os="linux",
            arch="amd64",
            supported_script_types=["load_test"],
            tags={"region": "eu", "tier": "large"},
        ),
    )

    assert agent.max_concurrent_tasks == 3
    assert agent.k6_version == "0.49.0"
    assert agent.supported_script_types == ["load_test"]
    assert agent.tags == ["region=eu", "tier=large"]


# Heartbeat


def test_heartbeat_refreshes_liveness(session, make_agent):
    """Heartbeat stamps the server clock and flips the agent ONLINE."""
    agent = make_agent(session, status=AgentStatus.OFFLINE, last_heartbeat=None)
    now = utcnow()

    registry.update_heartbeat(session, agent.id, resources={"cpu": 4}, now=now)

    session.refresh(agent)
    assert agent.last_heartbeat == now
    assert agent.status == AgentStatus.ONLINE
    assert agent.resources == {"cpu": 4}


def test_heartbeat_unknown_agent_raises(session):
    with pytest.raises(NotFoundError):
        registry.update_heartbeat(session, "missing")


# Start / stop


def test_start_offline_agent(session, make_agent):
    agent = make_agent(session, status=AgentStatus.OFFLINE, last_heartbeat=None)

    started = registry.start(session, agent.id)

    assert started.status == AgentStatus.ONLINE
    assert started.last_heartbeat is not None


def test_start_online_agent_conflicts(session, make_agent):
    agent = make_agent(session)
    with pytest.raises(ConflictError):
        registry.start(session, agent.id)


def test_stop_offline_agent_conflicts(session, make_agent):
    agent = make_agent(session, status=AgentStatus.OFFLINE)
    with pytest.raises(ConflictError):
        registry.stop(session, agent.id)


def test_batch_enable_partitions_results(session, make_agent):
    """CRITICAL: Batch reports each id as success or failed independently.

    Why: One bad id must not roll back the others.
    """
    offline = make_agent(session, status=AgentStatus.OFFLINE)
    online = make_agent(session)

    result = registry.batch_enable(session, [offline.id, online.id, "missing"])

    assert result.success == [offline.id]
    assert result.failed == [online.id, "missing"]
    session.refresh(offline)
    assert offline.status == AgentStatus.ONLINE


def test_batch_disable(session, make_agent):
    a = make_agent(session)
    b = make_agent(session, status=AgentStatus.OFFLINE)

    result = registry.batch_disable(session, [a.id, b.id])

    assert result.success == [a.id]
    assert result.failed == [b.id]


# Administration


def test_create_agent_starts_offline(session):
    agent = registry.create_agent(
        session,
        AgentCreate(
            name="manual",
            hostname="load-02",
            ip_address="10.0.0.7",
            capabilities=Capabilities(max_concurrent_tasks=2),
        ),
    )

    assert agent.status == AgentStatus.OFFLINE
    assert agent.max_concurrent_tasks == 2


def test_create_agent_duplicate_hostname_conflicts(session, make_agent):
    make_agent(session, hostname="load-02")
    with pytest.raises(ConflictError):
        registry.create_agent(
            session, AgentCreate(name="dup", hostname="load-02", ip_address="10.0.0.7")
        )


def test_list_agents_filters_and_paginates(session, make_agent):
    for _ in range(3):
        make_agent(session)
    make_agent(session, status=AgentStatus.OFFLINE)

    rows, total = registry.list_agents(session, AgentQuery(status=AgentStatus.ONLINE, limit=2))
    assert total == 3
    assert len(rows) == 2

    rows, total = registry.list_agents(session, AgentQuery(hostname="host-4"))
    assert total == 1
    assert rows[0].status == AgentStatus.OFFLINE


def test_update_agent_applies_only_sent_fields(session, make_agent):
    agent = make_agent(session, description="old")

    updated = registry.update_agent(session, agent.id, AgentUpdate(name="renamed"))

    assert updated.name == "renamed"
    assert updated.description == "old"


def test_update_agent_hostname_conflict(session, make_agent):
    make_agent(session, hostname="taken")
    agent = make_agent(session)
    with pytest.raises(ConflictError):
        registry.update_agent(session, agent.id, AgentUpdate(hostname="taken"))


def test_remove_agent_unpins_pending_tasks(session, make_agent, make_task):
    """Deleting an agent returns its pinned tasks to the open pool."""
    agent = make_agent(session)
    task = make_task(session, agent_id=agent.id)

    registry.remove_agent(session, agent.id)

    session.refresh(task)
    assert task.agent_id is None
    assert task.status == TaskStatus.PENDING
    assert _agent_count(session) == 0


def test_remove_agent_with_running_task_conflicts(session, make_agent, make_task):
    agent = make_agent(session, current_tasks=1)
    make_task(session, agent_id=agent.id, status=TaskStatus.RUNNING)

    with pytest.raises(ConflictError):
        registry.remove_agent(session, agent.id)


def test_agent_statistics(session, make_agent):
    make_agent(session)
    make_agent(session)
    make_agent(session, status=AgentStatus.OFFLINE)
    make_agent(session, status=AgentStatus.ERROR)

    stats = registry.agent_statistics(session)

    assert stats.total == 4
    assert stats.online == 2
    assert stats.offline == 1
    assert stats.error == 1
    assert stats.busy == 0


def test_list_agent_tasks_unknown_agent(session):
    with pytest.raises(NotFoundError):
        registry.list_agent_tasks(session, "missing")


# Capacity changes


def test_update_agent_rejects_capacity_below_load(session, make_agent, make_task):
    """CRITICAL: An admin cannot shrink capacity under the tasks already leased.

    Why: current_tasks must never exceed max_concurrent_tasks.
    """
    agent = make_agent(session, max_concurrent_tasks=3)
    for _ in range(3):
        make_task(session)
    poll_jobs(session, agent.id)

    with pytest.raises(ConflictError):
        registry.update_agent(
            session, agent.id, AgentUpdate(capabilities=Capabilities(max_concurrent_tasks=1))
        )

    session.rollback()
    session.refresh(agent)
    assert agent.max_concurrent_tasks == 3
    assert agent.current_tasks == 3


def test_update_agent_capacity_at_load_is_allowed(session, make_agent, make_task):
    agent = make_agent(session, max_concurrent_tasks=3)
    make_task(session)
    poll_jobs(session, agent.id)

    updated = registry.update_agent(
        session, agent.id, AgentUpdate(capabilities=Capabilities(max_concurrent_tasks=1))
    )

    assert updated.max_concurrent_tasks == 1
    assert updated.current_tasks == 1


def test_reregister_clamps_capacity_to_current_load(session, make_agent, make_task):
    """Re-registration with a smaller capacity keeps room for tasks already held."""
    agent = make_agent(session, hostname="load-01", max_concurrent_tasks=3)
    for _ in range(2):
        make_task(session)
    poll_jobs(session, agent.id)

    updated = registry.register_or_update(session, _descriptor(max_concurrent_tasks=1))

    assert updated.max_concurrent_tasks == 2
    assert updated.current_tasks == 2


def test_reregister_accepts_capacity_above_load(session, make_agent):
    make_agent(session, hostname="load-01", max_concurrent_tasks=3, current_tasks=1)

    updated = registry.register_or_update(session, _descriptor(max_concurrent_tasks=2))

    assert updated.max_concurrent_tasks == 2


def test_registration_token_is_ignored(session):
    """Any token, or none, registers the same agent."""
    first = registry.register_or_update(session, _descriptor(registration_token="abc"))
    second = registry.register_or_update(session, _descriptor(registration_token="other"))

    assert second.id == first.id
