"""Tests for concurrent polling against a file-backed database.

Critical Invariants:
- No task is leased to two agents
- The union of leased tasks never exceeds the pool
- Every agent's counter matches its RUNNING tasks afterwards
"""

import threading
from collections import Counter

from sqlalchemy import func, select

from k6fleet.config import DatabaseSettings
from k6fleet.dispatch import poll_jobs
from k6fleet.storage import (
    AgentRow,
    AgentStatus,
    ScriptRow,
    TaskRow,
    TaskStatus,
    create_engine_from_settings,
    create_session_factory,
    init_db,
    utcnow,
)

AGENTS = 6
TASKS = 10
POLLS_PER_AGENT = 3


def test_concurrent_polls_never_double_lease(tmp_path):
    """CRITICAL: Agents polling in parallel never receive the same task.

    Why: A double lease runs one load test twice and corrupts both agents'
    counters.
    """
    engine = create_engine_from_settings(
        DatabaseSettings(url=f"sqlite:///{tmp_path / 'fleet.db'}")
    )
    init_db(engine)
    factory = create_session_factory(engine)

    with factory() as session:
        script = ScriptRow(name="smoke", content="export default function () {}")
        session.add(script)
        session.flush()
        agents = [
            AgentRow(
                name=f"agent-{i}",
                hostname=f"host-{i}",
                ip_address="10.0.0.1",
                status=AgentStatus.ONLINE,
                is_enabled=True,
                max_concurrent_tasks=3,
                current_tasks=0,
                total_tasks_executed=0,
                last_heartbeat=utcnow(),
            )
            for i in range(AGENTS)
        ]
        session.add_all(agents)
        session.add_all(
            TaskRow(name=f"task-{i}", script_id=script.id, creator_id="admin", config={})
            for i in range(TASKS)
        )
        session.commit()
        agent_ids = [agent.id for agent in agents]

    leased: list[str] = []
    errors: list[BaseException] = []
    lock = threading.Lock()
    barrier = threading.Barrier(AGENTS)

    def worker(agent_id: str) -> None:
        barrier.wait()
        try:
            for _ in range(POLLS_PER_AGENT):
                with factory() as session:
                    result = poll_jobs(session, agent_id)
                    ids = [task.id for task in result.jobs]
                with lock:
                    leased.extend(ids)
        except BaseException as e:
            with lock:
                errors.append(e)

    threads = [threading.Thread(target=worker, args=(agent_id,)) for agent_id in agent_ids]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=60)

    assert errors == []
    duplicates = [task_id for task_id, n in Counter(leased).items() if n > 1]
    assert duplicates == []
    assert len(leased) == TASKS

    with factory() as session:
        for agent_id in agent_ids:
            agent = session.get(AgentRow, agent_id)
            running = session.scalar(
                select(func.count())
                .select_from(TaskRow)
                .where(TaskRow.agent_id == agent_id, TaskRow.status == TaskStatus.RUNNING)
            )
            assert agent.current_tasks == running
            assert agent.current_tasks <= agent.max_concurrent_tasks

    engine.dispose()
