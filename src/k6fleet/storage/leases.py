"""Atomic lease transitions between agents and tasks.

Each helper is a single conditional UPDATE that either applies in full or
matches zero rows. Callers compose them inside one transaction so that an
agent's ``current_tasks`` moves together with the task rows it counts:

    reserve_slot  -> claim_task       (dispatch)
    release_lease                     (reconcile, stop)

A False return means another writer got there first; nothing was changed
by that call.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import case, or_, update
from sqlalchemy.orm import Session

from k6fleet.storage.models import AgentRow, AgentStatus, TaskRow, TaskStatus

_NO_SYNC = {"synchronize_session": False}


def reserve_slot(session: Session, agent_id: str) -> bool:
    """Take one unit of an agent's capacity.

    Only succeeds while the agent is enabled, online and below
    ``max_concurrent_tasks``.

    Args:
        session: Open session; the caller owns the transaction.
        agent_id: Agent to charge.

    Returns:
        True if the counter was incremented.
    """
    stmt = (
        update(AgentRow)
        .where(
            AgentRow.id == agent_id,
            AgentRow.is_enabled.is_(True),
            AgentRow.status == AgentStatus.ONLINE,
            AgentRow.current_tasks < AgentRow.max_concurrent_tasks,
        )
        .values(current_tasks=AgentRow.current_tasks + 1)
        .execution_options(**_NO_SYNC)
    )
    return session.execute(stmt).rowcount == 1


def release_slot(session: Session, agent_id: str, *, executed: bool = False) -> None:
    """Give back one unit of capacity, floored at zero.

    Args:
        session: Open session; the caller owns the transaction.
        agent_id: Agent to credit.
        executed: Also bump the agent's lifetime execution counter.
    """
    values: dict[str, object] = {
        "current_tasks": case(
            (AgentRow.current_tasks > 0, AgentRow.current_tasks - 1),
            else_=0,
        )
    }
    if executed:
        values["total_tasks_executed"] = AgentRow.total_tasks_executed + 1
    stmt = update(AgentRow).where(AgentRow.id == agent_id).values(**values)
    session.execute(stmt.execution_options(**_NO_SYNC))


def claim_task(session: Session, task_id: str, agent_id: str, now: datetime) -> bool:
    """Flip a PENDING task to RUNNING on ``agent_id``.

    Matches only if the task is still pending, enabled, and either unbound
    or pinned to this same agent.

    Returns:
        True if this call leased the task.
    """
    stmt = (
        update(TaskRow)
        .where(
            TaskRow.id == task_id,
            TaskRow.status == TaskStatus.PENDING,
            TaskRow.is_enabled.is_(True),
            or_(TaskRow.agent_id.is_(None), TaskRow.agent_id == agent_id),
        )
        .values(status=TaskStatus.RUNNING, agent_id=agent_id, started_at=now)
        .execution_options(**_NO_SYNC)
    )
    return session.execute(stmt).rowcount == 1


def release_lease(
    session: Session,
    task_id: str,
    agent_id: str,
    status: TaskStatus,
    now: datetime,
    *,
    error_message: str | None = None,
) -> bool:
    """Move a RUNNING task held by ``agent_id`` to a terminal status.

    Stamps ``completed_at`` and credits the agent's capacity in the same
    transaction. COMPLETED and FAILED count as an execution; CANCELLED does
    not.

    Args:
        session: Open session; the caller owns the transaction.
        task_id: Task to finish.
        agent_id: Expected lease holder.
        status: Terminal status to apply.
        now: Completion timestamp.
        error_message: Stored on the task when given.

    Returns:
        True if the task was RUNNING on this agent and is now finished.

    Raises:
        ValueError: If ``status`` is not terminal.
    """
    if not status.is_terminal:
        raise ValueError(f"Cannot release a lease into non-terminal status {status}")

    values: dict[str, object] = {"status": status, "completed_at": now}
    if error_message is not None:
        values["error_message"] = error_message
    stmt = (
        update(TaskRow)
        .where(
            TaskRow.id == task_id,
            TaskRow.status == TaskStatus.RUNNING,
            TaskRow.agent_id == agent_id,
        )
        .values(**values)
        .execution_options(**_NO_SYNC)
    )
    if session.execute(stmt).rowcount != 1:
        return False

    executed = status in (TaskStatus.COMPLETED, TaskStatus.FAILED)
    release_slot(session, agent_id, executed=executed)
    return True
