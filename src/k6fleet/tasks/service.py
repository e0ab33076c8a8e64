"""Task and script catalog.

Just enough persistence to feed the dispatcher: scripts to run, tasks that
bind a script to an execution config, and the administrative stop path.
"""

from __future__ import annotations

from datetime import datetime

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from k6fleet.errors import ConflictError, NotFoundError
from k6fleet.storage.leases import release_lease
from k6fleet.storage.models import AgentRow, ScriptRow, TaskRow, TaskStatus, utcnow
from k6fleet.tasks.models import ScriptCreate, TaskCreate, TaskQuery, TaskStatistics

logger = structlog.get_logger(__name__)


def create_script(session: Session, payload: ScriptCreate) -> ScriptRow:
    script = ScriptRow(**payload.model_dump())
    session.add(script)
    session.commit()
    logger.info("script_created", script_id=script.id)
    return script


def get_script(session: Session, script_id: str) -> ScriptRow:
    """Load a script by id.

    Raises:
        NotFoundError: If no script has this id.
    """
    script = session.get(ScriptRow, script_id)
    if script is None:
        raise NotFoundError(f"Script {script_id} not found")
    return script


def get_task(session: Session, task_id: str) -> TaskRow:
    """Load a task by id.

    Raises:
        NotFoundError: If no task has this id.
    """
    task = session.get(TaskRow, task_id)
    if task is None:
        raise NotFoundError(f"Task {task_id} not found")
    return task


def create_task(session: Session, payload: TaskCreate, creator_id: str) -> TaskRow:
    """Create a PENDING task.

    Args:
        session: Open session.
        payload: Task definition; ``agent_id`` pins it.
        creator_id: User creating the task.

    Returns:
        The new task.

    Raises:
        NotFoundError: If the script or the pinned agent does not exist.
    """
    get_script(session, payload.script_id)
    if payload.agent_id is not None and session.get(AgentRow, payload.agent_id) is None:
        raise NotFoundError(f"Agent {payload.agent_id} not found")

    task = TaskRow(
        name=payload.name,
        description=payload.description,
        script_id=payload.script_id,
        agent_id=payload.agent_id,
        config=payload.config.model_dump(exclude_none=True),
        trigger_type=payload.trigger_type,
        is_enabled=payload.is_enabled,
        cron_expression=payload.cron_expression,
        scheduled_at=payload.scheduled_at,
        creator_id=creator_id,
        status=TaskStatus.PENDING,
    )
    session.add(task)
    session.commit()
    logger.info("task_created", task_id=task.id, pinned_agent_id=task.agent_id)
    return task


def list_tasks(session: Session, query: TaskQuery) -> tuple[list[TaskRow], int]:
    """Page through tasks, newest first."""
    stmt = select(TaskRow)
    if query.status is not None:
        stmt = stmt.where(TaskRow.status == query.status)
    if query.script_id is not None:
        stmt = stmt.where(TaskRow.script_id == query.script_id)
    if query.agent_id is not None:
        stmt = stmt.where(TaskRow.agent_id == query.agent_id)

    total = session.scalar(select(func.count()).select_from(stmt.subquery())) or 0
    rows = session.scalars(
        stmt.order_by(TaskRow.created_at.desc())
        .offset((query.page - 1) * query.limit)
        .limit(query.limit)
    ).all()
    return list(rows), total


def stop_task(session: Session, task_id: str, *, now: datetime | None = None) -> TaskRow:
    """Cancel a task that has not finished.

    A RUNNING task gives its slot back to the agent in the same
    transaction, so the agent's load counter stays in step.

    Raises:
        NotFoundError: If the task does not exist.
        ConflictError: If the task is already terminal.
    """
    now = now or utcnow()
    task = get_task(session, task_id)
    if task.status.is_terminal:
        raise ConflictError(f"Task {task_id} already finished ({task.status})")

    cancelled = False
    if task.status == TaskStatus.PENDING:
        result = session.execute(
            update(TaskRow)
            .where(TaskRow.id == task_id, TaskRow.status == TaskStatus.PENDING)
            .values(status=TaskStatus.CANCELLED, completed_at=now)
            .execution_options(synchronize_session=False)
        )
        cancelled = result.rowcount == 1
    if not cancelled:
        # Either it was RUNNING, or it got leased between our read and write
        session.refresh(task)
        if task.status == TaskStatus.RUNNING and task.agent_id is not None:
            cancelled = release_lease(session, task_id, task.agent_id, TaskStatus.CANCELLED, now)

    if not cancelled:
        session.rollback()
        raise ConflictError(f"Task {task_id} changed state while stopping; retry")

    session.commit()
    logger.info("task_cancelled", task_id=task_id, agent_id=task.agent_id)
    return task


def task_statistics(session: Session) -> TaskStatistics:
    """Task counts per status."""
    rows = session.execute(select(TaskRow.status, func.count()).group_by(TaskRow.status)).all()
    counts = {str(status): count for status, count in rows}
    return TaskStatistics(total=sum(counts.values()), **counts)
