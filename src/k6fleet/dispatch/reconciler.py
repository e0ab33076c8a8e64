"""Status reconciler: folds agent-reported outcomes into task and agent state.

Reports are idempotent. Once a task is terminal every later report for it
is acknowledged and ignored, so retries and duplicates never move the
agent's counters twice.
"""

from __future__ import annotations

from datetime import datetime

import structlog
from sqlalchemy.orm import Session

from k6fleet.dispatch.models import JobStatusReport
from k6fleet.dispatch.results import ResultRecord, ResultSink
from k6fleet.errors import ConflictError, ForbiddenError
from k6fleet.storage.leases import release_lease
from k6fleet.storage.models import TaskRow, TaskStatus, utcnow
from k6fleet.tasks.service import get_task

logger = structlog.get_logger(__name__)


def update_job_status(
    session: Session,
    job_id: str,
    report: JobStatusReport,
    *,
    sink: ResultSink | None = None,
    now: datetime | None = None,
) -> TaskRow:
    """Apply one status report from the agent holding ``job_id``.

    Args:
        session: Open session; committed before returning.
        job_id: Reported task.
        report: Status, optional error and result payload.
        sink: Receives the result payload after commit, if one was sent.
        now: Completion timestamp (defaults to the server clock).

    Returns:
        The task after the report was applied.

    Raises:
        NotFoundError: If the task does not exist.
        ForbiddenError: If the reporter is not the agent bound to the task.
        ConflictError: If the task was never leased (still PENDING).
    """
    now = now or utcnow()
    task = get_task(session, job_id)
    agent = task.agent

    if agent is None or report.agent_id not in (agent.id, agent.name):
        logger.warning(
            "status_report_rejected",
            task_id=job_id,
            reporter=report.agent_id,
            bound_agent_id=task.agent_id,
        )
        raise ForbiddenError("No permission to update this task's status")

    if task.status.is_terminal:
        logger.info(
            "status_report_ignored",
            task_id=job_id,
            agent_id=agent.id,
            current=str(task.status),
            reported=str(report.status),
        )
        session.rollback()
        return task

    if task.status == TaskStatus.PENDING:
        raise ConflictError(f"Task {job_id} has not been leased yet")

    agent_id = agent.id
    if report.status.is_terminal:
        released = release_lease(
            session, job_id, agent_id, report.status, now, error_message=report.error
        )
        if not released:
            # Finished concurrently by a sweep or a stop; treat like a duplicate
            session.rollback()
            logger.info("status_report_ignored", task_id=job_id, agent_id=agent_id)
            return task
    elif report.error is not None:
        task.error_message = report.error

    session.commit()
    logger.info(
        "job_status_updated",
        task_id=job_id,
        agent_id=agent_id,
        status=str(report.status),
    )

    if sink is not None and report.result is not None:
        sink.record(
            ResultRecord(
                task_id=job_id, agent_id=agent_id, status=report.status, result=report.result
            )
        )
    return task
