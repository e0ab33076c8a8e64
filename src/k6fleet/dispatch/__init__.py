"""Task dispatch: leasing pending tasks to agents and reconciling their reports.

Usage:
    from k6fleet.dispatch import poll_jobs, update_job_status, JobStatusReport

    result = poll_jobs(session, agent.id, batch_size=5)
    for task in result.jobs:
        ...
    update_job_status(session, task.id, JobStatusReport(agent_id=agent.name, status="completed"))
"""

from k6fleet.dispatch.dispatcher import DEFAULT_BATCH_SIZE, PollResult, poll_jobs
from k6fleet.dispatch.models import Job, JobScript, JobStatusReport, PollResponse
from k6fleet.dispatch.reconciler import update_job_status
from k6fleet.dispatch.results import (
    InMemoryResultSink,
    LoggingResultSink,
    ResultRecord,
    ResultSink,
)

__all__ = [
    # Dispatcher
    "poll_jobs",
    "PollResult",
    "DEFAULT_BATCH_SIZE",
    # Reconciler
    "update_job_status",
    # Wire models
    "Job",
    "JobScript",
    "JobStatusReport",
    "PollResponse",
    # Result sinks
    "ResultSink",
    "ResultRecord",
    "LoggingResultSink",
    "InMemoryResultSink",
]
