"""Result sinks: where reported job results go.

Result storage and reporting live outside this service. The reconciler
hands every result payload to a ``ResultSink``; deployments plug in
whatever forwards them to their results store.

Usage:
    sink = InMemoryResultSink()
    update_job_status(session, job_id, report, sink=sink)
    sink.records[0].result
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

import structlog

from k6fleet.storage.models import TaskStatus

logger = structlog.get_logger(__name__)


@dataclass(slots=True)
class ResultRecord:
    """One result payload as received from an agent.

    Attributes:
        task_id: Task the result belongs to.
        agent_id: Agent that produced it.
        status: Task status reported alongside the result.
        result: Raw payload (k6 summary, metrics, report links).
    """

    task_id: str
    agent_id: str
    status: TaskStatus
    result: dict[str, Any]


@runtime_checkable
class ResultSink(Protocol):
    """Receives result payloads after the status change is committed."""

    def record(self, record: ResultRecord) -> None:
        """Accept one result.

        Args:
            record: The reported result.
        """
        ...


class LoggingResultSink:
    """Default sink: logs that a result arrived and drops the payload."""

    def record(self, record: ResultRecord) -> None:
        logger.info(
            "job_result_received",
            task_id=record.task_id,
            agent_id=record.agent_id,
            status=str(record.status),
            keys=sorted(record.result),
        )


class InMemoryResultSink:
    """Keeps every result in a list. For tests and local development."""

    def __init__(self) -> None:
        self.records: list[ResultRecord] = []

    def record(self, record: ResultRecord) -> None:
        self.records.append(record)
