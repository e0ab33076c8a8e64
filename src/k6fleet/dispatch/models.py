"""Wire models for the poll and status-report exchange with agents."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field, field_validator

from k6fleet.schemas import CamelModel
from k6fleet.storage.models import ScriptType, TaskRow, TaskStatus, TriggerType


class JobScript(CamelModel):
    id: str
    name: str
    content: str
    type: ScriptType


class Job(CamelModel):
    """Everything an agent needs to run a leased task, and nothing else."""

    id: str
    name: str
    description: str | None = None
    script: JobScript
    config: dict[str, Any]
    trigger_type: TriggerType

    @classmethod
    def from_row(cls, task: TaskRow) -> Job:
        script = task.script
        return cls(
            id=task.id,
            name=task.name,
            description=task.description,
            script=JobScript(
                id=script.id, name=script.name, content=script.content, type=script.type
            ),
            config=dict(task.config or {}),
            trigger_type=task.trigger_type,
        )


class PollResponse(CamelModel):
    jobs: list[Job] = Field(default_factory=list)
    has_more: bool = False


class JobStatusReport(BaseModel):
    """Outcome reported by the agent holding a task.

    ``agent_id`` is the agent's self-identifier: its name, or the id the
    server returned at registration.
    """

    agent_id: str = Field(min_length=1)
    status: TaskStatus
    result: dict[str, Any] | None = None
    error: str | None = None

    @field_validator("status")
    @classmethod
    def _not_pending(cls, value: TaskStatus) -> TaskStatus:
        if value == TaskStatus.PENDING:
            raise ValueError("agents cannot report a task back to pending")
        return value
