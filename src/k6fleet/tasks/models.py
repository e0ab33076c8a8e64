"""Request and response models for tasks and scripts."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from k6fleet.schemas import CamelModel
from k6fleet.storage.models import ScriptType, TaskStatus, TriggerType


class Stage(BaseModel):
    duration: str
    target: int = Field(ge=0)


class TaskConfig(BaseModel):
    """k6 execution options. Forwarded to the agent without interpretation.

    Unknown keys are kept so newer agents can receive options this server
    does not model.
    """

    model_config = ConfigDict(extra="allow")

    vus: int = Field(default=1, ge=1)
    duration: str = "30s"
    stages: list[Stage] | None = None
    thresholds: dict[str, list[str]] | None = None
    env: dict[str, str] | None = None
    options: dict[str, Any] | None = None


class ScriptCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    description: str | None = None
    content: str = Field(min_length=1)
    type: ScriptType = ScriptType.LOAD_TEST
    language: str = "javascript"


class ScriptRecord(CamelModel):
    id: str
    name: str
    description: str | None = None
    content: str
    type: ScriptType
    language: str
    created_at: datetime


class TaskCreate(BaseModel):
    """New task. Setting ``agent_id`` pins it to that agent."""

    name: str = Field(min_length=1, max_length=200)
    description: str | None = None
    script_id: str
    agent_id: str | None = None
    config: TaskConfig = Field(default_factory=TaskConfig)
    trigger_type: TriggerType = TriggerType.MANUAL
    is_enabled: bool = True
    cron_expression: str | None = None
    scheduled_at: datetime | None = None


class TaskQuery(BaseModel):
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=10, ge=1, le=100)
    status: TaskStatus | None = None
    script_id: str | None = None
    agent_id: str | None = None


class TaskRecord(CamelModel):
    id: str
    name: str
    description: str | None = None
    status: TaskStatus
    trigger_type: TriggerType
    config: dict[str, Any]
    cron_expression: str | None = None
    is_enabled: bool
    scheduled_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    error_message: str | None = None
    creator_id: str
    script_id: str
    agent_id: str | None = None
    created_at: datetime
    updated_at: datetime


class TaskPage(BaseModel):
    data: list[TaskRecord]
    total: int


class TaskStatistics(BaseModel):
    total: int = 0
    pending: int = 0
    running: int = 0
    completed: int = 0
    failed: int = 0
    cancelled: int = 0
