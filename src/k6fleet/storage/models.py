"""ORM rows and status enums for agents, tasks and scripts.

Every timestamp column holds naive UTC taken from the server clock
(``utcnow``), never a value reported by an agent.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from sqlalchemy import JSON, Boolean, DateTime, Enum, ForeignKey, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def utcnow() -> datetime:
    """Current server time as naive UTC."""
    return datetime.now(UTC).replace(tzinfo=None)


def new_id() -> str:
    return str(uuid.uuid4())


class AgentStatus(StrEnum):
    """Agent liveness states."""

    ONLINE = "online"
    OFFLINE = "offline"
    BUSY = "busy"
    ERROR = "error"


class TaskStatus(StrEnum):
    """Task lifecycle states.

    Tasks flow through these states:
    - PENDING: waiting for a poll (unassigned, or pinned to one agent)
    - RUNNING: leased to the agent in ``agent_id``
    - COMPLETED / FAILED: reported by the agent
    - CANCELLED: stopped by an administrator
    """

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.CANCELLED})


class TriggerType(StrEnum):
    MANUAL = "manual"
    SCHEDULED = "scheduled"
    API = "api"
    CHAT = "chat"


class ScriptType(StrEnum):
    LOAD_TEST = "load_test"
    STRESS_TEST = "stress_test"
    SPIKE_TEST = "spike_test"
    VOLUME_TEST = "volume_test"
    ENDURANCE_TEST = "endurance_test"


def _enum(enum_cls: type[StrEnum]) -> Enum:
    """Store an enum by value in a plain VARCHAR column."""
    return Enum(
        enum_cls,
        native_enum=False,
        length=20,
        values_callable=lambda members: [m.value for m in members],
    )


class Base(DeclarativeBase):
    pass


class AgentRow(Base):
    """A worker process that polls for tasks.

    Capabilities are flat columns so dispatch can guard capacity in SQL.
    ``current_tasks`` is only written by lease claims and releases.
    """

    __tablename__ = "agents"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(100))
    hostname: Mapped[str] = mapped_column(String(255), unique=True)
    ip_address: Mapped[str] = mapped_column(String(64))
    port: Mapped[int] = mapped_column(Integer, default=8080)
    description: Mapped[str | None] = mapped_column(Text, default=None)
    status: Mapped[AgentStatus] = mapped_column(
        _enum(AgentStatus), default=AgentStatus.OFFLINE, index=True
    )
    tags: Mapped[list[str]] = mapped_column(JSON, default=list)

    # Capabilities
    max_concurrent_tasks: Mapped[int] = mapped_column(Integer, default=1)
    supported_script_types: Mapped[list[str]] = mapped_column(JSON, default=list)
    k6_version: Mapped[str | None] = mapped_column(String(50), default=None)
    os: Mapped[str | None] = mapped_column(String(50), default=None)
    arch: Mapped[str | None] = mapped_column(String(50), default=None)

    resources: Mapped[dict[str, Any] | None] = mapped_column(JSON, default=None)
    last_heartbeat: Mapped[datetime | None] = mapped_column(DateTime, default=None)
    version: Mapped[str | None] = mapped_column(String(50), default=None)
    is_enabled: Mapped[bool] = mapped_column(Boolean, default=True)

    # Load accounting
    current_tasks: Mapped[int] = mapped_column(Integer, default=0)
    total_tasks_executed: Mapped[int] = mapped_column(Integer, default=0)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    tasks: Mapped[list[TaskRow]] = relationship(back_populates="agent")


class ScriptRow(Base):
    """k6 script content referenced by tasks."""

    __tablename__ = "scripts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(200))
    description: Mapped[str | None] = mapped_column(Text, default=None)
    content: Mapped[str] = mapped_column(Text)
    type: Mapped[ScriptType] = mapped_column(_enum(ScriptType), default=ScriptType.LOAD_TEST)
    language: Mapped[str] = mapped_column(String(20), default="javascript")
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    tasks: Mapped[list[TaskRow]] = relationship(back_populates="script")


class TaskRow(Base):
    """A unit of schedulable work binding a script to an execution config.

    ``agent_id`` is a pin while PENDING and the lease holder while RUNNING.
    ``config`` is forwarded to the agent untouched.
    """

    __tablename__ = "tasks"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(200))
    description: Mapped[str | None] = mapped_column(Text, default=None)
    status: Mapped[TaskStatus] = mapped_column(
        _enum(TaskStatus), default=TaskStatus.PENDING, index=True
    )
    trigger_type: Mapped[TriggerType] = mapped_column(
        _enum(TriggerType), default=TriggerType.MANUAL
    )
    config: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)
    cron_expression: Mapped[str | None] = mapped_column(String(100), default=None)
    is_enabled: Mapped[bool] = mapped_column(Boolean, default=True)

    scheduled_at: Mapped[datetime | None] = mapped_column(DateTime, default=None)
    started_at: Mapped[datetime | None] = mapped_column(DateTime, default=None)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime, default=None)
    error_message: Mapped[str | None] = mapped_column(Text, default=None)

    creator_id: Mapped[str] = mapped_column(String(100))
    script_id: Mapped[str] = mapped_column(ForeignKey("scripts.id"))
    agent_id: Mapped[str | None] = mapped_column(
        ForeignKey("agents.id", ondelete="SET NULL"), default=None, index=True
    )

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    script: Mapped[ScriptRow] = relationship(back_populates="tasks")
    agent: Mapped[AgentRow | None] = relationship(back_populates="tasks")
