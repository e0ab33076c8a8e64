"""Request and response models for the agent registry.

Agent-facing requests use the snake_case keys agents send on the wire;
records returned to the dashboard use camelCase.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from k6fleet.schemas import CamelModel
from k6fleet.storage.models import AgentRow, AgentStatus


class Capabilities(CamelModel):
    """What an agent can run and how much of it at once."""

    max_concurrent_tasks: int = Field(default=1, ge=1)
    supported_script_types: list[str] = Field(default_factory=list)
    k6_version: str | None = None
    os: str | None = None
    arch: str | None = None


class AgentDescriptor(BaseModel):
    """Self-description an agent sends when it registers.

    ``tags`` may be a list of strings or a ``{key: value}`` map; maps are
    stored as ``key=value`` strings. ``registration_token`` is accepted so
    existing agents validate, but it is never checked or stored.
    """

    agent_id: str = Field(min_length=1, max_length=100)
    hostname: str = Field(min_length=1, max_length=255)
    ip: str = Field(min_length=1, max_length=64)
    port: int | None = Field(default=None, ge=1, le=65535)
    tags: list[str] | dict[str, str] | None = None
    k6_version: str | None = None
    os: str | None = None
    arch: str | None = None
    version: str | None = None
    max_concurrent_tasks: int | None = Field(default=None, ge=1)
    supported_script_types: list[str] | None = None
    resources: dict[str, Any] | None = None
    registration_token: str | None = Field(
        default=None, description="Ignored; registration is unauthenticated"
    )

    def tag_list(self) -> list[str] | None:
        if self.tags is None:
            return None
        if isinstance(self.tags, dict):
            return [f"{key}={value}" for key, value in sorted(self.tags.items())]
        return list(self.tags)


class HeartbeatRequest(BaseModel):
    """Liveness signal. ``timestamp`` is informational only."""

    agent_id: str
    timestamp: datetime | None = None
    resources: dict[str, Any] | None = None


class AgentCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    hostname: str = Field(min_length=1, max_length=255)
    ip_address: str
    port: int = Field(default=8080, ge=1, le=65535)
    description: str | None = Field(default=None, max_length=500)
    tags: list[str] | None = None
    capabilities: Capabilities | None = None
    is_enabled: bool = True


class AgentUpdate(BaseModel):
    """Partial update; only fields present in the request are applied."""

    name: str | None = Field(default=None, min_length=1, max_length=100)
    hostname: str | None = Field(default=None, min_length=1, max_length=255)
    ip_address: str | None = None
    port: int | None = Field(default=None, ge=1, le=65535)
    description: str | None = Field(default=None, max_length=500)
    tags: list[str] | None = None
    capabilities: Capabilities | None = None
    is_enabled: bool | None = None
    status: AgentStatus | None = None


class AgentQuery(BaseModel):
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=10, ge=1, le=100)
    status: AgentStatus | None = None
    hostname: str | None = None


class AgentRecord(CamelModel):
    """Agent as returned by the API."""

    id: str
    name: str
    hostname: str
    ip_address: str
    port: int
    description: str | None = None
    status: AgentStatus
    tags: list[str] = Field(default_factory=list)
    capabilities: Capabilities
    resources: dict[str, Any] | None = None
    last_heartbeat: datetime | None = None
    version: str | None = None
    is_enabled: bool
    current_tasks: int
    total_tasks_executed: int
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_row(cls, row: AgentRow) -> AgentRecord:
        return cls(
            id=row.id,
            name=row.name,
            hostname=row.hostname,
            ip_address=row.ip_address,
            port=row.port,
            description=row.description,
            status=row.status,
            tags=row.tags or [],
            capabilities=Capabilities(
                max_concurrent_tasks=row.max_concurrent_tasks,
                supported_script_types=row.supported_script_types or [],
                k6_version=row.k6_version,
                os=row.os,
                arch=row.arch,
            ),
            resources=row.resources,
            last_heartbeat=row.last_heartbeat,
            version=row.version,
            is_enabled=row.is_enabled,
            current_tasks=row.current_tasks,
            total_tasks_executed=row.total_tasks_executed,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )


class AgentPage(BaseModel):
    data: list[AgentRecord]
    total: int


class AgentStatistics(BaseModel):
    total: int = 0
    online: int = 0
    offline: int = 0
    busy: int = 0
    error: int = 0


class BatchRequest(BaseModel):
    ids: list[str] = Field(min_length=1)


class BatchResult(BaseModel):
    """Per-element outcome of a batch operation; no rollback across elements."""

    success: list[str] = Field(default_factory=list)
    failed: list[str] = Field(default_factory=list)
