"""Agent registry: identity, liveness and administration.

Agent-facing operations (``register_or_update``, ``update_heartbeat``) are
unauthenticated; any caller that reaches them may claim a
hostname. Admin operations are guarded at the API layer.

Usage:
    with session_factory() as session:
        agent = register_or_update(session, AgentDescriptor(agent_id="a1", hostname="h1", ip="10.0.0.5"))
        update_heartbeat(session, agent.id, resources={"cpu": 4})
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
from typing import Any

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from k6fleet.errors import ConflictError, K6FleetError, NotFoundError
from k6fleet.registry.models import (
    AgentCreate,
    AgentDescriptor,
    AgentQuery,
    AgentStatistics,
    AgentUpdate,
    BatchResult,
)
from k6fleet.storage.models import AgentRow, AgentStatus, TaskRow, TaskStatus, utcnow

logger = structlog.get_logger(__name__)


def get_agent(session: Session, agent_id: str) -> AgentRow:
    """Load an agent by id.

    Raises:
        NotFoundError: If no agent has this id.
    """
    agent = session.get(AgentRow, agent_id)
    if agent is None:
        raise NotFoundError(f"Agent {agent_id} not found")
    return agent


def _find_by_hostname(session: Session, hostname: str) -> AgentRow | None:
    return session.scalars(select(AgentRow).where(AgentRow.hostname == hostname)).one_or_none()


def register_or_update(
    session: Session,
    descriptor: AgentDescriptor,
    *,
    default_max_concurrent_tasks: int = 1,
    now: datetime | None = None,
) -> AgentRow:
    """Idempotent upsert keyed by hostname.

    An existing agent gets its mutable fields overwritten (only the
    capability fields the descriptor carries); either way the agent ends up
    ONLINE with a fresh heartbeat. Load counters and the admin flag are
    never touched. A declared capacity below the agent's current load is
    raised to that load.

    Args:
        session: Open session.
        descriptor: What the agent reported about itself.
        default_max_concurrent_tasks: Capacity for new agents that do not declare one.
        now: Heartbeat timestamp (defaults to the server clock).

    Returns:
        The created or updated agent.
    """
    now = now or utcnow()
    agent = _find_by_hostname(session, descriptor.hostname)
    created = agent is None
    if agent is None:
        agent = AgentRow(
            hostname=descriptor.hostname,
            max_concurrent_tasks=descriptor.max_concurrent_tasks or default_max_concurrent_tasks,
            current_tasks=0,
            total_tasks_executed=0,
            is_enabled=True,
        )
        session.add(agent)

    _apply_descriptor(agent, descriptor)
    agent.status = AgentStatus.ONLINE
    agent.last_heartbeat = now

    try:
        session.commit()
    except IntegrityError:
        # Lost a race with a concurrent first registration of this hostname
        session.rollback()
        if not created:
            raise
        return register_or_update(
            session,
            descriptor,
            default_max_concurrent_tasks=default_max_concurrent_tasks,
            now=now,
        )

    logger.info(
        "agent_registered" if created else "agent_reregistered",
        agent_id=agent.id,
        hostname=agent.hostname,
    )
    return agent


def _apply_descriptor(agent: AgentRow, descriptor: AgentDescriptor) -> None:
    agent.name = descriptor.agent_id
    agent.ip_address = descriptor.ip
    if descriptor.port is not None:
        agent.port = descriptor.port
    tags = descriptor.tag_list()
    if tags is not None:
        agent.tags = tags
    for field in ("k6_version", "os", "arch", "version"):
        value = getattr(descriptor, field)
        if value is not None:
            setattr(agent, field, value)
    declared = descriptor.max_concurrent_tasks
    if declared is not None:
        # Never below the tasks it already holds; reached again as they finish
        agent.max_concurrent_tasks = max(declared, agent.current_tasks or 0)
        if declared < agent.max_concurrent_tasks:
            logger.warning(
                "agent_capacity_clamped",
                hostname=agent.hostname,
                declared=declared,
                current_tasks=agent.current_tasks,
            )
    if descriptor.supported_script_types is not None:
        agent.supported_script_types = list(descriptor.supported_script_types)
    if descriptor.resources is not None:
        agent.resources = dict(descriptor.resources)


def update_heartbeat(
    session: Session,
    agent_id: str,
    *,
    resources: dict[str, Any] | None = None,
    now: datetime | None = None,
) -> AgentRow:
    """Record a heartbeat.

    The server clock is authoritative; whatever timestamp the agent sent is
    not stored.

    Raises:
        NotFoundError: If the agent id is unknown.
    """
    agent = get_agent(session, agent_id)
    agent.last_heartbeat = now or utcnow()
    agent.status = AgentStatus.ONLINE
    if resources is not None:
        agent.resources = dict(resources)
    session.commit()
    logger.debug("agent_heartbeat", agent_id=agent_id)
    return agent


def start(session: Session, agent_id: str, *, now: datetime | None = None) -> AgentRow:
    """Administratively bring an agent online.

    Raises:
        NotFoundError: If the agent id is unknown.
        ConflictError: If the agent is already online.
    """
    agent = get_agent(session, agent_id)
    if agent.status == AgentStatus.ONLINE:
        raise ConflictError(f"Agent {agent_id} is already online")
    agent.status = AgentStatus.ONLINE
    agent.last_heartbeat = now or utcnow()
    session.commit()
    logger.info("agent_started", agent_id=agent_id)
    return agent


def stop(session: Session, agent_id: str) -> AgentRow:
    """Administratively take an agent offline.

    Raises:
        NotFoundError: If the agent id is unknown.
        ConflictError: If the agent is already offline.
    """
    agent = get_agent(session, agent_id)
    if agent.status == AgentStatus.OFFLINE:
        raise ConflictError(f"Agent {agent_id} is already offline")
    agent.status = AgentStatus.OFFLINE
    session.commit()
    logger.info("agent_stopped", agent_id=agent_id)
    return agent


def _batch(
    session: Session, ids: list[str], operation: Callable[[Session, str], AgentRow]
) -> BatchResult:
    result = BatchResult()
    for agent_id in ids:
        try:
            operation(session, agent_id)
        except K6FleetError as e:
            session.rollback()
            logger.info("batch_item_failed", agent_id=agent_id, reason=str(e))
            result.failed.append(agent_id)
        else:
            result.success.append(agent_id)
    return result


def batch_enable(session: Session, ids: list[str]) -> BatchResult:
    """Apply ``start`` to each id independently."""
    return _batch(session, ids, start)


def batch_disable(session: Session, ids: list[str]) -> BatchResult:
    """Apply ``stop`` to each id independently."""
    return _batch(session, ids, stop)


def create_agent(session: Session, payload: AgentCreate) -> AgentRow:
    """Create an agent record ahead of its first registration (status OFFLINE).

    Raises:
        ConflictError: If the hostname is already taken.
    """
    if _find_by_hostname(session, payload.hostname) is not None:
        raise ConflictError(f"Hostname {payload.hostname} is already registered")

    capabilities = payload.capabilities
    agent = AgentRow(
        name=payload.name,
        hostname=payload.hostname,
        ip_address=payload.ip_address,
        port=payload.port,
        description=payload.description,
        tags=list(payload.tags or []),
        is_enabled=payload.is_enabled,
        status=AgentStatus.OFFLINE,
        current_tasks=0,
        total_tasks_executed=0,
    )
    if capabilities is not None:
        _apply_capabilities(agent, capabilities.model_dump())
    session.add(agent)
    session.commit()
    logger.info("agent_created", agent_id=agent.id, hostname=agent.hostname)
    return agent


def _apply_capabilities(agent: AgentRow, capabilities: dict[str, Any]) -> None:
    for field, value in capabilities.items():
        setattr(agent, field, value)


def list_agents(session: Session, query: AgentQuery) -> tuple[list[AgentRow], int]:
    """Page through agents, newest first.

    Returns:
        (agents on the requested page, total matching agents)
    """
    stmt = select(AgentRow)
    if query.status is not None:
        stmt = stmt.where(AgentRow.status == query.status)
    if query.hostname:
        stmt = stmt.where(AgentRow.hostname.contains(query.hostname, autoescape=True))

    total = session.scalar(select(func.count()).select_from(stmt.subquery())) or 0
    rows = session.scalars(
        stmt.order_by(AgentRow.created_at.desc())
        .offset((query.page - 1) * query.limit)
        .limit(query.limit)
    ).all()
    return list(rows), total


def update_agent(session: Session, agent_id: str, payload: AgentUpdate) -> AgentRow:
    """Apply an admin edit.

    Raises:
        NotFoundError: If the agent id is unknown.
        ConflictError: If the new hostname belongs to another agent, or the
            new capacity is below the agent's current load.
    """
    agent = get_agent(session, agent_id)
    changes = payload.model_dump(exclude_unset=True)

    hostname = changes.get("hostname")
    if hostname is not None and hostname != agent.hostname:
        if _find_by_hostname(session, hostname) is not None:
            raise ConflictError(f"Hostname {hostname} is already registered")

    capabilities = changes.pop("capabilities", None)
    capacity = (capabilities or {}).get("max_concurrent_tasks")
    if capacity is not None and capacity < agent.current_tasks:
        raise ConflictError(
            f"Agent {agent_id} is running {agent.current_tasks} task(s); "
            f"capacity cannot drop to {capacity}"
        )
    if capabilities is not None:
        _apply_capabilities(agent, capabilities)
    for field, value in changes.items():
        if value is None and field in ("name", "hostname", "ip_address", "port", "is_enabled", "status"):
            continue
        setattr(agent, field, value)
    session.commit()
    logger.info("agent_updated", agent_id=agent_id, fields=sorted(changes))
    return agent


def remove_agent(session: Session, agent_id: str) -> None:
    """Hard-delete an agent.

    Tasks pinned to it fall back to the open pool.

    Raises:
        NotFoundError: If the agent id is unknown.
        ConflictError: If the agent still holds RUNNING tasks.
    """
    agent = get_agent(session, agent_id)
    running = session.scalar(
        select(func.count())
        .select_from(TaskRow)
        .where(TaskRow.agent_id == agent_id, TaskRow.status == TaskStatus.RUNNING)
    )
    if running:
        raise ConflictError(f"Agent {agent_id} still has {running} running task(s)")

    session.execute(
        update(TaskRow)
        .where(TaskRow.agent_id == agent_id)
        .values(agent_id=None)
        .execution_options(synchronize_session=False)
    )
    session.delete(agent)
    session.commit()
    logger.info("agent_removed", agent_id=agent_id)


def agent_statistics(session: Session) -> AgentStatistics:
    """Agent counts per liveness status."""
    rows = session.execute(select(AgentRow.status, func.count()).group_by(AgentRow.status)).all()
    counts = {str(status): count for status, count in rows}
    return AgentStatistics(
        total=sum(counts.values()),
        online=counts.get(AgentStatus.ONLINE, 0),
        offline=counts.get(AgentStatus.OFFLINE, 0),
        busy=counts.get(AgentStatus.BUSY, 0),
        error=counts.get(AgentStatus.ERROR, 0),
    )


def list_agent_tasks(session: Session, agent_id: str) -> list[TaskRow]:
    """Tasks bound to an agent (pinned or leased), newest first.

    Raises:
        NotFoundError: If the agent id is unknown.
    """
    get_agent(session, agent_id)
    rows = session.scalars(
        select(TaskRow).where(TaskRow.agent_id == agent_id).order_by(TaskRow.created_at.desc())
    ).all()
    return list(rows)
