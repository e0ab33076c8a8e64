"""Task dispatcher: hands pending tasks to polling agents.

Agents call ``poll_jobs`` on their own interval. An empty batch is the
normal "nothing for you right now" answer; the only hard error is an
unknown agent id.

Leasing is a compare-and-swap per task inside one transaction:

    1. reserve one slot on the agent (guarded on capacity, enabled, online)
    2. claim the task (guarded on still PENDING and unbound or pinned here)
    3. if the claim lost a race, give the slot back and try the next candidate

Two agents polling the same pool therefore never receive the same task, and
``current_tasks`` always equals the agent's RUNNING task count once the
transaction commits.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

import structlog
from sqlalchemy import Select, or_, select
from sqlalchemy.orm import Session, selectinload

from k6fleet.registry.service import get_agent
from k6fleet.storage.leases import claim_task, release_slot, reserve_slot
from k6fleet.storage.models import AgentStatus, TaskRow, TaskStatus, utcnow

logger = structlog.get_logger(__name__)

DEFAULT_BATCH_SIZE = 5


@dataclass(slots=True)
class PollResult:
    """Tasks leased by one poll.

    Attributes:
        jobs: Leased tasks, oldest first, with their scripts loaded.
        has_more: Eligible tasks remain for this agent after this batch.
    """

    jobs: list[TaskRow] = field(default_factory=list)
    has_more: bool = False


def _eligible(agent_id: str) -> Select[tuple[str]]:
    """Pending, enabled tasks that are unbound or pinned to ``agent_id``."""
    return select(TaskRow.id).where(
        TaskRow.status == TaskStatus.PENDING,
        TaskRow.is_enabled.is_(True),
        or_(TaskRow.agent_id.is_(None), TaskRow.agent_id == agent_id),
    )


def poll_jobs(
    session: Session,
    agent_id: str,
    *,
    batch_size: int = DEFAULT_BATCH_SIZE,
    now: datetime | None = None,
) -> PollResult:
    """Lease up to ``min(batch_size, free capacity)`` tasks to an agent.

    Args:
        session: Open session; committed before returning.
        agent_id: Polling agent.
        batch_size: Per-poll cap regardless of remaining capacity.
        now: Lease timestamp (defaults to the server clock).

    Returns:
        The leased tasks. Empty when the agent is disabled, not online, at
        capacity, or nothing is eligible.

    Raises:
        NotFoundError: If the agent id is unknown.
    """
    now = now or utcnow()
    agent = get_agent(session, agent_id)

    if not agent.is_enabled or agent.status != AgentStatus.ONLINE:
        logger.debug("poll_skipped", agent_id=agent_id, reason="unavailable")
        session.rollback()
        return PollResult()

    capacity = agent.max_concurrent_tasks - agent.current_tasks
    if capacity <= 0:
        logger.debug("poll_skipped", agent_id=agent_id, reason="at_capacity")
        session.rollback()
        return PollResult()

    limit = min(batch_size, capacity)
    claimed: list[str] = []
    tried: set[str] = set()
    exhausted = False

    while len(claimed) < limit and not exhausted:
        stmt = _eligible(agent_id)
        if tried:
            stmt = stmt.where(TaskRow.id.not_in(sorted(tried)))
        candidates = session.scalars(
            stmt.order_by(TaskRow.created_at, TaskRow.id).limit(limit - len(claimed))
        ).all()
        if not candidates:
            break

        for task_id in candidates:
            if not reserve_slot(session, agent_id):
                # Capacity went away under us (concurrent poll or admin stop)
                exhausted = True
                break
            # Only tasks actually contested count as tried; the rest stay in has_more
            tried.add(task_id)
            if claim_task(session, task_id, agent_id, now):
                claimed.append(task_id)
            else:
                release_slot(session, agent_id)

    remaining = _eligible(agent_id)
    if tried:
        remaining = remaining.where(TaskRow.id.not_in(sorted(tried)))
    has_more = bool(session.scalar(select(remaining.exists())))
    session.commit()

    if not claimed:
        return PollResult(has_more=has_more)

    jobs = session.scalars(
        select(TaskRow)
        .options(selectinload(TaskRow.script))
        .where(TaskRow.id.in_(claimed))
        .order_by(TaskRow.created_at, TaskRow.id)
    ).all()
    logger.info("jobs_leased", agent_id=agent_id, task_ids=claimed, has_more=has_more)
    return PollResult(jobs=list(jobs), has_more=has_more)
