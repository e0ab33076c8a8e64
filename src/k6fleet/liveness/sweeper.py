"""Liveness sweeper: marks silent agents offline and reclaims their tasks.

``sweep_stale_agents`` is one pass; ``LivenessSweeper`` runs it on a fixed
interval in the background of the API process.

Usage:
    sweeper = LivenessSweeper(session_factory, DispatchSettings())
    await sweeper.start()
    ...
    await sweeper.stop()
"""

from __future__ import annotations

import asyncio
import contextlib
from dataclasses import dataclass, field
from datetime import datetime, timedelta

import structlog
from sqlalchemy import or_, select, update
from sqlalchemy.orm import Session

from k6fleet.config import DispatchSettings, OrphanPolicy
from k6fleet.storage.database import SessionFactory
from k6fleet.storage.models import AgentRow, AgentStatus, TaskRow, TaskStatus, utcnow

logger = structlog.get_logger(__name__)

LOST_EXECUTOR_MESSAGE = "Agent stopped sending heartbeats; executor lost"


@dataclass(slots=True)
class SweepReport:
    """Outcome of one sweep.

    Attributes:
        offline_agent_ids: Agents this pass moved to OFFLINE.
        reclaimed_task_ids: RUNNING tasks of those agents that were failed or requeued.
    """

    offline_agent_ids: list[str] = field(default_factory=list)
    reclaimed_task_ids: list[str] = field(default_factory=list)


def sweep_stale_agents(
    session: Session,
    *,
    threshold: float = 60.0,
    orphan_policy: OrphanPolicy = OrphanPolicy.FAIL,
    now: datetime | None = None,
) -> SweepReport:
    """Mark OFFLINE every non-offline agent silent for longer than ``threshold``.

    Agents that never sent a heartbeat count as silent. The status flip is a
    single conditional UPDATE, so a heartbeat committed first keeps its
    agent online.

    Args:
        session: Open session; committed before returning.
        threshold: Seconds of heartbeat silence tolerated.
        orphan_policy: What happens to RUNNING tasks of swept agents.
        now: Reference time (defaults to the server clock).

    Returns:
        Which agents went offline and which tasks were reclaimed.
    """
    now = now or utcnow()
    cutoff = now - timedelta(seconds=threshold)

    swept = list(
        session.scalars(
            update(AgentRow)
            .where(
                AgentRow.status != AgentStatus.OFFLINE,
                or_(AgentRow.last_heartbeat.is_(None), AgentRow.last_heartbeat < cutoff),
            )
            .values(status=AgentStatus.OFFLINE)
            .returning(AgentRow.id)
            .execution_options(synchronize_session=False)
        )
    )

    report = SweepReport(offline_agent_ids=swept)
    if swept and orphan_policy != OrphanPolicy.NONE:
        report.reclaimed_task_ids = _reclaim_running_tasks(session, swept, orphan_policy, now)

    session.commit()
    if swept:
        logger.info(
            "agents_swept_offline",
            agent_ids=swept,
            reclaimed_task_ids=report.reclaimed_task_ids,
            orphan_policy=str(orphan_policy),
        )
    return report


def _reclaim_running_tasks(
    session: Session, agent_ids: list[str], policy: OrphanPolicy, now: datetime
) -> list[str]:
    running = (TaskRow.agent_id.in_(agent_ids), TaskRow.status == TaskStatus.RUNNING)
    task_ids = list(session.scalars(select(TaskRow.id).where(*running)))
    if not task_ids:
        return []

    if policy == OrphanPolicy.FAIL:
        values: dict[str, object] = {
            "status": TaskStatus.FAILED,
            "completed_at": now,
            "error_message": LOST_EXECUTOR_MESSAGE,
        }
    else:
        values = {"status": TaskStatus.PENDING, "agent_id": None, "started_at": None}

    session.execute(
        update(TaskRow)
        .where(TaskRow.id.in_(task_ids), *running)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    # All of their RUNNING tasks are gone, so nothing is left to count
    session.execute(
        update(AgentRow)
        .where(AgentRow.id.in_(agent_ids))
        .values(current_tasks=0)
        .execution_options(synchronize_session=False)
    )
    return task_ids


class LivenessSweeper:
    """Background loop firing ``sweep_stale_agents`` every ``sweep_interval`` seconds.

    The sweep itself is synchronous database work and runs in a worker
    thread. A failed pass is logged and the loop keeps going.

    Args:
        session_factory: Produces a fresh session per pass.
        settings: Threshold, interval and orphan policy.
    """

    def __init__(self, session_factory: SessionFactory, settings: DispatchSettings) -> None:
        self._session_factory = session_factory
        self._settings = settings
        self._task: asyncio.Task[None] | None = None
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    def sweep_once(self) -> SweepReport:
        """Run a single pass in a fresh session."""
        with self._session_factory() as session:
            return sweep_stale_agents(
                session,
                threshold=self._settings.heartbeat_timeout,
                orphan_policy=self._settings.orphan_policy,
            )

    async def start(self) -> None:
        """Launch the loop as a background task.

        Raises:
            RuntimeError: If already running.
        """
        if self._running:
            raise RuntimeError("Liveness sweeper is already running")
        self._running = True
        self._task = asyncio.create_task(self._run(), name="liveness-sweeper")
        logger.info(
            "sweeper_started",
            interval=self._settings.sweep_interval,
            threshold=self._settings.heartbeat_timeout,
        )

    async def stop(self) -> None:
        """Cancel the loop and wait for it. Safe to call when not running."""
        if not self._running:
            return
        self._running = False
        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
        logger.info("sweeper_stopped")

    async def _run(self) -> None:
        while self._running:
            try:
                await asyncio.to_thread(self.sweep_once)
            except Exception:
                logger.exception("sweep_failed")
            await asyncio.sleep(self._settings.sweep_interval)
