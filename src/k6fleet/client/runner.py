"""Agent run loop: register once, then heartbeat and poll on fixed intervals.

Each leased job is handed to an executor callback in its own asyncio task.
The runner reports ``running`` when the job starts, then ``completed`` with
the executor's result or ``failed`` with the exception message.

Usage:
    async def run_k6(job: Job) -> dict[str, Any] | None:
        ...  # run the script, return the k6 summary

    runner = AgentRunner(AgentClient(), descriptor, run_k6)
    await runner.start()
    ...
    await runner.stop()
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Awaitable, Callable
from typing import Any

import httpx
import structlog

from k6fleet.client.client import AgentClient
from k6fleet.dispatch.models import Job
from k6fleet.registry.models import AgentDescriptor
from k6fleet.storage.models import TaskStatus

logger = structlog.get_logger(__name__)

JobExecutor = Callable[[Job], Awaitable[dict[str, Any] | None]]


class AgentRunner:
    """Drives an ``AgentClient`` through the agent protocol.

    HTTP calls are blocking and run in worker threads. A failed heartbeat or
    poll is logged and retried on the next tick.

    Args:
        client: Client used for every request; intervals come from its settings.
        descriptor: Sent once at ``start``.
        executor: Runs one job and returns its result payload.
    """

    def __init__(
        self, client: AgentClient, descriptor: AgentDescriptor, executor: JobExecutor
    ) -> None:
        self._client = client
        self._descriptor = descriptor
        self._executor = executor
        self._loops: list[asyncio.Task[None]] = []
        self._jobs: set[asyncio.Task[None]] = set()
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Register, then launch the heartbeat and poll loops.

        Raises:
            RuntimeError: If already running.
            httpx.HTTPError: If registration fails.
        """
        if self._running:
            raise RuntimeError("Agent runner is already running")
        await asyncio.to_thread(self._client.register, self._descriptor)
        self._running = True
        settings = self._client.settings
        self._loops = [
            asyncio.create_task(
                self._tick(settings.heartbeat_interval, self._heartbeat), name="agent-heartbeat"
            ),
            asyncio.create_task(self._tick(settings.poll_interval, self._poll), name="agent-poll"),
        ]
        logger.info(
            "agent_runner_started",
            agent_id=self._client.agent_id,
            heartbeat_interval=settings.heartbeat_interval,
            poll_interval=settings.poll_interval,
        )

    async def stop(self) -> None:
        """Cancel the loops and any job still executing. Safe to call when not running."""
        if not self._running:
            return
        self._running = False
        tasks = [*self._loops, *self._jobs]
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._loops = []
        self._jobs.clear()
        logger.info("agent_runner_stopped", agent_id=self._client.agent_id)

    async def _tick(self, interval: float, action: Callable[[], Awaitable[None]]) -> None:
        while self._running:
            await asyncio.sleep(interval)
            try:
                await action()
            except httpx.HTTPError as e:
                logger.warning("agent_request_failed", action=action.__name__, error=str(e))

    async def _heartbeat(self) -> None:
        await asyncio.to_thread(self._client.heartbeat, self._descriptor.resources)

    async def _poll(self) -> None:
        response = await asyncio.to_thread(self._client.poll)
        for job in response.jobs:
            logger.info("job_received", agent_id=self._client.agent_id, task_id=job.id)
            task = asyncio.create_task(self._execute(job), name=f"job-{job.id}")
            self._jobs.add(task)
            task.add_done_callback(self._jobs.discard)

    async def _execute(self, job: Job) -> None:
        try:
            await self._report(job.id, TaskStatus.RUNNING)
            try:
                result = await self._executor(job)
            except Exception as e:
                logger.exception("job_failed", task_id=job.id)
                await self._report(job.id, TaskStatus.FAILED, error=str(e))
            else:
                await self._report(job.id, TaskStatus.COMPLETED, result=result)
        except httpx.HTTPError as e:
            logger.warning("job_report_failed", task_id=job.id, error=str(e))

    async def _report(
        self,
        job_id: str,
        status: TaskStatus,
        *,
        result: dict[str, Any] | None = None,
        error: str | None = None,
    ) -> None:
        await asyncio.to_thread(
            self._client.report, job_id, status, result=result, error=error
        )
