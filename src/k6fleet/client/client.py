"""HTTP client for the agent side of the dispatch protocol.

An agent process registers once, then heartbeats and polls on its own
intervals, and reports each job's outcome. Transient failures (connection
errors, 5xx) are retried according to a ``RetryPolicy``.

Usage:
    with AgentClient(ClientSettings(server_url="http://k6fleet:3000")) as client:
        client.register(AgentDescriptor(agent_id="agent-1", hostname="h1", ip="10.0.0.5"))
        client.heartbeat(resources={"cpu": 4})
        for job in client.poll().jobs:
            ...
            client.report(job.id, TaskStatus.COMPLETED, result={"checks": 1.0})
"""

from __future__ import annotations

from dataclasses import dataclass
from types import TracebackType
from typing import Any, Literal

import httpx
import structlog
import tenacity

from k6fleet.config import ClientSettings
from k6fleet.dispatch.models import PollResponse
from k6fleet.registry.models import AgentDescriptor, AgentRecord
from k6fleet.schemas import Ack
from k6fleet.storage.models import TaskStatus, utcnow

logger = structlog.get_logger(__name__)

API_PREFIX = "/api/v1/agents"


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Configuration for retrying failed requests."""

    max_attempts: int = 3
    """Maximum attempts (1 = no retry)."""

    backoff: Literal["none", "linear", "exponential"] = "exponential"
    """Backoff strategy between retries."""

    base_delay: float = 0.5
    """Base delay in seconds for backoff calculation."""


def _is_transient(exc: BaseException) -> bool:
    if isinstance(exc, httpx.TransportError):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code >= 500
    return False


class AgentClient:
    """Talks to a k6fleet server on behalf of one agent.

    The server-assigned agent id is captured at ``register`` and used for
    every later call.

    Args:
        settings: Server URL, timeout and retry attempts.
        http: Pre-built httpx client (tests pass an in-process one).
        retry: Retry policy; defaults to ``settings.max_attempts`` with exponential backoff.
    """

    def __init__(
        self,
        settings: ClientSettings | None = None,
        *,
        http: httpx.Client | None = None,
        retry: RetryPolicy | None = None,
    ) -> None:
        self._settings = settings or ClientSettings()
        self._owns_http = http is None
        self._http = http or httpx.Client(
            base_url=self._settings.server_url, timeout=self._settings.timeout
        )
        self._retry = retry or RetryPolicy(max_attempts=self._settings.max_attempts)
        self.agent_id: str | None = None

    def __enter__(self) -> AgentClient:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    @property
    def settings(self) -> ClientSettings:
        return self._settings

    def close(self) -> None:
        if self._owns_http:
            self._http.close()

    def register(self, descriptor: AgentDescriptor) -> AgentRecord:
        """Register (or re-register) and remember the server-assigned id."""
        response = self._request(
            "POST", "/register", json=descriptor.model_dump(mode="json", exclude_none=True)
        )
        record = AgentRecord.model_validate(response.json())
        self.agent_id = record.id
        logger.info("agent_client_registered", agent_id=record.id, hostname=record.hostname)
        return record

    def heartbeat(self, resources: dict[str, Any] | None = None) -> Ack:
        payload: dict[str, Any] = {
            "agent_id": self._require_id(),
            "timestamp": utcnow().isoformat(),
        }
        if resources is not None:
            payload["resources"] = resources
        return Ack.model_validate(self._request("POST", "/heartbeat", json=payload).json())

    def poll(self) -> PollResponse:
        """Ask for work. An empty ``jobs`` list means try again later."""
        response = self._request("GET", "/jobs/poll", params={"agent_id": self._require_id()})
        return PollResponse.model_validate(response.json())

    def report(
        self,
        job_id: str,
        status: TaskStatus,
        *,
        result: dict[str, Any] | None = None,
        error: str | None = None,
    ) -> Ack:
        """Report a job's status. Safe to repeat: duplicates are ignored server-side."""
        payload: dict[str, Any] = {"agent_id": self._require_id(), "status": str(status)}
        if result is not None:
            payload["result"] = result
        if error is not None:
            payload["error"] = error
        response = self._request("POST", f"/jobs/{job_id}/status", json=payload)
        return Ack.model_validate(response.json())

    def _require_id(self) -> str:
        if self.agent_id is None:
            raise RuntimeError("Agent is not registered; call register() first")
        return self.agent_id

    def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        """Send a request, retrying transient failures.

        Raises:
            httpx.HTTPStatusError: On a non-transient error status, or when
                retries are exhausted.
            httpx.TransportError: When the server stays unreachable.
        """
        for attempt in self._build_retryer():
            with attempt:
                response = self._http.request(method, f"{API_PREFIX}{path}", **kwargs)
                response.raise_for_status()
        return response

    def _build_retryer(self) -> tenacity.Retrying:
        """Build a tenacity retryer from the RetryPolicy."""
        policy = self._retry

        wait: tenacity.wait.wait_base
        if policy.backoff == "exponential":
            wait = tenacity.wait_exponential(multiplier=policy.base_delay, min=policy.base_delay)
        elif policy.backoff == "linear":
            wait = tenacity.wait_incrementing(start=policy.base_delay, increment=policy.base_delay)
        else:
            wait = tenacity.wait_none()

        return tenacity.Retrying(
            stop=tenacity.stop_after_attempt(policy.max_attempts),
            wait=wait,
            retry=tenacity.retry_if_exception(_is_transient),
            before_sleep=self._log_retry,
            reraise=True,
        )

    @staticmethod
    def _log_retry(state: tenacity.RetryCallState) -> None:
        exc = state.outcome.exception() if state.outcome else None
        logger.warning("agent_client_retry", attempt=state.attempt_number, error=str(exc))
