"""Agent-side client for the k6fleet dispatch protocol."""

from k6fleet.client.client import AgentClient, RetryPolicy
from k6fleet.client.runner import AgentRunner, JobExecutor

__all__ = ["AgentClient", "AgentRunner", "JobExecutor", "RetryPolicy"]
