"""Agent registry: registration, heartbeats and administration."""

from k6fleet.registry.models import (
    AgentCreate,
    AgentDescriptor,
    AgentPage,
    AgentQuery,
    AgentRecord,
    AgentStatistics,
    AgentUpdate,
    BatchRequest,
    BatchResult,
    Capabilities,
    HeartbeatRequest,
)
from k6fleet.registry.service import (
    agent_statistics,
    batch_disable,
    batch_enable,
    create_agent,
    get_agent,
    list_agent_tasks,
    list_agents,
    register_or_update,
    remove_agent,
    start,
    stop,
    update_agent,
    update_heartbeat,
)

__all__ = [
    # Models
    "AgentCreate",
    "AgentDescriptor",
    "AgentPage",
    "AgentQuery",
    "AgentRecord",
    "AgentStatistics",
    "AgentUpdate",
    "BatchRequest",
    "BatchResult",
    "Capabilities",
    "HeartbeatRequest",
    # Operations
    "register_or_update",
    "update_heartbeat",
    "start",
    "stop",
    "batch_enable",
    "batch_disable",
    "create_agent",
    "get_agent",
    "list_agents",
    "update_agent",
    "remove_agent",
    "agent_statistics",
    "list_agent_tasks",
]
