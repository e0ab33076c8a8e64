"""k6fleet: task distribution for a fleet of k6 load-testing agents.

Agents register, heartbeat, poll for work and report outcomes; the server
leases pending tasks within each agent's capacity and sweeps agents that go
silent.

Usage:
    from k6fleet.api import create_app

    app = create_app()

Or, against the service layer directly:

    from k6fleet import AgentDescriptor, poll_jobs, register_or_update

    with session_factory() as session:
        agent = register_or_update(session, AgentDescriptor(agent_id="a1", hostname="h1", ip="10.0.0.5"))
        batch = poll_jobs(session, agent.id)
"""

__version__ = "0.1.0"

# Configuration
from k6fleet.config import (
    ClientSettings,
    DatabaseSettings,
    DispatchSettings,
    OrphanPolicy,
    ServerSettings,
)

# Dispatch
from k6fleet.dispatch import (
    JobStatusReport,
    PollResult,
    ResultSink,
    poll_jobs,
    update_job_status,
)

# Errors
from k6fleet.errors import ConflictError, ForbiddenError, K6FleetError, NotFoundError

# Liveness
from k6fleet.liveness import LivenessSweeper, sweep_stale_agents

# Registry
from k6fleet.registry import AgentDescriptor, register_or_update, update_heartbeat

# Storage
from k6fleet.storage import AgentStatus, TaskStatus, TriggerType

__all__ = [
    # Version
    "__version__",
    # Config
    "DatabaseSettings",
    "DispatchSettings",
    "ServerSettings",
    "ClientSettings",
    "OrphanPolicy",
    # Errors
    "K6FleetError",
    "NotFoundError",
    "ForbiddenError",
    "ConflictError",
    # Registry
    "AgentDescriptor",
    "register_or_update",
    "update_heartbeat",
    # Dispatch
    "poll_jobs",
    "PollResult",
    "update_job_status",
    "JobStatusReport",
    "ResultSink",
    # Liveness
    "sweep_stale_agents",
    "LivenessSweeper",
    # Enums
    "AgentStatus",
    "TaskStatus",
    "TriggerType",
]
