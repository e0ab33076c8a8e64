"""Relational storage: ORM rows, engine setup and lease transitions."""

from k6fleet.storage.database import (
    SessionFactory,
    create_engine_from_settings,
    create_session_factory,
    init_db,
    is_in_memory,
)
from k6fleet.storage.models import (
    TERMINAL_STATUSES,
    AgentRow,
    AgentStatus,
    Base,
    ScriptRow,
    ScriptType,
    TaskRow,
    TaskStatus,
    TriggerType,
    utcnow,
)

__all__ = [
    # Rows
    "Base",
    "AgentRow",
    "TaskRow",
    "ScriptRow",
    # Enums
    "AgentStatus",
    "TaskStatus",
    "TriggerType",
    "ScriptType",
    "TERMINAL_STATUSES",
    # Database
    "SessionFactory",
    "create_engine_from_settings",
    "create_session_factory",
    "init_db",
    "is_in_memory",
    "utcnow",
]
