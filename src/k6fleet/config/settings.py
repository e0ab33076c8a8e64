"""Configuration settings using Pydantic Settings.

Every knob of the server and the agent client is typed here and can be set
from the environment (or a ``.env`` file).

Usage:
    from k6fleet.config import DispatchSettings

    # Load from environment variables (K6FLEET_DISPATCH_*)
    dispatch = DispatchSettings()

    # Or override with explicit values
    dispatch = DispatchSettings(poll_batch_size=10, heartbeat_timeout=90)
"""

from __future__ import annotations

from enum import StrEnum

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class OrphanPolicy(StrEnum):
    """What the liveness sweep does with RUNNING tasks of an agent it marks offline.

    - FAIL: mark them FAILED with a lost-executor error
    - REQUEUE: put them back to PENDING and unbind them
    - NONE: leave them RUNNING on the offline agent
    """

    FAIL = "fail"
    REQUEUE = "requeue"
    NONE = "none"


class DatabaseSettings(BaseSettings):  # type: ignore[misc]
    """Relational store connection.

    Attributes:
        url: SQLAlchemy database URL. ``sqlite://`` (in-memory) runs every
            session on one shared connection and only suits single-threaded
            tests and scripts; a served instance needs a file or server database.
        echo: Log every SQL statement.

    Environment Variables:
        K6FLEET_DB_URL
        K6FLEET_DB_ECHO
    """

    model_config = SettingsConfigDict(
        env_prefix="K6FLEET_DB_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    url: str = "sqlite:///./k6fleet.db"
    echo: bool = False


class DispatchSettings(BaseSettings):  # type: ignore[misc]
    """Task dispatch and liveness tuning.

    Attributes:
        poll_batch_size: Upper bound on jobs handed out per poll.
        heartbeat_timeout: Seconds of heartbeat silence before an agent is swept offline.
        sweep_interval: Seconds between liveness sweeps.
        sweep_enabled: Run the periodic sweeper inside the API process.
        orphan_policy: Handling of RUNNING tasks left on a swept agent.
        default_max_concurrent_tasks: Capacity given to agents that register without one.

    Environment Variables:
        K6FLEET_DISPATCH_POLL_BATCH_SIZE
        K6FLEET_DISPATCH_HEARTBEAT_TIMEOUT
        K6FLEET_DISPATCH_SWEEP_INTERVAL
        K6FLEET_DISPATCH_SWEEP_ENABLED
        K6FLEET_DISPATCH_ORPHAN_POLICY
        K6FLEET_DISPATCH_DEFAULT_MAX_CONCURRENT_TASKS
    """

    model_config = SettingsConfigDict(
        env_prefix="K6FLEET_DISPATCH_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    poll_batch_size: int = Field(default=5, ge=1)
    heartbeat_timeout: float = Field(default=60.0, gt=0)
    sweep_interval: float = Field(default=30.0, gt=0)
    sweep_enabled: bool = True
    orphan_policy: OrphanPolicy = OrphanPolicy.FAIL
    default_max_concurrent_tasks: int = Field(default=1, ge=1)


class ServerSettings(BaseSettings):  # type: ignore[misc]
    """HTTP server, admin authentication and logging.

    Attributes:
        host: Bind address for ``k6fleet serve``.
        port: Bind port for ``k6fleet serve``.
        admin_tokens: Bearer token -> user id. Admin endpoints reject any other token.
        log_level: Minimum log level.
        log_json: Emit JSON log lines instead of console output.

    Environment Variables:
        K6FLEET_SERVER_HOST
        K6FLEET_SERVER_PORT
        K6FLEET_SERVER_ADMIN_TOKENS (JSON object)
        K6FLEET_SERVER_LOG_LEVEL
        K6FLEET_SERVER_LOG_JSON
    """

    model_config = SettingsConfigDict(
        env_prefix="K6FLEET_SERVER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    host: str = "127.0.0.1"
    port: int = 3000
    admin_tokens: dict[str, str] = Field(default_factory=dict)
    log_level: str = "INFO"
    log_json: bool = False


class ClientSettings(BaseSettings):  # type: ignore[misc]
    """Agent-side client configuration.

    Attributes:
        server_url: Base URL of the k6fleet server.
        heartbeat_interval: Seconds between heartbeats.
        poll_interval: Seconds between job polls.
        timeout: HTTP request timeout in seconds.
        max_attempts: Attempts per request on transient failures (1 = no retry).

    Environment Variables:
        K6FLEET_AGENT_SERVER_URL
        K6FLEET_AGENT_HEARTBEAT_INTERVAL
        K6FLEET_AGENT_POLL_INTERVAL
        K6FLEET_AGENT_TIMEOUT
        K6FLEET_AGENT_MAX_ATTEMPTS
    """

    model_config = SettingsConfigDict(
        env_prefix="K6FLEET_AGENT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    server_url: str = "http://127.0.0.1:3000"
    heartbeat_interval: float = 30.0
    poll_interval: float = 5.0
    timeout: float = 30.0
    max_attempts: int = Field(default=3, ge=1)
