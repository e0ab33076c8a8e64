"""Configuration module using Pydantic Settings.

Provides typed configuration for the server and the agent client with
environment variable support.

Usage:
    from k6fleet.config import DatabaseSettings, DispatchSettings

    db = DatabaseSettings(url="postgresql+psycopg://k6:k6@db/k6fleet")
    dispatch = DispatchSettings(heartbeat_timeout=90)
"""

from k6fleet.config.settings import (
    ClientSettings,
    DatabaseSettings,
    DispatchSettings,
    OrphanPolicy,
    ServerSettings,
)

__all__ = [
    "DatabaseSettings",
    "DispatchSettings",
    "ServerSettings",
    "ClientSettings",
    "OrphanPolicy",
]
