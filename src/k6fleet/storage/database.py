"""Engine and session factory construction.

Usage:
    from k6fleet.config import DatabaseSettings
    from k6fleet.storage import create_engine_from_settings, create_session_factory, init_db

    engine = create_engine_from_settings(DatabaseSettings())
    init_db(engine)
    session_factory = create_session_factory(engine)

    with session_factory() as session:
        ...
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import Engine, create_engine, event
from sqlalchemy.engine import make_url
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from k6fleet.config import DatabaseSettings
from k6fleet.storage.models import Base

SessionFactory = sessionmaker[Session]


def is_in_memory(url: str) -> bool:
    """Whether ``url`` names an in-memory SQLite database."""
    parsed = make_url(url)
    return parsed.get_backend_name() == "sqlite" and parsed.database in (None, "", ":memory:")


def create_engine_from_settings(settings: DatabaseSettings) -> Engine:
    """Build an engine for the configured URL.

    SQLite gets two adjustments. File databases open every transaction with
    ``BEGIN IMMEDIATE`` so concurrent writers queue on the busy timeout
    instead of failing on lock upgrade. In-memory databases (``sqlite://``)
    live on a single ``StaticPool`` connection that every session shares, so
    two threads would interleave their transactions on it; that mode is for
    single-threaded tests and scripts only. The FastAPI app runs sync
    handlers in a threadpool and must be pointed at a file or server
    database.

    Args:
        settings: Database configuration.

    Returns:
        Configured engine.
    """
    url = make_url(settings.url)
    kwargs: dict[str, Any] = {"echo": settings.echo}
    is_sqlite = url.get_backend_name() == "sqlite"
    in_memory = is_in_memory(settings.url)

    if is_sqlite:
        kwargs["connect_args"] = {"check_same_thread": False}
        if in_memory:
            kwargs["poolclass"] = StaticPool

    engine = create_engine(url, **kwargs)
    if is_sqlite and not in_memory:
        _begin_immediate(engine)
    return engine


def _begin_immediate(engine: Engine) -> None:
    @event.listens_for(engine, "connect")
    def _disable_driver_transactions(dbapi_connection: Any, _record: Any) -> None:
        # pysqlite would otherwise emit its own deferred BEGIN
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn: Any) -> None:
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def create_session_factory(engine: Engine) -> SessionFactory:
    """Session factory bound to ``engine``."""
    return sessionmaker(bind=engine)


def init_db(engine: Engine) -> None:
    """Create missing tables."""
    Base.metadata.create_all(engine)
