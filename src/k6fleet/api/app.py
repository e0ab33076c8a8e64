"""FastAPI application factory.

Usage:
    app = create_app()                               # settings from environment
    app = create_app(db_settings=DatabaseSettings(url="sqlite://"))

    uvicorn.run(app, host="127.0.0.1", port=3000)
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI

from k6fleet import __version__
from k6fleet.api.errors import register_exception_handlers
from k6fleet.api.routes import agents_router, tasks_router
from k6fleet.config import DatabaseSettings, DispatchSettings, ServerSettings
from k6fleet.dispatch.results import LoggingResultSink, ResultSink
from k6fleet.liveness import LivenessSweeper
from k6fleet.storage import create_engine_from_settings, create_session_factory, init_db

logger = structlog.get_logger(__name__)

API_PREFIX = "/api/v1"


def create_app(
    *,
    db_settings: DatabaseSettings | None = None,
    dispatch_settings: DispatchSettings | None = None,
    server_settings: ServerSettings | None = None,
    result_sink: ResultSink | None = None,
) -> FastAPI:
    """Build the application and its database wiring.

    Tables are created on construction. The liveness sweeper starts with the
    application lifespan when ``dispatch_settings.sweep_enabled`` is set.

    Args:
        db_settings: Database connection (defaults to environment).
        dispatch_settings: Dispatch and sweep tuning (defaults to environment).
        server_settings: Admin tokens and logging (defaults to environment).
        result_sink: Destination for reported job results (defaults to logging).

    Returns:
        Configured FastAPI application.
    """
    db_settings = db_settings or DatabaseSettings()
    dispatch_settings = dispatch_settings or DispatchSettings()
    server_settings = server_settings or ServerSettings()

    engine = create_engine_from_settings(db_settings)
    init_db(engine)
    session_factory = create_session_factory(engine)
    sweeper = LivenessSweeper(session_factory, dispatch_settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if dispatch_settings.sweep_enabled:
            await sweeper.start()
        try:
            yield
        finally:
            await sweeper.stop()
            engine.dispose()

    app = FastAPI(title="k6fleet", version=__version__, lifespan=lifespan)
    app.state.engine = engine
    app.state.session_factory = session_factory
    app.state.dispatch_settings = dispatch_settings
    app.state.server_settings = server_settings
    app.state.result_sink = result_sink or LoggingResultSink()
    app.state.sweeper = sweeper

    register_exception_handlers(app)
    app.include_router(agents_router, prefix=API_PREFIX)
    app.include_router(tasks_router, prefix=API_PREFIX)

    @app.get("/health", tags=["health"])
    def health() -> dict[str, str]:
        return {"status": "ok"}

    logger.debug("app_created", database=engine.url.render_as_string(hide_password=True))
    return app
