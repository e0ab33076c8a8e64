"""Command line entry point.

Usage:
    k6fleet serve                 # API server with the liveness sweeper
    k6fleet serve --port 8080
    k6fleet sweep                 # one liveness sweep, then exit
    k6fleet init-db               # create tables
"""

from __future__ import annotations

import argparse
import sys

import structlog

from k6fleet.config import DatabaseSettings, DispatchSettings, OrphanPolicy, ServerSettings
from k6fleet.liveness import sweep_stale_agents
from k6fleet.logging import configure_logging
from k6fleet.storage import (
    create_engine_from_settings,
    create_session_factory,
    init_db,
    is_in_memory,
)

logger = structlog.get_logger(__name__)


def run_serve(args: argparse.Namespace) -> int:
    import uvicorn

    from k6fleet.api import create_app

    server = ServerSettings()
    database = DatabaseSettings()
    if is_in_memory(database.url):
        # Request handlers run on a threadpool; one shared connection cannot serve them
        print("Refusing to serve an in-memory database; set K6FLEET_DB_URL", file=sys.stderr)
        return 2
    host = args.host or server.host
    port = args.port or server.port
    app = create_app(db_settings=database, server_settings=server)
    logger.info("server_starting", host=host, port=port)
    uvicorn.run(app, host=host, port=port, log_config=None)
    return 0


def run_sweep(args: argparse.Namespace) -> int:
    settings = DispatchSettings()
    threshold = args.threshold or settings.heartbeat_timeout
    policy = OrphanPolicy(args.orphan_policy) if args.orphan_policy else settings.orphan_policy

    engine = create_engine_from_settings(DatabaseSettings())
    init_db(engine)
    with create_session_factory(engine)() as session:
        report = sweep_stale_agents(session, threshold=threshold, orphan_policy=policy)
    engine.dispose()

    print(f"Agents marked offline: {len(report.offline_agent_ids)}")
    for agent_id in report.offline_agent_ids:
        print(f"  {agent_id}")
    print(f"Tasks reclaimed: {len(report.reclaimed_task_ids)}")
    return 0


def run_init_db(_args: argparse.Namespace) -> int:
    engine = create_engine_from_settings(DatabaseSettings())
    init_db(engine)
    engine.dispose()
    print(f"Database ready at {engine.url.render_as_string(hide_password=True)}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="k6fleet",
        description="k6fleet - task distribution for k6 load-testing agents",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the API server")
    serve.add_argument("--host", help="Bind address (default: K6FLEET_SERVER_HOST)")
    serve.add_argument("--port", type=int, help="Bind port (default: K6FLEET_SERVER_PORT)")
    serve.set_defaults(func=run_serve)

    sweep = sub.add_parser("sweep", help="Run one liveness sweep")
    sweep.add_argument("--threshold", type=float, help="Heartbeat timeout in seconds")
    sweep.add_argument(
        "--orphan-policy",
        choices=[p.value for p in OrphanPolicy],
        help="Handling of running tasks on swept agents",
    )
    sweep.set_defaults(func=run_sweep)

    init = sub.add_parser("init-db", help="Create database tables")
    init.set_defaults(func=run_init_db)

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)
    server = ServerSettings()
    configure_logging(server.log_level, json=server.log_json)
    return int(args.func(args))


if __name__ == "__main__":
    sys.exit(main())
