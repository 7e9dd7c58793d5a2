"""Command-line interface for the user directory service."""

from __future__ import annotations
import argparse
import logging
import sys
from dataclasses import replace
from typing import Sequence

from userservice.config import Settings, load_settings
from userservice.database import Database, resolve_database_url
from userservice.errors import StartupError
from userservice.notifications import NotificationError, PipelineRun, send_notification
from userservice.readiness import DatabaseProbe, wait_for_database
from userservice.startup import build_startup_steps, run_startup

logger = logging.getLogger("userservice.main")


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="User directory service utilities")
    subparsers = parser.add_subparsers(dest="command")

    parser.set_defaults(command="serve")

    serve_parser = subparsers.add_parser(
        "serve",
        help="Wait for the database, apply migrations, then start the HTTP API",
    )
    serve_parser.add_argument("--host", default=None, help="Bind address for the API")
    serve_parser.add_argument(
        "--port",
        type=int,
        default=None,
        help="Port for the HTTP API (default: 3000)",
    )
    serve_parser.add_argument(
        "--db-wait-timeout",
        type=float,
        default=None,
        help="Seconds to wait for the database before giving up (0 waits forever)",
    )

    subparsers.add_parser("migrate", help="Apply pending schema migrations and exit")

    wait_parser = subparsers.add_parser("wait-db", help="Block until the database accepts connections")
    wait_parser.add_argument(
        "--db-wait-timeout",
        type=float,
        default=None,
        help="Seconds to wait for the database before giving up (0 waits forever)",
    )

    notify_parser = subparsers.add_parser(
        "notify", help="Email the outcome of a pipeline run to the configured recipient"
    )
    notify_parser.add_argument("--status", choices=("success", "failure"), required=True)
    notify_parser.add_argument("--job", required=True, help="Pipeline job identity")
    notify_parser.add_argument("--log-url", required=True, help="Where the run's logs can be read")
    notify_parser.add_argument("--commit", default=None, help="Commit the run was built from")

    args_list = list(argv) if argv is not None else sys.argv[1:]
    known_commands = {"serve", "migrate", "wait-db", "notify"}

    if not args_list:
        args_list = ["serve"]
    else:
        first = args_list[0]
        if first in ("-h", "--help"):
            return parser.parse_args(args_list)
        if first not in known_commands:
            if any(flag in args_list for flag in ("-h", "--help")):
                return parser.parse_args(args_list)
            args_list = ["serve", *args_list]

    return parser.parse_args(args_list)


def _settings_from_args(args: argparse.Namespace) -> Settings:
    settings = load_settings()
    overrides = {
        "host": getattr(args, "host", None),
        "port": getattr(args, "port", None),
    }
    settings = settings.with_overrides(**overrides)

    timeout = getattr(args, "db_wait_timeout", None)
    if timeout is not None:
        if timeout < 0:
            raise ValueError("--db-wait-timeout must not be negative")
        settings = replace(settings, db_wait_timeout=timeout if timeout > 0 else None)
    return settings


def _open_database(settings: Settings) -> Database:
    database = Database(resolve_database_url(settings.database_url))
    logger.info("Using database %s", database.engine.url.render_as_string(hide_password=True))
    return database


def _serve(settings: Settings, database: Database) -> int:
    report = run_startup(build_startup_steps(settings, database))
    if report.failed:
        logger.error("Start-up aborted; exiting with status %d", report.exit_code)
    return report.exit_code


def _migrate(database: Database) -> int:
    try:
        applied = database.migrate()
    except StartupError as exc:
        logger.error("%s", exc)
        return exc.exit_code

    if applied:
        print(f"Applied migrations: {', '.join(applied)}")
    else:
        print("No pending migrations.")
    return 0


def _wait_for_database(settings: Settings, database: Database) -> int:
    try:
        wait_for_database(
            DatabaseProbe(database),
            interval=settings.db_wait_interval,
            timeout=settings.db_wait_timeout,
        )
    except StartupError as exc:
        logger.error("%s", exc)
        return exc.exit_code
    return 0


def _notify(args: argparse.Namespace, settings: Settings) -> int:
    try:
        run = PipelineRun(job=args.job, status=args.status, log_url=args.log_url, commit=args.commit)
        send_notification(run, settings)
    except (ValueError, NotificationError) as exc:
        logger.error("Notification not sent: %s", exc)
        return 1
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for CLI usage."""

    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(message)s")

    args = _parse_args(argv)
    try:
        settings = _settings_from_args(args)
    except ValueError as exc:
        logger.error("Invalid configuration: %s", exc)
        return 2

    if args.command == "notify":
        return _notify(args, settings)

    database = _open_database(settings)
    try:
        if args.command == "serve":
            return _serve(settings, database)
        if args.command == "migrate":
            return _migrate(database)
        if args.command == "wait-db":
            return _wait_for_database(settings, database)
    finally:
        database.dispose()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
