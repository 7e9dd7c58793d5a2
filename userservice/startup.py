"""Ordered start-up: wait for the database, migrate, then serve.

The three steps run once, synchronously, in a fixed order. The first failing
step stops the sequence; its typed error decides the process exit code.
"""
from __future__ import annotations

import logging
import socket
import time
from dataclasses import dataclass, field
from functools import partial
from typing import Callable, List, Optional, Sequence

from .config import Settings
from .database import Database
from .errors import EXIT_UNEXPECTED, ListenerBindError, StartupError
from .readiness import DatabaseProbe, wait_for_database

logger = logging.getLogger("userservice.startup")

STEP_WAIT_FOR_DATABASE = "wait-for-database"
STEP_MIGRATE = "migrate"
STEP_SERVE = "serve"


@dataclass(frozen=True)
class StartupStep:
    name: str
    action: Callable[[], object]


@dataclass(frozen=True)
class StepOutcome:
    """Result of a single start-up step."""

    name: str
    ok: bool
    duration: float
    error: Optional[BaseException] = None


@dataclass
class StartupReport:
    """Outcomes of the steps that ran, in order."""

    outcomes: List[StepOutcome] = field(default_factory=list)

    @property
    def failed(self) -> bool:
        return any(not outcome.ok for outcome in self.outcomes)

    @property
    def error(self) -> Optional[BaseException]:
        for outcome in self.outcomes:
            if not outcome.ok:
                return outcome.error
        return None

    @property
    def exit_code(self) -> int:
        error = self.error
        if error is None:
            return 0
        if isinstance(error, StartupError):
            return error.exit_code
        return EXIT_UNEXPECTED

    @property
    def completed_steps(self) -> List[str]:
        return [outcome.name for outcome in self.outcomes if outcome.ok]


def run_startup(
    steps: Sequence[StartupStep],
    *,
    clock: Callable[[], float] = time.monotonic,
) -> StartupReport:
    """Run ``steps`` in order, stopping at the first failure."""

    report = StartupReport()
    for step in steps:
        logger.info("Start-up step '%s' running", step.name)
        started = clock()
        try:
            step.action()
        except StartupError as exc:
            logger.error("Start-up step '%s' failed: %s", step.name, exc)
            report.outcomes.append(StepOutcome(step.name, False, clock() - started, exc))
            return report
        except Exception as exc:
            logger.exception("Start-up step '%s' failed unexpectedly", step.name)
            report.outcomes.append(StepOutcome(step.name, False, clock() - started, exc))
            return report

        elapsed = clock() - started
        logger.info("Start-up step '%s' completed in %.2fs", step.name, elapsed)
        report.outcomes.append(StepOutcome(step.name, True, elapsed))
    return report


def bind_listener(host: str, port: int) -> socket.socket:
    """Bind the HTTP listening socket, raising :class:`ListenerBindError` on failure."""

    family = socket.AF_INET6 if ":" in host else socket.AF_INET
    sock = socket.socket(family, socket.SOCK_STREAM)
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind((host, port))
    except (OSError, OverflowError) as exc:
        sock.close()
        raise ListenerBindError(f"Unable to bind {host}:{port}: {exc}") from exc
    return sock


def serve_http(
    settings: Settings,
    database: Database,
    *,
    bind: Callable[[str, int], socket.socket] = bind_listener,
) -> None:
    """Bind the listener and run uvicorn until shutdown."""

    import uvicorn

    from .api import create_app

    sock = bind(settings.host, settings.port)
    try:
        app = create_app(database=database, settings=settings)
        server = uvicorn.Server(uvicorn.Config(app, log_level="info"))
        logger.info("Starting user API on http://%s:%s", settings.host, settings.port)
        server.run(sockets=[sock])
    finally:
        sock.close()


def build_startup_steps(
    settings: Settings,
    database: Database,
    *,
    serve: Optional[Callable[[], object]] = None,
    probe: Optional[Callable[[], None]] = None,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> List[StartupStep]:
    """Assemble the default three-step sequence."""

    wait = partial(
        wait_for_database,
        probe or DatabaseProbe(database),
        interval=settings.db_wait_interval,
        timeout=settings.db_wait_timeout,
        sleep=sleep,
        clock=clock,
    )
    return [
        StartupStep(STEP_WAIT_FOR_DATABASE, wait),
        StartupStep(STEP_MIGRATE, database.migrate),
        StartupStep(STEP_SERVE, serve or partial(serve_http, settings, database)),
    ]


__all__ = [
    "STEP_MIGRATE",
    "STEP_SERVE",
    "STEP_WAIT_FOR_DATABASE",
    "StartupReport",
    "StartupStep",
    "StepOutcome",
    "bind_listener",
    "build_startup_steps",
    "run_startup",
    "serve_http",
]
