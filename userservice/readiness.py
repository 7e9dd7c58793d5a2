"""Wait for the database to accept connections before anything else runs."""
from __future__ import annotations

import logging
import socket
import time
from dataclasses import dataclass
from typing import Callable, Optional

from sqlalchemy.engine import make_url
from sqlalchemy.exc import OperationalError
from tenacity import RetryCallState, RetryError, Retrying, retry_if_exception_type, stop_never, wait_fixed

from .database import Database
from .errors import DependencyUnavailableError

logger = logging.getLogger("userservice.readiness")

_DEFAULT_PORTS = {
    "postgresql": 5432,
    "mysql": 3306,
    "mariadb": 3306,
}


class DatabaseWaitError(RuntimeError):
    """A single readiness probe failed. Expected while the database boots."""


class DatabaseUnreachable(DatabaseWaitError):
    """The database host could not be resolved or refused the TCP connection."""


class DatabaseNotReady(DatabaseWaitError):
    """The host is reachable but the database is not accepting sessions yet."""


@dataclass(frozen=True)
class ReadinessTarget:
    """Where and as whom the readiness probe connects."""

    host: Optional[str]
    port: Optional[int]
    username: Optional[str] = None
    database: Optional[str] = None

    @staticmethod
    def from_url(url: str) -> "ReadinessTarget":
        parsed = make_url(url)
        port = parsed.port
        if parsed.host and port is None:
            port = _DEFAULT_PORTS.get(parsed.get_backend_name())
        return ReadinessTarget(
            host=parsed.host or None,
            port=port,
            username=parsed.username,
            database=parsed.database,
        )

    @property
    def is_network(self) -> bool:
        return bool(self.host) and self.port is not None

    def describe(self) -> str:
        if not self.is_network:
            return f"local database {self.database or '<memory>'}"
        user = f"{self.username}@" if self.username else ""
        return f"{user}{self.host}:{self.port}"


class DatabaseProbe:
    """Single readiness check: TCP reachability first, then a real session."""

    def __init__(
        self,
        database: Database,
        target: Optional[ReadinessTarget] = None,
        *,
        connect_timeout: float = 2.0,
        connect: Callable[..., socket.socket] = socket.create_connection,
    ) -> None:
        self._database = database
        self._target = target or ReadinessTarget.from_url(database.url)
        self._connect_timeout = connect_timeout
        self._connect = connect

    @property
    def target(self) -> ReadinessTarget:
        return self._target

    def __call__(self) -> None:
        if self._target.is_network:
            try:
                sock = self._connect((self._target.host, self._target.port), timeout=self._connect_timeout)
            except OSError as exc:  # includes DNS resolution failures
                raise DatabaseUnreachable(f"{self._target.describe()} is unreachable: {exc}") from exc
            sock.close()

        try:
            self._database.ping()
        except OperationalError as exc:
            raise DatabaseNotReady(f"{self._target.describe()} is not ready: {exc.orig or exc}") from exc


def _log_waiting(retry_state: RetryCallState) -> None:
    outcome = retry_state.outcome
    exc = outcome.exception() if outcome is not None else None
    state = "unreachable" if isinstance(exc, DatabaseUnreachable) else "not ready"
    logger.info(
        "Waiting for database (%s, attempt %d): %s",
        state,
        retry_state.attempt_number,
        exc,
    )


def wait_for_database(
    probe: Callable[[], None],
    *,
    interval: float = 1.0,
    timeout: Optional[float] = 60.0,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> int:
    """Poll ``probe`` every ``interval`` seconds until it succeeds.

    Returns the number of attempts made. Raises
    :class:`DependencyUnavailableError` once ``timeout`` seconds have elapsed
    without a successful probe; ``timeout=None`` waits indefinitely.
    """

    if interval <= 0:
        raise ValueError("interval must be positive")

    started = clock()
    attempts = 0

    def _attempt() -> None:
        nonlocal attempts
        attempts += 1
        probe()

    def _deadline_reached(retry_state: RetryCallState) -> bool:
        return timeout is not None and clock() - started >= timeout

    retrying = Retrying(
        stop=stop_never if timeout is None else _deadline_reached,
        wait=wait_fixed(interval),
        retry=retry_if_exception_type(DatabaseWaitError),
        sleep=sleep,
        before_sleep=_log_waiting,
    )

    logger.info("Waiting for database to become ready...")
    try:
        retrying(_attempt)
    except RetryError as exc:
        last_error = exc.last_attempt.exception()
        raise DependencyUnavailableError(
            f"Database did not become ready within {timeout:g}s after {attempts} attempt(s): {last_error}",
            attempts=attempts,
            last_error=last_error,
        ) from last_error

    logger.info("Database is ready (attempts: %d)", attempts)
    return attempts


__all__ = [
    "DatabaseNotReady",
    "DatabaseProbe",
    "DatabaseUnreachable",
    "DatabaseWaitError",
    "ReadinessTarget",
    "wait_for_database",
]
