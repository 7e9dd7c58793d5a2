"""Typed start-up failures and the process exit codes they map to."""

from __future__ import annotations

from typing import Optional

EXIT_UNEXPECTED = 1
EXIT_DEPENDENCY_UNAVAILABLE = 3
EXIT_MIGRATION_FAILED = 4
EXIT_LISTENER_BIND_FAILED = 5


class StartupError(RuntimeError):
    """Raised when a start-up step fails. Always fatal."""

    exit_code = EXIT_UNEXPECTED


class DependencyUnavailableError(StartupError):
    """The database did not become ready before the wait deadline."""

    exit_code = EXIT_DEPENDENCY_UNAVAILABLE

    def __init__(self, message: str, *, attempts: int, last_error: Optional[BaseException] = None) -> None:
        super().__init__(message)
        self.attempts = attempts
        self.last_error = last_error


class MigrationError(StartupError):
    """Applying a schema migration failed; the server must not start."""

    exit_code = EXIT_MIGRATION_FAILED

    def __init__(self, message: str, *, version: Optional[str] = None) -> None:
        super().__init__(message)
        self.version = version


class ListenerBindError(StartupError):
    """The HTTP listener could not bind its address."""

    exit_code = EXIT_LISTENER_BIND_FAILED


__all__ = [
    "EXIT_DEPENDENCY_UNAVAILABLE",
    "EXIT_LISTENER_BIND_FAILED",
    "EXIT_MIGRATION_FAILED",
    "EXIT_UNEXPECTED",
    "DependencyUnavailableError",
    "ListenerBindError",
    "MigrationError",
    "StartupError",
]
