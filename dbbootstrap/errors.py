"""
Error taxonomy for the bootstrap path.

Every failure surfaced by the establish/probe/migrate stages carries the stage
it happened in, and the original exception is chained as ``cause`` so both
show up in tracebacks and in log records.
"""

from __future__ import annotations

from typing import Optional


class DatabaseBootstrapError(Exception):
    """Base class for all errors raised by dbbootstrap."""

    stage: str = "bootstrap"

    def __init__(self, message: str, cause: Optional[BaseException] = None) -> None:
        super().__init__(message)
        self.cause = cause


class ConfigError(DatabaseBootstrapError):
    """Missing or invalid connection settings. Fatal, never retried."""

    stage = "config"


class DatabaseConnectionError(DatabaseBootstrapError):
    """The pool for the selected transport could not be constructed."""

    stage = "establish"


class ConnectivityError(DatabaseBootstrapError):
    """The pool opened but the remote endpoint did not answer the probe."""

    stage = "probe"


class MigrationError(DatabaseBootstrapError):
    """Migration statements were rejected, or the folder could not be read."""

    stage = "migrate"


class MigrationTimeoutError(MigrationError, TimeoutError):
    """Migration did not settle before its deadline."""

    def __init__(self, deadline: float) -> None:
        super().__init__(f"Migration timeout after {deadline:g} seconds")
        self.deadline = deadline


class BootstrapError(DatabaseBootstrapError):
    """Stage-tagged failure returned by the bootstrap orchestrator."""

    def __init__(self, stage: str, cause: BaseException) -> None:
        super().__init__(f"Bootstrap failed at stage '{stage}': {cause}", cause=cause)
        self.stage = stage


class SetupExhaustedError(DatabaseBootstrapError):
    """The retrying setup harness ran out of attempts."""

    stage = "setup"

    def __init__(self, attempts: int, last_error: Optional[BaseException]) -> None:
        super().__init__(
            f"Failed to connect to database after {attempts} attempts: {last_error}",
            cause=last_error,
        )
        self.attempts = attempts
        self.last_error = last_error


__all__ = [
    "BootstrapError",
    "ConfigError",
    "ConnectivityError",
    "DatabaseBootstrapError",
    "DatabaseConnectionError",
    "MigrationError",
    "MigrationTimeoutError",
    "SetupExhaustedError",
]
