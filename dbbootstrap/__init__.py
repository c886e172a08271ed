"""
dbbootstrap - database bootstrap and migration coordinator.

Given a PostgreSQL target that is either a conventional socket-reachable
server or an edge/serverless database reachable only over WebSocket, this
package:

- Selects a transport strategy from a driver flag
- Opens a bounded connection pool with hard timeouts
- Verifies liveness with a trivial round trip
- Applies pending migrations under a fixed deadline
- Hands back a ready ConnectionHandle

A retrying setup harness and a teardown coordinator support automated test
suites; they are not part of the production path.
"""

from __future__ import annotations

__version__ = "0.1.0"
__license__ = "MIT"

# Public API exports
from dbbootstrap.config import Settings, get_settings
from dbbootstrap.domain.models import DatabaseConfig, DriverTag, RowSet
from dbbootstrap.errors import (
    BootstrapError,
    ConfigError,
    ConnectivityError,
    DatabaseBootstrapError,
    DatabaseConnectionError,
    MigrationError,
    MigrationTimeoutError,
    SetupExhaustedError,
)
from dbbootstrap.infrastructure.db_factory import establish, select_strategy
from dbbootstrap.migrator import migrate
from dbbootstrap.orchestrator import bootstrap, load_config, prepare_database
from dbbootstrap.prober import probe
from dbbootstrap.strategies.abstract import ConnectionHandle
from dbbootstrap.utils.logging import configure_logging, get_logger

__all__ = [
    # Version info
    "__version__",
    "__license__",
    # Configuration
    "DatabaseConfig",
    "DriverTag",
    "Settings",
    "get_settings",
    "load_config",
    # Bootstrap stages
    "bootstrap",
    "establish",
    "migrate",
    "prepare_database",
    "probe",
    "select_strategy",
    # Handles
    "ConnectionHandle",
    "RowSet",
    # Errors
    "BootstrapError",
    "ConfigError",
    "ConnectivityError",
    "DatabaseBootstrapError",
    "DatabaseConnectionError",
    "MigrationError",
    "MigrationTimeoutError",
    "SetupExhaustedError",
    # Logging
    "configure_logging",
    "get_logger",
]
