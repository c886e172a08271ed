"""
Domain package for dbbootstrap.

Exports the configuration, row and migration models shared by the strategies,
the migration runner and the orchestrator. Keep this package focused on data
definitions and validation concerns.
"""

from dbbootstrap.domain.models import (
    MIGRATION_DEADLINE_SECONDS,
    DatabaseConfig,
    DriverTag,
    Migration,
    RowSet,
)

__all__ = [
    "DatabaseConfig",
    "DriverTag",
    "MIGRATION_DEADLINE_SECONDS",
    "Migration",
    "RowSet",
]
