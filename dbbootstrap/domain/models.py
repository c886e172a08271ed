"""
Domain models for dbbootstrap.

Defines the immutable database configuration consumed by every bootstrap stage,
the driver tag that picks a transport, the row container returned by handles,
and the on-disk migration unit read by the migration runner.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlsplit, urlunsplit

from pydantic import BaseModel, Field, ValidationError, field_validator

from dbbootstrap.config import DEFAULT_MIGRATIONS_PATH, Settings, resolve_migrations_path
from dbbootstrap.errors import ConfigError

# Fixed by design; see DESIGN.md.
MIGRATION_DEADLINE_SECONDS = 30.0

_POSTGRES_SCHEMES = ("postgres", "postgresql")


class DriverTag(str, Enum):
    """Transport family selected by the DATABASE_DRIVER flag."""

    SOCKET = "socket"
    EDGE = "edge"

    @classmethod
    def parse(cls, tag: Optional[str]) -> "DriverTag":
        """
        Map a raw driver flag to a tag.

        ``"node"`` and ``"socket"`` select the socket pool. Anything else,
        including an unset flag, selects the edge (WebSocket) transport.
        """
        if isinstance(tag, DriverTag):
            return tag
        if tag is not None and tag.strip().lower() in ("node", "socket"):
            return cls.SOCKET
        return cls.EDGE


class DatabaseConfig(BaseModel):
    """
    Immutable bootstrap configuration.

    Constructed once at process start. A missing or non-PostgreSQL connection
    string fails here, before any connection is attempted.
    """

    connection_string: str = Field(..., description="PostgreSQL connection URI.")
    driver: DriverTag = Field(DriverTag.EDGE, description="Selected transport family.")
    max_connections: int = Field(10, gt=0, description="Upper bound on pooled connections.")
    connect_timeout: float = Field(10.0, gt=0, description="Socket connect ceiling (s).")
    edge_connect_timeout: float = Field(15.0, gt=0, description="WebSocket handshake ceiling (s).")
    idle_timeout: float = Field(10.0, gt=0, description="Idle connection lifetime (s).")
    statement_timeout: float = Field(30.0, gt=0, description="Server-side statement ceiling (s).")
    query_timeout: float = Field(30.0, gt=0, description="Client-side query ceiling (s).")
    migrations_path: Path = Field(DEFAULT_MIGRATIONS_PATH, description="Migrations folder.")

    model_config = {
        "frozen": True,
        "populate_by_name": True,
        "arbitrary_types_allowed": False,
    }

    @field_validator("connection_string")
    @classmethod
    def _check_connection_string(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("connection string is empty")
        parts = urlsplit(value)
        if parts.scheme not in _POSTGRES_SCHEMES:
            raise ValueError(
                f"unsupported scheme '{parts.scheme or '<none>'}'; expected postgres:// or postgresql://"
            )
        if not parts.hostname:
            raise ValueError("connection string has no host")
        return value

    @field_validator("driver", mode="before")
    @classmethod
    def _parse_driver(cls, value: Any) -> DriverTag:
        return DriverTag.parse(value)

    @field_validator("migrations_path")
    @classmethod
    def _anchor_migrations_path(cls, value: Path) -> Path:
        return resolve_migrations_path(value)

    @classmethod
    def from_settings(cls, settings: Settings, target: str = "test") -> "DatabaseConfig":
        """
        Build a config from environment settings.

        Raises
        ------
        ConfigError
            If the connection string for ``target`` is unset or invalid.
        """
        try:
            env_name, connection_string = settings.connection_string_for(target)
        except ValueError as exc:
            raise ConfigError(str(exc), cause=exc) from exc

        if not connection_string:
            raise ConfigError(
                f'You are trying to use the database, but "{env_name}" is not set correctly'
            )

        try:
            return cls(
                connection_string=connection_string,
                driver=settings.database_driver,
                max_connections=settings.db_max_connections,
                connect_timeout=settings.db_connect_timeout,
                edge_connect_timeout=settings.db_edge_connect_timeout,
                idle_timeout=settings.db_idle_timeout,
                statement_timeout=settings.db_statement_timeout,
                query_timeout=settings.db_query_timeout,
                migrations_path=settings.db_migrations_path,
            )
        except ValidationError as exc:
            raise ConfigError(f"Invalid database configuration for {env_name}: {exc}", cause=exc) from exc

    @property
    def effective_connect_timeout(self) -> float:
        """Connect ceiling for the selected transport."""
        if self.driver is DriverTag.EDGE:
            return self.edge_connect_timeout
        return self.connect_timeout

    @property
    def redacted_dsn(self) -> str:
        """Connection string with the password masked, safe for logs."""
        parts = urlsplit(self.connection_string)
        if parts.password is None:
            return self.connection_string
        netloc = parts.netloc.replace(f":{parts.password}@", ":***@", 1)
        return urlunsplit(parts._replace(netloc=netloc))

    @property
    def host(self) -> str:
        return urlsplit(self.connection_string).hostname or ""

    @property
    def port(self) -> int:
        return urlsplit(self.connection_string).port or 5432


@dataclass(frozen=True)
class RowSet:
    """Result of a statement executed through a ConnectionHandle."""

    columns: Tuple[str, ...] = ()
    rows: List[Dict[str, Any]] = field(default_factory=list)
    rowcount: int = -1

    def first(self) -> Optional[Dict[str, Any]]:
        return self.rows[0] if self.rows else None

    def __len__(self) -> int:
        return len(self.rows)


@dataclass(frozen=True)
class Migration:
    """One migration file: ordered statements plus the ledger identity."""

    tag: str
    created_at: int
    statements: Tuple[str, ...]
    hash: str


__all__ = [
    "DatabaseConfig",
    "DriverTag",
    "MIGRATION_DEADLINE_SECONDS",
    "Migration",
    "RowSet",
]
