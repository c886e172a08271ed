"""
Configuration settings for dbbootstrap.

Uses Pydantic Settings to load environment variables for the database target,
pool ceilings, migrations location and logging. Values here are the raw
environment view; `DatabaseConfig.from_settings` turns them into the validated,
immutable config the bootstrap path consumes.
"""
from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Migrations are resolved relative to the repository root, not the CWD.
DEFAULT_MIGRATIONS_PATH = Path(__file__).resolve().parent.parent / "migrations"


def resolve_migrations_path(path: Path | str) -> Path:
    """Anchor a relative migrations path on the repository root."""
    path = Path(path)
    if path.is_absolute():
        return path
    return DEFAULT_MIGRATIONS_PATH.parent / path


class Settings(BaseSettings):
    # Database target
    database_test_url: Optional[str] = Field(None, alias="DATABASE_TEST_URL")
    database_url: Optional[str] = Field(None, alias="DATABASE_URL")
    database_driver: Optional[str] = Field(None, alias="DATABASE_DRIVER")
    test_server_db: bool = Field(False, alias="TEST_SERVER_DB")

    # Pool ceilings (seconds)
    db_max_connections: int = Field(10, alias="DB_MAX_CONNECTIONS")
    db_connect_timeout: float = Field(10.0, alias="DB_CONNECT_TIMEOUT")
    db_edge_connect_timeout: float = Field(15.0, alias="DB_EDGE_CONNECT_TIMEOUT")
    db_idle_timeout: float = Field(10.0, alias="DB_IDLE_TIMEOUT")
    db_statement_timeout: float = Field(30.0, alias="DB_STATEMENT_TIMEOUT")
    db_query_timeout: float = Field(30.0, alias="DB_QUERY_TIMEOUT")

    # Migrations
    db_migrations_path: Path = Field(DEFAULT_MIGRATIONS_PATH, alias="DB_MIGRATIONS_PATH")

    # Application
    log_level: str = Field("INFO", alias="LOG_LEVEL")
    log_json: bool = Field(False, alias="LOG_JSON")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    @field_validator("db_migrations_path")
    @classmethod
    def _anchor_migrations_path(cls, value: Path) -> Path:
        return resolve_migrations_path(value)

    def connection_string_for(self, target: str) -> tuple[str, Optional[str]]:
        """
        Return ``(env_var_name, value)`` for the requested target.

        ``"test"`` reads DATABASE_TEST_URL, ``"app"`` reads DATABASE_URL. The
        two are never mixed so an unset test URL cannot silently fall through
        to an application database.
        """
        if target == "test":
            return "DATABASE_TEST_URL", self.database_test_url
        if target == "app":
            return "DATABASE_URL", self.database_url
        raise ValueError(f"Unknown database target '{target}'. Expected 'test' or 'app'.")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Retrieve a cached instance of Settings to avoid repeated env parsing.
    """
    return Settings()


__all__ = ["DEFAULT_MIGRATIONS_PATH", "Settings", "get_settings", "resolve_migrations_path"]
