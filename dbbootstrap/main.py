from __future__ import annotations

import asyncio
import sys
from datetime import datetime, timezone
from typing import NoReturn

import typer
from rich.console import Console
from rich.table import Table

from dbbootstrap.config import get_settings
from dbbootstrap.errors import BootstrapError, DatabaseBootstrapError
from dbbootstrap.migrator import applied_migrations
from dbbootstrap.orchestrator import bootstrap, load_config, prepare_database
from dbbootstrap.testing.harness import RetryingSetupHarness
from dbbootstrap.utils.logging import configure_logging

app = typer.Typer(help="Database bootstrap and migration coordinator.")

TARGET_OPTION = typer.Option(
    "test",
    "--target",
    "-t",
    help="Which connection string to use: 'test' (DATABASE_TEST_URL) or 'app' (DATABASE_URL).",
)


def _setup_logging() -> None:
    settings = get_settings()
    configure_logging(level=settings.log_level, json_logs=settings.log_json)


def _fail(exc: DatabaseBootstrapError) -> NoReturn:
    stage = exc.stage
    typer.echo(f"[{stage}] {exc}", err=True)
    if isinstance(exc, BootstrapError) and exc.cause is not None and exc.cause.__cause__ is not None:
        typer.echo(f"  caused by: {exc.cause.__cause__!r}", err=True)
    raise typer.Exit(code=1)


@app.command()
def info(target: str = TARGET_OPTION) -> None:
    """
    Show effective configuration values.
    """
    try:
        config = load_config(target)
    except DatabaseBootstrapError as exc:
        _fail(exc)
    typer.echo(
        f"DB={config.redacted_dsn} | driver={config.driver.value} "
        f"max={config.max_connections} connect_timeout={config.effective_connect_timeout:g}s "
        f"idle={config.idle_timeout:g}s statement={config.statement_timeout:g}s "
        f"query={config.query_timeout:g}s | migrations={config.migrations_path}"
    )


@app.command()
def check(
    target: str = TARGET_OPTION,
    attempts: int = typer.Option(5, "--attempts", "-n", help="Total connection attempts."),
    backoff: float = typer.Option(2.0, "--backoff", help="Seconds between attempts."),
) -> None:
    """
    Probe the database with retries, the same gate the test suite uses.
    """
    _setup_logging()
    try:
        config = load_config(target)
        result = asyncio.run(
            RetryingSetupHarness(config, attempts=attempts, backoff=backoff).run()
        )
    except DatabaseBootstrapError as exc:
        _fail(exc)
    typer.echo(
        f"Connected after {result.attempts} attempt(s) in {result.duration_ms:.0f}ms: "
        f"{result.server_version}"
    )


@app.command()
def migrate(target: str = TARGET_OPTION) -> None:
    """
    Bootstrap the database (establish, probe, migrate) and exit.
    """
    _setup_logging()
    try:
        prepare_database(load_config(target))
    except DatabaseBootstrapError as exc:
        _fail(exc)
    typer.echo("Database ready.")


@app.command()
def status(target: str = TARGET_OPTION) -> None:
    """
    List migrations recorded in the ledger.
    """
    _setup_logging()

    async def _read() -> list[dict]:
        handle = await bootstrap(load_config(target), run_migrations=False)
        try:
            return await applied_migrations(handle)
        finally:
            await handle.release()

    try:
        rows = asyncio.run(_read())
    except DatabaseBootstrapError as exc:
        _fail(exc)

    table = Table(title="Applied migrations")
    table.add_column("id", justify="right")
    table.add_column("created_at")
    table.add_column("hash")
    for row in rows:
        created = row["created_at"]
        when = (
            datetime.fromtimestamp(int(created) / 1000, tz=timezone.utc).isoformat()
            if created is not None
            else "-"
        )
        table.add_row(str(row["id"]), when, str(row["hash"])[:16])
    Console().print(table)
    if not rows:
        typer.echo("No migrations applied yet.")


def main() -> None:
    try:
        app()
    except KeyboardInterrupt:
        typer.echo("Cancelled by user.", err=True)
        sys.exit(130)


if __name__ == "__main__":
    main()
