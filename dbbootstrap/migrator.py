"""
Migration runner.

Reads an ordered migrations folder, consults the ledger table kept in the
database, and applies whatever is pending in a single transaction. The folder
and ledger layout follow drizzle-kit so folders generated by it apply as-is:

    migrations/
      meta/_journal.json          {"entries": [{"idx", "tag", "when", "breakpoints"}]}
      0000_initial.sql            statements separated by "--> statement-breakpoint"

Folders without a journal fall back to every ``*.sql`` file in name order,
with ``created_at`` taken from the 1-based position.

`migrate` races the application against a deadline. When the deadline wins the
application task is abandoned, not rolled back: the ledger stays the source of
truth for what was applied, and later runs only skip what it records.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
from pathlib import Path
from typing import Any, Dict, List, Optional

from dbbootstrap.domain.models import MIGRATION_DEADLINE_SECONDS, Migration
from dbbootstrap.errors import MigrationError, MigrationTimeoutError
from dbbootstrap.strategies.abstract import ConnectionHandle
from dbbootstrap.utils.logging import get_logger

log = get_logger(__name__)

MIGRATIONS_SCHEMA = "drizzle"
MIGRATIONS_TABLE = "__drizzle_migrations"
STATEMENT_BREAKPOINT = "--> statement-breakpoint"

_LEDGER = f'"{MIGRATIONS_SCHEMA}"."{MIGRATIONS_TABLE}"'


def _split_statements(sql: str, breakpoints: bool) -> tuple[str, ...]:
    chunks = sql.split(STATEMENT_BREAKPOINT) if breakpoints else [sql]
    return tuple(chunk.strip() for chunk in chunks if chunk.strip())


def _load_file(path: Path, tag: str, created_at: int, breakpoints: bool) -> Migration:
    try:
        sql = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise MigrationError(f"Cannot read migration '{tag}': {exc}", cause=exc) from exc
    return Migration(
        tag=tag,
        created_at=created_at,
        statements=_split_statements(sql, breakpoints),
        hash=hashlib.sha256(sql.encode("utf-8")).hexdigest(),
    )


def read_migrations(migrations_path: Path | str) -> List[Migration]:
    """
    Load migrations from a folder, oldest first.

    Raises
    ------
    MigrationError
        If the folder or journal is missing or malformed.
    """
    folder = Path(migrations_path)
    if not folder.is_dir():
        raise MigrationError(f"Migrations folder not found: {folder}")

    journal_path = folder / "meta" / "_journal.json"
    if not journal_path.exists():
        files = sorted(folder.glob("*.sql"))
        return [
            _load_file(path, path.stem, created_at=position, breakpoints=True)
            for position, path in enumerate(files, start=1)
        ]

    try:
        journal = json.loads(journal_path.read_text(encoding="utf-8"))
        entries = sorted(journal["entries"], key=lambda entry: entry["idx"])
        return [
            _load_file(
                folder / f"{entry['tag']}.sql",
                entry["tag"],
                created_at=int(entry["when"]),
                breakpoints=bool(entry.get("breakpoints", True)),
            )
            for entry in entries
        ]
    except MigrationError:
        raise
    except (OSError, ValueError, KeyError, TypeError) as exc:
        raise MigrationError(f"Invalid migrations journal {journal_path}: {exc}", cause=exc) from exc


async def _ensure_ledger(handle: ConnectionHandle) -> None:
    await handle.execute_script(
        f'CREATE SCHEMA IF NOT EXISTS "{MIGRATIONS_SCHEMA}";\n'
        f"CREATE TABLE IF NOT EXISTS {_LEDGER} ("
        "id SERIAL PRIMARY KEY, hash text NOT NULL, created_at bigint)"
    )


async def _last_applied_at(handle: ConnectionHandle) -> Optional[int]:
    result = await handle.execute(
        f"SELECT id, hash, created_at FROM {_LEDGER} ORDER BY created_at DESC LIMIT 1"
    )
    row = result.first()
    return int(row["created_at"]) if row and row["created_at"] is not None else None


async def apply_migrations(handle: ConnectionHandle, migrations_path: Path | str) -> List[Migration]:
    """
    Apply pending migrations without a deadline. Returns what was applied.

    A migration is pending when its ``created_at`` is newer than the newest
    ledger row. All pending migrations share one transaction.
    """
    migrations = read_migrations(migrations_path)
    try:
        await _ensure_ledger(handle)
        last_applied = await _last_applied_at(handle)
        pending = [m for m in migrations if last_applied is None or m.created_at > last_applied]
        if not pending:
            log.info("[MIGRATE] schema up to date", extra={"known": len(migrations)})
            return []

        async with handle.transaction() as tx:
            for migration in pending:
                log.info(f"[MIGRATE] applying {migration.tag}", extra={"tag": migration.tag})
                for statement in migration.statements:
                    await tx.execute_script(statement)
                await tx.execute(
                    f"INSERT INTO {_LEDGER} (hash, created_at) VALUES (%s, %s)",
                    (migration.hash, migration.created_at),
                )
    except MigrationError:
        raise
    except Exception as exc:
        message = str(exc) or type(exc).__name__
        raise MigrationError(f"Migration failed: {message}", cause=exc) from exc
    return pending


def _log_abandoned(task: "asyncio.Future[Any]") -> None:
    # Retrieve the outcome so an abandoned task never reports as unhandled.
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        log.warning("[MIGRATE] abandoned migration finished with error", extra={"error": str(exc)})
    else:
        log.warning("[MIGRATE] abandoned migration completed after its deadline")


async def migrate(
    handle: ConnectionHandle,
    migrations_path: Path | str,
    deadline: float = MIGRATION_DEADLINE_SECONDS,
) -> List[Migration]:
    """
    Apply pending migrations, giving up after ``deadline`` seconds.

    The application runs as its own task and is raced against the deadline;
    whichever settles first decides the outcome.

    Raises
    ------
    MigrationTimeoutError
        The deadline elapsed first. Statements already sent are not cancelled.
    MigrationError
        The backing store rejected a statement, or the folder is unreadable.
    """
    log.info("[MIGRATE] running database migrations", extra={"deadline": deadline})
    task = asyncio.ensure_future(apply_migrations(handle, migrations_path))
    try:
        done, _ = await asyncio.wait({task}, timeout=deadline)
    except asyncio.CancelledError:
        task.cancel()
        raise

    if task not in done:
        task.add_done_callback(_log_abandoned)
        log.error("[MIGRATE FAILED] deadline exceeded", extra={"deadline": deadline})
        raise MigrationTimeoutError(deadline)

    try:
        applied = task.result()
    except MigrationError as exc:
        log.error("[MIGRATE FAILED]", extra={"error": str(exc)})
        raise
    log.info("[MIGRATE] database migrations completed", extra={"applied": len(applied)})
    return applied


async def applied_migrations(handle: ConnectionHandle) -> List[Dict[str, Any]]:
    """Ledger rows, oldest first. Empty when the ledger does not exist yet."""
    exists = await handle.execute("SELECT to_regclass(%s) IS NOT NULL AS present", (_LEDGER,))
    row = exists.first()
    if not row or not row["present"]:
        return []
    result = await handle.execute(
        f"SELECT id, hash, created_at FROM {_LEDGER} ORDER BY created_at ASC"
    )
    return result.rows


__all__ = [
    "MIGRATIONS_SCHEMA",
    "MIGRATIONS_TABLE",
    "apply_migrations",
    "applied_migrations",
    "migrate",
    "read_migrations",
]
