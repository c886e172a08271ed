"""
Bootstrap orchestrator: select -> establish -> probe -> migrate.

Usage:
    from dbbootstrap.orchestrator import bootstrap

    handle = await bootstrap()          # config loaded from the environment
    rows = await handle.execute("SELECT 1")
    await handle.release()

Stages run strictly in order and each failure short-circuits the rest. The
orchestrator never retries; a failed call returns a BootstrapError tagged with
the stage that failed, after releasing any pool it opened.
"""

from __future__ import annotations

import asyncio
from typing import Optional

from dbbootstrap.config import get_settings
from dbbootstrap.domain.models import MIGRATION_DEADLINE_SECONDS, DatabaseConfig
from dbbootstrap.errors import BootstrapError, DatabaseBootstrapError
from dbbootstrap.infrastructure.db_factory import establish, select_strategy
from dbbootstrap.migrator import migrate
from dbbootstrap.prober import probe
from dbbootstrap.strategies.abstract import ConnectionHandle
from dbbootstrap.utils.logging import get_logger
from dbbootstrap.utils.timing import time_stage

log = get_logger(__name__)


def load_config(target: str = "test") -> DatabaseConfig:
    """Build the config from environment settings; raises ConfigError."""
    return DatabaseConfig.from_settings(get_settings(), target=target)


async def _release_after_failure(handle: ConnectionHandle, stage: str) -> None:
    try:
        await handle.release()
    except Exception as exc:
        # The stage error is what the caller needs; keep the release failure in logs.
        log.warning(
            "[RELEASE] failed to release handle after stage failure",
            extra={"stage": stage, "error": str(exc)},
        )


async def bootstrap(
    config: Optional[DatabaseConfig] = None,
    *,
    run_migrations: bool = True,
) -> ConnectionHandle:
    """
    Open, verify and migrate a database, returning a ready handle.

    Parameters
    ----------
    config : DatabaseConfig | None
        Validated configuration. Loaded from the environment (test target)
        when None, which raises ConfigError before any connection attempt if
        DATABASE_TEST_URL is unset.
    run_migrations : bool
        Skip the migrate stage when False (used by ``check``-style callers
        that only need reachability).

    Returns
    -------
    ConnectionHandle
        Owned by the caller, who must eventually call ``release()``.

    Raises
    ------
    ConfigError
        Configuration could not be loaded.
    BootstrapError
        A stage failed; ``stage`` is one of establish/probe/migrate and
        ``cause`` is the classified stage error.
    """
    if config is None:
        config = load_config()

    log.info("Initializing database instance", extra={"driver": config.driver.value})
    strategy = select_strategy(config.driver)

    with time_stage("establish") as timing:
        try:
            handle = await establish(config, strategy)
        except DatabaseBootstrapError as exc:
            raise BootstrapError("establish", exc) from exc
    log.info(
        f"[ESTABLISH] connected in {timing.duration_ms:.0f}ms",
        extra={"strategy": strategy.name, "duration_ms": round(timing.duration_ms, 1)},
    )

    stage = "probe"
    try:
        await probe(handle)
        if run_migrations:
            stage = "migrate"
            with time_stage("migrate") as timing:
                await migrate(handle, config.migrations_path, deadline=MIGRATION_DEADLINE_SECONDS)
            log.info(
                f"[MIGRATE] finished in {timing.duration_ms:.0f}ms",
                extra={"duration_ms": round(timing.duration_ms, 1)},
            )
    except DatabaseBootstrapError as exc:
        await _release_after_failure(handle, stage)
        raise BootstrapError(stage, exc) from exc
    except BaseException:
        # Cancellation or an unexpected bug: still never leak the pool.
        await _release_after_failure(handle, stage)
        raise

    log.info("[BOOTSTRAP COMPLETE]", extra={"strategy": strategy.name})
    return handle


def prepare_database(
    config: Optional[DatabaseConfig] = None,
    *,
    run_migrations: bool = True,
) -> None:
    """
    Synchronous bootstrap for callers without an event loop (CLI, scripts).

    Runs the full bootstrap and releases the handle before returning, so the
    only lasting effect is a verified, migrated database.
    """
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        pass
    else:
        raise RuntimeError(
            "prepare_database() cannot be called from an async context; await bootstrap() instead"
        )

    async def _run() -> None:
        handle = await bootstrap(config, run_migrations=run_migrations)
        await handle.release()

    asyncio.run(_run())


__all__ = ["bootstrap", "load_config", "prepare_database"]
