from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any, List

import pytest

from dbbootstrap import orchestrator
from dbbootstrap.domain.models import DatabaseConfig
from dbbootstrap.errors import (
    BootstrapError,
    ConfigError,
    ConnectivityError,
    DatabaseConnectionError,
    MigrationError,
    MigrationTimeoutError,
)
from dbbootstrap.orchestrator import bootstrap, prepare_database
from dbbootstrap.strategies.abstract import TransportStrategy

SLOW_STATEMENT_SECONDS = 0.3
SHORT_DEADLINE = 0.05


class _EstablishRecorder:
    """Replaces `establish`; hands out pre-built fake handles in order."""

    def __init__(self, *outcomes: Any) -> None:
        self._outcomes = list(outcomes)
        self.calls: List[TransportStrategy] = []

    async def __call__(self, config: DatabaseConfig, strategy: TransportStrategy) -> Any:
        self.calls.append(strategy)
        outcome = self._outcomes.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


@pytest.fixture
def patch_establish(monkeypatch):
    def _patch(*outcomes: Any) -> _EstablishRecorder:
        recorder = _EstablishRecorder(*outcomes)
        monkeypatch.setattr(orchestrator, "establish", recorder)
        return recorder

    return _patch


@pytest.mark.asyncio
async def test_bootstrap_returns_migrated_handle(
    patch_establish, fake_handle_cls, socket_config: DatabaseConfig
) -> None:
    handle = fake_handle_cls()
    recorder = patch_establish(handle)

    result = await bootstrap(socket_config)

    assert result is handle
    assert recorder.calls[0].name == "socket"
    assert handle.statements[0] == "SELECT 1 AS test"
    assert len(handle.ledger) == 2
    assert handle.release_calls == 0


@pytest.mark.asyncio
async def test_establish_failure_is_tagged_and_nothing_to_release(
    patch_establish, socket_config: DatabaseConfig
) -> None:
    cause = DatabaseConnectionError("Database connection failed: refused")
    patch_establish(cause)

    with pytest.raises(BootstrapError) as excinfo:
        await bootstrap(socket_config)

    assert excinfo.value.stage == "establish"
    assert excinfo.value.cause is cause


@pytest.mark.asyncio
async def test_probe_failure_releases_exactly_once(
    patch_establish, fake_handle_cls, socket_config: DatabaseConfig
) -> None:
    handle = fake_handle_cls(fail_probe=ConnectionResetError("reset by peer"))
    patch_establish(handle)

    with pytest.raises(BootstrapError) as excinfo:
        await bootstrap(socket_config)

    assert excinfo.value.stage == "probe"
    assert isinstance(excinfo.value.cause, ConnectivityError)
    assert handle.release_calls == 1
    assert not handle.scripts


@pytest.mark.asyncio
async def test_migrate_failure_releases_exactly_once(
    patch_establish, fake_handle_cls, socket_config: DatabaseConfig
) -> None:
    handle = fake_handle_cls(fail_script="sessions")
    patch_establish(handle)

    with pytest.raises(BootstrapError) as excinfo:
        await bootstrap(socket_config)

    assert excinfo.value.stage == "migrate"
    assert isinstance(excinfo.value.cause, MigrationError)
    assert handle.release_calls == 1


@pytest.mark.asyncio
async def test_release_error_does_not_mask_stage_error(
    patch_establish, fake_handle_cls, socket_config: DatabaseConfig
) -> None:
    handle = fake_handle_cls(
        fail_probe=ConnectionResetError("reset"), release_error=OSError("already closed")
    )
    patch_establish(handle)

    with pytest.raises(BootstrapError) as excinfo:
        await bootstrap(socket_config)

    assert excinfo.value.stage == "probe"
    assert handle.release_calls == 1


@pytest.mark.asyncio
async def test_migration_deadline_is_tagged_migrate(
    monkeypatch, tmp_path: Path, patch_establish, fake_handle_cls, socket_config: DatabaseConfig
) -> None:
    monkeypatch.setattr(orchestrator, "MIGRATION_DEADLINE_SECONDS", SHORT_DEADLINE)
    (tmp_path / "001_slow.sql").write_text("CREATE TABLE slow (id int);", encoding="utf-8")
    config = socket_config.model_copy(update={"migrations_path": tmp_path})
    handle = fake_handle_cls(script_delay=SLOW_STATEMENT_SECONDS)
    patch_establish(handle)

    with pytest.raises(BootstrapError) as excinfo:
        await bootstrap(config)

    assert excinfo.value.stage == "migrate"
    assert isinstance(excinfo.value.cause, MigrationTimeoutError)
    assert handle.release_calls == 1
    # Let the abandoned application settle before the loop closes.
    await asyncio.sleep(SLOW_STATEMENT_SECONDS * 2)


@pytest.mark.asyncio
async def test_bootstrap_twice_applies_once(
    patch_establish, fake_handle_cls, socket_config: DatabaseConfig
) -> None:
    shared_ledger: list = []
    first = fake_handle_cls(ledger=shared_ledger)
    second = fake_handle_cls(ledger=shared_ledger)
    patch_establish(first, second)

    await bootstrap(socket_config)
    await bootstrap(socket_config)

    assert first.ledger_inserts == 2
    assert second.ledger_inserts == 0
    assert len(shared_ledger) == 2


@pytest.mark.asyncio
async def test_skip_migrations(patch_establish, fake_handle_cls, socket_config: DatabaseConfig) -> None:
    handle = fake_handle_cls()
    patch_establish(handle)

    await bootstrap(socket_config, run_migrations=False)

    assert handle.scripts == []
    assert handle.ledger == []


@pytest.mark.asyncio
async def test_missing_configuration_fails_before_establish(
    monkeypatch, patch_establish, make_settings
) -> None:
    recorder = patch_establish()
    monkeypatch.setattr(orchestrator, "get_settings", lambda: make_settings())

    with pytest.raises(ConfigError, match="DATABASE_TEST_URL"):
        await bootstrap()

    assert recorder.calls == []


def test_prepare_database_releases_handle(
    patch_establish, fake_handle_cls, socket_config: DatabaseConfig
) -> None:
    handle = fake_handle_cls()
    patch_establish(handle)

    assert prepare_database(socket_config) is None

    assert handle.release_calls == 1
    assert len(handle.ledger) == 2


@pytest.mark.asyncio
async def test_prepare_database_refuses_running_loop(socket_config: DatabaseConfig) -> None:
    with pytest.raises(RuntimeError, match="async context"):
        prepare_database(socket_config)
