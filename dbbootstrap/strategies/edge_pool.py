"""
Edge pool strategy: asyncpg pool tunnelled over a WebSocket.

Serverless Postgres endpoints are only reachable through a WebSocket proxy.
This strategy configures the process-wide WebSocket constructor (once), starts
a loopback WebSocketTunnel, and points an asyncpg pool at it. asyncpg is used
here rather than psycopg because it lets us open the pool against an arbitrary
host/port with every timeout expressed in seconds, which matches the handshake
ceilings the edge transport needs.
"""

from __future__ import annotations

import asyncio
import re
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional, Sequence
from urllib.parse import unquote, urlsplit

import asyncpg

from dbbootstrap.domain.models import DatabaseConfig, RowSet
from dbbootstrap.infrastructure.websocket import (
    WebSocketTunnel,
    build_websocket_url,
    configure_websocket_constructor,
)
from dbbootstrap.strategies.abstract import ConnectionHandle, Executor, TransportStrategy
from dbbootstrap.utils.logging import get_logger

log = get_logger(__name__)

_PLACEHOLDER = re.compile(r"%%|%s")
_POOL_CLOSE_TIMEOUT = 5.0


def to_numeric_placeholders(statement: str) -> str:
    """
    Rewrite ``%s`` placeholders as asyncpg's ``$1, $2, ...``.

    ``%%`` is unescaped to a literal ``%``. Only meaningful for statements
    that carry parameters; see `_prepare_statement`.
    """
    counter = 0

    def _replace(match: "re.Match[str]") -> str:
        nonlocal counter
        if match.group(0) == "%%":
            return "%"
        counter += 1
        return f"${counter}"

    return _PLACEHOLDER.sub(_replace, statement)


def _prepare_statement(statement: str, params: Optional[Sequence[Any]]) -> str:
    # Same rule as psycopg: without params the text is sent as written.
    if params is None:
        return statement
    return to_numeric_placeholders(statement)


def _rowcount_from_status(status: Optional[str], fallback: int) -> int:
    # Command tags look like "INSERT 0 3", "UPDATE 2", "SELECT 5".
    if status:
        last = status.rsplit(" ", 1)[-1]
        if last.isdigit():
            return int(last)
    return fallback


async def _fetch(
    conn: asyncpg.Connection, statement: str, params: Optional[Sequence[Any]]
) -> RowSet:
    prepared = await conn.prepare(_prepare_statement(statement, params))
    records = await prepared.fetch(*(params or ()))
    columns = tuple(attr.name for attr in prepared.get_attributes())
    rows = [dict(record) for record in records]
    return RowSet(
        columns=columns,
        rows=rows,
        rowcount=_rowcount_from_status(prepared.get_statusmsg(), len(rows)),
    )


class _EdgeExecutor(Executor):
    """Executor pinned to one asyncpg connection."""

    def __init__(self, conn: asyncpg.Connection, query_timeout: float) -> None:
        self._conn = conn
        self._query_timeout = query_timeout

    async def execute(self, statement: str, params: Optional[Sequence[Any]] = None) -> RowSet:
        return await asyncio.wait_for(
            _fetch(self._conn, statement, params), timeout=self._query_timeout
        )

    async def execute_script(self, script: str) -> None:
        await self._conn.execute(script, timeout=self._query_timeout)


class EdgeConnectionHandle(ConnectionHandle):
    """ConnectionHandle backed by an asyncpg pool and the tunnel it rides on."""

    strategy = "edge"

    def __init__(
        self,
        pool: asyncpg.Pool,
        tunnel: WebSocketTunnel,
        query_timeout: float,
        acquire_timeout: float,
    ) -> None:
        self._pool_instance: Optional[asyncpg.Pool] = pool
        self._tunnel = tunnel
        self._query_timeout = query_timeout
        # Waiting for a free connection is bounded like the socket pool's `timeout`.
        self._acquire_timeout = acquire_timeout

    def _get_pool(self) -> asyncpg.Pool:
        if self._pool_instance is None:
            raise RuntimeError("connection handle has been released")
        return self._pool_instance

    async def execute(self, statement: str, params: Optional[Sequence[Any]] = None) -> RowSet:
        async def _run() -> RowSet:
            async with self._get_pool().acquire(timeout=self._acquire_timeout) as conn:
                return await _fetch(conn, statement, params)

        return await asyncio.wait_for(_run(), timeout=self._query_timeout)

    async def execute_script(self, script: str) -> None:
        async with self._get_pool().acquire(timeout=self._acquire_timeout) as conn:
            await conn.execute(script, timeout=self._query_timeout)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[Executor]:
        async with self._get_pool().acquire(timeout=self._acquire_timeout) as conn:
            async with conn.transaction():
                yield _EdgeExecutor(conn, self._query_timeout)

    async def release(self) -> None:
        pool, self._pool_instance = self._pool_instance, None
        if pool is None:
            return
        try:
            await asyncio.wait_for(pool.close(), timeout=_POOL_CLOSE_TIMEOUT)
        except asyncio.TimeoutError:
            log.warning("[RELEASE] edge pool did not close in time; terminating")
            pool.terminate()
        finally:
            await self._tunnel.close()
        log.debug("[RELEASE] edge pool closed", extra={"strategy": self.strategy})


class EdgePoolStrategy(TransportStrategy):
    """
    Open an asyncpg pool through a WebSocket tunnel.

    The whole pool creation, WebSocket handshake included, is bounded by
    ``edge_connect_timeout``.
    """

    name: str = "edge"
    description: str = "asyncpg pool over a WebSocket tunnel to a serverless proxy."

    def _connect_kwargs(self, config: DatabaseConfig) -> dict[str, Any]:
        parts = urlsplit(config.connection_string)
        return {
            "user": unquote(parts.username) if parts.username else None,
            "password": unquote(parts.password) if parts.password else None,
            "database": parts.path.lstrip("/") or None,
        }

    async def open(self, config: DatabaseConfig) -> EdgeConnectionHandle:
        constructor = configure_websocket_constructor()
        tunnel = WebSocketTunnel(
            build_websocket_url(config.host, config.port),
            constructor,
            connect_timeout=config.edge_connect_timeout,
        )
        await tunnel.start()
        statement_timeout_ms = int(config.statement_timeout * 1000)
        try:
            pool = await asyncio.wait_for(
                asyncpg.create_pool(
                    host=tunnel.host,
                    port=tunnel.port,
                    # TLS is terminated by the wss:// hop.
                    ssl=False,
                    min_size=1,
                    max_size=config.max_connections,
                    timeout=config.edge_connect_timeout,
                    command_timeout=config.query_timeout,
                    max_inactive_connection_lifetime=config.idle_timeout,
                    server_settings={"statement_timeout": str(statement_timeout_ms)},
                    **self._connect_kwargs(config),
                ),
                timeout=config.edge_connect_timeout,
            )
        except BaseException:
            await tunnel.close()
            raise
        log.info(
            "[ESTABLISH] edge pool ready",
            extra={"strategy": self.name, "max_connections": config.max_connections},
        )
        return EdgeConnectionHandle(
            pool,
            tunnel,
            query_timeout=config.query_timeout,
            acquire_timeout=config.edge_connect_timeout,
        )


__all__ = ["EdgeConnectionHandle", "EdgePoolStrategy", "to_numeric_placeholders"]
