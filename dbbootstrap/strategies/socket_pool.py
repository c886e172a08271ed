"""
Socket pool strategy: psycopg AsyncConnectionPool against a regular Postgres.

Every ceiling from DatabaseConfig is enforced by something that actually
rejects work: the pool (acquire timeout, idle lifetime, max size), the server
(statement_timeout session option) and the client (query timeout around each
execute).
"""

from __future__ import annotations

import asyncio
import math
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional, Sequence

from psycopg import AsyncConnection
from psycopg.rows import dict_row
from psycopg_pool import AsyncConnectionPool

from dbbootstrap.domain.models import DatabaseConfig, RowSet
from dbbootstrap.strategies.abstract import ConnectionHandle, Executor, TransportStrategy
from dbbootstrap.utils.logging import get_logger

log = get_logger(__name__)

_POOL_CLOSE_TIMEOUT = 5.0


async def _fetch(
    conn: AsyncConnection, statement: str, params: Optional[Sequence[Any]]
) -> RowSet:
    async with conn.cursor() as cur:
        await cur.execute(statement, params)
        if cur.description is None:
            return RowSet(rowcount=cur.rowcount)
        columns = tuple(col.name for col in cur.description)
        rows = await cur.fetchall()
        return RowSet(columns=columns, rows=list(rows), rowcount=cur.rowcount)


class _SocketExecutor(Executor):
    """Executor pinned to one connection (used inside transactions)."""

    def __init__(self, conn: AsyncConnection, query_timeout: float) -> None:
        self._conn = conn
        self._query_timeout = query_timeout

    async def execute(self, statement: str, params: Optional[Sequence[Any]] = None) -> RowSet:
        return await asyncio.wait_for(
            _fetch(self._conn, statement, params), timeout=self._query_timeout
        )

    async def execute_script(self, script: str) -> None:
        # No params: psycopg accepts several statements in one call.
        await asyncio.wait_for(self._conn.execute(script), timeout=self._query_timeout)


class SocketConnectionHandle(ConnectionHandle):
    """ConnectionHandle backed by a psycopg async pool."""

    strategy = "socket"

    def __init__(self, pool: AsyncConnectionPool, query_timeout: float) -> None:
        self._pool_instance: Optional[AsyncConnectionPool] = pool
        self._query_timeout = query_timeout

    def _get_pool(self) -> AsyncConnectionPool:
        if self._pool_instance is None:
            raise RuntimeError("connection handle has been released")
        return self._pool_instance

    async def execute(self, statement: str, params: Optional[Sequence[Any]] = None) -> RowSet:
        async def _run() -> RowSet:
            async with self._get_pool().connection() as conn:
                return await _fetch(conn, statement, params)

        return await asyncio.wait_for(_run(), timeout=self._query_timeout)

    async def execute_script(self, script: str) -> None:
        async def _run() -> None:
            async with self._get_pool().connection() as conn:
                await conn.execute(script)

        await asyncio.wait_for(_run(), timeout=self._query_timeout)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[Executor]:
        async with self._get_pool().connection() as conn:
            async with conn.transaction():
                yield _SocketExecutor(conn, self._query_timeout)

    async def release(self) -> None:
        pool, self._pool_instance = self._pool_instance, None
        if pool is None:
            return
        await pool.close(timeout=_POOL_CLOSE_TIMEOUT)
        log.debug("[RELEASE] socket pool closed", extra={"strategy": self.strategy})


class SocketPoolStrategy(TransportStrategy):
    """
    Open a psycopg AsyncConnectionPool bounded by the config ceilings.

    The pool is opened with ``wait=True`` so construction only succeeds once a
    first connection is established within ``connect_timeout``.
    """

    name: str = "socket"
    description: str = "psycopg AsyncConnectionPool over TCP/Unix sockets."

    def _build_pool(self, config: DatabaseConfig) -> AsyncConnectionPool:
        statement_timeout_ms = int(config.statement_timeout * 1000)
        return AsyncConnectionPool(
            conninfo=config.connection_string,
            min_size=1,
            max_size=config.max_connections,
            open=False,
            name="dbbootstrap-socket",
            timeout=config.connect_timeout,
            max_idle=config.idle_timeout,
            kwargs={
                "autocommit": True,
                "row_factory": dict_row,
                # libpq only accepts whole seconds here.
                "connect_timeout": max(1, math.ceil(config.connect_timeout)),
                "options": f"-c statement_timeout={statement_timeout_ms}",
            },
        )

    async def open(self, config: DatabaseConfig) -> SocketConnectionHandle:
        pool = self._build_pool(config)
        try:
            await pool.open(wait=True, timeout=config.connect_timeout)
        except BaseException:
            await pool.close(timeout=_POOL_CLOSE_TIMEOUT)
            raise
        log.info(
            "[ESTABLISH] socket pool ready",
            extra={"strategy": self.name, "max_connections": config.max_connections},
        )
        return SocketConnectionHandle(pool, query_timeout=config.query_timeout)


__all__ = ["SocketConnectionHandle", "SocketPoolStrategy"]
