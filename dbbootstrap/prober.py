"""
Connectivity probes run against an established handle.
"""

from __future__ import annotations

from typing import Any, Dict

from dbbootstrap.errors import ConnectivityError
from dbbootstrap.strategies.abstract import ConnectionHandle
from dbbootstrap.utils.logging import get_logger

log = get_logger(__name__)

PROBE_STATEMENT = "SELECT 1 AS test"
SERVER_INFO_STATEMENT = "SELECT NOW() AS current_time, version() AS pg_version"


async def probe(handle: ConnectionHandle) -> None:
    """
    Confirm the remote endpoint answers a trivial round trip.

    Raises
    ------
    ConnectivityError
        If the statement fails or returns no row.
    """
    try:
        result = await handle.execute(PROBE_STATEMENT)
    except Exception as exc:
        log.error("[PROBE FAILED]", extra={"strategy": handle.strategy, "error": str(exc)})
        message = str(exc) or type(exc).__name__
        raise ConnectivityError(f"Database connection test failed: {message}", cause=exc) from exc
    if not result.rows:
        raise ConnectivityError("Database connection test returned no rows")
    log.info("[PROBE] database connection verified", extra={"strategy": handle.strategy})


async def server_info(handle: ConnectionHandle) -> Dict[str, Any]:
    """Read the server clock and version string, for diagnostics."""
    try:
        result = await handle.execute(SERVER_INFO_STATEMENT)
    except Exception as exc:
        raise ConnectivityError(f"Server info query failed: {exc}", cause=exc) from exc
    row = result.first()
    if row is None:
        raise ConnectivityError("Server info query returned no rows")
    return row


__all__ = ["PROBE_STATEMENT", "probe", "server_info"]
