"""
Driver selection and connection establishment.

`select_strategy` maps a driver flag to a transport strategy with no side
effects. `establish` opens a pool through that strategy and classifies any
failure as a DatabaseConnectionError. Neither retries: retry policy lives in
the test harness only.
"""

from __future__ import annotations

from typing import Callable, Dict, Optional, Union

from dbbootstrap.domain.models import DatabaseConfig, DriverTag
from dbbootstrap.errors import DatabaseConnectionError
from dbbootstrap.strategies.abstract import ConnectionHandle, TransportStrategy
from dbbootstrap.strategies.edge_pool import EdgePoolStrategy
from dbbootstrap.strategies.socket_pool import SocketPoolStrategy
from dbbootstrap.utils.logging import get_logger

log = get_logger(__name__)


def _strategy_factories() -> Dict[DriverTag, Callable[[], TransportStrategy]]:
    """Registry of available transport strategies."""
    return {
        DriverTag.SOCKET: lambda: SocketPoolStrategy(),
        DriverTag.EDGE: lambda: EdgePoolStrategy(),
    }


def select_strategy(driver: Union[DriverTag, str, None]) -> TransportStrategy:
    """
    Return the transport strategy for a driver flag.

    ``"node"``/``"socket"`` select the socket pool; any other value, including
    None, falls back to the edge WebSocket pool.
    """
    tag = DriverTag.parse(driver)
    if isinstance(driver, str) and tag is DriverTag.EDGE and driver.strip().lower() != "edge":
        log.debug("Unrecognized driver tag; using edge transport", extra={"driver": driver})
    return _strategy_factories()[tag]()


async def establish(
    config: DatabaseConfig, strategy: Optional[TransportStrategy] = None
) -> ConnectionHandle:
    """
    Open a bounded pool for ``config``.

    Parameters
    ----------
    config : DatabaseConfig
        Validated configuration.
    strategy : TransportStrategy | None
        Pre-selected strategy. Selected from ``config.driver`` when None.

    Raises
    ------
    DatabaseConnectionError
        If the pool cannot be constructed within the connect timeout.
    """
    strategy = strategy or select_strategy(config.driver)
    log.info(
        f"[ESTABLISH] opening {strategy.name} pool",
        extra={
            "strategy": strategy.name,
            "dsn": config.redacted_dsn,
            "connect_timeout": config.effective_connect_timeout,
        },
    )
    try:
        return await strategy.open(config)
    except Exception as exc:
        log.error(
            f"[ESTABLISH FAILED] {strategy.name}",
            extra={"strategy": strategy.name, "error": str(exc), "error_type": type(exc).__name__},
        )
        message = str(exc) or type(exc).__name__
        raise DatabaseConnectionError(f"Database connection failed: {message}", cause=exc) from exc


__all__ = ["establish", "select_strategy"]
