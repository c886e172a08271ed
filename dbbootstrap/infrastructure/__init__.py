"""
Infrastructure package for dbbootstrap.

Centralizes connectivity concerns: driver selection, pool establishment and
the WebSocket transport used by edge targets. Keep this layer focused on I/O
and resource management, decoupled from migration and orchestration logic.
"""

from dbbootstrap.infrastructure.db_factory import establish, select_strategy
from dbbootstrap.infrastructure.websocket import (
    WebSocketTunnel,
    configure_websocket_constructor,
    get_websocket_constructor,
)

__all__ = [
    "WebSocketTunnel",
    "configure_websocket_constructor",
    "establish",
    "get_websocket_constructor",
    "select_strategy",
]
