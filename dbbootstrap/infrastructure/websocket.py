"""
WebSocket transport for edge (serverless) Postgres targets.

Edge databases only accept the Postgres wire protocol tunnelled through a
WebSocket proxy. asyncpg speaks plain TCP, so WebSocketTunnel listens on a
loopback port and relays each accepted TCP stream over its own WebSocket.

The WebSocket constructor is process-wide state. It is stored in a set-once
cell: the first configuration wins, repeating it with the same constructor is
a no-op, and trying to swap in a different one raises.
"""

from __future__ import annotations

import asyncio
import threading
from typing import Any, Awaitable, Callable, Generic, Optional, Set, TypeVar

import websockets
from websockets.exceptions import WebSocketException

from dbbootstrap.utils.logging import get_logger

log = get_logger(__name__)

T = TypeVar("T")

WebSocketConstructor = Callable[[str], Awaitable[Any]]

_RELAY_CHUNK_SIZE = 64 * 1024


class SetOnceCell(Generic[T]):
    """Thread-safe cell that can be assigned exactly once."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._value: Optional[T] = None

    def set(self, value: T) -> T:
        with self._lock:
            if self._value is None:
                self._value = value
            elif self._value is not value:
                raise RuntimeError(
                    "WebSocket constructor is already configured for this process; "
                    "it cannot be replaced"
                )
            return self._value

    def get(self) -> Optional[T]:
        return self._value

    @property
    def is_set(self) -> bool:
        return self._value is not None


_CONSTRUCTOR: SetOnceCell[WebSocketConstructor] = SetOnceCell()


def configure_websocket_constructor(
    constructor: Optional[WebSocketConstructor] = None,
) -> WebSocketConstructor:
    """
    Configure the process-wide WebSocket constructor, once.

    Parameters
    ----------
    constructor : callable | None
        Coroutine factory ``constructor(url) -> websocket``. Defaults to
        ``websockets.connect``. Ignored when a constructor is already set,
        unless it differs from the stored one, in which case RuntimeError is
        raised.

    Returns
    -------
    callable
        The constructor in effect.
    """
    existing = _CONSTRUCTOR.get()
    if constructor is None:
        if existing is not None:
            return existing
        constructor = websockets.connect
    configured = _CONSTRUCTOR.set(constructor)
    log.debug("WebSocket constructor configured", extra={"constructor": repr(configured)})
    return configured


def get_websocket_constructor() -> Optional[WebSocketConstructor]:
    return _CONSTRUCTOR.get()


def build_websocket_url(host: str, port: int) -> str:
    """Proxy endpoint for an edge host; the proxy dials ``address`` on our behalf."""
    return f"wss://{host}/v2?address={host}:{port}"


class WebSocketTunnel:
    """
    Loopback TCP listener that relays every accepted stream over a WebSocket.

    Each client connection gets its own WebSocket, so pooled connections stay
    independent. A handshake that does not complete within
    ``connect_timeout`` drops the client, which the Postgres driver then
    reports as a connection failure.
    """

    def __init__(
        self,
        url: str,
        constructor: WebSocketConstructor,
        connect_timeout: float,
    ) -> None:
        self.url = url
        self._constructor = constructor
        self._connect_timeout = connect_timeout
        self._server: Optional[asyncio.AbstractServer] = None
        self._relays: Set[asyncio.Task] = set()
        self.host = "127.0.0.1"
        self.port = 0

    @property
    def is_running(self) -> bool:
        return self._server is not None

    async def start(self) -> None:
        if self._server is not None:
            return
        self._server = await asyncio.start_server(self._handle_client, host=self.host, port=0)
        self.port = self._server.sockets[0].getsockname()[1]
        log.debug("WebSocket tunnel listening", extra={"port": self.port, "url": self.url})

    async def close(self) -> None:
        server, self._server = self._server, None
        if server is None:
            return
        server.close()
        for task in list(self._relays):
            task.cancel()
        if self._relays:
            await asyncio.gather(*self._relays, return_exceptions=True)
        await server.wait_closed()
        log.debug("WebSocket tunnel closed", extra={"url": self.url})

    async def _handle_client(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ) -> None:
        task = asyncio.current_task()
        if task is not None:
            self._relays.add(task)
        try:
            try:
                ws = await asyncio.wait_for(self._constructor(self.url), timeout=self._connect_timeout)
            except (OSError, asyncio.TimeoutError, WebSocketException) as exc:
                log.warning(
                    "WebSocket handshake failed",
                    extra={"url": self.url, "error": str(exc), "error_type": type(exc).__name__},
                )
                return
            try:
                await self._relay(reader, writer, ws)
            finally:
                await ws.close()
        finally:
            writer.close()
            try:
                await writer.wait_closed()
            except OSError:
                pass
            if task is not None:
                self._relays.discard(task)

    @staticmethod
    async def _relay(
        reader: asyncio.StreamReader, writer: asyncio.StreamWriter, ws: Any
    ) -> None:
        async def upstream() -> None:
            while True:
                chunk = await reader.read(_RELAY_CHUNK_SIZE)
                if not chunk:
                    return
                await ws.send(chunk)

        async def downstream() -> None:
            async for message in ws:
                writer.write(message if isinstance(message, bytes) else message.encode())
                await writer.drain()

        pumps = [asyncio.ensure_future(upstream()), asyncio.ensure_future(downstream())]
        try:
            await asyncio.wait(pumps, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for pump in pumps:
                pump.cancel()
            await asyncio.gather(*pumps, return_exceptions=True)


__all__ = [
    "SetOnceCell",
    "WebSocketTunnel",
    "build_websocket_url",
    "configure_websocket_constructor",
    "get_websocket_constructor",
]
