"""Realtime channel to the ux4iot relay over Socket.IO"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional, Protocol

import socketio
from socketio.exceptions import ConnectionError as SocketIOConnectionError

from ..core.constants import CLIENT_DISCONNECT_REASON

logger = logging.getLogger(__name__)

# Events forwarded to channel handlers
CONNECT = "connect"
CONNECT_ERROR = "connect_error"
DISCONNECT = "disconnect"
DATA = "data"


class RealtimeChannel(Protocol):
    """
    Transport carrying lifecycle and data events from the relay.

    Emits ``connect``, ``connect_error(error)``, ``disconnect(reason)`` and
    ``data(payload)``. A disconnect that follows a local ``close()`` carries
    the reason ``io client disconnect``.
    """

    def on(self, event: str, handler: Callable[..., Any]) -> None: ...

    async def open(self, url: str) -> None: ...

    async def close(self) -> None: ...


class SocketIOChannel:
    """
    RealtimeChannel backed by ``socketio.AsyncClient``.

    Socket.IO's own reconnection is disabled; reconnects are driven by the
    connection lifecycle, which opens a fresh channel per session.
    """

    def __init__(self, transports: Optional[List[str]] = None, wait_timeout: float = 15.0):
        self.transports = transports or ["websocket"]
        self.wait_timeout = wait_timeout
        self._handlers: Dict[str, List[Callable[..., Any]]] = {}
        self._closing = False
        self._sio = socketio.AsyncClient(
            reconnection=False,
            logger=logger.getChild("socketio"),
            engineio_logger=logger.getChild("engineio"),
        )
        self._sio.on("connect", handler=self._on_connect)
        self._sio.on("disconnect", handler=self._on_disconnect)
        self._sio.on("connect_error", handler=self._on_connect_error)
        self._sio.on("data", handler=self._on_data)

    def on(self, event: str, handler: Callable[..., Any]) -> None:
        self._handlers.setdefault(event, []).append(handler)

    @property
    def connected(self) -> bool:
        return self._sio.connected

    async def open(self, url: str) -> None:
        """Connect to the relay. Failures are reported as ``connect_error``."""
        self._closing = False
        logger.debug(f"Opening realtime channel to {url}")
        try:
            await self._sio.connect(url, transports=self.transports, wait_timeout=self.wait_timeout)
        except SocketIOConnectionError as e:
            logger.debug(f"Realtime channel connect failed: {e}")
            await self._emit(CONNECT_ERROR, e)

    async def close(self) -> None:
        self._closing = True
        if self._sio.connected:
            await self._sio.disconnect()

    async def _on_connect(self) -> None:
        await self._emit(CONNECT)

    async def _on_connect_error(self, data: Any = None) -> None:
        await self._emit(CONNECT_ERROR, data)

    async def _on_disconnect(self, reason: Any = None) -> None:
        if self._closing:
            reason = CLIENT_DISCONNECT_REASON
        await self._emit(DISCONNECT, reason)

    async def _on_data(self, payload: Any) -> None:
        await self._emit(DATA, payload)

    async def _emit(self, event: str, *args: Any) -> None:
        for handler in self._handlers.get(event, []):
            try:
                result = handler(*args)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                logger.error(f"Error in realtime channel handler for {event}: {e}", exc_info=True)
