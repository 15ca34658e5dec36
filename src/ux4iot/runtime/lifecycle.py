"""
Connection lifecycle: session acquisition, realtime channel and reconnects.

States:
    DISCONNECTED --connect()--> CONNECTING (RECONNECTING after a lost connection)
    CONNECTING --channel connect--> CONNECTED
    CONNECTING --session/channel failure--> DISCONNECTED (+ retry timer)
    CONNECTED --server/network disconnect--> DISCONNECTED (+ retry timer)
    CONNECTED --local close--> DISCONNECTED
    any --destroy()--> DISCONNECTED (terminal)

At most one retry timer is pending at any time.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Any, Callable, Optional

from ..core.constants import CLIENT_DISCONNECT_REASON, RECONNECT_TIMEOUT, ConnectionStatus
from ..core.errors import ConnectivityError, GatewayError
from ..websocket.channel import CONNECT, CONNECT_ERROR, DATA, DISCONNECT, RealtimeChannel, SocketIOChannel
from ..websocket.router import invoke_callback
from .context import SessionContext
from .gateway_client import GatewayClient

logger = logging.getLogger(__name__)

# on_status(reason, description)
StatusCallback = Callable[[str, str], Any]
SessionCallback = Callable[[str], Any]
ChannelFactory = Callable[[], RealtimeChannel]


class LifecycleState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    RECONNECTING = "reconnecting"
    CONNECTED = "connected"


class ConnectionLifecycle:
    """
    Timer-driven connection state machine.

    On every successful connect the session context is switched to the new
    session (dropping all grants and subscriptions) and ``on_session_id`` is
    called so the host application can re-subscribe.

    Usage:
        lifecycle = ConnectionLifecycle(gateway, context, on_data=coordinator.on_data)
        await lifecycle.connect()
        ...
        await lifecycle.destroy()
    """

    def __init__(
        self,
        gateway: GatewayClient,
        context: SessionContext,
        *,
        reconnect_timeout: float = RECONNECT_TIMEOUT,
        channel_factory: Optional[ChannelFactory] = None,
        on_data: Optional[Callable[[Any], Any]] = None,
        on_status: Optional[StatusCallback] = None,
        on_session_id: Optional[SessionCallback] = None,
    ):
        self.gateway = gateway
        self.context = context
        self.reconnect_timeout = reconnect_timeout
        self.channel_factory = channel_factory or SocketIOChannel
        self.on_data = on_data
        self.on_status = on_status
        self.on_session_id = on_session_id

        self._state = LifecycleState.DISCONNECTED
        self._channel: Optional[RealtimeChannel] = None
        self._pending_session_id: Optional[str] = None
        self._retry_handle: Optional[asyncio.TimerHandle] = None
        self._retry_task: Optional[asyncio.Task] = None
        self._was_connected = False
        self._destroyed = False

    @property
    def state(self) -> LifecycleState:
        return self._state

    @property
    def channel(self) -> Optional[RealtimeChannel]:
        return self._channel

    @property
    def retry_pending(self) -> bool:
        return self._retry_handle is not None and not self._retry_handle.cancelled()

    @property
    def destroyed(self) -> bool:
        return self._destroyed

    async def connect(self) -> None:
        """Request a session and open the realtime channel for it."""
        if self._destroyed or self._channel is not None:
            return

        self._state = LifecycleState.RECONNECTING if self._was_connected else LifecycleState.CONNECTING
        try:
            session_id = await self.gateway.create_session()
        except GatewayError as e:
            error = ConnectivityError(f"Could not create session: {e}")
            logger.warning(f"{ConnectionStatus.UX4IOT_OFFLINE.description}: {error}")
            self._state = LifecycleState.DISCONNECTED
            await self._emit_status(ConnectionStatus.UX4IOT_OFFLINE)
            self._schedule_retry()
            return

        if self._destroyed or self._channel is not None:
            return

        self._pending_session_id = session_id
        url = self.gateway.socket_url(session_id)
        channel: Optional[RealtimeChannel] = None
        try:
            channel = self.channel_factory()
            self._channel = channel
            self._bind(channel)
            logger.info(f"Connecting realtime channel to {url}")
            await channel.open(url)
        except Exception as e:
            # a connect_error event may already have handled this channel
            if channel is None or channel is self._channel:
                await self._on_connect_error(e)

    def _bind(self, channel: RealtimeChannel) -> None:
        """Register handlers that ignore events from replaced channels."""
        async def on_connect(*_: Any) -> None:
            if channel is self._channel:
                await self._on_connect()

        async def on_connect_error(error: Any = None) -> None:
            if channel is self._channel:
                await self._on_connect_error(error)

        async def on_disconnect(reason: Any = None) -> None:
            if channel is self._channel:
                await self._on_disconnect(reason)

        async def on_data(payload: Any) -> None:
            if channel is self._channel and self.on_data is not None:
                await invoke_callback(self.on_data, payload)

        channel.on(CONNECT, on_connect)
        channel.on(CONNECT_ERROR, on_connect_error)
        channel.on(DISCONNECT, on_disconnect)
        channel.on(DATA, on_data)

    async def _on_connect(self) -> None:
        session_id = self._pending_session_id
        if not session_id:
            return
        logger.info(f"Connected to {self.gateway.socket_url(session_id)}")

        self.gateway.set_session_id(session_id)
        self.context.start_session(session_id)
        self._state = LifecycleState.CONNECTED
        self._was_connected = True

        # the host re-subscribes from this callback
        if self.on_session_id is not None:
            await invoke_callback(self.on_session_id, session_id)
        await self._emit_status(ConnectionStatus.CONNECTED)
        self._cancel_retry()

    async def _on_connect_error(self, error: Any = None) -> None:
        logger.warning(f"Failed to establish websocket to {self.gateway.endpoint}: {error}")
        await self._drop_channel()
        self._state = LifecycleState.DISCONNECTED
        await self._emit_status(ConnectionStatus.SERVER_UNAVAILABLE)
        self._schedule_retry()

    async def _on_disconnect(self, reason: Any = None) -> None:
        self._state = LifecycleState.DISCONNECTED
        if reason == CLIENT_DISCONNECT_REASON:
            logger.info(f"{ConnectionStatus.CLIENT_DISCONNECTED.description} ({reason})")
            await self._emit_status(ConnectionStatus.CLIENT_DISCONNECTED)
            return

        logger.warning(f"{ConnectionStatus.SERVER_DISCONNECTED.description} ({reason})")
        await self._emit_status(ConnectionStatus.SERVER_DISCONNECTED)
        self._channel = None
        self._schedule_retry()

    async def _drop_channel(self) -> None:
        channel, self._channel = self._channel, None
        if channel is not None:
            try:
                await channel.close()
            except Exception as e:
                logger.debug(f"Closing failed channel raised: {e}")

    async def _emit_status(self, status: ConnectionStatus) -> None:
        if self.on_status is not None:
            await invoke_callback(self.on_status, status.reason, status.description)

    # === Retry timer ===

    def _schedule_retry(self) -> None:
        """(Re)arm the single retry timer."""
        self._cancel_retry()
        if self._destroyed:
            return
        loop = asyncio.get_running_loop()
        self._retry_handle = loop.call_later(self.reconnect_timeout, self._fire_retry)
        logger.debug(f"Reconnect scheduled in {self.reconnect_timeout}s")

    def _cancel_retry(self) -> None:
        if self._retry_handle is not None:
            self._retry_handle.cancel()
            self._retry_handle = None

    def _fire_retry(self) -> None:
        self._retry_handle = None
        if self._destroyed:
            return
        self._retry_task = asyncio.ensure_future(self.connect())
        self._retry_task.add_done_callback(_log_retry_failure)

    async def destroy(self) -> None:
        """Close the channel and stop reconnecting for good."""
        self._destroyed = True
        self._cancel_retry()
        channel = self._channel
        if channel is not None:
            await channel.close()
        self._channel = None
        self._state = LifecycleState.DISCONNECTED
        logger.info(f"Socket with id {self.context.session_id} destroyed")


def _log_retry_failure(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.error(f"Reconnect attempt failed: {error}", exc_info=error)
