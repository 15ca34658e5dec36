"""
Ux4iot coordinator - main entry point for ux4iot clients.

Usage:
    from ux4iot import Ux4iotConfig, Ux4iotCoordinator, SubscriptionRequest

    async def on_session(session_id):
        await coordinator.subscribe("widget-1", request, on_data)

    coordinator = Ux4iotCoordinator(
        Ux4iotConfig(admin_connection_string="HostName=...;Key=..."),
        on_session_id=on_session,
    )
    await coordinator.connect()
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from functools import partial
from typing import Any, AsyncIterator, Callable, Optional, Union

from .config import Ux4iotConfig
from .core.errors import GatewayError, GrantError, SubscriptionError
from .core.types import (
    DirectMethodParams,
    GrantRequest,
    GrantType,
    Outcome,
    SubscriptionDescriptor,
    SubscriptionRequest,
    SubscriptionType,
    parse_message,
)
from .runtime.context import SessionContext
from .runtime.gateway_client import GatewayClient
from .runtime.lifecycle import (
    ChannelFactory,
    ConnectionLifecycle,
    LifecycleState,
    SessionCallback,
    StatusCallback,
)
from .websocket.channel import SocketIOChannel
from .websocket.registry import DataCallback
from .websocket.router import MessageRouter, invoke_callback

logger = logging.getLogger(__name__)

ErrorCallback = Callable[[Any], Any]
RequestLike = Union[SubscriptionRequest, dict[str, Any]]


@dataclass
class _DescriptorLock:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


class Ux4iotCoordinator:
    """
    Client-side coordinator for the ux4iot relay.

    Features:
    - Many local subscribers share one physical subscription per descriptor
    - Grants are cached per session
    - Inbound messages are routed to every matching subscriber callback
    - Transparent reconnects; ``on_session_id`` fires after each one so the
      host can re-subscribe
    """

    def __init__(
        self,
        config: Ux4iotConfig,
        *,
        on_session_id: Optional[SessionCallback] = None,
        on_connection_update: Optional[StatusCallback] = None,
        gateway: Optional[GatewayClient] = None,
        channel_factory: Optional[ChannelFactory] = None,
        context: Optional[SessionContext] = None,
    ):
        """
        Initialize coordinator.

        Args:
            config: Client configuration
            on_session_id: Called with every new session id (re-subscribe here)
            on_connection_update: Called with ``(reason, description)`` on status changes
            gateway: Relay client (default: GatewayClient built from config)
            channel_factory: Creates realtime channels (default: SocketIOChannel)
            context: Session state (default: a fresh SessionContext)
        """
        self.config = config.validate()
        self.context = context or SessionContext()
        self.gateway = gateway or GatewayClient(config)
        self.router = MessageRouter()
        self.lifecycle = ConnectionLifecycle(
            self.gateway,
            self.context,
            reconnect_timeout=config.reconnect_timeout,
            channel_factory=channel_factory or partial(SocketIOChannel, transports=config.transports),
            on_data=self.on_data,
            on_status=on_connection_update,
            on_session_id=on_session_id,
        )
        self._locks: dict[SubscriptionDescriptor, _DescriptorLock] = {}

    @property
    def session_id(self) -> Optional[str]:
        return self.context.session_id

    @property
    def state(self) -> LifecycleState:
        return self.lifecycle.state

    async def connect(self) -> None:
        await self.lifecycle.connect()

    async def destroy(self) -> None:
        await self.lifecycle.destroy()
        await self.gateway.close()

    async def __aenter__(self) -> Ux4iotCoordinator:
        await self.connect()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.destroy()

    # === Subscriptions ===

    async def subscribe(
        self,
        subscriber_id: str,
        request: RequestLike,
        on_data: DataCallback,
        on_subscription_error: Optional[ErrorCallback] = None,
        on_grant_error: Optional[ErrorCallback] = None,
    ) -> Outcome:
        """
        Subscribe a local subscriber to device data.

        Flow:
        1. Ensure the grant (cached per session)
        2. Deliver the last known value to ``on_data``
        3. Subscribe remotely if this is the first reference to the descriptor
        4. Register the subscription locally

        Raises:
            PreconditionError: If no session is established
        """
        request = _as_request(request)
        session_id = self.context.require_session()
        generation = self.context.generation
        descriptor = request.descriptor(session_id)

        async with self._serialized(descriptor):
            denied = await self._ensure_grant(descriptor.grant_request(), on_grant_error)
            if denied:
                return denied
            if not self.context.is_current(generation):
                return Outcome.stale()

            try:
                last_value = await self.gateway.get_last_value(descriptor)
                if not self.context.is_current(generation):
                    return Outcome.stale()
                await invoke_callback(on_data, last_value.device_id, last_value.data, last_value.timestamp)

                # refcount is read before registering; only the first reference subscribes remotely
                if self.context.registry.reference_count(descriptor) == 0:
                    await self.gateway.subscribe(descriptor)
            except GatewayError as e:
                return await self._subscription_failed(e, request, on_subscription_error)

            if not self.context.is_current(generation):
                return Outcome.stale()
            self.context.registry.add(subscriber_id, descriptor, on_data)
            return Outcome.success(descriptor)

    async def subscribe_many(
        self,
        subscriber_id: str,
        device_id: str,
        telemetry_keys: list[str],
        on_data: DataCallback,
        on_subscription_error: Optional[ErrorCallback] = None,
        on_grant_error: Optional[ErrorCallback] = None,
    ) -> list[Outcome]:
        """Subscribe to several telemetry keys of one device."""
        outcomes = []
        for telemetry_key in telemetry_keys:
            request = SubscriptionRequest(type=SubscriptionType.TELEMETRY, device_id=device_id, telemetry_key=telemetry_key)
            outcomes.append(
                await self.subscribe(subscriber_id, request, on_data, on_subscription_error, on_grant_error)
            )
        return outcomes

    async def unsubscribe(
        self,
        subscriber_id: str,
        request: RequestLike,
        on_subscription_error: Optional[ErrorCallback] = None,
        on_grant_error: Optional[ErrorCallback] = None,
    ) -> Outcome:
        """
        Remove one subscription of a subscriber.

        The remote unsubscribe is only sent when the last reference to the
        descriptor goes away. Unsubscribing something the subscriber does not
        hold is a no-op.

        Raises:
            PreconditionError: If no session is established
        """
        request = _as_request(request)
        session_id = self.context.require_session()
        generation = self.context.generation
        descriptor = request.descriptor(session_id)

        async with self._serialized(descriptor):
            denied = await self._ensure_grant(descriptor.grant_request(), on_grant_error)
            if denied:
                return denied
            if not self.context.is_current(generation):
                return Outcome.stale()

            registry = self.context.registry
            if not registry.has(subscriber_id, descriptor):
                return Outcome.success()

            if registry.reference_count(descriptor) == 1:
                try:
                    await self.gateway.unsubscribe(descriptor)
                except GatewayError as e:
                    return await self._subscription_failed(e, request, on_subscription_error)
                if not self.context.is_current(generation):
                    return Outcome.stale()

            registry.remove(subscriber_id, descriptor)
            return Outcome.success(descriptor)

    async def unsubscribe_all(self) -> None:
        """Unsubscribe every subscriber from everything."""
        for record in self.context.registry.snapshot():
            await self.unsubscribe(record.subscriber_id, record.descriptor.request())

    async def remove_subscriber_id(self, subscriber_id: str) -> None:
        """
        Drop all subscriptions of one subscriber.

        Best effort: failures are logged and cleanup continues. Local records
        of the subscriber are always cleared.
        """
        for record in self.context.registry.records_for_subscriber(subscriber_id):
            try:
                outcome = await self.unsubscribe(subscriber_id, record.descriptor.request())
                if not outcome.ok:
                    logger.warning(f"Couldn't unsubscribe subscriberId {subscriber_id}: {outcome.status.value} {outcome.reason}")
            except Exception as e:
                logger.warning(f"Couldn't unsubscribe subscriberId {subscriber_id}: {e}")
        self.context.registry.remove_all_for_subscriber(subscriber_id)

    def has_subscription(self, subscriber_id: str, request: RequestLike) -> bool:
        if not self.context.session_id:
            return False
        descriptor = _as_request(request).descriptor(self.context.session_id)
        return self.context.registry.has(subscriber_id, descriptor)

    def get_subscriber_id_subscriptions(self, subscriber_id: str) -> dict[str, list[str]]:
        return self.context.registry.list_for_subscriber(subscriber_id)

    # === Grants and device actions ===

    async def grant(
        self,
        grant_request: Union[GrantRequest, dict[str, Any]],
        on_grant_error: Optional[ErrorCallback] = None,
    ) -> Outcome:
        """
        Ensure a grant for the current session.

        Raises:
            PreconditionError: If no session is established
        """
        if not isinstance(grant_request, GrantRequest):
            grant_request = GrantRequest.model_validate(grant_request)
        session_id = self.context.require_session()
        generation = self.context.generation
        grant = grant_request.with_session(session_id)
        denied = await self._ensure_grant(grant, on_grant_error)
        if denied:
            return denied
        if not self.context.is_current(generation):
            return Outcome.stale()
        return Outcome.success(grant)

    async def patch_desired_properties(
        self,
        device_id: str,
        desired_property_patch: dict[str, Any],
        on_grant_error: Optional[ErrorCallback] = None,
    ) -> Outcome:
        """Patch desired properties of a device twin. Gateway errors propagate."""
        generation = self.context.generation
        grant = GrantRequest(
            type=GrantType.MODIFY_DESIRED_PROPERTIES,
            device_id=device_id,
            session_id=self.context.require_session(),
        )
        denied = await self._ensure_grant(grant, on_grant_error)
        if denied:
            return denied
        # a grant answered after a reconnect belongs to the previous session
        if not self.context.is_current(generation):
            return Outcome.stale()
        response = await self.gateway.patch_desired_properties(device_id, desired_property_patch)
        return Outcome.success(response)

    async def invoke_direct_method(
        self,
        device_id: str,
        params: Union[DirectMethodParams, dict[str, Any]],
        on_grant_error: Optional[ErrorCallback] = None,
    ) -> Outcome:
        """Invoke a direct method on a device. Gateway errors propagate."""
        if not isinstance(params, DirectMethodParams):
            params = DirectMethodParams.model_validate(params)
        generation = self.context.generation
        grant = GrantRequest(
            type=GrantType.INVOKE_DIRECT_METHOD,
            device_id=device_id,
            session_id=self.context.require_session(),
            direct_method_name=params.method_name,
        )
        denied = await self._ensure_grant(grant, on_grant_error)
        if denied:
            return denied
        # a grant answered after a reconnect belongs to the previous session
        if not self.context.is_current(generation):
            return Outcome.stale()
        response = await self.gateway.invoke_direct_method(device_id, params)
        return Outcome.success(response)

    # === Inbound data ===

    async def on_data(self, payload: Any) -> int:
        """
        Route one inbound realtime payload to matching subscribers.

        Returns:
            Number of callbacks that completed successfully
        """
        message = parse_message(payload)
        if message is None:
            return 0
        deliveries = self.router.route(message, self.context.registry.snapshot())
        return await self.router.deliver(deliveries, message.device_id)

    # === Internals ===

    @asynccontextmanager
    async def _serialized(self, descriptor: SubscriptionDescriptor) -> AsyncIterator[None]:
        """Per-descriptor lock linearizing subscribe/unsubscribe; dropped once unused."""
        entry = self._locks.get(descriptor)
        if entry is None:
            entry = self._locks[descriptor] = _DescriptorLock()
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0 and self._locks.get(descriptor) is entry:
                del self._locks[descriptor]

    async def _ensure_grant(self, grant: GrantRequest, on_grant_error: Optional[ErrorCallback]) -> Optional[Outcome]:
        """Returns None when granted, a grant-denied outcome otherwise."""
        try:
            await self.context.grants.ensure_grant(grant, self.gateway.request_grant)
        except GrantError as e:
            if on_grant_error is not None:
                await invoke_callback(on_grant_error, e.response)
            return Outcome.grant_denied(e.response)
        return None

    async def _subscription_failed(
        self,
        error: GatewayError,
        request: SubscriptionRequest,
        on_subscription_error: Optional[ErrorCallback],
    ) -> Outcome:
        failure = SubscriptionError(error.body if error.body is not None else str(error), request)
        logger.warning(f"{failure} ({request.type.value} on {request.device_id})")
        if on_subscription_error is not None:
            await invoke_callback(on_subscription_error, failure.reason)
        return Outcome.subscription_failed(failure.reason)


def _as_request(request: RequestLike) -> SubscriptionRequest:
    if isinstance(request, SubscriptionRequest):
        return request
    return SubscriptionRequest.model_validate(request)
