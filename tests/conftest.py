from __future__ import annotations

import asyncio
from typing import Any, Callable, Dict, List, Optional

import pytest

from ux4iot.config import Ux4iotConfig
from ux4iot.coordinator import Ux4iotCoordinator
from ux4iot.core.constants import CLIENT_DISCONNECT_REASON
from ux4iot.core.errors import GatewayError, PreconditionError
from ux4iot.core.types import GrantRequest, GrantResponse, GrantType, IoTHubResponse, LastValue, SubscriptionDescriptor, SubscriptionType

CONNECTION_STRING = "HostName=https://relay.test;Key=secret"


@pytest.fixture
def anyio_backend():
    return "asyncio"


class FakeGateway:
    """In-memory stand-in for GatewayClient that records every call."""

    def __init__(self, sessions: Optional[List[str]] = None) -> None:
        self.endpoint = "https://relay.test"
        self.session_id: Optional[str] = None
        self.sessions = list(sessions or ["session-1", "session-2", "session-3"])
        self.session_failures = 0
        self.grant_responses: Dict[GrantType, Any] = {}
        self.calls: List[tuple] = []
        self.fail_subscribe = False
        self.fail_unsubscribe = False
        self.fail_last_value = False
        self.grant_gate: Optional[asyncio.Event] = None
        self.subscribe_gate: Optional[asyncio.Event] = None
        self.closed = False

    def _require_session(self) -> str:
        if not self.session_id:
            raise PreconditionError()
        return self.session_id

    def set_session_id(self, session_id: str) -> None:
        self.session_id = session_id

    def socket_url(self, session_id: str) -> str:
        return f"{self.endpoint}?sessionId={session_id}"

    async def create_session(self) -> str:
        self.calls.append(("create_session",))
        if self.session_failures:
            self.session_failures -= 1
            raise GatewayError(endpoint="/session", status_code=0, message="connection refused")
        return self.sessions.pop(0)

    async def request_grant(self, grant: GrantRequest) -> Any:
        self._require_session()
        self.calls.append(("grant", grant.type, grant.device_id))
        if self.grant_gate is not None:
            await self.grant_gate.wait()
        return self.grant_responses.get(grant.type, GrantResponse.GRANTED)

    async def subscribe(self, descriptor: SubscriptionDescriptor) -> None:
        self._require_session()
        self.calls.append(("subscribe", descriptor))
        if self.subscribe_gate is not None:
            await self.subscribe_gate.wait()
        if self.fail_subscribe:
            raise GatewayError(endpoint="/subscription", status_code=500, message="boom", body={"error": "boom"})

    async def unsubscribe(self, descriptor: SubscriptionDescriptor) -> None:
        self._require_session()
        self.calls.append(("unsubscribe", descriptor))
        if self.fail_unsubscribe:
            raise GatewayError(endpoint="/subscription", status_code=500, message="boom", body={"error": "boom"})

    async def get_last_value(self, descriptor: SubscriptionDescriptor) -> LastValue:
        self._require_session()
        self.calls.append(("last_value", descriptor))
        if self.fail_last_value:
            raise GatewayError(endpoint="/lastValue", status_code=404, message="not found", body="not found")
        if descriptor.type is SubscriptionType.D2C_MESSAGES:
            return LastValue(device_id=descriptor.device_id, data={})
        if descriptor.type is SubscriptionType.TELEMETRY:
            data: Any = {descriptor.telemetry_key: 1}
        else:
            data = "last"
        return LastValue(device_id=descriptor.device_id, data=data, timestamp="2024-01-01T00:00:00Z")

    async def invoke_direct_method(self, device_id: str, params: Any) -> IoTHubResponse:
        self._require_session()
        self.calls.append(("direct_method", device_id, params.method_name))
        return IoTHubResponse(status=200, payload={"ok": True})

    async def patch_desired_properties(self, device_id: str, patch: Dict[str, Any]) -> Optional[IoTHubResponse]:
        self._require_session()
        self.calls.append(("patch", device_id, patch))
        return None

    async def close(self) -> None:
        self.closed = True

    def count(self, name: str) -> int:
        return sum(1 for call in self.calls if call[0] == name)


class FakeChannel:
    """RealtimeChannel that connects immediately unless told otherwise."""

    def __init__(
        self,
        auto_connect: bool = True,
        fail_open: bool = False,
        raise_on_open: Optional[Exception] = None,
    ) -> None:
        self.auto_connect = auto_connect
        self.fail_open = fail_open
        self.raise_on_open = raise_on_open
        self.handlers: Dict[str, List[Callable[..., Any]]] = {}
        self.url: Optional[str] = None
        self.closed = False

    def on(self, event: str, handler: Callable[..., Any]) -> None:
        self.handlers.setdefault(event, []).append(handler)

    async def emit(self, event: str, *args: Any) -> None:
        for handler in self.handlers.get(event, []):
            await handler(*args)

    async def open(self, url: str) -> None:
        self.url = url
        if self.raise_on_open is not None:
            raise self.raise_on_open
        if self.fail_open:
            await self.emit("connect_error", "refused")
        elif self.auto_connect:
            await self.emit("connect")

    async def close(self) -> None:
        self.closed = True
        await self.emit("disconnect", CLIENT_DISCONNECT_REASON)


class ChannelFactory:
    def __init__(self, **kwargs: Any) -> None:
        self.kwargs = kwargs
        self.channels: List[FakeChannel] = []

    def __call__(self) -> FakeChannel:
        channel = FakeChannel(**self.kwargs)
        self.channels.append(channel)
        return channel

    @property
    def last(self) -> FakeChannel:
        return self.channels[-1]


@pytest.fixture
def config() -> Ux4iotConfig:
    return Ux4iotConfig(admin_connection_string=CONNECTION_STRING, reconnect_timeout=0.01)


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def channels() -> ChannelFactory:
    return ChannelFactory()


@pytest.fixture
def events() -> List[tuple]:
    return []


@pytest.fixture
def coordinator(config, gateway, channels, events) -> Ux4iotCoordinator:
    return Ux4iotCoordinator(
        config,
        gateway=gateway,
        channel_factory=channels,
        on_session_id=lambda session_id: events.append(("session", session_id)),
        on_connection_update=lambda reason, description: events.append(("status", reason)),
    )
