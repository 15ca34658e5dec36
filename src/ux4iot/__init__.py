"""
ux4iot - client coordinator for the ux4iot device-telemetry relay.

Many local subscribers (widgets, handlers) stream telemetry, connection
state, device twin updates and raw device messages through one shared
realtime connection:
- Physical subscriptions are reference counted per descriptor
- Grants are cached per session
- The connection reconnects transparently and reports its status

Usage:
    from ux4iot import Ux4iotConfig, Ux4iotCoordinator

    config = Ux4iotConfig(admin_connection_string="HostName=...;Key=...")
    async with Ux4iotCoordinator(config, on_session_id=resubscribe) as ux4iot:
        ...
"""

from __future__ import annotations

from .config import ConnectionString, Ux4iotConfig, load_config, parse_connection_string
from .coordinator import Ux4iotCoordinator
from .core import (
    CLIENT_DISCONNECT_REASON,
    RECONNECT_TIMEOUT,
    ConfigError,
    ConnectionStateMessage,
    ConnectionStatus,
    ConnectivityError,
    D2CMessage,
    DeviceTwinMessage,
    DirectMethodParams,
    GatewayError,
    GrantError,
    GrantRequest,
    GrantResponse,
    GrantType,
    IoTHubResponse,
    LastValue,
    Message,
    Outcome,
    OutcomeStatus,
    PreconditionError,
    SubscriptionDescriptor,
    SubscriptionError,
    SubscriptionRequest,
    SubscriptionType,
    TelemetryMessage,
    Ux4iotError,
    parse_message,
)
from .iam import GrantCache
from .runtime import ConnectionLifecycle, GatewayClient, LifecycleState, SessionContext
from .websocket import (
    MessageRouter,
    RealtimeChannel,
    SocketIOChannel,
    SubscriptionRecord,
    SubscriptionRegistry,
)

__version__ = "0.1.0"

__all__ = [
    # Coordinator
    "Ux4iotCoordinator",
    # Config
    "Ux4iotConfig",
    "ConnectionString",
    "parse_connection_string",
    "load_config",
    # Errors
    "Ux4iotError",
    "ConfigError",
    "PreconditionError",
    "GatewayError",
    "ConnectivityError",
    "GrantError",
    "SubscriptionError",
    # Types
    "SubscriptionType",
    "GrantType",
    "GrantResponse",
    "GrantRequest",
    "SubscriptionRequest",
    "SubscriptionDescriptor",
    "DirectMethodParams",
    "LastValue",
    "IoTHubResponse",
    "TelemetryMessage",
    "ConnectionStateMessage",
    "D2CMessage",
    "DeviceTwinMessage",
    "Message",
    "parse_message",
    "Outcome",
    "OutcomeStatus",
    # Constants
    "ConnectionStatus",
    "RECONNECT_TIMEOUT",
    "CLIENT_DISCONNECT_REASON",
    # Components
    "GrantCache",
    "SubscriptionRegistry",
    "SubscriptionRecord",
    "MessageRouter",
    "RealtimeChannel",
    "SocketIOChannel",
    "GatewayClient",
    "SessionContext",
    "ConnectionLifecycle",
    "LifecycleState",
]
