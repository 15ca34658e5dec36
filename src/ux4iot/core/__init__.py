"""
Core module - wire models, errors and constants.
"""

from __future__ import annotations

from .constants import (
    CLIENT_DISCONNECT_REASON,
    RECONNECT_TIMEOUT,
    REQUEST_TIMEOUT,
    ConnectionStatus,
)
from .errors import (
    ConfigError,
    ConnectivityError,
    GatewayError,
    GrantError,
    PreconditionError,
    SubscriptionError,
    Ux4iotError,
)
from .types import (
    ConnectionStateMessage,
    D2CMessage,
    DeviceTwinMessage,
    DirectMethodParams,
    GrantRequest,
    GrantResponse,
    GrantType,
    IoTHubResponse,
    LastValue,
    Message,
    Outcome,
    OutcomeStatus,
    SubscriptionDescriptor,
    SubscriptionRequest,
    SubscriptionType,
    TelemetryMessage,
    parse_message,
)

__all__ = [
    # Constants
    "CLIENT_DISCONNECT_REASON",
    "RECONNECT_TIMEOUT",
    "REQUEST_TIMEOUT",
    "ConnectionStatus",
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
]
