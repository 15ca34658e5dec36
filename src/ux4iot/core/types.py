"""
Pydantic models for the ux4iot wire format.

These define grant and subscription requests sent to the relay, the
messages received over the realtime channel, and the normalized
descriptors kept by the client.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, ClassVar, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

logger = logging.getLogger(__name__)


class SubscriptionType(str, Enum):
    """Kinds of device data a subscriber can stream."""
    TELEMETRY = "telemetry"
    CONNECTION_STATE = "connectionState"
    D2C_MESSAGES = "d2cMessages"
    DEVICE_TWIN = "deviceTwin"


class GrantType(str, Enum):
    """Actions the relay authorizes per device and session."""
    SUBSCRIBE_TO_TELEMETRY = "subscribeToTelemetry"
    SUBSCRIBE_TO_CONNECTION_STATE = "subscribeToConnectionState"
    SUBSCRIBE_TO_DEVICE_TWIN = "subscribeToDeviceTwin"
    SUBSCRIBE_TO_D2C_MESSAGES = "subscribeToD2CMessages"
    MODIFY_DESIRED_PROPERTIES = "modifyDesiredProperties"
    INVOKE_DIRECT_METHOD = "invokeDirectMethod"


class GrantResponse(str, Enum):
    """Answer of a grant request function."""
    GRANTED = "granted"
    UNAUTHORIZED = "unauthorized"
    FORBIDDEN = "forbidden"
    ERROR = "error"


SUBSCRIPTION_GRANT_TYPES: dict[SubscriptionType, GrantType] = {
    SubscriptionType.TELEMETRY: GrantType.SUBSCRIBE_TO_TELEMETRY,
    SubscriptionType.CONNECTION_STATE: GrantType.SUBSCRIBE_TO_CONNECTION_STATE,
    SubscriptionType.DEVICE_TWIN: GrantType.SUBSCRIBE_TO_DEVICE_TWIN,
    SubscriptionType.D2C_MESSAGES: GrantType.SUBSCRIBE_TO_D2C_MESSAGES,
}


class _WireModel(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    def to_wire(self) -> dict[str, Any]:
        """Serialize with camelCase keys, omitting unset optionals."""
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


# --- Requests (sent to the relay) ---

class GrantRequest(_WireModel):
    """
    Grant request, also used as the grant cache key.

    Example:
    {
        "type": "subscribeToTelemetry",
        "deviceId": "simulated-device",
        "sessionId": "c0ffee",
        "telemetryKey": "temperature"
    }
    """
    type: GrantType
    device_id: str = Field(alias="deviceId")
    session_id: str = Field(default="", alias="sessionId")
    telemetry_key: Optional[str] = Field(default=None, alias="telemetryKey")
    direct_method_name: Optional[str] = Field(default=None, alias="directMethodName")

    def with_session(self, session_id: str) -> GrantRequest:
        return self.model_copy(update={"session_id": session_id})


class SubscriptionRequest(_WireModel):
    """
    Subscription request from a local subscriber.

    The session id is not part of the request; it is bound when the
    request is turned into a descriptor for the current session.
    """
    type: SubscriptionType
    device_id: str = Field(alias="deviceId")
    telemetry_key: Optional[str] = Field(default=None, alias="telemetryKey")

    @model_validator(mode="after")
    def _check_telemetry_key(self) -> SubscriptionRequest:
        if self.type is SubscriptionType.TELEMETRY and not self.telemetry_key:
            raise ValueError("telemetryKey is required for telemetry subscriptions")
        if self.type is not SubscriptionType.TELEMETRY and self.telemetry_key is not None:
            raise ValueError(f"telemetryKey is only allowed for telemetry subscriptions, not {self.type.value}")
        return self

    def descriptor(self, session_id: str) -> SubscriptionDescriptor:
        return SubscriptionDescriptor(
            type=self.type,
            device_id=self.device_id,
            session_id=session_id,
            telemetry_key=self.telemetry_key,
        )


class DirectMethodParams(_WireModel):
    """Parameters of a direct method invocation on a device."""
    method_name: str = Field(alias="methodName")
    payload: Any = None
    response_timeout_in_seconds: Optional[int] = Field(default=None, alias="responseTimeoutInSeconds")
    connect_timeout_in_seconds: Optional[int] = Field(default=None, alias="connectTimeoutInSeconds")


# --- Normalized (client-side) ---

@dataclass(frozen=True)
class SubscriptionDescriptor:
    """Physical subscription key understood by the relay."""
    type: SubscriptionType
    device_id: str
    session_id: str
    telemetry_key: Optional[str] = None

    def request(self) -> SubscriptionRequest:
        return SubscriptionRequest(
            type=self.type,
            device_id=self.device_id,
            telemetry_key=self.telemetry_key,
        )

    def grant_request(self) -> GrantRequest:
        return GrantRequest(
            type=SUBSCRIPTION_GRANT_TYPES[self.type],
            device_id=self.device_id,
            session_id=self.session_id,
            telemetry_key=self.telemetry_key,
        )

    def to_wire(self) -> dict[str, Any]:
        body = self.request().to_wire()
        body["sessionId"] = self.session_id
        return body


# --- Responses (from the relay) ---

class LastValue(_WireModel):
    """Last known value of a descriptor, as returned by the relay."""
    device_id: str = Field(alias="deviceId")
    data: Any = None
    timestamp: str = ""


class IoTHubResponse(_WireModel):
    """Result of a direct method call or desired property patch."""
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="allow")

    status: Optional[int] = None
    payload: Any = None


# --- Inbound realtime messages ---

class _DeviceMessage(_WireModel):
    kind: ClassVar[SubscriptionType]

    device_id: str = Field(alias="deviceId")
    timestamp: str = ""


class TelemetryMessage(_DeviceMessage):
    kind: ClassVar[SubscriptionType] = SubscriptionType.TELEMETRY
    telemetry: dict[str, Any] = Field(default_factory=dict)


class ConnectionStateMessage(_DeviceMessage):
    kind: ClassVar[SubscriptionType] = SubscriptionType.CONNECTION_STATE
    connection_state: Any = Field(alias="connectionState")


class D2CMessage(_DeviceMessage):
    kind: ClassVar[SubscriptionType] = SubscriptionType.D2C_MESSAGES
    message: Any = None


class DeviceTwinMessage(_DeviceMessage):
    kind: ClassVar[SubscriptionType] = SubscriptionType.DEVICE_TWIN
    device_twin: Any = Field(alias="deviceTwin")


Message = Union[TelemetryMessage, ConnectionStateMessage, D2CMessage, DeviceTwinMessage]

# payload tag -> message class, checked in order
_MESSAGE_TAGS: list[tuple[str, type[_DeviceMessage]]] = [
    ("telemetry", TelemetryMessage),
    ("connectionState", ConnectionStateMessage),
    ("deviceTwin", DeviceTwinMessage),
    ("message", D2CMessage),
]


def parse_message(raw: Any) -> Optional[Message]:
    """
    Classify an inbound realtime payload.

    Args:
        raw: Decoded payload of a ``data`` event, or an already parsed message

    Returns:
        Typed message, or None if the payload is not a device message
    """
    if isinstance(raw, _DeviceMessage):
        return raw  # type: ignore[return-value]
    if not isinstance(raw, dict):
        logger.debug(f"Ignoring non-object realtime payload: {raw!r}")
        return None

    for tag, message_cls in _MESSAGE_TAGS:
        if tag in raw:
            try:
                return message_cls.model_validate(raw)
            except ValidationError as e:
                logger.debug(f"Invalid {tag} message dropped: {e}")
                return None

    logger.debug(f"Unknown realtime message for device {raw.get('deviceId')}")
    return None


# --- Operation results ---

class OutcomeStatus(str, Enum):
    OK = "ok"
    GRANT_DENIED = "grantDenied"
    SUBSCRIPTION_FAILED = "subscriptionFailed"
    STALE = "stale"  # session changed while the operation was in flight


@dataclass
class Outcome:
    """Result of a coordinator operation."""
    status: OutcomeStatus
    value: Any = None
    reason: Any = None

    @property
    def ok(self) -> bool:
        return self.status is OutcomeStatus.OK

    @classmethod
    def success(cls, value: Any = None) -> Outcome:
        return cls(OutcomeStatus.OK, value=value)

    @classmethod
    def grant_denied(cls, reason: Any) -> Outcome:
        return cls(OutcomeStatus.GRANT_DENIED, reason=reason)

    @classmethod
    def subscription_failed(cls, reason: Any) -> Outcome:
        return cls(OutcomeStatus.SUBSCRIPTION_FAILED, reason=reason)

    @classmethod
    def stale(cls) -> Outcome:
        return cls(OutcomeStatus.STALE, reason="session changed")
