"""
Message router for inbound realtime data.

Determines which subscription records receive a device message and shapes
the payload for each subscription type.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Iterable

from ..core.types import (
    ConnectionStateMessage,
    D2CMessage,
    DeviceTwinMessage,
    Message,
    TelemetryMessage,
)
from .registry import SubscriptionRecord

logger = logging.getLogger(__name__)


@dataclass
class Delivery:
    """Payload to hand to one subscriber callback."""
    record: SubscriptionRecord
    payload: Any
    timestamp: str


class MessageRouter:
    """
    Router from device messages to subscriber callbacks.

    Routing itself never mutates state. Telemetry records of the same
    subscriber and callback are merged, so a subscriber registered for keys
    ``a`` and ``c`` receives one payload ``{"a": ..., "c": ...}`` per message.

    Usage:
        router = MessageRouter()
        deliveries = router.route(message, registry.snapshot())
        await router.deliver(deliveries)
    """

    def route(self, message: Message, records: Iterable[SubscriptionRecord]) -> list[Delivery]:
        """
        Match a message against subscription records.

        Args:
            message: Parsed device message
            records: Current subscription records

        Returns:
            One delivery per matching callback. Records whose type does not
            match the message kind are skipped.
        """
        deliveries: list[Delivery] = []
        telemetry: dict[tuple[str, Any], Delivery] = {}

        for record in records:
            descriptor = record.descriptor
            if descriptor.device_id != message.device_id:
                continue
            if descriptor.type is not message.kind:
                continue

            if isinstance(message, TelemetryMessage):
                key = descriptor.telemetry_key
                if key not in message.telemetry:
                    continue
                group_key = (record.subscriber_id, _callback_key(record.on_data))
                group = telemetry.get(group_key)
                if group is None:
                    group = Delivery(record=record, payload={}, timestamp=message.timestamp)
                    telemetry[group_key] = group
                    deliveries.append(group)
                group.payload[key] = message.telemetry[key]
            else:
                deliveries.append(
                    Delivery(record=record, payload=self._extract(message), timestamp=message.timestamp)
                )

        return deliveries

    def _extract(self, message: Message) -> Any:
        if isinstance(message, ConnectionStateMessage):
            return message.connection_state
        if isinstance(message, D2CMessage):
            return message.message
        if isinstance(message, DeviceTwinMessage):
            return message.device_twin
        raise TypeError(f"Unsupported message type: {type(message).__name__}")

    async def deliver(self, deliveries: Iterable[Delivery], device_id: str) -> int:
        """
        Invoke subscriber callbacks, isolating each one.

        Returns:
            Number of callbacks that completed without raising
        """
        delivered = 0
        for delivery in deliveries:
            if await invoke_callback(delivery.record.on_data, device_id, delivery.payload, delivery.timestamp):
                delivered += 1
        return delivered


def _callback_key(callback: Any) -> Any:
    """Grouping key for a callback; unhashable callables group by identity"""
    try:
        hash(callback)
    except TypeError:
        return id(callback)
    return callback


async def invoke_callback(callback: Any, *args: Any) -> bool:
    """Call a sync or async callback; log and swallow its failure"""
    try:
        if asyncio.iscoroutinefunction(callback):
            await callback(*args)
        else:
            result = callback(*args)
            if asyncio.iscoroutine(result):
                await result
        return True
    except Exception as e:
        logger.error(f"Error in subscriber callback {getattr(callback, '__name__', callback)!r}: {e}", exc_info=True)
        return False
