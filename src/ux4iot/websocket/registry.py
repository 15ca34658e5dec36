"""Subscription registry: local subscribers -> physical subscription descriptors"""

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Iterator, List, Optional

from ..core.types import SubscriptionDescriptor, SubscriptionType

logger = logging.getLogger(__name__)

# on_data(device_id, data, timestamp)
DataCallback = Callable[[str, Any, str], Optional[Awaitable[None]]]


@dataclass
class SubscriptionRecord:
    """One local subscriber's interest in one physical descriptor."""
    subscriber_id: str
    descriptor: SubscriptionDescriptor
    on_data: DataCallback


class SubscriptionRegistry:
    """
    Bookkeeping of subscription records per subscriber.

    Manages:
    - Records keyed by subscriber id
    - Reference counts per unique descriptor across all subscribers

    The registry knows nothing about the relay. Callers read
    ``reference_count`` before mutating to decide whether a remote
    subscribe/unsubscribe is needed.
    """

    def __init__(self):
        self._subscriptions: Dict[str, List[SubscriptionRecord]] = {}

    def reference_count(self, descriptor: SubscriptionDescriptor) -> int:
        """Number of records, across all subscribers, for a descriptor"""
        return sum(
            1
            for records in self._subscriptions.values()
            for record in records
            if record.descriptor == descriptor
        )

    def add(self, subscriber_id: str, descriptor: SubscriptionDescriptor, on_data: DataCallback) -> SubscriptionRecord:
        record = SubscriptionRecord(subscriber_id=subscriber_id, descriptor=descriptor, on_data=on_data)
        self._subscriptions.setdefault(subscriber_id, []).append(record)
        logger.debug(f"Subscriber {subscriber_id} registered {descriptor.type.value} for {descriptor.device_id}")
        return record

    def remove(self, subscriber_id: str, descriptor: SubscriptionDescriptor) -> bool:
        """Remove one matching record. Returns False if there was none."""
        records = self._subscriptions.get(subscriber_id)
        if not records:
            return False

        for index, record in enumerate(records):
            if record.descriptor == descriptor:
                del records[index]
                if not records:
                    del self._subscriptions[subscriber_id]
                return True
        return False

    def has(self, subscriber_id: str, descriptor: SubscriptionDescriptor) -> bool:
        return any(r.descriptor == descriptor for r in self._subscriptions.get(subscriber_id, ()))

    def list_for_subscriber(self, subscriber_id: str) -> Dict[str, List[str]]:
        """
        Summarize a subscriber's subscriptions.

        Returns:
            Dict of device id -> subscribed telemetry keys (empty list when
            the device has only non-telemetry subscriptions)
        """
        result: Dict[str, List[str]] = {}
        for record in self._subscriptions.get(subscriber_id, ()):
            keys = result.setdefault(record.descriptor.device_id, [])
            telemetry_key = record.descriptor.telemetry_key
            if record.descriptor.type is SubscriptionType.TELEMETRY and telemetry_key not in keys:
                keys.append(telemetry_key)
        return result

    def records_for_subscriber(self, subscriber_id: str) -> List[SubscriptionRecord]:
        return list(self._subscriptions.get(subscriber_id, ()))

    def remove_all_for_subscriber(self, subscriber_id: str) -> None:
        self._subscriptions.pop(subscriber_id, None)

    def reset(self) -> None:
        self._subscriptions.clear()

    def snapshot(self) -> List[SubscriptionRecord]:
        """Copy of every record, safe to iterate while the registry changes"""
        return list(self)

    def __iter__(self) -> Iterator[SubscriptionRecord]:
        for records in self._subscriptions.values():
            yield from records

    @property
    def subscriber_ids(self) -> List[str]:
        return list(self._subscriptions.keys())

    @property
    def subscription_count(self) -> int:
        """Total number of records across all subscribers"""
        return sum(len(records) for records in self._subscriptions.values())
