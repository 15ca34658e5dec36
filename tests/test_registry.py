from __future__ import annotations

from ux4iot.core.types import SubscriptionDescriptor, SubscriptionType
from ux4iot.websocket.registry import SubscriptionRegistry


def _telemetry(key: str, device_id: str = "dev-1", session_id: str = "s1") -> SubscriptionDescriptor:
    return SubscriptionDescriptor(SubscriptionType.TELEMETRY, device_id, session_id, key)


def _state(device_id: str = "dev-1", session_id: str = "s1") -> SubscriptionDescriptor:
    return SubscriptionDescriptor(SubscriptionType.CONNECTION_STATE, device_id, session_id)


def _noop(*args):
    pass


def test_reference_count_spans_subscribers():
    registry = SubscriptionRegistry()
    registry.add("a", _telemetry("temp"), _noop)
    registry.add("b", _telemetry("temp"), _noop)
    registry.add("b", _telemetry("humidity"), _noop)

    assert registry.reference_count(_telemetry("temp")) == 2
    assert registry.reference_count(_telemetry("humidity")) == 1
    assert registry.reference_count(_telemetry("temp", session_id="s2")) == 0
    assert registry.subscription_count == 3


def test_remove_takes_exactly_one_record():
    registry = SubscriptionRegistry()
    registry.add("a", _state(), _noop)
    registry.add("a", _state(), _noop)

    assert registry.remove("a", _state())
    assert registry.reference_count(_state()) == 1
    assert registry.has("a", _state())

    assert registry.remove("a", _state())
    assert not registry.has("a", _state())
    assert not registry.remove("a", _state())
    assert registry.subscriber_ids == []


def test_remove_unknown_subscriber_is_harmless():
    registry = SubscriptionRegistry()

    assert not registry.remove("ghost", _state())
    registry.remove_all_for_subscriber("ghost")


def test_list_for_subscriber_groups_telemetry_keys_by_device():
    registry = SubscriptionRegistry()
    registry.add("a", _telemetry("temp"), _noop)
    registry.add("a", _telemetry("humidity"), _noop)
    registry.add("a", _state(), _noop)
    registry.add("a", _state(device_id="dev-2"), _noop)
    registry.add("b", _telemetry("pressure"), _noop)

    assert registry.list_for_subscriber("a") == {
        "dev-1": ["temp", "humidity"],
        "dev-2": [],
    }
    assert registry.list_for_subscriber("nobody") == {}


def test_remove_all_and_reset():
    registry = SubscriptionRegistry()
    registry.add("a", _telemetry("temp"), _noop)
    registry.add("b", _telemetry("temp"), _noop)

    registry.remove_all_for_subscriber("a")
    assert registry.reference_count(_telemetry("temp")) == 1

    registry.reset()
    assert registry.subscription_count == 0
    assert list(registry) == []


def test_snapshot_is_detached_from_registry():
    registry = SubscriptionRegistry()
    registry.add("a", _state(), _noop)

    snapshot = registry.snapshot()
    registry.reset()

    assert len(snapshot) == 1
    assert snapshot[0].subscriber_id == "a"
