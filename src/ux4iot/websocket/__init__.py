"""
WebSocket module for realtime device data.

Provides:
- SubscriptionRegistry: Subscriber -> descriptor bookkeeping with refcounts
- MessageRouter: Inbound message routing to subscriber callbacks
- SocketIOChannel: Realtime channel to the relay
"""

from __future__ import annotations

from .channel import RealtimeChannel, SocketIOChannel
from .registry import DataCallback, SubscriptionRecord, SubscriptionRegistry
from .router import Delivery, MessageRouter, invoke_callback

__all__ = [
    # Registry
    "SubscriptionRegistry",
    "SubscriptionRecord",
    "DataCallback",
    # Router
    "MessageRouter",
    "Delivery",
    "invoke_callback",
    # Channel
    "RealtimeChannel",
    "SocketIOChannel",
]
