"""
Runtime module - relay client, session state and connection lifecycle.
"""

from __future__ import annotations

from .context import SessionContext
from .gateway_client import GatewayClient
from .lifecycle import ConnectionLifecycle, LifecycleState

__all__ = [
    "SessionContext",
    "GatewayClient",
    "ConnectionLifecycle",
    "LifecycleState",
]
