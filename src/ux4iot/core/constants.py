"""
Shared constants for the ux4iot client.
"""

from __future__ import annotations

from enum import Enum

# Seconds between reconnect attempts
RECONNECT_TIMEOUT = 5.0

# Default HTTP timeout for relay requests, in seconds
REQUEST_TIMEOUT = 30.0

# Disconnect reason reported after a local close()
CLIENT_DISCONNECT_REASON = "io client disconnect"

SESSION_HEADER = "sessionId"
SHARED_ACCESS_KEY_HEADER = "Shared-Access-Key"


class ConnectionStatus(Enum):
    """
    Connection status updates reported to the host application.

    Each member is a ``(reason, description)`` pair.
    """
    CONNECTED = ("socket_connected", "Connected to ux4iot websocket")
    UX4IOT_OFFLINE = ("ux4iot_unreachable", "Failed to fetch sessionId of ux4iot server")
    SERVER_UNAVAILABLE = ("socket_connect_error", "Could not establish connection to ux4iot websocket")
    CLIENT_DISCONNECTED = ("socket_disconnected_by_client", "Client manually disconnected")
    SERVER_DISCONNECTED = ("socket_disconnected_by_server", "Disconnected from ux4iot websocket")

    @property
    def reason(self) -> str:
        return self.value[0]

    @property
    def description(self) -> str:
        return self.value[1]
