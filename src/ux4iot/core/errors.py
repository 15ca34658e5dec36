"""
Custom exceptions for the ux4iot client.
"""

from __future__ import annotations

from typing import Any, Optional


class Ux4iotError(Exception):
    """Base exception for all ux4iot client errors."""
    pass


class ConfigError(Ux4iotError):
    """Raised when client configuration is invalid."""
    pass


class PreconditionError(Ux4iotError):
    """Raised when an operation needs a session and none is established."""

    def __init__(self, message: str = "Ux4iot has no sessionId"):
        super().__init__(message)


class GatewayError(Ux4iotError):
    """Raised when a call to the ux4iot relay fails."""

    def __init__(self, endpoint: str, status_code: int, message: str, body: Any = None):
        self.endpoint = endpoint
        self.status_code = status_code
        self.body = body
        super().__init__(f"ux4iot '{endpoint}' returned {status_code}: {message}")


class ConnectivityError(Ux4iotError):
    """Raised when the session or the realtime channel cannot be established."""
    pass


class GrantError(Ux4iotError):
    """Raised when a grant request is not granted."""

    def __init__(self, response: Any, grant: Any = None):
        self.response = response
        self.grant = grant
        super().__init__(f"Grant not given: {response}")


class SubscriptionError(Ux4iotError):
    """Raised when a remote subscribe or unsubscribe call fails."""

    def __init__(self, reason: Any, request: Optional[Any] = None):
        self.reason = reason
        self.request = request
        super().__init__(f"Subscription failed: {reason}")
