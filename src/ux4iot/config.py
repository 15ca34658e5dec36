"""
Configuration loading and validation for ux4iot clients.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml

from .core.constants import RECONNECT_TIMEOUT, REQUEST_TIMEOUT
from .core.errors import ConfigError
from .iam.grants import GrantRequestFunction


@dataclass
class ConnectionString:
    """Parsed admin connection string."""
    endpoint: str
    shared_access_key: str


def parse_connection_string(connection_string: str) -> ConnectionString:
    """
    Parse an admin connection string.

    Format: ``HostName=https://my-ux4iot.example.com;Key=secret``
    (``Endpoint`` and ``SharedAccessKey`` are accepted as aliases).

    Raises:
        ConfigError: If the endpoint or the key is missing
    """
    parts: dict[str, str] = {}
    for segment in connection_string.split(";"):
        segment = segment.strip()
        if not segment:
            continue
        if "=" not in segment:
            raise ConfigError(f"Malformed connection string segment: '{segment}'")
        name, value = segment.split("=", 1)
        parts[name.strip()] = value.strip()

    endpoint = parts.get("HostName") or parts.get("Endpoint")
    key = parts.get("Key") or parts.get("SharedAccessKey")
    if not endpoint or not key:
        raise ConfigError("Connection string must contain HostName and Key")

    return ConnectionString(endpoint=endpoint.rstrip("/"), shared_access_key=key)


@dataclass
class Ux4iotConfig:
    """
    Client configuration.

    Two modes:
    - production: ``ux4iot_url`` plus a ``grant_request_function`` that asks
      your own backend for grants
    - development: ``admin_connection_string``; grants are requested directly
      from the relay with the shared access key
    """
    ux4iot_url: Optional[str] = None
    admin_connection_string: Optional[str] = None
    grant_request_function: Optional[GrantRequestFunction] = None
    reconnect_timeout: float = RECONNECT_TIMEOUT
    request_timeout: float = REQUEST_TIMEOUT
    transports: list[str] = field(default_factory=lambda: ["websocket"])

    def __post_init__(self):
        self._connection: Optional[ConnectionString] = None
        if self.admin_connection_string:
            self._connection = parse_connection_string(self.admin_connection_string)

    @property
    def dev_mode(self) -> bool:
        return self.admin_connection_string is not None

    @property
    def endpoint(self) -> str:
        """Base URL of the relay."""
        if self._connection:
            return self._connection.endpoint
        if not self.ux4iot_url:
            raise ConfigError("ux4iot_url is not configured")
        return self.ux4iot_url.rstrip("/")

    @property
    def shared_access_key(self) -> Optional[str]:
        return self._connection.shared_access_key if self._connection else None

    def validate(self) -> Ux4iotConfig:
        """Check the configuration is usable. Returns self."""
        if self.ux4iot_url and self.admin_connection_string:
            raise ConfigError("Use either ux4iot_url or admin_connection_string, not both")
        if not self.ux4iot_url and not self.admin_connection_string:
            raise ConfigError("Either ux4iot_url or admin_connection_string is required")
        if self.ux4iot_url and self.grant_request_function is None:
            raise ConfigError("grant_request_function is required when using ux4iot_url")
        if self.reconnect_timeout <= 0:
            raise ConfigError(f"reconnect_timeout must be positive, got {self.reconnect_timeout}")
        if self.request_timeout <= 0:
            raise ConfigError(f"request_timeout must be positive, got {self.request_timeout}")
        if not self.transports:
            raise ConfigError("At least one realtime transport is required")
        return self

    @classmethod
    def from_dict(cls, data: dict[str, Any], grant_request_function: Optional[GrantRequestFunction] = None) -> Ux4iotConfig:
        """Create config from dictionary (camelCase or snake_case keys)."""
        def pick(*names: str, default: Any = None) -> Any:
            for name in names:
                if data.get(name) is not None:
                    return data[name]
            return default

        try:
            return cls(
                ux4iot_url=pick("ux4iot_url", "ux4iotURL"),
                admin_connection_string=pick("admin_connection_string", "adminConnectionString"),
                grant_request_function=grant_request_function,
                reconnect_timeout=float(pick("reconnect_timeout", "reconnectTimeout", default=RECONNECT_TIMEOUT)),
                request_timeout=float(pick("request_timeout", "requestTimeout", default=REQUEST_TIMEOUT)),
                transports=list(pick("transports", default=["websocket"])),
            )
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid configuration: {e}")

    @classmethod
    def from_env(cls, grant_request_function: Optional[GrantRequestFunction] = None) -> Ux4iotConfig:
        """Create config from UX4IOT_* environment variables."""
        data = {
            "ux4iot_url": os.getenv("UX4IOT_URL"),
            "admin_connection_string": os.getenv("UX4IOT_ADMIN_CONNECTION_STRING"),
            "reconnect_timeout": os.getenv("UX4IOT_RECONNECT_TIMEOUT"),
            "request_timeout": os.getenv("UX4IOT_REQUEST_TIMEOUT"),
        }
        return cls.from_dict(data, grant_request_function)

    def to_dict(self) -> dict[str, Any]:
        """Convert config to dictionary for YAML serialization."""
        data: dict[str, Any] = {
            "reconnect_timeout": self.reconnect_timeout,
            "request_timeout": self.request_timeout,
            "transports": list(self.transports),
        }
        if self.ux4iot_url:
            data["ux4iot_url"] = self.ux4iot_url
        if self.admin_connection_string:
            data["admin_connection_string"] = self.admin_connection_string
        return data

    def save(self, path: Path | str = "ux4iot.yaml") -> None:
        """Save configuration to YAML file."""
        path = Path(path)
        content = yaml.dump(self.to_dict(), default_flow_style=False, sort_keys=False)
        path.write_text(content)


def load_config(
    path: Path | str = "ux4iot.yaml",
    grant_request_function: Optional[GrantRequestFunction] = None,
) -> Ux4iotConfig | None:
    """Load configuration from YAML file."""
    path = Path(path)
    if not path.exists():
        return None

    data = yaml.safe_load(path.read_text()) or {}
    if not isinstance(data, dict):
        raise ConfigError(f"{path} must contain a mapping")
    return Ux4iotConfig.from_dict(data, grant_request_function)
