from __future__ import annotations

import pytest

from ux4iot.config import Ux4iotConfig, load_config, parse_connection_string
from ux4iot.core.errors import ConfigError


def test_parse_connection_string():
    parsed = parse_connection_string("HostName=https://relay.test/;Key=abc=def")

    assert parsed.endpoint == "https://relay.test"
    assert parsed.shared_access_key == "abc=def"


@pytest.mark.parametrize("value", ["HostName=https://relay.test", "Key=abc", "garbage"])
def test_parse_connection_string_rejects_incomplete(value):
    with pytest.raises(ConfigError):
        parse_connection_string(value)


def test_dev_mode_config():
    config = Ux4iotConfig(admin_connection_string="Endpoint=https://relay.test;SharedAccessKey=k").validate()

    assert config.dev_mode
    assert config.endpoint == "https://relay.test"
    assert config.shared_access_key == "k"


def test_production_config_needs_grant_function():
    with pytest.raises(ConfigError):
        Ux4iotConfig(ux4iot_url="https://relay.test").validate()

    config = Ux4iotConfig(ux4iot_url="https://relay.test/", grant_request_function=lambda grant: "granted").validate()
    assert not config.dev_mode
    assert config.endpoint == "https://relay.test"
    assert config.shared_access_key is None


@pytest.mark.parametrize(
    "kwargs",
    [
        {},
        {"ux4iot_url": "https://a", "admin_connection_string": "HostName=https://b;Key=k"},
        {"admin_connection_string": "HostName=https://b;Key=k", "reconnect_timeout": 0},
        {"admin_connection_string": "HostName=https://b;Key=k", "request_timeout": -1},
    ],
)
def test_invalid_configs(kwargs):
    with pytest.raises(ConfigError):
        Ux4iotConfig(**kwargs).validate()


def test_from_env(monkeypatch):
    monkeypatch.setenv("UX4IOT_ADMIN_CONNECTION_STRING", "HostName=https://relay.test;Key=k")
    monkeypatch.setenv("UX4IOT_RECONNECT_TIMEOUT", "2.5")
    monkeypatch.delenv("UX4IOT_URL", raising=False)
    monkeypatch.delenv("UX4IOT_REQUEST_TIMEOUT", raising=False)

    config = Ux4iotConfig.from_env().validate()

    assert config.dev_mode
    assert config.reconnect_timeout == 2.5
    assert config.request_timeout == 30.0


def test_from_dict_rejects_bad_numbers():
    with pytest.raises(ConfigError):
        Ux4iotConfig.from_dict({"admin_connection_string": "HostName=https://b;Key=k", "reconnect_timeout": "soon"})


def test_yaml_roundtrip(tmp_path):
    path = tmp_path / "ux4iot.yaml"
    Ux4iotConfig(admin_connection_string="HostName=https://relay.test;Key=k", reconnect_timeout=1.0).save(path)

    loaded = load_config(path)

    assert loaded is not None
    assert loaded.admin_connection_string == "HostName=https://relay.test;Key=k"
    assert loaded.reconnect_timeout == 1.0
    assert loaded.transports == ["websocket"]


def test_load_config_missing_file(tmp_path):
    assert load_config(tmp_path / "missing.yaml") is None
