from __future__ import annotations

import pytest

from hm2mqtt.config import BridgeConfig, parse_broker_url, parse_devices
from hm2mqtt.exceptions import Hm2MqttConfigError
from hm2mqtt.models.device import Device


def test_from_env_reads_all_settings() -> None:
    env = {
        "MQTT_BROKER_URL": "mqtt://broker:1884",
        "MQTT_CLIENT_ID": "client",
        "MQTT_USERNAME": "user",
        "MQTT_PASSWORD": "pass",
        "MQTT_TOPIC_PREFIX": "energy",
        "MQTT_RESPONSE_TIMEOUT": "20",
        "MQTT_ALLOWED_CONSECUTIVE_TIMEOUTS": "5",
        "MQTT_POLLING_INTERVAL": "30",
        "MQTT_KEEPALIVE": "45",
        "POLL_EXTRA_BATTERY_DATA": "true",
        "DEVICE_0": "HMA-1:001122334455",
    }
    config = BridgeConfig.from_env(env)

    assert config.broker_url == "mqtt://broker:1884"
    assert config.effective_client_id == "client"
    assert (config.username, config.password) == ("user", "pass")
    assert config.topic_prefix == "energy"
    assert config.response_timeout == 20
    assert config.allowed_consecutive_timeouts == 5
    assert config.polling_interval == 30
    assert config.keepalive == 45
    assert config.poll_extra_battery_data is True
    assert config.devices == (Device(device_type="HMA-1", device_id="001122334455"),)


def test_defaults() -> None:
    config = BridgeConfig.from_env({})
    assert config.broker_url == "mqtt://localhost:1883"
    assert config.topic_prefix == "hm2mqtt"
    assert config.response_timeout == 15
    assert config.allowed_consecutive_timeouts == 3
    assert config.polling_interval == 60
    assert config.poll_extra_battery_data is False
    assert config.devices == ()
    assert config.effective_client_id.startswith("hm2mqtt-")


def test_overrides_win_over_env() -> None:
    config = BridgeConfig.from_env({"MQTT_POLLING_INTERVAL": "30"}, polling_interval=10.0, devices=())
    assert config.polling_interval == 10


def test_generated_client_id_is_stable() -> None:
    config = BridgeConfig.from_env({})
    assert config.effective_client_id == config.effective_client_id
    assert config.client_id == config.effective_client_id
    assert BridgeConfig(client_id="fixed").effective_client_id == "fixed"


def test_whole_float_counts_are_accepted() -> None:
    config = BridgeConfig.from_env({"MQTT_ALLOWED_CONSECUTIVE_TIMEOUTS": "4.0"})
    assert config.allowed_consecutive_timeouts == 4
    assert isinstance(config.allowed_consecutive_timeouts, int)


def test_password_not_in_repr() -> None:
    assert "hunter2" not in repr(BridgeConfig(password="hunter2"))


@pytest.mark.parametrize(
    "env",
    [
        {"MQTT_RESPONSE_TIMEOUT": "abc"},
        {"MQTT_RESPONSE_TIMEOUT": "0"},
        {"MQTT_POLLING_INTERVAL": "-5"},
        {"MQTT_ALLOWED_CONSECUTIVE_TIMEOUTS": "0"},
        {"MQTT_ALLOWED_CONSECUTIVE_TIMEOUTS": "2.5"},
        {"MQTT_KEEPALIVE": "30.5"},
        {"MQTT_TOPIC_PREFIX": "/"},
    ],
)
def test_invalid_values_raise(env: dict[str, str]) -> None:
    with pytest.raises(Hm2MqttConfigError):
        BridgeConfig.from_env(env)


def test_parse_devices_sorted_and_skips_malformed() -> None:
    env = {
        "DEVICE_2": "HMG-1:bbb",
        "DEVICE_1": "HMA-1:aaa",
        "DEVICE_3": "no-separator",
        "DEVICE_4": "",
        "DEVICE_5": "HMA-1:aaa",
        "OTHER": "HMA-1:zzz",
    }
    assert [d.key for d in parse_devices(env)] == ["HMA-1:aaa", "HMG-1:bbb"]


@pytest.mark.parametrize(
    ("url", "host", "port", "tls"),
    [
        ("mqtt://broker:1883", "broker", 1883, False),
        ("mqtts://broker", "broker", 8883, True),
        ("tcp://user:pw@broker:1999/path", "broker", 1999, False),
        ("broker.local", "broker.local", 1883, False),
    ],
)
def test_parse_broker_url(url: str, host: str, port: int, tls: bool) -> None:
    address = parse_broker_url(url)
    assert (address.host, address.port, address.tls) == (host, port, tls)


@pytest.mark.parametrize("url", ["", "   ", "http://broker"])
def test_parse_broker_url_rejects(url: str) -> None:
    with pytest.raises(Hm2MqttConfigError):
        parse_broker_url(url)
