"""Bridge configuration for hm2mqtt."""

from __future__ import annotations

import dataclasses
import logging
import os
import secrets
from collections.abc import Mapping
from typing import Any

from pydantic import ValidationError

from hm2mqtt.exceptions import Hm2MqttConfigError
from hm2mqtt.models.device import Device

_logger = logging.getLogger(__name__)

DEFAULT_TOPIC_PREFIX = "hm2mqtt"
DEFAULT_BROKER_URL = "mqtt://localhost:1883"


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


def _env_number(env: Mapping[str, str], key: str, default: float) -> float:
    raw = env.get(key)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise Hm2MqttConfigError(f"{key} must be numeric (got {raw!r})") from exc


def _env_int(env: Mapping[str, str], key: str, default: int) -> int:
    value = _env_number(env, key, float(default))
    if not value.is_integer():
        raise Hm2MqttConfigError(f"{key} must be a whole number (got {env[key]!r})")
    return int(value)


@dataclasses.dataclass(frozen=True)
class BrokerAddress:
    """Host/port/TLS triple parsed from a broker URL."""

    host: str
    port: int
    tls: bool = False


def parse_broker_url(url: str) -> BrokerAddress:
    """Parse ``mqtt://host:port``, ``mqtts://host`` or bare ``host[:port]``.

    Raises
    ------
    Hm2MqttConfigError
        If the URL is empty or uses an unsupported scheme.
    """
    value = url.strip()
    if not value:
        raise Hm2MqttConfigError("Broker URL is empty")

    tls = False
    if "://" in value:
        scheme, value = value.split("://", 1)
        scheme = scheme.lower()
        if scheme in {"mqtts", "ssl", "tls"}:
            tls = True
        elif scheme not in {"mqtt", "tcp"}:
            raise Hm2MqttConfigError(f"Unsupported broker scheme: {scheme}")
    if "/" in value:
        value = value.split("/", 1)[0]
    if "@" in value:
        value = value.rsplit("@", 1)[1]

    host, _, maybe_port = value.rpartition(":")
    if host and maybe_port.isdigit():
        return BrokerAddress(host=host, port=int(maybe_port), tls=tls)
    return BrokerAddress(host=value, port=8883 if tls else 1883, tls=tls)


def parse_devices(env: Mapping[str, str]) -> tuple[Device, ...]:
    """Collect ``DEVICE_<n>=<type>:<id>`` entries, sorted by variable name.

    Malformed entries are logged and skipped. Returns an empty tuple when
    nothing valid was found; deciding whether that is fatal is up to the
    caller.
    """
    devices: list[Device] = []
    for key in sorted(k for k in env if k.startswith("DEVICE_")):
        value = env[key]
        if not value:
            continue
        device_type, _, device_id = value.partition(":")
        try:
            device = Device(device_type=device_type, device_id=device_id)
        except ValidationError:
            _logger.warning("Invalid device format for %s=%s, expected <type>:<id>", key, value)
            continue
        if device in devices:
            _logger.warning("Ignoring duplicate device %s from %s", device.key, key)
            continue
        _logger.info("Registering device %s from %s", device.key, key)
        devices.append(device)
    return tuple(devices)


@dataclasses.dataclass(frozen=True)
class BridgeConfig:
    """Bridge configuration.

    Parameters
    ----------
    devices : tuple[Device, ...]
        Devices to bridge.
    broker_url : str
        MQTT broker URL (``mqtt://``, ``mqtts://`` or bare host).
    client_id : str or None
        MQTT client id. When unset, a random ``hm2mqtt-xxxxxx`` id is
        fixed at construction.
    username : str or None
        Broker username.
    password : str or None
        Broker password.
    topic_prefix : str
        Prefix of the operator-facing topics.
    response_timeout : float
        Seconds to wait for a device to answer a refresh request.
    allowed_consecutive_timeouts : int
        Missed responses tolerated before a device is marked offline.
    polling_interval : float
        Default poll interval of the main data channel in seconds.
    keepalive : int
        MQTT keepalive in seconds.
    poll_extra_battery_data : bool
        Also poll the B2500 ``cd=16`` extra battery channel.
    discovery_interval : float
        Seconds between discovery re-publications.
    """

    devices: tuple[Device, ...] = ()
    broker_url: str = DEFAULT_BROKER_URL
    client_id: str | None = None
    username: str | None = None
    password: str | None = dataclasses.field(default=None, repr=False)
    topic_prefix: str = DEFAULT_TOPIC_PREFIX
    response_timeout: float = 15.0
    allowed_consecutive_timeouts: int = 3
    polling_interval: float = 60.0
    keepalive: int = 60
    poll_extra_battery_data: bool = False
    discovery_interval: float = 3600.0

    def __post_init__(self) -> None:
        if self.response_timeout <= 0:
            raise Hm2MqttConfigError("response_timeout must be positive")
        if self.polling_interval <= 0:
            raise Hm2MqttConfigError("polling_interval must be positive")
        if self.allowed_consecutive_timeouts < 1:
            raise Hm2MqttConfigError("allowed_consecutive_timeouts must be at least 1")
        if not self.topic_prefix.strip("/"):
            raise Hm2MqttConfigError("topic_prefix must be non-empty")
        if not self.client_id:
            object.__setattr__(self, "client_id", f"hm2mqtt-{secrets.token_hex(3)}")

    @property
    def effective_client_id(self) -> str:
        return self.client_id or ""

    @property
    def broker(self) -> BrokerAddress:
        return parse_broker_url(self.broker_url)

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None, **overrides: Any) -> BridgeConfig:
        """Create configuration from environment variables.

        Reads ``MQTT_*``, ``POLL_EXTRA_BATTERY_DATA`` and ``DEVICE_<n>``.
        Explicit keyword arguments override environment values.

        Parameters
        ----------
        env : Mapping[str, str] or None
            Environment to read; defaults to ``os.environ``.
        **overrides
            Explicit field values that take precedence over env vars.

        Returns
        -------
        BridgeConfig
            Populated configuration.
        """
        env = os.environ if env is None else env

        _ENV_CONFIG_MAP = {
            "MQTT_BROKER_URL": "broker_url",
            "MQTT_CLIENT_ID": "client_id",
            "MQTT_USERNAME": "username",
            "MQTT_PASSWORD": "password",
            "MQTT_TOPIC_PREFIX": "topic_prefix",
        }
        config_kwargs: dict[str, Any] = {}
        for env_key, field_name in _ENV_CONFIG_MAP.items():
            val = env.get(env_key)
            if val:
                config_kwargs[field_name] = val

        config_kwargs["response_timeout"] = _env_number(env, "MQTT_RESPONSE_TIMEOUT", 15.0)
        config_kwargs["allowed_consecutive_timeouts"] = _env_int(env, "MQTT_ALLOWED_CONSECUTIVE_TIMEOUTS", 3)
        config_kwargs["polling_interval"] = _env_number(env, "MQTT_POLLING_INTERVAL", 60.0)
        config_kwargs["keepalive"] = _env_int(env, "MQTT_KEEPALIVE", 60)
        config_kwargs["poll_extra_battery_data"] = _env_bool(env.get("POLL_EXTRA_BATTERY_DATA"), False)

        if "devices" not in overrides:
            config_kwargs["devices"] = parse_devices(env)

        config_kwargs.update(overrides)
        return cls(**config_kwargs)
