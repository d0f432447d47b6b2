"""Home Assistant MQTT discovery documents.

Component builders return an :data:`AdvertiseBuilder`; the builder is
stored in a channel's advertisements and evaluated against the device's
topics when discovery is published.
"""

from __future__ import annotations

import json
import re
from collections.abc import Iterator, Mapping, Sequence
from typing import Any

from hm2mqtt.models.device import Device
from hm2mqtt.schema.definitions import AdvertiseArgs, AdvertiseBuilder, DeviceSchema
from hm2mqtt.state.addressing import DeviceTopics, bridge_availability_topic
from hm2mqtt.state.paths import PathKey

DISCOVERY_PREFIX = "homeassistant"
ORIGIN = {"name": "hm2mqtt", "url": "https://github.com/tomquist/hm2mqtt"}

_UNSAFE_ID = re.compile(r"[^a-zA-Z0-9_-]")


def _command_topic(args: AdvertiseArgs, command: str) -> str:
    return f"{args.command_topic}/{command}"


def jinja_path(key_path: Sequence[PathKey]) -> str:
    """``("a", 0, "b")`` → ``value_json.a[0].b``."""
    return "value_json" + "".join(f"[{key}]" if isinstance(key, int) else f".{key}" for key in key_path)


def _mapping_template(value: str, mappings: Mapping[Any, Any]) -> str:
    mapping = json.dumps({str(k): str(v) for k, v in mappings.items()}, separators=(",", ":"))
    return (
        f"{{% set mapping = {mapping} %}}{{% set stringifiedValue = {value} | string %}}"
        "{% if stringifiedValue in mapping %}{{ mapping[stringifiedValue] }}"
        "{% else %}{{ stringifiedValue }}{% endif %}"
    )


def _value_template(
    args: AdvertiseArgs,
    *,
    value_mappings: Mapping[Any, str] | None = None,
    default_value: str | None = None,
) -> str:
    value = jinja_path(args.key_path)
    if value_mappings:
        return _mapping_template(value, value_mappings)
    if default_value:
        return f"{{{{ {value} | default('{default_value}') }}}}"
    return f"{{{{ {value} }}}}"


def _base(kind: str, object_id: str, name: str, extra: Mapping[str, Any]) -> dict[str, Any]:
    config: dict[str, Any] = {"type": kind, "id": object_id, "name": name}
    for key in ("device_class", "icon", "enabled_by_default", "entity_category"):
        if extra.get(key) is not None:
            config[key] = extra[key]
    return config


def _drop_none(config: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in config.items() if value is not None}


def sensor(
    object_id: str,
    name: str,
    *,
    unit_of_measurement: str | None = None,
    state_class: str | None = None,
    value_mappings: Mapping[Any, str] | None = None,
    default_value: str | None = None,
    **extra: Any,
) -> AdvertiseBuilder:
    def _build(args: AdvertiseArgs) -> dict[str, Any]:
        config = _base("sensor", object_id, name, extra)
        config["state_topic"] = args.state_topic
        config["value_template"] = _value_template(
            args, value_mappings=value_mappings, default_value=default_value
        )
        config["unit_of_measurement"] = unit_of_measurement
        config["state_class"] = state_class
        return _drop_none(config)

    return _build


def binary_sensor(object_id: str, name: str, **extra: Any) -> AdvertiseBuilder:
    def _build(args: AdvertiseArgs) -> dict[str, Any]:
        config = _base("binary_sensor", object_id, name, extra)
        config["state_topic"] = args.state_topic
        config["value_template"] = _value_template(args)
        config["payload_on"] = True
        config["payload_off"] = False
        return config

    return _build


def switch(object_id: str, name: str, *, command: str, **extra: Any) -> AdvertiseBuilder:
    def _build(args: AdvertiseArgs) -> dict[str, Any]:
        config = _base("switch", object_id, name, extra)
        config["state_topic"] = args.state_topic
        config["command_topic"] = _command_topic(args, command)
        config["value_template"] = _value_template(args)
        config.update(payload_on="true", payload_off="false", state_on=True, state_off=False)
        return config

    return _build


def number(
    object_id: str,
    name: str,
    *,
    command: str,
    min: float | None = None,
    max: float | None = None,
    step: float | None = None,
    unit_of_measurement: str | None = None,
    **extra: Any,
) -> AdvertiseBuilder:
    def _build(args: AdvertiseArgs) -> dict[str, Any]:
        config = _base("number", object_id, name, extra)
        config["state_topic"] = args.state_topic
        config["command_topic"] = _command_topic(args, command)
        config["value_template"] = _value_template(args)
        config.update(unit_of_measurement=unit_of_measurement, min=min, max=max, step=step)
        return _drop_none(config)

    return _build


def text(
    object_id: str,
    name: str,
    *,
    command: str,
    pattern: str | None = None,
    min: int | None = None,
    max: int | None = None,
    **extra: Any,
) -> AdvertiseBuilder:
    def _build(args: AdvertiseArgs) -> dict[str, Any]:
        config = _base("text", object_id, name, extra)
        config["state_topic"] = args.state_topic
        config["command_topic"] = _command_topic(args, command)
        config["value_template"] = _value_template(args)
        config.update(pattern=pattern, min=min, max=max)
        return _drop_none(config)

    return _build


def select(
    object_id: str,
    name: str,
    *,
    command: str,
    value_mappings: Mapping[Any, str],
    **extra: Any,
) -> AdvertiseBuilder:
    """Select entity; *value_mappings* maps state values to option labels."""
    reverse = {label: key for key, label in value_mappings.items()}

    def _build(args: AdvertiseArgs) -> dict[str, Any]:
        config = _base("select", object_id, name, extra)
        config["state_topic"] = args.state_topic
        config["command_topic"] = _command_topic(args, command)
        config["value_template"] = _mapping_template(jinja_path(args.key_path), value_mappings)
        config["command_template"] = _mapping_template("value", reverse)
        config["options"] = list(value_mappings.values())
        return config

    return _build


def button(object_id: str, name: str, *, command: str, payload_press: Any = "PRESS", **extra: Any) -> AdvertiseBuilder:
    def _build(args: AdvertiseArgs) -> dict[str, Any]:
        config = _base("button", object_id, name, extra)
        config["command_topic"] = _command_topic(args, command)
        config["payload_press"] = payload_press
        return config

    return _build


def node_id(device: Device) -> str:
    return _UNSAFE_ID.sub("_", f"{device.device_type}_{device.device_id}")


def device_block(device: Device, device_info: Mapping[str, Any]) -> dict[str, Any]:
    block: dict[str, Any] = {
        "ids": [f"hame_energy_{device.device_id}"],
        "name": f"HAME Energy {device.device_type} {device.device_id}",
        "model_id": device.device_type,
        "manufacturer": "HAME Energy",
    }
    firmware = device_info.get("firmware_version")
    if firmware is not None:
        block["sw_version"] = firmware
    return block


def _availability(topic_prefix: str, topics: DeviceTopics) -> list[dict[str, str]]:
    return [
        {"topic": topic, "payload_available": "online", "payload_not_available": "offline"}
        for topic in (bridge_availability_topic(topic_prefix), topics.availability_topic)
    ]


def generate_discovery_configs(
    device: Device,
    topics: DeviceTopics,
    schema: DeviceSchema,
    state: Mapping[str, Any],
    *,
    topic_prefix: str = "hm2mqtt",
) -> Iterator[tuple[str, dict[str, Any]]]:
    """Yield ``(config_topic, config)`` for every enabled advertisement."""
    node = node_id(device)
    block = device_block(device, schema.device_info(state))
    availability = _availability(topic_prefix, topics)

    for channel in schema.channels:
        if not channel.enabled:
            continue
        for advertisement in channel.advertisements:
            if not advertisement.is_enabled(state):
                continue
            component = advertisement.builder(
                AdvertiseArgs(
                    command_topic=topics.control_subscription_topic,
                    state_topic=topics.state_topic(channel.key),
                    key_path=advertisement.key_path,
                )
            )
            platform = component.pop("type")
            object_id = _UNSAFE_ID.sub("_", component.pop("id"))
            config = {
                **component,
                "availability": availability,
                "unique_id": f"{device.device_id}_{object_id}",
                "device": block,
                "origin": ORIGIN,
            }
            yield f"{DISCOVERY_PREFIX}/{platform}/{node}/{object_id}/config", config
