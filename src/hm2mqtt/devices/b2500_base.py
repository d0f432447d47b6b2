"""Fields and commands shared by every B2500 generation.

Both the V1 (``HMB``) and V2 (``HMA``/``HMF``/``HMJ``/``HMK``) schemas start
from :func:`register_base_fields` and :func:`register_base_commands` and add
their own controls on top.
"""

from __future__ import annotations

import enum
import logging
from collections.abc import Mapping
from typing import Any

from hm2mqtt import discovery
from hm2mqtt.devices._common import (
    add_buttons,
    add_timestamp_sensor,
    int_in_range,
    is_press,
    nested,
)
from hm2mqtt.schema.builder import ChannelBuilder
from hm2mqtt.schema.definitions import CommandContext
from hm2mqtt.telegram import encode_command
from hm2mqtt.transforms import bit_boolean, boolean, identity, map_value

_logger = logging.getLogger(__name__)


class CommandCode(enum.IntEnum):
    """B2500 ``cd`` values (flash-persisted variants)."""

    READ_DEVICE_INFO = 1
    CHARGING_MODE = 3
    DISCHARGE_MODE = 4
    DISCHARGE_DEPTH = 5
    BATTERY_OUTPUT_THRESHOLD = 6
    TIMED_DISCHARGE = 7
    SYNC_TIME = 8
    TIME_ZONE = 9
    SOFTWARE_RESTART = 10
    FACTORY_RESET = 11
    EXTRA_BATTERY_DATA = 16
    SET_CONNECTED_PHASE = 22
    SURPLUS_FEED_IN = 31


# RAM-only equivalents; codes missing here have no non-flash variant.
NO_FLASH_CODES: dict[CommandCode, int] = {
    CommandCode.CHARGING_MODE: 17,
    CommandCode.DISCHARGE_MODE: 18,
    CommandCode.DISCHARGE_DEPTH: 19,
    CommandCode.TIMED_DISCHARGE: 20,
}

RUNTIME_INFO_KEYS = ("pe", "kn", "do", "p1", "p2", "w1", "w2", "vv", "o1", "o2", "g1", "g2")

DEFAULT_STATE: dict[str, Any] = {"useFlashCommands": True}


def command_code(code: CommandCode, use_flash: bool) -> int:
    if use_flash:
        return int(code)
    return NO_FLASH_CODES.get(code, int(code))


def b2500_command(code: CommandCode, params: Mapping[str, Any] | None = None, *, use_flash: bool = True) -> str:
    """Encode a B2500 command, switching to the non-flash code when asked."""
    return encode_command(command_code(code, use_flash), params)


def uses_flash(state: Mapping[str, Any]) -> bool:
    return bool(state.get("useFlashCommands", True))


def is_runtime_info(values: Mapping[str, str]) -> bool:
    return all(key in values for key in RUNTIME_INFO_KEYS)


def device_info(state: Mapping[str, Any]) -> dict[str, Any]:
    """``firmware_version`` as ``<vv>[.<sv>]`` once the version is known."""
    version = nested(state, "deviceInfo", "deviceVersion")
    if not version:
        return {}
    subversion = nested(state, "deviceInfo", "deviceSubversion")
    firmware = f"{version}.{subversion}" if subversion else f"{version}"
    return {"firmware_version": firmware}


def _power_sensor(object_id: str, name: str) -> Any:
    return discovery.sensor(object_id, name, device_class="power", unit_of_measurement="W")


def _capacity_sensor(object_id: str, name: str) -> Any:
    return discovery.sensor(object_id, name, device_class="energy_storage", unit_of_measurement="Wh")


_STATUS_FLAGS = (
    (0, "discharging", "Discharging"),
    (1, "charging", "Charging"),
    (2, "depthOfDischarge", "Depth of Discharge"),
    (3, "undervoltage", "Undervoltage"),
)


def _battery_status(channel: ChannelBuilder, key: str, pack: str, label: str, *, offset: int = 0) -> None:
    for bit, attribute, title in _STATUS_FLAGS:
        path = ("batteryStatus", pack, attribute)
        channel.field(key, path, bit_boolean(bit + offset))
        object_id = f"{pack}_battery_{discovery_id(attribute)}"
        channel.advertise(path, discovery.binary_sensor(object_id, f"{label} {title}", device_class="power"))


def discovery_id(attribute: str) -> str:
    """``depthOfDischarge`` → ``depth_of_discharge``."""
    return "".join(f"_{c.lower()}" if c.isupper() else c for c in attribute)


def register_base_fields(channel: ChannelBuilder) -> None:
    """Register the runtime fields common to all B2500 models."""
    add_timestamp_sensor(channel)

    channel.field("pe", "batteryPercentage")
    channel.advertise(
        "batteryPercentage",
        discovery.sensor(
            "battery_percentage", "Battery Percentage", device_class="battery", unit_of_measurement="%"
        ),
    )
    channel.field("kn", "batteryCapacity")
    channel.advertise("batteryCapacity", _capacity_sensor("battery_capacity", "Battery Capacity"))
    channel.field("do", "dischargeDepth")
    channel.advertise(
        "dischargeDepth", discovery.sensor("discharge_depth", "Discharge Depth", unit_of_measurement="%")
    )

    for n in (1, 2):
        for bit, attribute, label in ((0, "Charging", "Charging"), (1, "PassThrough", "Pass Through")):
            path = ("solarInputStatus", f"input{n}{attribute}")
            channel.field(f"p{n}", path, bit_boolean(bit))
            channel.advertise(
                path,
                discovery.binary_sensor(
                    f"input{n}_{discovery_id(attribute).lstrip('_')}", f"Input {n} {label}", device_class="power"
                ),
            )
        channel.field(f"w{n}", ("solarPower", f"input{n}"))
        channel.advertise(("solarPower", f"input{n}"), _power_sensor(f"input{n}_power", f"Input {n} Power"))

    channel.field("vv", ("deviceInfo", "deviceVersion"))
    channel.field("sv", ("deviceInfo", "deviceSubversion"))
    channel.field("fc", ("deviceInfo", "fc42dVersion"), identity())
    channel.field("id", ("deviceInfo", "deviceIdNumber"))
    channel.field("uv", ("deviceInfo", "bootloaderVersion"))

    for n in (1, 2):
        channel.field(f"o{n}", ("outputState", f"output{n}"), boolean())
        channel.advertise(
            ("outputState", f"output{n}"),
            discovery.binary_sensor(f"output{n}_active_state", f"Output {n} Active", device_class="power"),
        )
        channel.field(f"g{n}", ("outputPower", f"output{n}"))
        channel.advertise(("outputPower", f"output{n}"), _power_sensor(f"output{n}_power", f"Output {n} Power"))

    channel.field("tl", ("temperature", "min"))
    channel.advertise(
        ("temperature", "min"),
        discovery.sensor("temperature_min", "Temperature Min", device_class="temperature", unit_of_measurement="°C"),
    )
    channel.field("th", ("temperature", "max"))
    channel.advertise(
        ("temperature", "max"),
        discovery.sensor("temperature_max", "Temperature Max", device_class="temperature", unit_of_measurement="°C"),
    )
    channel.field("tc", ("temperature", "chargingAlarm"), boolean())
    channel.advertise(
        ("temperature", "chargingAlarm"),
        discovery.binary_sensor("temperature_charging_alarm", "Temperature Charging Alarm", device_class="problem"),
    )
    channel.field("tf", ("temperature", "dischargeAlarm"), boolean())
    channel.advertise(
        ("temperature", "dischargeAlarm"),
        discovery.binary_sensor("temperature_discharge_alarm", "Temperature Discharge Alarm", device_class="problem"),
    )

    for n in (1, 2):
        channel.field(f"b{n}", ("batteryPacks", f"pack{n}Connected"), boolean())
        channel.advertise(
            ("batteryPacks", f"pack{n}Connected"),
            discovery.binary_sensor(
                f"battery_pack{n}_connected", f"Battery Pack {n} Connected", device_class="connectivity"
            ),
        )

    channel.field("cj", "scene", map_value({"0": "day", "1": "night", "2": "dusk"}))
    channel.advertise(
        "scene",
        discovery.sensor(
            "scene",
            "Scene",
            icon="mdi:weather-sunset",
            value_mappings={"day": "Day", "night": "Night", "dusk": "Dusk"},
        ),
    )

    _battery_status(channel, "l0", "host", "Host Battery")
    _battery_status(channel, "l1", "extra2", "Extra 2 Battery")
    _battery_status(channel, "l1", "extra1", "Extra 1 Battery", offset=4)

    for key, pack, label in (("a0", "host", "Host"), ("a1", "extra1", "Extra 1"), ("a2", "extra2", "Extra 2")):
        channel.field(key, ("batteryCapacities", pack))
        channel.advertise(("batteryCapacities", pack), _capacity_sensor(f"{pack}_battery_capacity", f"{label} Battery Capacity"))


def _discharge_depth(context: CommandContext) -> None:
    depth = int_in_range(context, 0, 100, what="discharge depth")
    context.publish(b2500_command(CommandCode.DISCHARGE_DEPTH, {"md": depth}, use_flash=uses_flash(context.state)))


def _simple(code: CommandCode):
    def _handler(context: CommandContext) -> None:
        if not is_press(context.message):
            _logger.debug("Ignoring %s payload %r for %s", context.command, context.message, context.device)
            return
        context.publish(b2500_command(code, use_flash=uses_flash(context.state)))

    return _handler


def _use_flash_commands(context: CommandContext) -> None:
    enabled = context.message.lower() == "true" or context.message == "1"
    state = context.update_state(lambda _current: {"useFlashCommands": enabled})
    _logger.info(
        "Flash commands %s for %s",
        "enabled" if state.get("useFlashCommands") else "disabled",
        context.device.device_id,
    )


def register_base_commands(channel: ChannelBuilder) -> None:
    """``discharge-depth``, ``restart``, ``refresh``, ``factory-reset`` and
    ``use-flash-commands``."""
    channel.command("discharge-depth", _discharge_depth)
    channel.command("restart", _simple(CommandCode.SOFTWARE_RESTART))
    channel.command("refresh", _simple(CommandCode.READ_DEVICE_INFO))
    channel.command("factory-reset", _simple(CommandCode.FACTORY_RESET))
    channel.command("use-flash-commands", _use_flash_commands)

    add_buttons(
        channel,
        (
            ("restart", "Restart", "mdi:restart", "restart"),
            ("refresh", "Refresh", "mdi:refresh", "refresh"),
            ("factory_reset", "Factory Reset", "mdi:delete-forever", "factory-reset"),
        ),
    )
    channel.advertise(
        "useFlashCommands",
        discovery.switch(
            "use_flash_commands",
            "Use Flash Commands",
            command="use-flash-commands",
            icon="mdi:flash",
            enabled_by_default=False,
        ),
    )
