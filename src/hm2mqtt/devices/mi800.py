"""MI800 micro-inverter (``HMI``)."""

from __future__ import annotations

import enum
from collections.abc import Mapping
from typing import Any

from hm2mqtt import discovery
from hm2mqtt.devices._common import add_timestamp_sensor, int_in_range, is_on, require_choice
from hm2mqtt.schema.builder import SchemaBuilder
from hm2mqtt.schema.definitions import CommandContext, DeviceSchema
from hm2mqtt.schema.registry import SchemaOptions
from hm2mqtt.telegram import encode_command
from hm2mqtt.transforms import divide, equals_boolean, identity, map_value, number


class CommandCode(enum.IntEnum):
    READ_DEVICE_INFO = 1
    SET_MAX_OUTPUT_POWER = 8
    SET_MODE = 11
    GRID_CONNECTION_BAN = 22


RUNTIME_INFO_KEYS = ("ele_d", "pv1_v", "pv1_i", "pv1_p", "grd_f", "grd_v", "chp_t")
MAX_OUTPUT_POWER = 800
MODES = {"default": 0, "b2500Boost": 1, "reverseCurrentProtection": 2}


def is_runtime_info(values: Mapping[str, str]) -> bool:
    return all(key in values for key in RUNTIME_INFO_KEYS)


def device_info(state: Mapping[str, Any]) -> dict[str, Any]:
    version = state.get("firmwareVersion")
    return {} if version is None else {"firmware_version": str(version)}


def _max_output_power(context: CommandContext) -> None:
    power = int_in_range(context, 0, MAX_OUTPUT_POWER, what="maximum output power")
    context.update_state(lambda _current: {"maximumOutputPower": power})
    context.publish(encode_command(CommandCode.SET_MAX_OUTPUT_POWER, {"p1": power}))


def _mode(context: CommandContext) -> None:
    value = require_choice(context, MODES, what="mode")
    context.update_state(lambda _current: {"mode": context.message})
    context.publish(encode_command(CommandCode.SET_MODE, {"p1": value}))


def _grid_connection_ban(context: CommandContext) -> None:
    enabled = is_on(context.message, on_literal="on")
    context.update_state(lambda _current: {"gridConnectionBan": enabled})
    context.publish(encode_command(CommandCode.GRID_CONNECTION_BAN, {"p1": 1 if enabled else 0}))


_MEASUREMENTS: tuple[tuple[str, str, Any, str, str, dict[str, Any]], ...] = (
    ("ele_d", "dailyEnergyGenerated", divide(100), "daily_energy_generated", "Daily Energy Generated",
     {"device_class": "energy", "unit_of_measurement": "kWh", "state_class": "total_increasing"}),
    ("ele_w", "weeklyEnergyGenerated", divide(100), "weekly_energy_generated", "Weekly Energy Generated",
     {"device_class": "energy", "unit_of_measurement": "kWh", "state_class": "total_increasing"}),
    ("ele_m", "monthlyEnergyGenerated", divide(100), "monthly_energy_generated", "Monthly Energy Generated",
     {"device_class": "energy", "unit_of_measurement": "kWh", "state_class": "total_increasing"}),
    ("ele_s", "totalEnergyGenerated", divide(100), "total_energy_generated", "Total Energy Generated",
     {"device_class": "energy", "unit_of_measurement": "kWh", "state_class": "total_increasing"}),
    ("grd_f", "gridFrequency", divide(100), "grid_frequency", "Grid Frequency",
     {"device_class": "frequency", "unit_of_measurement": "Hz", "state_class": "measurement"}),
    ("grd_v", "gridVoltage", divide(10), "grid_voltage", "Grid Voltage",
     {"device_class": "voltage", "unit_of_measurement": "V", "state_class": "measurement"}),
    ("grd_o", "gridOutputPower", number(), "grid_output_power", "Grid Output Power",
     {"device_class": "power", "unit_of_measurement": "W", "state_class": "measurement"}),
    ("chp_t", "chipTemperature", number(), "chip_temperature", "Chip Temperature",
     {"device_class": "temperature", "unit_of_measurement": "°C", "state_class": "measurement"}),
    ("err_t", "errorType", number(), "error_type", "Error Type", {"icon": "mdi:alert-circle"}),
    ("err_c", "errorCount", number(), "error_count", "Error Count", {"icon": "mdi:counter"}),
    ("err_d", "errorDetails", number(), "error_details", "Error Details", {"icon": "mdi:information-outline"}),
    ("ver_s", "firmwareVersion", number(), "firmware_version", "Firmware Version", {"icon": "mdi:chip"}),
    ("fc4_v", "fc4Version", identity(), "fc4_version", "FC41D Firmware", {"icon": "mdi:chip"}),
)


def build_schema(options: SchemaOptions) -> DeviceSchema:
    builder = SchemaBuilder()
    data = builder.channel(
        "data",
        refresh_payload=f"cd={int(CommandCode.READ_DEVICE_INFO)}",
        poll_interval=options.polling_interval,
        matches=is_runtime_info,
        device_info=device_info,
    )
    add_timestamp_sensor(data)

    for n in (1, 2):
        data.field(f"pv{n}_v", f"pv{n}Voltage", divide(10))
        data.advertise(
            f"pv{n}Voltage",
            discovery.sensor(f"pv{n}_voltage", f"PV{n} Voltage", device_class="voltage",
                             unit_of_measurement="V", state_class="measurement"),
        )
        data.field(f"pv{n}_i", f"pv{n}Current", divide(10))
        data.advertise(
            f"pv{n}Current",
            discovery.sensor(f"pv{n}_current", f"PV{n} Current", device_class="current",
                             unit_of_measurement="A", state_class="measurement"),
        )
        data.field(f"pv{n}_p", f"pv{n}Power", number())
        data.advertise(
            f"pv{n}Power",
            discovery.sensor(f"pv{n}_power", f"PV{n} Power", device_class="power",
                             unit_of_measurement="W", state_class="measurement"),
        )
        data.field(f"pv{n}_s", f"pv{n}Status", equals_boolean("1"))
        data.advertise(f"pv{n}Status", discovery.binary_sensor(f"pv{n}_status", f"PV{n} Active", device_class="power"))

    for key, path, transform, object_id, name, extra in _MEASUREMENTS:
        data.field(key, path, transform)
        data.advertise(path, discovery.sensor(object_id, name, **extra))

    data.field("grd_s", "gridStatus", equals_boolean("1"))
    data.advertise("gridStatus", discovery.binary_sensor("grid_status", "Grid Connected", device_class="connectivity"))

    data.field("pl", "maximumOutputPower", number())
    data.advertise(
        "maximumOutputPower",
        discovery.number(
            "maximum_output_power",
            "Maximum Output Power",
            command="max-output-power",
            min=0,
            max=MAX_OUTPUT_POWER,
            step=1,
            unit_of_measurement="W",
            icon="mdi:flash",
        ),
    )
    data.command("max-output-power", _max_output_power)

    data.field("mpt_m", "mode", map_value({"0": "default", "1": "b2500Boost", "2": "reverseCurrentProtection"}, "default"))
    data.advertise(
        "mode",
        discovery.select(
            "mode",
            "Mode",
            command="mode",
            icon="mdi:cog",
            value_mappings={
                "default": "Default",
                "b2500Boost": "B2500 Boost",
                "reverseCurrentProtection": "Reverse Current Protection",
            },
        ),
    )
    data.command("mode", _mode)

    data.field("gc", "gridConnectionBan", equals_boolean("1"))
    data.advertise(
        "gridConnectionBan",
        discovery.switch(
            "grid_connection_ban", "Grid Connection Ban", command="grid-connection-ban", icon="mdi:transmission-tower-off"
        ),
    )
    data.command("grid-connection-ban", _grid_connection_ban)
    return builder.build()
