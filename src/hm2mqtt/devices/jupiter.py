"""Jupiter micro-storage (``HMN``, ``HMM``, ``JPLS``).

The protocol is a subset of the Venus one; time periods are five slots
whose ``md`` follows the current working mode.
"""

from __future__ import annotations

import enum
from collections.abc import Mapping
from typing import Any

from hm2mqtt import discovery
from hm2mqtt.devices import venus
from hm2mqtt.devices._common import add_buttons, add_timestamp_sensor, has_keys, int_in_range, require_choice
from hm2mqtt.schema.builder import ChannelBuilder, SchemaBuilder
from hm2mqtt.schema.definitions import CommandContext, DeviceSchema
from hm2mqtt.schema.registry import SchemaOptions
from hm2mqtt.telegram import encode_command
from hm2mqtt.transforms import equals_boolean, identity, map_value


class CommandCode(enum.IntEnum):
    READ_DEVICE_INFO = 1
    SET_WORKING_MODE = 2
    SET_TIME_PERIOD = 3
    SET_DEVICE_TIME = 4
    FACTORY_RESET = 5
    SURPLUS_FEED_IN = 13
    DISCHARGE_DEPTH = 56


RUNTIME_INFO_KEYS = (
    "ele_d", "ele_m", "ele_y", "pv1_p", "pv2_p", "pv3_p", "pv4_p", "grd_d", "grd_m", "grd_o", "grd_t",
    "gct_s", "cel_s", "cel_p", "cel_c", "err_t", "wor_m", "tim_0", "tim_1", "tim_2", "tim_3", "tim_4",
    "cts_m", "htt_p", "wif_s", "ct_t", "phase_t", "dchrg", "ssid", "dev_n",
)

TIME_PERIOD_COUNT = 5
MAX_POWER = 800
WORKING_MODES = {"automatic": 1, "manual": 2}


def time_period_mode(state: Mapping[str, Any]) -> int:
    """``md`` of ``cd=3``: 1 in automatic mode, 2 otherwise."""
    return 1 if state.get("workingMode") == "automatic" else 2


def _working_mode(context: CommandContext) -> None:
    mode = require_choice(context, WORKING_MODES, what="working mode")
    context.update_state(lambda _current: {"workingMode": context.message})
    context.publish(encode_command(CommandCode.SET_WORKING_MODE, {"md": mode}))


def _surplus_feed_in(context: CommandContext) -> None:
    message = context.message.lower()
    enabled = message in ("true", "1", "on", "3")
    context.update_state(lambda _current: {"surplusFeedIn": enabled})
    context.publish(encode_command(CommandCode.SURPLUS_FEED_IN, {"full_d": 1 if enabled else 0}))


def _discharge_depth(context: CommandContext) -> None:
    depth = int_in_range(context, 30, 88, what="discharge depth")
    context.update_state(lambda _current: {"dischargeDepth": depth})
    context.publish(encode_command(CommandCode.DISCHARGE_DEPTH, {"dod": depth}))


def _sensor(key: str, path: str, object_id: str, name: str, transform: Any = None, **extra: Any) -> tuple:
    return key, path, object_id, name, transform, extra


_ENERGY = {"device_class": "energy", "unit_of_measurement": "kWh", "state_class": "total"}
_POWER = {"device_class": "power", "unit_of_measurement": "W"}

_SENSORS = (
    _sensor("ele_d", "dailyChargingCapacity", "daily_charging_capacity", "Daily Charging Capacity", **_ENERGY),
    _sensor("ele_m", "monthlyChargingCapacity", "monthly_charging_capacity", "Monthly Charging Capacity", **_ENERGY),
    _sensor("ele_y", "yearlyChargingCapacity", "yearly_charging_capacity", "Yearly Charging Capacity", **_ENERGY),
    _sensor("pv1_p", "pv1Power", "pv1_power", "PV1 Power", **_POWER),
    _sensor("pv2_p", "pv2Power", "pv2_power", "PV2 Power", **_POWER),
    _sensor("pv3_p", "pv3Power", "pv3_power", "PV3 Power", **_POWER),
    _sensor("pv4_p", "pv4Power", "pv4_power", "PV4 Power", **_POWER),
    _sensor("grd_d", "dailyDischargeCapacity", "daily_discharge_capacity", "Daily Discharge Capacity", **_ENERGY),
    _sensor("grd_m", "monthlyDischargeCapacity", "monthly_discharge_capacity", "Monthly Discharge Capacity", **_ENERGY),
    _sensor("grd_o", "combinedPower", "combined_power", "Combined Power", **_POWER),
    _sensor("grd_t", "workingStatus", "working_status", "Working Status"),
    _sensor("gct_s", "ctStatus", "ct_status", "CT Status"),
    _sensor("cel_s", "batteryWorkingStatus", "battery_working_status", "Battery Working Status"),
    _sensor("cel_p", "batteryEnergy", "battery_energy", "Battery Energy", unit_of_measurement="kWh"),
    _sensor("cel_c", "batterySoc", "battery_soc", "Battery SOC", unit_of_measurement="%", device_class="battery"),
    _sensor("err_t", "errorCode", "error_code", "Error Code", icon="mdi:alert-circle"),
    _sensor("htt_p", "httpServerType", "http_server_type", "HTTP Server Type"),
    _sensor("wif_s", "wifiSignalStrength", "wifi_signal_strength", "WiFi Signal Strength", icon="mdi:wifi"),
    _sensor("ct_t", "ctType", "ct_type", "CT Type"),
    _sensor("phase_t", "phaseType", "phase_type", "Phase Type"),
    _sensor("dchrg", "rechargeMode", "recharge_mode", "Recharge Mode"),
    _sensor("dev_n", "deviceVersion", "device_version", "Device Version", icon="mdi:information"),
    _sensor("ssid", "wifiName", "wifi_name", "WiFi Name", identity(), icon="mdi:wifi"),
)


def _register_fields(data: ChannelBuilder) -> None:
    add_timestamp_sensor(data)
    for key, path, object_id, name, transform, extra in _SENSORS:
        data.field(key, path, transform)
        data.advertise(path, discovery.sensor(object_id, name, **extra))

    data.field("wor_m", "workingMode", map_value({"1": "automatic", "2": "manual"}, "automatic"))
    data.advertise(
        "workingMode",
        discovery.select(
            "working_mode",
            "Working Mode",
            command="working-mode",
            icon="mdi:cog",
            value_mappings={"automatic": "Automatic", "manual": "Manual"},
        ),
    )
    data.field("cts_m", "autoSwitchWorkingMode", equals_boolean("1"))
    data.advertise(
        "autoSwitchWorkingMode",
        discovery.binary_sensor("auto_switch_working_mode", "Auto Switch Working Mode"),
    )
    data.field("ful_d", "surplusFeedIn", equals_boolean("1"))
    data.advertise(
        "surplusFeedIn",
        discovery.switch("surplus_feed_in", "Surplus Feed-in", command="surplus-feed-in", icon="mdi:transfer"),
    )
    data.advertise(
        "dischargeDepth",
        discovery.number(
            "discharge_depth",
            "Discharge Depth",
            command="discharge-depth",
            min=30,
            max=88,
            unit_of_measurement="%",
        ),
    )


def build_schema(options: SchemaOptions) -> DeviceSchema:
    builder = SchemaBuilder()
    data = builder.channel(
        "data",
        refresh_payload="cd=1",
        poll_interval=options.polling_interval,
        matches=has_keys(*RUNTIME_INFO_KEYS),
        device_info=venus.device_info,
    )
    _register_fields(data)

    data.command("working-mode", _working_mode)
    data.command("surplus-feed-in", _surplus_feed_in)
    data.command("discharge-depth", _discharge_depth)
    data.command("refresh", venus.press_command(CommandCode.READ_DEVICE_INFO))
    data.command("factory-reset", venus.press_command(CommandCode.FACTORY_RESET, {"rs": 2}))
    data.command("sync-time", venus.sync_time(CommandCode.SET_DEVICE_TIME))
    add_buttons(
        data,
        (
            ("refresh", "Refresh", "mdi:refresh", "refresh"),
            ("factory_reset", "Factory Reset", "mdi:delete-forever", "factory-reset"),
            ("sync_time", "Sync Time", "mdi:clock-sync", "sync-time"),
        ),
    )

    venus.register_time_periods(data, TIME_PERIOD_COUNT, max_power=MAX_POWER, mode=time_period_mode)
    return builder.build()
