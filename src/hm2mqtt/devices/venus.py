"""Venus storage system (``HMG``)."""

from __future__ import annotations

import enum
import json
import logging
import re
from collections.abc import Callable, Mapping
from datetime import datetime
from typing import Any

from pydantic import ValidationError

from hm2mqtt import discovery
from hm2mqtt.devices._common import (
    add_buttons,
    add_timestamp_sensor,
    int_in_range,
    is_on,
    is_press,
    local_time_params,
    require_choice,
    require_match,
)
from hm2mqtt.exceptions import CommandValidationError
from hm2mqtt.models.commands import TransactionModeParams
from hm2mqtt.schema.builder import ChannelBuilder, SchemaBuilder
from hm2mqtt.schema.definitions import CommandContext, DeviceSchema
from hm2mqtt.schema.registry import SchemaOptions
from hm2mqtt.telegram import encode_command
from hm2mqtt.transforms import divide, equals_boolean, identity, map_value, multiply, time_period_field, weekdays_to_bitmask

_logger = logging.getLogger(__name__)


class CommandCode(enum.IntEnum):
    READ_DEVICE_INFO = 1
    SET_WORKING_MODE = 2
    SET_TIME_PERIOD = 3
    SET_DEVICE_TIME = 4
    FACTORY_RESET = 5
    SET_VERSION = 15
    SET_MAX_CHARGING_POWER = 16
    GET_CT_POWER = 19
    LOCAL_API = 30


RUNTIME_INFO_KEYS = (
    "cel_p", "cel_c", "tot_i", "tot_o", "ele_d", "ele_m", "grd_d", "grd_m", "inc_d", "inc_m", "inc_a",
    "grd_f", "grd_o", "grd_t", "gct_s", "cel_s", "err_t", "err_a", "dev_n", "grd_y", "wor_m",
)

TIME_PATTERN = re.compile(r"^([0-1]?[0-9]|2[0-3]):[0-5][0-9]$")
WEEKDAY_PATTERN = re.compile(r"^[0-6]*$")
TIME_PERIOD_COUNT = 10
MAX_POWER = 2500
LOCAL_API_MIN_VERSION = 153
DEFAULT_LOCAL_API_PORT = 30000

WORKING_MODES = {"automatic": 0, "manual": 1, "trading": 2}
VERSIONS = {"800W": 800, "2500W": 2500}

WORKING_STATUS = {
    "0": "sleep",
    "1": "standby",
    "2": "charging",
    "3": "discharging",
    "4": "backup",
    "5": "upgrading",
    "6": "bypass",
}
CT_STATUS = {"0": "notConnected", "1": "connected", "2": "weakSignal"}
BATTERY_STATUS = {"1": "notWorking", "2": "charging", "3": "discharging"}
GRID_TYPES = {
    "0": "adaptive",
    "1": "en50549",
    "2": "netherlands",
    "3": "germany",
    "4": "austria",
    "5": "unitedKingdom",
    "6": "spain",
    "7": "poland",
    "8": "italy",
    "9": "china",
}


def is_runtime_info(values: Mapping[str, str]) -> bool:
    return all(key in values for key in RUNTIME_INFO_KEYS)


def device_info(state: Mapping[str, Any]) -> dict[str, Any]:
    version = state.get("deviceVersion")
    if version is None:
        return {}
    return {"firmware_version": str(version)}


def normalize_time(value: str) -> str:
    """``06:30`` → ``6:30``; minutes keep two digits."""
    hours, minutes = value.split(":")
    return f"{int(hours)}:{int(minutes):02d}"


def time_period_params(period: Mapping[str, Any], index: int, *, mode: int = 1) -> dict[str, Any]:
    """Parameters of ``cd=3`` for one stored period."""
    return {
        "md": mode,
        "nm": index,
        "bt": period.get("startTime"),
        "et": period.get("endTime"),
        "wk": weekdays_to_bitmask(period.get("weekday") or ""),
        "vv": period.get("power"),
        "as": 1 if period.get("enabled") else 0,
    }


def time_period_value(context: CommandContext, setting: str, *, max_power: int) -> tuple[str, Any]:
    """Validate a ``time-period/<i>/<setting>`` payload into ``(attribute, value)``."""
    if setting == "enabled":
        return "enabled", is_on(context.message)
    if setting == "start-time":
        return "startTime", normalize_time(require_match(context, TIME_PATTERN, what="start time"))
    if setting == "end-time":
        return "endTime", normalize_time(require_match(context, TIME_PATTERN, what="end time"))
    if setting == "power":
        return "power", int_in_range(context, 0, max_power, what="power")
    weekday = require_match(context, WEEKDAY_PATTERN, what="weekday")
    return "weekday", "".join(sorted(set(weekday)))


def time_period_handler(
    index: int,
    setting: str,
    *,
    max_power: int,
    mode: Callable[[Mapping[str, Any]], int] = lambda _state: 1,
):
    """Handler that rewrites one stored period and sends it with ``cd=3``."""

    def _handler(context: CommandContext) -> None:
        attribute, value = time_period_value(context, setting, max_power=max_power)
        md = mode(context.state)

        def _apply(current: Mapping[str, Any]) -> dict[str, Any]:
            periods = list(current.get("timePeriods") or [])
            if len(periods) <= index or not isinstance(periods[index], Mapping):
                raise CommandValidationError(
                    f"Time period {index} not found in device state",
                    command=context.command,
                    payload=context.message,
                )
            periods[index] = {**periods[index], attribute: value}
            context.publish(
                encode_command(CommandCode.SET_TIME_PERIOD, time_period_params(periods[index], index, mode=md))
            )
            return {"timePeriods": periods}

        context.update_state(_apply)

    return _handler


def register_time_periods(
    channel: ChannelBuilder,
    count: int,
    *,
    max_power: int,
    mode: Callable[[Mapping[str, Any]], int] = lambda _state: 1,
) -> None:
    """Fields, entities and commands for ``tim_0`` .. ``tim_<count-1>``."""
    for i in range(count):
        key = f"tim_{i}"
        for attribute in ("startTime", "endTime", "weekday", "power", "enabled"):
            channel.field(key, ("timePeriods", i, attribute), time_period_field(attribute))  # type: ignore[arg-type]

        channel.advertise(
            ("timePeriods", i, "enabled"),
            discovery.switch(
                f"time_period_{i}_enabled",
                f"Time Period {i} Enabled",
                command=f"time-period/{i}/enabled",
                icon="mdi:clock-time-four-outline",
            ),
        )
        channel.advertise(
            ("timePeriods", i, "startTime"),
            discovery.text(
                f"time_period_{i}_start_time",
                f"Time Period {i} Time From",
                command=f"time-period/{i}/start-time",
                pattern=TIME_PATTERN.pattern,
            ),
        )
        channel.advertise(
            ("timePeriods", i, "endTime"),
            discovery.text(
                f"time_period_{i}_end_time",
                f"Time Period {i} Time To",
                command=f"time-period/{i}/end-time",
                pattern=TIME_PATTERN.pattern,
            ),
        )
        channel.advertise(
            ("timePeriods", i, "power"),
            discovery.number(
                f"time_period_{i}_power",
                f"Time Period {i} Power",
                command=f"time-period/{i}/power",
                min=0,
                max=max_power,
                unit_of_measurement="W",
                icon="mdi:flash",
            ),
        )
        channel.advertise(
            ("timePeriods", i, "weekday"),
            discovery.text(
                f"time_period_{i}_weekday",
                f"Time Period {i} Weekday",
                command=f"time-period/{i}/weekday",
                pattern="^0?1?2?3?4?5?6?$",
            ),
        )
        for setting in ("enabled", "start-time", "end-time", "power", "weekday"):
            channel.command(
                f"time-period/{i}/{setting}",
                time_period_handler(i, setting, max_power=max_power, mode=mode),
            )


def press_command(code: int, params: Mapping[str, Any] | None = None):
    def _handler(context: CommandContext) -> None:
        if is_press(context.message):
            context.publish(encode_command(code, params))

    return _handler


def sync_time(code: int):
    def _handler(context: CommandContext) -> None:
        if is_press(context.message):
            context.publish(encode_command(code, local_time_params(datetime.now())))

    return _handler


def _working_mode(context: CommandContext) -> None:
    mode = require_choice(context, WORKING_MODES, what="working mode")
    context.update_state(lambda _current: {"workingMode": context.message})
    context.publish(encode_command(CommandCode.SET_WORKING_MODE, {"md": mode}))


def _auto_switch_working_mode(context: CommandContext) -> None:
    enabled = is_on(context.message)
    context.publish(encode_command(CommandCode.SET_WORKING_MODE, {"cts_m": 1 if enabled else 0}))


def _version_set(context: CommandContext) -> None:
    version = require_choice(context, VERSIONS, what="version")
    context.publish(encode_command(CommandCode.SET_VERSION, {"vs": version}))


def _max_discharge_power(context: CommandContext) -> None:
    power = int_in_range(context, 0, MAX_POWER, what="max discharge power")
    context.update_state(lambda _current: {"maxDischargePower": power})
    context.publish(encode_command(CommandCode.SET_VERSION, {"vs": power}))


def _max_charging_power(context: CommandContext) -> None:
    power = int_in_range(context, 0, MAX_POWER, what="max charging power")
    context.update_state(lambda _current: {"maxChargingPower": power})
    context.publish(encode_command(CommandCode.SET_MAX_CHARGING_POWER, {"cp": power}))


def _require_local_api(context: CommandContext) -> None:
    version = context.state.get("deviceVersion")
    if version is None or version < LOCAL_API_MIN_VERSION:
        raise CommandValidationError(
            f"Local API needs firmware {LOCAL_API_MIN_VERSION} or newer (device reports {version})",
            command=context.command,
            payload=context.message,
        )


def _local_api_enabled(context: CommandContext) -> None:
    _require_local_api(context)
    enabled = is_on(context.message)
    port = context.state.get("localApiPort") or DEFAULT_LOCAL_API_PORT
    context.update_state(lambda _current: {"localApiEnabled": enabled})
    context.publish(encode_command(CommandCode.LOCAL_API, {"api": 1 if enabled else 0, "port": port}))


def _local_api_port(context: CommandContext) -> None:
    _require_local_api(context)
    port = int_in_range(context, 1, 65535, what="local API port")
    enabled = bool(context.state.get("localApiEnabled"))
    context.update_state(lambda _current: {"localApiPort": port})
    context.publish(encode_command(CommandCode.LOCAL_API, {"port": port, "api": 1 if enabled else 0}))


def _transaction_mode(context: CommandContext) -> None:
    try:
        params = TransactionModeParams.model_validate(json.loads(context.message))
    except (ValueError, ValidationError) as exc:
        raise CommandValidationError(
            "Invalid transaction mode data", command=context.command, payload=context.message
        ) from exc
    context.publish(encode_command(CommandCode.SET_TIME_PERIOD, {"md": 2, **params.to_wire_params()}))


def _energy(object_id: str, name: str, state_class: str = "total") -> Any:
    return discovery.sensor(
        object_id, name, device_class="energy", unit_of_measurement="kWh", state_class=state_class
    )


def _income(object_id: str, name: str, state_class: str = "total") -> Any:
    return discovery.sensor(
        object_id, name, device_class="monetary", unit_of_measurement="€", state_class=state_class
    )


def _register_fields(data: ChannelBuilder) -> None:
    add_timestamp_sensor(data)

    data.field("cel_p", "batteryCapacity", multiply(10))
    data.advertise(
        "batteryCapacity",
        discovery.sensor("battery_capacity", "Battery Capacity", device_class="energy_storage", unit_of_measurement="Wh"),
    )
    data.field("cel_c", "batterySoc")
    data.advertise(
        "batterySoc",
        discovery.sensor("battery_soc", "Battery State of Charge", device_class="battery", unit_of_measurement="%"),
    )

    for key, path, object_id, name, state_class in (
        ("tot_i", "totalChargingCapacity", "total_charging_capacity", "Total Charging Capacity", "total_increasing"),
        ("tot_o", "totalDischargeCapacity", "total_discharge_capacity", "Total Discharge Capacity", "total_increasing"),
        ("ele_d", "dailyChargingCapacity", "daily_charging_capacity", "Daily Charging Capacity", "total"),
        ("ele_m", "monthlyChargingCapacity", "monthly_charging_capacity", "Monthly Charging Capacity", "total"),
        ("grd_d", "dailyDischargeCapacity", "daily_discharge_capacity", "Daily Discharge Capacity", "total"),
        ("grd_m", "monthlyDischargeCapacity", "monthly_discharge_capacity", "Monthly Discharge Capacity", "total"),
    ):
        data.field(key, path, divide(100))
        data.advertise(path, _energy(object_id, name, state_class))

    for key, path, object_id, name, state_class in (
        ("inc_d", "dailyIncome", "daily_income", "Daily Income", "total"),
        ("inc_m", "monthlyIncome", "monthly_income", "Monthly Income", "total"),
        ("inc_a", "totalIncome", "total_income", "Total Income", "total_increasing"),
    ):
        data.field(key, path, divide(1000))
        data.advertise(path, _income(object_id, name, state_class))

    data.field("grd_f", "offGridPower")
    data.advertise(
        "offGridPower",
        discovery.sensor("off_grid_power", "Off Grid Power", device_class="apparent_power", unit_of_measurement="VA"),
    )
    data.field("grd_o", "combinedPower")
    data.advertise(
        "combinedPower",
        discovery.sensor("combined_power", "Combined Power", device_class="power", unit_of_measurement="W"),
    )

    data.field("grd_t", "workingStatus", map_value(WORKING_STATUS, "standby"))
    data.advertise(
        "workingStatus",
        discovery.sensor(
            "working_status",
            "Working Status",
            icon="mdi:state-machine",
            value_mappings={
                "sleep": "Sleep Mode",
                "standby": "Standby",
                "charging": "Charging",
                "discharging": "Discharging",
                "backup": "Backup Mode",
                "upgrading": "OTA Upgrade",
                "bypass": "Bypass Status",
            },
        ),
    )
    data.field("gct_s", "ctStatus", map_value(CT_STATUS, "notConnected"))
    data.advertise(
        "ctStatus",
        discovery.sensor(
            "ct_status",
            "CT Status",
            icon="mdi:connection",
            value_mappings={"notConnected": "Not Connected", "connected": "Connected", "weakSignal": "Weak Signal"},
        ),
    )
    data.field("cel_s", "batteryWorkingStatus", map_value(BATTERY_STATUS, "unknown"))
    data.advertise(
        "batteryWorkingStatus",
        discovery.sensor(
            "battery_working_status",
            "Battery Working Status",
            icon="mdi:battery",
            value_mappings={
                "notWorking": "Not Working",
                "charging": "Charging",
                "discharging": "Discharging",
                "unknown": "Unknown",
            },
        ),
    )

    data.field("err_t", "errorCode")
    data.advertise("errorCode", discovery.sensor("error_code", "Error Code", icon="mdi:alert-circle"))
    data.field("err_a", "warningCode")
    data.advertise("warningCode", discovery.sensor("warning_code", "Warning Code", icon="mdi:alert"))
    data.field("dev_n", "deviceVersion")
    data.advertise("deviceVersion", discovery.sensor("device_version", "Device Version", icon="mdi:information"))

    data.field("grd_y", "gridType", map_value(GRID_TYPES, "adaptive"))
    data.advertise(
        "gridType",
        discovery.sensor(
            "grid_type",
            "Grid Type",
            icon="mdi:transmission-tower",
            value_mappings={
                "adaptive": "Adaptive (220-240V) (50-60Hz) AUTO",
                "en50549": "EN50549",
                "netherlands": "Netherlands",
                "germany": "Germany",
                "austria": "Austria",
                "unitedKingdom": "United Kingdom",
                "spain": "Spain",
                "poland": "Poland",
                "italy": "Italy",
                "china": "China",
            },
        ),
    )

    data.field("wor_m", "workingMode", map_value({"0": "automatic", "1": "manual", "2": "trading"}, "automatic"))
    data.advertise(
        "workingMode",
        discovery.select(
            "working_mode",
            "Working Mode",
            command="working-mode",
            icon="mdi:cog",
            value_mappings={"automatic": "Automatic", "manual": "Manual", "trading": "Trading"},
        ),
    )

    data.field("wifi_n", "wifiName", identity())
    data.advertise("wifiName", discovery.sensor("wifi_name", "WiFi Name", icon="mdi:wifi"))

    data.field("cts_m", "autoSwitchWorkingMode", equals_boolean("1"))
    data.advertise(
        "autoSwitchWorkingMode",
        discovery.switch(
            "auto_switch_working_mode", "Auto Switch Working Mode", command="auto-switch-working-mode", icon="mdi:auto-fix"
        ),
    )


def _register_commands(data: ChannelBuilder) -> None:
    data.command("working-mode", _working_mode)
    data.command("auto-switch-working-mode", _auto_switch_working_mode)
    data.command("version-set", _version_set)
    data.command("max-discharge-power", _max_discharge_power)
    data.command("max-charging-power", _max_charging_power)
    data.command("local-api-enabled", _local_api_enabled)
    data.command("local-api-port", _local_api_port)
    data.command("refresh", press_command(CommandCode.READ_DEVICE_INFO))
    data.command("factory-reset", press_command(CommandCode.FACTORY_RESET, {"rs": 2}))
    data.command("sync-time", sync_time(CommandCode.SET_DEVICE_TIME))
    data.command("get-ct-power", press_command(CommandCode.GET_CT_POWER))
    data.command("transaction-mode", _transaction_mode)

    data.advertise(
        "maxDischargePower",
        discovery.number(
            "max_discharge_power",
            "Max Discharge Power",
            command="max-discharge-power",
            min=0,
            max=MAX_POWER,
            unit_of_measurement="W",
            device_class="power",
        ),
    )
    data.advertise(
        "maxChargingPower",
        discovery.number(
            "max_charging_power",
            "Max Charging Power",
            command="max-charging-power",
            min=0,
            max=MAX_POWER,
            unit_of_measurement="W",
            device_class="power",
        ),
    )
    data.advertise(
        "localApiEnabled",
        discovery.switch("local_api_enabled", "Local API Enabled", command="local-api-enabled", icon="mdi:api"),
        enabled=lambda state: (state.get("deviceVersion") or 0) >= LOCAL_API_MIN_VERSION,
    )
    add_buttons(
        data,
        (
            ("refresh", "Refresh", "mdi:refresh", "refresh"),
            ("factory_reset", "Factory Reset", "mdi:delete-forever", "factory-reset"),
            ("sync_time", "Sync Time", "mdi:clock-sync", "sync-time"),
            ("get_ct_power", "Get CT Power", "mdi:current-ac", "get-ct-power"),
        ),
    )


def build_schema(options: SchemaOptions) -> DeviceSchema:
    builder = SchemaBuilder()
    data = builder.channel(
        "data",
        refresh_payload="cd=1",
        poll_interval=options.polling_interval,
        matches=is_runtime_info,
        device_info=device_info,
    )
    _register_fields(data)
    register_time_periods(data, TIME_PERIOD_COUNT, max_power=MAX_POWER)
    _register_commands(data)
    return builder.build()
