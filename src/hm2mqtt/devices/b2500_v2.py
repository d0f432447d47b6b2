"""B2500 second generation (``HMA``, ``HMF``, ``HMJ``, ``HMK``).

Adds time-period scheduling, CT (smart meter) information, daily energy
statistics and the optional ``cd=16`` extra battery channel on top of the
shared B2500 surface.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Callable, Mapping
from datetime import datetime
from typing import Any

from pydantic import ValidationError

from hm2mqtt import discovery
from hm2mqtt.devices import b2500_base
from hm2mqtt.devices._common import (
    int_in_range,
    is_on,
    leading_int,
    nested,
    require_choice,
    require_int,
    require_match,
)
from hm2mqtt.devices.b2500_base import CommandCode, b2500_command, uses_flash
from hm2mqtt.exceptions import CommandValidationError
from hm2mqtt.models.commands import SyncTimeParams
from hm2mqtt.schema.builder import ChannelBuilder, SchemaBuilder
from hm2mqtt.schema.definitions import CommandContext, DeviceSchema
from hm2mqtt.schema.registry import SchemaOptions
from hm2mqtt.transforms import boolean, divide, equals_boolean, map_value, number, time_string

_logger = logging.getLogger(__name__)

TIME_PATTERN = re.compile(r"^([0-2]?[0-9]|2[0-3]):[0-5][0-9]$")
TIME_PERIOD_COUNT = 5
EXTRA_BATTERY_POLL_INTERVAL = 60.0
DEFAULT_SURPLUS_MIN_VERSION = 226

CHARGING_MODES = {"chargeDischargeSimultaneously": 0, "chargeThenDischarge": 1}

_UNSET_PHASE = {"auto", "none", "null", "unknown"}
_SYNC_NOW = {"PRESS", "press", "true", "1"}

_CD16_BATTERY_KEYS = ("bb", "bv", "bc", "sb", "sv", "sc", "lb", "lv", "lc")
_CD16_VOLTAGE_KEYS = ("p1", "p2", "m1", "m2", "w1", "w2", "e1", "e2", "o1", "o2", "g1", "g2")
_CD16_FORBIDDEN = ("m3", "cj")

CT_STATUS = {
    "5": "preparing1",
    "6": "preparing2",
    "7": "diagnosingEquipment",
    "8": "diagnosingChannel",
    "9": "diagnosisTimeout",
    "10": "chargingInProgress",
    "11": "unableToFindChannel",
}
CT_STATUS_LABELS = {
    "preparing1": "Preparing to diagnose CT001 (Step 1)",
    "preparing2": "Preparing to diagnose CT001 (Step 2)",
    "diagnosingEquipment": "Diagnosing CT001 equipment",
    "diagnosingChannel": "Diagnosing CT001 channel",
    "diagnosisTimeout": "Diagnosis timeout",
    "chargingInProgress": "Charging in progress",
    "unableToFindChannel": "Unable to find channel",
    "notInDiagnosis": "Not in diagnosis",
}


def is_extra_battery_data(values: Mapping[str, str]) -> bool:
    if all(key in values for key in _CD16_BATTERY_KEYS):
        return True
    return all(key in values for key in _CD16_VOLTAGE_KEYS) and not any(key in values for key in _CD16_FORBIDDEN)


def surplus_feed_in_supported(min_version: int) -> Callable[[Mapping[str, Any]], bool | None]:
    """Firmware check; ``None`` while the device version is still unknown."""

    def _check(state: Mapping[str, Any]) -> bool | None:
        version = nested(state, "deviceInfo", "deviceVersion")
        if version is None:
            return None
        return version >= min_version

    return _check


def build_time_period_params(periods: list[Any]) -> dict[str, Any]:
    """``md=0`` followed by ``a/b/e/v`` for every known period, in order."""
    params: dict[str, Any] = {"md": 0}
    for index, period in enumerate(periods[:TIME_PERIOD_COUNT], start=1):
        if not isinstance(period, Mapping):
            break
        params[f"a{index}"] = 1 if period.get("enabled") else 0
        params[f"b{index}"] = period.get("startTime")
        params[f"e{index}"] = period.get("endTime")
        params[f"v{index}"] = period.get("outputValue")
    return params


def _time_period_value(context: CommandContext, setting: str) -> tuple[str, Any]:
    if setting == "enabled":
        return "enabled", is_on(context.message)
    if setting == "start-time":
        return "startTime", require_match(context, TIME_PATTERN, what="start time")
    if setting == "end-time":
        return "endTime", require_match(context, TIME_PATTERN, what="end time")
    return "outputValue", int_in_range(context, 0, 800, what="output value")


def time_period_handler(period_number: int, setting: str):
    """Handler for ``time-period/<n>/<setting>``; *period_number* is 1 based."""
    index = period_number - 1

    def _handler(context: CommandContext) -> None:
        attribute, value = _time_period_value(context, setting)
        use_flash = uses_flash(context.state)

        def _apply(current: Mapping[str, Any]) -> dict[str, Any]:
            periods = [dict(p) if isinstance(p, Mapping) else p for p in current.get("timePeriods") or []]
            if len(periods) <= index or not isinstance(periods[index], dict):
                raise CommandValidationError(
                    f"No time period {period_number} found for {context.device.device_id}",
                    command=context.command,
                    payload=context.message,
                )
            periods[index][attribute] = value
            _logger.info("Time period %d of %s now %s", period_number, context.device, periods[index])
            context.publish(
                b2500_command(CommandCode.TIMED_DISCHARGE, build_time_period_params(periods), use_flash=use_flash)
            )
            return {"timePeriods": periods}

        context.update_state(_apply)

    return _handler


def _charging_mode(context: CommandContext) -> None:
    mode = require_choice(context, CHARGING_MODES, what="charging mode")
    context.publish(b2500_command(CommandCode.CHARGING_MODE, {"md": mode}, use_flash=uses_flash(context.state)))


def _adaptive_mode(context: CommandContext) -> None:
    mode = 1 if is_on(context.message) else 0
    context.publish(b2500_command(CommandCode.DISCHARGE_MODE, {"md": mode}, use_flash=uses_flash(context.state)))


def _connected_phase(context: CommandContext) -> None:
    raw = "255" if context.message.lower() in _UNSET_PHASE else context.message
    phase = leading_int(raw)
    if phase is None or phase < 0 or (phase > 4 and phase != 255):
        raise CommandValidationError(
            "Invalid connected phase", command=context.command, payload=context.message
        )
    context.publish(
        b2500_command(CommandCode.SET_CONNECTED_PHASE, {"md": phase}, use_flash=uses_flash(context.state))
    )


def _time_zone(context: CommandContext) -> None:
    offset = require_int(context, what="time zone")
    context.publish(b2500_command(CommandCode.TIME_ZONE, {"wy": offset}, use_flash=uses_flash(context.state)))


def _sync_time(context: CommandContext) -> None:
    if context.message in _SYNC_NOW:
        params = SyncTimeParams.from_datetime(datetime.now().astimezone())
    else:
        try:
            params = SyncTimeParams.model_validate(json.loads(context.message))
        except (ValueError, ValidationError) as exc:
            raise CommandValidationError(
                "Invalid time sync data", command=context.command, payload=context.message
            ) from exc
    context.publish(
        b2500_command(CommandCode.SYNC_TIME, params.to_wire_params(), use_flash=uses_flash(context.state))
    )


def _surplus_feed_in(supported: Callable[[Mapping[str, Any]], bool | None]):
    def _handler(context: CommandContext) -> None:
        if supported(context.state) is False:
            raise CommandValidationError(
                f"Surplus feed-in is not supported on {context.device.device_type} version "
                f"{nested(context.state, 'deviceInfo', 'deviceVersion')}",
                command=context.command,
                payload=context.message,
            )
        value = 0 if is_on(context.message, on_literal="on") else 1
        context.publish(
            b2500_command(CommandCode.SURPLUS_FEED_IN, {"touchuan_disa": value}, use_flash=uses_flash(context.state))
        )

    return _handler


def _energy_sensor(object_id: str, name: str) -> Any:
    return discovery.sensor(
        object_id, name, device_class="energy", unit_of_measurement="Wh", state_class="total_increasing"
    )


def _measured_power(object_id: str, name: str) -> Any:
    return discovery.sensor(object_id, name, device_class="power", unit_of_measurement="W", state_class="measurement")


def _register_time_periods(data: ChannelBuilder) -> None:
    for i in range(TIME_PERIOD_COUNT):
        n = i + 1
        data.field(f"d{n}", ("timePeriods", i, "enabled"), boolean())
        data.advertise(
            ("timePeriods", i, "enabled"),
            discovery.switch(
                f"time_period_{n}_enabled",
                f"Time Period {n} Enabled",
                command=f"time-period/{n}/enabled",
                icon="mdi:clock-time-four-outline",
            ),
        )
        data.field(f"e{n}", ("timePeriods", i, "startTime"), time_string())
        data.advertise(
            ("timePeriods", i, "startTime"),
            discovery.text(
                f"time_period_{n}_start_time",
                f"Time Period {n} Start Time",
                command=f"time-period/{n}/start-time",
                pattern=TIME_PATTERN.pattern,
            ),
        )
        data.field(f"f{n}", ("timePeriods", i, "endTime"), time_string())
        data.advertise(
            ("timePeriods", i, "endTime"),
            discovery.text(
                f"time_period_{n}_end_time",
                f"Time Period {n} End Time",
                command=f"time-period/{n}/end-time",
                pattern=TIME_PATTERN.pattern,
            ),
        )
        data.field(f"h{n}", ("timePeriods", i, "outputValue"), number())
        data.advertise(
            ("timePeriods", i, "outputValue"),
            discovery.number(
                f"time_period_{n}_output_value",
                f"Time Period {n} Output Value",
                command=f"time-period/{n}/output-value",
                min=0,
                max=800,
                unit_of_measurement="W",
            ),
        )
        for setting in ("enabled", "start-time", "end-time", "output-value"):
            data.command(f"time-period/{n}/{setting}", time_period_handler(n, setting))


def _register_ct_info(data: ChannelBuilder) -> None:
    data.field("sg", ("ctInfo", "connected"), boolean())
    data.advertise(("ctInfo", "connected"), discovery.binary_sensor("ct_connected", "CT Connected", device_class="power"))
    data.field("sp", ("ctInfo", "automaticPowerSize"), number())
    data.advertise(("ctInfo", "automaticPowerSize"), _measured_power("ct_automatic_power_size", "CT Automatic Power Size"))
    data.field("st", ("ctInfo", "transmittedPower"), number())
    data.advertise(("ctInfo", "transmittedPower"), _measured_power("ct_transmitted_power", "CT Transmitted Power"))
    data.field(
        "c0",
        ("ctInfo", "connectedPhase"),
        map_value({"0": 0, "1": 1, "2": 2, "3": "searching", "255": "unknown"}),
    )
    data.advertise(
        ("ctInfo", "connectedPhase"),
        discovery.select(
            "ct_connected_phase",
            "CT Connected Phase",
            command="connected-phase",
            value_mappings={0: "Phase 1", 1: "Phase 2", 2: "Phase 3", "searching": "Searching", "unknown": "None"},
        ),
    )
    data.command("connected-phase", _connected_phase)
    data.field("c1", ("ctInfo", "status"), map_value(CT_STATUS, "notInDiagnosis"))
    data.advertise(("ctInfo", "status"), discovery.sensor("ct_status", "CT Status", value_mappings=CT_STATUS_LABELS))
    for index, key in enumerate(("m0", "m1", "m2"), start=1):
        data.field(key, ("ctInfo", f"phase{index}"), number())
        data.advertise(("ctInfo", f"phase{index}"), _measured_power(f"ct_clip_power{index}", f"CT Clip Power {index}"))
    data.field("m3", ("ctInfo", "microInverterPower"), number())
    data.advertise(("ctInfo", "microInverterPower"), _measured_power("micro_inverter_power", "Micro Inverter Power"))


def _register_runtime_info(builder: SchemaBuilder, options: SchemaOptions, min_surplus_version: int) -> None:
    data = builder.channel(
        "data",
        refresh_payload="cd=1",
        poll_interval=options.polling_interval,
        matches=b2500_base.is_runtime_info,
        default_state=b2500_base.DEFAULT_STATE,
        device_info=b2500_base.device_info,
    )
    b2500_base.register_base_fields(data)
    b2500_base.register_base_commands(data)

    data.field("lv", "batteryOutputThreshold", number())
    data.advertise(
        "batteryOutputThreshold",
        discovery.sensor(
            "battery_output_threshold", "Battery Output Threshold", device_class="power", unit_of_measurement="W"
        ),
    )
    data.field("cs", "chargingMode", map_value({"0": "chargeDischargeSimultaneously", "1": "chargeThenDischarge"}))
    data.advertise(
        "chargingMode",
        discovery.select(
            "charging_mode",
            "Charging Mode",
            command="charging-mode",
            value_mappings={
                "chargeDischargeSimultaneously": "Simultaneous Charging/Discharging",
                "chargeThenDischarge": "Fully Charge Then Discharge",
            },
        ),
    )
    data.command("charging-mode", _charging_mode)

    data.field("md", "adaptiveMode", boolean())
    data.advertise(
        "adaptiveMode", discovery.switch("adaptive_mode", "Adaptive Mode", command="adaptive-mode", icon="mdi:auto-fix")
    )
    data.command("adaptive-mode", _adaptive_mode)

    _register_time_periods(data)

    for key, attribute, object_id, name in (
        ("bc", "batteryChargingPower", "battery_charging_power", "Daily Battery Charging"),
        ("bs", "batteryDischargePower", "battery_discharge_power", "Daily Battery Discharging"),
        ("pt", "photovoltaicChargingPower", "photovoltaic_charging_power", "Daily PV Charging"),
        ("it", "microReverseOutputPower", "micro_reverse_output_power", "Daily Micro Reverse Output Power"),
    ):
        data.field(key, ("dailyStats", attribute), number())
        data.advertise(("dailyStats", attribute), _energy_sensor(object_id, name))

    _register_ct_info(data)

    data.field("lmo", ("ratedPower", "output"), number())
    data.advertise(("ratedPower", "output"), _measured_power("rated_output_power", "Rated Output Power"))
    data.field("lmi", ("ratedPower", "input"), number())
    data.advertise(("ratedPower", "input"), _measured_power("rated_input_power", "Rated Input Power"))
    data.field("lmf", ("ratedPower", "isLimited"), boolean())
    data.advertise(("ratedPower", "isLimited"), discovery.binary_sensor("rated_power_limited", "Rated Power Limited"))

    data.command("time-zone", _time_zone)
    data.command("sync-time", _sync_time)
    data.advertise(
        (),
        discovery.button("sync_time", "Sync Time", command="sync-time", icon="mdi:clock-sync", enabled_by_default=False),
    )

    supported = surplus_feed_in_supported(min_surplus_version)
    data.field("tc_dis", "surplusFeedInEnabled", equals_boolean("0"))
    data.advertise(
        "surplusFeedInEnabled",
        discovery.switch("surplus_feed_in", "Surplus Feed-in", command="surplus-feed-in", icon="mdi:transfer"),
        enabled=lambda state: supported(state) is True,
    )
    data.command("surplus-feed-in", _surplus_feed_in(supported))


def _register_extra_battery_data(extra: ChannelBuilder) -> None:
    extra.advertise(
        "timestamp",
        discovery.sensor(
            "timestamp_extra_battery_data",
            "Extra Battery Last Updated",
            device_class="timestamp",
            icon="mdi:clock",
            enabled_by_default=False,
        ),
    )
    for n in (1, 2):
        extra.field(f"m{n}", (f"input{n}", "voltage"), divide(1000))
        extra.advertise(
            (f"input{n}", "voltage"),
            discovery.sensor(f"solar_input_voltage_{n}", f"Input Voltage {n}", device_class="voltage", unit_of_measurement="V"),
        )
        extra.field(f"c{n}", (f"input{n}", "current"), divide(1000))
        extra.advertise(
            (f"input{n}", "current"),
            discovery.sensor(f"solar_input_current_{n}", f"Input Current {n}", device_class="current", unit_of_measurement="A"),
        )
        extra.field(f"w{n}", (f"input{n}", "power"))
        extra.field(f"i{n}", (f"output{n}", "voltage"), divide(1000))
        extra.advertise(
            (f"output{n}", "voltage"),
            discovery.sensor(f"output_voltage_{n}", f"Output Voltage {n}", device_class="voltage", unit_of_measurement="V"),
        )
        extra.field(f"c{n + 2}", (f"output{n}", "current"), divide(1000))
        extra.advertise(
            (f"output{n}", "current"),
            discovery.sensor(f"output_current_{n}", f"Output Current {n}", device_class="current", unit_of_measurement="A"),
        )
        extra.field(f"g{n}", (f"output{n}", "power"))

    for power, voltage, current, pack, label, default_on in (
        ("bb", "bv", "bc", "host", "Host Battery", True),
        ("sb", "sv", "sc", "extra1", "Extra Battery 1", False),
        ("lb", "lv", "lc", "extra2", "Extra Battery 2", False),
    ):
        object_prefix = "battery" if pack == "host" else f"battery_{pack}"
        extra.field(power, ("batteryData", pack, "power"))
        extra.field(voltage, ("batteryData", pack, "voltage"), divide(1000))
        extra.advertise(
            ("batteryData", pack, "voltage"),
            discovery.sensor(
                f"{object_prefix}_voltage",
                f"{label} Voltage",
                device_class="voltage",
                unit_of_measurement="V",
                enabled_by_default=None if default_on else False,
            ),
        )
        extra.field(current, ("batteryData", pack, "current"), divide(1000))
        extra.advertise(
            ("batteryData", pack, "current"),
            discovery.sensor(
                f"{object_prefix}_current",
                f"{label} Current",
                device_class="current",
                unit_of_measurement="A",
                enabled_by_default=None if default_on else False,
            ),
        )


def build_schema(options: SchemaOptions, *, min_surplus_version: int = DEFAULT_SURPLUS_MIN_VERSION) -> DeviceSchema:
    """Schema for one V2 family.

    Parameters
    ----------
    options : SchemaOptions
        Poll interval and extra-channel toggle.
    min_surplus_version : int
        Lowest firmware (``vv``) that supports surplus feed-in.
    """
    builder = SchemaBuilder()
    _register_runtime_info(builder, options, min_surplus_version)
    extra = builder.channel(
        "extraBatteryData",
        refresh_payload=f"cd={int(CommandCode.EXTRA_BATTERY_DATA)}",
        poll_interval=EXTRA_BATTERY_POLL_INTERVAL,
        matches=is_extra_battery_data,
        controls_availability=False,
        enabled=options.poll_extra_battery_data,
    )
    _register_extra_battery_data(extra)
    return builder.build()
