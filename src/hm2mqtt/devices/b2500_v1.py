"""B2500 first generation (``HMB``)."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from hm2mqtt import discovery
from hm2mqtt.devices import b2500_base
from hm2mqtt.devices._common import int_in_range, is_on, require_choice
from hm2mqtt.devices.b2500_base import CommandCode, b2500_command, uses_flash
from hm2mqtt.schema.builder import ChannelBuilder, SchemaBuilder
from hm2mqtt.schema.definitions import CommandContext, DeviceSchema
from hm2mqtt.schema.registry import SchemaOptions
from hm2mqtt.transforms import bit_boolean, map_value

_logger = logging.getLogger(__name__)

CHARGING_MODES = {"pv2PassThrough": 0, "chargeThenDischarge": 1}

_CD16_KEYS = ("p1", "p2", "m1", "m2", "w1", "w2", "e1", "e2", "o1", "o2", "g1", "g2")
_CD16_FORBIDDEN = ("m3", "cj")


def is_extra_battery_data(values: Mapping[str, str]) -> bool:
    """``cd=16`` answer: voltage block present, runtime-only keys absent."""
    return all(key in values for key in _CD16_KEYS) and not any(key in values for key in _CD16_FORBIDDEN)


def _charging_mode(context: CommandContext) -> None:
    mode = require_choice(context, CHARGING_MODES, what="charging mode")
    context.publish(b2500_command(CommandCode.CHARGING_MODE, {"md": mode}, use_flash=uses_flash(context.state)))


def _battery_threshold(context: CommandContext) -> None:
    threshold = int_in_range(context, 0, 800, what="battery threshold")
    context.publish(
        b2500_command(
            CommandCode.BATTERY_OUTPUT_THRESHOLD, {"md": threshold}, use_flash=uses_flash(context.state)
        )
    )


def output_mode(output1: bool, output2: bool) -> int:
    """Pack both output switches into the discharge-mode bit field."""
    return (1 if output1 else 0) | (2 if output2 else 0)


def _output_handler(output_number: int):
    def _handler(context: CommandContext) -> None:
        enabled = context.state.get("outputEnabled") or {}
        new_state = is_on(context.message)
        output1 = new_state if output_number == 1 else bool(enabled.get("output1"))
        output2 = new_state if output_number == 2 else bool(enabled.get("output2"))
        mode = output_mode(output1, output2)
        _logger.info(
            "Setting output %d to %s on %s, discharge mode %d",
            output_number,
            "ON" if new_state else "OFF",
            context.device,
            mode,
        )

        def _patch(current: Mapping[str, Any]) -> dict[str, Any]:
            outputs = dict(current.get("outputEnabled") or {})
            outputs[f"output{output_number}"] = new_state
            return {"outputEnabled": outputs}

        context.update_state(_patch)
        # Discharge mode has no RAM-only variant on V1 firmware.
        context.publish(b2500_command(CommandCode.DISCHARGE_MODE, {"md": mode}, use_flash=True))

    return _handler


def _register_runtime_info(builder: SchemaBuilder, options: SchemaOptions) -> None:
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

    data.field("cs", "chargingMode", map_value({"0": "pv2PassThrough", "1": "chargeThenDischarge"}))
    data.advertise(
        "chargingMode",
        discovery.select(
            "charging_mode",
            "Charging Mode",
            command="charging-mode",
            value_mappings={
                "pv2PassThrough": "PV2 Pass Through",
                "chargeThenDischarge": "Fully Charge Then Discharge",
            },
        ),
    )
    data.command("charging-mode", _charging_mode)

    data.field("lv", "batteryOutputThreshold")
    data.advertise(
        "batteryOutputThreshold",
        discovery.number(
            "battery_output_threshold",
            "Battery Output Threshold",
            command="battery-threshold",
            min=0,
            max=800,
            unit_of_measurement="W",
            device_class="power",
        ),
    )
    data.command("battery-threshold", _battery_threshold)

    for n in (1, 2):
        data.field("cd", ("outputEnabled", f"output{n}"), bit_boolean(n - 1))
        data.advertise(
            ("outputEnabled", f"output{n}"),
            discovery.switch(f"output{n}_enabled", f"Output {n} Enabled", command=f"output{n}", icon="mdi:power-socket"),
        )
        data.command(f"output{n}", _output_handler(n))


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
        extra.field(f"m{n}", (f"input{n}", "voltage"))
        extra.advertise(
            (f"input{n}", "voltage"),
            discovery.sensor(
                f"solar_input_voltage_{n}", f"Input Voltage {n}", device_class="voltage", unit_of_measurement="V"
            ),
        )
        extra.field(f"w{n}", (f"input{n}", "power"))
        extra.field(f"g{n}", (f"output{n}", "power"))


def build_schema(options: SchemaOptions) -> DeviceSchema:
    builder = SchemaBuilder()
    _register_runtime_info(builder, options)
    extra = builder.channel(
        "extraBatteryData",
        refresh_payload=f"cd={int(CommandCode.EXTRA_BATTERY_DATA)}",
        poll_interval=options.polling_interval,
        matches=is_extra_battery_data,
        controls_availability=False,
        enabled=options.poll_extra_battery_data,
    )
    _register_extra_battery_data(extra)
    return builder.build()
