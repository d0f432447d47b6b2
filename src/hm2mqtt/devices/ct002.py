"""CT002 smart meter (``HME``). Telemetry only."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from hm2mqtt import discovery
from hm2mqtt.devices._common import add_timestamp_sensor, has_keys
from hm2mqtt.schema.builder import SchemaBuilder
from hm2mqtt.schema.definitions import DeviceSchema
from hm2mqtt.schema.registry import SchemaOptions
from hm2mqtt.transforms import identity

RUNTIME_INFO_KEYS = ("pwr_a", "pwr_b", "pwr_c", "pwr_t")

_POWER = {"device_class": "power", "unit_of_measurement": "W", "state_class": "measurement"}


def device_info(state: Mapping[str, Any]) -> dict[str, Any]:
    version = state.get("firmwareVersion")
    return {} if version is None else {"firmware_version": str(version)}


def build_schema(options: SchemaOptions) -> DeviceSchema:
    builder = SchemaBuilder()
    data = builder.channel(
        "data",
        refresh_payload="cd=1",
        poll_interval=options.polling_interval,
        matches=has_keys(*RUNTIME_INFO_KEYS),
        device_info=device_info,
    )
    add_timestamp_sensor(data, icon="mdi:clock")

    for key, path, object_id, name in (
        ("pwr_a", "phase1Power", "phase1_power", "Phase 1 Power"),
        ("pwr_b", "phase2Power", "phase2_power", "Phase 2 Power"),
        ("pwr_c", "phase3Power", "phase3_power", "Phase 3 Power"),
        ("pwr_t", "totalPower", "total_power", "Total Power"),
    ):
        data.field(key, path)
        data.advertise(path, discovery.sensor(object_id, name, **_POWER))

    data.field("ble_s", "bluetoothSignal")
    data.advertise("bluetoothSignal", discovery.sensor("bluetooth_signal", "Bluetooth Signal", icon="mdi:bluetooth"))
    data.field("wif_r", "wifiRssi")
    data.advertise(
        "wifiRssi",
        discovery.sensor(
            "wifi_rssi", "WiFi RSSI", device_class="signal_strength", unit_of_measurement="dBm", state_class="measurement"
        ),
    )
    data.field("fc4_v", "fc4Version", identity())
    data.advertise("fc4Version", discovery.sensor("fc4_version", "FC41D Firmware", icon="mdi:chip"))
    data.field("ver_v", "firmwareVersion")
    data.advertise("firmwareVersion", discovery.sensor("firmware_version", "Firmware Version", icon="mdi:chip"))
    data.field("wif_s", "wifiStatus")
    data.advertise("wifiStatus", discovery.sensor("wifi_status", "WiFi Status", icon="mdi:wifi"))
    return builder.build()
