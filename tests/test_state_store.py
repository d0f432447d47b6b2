from __future__ import annotations

import threading
from collections.abc import Callable

from hm2mqtt.models.device import Device, StateChange
from hm2mqtt.schema.registry import SchemaOptions, build_default_registry
from hm2mqtt.state.store import DeviceStateStore


def test_unknown_device_types_are_skipped(registry) -> None:
    store = DeviceStateStore(
        registry,
        [
            Device(device_type="HMA-1", device_id="a"),
            Device(device_type="HMX-1", device_id="b"),
            Device(device_type="HMA-1", device_id="a"),
        ],
    )
    assert [d.key for d in store.devices()] == ["HMA-1:a"]


def test_channel_state_starts_from_schema_default(store_for: Callable[..., DeviceStateStore]) -> None:
    store = store_for("HMA-1")
    device = store.devices()[0]
    assert store.state_for_channel(device, "data") == {"useFlashCommands": True}
    assert not store.has_state(device, "data")


def test_update_is_a_shallow_patch(store_for: Callable[..., DeviceStateStore]) -> None:
    store = store_for("HMA-1")
    device = store.devices()[0]
    store.update_channel(device, "data", lambda _s: {"batteryPercentage": 50, "temperature": {"min": 1}})
    result = store.update_channel(device, "data", lambda _s: {"temperature": {"max": 9}})

    assert result["batteryPercentage"] == 50
    assert result["temperature"] == {"max": 9}
    assert result["useFlashCommands"] is True


def test_updater_sees_current_state_and_none_means_no_change(store_for: Callable[..., DeviceStateStore]) -> None:
    store = store_for("HMA-1")
    device = store.devices()[0]
    store.update_channel(device, "data", lambda _s: {"counter": 1})
    store.update_channel(device, "data", lambda s: {"counter": s["counter"] + 1})
    store.update_channel(device, "data", lambda _s: None)
    assert store.state_for_channel(device, "data")["counter"] == 2


def test_snapshots_are_isolated_from_the_store(store_for: Callable[..., DeviceStateStore]) -> None:
    store = store_for("HMA-1")
    device = store.devices()[0]
    returned = store.update_channel(device, "data", lambda _s: {"timePeriods": [{"enabled": True}]})
    returned["timePeriods"][0]["enabled"] = False
    store.state_for(device)["timePeriods"].append("x")

    assert store.state_for_channel(device, "data")["timePeriods"] == [{"enabled": True}]


def test_state_for_is_union_of_channels_in_schema_order() -> None:
    registry = build_default_registry(SchemaOptions(poll_extra_battery_data=True))
    device = Device(device_type="HMA-1", device_id="a")
    store = DeviceStateStore(registry, [device])
    store.update_channel(device, "data", lambda _s: {"timestamp": "t1", "batteryPercentage": 10})
    store.update_channel(device, "extraBatteryData", lambda _s: {"timestamp": "t2", "input1": {"voltage": 30}})

    merged = store.state_for(device)
    assert merged["batteryPercentage"] == 10
    assert merged["input1"] == {"voltage": 30}
    # later channels win on shared keys
    assert merged["timestamp"] == "t2"


def test_observer_receives_every_update(store_for: Callable[..., DeviceStateStore]) -> None:
    store = store_for("HMG-1")
    device = store.devices()[0]
    changes: list[StateChange] = []
    store.set_observer(changes.append)

    store.update_channel(device, "data", lambda _s: {"workingMode": "manual"})

    assert len(changes) == 1
    assert changes[0].device == device
    assert changes[0].channel == "data"
    assert changes[0].state["workingMode"] == "manual"


def test_find_device_for_topic(store_for: Callable[..., DeviceStateStore]) -> None:
    store = store_for("HMA-1", "HMG-1")
    hma, hmg = store.devices()
    topics = store.topics_for(hma)

    assert store.find_device_for_topic(topics.device_topic_legacy) == (hma, "device")
    assert store.find_device_for_topic(topics.device_topic_current) == (hma, "device")
    assert store.find_device_for_topic(topics.command_topic("refresh")) == (hma, "control")
    assert store.find_device_for_topic(store.topics_for(hmg).command_topic("working-mode")) == (hmg, "control")
    assert store.find_device_for_topic("hm2mqtt/HMA-1/device/other/data") is None


def test_topics_are_cached(store_for: Callable[..., DeviceStateStore]) -> None:
    store = store_for("HMA-1")
    device = store.devices()[0]
    assert store.topics_for(device) is store.topics_for(device)
    assert store.topics_for(device).command_topic("refresh") in store.control_topics_for(device)


def test_concurrent_updates_to_one_channel_are_not_lost(store_for: Callable[..., DeviceStateStore]) -> None:
    store = store_for("HMA-1")
    device = store.devices()[0]
    workers, rounds = 8, 500

    def _increment() -> None:
        for _ in range(rounds):
            store.update_channel(device, "data", lambda current: {"n": current.get("n", 0) + 1})

    threads = [threading.Thread(target=_increment) for _ in range(workers)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert store.state_for_channel(device, "data")["n"] == workers * rounds
