from __future__ import annotations

import pytest

from conftest import FakeLoop, FakeTransport, make_registry
from hm2mqtt.models.device import Device
from hm2mqtt.scheduler import OFFLINE, PollScheduler
from hm2mqtt.state.store import DeviceStateStore

DEVICE = Device(device_type="TST-1", device_id="dev1")


def _scheduler(
    channels: list[tuple[str, float, bool, bool]],
    loop: FakeLoop,
    transport: FakeTransport,
    *,
    devices: list[Device] | None = None,
    response_timeout: float = 15.0,
    allowed_consecutive_timeouts: int = 3,
) -> tuple[PollScheduler, DeviceStateStore]:
    store = DeviceStateStore(make_registry(channels), devices or [DEVICE])
    scheduler = PollScheduler(
        store,
        transport,
        loop=loop,
        response_timeout=response_timeout,
        allowed_consecutive_timeouts=allowed_consecutive_timeouts,
    )
    return scheduler, store


def _refreshes(transport: FakeTransport, store: DeviceStateStore, device: Device = DEVICE) -> list[str]:
    topic = store.topics_for(device).device_control_topic_legacy
    return transport.payloads(topic)


def _offline_count(transport: FakeTransport, store: DeviceStateStore, device: Device = DEVICE) -> int:
    topic = store.topics_for(device).availability_topic
    return transport.payloads(topic).count(OFFLINE)


def test_tick_is_gcd_of_enabled_intervals(loop: FakeLoop, transport: FakeTransport) -> None:
    scheduler, _ = _scheduler([("a", 30, True, True), ("b", 45, False, True), ("c", 7, False, False)], loop, transport)
    assert scheduler.tick_interval() == 15


def test_tick_handles_fractional_intervals(loop: FakeLoop, transport: FakeTransport) -> None:
    scheduler, _ = _scheduler([("a", 1.5, True, True), ("b", 2.5, True, True)], loop, transport)
    assert scheduler.tick_interval() == pytest.approx(0.5)


def test_no_devices_means_nothing_to_poll(loop: FakeLoop, transport: FakeTransport) -> None:
    store = DeviceStateStore(make_registry([("a", 30, True, True)]), [])
    scheduler = PollScheduler(store, transport, loop=loop)
    assert scheduler.tick_interval() == 0.0
    scheduler.start()
    assert not scheduler.is_running


def test_refreshes_are_staggered_and_sent_on_both_topics(loop: FakeLoop, transport: FakeTransport) -> None:
    scheduler, store = _scheduler([("a", 60, True, True), ("b", 60, False, True)], loop, transport)
    topics = store.topics_for(DEVICE)

    scheduler.start()
    loop.advance(0)
    assert [(t, p, q) for t, p, q, _ in transport.published] == [
        (topics.device_control_topic_legacy, "cd=a", 1),
        (topics.device_control_topic_current, "cd=a", 1),
    ]

    loop.advance(0.1)
    assert transport.payloads(topics.device_control_topic_current) == ["cd=a", "cd=b"]
    assert all(not retain for _, _, _, retain in transport.published)


def test_channels_are_polled_at_their_own_interval(loop: FakeLoop, transport: FakeTransport) -> None:
    scheduler, store = _scheduler([("fast", 30, True, True), ("slow", 45, True, True)], loop, transport)
    scheduler.start()

    loop.advance(90.5)

    refreshes = _refreshes(transport, store)
    # t=0, 30, 60, 90 for fast; t=0, 45, 90 for slow
    assert refreshes.count("cd=fast") == 4
    assert refreshes.count("cd=slow") == 3


def test_no_channel_is_requested_before_its_interval(loop: FakeLoop, transport: FakeTransport) -> None:
    scheduler, store = _scheduler([("a", 30, True, True), ("b", 45, False, True)], loop, transport)
    sent_at: dict[str, list[float]] = {"a": [], "b": []}
    original = scheduler.request_device_data

    def _spy(device: Device) -> int:
        count = original(device)
        for key in sent_at:
            last = scheduler.last_request(device, key)
            if last is not None and (not sent_at[key] or sent_at[key][-1] != last):
                sent_at[key].append(last)
        return count

    scheduler.request_device_data = _spy  # type: ignore[method-assign]
    scheduler.start()
    loop.advance(600)

    for key, interval in (("a", 30), ("b", 45)):
        gaps = [later - earlier for earlier, later in zip(sent_at[key], sent_at[key][1:])]
        assert gaps
        assert all(gap >= interval for gap in gaps)


def test_disabled_channels_are_never_polled(loop: FakeLoop, transport: FakeTransport) -> None:
    scheduler, store = _scheduler([("a", 60, True, True), ("off", 60, True, False)], loop, transport)
    scheduler.start()
    loop.advance(300)
    assert "cd=off" not in _refreshes(transport, store)
    assert scheduler.last_request(DEVICE, "off") is None


def test_direct_request_respects_interval(loop: FakeLoop, transport: FakeTransport) -> None:
    scheduler, _ = _scheduler([("a", 60, True, True)], loop, transport)
    assert scheduler.request_device_data(DEVICE) == 1
    loop.advance(10)
    assert scheduler.request_device_data(DEVICE) == 0
    loop.advance(50)
    assert scheduler.request_device_data(DEVICE) == 1


def test_offline_only_after_threshold_consecutive_misses(loop: FakeLoop, transport: FakeTransport) -> None:
    scheduler, store = _scheduler([("a", 60, True, True)], loop, transport)
    scheduler.start()

    loop.advance(16)
    assert scheduler.record_for(DEVICE).misses == 1
    assert _offline_count(transport, store) == 0

    loop.advance(60)
    assert scheduler.record_for(DEVICE).misses == 2
    assert _offline_count(transport, store) == 0

    loop.advance(60)
    assert scheduler.record_for(DEVICE).misses == 3
    assert _offline_count(transport, store) == 1

    availability = store.topics_for(DEVICE).availability_topic
    assert (availability, OFFLINE, 1, True) in transport.published


def test_response_resets_miss_counter(loop: FakeLoop, transport: FakeTransport) -> None:
    scheduler, store = _scheduler([("a", 60, True, True)], loop, transport)
    scheduler.start()
    loop.advance(16)
    loop.advance(60)
    assert scheduler.record_for(DEVICE).misses == 2

    loop.advance(5)
    assert scheduler.on_data_received(DEVICE, "a") is True
    assert scheduler.record_for(DEVICE).misses == 0
    assert not scheduler.record_for(DEVICE).is_pending

    loop.advance(60 * 2 + 1)
    assert scheduler.record_for(DEVICE).misses == 2
    assert _offline_count(transport, store) == 0


def test_response_cancels_pending_timeout(loop: FakeLoop, transport: FakeTransport) -> None:
    scheduler, _ = _scheduler([("a", 60, True, True)], loop, transport)
    scheduler.request_device_data(DEVICE)
    handle = scheduler.record_for(DEVICE).pending.handle

    scheduler.on_data_received(DEVICE, "a")
    scheduler.on_data_received(DEVICE, "a")

    assert handle.cancel_calls == 1
    loop.advance(30)
    assert scheduler.record_for(DEVICE).misses == 0


def test_late_response_after_timeout_fired_is_harmless(loop: FakeLoop, transport: FakeTransport) -> None:
    scheduler, _ = _scheduler([("a", 60, True, True)], loop, transport)
    scheduler.request_device_data(DEVICE)
    handle = scheduler.record_for(DEVICE).pending.handle
    loop.advance(20)
    assert scheduler.record_for(DEVICE).misses == 1

    assert scheduler.on_data_received(DEVICE, "a") is True
    assert handle.cancel_calls == 0
    assert scheduler.record_for(DEVICE).misses == 0


def test_single_pending_timeout_per_device(loop: FakeLoop, transport: FakeTransport) -> None:
    scheduler, _ = _scheduler([("a", 10, True, True)], loop, transport, response_timeout=30)
    scheduler.start()
    first = scheduler.record_for(DEVICE).pending

    loop.advance(25)
    assert scheduler.record_for(DEVICE).pending is first
    assert len([h for h in loop.pending() if h.args and h.args[0] == DEVICE]) == 1

    loop.advance(10)
    # the first timeout fired once, a new one was armed by the next request
    assert scheduler.record_for(DEVICE).misses == 1
    assert scheduler.record_for(DEVICE).pending is not first


def test_non_availability_channel_arms_no_timeout(loop: FakeLoop, transport: FakeTransport) -> None:
    scheduler, store = _scheduler([("a", 60, True, True), ("extra", 20, False, True)], loop, transport)
    scheduler.request_device_data(DEVICE)
    scheduler.on_data_received(DEVICE, "a")

    loop.advance(20)
    assert scheduler.request_device_data(DEVICE) == 1
    assert not scheduler.record_for(DEVICE).is_pending

    loop.advance(100)
    assert scheduler.record_for(DEVICE).misses == 0
    assert scheduler.on_data_received(DEVICE, "extra") is False
    assert scheduler.on_data_received(DEVICE, "unknown") is False


def test_devices_time_out_independently(loop: FakeLoop, transport: FakeTransport) -> None:
    other = Device(device_type="TST-1", device_id="dev2")
    scheduler, store = _scheduler(
        [("a", 60, True, True)],
        loop,
        transport,
        devices=[DEVICE, other],
        allowed_consecutive_timeouts=1,
    )
    scheduler.start()
    loop.advance(5)
    scheduler.on_data_received(other, "a")
    loop.advance(15)

    assert _offline_count(transport, store, DEVICE) == 1
    assert _offline_count(transport, store, other) == 0


def test_transport_failure_is_logged_not_raised(
    loop: FakeLoop, transport: FakeTransport, caplog: pytest.LogCaptureFixture
) -> None:
    scheduler, store = _scheduler([("a", 60, True, True)], loop, transport)
    transport.accept = False
    scheduler.start()
    loop.advance(1)
    assert len(_refreshes(transport, store)) == 1
    assert "was not published" in caplog.text


def test_stop_cancels_everything(loop: FakeLoop, transport: FakeTransport) -> None:
    scheduler, _ = _scheduler([("a", 60, True, True), ("b", 60, True, True)], loop, transport)
    scheduler.start()
    assert scheduler.is_running

    scheduler.stop()

    assert not scheduler.is_running
    assert loop.pending() == []
    assert not scheduler.record_for(DEVICE).is_pending
    transport.clear()
    loop.advance(600)
    assert transport.published == []


def test_restart_polls_immediately(loop: FakeLoop, transport: FakeTransport) -> None:
    scheduler, store = _scheduler([("a", 60, True, True)], loop, transport)
    scheduler.start()
    loop.advance(0)
    scheduler.stop()
    loop.advance(60)
    scheduler.start()
    loop.advance(0)
    assert _refreshes(transport, store) == ["cd=a", "cd=a"]
