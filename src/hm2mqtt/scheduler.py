"""Refresh polling and the response-timeout availability state machine.

Each configured device is walked once per tick. A channel is due when it
was never requested or when its poll interval has elapsed since the last
request. Before any due channel that controls availability is requested, a
single response timeout is armed for the device; a timeout that fires
counts as a miss, and only a run of ``allowed_consecutive_timeouts`` misses
marks the device offline.

All callbacks run on the injected loop, so every mutation of the
bookkeeping below is serialized on that loop.
"""

from __future__ import annotations

import dataclasses
import logging
import math
from typing import Any, Protocol

from hm2mqtt.models.device import Device
from hm2mqtt.schema.definitions import MessageChannel
from hm2mqtt.state.store import DeviceStateStore

_logger = logging.getLogger(__name__)

DEFAULT_STAGGER = 0.1
OFFLINE = "offline"
ONLINE = "online"


class TimerHandle(Protocol):
    def cancel(self) -> None:
        ...


class SchedulingLoop(Protocol):
    """The subset of :class:`asyncio.AbstractEventLoop` the scheduler uses."""

    def time(self) -> float:
        ...

    def call_later(self, delay: float, callback: Any, *args: Any) -> TimerHandle:
        ...


class Publisher(Protocol):
    def publish(self, topic: str, payload: str, *, qos: int = 0, retain: bool = False) -> bool:
        ...


@dataclasses.dataclass
class PendingTimeout:
    """One armed response timeout; retired exactly once."""

    handle: TimerHandle | None = None
    retired: bool = False


@dataclasses.dataclass
class TimeoutRecord:
    """Per-device miss counter and the outstanding timeout, if any."""

    misses: int = 0
    pending: PendingTimeout | None = None

    @property
    def is_pending(self) -> bool:
        return self.pending is not None and not self.pending.retired


class PollScheduler:
    """Drive refresh requests and availability for every stored device.

    Parameters
    ----------
    store : DeviceStateStore
        Source of devices, schemas and topics.
    transport : Publisher
        Anything with ``publish(topic, payload, qos=, retain=) -> bool``.
    loop : SchedulingLoop
        Clock and timer; an asyncio loop in production.
    response_timeout : float
        Seconds to wait for an answer before counting a miss.
    allowed_consecutive_timeouts : int
        Misses after which the device is marked offline.
    stagger : float
        Spacing in seconds between the refreshes sent to one device.
    """

    def __init__(
        self,
        store: DeviceStateStore,
        transport: Publisher,
        *,
        loop: SchedulingLoop,
        response_timeout: float = 15.0,
        allowed_consecutive_timeouts: int = 3,
        stagger: float = DEFAULT_STAGGER,
    ) -> None:
        self._store = store
        self._transport = transport
        self._loop = loop
        self._response_timeout = response_timeout
        self._threshold = allowed_consecutive_timeouts
        self._stagger = stagger
        self._last_request: dict[tuple[Device, str], float] = {}
        self._records: dict[Device, TimeoutRecord] = {}
        self._tick_handle: TimerHandle | None = None
        self._send_handles: set[TimerHandle] = set()

    @property
    def is_running(self) -> bool:
        return self._tick_handle is not None

    def record_for(self, device: Device) -> TimeoutRecord:
        record = self._records.get(device)
        if record is None:
            record = self._records[device] = TimeoutRecord()
        return record

    def last_request(self, device: Device, channel: str) -> float | None:
        return self._last_request.get((device, channel))

    def tick_interval(self) -> float:
        """Greatest common divisor of every enabled channel's poll interval."""
        millis = [
            max(1, round(channel.poll_interval * 1000))
            for device in self._store.devices()
            for channel in self._store.schema_for(device).channels
            if channel.enabled
        ]
        if not millis:
            return 0.0
        return math.gcd(*millis) / 1000

    def due_channels(self, device: Device, now: float | None = None) -> list[MessageChannel]:
        """Enabled channels of *device* whose poll interval has elapsed."""
        now = self._loop.time() if now is None else now
        due = []
        for channel in self._store.schema_for(device).channels:
            if not channel.enabled:
                continue
            last = self._last_request.get((device, channel.key))
            if last is None or now >= last + channel.poll_interval:
                due.append(channel)
        return due

    def request_device_data(self, device: Device) -> int:
        """Send refreshes for every due channel of *device*.

        Returns the number of channels requested.
        """
        now = self._loop.time()
        due = self.due_channels(device, now)
        if not due:
            return 0

        if any(channel.controls_availability for channel in due):
            self._arm_timeout(device)

        for index, channel in enumerate(due):
            self._last_request[(device, channel.key)] = now
            self._schedule_send(index * self._stagger, device, channel)
        _logger.debug("Requested %s for %s", [c.key for c in due], device)
        return len(due)

    def _schedule_send(self, delay: float, device: Device, channel: MessageChannel) -> None:
        holder: list[TimerHandle] = []

        def _fire() -> None:
            if holder:
                self._send_handles.discard(holder[0])
            self._send_refresh(device, channel)

        handle = self._loop.call_later(delay, _fire)
        holder.append(handle)
        self._send_handles.add(handle)

    def _send_refresh(self, device: Device, channel: MessageChannel) -> None:
        topics = self._store.topics_for(device)
        for topic in topics.device_control_topics:
            if not self._transport.publish(topic, channel.refresh_payload, qos=1):
                _logger.warning("Refresh %s for %s was not published on %s", channel.key, device, topic)

    def _arm_timeout(self, device: Device) -> None:
        record = self.record_for(device)
        if record.is_pending:
            _logger.debug("Response timeout already pending for %s", device)
            return
        pending = PendingTimeout()
        pending.handle = self._loop.call_later(self._response_timeout, self._on_timeout, device, pending)
        record.pending = pending

    def _on_timeout(self, device: Device, pending: PendingTimeout) -> None:
        if pending.retired:
            return
        pending.retired = True
        record = self.record_for(device)
        if record.pending is pending:
            record.pending = None
        record.misses += 1
        _logger.warning(
            "No response from %s within %.1fs (%d/%d)",
            device,
            self._response_timeout,
            record.misses,
            self._threshold,
        )
        if record.misses >= self._threshold:
            topic = self._store.topics_for(device).availability_topic
            _logger.warning("Marking %s offline after %d missed responses", device, record.misses)
            self._transport.publish(topic, OFFLINE, qos=1, retain=True)

    def on_data_received(self, device: Device, channel: str) -> bool:
        """Note a response on *channel*.

        Returns ``True`` when the channel controls availability, in which
        case the miss counter was reset and the pending timeout retired.
        """
        definition = self._store.schema_for(device).channel(channel)
        if definition is None or not definition.controls_availability:
            return False
        record = self.record_for(device)
        record.misses = 0
        pending = record.pending
        record.pending = None
        if pending is not None and not pending.retired:
            pending.retired = True
            if pending.handle is not None:
                pending.handle.cancel()
        return True

    def poll_all(self) -> None:
        for device in self._store.devices():
            try:
                self.request_device_data(device)
            except Exception:
                _logger.error("Error requesting data for %s", device, exc_info=True)

    def start(self) -> None:
        """Poll every device now and then once per :meth:`tick_interval`."""
        self.stop()
        interval = self.tick_interval()
        if interval <= 0:
            _logger.warning("Nothing to poll")
            return
        _logger.info("Polling %d device(s) every %.3gs", len(self._store.devices()), interval)
        self._tick(interval)

    def _tick(self, interval: float) -> None:
        self._tick_handle = self._loop.call_later(interval, self._tick, interval)
        self.poll_all()

    def stop(self) -> None:
        """Cancel the tick, queued refreshes and pending timeouts."""
        if self._tick_handle is not None:
            self._tick_handle.cancel()
            self._tick_handle = None
        for handle in self._send_handles:
            handle.cancel()
        self._send_handles.clear()
        for record in self._records.values():
            pending = record.pending
            record.pending = None
            if pending is not None and not pending.retired:
                pending.retired = True
                if pending.handle is not None:
                    pending.handle.cancel()
