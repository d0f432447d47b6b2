from __future__ import annotations

import heapq
import itertools
from collections.abc import Callable, Iterable, Sequence
from typing import Any

import pytest

from hm2mqtt.models.device import Device
from hm2mqtt.schema.builder import SchemaBuilder
from hm2mqtt.schema.registry import SchemaOptions, SchemaRegistry, build_default_registry
from hm2mqtt.state.store import DeviceStateStore


class FakeHandle:
    def __init__(self, when: float, callback: Callable[..., Any], args: tuple[Any, ...]) -> None:
        self.when = when
        self.callback = callback
        self.args = args
        self.cancelled = False
        self.cancel_calls = 0

    def cancel(self) -> None:
        self.cancel_calls += 1
        self.cancelled = True


class FakeLoop:
    """Simulated clock with ``time()`` and ``call_later()``."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start
        self._queue: list[tuple[float, int, FakeHandle]] = []
        self._seq = itertools.count()

    def time(self) -> float:
        return self.now

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> FakeHandle:
        handle = FakeHandle(self.now + delay, callback, args)
        heapq.heappush(self._queue, (handle.when, next(self._seq), handle))
        return handle

    def advance(self, seconds: float) -> None:
        target = self.now + seconds
        while self._queue and self._queue[0][0] <= target + 1e-9:
            when, _, handle = heapq.heappop(self._queue)
            if handle.cancelled:
                continue
            self.now = max(self.now, when)
            handle.callback(*handle.args)
        self.now = target

    def pending(self) -> list[FakeHandle]:
        return [handle for _, _, handle in self._queue if not handle.cancelled]


class FakeTransport:
    """Records publishes and subscriptions; ``accept`` controls the result."""

    def __init__(self) -> None:
        self.published: list[tuple[str, str, int, bool]] = []
        self.subscribed: list[str] = []
        self.accept = True

    def publish(self, topic: str, payload: str, *, qos: int = 0, retain: bool = False) -> bool:
        self.published.append((topic, payload, qos, retain))
        return self.accept

    def subscribe(self, topics: Sequence[str], *, qos: int = 1) -> bool:
        self.subscribed.extend(topics)
        return self.accept

    def payloads(self, topic: str) -> list[str]:
        return [payload for t, payload, _, _ in self.published if t == topic]

    def clear(self) -> None:
        self.published.clear()


def make_registry(channels: Iterable[tuple[str, float, bool, bool]], family: str = "TST") -> SchemaRegistry:
    """Registry with one synthetic family.

    Each channel is ``(key, poll_interval, controls_availability, enabled)``
    and answers telegrams carrying a ``<key>=`` pair.
    """
    builder = SchemaBuilder()
    for key, interval, controls, enabled in channels:
        channel = builder.channel(
            key,
            refresh_payload=f"cd={key}",
            poll_interval=interval,
            matches=lambda values, key=key: key in values,
            controls_availability=controls,
            enabled=enabled,
        )
        channel.field(key, key)
    registry = SchemaRegistry()
    registry.register(family, builder.build())
    return registry.freeze()


@pytest.fixture()
def loop() -> FakeLoop:
    return FakeLoop()


@pytest.fixture()
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture(scope="session")
def registry() -> SchemaRegistry:
    return build_default_registry(SchemaOptions())


@pytest.fixture()
def store_for(registry: SchemaRegistry) -> Callable[..., DeviceStateStore]:
    def _make(*device_types: str, reg: SchemaRegistry | None = None) -> DeviceStateStore:
        devices = [Device(device_type=t, device_id=f"test-{t.lower()}") for t in device_types]
        return DeviceStateStore(reg or registry, devices)

    return _make
