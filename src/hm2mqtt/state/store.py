"""Per-device, per-channel runtime state.

This is the only component that writes device state. Every write goes
through :meth:`DeviceStateStore.update_channel`, which holds a lock for the
channel being updated; readers always receive deep-copied snapshots.
"""

from __future__ import annotations

import copy
import logging
import threading
from collections.abc import Callable, Iterable, Mapping
from typing import TYPE_CHECKING, Any, Literal

from hm2mqtt.models.device import Device, StateChange
from hm2mqtt.state.addressing import DeviceTopics, build_device_topics

if TYPE_CHECKING:
    from hm2mqtt.schema.definitions import DeviceSchema, StateUpdater
    from hm2mqtt.schema.registry import SchemaRegistry

_logger = logging.getLogger(__name__)

TopicKind = Literal["device", "control"]
StateObserver = Callable[[StateChange], None]


class DeviceStateStore:
    """In-memory channel states plus cached topic addressing.

    Parameters
    ----------
    registry : SchemaRegistry
        Source of device schemas.
    devices : Iterable[Device]
        Configured devices. Devices without a schema are skipped.
    topic_prefix : str
        Prefix for operator-facing topics.
    on_state_change : Callable or None
        Observer fired synchronously after every channel update.
    """

    def __init__(
        self,
        registry: SchemaRegistry,
        devices: Iterable[Device] = (),
        *,
        topic_prefix: str = "hm2mqtt",
        on_state_change: StateObserver | None = None,
    ) -> None:
        self._registry = registry
        self._topic_prefix = topic_prefix
        self._on_state_change = on_state_change
        self._devices: list[Device] = []
        self._topics: dict[Device, DeviceTopics] = {}
        self._states: dict[Device, dict[str, dict[str, Any]]] = {}
        self._locks: dict[tuple[Device, str], threading.Lock] = {}
        self._guard = threading.Lock()

        for device in devices:
            if device in self._devices:
                continue
            if registry.resolve(device.device_type) is None:
                _logger.warning("Skipping unknown device type %s", device.device_type)
                continue
            self._devices.append(device)

    @property
    def topic_prefix(self) -> str:
        return self._topic_prefix

    def set_observer(self, observer: StateObserver | None) -> None:
        self._on_state_change = observer

    def devices(self) -> list[Device]:
        return list(self._devices)

    def schema_for(self, device: Device) -> DeviceSchema:
        return self._registry.require(device.device_type)

    def topics_for(self, device: Device) -> DeviceTopics:
        """Topics for *device*, computed once and cached."""
        topics = self._topics.get(device)
        if topics is None:
            schema = self.schema_for(device)
            topics = build_device_topics(
                device,
                topic_prefix=self._topic_prefix,
                obfuscate=schema.obfuscate_current_epoch,
            )
            with self._guard:
                topics = self._topics.setdefault(device, topics)
        return topics

    def control_topics_for(self, device: Device) -> list[str]:
        topics = self.topics_for(device)
        return [topics.command_topic(name) for name in self.schema_for(device).command_names()]

    def _lock_for(self, device: Device, channel: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get((device, channel))
            if lock is None:
                lock = self._locks[(device, channel)] = threading.Lock()
            return lock

    def _default_state(self, device: Device, channel: str) -> dict[str, Any]:
        definition = self.schema_for(device).channel(channel)
        if definition is None:
            return {}
        return copy.deepcopy(definition.default_state)

    def _stored(self, device: Device, channel: str) -> dict[str, Any] | None:
        return self._states.get(device, {}).get(channel)

    def state_for_channel(self, device: Device, channel: str) -> dict[str, Any]:
        """Snapshot of one channel's state, defaulted from the schema."""
        with self._lock_for(device, channel):
            stored = self._stored(device, channel)
            if stored is None:
                return self._default_state(device, channel)
            return copy.deepcopy(stored)

    def state_for(self, device: Device) -> dict[str, Any]:
        """Effective state: shallow union of all channels in schema order."""
        merged: dict[str, Any] = {}
        for channel in self.schema_for(device).channels:
            merged.update(self.state_for_channel(device, channel.key))
        return merged

    def update_channel(
        self,
        device: Device,
        channel: str,
        updater: StateUpdater,
    ) -> dict[str, Any]:
        """Apply ``updater(current)`` as a shallow patch and store the result.

        Returns a snapshot of the new channel state.
        """
        with self._lock_for(device, channel):
            stored = self._stored(device, channel)
            current = copy.deepcopy(stored) if stored is not None else self._default_state(device, channel)
            patch = updater(copy.deepcopy(current))
            if patch:
                current.update(copy.deepcopy(dict(patch)))
            with self._guard:
                self._states.setdefault(device, {})[channel] = current
            snapshot = copy.deepcopy(current)

        if self._on_state_change is not None:
            self._on_state_change(StateChange(device=device, channel=channel, state=snapshot))
        return copy.deepcopy(snapshot)

    def has_state(self, device: Device, channel: str) -> bool:
        return self._stored(device, channel) is not None

    def find_device_for_topic(self, topic: str) -> tuple[Device, TopicKind] | None:
        """Resolve an inbound topic to its device and topic kind."""
        for device in self._devices:
            topics = self.topics_for(device)
            if topic in topics.device_topics:
                return device, "device"
            if topic.startswith(topics.control_subscription_topic + "/"):
                return device, "control"
        return None

    def snapshot(self) -> Mapping[Device, dict[str, Any]]:
        return {device: self.state_for(device) for device in self._devices}
