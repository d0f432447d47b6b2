"""The hm2mqtt bridge: broker traffic in, device state and commands out."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Sequence
from typing import Protocol

from hm2mqtt import discovery
from hm2mqtt.config import BridgeConfig
from hm2mqtt.dispatcher import CommandDispatcher
from hm2mqtt.exceptions import Hm2MqttConfigError
from hm2mqtt.ingest import TelegramRouter
from hm2mqtt.models.device import Device, StateChange
from hm2mqtt.scheduler import OFFLINE, ONLINE, PollScheduler, SchedulingLoop, TimerHandle
from hm2mqtt.schema.registry import SchemaOptions, SchemaRegistry, build_default_registry
from hm2mqtt.state.addressing import bridge_availability_topic
from hm2mqtt.state.store import DeviceStateStore

_logger = logging.getLogger(__name__)

COMMAND_REFRESH_DELAY = 0.5


class BridgeTransport(Protocol):
    def publish(self, topic: str, payload: str, *, qos: int = 0, retain: bool = False) -> bool:
        ...

    def subscribe(self, topics: Sequence[str], *, qos: int = 1) -> bool:
        ...


def registry_for(config: BridgeConfig) -> SchemaRegistry:
    return build_default_registry(
        SchemaOptions(
            polling_interval=config.polling_interval,
            poll_extra_battery_data=config.poll_extra_battery_data,
        )
    )


class Bridge:
    """Connect configured devices to the broker.

    Parameters
    ----------
    config : BridgeConfig
        Bridge configuration.
    transport : BridgeTransport
        Publish/subscribe collaborator, normally a :class:`hm2mqtt._mqtt.MqttRuntime`.
    loop : SchedulingLoop
        Clock and timer for polling, discovery refresh and command follow-ups.
    registry : SchemaRegistry or None
        Device schemas; the built-in registry is used when omitted.

    Raises
    ------
    Hm2MqttConfigError
        If none of the configured devices has a known schema.
    """

    def __init__(
        self,
        config: BridgeConfig,
        transport: BridgeTransport,
        *,
        loop: SchedulingLoop,
        registry: SchemaRegistry | None = None,
    ) -> None:
        self._config = config
        self._transport = transport
        self._loop = loop
        self._prefix = config.topic_prefix
        self.store = DeviceStateStore(
            registry or registry_for(config),
            config.devices,
            topic_prefix=config.topic_prefix,
            on_state_change=self._publish_state,
        )
        if not self.store.devices():
            raise Hm2MqttConfigError("No valid devices configured")
        self.router = TelegramRouter(self.store)
        self.dispatcher = CommandDispatcher(self.store, self._send_command)
        self.scheduler = PollScheduler(
            self.store,
            transport,
            loop=loop,
            response_timeout=config.response_timeout,
            allowed_consecutive_timeouts=config.allowed_consecutive_timeouts,
        )
        self._discovered: set[tuple[Device, str]] = set()
        self._discovery_handle: TimerHandle | None = None

    def handle_connect(self) -> None:
        """Announce the bridge, subscribe and start polling."""
        self._transport.publish(bridge_availability_topic(self._prefix), ONLINE, qos=1, retain=True)
        for device in self.store.devices():
            topics = self.store.topics_for(device)
            self._transport.subscribe([*topics.device_topics, *self.store.control_topics_for(device)])
            self._transport.publish(topics.availability_topic, OFFLINE, qos=1, retain=True)
            self.publish_discovery(device)
        self.scheduler.start()
        self._schedule_discovery_refresh()

    def handle_message(self, topic: str, payload: bytes | str) -> None:
        try:
            found = self.store.find_device_for_topic(topic)
            if found is None:
                _logger.warning("Received message on unrecognized topic: %s", topic)
                return
            device, kind = found
            if kind == "device":
                self._handle_device_data(device, payload)
            else:
                self.dispatcher.dispatch(device, topic, payload)
        except Exception:
            _logger.error("Error processing message on %s", topic, exc_info=True)

    def _handle_device_data(self, device: Device, payload: bytes | str) -> None:
        topics = self.store.topics_for(device)
        self._transport.publish(topics.availability_topic, ONLINE, qos=1, retain=True)
        for channel in self.router.handle(device, payload):
            self.scheduler.on_data_received(device, channel)
            if (device, channel) not in self._discovered:
                self._discovered.add((device, channel))
                self.publish_discovery(device)

    def _publish_state(self, change: StateChange) -> None:
        topic = self.store.topics_for(change.device).state_topic(change.channel)
        _logger.debug("Device state %s updated", topic)
        self._transport.publish(topic, json.dumps(change.state), qos=1)

    def _send_command(self, device: Device, wire: str) -> None:
        topics = self.store.topics_for(device)
        sent = [self._transport.publish(topic, wire, qos=1) for topic in topics.device_control_topics]
        if not all(sent):
            _logger.error("Error sending command %s to %s", wire, device)
            return
        _logger.debug("Sent %s to %s", wire, device)
        self._loop.call_later(COMMAND_REFRESH_DELAY, self.scheduler.request_device_data, device)

    def publish_discovery(self, device: Device) -> int:
        """Publish retained discovery configs for *device*; returns the count."""
        configs = discovery.generate_discovery_configs(
            device,
            self.store.topics_for(device),
            self.store.schema_for(device),
            self.store.state_for(device),
            topic_prefix=self._prefix,
        )
        count = 0
        for topic, config in configs:
            self._transport.publish(topic, json.dumps(config), qos=1, retain=True)
            count += 1
        _logger.debug("Published %d discovery configs for %s", count, device)
        return count

    def _schedule_discovery_refresh(self) -> None:
        if self._discovery_handle is not None:
            self._discovery_handle.cancel()
        self._discovery_handle = self._loop.call_later(
            self._config.discovery_interval, self._refresh_discovery
        )

    def _refresh_discovery(self) -> None:
        self._discovery_handle = None
        for device in self.store.devices():
            try:
                self.publish_discovery(device)
            except Exception:
                _logger.error("Error publishing discovery for %s", device, exc_info=True)
        self._schedule_discovery_refresh()

    def shutdown(self) -> None:
        """Stop timers and mark every device and the bridge offline."""
        self.scheduler.stop()
        if self._discovery_handle is not None:
            self._discovery_handle.cancel()
            self._discovery_handle = None
        for device in self.store.devices():
            self._transport.publish(self.store.topics_for(device).availability_topic, OFFLINE, qos=1, retain=True)
        self._transport.publish(bridge_availability_topic(self._prefix), OFFLINE, qos=1, retain=True)


async def run_bridge(config: BridgeConfig, stop: asyncio.Event | None = None) -> None:
    """Run the bridge until *stop* is set."""
    from hm2mqtt._mqtt import MqttRuntime

    loop = asyncio.get_running_loop()
    stop = stop or asyncio.Event()
    bridge: Bridge | None = None

    def _on_message(topic: str, payload: bytes) -> None:
        if bridge is not None:
            bridge.handle_message(topic, payload)

    def _on_connect() -> None:
        if bridge is not None:
            bridge.handle_connect()

    runtime = MqttRuntime(loop=loop, on_message=_on_message, on_connect=_on_connect)
    bridge = Bridge(config, runtime, loop=loop)
    _logger.info("Bridging %d device(s)", len(bridge.store.devices()))
    runtime.start(config)
    try:
        await stop.wait()
    finally:
        _logger.info("Shutting down")
        bridge.shutdown()
        runtime.stop()
