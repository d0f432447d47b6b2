"""Internal paho-mqtt runtime that feeds broker traffic onto an asyncio loop."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Sequence
from typing import Any, cast

import paho.mqtt.client as mqtt

from hm2mqtt.config import BridgeConfig
from hm2mqtt.exceptions import Hm2MqttTransportError
from hm2mqtt.state.addressing import bridge_availability_topic

MessageCallback = Callable[[str, bytes], None]
ConnectCallback = Callable[[], None]


class MqttRuntime:
    """Threaded paho-mqtt client bound to an asyncio loop.

    Inbound messages and successful (re)connects are handed to the loop with
    ``call_soon_threadsafe`` so that all bridge logic runs on a single
    thread. A retained ``offline`` last will is registered on the bridge
    availability topic.
    """

    def __init__(
        self,
        *,
        loop: asyncio.AbstractEventLoop,
        on_message: MessageCallback,
        on_connect: ConnectCallback | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._loop = loop
        self._on_message = on_message
        self._on_connect = on_connect
        self._logger = logger or logging.getLogger(__name__)
        self._client: mqtt.Client | None = None
        self._running = False

    @property
    def is_running(self) -> bool:
        """Whether the MQTT runtime is actively running."""
        return self._running

    @property
    def is_connected(self) -> bool:
        return self._client is not None and self._client.is_connected()

    def start(self, config: BridgeConfig) -> None:
        """Connect to the configured broker and start the network loop.

        Raises
        ------
        Hm2MqttTransportError
            If the initial connection attempt fails.
        """
        self.stop()
        broker = config.broker
        client_id = config.effective_client_id
        self._logger.info(
            "Connecting to MQTT broker host=%s port=%s tls=%s client_id=%s username=%s",
            broker.host,
            broker.port,
            broker.tls,
            client_id,
            config.username or "<none>",
        )

        client = mqtt.Client(
            callback_api_version=cast(Any, mqtt).CallbackAPIVersion.VERSION2,
            client_id=client_id,
            protocol=mqtt.MQTTv311,
            clean_session=True,
        )
        client.enable_logger(self._logger)
        if config.username:
            client.username_pw_set(config.username, config.password)
        if broker.tls:
            client.tls_set()
        client.will_set(bridge_availability_topic(config.topic_prefix), "offline", qos=1, retain=True)
        client.reconnect_delay_set(min_delay=1, max_delay=5)

        def on_connect(
            _c: mqtt.Client,
            _userdata: Any,
            _flags: Any,
            reason_code: Any,
            _properties: Any,
        ) -> None:
            if reason_code.value != 0:
                self._logger.warning("MQTT connect failed: %s", reason_code)
                return
            self._logger.info("Connected to MQTT broker")
            if self._on_connect is not None:
                self._loop.call_soon_threadsafe(self._on_connect)

        def on_message(_c: mqtt.Client, _userdata: Any, msg: mqtt.MQTTMessage) -> None:
            try:
                self._logger.debug("Received message topic=%s payload=%r", msg.topic, msg.payload)
                self._loop.call_soon_threadsafe(self._on_message, msg.topic, bytes(msg.payload))
            except Exception:
                self._logger.debug("MQTT message hand-off failure", exc_info=True)

        def on_disconnect(
            _client: mqtt.Client,
            _userdata: Any,
            _disconnect_flags: Any,
            reason_code: Any,
            _properties: Any,
        ) -> None:
            if self._running:
                self._logger.warning("MQTT disconnected: %s", reason_code)

        client.on_connect = on_connect
        client.on_message = on_message
        client.on_disconnect = on_disconnect

        try:
            client.connect(broker.host, broker.port, keepalive=config.keepalive)
        except OSError as exc:
            raise Hm2MqttTransportError(
                f"Could not connect to MQTT broker {broker.host}:{broker.port}: {exc}"
            ) from exc
        client.loop_start()

        self._client = client
        self._running = True
        self._logger.debug("MQTT network loop started")

    def publish(
        self,
        topic: str,
        payload: str,
        *,
        qos: int = 0,
        retain: bool = False,
    ) -> bool:
        """Queue a publish; ``False`` when the client rejected it."""
        client = self._client
        if client is None:
            self._logger.warning("Cannot publish to %s: MQTT client not started", topic)
            return False
        try:
            info = client.publish(topic, payload, qos=qos, retain=retain)
        except (ValueError, OSError):
            self._logger.error("Error publishing to %s", topic, exc_info=True)
            return False
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            self._logger.error("Error publishing to %s: %s", topic, mqtt.error_string(info.rc))
            return False
        return True

    def subscribe(self, topics: Sequence[str], *, qos: int = 1) -> bool:
        client = self._client
        if client is None or not topics:
            return False
        try:
            result, _mid = client.subscribe([(topic, qos) for topic in topics])
        except ValueError:
            self._logger.error("Invalid subscription %s", list(topics), exc_info=True)
            return False
        if result != mqtt.MQTT_ERR_SUCCESS:
            self._logger.error("Subscription error for %s: %s", list(topics), mqtt.error_string(result))
            return False
        self._logger.debug("Subscribed to %d topic(s)", len(topics))
        return True

    def stop(self) -> None:
        """Stop and disconnect current MQTT client if running."""
        client = self._client
        self._client = None
        was_running = self._running
        self._running = False

        if client is None:
            return
        try:
            if was_running:
                self._logger.debug("MQTT disconnect requested")
                client.disconnect()
        finally:
            client.loop_stop()
            self._logger.debug("MQTT network loop stopped")
