"""Turn operator control messages into device commands."""

from __future__ import annotations

import logging
from collections.abc import Callable

from hm2mqtt.exceptions import CommandValidationError
from hm2mqtt.models.device import Device
from hm2mqtt.schema.definitions import CommandContext, StateUpdater
from hm2mqtt.state.store import DeviceStateStore

_logger = logging.getLogger(__name__)

DevicePublisher = Callable[[Device, str], None]


class CommandDispatcher:
    """Resolve control topics to schema commands and run their handlers.

    Parameters
    ----------
    store : DeviceStateStore
        State and addressing source.
    publish : Callable[[Device, str], None]
        Sends a wire-format command to a device.
    """

    def __init__(self, store: DeviceStateStore, publish: DevicePublisher) -> None:
        self._store = store
        self._publish = publish

    def command_path(self, device: Device, topic: str) -> str | None:
        prefix = self._store.topics_for(device).control_subscription_topic + "/"
        if not topic.startswith(prefix):
            return None
        return topic[len(prefix) :]

    def dispatch(self, device: Device, topic: str, payload: str | bytes) -> bool:
        """Run the first command matching *topic*.

        Returns ``True`` when a handler ran to completion. Unknown commands,
        invalid payloads and handler errors are logged and yield ``False``.
        """
        if isinstance(payload, bytes):
            payload = payload.decode("utf-8", errors="replace")
        _logger.info("Processing control topic for %s: %s payload=%s", device, topic, payload)
        try:
            path = self.command_path(device, topic)
            found = None if path is None else self._store.schema_for(device).find_command(path)
            if found is None:
                _logger.warning("Unknown control topic: %s", topic)
                return False
            channel, command = found

            def update_state(updater: StateUpdater) -> dict:
                return self._store.update_channel(device, channel.key, updater)

            context = CommandContext(
                device=device,
                command=command.name,
                message=payload,
                state=self._store.state_for(device),
                publish=lambda wire: self._publish(device, wire),
                update_state=update_state,
            )
            command.handler(context)
        except CommandValidationError as exc:
            _logger.warning(
                "Rejected %s for %s: %s (payload=%r)", exc.command or topic, device, exc, exc.payload
            )
            return False
        except Exception:
            _logger.error("Error handling control topic %s", topic, exc_info=True)
            return False
        return True
