"""Route inbound telegrams into channel state."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any

from hm2mqtt.models.device import Device
from hm2mqtt.schema.definitions import MessageChannel
from hm2mqtt.state.paths import set_path
from hm2mqtt.state.store import DeviceStateStore
from hm2mqtt.telegram import parse_telegram

_logger = logging.getLogger(__name__)


def decode_channel(
    channel: MessageChannel,
    values: Mapping[str, str],
    current: Mapping[str, Any],
) -> dict[str, Any]:
    """Build the patch that applies *values* on top of *current*.

    Fields whose wire key is absent keep their previous value. A field whose
    transform fails is logged and skipped.
    """
    patch: dict[str, Any] = {}
    for definition in channel.fields:
        try:
            present, value = definition.decode(values)
        except Exception:
            _logger.warning(
                "Failed to decode field %s of channel %s", definition.key, channel.key, exc_info=True
            )
            continue
        if not present:
            continue
        root = definition.path[0]
        if len(definition.path) > 1 and root not in patch and isinstance(current.get(root), dict | list):
            patch[root] = current[root]
        set_path(patch, definition.path, value)
    return patch


class TelegramRouter:
    """Decode telegrams for configured devices and store the result."""

    def __init__(self, store: DeviceStateStore) -> None:
        self._store = store

    def handle(self, device: Device, payload: str | bytes) -> list[str]:
        """Store every enabled channel that claims *payload*.

        Returns
        -------
        list[str]
            Keys of the channels that were updated, in schema order.
        """
        try:
            values = parse_telegram(payload)
            schema = self._store.schema_for(device)
        except Exception:
            _logger.error("Error handling device data for %s", device, exc_info=True)
            return []

        if not values:
            _logger.debug("Ignoring empty telegram from %s", device)
            return []

        timestamp = datetime.now(UTC).isoformat()
        updated: list[str] = []
        for channel in schema.channels:
            if not channel.enabled or not channel.matches(values):
                continue

            def _apply(current: Mapping[str, Any], channel: MessageChannel = channel) -> dict[str, Any]:
                patch = decode_channel(channel, values, current)
                patch["timestamp"] = timestamp
                return patch

            try:
                self._store.update_channel(device, channel.key, _apply)
            except Exception:
                _logger.error(
                    "Error storing channel %s for %s", channel.key, device, exc_info=True
                )
                continue
            updated.append(channel.key)

        if not updated:
            _logger.debug("No channel matched telegram from %s keys=%s", device, sorted(values))
        return updated
