"""Builders that assemble immutable device schemas."""

from __future__ import annotations

import copy
from collections.abc import Callable, Mapping, Sequence
from typing import Any

from hm2mqtt.schema.definitions import (
    AdvertisementDefinition,
    AdvertiseBuilder,
    CommandDefinition,
    CommandHandler,
    DeviceSchema,
    FieldDefinition,
    MessageChannel,
    StatePredicate,
)
from hm2mqtt.state.paths import PathKey, as_path
from hm2mqtt.transforms import MultiKeyTransform, Transform


class ChannelBuilder:
    """Collects fields, commands and advertisements for one channel."""

    def __init__(self, key: str, **options: Any) -> None:
        self.key = key
        self._options = options
        self._fields: list[FieldDefinition] = []
        self._commands: list[CommandDefinition] = []
        self._advertisements: list[AdvertisementDefinition] = []

    def field(
        self,
        key: str | Sequence[str],
        path: Sequence[PathKey] | str,
        transform: Transform | MultiKeyTransform | None = None,
    ) -> None:
        wire_key = key if isinstance(key, str) else tuple(key)
        self._fields.append(FieldDefinition(key=wire_key, path=as_path(path), transform=transform))

    def command(self, name: str, handler: CommandHandler) -> None:
        if any(existing.name == name for existing in self._commands):
            raise ValueError(f"Command {name!r} registered twice on channel {self.key!r}")
        self._commands.append(CommandDefinition(name=name, handler=handler))

    def advertise(
        self,
        path: Sequence[PathKey] | str,
        builder: AdvertiseBuilder,
        *,
        enabled: StatePredicate | None = None,
    ) -> None:
        self._advertisements.append(
            AdvertisementDefinition(key_path=as_path(path), builder=builder, enabled=enabled)
        )

    def build(self) -> MessageChannel:
        options = dict(self._options)
        options["default_state"] = copy.deepcopy(dict(options.get("default_state") or {}))
        return MessageChannel(
            key=self.key,
            fields=tuple(self._fields),
            commands=tuple(self._commands),
            advertisements=tuple(self._advertisements),
            **options,
        )


class SchemaBuilder:
    """Registration front-end for a :class:`DeviceSchema`.

    Example
    -------
    >>> builder = SchemaBuilder()
    >>> data = builder.channel("data", refresh_payload="cd=1", poll_interval=60, matches=lambda v: True)
    >>> data.field("pe", "batteryPercentage")
    >>> schema = builder.build()
    """

    def __init__(self, *, obfuscate_current_epoch: bool = True) -> None:
        self._obfuscate = obfuscate_current_epoch
        self._channels: list[ChannelBuilder] = []

    def channel(
        self,
        key: str,
        *,
        refresh_payload: str,
        poll_interval: float,
        matches: Callable[[Mapping[str, str]], bool],
        default_state: Mapping[str, Any] | None = None,
        device_info: Callable[[Mapping[str, Any]], dict[str, Any]] | None = None,
        controls_availability: bool = True,
        enabled: bool = True,
    ) -> ChannelBuilder:
        if any(existing.key == key for existing in self._channels):
            raise ValueError(f"Channel {key!r} registered twice")
        options: dict[str, Any] = {
            "refresh_payload": refresh_payload,
            "poll_interval": poll_interval,
            "matches": matches,
            "default_state": default_state,
            "controls_availability": controls_availability,
            "enabled": enabled,
        }
        if device_info is not None:
            options["device_info"] = device_info
        channel = ChannelBuilder(key, **options)
        self._channels.append(channel)
        return channel

    def build(self) -> DeviceSchema:
        return DeviceSchema(
            channels=tuple(channel.build() for channel in self._channels),
            obfuscate_current_epoch=self._obfuscate,
        )
