"""Immutable schema records describing a device family.

A :class:`DeviceSchema` is an ordered tuple of :class:`MessageChannel`
records. Each channel carries the wire fields it decodes, the operator
commands it accepts and the discovery entities it advertises. Records are
created through :class:`hm2mqtt.schema.builder.SchemaBuilder` and never
mutated afterwards.
"""

from __future__ import annotations

import dataclasses
from collections.abc import Callable, Mapping
from typing import Any

from hm2mqtt.models.device import Device
from hm2mqtt.state.paths import StatePath
from hm2mqtt.transforms import MultiKeyTransform, Transform, default_number

StatePatch = dict[str, Any]
StateUpdater = Callable[[Mapping[str, Any]], StatePatch | None]


@dataclasses.dataclass(frozen=True)
class CommandContext:
    """Everything a command handler may touch.

    ``state`` is a snapshot of the effective device state. ``update_state``
    patches the state of the channel that owns the command and returns
    the new channel state.
    """

    device: Device
    command: str
    message: str
    state: Mapping[str, Any]
    publish: Callable[[str], None]
    update_state: Callable[[StateUpdater], dict[str, Any]]


CommandHandler = Callable[[CommandContext], None]


@dataclasses.dataclass(frozen=True)
class AdvertiseArgs:
    """Inputs handed to a discovery builder."""

    command_topic: str
    state_topic: str
    key_path: StatePath


AdvertiseBuilder = Callable[[AdvertiseArgs], dict[str, Any]]
StatePredicate = Callable[[Mapping[str, Any]], bool]


@dataclasses.dataclass(frozen=True)
class FieldDefinition:
    """Maps one wire key (or several, for aggregates) to a state path."""

    key: str | tuple[str, ...]
    path: StatePath
    transform: Transform | MultiKeyTransform | None = None

    @property
    def keys(self) -> tuple[str, ...]:
        return self.key if isinstance(self.key, tuple) else (self.key,)

    def decode(self, values: Mapping[str, str]) -> tuple[bool, Any]:
        """Return ``(present, value)`` for this field in *values*."""
        if isinstance(self.key, tuple):
            subset = {k: values[k] for k in self.key if k in values}
            if not subset or self.transform is None:
                return False, None
            return True, self.transform(subset)  # type: ignore[arg-type]
        raw = values.get(self.key)
        if raw is None:
            return False, None
        transform = self.transform or default_number
        return True, transform(raw)  # type: ignore[arg-type]


@dataclasses.dataclass(frozen=True)
class CommandDefinition:
    name: str
    handler: CommandHandler


@dataclasses.dataclass(frozen=True)
class AdvertisementDefinition:
    key_path: StatePath
    builder: AdvertiseBuilder
    enabled: StatePredicate | None = None

    def is_enabled(self, state: Mapping[str, Any]) -> bool:
        return self.enabled is None or bool(self.enabled(state))


def _no_device_info(_state: Mapping[str, Any]) -> dict[str, Any]:
    return {}


@dataclasses.dataclass(frozen=True, eq=False)
class MessageChannel:
    """One routable slice of a device's protocol surface.

    Parameters
    ----------
    key : str
        Channel key, also the suffix of the published state topic.
    refresh_payload : str
        Telegram sent to ask the device for this channel's data.
    poll_interval : float
        Minimum seconds between two refresh requests.
    matches : Callable
        Routing predicate over the raw telegram values.
    default_state : dict
        Initial channel state; copied on first access.
    controls_availability : bool
        Whether missed responses count towards marking the device offline.
    enabled : bool
        Disabled channels are neither polled nor routed.
    """

    key: str
    refresh_payload: str
    poll_interval: float
    matches: Callable[[Mapping[str, str]], bool]
    default_state: dict[str, Any] = dataclasses.field(default_factory=dict)
    device_info: Callable[[Mapping[str, Any]], dict[str, Any]] = _no_device_info
    controls_availability: bool = True
    enabled: bool = True
    fields: tuple[FieldDefinition, ...] = ()
    commands: tuple[CommandDefinition, ...] = ()
    advertisements: tuple[AdvertisementDefinition, ...] = ()

    def find_command(self, name: str) -> CommandDefinition | None:
        for command in self.commands:
            if command.name == name:
                return command
        return None


@dataclasses.dataclass(frozen=True, eq=False)
class DeviceSchema:
    """Ordered channels of one device family."""

    channels: tuple[MessageChannel, ...]
    obfuscate_current_epoch: bool = True

    def channel(self, key: str) -> MessageChannel | None:
        for channel in self.channels:
            if channel.key == key:
                return channel
        return None

    def find_command(self, name: str) -> tuple[MessageChannel, CommandDefinition] | None:
        """First command called *name*, scanning channels in order."""
        for channel in self.channels:
            command = channel.find_command(name)
            if command is not None:
                return channel, command
        return None

    def command_names(self) -> list[str]:
        return [command.name for channel in self.channels for command in channel.commands]

    def device_info(self, state: Mapping[str, Any]) -> dict[str, Any]:
        info: dict[str, Any] = {}
        for channel in self.channels:
            info.update(channel.device_info(state))
        return info
