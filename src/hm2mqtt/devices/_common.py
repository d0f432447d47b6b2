"""Payload parsing shared by the device family schemas."""

from __future__ import annotations

import re
from collections.abc import Callable, Iterable, Mapping
from datetime import datetime
from typing import Any

from hm2mqtt import discovery
from hm2mqtt.exceptions import CommandValidationError
from hm2mqtt.schema.builder import ChannelBuilder
from hm2mqtt.schema.definitions import CommandContext

_LEADING_INT = re.compile(r"\s*([+-]?\d+)")

PRESS_PAYLOADS = ("1", "PRESS")


def is_press(message: str) -> bool:
    """Button payloads: ``true`` (any case), ``1`` or ``PRESS``."""
    return message.lower() == "true" or message in PRESS_PAYLOADS


def is_on(message: str, *, on_literal: str = "ON") -> bool:
    """Switch payloads: ``true`` (any case), ``1`` or *on_literal*."""
    return message.lower() == "true" or message in ("1", on_literal)


def leading_int(message: str) -> int | None:
    """Integer prefix of *message* (``"50W"`` → 50), or ``None``."""
    match = _LEADING_INT.match(message)
    if match is None:
        return None
    return int(match.group(1))


def int_in_range(context: CommandContext, low: int, high: int, *, what: str) -> int:
    """Parse the payload as an integer within ``[low, high]``.

    Raises
    ------
    CommandValidationError
        If the payload has no integer prefix or is out of range.
    """
    value = leading_int(context.message)
    if value is None or value < low or value > high:
        raise CommandValidationError(
            f"Invalid {what} (expected {low}-{high})",
            command=context.command,
            payload=context.message,
        )
    return value


def require_int(context: CommandContext, *, what: str) -> int:
    value = leading_int(context.message)
    if value is None:
        raise CommandValidationError(f"Invalid {what}", command=context.command, payload=context.message)
    return value


def require_match(context: CommandContext, pattern: re.Pattern[str], *, what: str) -> str:
    if pattern.match(context.message) is None:
        raise CommandValidationError(
            f"Invalid {what} format", command=context.command, payload=context.message
        )
    return context.message


def require_choice(context: CommandContext, choices: Mapping[str, Any], *, what: str) -> Any:
    """Look the payload up in *choices*; unknown literals are rejected."""
    if context.message not in choices:
        raise CommandValidationError(
            f"Invalid {what} (expected one of {', '.join(choices)})",
            command=context.command,
            payload=context.message,
        )
    return choices[context.message]


def has_keys(*keys: str) -> Callable[[Mapping[str, str]], bool]:
    """Routing predicate: every key in *keys* appears in the telegram."""
    required = frozenset(keys)

    def _matches(values: Mapping[str, str]) -> bool:
        return required.issubset(values)

    return _matches


def nested(state: Mapping[str, Any], *path: str) -> Any:
    node: Any = state
    for key in path:
        if not isinstance(node, Mapping):
            return None
        node = node.get(key)
    return node


def local_time_params(now: datetime) -> dict[str, int]:
    """``yy/mm/rr/hh/mn`` in local wall-clock time, month zero based."""
    return {
        "yy": now.year,
        "mm": now.month - 1,
        "rr": now.day,
        "hh": now.hour,
        "mn": now.minute,
    }


def add_timestamp_sensor(channel: ChannelBuilder, object_id: str = "timestamp", name: str = "Last Update", **extra: Any) -> None:
    extra.setdefault("icon", "mdi:clock-time-four-outline")
    channel.advertise("timestamp", discovery.sensor(object_id, name, device_class="timestamp", **extra))


def add_buttons(channel: ChannelBuilder, buttons: Iterable[tuple[str, str, str, str]]) -> None:
    """Advertise ``(object_id, name, icon, command)`` buttons, disabled by default."""
    for object_id, name, icon, command in buttons:
        channel.advertise(
            (),
            discovery.button(object_id, name, command=command, icon=icon, enabled_by_default=False),
        )
