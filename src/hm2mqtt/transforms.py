"""Value transforms applied to raw telegram strings.

A single-key transform is any ``Callable[[str], Any]``; the factories below
build the ones shared by the device families. Multi-key transforms take the
mapping of the raw values they were registered for.
"""

from __future__ import annotations

import math
import re
from collections.abc import Callable, Mapping
from typing import Any, Literal

Transform = Callable[[str], Any]
MultiKeyTransform = Callable[[Mapping[str, str]], Any]

_LEADING_INT = re.compile(r"\s*([+-]?\d+)")
_WEEKDAYS = "0123456"


def _to_float(value: str) -> float:
    """Parse like JavaScript ``parseFloat``; unparseable input yields NaN."""
    try:
        return float(value)
    except (TypeError, ValueError):
        return math.nan


def _to_int(value: str) -> int | None:
    match = _LEADING_INT.match(value or "")
    if match is None:
        return None
    return int(match.group(1))


def _clean(num: float) -> int | float:
    if num.is_integer():
        return int(num)
    return num


def default_number(value: str) -> int | float | None:
    """Fallback for fields without a transform: NaN becomes ``None``."""
    num = _to_float(value)
    if math.isnan(num):
        return None
    return _clean(num)


def number() -> Transform:
    def _apply(value: str) -> int | float:
        num = _to_float(value)
        return 0 if math.isnan(num) else _clean(num)

    return _apply


def divide(divisor: float) -> Transform:
    def _apply(value: str) -> float:
        num = _to_float(value)
        return 0 if math.isnan(num) else num / divisor

    return _apply


def multiply(multiplier: float) -> Transform:
    def _apply(value: str) -> int | float:
        num = _to_float(value)
        return 0 if math.isnan(num) else _clean(num * multiplier)

    return _apply


def bit_boolean(bit: int) -> Transform:
    def _apply(value: str) -> bool:
        num = _to_float(value)
        if math.isnan(num):
            return False
        return bool(int(num) & (1 << bit))

    return _apply


def boolean() -> Transform:
    return bit_boolean(0)


def equals_boolean(compare_value: str) -> Transform:
    return lambda value: value == compare_value


def not_equals_boolean(compare_value: str) -> Transform:
    return lambda value: value != compare_value


def temperature() -> Transform:
    """Reinterpret a uint8 reading as a signed int8 temperature."""

    def _apply(value: str) -> int | float:
        num = _to_float(value)
        if math.isnan(num):
            return 0
        if num < 0 or num > 255:
            return _clean(num)
        return _clean(num - 256 if num > 127 else num)

    return _apply


def time_string() -> Transform:
    """Normalize ``H:M`` into ``HH:MM``; anything else becomes ``00:00``."""

    def _apply(value: str) -> str:
        parts = value.split(":")
        if len(parts) != 2:
            return "00:00"
        return f"{parts[0].rjust(2, '0')}:{parts[1].rjust(2, '0')}"

    return _apply


def negate() -> Transform:
    def _apply(value: str) -> int:
        num = _to_int(value)
        return 0 if num is None else -num

    return _apply


def parse_int() -> Transform:
    def _apply(value: str) -> int:
        num = _to_int(value)
        return 0 if num is None else num

    return _apply


def identity() -> Transform:
    return lambda value: value


def map_value(mappings: Mapping[str, Any], default: Any = None) -> Transform:
    """Look the raw string up in *mappings*, falling back to *default*."""
    frozen = dict(mappings)
    return lambda value: frozen.get(value, default)


def round_value(decimals: int | None = None) -> Transform:
    def _apply(value: str) -> int | float:
        num = _to_float(value)
        if math.isnan(num):
            return 0
        if decimals is None:
            return math.floor(num + 0.5)
        factor = 10**decimals
        return math.floor(num * factor + 0.5) / factor

    return _apply


def chain(*transforms: Transform) -> Transform:
    """Apply *transforms* left to right, re-stringifying between steps."""

    def _apply(value: str) -> Any:
        result: Any = value
        for transform in transforms:
            result = transform(_stringify(result))
        return result

    return _apply


def _stringify(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def weekdays_from_bitmask(bitmask: int) -> str:
    return "".join(day for index, day in enumerate(_WEEKDAYS) if bitmask & (1 << index))


def weekdays_to_bitmask(weekdays: str) -> int:
    mask = 0
    for day in weekdays:
        mask |= 1 << int(day)
    return mask


def bitmask_to_weekdays() -> Transform:
    def _apply(value: str) -> str:
        return weekdays_from_bitmask(_to_int(value) or 0)

    return _apply


TimePeriodField = Literal["startTime", "endTime", "weekday", "power", "enabled"]

_TIME_PERIOD_DEFAULTS: dict[str, Any] = {
    "startTime": "00:00",
    "endTime": "00:00",
    "weekday": _WEEKDAYS,
    "power": 0,
    "enabled": False,
}


def time_period_field(field: TimePeriodField) -> Transform:
    """Extract one field of an ``H|M|H|M|mask|power|enabled`` period."""

    def _apply(value: str) -> Any:
        parts = value.split("|")
        if len(parts) < 7:
            return _TIME_PERIOD_DEFAULTS[field]
        if field == "startTime":
            return f"{_to_int(parts[0]) or 0}:{_to_int(parts[1]) or 0:02d}"
        if field == "endTime":
            return f"{_to_int(parts[2]) or 0}:{_to_int(parts[3]) or 0:02d}"
        if field == "weekday":
            return weekdays_from_bitmask(_to_int(parts[4]) or 0)
        if field == "power":
            return _to_int(parts[5]) or 0
        return parts[6] == "1"

    return _apply


def _valid_numbers(values: Mapping[str, str]) -> list[float]:
    return [num for num in (_to_float(v) for v in values.values()) if not math.isnan(num)]


def _scaled(result: float, scale: float | None) -> int | float:
    return _clean(result / scale) if scale else _clean(result)


def sum_of() -> MultiKeyTransform:
    return lambda values: _clean(float(sum(_valid_numbers(values))))


def min_of(scale: float | None = None) -> MultiKeyTransform:
    def _apply(values: Mapping[str, str]) -> int | float:
        valid = _valid_numbers(values)
        return _scaled(min(valid), scale) if valid else 0

    return _apply


def max_of(scale: float | None = None) -> MultiKeyTransform:
    def _apply(values: Mapping[str, str]) -> int | float:
        valid = _valid_numbers(values)
        return _scaled(max(valid), scale) if valid else 0

    return _apply


def diff_of(scale: float | None = None) -> MultiKeyTransform:
    def _apply(values: Mapping[str, str]) -> int | float:
        valid = _valid_numbers(values)
        return _scaled(max(valid) - min(valid), scale) if valid else 0

    return _apply


def average_of(scale: float | None = None, round_result: bool = False) -> MultiKeyTransform:
    def _apply(values: Mapping[str, str]) -> int | float:
        valid = _valid_numbers(values)
        if not valid:
            return 0
        result = sum(valid) / len(valid)
        if round_result:
            result = math.floor(result + 0.5)
        return _scaled(result, scale)

    return _apply
