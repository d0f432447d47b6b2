"""Typed accessors for nested state trees."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

PathKey = str | int
StatePath = tuple[PathKey, ...]

_MISSING = object()


def as_path(path: Sequence[PathKey] | str) -> StatePath:
    """Normalize ``"a.b"`` or a sequence into a :data:`StatePath`."""
    if isinstance(path, str):
        return tuple(path.split("."))
    return tuple(path)


def get_path(state: Any, path: Sequence[PathKey], default: Any = None) -> Any:
    """Read the value at *path*, returning *default* when any step is missing."""
    current = state
    for key in path:
        if isinstance(key, int):
            if not isinstance(current, list) or not -len(current) <= key < len(current):
                return default
            current = current[key]
        else:
            if not isinstance(current, dict) or key not in current:
                return default
            current = current[key]
    return current


def has_path(state: Any, path: Sequence[PathKey]) -> bool:
    return get_path(state, path, _MISSING) is not _MISSING


def _set_item(container: dict[str, Any] | list[Any], key: PathKey, value: Any) -> None:
    if isinstance(container, list):
        if not isinstance(key, int):
            raise TypeError(f"List step requires an int key, got {key!r}")
        while len(container) <= key:
            container.append(None)
        container[key] = value
    else:
        container[key] = value  # type: ignore[index]


def _get_item(container: dict[str, Any] | list[Any], key: PathKey) -> Any:
    if isinstance(container, list):
        return container[key] if isinstance(key, int) and 0 <= key < len(container) else None
    return container.get(key)  # type: ignore[call-overload]


def set_path(state: dict[str, Any], path: Sequence[PathKey], value: Any) -> None:
    """Write *value* at *path*, creating missing containers in place.

    A missing intermediate becomes a list when the next key is an ``int``
    and a dict otherwise.
    """
    if not path:
        raise ValueError("Cannot set an empty path")
    current: Any = state
    for key, next_key in zip(path, path[1:]):
        child = _get_item(current, key)
        if not isinstance(child, dict | list):
            child = [] if isinstance(next_key, int) else {}
            _set_item(current, key, child)
        current = child
    _set_item(current, path[-1], value)


def format_path(path: Sequence[PathKey]) -> str:
    """Render a path for logs and identifiers, e.g. ``timePeriods[0].enabled``."""
    text = ""
    for key in path:
        if isinstance(key, int):
            text += f"[{key}]"
        else:
            text += f".{key}" if text else key
    return text
