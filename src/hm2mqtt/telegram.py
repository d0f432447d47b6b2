"""Codec for the comma-delimited ``key=value`` device telegram."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any


def parse_telegram(payload: str | bytes) -> dict[str, str]:
    """Split a telegram into its raw key/value pairs.

    Fragments without ``=`` are ignored. Only the first ``=`` separates key
    and value, so values may themselves contain ``=``. When a key repeats,
    the last occurrence wins.
    """
    if isinstance(payload, bytes):
        payload = payload.decode("utf-8", errors="replace")
    values: dict[str, str] = {}
    for fragment in payload.split(","):
        key, sep, value = fragment.partition("=")
        key = key.strip()
        if not sep or not key:
            continue
        values[key] = value.strip()
    return values


def _encode_value(value: Any) -> str:
    if isinstance(value, bool):
        return "1" if value else "0"
    return str(value)


def encode_command(code: int, params: Mapping[str, Any] | None = None) -> str:
    """Build ``cd=<code>[,k=v]*`` keeping the key order of *params*."""
    parts = [f"cd={int(code)}"]
    if params:
        parts.extend(f"{key}={_encode_value(value)}" for key, value in params.items())
    return ",".join(parts)
