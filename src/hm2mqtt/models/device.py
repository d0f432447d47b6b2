"""Device identity and state-change event models."""

from __future__ import annotations

import re
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

_FAMILY_PATTERN = re.compile(r"(.*)-\d+")


def family_of(device_type: str) -> str | None:
    """Return the schema family for a device type such as ``HMA-1``.

    ``None`` is returned when *device_type* carries no ``-<digits>`` variant.
    """
    match = _FAMILY_PATTERN.fullmatch(device_type)
    if match is None:
        return None
    return match.group(1)


class Device(BaseModel):
    """A configured physical device."""

    model_config = ConfigDict(frozen=True)

    device_type: str = Field(..., description="Type with variant suffix, e.g. HMA-1")
    device_id: str = Field(..., description="Raw identifier (usually the MAC)")

    @field_validator("device_type", "device_id")
    @classmethod
    def _strip(cls, value: str) -> str:
        text = value.strip()
        if not text:
            raise ValueError("must be non-empty")
        return text

    @property
    def family(self) -> str | None:
        return family_of(self.device_type)

    @property
    def key(self) -> str:
        return f"{self.device_type}:{self.device_id}"

    def __str__(self) -> str:
        return self.key


class StateChange(BaseModel):
    """A channel state that was just stored for a device."""

    model_config = ConfigDict(frozen=True)

    device: Device
    channel: str
    state: dict[str, Any] = Field(default_factory=dict)
    observed_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
