"""Typed models for aggregate (JSON) control payloads.

Most commands accept a single literal or number. A few accept a compact
JSON object; these models validate those objects and keep the field
order that the device expects on the wire.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class CommandParams(BaseModel):
    """Base class for JSON command payloads."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    def to_wire_params(self) -> dict[str, Any]:
        """Return the parameters in declaration order."""
        return self.model_dump()


class SyncTimeParams(CommandParams):
    """B2500 time synchronisation (``cd=8``).

    ``yy`` counts years since 1900 and ``mm`` is zero based, mirroring
    the C ``struct tm`` layout the firmware uses. Every field is required.
    """

    wy: int
    yy: int
    mm: int
    rr: int
    hh: int
    mn: int
    ss: int

    @classmethod
    def from_datetime(cls, now: datetime) -> SyncTimeParams:
        """Build params from an aware datetime (offset in minutes as ``wy``)."""
        offset = now.utcoffset()
        minutes = int(offset.total_seconds() // 60) if offset is not None else 0
        utc = now if offset is None else now - offset
        return cls.model_construct(
            wy=minutes,
            yy=utc.year - 1900,
            mm=utc.month - 1,
            rr=utc.day,
            hh=utc.hour,
            mn=utc.minute,
            ss=utc.second,
        )


class TransactionModeParams(CommandParams):
    """Venus trading-mode settings (``cd=3,md=2``)."""

    id: str = Field(..., min_length=1)
    in_: str = Field(..., alias="in", min_length=1)
    on: str = Field(..., min_length=1)

    @field_validator("id", "in_", "on", mode="before")
    @classmethod
    def _stringify(cls, value: Any) -> str:
        if not value:
            raise ValueError("must be set")
        return str(value)

    def to_wire_params(self) -> dict[str, Any]:
        return {"id": self.id, "in": self.in_, "on": self.on}
