"""Pydantic models shared across hm2mqtt."""

from hm2mqtt.models.commands import CommandParams, SyncTimeParams, TransactionModeParams
from hm2mqtt.models.device import Device, StateChange, family_of

__all__ = [
    "CommandParams",
    "Device",
    "StateChange",
    "SyncTimeParams",
    "TransactionModeParams",
    "family_of",
]
