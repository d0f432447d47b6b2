"""Tests for the pydantic device and command payload models."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from hm2mqtt.models.commands import SyncTimeParams, TransactionModeParams
from hm2mqtt.models.device import Device, StateChange, family_of

# ------------------------------------------------------------------
# Device
# ------------------------------------------------------------------


class TestDevice:
    @pytest.mark.parametrize(
        ("device_type", "family"),
        [("HMA-1", "HMA"), ("JPLS-8", "JPLS"), ("HMA-12", "HMA"), ("HMA", None), ("HMA-x", None)],
    )
    def test_family(self, device_type: str, family: str | None) -> None:
        assert family_of(device_type) == family

    def test_fields_are_stripped_and_required(self) -> None:
        device = Device(device_type=" HMA-1 ", device_id=" abc\n")
        assert device.key == "HMA-1:abc"
        assert str(device) == "HMA-1:abc"
        with pytest.raises(ValidationError):
            Device(device_type="HMA-1", device_id="  ")

    def test_is_frozen_and_hashable(self) -> None:
        device = Device(device_type="HMA-1", device_id="abc")
        with pytest.raises(ValidationError):
            device.device_id = "other"  # type: ignore[misc]
        assert {device, Device(device_type="HMA-1", device_id="abc")} == {device}


def test_state_change_defaults_observed_at() -> None:
    change = StateChange(device=Device(device_type="HMA-1", device_id="a"), channel="data", state={"x": 1})
    assert change.observed_at.tzinfo is not None
    assert change.state == {"x": 1}


# ------------------------------------------------------------------
# Command payloads
# ------------------------------------------------------------------


class TestSyncTimeParams:
    def test_wire_order_follows_declaration(self) -> None:
        params = SyncTimeParams.model_validate({"ss": 56, "mn": 56, "hh": 23, "rr": 2, "mm": 1, "yy": 123, "wy": 480})
        assert list(params.to_wire_params()) == ["wy", "yy", "mm", "rr", "hh", "mn", "ss"]

    def test_missing_field_is_rejected(self) -> None:
        with pytest.raises(ValidationError):
            SyncTimeParams.model_validate({"wy": 480})

    def test_from_datetime_uses_utc_fields_and_offset(self) -> None:
        local = datetime(2024, 3, 5, 9, 30, 15, tzinfo=timezone(timedelta(hours=8)))
        params = SyncTimeParams.from_datetime(local)
        assert params.to_wire_params() == {"wy": 480, "yy": 124, "mm": 2, "rr": 5, "hh": 1, "mn": 30, "ss": 15}


class TestTransactionModeParams:
    def test_accepts_alias_and_stringifies(self) -> None:
        params = TransactionModeParams.model_validate({"id": 1, "in": 2, "on": "3"})
        assert params.to_wire_params() == {"id": "1", "in": "2", "on": "3"}

    @pytest.mark.parametrize("payload", [{"id": "1"}, {"id": "", "in": "2", "on": "3"}, {"id": 0, "in": 1, "on": 1}])
    def test_rejects_incomplete(self, payload: dict) -> None:
        with pytest.raises(ValidationError):
            TransactionModeParams.model_validate(payload)
