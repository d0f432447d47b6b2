from __future__ import annotations

import pytest

from hm2mqtt.state.paths import as_path, format_path, get_path, has_path, set_path


def test_set_path_creates_lists_for_int_keys() -> None:
    state: dict = {}
    set_path(state, ("timePeriods", 1, "enabled"), True)
    assert state == {"timePeriods": [None, {"enabled": True}]}


def test_get_path_returns_default_for_missing_steps() -> None:
    state = {"a": {"b": [1, 2]}}
    assert get_path(state, ("a", "b", 1)) == 2
    assert get_path(state, ("a", "b", 5), "x") == "x"
    assert get_path(state, ("a", "c")) is None
    assert has_path(state, ("a", "b"))
    assert not has_path(state, ("z",))


def test_set_path_rejects_empty_path() -> None:
    with pytest.raises(ValueError):
        set_path({}, (), 1)


def test_as_path_and_format_path() -> None:
    assert as_path("deviceInfo.deviceVersion") == ("deviceInfo", "deviceVersion")
    assert format_path(("timePeriods", 0, "enabled")) == "timePeriods[0].enabled"
