from __future__ import annotations

from hm2mqtt.devices.b2500_base import CommandCode
from hm2mqtt.telegram import encode_command, parse_telegram


def test_parse_splits_pairs_and_keeps_raw_strings() -> None:
    assert parse_telegram("pe=14,kn=313,e1=0:0") == {"pe": "14", "kn": "313", "e1": "0:0"}


def test_parse_ignores_fragments_without_separator() -> None:
    assert parse_telegram("invalid,pe=5,,=7") == {"pe": "5"}
    assert parse_telegram("garbage") == {}


def test_parse_splits_on_first_equals_only() -> None:
    assert parse_telegram("ssid=a=b,pe=1") == {"ssid": "a=b", "pe": "1"}


def test_parse_last_duplicate_wins_and_accepts_bytes() -> None:
    assert parse_telegram(b"pe=1,pe=2") == {"pe": "2"}


def test_encode_keeps_parameter_order() -> None:
    assert encode_command(7, {"md": 0, "a1": 1, "b1": "08:00"}) == "cd=7,md=0,a1=1,b1=08:00"


def test_encode_accepts_enum_codes_and_booleans() -> None:
    assert encode_command(CommandCode.SOFTWARE_RESTART) == "cd=10"
    assert encode_command(CommandCode.DISCHARGE_DEPTH, {"md": True}) == "cd=5,md=1"
