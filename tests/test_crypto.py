from __future__ import annotations

import pytest

from hm2mqtt._crypto import decode_topic_id, encode_topic_id
from hm2mqtt.exceptions import Hm2MqttCryptoError


@pytest.mark.parametrize(
    ("device_id", "topic_id"),
    [
        ("badbeefbadbe", "e6a1f1765cdd26ff05e2afcc5df17a9b"),
        ("feeba7123456", "757a6deefc6ab2b3764d61e64fb2a931"),
    ],
)
def test_encode_topic_id_known_vectors(device_id: str, topic_id: str) -> None:
    assert encode_topic_id(device_id) == topic_id
    assert decode_topic_id(topic_id) == device_id


def test_decode_accepts_uppercase_and_whitespace() -> None:
    assert decode_topic_id("  E6A1F1765CDD26FF05E2AFCC5DF17A9B\n") == "badbeefbadbe"


@pytest.mark.parametrize("bad", ["", "abc", "zz" * 16, "00" * 15])
def test_decode_rejects_invalid_input(bad: str) -> None:
    with pytest.raises(Hm2MqttCryptoError):
        decode_topic_id(bad)
