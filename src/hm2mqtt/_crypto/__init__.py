"""Cryptographic helpers for topic addressing."""

from __future__ import annotations

from hm2mqtt._crypto.aes import decode_topic_id, encode_topic_id

__all__ = [
    "decode_topic_id",
    "encode_topic_id",
]
