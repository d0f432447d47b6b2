#!/usr/bin/env python3
"""Inspect device topic identifiers.

Newer firmware publishes on ``marstek_energy/...`` topics whose device id is
AES-encrypted. This helper converts between raw and encrypted ids and prints
the full topic layout of a device.

Usage
-----
::

    python scripts/topic_id.py encode 0123456789ab
    python scripts/topic_id.py decode 757a6deefc6ab2b3764d61e64fb2a931
    python scripts/topic_id.py topics HMA-1:0123456789ab --prefix hm2mqtt
"""

from __future__ import annotations

import argparse
import dataclasses
import logging
import sys
from pathlib import Path

# Allow running from repo root without installing the package.
_repo = Path(__file__).resolve().parent.parent
_src = _repo / "src"
if _src.is_dir():
    sys.path.insert(0, str(_src))

from hm2mqtt._crypto import decode_topic_id, encode_topic_id  # noqa: E402
from hm2mqtt.config import DEFAULT_TOPIC_PREFIX  # noqa: E402
from hm2mqtt.exceptions import Hm2MqttError  # noqa: E402
from hm2mqtt.models.device import Device  # noqa: E402
from hm2mqtt.schema.registry import build_default_registry  # noqa: E402
from hm2mqtt.state.addressing import build_device_topics  # noqa: E402


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Encode, decode and list device topics")
    sub = parser.add_subparsers(dest="action", required=True)

    enc = sub.add_parser("encode", help="Encrypt a raw device id")
    enc.add_argument("device_id")

    dec = sub.add_parser("decode", help="Decrypt an encrypted topic id")
    dec.add_argument("topic_id")

    topics = sub.add_parser("topics", help="Print every topic of <type>:<id>")
    topics.add_argument("device", help="Device as <type>:<id>, e.g. HMA-1:0123456789ab")
    topics.add_argument("--prefix", default=DEFAULT_TOPIC_PREFIX, help="Operator topic prefix")

    parser.add_argument("--verbose", "-v", action="store_true")
    return parser.parse_args()


def _print_topics(entry: str, prefix: str) -> int:
    device_type, _, device_id = entry.partition(":")
    device = Device(device_type=device_type, device_id=device_id)
    schema = build_default_registry().require(device.device_type)
    topics = build_device_topics(device, topic_prefix=prefix, obfuscate=schema.obfuscate_current_epoch)
    for field in dataclasses.fields(topics):
        print(f"{field.name:30} {getattr(topics, field.name)}")
    return 0


def main() -> int:
    args = _parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    try:
        if args.action == "encode":
            print(encode_topic_id(args.device_id))
        elif args.action == "decode":
            print(decode_topic_id(args.topic_id))
        else:
            return _print_topics(args.device, args.prefix)
    except (Hm2MqttError, ValueError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
