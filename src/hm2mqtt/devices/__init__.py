"""Built-in device family schemas."""

from __future__ import annotations

from hm2mqtt.devices import b2500_v1, b2500_v2, ct002, jupiter, mi800, venus
from hm2mqtt.schema.registry import SchemaOptions, SchemaRegistry

B2500_V2_FAMILIES = ("HMA", "HMF", "HMK")
JUPITER_FAMILIES = ("HMN", "HMM", "JPLS")
HMJ_SURPLUS_MIN_VERSION = 108


def register_all(registry: SchemaRegistry, options: SchemaOptions) -> None:
    """Register every built-in family on *registry*."""
    registry.register("HMB", b2500_v1.build_schema(options))

    v2 = b2500_v2.build_schema(options)
    for family in B2500_V2_FAMILIES:
        registry.register(family, v2)
    registry.register("HMJ", b2500_v2.build_schema(options, min_surplus_version=HMJ_SURPLUS_MIN_VERSION))

    registry.register("HMG", venus.build_schema(options))

    jupiter_schema = jupiter.build_schema(options)
    for family in JUPITER_FAMILIES:
        registry.register(family, jupiter_schema)

    registry.register("HMI", mi800.build_schema(options))
    registry.register("HME", ct002.build_schema(options))


__all__ = ["register_all"]
