"""Declarative device schemas."""

from hm2mqtt.schema.builder import ChannelBuilder, SchemaBuilder
from hm2mqtt.schema.definitions import (
    AdvertisementDefinition,
    AdvertiseArgs,
    CommandContext,
    CommandDefinition,
    DeviceSchema,
    FieldDefinition,
    MessageChannel,
)
from hm2mqtt.schema.registry import SchemaOptions, SchemaRegistry, build_default_registry

__all__ = [
    "AdvertiseArgs",
    "AdvertisementDefinition",
    "ChannelBuilder",
    "CommandContext",
    "CommandDefinition",
    "DeviceSchema",
    "FieldDefinition",
    "MessageChannel",
    "SchemaBuilder",
    "SchemaOptions",
    "SchemaRegistry",
    "build_default_registry",
]
