"""Process-wide lookup of device schemas by family."""

from __future__ import annotations

import dataclasses
import logging

from hm2mqtt.exceptions import DuplicateSchemaError, Hm2MqttError, SchemaNotFoundError
from hm2mqtt.models.device import family_of
from hm2mqtt.schema.definitions import DeviceSchema

_logger = logging.getLogger(__name__)


@dataclasses.dataclass(frozen=True)
class SchemaOptions:
    """Runtime knobs that shape the built-in schemas.

    Parameters
    ----------
    polling_interval : float
        Poll interval (seconds) of every main data channel.
    poll_extra_battery_data : bool
        Enable the B2500 ``cd=16`` extra battery channel.
    """

    polling_interval: float = 60.0
    poll_extra_battery_data: bool = False


class SchemaRegistry:
    """Family → schema map, populated once and read-only afterwards.

    Registering a family twice raises :class:`DuplicateSchemaError`.
    Call :meth:`freeze` once registration is complete.
    """

    def __init__(self) -> None:
        self._schemas: dict[str, DeviceSchema] = {}
        self._frozen = False

    def register(self, family: str, schema: DeviceSchema) -> None:
        if self._frozen:
            raise Hm2MqttError("Schema registry is frozen")
        if family in self._schemas:
            raise DuplicateSchemaError(f"Device family {family!r} is already registered")
        self._schemas[family] = schema
        _logger.debug("Registered schema family=%s channels=%d", family, len(schema.channels))

    def freeze(self) -> SchemaRegistry:
        self._frozen = True
        return self

    def resolve(self, device_type: str) -> DeviceSchema | None:
        """Schema for a ``<Family>-<variant>`` type, or ``None``."""
        family = family_of(device_type)
        if family is None:
            return None
        return self._schemas.get(family)

    def require(self, device_type: str) -> DeviceSchema:
        schema = self.resolve(device_type)
        if schema is None:
            raise SchemaNotFoundError(
                f"No schema registered for device type {device_type!r}",
                device_type=device_type,
            )
        return schema

    def families(self) -> list[str]:
        return sorted(self._schemas)

    def __contains__(self, family: object) -> bool:
        return family in self._schemas


def build_default_registry(options: SchemaOptions | None = None) -> SchemaRegistry:
    """Registry with every built-in device family, frozen."""
    from hm2mqtt.devices import register_all

    registry = SchemaRegistry()
    register_all(registry, options or SchemaOptions())
    return registry.freeze()
