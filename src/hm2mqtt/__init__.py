"""hm2mqtt - Bridge Hame/Marstek energy storage devices to MQTT."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("hm2mqtt")
except PackageNotFoundError:
    __version__ = "0+local"
from hm2mqtt.bridge import Bridge, run_bridge
from hm2mqtt.config import BridgeConfig
from hm2mqtt.dispatcher import CommandDispatcher
from hm2mqtt.exceptions import (
    CommandValidationError,
    DuplicateSchemaError,
    Hm2MqttConfigError,
    Hm2MqttCryptoError,
    Hm2MqttError,
    Hm2MqttTransportError,
    SchemaNotFoundError,
)
from hm2mqtt.ingest import TelegramRouter
from hm2mqtt.models import Device, StateChange
from hm2mqtt.scheduler import PollScheduler
from hm2mqtt.schema import SchemaOptions, SchemaRegistry, build_default_registry
from hm2mqtt.state.store import DeviceStateStore

__all__ = [
    "__version__",
    "Bridge",
    "BridgeConfig",
    "CommandDispatcher",
    "CommandValidationError",
    "Device",
    "DeviceStateStore",
    "DuplicateSchemaError",
    "Hm2MqttConfigError",
    "Hm2MqttCryptoError",
    "Hm2MqttError",
    "Hm2MqttTransportError",
    "PollScheduler",
    "SchemaNotFoundError",
    "SchemaOptions",
    "SchemaRegistry",
    "StateChange",
    "TelegramRouter",
    "build_default_registry",
    "run_bridge",
]
