"""Custom exception hierarchy for hm2mqtt."""

from __future__ import annotations


class Hm2MqttError(Exception):
    """Base exception for all hm2mqtt errors."""


class Hm2MqttConfigError(Hm2MqttError):
    """Invalid or missing configuration."""


class Hm2MqttCryptoError(Hm2MqttError):
    """Topic identifier encryption or decryption failure."""


class SchemaNotFoundError(Hm2MqttError):
    """No device schema is registered for a device type."""

    def __init__(self, message: str, *, device_type: str = "") -> None:
        self.device_type = device_type
        super().__init__(message)


class DuplicateSchemaError(Hm2MqttError):
    """A device family was registered twice."""


class CommandValidationError(Hm2MqttError):
    """A control payload did not match any accepted format.

    Raised from inside command handlers; the dispatcher logs it and
    drops the command without publishing or patching state.
    """

    def __init__(self, message: str, *, command: str = "", payload: str = "") -> None:
        self.command = command
        self.payload = payload
        super().__init__(message)


class Hm2MqttTransportError(Hm2MqttError):
    """MQTT-level failure (publish or subscribe rejected, not connected)."""

    def __init__(
        self,
        message: str,
        *,
        topic: str = "",
        reason_code: int | None = None,
    ) -> None:
        self.topic = topic
        self.reason_code = reason_code
        super().__init__(message)
