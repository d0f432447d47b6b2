"""Topic layout for each configured device."""

from __future__ import annotations

import dataclasses

from hm2mqtt._crypto import encode_topic_id
from hm2mqtt.models.device import Device

LEGACY_NAMESPACE = "hame_energy"
CURRENT_NAMESPACE = "marstek_energy"


@dataclasses.dataclass(frozen=True)
class DeviceTopics:
    """Every topic one device is reachable on.

    Inbound telegrams arrive on both ``device_topic_*`` topics and outbound
    commands are sent on both ``device_control_topic_*`` topics, one per
    addressing epoch. The remaining topics face the operator.
    """

    device_topic_legacy: str
    device_topic_current: str
    device_control_topic_legacy: str
    device_control_topic_current: str
    publish_topic: str
    control_subscription_topic: str
    availability_topic: str

    @property
    def device_topics(self) -> tuple[str, str]:
        return (self.device_topic_legacy, self.device_topic_current)

    @property
    def device_control_topics(self) -> tuple[str, str]:
        return (self.device_control_topic_legacy, self.device_control_topic_current)

    def state_topic(self, channel: str) -> str:
        return f"{self.publish_topic}/{channel}"

    def command_topic(self, command: str) -> str:
        return f"{self.control_subscription_topic}/{command}"


def current_epoch_id(device_id: str, *, obfuscate: bool) -> str:
    return encode_topic_id(device_id) if obfuscate else device_id


def build_device_topics(device: Device, *, topic_prefix: str, obfuscate: bool) -> DeviceTopics:
    """Compute the topics of *device* under *topic_prefix*."""
    dtype = device.device_type
    did = device.device_id
    cid = current_epoch_id(did, obfuscate=obfuscate)
    prefix = topic_prefix.rstrip("/")
    return DeviceTopics(
        device_topic_legacy=f"{LEGACY_NAMESPACE}/{dtype}/device/{did}/ctrl",
        device_topic_current=f"{CURRENT_NAMESPACE}/{dtype}/device/{cid}/ctrl",
        device_control_topic_legacy=f"{LEGACY_NAMESPACE}/{dtype}/App/{did}/ctrl",
        device_control_topic_current=f"{CURRENT_NAMESPACE}/{dtype}/App/{cid}/ctrl",
        publish_topic=f"{prefix}/{dtype}/device/{did}",
        control_subscription_topic=f"{prefix}/{dtype}/control/{did}",
        availability_topic=f"{prefix}/{dtype}/availability/{did}",
    )


def bridge_availability_topic(topic_prefix: str) -> str:
    return f"{topic_prefix.rstrip('/')}/availability"
