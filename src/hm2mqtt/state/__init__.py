"""Device runtime state, addressing and path accessors."""

from hm2mqtt.state.addressing import DeviceTopics, bridge_availability_topic, build_device_topics
from hm2mqtt.state.paths import StatePath, get_path, set_path

__all__ = [
    "DeviceTopics",
    "StatePath",
    "bridge_availability_topic",
    "build_device_topics",
    "get_path",
    "set_path",
]
