"""Home Assistant MQTT discovery documents for the bridged Mac.

One retained config document per entity under
``{discovery_prefix}/{component}/{node_id}/{object_id}/config``, all linked to
a single device entry for the machine.
"""

from __future__ import annotations

import re
import unicodedata
from typing import TYPE_CHECKING, Any

from mac2mqtt.const import MAC2MQTT_VERSION, ORIGIN_STRUCT
from mac2mqtt.exceptions import CapabilityError
from mac2mqtt.logging_abstraction import get_logger
from mac2mqtt.structs import DisplayLockAction, PlayPauseAction, SystemAction

if TYPE_CHECKING:
    from mac2mqtt.config import BridgeConfig
    from mac2mqtt.mqtt.connection import ConnectionManager
    from mac2mqtt.structs import DeviceCapability
    from mac2mqtt.topics import TopicNamespace

logger = get_logger(__name__)

template_tpc = "{0}/{1}/{2}/{3}/config"

# (object_id, name, status path, unit, device_class, icon)
_SENSORS: tuple[tuple[str, str, str, str | None, str | None, str | None], ...] = (
    ("battery", "Battery", "battery", "%", "battery", None),
    ("cpu", "CPU Usage", "cpu", "%", None, "mdi:cpu-64-bit"),
    ("cpu_free", "CPU Free", "cpu/free", "%", None, "mdi:cpu-64-bit"),
    ("memory_total", "Memory Total", "memory/total", "GiB", None, "mdi:memory"),
    ("memory_used", "Memory Used", "memory/used", "GiB", None, "mdi:memory"),
    ("memory_free", "Memory Free", "memory/free", "GiB", None, "mdi:memory"),
    ("uptime", "Uptime", "uptime/human", None, None, "mdi:timer-outline"),
    ("public_ip", "Public IP", "publicip", None, None, "mdi:ip-network"),
    ("disk_used", "Disk Used", "disk/percent_used", "%", None, "mdi:harddisk"),
    ("disk_free", "Disk Free", "disk/percent_free", "%", None, "mdi:harddisk"),
    ("disk_bytes_free", "Disk Bytes Free", "disk/bytes_free", "B", "data_size", None),
    ("idle_seconds", "Idle Time", "idle_seconds", "s", "duration", None),
    ("media_state", "Media State", "media/state", None, None, "mdi:play-pause"),
)


def slugify(text: str) -> str:
    """``"Jane's MacBook-Pro"`` -> ``"janes_macbook_pro"``"""
    text = unicodedata.normalize("NFKD", text)
    text = text.encode("ascii", "ignore").decode("ascii")
    text = text.lower()
    text = re.sub(r"[^\w\s-]", "", text)
    text = re.sub(r"[-\s]+", "_", text)
    return text.strip("_")


class DiscoveryHelper:
    """Builds and publishes the discovery documents on every connect."""

    lp: str = "discovery:"

    def __init__(
        self,
        config: BridgeConfig,
        connection: ConnectionManager,
        topics: TopicNamespace,
        capability: DeviceCapability,
    ) -> None:
        self.config: BridgeConfig = config
        self.connection: ConnectionManager = connection
        self.topics: TopicNamespace = topics
        self.capability: DeviceCapability = capability
        self.node_id: str = slugify(topics.hostname) or "mac"

    @property
    def device_struct(self) -> dict[str, Any]:
        return {
            "identifiers": [f"mac2mqtt_{self.node_id}"],
            "name": self.topics.hostname,
            "manufacturer": "Apple",
            "model": "Mac",
            "sw_version": MAC2MQTT_VERSION,
        }

    def _entity(self, object_id: str, name: str, **fields: Any) -> dict[str, Any]:
        return {
            "name": name,
            "object_id": f"{self.node_id}_{object_id}",
            "unique_id": f"mac2mqtt_{self.node_id}_{object_id}",
            "availability_topic": self.topics.alive,
            "payload_available": "online",
            "payload_not_available": "offline",
            "origin": ORIGIN_STRUCT,
            "device": self.device_struct,
            **{k: v for k, v in fields.items() if v is not None},
        }

    def config_topic(self, component: str, object_id: str) -> str:
        return template_tpc.format(self.config.discovery_prefix, component, self.node_id, object_id)

    async def build_documents(self) -> list[tuple[str, dict[str, Any]]]:
        """All (config topic, document) pairs for this machine."""
        t = self.topics
        docs: list[tuple[str, dict[str, Any]]] = []

        def add(component: str, object_id: str, name: str, **fields: Any) -> None:
            docs.append((self.config_topic(component, object_id), self._entity(object_id, name, **fields)))

        for object_id, name, path in (("volume", "Volume", "volume"), ("input_volume", "Input Volume", "input_volume")):
            add(
                "number",
                object_id,
                name,
                state_topic=t.status(path),
                command_topic=t.command(path),
                min=0,
                max=100,
                step=1,
                unit_of_measurement="%",
                icon="mdi:volume-high" if object_id == "volume" else "mdi:microphone",
            )
        for object_id, name, path, icon in (
            ("mute", "Mute", "mute", "mdi:volume-off"),
            ("keepawake", "Keep Awake", "keepawake", "mdi:coffee"),
        ):
            add(
                "switch",
                object_id,
                name,
                state_topic=t.status(path),
                command_topic=t.command(path),
                payload_on="true",
                payload_off="false",
                state_on="true",
                state_off="false",
                icon=icon,
            )
        for object_id, name, path, unit, device_class, icon in _SENSORS:
            add(
                "sensor",
                object_id,
                name,
                state_topic=t.status(path),
                unit_of_measurement=unit,
                device_class=device_class,
                icon=icon,
            )
        add(
            "sensor",
            "now_playing",
            "Now Playing",
            state_topic=t.status("media/now_playing"),
            value_template="{{ value_json.title }}",
            json_attributes_topic=t.status("media/now_playing"),
            icon="mdi:music",
        )
        for object_id, name, path, payload_on in (
            ("microphone", "Microphone In Use", "media/microphone", "true"),
            ("camera", "Camera In Use", "media/camera", "true"),
            ("activity", "User Active", "activity", "active"),
        ):
            add(
                "binary_sensor",
                object_id,
                name,
                state_topic=t.status(path),
                payload_on=payload_on,
                payload_off="false" if payload_on == "true" else "inactive",
            )
        for action in SystemAction:
            add(
                "button",
                f"system_{action}",
                str(action).capitalize(),
                command_topic=t.command("system"),
                payload_press=str(action),
            )
        for action in DisplayLockAction:
            add(
                "button",
                str(action),
                "Lock Display" if action is DisplayLockAction.DISPLAYLOCK else "Lock Display and Sleep",
                command_topic=t.command("displaylock"),
                payload_press=str(action),
                icon="mdi:monitor-lock",
            )
        add(
            "button",
            "playpause",
            "Play/Pause",
            command_topic=t.command("media/playpause"),
            payload_press=str(PlayPauseAction.TOGGLE),
            icon="mdi:play-pause",
        )

        try:
            displays = await self.capability.get_display_brightness()
        except CapabilityError as e:
            logger.debug("%s no display brightness entities: %s", self.lp, e)
            displays = {}
        for display_id in displays:
            path = f"display/{display_id}/brightness"
            add(
                "number",
                f"display_{display_id}_brightness",
                f"Display {display_id} Brightness",
                state_topic=t.status(path),
                command_topic=t.command(path),
                min=0,
                max=100,
                step=1,
                unit_of_measurement="%",
                icon="mdi:brightness-6",
            )
        return docs

    async def publish_discovery(self) -> bool:
        lp = f"{self.lp}publish_discovery:"
        if not self.config.discovery_enabled:
            logger.debug("%s discovery disabled", lp)
            return False
        docs = await self.build_documents()
        failed = 0
        for topic, doc in docs:
            if not await self.connection.publish_json(topic, doc, retain=True):
                failed += 1
        if failed:
            logger.error("%s Failed to publish %s of %s entity configs", lp, failed, len(docs))
            return False
        logger.info("%s Published %s entity configs", lp, len(docs), extra={"node_id": self.node_id})
        return True
