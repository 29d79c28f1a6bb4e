"""Status publishing.

One coroutine per status group: read the value from the device capability
or telemetry source, format it as the wire payload, publish it. Reads that
come back ``None`` (host cannot answer) skip the publish. Read failures
propagate to the caller, which logs and moves on.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from typing import TYPE_CHECKING

from mac2mqtt.const import ACTIVITY_ACTIVE_MSG, ACTIVITY_INACTIVE_MSG
from mac2mqtt.instrumentation import timed_async
from mac2mqtt.logging_abstraction import get_logger
from mac2mqtt.structs import ActivityState, CpuCounters, CpuUsage, MediaState
from mac2mqtt.utils import bool_payload, bytes_to_gib, format_uptime

if TYPE_CHECKING:
    from mac2mqtt.mqtt.connection import ConnectionManager
    from mac2mqtt.structs import DeviceCapability, TelemetrySource
    from mac2mqtt.topics import TopicNamespace

logger = get_logger(__name__)


def cpu_usage(previous: CpuCounters, current: CpuCounters) -> CpuUsage:
    """Used/free percent between two cumulative counter samples.

    A zero (or negative, after a counter reset) total delta reports 0% used.
    """
    total_delta = current.total - previous.total
    if total_delta <= 0:
        return CpuUsage(used_percent=0.0, free_percent=100.0)
    idle_delta = current.idle - previous.idle
    used = 100.0 * (1.0 - idle_delta / total_delta)
    used = min(100.0, max(0.0, used))
    return CpuUsage(used_percent=used, free_percent=100.0 - used)


class CpuSampler:
    """Keeps the previous counter sample so each read yields usage since the last one."""

    def __init__(self, read_counters: Callable[[], CpuCounters]) -> None:
        self._read_counters: Callable[[], CpuCounters] = read_counters
        self._previous: CpuCounters | None = None
        self._lock: threading.Lock = threading.Lock()

    def sample(self) -> CpuUsage:
        current = self._read_counters()
        with self._lock:
            previous = self._previous if self._previous is not None else CpuCounters()
            self._previous = current
        return cpu_usage(previous, current)


class StateUpdateHelper:
    """Publishes every status topic of the bridge."""

    def __init__(
        self,
        connection: ConnectionManager,
        topics: TopicNamespace,
        capability: DeviceCapability,
        telemetry: TelemetrySource,
    ) -> None:
        self.connection: ConnectionManager = connection
        self.topics: TopicNamespace = topics
        self.capability: DeviceCapability = capability
        self.telemetry: TelemetrySource = telemetry
        self.cpu_sampler: CpuSampler = CpuSampler(telemetry.cpu_counters)
        self.lp: str = "state:"

    async def _publish(self, path: str, payload: bytes | str, retain: bool = False) -> bool:
        return await self.connection.publish(self.topics.status(path), payload, retain=retain)

    async def _publish_many(self, values: dict[str, str]) -> bool:
        results = [await self._publish(path, value) for path, value in values.items()]
        return all(results)

    # -- audio ---------------------------------------------------------------

    async def pub_volume(self) -> bool:
        volume = await self.capability.get_volume()
        if volume is None:
            logger.debug("%s volume unavailable, skipping publish", self.lp)
            return False
        return await self._publish("volume", str(volume))

    async def pub_input_volume(self) -> bool:
        volume = await self.capability.get_input_volume()
        if volume is None:
            return False
        return await self._publish("input_volume", str(volume))

    async def pub_mute(self) -> bool:
        muted = await self.capability.get_mute()
        if muted is None:
            return False
        return await self._publish("mute", bool_payload(muted))

    # -- system --------------------------------------------------------------

    async def pub_battery(self) -> bool:
        percent = await self.telemetry.battery_percent()
        if percent is None:
            return False
        return await self._publish("battery", str(percent))

    def sample_cpu(self) -> CpuUsage:
        return self.cpu_sampler.sample()

    async def pub_cpu(self, usage: CpuUsage | None = None) -> bool:
        usage = usage or self.sample_cpu()
        return await self._publish_many(
            {
                "cpu": f"{usage.used_percent:.2f}",
                "cpu/free": f"{usage.free_percent:.2f}",
            },
        )

    async def pub_memory(self) -> bool:
        mem = self.telemetry.memory()
        return await self._publish_many(
            {
                "memory/total": bytes_to_gib(mem.total_bytes),
                "memory/used": bytes_to_gib(mem.used_bytes),
                "memory/free": bytes_to_gib(mem.free_bytes),
            },
        )

    async def pub_uptime(self) -> bool:
        human, ms = format_uptime(self.telemetry.uptime_seconds())
        return await self._publish_many({"uptime/human": human, "uptime/ms": ms})

    async def pub_disk(self) -> bool:
        disk = self.telemetry.disk_usage("/")
        return await self._publish_many(
            {
                "disk/percent_used": f"{disk.percent_used:.2f}",
                "disk/percent_free": f"{disk.percent_free:.2f}",
                "disk/bytes_used": str(disk.bytes_used),
                "disk/bytes_free": str(disk.bytes_free),
            },
        )

    async def pub_public_ip(self) -> bool:
        ip = await self.telemetry.public_ip()
        return await self._publish("publicip", ip or "unknown")

    async def pub_media_devices(self) -> bool:
        devices = await self.telemetry.media_devices()
        return await self._publish_many(
            {
                "media/microphone": bool_payload(devices.microphone).decode(),
                "media/camera": bool_payload(devices.camera).decode(),
            },
        )

    # -- display / power -----------------------------------------------------

    async def pub_display_brightness(self) -> bool:
        levels = await self.capability.get_display_brightness()
        if not levels:
            return False
        return await self._publish_many(
            {f"display/{display_id}/brightness": str(value) for display_id, value in levels.items()},
        )

    async def pub_keep_awake(self) -> bool:
        enabled = await self.capability.get_keep_awake()
        return await self._publish("keepawake", bool_payload(enabled))

    # -- activity / media ----------------------------------------------------

    async def pub_activity(self, state: ActivityState) -> bool:
        payload = ACTIVITY_ACTIVE_MSG if state is ActivityState.ACTIVE else ACTIVITY_INACTIVE_MSG
        return await self._publish("activity", payload, retain=True)

    async def pub_idle_seconds(self, seconds: float) -> bool:
        return await self._publish("idle_seconds", str(int(seconds)))

    async def pub_media_state(self, state: MediaState) -> bool:
        snapshot = state.model_dump_json()
        now_playing = await self._publish("media/now_playing", snapshot, retain=True)
        playback = await self._publish("media/state", str(state.playback_state), retain=True)
        return now_playing and playback

    # -- groups --------------------------------------------------------------

    @timed_async("initial_publish_burst")
    async def pub_all(self) -> None:
        """Publish every status group once, each independently of the others' failures."""
        lp = f"{self.lp}pub_all:"
        logger.info("%s Running initial updates...", lp)
        publishers = (
            self.pub_volume,
            self.pub_input_volume,
            self.pub_mute,
            self.pub_battery,
            self.pub_cpu,
            self.pub_memory,
            self.pub_uptime,
            self.pub_public_ip,
            self.pub_disk,
            self.pub_media_devices,
            self.pub_display_brightness,
            self.pub_keep_awake,
        )
        for publisher in publishers:
            try:
                _ = await publisher()
            except Exception as e:
                logger.warning(
                    "%s %s failed: %s",
                    lp,
                    publisher.__name__,
                    e,
                    extra={"publisher": publisher.__name__},
                )
        logger.info("%s Initial updates complete", lp)
