"""Core data structures and collaborator protocols for the bridge."""

from __future__ import annotations

import threading
from collections.abc import AsyncIterator, Mapping
from dataclasses import dataclass
from enum import StrEnum
from typing import Protocol

from pydantic import BaseModel


class ConnectionState(StrEnum):
    """Broker connection state. Only the ConnectionManager mutates it."""

    DISCONNECTED = "disconnected"
    NETWORK_UNREACHABLE = "network_unreachable"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class Transport(StrEnum):
    TLS = "tls"
    PLAIN = "plain"


class ActivityState(StrEnum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class PlaybackState(StrEnum):
    PLAYING = "playing"
    PAUSED = "paused"
    IDLE = "idle"


class SystemAction(StrEnum):
    """Power/display actions accepted on the ``command/system`` topic."""

    SLEEP = "sleep"
    DISPLAY_SLEEP = "displaysleep"
    DISPLAY_WAKE = "displaywake"
    SHUTDOWN = "shutdown"
    SCREENSAVER = "screensaver"


class DisplayLockAction(StrEnum):
    """Payloads of ``command/displaylock``; the sleep variant blanks the panel after locking."""

    DISPLAYLOCK = "displaylock"
    DISPLAYLOCK_SLEEP = "displaylock_sleep"


class PlayPauseAction(StrEnum):
    PLAY = "play"
    PAUSE = "pause"
    TOGGLE = "toggle"


class RetryBudget:
    """Bounded count of transport fallbacks within one reachability window.

    Reset to zero on a successful connect or when the broker becomes
    reachable again after having been unreachable.
    """

    def __init__(self, maximum: int = 1) -> None:
        self.maximum: int = maximum
        self._used: int = 0
        self._lock: threading.Lock = threading.Lock()

    @property
    def used(self) -> int:
        with self._lock:
            return self._used

    @property
    def remaining(self) -> int:
        with self._lock:
            return max(0, self.maximum - self._used)

    def try_consume(self) -> bool:
        """Take one attempt from the budget; False when none remain."""
        with self._lock:
            if self._used >= self.maximum:
                return False
            self._used += 1
            return True

    def reset(self) -> None:
        with self._lock:
            self._used = 0

    def __repr__(self) -> str:
        return f"RetryBudget(used={self._used}, maximum={self.maximum})"


class MediaState(BaseModel):
    """Merged now-playing state. Only ``merge_media_state`` produces new values."""

    title: str | None = None
    artist: str | None = None
    album: str | None = None
    app_name: str | None = None
    playback_state: PlaybackState = PlaybackState.IDLE
    duration_seconds: float | None = None
    position_seconds: float | None = None

    model_config = {"frozen": True}


@dataclass(frozen=True, slots=True)
class CpuCounters:
    """Cumulative CPU time counters (seconds since boot, all cores)."""

    user: float = 0.0
    system: float = 0.0
    idle: float = 0.0
    iowait: float = 0.0
    nice: float = 0.0
    irq: float = 0.0
    softirq: float = 0.0
    steal: float = 0.0

    @property
    def total(self) -> float:
        return self.user + self.system + self.idle + self.iowait + self.nice + self.irq + self.softirq + self.steal


@dataclass(frozen=True, slots=True)
class CpuUsage:
    used_percent: float
    free_percent: float


@dataclass(frozen=True, slots=True)
class MemoryUsage:
    total_bytes: int
    used_bytes: int
    free_bytes: int


@dataclass(frozen=True, slots=True)
class DiskUsage:
    percent_used: float
    bytes_used: int
    bytes_free: int

    @property
    def percent_free(self) -> float:
        return 100.0 - self.percent_used


@dataclass(frozen=True, slots=True)
class MediaDevices:
    microphone: bool = False
    camera: bool = False


@dataclass(frozen=True, slots=True)
class InboundMessage:
    """One message taken off the broker, queued for the command router."""

    topic: str
    payload: bytes


class DeviceCapability(Protocol):
    """Host control and query primitives the bridge invokes.

    Reads return ``None`` when the host cannot answer (the publish is then
    skipped); failures raise ``CapabilityError``.
    """

    async def get_volume(self) -> int | None: ...

    async def set_volume(self, value: int) -> None: ...

    async def get_input_volume(self) -> int | None: ...

    async def set_input_volume(self, value: int) -> None: ...

    async def get_mute(self) -> bool | None: ...

    async def set_mute(self, muted: bool) -> None: ...

    async def system_action(self, action: SystemAction) -> None: ...

    async def lock_display(self) -> None: ...

    async def run_shortcut(self, name: str) -> None: ...

    async def get_display_brightness(self) -> Mapping[str, int]: ...

    async def set_display_brightness(self, display_id: str, value: int) -> None: ...

    async def get_keep_awake(self) -> bool: ...

    async def set_keep_awake(self, enabled: bool) -> None: ...

    async def play_pause(self, action: PlayPauseAction) -> None: ...


class TelemetrySource(Protocol):
    """Point-in-time and streaming system state the bridge polls."""

    def cpu_counters(self) -> CpuCounters: ...

    def memory(self) -> MemoryUsage: ...

    def disk_usage(self, path: str = "/") -> DiskUsage: ...

    def uptime_seconds(self) -> float: ...

    async def battery_percent(self) -> int | None: ...

    async def public_ip(self) -> str | None: ...

    async def media_devices(self) -> MediaDevices: ...

    async def idle_seconds(self) -> float: ...

    def media_events(self) -> AsyncIterator[bytes]:
        """Lazy, unbounded, non-restartable stream of raw event lines."""
        ...


class DiscoveryPublisher(Protocol):
    """Publishes the machine/capability registration documents."""

    async def publish_discovery(self) -> bool: ...
