"""
Shared fixtures for unit tests.

Nothing here talks to a real broker or to the host OS: the aiomqtt client,
the reachability check, the device capability and the telemetry source are
all mocks.
"""

from collections.abc import Callable
from unittest.mock import AsyncMock, MagicMock

import pytest

from mac2mqtt.config import BridgeConfig
from mac2mqtt.mqtt.state_updates import StateUpdateHelper
from mac2mqtt.structs import CpuCounters, DiskUsage, MediaDevices, MemoryUsage
from mac2mqtt.topics import TopicNamespace

GIB = 1024 * 1024 * 1024


class FakeTimer:
    """Stand-in for SingleShotTimer that only fires when the test says so."""

    def __init__(self, delay: float, callback: Callable[[], None], name: str = "fake") -> None:
        self.delay = delay
        self.callback = callback
        self.name = name
        self.pending = False
        self.arm_count = 0

    def arm(self, delay: float | None = None) -> None:
        self.pending = True
        self.arm_count += 1

    def cancel(self) -> bool:
        was_pending = self.pending
        self.pending = False
        return was_pending

    def fire(self) -> None:
        self.pending = False
        self.callback()


@pytest.fixture
def bridge_config():
    """Minimal valid configuration with fast timings for tests."""
    return BridgeConfig(
        mqtt_ip="broker.local",
        mqtt_port=1883,
        hostname="testmac",
        reconnect_delay=0.01,
        reachability_interval=0.01,
        idle_threshold=10,
    )


@pytest.fixture
def tls_config(bridge_config):
    return bridge_config.model_copy(update={"mqtt_tls": True})


@pytest.fixture
def topics():
    return TopicNamespace(prefix="mac2mqtt", hostname="testmac")


@pytest.fixture
def mock_capability():
    """
    Mock DeviceCapability.

    Reads return plausible values; writes are AsyncMocks to assert on.
    """
    capability = MagicMock()
    capability.get_volume = AsyncMock(return_value=40)
    capability.set_volume = AsyncMock()
    capability.get_input_volume = AsyncMock(return_value=60)
    capability.set_input_volume = AsyncMock()
    capability.get_mute = AsyncMock(return_value=False)
    capability.set_mute = AsyncMock()
    capability.system_action = AsyncMock()
    capability.lock_display = AsyncMock()
    capability.run_shortcut = AsyncMock()
    capability.get_display_brightness = AsyncMock(return_value={"1": 80})
    capability.set_display_brightness = AsyncMock()
    capability.get_keep_awake = AsyncMock(return_value=False)
    capability.set_keep_awake = AsyncMock()
    capability.play_pause = AsyncMock()
    return capability


@pytest.fixture
def mock_telemetry():
    """Mock TelemetrySource with sync psutil-style reads and async host reads."""
    telemetry = MagicMock()
    telemetry.cpu_counters = MagicMock(return_value=CpuCounters(user=10.0, system=5.0, idle=85.0))
    telemetry.memory = MagicMock(
        return_value=MemoryUsage(total_bytes=16 * GIB, used_bytes=6 * GIB, free_bytes=10 * GIB),
    )
    telemetry.disk_usage = MagicMock(
        return_value=DiskUsage(percent_used=25.5, bytes_used=250_000, bytes_free=750_000),
    )
    telemetry.uptime_seconds = MagicMock(return_value=3 * 86400 + 2 * 3600 + 7 * 60)
    telemetry.battery_percent = AsyncMock(return_value=87)
    telemetry.public_ip = AsyncMock(return_value="203.0.113.7")
    telemetry.media_devices = AsyncMock(return_value=MediaDevices(microphone=True, camera=False))
    telemetry.idle_seconds = AsyncMock(return_value=30.0)
    return telemetry


@pytest.fixture
def mock_connection(topics):
    """
    Mock ConnectionManager.

    Connected by default; publish succeeds.
    """
    connection = MagicMock()
    connection.topics = topics
    connection.is_connected = True
    connection.publish = AsyncMock(return_value=True)
    connection.publish_json = AsyncMock(return_value=True)
    return connection


@pytest.fixture
def state_updates(mock_connection, topics, mock_capability, mock_telemetry):
    return StateUpdateHelper(mock_connection, topics, mock_capability, mock_telemetry)


@pytest.fixture
def published(mock_connection):
    """Callable returning topic -> last payload published through ``mock_connection``."""

    def _published() -> dict[str, object]:
        return {c.args[0]: c.args[1] for c in mock_connection.publish.await_args_list}

    return _published


@pytest.fixture
def fake_timers():
    """Timer factory for ActivityMonitor; every timer it makes is kept in ``.created``."""
    created: list[FakeTimer] = []

    def factory(delay: float, callback: Callable[[], None], name: str = "fake") -> FakeTimer:
        timer = FakeTimer(delay, callback, name)
        created.append(timer)
        return timer

    factory.created = created
    return factory
