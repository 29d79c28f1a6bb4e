"""
Unit tests for StateUpdateHelper and the CPU usage math.
"""

import json
from unittest.mock import MagicMock

import pytest

from mac2mqtt.mqtt.state_updates import CpuSampler, cpu_usage
from mac2mqtt.structs import ActivityState, CpuCounters, MediaState, PlaybackState


class TestCpuUsage:
    """Tests for cpu_usage() and CpuSampler"""

    def test_zero_delta_reports_idle(self):
        sample = CpuCounters(user=10, system=5, idle=85)

        usage = cpu_usage(sample, sample)

        assert usage.used_percent == 0.0
        assert usage.free_percent == 100.0

    def test_counter_reset_reports_idle(self):
        usage = cpu_usage(CpuCounters(user=100, idle=900), CpuCounters(user=1, idle=9))

        assert usage.used_percent == 0.0

    def test_used_percent_from_idle_delta(self):
        previous = CpuCounters(user=10, system=10, idle=80)
        current = CpuCounters(user=40, system=20, idle=140)

        usage = cpu_usage(previous, current)

        # 100 ticks elapsed, 60 of them idle
        assert usage.used_percent == pytest.approx(40.0)
        assert usage.free_percent == pytest.approx(60.0)

    def test_sampler_keeps_previous_sample(self):
        read = MagicMock(
            side_effect=[
                CpuCounters(user=50, idle=50),
                CpuCounters(user=75, idle=75),
                CpuCounters(user=75, idle=75),
            ],
        )
        sampler = CpuSampler(read)

        first = sampler.sample()
        second = sampler.sample()
        third = sampler.sample()

        assert first.used_percent == pytest.approx(50.0)
        assert second.used_percent == pytest.approx(50.0)
        assert third.used_percent == 0.0


class TestPublishers:
    """Tests for the per-group publishers"""

    @pytest.mark.asyncio
    async def test_volume_none_skips_publish(self, state_updates, mock_capability, mock_connection):
        mock_capability.get_volume.return_value = None

        assert await state_updates.pub_volume() is False

        mock_connection.publish.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_audio_payloads(self, state_updates, topics, published):
        _ = await state_updates.pub_volume()
        _ = await state_updates.pub_input_volume()
        _ = await state_updates.pub_mute()

        assert published() == {
            topics.status("volume"): "40",
            topics.status("input_volume"): "60",
            topics.status("mute"): b"false",
        }

    @pytest.mark.asyncio
    async def test_battery_absent_skips(self, state_updates, mock_telemetry, mock_connection):
        mock_telemetry.battery_percent.return_value = None

        assert await state_updates.pub_battery() is False
        mock_connection.publish.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_cpu_two_decimals(self, state_updates, topics, published):
        assert await state_updates.pub_cpu() is True

        # first sample is measured against zero counters
        assert published() == {topics.status("cpu"): "15.00", topics.status("cpu/free"): "85.00"}

    @pytest.mark.asyncio
    async def test_memory_in_gib(self, state_updates, topics, published):
        _ = await state_updates.pub_memory()

        assert published() == {
            topics.status("memory/total"): "16.00",
            topics.status("memory/used"): "6.00",
            topics.status("memory/free"): "10.00",
        }

    @pytest.mark.asyncio
    async def test_uptime_human_and_ms(self, state_updates, topics, published):
        _ = await state_updates.pub_uptime()

        payloads = published()
        assert payloads[topics.status("uptime/human")] == "3 days, 2:07"
        assert payloads[topics.status("uptime/ms")] == str((3 * 86400 + 2 * 3600 + 7 * 60) * 1000)

    @pytest.mark.asyncio
    async def test_disk(self, state_updates, topics, published):
        _ = await state_updates.pub_disk()

        assert published() == {
            topics.status("disk/percent_used"): "25.50",
            topics.status("disk/percent_free"): "74.50",
            topics.status("disk/bytes_used"): "250000",
            topics.status("disk/bytes_free"): "750000",
        }

    @pytest.mark.asyncio
    async def test_public_ip_unknown_when_lookup_fails(self, state_updates, mock_telemetry, topics, published):
        mock_telemetry.public_ip.return_value = None

        _ = await state_updates.pub_public_ip()

        assert published() == {topics.status("publicip"): "unknown"}

    @pytest.mark.asyncio
    async def test_media_devices(self, state_updates, topics, published):
        _ = await state_updates.pub_media_devices()

        assert published() == {topics.status("media/microphone"): "true", topics.status("media/camera"): "false"}

    @pytest.mark.asyncio
    async def test_display_brightness_per_display(self, state_updates, mock_capability, topics, published):
        mock_capability.get_display_brightness.return_value = {"1": 80, "2": 35}

        _ = await state_updates.pub_display_brightness()

        assert published() == {
            topics.status("display/1/brightness"): "80",
            topics.status("display/2/brightness"): "35",
        }

    @pytest.mark.asyncio
    async def test_no_displays_publishes_nothing(self, state_updates, mock_capability, mock_connection):
        mock_capability.get_display_brightness.return_value = {}

        assert await state_updates.pub_display_brightness() is False
        mock_connection.publish.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_activity_is_retained(self, state_updates, topics, mock_connection):
        _ = await state_updates.pub_activity(ActivityState.ACTIVE)

        mock_connection.publish.assert_awaited_once_with(topics.status("activity"), b"active", retain=True)

    @pytest.mark.asyncio
    async def test_idle_seconds_truncated(self, state_updates, topics, published):
        _ = await state_updates.pub_idle_seconds(42.9)

        assert published() == {topics.status("idle_seconds"): "42"}

    @pytest.mark.asyncio
    async def test_media_state_json_snapshot(self, state_updates, topics, published):
        state = MediaState(title="Song", artist="Band", playback_state=PlaybackState.PLAYING)

        assert await state_updates.pub_media_state(state) is True

        payloads = published()
        snapshot = json.loads(payloads[topics.status("media/now_playing")])
        assert snapshot["title"] == "Song"
        assert snapshot["album"] is None
        assert payloads[topics.status("media/state")] == "playing"

    @pytest.mark.asyncio
    async def test_offline_publish_reports_false(self, state_updates, mock_connection):
        mock_connection.publish.return_value = False

        assert await state_updates.pub_keep_awake() is False


class TestPubAll:
    """Tests for the publish-everything burst"""

    @pytest.mark.asyncio
    async def test_one_failure_does_not_stop_the_rest(self, state_updates, mock_capability, topics, published):
        mock_capability.get_volume.side_effect = RuntimeError("osascript hung")

        await state_updates.pub_all()

        payloads = published()
        assert topics.status("volume") not in payloads
        for path in ("input_volume", "mute", "battery", "cpu", "memory/total", "publicip", "keepawake"):
            assert topics.status(path) in payloads
