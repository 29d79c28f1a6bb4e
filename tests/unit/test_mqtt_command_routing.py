"""
Unit tests for CommandRouter and the command payload validators.
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from mac2mqtt.exceptions import CapabilityError, CommandValidationError
from mac2mqtt.mqtt.command_routing import (
    CommandRouter,
    parse_bool,
    parse_displaylock_action,
    parse_percent,
    parse_playpause_action,
    parse_shortcut_name,
    parse_system_action,
)
from mac2mqtt.structs import DisplayLockAction, InboundMessage, PlayPauseAction, SystemAction


@pytest.fixture
def media_republish():
    return AsyncMock(return_value=True)


@pytest.fixture
def router(topics, mock_capability, state_updates, media_republish):
    return CommandRouter(topics, mock_capability, state_updates, media_republish=media_republish, settle_delay=0)


class TestValidators:
    """Tests for the payload parsers"""

    @pytest.mark.parametrize(("payload", "expected"), [(b"0", 0), (b"50", 50), (b"100", 100), (b"+7", 7)])
    def test_parse_percent_accepts_range(self, payload, expected):
        assert parse_percent("volume", payload) == expected

    @pytest.mark.parametrize("payload", [b"101", b"-1", b"abc", b"", b"5.5", b" 5"])
    def test_parse_percent_rejects(self, payload):
        with pytest.raises(CommandValidationError) as exc_info:
            _ = parse_percent("volume", payload)
        assert exc_info.value.command == "volume"

    def test_parse_bool_literals_only(self):
        assert parse_bool("mute", b"true") is True
        assert parse_bool("mute", b"false") is False
        for payload in (b"1", b"True", b"yes", b""):
            with pytest.raises(CommandValidationError):
                _ = parse_bool("mute", payload)

    @pytest.mark.parametrize("payload", [b"Morning", b"Turn off lights", b"dark-mode_2"])
    def test_shortcut_names_accepted(self, payload):
        assert parse_shortcut_name(payload) == payload.decode()

    @pytest.mark.parametrize("payload", [b"", b"rm -rf /; echo", b"a&b", b"quote'd"])
    def test_shortcut_names_rejected(self, payload):
        with pytest.raises(CommandValidationError):
            _ = parse_shortcut_name(payload)

    def test_system_and_playpause_actions(self):
        assert parse_system_action(b"displaysleep") is SystemAction.DISPLAY_SLEEP
        assert parse_playpause_action(b"toggle") is PlayPauseAction.TOGGLE
        with pytest.raises(CommandValidationError):
            _ = parse_system_action(b"reboot")
        with pytest.raises(CommandValidationError):
            _ = parse_playpause_action(b"stop")

    def test_displaylock_actions(self):
        assert parse_displaylock_action(b"displaylock") is DisplayLockAction.DISPLAYLOCK
        assert parse_displaylock_action(b"displaylock_sleep") is DisplayLockAction.DISPLAYLOCK_SLEEP
        for payload in (b"", b"lock", b"displaysleep"):
            with pytest.raises(CommandValidationError) as exc_info:
                _ = parse_displaylock_action(payload)
            assert exc_info.value.command == "displaylock"


class TestDispatch:
    """Tests for CommandRouter.handle()"""

    @pytest.mark.asyncio
    async def test_volume_sets_and_republishes_volume_and_mute(self, router, topics, mock_capability, published):
        await router.handle(topics.command("volume"), b"50")

        mock_capability.set_volume.assert_awaited_once_with(50)
        payloads = published()
        assert payloads[topics.status("volume")] == "40"
        assert payloads[topics.status("mute")] == b"false"

    @pytest.mark.asyncio
    async def test_invalid_volume_never_reaches_capability(self, router, topics, mock_capability, mock_connection):
        for payload in (b"101", b"-1", b"abc"):
            await router.handle(topics.command("volume"), payload)

        mock_capability.set_volume.assert_not_awaited()
        mock_connection.publish.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_input_volume_routes_separately(self, router, topics, mock_capability, published):
        """``input_volume`` must not be swallowed by the ``volume`` route"""
        await router.handle(topics.command("input_volume"), b"25")

        mock_capability.set_input_volume.assert_awaited_once_with(25)
        mock_capability.set_volume.assert_not_awaited()
        assert published() == {topics.status("input_volume"): "60"}

    @pytest.mark.asyncio
    async def test_mute_republishes_volume_and_mute(self, router, topics, mock_capability, published):
        await router.handle(topics.command("mute"), b"true")

        mock_capability.set_mute.assert_awaited_once_with(True)
        assert set(published()) == {topics.status("volume"), topics.status("mute")}

    @pytest.mark.asyncio
    async def test_system_action(self, router, topics, mock_capability):
        await router.handle(topics.command("system"), b"sleep")

        mock_capability.system_action.assert_awaited_once_with(SystemAction.SLEEP)

    @pytest.mark.asyncio
    async def test_unknown_system_action_ignored(self, router, topics, mock_capability):
        await router.handle(topics.command("system"), b"selfdestruct")

        mock_capability.system_action.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_displaylock_only_locks(self, router, topics, mock_capability):
        await router.handle(topics.command("displaylock"), b"displaylock")

        mock_capability.lock_display.assert_awaited_once()
        mock_capability.system_action.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_displaylock_sleep_locks_then_sleeps_display(self, router, topics, mock_capability):
        calls: list[str] = []
        mock_capability.lock_display.side_effect = lambda: calls.append("lock")
        mock_capability.system_action.side_effect = lambda action: calls.append(str(action))

        await router.handle(topics.command("displaylock"), b"displaylock_sleep")

        assert calls == ["lock", "displaysleep"]
        mock_capability.system_action.assert_awaited_once_with(SystemAction.DISPLAY_SLEEP)

    @pytest.mark.asyncio
    async def test_unknown_displaylock_payload_ignored(self, router, topics, mock_capability):
        await router.handle(topics.command("displaylock"), b"sleep")

        mock_capability.lock_display.assert_not_awaited()
        mock_capability.system_action.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_display_id_from_topic(self, router, topics, mock_capability, published):
        await router.handle(topics.command("display/2/brightness"), b"30")

        mock_capability.set_display_brightness.assert_awaited_once_with("2", 30)
        assert topics.status("display/1/brightness") in published()

    @pytest.mark.asyncio
    async def test_run_shortcut(self, router, topics, mock_capability):
        await router.handle(topics.command("runshortcut"), b"Good Night")

        mock_capability.run_shortcut.assert_awaited_once_with("Good Night")

    @pytest.mark.asyncio
    async def test_keep_awake_republishes(self, router, topics, mock_capability, published):
        await router.handle(topics.command("keepawake"), b"true")

        mock_capability.set_keep_awake.assert_awaited_once_with(True)
        assert published() == {topics.status("keepawake"): b"false"}

    @pytest.mark.asyncio
    async def test_playpause_republishes_media_after_settle(self, router, topics, mock_capability, media_republish):
        await router.handle(topics.command("media/playpause"), b"pause")

        mock_capability.play_pause.assert_awaited_once_with(PlayPauseAction.PAUSE)
        media_republish.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_foreign_and_unrouted_topics_ignored(self, router, topics, mock_capability):
        await router.handle("other/host/command/volume", b"50")
        await router.handle(topics.command("volume/extra"), b"50")
        await router.handle(topics.command("unknown"), b"50")

        mock_capability.set_volume.assert_not_awaited()


class TestFailureIsolation:
    """handle() logs and drops every failure"""

    @pytest.mark.asyncio
    async def test_capability_error_is_contained(self, router, topics, mock_capability, caplog):
        mock_capability.set_volume.side_effect = CapabilityError("volume", "osascript exited with 1")

        await router.handle(topics.command("volume"), b"50")

        assert any("osascript exited with 1" in r.getMessage() for r in caplog.records)

    @pytest.mark.asyncio
    async def test_unexpected_error_is_contained(self, router, topics, mock_capability):
        mock_capability.run_shortcut.side_effect = RuntimeError("boom")

        await router.handle(topics.command("runshortcut"), b"Morning")

        mock_capability.run_shortcut.assert_awaited_once()


class TestQueue:
    """Tests for the single-consumer command queue"""

    @pytest.mark.asyncio
    async def test_commands_handled_in_arrival_order(self, router, topics, mock_capability):
        order: list[int] = []

        async def record(value: int) -> None:
            await asyncio.sleep(0)
            order.append(value)

        mock_capability.set_volume.side_effect = record
        task = router.start()
        for value in (10, 20, 30):
            await router.enqueue(InboundMessage(topic=topics.command("volume"), payload=str(value).encode()))

        await asyncio.wait_for(router.queue.join(), timeout=2)

        assert order == [10, 20, 30]
        assert router.start() is task
        await router.stop()
        assert task.done()
        assert router.consumer_task is None
