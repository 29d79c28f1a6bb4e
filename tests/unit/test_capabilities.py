"""
Unit tests for the macOS device capability.

Every host command goes through ``run_command``, which is patched here, so
nothing is executed.
"""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from mac2mqtt.capabilities import MacOSCapability, OsascriptVolumeBackend
from mac2mqtt.capabilities.macos import CAFFEINATE, OSASCRIPT, PMSET
from mac2mqtt.exceptions import CapabilityError
from mac2mqtt.structs import PlayPauseAction, SystemAction

RUN_COMMAND = "mac2mqtt.capabilities.macos.run_command"


class TestOsascriptVolumeBackend:
    """Tests for the AppleScript volume backend"""

    @pytest.mark.asyncio
    async def test_get_volume(self):
        with patch(RUN_COMMAND, AsyncMock(return_value="35")) as run:
            assert await OsascriptVolumeBackend().get_volume() == 35

        assert run.call_args.args == (OSASCRIPT, "-e", "output volume of (get volume settings)")

    @pytest.mark.asyncio
    async def test_missing_value_is_unavailable(self):
        """External audio interfaces answer ``missing value``"""
        backend = OsascriptVolumeBackend()
        with patch(RUN_COMMAND, AsyncMock(return_value="missing value")):
            assert await backend.get_volume() is None
            assert await backend.get_mute() is None

    @pytest.mark.asyncio
    async def test_garbage_answer_raises(self):
        with patch(RUN_COMMAND, AsyncMock(return_value="loud")), pytest.raises(CapabilityError):
            _ = await OsascriptVolumeBackend().get_volume()

    @pytest.mark.asyncio
    async def test_set_mute(self):
        with patch(RUN_COMMAND, AsyncMock(return_value="")) as run:
            await OsascriptVolumeBackend().set_mute(True)

        assert run.call_args.args[-1] == "set volume output muted true"


class TestMacOSCapability:
    """Tests for MacOSCapability"""

    @pytest.mark.asyncio
    async def test_volume_goes_through_backend(self):
        backend = MagicMock()
        backend.get_volume = AsyncMock(return_value=12)
        backend.set_volume = AsyncMock()
        capability = MacOSCapability(volume_backend=backend)

        assert await capability.get_volume() == 12
        await capability.set_volume(70)

        backend.set_volume.assert_awaited_once_with(70)

    @pytest.mark.asyncio
    async def test_input_volume(self):
        with patch(RUN_COMMAND, AsyncMock(return_value="80")) as run:
            assert await MacOSCapability().get_input_volume() == 80

        assert run.call_args.args[-1] == "input volume of (get volume settings)"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("action", "argv"),
        [
            (SystemAction.SLEEP, (PMSET, "sleepnow")),
            (SystemAction.DISPLAY_SLEEP, (PMSET, "displaysleepnow")),
            (SystemAction.DISPLAY_WAKE, (CAFFEINATE, "-u", "-t", "1")),
            (SystemAction.SCREENSAVER, ("/usr/bin/open", "-a", "ScreenSaverEngine")),
        ],
    )
    async def test_system_actions(self, action, argv):
        with patch(RUN_COMMAND, AsyncMock(return_value="")) as run:
            await MacOSCapability().system_action(action)

        assert run.call_args.args == argv

    @pytest.mark.asyncio
    async def test_shutdown_as_user_asks_system_events(self):
        with (
            patch("mac2mqtt.capabilities.macos.os.getuid", return_value=501),
            patch(RUN_COMMAND, AsyncMock(return_value="")) as run,
        ):
            await MacOSCapability().system_action(SystemAction.SHUTDOWN)

        assert run.call_args.args[0] == OSASCRIPT
        assert "shut down" in run.call_args.args[-1]

    @pytest.mark.asyncio
    async def test_lock_display_sends_lock_keystroke(self):
        with patch(RUN_COMMAND, AsyncMock(return_value="")) as run:
            await MacOSCapability().lock_display()

        assert run.call_args.args[0] == OSASCRIPT
        assert 'keystroke "q" using {control down, command down}' in run.call_args.args[-1]

    @pytest.mark.asyncio
    async def test_run_shortcut_passes_name_as_one_argument(self):
        with patch(RUN_COMMAND, AsyncMock(return_value="")) as run:
            await MacOSCapability().run_shortcut("Good Night")

        assert run.call_args.args == ("/usr/bin/shortcuts", "run", "Good Night")

    @pytest.mark.asyncio
    async def test_display_brightness_parsing(self):
        listing = (
            "display 1: main, active, awake, online, built-in, ID 0x4280a80\n"
            "display 1: brightness 0.750000\n"
            "display 2: brightness 0.304688\n"
        )
        with patch(RUN_COMMAND, AsyncMock(return_value=listing)):
            levels = await MacOSCapability().get_display_brightness()

        assert levels == {"1": 75, "2": 30}

    @pytest.mark.asyncio
    async def test_set_display_brightness_scales_to_fraction(self):
        with patch(RUN_COMMAND, AsyncMock(return_value="")) as run:
            await MacOSCapability().set_display_brightness("2", 45)

        assert run.call_args.args == ("brightness", "-d", "2", "0.45")

    @pytest.mark.asyncio
    async def test_play_pause_arguments(self):
        with patch(RUN_COMMAND, AsyncMock(return_value="")) as run:
            await MacOSCapability().play_pause(PlayPauseAction.TOGGLE)

        assert run.call_args.args == ("media-control", "toggle-play-pause")


class TestKeepAwake:
    """Tests for the caffeinate-backed keep-awake switch"""

    @pytest.mark.asyncio
    async def test_enable_then_disable(self):
        proc = MagicMock()
        proc.returncode = None
        proc.pid = 4242
        proc.wait = AsyncMock(return_value=0)
        capability = MacOSCapability()

        with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=proc)) as spawn:
            await capability.set_keep_awake(True)
            await capability.set_keep_awake(True)

        spawn.assert_awaited_once_with(CAFFEINATE, "-d", "-i")
        assert await capability.get_keep_awake() is True

        await capability.set_keep_awake(False)

        proc.terminate.assert_called_once()
        assert await capability.get_keep_awake() is False

    @pytest.mark.asyncio
    async def test_exited_caffeinate_reads_as_off(self):
        proc = MagicMock()
        proc.returncode = None
        capability = MacOSCapability()
        with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=proc)):
            await capability.set_keep_awake(True)

        proc.returncode = 0

        assert await capability.get_keep_awake() is False

    @pytest.mark.asyncio
    async def test_spawn_failure_raises_capability_error(self):
        capability = MacOSCapability()
        with (
            patch("asyncio.create_subprocess_exec", AsyncMock(side_effect=FileNotFoundError("caffeinate"))),
            pytest.raises(CapabilityError),
        ):
            await capability.set_keep_awake(True)
