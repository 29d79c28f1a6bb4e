"""macOS device capability: volume, power, displays, shortcuts, keep-awake, playback."""

from __future__ import annotations

import asyncio
import contextlib
import os
import re
from typing import Protocol

from mac2mqtt.exceptions import CapabilityError
from mac2mqtt.instrumentation import timed_async
from mac2mqtt.logging_abstraction import get_logger
from mac2mqtt.structs import PlayPauseAction, SystemAction
from mac2mqtt.utils import run_command

logger = get_logger(__name__)

OSASCRIPT = "/usr/bin/osascript"
CAFFEINATE = "/usr/bin/caffeinate"
PMSET = "/usr/bin/pmset"
# osascript answer when the current output device has no software volume
MISSING_VALUE = "missing value"

_BRIGHTNESS_LINE = re.compile(r"display (\d+): brightness ([0-9.]+)")

_PLAYPAUSE_ARGS: dict[PlayPauseAction, str] = {
    PlayPauseAction.PLAY: "play",
    PlayPauseAction.PAUSE: "pause",
    PlayPauseAction.TOGGLE: "toggle-play-pause",
}


class VolumeBackend(Protocol):
    """Source of output volume and mute. Reads return None when unavailable."""

    async def get_volume(self) -> int | None: ...

    async def set_volume(self, value: int) -> None: ...

    async def get_mute(self) -> bool | None: ...

    async def set_mute(self, muted: bool) -> None: ...


async def osascript(expression: str, capability: str) -> str:
    return await run_command(OSASCRIPT, "-e", expression, capability=capability)


def _parse_int(raw: str, capability: str) -> int | None:
    if raw == MISSING_VALUE:
        return None
    try:
        return int(raw)
    except ValueError as e:
        raise CapabilityError(capability, f"unexpected answer {raw!r}") from e


class OsascriptVolumeBackend:
    """System output volume (0-100) through AppleScript volume settings."""

    async def get_volume(self) -> int | None:
        return _parse_int(await osascript("output volume of (get volume settings)", "get_volume"), "get_volume")

    async def set_volume(self, value: int) -> None:
        _ = await osascript(f"set volume output volume {value}", "set_volume")

    async def get_mute(self) -> bool | None:
        raw = await osascript("output muted of (get volume settings)", "get_mute")
        if raw == MISSING_VALUE:
            return None
        if raw not in ("true", "false"):
            raise CapabilityError("get_mute", f"unexpected answer {raw!r}")
        return raw == "true"

    async def set_mute(self, muted: bool) -> None:
        _ = await osascript(f"set volume output muted {'true' if muted else 'false'}", "set_mute")


class MacOSCapability:
    """Host controls on macOS, shelling out to the stock command line tools.

    Display brightness needs the ``brightness`` CLI and playback control the
    ``media-control`` CLI on PATH.
    """

    lp: str = "macos:"

    def __init__(
        self,
        volume_backend: VolumeBackend | None = None,
        brightness_cli: str = "brightness",
        media_cli: str = "media-control",
    ) -> None:
        self.volume_backend: VolumeBackend = volume_backend or OsascriptVolumeBackend()
        self.brightness_cli: str = brightness_cli
        self.media_cli: str = media_cli
        self._caffeinate: asyncio.subprocess.Process | None = None
        self._caffeinate_lock: asyncio.Lock = asyncio.Lock()

    # -- audio ---------------------------------------------------------------

    async def get_volume(self) -> int | None:
        return await self.volume_backend.get_volume()

    @timed_async("set_volume")
    async def set_volume(self, value: int) -> None:
        await self.volume_backend.set_volume(value)

    async def get_input_volume(self) -> int | None:
        raw = await osascript("input volume of (get volume settings)", "get_input_volume")
        return _parse_int(raw, "get_input_volume")

    @timed_async("set_input_volume")
    async def set_input_volume(self, value: int) -> None:
        _ = await osascript(f"set volume input volume {value}", "set_input_volume")

    async def get_mute(self) -> bool | None:
        return await self.volume_backend.get_mute()

    @timed_async("set_mute")
    async def set_mute(self, muted: bool) -> None:
        await self.volume_backend.set_mute(muted)

    # -- power ---------------------------------------------------------------

    @timed_async("system_action")
    async def system_action(self, action: SystemAction) -> None:
        capability = f"system:{action}"
        if action is SystemAction.SLEEP:
            _ = await run_command(PMSET, "sleepnow", capability=capability)
        elif action is SystemAction.DISPLAY_SLEEP:
            _ = await run_command(PMSET, "displaysleepnow", capability=capability)
        elif action is SystemAction.DISPLAY_WAKE:
            _ = await run_command(CAFFEINATE, "-u", "-t", "1", capability=capability)
        elif action is SystemAction.SCREENSAVER:
            _ = await run_command("/usr/bin/open", "-a", "ScreenSaverEngine", capability=capability)
        elif os.getuid() == 0:
            _ = await run_command("/sbin/shutdown", "-h", "now", capability=capability)
        else:
            # may be refused while another user is logged in
            _ = await osascript('tell app "System Events" to shut down', capability)

    @timed_async("lock_display")
    async def lock_display(self) -> None:
        # Ctrl+Cmd+Q, the menu-bar "Lock Screen" shortcut
        _ = await osascript(
            'tell application "System Events" to tell process "Finder" '
            'to keystroke "q" using {control down, command down}',
            "lock_display",
        )

    @timed_async("run_shortcut")
    async def run_shortcut(self, name: str) -> None:
        _ = await run_command("/usr/bin/shortcuts", "run", name, capability="run_shortcut")

    # -- displays ------------------------------------------------------------

    async def get_display_brightness(self) -> dict[str, int]:
        raw = await run_command(self.brightness_cli, "-l", capability="get_display_brightness")
        levels: dict[str, int] = {}
        for match in _BRIGHTNESS_LINE.finditer(raw):
            levels[match.group(1)] = round(float(match.group(2)) * 100)
        return levels

    @timed_async("set_display_brightness")
    async def set_display_brightness(self, display_id: str, value: int) -> None:
        _ = await run_command(
            self.brightness_cli,
            "-d",
            display_id,
            f"{value / 100:.2f}",
            capability="set_display_brightness",
        )

    # -- keep awake ----------------------------------------------------------

    async def get_keep_awake(self) -> bool:
        return self._caffeinate is not None and self._caffeinate.returncode is None

    async def set_keep_awake(self, enabled: bool) -> None:
        lp = f"{self.lp}set_keep_awake:"
        async with self._caffeinate_lock:
            running = await self.get_keep_awake()
            if enabled and not running:
                try:
                    self._caffeinate = await asyncio.create_subprocess_exec(CAFFEINATE, "-d", "-i")
                except OSError as e:
                    raise CapabilityError("set_keep_awake", str(e)) from e
                logger.info("%s caffeinate started (pid %s)", lp, self._caffeinate.pid)
            elif not enabled and running:
                proc, self._caffeinate = self._caffeinate, None
                assert proc is not None
                with contextlib.suppress(ProcessLookupError):
                    proc.terminate()
                _ = await proc.wait()
                logger.info("%s caffeinate stopped", lp)

    # -- playback ------------------------------------------------------------

    @timed_async("play_pause")
    async def play_pause(self, action: PlayPauseAction) -> None:
        _ = await run_command(self.media_cli, _PLAYPAUSE_ARGS[action], capability="play_pause")

    async def close(self) -> None:
        """Release keep-awake so the host can sleep once the bridge is gone."""
        await self.set_keep_awake(False)
