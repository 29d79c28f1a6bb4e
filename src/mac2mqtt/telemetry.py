"""Host telemetry: psutil counters, ioreg idle time, public IP, media feed."""

from __future__ import annotations

import asyncio
import contextlib
import re
import time
from collections.abc import AsyncIterator, Sequence

import aiohttp
import psutil

from mac2mqtt.exceptions import CapabilityError, TelemetryError
from mac2mqtt.logging_abstraction import get_logger
from mac2mqtt.structs import CpuCounters, DiskUsage, MediaDevices, MemoryUsage
from mac2mqtt.utils import run_command

logger = get_logger(__name__)

PUBLIC_IP_URL = "https://api.ipify.org"
PUBLIC_IP_TIMEOUT = 8

_HID_IDLE = re.compile(r'"HIDIdleTime"\s*=\s*(\d+)')
_AUDIO_INPUT_RUNNING = re.compile(r'"IOAudioEngineState"\s*=\s*1')
# helper processes macOS launches while a camera stream is open
CAMERA_PROCESSES = frozenset({"VDCAssistant", "AppleCameraAssistant"})


class HostTelemetrySource:
    """Telemetry for the machine the bridge runs on."""

    lp: str = "telemetry:"

    def __init__(
        self,
        media_stream_command: Sequence[str] = ("media-control", "stream"),
        public_ip_url: str = PUBLIC_IP_URL,
        api_timeout: int = PUBLIC_IP_TIMEOUT,
    ) -> None:
        self.media_stream_command: list[str] = list(media_stream_command)
        self.public_ip_url: str = public_ip_url
        self.api_timeout: int = api_timeout
        self.http_session: aiohttp.ClientSession | None = None

    # -- psutil --------------------------------------------------------------

    def cpu_counters(self) -> CpuCounters:
        times = psutil.cpu_times()
        return CpuCounters(
            user=times.user,
            system=times.system,
            idle=times.idle,
            iowait=getattr(times, "iowait", 0.0),
            nice=getattr(times, "nice", 0.0),
            irq=getattr(times, "irq", 0.0),
            softirq=getattr(times, "softirq", 0.0),
            steal=getattr(times, "steal", 0.0),
        )

    def memory(self) -> MemoryUsage:
        vm = psutil.virtual_memory()
        return MemoryUsage(total_bytes=vm.total, used_bytes=vm.used, free_bytes=vm.free)

    def disk_usage(self, path: str = "/") -> DiskUsage:
        try:
            usage = psutil.disk_usage(path)
        except OSError as e:
            raise TelemetryError("disk_usage", str(e)) from e
        return DiskUsage(percent_used=usage.percent, bytes_used=usage.used, bytes_free=usage.free)

    def uptime_seconds(self) -> float:
        return max(0.0, time.time() - psutil.boot_time())

    async def battery_percent(self) -> int | None:
        battery = psutil.sensors_battery()
        if battery is None:
            return None
        return round(battery.percent)

    # -- network -------------------------------------------------------------

    async def _check_session(self) -> aiohttp.ClientSession:
        if not self.http_session or self.http_session.closed:
            logger.debug("%s Creating new aiohttp ClientSession", self.lp)
            self.http_session = aiohttp.ClientSession()
        return self.http_session

    async def public_ip(self) -> str | None:
        lp = f"{self.lp}public_ip:"
        session = await self._check_session()
        try:
            async with session.get(
                self.public_ip_url,
                timeout=aiohttp.ClientTimeout(total=self.api_timeout),
            ) as resp:
                resp.raise_for_status()
                return (await resp.text()).strip() or None
        except (aiohttp.ClientError, TimeoutError) as e:
            logger.warning("%s Error getting public IP: %s", lp, e)
            return None

    async def close(self) -> None:
        if self.http_session and not self.http_session.closed:
            logger.debug("%s Closing aiohttp ClientSession", self.lp)
            await self.http_session.close()
        self.http_session = None

    # -- ioreg ---------------------------------------------------------------

    async def media_devices(self) -> MediaDevices:
        lp = f"{self.lp}media_devices:"
        microphone = False
        try:
            raw = await run_command("/usr/sbin/ioreg", "-l", "-w0", "-r", "-c", "IOAudioEngine", capability="microphone")
        except CapabilityError as e:
            logger.warning("%s Error getting microphone state: %s", lp, e)
        else:
            microphone = any(
                _AUDIO_INPUT_RUNNING.search(block) for block in raw.split("+-o") if "Input" in block
            )
        camera = False
        try:
            camera = any(p.info.get("name") in CAMERA_PROCESSES for p in psutil.process_iter(["name"]))
        except psutil.Error as e:
            logger.warning("%s Error getting camera state: %s", lp, e)
        return MediaDevices(microphone=microphone, camera=camera)

    async def idle_seconds(self) -> float:
        raw = await run_command("/usr/sbin/ioreg", "-c", "IOHIDSystem", capability="idle_seconds")
        match = _HID_IDLE.search(raw)
        if match is None:
            raise TelemetryError("idle_seconds", "HIDIdleTime not found in ioreg output")
        # nanoseconds
        return int(match.group(1)) / 1_000_000_000

    # -- media feed ----------------------------------------------------------

    async def media_events(self) -> AsyncIterator[bytes]:
        """Yield raw lines of the media feed until the process exits."""
        lp = f"{self.lp}media_events:"
        try:
            proc = await asyncio.create_subprocess_exec(
                *self.media_stream_command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.DEVNULL,
            )
        except OSError as e:
            raise TelemetryError("media_events", f"cannot start {self.media_stream_command[0]}: {e}") from e
        assert proc.stdout is not None
        try:
            while line := await proc.stdout.readline():
                yield line
        finally:
            if proc.returncode is None:
                with contextlib.suppress(ProcessLookupError):
                    proc.terminate()
            returncode = await proc.wait()
            logger.debug("%s media feed exited with %s", lp, returncode)
