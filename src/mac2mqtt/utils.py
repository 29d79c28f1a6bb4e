from __future__ import annotations

import asyncio
import contextlib
import signal

from mac2mqtt.const import SUBPROCESS_TIMEOUT
from mac2mqtt.exceptions import CapabilityError
from mac2mqtt.logging_abstraction import get_logger

logger = get_logger(__name__)

GIB = 1024 * 1024 * 1024


async def run_command(*args: str, capability: str = "command", timeout: float = SUBPROCESS_TIMEOUT) -> str:
    """Run a host command and return its stdout without the trailing newline.

    Raises:
        CapabilityError: binary missing, non-zero exit, or timeout

    """
    lp = f"run_command:{capability}:"
    try:
        proc = await asyncio.create_subprocess_exec(
            *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except (FileNotFoundError, PermissionError) as e:
        raise CapabilityError(capability, f"cannot execute {args[0]}: {e}") from e

    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except TimeoutError as e:
        with contextlib.suppress(ProcessLookupError):
            proc.kill()
        _ = await proc.wait()
        raise CapabilityError(capability, f"{args[0]} timed out after {timeout}s") from e

    if proc.returncode != 0:
        err = stderr.decode(errors="replace").strip()
        logger.debug("%s exit=%s stderr=%s", lp, proc.returncode, err)
        raise CapabilityError(capability, f"{args[0]} exited with {proc.returncode}: {err}")
    return stdout.decode(errors="replace").removesuffix("\n")


def format_uptime(seconds: float) -> tuple[str, str]:
    """Return (human, milliseconds) strings, e.g. ``("2 days, 3:07", "183000000")``."""
    uptime_ms = str(int(seconds * 1000))
    total = int(seconds)
    days = total // 86400
    hours = (total % 86400) // 3600
    minutes = (total % 3600) // 60
    if days > 0:
        return f"{days} days, {hours}:{minutes:02d}", uptime_ms
    return f"{hours}:{minutes:02d}", uptime_ms


def bytes_to_gib(value: int) -> str:
    return f"{value / GIB:.2f}"


def bool_payload(value: bool) -> bytes:
    return b"true" if value else b"false"


def install_signal_handlers(loop: asyncio.AbstractEventLoop, main_task: asyncio.Task[object]) -> None:
    """Cancel the main task on SIGINT/SIGTERM; process exit does the rest."""

    def _handler(signum: int) -> None:
        logger.info("mac2mqtt: Intercepted signal: %s (%s)", signal.Signals(signum).name, signum)
        _ = main_task.cancel()

    for signum in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(signum, _handler, signum)
