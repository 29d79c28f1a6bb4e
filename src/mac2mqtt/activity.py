"""User activity detection from the host idle-time counter.

Fresh input shows up as the idle counter going down, or sitting under
``IDLE_FLOOR_SECONDS``. Either flips the state to active at once; falling
back to inactive waits for ``idle_threshold`` seconds without fresh input.
"""

from __future__ import annotations

import asyncio
import contextlib
import threading
from collections.abc import Callable
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Protocol

from mac2mqtt.logging_abstraction import get_logger
from mac2mqtt.structs import ActivityState
from mac2mqtt.timer import SingleShotTimer

if TYPE_CHECKING:
    from mac2mqtt.mqtt.state_updates import StateUpdateHelper
    from mac2mqtt.structs import TelemetrySource

logger = get_logger(__name__)

IDLE_FLOOR_SECONDS: float = 2.0


class DebounceTimer(Protocol):
    def arm(self, delay: float | None = None) -> None: ...

    def cancel(self) -> bool: ...


TimerFactory = Callable[[float, Callable[[], None], str], DebounceTimer]


class ActivityMonitor:
    """Active/inactive state machine fed by idle-time samples."""

    lp: str = "activity:"

    def __init__(
        self,
        telemetry: TelemetrySource,
        state_updates: StateUpdateHelper,
        idle_threshold: float,
        sample_interval: float,
        timer_factory: TimerFactory = SingleShotTimer,
    ) -> None:
        self.telemetry: TelemetrySource = telemetry
        self.state_updates: StateUpdateHelper = state_updates
        self.idle_threshold: float = idle_threshold
        self.sample_interval: float = sample_interval
        self._lock: threading.Lock = threading.Lock()
        self._state: ActivityState = ActivityState.INACTIVE
        self._last_transition: datetime = datetime.now(UTC)
        self._previous_idle: float | None = None
        self._timer: DebounceTimer = timer_factory(idle_threshold, self._on_idle_timeout, "activity")
        self._task: asyncio.Task[None] | None = None
        self._pending_publishes: set[asyncio.Task[bool]] = set()

    @property
    def state(self) -> ActivityState:
        with self._lock:
            return self._state

    @property
    def last_transition_time(self) -> datetime:
        with self._lock:
            return self._last_transition

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def observe(self, idle_seconds: float) -> ActivityState | None:
        """Feed one idle sample. Returns the new state on a transition, else None."""
        with self._lock:
            previous = self._previous_idle
            self._previous_idle = idle_seconds
            fresh_input = idle_seconds < IDLE_FLOOR_SECONDS or (previous is not None and idle_seconds < previous)
            if not fresh_input:
                return None
            self._timer.arm()
            if self._state is ActivityState.ACTIVE:
                return None
            self._state = ActivityState.ACTIVE
            self._last_transition = datetime.now(UTC)
        logger.info("%s user became active", self.lp, extra={"idle_seconds": idle_seconds})
        return ActivityState.ACTIVE

    def _on_idle_timeout(self) -> None:
        with self._lock:
            if self._state is ActivityState.INACTIVE:
                return
            self._state = ActivityState.INACTIVE
            self._last_transition = datetime.now(UTC)
        logger.info("%s no input for %ss, user inactive", self.lp, self.idle_threshold)
        task = asyncio.get_running_loop().create_task(self.state_updates.pub_activity(ActivityState.INACTIVE))
        self._pending_publishes.add(task)
        task.add_done_callback(self._pending_publishes.discard)

    async def _sample_loop(self) -> None:
        lp = f"{self.lp}sample:"
        while True:
            try:
                idle = await self.telemetry.idle_seconds()
            except Exception as e:
                logger.warning("%s idle time read failed: %s", lp, e)
            else:
                changed = self.observe(idle)
                _ = await self.state_updates.pub_idle_seconds(idle)
                if changed is not None:
                    _ = await self.state_updates.pub_activity(changed)
            await asyncio.sleep(self.sample_interval)

    async def start(self) -> None:
        """Start sampling, replacing any sampler that is still running."""
        await self.stop()
        _ = await self.state_updates.pub_activity(self.state)
        self._task = asyncio.create_task(self._sample_loop(), name="ActivityMonitor_SAMPLER")

    async def stop(self) -> None:
        """Stop sampling. A pending inactivity timeout stays armed."""
        task, self._task = self._task, None
        if task is None or task.done():
            return
        _ = task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
