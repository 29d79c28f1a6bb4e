"""Periodic status publication.

Every job runs in its own task on its own interval. A tick while the broker
is not connected does nothing (no backlog): the next tick after a reconnect
publishes fresh values. CPU is the exception, it keeps sampling offline so
the first published value after a reconnect covers one interval only.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING

from mac2mqtt.logging_abstraction import get_logger

if TYPE_CHECKING:
    from mac2mqtt.config import BridgeConfig
    from mac2mqtt.mqtt.connection import ConnectionManager
    from mac2mqtt.mqtt.state_updates import StateUpdateHelper

logger = get_logger(__name__)


class Cadence(StrEnum):
    FAST = "fast"
    MEDIUM = "medium"
    SLOW = "slow"


@dataclass(frozen=True, slots=True)
class ScheduledJob:
    name: str
    cadence: Cadence
    interval: float
    run: Callable[[], Awaitable[object]]
    # False: runs even while disconnected (the job checks connectivity itself)
    gated: bool = True


class StateScheduler:
    """Drives the fast, medium and slow publication classes."""

    lp: str = "scheduler:"

    def __init__(self, config: BridgeConfig, connection: ConnectionManager, state_updates: StateUpdateHelper) -> None:
        self.config: BridgeConfig = config
        self.connection: ConnectionManager = connection
        self.state_updates: StateUpdateHelper = state_updates
        self.jobs: list[ScheduledJob] = self.build_jobs()
        self.tasks: dict[str, asyncio.Task[None]] = {}

    def build_jobs(self) -> list[ScheduledJob]:
        cfg = self.config
        su = self.state_updates
        return [
            ScheduledJob("audio", Cadence.FAST, cfg.volume_interval, self._audio),
            ScheduledJob("media_devices", Cadence.FAST, cfg.media_interval, su.pub_media_devices),
            ScheduledJob("battery", Cadence.MEDIUM, cfg.battery_interval, su.pub_battery),
            ScheduledJob("cpu", Cadence.MEDIUM, cfg.cpu_interval, self._cpu, gated=False),
            ScheduledJob("memory", Cadence.MEDIUM, cfg.memory_interval, su.pub_memory),
            ScheduledJob("uptime", Cadence.MEDIUM, cfg.uptime_interval, su.pub_uptime),
            ScheduledJob("publicip", Cadence.MEDIUM, cfg.publicip_interval, su.pub_public_ip),
            ScheduledJob("disk", Cadence.MEDIUM, cfg.disk_interval, su.pub_disk),
            ScheduledJob("display", Cadence.SLOW, cfg.display_interval, su.pub_display_brightness),
            ScheduledJob("keepawake", Cadence.SLOW, cfg.keepawake_interval, su.pub_keep_awake),
        ]

    async def _audio(self) -> None:
        _ = await self.state_updates.pub_volume()
        _ = await self.state_updates.pub_input_volume()
        _ = await self.state_updates.pub_mute()

    async def _cpu(self) -> None:
        usage = self.state_updates.sample_cpu()
        if self.connection.is_connected:
            _ = await self.state_updates.pub_cpu(usage)

    async def tick(self, job: ScheduledJob) -> bool:
        """Run one tick of ``job``. Returns False when skipped or failed."""
        if job.gated and not self.connection.is_connected:
            return False
        try:
            _ = await job.run()
        except Exception as e:
            logger.warning(
                "%s job '%s' failed: %s",
                self.lp,
                job.name,
                e,
                extra={"job": job.name, "cadence": str(job.cadence)},
            )
            return False
        return True

    async def _run_job(self, job: ScheduledJob) -> None:
        logger.debug("%s job '%s' every %ss (%s)", self.lp, job.name, job.interval, job.cadence)
        while True:
            await asyncio.sleep(job.interval)
            _ = await self.tick(job)

    def start(self) -> list[asyncio.Task[None]]:
        _ = self.stop()
        for job in self.jobs:
            self.tasks[job.name] = asyncio.create_task(self._run_job(job), name=f"StateScheduler_{job.name}")
        return list(self.tasks.values())

    def stop(self) -> list[asyncio.Task[None]]:
        """Cancel every job; returns the cancelled tasks for the caller to await."""
        cancelled = list(self.tasks.values())
        for task in cancelled:
            if not task.done():
                _ = task.cancel()
        self.tasks.clear()
        return cancelled
