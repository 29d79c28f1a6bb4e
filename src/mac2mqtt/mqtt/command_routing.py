"""Inbound command routing.

Messages taken off the broker are queued and handled one at a time by a
single consumer task, so two commands never drive the same host control
concurrently. Each command topic is matched exactly (after ``command/``)
against an ordered route table; the first match consumes the message.
"""

from __future__ import annotations

import asyncio
import contextlib
import re
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING

from mac2mqtt.const import PLAYPAUSE_SETTLE_DELAY
from mac2mqtt.correlation import correlation_context
from mac2mqtt.exceptions import CapabilityError, CommandValidationError
from mac2mqtt.instrumentation import timed_async
from mac2mqtt.logging_abstraction import get_logger
from mac2mqtt.structs import DisplayLockAction, InboundMessage, PlayPauseAction, SystemAction

if TYPE_CHECKING:
    from mac2mqtt.mqtt.state_updates import StateUpdateHelper
    from mac2mqtt.structs import DeviceCapability
    from mac2mqtt.topics import TopicNamespace

logger = get_logger(__name__)

SHORTCUT_NAME_PATTERN = re.compile(r"[A-Za-z0-9\s\-_]+")
_INTEGER_PATTERN = re.compile(r"[+-]?\d+")

CommandHandler = Callable[..., Awaitable[None]]


def _text(payload: bytes) -> str:
    return payload.decode(errors="replace")


def parse_percent(command: str, payload: bytes) -> int:
    """Integer in [0, 100], e.g. volume or brightness."""
    text = _text(payload)
    if not _INTEGER_PATTERN.fullmatch(text):
        raise CommandValidationError(command, text, "not an integer")
    value = int(text)
    if not 0 <= value <= 100:
        raise CommandValidationError(command, text, "out of range 0..100")
    return value


def parse_bool(command: str, payload: bytes) -> bool:
    """Only the literals ``true`` and ``false`` are accepted."""
    text = _text(payload)
    if text == "true":
        return True
    if text == "false":
        return False
    raise CommandValidationError(command, text, "expected 'true' or 'false'")


def parse_shortcut_name(payload: bytes) -> str:
    text = _text(payload)
    if not text or not SHORTCUT_NAME_PATTERN.fullmatch(text):
        raise CommandValidationError("runshortcut", text, "invalid shortcut name")
    return text


def parse_system_action(payload: bytes) -> SystemAction:
    text = _text(payload)
    try:
        return SystemAction(text)
    except ValueError as e:
        raise CommandValidationError("system", text, "unknown system action") from e


def parse_playpause_action(payload: bytes) -> PlayPauseAction:
    text = _text(payload)
    try:
        return PlayPauseAction(text)
    except ValueError as e:
        raise CommandValidationError("media/playpause", text, "expected play, pause or toggle") from e


def parse_displaylock_action(payload: bytes) -> DisplayLockAction:
    text = _text(payload)
    try:
        return DisplayLockAction(text)
    except ValueError as e:
        raise CommandValidationError("displaylock", text, "expected displaylock or displaylock_sleep") from e


class CommandRouter:
    """Validate inbound commands, invoke the capability, republish what changed."""

    lp: str = "router:"

    def __init__(
        self,
        topics: TopicNamespace,
        capability: DeviceCapability,
        state_updates: StateUpdateHelper,
        media_republish: Callable[[], Awaitable[object]] | None = None,
        settle_delay: float = PLAYPAUSE_SETTLE_DELAY,
    ) -> None:
        self.topics: TopicNamespace = topics
        self.capability: DeviceCapability = capability
        self.state_updates: StateUpdateHelper = state_updates
        self.media_republish: Callable[[], Awaitable[object]] | None = media_republish
        self.settle_delay: float = settle_delay
        self.queue: asyncio.Queue[InboundMessage] = asyncio.Queue()
        self.consumer_task: asyncio.Task[None] | None = None
        # order matters: first full match wins
        self.routes: list[tuple[re.Pattern[str], CommandHandler]] = [
            (re.compile(r"volume"), self._set_volume),
            (re.compile(r"input_volume"), self._set_input_volume),
            (re.compile(r"mute"), self._set_mute),
            (re.compile(r"system"), self._system_action),
            (re.compile(r"display/([^/]+)/brightness"), self._set_display_brightness),
            (re.compile(r"runshortcut"), self._run_shortcut),
            (re.compile(r"keepawake"), self._set_keep_awake),
            (re.compile(r"media/playpause"), self._play_pause),
            (re.compile(r"displaylock"), self._lock_display),
        ]

    # -- queue ---------------------------------------------------------------

    async def enqueue(self, message: InboundMessage) -> None:
        """Message handler for the ConnectionManager receive loop."""
        self.queue.put_nowait(message)

    def start(self) -> asyncio.Task[None]:
        if self.consumer_task is None or self.consumer_task.done():
            self.consumer_task = asyncio.create_task(self.consume(), name="CommandRouter_CONSUMER")
        return self.consumer_task

    async def stop(self) -> None:
        task, self.consumer_task = self.consumer_task, None
        if task is None or task.done():
            return
        _ = task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def consume(self) -> None:
        logger.debug("%s command consumer started", self.lp)
        while True:
            message = await self.queue.get()
            try:
                await self.handle(message.topic, message.payload)
            finally:
                self.queue.task_done()

    # -- dispatch ------------------------------------------------------------

    @timed_async("handle_command")
    async def handle(self, topic: str, payload: bytes) -> None:
        """Route one message. Never raises: every failure is logged and dropped."""
        with correlation_context(kind="cmd"):
            lp = f"{self.lp}handle:"
            path = self.topics.command_path(topic)
            if path is None:
                logger.debug("%s ignoring message on foreign topic %s", lp, topic)
                return
            for pattern, handler in self.routes:
                match = pattern.fullmatch(path)
                if match is None:
                    continue
                logger.info("%s %s <- %r", lp, path, payload, extra={"topic": topic})
                try:
                    await handler(payload, *match.groups())
                except CommandValidationError as e:
                    logger.warning("%s %s", lp, e, extra={"topic": topic, "command": e.command})
                except CapabilityError as e:
                    logger.error("%s %s", lp, e, extra={"topic": topic, "capability": e.capability})
                except Exception:
                    logger.exception("%s unexpected error handling %s", lp, topic, extra={"topic": topic})
                return
            logger.debug("%s no route for command path %r", lp, path, extra={"topic": topic})

    # -- handlers ------------------------------------------------------------

    async def _set_volume(self, payload: bytes) -> None:
        value = parse_percent("volume", payload)
        await self.capability.set_volume(value)
        # output volume and mute share one backend
        _ = await self.state_updates.pub_volume()
        _ = await self.state_updates.pub_mute()

    async def _set_input_volume(self, payload: bytes) -> None:
        value = parse_percent("input_volume", payload)
        await self.capability.set_input_volume(value)
        _ = await self.state_updates.pub_input_volume()

    async def _set_mute(self, payload: bytes) -> None:
        muted = parse_bool("mute", payload)
        await self.capability.set_mute(muted)
        _ = await self.state_updates.pub_volume()
        _ = await self.state_updates.pub_mute()

    async def _system_action(self, payload: bytes) -> None:
        action = parse_system_action(payload)
        logger.info("%s system action: %s", self.lp, action)
        await self.capability.system_action(action)

    async def _lock_display(self, payload: bytes) -> None:
        action = parse_displaylock_action(payload)
        await self.capability.lock_display()
        if action is DisplayLockAction.DISPLAYLOCK_SLEEP:
            await self.capability.system_action(SystemAction.DISPLAY_SLEEP)

    async def _set_display_brightness(self, payload: bytes, display_id: str) -> None:
        value = parse_percent(f"display/{display_id}/brightness", payload)
        await self.capability.set_display_brightness(display_id, value)
        _ = await self.state_updates.pub_display_brightness()

    async def _run_shortcut(self, payload: bytes) -> None:
        name = parse_shortcut_name(payload)
        await self.capability.run_shortcut(name)

    async def _set_keep_awake(self, payload: bytes) -> None:
        enabled = parse_bool("keepawake", payload)
        await self.capability.set_keep_awake(enabled)
        _ = await self.state_updates.pub_keep_awake()

    async def _play_pause(self, payload: bytes) -> None:
        action = parse_playpause_action(payload)
        await self.capability.play_pause(action)
        await asyncio.sleep(self.settle_delay)
        if self.media_republish is not None:
            _ = await self.media_republish()
