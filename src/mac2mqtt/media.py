"""Now-playing state from the ``media-control stream`` event feed.

Each line of the feed is a JSON object. Data events look like::

    {"type": "data", "diff": true, "payload": {"title": "...", "playing": true}}

A ``diff`` payload only carries the keys that changed; a non-diff payload is
a full snapshot (an empty one means nothing is playing).
"""

from __future__ import annotations

import asyncio
import json
import threading
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from mac2mqtt.logging_abstraction import get_logger
from mac2mqtt.structs import MediaState, PlaybackState

if TYPE_CHECKING:
    from mac2mqtt.mqtt.state_updates import StateUpdateHelper
    from mac2mqtt.structs import TelemetrySource

logger = get_logger(__name__)

# event key -> MediaState field
FIELD_MAP: dict[str, str] = {
    "title": "title",
    "artist": "artist",
    "album": "album",
    "bundleIdentifier": "app_name",
    "duration": "duration_seconds",
    "elapsedTime": "position_seconds",
}


def merge_media_state(old: MediaState, diff: Mapping[str, Any]) -> MediaState:
    """Overwrite only the fields present in ``diff``; everything else keeps its value.

    ``playing`` wins over a state derived from ``playbackRate`` in the same diff.

    Raises:
        pydantic.ValidationError: a present field has an unusable value

    """
    updates: dict[str, Any] = {field: diff[key] for key, field in FIELD_MAP.items() if key in diff}
    rate = diff.get("playbackRate")
    if isinstance(rate, int | float) and not isinstance(rate, bool):
        updates["playback_state"] = PlaybackState.PLAYING if rate > 0 else PlaybackState.PAUSED
    if isinstance(diff.get("playing"), bool):
        updates["playback_state"] = PlaybackState.PLAYING if diff["playing"] else PlaybackState.PAUSED
    if not updates:
        return old
    return MediaState.model_validate({**old.model_dump(), **updates})


def parse_media_event(line: bytes | str) -> tuple[bool, dict[str, Any]] | None:
    """Return ``(is_diff, payload)`` for a data event, None for other event types.

    Raises:
        ValueError: line is not a JSON object or the payload is not an object

    """
    event = json.loads(line)
    if not isinstance(event, dict):
        raise ValueError("event is not a JSON object")
    if event.get("type") != "data":
        return None
    payload = event.get("payload") or {}
    if not isinstance(payload, dict):
        raise ValueError("event payload is not a JSON object")
    return bool(event.get("diff", False)), payload


class MediaStreamMerger:
    """Consumes the media event feed once; never restarts it after it ends."""

    lp: str = "media:"

    def __init__(self, telemetry: TelemetrySource, state_updates: StateUpdateHelper) -> None:
        self.telemetry: TelemetrySource = telemetry
        self.state_updates: StateUpdateHelper = state_updates
        self.finished: bool = False
        self._state: MediaState = MediaState()
        self._lock: threading.Lock = threading.Lock()
        self._task: asyncio.Task[None] | None = None

    @property
    def state(self) -> MediaState:
        with self._lock:
            return self._state

    def apply(self, line: bytes | str) -> MediaState | None:
        """Merge one raw line into the current state; None when the line carried no data."""
        parsed = parse_media_event(line)
        if parsed is None:
            return None
        is_diff, payload = parsed
        with self._lock:
            # a full snapshot starts over from idle
            base = self._state if is_diff else MediaState()
            self._state = merge_media_state(base, payload)
            return self._state

    async def republish(self) -> bool:
        return await self.state_updates.pub_media_state(self.state)

    async def run(self) -> None:
        lp = f"{self.lp}run:"
        logger.info("%s media stream started", lp)
        try:
            async for line in self.telemetry.media_events():
                if not line.strip():
                    continue
                try:
                    merged = self.apply(line)
                except ValueError as e:
                    logger.warning("%s skipping malformed event: %s", lp, e, extra={"line": line[:200]})
                    continue
                if merged is not None:
                    _ = await self.republish()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("%s media stream failed: %s", lp, e)
        finally:
            self.finished = True
        logger.warning("%s media stream ended, not restarting", lp)

    def start(self) -> asyncio.Task[None] | None:
        """Start the feed consumer once. Returns None after the feed has ended."""
        if self.finished:
            return None
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run(), name="MediaStreamMerger_STREAM")
        return self._task
