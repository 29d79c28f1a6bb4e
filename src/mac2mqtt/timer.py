"""Single-shot debounce timer.

At most one expiry is pending per timer: ``arm()`` always cancels the
previous handle before scheduling the next one, so two stale callbacks can
never race each other.
"""

from __future__ import annotations

import asyncio
import threading
from collections.abc import Callable

from mac2mqtt.logging_abstraction import get_logger

logger = get_logger(__name__)


class SingleShotTimer:
    """Run ``callback`` once, ``delay`` seconds after the latest ``arm()``.

    Must be armed from a thread running an asyncio event loop (or with an
    explicit ``loop``); the callback runs on that loop.
    """

    lp: str = "timer:"

    def __init__(
        self,
        delay: float,
        callback: Callable[[], None],
        name: str = "debounce",
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        self.delay: float = delay
        self.name: str = name
        self._callback: Callable[[], None] = callback
        self._loop: asyncio.AbstractEventLoop | None = loop
        self._handle: asyncio.TimerHandle | None = None
        self._generation: int = 0
        self._lock: threading.Lock = threading.Lock()

    @property
    def pending(self) -> bool:
        with self._lock:
            return self._handle is not None

    def arm(self, delay: float | None = None) -> None:
        """(Re)start the countdown, cancelling any pending expiry first."""
        loop = self._loop or asyncio.get_running_loop()
        with self._lock:
            if self._handle is not None:
                self._handle.cancel()
            self._generation += 1
            self._handle = loop.call_later(
                self.delay if delay is None else delay,
                self._fire,
                self._generation,
            )

    def cancel(self) -> bool:
        """Cancel the pending expiry. Returns True if one was pending."""
        with self._lock:
            if self._handle is None:
                return False
            self._handle.cancel()
            self._handle = None
            self._generation += 1
            return True

    def _fire(self, generation: int) -> None:
        with self._lock:
            # a cancel/arm that raced the loop already superseded this expiry
            if generation != self._generation:
                return
            self._handle = None
        try:
            self._callback()
        except Exception:
            logger.exception("%s%s callback failed", self.lp, self.name)
