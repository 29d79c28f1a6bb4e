"""
Timing for slow host calls.

Capability calls shell out to the OS and publish bursts fan out to many
topics; both are wrapped so a slow ``osascript`` or a stalled broker shows up
in the logs with its duration.
"""

from __future__ import annotations

import functools
import time
from collections.abc import Awaitable, Callable
from typing import ParamSpec, TypeVar

__all__ = [
    "measure_time",
    "timed_async",
]

P = ParamSpec("P")
T = TypeVar("T")


def measure_time(start_time: float) -> float:
    """Milliseconds elapsed since ``start_time`` (a ``time.perf_counter()`` value)."""
    return (time.perf_counter() - start_time) * 1000


def timed_async(
    operation_name: str | None = None,
) -> Callable[[Callable[P, Awaitable[T]]], Callable[P, Awaitable[T]]]:
    """
    Time an async function; warn when it exceeds MAC2MQTT_PERF_THRESHOLD_MS.

    Disabled entirely when MAC2MQTT_PERF_TRACKING is off.

    Example:
        @timed_async("set_volume")
        async def set_volume(self, value: int) -> None:
            ...
    """

    def decorator(func: Callable[P, Awaitable[T]]) -> Callable[P, Awaitable[T]]:
        @functools.wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            from mac2mqtt.const import MAC2MQTT_PERF_THRESHOLD_MS, MAC2MQTT_PERF_TRACKING
            from mac2mqtt.logging_abstraction import get_logger

            if not MAC2MQTT_PERF_TRACKING:
                return await func(*args, **kwargs)

            op_name = operation_name or func.__name__
            start_time = time.perf_counter()
            try:
                return await func(*args, **kwargs)
            finally:
                elapsed_ms = measure_time(start_time)
                logger = get_logger(__name__)
                context = {"operation": op_name, "duration_ms": round(elapsed_ms, 2)}
                if elapsed_ms > MAC2MQTT_PERF_THRESHOLD_MS:
                    logger.warning(
                        "[%s] took %.1fms (threshold: %dms)",
                        op_name,
                        elapsed_ms,
                        MAC2MQTT_PERF_THRESHOLD_MS,
                        extra=context,
                    )
                else:
                    logger.debug("[%s] took %.1fms", op_name, elapsed_ms, extra=context)

        return wrapper

    return decorator
