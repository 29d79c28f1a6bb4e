"""Correlation IDs that follow one unit of work through the logs.

A unit of work is an inbound command, a connect cycle or a publish burst.
IDs live in a context variable so concurrent asyncio tasks never see each
other's IDs.
"""

from __future__ import annotations

import contextvars
import uuid
from collections.abc import Generator
from contextlib import contextmanager

__all__ = [
    "correlation_context",
    "ensure_correlation_id",
    "get_correlation_id",
    "new_correlation_id",
]

_correlation_id: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "mac2mqtt_correlation_id",
    default=None,
)


def new_correlation_id(kind: str | None = None) -> str:
    """Return a fresh ID, optionally prefixed with the kind of work (``cmd-1a2b...``)."""
    token = uuid.uuid4().hex
    return f"{kind}-{token}" if kind else token


def get_correlation_id() -> str | None:
    return _correlation_id.get()


@contextmanager
def correlation_context(correlation_id: str | None = None, kind: str | None = None) -> Generator[str]:
    """Scope a correlation ID; the previous one is restored on exit.

    Example:
        with correlation_context(kind="cmd") as corr_id:
            logger.info("Handling command")  # carries corr_id

    """
    cid = correlation_id or new_correlation_id(kind)
    token = _correlation_id.set(cid)
    try:
        yield cid
    finally:
        _correlation_id.reset(token)


def ensure_correlation_id() -> str:
    """Return the current ID, creating one if this context has none (task entry points)."""
    current = _correlation_id.get()
    if current is None:
        current = new_correlation_id()
        _correlation_id.set(current)
    return current
