"""Backoff between broker connect cycles."""

from __future__ import annotations

import random


class ReconnectBackoff:
    """Exponential backoff with jitter for reconnect waits.

    Formula: ``min(base * 2 ** failures, max) + uniform(0, delay * jitter)``.
    ``failures`` is reset by the caller after a successful connect.
    """

    def __init__(
        self,
        base_delay_seconds: float = 5.0,
        max_delay_seconds: float = 60.0,
        jitter_factor: float = 0.1,
    ) -> None:
        self.base_delay_seconds: float = base_delay_seconds
        self.max_delay_seconds: float = max(max_delay_seconds, base_delay_seconds)
        self.jitter_factor: float = jitter_factor
        self.failures: int = 0

    def next_delay(self) -> float:
        """Delay for the current failure count, then count one more failure."""
        delay = min(self.base_delay_seconds * (2**self.failures), self.max_delay_seconds)
        self.failures += 1
        return delay + random.uniform(0, delay * self.jitter_factor)

    def reset(self) -> None:
        self.failures = 0

    def __repr__(self) -> str:
        return (
            f"ReconnectBackoff(base={self.base_delay_seconds}s, "
            f"max={self.max_delay_seconds}s, failures={self.failures})"
        )
