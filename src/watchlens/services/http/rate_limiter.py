"""
Courtesy pacing for outbound page requests.
"""

from __future__ import annotations

import asyncio
import time
from typing import Callable


class RateLimiter:
    """
    Minimum-interval limiter for controlling async request throughput.

    Each ``acquire()`` returns no earlier than ``min_interval_seconds``
    after the previous one, so dispatched requests are spaced out even
    when many tasks are waiting. Requests that already started are not
    affected.

    Parameters
    ----------
    min_interval_seconds : float
        Minimum spacing between request starts. Zero disables pacing.
    clock : Callable[[], float] | None, optional
        Monotonic clock (default: ``time.monotonic``).

    Examples
    --------
    >>> limiter = RateLimiter.from_delay_ms(1000)
    >>> await limiter.acquire()  # first call proceeds immediately
    """

    def __init__(
        self,
        min_interval_seconds: float,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self._interval = max(0.0, min_interval_seconds)
        self._clock = clock or time.monotonic
        self._next_allowed: float | None = None
        self._lock = asyncio.Lock()

    @classmethod
    def from_delay_ms(cls, delay_ms: int) -> RateLimiter:
        """Build a limiter from a delay in milliseconds."""
        return cls(delay_ms / 1000.0)

    @property
    def min_interval_seconds(self) -> float:
        """Configured spacing between request starts."""
        return self._interval

    async def acquire(self) -> None:
        """
        Wait for the next request slot.

        Safe for concurrent async callers via an internal ``asyncio.Lock``.
        """
        if self._interval <= 0:
            return

        async with self._lock:
            now = self._clock()
            if self._next_allowed is not None and now < self._next_allowed:
                await asyncio.sleep(self._next_allowed - now)
                now = self._clock()
            self._next_allowed = now + self._interval
