"""
Price Sweep - Rate Limiter

Global token bucket pacing every outbound marketplace request. One instance is
shared by all workers; it is the only pacing authority in the process.

The bucket starts empty, so the very first acquire() waits for one token to
accrue. Capacity is R tokens, refilled continuously at R per minute.
"""

from __future__ import annotations

import asyncio
import time
from typing import Awaitable, Callable

DEFAULT_POLL_INTERVAL_SECONDS = 0.2


class RateLimiter:
    """
    Token bucket with an injectable clock and sleep.

    Args:
        per_minute: Requests per minute. 0 disables limiting.
        clock: Monotonic clock in seconds.
        sleep: Async sleep used while waiting for a token.
        poll_interval: Seconds between refill checks while empty.
    """

    def __init__(
        self,
        per_minute: int,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] | None = None,
        poll_interval: float = DEFAULT_POLL_INTERVAL_SECONDS,
    ) -> None:
        if per_minute < 0:
            raise ValueError(f"per_minute must be >= 0, got {per_minute}")
        self.per_minute = per_minute
        self.poll_interval = poll_interval
        self._clock = clock
        self._sleep = sleep or asyncio.sleep
        self.tokens: float = 0.0
        self.last_refill: float = clock()
        self.granted = 0

    @property
    def enabled(self) -> bool:
        return self.per_minute > 0

    def _refill(self) -> None:
        now = self._clock()
        elapsed = now - self.last_refill
        if elapsed > 0:
            self.tokens = min(
                float(self.per_minute),
                self.tokens + elapsed * self.per_minute / 60.0,
            )
            self.last_refill = now

    async def acquire(self) -> None:
        """Wait until a token is available, then consume it."""
        if not self.enabled:
            return
        while True:
            self._refill()
            if self.tokens >= 1:
                self.tokens -= 1
                self.granted += 1
                return
            await self._sleep(self.poll_interval)
