"""Tests for the global token-bucket rate limiter."""

from __future__ import annotations

import pytest

from pricesweep.pipeline.rate_limiter import RateLimiter
from tests.conftest import FakeClock


class TestRateLimiter:
    @pytest.mark.asyncio
    async def test_first_acquire_waits_for_a_token(self, clock: FakeClock) -> None:
        limiter = RateLimiter(60, clock=clock, sleep=clock.sleep)
        await limiter.acquire()

        # 60/min = one token per second
        assert sum(clock.sleeps) >= 1.0 - 1e-9
        assert limiter.granted == 1

    @pytest.mark.asyncio
    async def test_grants_bounded_per_window(self, clock: FakeClock) -> None:
        per_minute = 12
        limiter = RateLimiter(per_minute, clock=clock, sleep=clock.sleep, poll_interval=0.5)
        start = clock()

        grants = 0
        while True:
            await limiter.acquire()
            if clock() - start > 60:
                break
            grants += 1

        assert grants <= per_minute + 1
        assert grants >= per_minute - 1

    @pytest.mark.asyncio
    async def test_bucket_capped_at_rate(self, clock: FakeClock) -> None:
        limiter = RateLimiter(10, clock=clock, sleep=clock.sleep)
        clock.advance(3600)

        for _ in range(10):
            await limiter.acquire()
        assert clock.sleeps == []

        await limiter.acquire()
        assert clock.sleeps, "eleventh request must wait for a refill"

    @pytest.mark.asyncio
    async def test_zero_rate_disables_limiting(self, clock: FakeClock) -> None:
        limiter = RateLimiter(0, clock=clock, sleep=clock.sleep)
        for _ in range(100):
            await limiter.acquire()

        assert not limiter.enabled
        assert clock.sleeps == []

    def test_negative_rate_rejected(self) -> None:
        with pytest.raises(ValueError):
            RateLimiter(-1)
