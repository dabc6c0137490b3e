"""
Price Sweep - Retry Policy

One retry abstraction shared by the token exchange, the listing fetcher and
the database layer: max attempts, a backoff function of the attempt number,
and a predicate deciding which errors are worth another attempt.
"""

from __future__ import annotations

import asyncio
import random
from typing import Awaitable, Callable, TypeVar

import structlog

logger = structlog.get_logger(__name__)

T = TypeVar("T")

BackoffFn = Callable[[int], float]
RetryablePredicate = Callable[[BaseException], bool]
SleepFn = Callable[[float], Awaitable[None]]


def jittered_exponential(
    base: float = 0.3,
    jitter: float = 0.7,
    cap: float = 5.0,
) -> BackoffFn:
    """base * 2^(attempt-1), capped, plus U(0, jitter) seconds."""

    def backoff(attempt: int) -> float:
        return min(cap, base * (2 ** (attempt - 1))) + random.uniform(0, jitter)

    return backoff


def jittered_linear(step: float = 0.2, jitter: float = 0.3) -> BackoffFn:
    """step * attempt plus U(0, jitter) seconds."""

    def backoff(attempt: int) -> float:
        return step * attempt + random.uniform(0, jitter)

    return backoff


class RetryPolicy:
    """
    Run an async operation, retrying retryable failures with backoff.

    Usage:
        policy = RetryPolicy(max_attempts=5, backoff=jittered_linear(),
                             retryable=lambda e: isinstance(e, TimeoutError))
        result = await policy.run(lambda: fetch())
    """

    def __init__(
        self,
        max_attempts: int,
        backoff: BackoffFn,
        retryable: RetryablePredicate,
        sleep: SleepFn | None = None,
        name: str = "operation",
    ) -> None:
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {max_attempts}")
        self.max_attempts = max_attempts
        self.backoff = backoff
        self.retryable = retryable
        self.name = name
        self._sleep = sleep or asyncio.sleep

    async def run(self, operation: Callable[[], Awaitable[T]]) -> T:
        attempt = 0
        while True:
            attempt += 1
            try:
                return await operation()
            except Exception as e:
                if attempt >= self.max_attempts or not self.retryable(e):
                    raise
                delay = self.backoff(attempt)
                logger.warning(
                    "retry_scheduled",
                    operation=self.name,
                    attempt=attempt,
                    max_attempts=self.max_attempts,
                    wait_seconds=round(delay, 3),
                    error=str(e),
                    error_type=type(e).__name__,
                )
                await self._sleep(delay)
