"""
Price Sweep - Listing Fetcher

Runs the search plan for one catalog item and accumulates price samples.

Per query, pages are fetched until the target sample count is reached, the
page cap is hit, or the API reports no next page. Failure handling per page:

- 429: bump the CooldownCounter. At the threshold, sleep Retry-After (or the
  configured cooldown) and reset the counter; below it, sleep a short random
  backoff. Either way the same page is tried again.
- network / 5xx: retried through the RetryPolicy up to PAGE_RETRY_CAP times,
  then the query is abandoned and the next query in the plan is tried.
- 401: propagates as TokenExpiredError; the orchestrator owns token refresh.

The ItemBudget deadline is checked before every page and after every sleep;
once it passes the whole item is abandoned with PerItemTimeout.
"""

from __future__ import annotations

import asyncio
import random
import time
from decimal import Decimal
from typing import Awaitable, Callable, Sequence

import structlog

from pricesweep.config import Settings, settings as default_settings
from pricesweep.engine.listing_prices import extract_prices
from pricesweep.errors import (
    PerItemTimeout,
    QueryFailedError,
    ThrottleError,
    TransientNetworkError,
)
from pricesweep.models.listing import BrowseSearchPage
from pricesweep.pipeline.ebay import BrowseClient
from pricesweep.pipeline.retry import RetryPolicy, jittered_exponential

logger = structlog.get_logger(__name__)

THROTTLE_BACKOFF_MIN_SECONDS = 0.5
THROTTLE_BACKOFF_MAX_SECONDS = 1.5

SleepFn = Callable[[float], Awaitable[None]]


class CooldownCounter:
    """Consecutive 429 responses within one item's fetch session."""

    def __init__(self) -> None:
        self.count = 0

    def hit(self) -> int:
        self.count += 1
        return self.count

    def reset(self) -> None:
        self.count = 0


class ItemBudget:
    """Wall-clock budget for one item across all of its queries and pages."""

    def __init__(
        self,
        seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.seconds = seconds
        self._clock = clock
        self.started_at = clock()

    @property
    def elapsed(self) -> float:
        return self._clock() - self.started_at

    def expired(self) -> bool:
        return self.elapsed > self.seconds

    def check(self) -> None:
        if self.expired():
            raise PerItemTimeout(
                f"per-item budget of {self.seconds:.0f}s exceeded after {self.elapsed:.1f}s"
            )


class FetchSession:
    """
    Sample accumulator for one item.

    Usage:
        session = FetchSession(browse, token, budget)
        await session.collect(primaries, fallbacks)
        stats = aggregate(session.samples)
    """

    def __init__(
        self,
        browse: BrowseClient,
        token: str,
        budget: ItemBudget,
        config: Settings | None = None,
        sleep: SleepFn | None = None,
        card_id: str = "",
    ) -> None:
        self._browse = browse
        self._token = token
        self._budget = budget
        self._settings = config or default_settings
        self._sleep = sleep or asyncio.sleep
        self._card_id = card_id
        self._page_retry = RetryPolicy(
            max_attempts=self._settings.PAGE_RETRY_CAP + 1,
            backoff=jittered_exponential(),
            retryable=lambda e: isinstance(e, TransientNetworkError),
            sleep=self._sleep,
            name="ebay_search_page",
        )

        self.cooldown = CooldownCounter()
        self.samples: list[Decimal] = []
        self.sample_url: str | None = None
        self.query_used: str = ""
        self.queries_tried: list[str] = []
        self.pages_fetched = 0

    @property
    def target(self) -> int:
        return self._settings.RESULTS_PER_CARD

    async def _sleep_within_budget(self, seconds: float) -> None:
        await self._sleep(seconds)
        self._budget.check()

    async def _fetch_page(self, query: str, offset: int, limit: int) -> BrowseSearchPage:
        async def attempt() -> BrowseSearchPage:
            self._budget.check()
            return await self._browse.search(self._token, query, offset, limit)

        return await self._page_retry.run(attempt)

    async def _on_throttle(self, error: ThrottleError) -> None:
        consecutive = self.cooldown.hit()
        if consecutive >= self._settings.COOLDOWN_THRESHOLD:
            wait = (
                error.retry_after
                if error.retry_after is not None
                else self._settings.COOLDOWN_SECONDS
            )
            logger.warning(
                "ebay_cooldown",
                card_id=self._card_id,
                consecutive_429=consecutive,
                wait_seconds=round(wait, 1),
            )
            await self._sleep(wait)
            self.cooldown.reset()
            self._budget.check()
        else:
            await self._sleep_within_budget(
                random.uniform(THROTTLE_BACKOFF_MIN_SECONDS, THROTTLE_BACKOFF_MAX_SECONDS)
            )

    async def run_query(self, query: str) -> int:
        """
        Page through one query. Returns the number of samples it added.

        Raises:
            PerItemTimeout: Item budget exhausted.
            TokenExpiredError: Bearer token rejected.
        """
        self.queries_tried.append(query)
        before = len(self.samples)
        offset = 0
        pages = 0

        while pages < self._settings.MAX_PAGES and len(self.samples) < self.target:
            limit = max(1, min(self._settings.PAGE_SIZE, self.target - len(self.samples)))
            if self._settings.TRACE_PAGES:
                logger.info("ebay_page", card_id=self._card_id, query=query, offset=offset)

            try:
                page = await self._fetch_page(query, offset, limit)
            except ThrottleError as e:
                await self._on_throttle(e)
                continue
            except (TransientNetworkError, QueryFailedError) as e:
                logger.warning(
                    "ebay_query_abandoned",
                    card_id=self._card_id,
                    query=query,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                break

            self.cooldown.reset()
            self.pages_fetched += 1
            extracted = extract_prices(page)
            if self.sample_url is None and extracted.sample_url:
                self.sample_url = extracted.sample_url
            if extracted.prices and not self.query_used:
                self.query_used = query
            self.samples.extend(extracted.prices)

            offset += page.limit or limit
            pages += 1
            if not page.next:
                break

        return len(self.samples) - before

    async def collect(self, primaries: Sequence[str], fallbacks: Sequence[str]) -> list[Decimal]:
        """
        Primary queries first; the fallback cascade only when they produced
        fewer than FALLBACK_SAMPLE_THRESHOLD samples, and only until the
        target sample count is reached.
        """
        threshold = self._settings.FALLBACK_SAMPLE_THRESHOLD

        for query in primaries:
            await self.run_query(query)
            if len(self.samples) >= threshold:
                break
            self._budget.check()

        if len(self.samples) < threshold:
            for query in fallbacks:
                self._budget.check()
                await self.run_query(query)
                if len(self.samples) >= self.target:
                    break

        return self.samples
