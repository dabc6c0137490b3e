"""
Price Sweep - eBay Browse API Client

One request = one page of GET /buy/browse/v1/item_summary/search, gated by the
shared RateLimiter. HTTP outcomes are translated into the sweep's error types
so the fetcher can decide between backoff, cooldown, retry and abandon:

    429            -> ThrottleError (with Retry-After when present)
    401            -> TokenExpiredError
    5xx / network  -> TransientNetworkError
    other non-2xx  -> QueryFailedError
"""

from __future__ import annotations

from typing import Any

import httpx
import structlog
from pydantic import ValidationError

from pricesweep.config import MAX_PAGE_SIZE, Settings, settings as default_settings
from pricesweep.errors import (
    QueryFailedError,
    ThrottleError,
    TokenExpiredError,
    TransientNetworkError,
)
from pricesweep.models.listing import BrowseSearchPage
from pricesweep.pipeline.rate_limiter import RateLimiter

logger = structlog.get_logger(__name__)


def parse_retry_after(value: str | None) -> float | None:
    """Retry-After in seconds; HTTP-date forms are ignored."""
    if value is None:
        return None
    try:
        seconds = float(value)
    except ValueError:
        return None
    return seconds if seconds >= 0 else None


class BrowseClient:
    """
    Browse API search client for active-listing price discovery.

    Usage:
        client = BrowseClient(http_client, rate_limiter)
        page = await client.search(token, "Charizard base1 4 Pokemon TCG")
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        rate_limiter: RateLimiter,
        config: Settings | None = None,
    ) -> None:
        self._client = client
        self._rate_limiter = rate_limiter
        self._settings = config or default_settings

    def _filter(self) -> str | None:
        parts = []
        if self._settings.DELIVERY_COUNTRY:
            parts.append(f"deliveryCountry:{self._settings.DELIVERY_COUNTRY}")
        if self._settings.PRICE_CURRENCY:
            parts.append(f"priceCurrency:{self._settings.PRICE_CURRENCY}")
        if self._settings.BUYING_OPTIONS:
            parts.append(f"buyingOptions:{{{self._settings.BUYING_OPTIONS}}}")
        return ",".join(parts) if parts else None

    def _params(self, query: str, offset: int, limit: int) -> dict[str, str]:
        params = {
            "q": query,
            "category_ids": self._settings.EBAY_CATEGORY_ID,
            "limit": str(min(MAX_PAGE_SIZE, max(1, limit))),
            "offset": str(max(0, offset)),
            "sort": "price",
        }
        filters = self._filter()
        if filters:
            params["filter"] = filters
        return params

    def _headers(self, token: str) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {token}",
            "X-EBAY-C-MARKETPLACE-ID": self._settings.EBAY_MARKETPLACE_ID,
            "Accept": "application/json",
            "User-Agent": self._settings.USER_AGENT,
        }

    async def search(
        self,
        token: str,
        query: str,
        offset: int = 0,
        limit: int = 50,
    ) -> BrowseSearchPage:
        """Fetch one page of results for query."""
        await self._rate_limiter.acquire()

        url = f"{self._settings.EBAY_BROWSE_URL}/item_summary/search"
        params = self._params(query, offset, limit)
        logger.debug("ebay_search_request", query=query, offset=offset, limit=params["limit"])

        try:
            response = await self._client.get(url, headers=self._headers(token), params=params)
        except httpx.TransportError as e:
            raise TransientNetworkError(
                f"Browse search transport error q={query!r}: {e}"
            ) from e

        status = response.status_code
        if status == 429:
            raise ThrottleError(
                f"Browse search throttled q={query!r}",
                retry_after=parse_retry_after(response.headers.get("Retry-After")),
            )
        if status == 401:
            raise TokenExpiredError(f"Browse search unauthorized q={query!r}")
        if status >= 500:
            raise TransientNetworkError(f"Browse search failed: {status} q={query!r}")
        if not response.is_success:
            raise QueryFailedError(
                f"Browse search failed: {status} q={query!r} {response.text[:200]}",
                status_code=status,
            )

        try:
            return BrowseSearchPage.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise QueryFailedError(f"Browse search returned malformed body q={query!r}") from e

    async def rate_preflight(self, token: str) -> dict[str, Any] | None:
        """
        Log the buy.browse rate-limit row from the Analytics API.

        Optional probe; many application keys lack the scope, so any failure is
        logged and ignored.
        """
        try:
            response = await self._client.get(
                self._settings.EBAY_RATE_LIMIT_URL,
                headers={
                    "Authorization": f"Bearer {token}",
                    "Accept": "application/json",
                    "User-Agent": self._settings.USER_AGENT,
                },
            )
        except httpx.HTTPError as e:
            logger.warning("ebay_rate_preflight_error", error=str(e))
            return None

        if not response.is_success:
            logger.warning("ebay_rate_preflight_unavailable", status_code=response.status_code)
            return None

        try:
            data = response.json()
        except ValueError:
            logger.warning("ebay_rate_preflight_malformed")
            return None

        row = next(
            (
                r
                for r in data.get("rateLimits") or []
                if "buy.browse" in str(r.get("apiContext") or "")
            ),
            None,
        )
        if row is None:
            logger.info("ebay_rate_preflight_ok", note="no buy.browse row returned")
            return None

        logger.info(
            "ebay_rate_preflight",
            time_window=row.get("timeWindow"),
            used=row.get("callsWithinLimit"),
            limit=row.get("callLimit"),
            remaining=row.get("callsRemaining"),
        )
        return row
