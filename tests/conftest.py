"""
Price Sweep - Shared pytest Fixtures & Configuration

Provides common fixtures for all test modules:
- File-backed SQLite engine + Database executor (aiosqlite)
- Test Settings with pacing disabled
- Fake monotonic clock and recording sleep
- Browse API response builders
"""

from __future__ import annotations

from decimal import Decimal
from pathlib import Path
from typing import Any, AsyncGenerator

import pytest
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from pricesweep.config import Settings
from pricesweep.pipeline.database import Database


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

pytest_plugins = ("pytest_asyncio",)


@pytest.fixture
def test_settings() -> Settings:
    """Settings isolated from the environment, with no pacing delays."""
    return Settings(
        _env_file=None,
        DATABASE_URL="sqlite+aiosqlite:///:memory:",
        EBAY_APP_ID="test-app-id",
        EBAY_CERT_ID="test-cert-id",
        REQUESTS_PER_MINUTE=0,
        CONCURRENCY=2,
        RESULTS_PER_CARD=10,
        PAGE_SIZE=10,
        MAX_PAGES=2,
        FALLBACK_SAMPLE_THRESHOLD=3,
        COOLDOWN_THRESHOLD=3,
        COOLDOWN_SECONDS=60,
        CARD_TIMEOUT_SECONDS=60,
        PAGE_RETRY_CAP=2,
    )


# ---------------------------------------------------------------------------
# Database Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
async def engine(tmp_path: Path) -> AsyncGenerator[AsyncEngine, None]:
    """
    File-backed SQLite engine, fresh per test.

    A file (not :memory:) so every pooled connection sees the same database
    while workers write concurrently.
    """
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'sweep.db'}",
        echo=False,
    )
    yield engine
    await engine.dispose()


@pytest.fixture
async def db(engine: AsyncEngine) -> Database:
    return Database(engine)


async def run_ddl(engine: AsyncEngine, *statements: str) -> None:
    async with engine.begin() as conn:
        for statement in statements:
            await conn.execute(text(statement))


async def fetch_rows(engine: AsyncEngine, sql: str) -> list[dict[str, Any]]:
    async with engine.begin() as conn:
        result = await conn.execute(text(sql))
        return [dict(row._mapping) for row in result]


# ---------------------------------------------------------------------------
# Time Fixtures
# ---------------------------------------------------------------------------


class FakeClock:
    """Monotonic clock advanced only by the recorded sleeps."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


# ---------------------------------------------------------------------------
# Browse API Payload Builders
# ---------------------------------------------------------------------------


def listing(
    price: str | None,
    shipping: list[str] | None = None,
    url: str | None = "https://www.ebay.com/itm/1",
) -> dict[str, Any]:
    item: dict[str, Any] = {"itemId": "v1|1|0", "title": "card", "itemWebUrl": url}
    if price is not None:
        item["price"] = {"value": price, "currency": "USD"}
    if shipping is not None:
        item["shippingOptions"] = [
            {"shippingCost": {"value": cost, "currency": "USD"}} for cost in shipping
        ]
    return item


def search_page(
    prices: list[str],
    limit: int = 10,
    offset: int = 0,
    has_next: bool = False,
) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "itemSummaries": [
            listing(p, url=f"https://www.ebay.com/itm/{offset + i}")
            for i, p in enumerate(prices)
        ],
        "limit": limit,
        "offset": offset,
        "total": len(prices) + (limit if has_next else 0),
    }
    if has_next:
        payload["next"] = f"https://api.ebay.com/next?offset={offset + limit}"
    return payload


def decimals(*values: str) -> list[Decimal]:
    return [Decimal(v) for v in values]
