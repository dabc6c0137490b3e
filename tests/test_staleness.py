"""Tests for the staleness selector."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy.ext.asyncio import AsyncEngine

from pricesweep.config import Game, Settings
from pricesweep.engine.stats import EMPTY_STATS, PriceStats
from pricesweep.pipeline.catalog import CatalogLoader
from pricesweep.pipeline.database import Database
from pricesweep.pipeline.persistence import PriceWriter
from pricesweep.pipeline.schema import SchemaAdapter
from pricesweep.pipeline.staleness import StalenessSelector
from tests.conftest import run_ddl

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
STATS = PriceStats(low=None, median=Decimal("3.00"), high=None, sample=12)


def _at(moment: datetime):
    return lambda: moment


class TestStalenessSelector:
    @pytest.mark.asyncio
    async def test_selects_missing_zero_and_old_rows(
        self, engine: AsyncEngine, db: Database, test_settings: Settings
    ) -> None:
        await run_ddl(
            engine,
            "CREATE TABLE tcg_cards (id TEXT PRIMARY KEY, name TEXT)",
            """
            INSERT INTO tcg_cards (id, name) VALUES
                ('sv1-1', 'Fresh'),
                ('sv1-2', 'Old'),
                ('sv1-3', 'Zero'),
                ('sv1-4', 'Missing')
            """,
        )
        profile = await SchemaAdapter(db).resolve(Game.POKEMON)

        await PriceWriter(db, test_settings, clock=_at(NOW - timedelta(hours=1))).upsert(
            profile, "sv1-1", STATS, None, "q"
        )
        await PriceWriter(db, test_settings, clock=_at(NOW - timedelta(days=30))).upsert(
            profile, "sv1-2", STATS, None, "q"
        )
        await PriceWriter(db, test_settings, clock=_at(NOW)).upsert(
            profile, "sv1-3", EMPTY_STATS, None, ""
        )

        catalog = CatalogLoader(db)
        selector = StalenessSelector(db, catalog, clock=_at(NOW))
        stale = await selector.list_stale(Game.POKEMON, profile, stale_days=7)

        assert sorted(stale) == ["sv1-2", "sv1-3", "sv1-4"]

    @pytest.mark.asyncio
    async def test_rows_of_other_games_do_not_count(
        self, engine: AsyncEngine, db: Database, test_settings: Settings
    ) -> None:
        await run_ddl(
            engine,
            "CREATE TABLE tcg_cards (id TEXT PRIMARY KEY, name TEXT)",
            "INSERT INTO tcg_cards (id, name) VALUES ('sv1-1', 'Pikachu')",
        )
        profile = await SchemaAdapter(db).resolve(Game.POKEMON)
        await run_ddl(
            engine,
            """
            INSERT INTO tcg_card_prices_ebay (game, card_id, median, sample_count, updated_at)
            VALUES ('other', 'sv1-1', 5, 10, '2026-03-01 11:00:00.000000')
            """,
        )

        selector = StalenessSelector(db, CatalogLoader(db), clock=_at(NOW))
        assert await selector.list_stale(Game.POKEMON, profile, stale_days=7) == ["sv1-1"]

    @pytest.mark.asyncio
    async def test_integer_catalog_ids(
        self, engine: AsyncEngine, db: Database, test_settings: Settings
    ) -> None:
        await run_ddl(
            engine,
            "CREATE TABLE ygo_cards (card_id INTEGER PRIMARY KEY, name TEXT)",
            "INSERT INTO ygo_cards (card_id, name) VALUES (46986414, 'Dark Magician'), (89631139, 'Blue-Eyes')",
        )
        profile = await SchemaAdapter(db).resolve(Game.YGO)
        await PriceWriter(db, test_settings, clock=_at(NOW)).upsert(
            profile, "46986414", STATS, None, "q"
        )

        selector = StalenessSelector(db, CatalogLoader(db), clock=_at(NOW))
        assert await selector.list_stale(Game.YGO, profile, stale_days=7) == ["89631139"]

    @pytest.mark.asyncio
    async def test_missing_catalog_table(self, db: Database) -> None:
        profile = await SchemaAdapter(db).resolve(Game.MTG)
        selector = StalenessSelector(db, CatalogLoader(db), clock=_at(NOW))

        assert await selector.list_stale(Game.MTG, profile, stale_days=7) == []
