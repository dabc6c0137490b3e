"""Tests for catalog loading from the external card tables."""

from __future__ import annotations

import pytest
from sqlalchemy.ext.asyncio import AsyncEngine

from pricesweep.config import Game
from pricesweep.pipeline.catalog import CatalogLoader
from pricesweep.pipeline.database import Database
from tests.conftest import run_ddl


class TestCatalogLoader:
    @pytest.mark.asyncio
    async def test_pokemon_optional_columns(self, engine: AsyncEngine, db: Database) -> None:
        await run_ddl(
            engine,
            """
            CREATE TABLE tcg_cards (
                id TEXT PRIMARY KEY,
                name TEXT,
                collector_number TEXT,
                "set.name" TEXT,
                "set.id" TEXT
            )
            """,
            """
            INSERT INTO tcg_cards (id, name, collector_number, "set.name", "set.id")
            VALUES ('sv4pt5-148', 'Charizard ex', '148', 'Paldean Fates', 'sv4pt5')
            """,
        )
        items = await CatalogLoader(db).load(Game.POKEMON)

        assert len(items) == 1
        item = items[0]
        assert item.id == "sv4pt5-148"
        assert item.game is Game.POKEMON
        assert item.number == "148"
        assert item.set_code == "sv4pt5"
        assert item.set_name == "Paldean Fates"

    @pytest.mark.asyncio
    async def test_minimal_table(self, engine: AsyncEngine, db: Database) -> None:
        await run_ddl(
            engine,
            "CREATE TABLE tcg_cards (id TEXT PRIMARY KEY, name TEXT)",
            "INSERT INTO tcg_cards (id, name) VALUES ('xy5-1', 'Weedle')",
        )
        items = await CatalogLoader(db).load(Game.POKEMON)

        assert [(i.id, i.name, i.number) for i in items] == [("xy5-1", "Weedle", None)]

    @pytest.mark.asyncio
    async def test_ygo_joins_first_set(self, engine: AsyncEngine, db: Database) -> None:
        await run_ddl(
            engine,
            "CREATE TABLE ygo_cards (card_id INTEGER PRIMARY KEY, name TEXT)",
            """
            CREATE TABLE ygo_card_sets (
                card_id INTEGER, set_code TEXT, set_name TEXT, set_num TEXT
            )
            """,
            "INSERT INTO ygo_cards VALUES (89631139, 'Blue-Eyes White Dragon'), (1, 'Lonely')",
            """
            INSERT INTO ygo_card_sets VALUES
                (89631139, 'SDK', 'Starter Deck: Kaiba', 'EN001'),
                (89631139, 'LOB', 'Legend of Blue Eyes White Dragon', 'EN001')
            """,
        )
        items = {i.id: i for i in await CatalogLoader(db).load(Game.YGO)}

        assert items["89631139"].set_code == "LOB"
        assert items["89631139"].set_num == "EN001"
        assert items["1"].set_code is None

    @pytest.mark.asyncio
    async def test_mtg_falls_back_to_scryfall(self, engine: AsyncEngine, db: Database) -> None:
        await run_ddl(
            engine,
            """
            CREATE TABLE scryfall_cards (
                id TEXT PRIMARY KEY, name TEXT, collector_number TEXT, set_code TEXT
            )
            """,
            "INSERT INTO scryfall_cards VALUES ('abc', 'Lightning Bolt', '161', 'lea')",
        )
        loader = CatalogLoader(db)
        source = await loader.source(Game.MTG)
        items = await loader.load(Game.MTG)

        assert source is not None and source.table == "scryfall_cards"
        assert items[0].collector_number == "161"
        assert items[0].number == "161"
        assert items[0].set_code == "lea"

    @pytest.mark.asyncio
    async def test_missing_table_returns_empty(self, db: Database) -> None:
        assert await CatalogLoader(db).load(Game.MTG) == []
