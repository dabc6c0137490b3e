"""
Price Sweep - Catalog Loader

Reads catalog items from the externally owned card tables. Their shapes vary
by game and by deployment, so optional columns are discovered by reflection
and only selected when present.

    pokemon: tcg_cards (id, name, number, collector_number, "set.name", "set.id")
    ygo:     ygo_cards + ygo_card_sets (MIN set_code / set_name / set_num per card)
    mtg:     mtg_cards, else scryfall_cards (id, name, collector_number, set_code, set_name)
"""

from __future__ import annotations

from typing import Any, NamedTuple

import structlog
from sqlalchemy import func, inspect, select
from sqlalchemy.engine import Connection
from sqlalchemy.sql.expression import column, table

from pricesweep.config import Game
from pricesweep.models.catalog import CatalogItem
from pricesweep.pipeline.database import Database

logger = structlog.get_logger(__name__)

YGO_SETS_TABLE = "ygo_card_sets"

_CANDIDATE_TABLES: dict[Game, tuple[str, ...]] = {
    Game.POKEMON: ("tcg_cards",),
    Game.YGO: ("ygo_cards",),
    Game.MTG: ("mtg_cards", "scryfall_cards"),
}

_ID_COLUMNS: dict[str, str] = {
    "tcg_cards": "id",
    "ygo_cards": "card_id",
    "mtg_cards": "id",
    "scryfall_cards": "id",
}

# source column -> CatalogItem field
_OPTIONAL_COLUMNS: dict[str, dict[str, str]] = {
    "tcg_cards": {
        "number": "number",
        "collector_number": "collector_number",
        "set.name": "set_name",
        "set.id": "set_code",
    },
    "mtg_cards": {
        "collector_number": "collector_number",
        "set_code": "set_code",
        "set_name": "set_name",
    },
    "scryfall_cards": {
        "collector_number": "collector_number",
        "set_code": "set_code",
        "set_name": "set_name",
    },
}


class CatalogSource(NamedTuple):
    table: str
    id_column: str


def _existing_tables(sync_conn: Connection, names: tuple[str, ...]) -> list[str]:
    inspector = inspect(sync_conn)
    return [name for name in names if inspector.has_table(name)]


def _column_names(sync_conn: Connection, table_name: str) -> set[str]:
    return {c["name"] for c in inspect(sync_conn).get_columns(table_name)}


class CatalogLoader:
    """
    Usage:
        loader = CatalogLoader(db)
        items = await loader.load(Game.MTG)
    """

    def __init__(self, db: Database) -> None:
        self._db = db

    async def source(self, game: Game) -> CatalogSource | None:
        """First existing catalog table for the game, or None."""
        found = await self._db.run_sync(_existing_tables, _CANDIDATE_TABLES[game])
        if not found:
            return None
        return CatalogSource(table=found[0], id_column=_ID_COLUMNS[found[0]])

    async def load(self, game: Game) -> list[CatalogItem]:
        source = await self.source(game)
        if source is None:
            logger.warning(
                "catalog_table_missing",
                game=game.value,
                expected=list(_CANDIDATE_TABLES[game]),
            )
            return []

        if game is Game.YGO:
            rows = await self._load_ygo(source)
        else:
            rows = await self._load_flat(source)

        items = [CatalogItem(game=game, **row) for row in rows]
        logger.info("catalog_loaded", game=game.value, table=source.table, count=len(items))
        return items

    async def _load_flat(self, source: CatalogSource) -> list[dict[str, Any]]:
        present = await self._db.run_sync(_column_names, source.table)
        optional = {
            src: field
            for src, field in _OPTIONAL_COLUMNS.get(source.table, {}).items()
            if src in present
        }
        tbl = table(
            source.table,
            column(source.id_column),
            column("name"),
            *(column(src) for src in optional),
        )
        stmt = select(
            tbl.c[source.id_column].label("id"),
            tbl.c["name"].label("name"),
            *(tbl.c[src].label(field) for src, field in optional.items()),
        )
        rows = await self._db.fetch_all(stmt)

        items = []
        for row in rows:
            data = dict(row._mapping)
            # tcg_cards carries either number or collector_number
            if data.get("number") is None and data.get("collector_number") is not None:
                data["number"] = data["collector_number"]
            items.append(data)
        return items

    async def _load_ygo(self, source: CatalogSource) -> list[dict[str, Any]]:
        cards = table(source.table, column("card_id"), column("name"))
        has_sets = bool(await self._db.run_sync(_existing_tables, (YGO_SETS_TABLE,)))

        if not has_sets:
            stmt = select(cards.c.card_id.label("id"), cards.c["name"])
            return [dict(row._mapping) for row in await self._db.fetch_all(stmt)]

        set_columns = await self._db.run_sync(_column_names, YGO_SETS_TABLE)
        has_set_num = "set_num" in set_columns
        sets = table(
            YGO_SETS_TABLE,
            column("card_id"),
            column("set_code"),
            column("set_name"),
            *([column("set_num")] if has_set_num else []),
        )
        selected = [
            cards.c.card_id.label("id"),
            cards.c["name"],
            func.min(sets.c.set_code).label("set_code"),
            func.min(sets.c.set_name).label("set_name"),
        ]
        if has_set_num:
            selected.append(func.min(sets.c.set_num).label("set_num"))

        stmt = (
            select(*selected)
            .select_from(cards.outerjoin(sets, sets.c.card_id == cards.c.card_id))
            .group_by(cards.c.card_id, cards.c["name"])
        )
        return [dict(row._mapping) for row in await self._db.fetch_all(stmt)]
