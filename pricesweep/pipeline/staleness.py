"""
Price Sweep - Staleness Selector

Decides which catalog items need a refresh this run. An item is stale when it
has no price row, its row has sample_count = 0, or its last refresh is older
than STALE_DAYS.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Callable

import structlog
from sqlalchemy import Text, and_, cast, or_, select, true
from sqlalchemy.sql.expression import column, table

from pricesweep.config import Game
from pricesweep.models.price_tables import GAME_COLUMN
from pricesweep.pipeline.catalog import CatalogLoader
from pricesweep.pipeline.database import Database
from pricesweep.pipeline.persistence import utcnow
from pricesweep.pipeline.schema import SchemaProfile, price_table_clause

logger = structlog.get_logger(__name__)


class StalenessSelector:
    """
    Usage:
        selector = StalenessSelector(db, catalog)
        stale_ids = await selector.list_stale(Game.POKEMON, profile, stale_days=7)
    """

    def __init__(
        self,
        db: Database,
        catalog: CatalogLoader,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._db = db
        self._catalog = catalog
        self._clock = clock

    async def list_stale(self, game: Game, profile: SchemaProfile, stale_days: int) -> list[str]:
        source = await self._catalog.source(game)
        if source is None:
            return []

        catalog_tbl = table(source.table, column(source.id_column))
        catalog_id = cast(catalog_tbl.c[source.id_column], Text)
        prices = price_table_clause(profile)

        join_on = []
        for name in profile.key_columns:
            if name == profile.id_column:
                join_on.append(prices.c[name] == catalog_id)
            elif name == GAME_COLUMN:
                join_on.append(prices.c[name] == profile.game_value)

        stale = [prices.c[profile.key_columns[0]].is_(None)]
        freshness = []
        if profile.has("sample_count"):
            freshness.append(prices.c.sample_count == 0)
        refreshed = profile.refreshed_column
        if refreshed:
            cutoff = self._clock() - timedelta(days=stale_days)
            freshness.append(prices.c[refreshed] < cutoff)
        # No freshness columns at all: every row counts as stale
        stale.extend(freshness or [true()])

        stmt = (
            select(catalog_tbl.c[source.id_column].label("id"))
            .select_from(catalog_tbl.outerjoin(prices, and_(*join_on)))
            .where(or_(*stale))
        )
        rows = await self._db.fetch_all(stmt)
        stale_ids = [str(row.id) for row in rows]

        logger.info(
            "stale_items_selected",
            game=game.value,
            table=profile.table,
            stale_days=stale_days,
            count=len(stale_ids),
        )
        return stale_ids
