"""
Price Sweep - Persistence Layer

Schema-aware idempotent write of one PriceRecord. The only mutation point for
the price tables.

Columns written are limited to those the SchemaProfile reports as present.
With a real uniqueness constraint the write is a single
INSERT ... ON CONFLICT (key) DO UPDATE. Without one it is UPDATE by key,
followed by INSERT when no row matched; a table holding only key columns gets
an existence check instead of the UPDATE. That second path can race when two
writers target the same key at once.
"""

from __future__ import annotations

from datetime import datetime, timezone
from functools import lru_cache
from typing import Any, Callable

import structlog
from sqlalchemy import and_, insert, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.sql.expression import TableClause

from pricesweep.config import PRICE_METHOD, Settings, settings as default_settings
from pricesweep.engine.stats import PriceStats
from pricesweep.models.price_tables import GAME_COLUMN, TIMESTAMP_COLUMNS
from pricesweep.pipeline.database import Database
from pricesweep.pipeline.schema import SchemaProfile, price_table_clause

logger = structlog.get_logger(__name__)

_CONFLICT_INSERTS: dict[str, Callable[..., Any]] = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@lru_cache(maxsize=None)
def _table_for(profile: SchemaProfile) -> TableClause:
    return price_table_clause(profile)


def key_values(profile: SchemaProfile, item_id: str) -> dict[str, Any]:
    values: dict[str, Any] = {}
    for name in profile.key_columns:
        if name == profile.id_column:
            values[name] = item_id
        elif name == GAME_COLUMN:
            values[name] = profile.game_value
        else:
            values[name] = None
    return values


def value_params(
    profile: SchemaProfile,
    stats: PriceStats,
    sample_url: str | None,
    query_used: str | None,
    currency: str,
    now: datetime,
) -> dict[str, Any]:
    """Non-key column values, restricted to columns present in the table."""
    candidates: dict[str, Any] = {
        "low": stats.low,
        "median": stats.median,
        "high": stats.high,
        "sample_count": stats.sample,
        "currency": currency,
        "sample_url": sample_url,
    }
    if profile.has("method"):
        candidates["method"] = PRICE_METHOD
    elif profile.has("basis"):
        candidates["basis"] = PRICE_METHOD
    candidates["query"] = query_used or ""
    for name in TIMESTAMP_COLUMNS:
        candidates[name] = now

    return {
        name: value
        for name, value in candidates.items()
        if profile.has(name) and name not in profile.key_columns
    }


class PriceWriter:
    """
    Usage:
        writer = PriceWriter(db)
        await writer.upsert(profile, "LOB-001", stats, url, "Blue-Eyes LOB YGO")
    """

    def __init__(
        self,
        db: Database,
        config: Settings | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._db = db
        self._settings = config or default_settings
        self._clock = clock

    def build_upsert(self, profile: SchemaProfile, keys: dict[str, Any], values: dict[str, Any]):
        conflict_insert = _CONFLICT_INSERTS[self._db.dialect]
        tbl = _table_for(profile)
        stmt = conflict_insert(tbl).values({**keys, **values})
        if not values:
            return stmt.on_conflict_do_nothing(index_elements=list(profile.key_columns))
        return stmt.on_conflict_do_update(
            index_elements=list(profile.key_columns),
            set_={name: stmt.excluded[name] for name in values},
        )

    def build_update(self, profile: SchemaProfile, keys: dict[str, Any], values: dict[str, Any]):
        tbl = _table_for(profile)
        return (
            update(tbl)
            .where(and_(*(tbl.c[name] == value for name, value in keys.items())))
            .values(values)
        )

    def build_insert(self, profile: SchemaProfile, keys: dict[str, Any], values: dict[str, Any]):
        return insert(_table_for(profile)).values({**keys, **values})

    def build_exists(self, profile: SchemaProfile, keys: dict[str, Any]):
        tbl = _table_for(profile)
        return (
            select(*(tbl.c[name] for name in keys))
            .where(and_(*(tbl.c[name] == value for name, value in keys.items())))
            .limit(1)
        )

    async def upsert(
        self,
        profile: SchemaProfile,
        item_id: str,
        stats: PriceStats,
        sample_url: str | None,
        query_used: str | None,
    ) -> None:
        """
        Write the price row for item_id.

        Raises:
            PersistenceError: Non-transient database failure.
        """
        keys = key_values(profile, item_id)
        values = value_params(
            profile,
            stats,
            sample_url,
            query_used,
            currency=self._settings.PRICE_CURRENCY or "USD",
            now=self._clock(),
        )

        if profile.has_unique and self._db.dialect in _CONFLICT_INSERTS:
            await self._db.execute(self.build_upsert(profile, keys, values))
        elif values:
            updated = await self._db.execute(self.build_update(profile, keys, values))
            if updated == 0:
                await self._db.execute(self.build_insert(profile, keys, values))
        elif not await self._db.fetch_all(self.build_exists(profile, keys)):
            # Key-only table: the row itself is the whole record
            await self._db.execute(self.build_insert(profile, keys, values))

        logger.debug(
            "price_row_written",
            table=profile.table,
            card_id=item_id,
            sample_count=stats.sample,
            median=str(stats.median) if stats.median is not None else None,
        )
