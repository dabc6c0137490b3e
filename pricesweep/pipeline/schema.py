"""
Price Sweep - Schema Adapter

Price tables in the wild drift from the canonical layouts (extra columns,
missing columns, no primary key). Instead of assuming a shape, each game's
table is created if absent, then introspected once into an immutable
SchemaProfile that every statement builder works from.

Key selection, in order of preference:
1. a PK/UNIQUE constraint containing the id column (and the game column when
   the table has one),
2. any constraint containing the id column,
3. the id column alone. No real constraint backs it, so has_unique=False and
   writes use update-then-insert.
"""

from __future__ import annotations

from typing import Any, Iterable, NamedTuple

import structlog
from sqlalchemy import MetaData, inspect
from sqlalchemy.engine import Connection
from sqlalchemy.sql.expression import TableClause, column, table

from pricesweep.config import PRICE_LAYOUTS, PRICE_TABLES, Game, PriceLayout
from pricesweep.errors import SchemaError
from pricesweep.models.price_tables import (
    ALLOWED_COLUMNS,
    COLUMN_TYPES,
    GAME_COLUMN,
    ID_COLUMN_CANDIDATES,
    build_price_table,
)
from pricesweep.pipeline.database import Database

logger = structlog.get_logger(__name__)


class SchemaProfile(NamedTuple):
    table: str
    id_column: str
    key_columns: tuple[str, ...]
    has_unique: bool
    columns: frozenset[str]
    game_value: str | None

    def has(self, name: str) -> bool:
        return name in self.columns

    @property
    def refreshed_column(self) -> str | None:
        """Column holding the last-refresh timestamp."""
        for name in ("updated_at", "last_run"):
            if name in self.columns:
                return name
        return None


def price_table_clause(profile: SchemaProfile) -> TableClause:
    """
    Lightweight table construct covering the allow-listed columns present.

    Identifiers outside ALLOWED_COLUMNS are never rendered into SQL.
    """
    names = sorted(profile.columns & ALLOWED_COLUMNS)
    return table(profile.table, *(column(name, COLUMN_TYPES[name]) for name in names))


def select_key_columns(
    id_column: str,
    columns: Iterable[str],
    key_sets: Iterable[Iterable[str]],
) -> tuple[tuple[str, ...], bool]:
    """Pick conflict-target columns; returns (key_columns, has_unique)."""
    present = set(columns)
    candidates = [tuple(k) for k in key_sets]
    needs_game = GAME_COLUMN in present

    chosen = next(
        (
            k
            for k in candidates
            if id_column in k and (not needs_game or GAME_COLUMN in k)
        ),
        None,
    )
    if chosen is None:
        chosen = next((k for k in candidates if id_column in k), None)
    if chosen is None:
        return (id_column,), False

    has_unique = any(set(k) == set(chosen) for k in candidates)
    return chosen, has_unique


def build_profile(
    game: Game,
    table_name: str,
    columns: Iterable[str],
    key_sets: Iterable[Iterable[str]],
) -> SchemaProfile:
    present = frozenset(columns)
    if table_name not in PRICE_TABLES.values():
        raise SchemaError(f"table {table_name!r} is not a known price table")

    id_column = next((c for c in ID_COLUMN_CANDIDATES if c in present), None)
    if id_column is None:
        raise SchemaError(
            f"{table_name} has no id column (expected one of {', '.join(ID_COLUMN_CANDIDATES)})"
        )

    key_columns, has_unique = select_key_columns(id_column, present, key_sets)
    unknown = [k for k in key_columns if k not in ALLOWED_COLUMNS]
    if unknown:
        raise SchemaError(f"{table_name} key uses unsupported columns: {unknown}")

    return SchemaProfile(
        table=table_name,
        id_column=id_column,
        key_columns=key_columns,
        has_unique=has_unique,
        columns=present,
        game_value=game.value if GAME_COLUMN in present else None,
    )


# ---------------------------------------------------------------------------
# Sync inspector helpers (run via AsyncConnection.run_sync)
# ---------------------------------------------------------------------------


def _ensure_table(sync_conn: Connection, table_name: str, layout: PriceLayout) -> bool:
    if inspect(sync_conn).has_table(table_name):
        return False
    build_price_table(layout, table_name, MetaData()).create(sync_conn)
    return True


def _introspect(sync_conn: Connection, table_name: str) -> tuple[list[str], list[tuple[str, ...]]]:
    inspector = inspect(sync_conn)
    columns = [c["name"] for c in inspector.get_columns(table_name)]

    key_sets: list[tuple[str, ...]] = []
    pk: dict[str, Any] = inspector.get_pk_constraint(table_name) or {}
    if pk.get("constrained_columns"):
        key_sets.append(tuple(pk["constrained_columns"]))
    for uc in inspector.get_unique_constraints(table_name):
        key_sets.append(tuple(uc["column_names"]))
    for ix in inspector.get_indexes(table_name):
        if ix.get("unique") and all(ix.get("column_names") or [None]):
            key_sets.append(tuple(ix["column_names"]))

    return columns, list(dict.fromkeys(key_sets))


class SchemaAdapter:
    """
    Resolves and caches one SchemaProfile per game for the whole run.

    Usage:
        adapter = SchemaAdapter(db)
        profile = await adapter.resolve(Game.YGO)
    """

    def __init__(self, db: Database) -> None:
        self._db = db
        self._profiles: dict[Game, SchemaProfile] = {}

    async def resolve(self, game: Game) -> SchemaProfile:
        if game in self._profiles:
            return self._profiles[game]

        table_name = PRICE_TABLES[game]
        layout = PRICE_LAYOUTS[game]

        created = await self._db.run_sync(_ensure_table, table_name, layout)
        if created:
            logger.info("price_table_created", game=game.value, table=table_name, layout=layout.value)

        columns, key_sets = await self._db.run_sync(_introspect, table_name)
        profile = build_profile(game, table_name, columns, key_sets)

        logger.info(
            "price_table_profile",
            game=game.value,
            table=profile.table,
            id_column=profile.id_column,
            key_columns=list(profile.key_columns),
            has_unique=profile.has_unique,
        )
        if not profile.has_unique:
            logger.warning(
                "price_table_without_unique_key",
                game=game.value,
                table=profile.table,
                note="writes use update-then-insert; concurrent writers on one key can race",
            )

        self._profiles[game] = profile
        return profile
