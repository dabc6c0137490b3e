"""
Price Sweep - Price Table Layouts

Two canonical layouts for the per-game price tables. They are only used when
the table does not exist yet; an existing table is introspected as-is by the
schema adapter.

LEAN (Pokémon):  one row per (game, card_id), median only.
RICH (YGO/MTG):  one row per card_id, low/median/high plus query provenance.
"""

from __future__ import annotations

from sqlalchemy import (
    TIMESTAMP,
    Column,
    Integer,
    MetaData,
    Numeric,
    PrimaryKeyConstraint,
    Table,
    Text,
    func,
    text,
)
from sqlalchemy.sql.type_api import TypeEngine

from pricesweep.config import PRICE_METHOD, PriceLayout

# ---------------------------------------------------------------------------
# Identifier allow-list + type map
# ---------------------------------------------------------------------------

ID_COLUMN_CANDIDATES: tuple[str, ...] = ("id", "card_id", "cardid", "cardId")
GAME_COLUMN = "game"
TIMESTAMP_COLUMNS: tuple[str, ...] = ("last_run", "updated_at")

# Every identifier a statement builder may interpolate, with its bind type
COLUMN_TYPES: dict[str, TypeEngine] = {
    **{name: Text() for name in ID_COLUMN_CANDIDATES},
    GAME_COLUMN: Text(),
    "low": Numeric(12, 2),
    "median": Numeric(12, 2),
    "high": Numeric(12, 2),
    "sample_count": Integer(),
    "currency": Text(),
    "sample_url": Text(),
    "method": Text(),
    "basis": Text(),
    "query": Text(),
    "last_run": TIMESTAMP(timezone=True),
    "updated_at": TIMESTAMP(timezone=True),
}

ALLOWED_COLUMNS: frozenset[str] = frozenset(COLUMN_TYPES)


def build_lean_table(name: str, metadata: MetaData) -> Table:
    """Pokémon layout: (game, card_id) primary key, median only."""
    return Table(
        name,
        metadata,
        Column("game", Text, nullable=False),
        Column("card_id", Text, nullable=False),
        Column("median", Numeric(12, 2)),
        Column("sample_count", Integer, nullable=False, server_default=text("0")),
        Column("currency", Text, nullable=False, server_default=text("'USD'")),
        Column("sample_url", Text),
        Column(
            "updated_at",
            TIMESTAMP(timezone=True),
            nullable=False,
            server_default=func.now(),
        ),
        PrimaryKeyConstraint("game", "card_id"),
    )


def build_rich_table(name: str, metadata: MetaData) -> Table:
    """YGO/MTG layout: card_id primary key, full low/median/high spread."""
    return Table(
        name,
        metadata,
        Column("card_id", Text, primary_key=True),
        Column("low", Numeric(12, 2)),
        Column("median", Numeric(12, 2)),
        Column("high", Numeric(12, 2)),
        Column("sample_count", Integer, nullable=False, server_default=text("0")),
        Column("currency", Text, nullable=False, server_default=text("'USD'")),
        Column(
            "method",
            Text,
            nullable=False,
            server_default=text(f"'{PRICE_METHOD}'"),
        ),
        Column("query", Text, nullable=False, server_default=text("''")),
        Column("sample_url", Text),
        Column(
            "last_run",
            TIMESTAMP(timezone=True),
            nullable=False,
            server_default=func.now(),
        ),
        Column(
            "updated_at",
            TIMESTAMP(timezone=True),
            nullable=False,
            server_default=func.now(),
        ),
    )


def build_price_table(layout: PriceLayout, name: str, metadata: MetaData) -> Table:
    if layout is PriceLayout.LEAN:
        return build_lean_table(name, metadata)
    return build_rich_table(name, metadata)
