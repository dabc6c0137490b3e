"""
Price Sweep - Catalog Item

Read-only view of a card from the external catalog tables. The catalog is
owned elsewhere; the sweep only needs enough to build a search query.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field, field_validator

from pricesweep.config import Game


class CatalogItem(BaseModel):
    """A card tracked by the external catalog, identified by a stable id."""

    model_config = {"frozen": True}

    id: str = Field(..., description="Stable catalog id")
    name: str = Field(default="", description="Card name")
    game: Game
    set_code: str | None = Field(default=None, description="Set code / set id")
    set_name: str | None = None
    number: str | None = Field(default=None, description="Card number within set")
    collector_number: str | None = None
    set_num: str | None = Field(default=None, description="YGO set number suffix")

    @field_validator("id", "name", mode="before")
    @classmethod
    def coerce_text(cls, v: Any) -> str:
        return "" if v is None else str(v)

    @field_validator(
        "set_code", "set_name", "number", "collector_number", "set_num", mode="before"
    )
    @classmethod
    def blank_to_none(cls, v: Any) -> str | None:
        """Catalog tables mix NULL and '' for missing values."""
        if v is None:
            return None
        text = str(v).strip()
        return text or None
