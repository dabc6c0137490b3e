"""
Price Sweep - Browse API Response Models

Only the fields the sweep reads: price, shipping options, listing URL and the
pagination envelope.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any

from pydantic import BaseModel, Field, field_validator


def _parse_decimal(v: Any) -> Decimal | None:
    if v is None or v == "":
        return None
    try:
        parsed = Decimal(str(v))
    except (InvalidOperation, ValueError):
        return None
    return parsed if parsed.is_finite() else None


class Amount(BaseModel):
    value: Decimal | None = None
    currency: str | None = None

    @field_validator("value", mode="before")
    @classmethod
    def parse_value(cls, v: Any) -> Decimal | None:
        """Unparseable amounts become None instead of failing the page."""
        return _parse_decimal(v)


class ShippingOption(BaseModel):
    shippingCost: Amount | None = None


class ItemSummary(BaseModel):
    itemId: str | None = None
    title: str | None = None
    price: Amount | None = None
    shippingOptions: list[ShippingOption] = Field(default_factory=list)
    itemWebUrl: str | None = None

    @field_validator("shippingOptions", mode="before")
    @classmethod
    def none_to_empty(cls, v: Any) -> Any:
        return v or []


class BrowseSearchPage(BaseModel):
    """One page of GET /item_summary/search."""

    itemSummaries: list[ItemSummary] = Field(default_factory=list)
    limit: int | None = None
    offset: int | None = None
    next: str | None = None
    total: int | None = None

    @field_validator("itemSummaries", mode="before")
    @classmethod
    def none_to_empty(cls, v: Any) -> Any:
        return v or []
