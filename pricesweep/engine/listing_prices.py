"""
Price Sweep - Price Extractor

One page of Browse results -> price samples.

total = price + cheapest shipping option (0 when none is quoted). Listings
whose total is not a positive finite amount are discarded. The first listing
with a valid total becomes the representative sample URL.
"""

from __future__ import annotations

from decimal import Decimal
from typing import NamedTuple

from pricesweep.models.listing import BrowseSearchPage, ItemSummary

_ZERO = Decimal("0")


class ExtractedPrices(NamedTuple):
    prices: list[Decimal]
    sample_url: str | None


def cheapest_shipping(item: ItemSummary) -> Decimal:
    costs = [
        opt.shippingCost.value
        for opt in item.shippingOptions
        if opt.shippingCost is not None
        and opt.shippingCost.value is not None
        and opt.shippingCost.value.is_finite()
    ]
    return min(costs) if costs else _ZERO


def listing_total(item: ItemSummary) -> Decimal | None:
    """Price plus cheapest shipping, or None when the listing has no usable price."""
    if item.price is None or item.price.value is None:
        return None
    total = item.price.value + cheapest_shipping(item)
    if not total.is_finite() or total <= _ZERO:
        return None
    return total


def extract_prices(page: BrowseSearchPage) -> ExtractedPrices:
    prices: list[Decimal] = []
    sample_url: str | None = None

    for item in page.itemSummaries:
        total = listing_total(item)
        if total is None:
            continue
        prices.append(total)
        if sample_url is None and item.itemWebUrl:
            sample_url = item.itemWebUrl

    return ExtractedPrices(prices=prices, sample_url=sample_url)
