"""Tests for price extraction from Browse search pages."""

from __future__ import annotations

from decimal import Decimal

from pricesweep.engine.listing_prices import cheapest_shipping, extract_prices, listing_total
from pricesweep.models.listing import BrowseSearchPage, ItemSummary
from tests.conftest import listing


class TestListingTotal:
    def test_price_plus_cheapest_shipping(self) -> None:
        item = ItemSummary.model_validate(listing("10.00", shipping=["4.99", "1.50"]))
        assert cheapest_shipping(item) == Decimal("1.50")
        assert listing_total(item) == Decimal("11.50")

    def test_no_shipping_means_zero(self) -> None:
        item = ItemSummary.model_validate(listing("8.25"))
        assert listing_total(item) == Decimal("8.25")

    def test_missing_price_is_skipped(self) -> None:
        item = ItemSummary.model_validate(listing(None))
        assert listing_total(item) is None

    def test_non_positive_total_is_skipped(self) -> None:
        item = ItemSummary.model_validate(listing("0.00"))
        assert listing_total(item) is None

    def test_unparseable_price_is_skipped(self) -> None:
        item = ItemSummary.model_validate(listing("N/A"))
        assert item.price is not None and item.price.value is None
        assert listing_total(item) is None

    def test_non_finite_price_is_skipped(self) -> None:
        item = ItemSummary.model_validate(listing("Infinity"))
        assert listing_total(item) is None


class TestExtractPrices:
    def test_extracts_valid_prices_and_first_url(self) -> None:
        page = BrowseSearchPage.model_validate(
            {
                "itemSummaries": [
                    listing(None, url="https://www.ebay.com/itm/bad"),
                    listing("5.00", shipping=["1.00"], url="https://www.ebay.com/itm/a"),
                    listing("7.00", url="https://www.ebay.com/itm/b"),
                ]
            }
        )
        extracted = extract_prices(page)

        assert extracted.prices == [Decimal("6.00"), Decimal("7.00")]
        assert extracted.sample_url == "https://www.ebay.com/itm/a"

    def test_empty_page(self) -> None:
        page = BrowseSearchPage.model_validate({"itemSummaries": None, "total": 0})
        extracted = extract_prices(page)
        assert extracted.prices == []
        assert extracted.sample_url is None
