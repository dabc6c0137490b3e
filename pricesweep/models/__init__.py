"""
Models package - table layouts and data shapes.
"""

from pricesweep.models.catalog import CatalogItem
from pricesweep.models.listing import BrowseSearchPage, ItemSummary
from pricesweep.models.price_tables import ALLOWED_COLUMNS, build_price_table

__all__ = [
    "ALLOWED_COLUMNS",
    "BrowseSearchPage",
    "CatalogItem",
    "ItemSummary",
    "build_price_table",
]
