"""
Engine package - pure computation: query planning, price extraction, statistics.
"""

from pricesweep.engine.listing_prices import ExtractedPrices, extract_prices
from pricesweep.engine.query_planner import plan_queries, primary_query
from pricesweep.engine.stats import EMPTY_STATS, PriceStats, aggregate

__all__ = [
    "EMPTY_STATS",
    "ExtractedPrices",
    "PriceStats",
    "aggregate",
    "extract_prices",
    "plan_queries",
    "primary_query",
]
