"""
Price Sweep - Statistics Aggregator

Turns the price samples collected for one item into low / median / high.

Two branches, chosen by sample size:
- n >= 10: interpolated 10th / 50th / 90th percentiles (trims outliers).
- 1 <= n < 10: raw min / interpolated median / raw max. Thin samples cannot
  support percentile estimation, so the extremes are kept as observed.
"""

from __future__ import annotations

import math
from decimal import ROUND_HALF_UP, Decimal
from typing import NamedTuple, Sequence

_TWO_DP = Decimal("0.01")

PERCENTILE_MIN_SAMPLES = 10
P_LOW = Decimal("0.10")
P_MEDIAN = Decimal("0.50")
P_HIGH = Decimal("0.90")


class PriceStats(NamedTuple):
    low: Decimal | None
    median: Decimal | None
    high: Decimal | None
    sample: int


EMPTY_STATS = PriceStats(low=None, median=None, high=None, sample=0)


def _quantize(value: Decimal) -> Decimal:
    return value.quantize(_TWO_DP, rounding=ROUND_HALF_UP)


def percentile(ordered: Sequence[Decimal], p: Decimal) -> Decimal:
    """
    Linear-interpolated percentile of an ascending sequence.

    idx = (n - 1) * p, interpolating between ordered[floor(idx)] and
    ordered[ceil(idx)].
    """
    n = len(ordered)
    if n == 0:
        raise ValueError("percentile of empty sequence")
    if n == 1:
        return ordered[0]
    idx = (n - 1) * p
    lo = math.floor(idx)
    hi = math.ceil(idx)
    if lo == hi:
        return ordered[lo]
    weight = idx - lo
    return ordered[lo] * (1 - weight) + ordered[hi] * weight


def aggregate(samples: Sequence[Decimal]) -> PriceStats:
    """Summarise every sample gathered for an item across all tried queries."""
    if not samples:
        return EMPTY_STATS

    ordered = sorted(samples)
    n = len(ordered)

    if n >= PERCENTILE_MIN_SAMPLES:
        return PriceStats(
            low=_quantize(percentile(ordered, P_LOW)),
            median=_quantize(percentile(ordered, P_MEDIAN)),
            high=_quantize(percentile(ordered, P_HIGH)),
            sample=n,
        )

    return PriceStats(
        low=_quantize(ordered[0]),
        median=_quantize(percentile(ordered, P_MEDIAN)),
        high=_quantize(ordered[-1]),
        sample=n,
    )
