"""
Forecast Merge Engine

Combines several day-indexed forecasts into one weighted consensus forecast.
The same algorithm merges indicator forecasts (static weights) and strategy
forecasts (confidence-derived weights).

MERGE RULES
    For each day 1..N:
        - contributors are the inputs holding a point for that day; inputs
          with shorter forecasts simply stop contributing
        - high, low, avg and confidence are each the weighted average
          sum(v_i * w_i) / sum(w_i) over contributors only
        - if every input weight is zero, all inputs weigh 1
        - if the contributors of one day carry zero weight, they are
          averaged equally
        - non-finite values become 0 through ``sanitize``
        - a day with no contributors is skipped, so the output can be
          shorter than N
    Merged points carry the ``MERGED_AVERAGE`` tag.

Author: Tamer
Version: 1.0.0
"""

from __future__ import annotations

import copy
import logging
import time
from typing import Any, Dict, List, Optional, Protocol, Sequence

import numpy as np

from crypto_forecast.cache import Clock, TTLCache
from crypto_forecast.config import CACHE
from crypto_forecast.models import ForecastPoint, MergedForecastStats
from crypto_forecast.numerics import sanitize

# Module-level logger
logger = logging.getLogger(__name__)

MERGED_TAG = "MERGED_AVERAGE"
SIMPLE_AVERAGE_TAG = "SIMPLE_AVERAGE"

_FIELDS = ("high", "low", "avg", "confidence")


class WeightedForecast(Protocol):
    """Anything with a name, a forecast and a weight (indicator or strategy result)."""
    name: str
    forecast: List[ForecastPoint]
    weight: float


# =============================================================================
# SECTION 1: MERGE
# =============================================================================

def _points_by_day(result: WeightedForecast) -> Dict[int, ForecastPoint]:
    return {point.day: point for point in result.forecast}


def merge_forecasts(results: Sequence[WeightedForecast], days: int) -> List[ForecastPoint]:
    """
    Weighted per-day average of several forecasts.

    Args:
        results: Inputs exposing ``forecast`` and ``weight``
        days: Horizon to merge (days 1..days)

    Returns:
        Merged points in ascending day order; days without any
        contributor are omitted
    """
    if not results or days <= 0:
        return []

    weights = np.array([sanitize(r.weight) for r in results], dtype=float)
    if weights.sum() <= 0:
        weights = np.ones(len(results))

    indexed = [_points_by_day(r) for r in results]
    merged: List[ForecastPoint] = []

    for day in range(1, days + 1):
        contributors = [
            (point_map[day], weights[i]) for i, point_map in enumerate(indexed) if day in point_map
        ]
        if not contributors:
            logger.debug(f"Day {day}: no contributing forecasts, skipped")
            continue

        day_weights = np.array([w for _, w in contributors], dtype=float)
        if day_weights.sum() <= 0:
            day_weights = np.ones(len(contributors))
        day_weights = day_weights / day_weights.sum()

        values = {}
        for name in _FIELDS:
            column = np.array([sanitize(getattr(p, name)) for p, _ in contributors], dtype=float)
            values[name] = sanitize(float(np.dot(column, day_weights)))

        merged.append(ForecastPoint(
            day=day,
            high=values["high"],
            low=values["low"],
            avg=values["avg"],
            confidence=values["confidence"],
            indicator=MERGED_TAG,
        ))

    return merged


def simple_average_forecast(results: Sequence[WeightedForecast], days: int) -> List[ForecastPoint]:
    """Unweighted per-day mean, kept for comparison with the weighted merge."""
    merged = []
    for day in range(1, days + 1):
        points = [p for r in results for p in r.forecast if p.day == day]
        if not points:
            continue
        merged.append(ForecastPoint(
            day=day,
            high=sanitize(np.mean([p.high for p in points])),
            low=sanitize(np.mean([p.low for p in points])),
            avg=sanitize(np.mean([p.avg for p in points])),
            confidence=sanitize(np.mean([p.confidence for p in points])),
            indicator=SIMPLE_AVERAGE_TAG,
        ))
    return merged


# =============================================================================
# SECTION 2: STATISTICS
# =============================================================================

def calculate_merged_forecast_stats(
    merged: Sequence[ForecastPoint],
    results: Sequence[WeightedForecast],
) -> MergedForecastStats:
    """
    Summary of a merged forecast.

    Trend direction is BULLISH when the last day's average exceeds the
    first day's, BEARISH otherwise; strength is that move in percent.
    """
    forecast_days = len(merged)
    if not merged:
        return MergedForecastStats(
            total_weight=sum(sanitize(r.weight) for r in results),
            avg_confidence=0.0,
            price_high=0.0,
            price_low=0.0,
            price_spread=0.0,
            trend_direction="BEARISH",
            trend_strength=0.0,
            contributing_indicators=len(results),
            forecast_days=0,
        )

    high = max(p.high for p in merged)
    low = min(p.low for p in merged)
    first, last = merged[0].avg, merged[-1].avg

    return MergedForecastStats(
        total_weight=sum(sanitize(r.weight) for r in results),
        avg_confidence=sanitize(np.mean([p.confidence for p in merged])),
        price_high=high,
        price_low=low,
        price_spread=high - low,
        trend_direction="BULLISH" if last > first else "BEARISH",
        trend_strength=sanitize(abs((last - first) / first) * 100) if first else 0.0,
        contributing_indicators=len(results),
        forecast_days=forecast_days,
    )


# =============================================================================
# SECTION 3: CACHED MERGER
# =============================================================================

def forecast_signature(results: Sequence[Any]) -> str:
    """Content signature ``name:accuracy:weight:length`` joined by ``|``."""
    return "|".join(
        f"{r.name}:{sanitize(getattr(r, 'accuracy', 0.0)):.2f}:{sanitize(r.weight):.2f}:{len(r.forecast)}"
        for r in results
    )


class ForecastMerger:
    """
    Merge engine with its own memoization cache.

    Args:
        cache: Merged-forecast cache, created with the default lifetime
            when omitted
        clock: Time source for the default cache
    """

    def __init__(self, cache: Optional[TTLCache] = None, clock: Clock = time.monotonic):
        self.cache = cache if cache is not None else TTLCache(
            "merged_forecast", CACHE.merge_ttl, CACHE.merge_max_size, clock=clock
        )

    def merge(self, results: Sequence[WeightedForecast], days: int) -> List[ForecastPoint]:
        key = f"merged_forecast:{days}:{forecast_signature(results)}"
        cached = self.cache.get(key)
        if cached is not None:
            return copy.deepcopy(cached)

        merged = merge_forecasts(results, days)
        self.cache.put(key, copy.deepcopy(merged))
        logger.debug(f"Merged {len(results)} forecasts into {len(merged)} days")
        return merged

    def stats(self, merged: Sequence[ForecastPoint], results: Sequence[WeightedForecast]) -> MergedForecastStats:
        return calculate_merged_forecast_stats(merged, results)

    def cache_stats(self) -> Dict[str, Any]:
        return self.cache.stats()


# =============================================================================
# MODULE EXPORTS
# =============================================================================

__all__ = [
    "MERGED_TAG",
    "SIMPLE_AVERAGE_TAG",
    "merge_forecasts",
    "simple_average_forecast",
    "calculate_merged_forecast_stats",
    "forecast_signature",
    "ForecastMerger",
]
