"""
Shared fixtures: synthetic price series, hand-built indicator results, a
controllable clock and an offline price fetcher.
"""

import math
from datetime import date, timedelta
from typing import List, Optional, Sequence

import pytest

from crypto_forecast.config import IndicatorKind
from crypto_forecast.data_collector import PriceFetchResult
from crypto_forecast.models import ForecastPoint, IndicatorResult, PricePoint


class FakeClock:
    """Manually advanced time source for caches."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def build_prices(count: int, start: float = 100.0, drift: float = 0.002, wave: float = 0.04) -> List[PricePoint]:
    """Deterministic trending series with a sine wave on top."""
    first_day = date(2024, 1, 1)
    points = []
    for i in range(count):
        close = start * (1 + drift) ** i * (1 + wave * math.sin(i / 4.0))
        points.append(PricePoint(
            date=(first_day + timedelta(days=i)).isoformat(),
            close=close,
            high=close * 1.015,
            low=close * 0.985,
            volume=1_000_000 + 50_000 * (i % 7),
        ))
    return points


def build_indicator(
    kind: IndicatorKind,
    averages: Sequence[float],
    weight: float = 0.1,
    accuracy: float = 0.7,
    confidence: float = 0.7,
    spread: float = 0.02,
) -> IndicatorResult:
    forecast = [
        ForecastPoint(
            day=day,
            high=avg * (1 + spread),
            low=avg * (1 - spread),
            avg=avg,
            confidence=confidence,
            indicator=kind.value,
        )
        for day, avg in enumerate(averages, start=1)
    ]
    return IndicatorResult(name=kind.value, kind=kind, forecast=forecast, accuracy=accuracy, weight=weight)


class StubFetcher:
    """Offline stand-in for PriceDataFetcher."""

    def __init__(self, prices: Optional[List[PricePoint]] = None, error: Optional[str] = None,
                 current_price: Optional[float] = None):
        self.prices = prices or []
        self.error = error
        self.current_price = current_price
        self.requests = []

    async def fetch_historical_data(self, symbol: str, days: int) -> PriceFetchResult:
        self.requests.append((symbol, days))
        if self.error:
            return PriceFetchResult(success=False, error=self.error)
        return PriceFetchResult(success=True, data=list(self.prices[-days:]))

    async def get_current_price(self, symbol: str) -> float:
        from crypto_forecast.models import DataFetchError
        if self.current_price is None:
            raise DataFetchError(f"No current price available for {symbol}")
        return self.current_price

    def cache_stats(self):
        return {"name": "stub", "size": 0, "max_size": 1, "ttl": 0.0, "hits": 0, "misses": 0}

    def describe_cache(self):
        return ["stub: 0/1 entries"]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_prices():
    return build_prices


@pytest.fixture
def make_indicator():
    return build_indicator


@pytest.fixture
def prices():
    return build_prices(120)


@pytest.fixture
def stub_fetcher_factory():
    return StubFetcher
