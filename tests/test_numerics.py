"""
Tests for numeric safety helpers.

Run with: python -m pytest tests/test_numerics.py -v
"""

import math

import numpy as np
import pytest

from crypto_forecast.config import Recommendation
from crypto_forecast.models import ForecastPoint, TradeSignal
from crypto_forecast.numerics import clamp, last_or, population_std, safe_mean, safe_ratio, sanitize


class TestSanitize:

    @pytest.mark.parametrize("value", [None, float("nan"), float("inf"), -math.inf, "abc"])
    def test_non_finite_uses_fallback(self, value):
        assert sanitize(value, fallback=7.0) == 7.0

    def test_numpy_scalar_converted(self):
        assert sanitize(np.float64(1.5)) == 1.5
        assert isinstance(sanitize(np.int64(3)), float)


class TestAggregates:

    def test_safe_mean_skips_non_finite(self):
        assert safe_mean([1.0, float("nan"), 3.0]) == 2.0

    def test_safe_mean_empty(self):
        assert safe_mean([], fallback=0.5) == 0.5

    def test_safe_ratio_zero_denominator(self):
        assert safe_ratio(5, 0, fallback=-1.0) == -1.0
        assert safe_ratio(6, 3) == 2.0

    def test_population_std(self):
        assert population_std([2, 4, 4, 4, 5, 5, 7, 9]) == pytest.approx(2.0)
        assert population_std([1.0]) == 0.0

    def test_clamp_and_last_or(self):
        assert clamp(1.4) == 1.0
        assert clamp(-0.2) == 0.0
        assert clamp(float("nan")) == 0.0
        assert clamp(float("inf")) == 0.0
        assert clamp(None, low=0.2) == 0.2
        assert last_or([1, 2, 3]) == 3
        assert last_or([], default=9.0) == 9.0


class TestConfidenceBounds:

    def test_forecast_point_confidence(self):
        assert ForecastPoint(day=1, high=1.0, low=1.0, avg=1.0, confidence=1.7, indicator="RSI").confidence == 1.0
        assert ForecastPoint(day=1, high=1.0, low=1.0, avg=1.0, confidence=float("nan"), indicator="RSI").confidence == 0.0

    def test_trade_signal_confidence(self):
        signal = TradeSignal(Recommendation.BUY, ["oversold"], float("nan"), "Mean Reversion")
        assert signal.confidence_score == 0.0
        assert TradeSignal(Recommendation.SELL, [], -3.0, "Breakout").confidence_score == 0.0
