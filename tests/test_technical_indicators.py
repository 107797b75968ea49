"""
Tests for indicator formulas and the concurrent indicator engine.

Run with: python -m pytest tests/test_technical_indicators.py -v
"""

import asyncio
import dataclasses

import numpy as np
import pytest

from crypto_forecast.config import IndicatorKind
from crypto_forecast.models import ComputationError, FormulaMinimumDataError, ValidationError
from crypto_forecast.technical_indicators import (
    INDICATOR_REGISTRY,
    IndicatorEngine,
    MomentumIndicators,
    calculate_indicator_confidence,
    extract_price_arrays,
    forecast_ichimoku,
    forecast_rsi,
)


def run(coro):
    return asyncio.run(coro)


class TestFormulas:

    @pytest.mark.parametrize("kind", list(INDICATOR_REGISTRY))
    @pytest.mark.parametrize("horizon", [10, 30])
    def test_each_formula_covers_every_day(self, make_prices, kind, horizon):
        arrays = extract_price_arrays(make_prices(120))
        spec = INDICATOR_REGISTRY[kind]
        forecast = spec.formula(arrays.closes, arrays.highs, arrays.lows, arrays.volumes, horizon)

        assert [p.day for p in forecast] == list(range(1, horizon + 1))
        for point in forecast:
            assert 0.0 <= point.confidence <= 1.0
            assert np.isfinite([point.high, point.low, point.avg]).all()
            assert point.avg > 0

    def test_minimum_data_enforced(self, make_prices):
        arrays = extract_price_arrays(make_prices(40))
        with pytest.raises(FormulaMinimumDataError) as excinfo:
            forecast_ichimoku(arrays.closes, arrays.highs, arrays.lows, arrays.volumes, 10)
        assert excinfo.value.required == 52
        assert excinfo.value.available == 40

    def test_rsi_minimum_is_period_plus_one(self, make_prices):
        arrays = extract_price_arrays(make_prices(14))
        with pytest.raises(FormulaMinimumDataError):
            forecast_rsi(arrays.closes, arrays.highs, arrays.lows, arrays.volumes, 10)

    def test_rsi_bounded(self, make_prices):
        import pandas as pd
        closes = pd.Series([p.close for p in make_prices(80)])
        rsi = MomentumIndicators.calculate_rsi(closes).dropna()
        assert ((rsi >= 0) & (rsi <= 100)).all()


class TestIndicatorConfidence:

    def test_empty_forecast_scores_zero(self):
        assert calculate_indicator_confidence([], IndicatorKind.RSI, 100) == 0.0

    def test_longer_history_scores_higher(self, make_indicator):
        forecast = make_indicator(IndicatorKind.EMA, [100.0, 100.5, 101.0]).forecast
        short = calculate_indicator_confidence(forecast, IndicatorKind.EMA, 20)
        long = calculate_indicator_confidence(forecast, IndicatorKind.EMA, 120)
        assert 0.1 <= short < long <= 1.0


class TestIndicatorEngine:

    def test_full_history_yields_all_indicators(self, prices, clock):
        engine = IndicatorEngine(clock=clock)
        results = run(engine.calculate_all_indicators("BTC", prices, 10))

        assert [r.kind for r in results] == list(INDICATOR_REGISTRY)
        for result in results:
            assert result.name == result.kind.value
            assert len(result.forecast) == 10
            assert result.weight == INDICATOR_REGISTRY[result.kind].weight

    def test_short_history_drops_long_window_indicators(self, make_prices, clock):
        engine = IndicatorEngine(clock=clock)
        results = run(engine.calculate_all_indicators("BTC", make_prices(25), 10))
        kinds = {r.kind for r in results}

        assert len(results) == 7
        assert IndicatorKind.MACD not in kinds
        assert IndicatorKind.ADX not in kinds
        assert IndicatorKind.ICHIMOKU not in kinds

    def test_failing_formula_is_filtered(self, prices, clock):
        def boom(*args):
            raise RuntimeError("formula exploded")

        registry = dict(INDICATOR_REGISTRY)
        registry[IndicatorKind.VWAP] = dataclasses.replace(registry[IndicatorKind.VWAP], formula=boom)
        engine = IndicatorEngine(registry=registry, clock=clock)
        results = run(engine.calculate_all_indicators("BTC", prices, 10))

        assert len(results) == 9
        assert IndicatorKind.VWAP not in {r.kind for r in results}

    def test_all_failing_raises(self, prices, clock):
        def boom(*args):
            raise RuntimeError("formula exploded")

        registry = {
            kind: dataclasses.replace(spec, formula=boom) for kind, spec in INDICATOR_REGISTRY.items()
        }
        engine = IndicatorEngine(registry=registry, clock=clock)
        with pytest.raises(ComputationError, match="Technical analysis failed"):
            run(engine.calculate_all_indicators("BTC", prices, 10))

    def test_rejects_short_history(self, make_prices, clock):
        engine = IndicatorEngine(clock=clock)
        with pytest.raises(ValidationError, match="minimum 20 days required"):
            run(engine.calculate_all_indicators("BTC", make_prices(19), 10))

    def test_rejects_unsupported_horizon(self, prices, clock):
        engine = IndicatorEngine(clock=clock)
        with pytest.raises(ValidationError, match="Forecast days must be 10, 20, or 30"):
            run(engine.calculate_all_indicators("BTC", prices, 15))

    def test_second_run_served_from_cache(self, prices, clock):
        engine = IndicatorEngine(clock=clock)
        first = run(engine.calculate_all_indicators("BTC", prices, 10))
        second = run(engine.calculate_all_indicators("BTC", prices, 10))

        assert engine.cache_stats()["hits"] == len(INDICATOR_REGISTRY)
        assert [p.avg for p in first[0].forecast] == [p.avg for p in second[0].forecast]
        assert "BTC-10-RSI-120" in engine.cache

    def test_cache_expires(self, prices, clock):
        engine = IndicatorEngine(clock=clock)
        run(engine.calculate_all_indicators("BTC", prices, 10))
        clock.advance(engine.cache.default_ttl + 1)
        run(engine.calculate_all_indicators("BTC", prices, 10))
        assert engine.cache_stats()["hits"] == 0
