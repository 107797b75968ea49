"""
Tests for the strategy library.

Run with: python -m pytest tests/test_strategies.py -v
"""

import asyncio

import pytest

from crypto_forecast.config import IndicatorKind, Recommendation, TrendDirection
from crypto_forecast.models import ForecastPoint, IndicatorResult, StrategyInputError, create_strategy_config
from crypto_forecast.strategies import (
    STRATEGY_CLASSES,
    BreakoutStrategy,
    CandlestickReversalStrategy,
    GoldenCrossStrategy,
    MeanReversionStrategy,
    MomentumDivergenceStrategy,
    VolatilityBreakoutStrategy,
    find_peaks,
    recognize_patterns,
)
from crypto_forecast.strategy_base import IndicatorSet, calculate_trend
from crypto_forecast.technical_indicators import IndicatorEngine


@pytest.fixture
def config():
    return create_strategy_config(symbol="BTC", forecast_days=10)


@pytest.fixture
def engine_indicators(prices, clock):
    return asyncio.run(IndicatorEngine(clock=clock).calculate_all_indicators("BTC", prices, 10))


class TestHelpers:

    def test_trend_halves(self, make_indicator):
        rising = make_indicator(IndicatorKind.SMA, [100, 100, 105, 105]).forecast
        flat = make_indicator(IndicatorKind.SMA, [100, 100, 101, 101]).forecast
        assert calculate_trend(rising) is TrendDirection.BULLISH
        assert calculate_trend(flat) is TrendDirection.NEUTRAL
        assert calculate_trend(rising[:1]) is TrendDirection.NEUTRAL

    def test_find_peaks(self):
        values = [1, 2, 3, 4, 3, 2, 1, 2, 3, 4, 5, 4, 3, 2, 1]
        assert find_peaks(values, maxima=True) == [(3, 4.0), (10, 5.0)]
        assert find_peaks(values, maxima=False) == [(6, 1.0)]
        assert find_peaks([1, 2, 3], maxima=True) == []

    def test_hammer_recognized(self):
        points = [
            ForecastPoint(1, 100.5, 99.5, 100.0, 0.7, "SMA"),
            ForecastPoint(2, 101.5, 100.5, 101.0, 0.7, "SMA"),
            ForecastPoint(3, 101.6, 99.0, 101.5, 0.7, "SMA"),
        ]
        patterns = recognize_patterns(points, lookback=14)
        assert [p.name for p in patterns] == ["Hammer"]
        assert patterns[0].bias is TrendDirection.BULLISH

    def test_indicator_set_skips_empty_forecasts(self, make_indicator):
        empty = make_indicator(IndicatorKind.RSI, [])
        sma = make_indicator(IndicatorKind.SMA, [100.0])
        indicators = IndicatorSet([empty, sma])
        assert len(indicators) == 1
        assert not indicators.has(IndicatorKind.RSI)
        assert indicators.base() is sma


class TestEveryStrategy:

    @pytest.mark.parametrize("strategy_class", STRATEGY_CLASSES)
    def test_returns_well_formed_result(self, strategy_class, engine_indicators, config, clock):
        result = asyncio.run(strategy_class(clock=clock, seed=1).execute(engine_indicators, config))

        assert result.name == strategy_class.name
        assert isinstance(result.signal.recommendation, Recommendation)
        assert 0.0 <= result.signal.confidence_score <= 1.0
        assert result.signal.reasons
        assert 0 < len(result.forecast) <= config.forecast_days
        assert 0.0 <= result.weight <= strategy_class.max_weight

    @pytest.mark.parametrize("strategy_class", STRATEGY_CLASSES)
    def test_no_indicators_rejected(self, strategy_class, config, clock):
        with pytest.raises(StrategyInputError):
            strategy_class(clock=clock).run([], config)

    def test_same_seed_same_forecast(self, engine_indicators, config, clock):
        first = MeanReversionStrategy(clock=clock, seed=42).run(engine_indicators, config)
        second = MeanReversionStrategy(clock=clock, seed=42).run(engine_indicators, config)
        assert [p.high for p in first.forecast] == [p.high for p in second.forecast]

    def test_repeat_run_served_from_cache(self, engine_indicators, config, clock):
        strategy = GoldenCrossStrategy(clock=clock, seed=3)
        strategy.run(engine_indicators, config)
        strategy.run(engine_indicators, config)
        assert strategy.cache.stats()["hits"] == 1
        strategy.clear_caches()
        assert all(len(cache) == 0 for cache in strategy.caches())


class TestMeanReversion:

    def test_oversold_rsi_means_buy(self, make_indicator, config, clock):
        rsi = make_indicator(IndicatorKind.RSI, [20.0] * 10)
        sma = make_indicator(IndicatorKind.SMA, [100.0] * 10)
        result = MeanReversionStrategy(clock=clock, seed=0).run([rsi, sma], config)

        assert result.signal.recommendation is Recommendation.BUY
        assert result.signal.confidence_score == pytest.approx(0.3)
        assert result.signal.reasons[0].startswith("RSI indicates oversold condition")
        assert result.weight == pytest.approx(0.7 * 0.3)
        assert result.accuracy == pytest.approx(0.7 * 0.85)

    def test_forecast_drifts_down_from_base(self, make_indicator, config, clock):
        rsi = make_indicator(IndicatorKind.RSI, [20.0] * 10)
        sma = make_indicator(IndicatorKind.SMA, [100.0] * 10)
        forecast = MeanReversionStrategy(clock=clock, seed=0).run([rsi, sma], config).forecast

        assert [p.day for p in forecast] == list(range(1, 11))
        assert forecast[-1].avg == pytest.approx(90.0)
        assert forecast[0].indicator == "Mean Reversion_MeanReversion"

    def test_requires_one_of_its_indicators(self, make_indicator, config, clock):
        ema = make_indicator(IndicatorKind.EMA, [100.0] * 10)
        with pytest.raises(StrategyInputError, match="Mean Reversion strategy requires"):
            MeanReversionStrategy(clock=clock).run([ema], config)

    def test_neutral_rsi_without_other_signals(self, make_indicator, config, clock):
        rsi = make_indicator(IndicatorKind.RSI, [50.0] * 10)
        result = MeanReversionStrategy(clock=clock).run([rsi], config)
        assert result.signal.recommendation is Recommendation.NEUTRAL
        assert result.signal.reasons[0].startswith("RSI shows neutral conditions")


class TestGoldenCross:

    def test_ema_crossing_above_sma_means_buy(self, make_indicator, config, clock):
        ema = make_indicator(IndicatorKind.EMA, [95.0 + i for i in range(10)])
        sma = make_indicator(IndicatorKind.SMA, [100.0] * 10)
        result = GoldenCrossStrategy(clock=clock, seed=0).run([ema, sma], config)

        assert result.signal.recommendation is Recommendation.BUY
        assert result.signal.reasons[0].startswith("Golden Cross detected")
        assert result.signal.confidence_score == pytest.approx(0.44)


class TestCandlestickReversal:

    def test_flat_candles_fall_back_to_base(self, make_indicator, config, clock):
        sma = make_indicator(IndicatorKind.SMA, [100.0] * 10, spread=0.0)
        result = CandlestickReversalStrategy(clock=clock).run([sma], config)

        assert result.signal.recommendation is Recommendation.NEUTRAL
        assert result.signal.confidence_score == pytest.approx(0.1)
        assert result.signal.reasons == ["No significant candlestick patterns detected"]
        assert (result.accuracy, result.weight) == (0.5, 0.3)
        assert {p.indicator for p in result.forecast} == {"Candlestick Reversal_Neutral"}
        assert [p.avg for p in result.forecast] == [100.0] * 10


class TestForecastConfidenceBounds:

    @pytest.mark.parametrize("strategy_class", STRATEGY_CLASSES)
    def test_every_forecast_point_within_unit_range(self, strategy_class, engine_indicators, config, clock):
        result = strategy_class(clock=clock, seed=11).run(engine_indicators, config)
        assert result.forecast
        assert all(0.0 <= p.confidence <= 1.0 for p in result.forecast)

    @pytest.mark.parametrize("strategy_class", STRATEGY_CLASSES)
    def test_overconfident_inputs_still_bounded(self, strategy_class, make_indicator, config, clock):
        indicators = [
            make_indicator(kind, [100.0 + (i % 3) for i in range(20)], confidence=1.0)
            for kind in IndicatorKind
        ]
        result = strategy_class(clock=clock, seed=11).run(indicators, config)
        assert all(0.0 <= p.confidence <= 1.0 for p in result.forecast)


# Peak at index 7 gives resistance 112.2; the flat lows from index 14 give support 98
RANGE_AVERAGES = [100, 101, 102, 103, 104, 105, 106, 110, 106, 105,
                  104, 103, 102, 101, 100, 100, 100, 100, 100]


class TestBreakout:

    def run_breakout(self, last_close, config, clock, make_indicator, averages=RANGE_AVERAGES):
        sma = make_indicator(IndicatorKind.SMA, list(averages) + [last_close])
        bands = make_indicator(IndicatorKind.BOLLINGER, [100.0] * 20)
        return BreakoutStrategy(clock=clock, seed=0).run([sma, bands], config)

    def test_top_of_range_means_buy(self, make_indicator, config, clock):
        result = self.run_breakout(111.0, config, clock, make_indicator)

        assert result.signal.recommendation is Recommendation.BUY
        assert result.signal.confidence_score == pytest.approx(0.25)
        assert result.signal.reasons == ["Price near resistance level ($112.20) - potential breakout"]

    def test_bottom_of_range_means_sell(self, make_indicator, config, clock):
        result = self.run_breakout(99.0, config, clock, make_indicator)

        assert result.signal.recommendation is Recommendation.SELL
        assert result.signal.confidence_score == pytest.approx(0.25)
        assert result.signal.reasons == ["Price near support level ($98.00) - potential breakdown"]

    def test_middle_of_range_gives_no_signal(self, make_indicator, config, clock):
        result = self.run_breakout(105.0, config, clock, make_indicator)
        assert result.signal.recommendation is Recommendation.NEUTRAL
        assert result.signal.reasons == ["No clear breakout signals detected"]

    def test_extremes_on_window_edge_are_not_levels(self, make_indicator, config, clock):
        # A straight climb puts every window's high on its last slot and its low on its first
        rising = [100.0 + i for i in range(19)]
        strategy = BreakoutStrategy(clock=clock)
        levels = strategy.support_resistance(make_indicator(IndicatorKind.SMA, rising + [119.0]), 14)

        assert levels["resistance"].level == pytest.approx(119.0 * 1.05)
        assert levels["support"].level == pytest.approx(119.0 * 0.95)
        assert levels["position"] == pytest.approx(0.5)

        result = self.run_breakout(119.0, config, clock, make_indicator, averages=rising)
        assert result.signal.recommendation is Recommendation.NEUTRAL
        assert result.signal.confidence_score == pytest.approx(0.1)


# Lows at index 3 and 10 inside a 14-point window, the 15th point closes it
FALLING_LOW_PRICES = [110, 108, 105, 100, 105, 108, 110, 108, 104, 100, 95, 100, 104, 108, 108]
RISING_LOW_RSI = [50, 45, 40, 30, 40, 45, 50, 48, 44, 40, 35, 40, 45, 50, 55]


class TestMomentumDivergence:

    def run_divergence(self, prices, rsi_values, config, clock, make_indicator):
        sma = make_indicator(IndicatorKind.SMA, prices)
        rsi = make_indicator(IndicatorKind.RSI, rsi_values)
        return MomentumDivergenceStrategy(clock=clock, seed=0).run([sma, rsi], config)

    def test_lower_price_low_with_higher_rsi_low_is_bullish(self, make_indicator, config, clock):
        result = self.run_divergence(FALLING_LOW_PRICES, RISING_LOW_RSI, config, clock, make_indicator)

        assert result.signal.recommendation is Recommendation.BUY
        assert result.signal.reasons[0] == (
            "Bullish RSI divergence detected (strength: 142.86%, confidence: 100%)"
        )
        assert result.signal.reasons[1] == "RSI momentum strengthening - supporting bullish signal"
        assert result.signal.confidence_score == pytest.approx(0.45)

    def test_higher_price_high_with_lower_rsi_high_is_bearish(self, make_indicator, config, clock):
        prices = [200 - p for p in FALLING_LOW_PRICES]
        rsi_values = [100 - v for v in RISING_LOW_RSI]
        result = self.run_divergence(prices, rsi_values, config, clock, make_indicator)

        assert result.signal.recommendation is Recommendation.SELL
        assert result.signal.reasons[0].startswith("Bearish RSI divergence detected")
        assert result.signal.reasons[1] == "RSI momentum weakening - supporting bearish signal"
        assert result.signal.confidence_score == pytest.approx(0.45)

    def test_flat_oscillator_lows_are_not_a_divergence(self, make_indicator, config, clock):
        rsi_values = list(RISING_LOW_RSI)
        rsi_values[10] = 30
        result = self.run_divergence(FALLING_LOW_PRICES, rsi_values, config, clock, make_indicator)

        assert result.signal.recommendation is Recommendation.NEUTRAL
        assert result.signal.reasons == ["No momentum divergences detected"]
        assert result.signal.confidence_score == pytest.approx(0.1)

    def test_peaks_use_three_point_half_window(self):
        values = [9, 8, 7, 8, 9, 8, 5, 6, 7, 3, 7, 8, 9, 10, 11]
        # Index 6 is the lowest within two steps but not within three
        assert find_peaks(values, maxima=False) == [(9, 3.0)]
        assert find_peaks(values, maxima=False, order=2) == [(2, 7.0), (6, 5.0), (9, 3.0)]


def band_points(spreads, avg=100.0):
    return [
        ForecastPoint(day, avg * (1 + s), avg * (1 - s), avg, 0.7, "BOLLINGER")
        for day, s in enumerate(spreads, start=1)
    ]


class TestVolatilityBreakout:

    def test_requires_bollinger(self, make_indicator, config, clock):
        rsi = make_indicator(IndicatorKind.RSI, [50.0] * 10)
        with pytest.raises(StrategyInputError, match="Bollinger Bands"):
            VolatilityBreakoutStrategy(clock=clock).run([rsi], config)

    def test_compression_with_band_squeeze(self, make_indicator, config, clock):
        # Swings of +/-2 that die out leave the last 14-point window flat
        prices = [100.0 + 2 * (-1) ** i for i in range(20)] + [100.0] * 20
        sma = make_indicator(IndicatorKind.SMA, prices, spread=0.0)
        bands = IndicatorResult("BOLLINGER", IndicatorKind.BOLLINGER, band_points([0.05] * 20 + [0.01] * 20), 0.7, 0.1)
        result = VolatilityBreakoutStrategy(clock=clock, seed=0).run([sma, bands], config)

        assert result.signal.recommendation is Recommendation.NEUTRAL
        assert result.signal.confidence_score == pytest.approx(0.5)
        assert result.signal.reasons[0].startswith("Volatility compression detected")
        assert result.signal.reasons[1] == "Extended volatility squeeze (20 periods) - high breakout potential"
        assert result.signal.reasons[2] == "Volatility compression phase - awaiting directional breakout"

    def test_price_volatility_expansion(self, make_indicator, config, clock):
        prices = [100.0] * 30 + [100.0 + 2 * (-1) ** i for i in range(10)]
        sma = make_indicator(IndicatorKind.SMA, prices, spread=0.0)
        bands = make_indicator(IndicatorKind.BOLLINGER, [100.0] * 40)
        result = VolatilityBreakoutStrategy(clock=clock, seed=0).run([sma, bands], config)

        assert result.signal.recommendation is Recommendation.NEUTRAL
        assert result.signal.confidence_score == pytest.approx(0.55)
        assert result.signal.reasons[0].startswith("Volatility expansion detected - breakout in progress")
        assert result.signal.reasons[1] == "ATR expansion confirms volatility breakout (ratio: 525%)"

    @pytest.mark.parametrize("last_spread, expanded", [(0.025, False), (0.05, True)])
    def test_band_expansion_needs_130_percent_of_average(self, last_spread, expanded, make_indicator, config, clock):
        # Nine bands of width 0.04 then one of 0.05 (122% of average) or 0.10 (217%)
        sma = make_indicator(IndicatorKind.SMA, [100.0] * 10, spread=0.0)
        bands = IndicatorResult("BOLLINGER", IndicatorKind.BOLLINGER, band_points([0.02] * 9 + [last_spread]), 0.7, 0.1)
        strategy = VolatilityBreakoutStrategy(clock=clock, seed=0)
        assert strategy.bollinger_squeeze(bands)["is_expansion"] is expanded

        result = strategy.run([sma, bands], config)
        if expanded:
            assert result.signal.confidence_score == pytest.approx(0.4)
            assert result.signal.reasons[0].startswith("Volatility expansion detected")
        else:
            assert result.signal.reasons == ["No clear volatility patterns detected"]
