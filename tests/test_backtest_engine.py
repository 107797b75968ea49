"""
Tests for the walk-back backtest harness.

Run with: python -m pytest tests/test_backtest_engine.py -v
"""

import asyncio
import dataclasses

import pytest

from crypto_forecast.backtest_engine import (
    BacktestConfig,
    BacktestHarness,
    BacktestPeriodResult,
    IndicatorPerformance,
    analyze_backtest_results,
    calculate_accuracy,
    calculate_average_error,
    calculate_max_error,
    calculate_reliability,
    format_backtest_report,
    generate_recommendations,
    period_window,
)
from crypto_forecast.models import ComputationError, DataFetchError, ValidationError
from crypto_forecast.strategy_orchestrator import StrategyOrchestrator


def period_result(period, accuracy, avg_error=5.0):
    return BacktestPeriodResult(
        period=period,
        start_date="2024-01-01",
        end_date="2024-04-10",
        actual_prices=[100.0],
        predicted_prices=[101.0],
        accuracy=accuracy,
        avg_error=avg_error,
        max_error=avg_error * 2,
    )


class TestMetrics:

    def test_accuracy(self):
        assert calculate_accuracy([100, 100], [90, 110]) == pytest.approx(0.9)
        assert calculate_accuracy([100], [400]) == 0.0

    def test_accuracy_on_mismatch_or_empty(self):
        assert calculate_accuracy([100, 100], [100]) == 0.0
        assert calculate_accuracy([], []) == 0.0
        assert calculate_accuracy([0, 0], [1, 1]) == 0.0

    def test_errors(self):
        assert calculate_average_error([100, 200], [110, 180]) == pytest.approx(10.0)
        assert calculate_max_error([100, 200], [105, 180]) == pytest.approx(10.0)
        assert calculate_average_error([100], []) == 100.0
        assert calculate_max_error([100], []) == 100.0

    def test_reliability(self):
        assert calculate_reliability([0.8, 0.8]) == pytest.approx(1.0)
        assert calculate_reliability([0.5, 1.0]) == pytest.approx(1 - 0.25 / 0.75)
        assert calculate_reliability([]) == 0.0

    def test_period_window(self):
        assert period_window(150, 0, 10, 90) == (50, 140, 150)
        assert period_window(150, 2, 10, 90) == (30, 120, 130)


class TestBacktestConfig:

    def test_total_days_needed(self):
        config = BacktestConfig(periods=3, forecast_days=10, historical_range=90)
        assert config.total_days_needed == 90 + 30 + 30

    @pytest.mark.parametrize("kwargs", [{"periods": 0}, {"forecast_days": 7}])
    def test_rejects_invalid(self, kwargs):
        with pytest.raises(ValidationError):
            BacktestConfig(**kwargs)


class TestAnalysis:

    def test_no_results(self):
        with pytest.raises(ComputationError, match="No successful backtest results"):
            analyze_backtest_results("BTC", [], BacktestConfig())

    def test_recommendations(self):
        performance = {
            "EMA": IndicatorPerformance(accuracy=0.9, avg_error=2.0, reliability=0.95),
            "RSI": IndicatorPerformance(accuracy=0.7, avg_error=5.0, reliability=0.5),
            "SMA": IndicatorPerformance(accuracy=0.8, avg_error=3.0, reliability=0.9),
            "ADX": IndicatorPerformance(accuracy=0.6, avg_error=8.0, reliability=0.8),
        }
        results = [period_result(1, 0.95), period_result(2, 0.95), period_result(3, 0.95)]
        recommendations = generate_recommendations(0.82, performance, results)

        assert recommendations == [
            "Excellent forecast accuracy - system is highly reliable",
            "Top performing indicators: EMA, SMA, RSI",
            "Most reliable indicators: EMA, SMA, ADX",
            "Performance improving over recent periods",
        ]

    @pytest.mark.parametrize("accuracy, expected", [
        (0.65, "Good forecast accuracy - system shows strong predictive power"),
        (0.5, "Moderate accuracy - consider adjusting parameters or indicators"),
        (0.2, "Low accuracy - review data quality and indicator selection"),
    ])
    def test_accuracy_bands(self, accuracy, expected):
        results = [period_result(1, accuracy)]
        assert generate_recommendations(accuracy, {}, results)[0] == expected

    def test_declining_performance(self):
        results = [period_result(i, acc) for i, acc in enumerate([0.5, 0.5, 0.5, 0.9, 0.9, 0.9], start=1)]
        recommendations = generate_recommendations(0.7, {}, results)
        assert recommendations[-1] == "Performance declining in recent periods - consider parameter adjustment"

    def test_recent_periods_are_the_lowest_numbered(self):
        # Period 1 is the latest window regardless of list order
        results = [period_result(i, acc) for i, acc in enumerate([0.9, 0.9, 0.9, 0.5, 0.5, 0.5], start=1)]
        for ordering in (results, list(reversed(results))):
            recommendations = generate_recommendations(0.7, {}, ordering)
            assert recommendations[-1] == "Performance improving over recent periods"

    def test_aggregates_and_ranks(self):
        first = period_result(1, 0.9, avg_error=2.0)
        second = period_result(2, 0.7, avg_error=6.0)
        analysis = analyze_backtest_results("ETH", [first, second], BacktestConfig())

        assert analysis.total_periods == 2
        assert analysis.overall_accuracy == pytest.approx(0.8)
        assert analysis.avg_error == pytest.approx(4.0)
        assert analysis.max_error == pytest.approx(12.0)
        assert analysis.min_error == pytest.approx(2.0)


class TestBacktestHarness:

    def test_runs_every_period(self, make_prices, stub_fetcher_factory):
        fetcher = stub_fetcher_factory(make_prices(200))
        config = BacktestConfig(periods=3, forecast_days=10, historical_range=90)
        analysis = asyncio.run(BacktestHarness(fetcher).run_backtest("BTC", config))

        assert fetcher.requests == [("BTC", 150)]
        assert analysis.total_periods == 3
        assert [r.period for r in analysis.results] == [1, 2, 3]
        assert len(analysis.indicator_performance) == 10
        assert sorted(p.rank for p in analysis.indicator_performance.values()) == list(range(1, 11))
        for result in analysis.results:
            assert len(result.actual_prices) == 10
            assert len(result.predicted_prices) == 10
            assert 0.0 <= result.accuracy <= 1.0

    def test_each_period_uses_its_own_window(self, make_prices, stub_fetcher_factory):
        fetcher = stub_fetcher_factory(make_prices(200))
        config = BacktestConfig(periods=2, forecast_days=10, historical_range=90)
        analysis = asyncio.run(BacktestHarness(fetcher).run_backtest("BTC", config))

        first, second = analysis.results
        assert first.actual_prices != second.actual_prices
        assert first.predicted_prices != second.predicted_prices
        assert first.end_date > second.end_date

    def test_periods_without_history_are_skipped(self, make_prices, stub_fetcher_factory):
        fetcher = stub_fetcher_factory(make_prices(115))
        config = BacktestConfig(periods=3, forecast_days=10, historical_range=90)
        analysis = asyncio.run(BacktestHarness(fetcher).run_backtest("BTC", config))
        assert analysis.total_periods == 2

    def test_strategies_scored_on_request(self, make_prices, stub_fetcher_factory):
        fetcher = stub_fetcher_factory(make_prices(150))
        config = BacktestConfig(periods=1, forecast_days=10, historical_range=90, include_strategies=True)
        harness = BacktestHarness(fetcher, strategy_orchestrator=StrategyOrchestrator(seed=5))
        analysis = asyncio.run(harness.run_backtest("BTC", config))

        assert analysis.strategy_performance
        assert "STRATEGY FORECAST PERFORMANCE" in format_backtest_report(analysis)

    def test_recent_regime_change_reads_as_declining(self, make_prices, stub_fetcher_factory):
        history = make_prices(400)
        for i, point in enumerate(history[-30:]):
            close = point.close * (3.0 if i % 2 else 1 / 3)
            history[370 + i] = dataclasses.replace(point, close=close, high=close * 1.015, low=close * 0.985)
        fetcher = stub_fetcher_factory(history)
        config = BacktestConfig(periods=6, forecast_days=10, historical_range=90)
        analysis = asyncio.run(BacktestHarness(fetcher).run_backtest("BTC", config))

        by_period = {r.period: r.accuracy for r in analysis.results}
        assert max(by_period[p] for p in (1, 2, 3)) < min(by_period[p] for p in (4, 5, 6))
        assert analysis.recommendations[-1] == (
            "Performance declining in recent periods - consider parameter adjustment"
        )

    def test_fetch_failure(self, stub_fetcher_factory):
        fetcher = stub_fetcher_factory(error="network down")
        with pytest.raises(DataFetchError, match="Failed to fetch historical data: network down"):
            asyncio.run(BacktestHarness(fetcher).run_backtest("BTC", BacktestConfig(periods=1)))

    def test_too_little_history(self, make_prices, stub_fetcher_factory):
        fetcher = stub_fetcher_factory(make_prices(60))
        with pytest.raises(ValidationError, match="Insufficient data for backtest: 60 points"):
            asyncio.run(BacktestHarness(fetcher).run_backtest("BTC", BacktestConfig(periods=1)))


class TestReport:

    def test_sections(self):
        analysis = analyze_backtest_results("SOL", [period_result(1, 0.9)], BacktestConfig())
        report = format_backtest_report(analysis)

        assert report.startswith("=" * 70)
        for heading in ("BACKTEST ANALYSIS RESULTS", "INDICATOR PERFORMANCE RANKINGS",
                        "RECOMMENDATIONS", "PERIOD-BY-PERIOD RESULTS"):
            assert heading in report
        assert "STRATEGY FORECAST PERFORMANCE" not in report
        assert "Symbol:            SOL" in report
        assert "Overall Accuracy:  90.0%" in report
