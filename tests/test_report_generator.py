"""
Tests for terminal charts and summaries.

Run with: python -m pytest tests/test_report_generator.py -v
"""

import math

import pytest

from crypto_forecast.config import IndicatorKind, Recommendation
from crypto_forecast.forecast_merge import merge_forecasts
from crypto_forecast.models import (
    CombinedStrategyResult,
    StrategyPerformance,
    StrategyResult,
    TradeSignal,
)
from crypto_forecast.report_generator import (
    ChartRenderer,
    ascii_line_chart,
    fill_non_finite,
    format_data_summary,
    format_forecast_table,
    format_overall_summary,
    format_strategy_summary,
    overall_recommendation,
    plot_all_indicators,
    plot_combined_forecast,
    plot_indicator_forecast,
    plot_price_comparison,
)
from crypto_forecast.strategy_orchestrator import summarize_consensus


def make_combined(*recommendations):
    results = [
        StrategyResult(
            signal=TradeSignal(rec, [f"reason {i}"], 0.6, f"S{i}"),
            forecast=[],
            name=f"S{i}",
            accuracy=0.7,
            weight=0.5,
        )
        for i, rec in enumerate(recommendations)
    ]
    return CombinedStrategyResult(
        individual_results=results,
        combined_signal=TradeSignal(Recommendation.NEUTRAL, ["Strategy consensus"], 0.2, "Combined Strategy"),
        combined_forecast=[],
        consensus=summarize_consensus(results),
        performance=StrategyPerformance(
            total_execution_time=12.0, avg_accuracy=0.7, total_weight=1.0, strategy_count=len(results),
        ),
    )


class TestAsciiChart:

    def test_fill_non_finite(self):
        assert fill_non_finite([math.nan, 1.0, math.inf, 3.0]) == [1.0, 1.0, 1.0, 3.0]
        assert fill_non_finite([math.nan]) == []

    def test_rising_series(self):
        lines = ascii_line_chart([1.0, 2.0, 3.0], height=2).split("\n")
        assert len(lines) == 3
        assert "$3.00" in lines[0]
        assert "$1.00" in lines[-1]
        assert "┼" in lines[-1]
        assert "╭" in lines[0] and "╯" in lines[-1]

    def test_flat_series(self):
        lines = ascii_line_chart([5.0, 5.0, 5.0]).split("\n")
        assert len(lines) == 1
        assert "┼──" in lines[0]

    def test_empty(self):
        assert ascii_line_chart([]) == ""


class TestTablesAndPlots:

    def test_long_table_is_elided(self, make_indicator):
        forecast = make_indicator(IndicatorKind.SMA, [100.0 + i for i in range(20)]).forecast
        table = format_forecast_table(forecast)
        assert "..." in table
        assert "│   20 │" in table
        assert "│   11 │" not in table

    def test_indicator_plot(self, make_indicator):
        rsi = make_indicator(IndicatorKind.RSI, [100.0, 101.0, 102.0])
        chart = plot_indicator_forecast(rsi)
        assert "RSI" in chart
        assert "↗ 2.00% change expected" in chart

    def test_empty_messages(self, make_indicator):
        assert plot_indicator_forecast(make_indicator(IndicatorKind.EMA, [])) == \
            "No forecast data available for EMA"
        assert plot_combined_forecast([], []) == "No combined forecast data available"
        assert plot_price_comparison(100.0, [], "BTC") == "No forecast prices available for comparison"

    def test_all_indicators_header(self, make_indicator):
        text = plot_all_indicators([make_indicator(IndicatorKind.RSI, [1.0, 2.0])])
        assert "INDIVIDUAL INDICATOR ANALYSIS" in text

    def test_combined_plot_lists_top_performers(self, make_indicator):
        indicators = [
            make_indicator(IndicatorKind.EMA, [100.0, 104.0], accuracy=0.78, weight=0.15),
            make_indicator(IndicatorKind.RSI, [100.0, 102.0], accuracy=0.72, weight=0.12),
        ]
        chart = plot_combined_forecast(indicators, merge_forecasts(indicators, 2))
        assert "Indicators: 2/10" in chart
        assert "1. EMA: 78.0% accuracy (15.0% weight)" in chart

    def test_price_comparison(self):
        chart = plot_price_comparison(100.0, [101.0, 105.0], "ETH")
        assert "ETH Price Trajectory" in chart
        assert "Expected Change: 5.00%" in chart


class TestChartRenderer:

    def test_chart_cached_by_average_series(self, make_indicator, clock):
        renderer = ChartRenderer(clock=clock)
        rsi = make_indicator(IndicatorKind.RSI, [100.0, 101.0])
        first = renderer.plot_indicator_forecast(rsi)
        second = renderer.plot_indicator_forecast(rsi)

        assert first == second
        assert renderer.cache_stats()["hits"] == 1
        assert "RSI-2-100.00,101.00" in renderer.cache

    def test_chart_key(self, make_indicator):
        rsi = make_indicator(IndicatorKind.RSI, [1.234, 5.0])
        assert ChartRenderer.chart_key("RSI", rsi.forecast) == "RSI-2-1.23,5.00"


class TestSummaries:

    @pytest.mark.parametrize("recommendations, expected", [
        ((Recommendation.BUY, Recommendation.BUY, Recommendation.SELL), "BUY"),
        ((Recommendation.SELL, Recommendation.SELL, Recommendation.NEUTRAL), "SELL"),
        ((Recommendation.BUY, Recommendation.SELL), "NEUTRAL"),
        ((Recommendation.BUY, Recommendation.NEUTRAL), "NEUTRAL"),
    ])
    def test_overall_recommendation(self, recommendations, expected):
        assert overall_recommendation(make_combined(*recommendations)) == expected

    def test_strategy_summary(self):
        text = format_strategy_summary(make_combined(Recommendation.BUY, Recommendation.SELL))
        assert "Combined Signal: NEUTRAL" in text
        assert "   1. S0: BUY (60.0%)" in text
        assert "Strongest Signal: S0 (60.0%)" in text

    def test_data_summary(self, make_prices):
        text = format_data_summary(make_prices(30), "BTC", "yahoo_finance", cached=True)
        assert "Data Points:  30" in text
        assert "yahoo_finance (cached)" in text

    def test_overall_summary(self, make_indicator):
        indicators = [make_indicator(IndicatorKind.RSI, [110.0, 110.0])]
        text = format_overall_summary(
            indicators, make_combined(Recommendation.BUY), indicators[0].forecast,
            current_price=100.0, coin="BTC", forecast_days=10, range_days=60, execution_time=50.0,
        )
        assert "OVERALL RECOMMENDATION: BUY" in text
        assert "Trend Direction: UPTREND" in text
        assert "Expected Change: 10.00%" in text
        assert all(len(line) == len(text.split("\n")[0]) for line in text.split("\n"))
