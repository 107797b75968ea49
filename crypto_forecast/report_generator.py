#!/usr/bin/env python3
"""
Terminal Report Generator for the Crypto Forecast Pipeline

Renders every stage of a forecast run as plain text for the console:
    - Line charts: ASCII plot of forecast averages with a price axis
    - Forecast tables: day / high / low / avg / confidence
    - Summaries: data, indicators, strategies, forecast, overall

All renderers return strings; printing is left to the caller. Chart
rendering is pure, ``ChartRenderer`` adds a TTL cache on top keyed by
the source name and the 2-decimal average series.

CHART LAYOUT
    Each row carries a right-aligned price label and an axis tick. The
    series is scaled so the full range spans ``height`` rows; rising and
    falling moves are drawn with rounded box-drawing corners.

Author: Tamer
Version: 1.0.0
"""

from __future__ import annotations

import logging
import math
import time
from typing import Any, Callable, Dict, List, Optional, Sequence

from crypto_forecast.cache import Clock, TTLCache
from crypto_forecast.config import CACHE, Recommendation
from crypto_forecast.models import (
    CombinedStrategyResult,
    ForecastPoint,
    IndicatorResult,
    PricePoint,
)
from crypto_forecast.numerics import safe_mean, safe_ratio

logger = logging.getLogger(__name__)


# =============================================================================
# CONSTANTS
# =============================================================================

CHART_HEIGHT: int = 12
COMBINED_CHART_HEIGHT: int = 14
COMPARISON_CHART_HEIGHT: int = 10
TABLE_ROWS: int = 10                    # Rows shown before eliding to the last day
BOX_WIDTH: int = 63
WIDE_BOX_WIDTH: int = 72
TOTAL_INDICATORS: int = 10
TOTAL_STRATEGIES: int = 6


def _price_label(value: float) -> str:
    return f"${value:.2f}".rjust(10)


def _whole_price_label(value: float) -> str:
    return f"${value:.0f}".rjust(10)


# =============================================================================
# SECTION 1: ASCII LINE CHART
# =============================================================================

def fill_non_finite(values: Sequence[float]) -> List[float]:
    """
    Replace NaN/Inf entries with the previous valid value.

    Leading invalid entries take the first valid value. Returns an empty
    list when no value is finite.
    """
    valid = [v for v in values if v is not None and math.isfinite(v)]
    if not valid:
        return []
    cleaned: List[float] = []
    previous = valid[0]
    for value in values:
        if value is not None and math.isfinite(value):
            previous = value
        cleaned.append(previous)
    return cleaned


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def ascii_line_chart(
    series: Sequence[float],
    height: int = CHART_HEIGHT,
    label: Callable[[float], str] = _price_label,
    padding: str = "  ",
) -> str:
    """
    Plot a series as an ASCII line chart.

    Args:
        series: Values in plotting order (already finite)
        height: Rows used by the full value range
        label: Formatter for the axis labels
        padding: Prefix of every row

    Returns:
        Multi-line chart string
    """
    if not series:
        return ""

    lo, hi = min(series), max(series)
    span = hi - lo
    ratio = height / span if span else 1.0
    min2 = _round_half_up(lo * ratio)
    max2 = _round_half_up(hi * ratio)
    rows = max2 - min2

    scaled = [_round_half_up(v * ratio) - min2 for v in series]
    grid = [[" "] * len(series) for _ in range(rows + 1)]

    for x in range(len(series) - 1):
        y0, y1 = scaled[x], scaled[x + 1]
        if y0 == y1:
            grid[rows - y0][x] = "─"
            continue
        grid[rows - y1][x] = "╰" if y0 > y1 else "╭"
        grid[rows - y0][x] = "╮" if y0 > y1 else "╯"
        for y in range(min(y0, y1) + 1, max(y0, y1)):
            grid[rows - y][x] = "│"

    start_row = rows - scaled[0]
    lines = []
    for row in range(rows + 1):
        value = hi - row * span / rows if rows else hi
        tick = "┼" if row == start_row else "┤"
        lines.append(f"{padding}{label(value)} {tick}{''.join(grid[row])}")
    return "\n".join(lines)


# =============================================================================
# SECTION 2: TABLE AND BOX HELPERS
# =============================================================================

def _forecast_row(point: ForecastPoint) -> str:
    return (
        f"│ {point.day:>4} │ {'$' + format(point.high, '.2f'):>10} │ {'$' + format(point.low, '.2f'):>10} "
        f"│ {'$' + format(point.avg, '.2f'):>10} │ {format(point.confidence * 100, '.1f') + '%':>11} │"
    )


def format_forecast_table(forecast: Sequence[ForecastPoint], max_rows: int = TABLE_ROWS) -> str:
    """Day table; longer forecasts show the first rows, an ellipsis and the last day."""
    lines = [
        "┌──────┬────────────┬────────────┬────────────┬─────────────┐",
        "│ Day  │    High    │    Low     │    Avg     │ Confidence  │",
        "├──────┼────────────┼────────────┼────────────┼─────────────┤",
    ]
    lines.extend(_forecast_row(p) for p in forecast[:max_rows])
    if len(forecast) > max_rows:
        lines.append("│  ... │    ...     │    ...     │    ...     │     ...     │")
        lines.append(_forecast_row(forecast[-1]))
    lines.append("└──────┴────────────┴────────────┴────────────┴─────────────┘")
    return "\n".join(lines)


def _box(title: str, rows: Sequence[str], width: int = BOX_WIDTH) -> str:
    inner = width - 2
    lines = [f"┌{'─' * inner}┐", f"│{title.center(inner)}│", f"├{'─' * inner}┤"]
    lines.extend(f"│  {row}".ljust(inner + 1) + "│" for row in rows)
    lines.append(f"└{'─' * inner}┘")
    return "\n".join(lines)


def _change_percent(start: float, end: float) -> float:
    return safe_ratio(end - start, start) * 100


def _arrow(change: float) -> str:
    return "↗" if change >= 0 else "↘"


# =============================================================================
# SECTION 3: CHARTS
# =============================================================================

def plot_indicator_forecast(indicator: IndicatorResult) -> str:
    """Header, average-price chart and forecast table for one indicator."""
    if not indicator.forecast:
        return f"No forecast data available for {indicator.name}"

    averages = fill_non_finite([p.avg for p in indicator.forecast])
    if not averages:
        logger.warning(f"No valid data for {indicator.name} chart")
        return f"No valid data available for {indicator.name} chart"

    change = _change_percent(averages[0], averages[-1])
    confidence = safe_mean(p.confidence for p in indicator.forecast) * 100

    header = [
        f"┌{'─' * 65}┐",
        f"│ {indicator.name:<30} │ {'Accuracy: ' + format(indicator.accuracy * 100, '.1f') + '%':<30} │",
        f"│ {_arrow(change) + ' ' + format(change, '.2f') + '% change expected':<30} "
        f"│ {'Confidence: ' + format(confidence, '.1f') + '%':<30} │",
        f"└{'─' * 65}┘",
    ]
    return "\n".join([
        "",
        *header,
        ascii_line_chart(averages, height=CHART_HEIGHT),
        "",
        format_forecast_table(indicator.forecast),
    ])


def plot_all_indicators(indicators: Sequence[IndicatorResult], plot: Callable = plot_indicator_forecast) -> str:
    """Every indicator chart, separated by rules."""
    sections = ["", "INDIVIDUAL INDICATOR ANALYSIS", "═" * 70]
    for index, indicator in enumerate(indicators):
        sections.append(plot(indicator))
        if index < len(indicators) - 1:
            sections.append("")
            sections.append("─" * 70)
    return "\n".join(sections)


def plot_combined_forecast(indicators: Sequence[IndicatorResult], merged: Sequence[ForecastPoint]) -> str:
    """Merged forecast chart with price analysis and top performers."""
    if not merged:
        return "No combined forecast data available"

    averages = fill_non_finite([p.avg for p in merged])
    if not averages:
        logger.warning("No valid data for combined forecast chart")
        return "No valid data available for combined forecast chart"

    current, target = averages[0], averages[-1]
    change = _change_percent(current, target)
    confidence = safe_mean(p.confidence for p in merged) * 100
    total_weight = sum(ind.weight for ind in indicators)
    low, high = min(averages), max(averages)

    inner = 70
    lines = [
        "",
        f"┌{'─' * inner}┐",
        f"│ {'COMBINED FORECAST':<34} │ {'Indicators: ' + str(len(indicators)) + '/' + str(TOTAL_INDICATORS):<31} │",
        f"│ {_arrow(change) + ' ' + format(change, '.2f') + '% change predicted':<34} "
        f"│ {'Total Weight: ' + format(total_weight, '.2f'):<31} │",
        f"│ {'Period: ' + str(len(merged)) + ' days':<34} │ {'Avg Confidence: ' + format(confidence, '.1f') + '%':<31} │",
        f"└{'─' * inner}┘",
        ascii_line_chart(averages, height=COMBINED_CHART_HEIGHT),
        "",
        "Price Analysis:",
        f"   Current: ${current:.2f}",
        f"   Target:  ${target:.2f} ({change:.2f}%)",
        f"   Range:   ${low:.2f} - ${high:.2f} (±${high - low:.2f})",
        "",
        "Top Performers:",
    ]
    ranked = sorted(indicators, key=lambda ind: ind.accuracy, reverse=True)[:3]
    for rank, ind in enumerate(ranked, start=1):
        lines.append(
            f"   {rank}. {ind.name}: {ind.accuracy * 100:.1f}% accuracy ({ind.weight * 100:.1f}% weight)"
        )
    lines.append("")
    lines.append(format_forecast_table(merged))
    return "\n".join(lines)


def plot_price_comparison(current_price: float, forecast_prices: Sequence[float], symbol: str) -> str:
    """Trajectory from the current price through the forecast averages."""
    if not forecast_prices:
        return "No forecast prices available for comparison"

    series = fill_non_finite([current_price, *forecast_prices])
    if not series:
        logger.warning(f"No valid price data for {symbol} comparison chart")
        return f"No valid price data available for {symbol} comparison chart"

    target = forecast_prices[-1]
    change = _change_percent(current_price, target)
    return "\n".join([
        "",
        f"{symbol} Price Trajectory",
        "─" * 50,
        ascii_line_chart(series, height=COMPARISON_CHART_HEIGHT, label=_whole_price_label),
        f"Current: ${current_price:.2f} → Target: ${target:.2f}",
        f"Expected Change: {change:.2f}%",
    ])


class ChartRenderer:
    """
    Chart functions behind a TTL cache.

    Args:
        cache: Chart cache, created with the default lifetime when omitted
        clock: Time source for the default cache
    """

    def __init__(self, cache: Optional[TTLCache] = None, clock: Clock = time.monotonic):
        self.cache = cache if cache is not None else TTLCache(
            "charts", CACHE.chart_ttl, CACHE.chart_max_size, clock=clock
        )

    @staticmethod
    def chart_key(name: str, forecast: Sequence[ForecastPoint]) -> str:
        signature = ",".join(f"{p.avg:.2f}" for p in forecast)
        return f"{name}-{len(forecast)}-{signature}"

    def _cached(self, key: str, render: Callable[[], str]) -> str:
        chart = self.cache.get(key)
        if chart is not None:
            return chart
        chart = render()
        self.cache.put(key, chart)
        return chart

    def plot_indicator_forecast(self, indicator: IndicatorResult) -> str:
        return self._cached(
            self.chart_key(indicator.name, indicator.forecast),
            lambda: plot_indicator_forecast(indicator),
        )

    def plot_all_indicators(self, indicators: Sequence[IndicatorResult]) -> str:
        return plot_all_indicators(indicators, plot=self.plot_indicator_forecast)

    def plot_combined_forecast(self, indicators: Sequence[IndicatorResult], merged: Sequence[ForecastPoint]) -> str:
        return self._cached(
            self.chart_key(f"combined-{len(indicators)}", merged),
            lambda: plot_combined_forecast(indicators, merged),
        )

    def plot_price_comparison(self, current_price: float, forecast_prices: Sequence[float], symbol: str) -> str:
        return plot_price_comparison(current_price, forecast_prices, symbol)

    def cache_stats(self) -> Dict[str, Any]:
        return self.cache.stats()

    def describe_cache(self) -> List[str]:
        return self.cache.describe()

    def clear_cache(self) -> None:
        self.cache.clear()


# =============================================================================
# SECTION 4: SUMMARIES
# =============================================================================

def format_data_summary(data: Sequence[PricePoint], symbol: str, source: str, cached: bool) -> str:
    """Fetched history at a glance."""
    if not data:
        return _box("Data Summary", [f"Symbol: {symbol}", "No data points"])

    oldest, latest = data[0], data[-1]
    change = _change_percent(oldest.close, latest.close)
    rows = [
        f"Symbol:       {symbol}",
        f"Data Points:  {len(data)}",
        f"Date Range:   {oldest.date} → {latest.date}",
        f"Latest Close: ${latest.close:,.2f} ({change:.2f}%)",
        f"Data Source:  {source}{' (cached)' if cached and 'cached' not in source else ''}",
        f"Highest:      ${max(p.high for p in data):,.2f}",
        f"Lowest:       ${min(p.low for p in data):,.2f}",
        f"Avg Volume:   {safe_mean(p.volume for p in data):,.0f}",
    ]
    return _box("Data Summary", rows)


def format_indicator_summary(indicators: Sequence[IndicatorResult]) -> str:
    rows = [
        f"{ind.name:<25} │ Acc: {ind.accuracy * 100:5.1f}% │ "
        f"Conf: {safe_mean(p.confidence for p in ind.forecast) * 100:5.1f}%"
        for ind in indicators
    ]
    return _box("Technical Indicators Summary", rows)


def format_strategy_summary(combined: CombinedStrategyResult) -> str:
    """Combined signal, consensus and one line per strategy."""
    signal = combined.combined_signal
    consensus = combined.consensus
    lines = [
        "",
        "Strategy Analysis Results",
        "=" * 50,
        f"Combined Signal: {signal.recommendation.value.upper()}",
        f"Confidence: {signal.confidence_score * 100:.1f}%",
        "Strategy Consensus:",
        f"   • Buy signals: {consensus.buy_signals}",
        f"   • Sell signals: {consensus.sell_signals}",
        f"   • Neutral signals: {consensus.neutral_signals}",
    ]
    strongest = consensus.strongest_signal
    if strongest is not None:
        lines.append(
            f"Strongest Signal: {strongest.name} ({strongest.signal.confidence_score * 100:.1f}%)"
        )

    lines.extend(["", "Individual Strategy Results:"])
    for index, result in enumerate(combined.individual_results, start=1):
        lines.append(
            f"   {index}. {result.name}: {result.signal.recommendation.value.upper()} "
            f"({result.signal.confidence_score * 100:.1f}%)"
        )
        if result.signal.reasons:
            lines.append(f"      {result.signal.reasons[0]}")

    perf = combined.performance
    lines.append("")
    lines.append(
        f"Execution: {perf.total_execution_time:.0f}ms | Avg Accuracy: {perf.avg_accuracy * 100:.1f}%"
    )
    lines.append("=" * 50)
    return "\n".join(lines)


def format_forecast_summary(
    forecast: Sequence[ForecastPoint],
    current_price: float,
    indicators: Sequence[IndicatorResult],
) -> str:
    average = safe_mean(p.avg for p in forecast)
    rows = [
        f"Current Price:      ${current_price:,.2f}",
        f"Average Forecast:   ${average:,.2f}",
        f"Expected Change:    {_change_percent(current_price, average):.2f}%",
        f"Average Confidence: {safe_mean(p.confidence for p in forecast) * 100:.1f}%",
        f"Indicators Used:    {len(indicators)}/{TOTAL_INDICATORS}",
    ]
    return _box("Forecast Summary", rows, width=47)


def overall_recommendation(combined: CombinedStrategyResult) -> str:
    """Majority vote of the individual strategies (strictly more than each other side)."""
    results = combined.individual_results
    buys = sum(1 for r in results if r.signal.recommendation is Recommendation.BUY)
    sells = sum(1 for r in results if r.signal.recommendation is Recommendation.SELL)
    neutrals = sum(1 for r in results if r.signal.recommendation is Recommendation.NEUTRAL)
    if buys > sells and buys > neutrals:
        return "BUY"
    if sells > buys and sells > neutrals:
        return "SELL"
    return "NEUTRAL"


def format_overall_summary(
    indicators: Sequence[IndicatorResult],
    combined: CombinedStrategyResult,
    forecast: Sequence[ForecastPoint],
    current_price: float,
    coin: str,
    forecast_days: int,
    range_days: int,
    execution_time: float,
) -> str:
    """Final report box combining indicators, strategies and the forecast."""
    results = combined.individual_results
    target = safe_mean(p.avg for p in forecast)
    change = _change_percent(current_price, target)
    trend = "UPTREND" if change > 0 else "DOWNTREND" if change < 0 else "SIDEWAYS"
    indicator_confidence = safe_mean(
        safe_mean(p.confidence for p in ind.forecast) for ind in indicators
    )

    inner = WIDE_BOX_WIDTH - 2
    blank = f"║{' ' * inner}║"

    def row(text: str) -> str:
        return f"║  {text}".ljust(inner + 1) + "║"

    lines = [
        f"╔{'═' * inner}╗",
        f"║{'OVERALL ANALYSIS'.center(inner)}║",
        f"║{'Combined Results Summary'.center(inner)}║",
        f"╠{'═' * inner}╣",
        row("Analysis Summary:"),
        row(f"   • Cryptocurrency: {coin}"),
        row(f"   • Forecast Period: {forecast_days} days"),
        row(f"   • Historical Data: {range_days} days"),
        blank,
        row(f"Technical Indicators ({len(indicators)}/{TOTAL_INDICATORS}):"),
        row(f"   • Average Accuracy: {safe_mean(ind.accuracy for ind in indicators) * 100:.1f}%"),
        row(f"   • Average Confidence: {indicator_confidence * 100:.1f}%"),
        blank,
        row(f"Trading Strategies ({len(results)}/{TOTAL_STRATEGIES}):"),
        row(f"   • Buy Signals: {combined.consensus.buy_signals} strategies"),
        row(f"   • Sell Signals: {combined.consensus.sell_signals} strategies"),
        row(f"   • Neutral Signals: {combined.consensus.neutral_signals} strategies"),
        row(f"   • Average Confidence: {combined.consensus.avg_confidence * 100:.1f}%"),
        blank,
        row(f"OVERALL RECOMMENDATION: {overall_recommendation(combined)}"),
        row(f"   • Current Price: ${current_price:,.2f}"),
        row(f"   • Target Price: ${target:,.2f}"),
        row(f"   • Expected Change: {change:.2f}%"),
        row(f"   • Trend Direction: {trend}"),
        row(f"   • Forecast Confidence: {safe_mean(p.confidence for p in forecast) * 100:.1f}%"),
        blank,
        row("Performance:"),
        row(f"   • Total Analysis Time: {execution_time:.0f}ms"),
        row(f"   • Average per Indicator: {safe_ratio(execution_time, len(indicators)):.0f}ms"),
        f"╚{'═' * inner}╝",
    ]
    return "\n".join(lines)


# =============================================================================
# MODULE EXPORTS
# =============================================================================

__all__ = [
    "fill_non_finite",
    "ascii_line_chart",
    "format_forecast_table",
    "plot_indicator_forecast",
    "plot_all_indicators",
    "plot_combined_forecast",
    "plot_price_comparison",
    "ChartRenderer",
    "format_data_summary",
    "format_indicator_summary",
    "format_strategy_summary",
    "format_forecast_summary",
    "overall_recommendation",
    "format_overall_summary",
]
