#!/usr/bin/env python3
"""
Forecast Backtest Harness
=========================

Replays the indicator pipeline on historical windows and scores the merged
forecast against what the market actually did.

WINDOWING
---------
For period p (0-based, most recent first) over a history of length L:

    end        = L - (p + 1) * forecast_days
    training   = prices[end - historical_range : end]
    validation = prices[end : end + forecast_days]

The validation windows of consecutive periods tile the most recent
``periods * forecast_days`` points without overlap. A period whose
training or validation slice comes up short is skipped with a warning.

METRICS
-------
    accuracy  = max(0, 1 - mean|actual - predicted| / mean(actual))
    avg error = mean(|actual - predicted| / actual) * 100
    max error = max(|actual - predicted| / actual) * 100

Series of different length score accuracy 0 and errors of 100.

Indicator reliability across periods is ``max(0, 1 - std/mean)`` of their
per-period accuracies (population std).

Author: Tamer
Version: 1.0.0
"""

from __future__ import annotations

import logging
import warnings
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

import numpy as np

from crypto_forecast.config import BACKTEST, FORECAST
from crypto_forecast.forecast_merge import ForecastMerger
from crypto_forecast.models import (
    ComputationError,
    DataFetchError,
    ForecastError,
    PricePoint,
    ValidationError,
    create_strategy_config,
)
from crypto_forecast.technical_indicators import IndicatorEngine

# Suppress numerical warnings for clean output
warnings.filterwarnings('ignore', category=RuntimeWarning)

logger = logging.getLogger(__name__)


# =============================================================================
# SECTION 1: CONFIGURATION
# =============================================================================

class Config:
    """Recommendation thresholds."""
    # Overall accuracy tiers
    EXCELLENT: float = 0.8
    GOOD: float = 0.6
    MODERATE: float = 0.4

    RELIABLE: float = 0.7           # Reliability above which an indicator is listed
    TOP_N: int = 3
    RECENT_PERIODS: int = 3
    TREND_MARGIN: float = 0.1       # Recent vs overall accuracy delta

    MISMATCH_ERROR: float = 100.0


@dataclass
class BacktestConfig:
    """Backtest parameters."""
    periods: int = BACKTEST.periods
    forecast_days: int = FORECAST.default_horizon
    historical_range: int = BACKTEST.min_historical_range
    min_data_points: int = BACKTEST.min_data_points
    include_strategies: bool = False

    def __post_init__(self):
        if self.periods <= 0:
            raise ValidationError("Backtest requires at least one period")
        if self.forecast_days not in FORECAST.allowed_horizons:
            raise ValidationError("Forecast days must be 10, 20, or 30")

    @property
    def total_days_needed(self) -> int:
        return self.historical_range + self.periods * self.forecast_days + BACKTEST.fetch_buffer_days


# =============================================================================
# SECTION 2: RESULT CONTAINERS
# =============================================================================

@dataclass
class IndicatorPeriodScore:
    """Accuracy of one forecast source in one period."""
    name: str
    accuracy: float
    avg_error: float

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "accuracy": self.accuracy, "avgError": self.avg_error}


@dataclass
class BacktestPeriodResult:
    """Outcome of one training/validation window."""
    period: int                     # 1-based
    start_date: str
    end_date: str
    actual_prices: List[float]
    predicted_prices: List[float]
    accuracy: float
    avg_error: float
    max_error: float
    indicators: List[IndicatorPeriodScore] = field(default_factory=list)
    strategies: List[IndicatorPeriodScore] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "period": self.period,
            "startDate": self.start_date,
            "endDate": self.end_date,
            "actualPrices": list(self.actual_prices),
            "predictedPrices": list(self.predicted_prices),
            "accuracy": self.accuracy,
            "avgError": self.avg_error,
            "maxError": self.max_error,
            "indicators": [s.to_dict() for s in self.indicators],
            "strategies": [s.to_dict() for s in self.strategies],
        }


@dataclass
class IndicatorPerformance:
    """Aggregate of one forecast source over all periods."""
    accuracy: float
    avg_error: float
    reliability: float
    rank: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "accuracy": self.accuracy,
            "avgError": self.avg_error,
            "reliability": self.reliability,
            "rank": self.rank,
        }


@dataclass
class BacktestAnalysis:
    """Complete backtest outcome."""
    symbol: str
    total_periods: int
    forecast_days: int
    overall_accuracy: float
    avg_error: float
    max_error: float
    min_error: float
    results: List[BacktestPeriodResult]
    indicator_performance: Dict[str, IndicatorPerformance]
    recommendations: List[str]
    strategy_performance: Dict[str, IndicatorPerformance] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "symbol": self.symbol,
            "totalPeriods": self.total_periods,
            "forecastDays": self.forecast_days,
            "overallAccuracy": self.overall_accuracy,
            "avgError": self.avg_error,
            "maxError": self.max_error,
            "minError": self.min_error,
            "results": [r.to_dict() for r in self.results],
            "indicatorPerformance": {k: v.to_dict() for k, v in self.indicator_performance.items()},
            "strategyPerformance": {k: v.to_dict() for k, v in self.strategy_performance.items()},
            "recommendations": list(self.recommendations),
        }


# =============================================================================
# SECTION 3: ERROR METRICS
# =============================================================================

def calculate_accuracy(actual: Sequence[float], predicted: Sequence[float]) -> float:
    """1 minus mean absolute error relative to the mean actual price, floored at 0."""
    if len(actual) != len(predicted) or len(actual) == 0:
        return 0.0
    a = np.asarray(actual, dtype=float)
    p = np.asarray(predicted, dtype=float)
    mean_price = a.mean()
    if mean_price == 0:
        return 0.0
    return float(max(0.0, 1.0 - np.abs(a - p).mean() / mean_price))


def calculate_average_error(actual: Sequence[float], predicted: Sequence[float]) -> float:
    """Mean absolute percentage error."""
    if len(actual) != len(predicted) or len(actual) == 0:
        return Config.MISMATCH_ERROR
    a = np.asarray(actual, dtype=float)
    p = np.asarray(predicted, dtype=float)
    with np.errstate(divide="ignore", invalid="ignore"):
        errors = np.abs(a - p) / a
    errors = errors[np.isfinite(errors)]
    return float(errors.mean() * 100) if errors.size else Config.MISMATCH_ERROR


def calculate_max_error(actual: Sequence[float], predicted: Sequence[float]) -> float:
    """Largest absolute percentage error."""
    if len(actual) != len(predicted) or len(actual) == 0:
        return Config.MISMATCH_ERROR
    a = np.asarray(actual, dtype=float)
    p = np.asarray(predicted, dtype=float)
    with np.errstate(divide="ignore", invalid="ignore"):
        errors = np.abs(a - p) / a
    errors = errors[np.isfinite(errors)]
    return float(errors.max() * 100) if errors.size else Config.MISMATCH_ERROR


def calculate_reliability(accuracies: Sequence[float]) -> float:
    """Consistency of accuracy across periods: max(0, 1 - std/mean)."""
    if len(accuracies) == 0:
        return 0.0
    arr = np.asarray(accuracies, dtype=float)
    mean = arr.mean()
    if mean == 0:
        return 0.0
    return float(max(0.0, 1.0 - arr.std() / mean))


def period_window(length: int, period: int, forecast_days: int, historical_range: int) -> tuple:
    """(train_start, end, validation_end) indices for a 0-based period."""
    end = length - (period + 1) * forecast_days
    return end - historical_range, end, end + forecast_days


# =============================================================================
# SECTION 4: ANALYSIS
# =============================================================================

def _aggregate(scores: Dict[str, List[IndicatorPeriodScore]]) -> Dict[str, IndicatorPerformance]:
    performance = {
        name: IndicatorPerformance(
            accuracy=float(np.mean([s.accuracy for s in items])),
            avg_error=float(np.mean([s.avg_error for s in items])),
            reliability=calculate_reliability([s.accuracy for s in items]),
        )
        for name, items in scores.items()
    }
    ranked = sorted(performance.items(), key=lambda item: item[1].accuracy, reverse=True)
    for rank, (_, perf) in enumerate(ranked, start=1):
        perf.rank = rank
    return dict(ranked)


def generate_recommendations(
    overall_accuracy: float,
    indicator_performance: Dict[str, IndicatorPerformance],
    results: Sequence[BacktestPeriodResult],
) -> List[str]:
    """Plain-language guidance derived from the backtest figures."""
    recommendations = []

    if overall_accuracy > Config.EXCELLENT:
        recommendations.append("Excellent forecast accuracy - system is highly reliable")
    elif overall_accuracy > Config.GOOD:
        recommendations.append("Good forecast accuracy - system shows strong predictive power")
    elif overall_accuracy > Config.MODERATE:
        recommendations.append("Moderate accuracy - consider adjusting parameters or indicators")
    else:
        recommendations.append("Low accuracy - review data quality and indicator selection")

    top = sorted(indicator_performance.items(), key=lambda item: item[1].accuracy, reverse=True)
    recommendations.append(
        f"Top performing indicators: {', '.join(name for name, _ in top[:Config.TOP_N])}"
    )

    reliable = [name for name, perf in indicator_performance.items() if perf.reliability > Config.RELIABLE]
    if reliable:
        recommendations.append(f"Most reliable indicators: {', '.join(reliable)}")

    # Period 1 is the window closest to today
    recent = sorted(results, key=lambda r: r.period)[:Config.RECENT_PERIODS]
    recent_accuracy = float(np.mean([r.accuracy for r in recent])) if recent else overall_accuracy
    if recent_accuracy > overall_accuracy + Config.TREND_MARGIN:
        recommendations.append("Performance improving over recent periods")
    elif recent_accuracy < overall_accuracy - Config.TREND_MARGIN:
        recommendations.append("Performance declining in recent periods - consider parameter adjustment")

    return recommendations


def analyze_backtest_results(
    symbol: str,
    results: Sequence[BacktestPeriodResult],
    config: BacktestConfig,
) -> BacktestAnalysis:
    """
    Aggregate period results into the final analysis.

    Raises:
        ComputationError: no period completed
    """
    if not results:
        raise ComputationError("No successful backtest results to analyze")

    indicator_scores: Dict[str, List[IndicatorPeriodScore]] = {}
    strategy_scores: Dict[str, List[IndicatorPeriodScore]] = {}
    for result in results:
        for score in result.indicators:
            indicator_scores.setdefault(score.name, []).append(score)
        for score in result.strategies:
            strategy_scores.setdefault(score.name, []).append(score)

    overall = float(np.mean([r.accuracy for r in results]))
    indicator_performance = _aggregate(indicator_scores)

    return BacktestAnalysis(
        symbol=symbol,
        total_periods=len(results),
        forecast_days=config.forecast_days,
        overall_accuracy=overall,
        avg_error=float(np.mean([r.avg_error for r in results])),
        max_error=float(max(r.max_error for r in results)),
        min_error=float(min(r.avg_error for r in results)),
        results=list(results),
        indicator_performance=indicator_performance,
        strategy_performance=_aggregate(strategy_scores),
        recommendations=generate_recommendations(overall, indicator_performance, results),
    )


# =============================================================================
# SECTION 5: HARNESS
# =============================================================================

class BacktestHarness:
    """
    Walk the indicator pipeline backwards through history.

    Args:
        fetcher: Object with an async ``fetch_historical_data(symbol, days)``
            returning a ``PriceFetchResult``
        indicator_engine: Indicator orchestrator (a fresh one by default)
        merger: Forecast merge engine (a fresh one by default)
        strategy_orchestrator: Needed only when strategies are scored
    """

    def __init__(self, fetcher, indicator_engine=None, merger=None, strategy_orchestrator=None):
        self.fetcher = fetcher
        self.indicator_engine = indicator_engine or IndicatorEngine()
        self.merger = merger or ForecastMerger()
        self.strategy_orchestrator = strategy_orchestrator

    async def run_backtest(self, symbol: str, config: Optional[BacktestConfig] = None) -> BacktestAnalysis:
        """
        Run every period and aggregate the outcome.

        Raises:
            DataFetchError: history could not be fetched
            ValidationError: fewer points than ``config.min_data_points``
            ComputationError: no period completed
        """
        config = config or BacktestConfig()
        days_needed = config.total_days_needed
        logger.info(
            f"Backtest {symbol}: {config.periods} periods x {config.forecast_days} days, "
            f"{config.historical_range}-day training windows ({days_needed} days of history)"
        )

        response = await self.fetcher.fetch_historical_data(symbol, days_needed)
        if not response.success or not response.data:
            raise DataFetchError(f"Failed to fetch historical data: {response.error}")

        history: List[PricePoint] = list(response.data)
        if len(history) < config.min_data_points:
            raise ValidationError(
                f"Insufficient data for backtest: {len(history)} points "
                f"(minimum {config.min_data_points} required)"
            )

        results = []
        for period in range(config.periods):
            try:
                result = await self.run_single_period(symbol, history, period, config)
            except ForecastError as e:
                logger.warning(f"Period {period + 1} failed - skipping: {e}")
                continue
            results.append(result)
            logger.debug(f"Period {period + 1} completed - accuracy {result.accuracy:.1%}")

        analysis = analyze_backtest_results(symbol, results, config)
        logger.info(f"Backtest complete: {analysis.total_periods} periods, "
                    f"overall accuracy {analysis.overall_accuracy:.1%}")
        return analysis

    def reset_caches(self) -> None:
        """Indicator and merge cache keys ignore price content; every window must recompute."""
        self.indicator_engine.clear_cache()
        self.merger.cache.clear()
        if self.strategy_orchestrator is not None:
            self.strategy_orchestrator.clear_caches()

    async def run_single_period(
        self,
        symbol: str,
        history: Sequence[PricePoint],
        period: int,
        config: BacktestConfig,
    ) -> BacktestPeriodResult:
        start, end, stop = period_window(len(history), period, config.forecast_days, config.historical_range)
        if start < 0:
            raise ValidationError(f"Insufficient data for period {period + 1}")

        training = list(history[start:end])
        validation = list(history[end:stop])
        if len(training) < config.historical_range or len(validation) < config.forecast_days:
            raise ValidationError(f"Insufficient data for complete backtest period {period + 1}")

        self.reset_caches()
        indicators = await self.indicator_engine.calculate_all_indicators(
            symbol, training, config.forecast_days
        )
        merged = self.merger.merge(indicators, config.forecast_days)

        actual = [p.close for p in validation]
        predicted = [p.avg for p in merged]

        indicator_scores = [
            IndicatorPeriodScore(
                name=ind.name,
                accuracy=calculate_accuracy(actual, [p.avg for p in ind.forecast]),
                avg_error=calculate_average_error(actual, [p.avg for p in ind.forecast]),
            )
            for ind in indicators
        ]

        strategy_scores = []
        if config.include_strategies and self.strategy_orchestrator is not None:
            strategy_config = create_strategy_config(symbol=symbol, forecast_days=config.forecast_days)
            combined = await self.strategy_orchestrator.run_all_strategies(indicators, strategy_config)
            strategy_scores = [
                IndicatorPeriodScore(
                    name=r.name,
                    accuracy=calculate_accuracy(actual, [p.avg for p in r.forecast]),
                    avg_error=calculate_average_error(actual, [p.avg for p in r.forecast]),
                )
                for r in combined.individual_results
            ]

        return BacktestPeriodResult(
            period=period + 1,
            start_date=training[0].date,
            end_date=validation[-1].date,
            actual_prices=actual,
            predicted_prices=predicted,
            accuracy=calculate_accuracy(actual, predicted),
            avg_error=calculate_average_error(actual, predicted),
            max_error=calculate_max_error(actual, predicted),
            indicators=indicator_scores,
            strategies=strategy_scores,
        )


# =============================================================================
# SECTION 6: REPORTING
# =============================================================================

def format_backtest_report(analysis: BacktestAnalysis) -> str:
    """
    Format a backtest analysis as a human-readable text report.

    Args:
        analysis: Result of ``BacktestHarness.run_backtest``

    Returns:
        Formatted string report
    """
    lines = [
        "=" * 70,
        "BACKTEST ANALYSIS RESULTS",
        "=" * 70,
        f"Symbol:            {analysis.symbol}",
        f"Periods Tested:    {analysis.total_periods}",
        f"Forecast Days:     {analysis.forecast_days}",
        f"Overall Accuracy:  {analysis.overall_accuracy:.1%}",
        f"Average Error:     {analysis.avg_error:.2f}%",
        f"Max Error:         {analysis.max_error:.2f}%",
        f"Min Error:         {analysis.min_error:.2f}%",
        "",
        "-" * 70,
        "INDICATOR PERFORMANCE RANKINGS",
        "-" * 70,
    ]
    for name, perf in analysis.indicator_performance.items():
        lines.append(
            f"  #{perf.rank:<2} {name:<15} │ {perf.accuracy:6.1%} │ Error: {perf.avg_error:6.2f}% "
            f"│ Reliability: {perf.reliability:.0%}"
        )

    if analysis.strategy_performance:
        lines.extend(["", "-" * 70, "STRATEGY FORECAST PERFORMANCE", "-" * 70])
        for name, perf in analysis.strategy_performance.items():
            lines.append(
                f"  #{perf.rank:<2} {name:<22} │ {perf.accuracy:6.1%} │ Error: {perf.avg_error:6.2f}%"
            )

    lines.extend(["", "-" * 70, "RECOMMENDATIONS", "-" * 70])
    lines.extend(f"  • {rec}" for rec in analysis.recommendations)

    lines.extend(["", "-" * 70, "PERIOD-BY-PERIOD RESULTS", "-" * 70])
    for result in analysis.results:
        lines.append(
            f"  Period {result.period:>2}: {result.accuracy:6.1%} │ Error: {result.avg_error:6.2f}% "
            f"│ {result.start_date} → {result.end_date}"
        )

    lines.append("=" * 70)
    return "\n".join(lines)


# =============================================================================
# MODULE EXPORTS
# =============================================================================

__all__ = [
    "Config",
    "BacktestConfig",
    "IndicatorPeriodScore",
    "BacktestPeriodResult",
    "IndicatorPerformance",
    "BacktestAnalysis",
    "calculate_accuracy",
    "calculate_average_error",
    "calculate_max_error",
    "calculate_reliability",
    "period_window",
    "generate_recommendations",
    "analyze_backtest_results",
    "BacktestHarness",
    "format_backtest_report",
]
