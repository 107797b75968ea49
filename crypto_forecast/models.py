"""
Data Structures and Error Taxonomy for the Forecasting Pipeline

Every record that flows between the indicator orchestrator, the strategy
library, the merge engine, the backtest harness and the output layer is
defined here as a dataclass with a ``to_dict()`` serializer.

RECORD FLOW
    PricePoint          -> produced by the market data fetcher
    ForecastPoint       -> one day-ahead projection (high/low/avg/confidence)
    IndicatorResult     -> one indicator's forecast plus static accuracy/weight
    TradeSignal         -> one strategy's recommendation and reasons
    StrategyResult      -> signal + derived forecast + dynamic weight
    CombinedStrategyResult -> consensus across all strategies

ERROR TAXONOMY
    ForecastError
        ValidationError          malformed orchestrator or CLI input
        FormulaMinimumDataError  one indicator lacks history (absorbed)
        StrategyInputError       one strategy lacks indicators (absorbed)
        ComputationError         a whole stage produced nothing
        DataFetchError           market data unavailable after retries

Author: Tamer
Version: 1.0.0
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from crypto_forecast.config import IndicatorKind, Recommendation, RiskLevel
from crypto_forecast.numerics import clamp


# =============================================================================
# SECTION 1: EXCEPTIONS
# =============================================================================

class ForecastError(Exception):
    """Base class for all pipeline errors."""


class ValidationError(ForecastError, ValueError):
    """Input rejected before any computation runs."""


class FormulaMinimumDataError(ForecastError, ValueError):
    """An indicator formula does not have enough history."""

    def __init__(self, indicator: str, required: int, available: int):
        self.indicator = indicator
        self.required = required
        self.available = available
        super().__init__(
            f"{indicator} requires at least {required} data points (got {available})"
        )


class StrategyInputError(ForecastError, ValueError):
    """A strategy could not resolve any of its required indicators."""

    def __init__(self, strategy: str, required: Sequence[IndicatorKind], message: str = ""):
        self.strategy = strategy
        self.required = tuple(required)
        if not message:
            names = ", ".join(kind.value for kind in self.required)
            message = f"{strategy} strategy requires at least one of: {names}"
        super().__init__(message)


class ComputationError(ForecastError, RuntimeError):
    """An entire pipeline stage produced zero usable results."""


class DataFetchError(ForecastError, RuntimeError):
    """Market data could not be obtained."""


# =============================================================================
# SECTION 2: PRICE AND FORECAST RECORDS
# =============================================================================

@dataclass(frozen=True)
class PricePoint:
    """One daily observation, ordered oldest to newest in a series."""
    date: str                       # YYYY-MM-DD
    close: float
    high: float
    low: float
    volume: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "date": self.date,
            "close": self.close,
            "high": self.high,
            "low": self.low,
            "volume": self.volume,
        }


@dataclass
class ForecastPoint:
    """
    One day-ahead projection.

    ``low <= avg <= high`` is expected but not enforced; confidence is
    always clamped to [0, 1].
    """
    day: int                        # 1..N
    high: float
    low: float
    avg: float
    confidence: float               # 0.0 to 1.0
    indicator: str                  # Source tag

    def __post_init__(self):
        self.confidence = clamp(self.confidence)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "day": self.day,
            "high": self.high,
            "low": self.low,
            "avg": self.avg,
            "confidence": self.confidence,
            "indicator": self.indicator,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ForecastPoint":
        return cls(
            day=int(data["day"]),
            high=float(data["high"]),
            low=float(data["low"]),
            avg=float(data["avg"]),
            confidence=float(data["confidence"]),
            indicator=str(data["indicator"]),
        )


@dataclass
class IndicatorResult:
    """Forecast of a single indicator with its static accuracy and weight."""
    name: str
    kind: IndicatorKind
    forecast: List[ForecastPoint]
    accuracy: float                 # Static historical estimate
    weight: float                   # Static contribution weight
    execution_time: float = 0.0     # Milliseconds

    @classmethod
    def placeholder(cls, kind: IndicatorKind, execution_time: float = 0.0) -> "IndicatorResult":
        """Zero-value result substituted when a formula fails."""
        return cls(
            name=kind.value,
            kind=kind,
            forecast=[],
            accuracy=0.0,
            weight=0.0,
            execution_time=execution_time,
        )

    @property
    def is_empty(self) -> bool:
        return len(self.forecast) == 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "forecast": [p.to_dict() for p in self.forecast],
            "accuracy": self.accuracy,
            "weight": self.weight,
            "executionTime": self.execution_time,
        }


# =============================================================================
# SECTION 3: STRATEGY RECORDS
# =============================================================================

@dataclass
class StrategyConfig:
    """Run configuration shared by every strategy."""
    forecast_days: int = 10
    symbol: str = "BTC"
    lookback_period: int = 14
    sensitivity: float = 0.5        # 0.0 (strict) to 1.0 (loose)
    risk_level: RiskLevel = RiskLevel.MEDIUM

    def signature(self) -> str:
        return (
            f"{self.symbol}:{self.forecast_days}:{self.lookback_period}:"
            f"{self.sensitivity}:{self.risk_level.value}"
        )


def create_strategy_config(**overrides: Any) -> StrategyConfig:
    """Build a StrategyConfig, filling unspecified fields with defaults."""
    risk = overrides.get("risk_level")
    if isinstance(risk, str):
        overrides["risk_level"] = RiskLevel(risk.lower())
    return StrategyConfig(**overrides)


@dataclass
class TradeSignal:
    """Recommendation produced by one strategy execution."""
    recommendation: Recommendation
    reasons: List[str]
    confidence_score: float         # 0.0 to 1.0
    strategy: str
    timestamp: Optional[datetime] = None

    def __post_init__(self):
        self.confidence_score = clamp(self.confidence_score)
        if self.timestamp is None:
            self.timestamp = datetime.now()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "recommendation": self.recommendation.value,
            "reasons": list(self.reasons),
            "confidenceScore": self.confidence_score,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
            "strategy": self.strategy,
        }


@dataclass
class StrategyResult:
    """Signal, derived forecast and confidence-derived weight of one strategy."""
    signal: TradeSignal
    forecast: List[ForecastPoint]
    name: str
    accuracy: float
    weight: float                   # Recomputed from confidence each run
    execution_time: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "signal": self.signal.to_dict(),
            "forecast": [p.to_dict() for p in self.forecast],
            "accuracy": self.accuracy,
            "weight": self.weight,
            "executionTime": self.execution_time,
        }


@dataclass
class ConsensusSummary:
    """Vote counts across all strategy results."""
    buy_signals: int
    sell_signals: int
    neutral_signals: int
    avg_confidence: float
    strongest_signal: Optional[StrategyResult]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "buySignals": self.buy_signals,
            "sellSignals": self.sell_signals,
            "neutralSignals": self.neutral_signals,
            "avgConfidence": self.avg_confidence,
            "strongestSignal": self.strongest_signal.name if self.strongest_signal else None,
        }


@dataclass
class StrategyPerformance:
    total_execution_time: float
    avg_accuracy: float
    total_weight: float
    strategy_count: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalExecutionTime": self.total_execution_time,
            "avgAccuracy": self.avg_accuracy,
            "totalWeight": self.total_weight,
            "strategyCount": self.strategy_count,
        }


@dataclass
class CombinedStrategyResult:
    """Consensus of every strategy that executed successfully."""
    individual_results: List[StrategyResult]
    combined_signal: TradeSignal
    combined_forecast: List[ForecastPoint]
    consensus: ConsensusSummary
    performance: StrategyPerformance

    def to_dict(self) -> Dict[str, Any]:
        return {
            "individualResults": [r.to_dict() for r in self.individual_results],
            "combinedSignal": self.combined_signal.to_dict(),
            "combinedForecast": [p.to_dict() for p in self.combined_forecast],
            "consensus": self.consensus.to_dict(),
            "performance": self.performance.to_dict(),
        }


# =============================================================================
# SECTION 4: MERGE STATISTICS
# =============================================================================

@dataclass
class MergedForecastStats:
    """Summary statistics of a merged forecast."""
    total_weight: float
    avg_confidence: float
    price_high: float
    price_low: float
    price_spread: float
    trend_direction: str            # BULLISH or BEARISH
    trend_strength: float           # Percent move first -> last day
    contributing_indicators: int
    forecast_days: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalWeight": self.total_weight,
            "avgConfidence": self.avg_confidence,
            "priceRange": {
                "high": self.price_high,
                "low": self.price_low,
                "spread": self.price_spread,
            },
            "trend": {
                "direction": self.trend_direction,
                "strength": self.trend_strength,
            },
            "contributingIndicators": self.contributing_indicators,
            "forecastDays": self.forecast_days,
        }


__all__ = [
    "ForecastError",
    "ValidationError",
    "FormulaMinimumDataError",
    "StrategyInputError",
    "ComputationError",
    "DataFetchError",
    "PricePoint",
    "ForecastPoint",
    "IndicatorResult",
    "StrategyConfig",
    "create_strategy_config",
    "TradeSignal",
    "StrategyResult",
    "ConsensusSummary",
    "StrategyPerformance",
    "CombinedStrategyResult",
    "MergedForecastStats",
]
