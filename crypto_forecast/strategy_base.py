"""
Strategy Framework: Shared Types, Helpers and the Common Execution Contract

Every trading strategy consumes the full set of indicator results plus a
``StrategyConfig`` and returns a ``StrategyResult``: a recommendation with
human-readable reasons and a confidence score, a derived forecast, a
static-ish accuracy and a confidence-derived weight.

EXECUTION CONTRACT (BaseStrategy.execute)
    1. Resolve indicators through a typed ``IndicatorSet`` keyed by
       ``IndicatorKind``; if none of the strategy's required kinds is
       present, raise ``StrategyInputError``.
    2. Run indicator-specific sub-analyses, each memoized in a short-lived
       analysis cache keyed by a content signature.
    3. Accumulate confidence with fixed increments. The first directional
       decision wins; later checks only set a direction while the signal
       is still neutral unless they explicitly override it.
    4. With no reasons at all, answer neutral with confidence 0.1 and a
       fixed reason, so every strategy always returns a well-formed signal.
    5. Derive a forecast from a base indicator with a strategy-specific
       drift, bounded noise and a confidence decay.
    6. accuracy = min(avg input accuracy x factor, cap),
       weight = min(base weight x confidence, max weight).

Author: Tamer
Version: 1.0.0
"""

from __future__ import annotations

import copy
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple, Union

import numpy as np

from crypto_forecast.cache import Clock, TTLCache
from crypto_forecast.config import (
    CACHE,
    IndicatorKind,
    Recommendation,
    StrategyCategory,
    TrendDirection,
)
from crypto_forecast.models import (
    ForecastPoint,
    IndicatorResult,
    StrategyConfig,
    StrategyInputError,
    StrategyResult,
    TradeSignal,
)
from crypto_forecast.numerics import clamp, sanitize

# Module-level logger
logger = logging.getLogger(__name__)


class Config:
    """Thresholds shared by every strategy."""
    TREND_THRESHOLD: float = 0.02       # Half-over-half change for a trend
    NO_SIGNAL_CONFIDENCE: float = 0.1


# =============================================================================
# SECTION 1: FORECAST HELPERS
# =============================================================================

def calculate_indicator_signature(indicators: Iterable[IndicatorResult]) -> str:
    """``name:accuracy:weight:length`` of every indicator joined by ``|``."""
    return "|".join(
        f"{ind.name}:{ind.accuracy:.2f}:{ind.weight:.2f}:{len(ind.forecast)}"
        for ind in indicators
    )


def calculate_average_price(forecast: Sequence[ForecastPoint]) -> float:
    """Mean of the forecast averages (0 for an empty forecast)."""
    if not forecast:
        return 0.0
    return sanitize(np.mean([p.avg for p in forecast]))


def calculate_trend(forecast: Sequence[ForecastPoint]) -> TrendDirection:
    """
    Compare the mean of the second half of a forecast with the first half.

    A change above +2% is bullish, below -2% bearish; fewer than two
    points is neutral.
    """
    if len(forecast) < 2:
        return TrendDirection.NEUTRAL

    mid = len(forecast) // 2
    first = calculate_average_price(forecast[:mid])
    second = calculate_average_price(forecast[mid:])
    if first == 0:
        return TrendDirection.NEUTRAL

    change = (second - first) / first
    if change > Config.TREND_THRESHOLD:
        return TrendDirection.BULLISH
    if change < -Config.TREND_THRESHOLD:
        return TrendDirection.BEARISH
    return TrendDirection.NEUTRAL


def calculate_volatility(forecast: Sequence[ForecastPoint]) -> float:
    """Coefficient of variation (population) of the forecast averages."""
    if len(forecast) < 2:
        return 0.0
    values = np.array([p.avg for p in forecast], dtype=float)
    mean = values.mean()
    if mean == 0:
        return 0.0
    return sanitize(values.std() / mean)


def generate_strategy_cache_key(
    strategy_name: str,
    config: StrategyConfig,
    indicators: Iterable[IndicatorResult],
) -> str:
    return f"{strategy_name}:{config.signature()}:{calculate_indicator_signature(indicators)}"


def avg_values(forecast: Sequence[ForecastPoint]) -> List[float]:
    return [p.avg for p in forecast]


# =============================================================================
# SECTION 2: TYPED INDICATOR REGISTRY
# =============================================================================

class IndicatorSet:
    """
    Indicator results keyed by kind.

    Strategies declare the kinds they need and resolve them here instead
    of searching names.
    """

    def __init__(self, indicators: Sequence[IndicatorResult]):
        self._ordered: List[IndicatorResult] = [ind for ind in indicators if ind.forecast]
        self._by_kind: Dict[IndicatorKind, IndicatorResult] = {}
        for ind in self._ordered:
            self._by_kind.setdefault(ind.kind, ind)

    def get(self, kind: IndicatorKind) -> Optional[IndicatorResult]:
        return self._by_kind.get(kind)

    def has(self, kind: IndicatorKind) -> bool:
        return kind in self._by_kind

    def first_of(self, *kinds: IndicatorKind) -> Optional[IndicatorResult]:
        """First available indicator among ``kinds``, in the given order."""
        for kind in kinds:
            if kind in self._by_kind:
                return self._by_kind[kind]
        return None

    def first(self) -> Optional[IndicatorResult]:
        return self._ordered[0] if self._ordered else None

    def base(self) -> Optional[IndicatorResult]:
        """SMA when available, otherwise the first indicator."""
        return self.get(IndicatorKind.SMA) or self.first()

    def average_accuracy(self) -> float:
        if not self._ordered:
            return 0.0
        return sanitize(np.mean([ind.accuracy for ind in self._ordered]))

    def signature(self) -> str:
        return calculate_indicator_signature(self._ordered)

    def __len__(self) -> int:
        return len(self._ordered)

    def __iter__(self) -> Iterator[IndicatorResult]:
        return iter(self._ordered)


# =============================================================================
# SECTION 3: SIGNAL ACCUMULATION
# =============================================================================

@dataclass
class SignalAccumulator:
    """
    Mutable signal under construction.

    ``add`` applies first-write-wins on direction: a direction is only
    taken while the recommendation is still neutral unless ``override``.
    """
    recommendation: Recommendation = Recommendation.NEUTRAL
    confidence: float = 0.0
    reasons: List[str] = field(default_factory=list)
    context: Dict[str, Any] = field(default_factory=dict)   # Handed to the forecast step

    def add(
        self,
        increment: float,
        reason: Optional[str] = None,
        direction: Optional[Recommendation] = None,
        override: bool = False,
    ) -> None:
        self.confidence += increment
        if reason:
            self.reasons.append(reason)
        if direction is not None and direction is not Recommendation.NEUTRAL:
            if override or self.recommendation is Recommendation.NEUTRAL:
                self.recommendation = direction

    def note(self, reason: str) -> None:
        """Record a reason without touching confidence or direction."""
        self.reasons.append(reason)

    def boost(self, factor: float) -> None:
        """Multiplicative boost, capped at 1."""
        self.confidence = min(self.confidence * factor, 1.0)

    def cap(self) -> None:
        self.confidence = clamp(self.confidence)


def direction_from_trend(trend: TrendDirection) -> Recommendation:
    if trend is TrendDirection.BULLISH:
        return Recommendation.BUY
    if trend is TrendDirection.BEARISH:
        return Recommendation.SELL
    return Recommendation.NEUTRAL


# =============================================================================
# SECTION 4: BASE STRATEGY
# =============================================================================

IndicatorInput = Union[IndicatorSet, Sequence[IndicatorResult]]


class BaseStrategy(ABC):
    """
    Common execution contract for all strategies.

    Subclasses set the class attributes below and implement ``analyze``
    and ``build_forecast``.

    Args:
        clock: Time source for every cache the strategy owns
        rng: Random generator for trajectory noise
        seed: Seed for a fresh generator when ``rng`` is not given
    """

    name: str = ""
    description: str = ""
    category: StrategyCategory = StrategyCategory.MEAN_REVERSION
    required_kinds: Tuple[IndicatorKind, ...] = ()      # Any-of; empty accepts any indicator
    requirement_message: str = ""
    no_signal_reason: str = "No clear signals detected"
    forecast_suffix: str = ""

    base_weight: float = 0.5
    max_weight: float = 0.9
    accuracy_factor: float = 0.85
    accuracy_cap: float = 0.75

    def __init__(
        self,
        clock: Clock = time.monotonic,
        rng: Optional[np.random.Generator] = None,
        seed: Optional[int] = None,
    ):
        self.rng = rng if rng is not None else np.random.default_rng(seed)
        self.cache = TTLCache(
            f"strategy:{self.name}", CACHE.strategy_ttl, CACHE.strategy_max_size, clock=clock
        )
        self.analysis_cache = TTLCache(
            f"analysis:{self.name}", CACHE.analysis_ttl, CACHE.analysis_max_size, clock=clock
        )
        self.forecast_cache = TTLCache(
            f"forecast:{self.name}", CACHE.strategy_forecast_ttl,
            CACHE.strategy_forecast_max_size, clock=clock
        )

    # -------------------------------------------------------------------------
    # Execution
    # -------------------------------------------------------------------------

    async def execute(self, indicators: IndicatorInput, config: StrategyConfig) -> StrategyResult:
        """
        Run the strategy.

        Raises:
            StrategyInputError: none of the required indicator kinds is available
        """
        return self.run(indicators, config)

    def run(self, indicators: IndicatorInput, config: StrategyConfig) -> StrategyResult:
        """Synchronous body of ``execute``."""
        indicator_set = indicators if isinstance(indicators, IndicatorSet) else IndicatorSet(indicators)

        key = generate_strategy_cache_key(self.name, config, indicator_set)
        cached = self.cache.get(key)
        if cached is not None:
            return copy.deepcopy(cached)

        self.check_requirements(indicator_set)
        start = time.perf_counter()

        acc = self.analyze(indicator_set, config)
        acc.cap()
        if not acc.reasons:
            acc.recommendation = Recommendation.NEUTRAL
            acc.confidence = Config.NO_SIGNAL_CONFIDENCE
            acc.reasons.append(self.no_signal_reason)

        signal = TradeSignal(
            recommendation=acc.recommendation,
            reasons=list(acc.reasons),
            confidence_score=acc.confidence,
            strategy=self.name,
        )

        forecast = self.cached_forecast(indicator_set, signal, acc, config)
        accuracy, weight = self.score(indicator_set, signal, acc)

        result = StrategyResult(
            signal=signal,
            forecast=forecast,
            name=self.name,
            accuracy=accuracy,
            weight=weight,
            execution_time=(time.perf_counter() - start) * 1000,
        )
        self.cache.put(key, copy.deepcopy(result))
        logger.debug(
            f"{self.name}: {signal.recommendation.value} "
            f"({signal.confidence_score:.2f}) with {len(signal.reasons)} reasons"
        )
        return result

    def check_requirements(self, indicators: IndicatorSet) -> None:
        if len(indicators) == 0:
            raise StrategyInputError(self.name, self.required_kinds,
                                     self.requirement_message or f"{self.name} strategy requires indicator data")
        if self.required_kinds and not any(indicators.has(k) for k in self.required_kinds):
            raise StrategyInputError(self.name, self.required_kinds, self.requirement_message)

    # -------------------------------------------------------------------------
    # Hooks
    # -------------------------------------------------------------------------

    @abstractmethod
    def analyze(self, indicators: IndicatorSet, config: StrategyConfig) -> SignalAccumulator:
        """Accumulate recommendation, confidence and reasons."""

    @abstractmethod
    def build_forecast(
        self,
        indicators: IndicatorSet,
        signal: TradeSignal,
        acc: SignalAccumulator,
        config: StrategyConfig,
    ) -> List[ForecastPoint]:
        """Derive the strategy's own forecast."""

    def score(
        self,
        indicators: IndicatorSet,
        signal: TradeSignal,
        acc: SignalAccumulator,
    ) -> Tuple[float, float]:
        """(accuracy, weight) of this run."""
        accuracy = min(indicators.average_accuracy() * self.accuracy_factor, self.accuracy_cap)
        weight = min(self.base_weight * signal.confidence_score, self.max_weight)
        return accuracy, weight

    # -------------------------------------------------------------------------
    # Memoization and forecast utilities
    # -------------------------------------------------------------------------

    def memoize(self, label: str, signature: str, compute: Callable[[], Any]) -> Any:
        """Return a sub-analysis from the analysis cache or compute and store it."""
        key = f"{label}:{signature}"
        cached = self.analysis_cache.get(key)
        if cached is not None:
            return cached
        value = compute()
        self.analysis_cache.put(key, value)
        return value

    def cached_forecast(
        self,
        indicators: IndicatorSet,
        signal: TradeSignal,
        acc: SignalAccumulator,
        config: StrategyConfig,
    ) -> List[ForecastPoint]:
        key = (
            f"forecast:{config.symbol}:{config.forecast_days}:{signal.recommendation.value}:"
            f"{signal.confidence_score:.4f}:{indicators.signature()}"
        )
        cached = self.forecast_cache.get(key)
        if cached is not None:
            return copy.deepcopy(cached)
        forecast = self.build_forecast(indicators, signal, acc, config)
        self.forecast_cache.put(key, copy.deepcopy(forecast))
        return forecast

    @property
    def forecast_tag(self) -> str:
        return f"{self.name}_{self.forecast_suffix}"

    def noise(self, amplitude: float) -> float:
        """Multiplicative perturbation uniformly drawn from 1 +/- amplitude/2."""
        return 1.0 + (self.rng.random() - 0.5) * amplitude

    def project(
        self,
        base: IndicatorResult,
        config: StrategyConfig,
        factor: Callable[[int], float],
        noise_amplitude: float,
        confidence_factor: Callable[[int], float],
        tag: Optional[str] = None,
    ) -> List[ForecastPoint]:
        """
        Apply a day-by-day drift, noise on high/low and a confidence decay
        to a base indicator forecast. Days the base lacks are skipped.
        """
        points = {p.day: p for p in base.forecast}
        forecast = []
        for day in range(1, config.forecast_days + 1):
            point = points.get(day)
            if point is None:
                continue
            drift = factor(day)
            jitter = self.noise(noise_amplitude)
            forecast.append(ForecastPoint(
                day=day,
                high=point.high * drift * jitter,
                low=point.low * drift * jitter,
                avg=point.avg * drift,
                confidence=point.confidence * confidence_factor(day),
                indicator=tag or self.forecast_tag,
            ))
        return forecast

    def clear_caches(self) -> None:
        self.cache.clear()
        self.analysis_cache.clear()
        self.forecast_cache.clear()

    def caches(self) -> List[TTLCache]:
        return [self.cache, self.analysis_cache, self.forecast_cache]

    def describe(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "category": self.category.value,
            "requires": [k.value for k in self.required_kinds],
        }


__all__ = [
    "Config",
    "calculate_indicator_signature",
    "calculate_average_price",
    "calculate_trend",
    "calculate_volatility",
    "generate_strategy_cache_key",
    "avg_values",
    "IndicatorSet",
    "SignalAccumulator",
    "direction_from_trend",
    "BaseStrategy",
]
