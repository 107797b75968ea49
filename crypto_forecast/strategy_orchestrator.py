"""
Strategy Orchestrator: Registry, Signal Combination and Consensus

Runs every registered strategy against one indicator set, drops the ones
that fail, and combines the survivors into a single recommendation, a
consensus summary and a merged strategy forecast.

COMBINATION RULE (combine_signals)
    1. Results with confidence <= 0.1 are ignored.
    2. Effective weight = confidence x strategy weight; the total includes
       neutral results.
    3. Buy and sell scores are normalized by the total. A side wins when it
       beats the other side and exceeds 0.3; otherwise the answer is
       neutral with half the larger normalized score.

CONCURRENCY
    Strategies are dispatched with ``asyncio.gather(return_exceptions=True)``
    so one failure never cancels the others. Ordinary exceptions are logged
    and dropped; cancellation and interpreter exits propagate.

Author: Tamer
Version: 1.0.0
"""

from __future__ import annotations

import asyncio
import copy
import logging
import time
from typing import Any, Dict, List, Optional, Sequence

import numpy as np

from crypto_forecast.cache import Clock, TTLCache
from crypto_forecast.config import CACHE, Recommendation, StrategyCategory
from crypto_forecast.forecast_merge import ForecastMerger
from crypto_forecast.models import (
    CombinedStrategyResult,
    ComputationError,
    ConsensusSummary,
    IndicatorResult,
    StrategyConfig,
    StrategyPerformance,
    StrategyResult,
    TradeSignal,
)
from crypto_forecast.strategies import STRATEGY_CLASSES
from crypto_forecast.strategy_base import BaseStrategy, IndicatorSet, calculate_indicator_signature

# Module-level logger
logger = logging.getLogger(__name__)


class Config:
    """Signal combination constants."""
    COMBINED_NAME: str = "Combined Strategy"
    MIN_CONFIDENCE: float = 0.1         # Results at or below are ignored
    DECISION_THRESHOLD: float = 0.3     # Normalized score a side must exceed
    NEUTRAL_DAMPING: float = 0.5
    REASON_CONFIDENCE: float = 0.5      # Strategies quoted in the combined reasons
    NO_SIGNAL_CONFIDENCE: float = 0.1

    # Placeholder figures reported before any backtest has scored a strategy
    DEFAULT_ACCURACY: float = 0.75
    DEFAULT_WEIGHT: float = 0.8


# =============================================================================
# SECTION 1: REGISTRY
# =============================================================================

def get_all_strategies(clock: Clock = time.monotonic, seed: Optional[int] = None) -> List[BaseStrategy]:
    """Fresh instances of every strategy in registry order."""
    rng = np.random.default_rng(seed)
    return [cls(clock=clock, rng=rng) for cls in STRATEGY_CLASSES]


def get_strategy_names() -> List[str]:
    return [cls.name for cls in STRATEGY_CLASSES]


def get_strategies_by_category(category: StrategyCategory) -> List[str]:
    """Names of the strategies belonging to ``category``."""
    return [cls.name for cls in STRATEGY_CLASSES if cls.category is category]


def get_strategy_performance_stats() -> Dict[str, Dict[str, Any]]:
    """Static registry description keyed by strategy name."""
    return {
        cls.name: {
            "accuracy": Config.DEFAULT_ACCURACY,
            "weight": Config.DEFAULT_WEIGHT,
            "category": cls.category.value,
            "description": cls.description,
        }
        for cls in STRATEGY_CLASSES
    }


# =============================================================================
# SECTION 2: SIGNAL COMBINATION
# =============================================================================

def signal_signature(results: Sequence[StrategyResult]) -> str:
    return "|".join(
        f"{r.name}:{r.signal.recommendation.value}:{r.signal.confidence_score:.4f}" for r in results
    )


def combine_signals(results: Sequence[StrategyResult]) -> TradeSignal:
    """
    Confidence-and-weight vote across strategy signals.

    Args:
        results: Individual strategy results

    Returns:
        TradeSignal attributed to "Combined Strategy"
    """
    valid = [r for r in results if r.signal.confidence_score > Config.MIN_CONFIDENCE]
    if not valid:
        return TradeSignal(
            recommendation=Recommendation.NEUTRAL,
            reasons=["No strategies provided valid signals"],
            confidence_score=Config.NO_SIGNAL_CONFIDENCE,
            strategy=Config.COMBINED_NAME,
        )

    buy_score = sell_score = total_weight = 0.0
    reasons: List[str] = []
    for result in valid:
        signal = result.signal
        effective = signal.confidence_score * result.weight
        if signal.recommendation is Recommendation.BUY:
            buy_score += effective
        elif signal.recommendation is Recommendation.SELL:
            sell_score += effective
        total_weight += effective

        if signal.confidence_score > Config.REASON_CONFIDENCE:
            first = signal.reasons[0] if signal.reasons else "Signal detected"
            reasons.append(f"{result.name}: {first}")

    norm_buy = buy_score / total_weight if total_weight > 0 else 0.0
    norm_sell = sell_score / total_weight if total_weight > 0 else 0.0

    if norm_buy > norm_sell and norm_buy > Config.DECISION_THRESHOLD:
        recommendation, confidence = Recommendation.BUY, norm_buy
    elif norm_sell > norm_buy and norm_sell > Config.DECISION_THRESHOLD:
        recommendation, confidence = Recommendation.SELL, norm_sell
    else:
        recommendation = Recommendation.NEUTRAL
        confidence = max(norm_buy, norm_sell) * Config.NEUTRAL_DAMPING

    counts = {rec: sum(1 for r in valid if r.signal.recommendation is rec) for rec in Recommendation}
    reasons.insert(0, (
        f"Strategy consensus: {counts[Recommendation.BUY]} buy, "
        f"{counts[Recommendation.SELL]} sell, {counts[Recommendation.NEUTRAL]} neutral"
    ))

    return TradeSignal(
        recommendation=recommendation,
        reasons=reasons,
        confidence_score=min(confidence, 1.0),
        strategy=Config.COMBINED_NAME,
    )


def summarize_consensus(results: Sequence[StrategyResult]) -> ConsensusSummary:
    """Vote counts, mean confidence and the strongest result (first maximum wins)."""
    strongest = None
    for result in results:
        if strongest is None or result.signal.confidence_score > strongest.signal.confidence_score:
            strongest = result
    return ConsensusSummary(
        buy_signals=sum(1 for r in results if r.signal.recommendation is Recommendation.BUY),
        sell_signals=sum(1 for r in results if r.signal.recommendation is Recommendation.SELL),
        neutral_signals=sum(1 for r in results if r.signal.recommendation is Recommendation.NEUTRAL),
        avg_confidence=float(np.mean([r.signal.confidence_score for r in results])) if results else 0.0,
        strongest_signal=strongest,
    )


# =============================================================================
# SECTION 3: ORCHESTRATOR
# =============================================================================

class StrategyOrchestrator:
    """
    Runs the strategy registry and combines the outcome.

    Args:
        strategies: Strategy instances, the full registry when omitted
        merger: Merge engine for the combined strategy forecast
        clock: Time source for every owned cache
        seed: Seed for trajectory noise of the default registry
    """

    def __init__(
        self,
        strategies: Optional[Sequence[BaseStrategy]] = None,
        merger: Optional[ForecastMerger] = None,
        clock: Clock = time.monotonic,
        seed: Optional[int] = None,
    ):
        self.strategies = list(strategies) if strategies is not None else get_all_strategies(clock, seed)
        self.merger = merger if merger is not None else ForecastMerger(clock=clock)
        self.combined_cache = TTLCache("combined_strategy", CACHE.combined_ttl,
                                       CACHE.combined_max_size, clock=clock)
        self.signal_cache = TTLCache("combined_signal", CACHE.signal_ttl,
                                     CACHE.signal_max_size, clock=clock)

    @staticmethod
    def cache_key(indicators: Sequence[IndicatorResult], config: StrategyConfig) -> str:
        return f"combined:{config.signature()}:{calculate_indicator_signature(indicators)}"

    def combine(self, results: Sequence[StrategyResult]) -> TradeSignal:
        """``combine_signals`` memoized on the name/recommendation/confidence of each input."""
        key = signal_signature(results)
        cached = self.signal_cache.get(key)
        if cached is not None:
            return copy.deepcopy(cached)
        signal = combine_signals(results)
        self.signal_cache.put(key, copy.deepcopy(signal))
        return signal

    async def run_all_strategies(
        self,
        indicators: Sequence[IndicatorResult],
        config: StrategyConfig,
    ) -> CombinedStrategyResult:
        """
        Execute every strategy concurrently and combine the survivors.

        Raises:
            ComputationError: no strategy executed successfully
        """
        start = time.perf_counter()
        key = self.cache_key(indicators, config)
        cached = self.combined_cache.get(key)
        if cached is not None:
            logger.debug("Combined strategy result served from cache")
            return copy.deepcopy(cached)

        indicator_set = IndicatorSet(indicators)
        outcomes = await asyncio.gather(
            *(strategy.execute(indicator_set, config) for strategy in self.strategies),
            return_exceptions=True,
        )

        results: List[StrategyResult] = []
        for strategy, outcome in zip(self.strategies, outcomes):
            if isinstance(outcome, Exception):
                logger.warning(f"Strategy {strategy.name} failed: {outcome}")
            elif isinstance(outcome, BaseException):
                raise outcome
            else:
                results.append(outcome)

        if not results:
            raise ComputationError("No strategies executed successfully")

        combined = CombinedStrategyResult(
            individual_results=results,
            combined_signal=self.combine(results),
            combined_forecast=self.merger.merge(results, config.forecast_days),
            consensus=summarize_consensus(results),
            performance=StrategyPerformance(
                total_execution_time=(time.perf_counter() - start) * 1000,
                avg_accuracy=float(np.mean([r.accuracy for r in results])),
                total_weight=float(sum(r.weight for r in results)),
                strategy_count=len(results),
            ),
        )
        self.combined_cache.put(key, copy.deepcopy(combined))
        logger.info(
            f"{len(results)}/{len(self.strategies)} strategies executed, combined signal: "
            f"{combined.combined_signal.recommendation.value.upper()} "
            f"({combined.combined_signal.confidence_score:.0%})"
        )
        return combined

    async def run_selected_strategy(
        self,
        name: str,
        indicators: Sequence[IndicatorResult],
        config: StrategyConfig,
    ) -> StrategyResult:
        """
        Execute a single strategy by name.

        Raises:
            ValueError: no strategy is registered under ``name``
        """
        for strategy in self.strategies:
            if strategy.name == name:
                return await strategy.execute(indicators, config)
        available = ", ".join(s.name for s in self.strategies)
        raise ValueError(f"Strategy '{name}' not found. Available strategies: {available}")

    def caches(self) -> List[TTLCache]:
        owned = [self.combined_cache, self.signal_cache]
        for strategy in self.strategies:
            owned.extend(strategy.caches())
        return owned

    def cache_stats(self) -> Dict[str, Any]:
        return {
            "combined": self.combined_cache.stats(),
            "signal": self.signal_cache.stats(),
            "strategies": {s.name: s.cache.stats() for s in self.strategies},
        }

    def clear_caches(self) -> None:
        self.combined_cache.clear()
        self.signal_cache.clear()
        for strategy in self.strategies:
            strategy.clear_caches()


__all__ = [
    "Config",
    "get_all_strategies",
    "get_strategy_names",
    "get_strategies_by_category",
    "get_strategy_performance_stats",
    "combine_signals",
    "summarize_consensus",
    "StrategyOrchestrator",
]
