"""
Trading Strategy Library

Six strategies built on ``BaseStrategy``. Each one reads the indicator
forecasts it understands, scores a buy/sell/neutral recommendation with
human-readable reasons, and projects its own forecast from a base
indicator.

STRATEGIES
    Mean Reversion          RSI extremes, Bollinger band touches and
                            deviation from a moving average
    Breakout                Support/resistance position, volume surges,
                            MACD momentum, band width and ADX strength
    Golden Cross            EMA/SMA crossovers, spread dynamics, trend
                            alignment and volume confirmation
    Momentum Divergence     Price/oscillator divergences on RSI, MACD and
                            Stochastic
    Candlestick Reversal    Doji, hammer, shooting star, engulfing and
                            star formations on forecast candles
    Volatility Breakout     Volatility compression and expansion, band
                            squeeze and directional confirmation

SCORING
    Increments are fixed per finding. A direction set "directly" replaces
    the current one; every other directional finding only applies while
    the signal is still neutral.

Author: Tamer
Version: 1.0.0
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

import numpy as np
from scipy.signal import argrelextrema

from crypto_forecast.config import (
    IndicatorKind,
    Recommendation,
    StrategyCategory,
    TrendDirection,
)
from crypto_forecast.models import (
    ForecastPoint,
    IndicatorResult,
    StrategyConfig,
)
from crypto_forecast.numerics import population_std, safe_mean, safe_ratio
from crypto_forecast.strategy_base import (
    BaseStrategy,
    IndicatorSet,
    SignalAccumulator,
    avg_values,
    calculate_average_price,
    calculate_trend,
    calculate_volatility,
    direction_from_trend,
)

# Module-level logger
logger = logging.getLogger(__name__)

BUY = Recommendation.BUY
SELL = Recommendation.SELL
NEUTRAL = Recommendation.NEUTRAL


def forecast_fingerprint(*indicators: Optional[IndicatorResult]) -> str:
    """Content key for memoized sub-analyses (name plus hashed averages)."""
    parts = []
    for ind in indicators:
        if ind is None:
            parts.append("none")
        else:
            parts.append(f"{ind.name}:{len(ind.forecast)}:{hash(tuple(avg_values(ind.forecast)))}")
    return "|".join(parts)


def _relative_change(current: float, previous: float) -> float:
    return safe_ratio(current - previous, abs(previous))


# =============================================================================
# SECTION 1: MEAN REVERSION
# =============================================================================

class MeanReversionStrategy(BaseStrategy):
    """Oversold/overbought detection from RSI, Bollinger Bands and SMA deviation."""

    name = "Mean Reversion"
    description = (
        "Identifies oversold/overbought conditions using RSI, Bollinger Bands, "
        "and statistical analysis"
    )
    category = StrategyCategory.MEAN_REVERSION
    required_kinds = (IndicatorKind.RSI, IndicatorKind.BOLLINGER, IndicatorKind.SMA)
    requirement_message = (
        "Mean Reversion strategy requires at least one of: RSI, Bollinger Bands, or SMA indicators"
    )
    no_signal_reason = "No clear mean reversion signals detected"
    forecast_suffix = "MeanReversion"

    base_weight = 0.7
    max_weight = 0.9
    accuracy_factor = 0.85
    accuracy_cap = 0.75

    DEVIATION_THRESHOLD = 0.05
    LOW_BANDWIDTH = 0.02

    def analyze_rsi(self, rsi: IndicatorResult, sensitivity: float) -> Dict[str, Any]:
        def compute():
            oversold_level = 30 + sensitivity * 20
            overbought_level = 70 - sensitivity * 20
            values = avg_values(rsi.forecast)
            return {
                "oversold": sum(1 for v in values if v < oversold_level),
                "overbought": sum(1 for v in values if v > overbought_level),
                "avg_rsi": calculate_average_price(rsi.forecast),
            }
        return self.memoize("rsi", f"{forecast_fingerprint(rsi)}:{sensitivity}", compute)

    def analyze_bollinger(self, bollinger: IndicatorResult) -> Dict[str, Any]:
        def compute():
            points = bollinger.forecast
            return {
                "lower_touches": sum(1 for p in points if p.low <= p.avg - (p.high - p.low) * 0.4),
                "upper_touches": sum(1 for p in points if p.high >= p.avg + (p.high - p.low) * 0.4),
                "bandwidth": calculate_volatility(points),
                "trend": calculate_trend(points),
            }
        return self.memoize("bollinger", forecast_fingerprint(bollinger), compute)

    def analyze_deviation(self, sma: IndicatorResult, lookback: int) -> Dict[str, Any]:
        def compute():
            prices = avg_values(sma.forecast)
            window = prices[-lookback:]
            moving_average = safe_mean(window)
            current = prices[-1]
            deviation = safe_ratio(current - moving_average, moving_average)
            return {
                "moving_average": moving_average,
                "current_price": current,
                "deviation": deviation,
                "oversold": deviation < -self.DEVIATION_THRESHOLD,
                "overbought": deviation > self.DEVIATION_THRESHOLD,
            }
        return self.memoize("meanrev", f"{forecast_fingerprint(sma)}:{lookback}", compute)

    def analyze(self, indicators: IndicatorSet, config: StrategyConfig) -> SignalAccumulator:
        acc = SignalAccumulator()

        rsi = indicators.get(IndicatorKind.RSI)
        if rsi:
            analysis = self.analyze_rsi(rsi, config.sensitivity)
            oversold, overbought = analysis["oversold"], analysis["overbought"]
            if oversold > overbought:
                acc.add(0.3, f"RSI indicates oversold condition ({oversold} oversold vs "
                             f"{overbought} overbought periods)", BUY, override=True)
            elif overbought > oversold:
                acc.add(0.3, f"RSI indicates overbought condition ({overbought} overbought vs "
                             f"{oversold} oversold periods)", SELL, override=True)
            else:
                acc.note(f"RSI shows neutral conditions (avg: {analysis['avg_rsi']:.2f})")

        bollinger = indicators.get(IndicatorKind.BOLLINGER)
        if bollinger:
            analysis = self.analyze_bollinger(bollinger)
            if analysis["lower_touches"] > 0:
                acc.add(0.25, f"Price touching lower Bollinger Band ({analysis['lower_touches']} "
                              f"touches) - potential bounce", BUY)
            elif analysis["upper_touches"] > 0:
                acc.add(0.25, f"Price touching upper Bollinger Band ({analysis['upper_touches']} "
                              f"touches) - potential reversal", SELL)
            if analysis["bandwidth"] < self.LOW_BANDWIDTH:
                acc.add(0.1, f"Low volatility detected (bandwidth: {analysis['bandwidth'] * 100:.2f}%) "
                             f"- potential breakout")

        sma = indicators.get(IndicatorKind.SMA)
        if sma:
            analysis = self.analyze_deviation(sma, config.lookback_period)
            if analysis["oversold"]:
                acc.add(0.2, f"Price {analysis['deviation'] * 100:.2f}% below moving average - oversold", BUY)
            elif analysis["overbought"]:
                acc.add(0.2, f"Price {analysis['deviation'] * 100:.2f}% above moving average - overbought", SELL)

        return acc

    def build_forecast(self, indicators, signal, acc, config) -> List[ForecastPoint]:
        n = config.forecast_days
        return self.project(
            indicators.base(), config,
            factor=lambda day: 1 - (day / n) * 0.1,
            noise_amplitude=0.1,
            confidence_factor=lambda day: 1 - (day / n) * 0.2,
        )


# =============================================================================
# SECTION 2: BREAKOUT
# =============================================================================

@dataclass
class PriceLevel:
    level: float
    strength: float


class BreakoutStrategy(BaseStrategy):
    """Range breakouts confirmed by volume, momentum, band width and ADX."""

    name = "Breakout"
    description = (
        "Identifies price breakouts from established ranges, support/resistance levels, "
        "and volume confirmation"
    )
    category = StrategyCategory.TREND_FOLLOWING
    required_kinds = (IndicatorKind.VWAP, IndicatorKind.MACD, IndicatorKind.BOLLINGER)
    requirement_message = (
        "Breakout strategy requires at least one of: VWAP, MACD, or Bollinger Bands indicators"
    )
    no_signal_reason = "No clear breakout signals detected"
    forecast_suffix = "Breakout"

    base_weight = 0.8
    max_weight = 0.95
    accuracy_factor = 0.9
    accuracy_cap = 0.85

    def support_resistance(self, base: IndicatorResult, lookback: int) -> Dict[str, Any]:
        """Interior window extremes, the levels nearest the current price and its position in range."""
        def compute():
            highs = [p.high for p in base.forecast]
            lows = [p.low for p in base.forecast]
            current = base.forecast[-1].avg

            resistance: List[PriceLevel] = []
            support: List[PriceLevel] = []
            for i in range(lookback, len(highs)):
                window = highs[i - lookback:i]
                idx = int(np.argmax(window))
                if 3 < idx < len(window) - 3:
                    resistance.append(PriceLevel(window[idx], 1.0))
                window = lows[i - lookback:i]
                idx = int(np.argmin(window))
                if 3 < idx < len(window) - 3:
                    support.append(PriceLevel(window[idx], 1.0))

            nearest_resistance = min(resistance, key=lambda lv: abs(lv.level - current)) \
                if resistance else PriceLevel(current * 1.05, 0.5)
            nearest_support = min(support, key=lambda lv: abs(lv.level - current)) \
                if support else PriceLevel(current * 0.95, 0.5)

            range_size = nearest_resistance.level - nearest_support.level
            return {
                "resistance": nearest_resistance,
                "support": nearest_support,
                "current_price": current,
                "range_size": range_size,
                "position": safe_ratio(current - nearest_support.level, range_size, fallback=0.5),
            }
        return self.memoize("sr", f"{forecast_fingerprint(base)}:{lookback}", compute)

    def analyze_volume(self, vwap: IndicatorResult, lookback: int) -> Dict[str, Any]:
        def compute():
            values = avg_values(vwap.forecast)
            average = safe_mean(values[-lookback:])
            ratio = safe_ratio(values[-1], average)
            return {
                "ratio": ratio,
                "breakout": ratio > 1.5,
                "spike": ratio > 2.0,
                "trend": calculate_trend(vwap.forecast),
            }
        return self.memoize("volume", f"{forecast_fingerprint(vwap)}:{lookback}", compute)

    def analyze_momentum(self, macd: IndicatorResult, rsi: Optional[IndicatorResult]) -> Dict[str, Any]:
        def compute():
            values = avg_values(macd.forecast)
            trend = calculate_trend(macd.forecast)
            change = _relative_change(values[-1], values[-2]) if len(values) > 1 else 0.0

            rsi_momentum = 0
            if rsi:
                current_rsi = rsi.forecast[-1].avg
                rsi_momentum = 1 if current_rsi > 70 else -1 if current_rsi < 30 else 0

            return {
                "trend": trend,
                "change": change,
                "strength": abs(change) + abs(rsi_momentum) * 0.1,
                "bullish": trend is TrendDirection.BULLISH and change > 0,
                "bearish": trend is TrendDirection.BEARISH and change < 0,
            }
        return self.memoize("momentum", forecast_fingerprint(macd, rsi), compute)

    def analyze(self, indicators: IndicatorSet, config: StrategyConfig) -> SignalAccumulator:
        acc = SignalAccumulator()

        levels = self.support_resistance(indicators.base(), config.lookback_period)
        if levels["position"] > 0.9:
            acc.add(0.25, f"Price near resistance level (${levels['resistance'].level:.2f}) "
                          f"- potential breakout", BUY, override=True)
        if levels["position"] < 0.1:
            acc.add(0.25, f"Price near support level (${levels['support'].level:.2f}) "
                          f"- potential breakdown", SELL, override=True)

        vwap = indicators.get(IndicatorKind.VWAP)
        if vwap:
            volume = self.analyze_volume(vwap, config.lookback_period)
            if volume["breakout"]:
                acc.add(0.3, f"Volume breakout detected ({volume['ratio'] * 100:.0f}% above average)",
                        direction_from_trend(volume["trend"]))
            if volume["spike"]:
                acc.add(0.2, f"Significant volume spike detected ({volume['ratio'] * 100:.0f}% above average)")

        macd = indicators.get(IndicatorKind.MACD)
        if macd:
            momentum = self.analyze_momentum(macd, indicators.get(IndicatorKind.RSI))
            if momentum["bullish"]:
                acc.add(0.2, f"Bullish momentum confirmed (MACD: {momentum['trend'].value}, "
                             f"change: {momentum['change'] * 100:.2f}%)", BUY)
            elif momentum["bearish"]:
                acc.add(0.2, f"Bearish momentum confirmed (MACD: {momentum['trend'].value}, "
                             f"change: {momentum['change'] * 100:.2f}%)", SELL)
            if momentum["strength"] > 0.1:
                acc.add(0.15, f"Strong momentum detected (strength: {momentum['strength']:.2f})")

        bollinger = indicators.get(IndicatorKind.BOLLINGER)
        if bollinger:
            volatility = calculate_volatility(bollinger.forecast)
            if volatility > 0.03:
                acc.add(0.15, f"High volatility detected ({volatility * 100:.2f}%) - breakout conditions",
                        direction_from_trend(calculate_trend(bollinger.forecast)))

        adx = indicators.get(IndicatorKind.ADX)
        if adx:
            adx_avg = calculate_average_price(adx.forecast)
            if adx_avg > 25:
                acc.add(0.2, f"Strong trend detected (ADX: {adx_avg:.2f}) - breakout potential",
                        direction_from_trend(calculate_trend(adx.forecast)))

        acc.cap()
        if len(acc.reasons) > 2:
            acc.boost(1.2)
            acc.note(f"Multiple breakout signals aligned ({len(acc.reasons)} indicators)")
        return acc

    def build_forecast(self, indicators, signal, acc, config) -> List[ForecastPoint]:
        n = config.forecast_days
        sign = {BUY: 1, SELL: -1}.get(signal.recommendation, 0)
        return self.project(
            indicators.base(), config,
            factor=lambda day: 1 + sign * (day / n) * 0.15,
            noise_amplitude=0.2,
            confidence_factor=lambda day: 0.9 - (day / n) * 0.1,
        )


# =============================================================================
# SECTION 3: GOLDEN CROSS
# =============================================================================

class GoldenCrossStrategy(BaseStrategy):
    """EMA/SMA crossover strategy with trend and volume confirmation."""

    name = "Golden Cross"
    description = (
        "Identifies trend changes using moving average crossovers (EMA/SMA) with "
        "volume and trend confirmation"
    )
    category = StrategyCategory.TREND_FOLLOWING
    required_kinds = (IndicatorKind.EMA, IndicatorKind.SMA)
    requirement_message = (
        "Golden Cross strategy requires at least one moving average indicator (EMA or SMA)"
    )
    no_signal_reason = "No clear moving average signals detected"
    forecast_suffix = "GoldenCross"

    base_weight = 0.75
    max_weight = 0.9
    accuracy_factor = 0.88
    accuracy_cap = 0.8

    @staticmethod
    def spread_trend(short: Sequence[float], long: Sequence[float], lookback: int) -> str:
        """expanding / contracting / neutral from the recent absolute relative spread."""
        n = min(len(short), len(long))
        spreads = [abs(safe_ratio(short[i] - long[i], long[i])) for i in range(max(0, n - lookback), n)]
        if len(spreads) < 2:
            return "neutral"
        mid = len(spreads) // 2
        first, second = safe_mean(spreads[:mid]), safe_mean(spreads[mid:])
        if second > first * 1.1:
            return "expanding"
        if second < first * 0.9:
            return "contracting"
        return "neutral"

    def analyze_crossovers(self, short_ma: IndicatorResult, long_ma: IndicatorResult,
                           lookback: int) -> Dict[str, Any]:
        def compute():
            short = avg_values(short_ma.forecast)
            long = avg_values(long_ma.forecast)
            n = min(len(short), len(long))

            crossovers = []
            above = short[0] > long[0]
            for i in range(1, n):
                now_above = short[i] > long[i]
                if now_above != above:
                    crossovers.append({
                        "day": i,
                        "type": "golden" if now_above else "death",
                        "strength": abs(safe_ratio(short[i] - long[i], long[i])),
                    })
                    above = now_above

            recent = [c for c in crossovers if c["day"] >= n - lookback]
            spread = safe_ratio(short[n - 1] - long[n - 1], long[n - 1])
            return {
                "recent": recent,
                "golden": any(c["type"] == "golden" for c in recent),
                "death": any(c["type"] == "death" for c in recent),
                "strongest": max(recent, key=lambda c: c["strength"]) if recent else None,
                "spread": spread,
                "spread_trend": self.spread_trend(short, long, lookback),
                "convergence": abs(spread) < 0.02,
            }
        return self.memoize("crossover", f"{forecast_fingerprint(short_ma, long_ma)}:{lookback}", compute)

    def analyze_trend_strength(self, ema: IndicatorResult, sma: IndicatorResult,
                               adx: Optional[IndicatorResult]) -> Dict[str, Any]:
        def compute():
            ema_trend = calculate_trend(ema.forecast)
            sma_trend = calculate_trend(sma.forecast)
            aligned = ema_trend is sma_trend and ema_trend is not TrendDirection.NEUTRAL
            adx_strength = min(calculate_average_price(adx.forecast) / 100, 1.0) if adx else 0.5
            return {
                "aligned": aligned,
                "overall": ema_trend if aligned else TrendDirection.NEUTRAL,
                "confidence": adx_strength if aligned else adx_strength * 0.5,
                "strong": aligned and adx_strength > 0.6,
            }
        return self.memoize("trend", forecast_fingerprint(ema, sma, adx), compute)

    def analyze_volume_confirmation(self, vwap: IndicatorResult, price: IndicatorResult,
                                    lookback: int) -> Dict[str, Any]:
        def compute():
            volume = avg_values(vwap.forecast)
            prices = avg_values(price.forecast)
            n = min(len(volume), len(prices))

            pairs = []
            for i in range(1, n):
                price_change = safe_ratio(prices[i] - prices[i - 1], prices[i - 1])
                volume_change = safe_ratio(volume[i] - volume[i - 1], volume[i - 1])
                confirmed = (price_change > 0 and volume_change > 0) or (price_change < 0 and volume_change < 0)
                pairs.append((confirmed, abs(price_change) * abs(volume_change)))

            recent = pairs[-lookback:] if lookback > 0 else []
            rate = safe_ratio(sum(1 for ok, _ in recent if ok), len(recent))
            return {
                "rate": rate,
                "avg_strength": safe_mean([s for _, s in recent]),
                "supporting": rate > 0.6,
            }
        return self.memoize("volume", f"{forecast_fingerprint(vwap, price)}:{lookback}", compute)

    def analyze(self, indicators: IndicatorSet, config: StrategyConfig) -> SignalAccumulator:
        acc = SignalAccumulator()
        ema = indicators.get(IndicatorKind.EMA)
        sma = indicators.get(IndicatorKind.SMA)
        vwap = indicators.get(IndicatorKind.VWAP)

        if ema and sma:
            cross = self.analyze_crossovers(ema, sma, config.lookback_period)
            if cross["golden"]:
                acc.add(0.4, f"Golden Cross detected - {ema.name} crossed above {sma.name} "
                             f"(strength: {cross['strongest']['strength'] * 100:.2f}%)", BUY, override=True)
            elif cross["death"]:
                acc.add(0.4, f"Death Cross detected - {ema.name} crossed below {sma.name} "
                             f"(strength: {cross['strongest']['strength'] * 100:.2f}%)", SELL, override=True)

            if cross["spread_trend"] == "expanding" and cross["spread"] > 0:
                acc.add(0.2, "Moving averages expanding upward - bullish trend strengthening", BUY)
            elif cross["spread_trend"] == "expanding" and cross["spread"] < 0:
                acc.add(0.2, "Moving averages expanding downward - bearish trend strengthening", SELL)
            elif cross["convergence"]:
                acc.add(0.1, "Moving averages converging - potential crossover approaching")

            trend = self.analyze_trend_strength(ema, sma, indicators.get(IndicatorKind.ADX))
            if trend["strong"]:
                acc.add(0.3, f"Strong {trend['overall'].value} trend confirmed "
                             f"(confidence: {trend['confidence'] * 100:.0f}%)",
                        direction_from_trend(trend["overall"]))
            elif trend["aligned"]:
                acc.add(0.15, f"Moderate {trend['overall'].value} trend detected",
                        direction_from_trend(trend["overall"]))

        price = ema or sma
        if vwap and price:
            volume = self.analyze_volume_confirmation(vwap, price, config.lookback_period)
            if volume["supporting"]:
                acc.add(0.25, f"Volume supporting price movement (confirmation rate: {volume['rate'] * 100:.0f}%)")
            else:
                acc.confidence *= 0.8
                acc.note("Volume diverging from price - potential reversal warning")
            if volume["avg_strength"] > 0.01:
                acc.add(0.1, f"Strong volume-price relationship (strength: {volume['avg_strength'] * 100:.2f}%)")

        if not (ema and sma):
            single = ema or sma
            trend = calculate_trend(single.forecast)
            if trend is TrendDirection.BULLISH:
                acc.add(0.2, f"{single.name} showing bullish trend", BUY)
            elif trend is TrendDirection.BEARISH:
                acc.add(0.2, f"{single.name} showing bearish trend", SELL)

        acc.cap()
        if any("Golden Cross" in r or "Death Cross" in r for r in acc.reasons):
            acc.boost(1.1)
        return acc

    def build_forecast(self, indicators, signal, acc, config) -> List[ForecastPoint]:
        n = config.forecast_days
        sign = {BUY: 1, SELL: -1}.get(signal.recommendation, 0)
        base = indicators.first_of(IndicatorKind.EMA, IndicatorKind.SMA) or indicators.first()
        return self.project(
            base, config,
            factor=lambda day: 1 + sign * (day / n) * 0.12,
            noise_amplitude=0.08,
            confidence_factor=lambda day: 0.95 - (day / n) * 0.15,
        )


# =============================================================================
# SECTION 4: MOMENTUM DIVERGENCE
# =============================================================================

def find_peaks(values: Sequence[float], maxima: bool, order: int = 3) -> List[tuple]:
    """
    Local extremes whose value equals the max (or min) of the surrounding
    ``2 * order + 1`` window. Edges closer than ``order`` are skipped.

    Returns:
        (index, value) pairs in ascending index order
    """
    arr = np.asarray(values, dtype=float)
    if arr.size < 2 * order + 1:
        return []
    comparator = np.greater_equal if maxima else np.less_equal
    idx = argrelextrema(arr, comparator, order=order, mode="clip")[0]
    return [(int(i), float(arr[i])) for i in idx if order <= i < arr.size - order]


def _slope(points: Sequence[tuple]) -> float:
    if len(points) < 2:
        return 0.0
    (i1, v1), (i2, v2) = points[0], points[-1]
    return safe_ratio(v2 - v1, i2 - i1)


class MomentumDivergenceStrategy(BaseStrategy):
    """Divergence between price swings and oscillator swings."""

    name = "Momentum Divergence"
    description = (
        "Identifies divergences between price and momentum indicators (RSI, MACD, Stochastic) "
        "to predict trend reversals"
    )
    category = StrategyCategory.MOMENTUM
    required_kinds = (IndicatorKind.RSI, IndicatorKind.MACD, IndicatorKind.STOCHASTIC)
    requirement_message = (
        "Momentum Divergence strategy requires at least one momentum indicator (RSI, MACD, or Stochastic)"
    )
    no_signal_reason = "No momentum divergences detected"
    forecast_suffix = "Divergence"

    base_weight = 0.65
    max_weight = 0.85
    accuracy_factor = 0.82
    accuracy_cap = 0.75

    SLOPE_THRESHOLD = 0.01

    def analyze_divergence(self, price: IndicatorResult, momentum: IndicatorResult,
                           lookback: int) -> Dict[str, Any]:
        """
        Slide a window over price and oscillator; a falling price low with a
        rising oscillator low is bullish, a rising price high with a falling
        oscillator high is bearish.
        """
        def compute():
            prices = avg_values(price.forecast)
            osc = avg_values(momentum.forecast)
            n = min(len(prices), len(osc))
            window = min(lookback, n)

            divergences = []
            for i in range(window, n):
                p_win, m_win = prices[i - window:i], osc[i - window:i]
                for kind, maxima in (("bullish", False), ("bearish", True)):
                    p_peaks = find_peaks(p_win, maxima)
                    m_peaks = find_peaks(m_win, maxima)
                    if len(p_peaks) < 2 or len(m_peaks) < 2:
                        continue
                    ps, ms = _slope(p_peaks[-2:]), _slope(m_peaks[-2:])
                    if kind == "bullish":
                        hit = ps < -self.SLOPE_THRESHOLD and ms > self.SLOPE_THRESHOLD
                    else:
                        hit = ps > self.SLOPE_THRESHOLD and ms < -self.SLOPE_THRESHOLD
                    if hit:
                        diff = abs(ps - ms)
                        divergences.append({
                            "type": kind,
                            "day": i,
                            "strength": diff,
                            "confidence": min(safe_ratio(diff, abs(ps) + abs(ms)), 1.0),
                        })

            recent = [d for d in divergences if d["day"] >= n - lookback]
            return {
                "recent": recent,
                "strongest": max(recent, key=lambda d: d["strength"]) if recent else None,
                "bullish": any(d["type"] == "bullish" for d in recent),
                "bearish": any(d["type"] == "bearish" for d in recent),
            }
        return self.memoize("divergence", f"{forecast_fingerprint(price, momentum)}:{lookback}", compute)

    @staticmethod
    def rsi_momentum(values: Sequence[float]) -> str:
        if len(values) < 6:
            return "neutral"
        recent = values[-6:]
        first, second = safe_mean(recent[:3]), safe_mean(recent[3:])
        change = safe_ratio(second - first, first)
        if change > 0.05:
            return "strengthening"
        if change < -0.05:
            return "weakening"
        return "neutral"

    @staticmethod
    def macd_momentum(values: Sequence[float]) -> str:
        if len(values) < 4:
            return "neutral"
        changes = np.diff(np.asarray(values[-4:], dtype=float))
        acceleration = changes[-1] - changes[0]
        if acceleration > 0.01:
            return "accelerating"
        if acceleration < -0.01:
            return "decelerating"
        return "neutral"

    @staticmethod
    def zero_crossings(values: Sequence[float]) -> List[int]:
        return [
            i for i in range(1, len(values))
            if (values[i - 1] < 0 < values[i]) or (values[i - 1] > 0 > values[i])
        ]

    def analyze(self, indicators: IndicatorSet, config: StrategyConfig) -> SignalAccumulator:
        acc = SignalAccumulator()
        lookback = config.lookback_period
        price = indicators.base()

        rsi = indicators.get(IndicatorKind.RSI)
        if rsi:
            div = self.analyze_divergence(price, rsi, lookback)
            rsi_values = avg_values(rsi.forecast)
            current_rsi = rsi_values[-1]
            enhanced = (current_rsi > 70 or current_rsi < 30) and bool(div["recent"])

            for side, direction in (("bullish", BUY), ("bearish", SELL)):
                if div[side]:
                    strongest = div["strongest"]
                    acc.add(0.35, f"{side.capitalize()} RSI divergence detected "
                                  f"(strength: {strongest['strength'] * 100:.2f}%, "
                                  f"confidence: {strongest['confidence'] * 100:.0f}%)",
                            direction, override=True)
                    if enhanced:
                        acc.add(0.15, f"RSI at extreme level ({current_rsi:.1f}) - enhanced divergence signal")
                    break

            trend = self.rsi_momentum(rsi_values)
            if trend == "strengthening" and acc.recommendation is BUY:
                acc.add(0.1, "RSI momentum strengthening - supporting bullish signal")
            elif trend == "weakening" and acc.recommendation is SELL:
                acc.add(0.1, "RSI momentum weakening - supporting bearish signal")

        macd = indicators.get(IndicatorKind.MACD)
        if macd:
            div = self.analyze_divergence(price, macd, lookback)
            macd_values = avg_values(macd.forecast)
            crossings = [i for i in self.zero_crossings(macd_values) if i >= len(macd_values) - lookback]
            crossover_support = bool(crossings) and bool(div["recent"])

            for side, direction in (("bullish", BUY), ("bearish", SELL)):
                if div[side]:
                    acc.add(0.3, f"{side.capitalize()} MACD divergence detected "
                                 f"(strength: {div['strongest']['strength'] * 100:.2f}%)", direction)
                    if crossover_support:
                        acc.add(0.15, "MACD zero-line crossover supporting divergence signal")
                    break

            trend = self.macd_momentum(macd_values)
            if trend == "accelerating" and acc.recommendation is BUY:
                acc.add(0.1, "MACD momentum accelerating - supporting bullish signal")
            elif trend == "decelerating" and acc.recommendation is SELL:
                acc.add(0.1, "MACD momentum decelerating - supporting bearish signal")

        stochastic = indicators.get(IndicatorKind.STOCHASTIC)
        if stochastic:
            div = self.analyze_divergence(price, stochastic, lookback)
            for side, direction in (("bullish", BUY), ("bearish", SELL)):
                if div[side]:
                    acc.add(0.25, f"{side.capitalize()} Stochastic divergence detected "
                                  f"(strength: {div['strongest']['strength'] * 100:.2f}%)", direction)
                    break

        acc.cap()
        divergence_count = sum(1 for r in acc.reasons if "divergence" in r.lower())
        if divergence_count > 1:
            acc.boost(1.15)
            acc.note(f"Multiple momentum divergences confirmed ({divergence_count} indicators)")
        return acc

    def build_forecast(self, indicators, signal, acc, config) -> List[ForecastPoint]:
        n = config.forecast_days
        half = n / 2
        sign = {BUY: 1, SELL: -1}.get(signal.recommendation, 0)

        def factor(day: int) -> float:
            if day <= half:
                return 1 + sign * (day / half) * 0.08
            return 1 + sign * 0.08 * (1 - ((day - half) / half) * 0.3)

        return self.project(
            indicators.base(), config,
            factor=factor,
            noise_amplitude=0.12,
            confidence_factor=lambda day: 0.85 - (day / n) * 0.25,
        )


# =============================================================================
# SECTION 5: CANDLESTICK REVERSAL
# =============================================================================

@dataclass
class CandlePattern:
    name: str
    bias: TrendDirection
    confidence: float
    day: int


def recognize_patterns(points: Sequence[ForecastPoint], lookback: int) -> List[CandlePattern]:
    """
    Candle formations over consecutive forecast points. The body of a
    candle is the move of ``avg`` from the previous point; shadows are
    measured from ``high`` and ``low``.

    Returns:
        Patterns found in the last ``lookback`` points
    """
    patterns: List[CandlePattern] = []
    for i in range(2, len(points)):
        cur, prev, prev2 = points[i], points[i - 1], points[i - 2]
        body = abs(cur.avg - prev.avg)
        upper = cur.high - max(cur.avg, prev.avg)
        lower = min(cur.avg, prev.avg) - cur.low
        total = cur.high - cur.low

        if total > 0 and body < total * 0.1:
            bias = TrendDirection.BEARISH if cur.avg > prev2.avg else TrendDirection.BULLISH
            patterns.append(CandlePattern("Doji", bias, 0.6, i))
        if lower > body * 2 and upper < body * 0.5:
            patterns.append(CandlePattern("Hammer", TrendDirection.BULLISH, 0.7, i))
        if upper > body * 2 and lower < body * 0.5:
            patterns.append(CandlePattern("Shooting Star", TrendDirection.BEARISH, 0.7, i))

        prev_body = abs(prev.avg - prev2.avg)
        if cur.avg > prev.avg and body > prev_body * 1.2:
            patterns.append(CandlePattern("Bullish Engulfing", TrendDirection.BULLISH, 0.8, i))
        if cur.avg < prev.avg and body > prev_body * 1.2:
            patterns.append(CandlePattern("Bearish Engulfing", TrendDirection.BEARISH, 0.8, i))

        if i >= 3:
            star = _star_pattern(points[i - 3].avg, prev2.avg, prev.avg, cur.avg, i)
            if star:
                patterns.append(star)

    return [p for p in patterns if p.day >= len(points) - lookback]


def _star_pattern(before: float, first: float, star: float, third: float, day: int) -> Optional[CandlePattern]:
    star_body = abs(star - first)
    first_body = abs(first - before)
    third_body = abs(third - star)
    if not (star_body < first_body * 0.5 and star_body < third_body * 0.5):
        return None
    if first > star and third > star and third > first:
        return CandlePattern("Morning Star", TrendDirection.BULLISH, 0.85, day)
    if first < star and third < star and third < first:
        return CandlePattern("Evening Star", TrendDirection.BEARISH, 0.85, day)
    return None


class CandlestickReversalStrategy(BaseStrategy):
    """Reversal formations read from the price indicator's forecast candles."""

    name = "Candlestick Reversal"
    description = (
        "Identifies reversal patterns using candlestick formations like doji, hammer, "
        "shooting star, and engulfing patterns"
    )
    category = StrategyCategory.PATTERN_RECOGNITION
    required_kinds = ()
    no_signal_reason = "No significant candlestick patterns detected"
    forecast_suffix = "Reversal"

    base_weight = 0.6
    max_weight = 0.8
    accuracy_factor = 0.85
    accuracy_cap = 0.75

    NO_PATTERN_CONFIDENCE = 0.1
    NO_PATTERN_ACCURACY = 0.5
    NO_PATTERN_WEIGHT = 0.3

    def patterns(self, price: IndicatorResult, lookback: int) -> List[CandlePattern]:
        return self.memoize(
            "patterns", f"{forecast_fingerprint(price)}:{lookback}",
            lambda: recognize_patterns(price.forecast, lookback),
        )

    def trend_context(self, price: IndicatorResult, trend_indicator: IndicatorResult) -> Dict[str, Any]:
        def compute():
            trend = calculate_trend(trend_indicator.forecast)
            if trend is TrendDirection.BULLISH:
                multiplier = {BUY: 0.8, SELL: 1.2}
            elif trend is TrendDirection.BEARISH:
                multiplier = {BUY: 1.2, SELL: 0.8}
            else:
                multiplier = {BUY: 1.0, SELL: 1.0}

            recent = price.forecast[-10:]
            support = min(p.low for p in recent)
            resistance = max(p.high for p in recent)
            current = price.forecast[-1].avg
            return {
                "multiplier": multiplier,
                "support": support,
                "resistance": resistance,
                "near_support": safe_ratio(current - support, support, fallback=1.0) < 0.02,
                "near_resistance": safe_ratio(resistance - current, current, fallback=1.0) < 0.02,
            }
        return self.memoize("context", forecast_fingerprint(price, trend_indicator), compute)

    def analyze(self, indicators: IndicatorSet, config: StrategyConfig) -> SignalAccumulator:
        acc = SignalAccumulator()
        price = indicators.base()
        volume = indicators.get(IndicatorKind.VWAP)
        trend_indicator = indicators.get(IndicatorKind.EMA) or price

        patterns = self.patterns(price, config.lookback_period)
        acc.context["patterns"] = patterns
        if not patterns:
            acc.add(self.NO_PATTERN_CONFIDENCE, self.no_signal_reason)
            return acc

        bullish = [p for p in patterns if p.bias is TrendDirection.BULLISH]
        bearish = [p for p in patterns if p.bias is TrendDirection.BEARISH]
        bull_share = len(bullish) / len(patterns)
        bear_share = len(bearish) / len(patterns)

        if bull_share > bear_share:
            strongest = max(bullish, key=lambda p: p.confidence)
            acc.add(strongest.confidence * 0.6, f"Bullish candlestick pattern: {strongest.name} "
                    f"(confidence: {strongest.confidence * 100:.0f}%)", BUY, override=True)
            if bull_share > 0.7:
                acc.add(0.2, f"Strong bullish pattern concentration ({bull_share * 100:.0f}%)")
        elif bear_share > bull_share:
            strongest = max(bearish, key=lambda p: p.confidence)
            acc.add(strongest.confidence * 0.6, f"Bearish candlestick pattern: {strongest.name} "
                    f"(confidence: {strongest.confidence * 100:.0f}%)", SELL, override=True)
            if bear_share > 0.7:
                acc.add(0.2, f"Strong bearish pattern concentration ({bear_share * 100:.0f}%)")

        context = self.trend_context(price, trend_indicator)
        if acc.recommendation is BUY:
            acc.confidence *= context["multiplier"][BUY]
            if context["near_support"]:
                acc.add(0.15, f"Price near support level (${context['support']:.2f}) - reversal potential")
        elif acc.recommendation is SELL:
            acc.confidence *= context["multiplier"][SELL]
            if context["near_resistance"]:
                acc.add(0.15, f"Price near resistance level (${context['resistance']:.2f}) - reversal potential")

        volume_confirmation = 0.5
        if volume and calculate_volatility(volume.forecast) > 0.02:
            volume_confirmation = 0.7
        if volume_confirmation > 0.6:
            acc.add(0.1, f"Volume supporting reversal pattern (confirmation: {volume_confirmation * 100:.0f}%)")

        acc.cap()
        unique = len({p.name for p in patterns})
        if unique > 2:
            acc.boost(1.1)
            acc.note(f"Multiple pattern types detected ({unique} different patterns)")
        return acc

    def build_forecast(self, indicators, signal, acc, config) -> List[ForecastPoint]:
        patterns: List[CandlePattern] = acc.context.get("patterns", [])
        price = indicators.base()
        n = config.forecast_days

        if not patterns:
            neutral_tag = f"{self.name}_Neutral"
            return [
                ForecastPoint(p.day, p.high, p.low, p.avg, p.confidence, neutral_tag)
                for p in price.forecast if 1 <= p.day <= n
            ]

        avg_conf = safe_mean([p.confidence for p in patterns])
        initial = min(5, n / 3)
        sign = {BUY: 1, SELL: -1}.get(signal.recommendation, 0)

        def factor(day: int) -> float:
            if day <= initial:
                return 1 + sign * (day / initial) * 0.06 * avg_conf
            return 1 + sign * 0.06 * avg_conf * (1 - ((day - initial) / (n - initial)) * 0.5)

        return self.project(
            price, config,
            factor=factor,
            noise_amplitude=0.1 * avg_conf,
            confidence_factor=lambda day: avg_conf * (0.9 - (day / n) * 0.3),
        )

    def score(self, indicators, signal, acc):
        if not acc.context.get("patterns"):
            return self.NO_PATTERN_ACCURACY, self.NO_PATTERN_WEIGHT
        return super().score(indicators, signal, acc)


# =============================================================================
# SECTION 6: VOLATILITY BREAKOUT
# =============================================================================

def _phase_from_end(values: Sequence[float], inside, distance) -> Dict[str, float]:
    """Length of the trailing run where ``inside`` holds and its mean ``distance``."""
    length, total = 0, 0.0
    for v in reversed(values):
        if not inside(v):
            break
        length += 1
        total += distance(v)
    return {"length": length, "strength": total / length if length else 0.0}


class VolatilityBreakoutStrategy(BaseStrategy):
    """Volatility compression followed by expansion, with direction confirmation."""

    name = "Volatility Breakout"
    description = (
        "Identifies breakouts based on volatility expansion after periods of compression "
        "using Bollinger Bands and ATR"
    )
    category = StrategyCategory.VOLATILITY
    required_kinds = (IndicatorKind.BOLLINGER,)
    requirement_message = "Volatility Breakout strategy requires Bollinger Bands indicator"
    no_signal_reason = "No clear volatility patterns detected"
    forecast_suffix = "Volatility"

    base_weight = 0.75
    max_weight = 0.9
    accuracy_factor = 0.9
    accuracy_cap = 0.85

    def volatility_pattern(self, price: IndicatorResult, lookback: int) -> Dict[str, Any]:
        """Rolling coefficient of variation and average true range of the price forecast."""
        def compute():
            prices = avg_values(price.forecast)
            highs = [p.high for p in price.forecast]
            lows = [p.low for p in price.forecast]

            volatilities = []
            for i in range(lookback, len(prices)):
                window = prices[i - lookback:i]
                volatilities.append(safe_ratio(population_std(window), safe_mean(window)))

            true_ranges = [
                max(highs[i] - lows[i], abs(highs[i] - prices[i - 1]), abs(lows[i] - prices[i - 1]))
                for i in range(1, len(highs))
            ]
            rolling_atr = [safe_mean(true_ranges[i - lookback:i]) for i in range(lookback, len(true_ranges))]

            current_vol = volatilities[-1] if volatilities else 0.0
            avg_vol = safe_mean(volatilities)
            current_atr = rolling_atr[-1] if rolling_atr else 0.0
            avg_atr = safe_mean(rolling_atr)

            compression_level = avg_vol * 0.8
            expansion_level = avg_vol * 1.2
            compression = {"length": 0, "strength": 0.0}
            expansion = {"length": 0, "strength": 0.0}
            if len(volatilities) >= 10:
                compression = _phase_from_end(
                    volatilities, lambda v: v < compression_level,
                    lambda v: safe_ratio(compression_level - v, compression_level))
            if len(volatilities) >= 5:
                expansion = _phase_from_end(
                    volatilities, lambda v: v > expansion_level,
                    lambda v: safe_ratio(v - expansion_level, expansion_level))

            return {
                "is_compression": bool(volatilities) and current_vol < compression_level,
                "is_expansion": bool(volatilities) and current_vol > expansion_level,
                "volatility_ratio": safe_ratio(current_vol, avg_vol),
                "atr_ratio": safe_ratio(current_atr, avg_atr),
                "compression": compression,
                "expansion": expansion,
            }
        return self.memoize("volatility", f"{forecast_fingerprint(price)}:{lookback}", compute)

    def bollinger_squeeze(self, bollinger: IndicatorResult) -> Dict[str, Any]:
        def compute():
            bandwidths = [safe_ratio(p.high - p.low, p.avg) for p in bollinger.forecast]
            average = safe_mean(bandwidths)
            current = bandwidths[-1]
            squeeze_level = average * 0.7
            duration = _phase_from_end(bandwidths, lambda b: b < squeeze_level, lambda b: 0.0)["length"]
            if duration > 10:
                potential = "high"
            elif duration > 5:
                potential = "medium"
            else:
                potential = "low"
            return {
                "is_squeeze": current < squeeze_level,
                "is_expansion": current > average * 1.3,
                "duration": duration,
                "potential": potential,
            }
        return self.memoize("squeeze", forecast_fingerprint(bollinger), compute)

    def breakout_direction(self, price: IndicatorResult, volume: Optional[IndicatorResult],
                           momentum: Optional[IndicatorResult]) -> Dict[str, Any]:
        def compute():
            price_trend = calculate_trend(price.forecast)
            price_vote = {TrendDirection.BULLISH: 0.7, TrendDirection.BEARISH: 0.3}.get(price_trend, 0.5)

            volume_vote = 0.5
            if volume:
                trend = calculate_trend(volume.forecast)
                if calculate_volatility(volume.forecast) > 0.02:
                    if trend is TrendDirection.BULLISH:
                        volume_vote = 0.8
                    elif trend is TrendDirection.BEARISH:
                        volume_vote = 0.2

            momentum_vote = 0.5
            if momentum:
                trend = calculate_trend(momentum.forecast)
                values = avg_values(momentum.forecast)
                change = _relative_change(values[-1], values[-2]) if len(values) > 1 else 0.0
                if trend is TrendDirection.BULLISH and change > 0.01:
                    momentum_vote = 0.8
                elif trend is TrendDirection.BEARISH and change < -0.01:
                    momentum_vote = 0.2

            combined = (price_vote + volume_vote + momentum_vote) / 3
            if combined > 0.6:
                predicted = TrendDirection.BULLISH
            elif combined < 0.4:
                predicted = TrendDirection.BEARISH
            else:
                predicted = TrendDirection.NEUTRAL
            return {
                "volume_confirmation": volume_vote,
                "momentum_confirmation": momentum_vote,
                "confidence": abs(combined - 0.5) * 2,
                "predicted": predicted,
            }
        return self.memoize("direction", forecast_fingerprint(price, volume, momentum), compute)

    def analyze(self, indicators: IndicatorSet, config: StrategyConfig) -> SignalAccumulator:
        acc = SignalAccumulator()
        price = indicators.base()
        bollinger = indicators.get(IndicatorKind.BOLLINGER)
        momentum = indicators.first_of(IndicatorKind.MACD, IndicatorKind.RSI)

        vol = self.volatility_pattern(price, config.lookback_period)
        squeeze = self.bollinger_squeeze(bollinger)
        direction = self.breakout_direction(price, indicators.get(IndicatorKind.VWAP), momentum)
        acc.context["volatility"] = vol

        if vol["is_compression"] and squeeze["is_squeeze"]:
            acc.add(0.3, f"Volatility compression detected - potential breakout setup "
                         f"(compression: {vol['compression']['length']} periods)")
            if squeeze["potential"] == "high":
                acc.add(0.2, f"Extended volatility squeeze ({squeeze['duration']} periods) "
                             f"- high breakout potential")

        if vol["is_expansion"] or squeeze["is_expansion"]:
            acc.add(0.4, f"Volatility expansion detected - breakout in progress "
                         f"(expansion ratio: {vol['volatility_ratio'] * 100:.0f}%)")
            if direction["predicted"] is TrendDirection.BULLISH:
                acc.add(0.0, f"Bullish breakout direction (confidence: {direction['confidence'] * 100:.0f}%)",
                        BUY, override=True)
            elif direction["predicted"] is TrendDirection.BEARISH:
                acc.add(0.0, f"Bearish breakout direction (confidence: {direction['confidence'] * 100:.0f}%)",
                        SELL, override=True)

        if vol["atr_ratio"] > 1.2:
            acc.add(0.15, f"ATR expansion confirms volatility breakout (ratio: {vol['atr_ratio'] * 100:.0f}%)")
        if direction["volume_confirmation"] > 0.6:
            acc.add(0.2, f"Volume supporting breakout direction "
                         f"(confirmation: {direction['volume_confirmation'] * 100:.0f}%)")
        if direction["momentum_confirmation"] > 0.6:
            acc.add(0.15, f"Momentum supporting breakout direction "
                          f"(confirmation: {direction['momentum_confirmation'] * 100:.0f}%)")

        if vol["is_compression"] and acc.recommendation is NEUTRAL:
            acc.note("Volatility compression phase - awaiting directional breakout")
            acc.confidence = max(acc.confidence, 0.4)

        return acc

    def build_forecast(self, indicators, signal, acc, config) -> List[ForecastPoint]:
        vol = acc.context["volatility"]
        n = config.forecast_days
        breakout_phase = min(7, n / 2)
        sign = {BUY: 1, SELL: -1}.get(signal.recommendation, 0)

        def factor(day: int) -> float:
            if vol["is_expansion"]:
                if day <= breakout_phase:
                    return 1 + sign * (day / breakout_phase) * 0.12
                return 1 + sign * 0.12 * (1 - ((day - breakout_phase) / (n - breakout_phase)) * 0.4)
            if vol["is_compression"]:
                return 1 - vol["compression"]["strength"] * 0.02
            return 1.0

        return self.project(
            indicators.base(), config,
            factor=factor,
            noise_amplitude=0.15 if vol["is_expansion"] else 0.08,
            confidence_factor=lambda day: 0.9 - (day / n) * 0.2,
        )


# =============================================================================
# MODULE EXPORTS
# =============================================================================

STRATEGY_CLASSES = (
    MeanReversionStrategy,
    BreakoutStrategy,
    GoldenCrossStrategy,
    MomentumDivergenceStrategy,
    CandlestickReversalStrategy,
    VolatilityBreakoutStrategy,
)

__all__ = [
    "forecast_fingerprint",
    "find_peaks",
    "recognize_patterns",
    "CandlePattern",
    "MeanReversionStrategy",
    "BreakoutStrategy",
    "GoldenCrossStrategy",
    "MomentumDivergenceStrategy",
    "CandlestickReversalStrategy",
    "VolatilityBreakoutStrategy",
    "STRATEGY_CLASSES",
]
