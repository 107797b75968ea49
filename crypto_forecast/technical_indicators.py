"""
Technical Indicator Forecast Engine

Computes ten classic technical indicators over a daily price series and turns
each one into a day-ahead price forecast with a decaying confidence score.

INDICATOR ARCHITECTURE
    Every indicator is a pure function

        forecast_x(closes, highs, lows, volumes, forecast_days) -> List[ForecastPoint]

    built in three steps:

    Step 1 - INDICATOR SERIES
        Closed-form pandas computation (rolling windows, Wilder smoothing,
        exponential averages) implemented as static methods on the family
        classes below.

    Step 2 - SIGNAL STATE
        The latest values are classified into a state (overbought, bullish
        crossover, above cloud, ...) that selects a daily price multiplier.

    Step 3 - PROJECTION
        The multiplier is damped with exponential time decay and compounded
        from the last close. Day high/low come from recent return
        volatility; confidence starts from a state-dependent base and decays
        with the horizon, clamped to an indicator-specific floor and cap.

    Family 1 - MOMENTUM OSCILLATORS: RSI, Stochastic
    Family 2 - TREND INDICATORS: EMA, SMA, MACD, ADX/DMI, Parabolic SAR
    Family 3 - VOLATILITY SYSTEMS: Bollinger Bands
    Family 4 - VOLUME ANALYSIS: VWAP
    Family 5 - COMPLETE TRADING SYSTEMS: Ichimoku Kinko Hyo

ORCHESTRATION
    ``IndicatorEngine.calculate_all_indicators`` validates the input, then
    dispatches all ten formulas as independent tasks joined with
    ``asyncio.gather(return_exceptions=True)``. A failed task becomes a
    zero-weight placeholder and is filtered out; only the failure of all ten
    raises ``ComputationError``.

Author: Tamer
Version: 1.0.0
"""

from __future__ import annotations

import asyncio
import copy
import logging
import time
import warnings
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from crypto_forecast.cache import Clock, TTLCache
from crypto_forecast.config import CACHE, FORECAST, IndicatorKind
from crypto_forecast.models import (
    ComputationError,
    ForecastPoint,
    FormulaMinimumDataError,
    IndicatorResult,
    PricePoint,
    ValidationError,
)
from crypto_forecast.numerics import clamp, sanitize

# Suppress warnings for cleaner output
warnings.filterwarnings('ignore', category=FutureWarning)
warnings.filterwarnings('ignore', category=RuntimeWarning)

# Module-level logger
logger = logging.getLogger(__name__)


# =============================================================================
# SECTION 1: CONFIGURATION
# =============================================================================

class Config:
    """Indicator periods and projection constants."""

    # -------------------------------------------------------------------------
    # Momentum
    # -------------------------------------------------------------------------
    RSI_PERIOD: int = 14
    RSI_OVERBOUGHT: float = 70.0
    RSI_OVERSOLD: float = 30.0
    STOCH_K_PERIOD: int = 14
    STOCH_D_PERIOD: int = 3
    STOCH_OVERBOUGHT: float = 80.0
    STOCH_OVERSOLD: float = 20.0

    # -------------------------------------------------------------------------
    # Trend
    # -------------------------------------------------------------------------
    EMA_SHORT: int = 12
    EMA_LONG: int = 26
    SMA_SHORT: int = 20
    SMA_LONG: int = 50
    MACD_FAST: int = 12
    MACD_SLOW: int = 26
    MACD_SIGNAL: int = 9
    ADX_PERIOD: int = 14
    ADX_STRONG: float = 25.0
    ADX_VERY_STRONG: float = 40.0
    SAR_ACCELERATION: float = 0.02
    SAR_MAX_ACCELERATION: float = 0.2

    # -------------------------------------------------------------------------
    # Volatility / Volume
    # -------------------------------------------------------------------------
    BB_PERIOD: int = 20
    BB_STD: float = 2.0
    VWAP_VOLUME_WINDOW: int = 20

    # -------------------------------------------------------------------------
    # Ichimoku
    # -------------------------------------------------------------------------
    ICHIMOKU_TENKAN: int = 9
    ICHIMOKU_KIJUN: int = 26
    ICHIMOKU_SENKOU_B: int = 52

    # -------------------------------------------------------------------------
    # Projection
    # -------------------------------------------------------------------------
    VOLATILITY_WINDOW: int = 20       # Closes used for return volatility
    DEFAULT_VOLATILITY: float = 0.02  # When fewer than 2 closes


# =============================================================================
# SECTION 2: PRICE ARRAYS AND SHARED HELPERS
# =============================================================================

@dataclass
class PriceArrays:
    """Column arrays extracted from a PricePoint series."""
    closes: np.ndarray
    highs: np.ndarray
    lows: np.ndarray
    volumes: np.ndarray
    dates: List[str]

    def copy(self) -> "PriceArrays":
        return PriceArrays(
            closes=self.closes.copy(),
            highs=self.highs.copy(),
            lows=self.lows.copy(),
            volumes=self.volumes.copy(),
            dates=list(self.dates),
        )

    def __len__(self) -> int:
        return len(self.closes)


def extract_price_arrays(prices: Sequence[PricePoint]) -> PriceArrays:
    """Split a PricePoint series into float arrays."""
    return PriceArrays(
        closes=np.array([p.close for p in prices], dtype=float),
        highs=np.array([p.high for p in prices], dtype=float),
        lows=np.array([p.low for p in prices], dtype=float),
        volumes=np.array([p.volume for p in prices], dtype=float),
        dates=[p.date for p in prices],
    )


def _require(name: str, closes: np.ndarray, minimum: int) -> None:
    if len(closes) < minimum:
        raise FormulaMinimumDataError(name, minimum, len(closes))


def average_step(values) -> float:
    """Mean first difference of a sequence (0 for fewer than 2 values)."""
    arr = np.asarray(values, dtype=float)
    if arr.size < 2:
        return 0.0
    return sanitize(np.diff(arr).mean())


def returns_volatility(closes: np.ndarray, window: int = Config.VOLATILITY_WINDOW) -> float:
    """Population standard deviation of simple returns over the last ``window`` closes."""
    recent = np.asarray(closes[-window:], dtype=float)
    if recent.size < 2:
        return Config.DEFAULT_VOLATILITY
    returns = pd.Series(recent).pct_change().dropna()
    return sanitize(returns.std(ddof=0), Config.DEFAULT_VOLATILITY)


def _decay(multiplier: float, day: int, horizon: float) -> float:
    return 1.0 + (multiplier - 1.0) * np.exp(-day / horizon)


def _banded_point(
    day: int,
    predicted: float,
    volatility: float,
    band: float,
    confidence: float,
    tag: str,
) -> ForecastPoint:
    return ForecastPoint(
        day=day,
        high=predicted * (1 + volatility * band),
        low=predicted * (1 - volatility * band),
        avg=predicted,
        confidence=confidence,
        indicator=tag,
    )


# =============================================================================
# SECTION 3: MOMENTUM OSCILLATORS
# =============================================================================

class MomentumIndicators:
    """RSI and Stochastic series."""

    @staticmethod
    def calculate_rsi(close: pd.Series, period: int = Config.RSI_PERIOD) -> pd.Series:
        """
        Calculate Relative Strength Index using Wilder's smoothing.

        RSI = 100 - (100 / (1 + RS))
        where RS = Average Gain / Average Loss

        Parameters
        ----------
        close : pd.Series
            Closing prices
        period : int
            Lookback period (default: 14)

        Returns
        -------
        pd.Series
            RSI values [0, 100]
        """
        delta = close.diff()

        gains = delta.where(delta > 0, 0.0)
        losses = (-delta).where(delta < 0, 0.0)

        # Wilder's smoothing (exponential with alpha = 1/period)
        alpha = 1.0 / period
        avg_gain = gains.ewm(alpha=alpha, adjust=False, min_periods=period).mean()
        avg_loss = losses.ewm(alpha=alpha, adjust=False, min_periods=period).mean()

        rs = avg_gain / avg_loss.replace(0, np.nan)
        rsi = 100.0 - (100.0 / (1.0 + rs))

        # Only gains in the window
        rsi = rsi.where(~((avg_loss == 0) & (avg_gain > 0)), 100.0)

        return rsi.fillna(50.0)

    @staticmethod
    def calculate_stochastic(
        high: pd.Series,
        low: pd.Series,
        close: pd.Series,
        k_period: int = Config.STOCH_K_PERIOD,
        d_period: int = Config.STOCH_D_PERIOD,
    ) -> Tuple[pd.Series, pd.Series]:
        """
        Calculate Stochastic Oscillator (%K and %D).

        %K = 100 * (Close - Lowest Low) / (Highest High - Lowest Low)
        %D = SMA(%K, d_period)

        Returns
        -------
        Tuple[pd.Series, pd.Series]
            (%K, %D) over the bars where the full %K window exists
        """
        lowest_low = low.rolling(window=k_period).min()
        highest_high = high.rolling(window=k_period).max()

        range_hl = (highest_high - lowest_low).replace(0, np.nan)
        k = (100.0 * (close - lowest_low) / range_hl).fillna(50.0)
        k = k.iloc[k_period - 1:]
        d = k.rolling(window=d_period, min_periods=1).mean()

        return k, d


def forecast_rsi(closes, highs, lows, volumes, forecast_days: int) -> List[ForecastPoint]:
    """RSI: overbought/oversold reversion, otherwise mild momentum continuation."""
    period = Config.RSI_PERIOD
    _require("RSI", closes, period + 1)

    rsi = MomentumIndicators.calculate_rsi(pd.Series(closes), period).iloc[period:]
    recent = rsi.values[-10:]
    current_rsi = float(recent[-1])
    rsi_trend = average_step(recent)
    price = float(closes[-1])
    volatility = returns_volatility(closes)

    forecast = []
    for day in range(1, forecast_days + 1):
        future_rsi = clamp(current_rsi + rsi_trend * day, 0.0, 100.0)

        if future_rsi > Config.RSI_OVERBOUGHT:
            multiplier = 0.98 - ((future_rsi - 70) / 30) * 0.05
        elif future_rsi < Config.RSI_OVERSOLD:
            multiplier = 1.02 + ((30 - future_rsi) / 30) * 0.05
        else:
            momentum = (future_rsi - 50) / 50
            multiplier = 1 + momentum * 0.02

        multiplier = _decay(multiplier, day, 10)
        predicted = price * multiplier ** day

        if future_rsi > 70 or future_rsi < 30:
            confidence = 0.9
        elif future_rsi > 60 or future_rsi < 40:
            confidence = 0.85
        else:
            confidence = 0.8
        confidence = max(confidence * np.exp(-day / 15), 0.3)

        forecast.append(_banded_point(day, predicted, volatility, 0.5, confidence, "RSI"))
    return forecast


def forecast_stochastic(closes, highs, lows, volumes, forecast_days: int) -> List[ForecastPoint]:
    """Stochastic: extremes revert, %K/%D crossovers follow through."""
    _require("STOCHASTIC", closes, Config.STOCH_K_PERIOD)

    k, d = MomentumIndicators.calculate_stochastic(
        pd.Series(highs), pd.Series(lows), pd.Series(closes)
    )
    current_k, current_d = float(k.iloc[-1]), float(d.iloc[-1])
    k_trend = average_step(k.values[-3:])
    d_trend = average_step(d.values[-3:])

    overbought = current_k > Config.STOCH_OVERBOUGHT and current_d > Config.STOCH_OVERBOUGHT
    oversold = current_k < Config.STOCH_OVERSOLD and current_d < Config.STOCH_OVERSOLD
    bullish_cross = current_k > current_d and k_trend > d_trend
    bearish_cross = current_k < current_d and k_trend < d_trend

    price = float(closes[-1])
    volatility = returns_volatility(closes)

    forecast = []
    for day in range(1, forecast_days + 1):
        future_k = clamp(current_k + k_trend * day, 0.0, 100.0)

        if overbought:
            multiplier = 0.99 - ((current_k - 80) / 20) * 0.03
        elif oversold:
            multiplier = 1.01 + ((20 - current_k) / 20) * 0.03
        elif bullish_cross:
            multiplier = 1.015 + (abs(k_trend - d_trend) / 100) * 0.02
        elif bearish_cross:
            multiplier = 0.985 - (abs(k_trend - d_trend) / 100) * 0.02
        else:
            multiplier = 1 + ((future_k - 50) / 50) * 0.01

        multiplier = _decay(multiplier, day, 10)
        predicted = price * multiplier ** (day / 6)

        confidence = 0.82 if (overbought or oversold) else 0.68
        if abs(current_k - current_d) < 10:
            confidence += 0.05
        confidence = clamp(confidence * np.exp(-day / 8), 0.3, 0.9)

        forecast.append(_banded_point(day, predicted, volatility, 0.6, confidence, "STOCHASTIC"))
    return forecast


# =============================================================================
# SECTION 4: TREND INDICATORS
# =============================================================================

class TrendIndicators:
    """Moving averages, MACD, ADX/DMI and Parabolic SAR series."""

    @staticmethod
    def calculate_ema(close: pd.Series, span: int) -> pd.Series:
        return close.ewm(span=span, adjust=False).mean()

    @staticmethod
    def calculate_sma(close: pd.Series, period: int) -> pd.Series:
        return close.rolling(window=period).mean().dropna()

    @staticmethod
    def calculate_macd(
        close: pd.Series,
        fast: int = Config.MACD_FAST,
        slow: int = Config.MACD_SLOW,
        signal: int = Config.MACD_SIGNAL,
    ) -> Tuple[pd.Series, pd.Series, pd.Series]:
        """
        Calculate MACD, Signal line, and Histogram.

        MACD = EMA(fast) - EMA(slow)
        Signal = EMA(MACD, signal_period)
        Histogram = MACD - Signal

        Returns
        -------
        Tuple[pd.Series, pd.Series, pd.Series]
            (MACD line, Signal line, Histogram)
        """
        ema_fast = close.ewm(span=fast, adjust=False).mean()
        ema_slow = close.ewm(span=slow, adjust=False).mean()

        macd_line = ema_fast - ema_slow
        signal_line = macd_line.ewm(span=signal, adjust=False).mean()
        histogram = macd_line - signal_line

        return macd_line, signal_line, histogram

    @staticmethod
    def calculate_adx_dmi(
        high: pd.Series,
        low: pd.Series,
        close: pd.Series,
        period: int = Config.ADX_PERIOD,
    ) -> Tuple[pd.Series, pd.Series, pd.Series]:
        """
        Calculate ADX and Directional Movement indicators.

        ADX measures trend strength (0-100), regardless of direction.
        +DI measures upward movement strength.
        -DI measures downward movement strength.

        Returns
        -------
        Tuple[pd.Series, pd.Series, pd.Series]
            (ADX, +DI, -DI)
        """
        # True Range
        tr1 = high - low
        tr2 = abs(high - close.shift(1))
        tr3 = abs(low - close.shift(1))
        tr = pd.concat([tr1, tr2, tr3], axis=1).max(axis=1)

        # Directional Movement
        up_move = high - high.shift(1)
        down_move = low.shift(1) - low

        plus_dm = pd.Series(
            np.where((up_move > down_move) & (up_move > 0), up_move, 0.0), index=high.index
        )
        minus_dm = pd.Series(
            np.where((down_move > up_move) & (down_move > 0), down_move, 0.0), index=high.index
        )

        # Wilder's smoothing
        alpha = 1.0 / period
        atr = tr.ewm(alpha=alpha, adjust=False, min_periods=period).mean()
        plus_dm_smooth = plus_dm.ewm(alpha=alpha, adjust=False, min_periods=period).mean()
        minus_dm_smooth = minus_dm.ewm(alpha=alpha, adjust=False, min_periods=period).mean()

        plus_di = 100.0 * plus_dm_smooth / atr.replace(0, np.nan)
        minus_di = 100.0 * minus_dm_smooth / atr.replace(0, np.nan)

        dx = 100.0 * abs(plus_di - minus_di) / (plus_di + minus_di).replace(0, np.nan)
        adx = dx.ewm(alpha=alpha, adjust=False, min_periods=period).mean()

        return adx.fillna(0), plus_di.fillna(0), minus_di.fillna(0)

    @staticmethod
    def calculate_parabolic_sar(
        high: np.ndarray,
        low: np.ndarray,
        acceleration: float = Config.SAR_ACCELERATION,
        max_acceleration: float = Config.SAR_MAX_ACCELERATION,
    ) -> np.ndarray:
        """
        Calculate Wilder's Parabolic Stop-and-Reverse.

        SAR(t) = SAR(t-1) + AF * (EP - SAR(t-1)), flipping sides when price
        crosses the SAR. AF grows by ``acceleration`` on each new extreme,
        capped at ``max_acceleration``.
        """
        uptrend = high[1] > high[0]
        sar = min(low[0], low[1]) if uptrend else max(high[0], high[1])
        extreme = max(high[0], high[1]) if uptrend else min(low[0], low[1])
        af = acceleration

        values = [sar]
        for i in range(2, len(high)):
            sar = sar + af * (extreme - sar)
            if uptrend:
                if low[i] <= sar:
                    uptrend, sar, extreme, af = False, extreme, low[i], acceleration
                else:
                    if high[i] > extreme:
                        extreme = high[i]
                        af = min(af + acceleration, max_acceleration)
                    sar = min(sar, low[i - 1], low[i - 2])
            else:
                if high[i] >= sar:
                    uptrend, sar, extreme, af = True, extreme, high[i], acceleration
                else:
                    if low[i] < extreme:
                        extreme = low[i]
                        af = min(af + acceleration, max_acceleration)
                    sar = max(sar, high[i - 1], high[i - 2])
            values.append(sar)

        return np.asarray(values, dtype=float)


def forecast_ema(closes, highs, lows, volumes, forecast_days: int) -> List[ForecastPoint]:
    """EMA 12/26: follow the spread direction, damped when the averages converge."""
    _require("EMA", closes, Config.EMA_SHORT)

    series = pd.Series(closes)
    short_ema = TrendIndicators.calculate_ema(series, Config.EMA_SHORT).values
    long_ema = TrendIndicators.calculate_ema(series, Config.EMA_LONG).values
    price = float(closes[-1])
    current_short, current_long = float(short_ema[-1]), float(long_ema[-1])
    short_trend = average_step(short_ema[-5:])
    long_trend = average_step(long_ema[-5:])

    strength = abs(current_short - current_long) / price
    bullish = current_short > current_long
    volatility = returns_volatility(closes)

    forecast = []
    for day in range(1, forecast_days + 1):
        sign = 1 if bullish else -1
        multiplier = 1 + sign * strength * 0.5 * np.exp(-day / 8)

        future_spread = abs((current_short + short_trend * day) - (current_long + long_trend * day))
        if future_spread / price < strength:
            multiplier = 1 + (multiplier - 1) * 0.7

        predicted = price * multiplier ** (day / 5)

        confidence = 0.8 + strength * 0.3 + (0.05 if bullish else 0.0)
        confidence = clamp(confidence * np.exp(-day / 12), 0.4, 0.95)

        forecast.append(_banded_point(day, predicted, volatility, 0.6, confidence, "EMA"))
    return forecast


def forecast_sma(closes, highs, lows, volumes, forecast_days: int) -> List[ForecastPoint]:
    """SMA 20/50 stack: aligned stack is a strong signal, price vs SMA20 a mild one."""
    _require("SMA", closes, Config.SMA_SHORT)

    series = pd.Series(closes)
    short_sma = TrendIndicators.calculate_sma(series, Config.SMA_SHORT).values
    long_sma = TrendIndicators.calculate_sma(series, min(Config.SMA_LONG, len(closes))).values
    price = float(closes[-1])
    current_short, current_long = float(short_sma[-1]), float(long_sma[-1])
    short_trend = average_step(short_sma[-5:])

    bullish = price > current_short > current_long
    bearish = price < current_short < current_long
    above = price > current_short
    volatility = returns_volatility(closes)

    forecast = []
    for day in range(1, forecast_days + 1):
        if bullish:
            multiplier = 1.015 + (abs(short_trend) / price) * 0.5
        elif bearish:
            multiplier = 0.985 - (abs(short_trend) / price) * 0.5
        elif above:
            multiplier = 1.005 + (short_trend / price) * 0.3
        else:
            multiplier = 0.995 + (short_trend / price) * 0.3

        multiplier = _decay(multiplier, day, 15)
        predicted = price * multiplier ** (day / 4)

        confidence = 0.85 if (bullish or bearish) else 0.7
        confidence = clamp(confidence * np.exp(-day / 18), 0.3, 0.9)

        forecast.append(_banded_point(day, predicted, volatility, 0.5, confidence, "SMA"))
    return forecast


def forecast_macd(closes, highs, lows, volumes, forecast_days: int) -> List[ForecastPoint]:
    """MACD 12/26/9: crossovers drive direction, histogram sizes the move."""
    _require("MACD", closes, Config.MACD_SLOW)

    macd_line, signal_line, histogram = TrendIndicators.calculate_macd(pd.Series(closes))
    price = float(closes[-1])
    current_macd = float(macd_line.iloc[-1])
    current_signal = float(signal_line.iloc[-1])
    current_hist = float(histogram.iloc[-1])

    macd_trend = average_step(macd_line.values[-5:])
    signal_trend = average_step(signal_line.values[-5:])
    hist_trend = average_step(histogram.values[-3:])

    bullish_cross = current_macd > current_signal and macd_trend > signal_trend
    bearish_cross = current_macd < current_signal and macd_trend < signal_trend
    momentum = 1 if current_hist > 0 else -1
    volatility = returns_volatility(closes)

    forecast = []
    for day in range(1, forecast_days + 1):
        future_hist = current_hist + hist_trend * day

        if bullish_cross:
            multiplier = 1.02 + (abs(future_hist) / price) * 0.1
        elif bearish_cross:
            multiplier = 0.98 - (abs(future_hist) / price) * 0.1
        else:
            multiplier = 1 + ((momentum * abs(future_hist)) / price) * 0.05

        multiplier = _decay(multiplier, day, 12)
        predicted = price * multiplier ** (day / 6)

        confidence = 0.75 + min(abs(future_hist) * 0.1, 0.15)
        if bullish_cross or bearish_cross:
            confidence += 0.1
        confidence = clamp(confidence * np.exp(-day / 10), 0.3, 0.9)

        if not (np.isfinite(predicted) and np.isfinite(confidence)):
            # Simple trend fallback when the projection degenerates
            simple = price * (1 + momentum * 0.01 * day)
            forecast.append(ForecastPoint(day, simple * 1.02, simple * 0.98, simple, 0.5, "MACD"))
            continue

        forecast.append(_banded_point(day, predicted, volatility, 0.7, confidence, "MACD"))
    return forecast


def forecast_adx(closes, highs, lows, volumes, forecast_days: int) -> List[ForecastPoint]:
    """ADX/DMI: follow the dominant DI when the trend is strong, else drift with price."""
    _require("ADX", closes, 2 * Config.ADX_PERIOD)

    adx, plus_di, minus_di = TrendIndicators.calculate_adx_dmi(
        pd.Series(highs), pd.Series(lows), pd.Series(closes)
    )
    price = float(closes[-1])
    current_adx = float(adx.iloc[-1])
    adx_trend = average_step(adx.values[-5:])
    price_trend = average_step(closes[-10:])
    bullish = float(plus_di.iloc[-1]) > float(minus_di.iloc[-1])
    volatility = returns_volatility(closes)

    forecast = []
    for day in range(1, forecast_days + 1):
        future_adx = clamp(current_adx + adx_trend * day, 0.0, 100.0)
        strength = future_adx / 100

        if current_adx > Config.ADX_VERY_STRONG:
            multiplier = 1.015 + strength * 0.02 if bullish else 0.985 - strength * 0.02
        elif current_adx > Config.ADX_STRONG:
            multiplier = 1.01 + strength * 0.01 if bullish else 0.99 - strength * 0.01
        else:
            multiplier = 1 + (price_trend / price) * 0.1

        multiplier = _decay(multiplier, day, 16)
        predicted = price * multiplier ** (day / 8)

        if current_adx > Config.ADX_VERY_STRONG:
            confidence = 0.8
        elif current_adx > Config.ADX_STRONG:
            confidence = 0.75
        else:
            confidence = 0.66
        if future_adx < current_adx:
            confidence *= 0.9
        confidence = clamp(confidence * np.exp(-day / 14), 0.25, 0.85)

        forecast.append(_banded_point(day, predicted, volatility, 0.5, confidence, "ADX"))
    return forecast


def forecast_parabolic_sar(closes, highs, lows, volumes, forecast_days: int) -> List[ForecastPoint]:
    """Parabolic SAR: continuation on the side of price, scaled by distance to SAR."""
    _require("PARABOLIC_SAR", closes, 10)

    sar = TrendIndicators.calculate_parabolic_sar(np.asarray(highs), np.asarray(lows))
    price = float(closes[-1])
    current_sar = float(sar[-1])
    bullish = price > current_sar
    distance = abs(price - current_sar) / price
    volatility = returns_volatility(closes)

    forecast = []
    for day in range(1, forecast_days + 1):
        multiplier = 1.01 + distance * 0.5 if bullish else 0.99 - distance * 0.5
        multiplier = _decay(multiplier, day, 8)
        predicted = price * multiplier ** (day / 4)

        confidence = 0.71 + min(distance * 2, 0.15)
        confidence = clamp(confidence * np.exp(-day / 6), 0.3, 0.9)

        forecast.append(_banded_point(day, predicted, volatility, 0.6, confidence, "PARABOLIC_SAR"))
    return forecast


# =============================================================================
# SECTION 5: VOLATILITY AND VOLUME
# =============================================================================

class VolatilityIndicators:
    """Bollinger Bands and VWAP series."""

    @staticmethod
    def calculate_bollinger_bands(
        close: pd.Series,
        period: int = Config.BB_PERIOD,
        num_std: float = Config.BB_STD,
    ) -> Tuple[pd.Series, pd.Series, pd.Series]:
        """
        Calculate Bollinger Bands (population standard deviation).

        Returns
        -------
        Tuple[pd.Series, pd.Series, pd.Series]
            (Middle, Upper, Lower) over complete windows only
        """
        middle = close.rolling(window=period).mean()
        std = close.rolling(window=period).std(ddof=0)
        upper = middle + num_std * std
        lower = middle - num_std * std
        valid = middle.notna()
        return middle[valid], upper[valid], lower[valid]

    @staticmethod
    def calculate_vwap(
        high: pd.Series,
        low: pd.Series,
        close: pd.Series,
        volume: pd.Series,
    ) -> pd.Series:
        """Cumulative volume-weighted typical price (typical price where no volume yet)."""
        typical = (high + low + close) / 3.0
        cum_volume = volume.cumsum()
        vwap = (typical * volume).cumsum() / cum_volume.replace(0, np.nan)
        return vwap.fillna(typical)


def forecast_bollinger(closes, highs, lows, volumes, forecast_days: int) -> List[ForecastPoint]:
    """Bollinger 20/2: band extremes revert, squeezes amplify the middle-band trend."""
    _require("BOLLINGER", closes, Config.BB_PERIOD)

    middle, upper, lower = VolatilityIndicators.calculate_bollinger_bands(pd.Series(closes))
    price = float(closes[-1])
    current_mid = float(middle.iloc[-1])
    band_width = float(upper.iloc[-1] - lower.iloc[-1])
    position = sanitize((price - float(lower.iloc[-1])) / band_width, 0.5) if band_width else 0.5

    mid_trend = average_step(middle.values[-5:])
    width_trend = average_step((upper - lower).values[-5:])

    near_upper = position > 0.8
    near_lower = position < 0.2
    squeeze = band_width < price * 0.1

    forecast = []
    for day in range(1, forecast_days + 1):
        future_mid = current_mid + mid_trend * day
        future_width = band_width + width_trend * day * 0.5
        future_upper = future_mid + future_width / 2
        future_lower = future_mid - future_width / 2

        if near_upper:
            multiplier = 0.99 - (position - 0.8) * 0.1
        elif near_lower:
            multiplier = 1.01 + (0.2 - position) * 0.1
        elif squeeze:
            multiplier = 1 + (mid_trend / price) * 2
        else:
            multiplier = 1 + (mid_trend / price) * 0.5

        multiplier = _decay(multiplier, day, 12)
        predicted = price * multiplier ** (day / 5)
        band_volatility = sanitize(future_width / (4 * future_mid))

        confidence = 0.85 if (near_upper or near_lower) else 0.76
        if squeeze:
            confidence += 0.1
        confidence = clamp(confidence * np.exp(-day / 14), 0.3, 0.9)

        forecast.append(ForecastPoint(
            day=day,
            high=min(predicted * (1 + band_volatility), future_upper * 0.95),
            low=max(predicted * (1 - band_volatility), future_lower * 1.05),
            avg=predicted,
            confidence=confidence,
            indicator="BOLLINGER",
        ))
    return forecast


def forecast_vwap(closes, highs, lows, volumes, forecast_days: int) -> List[ForecastPoint]:
    """VWAP: side of VWAP sets direction, relative volume sets conviction."""
    _require("VWAP", closes, Config.VWAP_VOLUME_WINDOW)

    vwap = VolatilityIndicators.calculate_vwap(
        pd.Series(highs), pd.Series(lows), pd.Series(closes), pd.Series(volumes)
    )
    price = float(closes[-1])
    current_vwap = float(vwap.iloc[-1])
    price_ratio = sanitize(price / current_vwap, 1.0)
    vwap_trend = average_step(vwap.values[-10:])

    avg_volume = float(np.mean(volumes[-Config.VWAP_VOLUME_WINDOW:]))
    volume_ratio = sanitize(volumes[-1] / avg_volume, 1.0) if avg_volume else 1.0

    above = price > current_vwap
    high_volume = volume_ratio > 1.5
    low_volume = volume_ratio < 0.5
    volatility = returns_volatility(closes)

    forecast = []
    for day in range(1, forecast_days + 1):
        if above and high_volume:
            multiplier = 1.01 + (price_ratio - 1) * 0.05
        elif not above and high_volume:
            multiplier = 0.99 - (1 - price_ratio) * 0.05
        elif above and low_volume:
            multiplier = 1.005 + (price_ratio - 1) * 0.02
        elif not above and low_volume:
            multiplier = 0.995 - (1 - price_ratio) * 0.02
        else:
            multiplier = 1 + sanitize(vwap_trend / current_vwap) * 0.3

        multiplier = _decay(multiplier, day, 15)
        predicted = price * multiplier ** (day / 7)

        confidence = 0.74
        if volume_ratio > 1.2:
            confidence += 0.1
        if abs(price_ratio - 1) < 0.02:
            confidence += 0.05
        confidence = clamp(confidence * np.exp(-day / 12), 0.3, 0.9)

        forecast.append(_banded_point(day, predicted, volatility, 0.6, confidence, "VWAP"))
    return forecast


# =============================================================================
# SECTION 6: ICHIMOKU KINKO HYO
# =============================================================================

class IchimokuIndicator:
    """Tenkan, Kijun and the two Senkou spans."""

    @staticmethod
    def _midpoint(high: pd.Series, low: pd.Series, period: int) -> pd.Series:
        """Midpoint of highest high and lowest low over period."""
        return (high.rolling(window=period).max() + low.rolling(window=period).min()) / 2

    @classmethod
    def calculate(cls, high: pd.Series, low: pd.Series) -> Dict[str, pd.Series]:
        tenkan = cls._midpoint(high, low, Config.ICHIMOKU_TENKAN)
        kijun = cls._midpoint(high, low, Config.ICHIMOKU_KIJUN)
        return {
            "tenkan": tenkan.dropna(),
            "kijun": kijun.dropna(),
            "senkou_a": ((tenkan + kijun) / 2).dropna(),
            "senkou_b": cls._midpoint(high, low, Config.ICHIMOKU_SENKOU_B).dropna(),
        }


def forecast_ichimoku(closes, highs, lows, volumes, forecast_days: int) -> List[ForecastPoint]:
    """Ichimoku: cloud position plus Tenkan/Kijun and cloud colour alignment."""
    _require("ICHIMOKU", closes, Config.ICHIMOKU_SENKOU_B)

    lines = IchimokuIndicator.calculate(pd.Series(highs), pd.Series(lows))
    price = float(closes[-1])
    tenkan = float(lines["tenkan"].iloc[-1])
    kijun = float(lines["kijun"].iloc[-1])
    span_a = float(lines["senkou_a"].iloc[-1])
    span_b = float(lines["senkou_b"].iloc[-1])

    above_cloud = price > max(span_a, span_b)
    below_cloud = price < min(span_a, span_b)
    in_cloud = not above_cloud and not below_cloud
    tk_bullish = tenkan > kijun
    cloud_bullish = span_a > span_b
    strong_bull = above_cloud and tk_bullish and cloud_bullish
    strong_bear = below_cloud and not tk_bullish and not cloud_bullish

    trend_ratio = average_step(closes[-10:]) / price
    volatility = returns_volatility(closes)

    forecast = []
    for day in range(1, forecast_days + 1):
        if strong_bull:
            multiplier = 1.02 + abs(trend_ratio) * 0.3
        elif strong_bear:
            multiplier = 0.98 - abs(trend_ratio) * 0.3
        elif above_cloud:
            multiplier = 1.01 + abs(trend_ratio) * 0.15
        elif below_cloud:
            multiplier = 0.99 - abs(trend_ratio) * 0.15
        else:
            multiplier = 1 + trend_ratio * 0.05

        multiplier = _decay(multiplier, day, 14)
        predicted = price * multiplier ** (day / 6)

        if in_cloud:
            confidence = 0.6
        else:
            confidence = 0.85
        if strong_bull or strong_bear:
            confidence += 0.1
        confidence = clamp(confidence * np.exp(-day / 16), 0.25, 0.95)

        forecast.append(_banded_point(day, predicted, volatility, 0.7, confidence, "ICHIMOKU"))
    return forecast


# =============================================================================
# SECTION 7: REGISTRY
# =============================================================================

IndicatorFormula = Callable[..., List[ForecastPoint]]


@dataclass(frozen=True)
class IndicatorSpec:
    """Static description of one registered indicator."""
    kind: IndicatorKind
    name: str                       # Display name
    formula: IndicatorFormula
    weight: float                   # Contribution weight, sums to 1.0
    accuracy: float                 # Static historical accuracy estimate
    min_points: int


INDICATOR_REGISTRY: Dict[IndicatorKind, IndicatorSpec] = {
    spec.kind: spec for spec in (
        IndicatorSpec(IndicatorKind.RSI, "Relative Strength Index", forecast_rsi, 0.12, 0.72, 15),
        IndicatorSpec(IndicatorKind.EMA, "Exponential Moving Average", forecast_ema, 0.15, 0.78, 12),
        IndicatorSpec(IndicatorKind.MACD, "MACD", forecast_macd, 0.13, 0.75, 26),
        IndicatorSpec(IndicatorKind.SMA, "Simple Moving Average", forecast_sma, 0.10, 0.70, 20),
        IndicatorSpec(IndicatorKind.BOLLINGER, "Bollinger Bands", forecast_bollinger, 0.11, 0.76, 20),
        IndicatorSpec(IndicatorKind.STOCHASTIC, "Stochastic Oscillator", forecast_stochastic, 0.09, 0.68, 14),
        IndicatorSpec(IndicatorKind.VWAP, "Volume Weighted Average Price", forecast_vwap, 0.08, 0.74, 20),
        IndicatorSpec(IndicatorKind.ADX, "Average Directional Index", forecast_adx, 0.07, 0.66, 28),
        IndicatorSpec(IndicatorKind.PARABOLIC_SAR, "Parabolic SAR", forecast_parabolic_sar, 0.08, 0.71, 10),
        IndicatorSpec(IndicatorKind.ICHIMOKU, "Ichimoku Cloud", forecast_ichimoku, 0.07, 0.73, 52),
    )
}

CONFIDENCE_MULTIPLIERS: Dict[IndicatorKind, float] = {
    IndicatorKind.EMA: 0.9,
    IndicatorKind.SMA: 0.85,
    IndicatorKind.MACD: 0.8,
    IndicatorKind.RSI: 0.75,
    IndicatorKind.BOLLINGER: 0.8,
    IndicatorKind.STOCHASTIC: 0.7,
    IndicatorKind.VWAP: 0.85,
    IndicatorKind.ADX: 0.7,
    IndicatorKind.PARABOLIC_SAR: 0.75,
    IndicatorKind.ICHIMOKU: 0.8,
}


def calculate_indicator_confidence(
    forecast: Sequence[ForecastPoint],
    kind: IndicatorKind,
    data_length: int,
) -> float:
    """
    Data-quality confidence of one indicator forecast.

    Longer history (saturating at 60 points) raises confidence, each
    indicator has a characteristic multiplier, and a volatile projected
    path is penalized. Result is clamped to [0.1, 1]; empty forecasts
    score 0.
    """
    if not forecast:
        return 0.0
    confidence = min(data_length / 60, 1.0)
    confidence *= CONFIDENCE_MULTIPLIERS.get(kind, 0.7)
    variance = float(np.var([p.avg for p in forecast])) if len(forecast) > 1 else 0.0
    confidence *= 1 - min(sanitize(variance) / 1000, 1.0) * 0.3
    return clamp(confidence, 0.1, 1.0)


# =============================================================================
# SECTION 8: ORCHESTRATOR
# =============================================================================

class IndicatorEngine:
    """
    Runs every registered indicator concurrently over one price series.

    Results are memoized per (symbol, horizon, indicator, data length). The
    key does not hash the prices themselves, so a different series of the
    same length for the same symbol and horizon is served from cache until
    the entry expires.

    Args:
        registry: Indicators to run, defaults to the ten built-ins
        cache: Result cache, a fresh one is created when omitted
        clock: Time source for the default cache
    """

    def __init__(
        self,
        registry: Optional[Dict[IndicatorKind, IndicatorSpec]] = None,
        cache: Optional[TTLCache] = None,
        clock: Clock = time.monotonic,
    ):
        self.registry = dict(registry) if registry is not None else dict(INDICATOR_REGISTRY)
        self.cache = cache if cache is not None else TTLCache(
            "indicators", CACHE.indicator_ttl, CACHE.indicator_max_size, clock=clock
        )

    @staticmethod
    def cache_key(symbol: str, forecast_days: int, name: str, data_length: int) -> str:
        return f"{symbol}-{forecast_days}-{name}-{data_length}"

    @staticmethod
    def validate_inputs(prices: Sequence[PricePoint], forecast_days: int) -> None:
        if prices is None or len(prices) < FORECAST.min_history_points:
            raise ValidationError(
                f"Insufficient data for technical analysis "
                f"(minimum {FORECAST.min_history_points} days required)"
            )
        if forecast_days not in FORECAST.allowed_horizons:
            raise ValidationError("Forecast days must be 10, 20, or 30")

    async def calculate_all_indicators(
        self,
        symbol: str,
        prices: Sequence[PricePoint],
        forecast_days: int,
    ) -> List[IndicatorResult]:
        """
        Compute every registered indicator forecast.

        Args:
            symbol: Coin symbol (part of the cache key)
            prices: Daily series ordered oldest to newest
            forecast_days: Horizon, one of 10, 20 or 30

        Returns:
            Non-empty indicator results in registry order

        Raises:
            ValidationError: history shorter than 20 points or bad horizon
            ComputationError: every indicator failed
        """
        self.validate_inputs(prices, forecast_days)
        self.cache.evict()

        start = time.perf_counter()
        arrays = extract_price_arrays(prices)
        specs = list(self.registry.values())

        outcomes = await asyncio.gather(
            *(self._calculate_indicator(spec, symbol, arrays.copy(), forecast_days) for spec in specs),
            return_exceptions=True,
        )

        results: List[IndicatorResult] = []
        for spec, outcome in zip(specs, outcomes):
            if isinstance(outcome, Exception):
                logger.warning(f"{spec.kind.value} failed for {symbol}: {outcome}")
                results.append(IndicatorResult.placeholder(spec.kind))
            elif isinstance(outcome, BaseException):
                raise outcome
            else:
                results.append(outcome)

        valid = [r for r in results if not r.is_empty]
        elapsed = (time.perf_counter() - start) * 1000
        logger.info(f"Calculated {len(valid)}/{len(specs)} indicators in {elapsed:.0f}ms")

        if not valid:
            raise ComputationError("Technical analysis failed")
        return valid

    async def _calculate_indicator(
        self,
        spec: IndicatorSpec,
        symbol: str,
        arrays: PriceArrays,
        forecast_days: int,
    ) -> IndicatorResult:
        key = self.cache_key(symbol, forecast_days, spec.kind.value, len(arrays))
        cached = self.cache.get(key)
        if cached is not None:
            return copy.deepcopy(cached)

        start = time.perf_counter()
        forecast = spec.formula(
            arrays.closes, arrays.highs, arrays.lows, arrays.volumes, forecast_days
        )
        elapsed = (time.perf_counter() - start) * 1000

        quality = calculate_indicator_confidence(forecast, spec.kind, len(arrays))
        logger.debug(f"{spec.kind.value}: {len(forecast)} points, data confidence {quality:.2f}")

        result = IndicatorResult(
            name=spec.kind.value,
            kind=spec.kind,
            forecast=forecast,
            accuracy=spec.accuracy,
            weight=spec.weight,
            execution_time=elapsed,
        )
        self.cache.put(key, copy.deepcopy(result))
        return result

    def cache_stats(self) -> Dict[str, Any]:
        return self.cache.stats()

    def clear_cache(self) -> None:
        self.cache.clear()


# =============================================================================
# MODULE EXPORTS
# =============================================================================

__all__ = [
    "Config",
    "PriceArrays",
    "extract_price_arrays",
    "average_step",
    "returns_volatility",
    "MomentumIndicators",
    "TrendIndicators",
    "VolatilityIndicators",
    "IchimokuIndicator",
    "forecast_rsi",
    "forecast_ema",
    "forecast_macd",
    "forecast_sma",
    "forecast_bollinger",
    "forecast_stochastic",
    "forecast_vwap",
    "forecast_adx",
    "forecast_parabolic_sar",
    "forecast_ichimoku",
    "IndicatorSpec",
    "INDICATOR_REGISTRY",
    "calculate_indicator_confidence",
    "IndicatorEngine",
]
