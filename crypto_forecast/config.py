"""
Configuration Module for the Crypto Forecast CLI

This module centralizes all configuration constants, enumerations, cache
lifetimes, and supported-asset tables used throughout the forecasting
pipeline.

All "magic numbers" shared between modules are defined here to ensure:
1. Single source of truth for horizons, ranges and cache lifetimes
2. Easy modification without touching analysis code
3. Consistency between the CLI, the orchestrators and the backtest harness

Formula-specific constants (indicator periods, strategy increments) live
beside the code that uses them, in each module's ``Config`` class.
"""

import os
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Tuple


# =============================================================================
# ENUMERATIONS
# =============================================================================

class Recommendation(Enum):
    """Directional trade recommendation."""
    BUY = "buy"
    SELL = "sell"
    NEUTRAL = "neutral"


class RiskLevel(Enum):
    """Risk appetite carried in the strategy configuration."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class TrendDirection(Enum):
    """Direction of a series split into halves."""
    BULLISH = "bullish"
    BEARISH = "bearish"
    NEUTRAL = "neutral"


class IndicatorKind(Enum):
    """The ten supported technical indicators (value is the source tag)."""
    RSI = "RSI"
    EMA = "EMA"
    MACD = "MACD"
    SMA = "SMA"
    BOLLINGER = "BOLLINGER"
    STOCHASTIC = "STOCHASTIC"
    VWAP = "VWAP"
    ADX = "ADX"
    PARABOLIC_SAR = "PARABOLIC_SAR"
    ICHIMOKU = "ICHIMOKU"


class StrategyCategory(Enum):
    """Strategy families used for grouping in reports."""
    MEAN_REVERSION = "MEAN_REVERSION"
    TREND_FOLLOWING = "TREND_FOLLOWING"
    MOMENTUM = "MOMENTUM"
    PATTERN_RECOGNITION = "PATTERN_RECOGNITION"
    VOLATILITY = "VOLATILITY"


# =============================================================================
# CACHE SETTINGS
# =============================================================================

@dataclass(frozen=True)
class CacheSettings:
    """
    Time-to-live (seconds) and capacity for every in-memory cache.

    Caches are owned by component instances; these values are only the
    defaults each component uses when constructing its own cache.
    """
    # Indicator orchestrator
    indicator_ttl: float = 120.0
    indicator_max_size: int = 50

    # Forecast merge engine
    merge_ttl: float = 300.0
    merge_max_size: int = 20

    # Individual strategies
    strategy_ttl: float = 180.0
    strategy_max_size: int = 30
    analysis_ttl: float = 60.0
    analysis_max_size: int = 50
    strategy_forecast_ttl: float = 120.0
    strategy_forecast_max_size: int = 30

    # Strategy orchestrator
    combined_ttl: float = 120.0
    combined_max_size: int = 10
    signal_ttl: float = 30.0
    signal_max_size: int = 10

    # Market data
    price_ttl: float = 300.0
    price_max_size: int = 100

    # Chart rendering
    chart_ttl: float = 300.0
    chart_max_size: int = 50


# =============================================================================
# FORECAST SETTINGS
# =============================================================================

@dataclass(frozen=True)
class ForecastSettings:
    """Horizon and history bounds accepted by the pipeline."""
    allowed_horizons: Tuple[int, ...] = (10, 20, 30)
    default_horizon: int = 10
    min_history_points: int = 20          # Orchestrator precondition
    min_range_days: int = 30
    max_range_days: int = 365
    default_range_days: int = 60
    fetch_timeout: int = 10               # Seconds, only timeout in the system
    fetch_retries: int = 3


@dataclass(frozen=True)
class BacktestSettings:
    """Defaults used by the CLI ``--compare`` mode."""
    periods: int = 12
    min_historical_range: int = 90
    min_data_points: int = 90
    fetch_buffer_days: int = 30


@dataclass(frozen=True)
class ExportSettings:
    """File export defaults."""
    export_dir: str = "exports"
    format_version: str = "1.0.0"
    default_format: str = "both"


# Singleton instances
CACHE = CacheSettings()
FORECAST = ForecastSettings()
BACKTEST = BacktestSettings()
EXPORT = ExportSettings()


# =============================================================================
# SUPPORTED ASSETS
# =============================================================================

SUPPORTED_COINS: Tuple[str, ...] = (
    "BTC", "ETH", "SOL", "ADA", "DOT", "MATIC", "AVAX", "LINK", "UNI",
    "ATOM", "PEPE", "FLOKI", "SHIB", "DOGE", "BONK", "TRUMP", "FARTCOIN",
    "SUI", "SEI", "JUP", "SNORT", "SPY", "BEST", "TOKEN6900",
)

# Yahoo Finance quotes most coins as "<SYMBOL>-USD"; entries below override
# symbols whose ticker differs (numeric suffixes disambiguate name clashes).
COIN_TICKER_OVERRIDES: Dict[str, str] = {
    "SPY": "SPY",
    "PEPE": "PEPE24478-USD",
    "SUI": "SUI20947-USD",
    "UNI": "UNI7083-USD",
    "BONK": "BONK-USD",
    "TRUMP": "TRUMP35336-USD",
    "JUP": "JUP29210-USD",
}

COIN_NAMES: Dict[str, str] = {
    "BTC": "Bitcoin",
    "ETH": "Ethereum",
    "SOL": "Solana",
    "ADA": "Cardano",
    "DOT": "Polkadot",
    "MATIC": "Polygon",
    "AVAX": "Avalanche",
    "LINK": "Chainlink",
    "UNI": "Uniswap",
    "ATOM": "Cosmos",
    "DOGE": "Dogecoin",
    "SHIB": "Shiba Inu",
    "PEPE": "Pepe",
}


def coin_to_ticker(symbol: str) -> str:
    """Map a coin symbol to its Yahoo Finance ticker."""
    symbol = symbol.upper()
    return COIN_TICKER_OVERRIDES.get(symbol, f"{symbol}-USD")


# =============================================================================
# ENVIRONMENT
# =============================================================================

DEBUG_CACHE_ENV = "DEBUG_CACHE"


def is_cache_debug_enabled() -> bool:
    """True when the cache dump has been requested through the environment."""
    return os.environ.get(DEBUG_CACHE_ENV, "").strip().lower() in ("1", "true", "yes", "on")
