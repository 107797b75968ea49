"""
Market Data Fetcher for the Crypto Forecast Pipeline

Daily OHLCV history for supported coins, fetched from Yahoo Finance and
converted into ``PricePoint`` series ordered oldest to newest.

PIPELINE
    1. CACHE    - "{symbol}:{days}" entries live 5 minutes (100 max)
    2. ACQUIRE  - yfinance download with exponential backoff retries
    3. NORMALIZE- flatten MultiIndex columns, drop timezone, drop empty rows
    4. VALIDATE - no missing closes, no negative prices, high >= low
    5. CONVERT  - trailing ``days`` rows as PricePoints plus provenance

Failures never escape ``fetch_historical_data``: they come back as
``PriceFetchResult(success=False, error=...)``.

DATA PROVENANCE
    Every fetch records its source, timestamp, record count and a SHA-256
    hash of the close series (first 16 hex characters).

Author: Tamer
Version: 1.0.0
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import time
import warnings
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

import pandas as pd

from crypto_forecast.cache import TTLCache
from crypto_forecast.config import CACHE, FORECAST, coin_to_ticker
from crypto_forecast.models import DataFetchError, PricePoint

# Suppress future warnings for cleaner output
warnings.filterwarnings('ignore', category=FutureWarning)

# Module-level logger
logger = logging.getLogger(__name__)


# =============================================================================
# CONSTANTS
# =============================================================================

SOURCE_NAME: str = "yahoo_finance"
MAX_FETCH_DAYS: int = 2000
SHORT_DATA_RATIO: float = 0.8           # Warn below this share of requested days
CURRENT_PRICE_PERIOD: str = "5d"

REQUIRED_COLUMNS = ('High', 'Low', 'Close', 'Volume')


# =============================================================================
# DATA CLASSES
# =============================================================================

@dataclass
class DataProvenance:
    """
    Origin of one fetched series.

    The hash lets two exports be compared for identical inputs.
    """
    source: str                     # Data source identifier
    symbol: str                     # Ticker symbol
    fetch_timestamp: str            # ISO format timestamp
    record_count: int
    data_hash: str                  # SHA-256 of Close prices, 16 hex chars

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source": self.source,
            "symbol": self.symbol,
            "fetchTimestamp": self.fetch_timestamp,
            "recordCount": self.record_count,
            "dataHash": self.data_hash,
        }


@dataclass
class PriceFetchResult:
    """Outcome of ``fetch_historical_data``."""
    success: bool
    data: List[PricePoint] = field(default_factory=list)
    error: Optional[str] = None
    source: str = SOURCE_NAME
    cached: bool = False
    timestamp: float = field(default_factory=time.time)
    provenance: Optional[DataProvenance] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "data": [p.to_dict() for p in self.data],
            "error": self.error,
            "source": self.source,
            "cached": self.cached,
            "timestamp": self.timestamp,
            "provenance": self.provenance.to_dict() if self.provenance else None,
        }


# =============================================================================
# FRAME HELPERS
# =============================================================================

def normalize_frame(df: Optional[pd.DataFrame]) -> Optional[pd.DataFrame]:
    """Normalize a yfinance frame; None when it is empty or lacks columns."""
    if df is None or len(df) == 0:
        return None

    df = df.copy()

    # Handle MultiIndex columns
    if isinstance(df.columns, pd.MultiIndex):
        df.columns = df.columns.get_level_values(0)

    # Remove timezone
    if hasattr(df.index, 'tz') and df.index.tz is not None:
        df.index = df.index.tz_localize(None)

    if not isinstance(df.index, pd.DatetimeIndex):
        df.index = pd.to_datetime(df.index)

    df = df.dropna(how='all').sort_index()
    df = df[~df.index.duplicated(keep='last')]

    missing = [col for col in REQUIRED_COLUMNS if col not in df.columns]
    if missing:
        logger.warning(f"Missing required columns: {missing}")
        return None

    return df


def validate_frame(df: pd.DataFrame, symbol: str, requested_days: int) -> None:
    """
    Reject frames with missing or inconsistent prices.

    Raises:
        DataFetchError: NaN closes, negative prices or high < low
    """
    invalid = df[['Close', 'High', 'Low']].isna().any(axis=1).sum()
    if invalid:
        logger.warning(f"Found {invalid} invalid data points")
        raise DataFetchError(f"Invalid price data detected for {symbol}")

    inconsistent = ((df['High'] < df['Low']) | (df[['Close', 'High', 'Low']] < 0).any(axis=1)).sum()
    if inconsistent:
        logger.warning(f"Found {inconsistent} points with invalid price ranges")
        raise DataFetchError(f"Inconsistent price data detected for {symbol}")

    if len(df) < requested_days * SHORT_DATA_RATIO:
        logger.warning(f"Only received {len(df)} days of data, requested {requested_days}")


def frame_to_price_points(df: pd.DataFrame) -> List[PricePoint]:
    """Rows of a normalized frame as PricePoints, oldest first."""
    volumes = df['Volume'].fillna(0.0)
    return [
        PricePoint(
            date=index.strftime("%Y-%m-%d"),
            close=float(close),
            high=float(high),
            low=float(low),
            volume=float(volume),
        )
        for index, close, high, low, volume in zip(df.index, df['Close'], df['High'], df['Low'], volumes)
    ]


def hash_closes(df: pd.DataFrame) -> str:
    return hashlib.sha256(
        pd.util.hash_pandas_object(df['Close']).values.tobytes()
    ).hexdigest()[:16]


# =============================================================================
# FETCHER
# =============================================================================

class PriceDataFetcher:
    """
    Yahoo Finance price source with retry logic and a result cache.

    Args:
        max_retries: Maximum download attempts
        timeout: Request timeout in seconds
        cache: Price cache, created with the default lifetime when omitted
    """

    def __init__(
        self,
        max_retries: int = FORECAST.fetch_retries,
        timeout: int = FORECAST.fetch_timeout,
        cache: Optional[TTLCache] = None,
    ):
        self._yf = None
        self.max_retries = max_retries
        self.timeout = timeout
        self.cache = cache if cache is not None else TTLCache(
            "price_data", CACHE.price_ttl, CACHE.price_max_size
        )

    def _get_yf(self):
        """Lazy load yfinance to avoid import overhead."""
        if self._yf is None:
            import yfinance as yf
            self._yf = yf
        return self._yf

    def _download(self, ticker: str, **kwargs) -> pd.DataFrame:
        """Blocking download with exponential backoff between attempts."""
        yf = self._get_yf()
        for attempt in range(self.max_retries):
            try:
                data = yf.download(
                    ticker,
                    auto_adjust=False,
                    progress=False,
                    timeout=self.timeout,
                    **kwargs,
                )
                if data is None or len(data) == 0:
                    raise DataFetchError(f"No data returned for {ticker}")
                return data
            except Exception as e:
                if attempt < self.max_retries - 1:
                    wait_time = 2 ** attempt
                    logger.warning(f"Fetch failed: {e}, retrying in {wait_time}s...")
                    time.sleep(wait_time)
                else:
                    raise DataFetchError(
                        f"Failed to fetch {ticker} after {self.max_retries} attempts: {e}"
                    ) from e
        raise DataFetchError(f"No download attempted for {ticker}")

    def _fetch_sync(self, symbol: str, days: int) -> PriceFetchResult:
        ticker = coin_to_ticker(symbol)
        end = datetime.now() + timedelta(days=1)
        start = end - timedelta(days=days + 1)
        logger.info(f"Fetching OHLCV: {ticker} ({start:%Y-%m-%d} to {end:%Y-%m-%d})")

        fetch_timestamp = datetime.now().isoformat()
        raw = self._download(ticker, start=start.strftime("%Y-%m-%d"), end=end.strftime("%Y-%m-%d"))

        df = normalize_frame(raw)
        if df is None or len(df) == 0:
            raise DataFetchError(f"No usable price data for {symbol}")
        df = df.tail(days)
        validate_frame(df, symbol, days)

        points = frame_to_price_points(df)
        provenance = DataProvenance(
            source=SOURCE_NAME,
            symbol=ticker,
            fetch_timestamp=fetch_timestamp,
            record_count=len(points),
            data_hash=hash_closes(df),
        )
        return PriceFetchResult(success=True, data=points, provenance=provenance)

    async def fetch_historical_data(self, symbol: str, days: int) -> PriceFetchResult:
        """
        Fetch ``days`` of daily history for ``symbol``.

        Args:
            symbol: Coin symbol such as "BTC"
            days: Number of trailing days

        Returns:
            PriceFetchResult; ``success`` is False with ``error`` set on failure
        """
        start = time.perf_counter()
        symbol = (symbol or "").upper()
        key = f"{symbol}:{days}"

        cached = self.cache.get(key)
        if cached is not None:
            logger.debug(f"Price data for {key} served from cache")
            return PriceFetchResult(
                success=True,
                data=list(cached.data),
                source=f"{SOURCE_NAME} (cached)",
                cached=True,
                provenance=cached.provenance,
            )

        try:
            if not symbol:
                raise DataFetchError("Invalid symbol parameter")
            if not 1 <= days <= MAX_FETCH_DAYS:
                raise DataFetchError(f"Days must be between 1 and {MAX_FETCH_DAYS}")
            result = await asyncio.to_thread(self._fetch_sync, symbol, days)
        except Exception as e:
            elapsed = (time.perf_counter() - start) * 1000
            logger.error(f"Data fetch failed after {elapsed:.0f}ms: {e}")
            return PriceFetchResult(success=False, error=str(e) or type(e).__name__)

        self.cache.put(key, result)
        elapsed = (time.perf_counter() - start) * 1000
        logger.info(f"Fetched {len(result.data)} points for {symbol} in {elapsed:.0f}ms")
        return result

    async def get_current_price(self, symbol: str) -> float:
        """
        Latest close of a short recent window.

        Raises:
            DataFetchError: no price available
        """
        ticker = coin_to_ticker(symbol)
        logger.debug(f"Fetching current price for {symbol}")
        try:
            raw = await asyncio.to_thread(self._download, ticker, period=CURRENT_PRICE_PERIOD)
            df = normalize_frame(raw)
            if df is None or df['Close'].dropna().empty:
                raise DataFetchError(f"No current price available for {symbol}")
            price = float(df['Close'].dropna().iloc[-1])
        except DataFetchError as e:
            raise DataFetchError(f"Failed to get current price: {e}") from e

        logger.info(f"Current price for {symbol}: ${price:,.2f}")
        return price

    def cache_stats(self) -> Dict[str, Any]:
        return self.cache.stats()

    def describe_cache(self) -> List[str]:
        return self.cache.describe()


# =============================================================================
# MODULE EXPORTS
# =============================================================================

__all__ = [
    "SOURCE_NAME",
    "DataProvenance",
    "PriceFetchResult",
    "normalize_frame",
    "validate_frame",
    "frame_to_price_points",
    "hash_closes",
    "PriceDataFetcher",
]
