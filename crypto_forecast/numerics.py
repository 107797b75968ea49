"""
Numeric safety helpers.

The pipeline prefers producing an answer over failing on degenerate data:
NaN and infinite intermediates are replaced with a fallback value through
``sanitize`` instead of being propagated into merged forecasts or charts.
"""

from __future__ import annotations

import math
from typing import Any, Iterable, Optional

import numpy as np


def sanitize(value: Any, fallback: float = 0.0) -> float:
    """
    Return ``value`` as a float, or ``fallback`` if it is not a finite number.

    Parameters
    ----------
    value : Any
        Candidate number (Python, numpy scalar, or anything float() accepts)
    fallback : float
        Value substituted for None, NaN, +/-Inf or non-numeric input

    Returns
    -------
    float
    """
    if value is None:
        return fallback
    try:
        number = float(value)
    except (TypeError, ValueError):
        return fallback
    if not math.isfinite(number):
        return fallback
    return number


def safe_mean(values: Iterable[float], fallback: float = 0.0) -> float:
    """Mean of the finite values, ``fallback`` when there are none."""
    arr = np.asarray([v for v in values if v is not None], dtype=float)
    arr = arr[np.isfinite(arr)] if arr.size else arr
    if arr.size == 0:
        return fallback
    return float(arr.mean())


def safe_ratio(numerator: Any, denominator: Any, fallback: float = 0.0) -> float:
    """Division that returns ``fallback`` on a zero or non-finite result."""
    den = sanitize(denominator)
    if den == 0.0:
        return fallback
    return sanitize(sanitize(numerator) / den, fallback)


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    """Bound ``value`` to [low, high]; non-finite input lands on ``low``."""
    return max(low, min(high, sanitize(value, low)))


def population_std(values: Iterable[float]) -> float:
    """Population standard deviation (ddof=0), 0 for fewer than 2 values."""
    arr = np.asarray(list(values), dtype=float)
    if arr.size < 2:
        return 0.0
    return sanitize(arr.std())


def last_or(values, default: Optional[float] = None) -> Optional[float]:
    return values[-1] if len(values) else default


__all__ = [
    "sanitize",
    "safe_mean",
    "safe_ratio",
    "clamp",
    "population_std",
    "last_or",
]
