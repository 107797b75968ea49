"""
Time-Bounded Memoization Cache

Every component that memoizes work (indicator orchestrator, strategies,
merge engine, strategy orchestrator, price fetcher, chart renderer) owns
one or more ``TTLCache`` instances. There are no module-level cache maps:
two orchestrators never share entries, and tests construct caches with a
controllable clock.

EVICTION
    Lazy, on every ``get`` and ``put``:
        1. entries whose expiry has passed are dropped
        2. while the cache holds more than ``max_size`` entries, the
           oldest entry by creation time is dropped
    There is no background sweep.

Author: Tamer
Version: 1.0.0
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Generic, Hashable, List, Optional, TypeVar

# Module-level logger
logger = logging.getLogger(__name__)

V = TypeVar("V")

Clock = Callable[[], float]


@dataclass
class CacheEntry(Generic[V]):
    """Stored value with its creation and expiry times (clock seconds)."""
    value: V
    timestamp: float
    expires: float


class TTLCache(Generic[V]):
    """
    Size-capped in-memory cache with per-entry time-to-live.

    Args:
        name: Label used in logs and the debug dump
        default_ttl: Lifetime in seconds applied when ``put`` gets no ttl
        max_size: Hard cap on the number of entries
        clock: Zero-argument callable returning the current time in seconds
    """

    def __init__(
        self,
        name: str,
        default_ttl: float,
        max_size: int,
        clock: Clock = time.monotonic,
    ):
        if max_size <= 0:
            raise ValueError("max_size must be positive")
        self.name = name
        self.default_ttl = default_ttl
        self.max_size = max_size
        self._clock = clock
        self._entries: Dict[Hashable, CacheEntry[V]] = {}
        self.hits = 0
        self.misses = 0

    # -------------------------------------------------------------------------
    # Core operations
    # -------------------------------------------------------------------------

    def get(self, key: Hashable) -> Optional[V]:
        """Return the cached value if present and not expired, else None."""
        self.evict()
        entry = self._entries.get(key)
        if entry is None:
            self.misses += 1
            return None
        if self._clock() >= entry.expires:
            del self._entries[key]
            self.misses += 1
            return None
        self.hits += 1
        logger.debug(f"[{self.name}] cache hit: {key}")
        return entry.value

    def put(self, key: Hashable, value: V, ttl: Optional[float] = None) -> None:
        """Store ``value`` under ``key`` for ``ttl`` seconds."""
        now = self._clock()
        lifetime = self.default_ttl if ttl is None else ttl
        self._entries[key] = CacheEntry(value=value, timestamp=now, expires=now + lifetime)
        self.evict()

    def evict(self) -> int:
        """Drop expired entries, then oldest entries beyond capacity."""
        now = self._clock()
        expired = [k for k, e in self._entries.items() if now >= e.expires]
        for key in expired:
            del self._entries[key]

        removed = len(expired)
        overflow = len(self._entries) - self.max_size
        if overflow > 0:
            oldest = sorted(self._entries.items(), key=lambda item: item[1].timestamp)
            for key, _ in oldest[:overflow]:
                del self._entries[key]
            removed += overflow

        if removed:
            logger.debug(f"[{self.name}] evicted {removed} entries")
        return removed

    def clear(self) -> None:
        self._entries.clear()

    # -------------------------------------------------------------------------
    # Introspection
    # -------------------------------------------------------------------------

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: Hashable) -> bool:
        entry = self._entries.get(key)
        return entry is not None and self._clock() < entry.expires

    def keys(self) -> List[Hashable]:
        return list(self._entries.keys())

    def stats(self) -> Dict[str, Any]:
        """Size, capacity, ttl and hit/miss counters."""
        return {
            "name": self.name,
            "size": len(self._entries),
            "max_size": self.max_size,
            "ttl": self.default_ttl,
            "hits": self.hits,
            "misses": self.misses,
        }

    def describe(self) -> List[str]:
        """Human-readable lines listing every entry and its remaining lifetime."""
        now = self._clock()
        lines = [f"{self.name}: {len(self._entries)}/{self.max_size} entries "
                 f"(hits={self.hits}, misses={self.misses})"]
        for key, entry in self._entries.items():
            remaining = max(0.0, entry.expires - now)
            lines.append(f"  {key} (expires in {remaining:.0f}s)")
        return lines


__all__ = ["CacheEntry", "TTLCache", "Clock"]
