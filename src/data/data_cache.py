"""
Data Cache Module for Futures Trading Bot.

This module provides the in-memory TTL lookaside cache for OHLCV bars.
The fetch task is its only writer; analysis reads it and treats a miss
or stale entry as unavailable data.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Iterable, Optional, Sequence

from pydantic import BaseModel, Field

from src.core.models import Bar, ensure_chronological
from src.utils.date_utils import now_utc


logger = logging.getLogger(__name__)


class CacheConfig(BaseModel):
    """Configuration for the market data cache."""

    default_ttl_seconds: int = Field(default=180, ge=1, le=86400)
    max_size: int = Field(default=1000, ge=1)


class CacheEntry(BaseModel):
    """Cache entry model."""

    key: str
    value: Any
    created_at: datetime
    expires_at: Optional[datetime] = None
    access_count: int = Field(default=0)
    last_accessed: datetime

    def is_expired(self, now: datetime) -> bool:
        """Check if entry is expired at ``now``."""
        return self.expires_at is not None and now >= self.expires_at


class CacheStatistics(BaseModel):
    """Cache statistics model."""

    hits: int = Field(default=0)
    misses: int = Field(default=0)
    sets: int = Field(default=0)
    evictions: int = Field(default=0)
    expirations: int = Field(default=0)

    @property
    def hit_rate(self) -> float:
        """Calculate cache hit rate."""
        total = self.hits + self.misses
        if total == 0:
            return 0.0
        return (self.hits / total) * 100


class MarketDataCache:
    """
    TTL lookaside cache keyed by symbol and timeframe.

    Provides:
    - Per-entry TTL (default 180 seconds)
    - Expired entries reported as misses and dropped
    - Least recently used eviction beyond ``max_size``
    - Injectable clock for deterministic expiry
    """

    def __init__(
        self,
        config: Optional[CacheConfig] = None,
        clock: Callable[[], datetime] = now_utc,
    ) -> None:
        """
        Initialize MarketDataCache.

        Args:
            config: Cache configuration
            clock: Returns the current UTC time
        """
        self._config = config or CacheConfig()
        self._clock = clock
        self._cache: dict[str, CacheEntry] = {}
        self._stats = CacheStatistics()
        self._lock = asyncio.Lock()

        logger.info(
            f"MarketDataCache initialized (ttl={self._config.default_ttl_seconds}s, "
            f"max_size={self._config.max_size})"
        )

    @property
    def size(self) -> int:
        """Get current cache size."""
        return len(self._cache)

    @property
    def statistics(self) -> CacheStatistics:
        """Get cache statistics."""
        return self._stats

    @staticmethod
    def bars_key(symbol: str, timeframe: str) -> str:
        return f"ohlcv:{symbol.upper()}:{timeframe}"

    # =========================================================================
    # GENERIC ENTRIES
    # =========================================================================

    async def get(self, key: str) -> Optional[Any]:
        """
        Get a live value.

        Args:
            key: Cache key

        Returns:
            Cached value, or None when missing or expired
        """
        async with self._lock:
            entry = self._cache.get(key)
            now = self._clock()
            if entry is None:
                self._stats.misses += 1
                return None
            if entry.is_expired(now):
                del self._cache[key]
                self._stats.expirations += 1
                self._stats.misses += 1
                logger.debug(f"Cache entry expired: {key}")
                return None

            entry.access_count += 1
            entry.last_accessed = now
            self._stats.hits += 1
            return entry.value

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        """
        Store a value.

        Args:
            key: Cache key
            value: Value to store
            ttl: TTL in seconds (defaults to the configured TTL)
        """
        ttl = self._config.default_ttl_seconds if ttl is None else ttl
        async with self._lock:
            now = self._clock()
            if key not in self._cache and len(self._cache) >= self._config.max_size:
                self._evict_one()
            self._cache[key] = CacheEntry(
                key=key,
                value=value,
                created_at=now,
                expires_at=now + timedelta(seconds=ttl) if ttl > 0 else None,
                last_accessed=now,
            )
            self._stats.sets += 1

    async def delete(self, key: str) -> bool:
        async with self._lock:
            return self._cache.pop(key, None) is not None

    async def clear(self) -> None:
        async with self._lock:
            self._cache.clear()

    def _evict_one(self) -> None:
        oldest = min(self._cache.values(), key=lambda e: e.last_accessed)
        del self._cache[oldest.key]
        self._stats.evictions += 1

    # =========================================================================
    # BARS
    # =========================================================================

    async def set_bars(
        self,
        symbol: str,
        timeframe: str,
        bars: Iterable[Bar],
        ttl: Optional[int] = None,
    ) -> tuple[Bar, ...]:
        """
        Store bars for a symbol and timeframe in chronological order.

        Returns:
            The stored bars
        """
        ordered = ensure_chronological(bars)
        await self.set(self.bars_key(symbol, timeframe), ordered, ttl)
        logger.debug(f"Cached {len(ordered)} {timeframe} bars for {symbol}")
        return ordered

    async def get_bars(self, symbol: str, timeframe: str) -> Optional[tuple[Bar, ...]]:
        """Live bars for a symbol and timeframe, or None."""
        return await self.get(self.bars_key(symbol, timeframe))

    async def get_all_bars(
        self,
        symbol: str,
        timeframes: Sequence[str],
    ) -> tuple[dict[str, tuple[Bar, ...]], list[str]]:
        """
        Bars for every timeframe.

        Args:
            symbol: Trading symbol
            timeframes: Timeframes to read

        Returns:
            (bars found by timeframe, timeframes missing or stale)
        """
        found: dict[str, tuple[Bar, ...]] = {}
        missing: list[str] = []
        for timeframe in timeframes:
            bars = await self.get_bars(symbol, timeframe)
            if bars:
                found[timeframe] = bars
            else:
                missing.append(timeframe)
        return found, missing
