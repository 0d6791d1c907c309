"""
Data Package for Futures Trading Bot.

This package provides:
- SQLite persistence for decisions and trades
- The TTL cache for OHLCV bars
- The fetch and analyze stages of the trading cycle
"""

from src.data.data_storage import (
    StorageConfig,
    TradeRepository,
)

from src.data.data_cache import (
    CacheConfig,
    CacheEntry,
    CacheStatistics,
    MarketDataCache,
)

from src.data.market_data import (
    CycleCoordinator,
    MarketDataConfig,
    MarketDataService,
)


__all__ = [
    "StorageConfig",
    "TradeRepository",
    "CacheConfig",
    "CacheEntry",
    "CacheStatistics",
    "MarketDataCache",
    "CycleCoordinator",
    "MarketDataConfig",
    "MarketDataService",
]
