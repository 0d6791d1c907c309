"""
Market Data Module for Futures Trading Bot.

This module fetches OHLCV bars from the exchange into the cache and
builds analysis snapshots from it. Analysis never computes on missing or
stale bars: it reports the data as unavailable and triggers a fetch.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Hashable, Iterable, Optional, Sequence

from pydantic import BaseModel, Field

from src.analysis.technical_indicators import TechnicalIndicators
from src.core.models import MarketSnapshot, RiskConfig, Trade
from src.core.result import ErrorKind, Result
from src.data.data_cache import MarketDataCache
from src.execution.exchange import DEFAULT_EXCHANGE_TIMEOUT, Exchange, call_with_timeout
from src.utils.exceptions import ExchangeError


logger = logging.getLogger(__name__)


class MarketDataConfig(BaseModel):
    """Configuration for fetching bars."""

    ohlcv_limit: int = Field(default=100, ge=1, le=1500)
    exchange_timeout: float = Field(default=DEFAULT_EXCHANGE_TIMEOUT, gt=0.0)
    cache_ttl_seconds: Optional[int] = Field(default=None, description="Overrides the cache default TTL")


class CycleCoordinator:
    """
    Keeps one in-flight cycle per key.

    Starting a cycle for a key cancels the older cycle for the same key
    instead of queueing behind it.
    """

    def __init__(self) -> None:
        self._tasks: dict[Hashable, asyncio.Task] = {}

    @property
    def in_flight(self) -> int:
        return sum(1 for task in self._tasks.values() if not task.done())

    async def run_latest(self, key: Hashable, coro_factory: Callable[[], Awaitable[Any]]) -> Any:
        """
        Run ``coro_factory()`` as the current cycle for ``key``.

        Returns:
            The cycle's result

        Raises:
            asyncio.CancelledError: If a newer cycle for ``key`` superseded this one
        """
        previous = self._tasks.get(key)
        if previous is not None and not previous.done():
            logger.info(f"Cycle {key} superseded; cancelling the older run")
            previous.cancel()

        task = asyncio.ensure_future(coro_factory())
        self._tasks[key] = task
        try:
            return await task
        finally:
            if self._tasks.get(key) is task:
                del self._tasks[key]

    async def cancel_all(self) -> None:
        tasks = [task for task in self._tasks.values() if not task.done()]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()


class MarketDataService:
    """
    Fetch and analyze stages of the trading cycle.

    The fetch stage is the cache's only writer; analyze only reads it.
    """

    def __init__(
        self,
        exchange: Exchange,
        cache: MarketDataCache,
        config: Optional[MarketDataConfig] = None,
        indicators: Optional[TechnicalIndicators] = None,
    ) -> None:
        """
        Initialize MarketDataService.

        Args:
            exchange: Exchange client
            cache: Bar cache
            config: Fetch configuration
            indicators: Indicator library
        """
        self._exchange = exchange
        self._cache = cache
        self._config = config or MarketDataConfig()
        self._indicators = indicators or TechnicalIndicators()
        self._pending_fetches: dict[str, asyncio.Task] = {}

        logger.info("MarketDataService initialized")

    @property
    def cache(self) -> MarketDataCache:
        return self._cache

    # =========================================================================
    # FETCH
    # =========================================================================

    async def fetch(self, symbol: str, timeframes: Sequence[str]) -> Result[dict[str, int]]:
        """
        Fetch bars for every timeframe into the cache.

        Args:
            symbol: Trading symbol
            timeframes: Timeframes to fetch

        Returns:
            Success with bar counts per timeframe, or EXCHANGE_ERROR listing
            the timeframes that failed (the others are still cached)
        """
        counts: dict[str, int] = {}
        failed: dict[str, str] = {}

        for timeframe in timeframes:
            try:
                bars = await call_with_timeout(
                    self._exchange.get_ohlcv(symbol, timeframe, self._config.ohlcv_limit),
                    self._config.exchange_timeout,
                    f"get_ohlcv {symbol} {timeframe}",
                )
            except ExchangeError as e:
                logger.error(f"Failed to fetch {timeframe} bars for {symbol}: {e.message}")
                failed[timeframe] = e.message
                continue

            if not bars:
                failed[timeframe] = "empty response"
                continue

            stored = await self._cache.set_bars(symbol, timeframe, bars, self._config.cache_ttl_seconds)
            counts[timeframe] = len(stored)

        if failed:
            return Result.failure(
                ErrorKind.EXCHANGE_ERROR,
                f"Failed to fetch {symbol} bars for {', '.join(failed)}",
                fetched=counts,
                failed=failed,
            )

        logger.info(f"Fetched market data for {symbol}: {counts}")
        return Result.success(counts)

    def trigger_fetch(self, symbol: str, timeframes: Sequence[str]) -> asyncio.Task:
        """Start a background fetch unless one for ``symbol`` is already running."""
        running = self._pending_fetches.get(symbol)
        if running is not None and not running.done():
            return running

        task = asyncio.ensure_future(self.fetch(symbol, timeframes))
        self._pending_fetches[symbol] = task
        return task

    async def wait_for_fetches(self) -> None:
        tasks = [task for task in self._pending_fetches.values() if not task.done()]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # =========================================================================
    # ANALYZE
    # =========================================================================

    async def analyze(
        self,
        symbol: str,
        timeframes: Sequence[str],
        open_positions: Iterable[Trade] = (),
        account_balance: float = 0.0,
        risk_config: Optional[RiskConfig] = None,
    ) -> Result[MarketSnapshot]:
        """
        Build a snapshot from cached bars.

        Args:
            symbol: Trading symbol
            timeframes: Ordered timeframes, the first being primary
            open_positions: Open trades on the symbol
            account_balance: Current balance
            risk_config: Risk limits

        Returns:
            Success with the snapshot, or DATA_UNAVAILABLE after triggering
            a fetch when any timeframe is missing or stale
        """
        found, missing = await self._cache.get_all_bars(symbol, timeframes)
        if missing:
            logger.info(f"Market data for {symbol} unavailable ({', '.join(missing)}); fetching")
            self.trigger_fetch(symbol, timeframes)
            return Result.failure(
                ErrorKind.DATA_UNAVAILABLE,
                f"Market data unavailable for {symbol}: {', '.join(missing)}",
                missing=missing,
            )

        indicators = {tf: self._indicators.calculate_all(bars) for tf, bars in found.items()}
        snapshot = MarketSnapshot(
            symbol=symbol,
            timeframes=tuple(timeframes),
            bars_by_timeframe=found,
            indicators_by_timeframe=indicators,
            open_positions=tuple(open_positions),
            account_balance=account_balance,
            risk_config=risk_config or RiskConfig(),
        )
        return Result.success(snapshot)
