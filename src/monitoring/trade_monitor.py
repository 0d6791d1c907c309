"""
Trade Monitor for Futures Trading Bot.

Polls open trades and closes them on the exchange when the stop loss or
take profit is crossed. A failed close leaves the trade OPEN for the
next poll; nothing is written until the exchange confirms.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from src.core.models import CloseReason, Trade, TradeSide, TradeStatus
from src.core.result import ErrorKind, Result
from src.data.data_storage import TradeRepository
from src.execution.exchange import DEFAULT_EXCHANGE_TIMEOUT, Exchange, call_with_timeout
from src.utils.exceptions import ExchangeError, InvalidStateTransitionError

logger = logging.getLogger(__name__)


TradeClosedCallback = Callable[[Trade], None]


@dataclass
class TradeMonitorConfig:
    """Configuration for position monitoring."""

    exchange_timeout: float = DEFAULT_EXCHANGE_TIMEOUT  # seconds per exchange call
    poll_interval: float = 30.0  # seconds between polls in run()


@dataclass
class MonitorStats:
    """Counters over the monitor's lifetime."""

    polls: int = 0
    checks: int = 0
    closed: int = 0
    close_failures: int = 0
    skipped_in_flight: int = 0
    by_reason: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "polls": self.polls,
            "checks": self.checks,
            "closed": self.closed,
            "close_failures": self.close_failures,
            "skipped_in_flight": self.skipped_in_flight,
            "by_reason": dict(self.by_reason),
        }


def close_trigger(trade: Trade, price: float) -> Optional[CloseReason]:
    """
    Level crossed by ``price``, stop loss first.

    LONG closes at or below the stop and at or above the target; SHORT
    uses the inverse thresholds.
    """
    if trade.side == TradeSide.LONG:
        if trade.stop_loss and price <= trade.stop_loss:
            return CloseReason.STOP_LOSS_HIT
        if trade.take_profit and price >= trade.take_profit:
            return CloseReason.TAKE_PROFIT_HIT
    else:
        if trade.stop_loss and price >= trade.stop_loss:
            return CloseReason.STOP_LOSS_HIT
        if trade.take_profit and price <= trade.take_profit:
            return CloseReason.TAKE_PROFIT_HIT
    return None


class TradeMonitor:
    """
    Open position monitor.

    Checks of distinct trades run concurrently; a trade already being
    checked is skipped rather than checked twice.
    """

    def __init__(
        self,
        repository: TradeRepository,
        exchange: Exchange,
        config: Optional[TradeMonitorConfig] = None,
    ) -> None:
        """
        Initialize TradeMonitor.

        Args:
            repository: Trade repository
            exchange: Exchange client
            config: Monitor configuration
        """
        self._repository = repository
        self._exchange = exchange
        self._config = config or TradeMonitorConfig()
        self._in_flight: set[str] = set()
        self._callbacks: list[TradeClosedCallback] = []
        self._stats = MonitorStats()
        self._running = False

        logger.info("TradeMonitor initialized")

    @property
    def stats(self) -> MonitorStats:
        return self._stats

    def add_callback(self, callback: TradeClosedCallback) -> None:
        """Register a callback invoked with every closed trade."""
        self._callbacks.append(callback)

    def _notify(self, trade: Trade) -> None:
        for callback in self._callbacks:
            try:
                callback(trade)
            except Exception as e:
                logger.error(f"Trade closed callback error: {e}")

    # =========================================================================
    # POLLING
    # =========================================================================

    async def poll(self) -> list[Result[Optional[Trade]]]:
        """
        Check every open trade once.

        Returns:
            One Result per checked trade
        """
        self._stats.polls += 1
        trades = await self._repository.list_open_trades()
        if not trades:
            logger.debug("No open positions to monitor")
            return []

        logger.info(f"Monitoring {len(trades)} open position(s)")
        return list(await asyncio.gather(*(self.check_trade(trade) for trade in trades)))

    async def run(self, stop_event: Optional[asyncio.Event] = None) -> None:
        """Poll until ``stop_event`` is set or the task is cancelled."""
        self._running = True
        stop_event = stop_event or asyncio.Event()
        try:
            while not stop_event.is_set():
                await self.poll()
                try:
                    await asyncio.wait_for(stop_event.wait(), timeout=self._config.poll_interval)
                except asyncio.TimeoutError:
                    pass
        finally:
            self._running = False

    async def check_trade(self, trade: Trade) -> Result[Optional[Trade]]:
        """
        Close ``trade`` if its stop loss or take profit has been crossed.

        Args:
            trade: An OPEN trade

        Returns:
            Success with the closed trade, success with None when nothing
            triggered, or EXCHANGE_ERROR with the trade left OPEN
        """
        if trade.id in self._in_flight:
            self._stats.skipped_in_flight += 1
            logger.debug(f"Trade {trade.id} check already in progress")
            return Result.success(None, skipped=True)

        self._in_flight.add(trade.id)
        try:
            return await self._check(trade)
        finally:
            self._in_flight.discard(trade.id)

    async def _check(self, trade: Trade) -> Result[Optional[Trade]]:
        self._stats.checks += 1
        try:
            price = await call_with_timeout(
                self._exchange.get_current_price(trade.symbol),
                self._config.exchange_timeout,
                "get_current_price",
            )
        except ExchangeError as e:
            logger.warning(f"Price unavailable for {trade.symbol}: {e.message}")
            return Result.failure(ErrorKind.EXCHANGE_ERROR, e.message, trade_id=trade.id)

        if price <= 0:
            logger.warning(f"Invalid current price for {trade.symbol}: {price}")
            return Result.success(None)

        reason = close_trigger(trade, price)
        if reason is None:
            return Result.success(None)

        logger.info(f"Closing trade {trade.id} ({reason.value}) at {price}")
        return await self._close(trade.id, price, reason)

    async def _close(self, trade_id: str, price: float, reason: CloseReason) -> Result[Optional[Trade]]:
        current = await self._repository.get_trade(trade_id)
        if current is None or current.status != TradeStatus.OPEN:
            logger.info(f"Trade {trade_id} already closed or not found")
            return Result.success(None)

        try:
            await call_with_timeout(
                self._exchange.close_position(current.symbol, current.quantity, current.side),
                self._config.exchange_timeout,
                "close_position",
            )
        except ExchangeError as e:
            self._stats.close_failures += 1
            logger.error(f"Failed to close trade {trade_id} on exchange: {e.message}")
            return Result.failure(ErrorKind.EXCHANGE_ERROR, e.message, trade_id=trade_id)

        pnl, pnl_percentage = current.pnl_at(price)
        try:
            closed = await self._repository.close_trade(trade_id, price, pnl, pnl_percentage, reason)
        except InvalidStateTransitionError as e:
            logger.warning(f"Trade {trade_id} changed state during close: {e.message}")
            return Result.success(None)

        self._stats.closed += 1
        self._stats.by_reason[reason.value] = self._stats.by_reason.get(reason.value, 0) + 1
        logger.info(
            f"Position closed: trade {trade_id} {current.side.value} {current.symbol} "
            f"entry {current.entry_price} exit {price} PnL {pnl} ({pnl_percentage}%)"
        )
        self._notify(closed)
        return Result.success(closed)

    # =========================================================================
    # EXTERNAL CANCEL
    # =========================================================================

    async def cancel_trade(
        self,
        trade_id: str,
        reason: CloseReason = CloseReason.EXTERNAL_CANCEL,
    ) -> Result[Trade]:
        """Mark a trade CANCELLED after it was closed outside the bot."""
        try:
            trade = await self._repository.cancel_trade(trade_id, reason)
        except InvalidStateTransitionError as e:
            return Result.failure(ErrorKind.VALIDATION_FAILURE, e.message, trade_id=trade_id)
        return Result.success(trade)
