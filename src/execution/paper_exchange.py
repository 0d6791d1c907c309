"""
Paper Exchange Module for Futures Trading Bot.

This module provides an in-memory exchange for paper trading and tests.
Orders fill immediately at the configured price; failures and latency
can be injected per operation.
"""

import asyncio
import logging
from collections import defaultdict
from typing import Iterable, Optional

from src.core.models import Bar, TradeSide, ensure_chronological
from src.execution.exchange import ExchangePosition, OrderResult, OrderSide, OrderStatus
from src.utils.exceptions import ExchangeError, OrderError
from src.utils.helpers import generate_uuid


logger = logging.getLogger(__name__)


class PaperExchange:
    """
    Paper trading exchange for simulation.

    Simulates order execution without a real exchange connection:
    - Market orders fill fully at the current price
    - Positions are netted per symbol
    - Realized PnL of closes is credited to the balance
    """

    def __init__(
        self,
        balance: float = 10000.0,
        prices: Optional[dict[str, float]] = None,
        latency: float = 0.0,
    ) -> None:
        """
        Initialize PaperExchange.

        Args:
            balance: Starting USDT balance
            prices: Initial prices by symbol
            latency: Seconds every call sleeps before answering
        """
        self._balance = balance
        self._prices: dict[str, float] = {k.upper(): v for k, v in (prices or {}).items()}
        self._bars: dict[tuple[str, str], tuple[Bar, ...]] = {}
        self._positions: dict[str, ExchangePosition] = {}
        self._orders: dict[str, OrderResult] = {}
        self._failures: dict[str, list[Exception]] = defaultdict(list)
        self._latency = latency
        self._lock = asyncio.Lock()

        self.calls: dict[str, int] = defaultdict(int)

        logger.info(f"PaperExchange initialized (balance={balance})")

    # =========================================================================
    # SIMULATION CONTROLS
    # =========================================================================

    def set_price(self, symbol: str, price: float) -> None:
        self._prices[symbol.upper()] = price

    def set_bars(self, symbol: str, timeframe: str, bars: Iterable[Bar]) -> None:
        """Load bars; the last close also becomes the current price."""
        ordered = ensure_chronological(bars)
        self._bars[(symbol.upper(), timeframe)] = ordered
        if ordered:
            self._prices.setdefault(symbol.upper(), ordered[-1].close)

    def set_latency(self, latency: float) -> None:
        self._latency = latency

    def inject_failure(
        self,
        operation: str,
        error: Optional[Exception] = None,
        times: int = 1,
    ) -> None:
        """
        Make the next ``times`` calls of ``operation`` raise.

        Args:
            operation: Method name, e.g. ``place_market_order``
            error: Exception to raise (defaults to ExchangeError)
            times: Number of calls to fail
        """
        for _ in range(times):
            self._failures[operation].append(
                error or ExchangeError(f"Simulated {operation} failure")
            )

    async def _enter(self, operation: str) -> None:
        self.calls[operation] += 1
        if self._latency > 0:
            await asyncio.sleep(self._latency)
        if self._failures[operation]:
            raise self._failures[operation].pop(0)

    def _price(self, symbol: str) -> float:
        price = self._prices.get(symbol.upper())
        if price is None:
            raise ExchangeError(f"No price for {symbol}", details={"symbol": symbol})
        return price

    # =========================================================================
    # MARKET DATA AND ACCOUNT
    # =========================================================================

    async def get_current_price(self, symbol: str) -> float:
        await self._enter("get_current_price")
        return self._price(symbol)

    async def get_ohlcv(self, symbol: str, timeframe: str, limit: int = 100) -> list[Bar]:
        await self._enter("get_ohlcv")
        bars = self._bars.get((symbol.upper(), timeframe))
        if bars is None:
            raise ExchangeError(
                f"No {timeframe} bars for {symbol}", details={"symbol": symbol, "timeframe": timeframe}
            )
        return list(bars[-limit:])

    async def get_account_balance(self, asset: str = "USDT") -> float:
        await self._enter("get_account_balance")
        return self._balance

    async def get_open_positions(self) -> list[ExchangePosition]:
        await self._enter("get_open_positions")
        return list(self._positions.values())

    # =========================================================================
    # ORDERS
    # =========================================================================

    async def place_market_order(
        self,
        symbol: str,
        side: OrderSide,
        quantity: float,
        leverage: int = 1,
    ) -> OrderResult:
        await self._enter("place_market_order")
        if quantity <= 0:
            raise OrderError(f"Invalid quantity {quantity}", details={"symbol": symbol})

        async with self._lock:
            price = self._price(symbol)
            order = self._record(symbol, side, quantity, price, OrderStatus.FILLED, "MARKET")
            self._apply_fill(symbol.upper(), side, quantity, price, leverage)

        logger.info(f"Paper {side.value} {quantity} {symbol} filled at {price} ({leverage}x)")
        return order

    async def place_limit_order(
        self,
        symbol: str,
        side: OrderSide,
        quantity: float,
        price: float,
        leverage: int = 1,
    ) -> OrderResult:
        await self._enter("place_limit_order")
        if quantity <= 0 or price <= 0:
            raise OrderError("Invalid limit order", details={"symbol": symbol, "price": price})
        return self._record(symbol, side, quantity, price, OrderStatus.NEW, "LIMIT")

    async def close_position(self, symbol: str, quantity: float, side: TradeSide) -> OrderResult:
        await self._enter("close_position")
        async with self._lock:
            price = self._price(symbol)
            close_side = OrderSide.closing(side)
            order = self._record(symbol, close_side, quantity, price, OrderStatus.FILLED, "MARKET")
            self._apply_fill(symbol.upper(), close_side, quantity, price, 1)

        logger.info(f"Paper close {side.value} {quantity} {symbol} at {price}")
        return order

    async def set_stop_loss(self, symbol: str, stop_price: float, side: TradeSide) -> OrderResult:
        await self._enter("set_stop_loss")
        position = self._positions.get(symbol.upper())
        quantity = position.quantity if position else 0.0
        return self._record(symbol, OrderSide.closing(side), quantity, stop_price, OrderStatus.NEW, "STOP_MARKET")

    async def set_take_profit(self, symbol: str, take_profit_price: float, side: TradeSide) -> OrderResult:
        await self._enter("set_take_profit")
        position = self._positions.get(symbol.upper())
        quantity = position.quantity if position else 0.0
        return self._record(
            symbol, OrderSide.closing(side), quantity, take_profit_price, OrderStatus.NEW, "TAKE_PROFIT_MARKET"
        )

    async def get_order_status(self, symbol: str, order_id: str) -> OrderResult:
        await self._enter("get_order_status")
        order = self._orders.get(order_id)
        if order is None:
            raise ExchangeError(f"Unknown order {order_id}", details={"order_id": order_id})
        return order

    def _record(
        self,
        symbol: str,
        side: OrderSide,
        quantity: float,
        price: float,
        status: OrderStatus,
        order_type: str,
    ) -> OrderResult:
        order = OrderResult(
            order_id=f"paper-{generate_uuid()[:12]}",
            symbol=symbol.upper(),
            side=side,
            quantity=quantity,
            price=price,
            status=status,
            order_type=order_type,
        )
        self._orders[order.order_id] = order
        return order

    def _apply_fill(self, symbol: str, side: OrderSide, quantity: float, price: float, leverage: int) -> None:
        """Net the fill into the symbol's position, realizing PnL on reductions."""
        signed = quantity if side == OrderSide.BUY else -quantity
        position = self._positions.get(symbol)
        current = 0.0
        if position is not None:
            current = position.quantity if position.side == TradeSide.LONG else -position.quantity

        new_qty = current + signed
        if position is not None and current * signed < 0:
            closed = min(abs(signed), abs(current))
            direction = 1 if current > 0 else -1
            self._balance += (price - position.entry_price) * closed * direction

        if abs(new_qty) < 1e-12:
            self._positions.pop(symbol, None)
            return

        if position is None or current * new_qty < 0:
            entry = price
        elif abs(new_qty) > abs(current):
            entry = (position.entry_price * abs(current) + price * abs(signed)) / abs(new_qty)
        else:
            entry = position.entry_price

        self._positions[symbol] = ExchangePosition(
            symbol=symbol,
            side=TradeSide.LONG if new_qty > 0 else TradeSide.SHORT,
            quantity=abs(new_qty),
            entry_price=entry,
            leverage=max(leverage, position.leverage if position else 1),
        )
