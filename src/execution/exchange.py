"""
Exchange Interface Module for Futures Trading Bot.

This module defines the exchange contract used by the pipeline, the
order and position models it returns, and the timeout wrapper every
exchange call goes through.
"""

import asyncio
import logging
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Optional, Protocol, TypeVar, runtime_checkable

from pydantic import BaseModel, Field

from src.core.models import Bar, TradeSide
from src.utils.date_utils import now_utc
from src.utils.exceptions import ExchangeError, ExchangeTimeoutError


logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_EXCHANGE_TIMEOUT = 10.0


class OrderSide(str, Enum):
    """Order side."""

    BUY = "BUY"
    SELL = "SELL"

    @classmethod
    def opening(cls, side: TradeSide) -> "OrderSide":
        """Order side that opens a position."""
        return cls.BUY if side == TradeSide.LONG else cls.SELL

    @classmethod
    def closing(cls, side: TradeSide) -> "OrderSide":
        """Order side that closes a position."""
        return cls.SELL if side == TradeSide.LONG else cls.BUY


class OrderStatus(str, Enum):
    """Exchange order status."""

    NEW = "NEW"
    PARTIALLY_FILLED = "PARTIALLY_FILLED"
    FILLED = "FILLED"
    CANCELED = "CANCELED"
    REJECTED = "REJECTED"
    EXPIRED = "EXPIRED"


class OrderResult(BaseModel):
    """Acknowledgement of an order placed on the exchange."""

    order_id: str
    symbol: str
    side: OrderSide
    quantity: float
    price: Optional[float] = None
    status: OrderStatus = Field(default=OrderStatus.NEW)
    order_type: str = Field(default="MARKET")
    created_at: datetime = Field(default_factory=now_utc)
    raw: dict[str, Any] = Field(default_factory=dict)


class ExchangePosition(BaseModel):
    """Open position as reported by the exchange."""

    symbol: str
    side: TradeSide
    quantity: float
    entry_price: float
    leverage: int = Field(default=1)
    unrealized_pnl: float = Field(default=0.0)


@runtime_checkable
class Exchange(Protocol):
    """
    Futures exchange operations used by the pipeline.

    Implementations raise ``ExchangeError`` on any failure.
    """

    async def get_current_price(self, symbol: str) -> float:
        ...

    async def get_ohlcv(self, symbol: str, timeframe: str, limit: int = 100) -> list[Bar]:
        ...

    async def get_account_balance(self, asset: str = "USDT") -> float:
        ...

    async def place_market_order(
        self,
        symbol: str,
        side: OrderSide,
        quantity: float,
        leverage: int = 1,
    ) -> OrderResult:
        ...

    async def place_limit_order(
        self,
        symbol: str,
        side: OrderSide,
        quantity: float,
        price: float,
        leverage: int = 1,
    ) -> OrderResult:
        ...

    async def close_position(self, symbol: str, quantity: float, side: TradeSide) -> OrderResult:
        ...

    async def get_open_positions(self) -> list[ExchangePosition]:
        ...

    async def set_stop_loss(self, symbol: str, stop_price: float, side: TradeSide) -> OrderResult:
        ...

    async def set_take_profit(self, symbol: str, take_profit_price: float, side: TradeSide) -> OrderResult:
        ...

    async def get_order_status(self, symbol: str, order_id: str) -> OrderResult:
        ...


async def call_with_timeout(
    awaitable: Awaitable[T],
    timeout: float = DEFAULT_EXCHANGE_TIMEOUT,
    operation: str = "exchange call",
) -> T:
    """
    Await an exchange call with a deadline.

    Args:
        awaitable: Exchange coroutine
        timeout: Seconds before giving up
        operation: Name used in logs and errors

    Returns:
        The call's result

    Raises:
        ExchangeTimeoutError: If the deadline passes
        ExchangeError: If the call fails with anything else
    """
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError as e:
        logger.warning(f"{operation} timed out after {timeout}s")
        raise ExchangeTimeoutError(
            f"{operation} timed out after {timeout}s", details={"operation": operation}, cause=e
        )
    except ExchangeError:
        raise
    except (OSError, ValueError, KeyError) as e:
        raise ExchangeError(f"{operation} failed: {e}", details={"operation": operation}, cause=e)
