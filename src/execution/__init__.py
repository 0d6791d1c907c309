"""
Execution Package for Futures Trading Bot.

This package provides the exchange contract, the paper and Binance
exchanges, the caller-side retry loop and the idempotent execution engine.
"""

from src.execution.exchange import (
    DEFAULT_EXCHANGE_TIMEOUT,
    Exchange,
    ExchangePosition,
    OrderResult,
    OrderSide,
    OrderStatus,
    call_with_timeout,
)
from src.execution.paper_exchange import PaperExchange
from src.execution.binance_exchange import BinanceConfig, BinanceFuturesExchange
from src.execution.retry import DEFAULT_MAX_ATTEMPTS, DEFAULT_RETRY_DELAYS, run_with_retry
from src.execution.execution_engine import ExecutionEngine, ExecutionEngineConfig


__all__ = [
    "DEFAULT_EXCHANGE_TIMEOUT",
    "Exchange",
    "ExchangePosition",
    "OrderResult",
    "OrderSide",
    "OrderStatus",
    "call_with_timeout",
    "PaperExchange",
    "BinanceConfig",
    "BinanceFuturesExchange",
    "DEFAULT_MAX_ATTEMPTS",
    "DEFAULT_RETRY_DELAYS",
    "run_with_retry",
    "ExecutionEngine",
    "ExecutionEngineConfig",
]
