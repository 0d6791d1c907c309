"""
Core Package for Futures Trading Bot.

This package provides the core data model and result types:
- Bars, snapshots, signals, decisions and trades
- Risk configuration
- Result values carrying an error kind

The trading pipeline lives in ``src.core.trading_pipeline`` and is
imported from there directly.
"""

from src.core.models import (
    Direction,
    DecisionType,
    TradeSide,
    TradeStatus,
    CloseReason,
    Bar,
    ensure_chronological,
    RiskConfig,
    Trade,
    Decision,
    MarketSnapshot,
    Signal,
)

from src.core.result import (
    ErrorKind,
    Result,
    RETRYABLE_KINDS,
)


__all__ = [
    "Direction",
    "DecisionType",
    "TradeSide",
    "TradeStatus",
    "CloseReason",
    "Bar",
    "ensure_chronological",
    "RiskConfig",
    "Trade",
    "Decision",
    "MarketSnapshot",
    "Signal",
    "ErrorKind",
    "Result",
    "RETRYABLE_KINDS",
]
