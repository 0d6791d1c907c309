"""
Core Models Module for Futures Trading Bot.

This module defines the data model shared by every pipeline stage:
bars, market snapshots, strategy signals, decisions, trades and the
read-only risk configuration.
"""

import logging
from datetime import datetime
from enum import Enum
from typing import Any, Iterable, Optional

from pydantic import BaseModel, ConfigDict, Field

from src.utils.date_utils import now_utc
from src.utils.helpers import generate_uuid


logger = logging.getLogger(__name__)


class Direction(str, Enum):
    """Strategy signal direction."""

    BUY = "BUY"
    SELL = "SELL"
    HOLD = "HOLD"


class DecisionType(str, Enum):
    """Decision outcome of an analysis cycle."""

    BUY = "BUY"
    SELL = "SELL"
    HOLD = "HOLD"
    CLOSE = "CLOSE"


class TradeSide(str, Enum):
    """Futures position side."""

    LONG = "LONG"
    SHORT = "SHORT"


class TradeStatus(str, Enum):
    """Trade lifecycle status."""

    OPEN = "OPEN"
    CLOSED = "CLOSED"
    CANCELLED = "CANCELLED"


class CloseReason(str, Enum):
    """Why a trade left the OPEN state."""

    STOP_LOSS_HIT = "STOP_LOSS_HIT"
    TAKE_PROFIT_HIT = "TAKE_PROFIT_HIT"
    EXTERNAL_CANCEL = "EXTERNAL_CANCEL"
    SIGNAL_CLOSE = "SIGNAL_CLOSE"


# =============================================================================
# MARKET DATA
# =============================================================================

class Bar(BaseModel):
    """One OHLCV bar."""

    model_config = ConfigDict(frozen=True)

    timestamp: datetime
    open: float
    high: float
    low: float
    close: float
    volume: float = Field(default=0.0, ge=0.0)

    @property
    def range(self) -> float:
        return self.high - self.low

    @property
    def body(self) -> float:
        return abs(self.close - self.open)

    @property
    def median(self) -> float:
        return (self.high + self.low) / 2

    @property
    def is_bullish(self) -> bool:
        return self.close > self.open

    @property
    def is_bearish(self) -> bool:
        return self.close < self.open


def ensure_chronological(bars: Iterable[Bar]) -> tuple[Bar, ...]:
    """
    Order bars by timestamp and drop duplicate timestamps.

    The last bar seen for a timestamp wins, matching how exchanges
    revise the still-forming candle.

    Args:
        bars: Bars in any order

    Returns:
        Chronological tuple of unique bars
    """
    by_time: dict[datetime, Bar] = {}
    for bar in bars:
        by_time[bar.timestamp] = bar
    return tuple(by_time[ts] for ts in sorted(by_time))


class RiskConfig(BaseModel):
    """Risk limits consumed by the gate and the execution pipeline (percent values 0-100)."""

    model_config = ConfigDict(frozen=True)

    max_positions: int = Field(default=5, ge=1)
    risk_per_trade_pct: float = Field(default=2.0, gt=0.0)
    daily_loss_limit_pct: float = Field(default=5.0, gt=0.0)
    max_portfolio_risk_pct: float = Field(default=10.0, gt=0.0)
    max_single_pair_exposure_pct: float = Field(default=30.0, gt=0.0)
    max_correlated_exposure_pct: float = Field(default=50.0, gt=0.0)
    max_drawdown_pct: float = Field(default=20.0, gt=0.0)
    min_confidence: float = Field(default=70.0, ge=0.0, le=100.0)
    min_risk_reward_ratio: float = Field(default=1.5, ge=0.0)
    correlation_threshold: float = Field(default=0.7, ge=0.0, le=1.0)
    initial_balance: float = Field(default=10000.0, gt=0.0)

    @classmethod
    def from_settings(cls, risk_settings: Any) -> "RiskConfig":
        """Build from ``config.settings.RiskSettings``."""
        return cls(**risk_settings.model_dump())


# =============================================================================
# TRADES AND DECISIONS
# =============================================================================

class Trade(BaseModel):
    """A futures position opened for a decision."""

    id: str = Field(default_factory=generate_uuid)
    symbol: str
    side: TradeSide
    entry_price: float = Field(gt=0.0)
    quantity: float = Field(gt=0.0)
    leverage: int = Field(default=1, ge=1)
    stop_loss: Optional[float] = None
    take_profit: Optional[float] = None
    status: TradeStatus = Field(default=TradeStatus.OPEN)
    exchange_order_id: Optional[str] = None
    decision_id: Optional[str] = None
    exit_price: Optional[float] = None
    pnl: Optional[float] = None
    pnl_percentage: Optional[float] = None
    close_reason: Optional[CloseReason] = None
    opened_at: datetime = Field(default_factory=now_utc)
    closed_at: Optional[datetime] = None

    @property
    def is_open(self) -> bool:
        return self.status == TradeStatus.OPEN

    @property
    def notional(self) -> float:
        """Absolute position value at entry."""
        return abs(self.entry_price * self.quantity)

    @property
    def risk_amount(self) -> float:
        """Loss if the stop is hit, assuming a 2% stop when none is set."""
        stop = self.stop_loss if self.stop_loss else self.entry_price * 0.98
        return abs(self.entry_price - stop) * self.quantity

    def pnl_at(self, exit_price: float) -> tuple[float, float]:
        """
        Leveraged PnL and price move percentage if closed at ``exit_price``.

        Args:
            exit_price: Closing price

        Returns:
            (pnl rounded to 2, pnl percentage rounded to 4), both signed
            so that a profitable trade is positive on either side
        """
        diff = exit_price - self.entry_price
        if self.side == TradeSide.SHORT:
            diff = -diff
        pnl = diff * self.quantity * self.leverage
        pnl_percentage = diff / self.entry_price * 100
        return round(pnl, 2), round(pnl_percentage, 4)


class Decision(BaseModel):
    """
    Output of an analysis cycle.

    ``executed`` and ``execution_error`` are written only by the execution
    pipeline, through the repository.
    """

    id: str = Field(default_factory=generate_uuid)
    symbol: str
    timeframes_analyzed: list[str] = Field(default_factory=list)
    market_conditions: dict[str, Any] = Field(default_factory=dict)
    decision: DecisionType = Field(default=DecisionType.HOLD)
    confidence: float = Field(default=0.0, ge=0.0, le=100.0)
    reasoning: str = Field(default="")
    risk_assessment: dict[str, Any] = Field(default_factory=dict)
    recommended_leverage: Optional[int] = Field(default=None, ge=1)
    recommended_stop_loss: Optional[float] = None
    recommended_take_profit: Optional[float] = None
    executed: bool = Field(default=False)
    execution_error: Optional[str] = None
    analyzed_at: datetime = Field(default_factory=now_utc)

    @property
    def opens_position(self) -> bool:
        return self.decision in (DecisionType.BUY, DecisionType.SELL)

    @property
    def trade_side(self) -> Optional[TradeSide]:
        if self.decision == DecisionType.BUY:
            return TradeSide.LONG
        if self.decision == DecisionType.SELL:
            return TradeSide.SHORT
        return None


# =============================================================================
# ANALYSIS INPUTS AND OUTPUTS
# =============================================================================

class MarketSnapshot(BaseModel):
    """
    Everything a strategy sees for one analysis cycle.

    Built fresh per cycle and frozen; downstream code only reads it.
    """

    model_config = ConfigDict(frozen=True)

    symbol: str
    timeframes: tuple[str, ...]
    bars_by_timeframe: dict[str, tuple[Bar, ...]]
    indicators_by_timeframe: dict[str, dict[str, Any]] = Field(default_factory=dict)
    open_positions: tuple[Trade, ...] = Field(default_factory=tuple)
    account_balance: float = Field(default=0.0, ge=0.0)
    risk_config: RiskConfig = Field(default_factory=RiskConfig)

    @property
    def primary_timeframe(self) -> str:
        return self.timeframes[0] if self.timeframes else "5m"

    def bars(self, timeframe: Optional[str] = None) -> tuple[Bar, ...]:
        return self.bars_by_timeframe.get(timeframe or self.primary_timeframe, ())

    def closes(self, timeframe: Optional[str] = None) -> list[float]:
        return [bar.close for bar in self.bars(timeframe)]

    def indicators(self, timeframe: Optional[str] = None) -> dict[str, Any]:
        return self.indicators_by_timeframe.get(timeframe or self.primary_timeframe, {})

    def current_price(self, timeframe: Optional[str] = None) -> float:
        bars = self.bars(timeframe)
        return bars[-1].close if bars else 0.0


class Signal(BaseModel):
    """Output of one strategy for one cycle."""

    model_config = ConfigDict(frozen=True)

    strategy_name: str
    symbol: str
    direction: Direction = Field(default=Direction.HOLD)
    strength: float = Field(default=0.0, ge=0.0, le=100.0)
    confidence: float = Field(default=0.0, ge=0.0, le=100.0)
    reasons: tuple[str, ...] = Field(default_factory=tuple)
    entry_price: Optional[float] = None
    stop_loss: Optional[float] = None
    take_profit: Optional[float] = None
    recommended_leverage: Optional[int] = None
    position_size: Optional[float] = None
    risk_reward_ratio: Optional[float] = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=now_utc)

    @property
    def is_actionable(self) -> bool:
        return self.direction != Direction.HOLD

    @classmethod
    def hold(
        cls,
        strategy_name: str,
        symbol: str,
        reasons: Iterable[str],
        **kwargs: Any,
    ) -> "Signal":
        """Build a HOLD signal that explains why nothing was traded."""
        return cls(
            strategy_name=strategy_name,
            symbol=symbol,
            direction=Direction.HOLD,
            reasons=tuple(reasons),
            **kwargs,
        )
