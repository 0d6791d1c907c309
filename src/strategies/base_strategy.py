"""
Base Strategy Module for Futures Trading Bot.

This module provides the abstract base class for all trading strategies
with the common evaluation contract, configuration and signal helpers.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Iterable, Optional

from pydantic import BaseModel, Field

from src.analysis.pattern_recognition import PatternRecognition
from src.analysis.technical_indicators import TechnicalIndicators
from src.core.models import Direction, MarketSnapshot, Signal, TradeSide


logger = logging.getLogger(__name__)


# (minimum average score, leverage) pairs, checked top down
DEFAULT_LEVERAGE_LADDER: tuple[tuple[float, int], ...] = ((85.0, 5), (75.0, 3), (65.0, 2))


class StrategyConfig(BaseModel):
    """Base strategy configuration."""

    name: str = Field(default="BaseStrategy")
    enabled: bool = Field(default=True)
    min_bars: int = Field(default=1, ge=1, description="Bars required per timeframe")
    risk_reward_ratio: float = Field(default=2.0, gt=0.0)
    risk_per_trade: float = Field(default=0.02, gt=0.0, le=1.0, description="Fraction of balance")


class TradingStrategy(ABC):
    """
    Abstract base class for all trading strategies.

    A strategy is a pure function of the snapshot and its config:
    ``evaluate`` never raises for missing data and always returns a
    Signal, HOLD when nothing qualifies.
    """

    def __init__(
        self,
        config: Optional[StrategyConfig] = None,
        indicators: Optional[TechnicalIndicators] = None,
        patterns: Optional[PatternRecognition] = None,
    ) -> None:
        """
        Initialize TradingStrategy.

        Args:
            config: Strategy configuration
            indicators: Indicator library
            patterns: Pattern recognizer
        """
        self._config = config or StrategyConfig()
        self._indicators = indicators or TechnicalIndicators()
        self._patterns = patterns or PatternRecognition()

        logger.info(f"Strategy {self._config.name} initialized")

    @property
    def name(self) -> str:
        """Get strategy name."""
        return self._config.name

    @property
    def config(self) -> StrategyConfig:
        """Get configuration."""
        return self._config

    @property
    def enabled(self) -> bool:
        return self._config.enabled

    # =========================================================================
    # CONTRACT
    # =========================================================================

    @abstractmethod
    def evaluate(self, snapshot: MarketSnapshot) -> Signal:
        """
        Evaluate the snapshot and produce a signal.

        Args:
            snapshot: Market snapshot for one symbol

        Returns:
            Signal (HOLD with reasons when there is no setup)
        """

    @abstractmethod
    def required_timeframes(self) -> list[str]:
        """Timeframes the strategy needs in the snapshot."""

    @abstractmethod
    def stop_loss(
        self,
        entry: float,
        side: TradeSide,
        snapshot: MarketSnapshot,
        analysis: Optional[dict[str, Any]] = None,
    ) -> float:
        """Stop price for a position opened at ``entry``."""

    def can_evaluate(self, snapshot: MarketSnapshot) -> bool:
        """
        Check that every required timeframe has enough bars.

        Args:
            snapshot: Market snapshot

        Returns:
            True when evaluation can produce a meaningful signal
        """
        return all(
            len(snapshot.bars(tf)) >= self._config.min_bars
            for tf in self.required_timeframes()
        )

    def take_profit(
        self,
        entry: float,
        side: TradeSide,
        snapshot: MarketSnapshot,
        analysis: Optional[dict[str, Any]] = None,
    ) -> float:
        """Target at ``risk_reward_ratio`` times the stop distance."""
        risk = abs(entry - self.stop_loss(entry, side, snapshot, analysis))
        reward = risk * self._config.risk_reward_ratio
        if side == TradeSide.LONG:
            return round(entry + reward, 2)
        return round(entry - reward, 2)

    def position_size(self, snapshot: MarketSnapshot, balance: float) -> float:
        """
        Quantity risking ``risk_per_trade`` of the balance on a 2% stop.

        Args:
            snapshot: Market snapshot
            balance: Account balance

        Returns:
            Position size in base units (0 when price is unknown)
        """
        price = snapshot.current_price()
        if price <= 0 or balance <= 0:
            return 0.0
        return round(balance * self._config.risk_per_trade / (price * 0.02), 8)

    # =========================================================================
    # HELPERS
    # =========================================================================

    def hold(
        self,
        snapshot: MarketSnapshot,
        reasons: Iterable[str],
        **kwargs: Any,
    ) -> Signal:
        """HOLD signal explaining why nothing was traded."""
        return Signal.hold(self.name, snapshot.symbol, reasons, **kwargs)

    def directional_signal(
        self,
        snapshot: MarketSnapshot,
        direction: Direction,
        strength: float,
        confidence: float,
        reasons: Iterable[str],
        leverage: int,
        analysis: Optional[dict[str, Any]] = None,
        metadata: Optional[dict[str, Any]] = None,
        entry_price: Optional[float] = None,
        take_profit: Optional[float] = None,
    ) -> Signal:
        """
        Build a BUY/SELL signal with stop, target, size and reward/risk.

        Args:
            snapshot: Market snapshot
            direction: BUY or SELL
            strength: Strength score 0-100
            confidence: Confidence score 0-100
            reasons: Human readable reasons
            leverage: Recommended leverage
            analysis: Strategy analysis forwarded to stop/target helpers
            metadata: Extra signal metadata
            entry_price: Entry override (defaults to the last close)
            take_profit: Target override

        Returns:
            Actionable Signal
        """
        entry = entry_price if entry_price is not None else snapshot.current_price()
        side = TradeSide.LONG if direction == Direction.BUY else TradeSide.SHORT

        stop = self.stop_loss(entry, side, snapshot, analysis)
        target = take_profit if take_profit is not None else self.take_profit(
            entry, side, snapshot, analysis
        )
        risk = abs(entry - stop)
        rrr = round(abs(target - entry) / risk, 2) if risk > 0 else None

        signal = Signal(
            strategy_name=self.name,
            symbol=snapshot.symbol,
            direction=direction,
            strength=round(min(max(strength, 0.0), 100.0), 2),
            confidence=round(min(max(confidence, 0.0), 100.0), 2),
            reasons=tuple(reasons),
            entry_price=entry,
            stop_loss=stop,
            take_profit=target,
            recommended_leverage=leverage,
            position_size=self.position_size(snapshot, snapshot.account_balance),
            risk_reward_ratio=rrr,
            metadata=metadata or {},
        )

        logger.info(
            f"Strategy {self.name} generated {direction.value} signal for {snapshot.symbol} "
            f"(strength: {signal.strength:.2f}, confidence: {signal.confidence:.2f})"
        )
        return signal

    @staticmethod
    def leverage_for(
        strength: float,
        confidence: float,
        ladder: tuple[tuple[float, int], ...] = DEFAULT_LEVERAGE_LADDER,
    ) -> int:
        """
        Map the average of strength and confidence to a leverage tier.

        Args:
            strength: Strength score
            confidence: Confidence score
            ladder: (threshold, leverage) pairs from highest threshold down

        Returns:
            Leverage, 1 when no tier matches
        """
        average = (strength + confidence) / 2
        for threshold, leverage in ladder:
            if average >= threshold:
                return leverage
        return 1

    def to_dict(self) -> dict:
        """Convert strategy to dictionary."""
        return {
            "name": self.name,
            "enabled": self._config.enabled,
            "required_timeframes": self.required_timeframes(),
            "config": self._config.model_dump(),
        }

    def __repr__(self) -> str:
        """String representation."""
        return f"{self.__class__.__name__}(name={self.name})"
