"""
Strategy Manager Module for Futures Trading Bot.

This module provides centralized management of the trading strategies,
including registration, evaluation and arbitration of their signals into
a single Decision.
"""

import logging
from typing import Iterable, Optional

from src.core.models import Decision, DecisionType, Direction, MarketSnapshot, Signal
from src.strategies.base_strategy import TradingStrategy
from src.utils.exceptions import StrategyNotFoundError


logger = logging.getLogger(__name__)


_DECISION_FOR_DIRECTION = {
    Direction.BUY: DecisionType.BUY,
    Direction.SELL: DecisionType.SELL,
    Direction.HOLD: DecisionType.HOLD,
}


class StrategyManager:
    """
    Centralized strategy manager.

    Provides:
    - Strategy registration by name
    - Evaluation of every enabled strategy against one snapshot
    - Arbitration of the resulting signals
    - Conversion of the winner into a Decision
    """

    def __init__(self, strategies: Optional[Iterable[TradingStrategy]] = None) -> None:
        """
        Initialize StrategyManager.

        Args:
            strategies: Strategies to register up front
        """
        self._strategies: dict[str, TradingStrategy] = {}
        self._evaluation_count = 0

        for strategy in strategies or ():
            self.add_strategy(strategy)

        logger.info("StrategyManager initialized")

    def add_strategy(self, strategy: TradingStrategy) -> str:
        """
        Register a strategy, replacing any strategy with the same name.

        Args:
            strategy: Strategy instance

        Returns:
            Strategy name
        """
        if strategy.name in self._strategies:
            logger.warning(f"Replacing registered strategy: {strategy.name}")
        self._strategies[strategy.name] = strategy
        logger.info(f"Added strategy: {strategy.name}")
        return strategy.name

    def remove_strategy(self, name: str) -> bool:
        """Remove a strategy by name. Returns True if it was registered."""
        if self._strategies.pop(name, None) is None:
            return False
        logger.info(f"Removed strategy: {name}")
        return True

    def get_strategy(self, name: str) -> TradingStrategy:
        """
        Get a strategy by name.

        Raises:
            StrategyNotFoundError: If no strategy has that name
        """
        strategy = self._strategies.get(name)
        if strategy is None:
            raise StrategyNotFoundError(details={"strategy": name})
        return strategy

    @property
    def strategy_names(self) -> list[str]:
        return list(self._strategies)

    def list_strategies(self) -> list[dict]:
        """List all registered strategies."""
        return [strategy.to_dict() for strategy in self._strategies.values()]

    def required_timeframes(self) -> list[str]:
        """Union of the timeframes every enabled strategy needs, in first-seen order."""
        seen: dict[str, None] = {}
        for strategy in self._strategies.values():
            if strategy.enabled:
                for tf in strategy.required_timeframes():
                    seen.setdefault(tf, None)
        return list(seen)

    # =========================================================================
    # EVALUATION
    # =========================================================================

    def evaluate_all(self, snapshot: MarketSnapshot) -> list[Signal]:
        """
        Evaluate every enabled strategy against the snapshot.

        A strategy that raises contributes a HOLD carrying the error, so
        one broken strategy never stops the others.

        Args:
            snapshot: Market snapshot

        Returns:
            One signal per enabled strategy
        """
        self._evaluation_count += 1
        signals: list[Signal] = []

        for strategy in self._strategies.values():
            if not strategy.enabled:
                continue
            try:
                signal = strategy.evaluate(snapshot)
            except Exception as e:
                logger.error(f"Strategy {strategy.name} failed on {snapshot.symbol}: {e}", exc_info=True)
                signal = Signal.hold(
                    strategy.name,
                    snapshot.symbol,
                    [f"Strategy error: {e}"],
                    metadata={"error": True},
                )
            signals.append(signal)

        actionable = sum(1 for s in signals if s.is_actionable)
        logger.debug(
            f"Evaluated {len(signals)} strategies for {snapshot.symbol} ({actionable} actionable)"
        )
        return signals

    @staticmethod
    def best_signal(signals: Iterable[Signal], symbol: str = "") -> Signal:
        """
        Pick the arbitration winner.

        Args:
            signals: Candidate signals
            symbol: Symbol used for the HOLD when nothing is actionable

        Returns:
            Actionable signal with the highest average of strength and
            confidence, or a HOLD
        """
        candidates = list(signals)
        actionable = [s for s in candidates if s.is_actionable]
        if not actionable:
            reasons = [reason for s in candidates for reason in s.reasons[:1]]
            return Signal.hold(
                "StrategyManager",
                symbol or (candidates[0].symbol if candidates else ""),
                reasons or ["No actionable strategy signal"],
            )
        return max(actionable, key=lambda s: (s.strength + s.confidence) / 2)

    def evaluate(self, snapshot: MarketSnapshot) -> Decision:
        """Evaluate all strategies and convert the winner into a Decision."""
        signals = self.evaluate_all(snapshot)
        best = self.best_signal(signals, snapshot.symbol)
        decision = self.signal_to_decision(best, snapshot)
        decision.market_conditions["signals"] = [
            {
                "strategy": s.strategy_name,
                "direction": s.direction.value,
                "strength": s.strength,
                "confidence": s.confidence,
            }
            for s in signals
        ]
        return decision

    @staticmethod
    def signal_to_decision(signal: Signal, snapshot: MarketSnapshot) -> Decision:
        """
        Build a Decision from a strategy signal.

        Args:
            signal: Winning signal
            snapshot: Snapshot the signal was computed from

        Returns:
            Unexecuted Decision
        """
        return Decision(
            symbol=snapshot.symbol,
            timeframes_analyzed=list(snapshot.timeframes),
            market_conditions={
                "strategy": signal.strategy_name,
                "strength": signal.strength,
                "current_price": snapshot.current_price(),
                "entry_price": signal.entry_price,
            },
            decision=_DECISION_FOR_DIRECTION[signal.direction],
            confidence=signal.confidence,
            reasoning="; ".join(signal.reasons),
            risk_assessment={
                "position_size": signal.position_size,
                "risk_reward_ratio": signal.risk_reward_ratio,
            },
            recommended_leverage=signal.recommended_leverage,
            recommended_stop_loss=signal.stop_loss,
            recommended_take_profit=signal.take_profit,
        )

    def get_stats(self) -> dict:
        """Get manager statistics."""
        return {
            "strategies": len(self._strategies),
            "enabled": sum(1 for s in self._strategies.values() if s.enabled),
            "evaluations": self._evaluation_count,
        }
