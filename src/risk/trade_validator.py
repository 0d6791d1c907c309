"""
Trade Validation for Futures Trading Bot.

This module provides pre-trade validation of stop loss, take profit,
leverage and reward/risk before a decision may be executed.
"""

import logging
from typing import Optional

from pydantic import BaseModel, Field

from src.core.models import Decision, TradeSide


logger = logging.getLogger(__name__)


class TradeValidatorConfig(BaseModel):
    """Configuration for trade validation."""

    min_risk_reward_ratio: float = Field(default=1.5, ge=0.0, description="Minimum reward/risk")
    min_leverage: int = Field(default=1, ge=1, description="Minimum leverage allowed")
    max_leverage: int = Field(default=10, ge=1, description="Maximum leverage allowed")


class ValidationResponse(BaseModel):
    """Outcome of validating one trade."""

    valid: bool = Field(default=True)
    errors: list[str] = Field(default_factory=list)
    risk_reward_ratio: Optional[float] = None

    @property
    def reason(self) -> str:
        return "; ".join(self.errors) if self.errors else "Trade validation passed"


class TradeValidator:
    """
    Pre-trade validator.

    Checks that a trade carries both protective orders on the correct
    side of entry, uses permitted leverage and pays enough for its risk.
    """

    def __init__(self, config: Optional[TradeValidatorConfig] = None) -> None:
        """
        Initialize TradeValidator.

        Args:
            config: Validation configuration
        """
        self._config = config or TradeValidatorConfig()

    @property
    def config(self) -> TradeValidatorConfig:
        return self._config

    def validate(
        self,
        entry_price: float,
        stop_loss: Optional[float],
        take_profit: Optional[float],
        leverage: int,
        side: TradeSide,
    ) -> ValidationResponse:
        """
        Validate a prospective trade.

        Args:
            entry_price: Expected entry price
            stop_loss: Stop loss price
            take_profit: Take profit price
            leverage: Requested leverage
            side: LONG or SHORT

        Returns:
            ValidationResponse listing every failed rule
        """
        cfg = self._config
        errors: list[str] = []
        rrr: Optional[float] = None

        if entry_price <= 0:
            errors.append("Entry price must be positive")
        if not stop_loss:
            errors.append("Stop loss must be set")
        if not take_profit:
            errors.append("Take profit must be set")
        if leverage < cfg.min_leverage or leverage > cfg.max_leverage:
            errors.append(f"Leverage must be between {cfg.min_leverage} and {cfg.max_leverage}")

        if stop_loss and take_profit and entry_price > 0:
            if side == TradeSide.LONG:
                if stop_loss >= entry_price:
                    errors.append("For LONG: Stop loss must be below entry price")
                if take_profit <= entry_price:
                    errors.append("For LONG: Take profit must be above entry price")
            else:
                if stop_loss <= entry_price:
                    errors.append("For SHORT: Stop loss must be above entry price")
                if take_profit >= entry_price:
                    errors.append("For SHORT: Take profit must be below entry price")

            risk = abs(entry_price - stop_loss)
            reward = abs(take_profit - entry_price)
            rrr = round(reward / risk, 4) if risk > 0 else 0.0
            if rrr < cfg.min_risk_reward_ratio:
                errors.append(
                    f"Risk/Reward ratio must be at least {cfg.min_risk_reward_ratio}:1 (got {rrr:.2f})"
                )

        if errors:
            logger.debug(f"Trade validation failed: {errors}")
        return ValidationResponse(valid=not errors, errors=errors, risk_reward_ratio=rrr)

    def validate_decision(
        self,
        decision: Decision,
        entry_price: float,
        default_leverage: int = 1,
    ) -> ValidationResponse:
        """
        Validate a BUY/SELL decision against the price it would fill at.

        Args:
            decision: Decision to validate
            entry_price: Current market price
            default_leverage: Leverage when the decision recommends none

        Returns:
            ValidationResponse
        """
        side = decision.trade_side
        if side is None:
            return ValidationResponse(
                valid=False,
                errors=[f"Decision {decision.decision.value} does not open a position"],
            )
        return self.validate(
            entry_price=entry_price,
            stop_loss=decision.recommended_stop_loss,
            take_profit=decision.recommended_take_profit,
            leverage=decision.recommended_leverage or default_leverage,
            side=side,
        )
