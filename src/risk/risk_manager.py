"""
Risk Manager Module for Futures Trading Bot.

This module implements the risk and portfolio gate: an ordered,
short-circuiting sequence of checks every decision passes before it
may be executed.
"""

import logging
from typing import Any, Callable, Optional

from pydantic import BaseModel, ConfigDict, Field

from src.core.models import Decision, DecisionType, RiskConfig
from src.risk.portfolio_risk import PortfolioRisk, PortfolioState
from src.risk.trade_validator import TradeValidator, TradeValidatorConfig
from src.utils.helpers import safe_divide


logger = logging.getLogger(__name__)


class GateCheck(BaseModel):
    """Outcome of one gate check."""

    model_config = ConfigDict(frozen=True)

    name: str
    passed: bool
    reason: str = ""


class GateResult(BaseModel):
    """Outcome of the whole gate; checks stop at the first failure."""

    approved: bool
    checks: list[GateCheck] = Field(default_factory=list)

    @property
    def failed_check(self) -> Optional[GateCheck]:
        for check in self.checks:
            if not check.passed:
                return check
        return None

    @property
    def reason(self) -> str:
        failed = self.failed_check
        if failed is not None:
            return failed.reason
        return "All risk checks passed"

    def to_dict(self) -> dict:
        return {
            "approved": self.approved,
            "reason": self.reason,
            "checks": [check.model_dump() for check in self.checks],
        }


# Gate check names in evaluation order
CHECK_BOT_ENABLED = "bot_enabled"
CHECK_DAILY_LOSS = "daily_loss_limit"
CHECK_MAX_POSITIONS = "max_positions"
CHECK_PAIR_EXPOSURE = "pair_exposure"
CHECK_CORRELATED_EXPOSURE = "correlated_exposure"
CHECK_PORTFOLIO_RISK = "portfolio_risk"
CHECK_DRAWDOWN = "drawdown"
CHECK_CONFIDENCE = "confidence"
CHECK_TRADE_VALIDATION = "trade_validation"

GATE_ORDER = (
    CHECK_BOT_ENABLED,
    CHECK_DAILY_LOSS,
    CHECK_MAX_POSITIONS,
    CHECK_PAIR_EXPOSURE,
    CHECK_CORRELATED_EXPOSURE,
    CHECK_PORTFOLIO_RISK,
    CHECK_DRAWDOWN,
    CHECK_CONFIDENCE,
    CHECK_TRADE_VALIDATION,
)

# Closing reduces risk, so only these apply to CLOSE decisions
CLOSE_CHECKS = frozenset({CHECK_BOT_ENABLED, CHECK_DAILY_LOSS, CHECK_CONFIDENCE})

# Checks whose inputs move between analysis and execution
TIME_SENSITIVE_CHECKS = (
    CHECK_BOT_ENABLED,
    CHECK_DAILY_LOSS,
    CHECK_MAX_POSITIONS,
    CHECK_TRADE_VALIDATION,
)


class RiskManager:
    """
    Risk and portfolio gate.

    Runs the checks in ``GATE_ORDER`` and stops at the first failure,
    so the reported reason is always the earliest limit hit.
    """

    def __init__(
        self,
        risk_config: Optional[RiskConfig] = None,
        portfolio: Optional[PortfolioRisk] = None,
        validator: Optional[TradeValidator] = None,
        bot_enabled: Callable[[], bool] = lambda: True,
        default_leverage: int = 1,
    ) -> None:
        """
        Initialize RiskManager.

        Args:
            risk_config: Risk limits
            portfolio: Portfolio risk calculator
            validator: Trade validator
            bot_enabled: Reads the master trading switch
            default_leverage: Leverage when a decision recommends none
        """
        self._config = risk_config or RiskConfig()
        self._portfolio = portfolio or PortfolioRisk(self._config)
        self._validator = validator or TradeValidator(
            TradeValidatorConfig(min_risk_reward_ratio=self._config.min_risk_reward_ratio)
        )
        self._bot_enabled = bot_enabled
        self._default_leverage = default_leverage

        self._checks: dict[str, Callable[[Decision, PortfolioState, Optional[float]], GateCheck]] = {
            CHECK_BOT_ENABLED: self.check_bot_enabled,
            CHECK_DAILY_LOSS: self.check_daily_loss,
            CHECK_MAX_POSITIONS: self.check_max_positions,
            CHECK_PAIR_EXPOSURE: self.check_pair_exposure,
            CHECK_CORRELATED_EXPOSURE: self.check_correlated_exposure,
            CHECK_PORTFOLIO_RISK: self.check_portfolio_risk,
            CHECK_DRAWDOWN: self.check_drawdown,
            CHECK_CONFIDENCE: self.check_confidence,
            CHECK_TRADE_VALIDATION: self.check_trade_validation,
        }

        logger.info("RiskManager initialized")

    @property
    def config(self) -> RiskConfig:
        return self._config

    @property
    def portfolio(self) -> PortfolioRisk:
        return self._portfolio

    @property
    def validator(self) -> TradeValidator:
        return self._validator

    @property
    def default_leverage(self) -> int:
        return self._default_leverage

    # =========================================================================
    # GATE
    # =========================================================================

    def evaluate(
        self,
        decision: Decision,
        state: PortfolioState,
        current_price: Optional[float] = None,
    ) -> GateResult:
        """
        Run the full gate.

        Args:
            decision: Decision to gate
            state: Portfolio state
            current_price: Price to validate against (defaults to the
                decision's recorded entry or current price)

        Returns:
            GateResult with the checks run up to the first failure
        """
        if decision.decision == DecisionType.HOLD:
            check = GateCheck(name="decision", passed=False, reason="HOLD decision: nothing to execute")
            return GateResult(approved=False, checks=[check])

        names = GATE_ORDER
        if decision.decision == DecisionType.CLOSE:
            names = tuple(n for n in GATE_ORDER if n in CLOSE_CHECKS)
        return self._run(names, decision, state, current_price)

    def evaluate_time_sensitive(
        self,
        decision: Decision,
        state: PortfolioState,
        current_price: float,
    ) -> GateResult:
        """Re-run the checks that may have changed since the decision was gated."""
        names = TIME_SENSITIVE_CHECKS
        if not decision.opens_position:
            names = tuple(n for n in names if n in CLOSE_CHECKS)
        return self._run(names, decision, state, current_price)

    def _run(
        self,
        names: tuple[str, ...],
        decision: Decision,
        state: PortfolioState,
        current_price: Optional[float],
    ) -> GateResult:
        checks: list[GateCheck] = []
        for name in names:
            check = self._checks[name](decision, state, current_price)
            checks.append(check)
            if not check.passed:
                logger.info(f"Risk gate rejected {decision.symbol} {decision.decision.value}: {check.reason}")
                return GateResult(approved=False, checks=checks)

        logger.debug(f"Risk gate approved {decision.symbol} {decision.decision.value}")
        return GateResult(approved=True, checks=checks)

    # =========================================================================
    # CHECKS
    # =========================================================================

    def check_bot_enabled(
        self, decision: Decision, state: PortfolioState, current_price: Optional[float] = None
    ) -> GateCheck:
        if self._bot_enabled():
            return GateCheck(name=CHECK_BOT_ENABLED, passed=True)
        return GateCheck(name=CHECK_BOT_ENABLED, passed=False, reason="Trading bot is disabled")

    def check_daily_loss(
        self, decision: Decision, state: PortfolioState, current_price: Optional[float] = None
    ) -> GateCheck:
        """Today's realized loss against ``daily_loss_limit_pct`` of the balance."""
        if self.is_daily_loss_limit_reached(state):
            return GateCheck(
                name=CHECK_DAILY_LOSS,
                passed=False,
                reason=(
                    f"Daily loss limit reached ({state.realized_pnl_today:.2f} realized today, "
                    f"limit {self._config.daily_loss_limit_pct}% of balance)"
                ),
            )
        return GateCheck(name=CHECK_DAILY_LOSS, passed=True)

    def is_daily_loss_limit_reached(self, state: PortfolioState) -> bool:
        # No balance means nothing can be traded
        if state.balance <= 0:
            return True
        if state.realized_pnl_today >= 0:
            return False
        loss_pct = abs(state.realized_pnl_today) / state.balance * 100
        return loss_pct >= self._config.daily_loss_limit_pct

    def check_max_positions(
        self, decision: Decision, state: PortfolioState, current_price: Optional[float] = None
    ) -> GateCheck:
        limit = self._config.max_positions
        if state.open_count >= limit:
            return GateCheck(
                name=CHECK_MAX_POSITIONS,
                passed=False,
                reason=f"Maximum concurrent positions reached ({state.open_count}/{limit})",
            )
        return GateCheck(name=CHECK_MAX_POSITIONS, passed=True)

    def check_pair_exposure(
        self, decision: Decision, state: PortfolioState, current_price: Optional[float] = None
    ) -> GateCheck:
        exposure = self._portfolio.pair_exposure(state.open_trades, decision.symbol)
        ratio = safe_divide(exposure, state.balance) * 100
        limit = self._config.max_single_pair_exposure_pct
        if ratio > limit:
            return GateCheck(
                name=CHECK_PAIR_EXPOSURE,
                passed=False,
                reason=f"Pair exposure limit exceeded for {decision.symbol} ({ratio:.2f}% > {limit}%)",
            )
        return GateCheck(name=CHECK_PAIR_EXPOSURE, passed=True)

    def check_correlated_exposure(
        self, decision: Decision, state: PortfolioState, current_price: Optional[float] = None
    ) -> GateCheck:
        pairs = self._portfolio.correlated_pairs(state.open_trades, decision.symbol)
        exposure = self._portfolio.correlated_exposure(state.open_trades, decision.symbol)
        ratio = safe_divide(exposure, state.balance) * 100
        limit = self._config.max_correlated_exposure_pct
        if ratio > limit:
            return GateCheck(
                name=CHECK_CORRELATED_EXPOSURE,
                passed=False,
                reason=(
                    f"Correlated exposure limit exceeded ({ratio:.2f}% > {limit}%, "
                    f"pairs: {', '.join(pairs)})"
                ),
            )
        return GateCheck(name=CHECK_CORRELATED_EXPOSURE, passed=True)

    def check_portfolio_risk(
        self, decision: Decision, state: PortfolioState, current_price: Optional[float] = None
    ) -> GateCheck:
        """Open risk plus this trade's risk budget against ``max_portfolio_risk_pct``."""
        new_risk = state.balance * self._config.risk_per_trade_pct / 100
        total = self._portfolio.portfolio_risk(state.open_trades) + new_risk
        ratio = safe_divide(total, state.balance) * 100
        limit = self._config.max_portfolio_risk_pct
        if ratio > limit:
            return GateCheck(
                name=CHECK_PORTFOLIO_RISK,
                passed=False,
                reason=f"Portfolio risk limit exceeded ({ratio:.2f}% > {limit}%)",
            )
        return GateCheck(name=CHECK_PORTFOLIO_RISK, passed=True)

    def check_drawdown(
        self, decision: Decision, state: PortfolioState, current_price: Optional[float] = None
    ) -> GateCheck:
        drawdown = self._portfolio.current_drawdown(state.closed_pnl_history)
        limit = self._config.max_drawdown_pct
        if drawdown > limit:
            return GateCheck(
                name=CHECK_DRAWDOWN,
                passed=False,
                reason=f"Maximum drawdown exceeded ({drawdown:.2f}% > {limit}%)",
            )
        return GateCheck(name=CHECK_DRAWDOWN, passed=True)

    def check_confidence(
        self, decision: Decision, state: PortfolioState, current_price: Optional[float] = None
    ) -> GateCheck:
        minimum = self._config.min_confidence
        if decision.confidence < minimum:
            return GateCheck(
                name=CHECK_CONFIDENCE,
                passed=False,
                reason=f"Confidence {decision.confidence:.1f} below minimum {minimum}",
            )
        return GateCheck(name=CHECK_CONFIDENCE, passed=True)

    def check_trade_validation(
        self, decision: Decision, state: PortfolioState, current_price: Optional[float] = None
    ) -> GateCheck:
        price = current_price or self.reference_price(decision)
        if not price:
            return GateCheck(
                name=CHECK_TRADE_VALIDATION,
                passed=False,
                reason="No price available to validate the trade",
            )
        response = self._validator.validate_decision(decision, price, self._default_leverage)
        return GateCheck(name=CHECK_TRADE_VALIDATION, passed=response.valid, reason=response.reason)

    @staticmethod
    def reference_price(decision: Decision) -> Optional[float]:
        """Entry price recorded with the decision, else the price it was analysed at."""
        conditions = decision.market_conditions
        return conditions.get("entry_price") or conditions.get("current_price")

    # =========================================================================
    # ASSESSMENT
    # =========================================================================

    def assess_risk_level(
        self,
        confidence: float,
        market_conditions: Optional[dict[str, Any]] = None,
    ) -> str:
        """
        Coarse risk level for a decision.

        Args:
            confidence: Decision confidence 0-100
            market_conditions: Optional ``volatility`` and ``strength`` labels

        Returns:
            "low", "medium" or "high"
        """
        conditions = market_conditions or {}
        if confidence >= 80:
            level = "low"
        elif confidence < self._config.min_confidence:
            level = "high"
        else:
            level = "medium"

        if str(conditions.get("volatility", "")).lower() == "high":
            level = {"low": "medium", "medium": "high"}.get(level, level)
        if str(conditions.get("strength", "")).lower() == "weak" and level == "low":
            level = "medium"
        return level

    def risk_assessment(self, decision: Decision, state: PortfolioState) -> dict[str, Any]:
        """Risk summary recorded with a decision."""
        return {
            "risk_level": self.assess_risk_level(decision.confidence, decision.market_conditions),
            "daily_loss_limit_reached": self.is_daily_loss_limit_reached(state),
            "max_positions_reached": state.open_count >= self._config.max_positions,
            "portfolio": self._portfolio.snapshot(state),
        }
