"""
Portfolio Risk Module for Futures Trading Bot.

This module measures the committed portfolio: exposure per pair and
across correlated pairs, aggregate open risk, drawdown replayed from
closed trades, and a size suggestion that respects every cap.
"""

import logging
from enum import Enum
from typing import Any, Iterable, Optional

from pydantic import BaseModel, Field

from src.core.models import RiskConfig, Trade, TradeSide
from src.risk.correlation import BaseCurrencyCorrelation, CorrelationProvider, correlated_symbols
from src.utils.date_utils import start_of_day_utc
from src.utils.helpers import safe_divide


logger = logging.getLogger(__name__)


class RiskStatus(str, Enum):
    """Overall portfolio risk status."""

    NORMAL = "NORMAL"
    ELEVATED = "ELEVATED"
    WARNING = "WARNING"
    CRITICAL = "CRITICAL"


class PortfolioState(BaseModel):
    """Inputs the gate needs, gathered once per evaluation."""

    balance: float = Field(default=0.0)
    open_trades: list[Trade] = Field(default_factory=list)
    realized_pnl_today: float = Field(default=0.0)
    closed_pnl_history: list[float] = Field(default_factory=list, description="Chronological closed PnL")

    @property
    def open_count(self) -> int:
        return len(self.open_trades)


async def load_portfolio_state(repository: Any, exchange: Any) -> PortfolioState:
    """
    Gather balance, open trades and PnL history.

    Args:
        repository: TradeRepository
        exchange: Exchange client

    Returns:
        PortfolioState snapshot
    """
    balance = await exchange.get_account_balance()
    open_trades = await repository.list_open_trades()
    realized_today = await repository.realized_pnl_since(start_of_day_utc())
    history = await repository.closed_pnl_history()
    return PortfolioState(
        balance=balance,
        open_trades=open_trades,
        realized_pnl_today=realized_today,
        closed_pnl_history=history,
    )


class PortfolioRisk:
    """
    Portfolio risk calculator.

    Provides:
    - Pair and correlated-pair exposure
    - Aggregate open risk
    - Current and maximum drawdown
    - Position size suggestion
    - Risk status assessment
    """

    def __init__(
        self,
        risk_config: Optional[RiskConfig] = None,
        correlation: Optional[CorrelationProvider] = None,
    ) -> None:
        """
        Initialize PortfolioRisk.

        Args:
            risk_config: Risk limits
            correlation: Pair correlation provider
        """
        self._config = risk_config or RiskConfig()
        self._correlation = correlation or BaseCurrencyCorrelation()

    @property
    def config(self) -> RiskConfig:
        return self._config

    @property
    def correlation(self) -> CorrelationProvider:
        return self._correlation

    # =========================================================================
    # EXPOSURE AND RISK
    # =========================================================================

    @staticmethod
    def pair_exposure(trades: Iterable[Trade], symbol: str) -> float:
        """Summed notional of open trades on ``symbol``."""
        return sum(t.notional for t in trades if t.symbol == symbol and t.is_open)

    def correlated_pairs(self, trades: Iterable[Trade], symbol: str) -> list[str]:
        """Open symbols correlated with ``symbol`` above the threshold."""
        symbols = [t.symbol for t in trades if t.is_open]
        return correlated_symbols(
            self._correlation, symbol, symbols, self._config.correlation_threshold
        )

    def correlated_exposure(self, trades: Iterable[Trade], symbol: str) -> float:
        """Summed notional of open trades on pairs correlated with ``symbol``."""
        trades = list(trades)
        return sum(self.pair_exposure(trades, pair) for pair in self.correlated_pairs(trades, symbol))

    @staticmethod
    def portfolio_risk(trades: Iterable[Trade]) -> float:
        """Summed loss-to-stop of open trades."""
        return sum(t.risk_amount for t in trades if t.is_open)

    @staticmethod
    def unrealized_pnl(trades: Iterable[Trade], prices: dict[str, float]) -> float:
        """Unrealized PnL at the given prices; symbols without a price count as flat."""
        total = 0.0
        for trade in trades:
            price = prices.get(trade.symbol)
            if not trade.is_open or not price:
                continue
            diff = price - trade.entry_price
            if trade.side == TradeSide.SHORT:
                diff = -diff
            total += diff * trade.quantity * trade.leverage
        return total

    # =========================================================================
    # DRAWDOWN
    # =========================================================================

    def current_drawdown(self, closed_pnl: Iterable[float], unrealized: float = 0.0) -> float:
        """
        Drawdown from the equity peak, as a percentage.

        Equity is replayed from ``initial_balance`` through the closed
        PnL history, then marked with the unrealized PnL.
        """
        balance = self._config.initial_balance
        peak = balance
        for pnl in closed_pnl:
            balance += pnl
            peak = max(peak, balance)

        current = balance + unrealized
        if current >= peak or peak <= 0:
            return 0.0
        return (peak - current) / peak * 100

    def max_drawdown(self, closed_pnl: Iterable[float]) -> float:
        """Largest peak-to-trough drawdown of the replayed equity, as a percentage."""
        balance = self._config.initial_balance
        peak = balance
        worst = 0.0
        for pnl in closed_pnl:
            balance += pnl
            peak = max(peak, balance)
            if peak > 0:
                worst = max(worst, (peak - balance) / peak * 100)
        return worst

    # =========================================================================
    # SIZING AND STATUS
    # =========================================================================

    def suggest_position_size(
        self,
        state: PortfolioState,
        symbol: str,
        entry_price: float,
        stop_loss: float,
    ) -> float:
        """
        Largest quantity that fits the risk budget and both exposure caps.

        Args:
            state: Portfolio state
            symbol: Symbol to trade
            entry_price: Entry price
            stop_loss: Stop price

        Returns:
            Suggested quantity, never negative
        """
        cfg = self._config
        balance = state.balance
        stop_distance = abs(entry_price - stop_loss)
        if stop_distance <= 0 or entry_price <= 0 or balance <= 0:
            return 0.0

        available_risk = cfg.max_portfolio_risk_pct / 100 * balance - self.portfolio_risk(state.open_trades)
        risk_budget = min(available_risk, balance * cfg.risk_per_trade_pct / 100)
        by_risk = risk_budget / stop_distance

        pair_room = cfg.max_single_pair_exposure_pct / 100 * balance - self.pair_exposure(
            state.open_trades, symbol
        )
        by_pair = pair_room / entry_price

        correlated_room = cfg.max_correlated_exposure_pct / 100 * balance - self.correlated_exposure(
            state.open_trades, symbol
        )
        by_correlation = correlated_room / entry_price

        return max(0.0, round(min(by_risk, by_pair, by_correlation), 8))

    def assess_risk_status(self, risk_ratio_pct: float, drawdown_pct: float) -> RiskStatus:
        """
        Classify the portfolio from its risk ratio and drawdown.

        Args:
            risk_ratio_pct: Open risk as a percentage of balance
            drawdown_pct: Drawdown percentage

        Returns:
            RiskStatus
        """
        cfg = self._config
        if drawdown_pct > cfg.max_drawdown_pct or risk_ratio_pct > cfg.max_portfolio_risk_pct:
            return RiskStatus.CRITICAL
        if drawdown_pct > cfg.max_drawdown_pct * 0.7 or risk_ratio_pct > cfg.max_portfolio_risk_pct * 0.8:
            return RiskStatus.WARNING
        if risk_ratio_pct > cfg.max_portfolio_risk_pct * 0.5:
            return RiskStatus.ELEVATED
        return RiskStatus.NORMAL

    def snapshot(self, state: PortfolioState, prices: Optional[dict[str, float]] = None) -> dict:
        """
        Portfolio summary for logging and decision audit.

        Args:
            state: Portfolio state
            prices: Current prices for unrealized PnL

        Returns:
            Exposure, risk, drawdown and status
        """
        trades = [t for t in state.open_trades if t.is_open]
        balance = state.balance
        unrealized = self.unrealized_pnl(trades, prices or {})

        by_pair: dict[str, dict[str, float]] = {}
        by_side = {TradeSide.LONG.value: 0, TradeSide.SHORT.value: 0}
        for trade in trades:
            entry = by_pair.setdefault(trade.symbol, {"count": 0, "exposure": 0.0, "risk": 0.0})
            entry["count"] += 1
            entry["exposure"] += trade.notional
            entry["risk"] += trade.risk_amount
            by_side[trade.side.value] += 1

        total_exposure = sum(t.notional for t in trades)
        total_risk = self.portfolio_risk(trades)
        risk_ratio = safe_divide(total_risk, balance) * 100
        drawdown = self.current_drawdown(state.closed_pnl_history, unrealized)

        return {
            "account_balance": balance,
            "total_value": round(balance + unrealized, 2),
            "unrealized_pnl": round(unrealized, 2),
            "total_exposure": round(total_exposure, 2),
            "exposure_ratio": round(safe_divide(total_exposure, balance), 2),
            "open_positions_count": len(trades),
            "positions_by_pair": by_pair,
            "positions_by_side": by_side,
            "total_risk": round(total_risk, 2),
            "portfolio_risk_pct": round(risk_ratio, 2),
            "current_drawdown_pct": round(drawdown, 2),
            "max_drawdown_pct": round(self.max_drawdown(state.closed_pnl_history), 2),
            "risk_status": self.assess_risk_status(risk_ratio, drawdown).value,
        }
