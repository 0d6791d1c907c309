"""
Risk Management Package for Futures Trading Bot.

This package provides the risk and portfolio gate, trade validation,
portfolio measurements and pair correlation providers.
"""

from src.risk.correlation import (
    BaseCurrencyCorrelation,
    CorrelationProvider,
    ReturnsCorrelation,
    correlated_symbols,
)
from src.risk.portfolio_risk import (
    PortfolioRisk,
    PortfolioState,
    RiskStatus,
    load_portfolio_state,
)
from src.risk.risk_manager import (
    GATE_ORDER,
    GateCheck,
    GateResult,
    RiskManager,
)
from src.risk.trade_validator import (
    TradeValidator,
    TradeValidatorConfig,
    ValidationResponse,
)


__all__ = [
    "BaseCurrencyCorrelation",
    "CorrelationProvider",
    "ReturnsCorrelation",
    "correlated_symbols",
    "PortfolioRisk",
    "PortfolioState",
    "RiskStatus",
    "load_portfolio_state",
    "GATE_ORDER",
    "GateCheck",
    "GateResult",
    "RiskManager",
    "TradeValidator",
    "TradeValidatorConfig",
    "ValidationResponse",
]
