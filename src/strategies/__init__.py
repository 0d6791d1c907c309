"""
Strategies Package for Futures Trading Bot.

This package provides the strategy contract, the five strategy
variants and the manager that arbitrates between them.
"""

from src.strategies.base_strategy import (
    DEFAULT_LEVERAGE_LADDER,
    StrategyConfig,
    TradingStrategy,
)
from src.strategies.trend_following_strategy import (
    TrendFollowingConfig,
    TrendFollowingStrategy,
)
from src.strategies.mean_reversion_strategy import (
    MeanReversionConfig,
    MeanReversionStrategy,
)
from src.strategies.breakout_strategy import (
    BreakoutConfig,
    BreakoutStrategy,
)
from src.strategies.scalping_strategy import (
    ScalpingConfig,
    ScalpingStrategy,
)
from src.strategies.market_making_strategy import (
    MarketMakingConfig,
    MarketMakingStrategy,
)
from src.strategies.strategy_manager import StrategyManager


def create_default_strategies() -> list[TradingStrategy]:
    """
    Instantiate every strategy with its default configuration.

    Returns:
        Strategy instances
    """
    return [
        TrendFollowingStrategy(),
        MeanReversionStrategy(),
        BreakoutStrategy(),
        ScalpingStrategy(),
        MarketMakingStrategy(),
    ]


__all__ = [
    "DEFAULT_LEVERAGE_LADDER",
    "StrategyConfig",
    "TradingStrategy",
    "TrendFollowingConfig",
    "TrendFollowingStrategy",
    "MeanReversionConfig",
    "MeanReversionStrategy",
    "BreakoutConfig",
    "BreakoutStrategy",
    "ScalpingConfig",
    "ScalpingStrategy",
    "MarketMakingConfig",
    "MarketMakingStrategy",
    "StrategyManager",
    "create_default_strategies",
]
