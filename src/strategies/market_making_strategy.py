"""
Market Making Strategy Module for Futures Trading Bot.

This module implements a market making strategy that quotes both sides
around the mid price and uses the signal direction to lean toward the
side that rebalances inventory.
"""

import logging
import math
from typing import Any, Optional

import numpy as np
from pydantic import Field

from src.core.models import Bar, Direction, MarketSnapshot, Signal, TradeSide
from src.strategies.base_strategy import StrategyConfig, TradingStrategy


logger = logging.getLogger(__name__)


class MarketMakingConfig(StrategyConfig):
    """Market making strategy configuration."""

    name: str = Field(default="MarketMaking")
    min_bars: int = Field(default=50, ge=1)
    primary_timeframe: str = Field(default="1m")
    base_spread_pct: float = Field(default=0.0015, gt=0.0, le=0.05)
    min_spread_pct: float = Field(default=0.001, gt=0.0, le=0.05)
    max_spread_pct: float = Field(default=0.005, gt=0.0, le=0.1)
    max_inventory_ratio: float = Field(default=0.3, ge=0.0, le=1.0)
    inventory_skew_multiplier: float = Field(default=0.0005, ge=0.0, le=0.01)
    volatility_multiplier: float = Field(default=2.0, ge=1.0, le=10.0)
    volatility_period: int = Field(default=20, ge=5, le=200)
    annualization_periods: int = Field(default=525600, ge=1, description="Bars per year")
    trend_period: int = Field(default=50, ge=10, le=500)
    trend_threshold: float = Field(default=0.002, gt=0.0, le=0.1)
    volume_period: int = Field(default=20, ge=5, le=200)
    min_volume_ratio: float = Field(default=0.8, ge=0.0, le=10.0)
    order_size_pct: float = Field(default=0.02, gt=0.0, le=1.0)
    base_stop_pct: float = Field(default=0.015, gt=0.0, le=0.5)
    min_viability: float = Field(default=0.5, ge=0.0, le=1.0)
    timeframes: list[str] = Field(default_factory=lambda: ["1m", "5m", "15m"])


class MarketMakingStrategy(TradingStrategy):
    """
    Market making trading strategy.

    Provides liquidity on both sides:
    - Spread widened by volatility regime and trend strength
    - Quotes skewed by the current inventory
    - Viability check that stands aside in extreme volatility or thin volume
    - Direction names the side to favour, not a directional bet
    """

    def __init__(self, config: Optional[MarketMakingConfig] = None, **kwargs: Any) -> None:
        """
        Initialize MarketMakingStrategy.

        Args:
            config: Market making strategy configuration
        """
        super().__init__(config or MarketMakingConfig(), **kwargs)

    @property
    def mm_config(self) -> MarketMakingConfig:
        """Get market making specific config."""
        return self._config  # type: ignore

    def required_timeframes(self) -> list[str]:
        return list(self.mm_config.timeframes)

    def can_evaluate(self, snapshot: MarketSnapshot) -> bool:
        cfg = self.mm_config
        return len(snapshot.bars(cfg.primary_timeframe)) >= max(cfg.trend_period, cfg.min_bars)

    def evaluate(self, snapshot: MarketSnapshot) -> Signal:
        """
        Evaluate quoting conditions.

        Args:
            snapshot: Market snapshot

        Returns:
            BUY/SELL naming the side to favour, HOLD for balanced quoting
            or when market making is not viable
        """
        cfg = self.mm_config
        if not self.can_evaluate(snapshot):
            return self.hold(snapshot, ["Insufficient data for market making"])

        bars = snapshot.bars(cfg.primary_timeframe)
        conditions = self.analyze_market_conditions(bars)
        viability = self.assess_viability(conditions)
        if not viability["is_viable"]:
            return self.hold(snapshot, [viability["reason"]], metadata={"conditions": conditions})

        inventory = self.current_inventory(snapshot)
        spread = self.optimal_spread(conditions, inventory)
        quotes = self.quote_prices(conditions, spread)
        decision = self.quoting_decision(quotes, conditions, inventory)

        strength = self._strength(conditions, viability, inventory)
        confidence = self._confidence(conditions, viability)

        metadata = {
            "strategy_type": "MARKET_MAKING",
            "conditions": conditions,
            "viability": viability,
            "inventory": inventory,
            "spread": spread,
            "quotes": quotes,
            "favor_side": decision["favor_side"],
        }

        if decision["favor_side"] == "BUY":
            direction = Direction.BUY
            entry, target = quotes["bid_price"], quotes["ask_price"]
        elif decision["favor_side"] == "SELL":
            direction = Direction.SELL
            entry, target = quotes["ask_price"], quotes["bid_price"]
        else:
            return self.hold(
                snapshot,
                decision["reasons"],
                strength=strength,
                confidence=confidence,
                metadata=metadata,
            )

        return self.directional_signal(
            snapshot,
            direction,
            strength,
            confidence,
            decision["reasons"],
            leverage=self._leverage(strength, confidence),
            analysis=conditions,
            metadata=metadata,
            entry_price=entry,
            take_profit=target,
        )

    # =========================================================================
    # MARKET CONDITIONS
    # =========================================================================

    def analyze_market_conditions(self, bars: tuple[Bar, ...]) -> dict[str, Any]:
        """
        Volatility, trend, liquidity and estimated spread.

        Args:
            bars: Chronological bars of the quoting timeframe

        Returns:
            Conditions dictionary
        """
        closes = [b.close for b in bars]
        price = closes[-1]

        volatility = self.realized_volatility(closes)
        recent = bars[-20:]
        price_range = max(b.high for b in recent) - min(b.low for b in recent)
        estimated_spread = sum(b.range / b.close for b in bars[-5:] if b.close) / len(bars[-5:])

        return {
            "current_price": price,
            "volatility": round(volatility, 4),
            "volatility_regime": self.classify_volatility(volatility),
            "trend": self.analyze_trend(closes),
            "volume": self.analyze_volume(bars),
            "range_percent": round(price_range / price * 100, 2) if price else 0.0,
            "estimated_spread": round(estimated_spread, 4),
            "rsi": self._indicators.rsi(closes, 14),
            "ema20": self._indicators.ema(closes, 20),
        }

    def realized_volatility(self, closes: list[float]) -> float:
        """Annualised standard deviation of log returns over ``volatility_period``."""
        cfg = self.mm_config
        if len(closes) < cfg.volatility_period + 1:
            return 0.0
        window = np.asarray(closes[-(cfg.volatility_period + 1):], dtype=float)
        if np.any(window <= 0):
            return 0.0
        returns = np.diff(np.log(window))
        return float(np.std(returns)) * math.sqrt(cfg.annualization_periods)

    @staticmethod
    def classify_volatility(volatility: float) -> str:
        if volatility < 0.20:
            return "LOW"
        if volatility < 0.40:
            return "NORMAL"
        if volatility < 0.60:
            return "HIGH"
        return "EXTREME"

    def analyze_trend(self, closes: list[float]) -> dict[str, Any]:
        """UPTREND/DOWNTREND when the normalised regression slope clears the threshold."""
        cfg = self.mm_config
        if len(closes) < cfg.trend_period:
            return {"direction": "NEUTRAL", "strength": 0.0, "slope": 0.0}

        recent = closes[-cfg.trend_period:]
        mean = sum(recent) / len(recent)
        slope = self._indicators.linear_regression_slope(recent) / mean if mean else 0.0

        direction = "NEUTRAL"
        strength = 0.0
        if slope > cfg.trend_threshold:
            direction = "UPTREND"
        elif slope < -cfg.trend_threshold:
            direction = "DOWNTREND"
        if direction != "NEUTRAL":
            strength = min(abs(slope) / (cfg.trend_threshold * 5), 1.0)

        return {"direction": direction, "strength": round(strength, 2), "slope": round(slope, 6)}

    def analyze_volume(self, bars: tuple[Bar, ...]) -> dict[str, Any]:
        cfg = self.mm_config
        ratio = self._indicators.volume_ratio(bars, cfg.volume_period)
        if ratio >= 1.5:
            liquidity = "HIGH"
        elif ratio >= cfg.min_volume_ratio:
            liquidity = "NORMAL"
        else:
            liquidity = "LOW"
        return {"volume_ratio": round(ratio, 2), "liquidity": liquidity}

    def assess_viability(self, conditions: dict[str, Any]) -> dict[str, Any]:
        """
        Score volatility (30), liquidity (40) and trend (30).

        Extreme volatility and low liquidity reject outright.

        Returns:
            is_viable flag, normalised score and reasons
        """
        regime = conditions["volatility_regime"]
        liquidity = conditions["volume"]["liquidity"]
        trend = conditions["trend"]
        reasons: list[str] = []

        if regime == "EXTREME":
            return {
                "is_viable": False,
                "score": 0.0,
                "reason": f"Volatility too high ({conditions['volatility']}) - circuit breaker",
            }
        if liquidity == "LOW":
            return {
                "is_viable": False,
                "score": 0.0,
                "reason": "Insufficient liquidity for market making",
            }

        score = 0.0
        if regime == "HIGH":
            score += 15
            reasons.append("Higher volatility - wider spreads required")
        else:
            score += 30

        score += 40 if liquidity == "HIGH" else 25

        if trend["direction"] == "NEUTRAL":
            score += 30
            reasons.append("Ranging market - ideal for market making")
        elif trend["strength"] < 0.5:
            score += 20
            reasons.append("Weak trend - acceptable for market making")
        else:
            score += 10
            reasons.append("Strong trend detected - will skew quotes")

        normalized = round(score / 100, 2)
        viable = normalized >= self.mm_config.min_viability
        return {
            "is_viable": viable,
            "score": normalized,
            "reason": ", ".join(reasons) if viable else "Market conditions not suitable",
            "reasons": reasons,
        }

    def current_inventory(self, snapshot: MarketSnapshot) -> dict[str, Any]:
        """
        Net open notional for the symbol as a share of the balance.

        Longs count positive and shorts negative.

        Args:
            snapshot: Market snapshot

        Returns:
            Inventory value, ratio and side flags
        """
        value = 0.0
        for trade in snapshot.open_positions:
            if trade.symbol != snapshot.symbol or not trade.is_open:
                continue
            sign = 1 if trade.side == TradeSide.LONG else -1
            value += sign * trade.notional

        balance = snapshot.account_balance
        ratio = value / balance if balance > 0 else 0.0
        return {
            "value": round(value, 2),
            "ratio": round(ratio, 3),
            "is_long": value > 0,
            "is_short": value < 0,
            "is_neutral": abs(ratio) < 0.05,
        }

    # =========================================================================
    # QUOTES
    # =========================================================================

    def optimal_spread(self, conditions: dict[str, Any], inventory: dict[str, Any]) -> dict[str, Any]:
        """Base spread scaled by volatility and trend, clamped, plus inventory skew."""
        cfg = self.mm_config
        spread = cfg.base_spread_pct
        if conditions["volatility_regime"] == "HIGH":
            spread *= cfg.volatility_multiplier
        elif conditions["volatility_regime"] == "EXTREME":
            spread *= cfg.volatility_multiplier * 2

        trend = conditions["trend"]
        if trend["direction"] != "NEUTRAL":
            spread *= 1 + trend["strength"] * 0.5

        spread = max(cfg.min_spread_pct, min(cfg.max_spread_pct, spread))
        skew = inventory["ratio"] * cfg.inventory_skew_multiplier * 10

        return {
            "base_spread": cfg.base_spread_pct,
            "effective_spread": round(spread, 6),
            "half_spread": round(spread / 2, 6),
            "inventory_skew": round(skew, 6),
        }

    @staticmethod
    def quote_prices(conditions: dict[str, Any], spread: dict[str, Any]) -> dict[str, Any]:
        """Bid and ask around mid; long inventory shifts both quotes down."""
        mid = conditions["current_price"]
        half = spread["half_spread"]
        skew = spread["inventory_skew"]

        bid = mid * (1 - half - skew)
        ask = mid * (1 + half - skew)
        if bid >= ask:
            average = (bid + ask) / 2
            bid, ask = average * 0.999, average * 1.001

        return {
            "mid_price": mid,
            "bid_price": round(bid, 2),
            "ask_price": round(ask, 2),
            "spread_dollars": round(ask - bid, 2),
            "spread_percent": round((ask - bid) / mid * 100, 3) if mid else 0.0,
        }

    def quoting_decision(
        self,
        quotes: dict[str, Any],
        conditions: dict[str, Any],
        inventory: dict[str, Any],
    ) -> dict[str, Any]:
        """Pick the side to favour: rebalance inventory first, then follow the trend."""
        reasons: list[str] = []

        if abs(inventory["ratio"]) > self.mm_config.max_inventory_ratio:
            favor = "SELL" if inventory["is_long"] else "BUY"
            reasons.append(f"Inventory management: favoring {favor} to rebalance")
            return {"favor_side": favor, "reasons": reasons}

        reasons.append("Normal market making mode")
        reasons.append(f"Quoting with spread: {quotes['spread_percent']}%")

        direction = conditions["trend"]["direction"]
        if inventory["is_long"]:
            favor = "SELL"
            reasons.append("Slight preference to SELL (long inventory)")
        elif inventory["is_short"]:
            favor = "BUY"
            reasons.append("Slight preference to BUY (short inventory)")
        elif direction == "UPTREND":
            favor = "BUY"
            reasons.append("Leaning BUY (uptrend detected)")
        elif direction == "DOWNTREND":
            favor = "SELL"
            reasons.append("Leaning SELL (downtrend detected)")
        else:
            favor = "NEUTRAL"
            reasons.append("Balanced quoting (neutral market)")

        return {"favor_side": favor, "reasons": reasons}

    # =========================================================================
    # SCORING
    # =========================================================================

    @staticmethod
    def _strength(
        conditions: dict[str, Any],
        viability: dict[str, Any],
        inventory: dict[str, Any],
    ) -> float:
        """Viability 40 + liquidity 30 + volatility 20 + neutral inventory 10."""
        strength = viability["score"] * 40
        liquidity = conditions["volume"]["liquidity"]
        if liquidity == "HIGH":
            strength += 30
        elif liquidity == "NORMAL":
            strength += 20

        if conditions["volatility_regime"] == "NORMAL":
            strength += 20
        elif conditions["volatility_regime"] == "LOW":
            strength += 15

        if inventory["is_neutral"]:
            strength += 10
        return round(min(strength, 100.0), 2)

    @staticmethod
    def _confidence(conditions: dict[str, Any], viability: dict[str, Any]) -> float:
        """Viability 40 + volatility 30 + liquidity 30."""
        confidence = viability["score"] * 40
        if conditions["volatility_regime"] in ("NORMAL", "LOW"):
            confidence += 30
        elif conditions["volatility_regime"] == "HIGH":
            confidence += 15

        liquidity = conditions["volume"]["liquidity"]
        if liquidity == "HIGH":
            confidence += 30
        elif liquidity == "NORMAL":
            confidence += 20
        return round(min(confidence, 100.0), 2)

    @staticmethod
    def _leverage(strength: float, confidence: float) -> int:
        """At most 2x; quoting is not a directional bet."""
        return 2 if (strength + confidence) / 2 >= 85 else 1

    # =========================================================================
    # RISK
    # =========================================================================

    def position_size(self, snapshot: MarketSnapshot, balance: float) -> float:
        """Fixed ``order_size_pct`` of the balance per quote."""
        cfg = self.mm_config
        price = snapshot.current_price(cfg.primary_timeframe)
        if price <= 0 or balance <= 0:
            return 0.0
        return round(balance * cfg.order_size_pct / price, 8)

    def stop_loss(
        self,
        entry: float,
        side: TradeSide,
        snapshot: MarketSnapshot,
        analysis: Optional[dict[str, Any]] = None,
    ) -> float:
        """Base stop widened by the measured volatility."""
        pct = self.mm_config.base_stop_pct
        if analysis is not None:
            pct *= 1 + analysis.get("volatility", 0.0)
        if side == TradeSide.LONG:
            return round(entry * (1 - pct), 2)
        return round(entry * (1 + pct), 2)

    def take_profit(
        self,
        entry: float,
        side: TradeSide,
        snapshot: MarketSnapshot,
        analysis: Optional[dict[str, Any]] = None,
    ) -> float:
        """One base spread from entry."""
        pct = self.mm_config.base_spread_pct
        if side == TradeSide.LONG:
            return round(entry * (1 + pct), 2)
        return round(entry * (1 - pct), 2)
