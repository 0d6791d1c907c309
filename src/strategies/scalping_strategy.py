"""
Scalping Strategy Module for Futures Trading Bot.

This module implements a high-frequency scalping strategy on one-minute
bars using fast EMAs, oscillator extremes and an order-flow proxy.
"""

import logging
from typing import Any, Optional

from pydantic import Field

from src.core.models import Bar, Direction, MarketSnapshot, Signal, TradeSide
from src.strategies.base_strategy import StrategyConfig, TradingStrategy


logger = logging.getLogger(__name__)


class ScalpingConfig(StrategyConfig):
    """Scalping strategy configuration."""

    name: str = Field(default="Scalping")
    min_bars: int = Field(default=20, ge=1)
    primary_timeframe: str = Field(default="1m")
    bias_timeframes: list[str] = Field(default_factory=lambda: ["5m", "15m"])
    fast_ema_period: int = Field(default=5, ge=2, le=50)
    slow_ema_period: int = Field(default=10, ge=3, le=100)
    trend_ema_period: int = Field(default=20, ge=5, le=200)
    stochastic_k: int = Field(default=14, ge=3, le=50)
    stochastic_d: int = Field(default=3, ge=1, le=10)
    stochastic_oversold: float = Field(default=20.0, ge=0.0, le=50.0)
    stochastic_overbought: float = Field(default=80.0, ge=50.0, le=100.0)
    rsi_period: int = Field(default=9, ge=2, le=50)
    rsi_oversold: float = Field(default=30.0, ge=0.0, le=50.0)
    rsi_overbought: float = Field(default=70.0, ge=50.0, le=100.0)
    momentum_period: int = Field(default=10, ge=2, le=100)
    volume_avg_period: int = Field(default=20, ge=5, le=100)
    min_liquidity_ratio: float = Field(default=1.5, ge=0.0, le=10.0)
    spread_threshold: float = Field(default=0.001, gt=0.0, le=0.05, description="Max bar range / close")
    order_flow_period: int = Field(default=5, ge=2, le=50)
    min_quality: float = Field(default=0.7, ge=0.0, le=1.0)
    target_profit_pct: float = Field(default=0.004, gt=0.0, le=0.1)
    stop_loss_pct: float = Field(default=0.003, gt=0.0, le=0.1)
    risk_per_trade: float = Field(default=0.01, gt=0.0, le=1.0)


# Weight of each long/short factor in the quality score; sums to 1.0
QUALITY_WEIGHTS = {
    "ema_cross": 0.20,
    "stochastic": 0.15,
    "rsi": 0.15,
    "order_flow": 0.20,
    "momentum": 0.10,
    "timeframe_bias": 0.15,
    "candle": 0.05,
}


class ScalpingStrategy(TradingStrategy):
    """
    Scalping trading strategy.

    Looks for micro setups on one-minute bars:
    - Fast EMA crossovers
    - Stochastic and fast RSI extremes
    - Order flow from close position within each bar's range
    - Liquidity gates on bar spread and volume
    - Bias from the 5m and 15m timeframes
    """

    def __init__(self, config: Optional[ScalpingConfig] = None, **kwargs: Any) -> None:
        """
        Initialize ScalpingStrategy.

        Args:
            config: Scalping strategy configuration
        """
        super().__init__(config or ScalpingConfig(), **kwargs)

    @property
    def sc_config(self) -> ScalpingConfig:
        """Get scalping specific config."""
        return self._config  # type: ignore

    def required_timeframes(self) -> list[str]:
        return [self.sc_config.primary_timeframe, *self.sc_config.bias_timeframes]

    def can_evaluate(self, snapshot: MarketSnapshot) -> bool:
        """Only the one-minute series needs history; bias timeframes are optional."""
        cfg = self.sc_config
        minimum = max(cfg.trend_ema_period, cfg.stochastic_k, cfg.volume_avg_period, cfg.min_bars)
        return len(snapshot.bars(cfg.primary_timeframe)) >= minimum

    def evaluate(self, snapshot: MarketSnapshot) -> Signal:
        """
        Evaluate scalping signals.

        Args:
            snapshot: Market snapshot

        Returns:
            BUY/SELL when the quality score clears ``min_quality``
        """
        cfg = self.sc_config
        if not snapshot.bars(cfg.primary_timeframe):
            return self.hold(snapshot, ["Insufficient data for scalping"])
        if not self.can_evaluate(snapshot):
            return self.hold(snapshot, ["Not enough historical data"])

        bars = snapshot.bars(cfg.primary_timeframe)
        analysis = self.micro_analysis(bars)
        microstructure = self.analyze_microstructure(bars)
        order_flow = self.analyze_order_flow(bars)
        liquidity = self.analyze_liquidity(bars)
        momentum = self.analyze_momentum(bars)
        bias = self.timeframe_bias(snapshot)

        opportunity = self.evaluate_opportunity(
            analysis, microstructure, order_flow, liquidity, momentum, bias
        )
        strength = self._strength(opportunity, liquidity, momentum)
        confidence = self._confidence(opportunity, microstructure, bias)

        metadata = {
            "analysis": analysis,
            "microstructure": microstructure,
            "order_flow": order_flow,
            "liquidity": liquidity,
            "momentum": momentum,
            "timeframe_bias": bias,
            "opportunity": opportunity,
            "max_hold_minutes": 5,
        }

        if opportunity["direction"] == "LONG":
            direction = Direction.BUY
        elif opportunity["direction"] == "SHORT":
            direction = Direction.SELL
        else:
            return self.hold(
                snapshot,
                [
                    "No high-quality scalping opportunity",
                    opportunity["status"],
                    f"Market microstructure: {microstructure['condition']}",
                ],
                metadata=metadata,
            )

        return self.directional_signal(
            snapshot,
            direction,
            strength,
            confidence,
            opportunity["reasons"],
            leverage=self.leverage_for(strength, confidence),
            entry_price=bars[-1].close,
            metadata=metadata,
        )

    # =========================================================================
    # ANALYSIS
    # =========================================================================

    def micro_analysis(self, bars: tuple[Bar, ...]) -> dict[str, Any]:
        """Fast EMA cross, trend, stochastic and fast RSI."""
        cfg = self.sc_config
        closes = [b.close for b in bars]
        price = closes[-1]

        fast = self._indicators.ema(closes, cfg.fast_ema_period)
        slow = self._indicators.ema(closes, cfg.slow_ema_period)
        trend_ema = self._indicators.ema(closes, cfg.trend_ema_period)
        prev_fast = self._indicators.ema(closes[:-1], cfg.fast_ema_period)
        prev_slow = self._indicators.ema(closes[:-1], cfg.slow_ema_period)
        stoch = self._indicators.stochastic(bars, cfg.stochastic_k, cfg.stochastic_d)
        rsi = self._indicators.rsi(closes, cfg.rsi_period)

        trend = "NEUTRAL"
        if price > trend_ema and fast > slow:
            trend = "BULLISH"
        elif price < trend_ema and fast < slow:
            trend = "BEARISH"

        return {
            "current_price": price,
            "fast_ema": fast,
            "slow_ema": slow,
            "trend_ema": trend_ema,
            "trend": trend,
            "stochastic_k": stoch.k,
            "stochastic_d": stoch.d,
            "rsi": rsi,
            "bullish_cross": prev_fast <= prev_slow and fast > slow,
            "bearish_cross": prev_fast >= prev_slow and fast < slow,
            "ema_distance": round((fast - slow) / slow * 100, 3) if slow else 0.0,
        }

    def analyze_microstructure(self, bars: tuple[Bar, ...]) -> dict[str, Any]:
        """Bar spread, body dominance and two-bar candle pattern."""
        if len(bars) < 3:
            return {"condition": "UNKNOWN", "spread": 0.0, "is_liquid": False,
                    "candle_pattern": "NONE", "price_action": "NEUTRAL"}

        prev, latest = bars[-2], bars[-1]
        spread = latest.range / latest.close if latest.close else 0.0
        is_liquid = spread <= self.sc_config.spread_threshold

        price_action = "NEUTRAL"
        body_ratio = latest.body / latest.range if latest.range > 0 else 0.0
        if latest.range > 0:
            if body_ratio > 0.7:
                price_action = "STRONG_BUYING" if latest.is_bullish else "STRONG_SELLING"
            elif body_ratio < 0.3:
                price_action = "INDECISION"

        return {
            "condition": "FAVORABLE" if is_liquid else "WIDE_SPREAD",
            "spread": round(spread * 100, 3),
            "is_liquid": is_liquid,
            "candle_pattern": self._micro_candle(prev, latest),
            "price_action": price_action,
            "body_ratio": round(body_ratio, 2),
        }

    def analyze_order_flow(self, bars: tuple[Bar, ...]) -> dict[str, Any]:
        """
        Volume-weighted buying and selling pressure.

        A close in the top 40% of the range counts as buying, in the
        bottom 40% as selling; candle colour adds half the volume again.

        Args:
            bars: Chronological bars

        Returns:
            BUYING/SELLING/NEUTRAL direction with its share of pressure
        """
        period = self.sc_config.order_flow_period
        if len(bars) < period:
            return {"direction": "NEUTRAL", "strength": 0.0}

        buying = 0.0
        selling = 0.0
        for bar in bars[-period:]:
            if bar.range == 0:
                continue
            position = (bar.close - bar.low) / bar.range
            if position > 0.6:
                buying += bar.volume
            elif position < 0.4:
                selling += bar.volume
            if bar.close > bar.open:
                buying += bar.volume * 0.5
            else:
                selling += bar.volume * 0.5

        total = buying + selling
        direction = "NEUTRAL"
        strength = 0.0
        if total > 0:
            if buying / total > 0.6:
                direction, strength = "BUYING", buying / total
            elif selling / total > 0.6:
                direction, strength = "SELLING", selling / total

        return {
            "direction": direction,
            "strength": round(strength, 2),
            "buying_pressure": round(buying, 2),
            "selling_pressure": round(selling, 2),
        }

    def analyze_liquidity(self, bars: tuple[Bar, ...]) -> dict[str, Any]:
        cfg = self.sc_config
        ratio = self._indicators.volume_ratio(bars, cfg.volume_avg_period)

        recent = [b.volume for b in bars[-cfg.volume_avg_period:]]
        half = len(recent) // 2
        first = sum(recent[:half]) / half if half else 0.0
        second = sum(recent[half:]) / (len(recent) - half) if len(recent) > half else 0.0
        trend = "STABLE"
        if first > 0 and second > first * 1.2:
            trend = "INCREASING"
        elif first > 0 and second < first * 0.8:
            trend = "DECREASING"

        return {
            "is_liquid": ratio >= cfg.min_liquidity_ratio,
            "volume_ratio": round(ratio, 2),
            "volume_trend": trend,
        }

    def analyze_momentum(self, bars: tuple[Bar, ...]) -> dict[str, Any]:
        """Rate of change over ``momentum_period`` bars in percent."""
        period = self.sc_config.momentum_period
        if len(bars) < period + 1:
            return {"value": 0.0, "direction": "NEUTRAL", "strength": 0.0}

        previous = bars[-1 - period].close
        value = (bars[-1].close - previous) / previous * 100 if previous else 0.0

        direction = "NEUTRAL"
        strength = 0.0
        if value > 0.1:
            direction, strength = "POSITIVE", min(abs(value) / 2, 100.0)
        elif value < -0.1:
            direction, strength = "NEGATIVE", min(abs(value) / 2, 100.0)

        return {"value": round(value, 3), "direction": direction, "strength": round(strength, 2)}

    def timeframe_bias(self, snapshot: MarketSnapshot) -> dict[str, Any]:
        """Price against EMA20 (with a 0.2% band) on the bias timeframes."""
        by_timeframe: dict[str, str] = {}
        for tf in self.sc_config.bias_timeframes:
            closes = snapshot.closes(tf)
            if not closes:
                continue
            ema20 = self._indicators.ema(closes, 20)
            price = closes[-1]
            if price > ema20 * 1.002:
                by_timeframe[tf] = "BULLISH"
            elif price < ema20 * 0.998:
                by_timeframe[tf] = "BEARISH"
            else:
                by_timeframe[tf] = "NEUTRAL"

        bullish = sum(1 for d in by_timeframe.values() if d == "BULLISH")
        bearish = sum(1 for d in by_timeframe.values() if d == "BEARISH")
        overall = "NEUTRAL"
        if bullish > bearish:
            overall = "BULLISH"
        elif bearish > bullish:
            overall = "BEARISH"

        return {"timeframes": by_timeframe, "overall": overall}

    def evaluate_opportunity(
        self,
        analysis: dict[str, Any],
        microstructure: dict[str, Any],
        order_flow: dict[str, Any],
        liquidity: dict[str, Any],
        momentum: dict[str, Any],
        bias: dict[str, Any],
    ) -> dict[str, Any]:
        """
        Weighted quality score for each side.

        Both liquidity gates must pass. The winning side needs at least
        ``min_quality`` and must beat the other side.

        Returns:
            Direction (LONG/SHORT/NONE), quality, reasons and status
        """
        cfg = self.sc_config
        opportunity: dict[str, Any] = {
            "direction": "NONE",
            "quality": 0.0,
            "reasons": [],
            "status": "Evaluating",
        }

        if not microstructure["is_liquid"]:
            opportunity["status"] = "Spread too wide - low liquidity"
            return opportunity
        if not liquidity["is_liquid"]:
            opportunity["status"] = "Insufficient volume"
            return opportunity

        w = QUALITY_WEIGHTS
        k, d = analysis["stochastic_k"], analysis["stochastic_d"]
        pattern = microstructure["candle_pattern"]

        long_quality = 0.0
        long_reasons: list[str] = []
        if analysis["bullish_cross"]:
            long_quality += w["ema_cross"]
            long_reasons.append("Fast EMA crossed above Slow EMA")
        if k < cfg.stochastic_oversold and k > d:
            long_quality += w["stochastic"]
            long_reasons.append(f"Stochastic oversold and turning up (K: {k})")
        if analysis["rsi"] < cfg.rsi_oversold:
            long_quality += w["rsi"]
            long_reasons.append(f"RSI oversold: {analysis['rsi']}")
        if order_flow["direction"] == "BUYING":
            long_quality += w["order_flow"]
            long_reasons.append(f"Strong buying pressure detected (strength: {order_flow['strength']})")
        if momentum["direction"] == "POSITIVE":
            long_quality += w["momentum"]
            long_reasons.append(f"Positive momentum: {momentum['value']}%")
        if bias["overall"] == "BULLISH":
            long_quality += w["timeframe_bias"]
            long_reasons.append("Higher timeframes bullish")
        if pattern in ("BULLISH_ENGULFING", "HAMMER"):
            long_quality += w["candle"]
            long_reasons.append(f"Bullish candle pattern: {pattern}")

        short_quality = 0.0
        short_reasons: list[str] = []
        if analysis["bearish_cross"]:
            short_quality += w["ema_cross"]
            short_reasons.append("Fast EMA crossed below Slow EMA")
        if k > cfg.stochastic_overbought and k < d:
            short_quality += w["stochastic"]
            short_reasons.append(f"Stochastic overbought and turning down (K: {k})")
        if analysis["rsi"] > cfg.rsi_overbought:
            short_quality += w["rsi"]
            short_reasons.append(f"RSI overbought: {analysis['rsi']}")
        if order_flow["direction"] == "SELLING":
            short_quality += w["order_flow"]
            short_reasons.append(f"Strong selling pressure detected (strength: {order_flow['strength']})")
        if momentum["direction"] == "NEGATIVE":
            short_quality += w["momentum"]
            short_reasons.append(f"Negative momentum: {momentum['value']}%")
        if bias["overall"] == "BEARISH":
            short_quality += w["timeframe_bias"]
            short_reasons.append("Higher timeframes bearish")
        if pattern in ("BEARISH_ENGULFING", "SHOOTING_STAR"):
            short_quality += w["candle"]
            short_reasons.append(f"Bearish candle pattern: {pattern}")

        long_quality = round(long_quality, 2)
        short_quality = round(short_quality, 2)

        if long_quality >= cfg.min_quality and long_quality > short_quality:
            opportunity.update(direction="LONG", quality=long_quality, reasons=long_reasons)
        elif short_quality >= cfg.min_quality and short_quality > long_quality:
            opportunity.update(direction="SHORT", quality=short_quality, reasons=short_reasons)
        else:
            opportunity["status"] = (
                f"No high-quality setup (Long: {long_quality}, Short: {short_quality})"
            )
        return opportunity

    # =========================================================================
    # SCORING
    # =========================================================================

    @staticmethod
    def _strength(
        opportunity: dict[str, Any],
        liquidity: dict[str, Any],
        momentum: dict[str, Any],
    ) -> float:
        """Quality 50 + liquidity 25 + momentum 25."""
        if opportunity["direction"] == "NONE":
            return 0.0
        strength = opportunity["quality"] * 50
        strength += min(liquidity["volume_ratio"] / 2, 1.0) * 25
        strength += min(momentum["strength"] / 100, 1.0) * 25
        return round(min(strength, 100.0), 2)

    @staticmethod
    def _confidence(
        opportunity: dict[str, Any],
        microstructure: dict[str, Any],
        bias: dict[str, Any],
    ) -> float:
        """Quality 50 + microstructure 25 + timeframe bias 25."""
        if opportunity["direction"] == "NONE":
            return 0.0
        confidence = opportunity["quality"] * 50

        if microstructure["is_liquid"] and microstructure["price_action"] != "INDECISION":
            confidence += 25
        elif microstructure["is_liquid"]:
            confidence += 15

        if (bias["overall"] == "BULLISH" and opportunity["direction"] == "LONG") or (
            bias["overall"] == "BEARISH" and opportunity["direction"] == "SHORT"
        ):
            confidence += 25
        elif bias["overall"] == "NEUTRAL":
            confidence += 10

        return round(min(confidence, 100.0), 2)

    @staticmethod
    def _micro_candle(prev: Bar, curr: Bar) -> str:
        if (prev.is_bearish and curr.is_bullish
                and curr.open < prev.close and curr.close > prev.open):
            return "BULLISH_ENGULFING"
        if (prev.is_bullish and curr.is_bearish
                and curr.open > prev.close and curr.close < prev.open):
            return "BEARISH_ENGULFING"

        upper_wick = curr.high - max(curr.open, curr.close)
        lower_wick = min(curr.open, curr.close) - curr.low
        if lower_wick > curr.body * 2 and upper_wick < curr.body * 0.5:
            return "HAMMER"
        if upper_wick > curr.body * 2 and lower_wick < curr.body * 0.5:
            return "SHOOTING_STAR"
        return "NONE"

    # =========================================================================
    # RISK
    # =========================================================================

    def position_size(self, snapshot: MarketSnapshot, balance: float) -> float:
        """Risk ``risk_per_trade`` of balance over the fixed scalping stop."""
        cfg = self.sc_config
        price = snapshot.current_price(cfg.primary_timeframe)
        if price <= 0 or balance <= 0:
            return 0.0
        return round(balance * cfg.risk_per_trade / (price * cfg.stop_loss_pct), 8)

    def stop_loss(
        self,
        entry: float,
        side: TradeSide,
        snapshot: MarketSnapshot,
        analysis: Optional[dict[str, Any]] = None,
    ) -> float:
        pct = self.sc_config.stop_loss_pct
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
        pct = self.sc_config.target_profit_pct
        if side == TradeSide.LONG:
            return round(entry * (1 + pct), 2)
        return round(entry * (1 - pct), 2)
