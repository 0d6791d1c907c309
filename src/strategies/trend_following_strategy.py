"""
Trend Following Strategy Module for Futures Trading Bot.

This module implements a multi-timeframe trend following strategy that
enters when EMA direction, ADX strength and higher timeframes agree.
"""

import logging
from typing import Any, Optional

from pydantic import Field

from src.core.models import Bar, Direction, MarketSnapshot, Signal, TradeSide
from src.strategies.base_strategy import StrategyConfig, TradingStrategy


logger = logging.getLogger(__name__)


BULLISH = "BULLISH"
BEARISH = "BEARISH"
NEUTRAL = "NEUTRAL"


class TrendFollowingConfig(StrategyConfig):
    """Trend following strategy configuration."""

    name: str = Field(default="TrendFollowing")
    min_bars: int = Field(default=26, ge=1)
    fast_ema_period: int = Field(default=12, ge=2, le=100)
    slow_ema_period: int = Field(default=26, ge=5, le=200)
    trend_ema_period: int = Field(default=200, ge=20, le=500)
    adx_period: int = Field(default=14, ge=5, le=50)
    min_adx: float = Field(default=25.0, ge=0.0, le=100.0)
    min_alignment: float = Field(default=0.75, ge=0.0, le=1.0)
    stop_loss_pct: float = Field(default=0.02, gt=0.0, le=0.5)
    risk_reward_ratio: float = Field(default=2.0, gt=0.0)
    timeframes: list[str] = Field(default_factory=lambda: ["5m", "15m", "30m", "1h"])


class TrendFollowingStrategy(TradingStrategy):
    """
    Trend following trading strategy.

    Identifies and follows trends using:
    - Fast/slow EMA direction
    - Long EMA trend filter when enough history exists
    - ADX for trend strength
    - MACD histogram for momentum
    - Majority alignment across all analysed timeframes
    """

    def __init__(self, config: Optional[TrendFollowingConfig] = None, **kwargs: Any) -> None:
        """
        Initialize TrendFollowingStrategy.

        Args:
            config: Trend following strategy configuration
        """
        super().__init__(config or TrendFollowingConfig(), **kwargs)

    @property
    def tf_config(self) -> TrendFollowingConfig:
        """Get trend following specific config."""
        return self._config  # type: ignore

    def required_timeframes(self) -> list[str]:
        return list(self.tf_config.timeframes)

    def evaluate(self, snapshot: MarketSnapshot) -> Signal:
        """
        Evaluate trend following signals.

        Args:
            snapshot: Market snapshot

        Returns:
            BUY/SELL when the primary timeframe trends with enough alignment
        """
        if not self.can_evaluate(snapshot):
            return self.hold(snapshot, ["Insufficient data across required timeframes"])

        cfg = self.tf_config
        primary = snapshot.primary_timeframe
        trends = {
            tf: self.analyze_timeframe(snapshot.bars(tf))
            for tf in snapshot.timeframes
            if snapshot.bars(tf)
        }
        current = trends.get(primary)
        if current is None:
            return self.hold(snapshot, [f"No data for primary timeframe {primary}"])

        bullish_alignment, bearish_alignment = self.alignment(trends)
        max_alignment = max(bullish_alignment, bearish_alignment)

        strength = self._strength(current, max_alignment)
        confidence = self._confidence(current, max_alignment)
        analysis = {
            "timeframes": trends,
            "bullish_alignment": round(bullish_alignment, 2),
            "bearish_alignment": round(bearish_alignment, 2),
        }

        if current["trend"] == BULLISH and bullish_alignment >= cfg.min_alignment:
            direction = Direction.BUY
            reasons = [
                "Strong bullish trend detected across multiple timeframes",
                f"ADX: {current['adx']} (strong trend)",
                f"Fast EMA ({current['fast_ema']}) above Slow EMA ({current['slow_ema']})",
                f"Timeframe alignment: {bullish_alignment * 100:.0f}%",
            ]
        elif current["trend"] == BEARISH and bearish_alignment >= cfg.min_alignment:
            direction = Direction.SELL
            reasons = [
                "Strong bearish trend detected across multiple timeframes",
                f"ADX: {current['adx']} (strong trend)",
                f"Fast EMA ({current['fast_ema']}) below Slow EMA ({current['slow_ema']})",
                f"Timeframe alignment: {bearish_alignment * 100:.0f}%",
            ]
        else:
            return self.hold(
                snapshot,
                ["No strong trend signal detected", "Waiting for better setup"],
                strength=strength,
                confidence=confidence,
                metadata=analysis,
            )

        if current["histogram"] > 0 and direction == Direction.BUY:
            reasons.append("MACD histogram positive")
        elif current["histogram"] < 0 and direction == Direction.SELL:
            reasons.append("MACD histogram negative")

        return self.directional_signal(
            snapshot,
            direction,
            strength,
            confidence,
            reasons,
            leverage=self.leverage_for(strength, confidence),
            analysis=analysis,
            metadata=analysis,
        )

    def analyze_timeframe(self, bars: tuple[Bar, ...]) -> dict[str, Any]:
        """
        Classify the trend of one timeframe.

        Args:
            bars: Chronological bars

        Returns:
            Indicator values and the BULLISH/BEARISH/NEUTRAL trend
        """
        cfg = self.tf_config
        closes = [b.close for b in bars]
        price = closes[-1]

        fast = self._indicators.ema(closes, cfg.fast_ema_period)
        slow = self._indicators.ema(closes, cfg.slow_ema_period)
        adx = self._indicators.adx(bars, cfg.adx_period)
        macd = self._indicators.macd(closes)

        # The long filter only means something with a full window of history
        trend_ema: Optional[float] = None
        if len(closes) >= cfg.trend_ema_period:
            trend_ema = self._indicators.ema(closes, cfg.trend_ema_period)

        above_filter = trend_ema is None or price > trend_ema
        below_filter = trend_ema is None or price < trend_ema

        trend = NEUTRAL
        if fast > slow and above_filter and adx > cfg.min_adx:
            trend = BULLISH
        elif fast < slow and below_filter and adx > cfg.min_adx:
            trend = BEARISH

        return {
            "price": price,
            "fast_ema": fast,
            "slow_ema": slow,
            "trend_ema": trend_ema,
            "adx": adx,
            "histogram": macd.histogram,
            "trend": trend,
        }

    @staticmethod
    def alignment(trends: dict[str, dict[str, Any]]) -> tuple[float, float]:
        """Share of timeframes trending bullish and bearish."""
        if not trends:
            return 0.0, 0.0
        total = len(trends)
        bullish = sum(1 for t in trends.values() if t["trend"] == BULLISH)
        bearish = sum(1 for t in trends.values() if t["trend"] == BEARISH)
        return bullish / total, bearish / total

    def _strength(self, current: dict[str, Any], alignment: float) -> float:
        """ADX 40 + alignment 30 + MACD momentum 30."""
        strength = min(current["adx"], 100.0) * 0.4
        strength += alignment * 30
        strength += min(abs(current["histogram"]) * 10, 30.0)
        return round(min(strength, 100.0), 2)

    def _confidence(self, current: dict[str, Any], alignment: float) -> float:
        """ADX tier 30 + alignment 50 + primary trend 20."""
        confidence = 0.0
        if current["adx"] > 40:
            confidence += 30
        elif current["adx"] > self.tf_config.min_adx:
            confidence += 20
        confidence += alignment * 50
        if current["trend"] != NEUTRAL:
            confidence += 20
        return round(min(confidence, 100.0), 2)

    def stop_loss(
        self,
        entry: float,
        side: TradeSide,
        snapshot: MarketSnapshot,
        analysis: Optional[dict[str, Any]] = None,
    ) -> float:
        pct = self.tf_config.stop_loss_pct
        if side == TradeSide.LONG:
            return round(entry * (1 - pct), 2)
        return round(entry * (1 + pct), 2)
