"""
Mean Reversion Strategy Module for Futures Trading Bot.

This module implements a mean reversion strategy that fades statistical
extremes (Bollinger %B, RSI, Z-score) in ranging markets.
"""

import logging
from typing import Any, Optional

from pydantic import Field

from src.core.models import Bar, Direction, MarketSnapshot, Signal, TradeSide
from src.strategies.base_strategy import StrategyConfig, TradingStrategy


logger = logging.getLogger(__name__)


class MeanReversionConfig(StrategyConfig):
    """Mean reversion strategy configuration."""

    name: str = Field(default="MeanReversion")
    min_bars: int = Field(default=50, ge=1)
    bb_period: int = Field(default=20, ge=5, le=100)
    bb_std_dev: float = Field(default=2.0, ge=1.0, le=4.0)
    rsi_period: int = Field(default=14, ge=5, le=50)
    rsi_oversold: float = Field(default=30.0, ge=5.0, le=50.0)
    rsi_overbought: float = Field(default=70.0, ge=50.0, le=95.0)
    volume_avg_period: int = Field(default=20, ge=5, le=100)
    volume_spike_multiplier: float = Field(default=1.5, ge=1.0, le=10.0)
    zscore_period: int = Field(default=20, ge=5, le=100)
    zscore_extreme: float = Field(default=2.0, ge=1.0, le=5.0)
    mean_period: int = Field(default=50, ge=10, le=200)
    regime_period: int = Field(default=50, ge=10, le=200)
    trend_threshold: float = Field(default=0.02, gt=0.0, le=1.0)
    max_trend_strength: float = Field(default=0.7, ge=0.0, le=1.0)
    min_condition_score: float = Field(default=0.75, ge=0.0, le=1.0)
    fallback_stop_pct: float = Field(default=0.025, gt=0.0, le=0.5)
    risk_reward_ratio: float = Field(default=1.5, gt=0.0)
    risk_per_trade: float = Field(default=0.015, gt=0.0, le=1.0)
    timeframes: list[str] = Field(default_factory=lambda: ["5m", "15m", "30m", "1h"])


class MeanReversionStrategy(TradingStrategy):
    """
    Mean reversion trading strategy.

    Buys statistical oversold extremes and sells overbought ones:
    - Bollinger %B and band width
    - RSI extremes
    - Z-score of price against its rolling mean
    - Volume spikes and reversal candles as confirmation
    - Regime filter that stands aside in strong trends
    """

    def __init__(self, config: Optional[MeanReversionConfig] = None, **kwargs: Any) -> None:
        """
        Initialize MeanReversionStrategy.

        Args:
            config: Mean reversion strategy configuration
        """
        super().__init__(config or MeanReversionConfig(), **kwargs)

    @property
    def mr_config(self) -> MeanReversionConfig:
        """Get mean reversion specific config."""
        return self._config  # type: ignore

    def required_timeframes(self) -> list[str]:
        return list(self.mr_config.timeframes)

    def evaluate(self, snapshot: MarketSnapshot) -> Signal:
        """
        Evaluate mean reversion signals.

        Args:
            snapshot: Market snapshot

        Returns:
            BUY at oversold extremes, SELL at overbought extremes, else HOLD
        """
        if not self.can_evaluate(snapshot):
            return self.hold(snapshot, ["Insufficient market data"])

        cfg = self.mr_config
        bars = snapshot.bars()

        regime = self.detect_market_regime(bars)
        if regime["type"] == "TRENDING" and regime["strength"] > cfg.max_trend_strength:
            return self.hold(
                snapshot,
                ["Strong trending market detected - mean reversion not suitable"],
                metadata={"market_regime": regime},
            )

        analysis = self.analyze(bars)
        higher = self.analyze_timeframes(snapshot)

        strength = self._strength(analysis, regime)
        confidence = self._confidence(analysis, higher, regime)
        long_score, long_reasons = self._long_conditions(analysis, higher)
        short_score, short_reasons = self._short_conditions(analysis, higher)

        metadata = {
            "analysis": analysis,
            "market_regime": regime,
            "timeframe_conditions": higher,
            "long_conditions_score": long_score,
            "short_conditions_score": short_score,
        }

        if long_score >= cfg.min_condition_score:
            direction, reasons = Direction.BUY, long_reasons
        elif short_score >= cfg.min_condition_score:
            direction, reasons = Direction.SELL, short_reasons
        else:
            return self.hold(
                snapshot,
                [
                    "No extreme deviation detected",
                    "Waiting for statistical extreme",
                    f"Market regime: {regime['type']} (strength: {regime['strength']})",
                ],
                strength=strength,
                confidence=confidence,
                metadata=metadata,
            )

        return self.directional_signal(
            snapshot,
            direction,
            strength,
            confidence,
            reasons,
            leverage=self._leverage(strength, confidence, regime),
            analysis=analysis,
            metadata=metadata,
        )

    # =========================================================================
    # ANALYSIS
    # =========================================================================

    def analyze(self, bars: tuple[Bar, ...]) -> dict[str, Any]:
        """
        Deviation, volume and candle analysis of the primary timeframe.

        Args:
            bars: Chronological bars

        Returns:
            Analysis dictionary
        """
        cfg = self.mr_config
        closes = [b.close for b in bars]
        price = closes[-1]

        bands = self._indicators.bollinger_bands(closes, cfg.bb_period, cfg.bb_std_dev)
        rsi = self._indicators.rsi(closes, cfg.rsi_period)
        z_score = self._indicators.z_score(closes, cfg.zscore_period)
        volume_ratio = self._indicators.volume_ratio(bars, cfg.volume_avg_period)

        mean = self._indicators.sma(closes, cfg.mean_period)

        return {
            "current_price": price,
            "bollinger_upper": bands.upper,
            "bollinger_middle": bands.middle,
            "bollinger_lower": bands.lower,
            "bb_width": round(bands.bandwidth, 4),
            "percent_b": round(bands.percent_b, 4),
            "rsi": rsi,
            "z_score": round(z_score, 2),
            "volume_ratio": round(volume_ratio, 2),
            "volume_spike": volume_ratio >= cfg.volume_spike_multiplier,
            "distance_from_mean": round((price - mean) / mean * 100, 2) if mean else 0.0,
            "price_action": self.analyze_price_action(bars),
            "volatility_regime": self.classify_volatility(bands.bandwidth),
        }

    def detect_market_regime(self, bars: tuple[Bar, ...]) -> dict[str, Any]:
        """
        Classify the market as RANGING or TRENDING from the regression slope.

        The slope is normalised by the mean price; beyond
        ``trend_threshold`` the market is trending.

        Args:
            bars: Chronological bars

        Returns:
            Regime type, strength in [0, 1] and slope
        """
        cfg = self.mr_config
        if len(bars) < cfg.regime_period:
            return {"type": "UNKNOWN", "strength": 0.0, "slope": 0.0}

        recent = [b.close for b in bars[-cfg.regime_period:]]
        slope = self._indicators.linear_regression_slope(recent)
        mean = sum(recent) / len(recent)
        normalized = abs(slope) / mean if mean else 0.0
        low = min(recent)

        if normalized > cfg.trend_threshold:
            regime_type = "TRENDING"
            strength = min(normalized / cfg.trend_threshold, 1.0)
        else:
            regime_type = "RANGING"
            strength = 1 - normalized / cfg.trend_threshold

        return {
            "type": regime_type,
            "strength": round(strength, 2),
            "slope": round(slope, 6),
            "range": round((max(recent) - low) / low * 100, 2) if low else 0.0,
        }

    def analyze_timeframes(self, snapshot: MarketSnapshot) -> dict[str, dict[str, Any]]:
        """OVERSOLD/OVERBOUGHT/NEUTRAL condition for every analysed timeframe."""
        cfg = self.mr_config
        conditions: dict[str, dict[str, Any]] = {}
        for tf in snapshot.timeframes:
            closes = snapshot.closes(tf)
            if not closes:
                continue

            bands = self._indicators.bollinger_bands(closes, cfg.bb_period, cfg.bb_std_dev)
            rsi = self._indicators.rsi(closes, cfg.rsi_period)

            condition = "NEUTRAL"
            if bands.percent_b < 0.2 and rsi < cfg.rsi_oversold:
                condition = "OVERSOLD"
            elif bands.percent_b > 0.8 and rsi > cfg.rsi_overbought:
                condition = "OVERBOUGHT"

            conditions[tf] = {
                "percent_b": round(bands.percent_b, 2),
                "rsi": rsi,
                "condition": condition,
            }
        return conditions

    def analyze_price_action(self, bars: tuple[Bar, ...]) -> dict[str, Any]:
        """Reversal candle on the last three bars, bullish patterns first."""
        if len(bars) < 3:
            return {"pattern": "UNKNOWN", "reversal_signal": False, "direction": "NEUTRAL"}

        first, prev, curr = bars[-3], bars[-2], bars[-1]

        pattern = "NONE"
        direction = "NEUTRAL"
        if self._is_engulfing(prev, curr, bullish=True):
            pattern, direction = "BULLISH_ENGULFING", "BULLISH"
        elif self._is_hammer(curr):
            pattern, direction = "HAMMER", "BULLISH"
        elif self._is_star_doji(first, prev, curr, morning=True):
            pattern, direction = "MORNING_STAR_DOJI", "BULLISH"
        elif self._is_engulfing(prev, curr, bullish=False):
            pattern, direction = "BEARISH_ENGULFING", "BEARISH"
        elif self._is_shooting_star(curr):
            pattern, direction = "SHOOTING_STAR", "BEARISH"
        elif self._is_star_doji(first, prev, curr, morning=False):
            pattern, direction = "EVENING_STAR_DOJI", "BEARISH"

        return {
            "pattern": pattern,
            "reversal_signal": direction != "NEUTRAL",
            "direction": direction,
            "body_size": curr.body,
        }

    @staticmethod
    def classify_volatility(bandwidth: float) -> str:
        if bandwidth < 0.02:
            return "LOW"
        if bandwidth < 0.04:
            return "NORMAL"
        if bandwidth < 0.06:
            return "HIGH"
        return "EXTREME"

    # =========================================================================
    # SCORING
    # =========================================================================

    def _long_conditions(
        self,
        analysis: dict[str, Any],
        higher: dict[str, dict[str, Any]],
    ) -> tuple[float, list[str]]:
        """Normalised oversold score out of 100 points with reasons."""
        cfg = self.mr_config
        score = 0.0
        reasons: list[str] = []

        if analysis["percent_b"] < 0.2:
            score += 25
            reasons.append(f"Price near lower Bollinger Band (%B: {analysis['percent_b']})")
        elif analysis["percent_b"] < 0.3:
            score += 15
            reasons.append(f"Price approaching lower Bollinger Band (%B: {analysis['percent_b']})")

        if analysis["rsi"] < cfg.rsi_oversold:
            score += 20
            reasons.append(f"RSI oversold: {analysis['rsi']}")
        elif analysis["rsi"] < cfg.rsi_oversold + 5:
            score += 10
            reasons.append(f"RSI approaching oversold: {analysis['rsi']}")

        if analysis["z_score"] < -cfg.zscore_extreme:
            score += 20
            reasons.append(f"Extreme negative Z-Score: {analysis['z_score']} (statistical oversold)")
        elif analysis["z_score"] < -1.5:
            score += 10
            reasons.append(f"Negative Z-Score: {analysis['z_score']}")

        if analysis["volume_spike"]:
            score += 15
            reasons.append(f"Volume spike detected ({analysis['volume_ratio']}x average)")

        action = analysis["price_action"]
        if action["reversal_signal"] and action["direction"] == "BULLISH":
            score += 10
            reasons.append(f"Bullish reversal pattern: {action['pattern']}")

        score += self._timeframe_bonus(higher, "OVERSOLD", "oversold", reasons)
        return round(score / 100, 2), reasons

    def _short_conditions(
        self,
        analysis: dict[str, Any],
        higher: dict[str, dict[str, Any]],
    ) -> tuple[float, list[str]]:
        """Mirror of ``_long_conditions`` for overbought extremes."""
        cfg = self.mr_config
        score = 0.0
        reasons: list[str] = []

        if analysis["percent_b"] > 0.8:
            score += 25
            reasons.append(f"Price near upper Bollinger Band (%B: {analysis['percent_b']})")
        elif analysis["percent_b"] > 0.7:
            score += 15
            reasons.append(f"Price approaching upper Bollinger Band (%B: {analysis['percent_b']})")

        if analysis["rsi"] > cfg.rsi_overbought:
            score += 20
            reasons.append(f"RSI overbought: {analysis['rsi']}")
        elif analysis["rsi"] > cfg.rsi_overbought - 5:
            score += 10
            reasons.append(f"RSI approaching overbought: {analysis['rsi']}")

        if analysis["z_score"] > cfg.zscore_extreme:
            score += 20
            reasons.append(f"Extreme positive Z-Score: {analysis['z_score']} (statistical overbought)")
        elif analysis["z_score"] > 1.5:
            score += 10
            reasons.append(f"Positive Z-Score: {analysis['z_score']}")

        if analysis["volume_spike"]:
            score += 15
            reasons.append(f"Volume spike detected ({analysis['volume_ratio']}x average)")

        action = analysis["price_action"]
        if action["reversal_signal"] and action["direction"] == "BEARISH":
            score += 10
            reasons.append(f"Bearish reversal pattern: {action['pattern']}")

        score += self._timeframe_bonus(higher, "OVERBOUGHT", "overbought", reasons)
        return round(score / 100, 2), reasons

    @staticmethod
    def _timeframe_bonus(
        higher: dict[str, dict[str, Any]],
        condition: str,
        label: str,
        reasons: list[str],
    ) -> float:
        """Up to 10 points for timeframes sharing the extreme."""
        if not higher:
            return 0.0
        matching = sum(1 for data in higher.values() if data["condition"] == condition)
        ratio = matching / len(higher)
        if ratio >= 0.5:
            reasons.append(f"Higher timeframes confirming {label} ({matching}/{len(higher)})")
        return ratio * 10

    def _strength(self, analysis: dict[str, Any], regime: dict[str, Any]) -> float:
        """Deviation 40 + ranging regime 30 + volume 15 + reversal 15."""
        strength = min(abs(analysis["z_score"]) / 3 * 15, 15.0)
        strength += min(abs(analysis["percent_b"] - 0.5) / 0.5 * 15, 15.0)
        strength += min(abs(analysis["rsi"] - 50) / 50 * 10, 10.0)

        if regime["type"] == "RANGING":
            strength += regime["strength"] * 30
        if analysis["volume_spike"]:
            strength += min(analysis["volume_ratio"] * 5, 15.0)
        if analysis["price_action"]["reversal_signal"]:
            strength += 15

        return round(min(strength, 100.0), 2)

    def _confidence(
        self,
        analysis: dict[str, Any],
        higher: dict[str, dict[str, Any]],
        regime: dict[str, Any],
    ) -> float:
        """Regime 35 + Z-score 20 + band extreme 10 + alignment 25 + confirmation 10."""
        confidence = 0.0
        if regime["type"] == "RANGING":
            confidence += regime["strength"] * 35

        z = abs(analysis["z_score"])
        if z > 2:
            confidence += 20
        elif z > 1.5:
            confidence += 10

        if analysis["percent_b"] < 0.2 or analysis["percent_b"] > 0.8:
            confidence += 10

        if higher:
            extremes = sum(1 for data in higher.values() if data["condition"] != "NEUTRAL")
            confidence += extremes / len(higher) * 25

        if analysis["price_action"]["reversal_signal"] and analysis["volume_spike"]:
            confidence += 10

        return round(min(confidence, 100.0), 2)

    def _leverage(self, strength: float, confidence: float, regime: dict[str, Any]) -> int:
        """Conservative ladder capped at 3x, discounted in trends."""
        average = (strength + confidence) / 2
        if regime["type"] == "TRENDING":
            average *= 0.7
        if average >= 85:
            return 3
        if average >= 75:
            return 2
        return 1

    # =========================================================================
    # CANDLES
    # =========================================================================

    @staticmethod
    def _is_engulfing(prev: Bar, curr: Bar, bullish: bool) -> bool:
        if curr.body <= prev.body:
            return False
        if bullish:
            return (prev.is_bearish and curr.is_bullish
                    and curr.open < prev.close and curr.close > prev.open)
        return (prev.is_bullish and curr.is_bearish
                and curr.open > prev.close and curr.close < prev.open)

    @staticmethod
    def _is_hammer(bar: Bar) -> bool:
        lower_wick = min(bar.open, bar.close) - bar.low
        upper_wick = bar.high - max(bar.open, bar.close)
        return bar.body > 0 and lower_wick > bar.body * 2 and upper_wick < bar.body * 0.3

    @staticmethod
    def _is_shooting_star(bar: Bar) -> bool:
        lower_wick = min(bar.open, bar.close) - bar.low
        upper_wick = bar.high - max(bar.open, bar.close)
        return bar.body > 0 and upper_wick > bar.body * 2 and lower_wick < bar.body * 0.3

    @staticmethod
    def _is_star_doji(first: Bar, second: Bar, third: Bar, morning: bool) -> bool:
        doji = second.body < second.range * 0.1
        if morning:
            return first.is_bearish and doji and third.is_bullish
        return first.is_bullish and doji and third.is_bearish

    # =========================================================================
    # RISK
    # =========================================================================

    def position_size(self, snapshot: MarketSnapshot, balance: float) -> float:
        """Risk ``risk_per_trade`` of balance over half the band width."""
        cfg = self.mr_config
        price = snapshot.current_price()
        if price <= 0 or balance <= 0:
            return 0.0

        bands = self._indicators.bollinger_bands(snapshot.closes(), cfg.bb_period, cfg.bb_std_dev)
        distance = (bands.upper - bands.lower) / 2
        if distance <= 0:
            distance = price * 0.02
        return round(balance * cfg.risk_per_trade / distance, 8)

    def stop_loss(
        self,
        entry: float,
        side: TradeSide,
        snapshot: MarketSnapshot,
        analysis: Optional[dict[str, Any]] = None,
    ) -> float:
        """
        Beyond the outer band by 20% of the half band.

        Falls back to a fixed percentage without analysis, or when price
        has already closed past the band stop.
        """
        if analysis is not None:
            middle = analysis["bollinger_middle"]
            if side == TradeSide.LONG:
                lower = analysis["bollinger_lower"]
                stop = round(lower - (middle - lower) * 0.2, 2)
                if stop < entry:
                    return stop
            else:
                upper = analysis["bollinger_upper"]
                stop = round(upper + (upper - middle) * 0.2, 2)
                if stop > entry:
                    return stop

        pct = self.mr_config.fallback_stop_pct
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
        """The middle band, or the reward/risk multiple without analysis."""
        if analysis is not None:
            return round(analysis["bollinger_middle"], 2)
        return super().take_profit(entry, side, snapshot, analysis)
