"""
Breakout Strategy Module for Futures Trading Bot.

This module implements a breakout strategy that trades confirmed breaks
of support and resistance after a consolidation or volatility squeeze.
"""

import logging
import math
from typing import Any, Optional

import numpy as np
from pydantic import Field

from src.analysis.pattern_recognition import ChartPattern, PatternDirection, PriceLevel
from src.core.models import Bar, Direction, MarketSnapshot, Signal, TradeSide
from src.strategies.base_strategy import StrategyConfig, TradingStrategy


logger = logging.getLogger(__name__)


BULLISH_BREAKOUT = "BULLISH_BREAKOUT"
BEARISH_BREAKDOWN = "BEARISH_BREAKDOWN"


class BreakoutConfig(StrategyConfig):
    """Breakout strategy configuration."""

    name: str = Field(default="Breakout")
    min_bars: int = Field(default=50, ge=1)
    consolidation_period: int = Field(default=20, ge=5, le=200)
    consolidation_threshold_pct: float = Field(default=1.5, gt=0.0, le=20.0)
    volume_multiplier: float = Field(default=2.0, ge=1.0, le=10.0)
    volume_avg_period: int = Field(default=20, ge=5, le=100)
    atr_period: int = Field(default=14, ge=5, le=50)
    atr_expansion: float = Field(default=1.3, ge=1.0, le=5.0)
    level_lookback: int = Field(default=50, ge=20, le=500)
    level_tolerance: float = Field(default=0.003, gt=0.0, le=0.05)
    level_strength: int = Field(default=3, ge=1, le=10)
    bb_period: int = Field(default=20, ge=5, le=100)
    bb_std_dev: float = Field(default=2.0, ge=1.0, le=4.0)
    squeeze_threshold: float = Field(default=0.02, gt=0.0, le=0.5)
    breakout_threshold_pct: float = Field(default=0.5, ge=0.0, le=5.0)
    max_break_distance_pct: float = Field(default=2.0, gt=0.0, le=10.0)
    min_confirmations: int = Field(default=3, ge=1, le=5)
    risk_reward_ratio: float = Field(default=2.5, gt=0.0)
    risk_per_trade: float = Field(default=0.025, gt=0.0, le=1.0)
    timeframes: list[str] = Field(default_factory=lambda: ["5m", "15m", "30m", "1h"])


class BreakoutStrategy(TradingStrategy):
    """
    Breakout trading strategy.

    A break only counts after a quiet phase (tight range or Bollinger
    squeeze) and needs enough of five confirmations:
    - Volume spike
    - ATR expansion
    - Squeeze release
    - Strong level (many touches)
    - Clean break margin
    """

    MAX_CONFIRMATIONS = 5

    def __init__(self, config: Optional[BreakoutConfig] = None, **kwargs: Any) -> None:
        """
        Initialize BreakoutStrategy.

        Args:
            config: Breakout strategy configuration
        """
        super().__init__(config or BreakoutConfig(), **kwargs)

    @property
    def bo_config(self) -> BreakoutConfig:
        """Get breakout specific config."""
        return self._config  # type: ignore

    def required_timeframes(self) -> list[str]:
        return list(self.bo_config.timeframes)

    def evaluate(self, snapshot: MarketSnapshot) -> Signal:
        """
        Evaluate breakout signals.

        Args:
            snapshot: Market snapshot

        Returns:
            BUY on a confirmed resistance break, SELL on a confirmed
            support break, else HOLD
        """
        if not self.can_evaluate(snapshot):
            return self.hold(snapshot, ["Insufficient data for breakout analysis"])

        bars = snapshot.bars()
        consolidation = self.analyze_consolidation(bars)
        levels = self.identify_levels(bars)
        volume = self.analyze_volume(bars)
        volatility = self.analyze_volatility(bars)
        patterns = self.detect_chart_patterns(bars)
        higher = self.analyze_timeframes(snapshot)

        breakout = self.detect_breakout(bars[-1].close, consolidation, levels, volume, volatility)
        strength = self._strength(breakout, patterns, volume, volatility)
        confidence = self._confidence(breakout, higher, patterns)

        metadata = {
            "consolidation": consolidation,
            "breakout": breakout,
            "volume": volume,
            "volatility": volatility,
            "patterns": [p.pattern_type.value for p in patterns],
            "timeframe_trends": higher,
        }

        if breakout["confirmed"] and breakout["type"] == BULLISH_BREAKOUT:
            direction = Direction.BUY
        elif breakout["confirmed"] and breakout["type"] == BEARISH_BREAKDOWN:
            direction = Direction.SELL
        else:
            reasons = ["No confirmed breakout detected", breakout["status"]]
            if patterns:
                reasons.append(
                    "Pattern forming: " + ", ".join(p.pattern_type.value for p in patterns)
                )
            return self.hold(snapshot, reasons, metadata=metadata)

        return self.directional_signal(
            snapshot,
            direction,
            strength,
            confidence,
            breakout["reasons"],
            leverage=self._leverage(strength, confidence, breakout),
            analysis=breakout,
            metadata=metadata,
        )

    # =========================================================================
    # ANALYSIS
    # =========================================================================

    def analyze_consolidation(self, bars: tuple[Bar, ...]) -> dict[str, Any]:
        """
        Range and squeeze state of the bars before the latest one.

        Args:
            bars: Chronological bars

        Returns:
            Range, range percentage, band width and flags
        """
        cfg = self.bo_config
        base = bars[:-1]
        window = base[-cfg.consolidation_period:]
        high = max(b.high for b in window)
        low = min(b.low for b in window)
        range_pct = (high - low) / low * 100 if low > 0 else 0.0

        bands = self._indicators.bollinger_bands(
            [b.close for b in base], cfg.bb_period, cfg.bb_std_dev
        )

        return {
            "range_high": high,
            "range_low": low,
            "range_pct": round(range_pct, 3),
            "is_consolidating": range_pct <= cfg.consolidation_threshold_pct,
            "bb_width": round(bands.bandwidth, 4),
            "is_squeeze": bands.bandwidth < cfg.squeeze_threshold,
        }

    def identify_levels(self, bars: tuple[Bar, ...]) -> dict[str, list[PriceLevel]]:
        """Resistance from pivot highs and support from pivot lows over the lookback."""
        cfg = self.bo_config
        recent = bars[-cfg.level_lookback:]
        return {
            "resistance": self._patterns.cluster_levels(
                self._patterns.find_pivot_highs(recent), cfg.level_tolerance, "resistance"
            ),
            "support": self._patterns.cluster_levels(
                self._patterns.find_pivot_lows(recent), cfg.level_tolerance, "support"
            ),
        }

    def analyze_volume(self, bars: tuple[Bar, ...]) -> dict[str, Any]:
        cfg = self.bo_config
        ratio = self._indicators.volume_ratio(bars, cfg.volume_avg_period)
        return {
            "volume_ratio": round(ratio, 2),
            "is_spike": ratio >= cfg.volume_multiplier,
        }

    def analyze_volatility(self, bars: tuple[Bar, ...]) -> dict[str, Any]:
        """
        ATR expansion and annualised historical volatility.

        Args:
            bars: Chronological bars

        Returns:
            Current and previous ATR, change ratio and volatility regime
        """
        cfg = self.bo_config
        current_atr = self._indicators.atr(bars, cfg.atr_period)
        previous_atr = self._indicators.atr(bars[:-cfg.atr_period], cfg.atr_period)
        change = current_atr / previous_atr if previous_atr > 0 else 1.0

        closes = np.asarray([b.close for b in bars], dtype=float)
        if len(closes) > 2 and np.all(closes > 0):
            returns = np.diff(np.log(closes))
            historical = float(np.std(returns)) * math.sqrt(252)
        else:
            historical = 0.0

        if historical < 0.15:
            regime = "LOW"
        elif historical < 0.30:
            regime = "NORMAL"
        elif historical < 0.50:
            regime = "HIGH"
        else:
            regime = "EXTREME"

        return {
            "current_atr": round(current_atr, 4),
            "previous_atr": round(previous_atr, 4),
            "atr_change": round(change, 2),
            "is_expanding": change >= cfg.atr_expansion,
            "historical_volatility": round(historical, 4),
            "regime": regime,
        }

    def detect_chart_patterns(self, bars: tuple[Bar, ...]) -> list[ChartPattern]:
        """Continuation patterns that usually precede breakouts."""
        detectors = (
            self._patterns.detect_rectangle,
            self._patterns.detect_ascending_triangle,
            self._patterns.detect_descending_triangle,
            self._patterns.detect_symmetrical_triangle,
            self._patterns.detect_bullish_flag,
            self._patterns.detect_bearish_flag,
        )
        return [p for p in (detect(bars) for detect in detectors) if p is not None]

    def analyze_timeframes(self, snapshot: MarketSnapshot) -> dict[str, str]:
        """EMA20 versus EMA50 trend of every non-primary timeframe."""
        trends: dict[str, str] = {}
        for tf in snapshot.timeframes:
            if tf == snapshot.primary_timeframe:
                continue
            closes = snapshot.closes(tf)
            if not closes:
                continue
            ema20 = self._indicators.ema(closes, 20)
            ema50 = self._indicators.ema(closes, 50)
            if ema20 > ema50:
                trends[tf] = "BULLISH"
            elif ema20 < ema50:
                trends[tf] = "BEARISH"
            else:
                trends[tf] = "NEUTRAL"
        return trends

    def detect_breakout(
        self,
        price: float,
        consolidation: dict[str, Any],
        levels: dict[str, list[PriceLevel]],
        volume: dict[str, Any],
        volatility: dict[str, Any],
    ) -> dict[str, Any]:
        """
        Find a broken level and count its confirmations.

        The broken resistance is the highest resistance below price; the
        broken support is the lowest support above price. Either must be
        within ``max_break_distance_pct`` of price.

        Args:
            price: Latest close
            consolidation: Output of ``analyze_consolidation``
            levels: Output of ``identify_levels``
            volume: Output of ``analyze_volume``
            volatility: Output of ``analyze_volatility``

        Returns:
            Breakout type, level, confirmations and reasons
        """
        cfg = self.bo_config
        breakout: dict[str, Any] = {
            "type": "NONE",
            "confirmed": False,
            "confirmations": 0,
            "reasons": [],
            "status": "No breakout",
        }

        if not consolidation["is_consolidating"] and not consolidation["is_squeeze"]:
            breakout["status"] = "Not in consolidation phase"
            return breakout

        broken_resistance = max(
            (lv for lv in levels["resistance"] if lv.price < price),
            key=lambda lv: lv.price,
            default=None,
        )
        broken_support = min(
            (lv for lv in levels["support"] if lv.price > price),
            key=lambda lv: lv.price,
            default=None,
        )

        candidates = []
        if broken_resistance is not None:
            distance = (price - broken_resistance.price) / broken_resistance.price * 100
            candidates.append((BULLISH_BREAKOUT, broken_resistance, distance, "resistance", "above"))
        if broken_support is not None:
            distance = (broken_support.price - price) / broken_support.price * 100
            candidates.append((BEARISH_BREAKDOWN, broken_support, distance, "support", "below"))

        for kind, level, distance, label, side in candidates:
            if not 0 < distance <= cfg.max_break_distance_pct:
                continue

            reasons: list[str] = []
            if volume["is_spike"]:
                reasons.append(f"Strong volume spike ({volume['volume_ratio']}x average)")
            if volatility["is_expanding"]:
                reasons.append(f"Volatility expanding (ATR change: {volatility['atr_change']}x)")
            if consolidation["is_squeeze"]:
                reasons.append("Bollinger Band squeeze released")
            if level.touches >= cfg.level_strength:
                reasons.append(f"Breaking strong {label} ({level.touches} touches)")
            if distance >= cfg.breakout_threshold_pct:
                reasons.append(f"Clean break ({distance:.2f}% {side} {label})")

            breakout.update({
                "type": kind,
                "level": level.price,
                "touches": level.touches,
                "distance": round(distance, 2),
                "confirmations": len(reasons),
                "confirmed": len(reasons) >= cfg.min_confirmations,
                "reasons": reasons,
                "status": f"{kind} with {len(reasons)}/{self.MAX_CONFIRMATIONS} confirmations",
            })
            return breakout

        breakout["status"] = "Consolidating, no level broken yet"
        return breakout

    # =========================================================================
    # SCORING
    # =========================================================================

    def _strength(
        self,
        breakout: dict[str, Any],
        patterns: list[ChartPattern],
        volume: dict[str, Any],
        volatility: dict[str, Any],
    ) -> float:
        """Confirmations 40 + volume 25 + ATR expansion 20 + pattern 15."""
        if not breakout["confirmed"]:
            return 0.0
        strength = breakout["confirmations"] / self.MAX_CONFIRMATIONS * 40
        strength += min(volume["volume_ratio"] / 3, 1.0) * 25
        if volatility["is_expanding"]:
            strength += min(volatility["atr_change"] * 10, 20.0)
        if patterns:
            strength += 15
        return round(min(strength, 100.0), 2)

    def _confidence(
        self,
        breakout: dict[str, Any],
        higher: dict[str, str],
        patterns: list[ChartPattern],
    ) -> float:
        """Confirmations 40 + timeframe alignment 35 + agreeing pattern 25."""
        if not breakout["confirmed"]:
            return 0.0

        wanted = "BULLISH" if breakout["type"] == BULLISH_BREAKOUT else "BEARISH"
        confidence = breakout["confirmations"] / self.MAX_CONFIRMATIONS * 40
        if higher:
            aligned = sum(1 for trend in higher.values() if trend == wanted)
            confidence += aligned / len(higher) * 35
        if any(p.direction == PatternDirection(wanted) for p in patterns):
            confidence += 25
        return round(min(confidence, 100.0), 2)

    @staticmethod
    def _leverage(strength: float, confidence: float, breakout: dict[str, Any]) -> int:
        average = (strength + confidence) / 2
        confirmations = breakout["confirmations"]
        if average >= 85 and confirmations >= 4:
            return 5
        if average >= 75 and confirmations >= 3:
            return 3
        if average >= 65:
            return 2
        return 1

    # =========================================================================
    # RISK
    # =========================================================================

    def position_size(self, snapshot: MarketSnapshot, balance: float) -> float:
        """Risk ``risk_per_trade`` of balance over a 2 ATR stop."""
        cfg = self.bo_config
        price = snapshot.current_price()
        if price <= 0 or balance <= 0:
            return 0.0
        distance = self._indicators.atr(snapshot.bars(), cfg.atr_period) * 2
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
        """Half an ATR beyond the broken level, or 2 ATR from entry."""
        atr = self._indicators.atr(snapshot.bars(), self.bo_config.atr_period)
        if atr <= 0:
            atr = entry * 0.01

        if analysis is not None and "level" in analysis:
            buffer = atr * 0.5
            if side == TradeSide.LONG:
                return round(analysis["level"] - buffer, 2)
            return round(analysis["level"] + buffer, 2)

        if side == TradeSide.LONG:
            return round(entry - atr * 2, 2)
        return round(entry + atr * 2, 2)
