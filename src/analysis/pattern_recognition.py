"""
Pattern Recognition Module for Futures Trading Bot.

This module provides chart pattern recognition (reversal and
continuation), candlestick pattern detection, pivot finding and
support/resistance clustering for technical analysis.
"""

import logging
from enum import Enum
from typing import Any, Optional, Sequence

import numpy as np
from pydantic import BaseModel, Field

from src.core.models import Bar


logger = logging.getLogger(__name__)


class PatternType(str, Enum):
    """Pattern type enumeration."""

    HEAD_AND_SHOULDERS = "HEAD_AND_SHOULDERS"
    INVERSE_HEAD_AND_SHOULDERS = "INVERSE_HEAD_AND_SHOULDERS"
    DOUBLE_TOP = "DOUBLE_TOP"
    DOUBLE_BOTTOM = "DOUBLE_BOTTOM"
    TRIPLE_TOP = "TRIPLE_TOP"
    TRIPLE_BOTTOM = "TRIPLE_BOTTOM"
    BULLISH_FLAG = "BULLISH_FLAG"
    BEARISH_FLAG = "BEARISH_FLAG"
    ASCENDING_TRIANGLE = "ASCENDING_TRIANGLE"
    DESCENDING_TRIANGLE = "DESCENDING_TRIANGLE"
    SYMMETRICAL_TRIANGLE = "SYMMETRICAL_TRIANGLE"
    RECTANGLE = "RECTANGLE"
    BULLISH_ENGULFING = "BULLISH_ENGULFING"
    BEARISH_ENGULFING = "BEARISH_ENGULFING"
    HAMMER = "HAMMER"
    SHOOTING_STAR = "SHOOTING_STAR"
    DOJI = "DOJI"
    MORNING_STAR = "MORNING_STAR"
    EVENING_STAR = "EVENING_STAR"
    THREE_WHITE_SOLDIERS = "THREE_WHITE_SOLDIERS"
    THREE_BLACK_CROWS = "THREE_BLACK_CROWS"


class PatternDirection(str, Enum):
    """Expected price direction after the pattern."""

    BULLISH = "BULLISH"
    BEARISH = "BEARISH"
    NEUTRAL = "NEUTRAL"


class PatternCategory(str, Enum):
    """Pattern family."""

    REVERSAL = "reversal"
    CONTINUATION = "continuation"
    CANDLESTICK = "candlestick"


class Pivot(BaseModel):
    """Local price extreme."""

    index: int
    value: float


class PriceLevel(BaseModel):
    """Support or resistance level built from clustered pivots."""

    price: float
    touches: int
    kind: str


class ChartPattern(BaseModel):
    """Detected pattern."""

    pattern_type: PatternType
    category: PatternCategory
    direction: PatternDirection
    confidence: float = Field(ge=0.0, le=1.0)
    target: Optional[float] = None
    completed: bool = Field(default=False)
    details: dict[str, Any] = Field(default_factory=dict)


class PatternRecognition:
    """
    Pattern recognition for technical analysis.

    Provides detection for:
    - Reversal patterns (Head & Shoulders, double/triple tops and bottoms)
    - Continuation patterns (flags, triangles, rectangles)
    - Candlestick patterns over the last three bars
    - Support/Resistance levels
    """

    def __init__(self, tolerance: float = 0.02) -> None:
        """
        Initialize PatternRecognition.

        Args:
            tolerance: Relative price tolerance for "same level" comparisons
        """
        self.tolerance = tolerance
        logger.debug(f"PatternRecognition initialized (tolerance={tolerance})")

    def detect_all_patterns(self, bars: Sequence[Bar]) -> list[ChartPattern]:
        """
        Run every detector.

        Args:
            bars: Chronological OHLCV bars

        Returns:
            Detected patterns sorted by confidence, highest first
        """
        detectors = (
            self.detect_head_and_shoulders,
            self.detect_inverse_head_and_shoulders,
            self.detect_double_top,
            self.detect_double_bottom,
            self.detect_triple_top,
            self.detect_triple_bottom,
            self.detect_bullish_flag,
            self.detect_bearish_flag,
            self.detect_ascending_triangle,
            self.detect_descending_triangle,
            self.detect_symmetrical_triangle,
            self.detect_rectangle,
        )
        patterns = [p for p in (detect(bars) for detect in detectors) if p is not None]
        patterns.extend(self.detect_candlestick_patterns(bars))
        patterns.sort(key=lambda p: p.confidence, reverse=True)
        return patterns

    # =========================================================================
    # PIVOTS AND LEVELS
    # =========================================================================

    def find_pivot_highs(self, bars: Sequence[Bar], left: int = 5, right: int = 5) -> list[Pivot]:
        """
        Find bars whose high strictly exceeds every high in both windows.

        Args:
            bars: OHLCV bars
            left: Bars to the left
            right: Bars to the right

        Returns:
            Pivot highs in chronological order
        """
        pivots = []
        for i in range(left, len(bars) - right):
            high = bars[i].high
            neighbours = list(bars[i - left:i]) + list(bars[i + 1:i + right + 1])
            if all(b.high < high for b in neighbours):
                pivots.append(Pivot(index=i, value=high))
        return pivots

    def find_pivot_lows(self, bars: Sequence[Bar], left: int = 5, right: int = 5) -> list[Pivot]:
        """Mirror of ``find_pivot_highs`` on bar lows."""
        pivots = []
        for i in range(left, len(bars) - right):
            low = bars[i].low
            neighbours = list(bars[i - left:i]) + list(bars[i + 1:i + right + 1])
            if all(b.low > low for b in neighbours):
                pivots.append(Pivot(index=i, value=low))
        return pivots

    def find_support_resistance(
        self,
        bars: Sequence[Bar],
        tolerance: Optional[float] = None,
    ) -> list[PriceLevel]:
        """
        Cluster pivot highs and lows into price levels.

        A pivot joins a cluster when it lies within ``tolerance`` of the
        cluster mean. Levels above the last close are resistance, the
        rest support.

        Args:
            bars: OHLCV bars
            tolerance: Relative clustering tolerance

        Returns:
            Levels ranked by touch count, most touched first
        """
        if not bars:
            return []

        tolerance = self.tolerance if tolerance is None else tolerance
        pivots = self.find_pivot_highs(bars) + self.find_pivot_lows(bars)
        price = bars[-1].close

        levels = [
            level.model_copy(update={"kind": "resistance" if level.price > price else "support"})
            for level in self.cluster_levels(pivots, tolerance)
        ]
        levels.sort(key=lambda lv: lv.touches, reverse=True)
        return levels

    def cluster_levels(
        self,
        pivots: Sequence[Pivot],
        tolerance: Optional[float] = None,
        kind: str = "level",
    ) -> list[PriceLevel]:
        """
        Greedily cluster pivot values in price order.

        Args:
            pivots: Pivots to cluster
            tolerance: Relative distance from the running cluster mean
            kind: Label stored on every level

        Returns:
            Levels ranked by touch count, most touched first
        """
        tolerance = self.tolerance if tolerance is None else tolerance

        clusters: list[list[float]] = []
        for value in sorted(p.value for p in pivots):
            if clusters:
                mean = sum(clusters[-1]) / len(clusters[-1])
                if mean > 0 and abs(value - mean) / mean <= tolerance:
                    clusters[-1].append(value)
                    continue
            clusters.append([value])

        levels = [
            PriceLevel(price=round(sum(c) / len(c), 2), touches=len(c), kind=kind)
            for c in clusters
        ]
        levels.sort(key=lambda lv: lv.touches, reverse=True)
        return levels

    # =========================================================================
    # REVERSAL PATTERNS
    # =========================================================================

    def detect_head_and_shoulders(self, bars: Sequence[Bar]) -> Optional[ChartPattern]:
        """
        Detect Head and Shoulders (bearish reversal).

        Args:
            bars: OHLCV bars

        Returns:
            ChartPattern or None
        """
        return self._head_and_shoulders(bars, inverse=False)

    def detect_inverse_head_and_shoulders(self, bars: Sequence[Bar]) -> Optional[ChartPattern]:
        """Detect Inverse Head and Shoulders (bullish reversal)."""
        return self._head_and_shoulders(bars, inverse=True)

    def _head_and_shoulders(self, bars: Sequence[Bar], inverse: bool) -> Optional[ChartPattern]:
        if len(bars) < 30:
            return None

        pivots = self.find_pivot_lows(bars) if inverse else self.find_pivot_highs(bars)

        for left, head, right in zip(pivots, pivots[1:], pivots[2:]):
            if inverse:
                if head.value >= left.value or head.value >= right.value:
                    continue
            elif head.value <= left.value or head.value <= right.value:
                continue

            shoulder_diff = abs(left.value - right.value) / left.value
            if shoulder_diff > self.tolerance * 2:
                continue

            segment = bars[left.index:right.index + 1]
            if inverse:
                neckline = max(b.high for b in segment)
                prominence = (min(left.value, right.value) - head.value) / head.value
            else:
                neckline = min(b.low for b in segment)
                prominence = (head.value - max(left.value, right.value)) / head.value

            confidence = 0.5
            if shoulder_diff < 0.01:
                confidence += 0.2
            elif shoulder_diff < 0.02:
                confidence += 0.1
            if prominence > 0.05:
                confidence += 0.2
            elif prominence > 0.03:
                confidence += 0.1
            confidence = min(confidence, 1.0)

            if confidence < 0.6:
                continue

            distance = abs(head.value - neckline)
            return ChartPattern(
                pattern_type=(
                    PatternType.INVERSE_HEAD_AND_SHOULDERS if inverse
                    else PatternType.HEAD_AND_SHOULDERS
                ),
                category=PatternCategory.REVERSAL,
                direction=PatternDirection.BULLISH if inverse else PatternDirection.BEARISH,
                confidence=round(confidence, 2),
                target=neckline + distance if inverse else neckline - distance,
                completed=right.index < len(bars) - 5,
                details={
                    "left_shoulder": left.model_dump(),
                    "head": head.model_dump(),
                    "right_shoulder": right.model_dump(),
                    "neckline": neckline,
                },
            )

        return None

    def detect_double_top(self, bars: Sequence[Bar]) -> Optional[ChartPattern]:
        """
        Detect Double Top (bearish reversal).

        Args:
            bars: OHLCV bars

        Returns:
            ChartPattern or None
        """
        return self._double_pattern(bars, top=True)

    def detect_double_bottom(self, bars: Sequence[Bar]) -> Optional[ChartPattern]:
        """Detect Double Bottom (bullish reversal)."""
        return self._double_pattern(bars, top=False)

    def _double_pattern(self, bars: Sequence[Bar], top: bool) -> Optional[ChartPattern]:
        if len(bars) < 20:
            return None

        pivots = self.find_pivot_highs(bars) if top else self.find_pivot_lows(bars)

        for first, second in zip(pivots, pivots[1:]):
            diff = abs(first.value - second.value) / first.value
            if diff > self.tolerance:
                continue

            segment = bars[first.index:second.index + 1]
            middle = min(b.low for b in segment) if top else max(b.high for b in segment)
            depth = abs(first.value - middle) / first.value
            if depth < 0.03:
                continue

            confidence = 0.6 + (1 - diff) * 0.3
            if depth > 0.05:
                confidence += 0.1
            confidence = min(confidence, 1.0)

            height = abs(first.value - middle)
            return ChartPattern(
                pattern_type=PatternType.DOUBLE_TOP if top else PatternType.DOUBLE_BOTTOM,
                category=PatternCategory.REVERSAL,
                direction=PatternDirection.BEARISH if top else PatternDirection.BULLISH,
                confidence=round(confidence, 2),
                target=middle - height if top else middle + height,
                completed=second.index < len(bars) - 5,
                details={
                    "first": first.model_dump(),
                    "second": second.model_dump(),
                    "middle": middle,
                },
            )

        return None

    def detect_triple_top(self, bars: Sequence[Bar]) -> Optional[ChartPattern]:
        """Detect Triple Top (bearish reversal)."""
        return self._triple_pattern(bars, top=True)

    def detect_triple_bottom(self, bars: Sequence[Bar]) -> Optional[ChartPattern]:
        """Detect Triple Bottom (bullish reversal)."""
        return self._triple_pattern(bars, top=False)

    def _triple_pattern(self, bars: Sequence[Bar], top: bool) -> Optional[ChartPattern]:
        if len(bars) < 30:
            return None

        pivots = self.find_pivot_highs(bars) if top else self.find_pivot_lows(bars)

        for first, second, third in zip(pivots, pivots[1:], pivots[2:]):
            pairs = ((first, second), (second, third), (first, third))
            if any(abs(a.value - b.value) / a.value > self.tolerance for a, b in pairs):
                continue

            segment = bars[first.index:third.index + 1]
            level = min(b.low for b in segment) if top else max(b.high for b in segment)
            average = (first.value + second.value + third.value) / 3
            depth = abs(average - level) / average
            if depth < 0.03:
                continue

            return ChartPattern(
                pattern_type=PatternType.TRIPLE_TOP if top else PatternType.TRIPLE_BOTTOM,
                category=PatternCategory.REVERSAL,
                direction=PatternDirection.BEARISH if top else PatternDirection.BULLISH,
                confidence=0.7,
                target=level - (average - level) if top else level + (level - average),
                completed=third.index < len(bars) - 5,
                details={
                    "extremes": [p.model_dump() for p in (first, second, third)],
                    "neckline": level,
                },
            )

        return None

    # =========================================================================
    # CONTINUATION PATTERNS
    # =========================================================================

    def detect_bullish_flag(self, bars: Sequence[Bar]) -> Optional[ChartPattern]:
        """
        Detect Bullish Flag: a >5% 10-bar pole then a 10-bar drift down.

        Args:
            bars: OHLCV bars

        Returns:
            ChartPattern or None
        """
        return self._flag(bars, bullish=True)

    def detect_bearish_flag(self, bars: Sequence[Bar]) -> Optional[ChartPattern]:
        """Detect Bearish Flag: a >5% 10-bar drop then a 10-bar drift up."""
        return self._flag(bars, bullish=False)

    def _flag(
        self,
        bars: Sequence[Bar],
        bullish: bool,
        pole_length: int = 10,
        flag_length: int = 10,
    ) -> Optional[ChartPattern]:
        if len(bars) < max(20, pole_length + flag_length):
            return None

        pole = bars[-(pole_length + flag_length):-flag_length]
        flag_closes = [b.close for b in bars[-flag_length:]]

        pole_start, pole_end = pole[0].close, pole[-1].close
        pole_move = (pole_end - pole_start) / pole_start * 100
        flag_move = (flag_closes[-1] - flag_closes[0]) / flag_closes[0] * 100
        flag_slope = self._slope(list(enumerate(flag_closes)))

        if bullish:
            if pole_move < 5 or flag_move < -(pole_move * 0.5) or flag_slope > 0:
                return None
        elif pole_move > -5 or flag_move > -(pole_move * 0.5) or flag_slope < 0:
            return None

        return ChartPattern(
            pattern_type=PatternType.BULLISH_FLAG if bullish else PatternType.BEARISH_FLAG,
            category=PatternCategory.CONTINUATION,
            direction=PatternDirection.BULLISH if bullish else PatternDirection.BEARISH,
            confidence=0.75,
            target=pole_end + (pole_end - pole_start),
            completed=True,
            details={"pole_move": round(pole_move, 2), "flag_slope": round(flag_slope, 4)},
        )

    def detect_ascending_triangle(self, bars: Sequence[Bar]) -> Optional[ChartPattern]:
        """Detect Ascending Triangle: flat resistance over rising lows."""
        fit = self._triangle_fit(bars)
        if fit is None:
            return None
        highs, lows, high_slope, low_slope, span = fit

        if abs(high_slope) < 0.0001 and low_slope > 0.0005:
            resistance = max(p.value for p in highs)
            return ChartPattern(
                pattern_type=PatternType.ASCENDING_TRIANGLE,
                category=PatternCategory.CONTINUATION,
                direction=PatternDirection.BULLISH,
                confidence=0.7,
                target=resistance + span,
                details={
                    "resistance_level": sum(p.value for p in highs) / len(highs),
                    "support_slope": round(low_slope, 6),
                },
            )
        return None

    def detect_descending_triangle(self, bars: Sequence[Bar]) -> Optional[ChartPattern]:
        """Detect Descending Triangle: flat support under falling highs."""
        fit = self._triangle_fit(bars)
        if fit is None:
            return None
        highs, lows, high_slope, low_slope, span = fit

        if abs(low_slope) < 0.0001 and high_slope < -0.0005:
            support = min(p.value for p in lows)
            return ChartPattern(
                pattern_type=PatternType.DESCENDING_TRIANGLE,
                category=PatternCategory.CONTINUATION,
                direction=PatternDirection.BEARISH,
                confidence=0.7,
                target=support - span,
                details={
                    "support_level": sum(p.value for p in lows) / len(lows),
                    "resistance_slope": round(high_slope, 6),
                },
            )
        return None

    def detect_symmetrical_triangle(self, bars: Sequence[Bar]) -> Optional[ChartPattern]:
        """Detect Symmetrical Triangle: falling highs converging with rising lows."""
        fit = self._triangle_fit(bars)
        if fit is None:
            return None
        highs, lows, high_slope, low_slope, span = fit

        if high_slope < -0.0003 and low_slope > 0.0003:
            return ChartPattern(
                pattern_type=PatternType.SYMMETRICAL_TRIANGLE,
                category=PatternCategory.CONTINUATION,
                direction=PatternDirection.NEUTRAL,
                confidence=0.65,
                details={
                    "resistance_slope": round(high_slope, 6),
                    "support_slope": round(low_slope, 6),
                },
            )
        return None

    def _triangle_fit(
        self,
        bars: Sequence[Bar],
    ) -> Optional[tuple[list[Pivot], list[Pivot], float, float, float]]:
        """Pivots and mean-price-normalised slopes over the last 50 bars."""
        if len(bars) < 30:
            return None

        recent = bars[-50:]
        highs = self.find_pivot_highs(recent, 3, 3)
        lows = self.find_pivot_lows(recent, 3, 3)
        if len(highs) < 3 or len(lows) < 3:
            return None

        mean_price = sum(b.close for b in recent) / len(recent)
        if mean_price <= 0:
            return None

        high_slope = self._slope([(p.index, p.value) for p in highs]) / mean_price
        low_slope = self._slope([(p.index, p.value) for p in lows]) / mean_price
        span = max(b.high for b in recent) - min(b.low for b in recent)
        return highs, lows, high_slope, low_slope, span

    def detect_rectangle(self, bars: Sequence[Bar]) -> Optional[ChartPattern]:
        """
        Detect Rectangle: a 2-10% range touched at least twice on each side.

        Args:
            bars: OHLCV bars

        Returns:
            ChartPattern or None
        """
        if len(bars) < 20:
            return None

        recent = bars[-30:]
        top = max(b.high for b in recent)
        bottom = min(b.low for b in recent)
        range_pct = (top - bottom) / ((top + bottom) / 2) * 100

        if range_pct < 2 or range_pct > 10:
            return None

        top_touches = sum(1 for b in recent if abs(b.high - top) / top < 0.005)
        bottom_touches = sum(1 for b in recent if abs(b.low - bottom) / bottom < 0.005)

        if top_touches < 2 or bottom_touches < 2:
            return None

        return ChartPattern(
            pattern_type=PatternType.RECTANGLE,
            category=PatternCategory.CONTINUATION,
            direction=PatternDirection.NEUTRAL,
            confidence=0.7,
            details={
                "resistance": top,
                "support": bottom,
                "range_percent": round(range_pct, 2),
                "top_touches": top_touches,
                "bottom_touches": bottom_touches,
            },
        )

    # =========================================================================
    # CANDLESTICK PATTERNS
    # =========================================================================

    def detect_candlestick_patterns(self, bars: Sequence[Bar]) -> list[ChartPattern]:
        """
        Detect candlestick patterns formed by the last one to three bars.

        Args:
            bars: OHLCV bars

        Returns:
            Detected candlestick patterns
        """
        if len(bars) < 3:
            return []

        first, prev, curr = bars[-3], bars[-2], bars[-1]
        checks = (
            (PatternType.BULLISH_ENGULFING, PatternDirection.BULLISH, 0.75,
             prev.is_bearish and curr.is_bullish and curr.open < prev.close and curr.close > prev.open),
            (PatternType.BEARISH_ENGULFING, PatternDirection.BEARISH, 0.75,
             prev.is_bullish and curr.is_bearish and curr.open > prev.close and curr.close < prev.open),
            (PatternType.HAMMER, PatternDirection.BULLISH, 0.7, self._is_hammer(curr)),
            (PatternType.SHOOTING_STAR, PatternDirection.BEARISH, 0.7, self._is_shooting_star(curr)),
            (PatternType.DOJI, PatternDirection.NEUTRAL, 0.6,
             curr.range > 0 and curr.body / curr.range < 0.1),
            (PatternType.MORNING_STAR, PatternDirection.BULLISH, 0.8,
             first.is_bearish and prev.body < prev.range * 0.3
             and curr.is_bullish and curr.close > (first.open + first.close) / 2),
            (PatternType.EVENING_STAR, PatternDirection.BEARISH, 0.8,
             first.is_bullish and prev.body < prev.range * 0.3
             and curr.is_bearish and curr.close < (first.open + first.close) / 2),
            (PatternType.THREE_WHITE_SOLDIERS, PatternDirection.BULLISH, 0.85,
             first.is_bullish and prev.is_bullish and curr.is_bullish
             and prev.close > first.close and curr.close > prev.close),
            (PatternType.THREE_BLACK_CROWS, PatternDirection.BEARISH, 0.85,
             first.is_bearish and prev.is_bearish and curr.is_bearish
             and prev.close < first.close and curr.close < prev.close),
        )

        return [
            ChartPattern(
                pattern_type=pattern_type,
                category=PatternCategory.CANDLESTICK,
                direction=direction,
                confidence=confidence,
                completed=True,
                details={"index": len(bars) - 1},
            )
            for pattern_type, direction, confidence, matched in checks
            if matched
        ]

    @staticmethod
    def _is_hammer(bar: Bar) -> bool:
        lower_wick = min(bar.open, bar.close) - bar.low
        upper_wick = bar.high - max(bar.open, bar.close)
        return lower_wick > bar.body * 2 and upper_wick < bar.body * 0.3

    @staticmethod
    def _is_shooting_star(bar: Bar) -> bool:
        lower_wick = min(bar.open, bar.close) - bar.low
        upper_wick = bar.high - max(bar.open, bar.close)
        return upper_wick > bar.body * 2 and lower_wick < bar.body * 0.3

    @staticmethod
    def _slope(points: list[tuple[float, float]]) -> float:
        """Least-squares slope through (x, y) points."""
        if len(points) < 2:
            return 0.0
        x = np.array([p[0] for p in points], dtype=float)
        y = np.array([p[1] for p in points], dtype=float)
        if np.all(x == x[0]):
            return 0.0
        slope, _ = np.polyfit(x, y, 1)
        return float(slope)

    def __repr__(self) -> str:
        """String representation."""
        return f"PatternRecognition(tolerance={self.tolerance})"
