"""
Technical Indicators Module for Futures Trading Bot.

This module provides technical indicator calculations over close-price
lists and bar sequences: moving averages, oscillators, volatility bands,
volume indicators, Ichimoku, Fibonacci, pivot points and volume profile.

Every calculation is stateless and deterministic. Below its minimum
sample size an indicator returns a documented neutral fallback instead
of raising.
"""

import logging
import math
from typing import Any, Optional, Sequence

import numpy as np
from pydantic import BaseModel, Field

from src.core.models import Bar


logger = logging.getLogger(__name__)


FIB_RETRACEMENTS = (0.0, 0.236, 0.382, 0.5, 0.618, 0.786, 1.0)
FIB_EXTENSIONS = (1.272, 1.618, 2.618)


# =============================================================================
# RESULT MODELS
# =============================================================================

class MACDResult(BaseModel):
    """MACD indicator result."""

    macd_line: float = 0.0
    signal_line: float = 0.0
    histogram: float = 0.0
    signal: str = Field(default="neutral")


class BollingerBandsResult(BaseModel):
    """Bollinger Bands result."""

    upper: float
    middle: float
    lower: float
    bandwidth: float = 0.0
    percent_b: float = 0.5


class StochResult(BaseModel):
    """Stochastic result."""

    k: float = 50.0
    d: float = 50.0
    signal: str = Field(default="neutral")


class OscillatorResult(BaseModel):
    """Single-value indicator with an interpretation."""

    value: float
    signal: str = Field(default="NEUTRAL")


class VolumeTrendResult(BaseModel):
    """Cumulative volume indicator (OBV, A/D line)."""

    value: float
    trend: str


class IchimokuResult(BaseModel):
    """Ichimoku Cloud result."""

    tenkan_sen: float = 0.0
    kijun_sen: float = 0.0
    senkou_span_a: float = 0.0
    senkou_span_b: float = 0.0
    chikou_span: float = 0.0
    cloud_color: str = Field(default="NEUTRAL")
    signal: str = Field(default="NEUTRAL")


class FibonacciResult(BaseModel):
    """Fibonacci retracement and extension levels."""

    retracement_levels: dict[str, float]
    extension_levels: dict[str, float]
    trend: str
    swing_high: float
    swing_low: float


class PivotPointsResult(BaseModel):
    """Pivot levels from one bar, by calculation method."""

    standard: dict[str, float]
    fibonacci: dict[str, float]
    camarilla: dict[str, float]
    woodie: dict[str, float]


class VolumeProfileResult(BaseModel):
    """Volume distribution across price buckets."""

    poc_price: float
    value_area_high: float
    value_area_low: float
    total_volume: float
    profile: list[dict[str, float]] = Field(default_factory=list)


class ParabolicSARResult(BaseModel):
    """Parabolic SAR result."""

    current_sar: float
    trend: str
    signal: str


class ChannelResult(BaseModel):
    """Price channel (Keltner, Donchian)."""

    upper: float
    middle: float
    lower: float
    width: float
    position: str


# =============================================================================
# INDICATOR CALCULATOR
# =============================================================================

class TechnicalIndicators:
    """
    Technical indicators calculator.

    Provides calculations for:
    - Trend indicators (SMA, EMA, MACD, ADX, Parabolic SAR, Ichimoku)
    - Momentum indicators (RSI, Stochastic, Stoch RSI, Williams %R, AO)
    - Volatility indicators (Bollinger, ATR, Keltner, Donchian)
    - Volume indicators (OBV, A/D line, CMF, volume profile)
    """

    def __init__(self) -> None:
        """Initialize TechnicalIndicators."""
        logger.debug("TechnicalIndicators initialized")

    # -------------------------------------------------------------------------
    # Moving averages
    # -------------------------------------------------------------------------

    def sma(self, data: Sequence[float], period: int = 20) -> float:
        """Latest SMA value, or the last value when data is short."""
        if not data:
            return 0.0
        if len(data) < period:
            return float(data[-1])
        return sum(data[-period:]) / period

    def ema_series(self, data: Sequence[float], period: int = 20) -> list[float]:
        """
        Calculate Exponential Moving Average series.

        The seed is the SMA of the first ``period`` values.

        Args:
            data: Price data
            period: EMA period

        Returns:
            List of EMA values, NaN before the seed
        """
        if len(data) < period:
            return [np.nan] * len(data)

        multiplier = 2.0 / (period + 1)
        result = [np.nan] * (period - 1)
        result.append(sum(data[:period]) / period)

        for i in range(period, len(data)):
            result.append((data[i] - result[-1]) * multiplier + result[-1])

        return result

    def ema(self, data: Sequence[float], period: int = 20) -> float:
        """
        Latest EMA value rounded to 2 decimals.

        Args:
            data: Price data
            period: EMA period

        Returns:
            EMA, or the last value when fewer than ``period`` values (0.0 if empty)
        """
        if len(data) < period:
            return float(data[-1]) if data else 0.0
        return round(self.ema_series(data, period)[-1], 2)

    # -------------------------------------------------------------------------
    # Momentum
    # -------------------------------------------------------------------------

    def rsi(self, data: Sequence[float], period: int = 14) -> float:
        """
        Calculate Relative Strength Index from trailing averages.

        Args:
            data: Close prices
            period: RSI period

        Returns:
            RSI in [0, 100]; 50 when data is short or the series is flat
        """
        if len(data) < period + 1:
            return 50.0

        deltas = np.diff(np.asarray(data[-(period + 1):], dtype=float))
        avg_gain = float(np.clip(deltas, 0, None).sum()) / period
        avg_loss = float(np.clip(-deltas, 0, None).sum()) / period

        if avg_loss == 0:
            return 50.0 if avg_gain == 0 else 100.0

        rs = avg_gain / avg_loss
        return round(100 - (100 / (1 + rs)), 2)

    def rsi_series(self, data: Sequence[float], period: int = 14) -> list[float]:
        """RSI over every window of ``period + 1`` closes."""
        return [
            self.rsi(data[i - period:i + 1], period)
            for i in range(period, len(data))
        ]

    def macd(
        self,
        data: Sequence[float],
        fast_period: int = 12,
        slow_period: int = 26,
        signal_period: int = 9,
    ) -> MACDResult:
        """
        Calculate MACD indicator.

        Args:
            data: Price data
            fast_period: Fast EMA period
            slow_period: Slow EMA period
            signal_period: Signal line period

        Returns:
            MACDResult for the latest bar (zeros when data is short)
        """
        if len(data) < slow_period:
            return MACDResult()

        fast_ema = self.ema_series(data, fast_period)
        slow_ema = self.ema_series(data, slow_period)
        macd_line = [
            f - s for f, s in zip(fast_ema[slow_period - 1:], slow_ema[slow_period - 1:])
        ]

        if len(macd_line) >= signal_period:
            signal_value = self.ema_series(macd_line, signal_period)[-1]
        else:
            signal_value = macd_line[-1]

        m = macd_line[-1]
        histogram = m - signal_value

        if histogram > 0 and m > 0:
            signal = "bullish"
        elif histogram < 0 and m < 0:
            signal = "bearish"
        else:
            signal = "neutral"

        return MACDResult(
            macd_line=round(m, 4),
            signal_line=round(signal_value, 4),
            histogram=round(histogram, 4),
            signal=signal,
        )

    def stochastic(
        self,
        bars: Sequence[Bar],
        k_period: int = 14,
        d_period: int = 3,
    ) -> StochResult:
        """
        Calculate Stochastic Oscillator.

        Args:
            bars: OHLCV bars
            k_period: %K period
            d_period: %D period

        Returns:
            StochResult for the latest bar
        """
        if len(bars) < k_period:
            return StochResult()

        k_values: list[float] = []
        for i in range(k_period - 1, len(bars)):
            window = bars[i - k_period + 1:i + 1]
            highest_high = max(b.high for b in window)
            lowest_low = min(b.low for b in window)
            if highest_high != lowest_low:
                k_values.append(100 * (bars[i].close - lowest_low) / (highest_high - lowest_low))
            else:
                k_values.append(50.0)

        k = k_values[-1]
        d = sum(k_values[-d_period:]) / d_period if len(k_values) >= d_period else k

        if k < 20:
            signal = "oversold"
        elif k > 80:
            signal = "overbought"
        elif k > d:
            signal = "bullish"
        elif k < d:
            signal = "bearish"
        else:
            signal = "neutral"

        return StochResult(k=round(k, 2), d=round(d, 2), signal=signal)

    def stoch_rsi(
        self,
        data: Sequence[float],
        rsi_period: int = 14,
        stoch_period: int = 14,
    ) -> Optional[OscillatorResult]:
        """Stochastic applied to the RSI series."""
        if len(data) < rsi_period + stoch_period:
            return None

        rsi_values = self.rsi_series(data, rsi_period)
        recent = rsi_values[-stoch_period:]
        high, low = max(recent), min(recent)
        value = (rsi_values[-1] - low) / (high - low) * 100 if high != low else 0.0

        if value < 20:
            signal = "OVERSOLD"
        elif value > 80:
            signal = "OVERBOUGHT"
        else:
            signal = "NEUTRAL"
        return OscillatorResult(value=round(value, 2), signal=signal)

    def williams_r(self, bars: Sequence[Bar], period: int = 14) -> Optional[OscillatorResult]:
        """
        Calculate Williams %R.

        Args:
            bars: OHLCV bars
            period: Lookback period

        Returns:
            OscillatorResult or None when data is short
        """
        if len(bars) < period:
            return None

        recent = bars[-period:]
        highest_high = max(b.high for b in recent)
        lowest_low = min(b.low for b in recent)
        close = bars[-1].close

        value = 0.0
        if highest_high != lowest_low:
            value = (highest_high - close) / (highest_high - lowest_low) * -100

        if value < -80:
            signal = "OVERSOLD"
        elif value > -20:
            signal = "OVERBOUGHT"
        else:
            signal = "NEUTRAL"
        return OscillatorResult(value=round(value, 2), signal=signal)

    def awesome_oscillator(self, bars: Sequence[Bar]) -> Optional[OscillatorResult]:
        """SMA(5) minus SMA(34) of the median price."""
        if len(bars) < 34:
            return None
        medians = [b.median for b in bars]
        value = self.sma(medians, 5) - self.sma(medians, 34)
        return OscillatorResult(value=round(value, 4), signal="BULLISH" if value > 0 else "BEARISH")

    # -------------------------------------------------------------------------
    # Volatility
    # -------------------------------------------------------------------------

    def bollinger_bands(
        self,
        data: Sequence[float],
        period: int = 20,
        std_dev: float = 2.0,
    ) -> BollingerBandsResult:
        """
        Calculate Bollinger Bands for the latest bar.

        Args:
            data: Price data
            period: Moving average period
            std_dev: Standard deviation multiplier

        Returns:
            BollingerBandsResult; +/-2% around the last price when data is short
        """
        if len(data) < period:
            last = float(data[-1]) if data else 0.0
            upper, middle, lower = last * 1.02, last, last * 0.98
        else:
            window = np.asarray(data[-period:], dtype=float)
            middle = float(window.mean())
            std = float(np.std(window))
            upper = middle + std_dev * std
            lower = middle - std_dev * std

        bandwidth = (upper - lower) / middle if middle != 0 else 0.0
        price = float(data[-1]) if data else 0.0
        percent_b = (price - lower) / (upper - lower) if upper != lower else 0.5

        return BollingerBandsResult(
            upper=round(upper, 2),
            middle=round(middle, 2),
            lower=round(lower, 2),
            bandwidth=round(bandwidth, 6),
            percent_b=round(percent_b, 4),
        )

    def true_ranges(self, bars: Sequence[Bar]) -> list[float]:
        """True range for every bar after the first."""
        ranges = []
        for prev, bar in zip(bars, bars[1:]):
            ranges.append(max(
                bar.high - bar.low,
                abs(bar.high - prev.close),
                abs(bar.low - prev.close),
            ))
        return ranges

    def atr(self, bars: Sequence[Bar], period: int = 14) -> float:
        """
        Calculate Average True Range as the mean of the trailing true ranges.

        Args:
            bars: OHLCV bars
            period: ATR period

        Returns:
            ATR, or 0.0 with fewer than ``period + 1`` bars
        """
        if len(bars) < period + 1:
            return 0.0
        ranges = self.true_ranges(bars)[-period:]
        return sum(ranges) / period

    def keltner_channels(
        self,
        bars: Sequence[Bar],
        period: int = 20,
        multiplier: float = 2.0,
    ) -> Optional[ChannelResult]:
        """EMA(period) +/- multiplier x ATR(period)."""
        if len(bars) < period + 1:
            return None

        closes = [b.close for b in bars]
        middle = self.ema_series(closes, period)[-1]
        atr_value = self.atr(bars, period)
        upper = middle + atr_value * multiplier
        lower = middle - atr_value * multiplier

        return ChannelResult(
            upper=round(upper, 2),
            middle=round(middle, 2),
            lower=round(lower, 2),
            width=round(upper - lower, 2),
            position=self._channel_position(closes[-1], lower, upper),
        )

    def donchian_channels(self, bars: Sequence[Bar], period: int = 20) -> Optional[ChannelResult]:
        """Highest high and lowest low over ``period`` bars."""
        if len(bars) < period:
            return None

        recent = bars[-period:]
        upper = max(b.high for b in recent)
        lower = min(b.low for b in recent)

        return ChannelResult(
            upper=round(upper, 2),
            middle=round((upper + lower) / 2, 2),
            lower=round(lower, 2),
            width=round(upper - lower, 2),
            position=self._channel_position(bars[-1].close, lower, upper),
        )

    # -------------------------------------------------------------------------
    # Trend
    # -------------------------------------------------------------------------

    def adx(self, bars: Sequence[Bar], period: int = 14) -> float:
        """
        Calculate a simplified Average Directional Index.

        Mean true range and directional movement over the last ``period``
        bars give +DI and -DI; the result is their normalised spread.

        Args:
            bars: OHLCV bars
            period: ADX period

        Returns:
            ADX in [0, 100], or 0.0 with fewer than ``period + 1`` bars
        """
        if len(bars) < period + 1:
            return 0.0

        plus_dm: list[float] = []
        minus_dm: list[float] = []
        for prev, bar in zip(bars, bars[1:]):
            up_move = bar.high - prev.high
            down_move = prev.low - bar.low
            plus_dm.append(up_move if up_move > down_move and up_move > 0 else 0.0)
            minus_dm.append(down_move if down_move > up_move and down_move > 0 else 0.0)

        avg_tr = sum(self.true_ranges(bars)[-period:]) / period
        avg_plus = sum(plus_dm[-period:]) / period
        avg_minus = sum(minus_dm[-period:]) / period

        plus_di = avg_plus / avg_tr * 100 if avg_tr > 0 else 0.0
        minus_di = avg_minus / avg_tr * 100 if avg_tr > 0 else 0.0

        total = plus_di + minus_di
        value = abs(plus_di - minus_di) / total * 100 if total > 0 else 0.0
        return round(value, 2)

    def ichimoku(
        self,
        bars: Sequence[Bar],
        tenkan_period: int = 9,
        kijun_period: int = 26,
        senkou_b_period: int = 52,
    ) -> IchimokuResult:
        """
        Calculate Ichimoku Cloud for the latest bar.

        Args:
            bars: OHLCV bars
            tenkan_period: Tenkan-sen period
            kijun_period: Kijun-sen period
            senkou_b_period: Senkou Span B period

        Returns:
            IchimokuResult; zeros and NEUTRAL below ``senkou_b_period`` bars
        """
        if len(bars) < senkou_b_period:
            return IchimokuResult()

        def period_mid(period: int) -> float:
            recent = bars[-period:]
            return (max(b.high for b in recent) + min(b.low for b in recent)) / 2

        tenkan = period_mid(tenkan_period)
        kijun = period_mid(kijun_period)
        span_a = (tenkan + kijun) / 2
        span_b = period_mid(senkou_b_period)
        price = bars[-1].close

        if price > max(span_a, span_b) and tenkan > kijun:
            signal = "STRONG_BULLISH"
        elif price > max(span_a, span_b):
            signal = "BULLISH"
        elif price < min(span_a, span_b) and tenkan < kijun:
            signal = "STRONG_BEARISH"
        elif price < min(span_a, span_b):
            signal = "BEARISH"
        else:
            signal = "NEUTRAL"

        return IchimokuResult(
            tenkan_sen=round(tenkan, 2),
            kijun_sen=round(kijun, 2),
            senkou_span_a=round(span_a, 2),
            senkou_span_b=round(span_b, 2),
            chikou_span=round(price, 2),
            cloud_color="BULLISH" if span_a > span_b else "BEARISH",
            signal=signal,
        )

    def parabolic_sar(
        self,
        bars: Sequence[Bar],
        acceleration: float = 0.02,
        max_af: float = 0.2,
    ) -> Optional[ParabolicSARResult]:
        """
        Calculate Parabolic SAR.

        Args:
            bars: OHLCV bars
            acceleration: Acceleration factor step
            max_af: Acceleration factor cap

        Returns:
            ParabolicSARResult or None below 5 bars
        """
        if len(bars) < 5:
            return None

        af = acceleration
        uptrend = bars[1].close > bars[0].close
        if uptrend:
            ep = max(bars[0].high, bars[1].high)
            sar = min(bars[0].low, bars[1].low)
        else:
            ep = min(bars[0].low, bars[1].low)
            sar = max(bars[0].high, bars[1].high)

        for bar in bars[2:]:
            sar = sar + af * (ep - sar)
            if uptrend:
                if bar.low < sar:
                    uptrend, sar, ep, af = False, ep, bar.low, acceleration
                elif bar.high > ep:
                    ep = bar.high
                    af = min(af + acceleration, max_af)
            else:
                if bar.high > sar:
                    uptrend, sar, ep, af = True, ep, bar.high, acceleration
                elif bar.low < ep:
                    ep = bar.low
                    af = min(af + acceleration, max_af)

        price = bars[-1].close
        if uptrend and price > sar:
            signal = "BULLISH"
        elif not uptrend and price < sar:
            signal = "BEARISH"
        else:
            signal = "REVERSAL"

        return ParabolicSARResult(
            current_sar=round(sar, 2),
            trend="BULLISH" if uptrend else "BEARISH",
            signal=signal,
        )

    def linear_regression_slope(self, values: Sequence[float]) -> float:
        """Least-squares slope of ``values`` against their index."""
        if len(values) < 2:
            return 0.0
        x = np.arange(len(values), dtype=float)
        slope, _ = np.polyfit(x, np.asarray(values, dtype=float), 1)
        return float(slope)

    def z_score(self, data: Sequence[float], period: int = 20) -> float:
        """Distance of the last value from the trailing mean in standard deviations."""
        if len(data) < period:
            return 0.0
        window = np.asarray(data[-period:], dtype=float)
        std = float(np.std(window))
        if std == 0:
            return 0.0
        return round((float(window[-1]) - float(window.mean())) / std, 4)

    # -------------------------------------------------------------------------
    # Volume
    # -------------------------------------------------------------------------

    def volume_ratio(self, bars: Sequence[Bar], period: int = 20) -> float:
        """Last bar volume over the average of the preceding ``period`` bars."""
        if len(bars) < 2:
            return 1.0
        history = [b.volume for b in bars[-(period + 1):-1]]
        average = sum(history) / len(history)
        if average <= 0:
            return 1.0
        return bars[-1].volume / average

    def obv(self, bars: Sequence[Bar]) -> Optional[VolumeTrendResult]:
        """
        Calculate On Balance Volume.

        Args:
            bars: OHLCV bars

        Returns:
            VolumeTrendResult or None below 2 bars
        """
        if len(bars) < 2:
            return None

        values = [bars[0].volume]
        for prev, bar in zip(bars, bars[1:]):
            if bar.close > prev.close:
                values.append(values[-1] + bar.volume)
            elif bar.close < prev.close:
                values.append(values[-1] - bar.volume)
            else:
                values.append(values[-1])

        return VolumeTrendResult(
            value=round(values[-1], 2),
            trend="BULLISH" if values[-1] > values[-2] else "BEARISH",
        )

    def ad_line(self, bars: Sequence[Bar]) -> Optional[VolumeTrendResult]:
        """Accumulation/Distribution line; None below 2 bars."""
        if len(bars) < 2:
            return None

        line = 0.0
        values: list[float] = []
        for bar in bars:
            if bar.range != 0:
                line += self._money_flow_multiplier(bar) * bar.volume
            values.append(line)

        return VolumeTrendResult(
            value=round(values[-1], 2),
            trend="ACCUMULATION" if values[-1] > values[-2] else "DISTRIBUTION",
        )

    def cmf(self, bars: Sequence[Bar], period: int = 20) -> Optional[OscillatorResult]:
        """
        Calculate Chaikin Money Flow.

        Args:
            bars: OHLCV bars
            period: Lookback period

        Returns:
            OscillatorResult or None below ``period`` bars
        """
        if len(bars) < period:
            return None

        flow_volume = 0.0
        total_volume = 0.0
        for bar in bars[-period:]:
            if bar.range != 0:
                flow_volume += self._money_flow_multiplier(bar) * bar.volume
            total_volume += bar.volume

        value = flow_volume / total_volume if total_volume != 0 else 0.0

        if value > 0.2:
            signal = "STRONG_BUYING_PRESSURE"
        elif value > 0.05:
            signal = "BUYING_PRESSURE"
        elif value < -0.2:
            signal = "STRONG_SELLING_PRESSURE"
        elif value < -0.05:
            signal = "SELLING_PRESSURE"
        else:
            signal = "NEUTRAL"
        return OscillatorResult(value=round(value, 4), signal=signal)

    def volume_profile(self, bars: Sequence[Bar], buckets: int = 20) -> Optional[VolumeProfileResult]:
        """
        Distribute volume over price buckets by bar median price.

        The value area grows outward from the point of control toward
        the heavier neighbour until it holds 70% of the volume.

        Args:
            bars: OHLCV bars
            buckets: Number of price buckets

        Returns:
            VolumeProfileResult or None for empty or flat data
        """
        if not bars:
            return None

        lowest = min(b.low for b in bars)
        highest = max(b.high for b in bars)
        price_range = highest - lowest
        if price_range == 0:
            return None

        bucket_size = price_range / buckets
        profile = [0.0] * buckets
        for bar in bars:
            index = min(int(math.floor((bar.median - lowest) / bucket_size)), buckets - 1)
            profile[index] += bar.volume

        poc_index = int(np.argmax(profile))
        total_volume = sum(profile)
        target = total_volume * 0.70

        covered = profile[poc_index]
        lower_index = upper_index = poc_index
        while covered < target and (lower_index > 0 or upper_index < buckets - 1):
            lower_volume = profile[lower_index - 1] if lower_index > 0 else 0.0
            upper_volume = profile[upper_index + 1] if upper_index < buckets - 1 else 0.0
            if lower_volume > upper_volume and lower_index > 0:
                lower_index -= 1
                covered += lower_volume
            elif upper_index < buckets - 1:
                upper_index += 1
                covered += upper_volume
            else:
                lower_index -= 1
                covered += lower_volume

        return VolumeProfileResult(
            poc_price=round(lowest + poc_index * bucket_size + bucket_size / 2, 2),
            value_area_high=round(lowest + (upper_index + 1) * bucket_size, 2),
            value_area_low=round(lowest + lower_index * bucket_size, 2),
            total_volume=total_volume,
            profile=[
                {"price_level": round(lowest + i * bucket_size, 2), "volume": volume}
                for i, volume in enumerate(profile)
            ],
        )

    # -------------------------------------------------------------------------
    # Levels
    # -------------------------------------------------------------------------

    def fibonacci_levels(self, bars: Sequence[Bar], lookback: int = 50) -> Optional[FibonacciResult]:
        """
        Calculate Fibonacci retracement and extension levels.

        Levels run from the swing low to the swing high in an uptrend
        and from the high to the low in a downtrend.

        Args:
            bars: OHLCV bars
            lookback: Bars used to find the swing

        Returns:
            FibonacciResult or None below ``lookback`` bars
        """
        if len(bars) < lookback:
            return None

        recent = bars[-lookback:]
        highest = max(b.high for b in recent)
        lowest = min(b.low for b in recent)
        uptrend = recent[-1].close > recent[0].close

        if uptrend:
            base, diff = lowest, highest - lowest
        else:
            base, diff = highest, lowest - highest

        return FibonacciResult(
            retracement_levels={f"{ratio:.3f}": round(base + diff * ratio, 2) for ratio in FIB_RETRACEMENTS},
            extension_levels={f"{ratio:.3f}": round(base + diff * ratio, 2) for ratio in FIB_EXTENSIONS},
            trend="UPTREND" if uptrend else "DOWNTREND",
            swing_high=round(highest, 2),
            swing_low=round(lowest, 2),
        )

    def pivot_points(self, bar: Bar) -> PivotPointsResult:
        """
        Calculate pivot points from one bar's high, low and close.

        Args:
            bar: Reference bar (usually the last completed one)

        Returns:
            Standard, Fibonacci, Camarilla and Woodie levels
        """
        high, low, close = bar.high, bar.low, bar.close
        span = high - low
        pivot = (high + low + close) / 3

        standard = {
            "pivot": pivot,
            "r1": 2 * pivot - low,
            "r2": pivot + span,
            "r3": high + 2 * (pivot - low),
            "s1": 2 * pivot - high,
            "s2": pivot - span,
            "s3": low - 2 * (high - pivot),
        }
        fibonacci = {"pivot": pivot}
        for level, ratio in enumerate((0.382, 0.618, 1.0), start=1):
            fibonacci[f"r{level}"] = pivot + span * ratio
            fibonacci[f"s{level}"] = pivot - span * ratio

        camarilla = {}
        for level, divisor in enumerate((12, 6, 4, 2), start=1):
            camarilla[f"r{level}"] = close + span * 1.1 / divisor
            camarilla[f"s{level}"] = close - span * 1.1 / divisor

        woodie_pivot = (high + low + 2 * close) / 4
        woodie = {
            "pivot": woodie_pivot,
            "r1": 2 * woodie_pivot - low,
            "r2": woodie_pivot + span,
            "s1": 2 * woodie_pivot - high,
            "s2": woodie_pivot - span,
        }

        def rounded(levels: dict[str, float]) -> dict[str, float]:
            return {k: round(v, 2) for k, v in levels.items()}

        return PivotPointsResult(
            standard=rounded(standard),
            fibonacci=rounded(fibonacci),
            camarilla=rounded(camarilla),
            woodie=rounded(woodie),
        )

    # -------------------------------------------------------------------------
    # Aggregate
    # -------------------------------------------------------------------------

    def calculate_all(self, bars: Sequence[Bar]) -> dict[str, Any]:
        """
        Calculate the indicator set stored per timeframe in a market snapshot.

        Args:
            bars: Chronological OHLCV bars for one timeframe

        Returns:
            Dictionary of plain values and dumped result models
        """
        closes = [b.close for b in bars]

        def dump(result: Optional[BaseModel]) -> Optional[dict[str, Any]]:
            return result.model_dump() if result is not None else None

        return {
            "price": closes[-1] if closes else 0.0,
            "rsi": self.rsi(closes),
            "macd": self.macd(closes).model_dump(),
            "bollinger_bands": self.bollinger_bands(closes).model_dump(),
            "ema_12": self.ema(closes, 12),
            "ema_26": self.ema(closes, 26),
            "ema_50": self.ema(closes, 50),
            "atr": round(self.atr(bars), 4),
            "adx": self.adx(bars),
            "stochastic": self.stochastic(bars).model_dump(),
            "stoch_rsi": dump(self.stoch_rsi(closes)),
            "williams_r": dump(self.williams_r(bars)),
            "cmf": dump(self.cmf(bars)),
            "obv": dump(self.obv(bars)),
            "ad_line": dump(self.ad_line(bars)),
            "ichimoku": self.ichimoku(bars).model_dump(),
            "parabolic_sar": dump(self.parabolic_sar(bars)),
            "keltner": dump(self.keltner_channels(bars)),
            "donchian": dump(self.donchian_channels(bars)),
            "awesome_oscillator": dump(self.awesome_oscillator(bars)),
            "volume_ratio": round(self.volume_ratio(bars), 4),
            "z_score": self.z_score(closes),
        }

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    @staticmethod
    def _money_flow_multiplier(bar: Bar) -> float:
        return ((bar.close - bar.low) - (bar.high - bar.close)) / bar.range

    @staticmethod
    def _channel_position(price: float, lower: float, upper: float) -> str:
        span = upper - lower
        if span == 0:
            return "MIDDLE"
        position = (price - lower) / span
        if position >= 0.8:
            return "UPPER"
        if position >= 0.6:
            return "UPPER_MIDDLE"
        if position >= 0.4:
            return "MIDDLE"
        if position >= 0.2:
            return "LOWER_MIDDLE"
        return "LOWER"

    def __repr__(self) -> str:
        """String representation."""
        return "TechnicalIndicators()"
