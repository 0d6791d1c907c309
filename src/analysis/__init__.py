"""
Analysis Package for Futures Trading Bot.

This package provides technical indicator calculations and chart
pattern recognition.

Modules:
    technical_indicators: Technical indicator calculations
    pattern_recognition: Candlestick and chart pattern detection
"""

from src.analysis.technical_indicators import (
    TechnicalIndicators,
    MACDResult,
    BollingerBandsResult,
    StochResult,
    OscillatorResult,
    VolumeTrendResult,
    IchimokuResult,
    FibonacciResult,
    PivotPointsResult,
    VolumeProfileResult,
    ParabolicSARResult,
    ChannelResult,
)

from src.analysis.pattern_recognition import (
    PatternRecognition,
    PatternType,
    PatternDirection,
    PatternCategory,
    Pivot,
    PriceLevel,
    ChartPattern,
)


__all__ = [
    "TechnicalIndicators",
    "MACDResult",
    "BollingerBandsResult",
    "StochResult",
    "OscillatorResult",
    "VolumeTrendResult",
    "IchimokuResult",
    "FibonacciResult",
    "PivotPointsResult",
    "VolumeProfileResult",
    "ParabolicSARResult",
    "ChannelResult",
    "PatternRecognition",
    "PatternType",
    "PatternDirection",
    "PatternCategory",
    "Pivot",
    "PriceLevel",
    "ChartPattern",
]
