from datetime import timedelta

import pytest

from conftest import START, make_bars, uptrend_bars
from src.analysis.pattern_recognition import PatternDirection, PatternRecognition, PatternType
from src.analysis.technical_indicators import TechnicalIndicators
from src.core.models import Bar


def flat_bars(closes, wick=5.0):
    return [
        Bar(timestamp=START + timedelta(minutes=5 * i), open=c, high=c + wick, low=c - wick, close=c, volume=100.0)
        for i, c in enumerate(closes)
    ]


def test_sma_and_ema():
    ti = TechnicalIndicators()
    assert ti.sma([1, 2, 3, 4, 5], 5) == 3
    assert ti.sma([1, 2], 5) == 2
    assert ti.ema([10.0] * 30, 12) == 10.0
    assert ti.ema([], 12) == 0.0


def test_ema_weights_recent_prices():
    ti = TechnicalIndicators()
    closes = [float(i) for i in range(1, 41)]
    assert ti.ema(closes, 12) > ti.ema(closes, 26)


def test_rsi_bounds_and_edges():
    ti = TechnicalIndicators()
    assert ti.rsi([1.0, 2.0, 3.0]) == 50.0
    assert ti.rsi([100.0] * 20) == 50.0
    assert ti.rsi([float(i) for i in range(20)]) == 100.0
    assert ti.rsi([float(20 - i) for i in range(20)]) == 0.0
    closes = [b.close for b in uptrend_bars()]
    assert 0.0 <= ti.rsi(closes) <= 100.0


def test_macd_short_data_is_neutral():
    result = TechnicalIndicators().macd([1.0] * 10)
    assert result.histogram == 0.0
    assert result.signal == 'neutral'


def test_bollinger_fallback_and_order():
    ti = TechnicalIndicators()
    short = ti.bollinger_bands([100.0, 100.0])
    assert short.upper == pytest.approx(102.0)
    assert short.lower == pytest.approx(98.0)
    bands = ti.bollinger_bands([100.0 + (i % 3) for i in range(30)])
    assert bands.lower < bands.middle < bands.upper


def test_atr_and_adx_on_trend():
    ti = TechnicalIndicators()
    bars = uptrend_bars()
    assert ti.atr(bars[:10]) == 0.0
    assert ti.atr(bars) > 0
    adx = ti.adx(bars)
    assert 75 < adx <= 100


def test_calculate_all_keys():
    values = TechnicalIndicators().calculate_all(uptrend_bars())
    for key in ('price', 'rsi', 'macd', 'bollinger_bands', 'atr', 'adx', 'stochastic'):
        assert key in values
    assert values['price'] == 50000.0


def test_calculate_all_values_on_steady_rise():
    bars = flat_bars([100.0 + i for i in range(60)])
    values = TechnicalIndicators().calculate_all(bars)
    assert values['price'] == 159.0
    assert values['rsi'] == 100.0
    # a linear ramp leaves the EMA (period - 1) / 2 behind
    assert values['ema_12'] == 153.5
    assert values['ema_26'] == 146.5
    assert values['ema_50'] == 134.5
    assert values['atr'] == 10.0
    assert values['volume_ratio'] == 1.0
    assert values['bollinger_bands']['middle'] == 149.5
    assert values['ichimoku']['signal'] == 'STRONG_BULLISH'
    assert values['parabolic_sar'] is not None


def test_ichimoku_levels():
    ti = TechnicalIndicators()
    assert ti.ichimoku(flat_bars([100.0] * 30)).signal == 'NEUTRAL'

    cloud = ti.ichimoku(flat_bars([100.0 + i for i in range(60)]))
    assert cloud.tenkan_sen == 155.0
    assert cloud.kijun_sen == 146.5
    assert cloud.senkou_span_a == 150.75
    assert cloud.senkou_span_b == 133.5
    assert cloud.chikou_span == 159.0
    assert cloud.cloud_color == 'BULLISH'
    assert cloud.signal == 'STRONG_BULLISH'

    falling = ti.ichimoku(flat_bars([160.0 - i for i in range(60)]))
    assert falling.cloud_color == 'BEARISH'
    assert falling.signal == 'STRONG_BEARISH'


def test_parabolic_sar_trails_trend():
    ti = TechnicalIndicators()
    assert ti.parabolic_sar(flat_bars([100.0] * 4)) is None

    rising = ti.parabolic_sar(flat_bars([100.0 + i for i in range(10)]))
    assert rising.current_sar == pytest.approx(103.61)
    assert (rising.trend, rising.signal) == ('BULLISH', 'BULLISH')

    falling = ti.parabolic_sar(flat_bars([109.0 - i for i in range(10)]))
    assert falling.current_sar == pytest.approx(105.39)
    assert (falling.trend, falling.signal) == ('BEARISH', 'BEARISH')


def test_double_top_detected():
    closes = [1000.0 + 10 * i for i in range(11)]
    closes += [1090.0 - 10 * i for i in range(6)]
    closes += [1050.0 + 10 * i for i in range(6)]
    closes += [1090.0 - 10 * i for i in range(8)]
    pattern = PatternRecognition().detect_double_top(flat_bars(closes))
    assert pattern is not None
    assert pattern.pattern_type == PatternType.DOUBLE_TOP
    assert pattern.direction == PatternDirection.BEARISH
    assert 0.0 <= pattern.confidence <= 1.0


def zigzag(points, steps=4):
    """Closes moving linearly between turning points in ``steps`` bars per leg."""
    closes = []
    for a, b in zip(points, points[1:]):
        closes.extend(a + (b - a) * s / steps for s in range(steps))
    closes.append(points[-1])
    return closes


def test_triple_top_detected():
    closes = [1000.0, 1020.0, 1040.0, 1060.0, 1080.0, 1100.0, 1080.0, 1060.0, 1040.0, 1020.0] * 3 + [1000.0]
    pattern = PatternRecognition().detect_triple_top(flat_bars(closes))
    assert pattern.pattern_type == PatternType.TRIPLE_TOP
    assert pattern.direction == PatternDirection.BEARISH
    assert pattern.details['neckline'] == 995.0
    assert pattern.target == pytest.approx(885.0)
    assert pattern.completed


def test_triple_bottom_detected():
    closes = [1100.0, 1080.0, 1060.0, 1040.0, 1020.0, 1000.0, 1020.0, 1040.0, 1060.0, 1080.0] * 3 + [1100.0]
    pattern = PatternRecognition().detect_triple_bottom(flat_bars(closes))
    assert pattern.pattern_type == PatternType.TRIPLE_BOTTOM
    assert pattern.direction == PatternDirection.BULLISH
    assert pattern.details['neckline'] == 1105.0
    assert pattern.target == pytest.approx(1215.0)


def test_shallow_triple_swings_are_not_patterns():
    # three equal highs only 2% above the neckline
    closes = [1000.0, 1002.0, 1004.0, 1006.0, 1008.0, 1010.0, 1008.0, 1006.0, 1004.0, 1002.0] * 3 + [1000.0]
    bars = flat_bars(closes)
    recognizer = PatternRecognition()
    assert len(recognizer.find_pivot_highs(bars)) == 3
    assert recognizer.detect_triple_top(bars) is None
    assert recognizer.detect_triple_bottom(flat_bars([2010.0 - c for c in closes])) is None


def test_head_and_shoulders_detected():
    closes = zigzag([1000.0, 1100.0, 1000.0, 1200.0, 1000.0, 1100.0, 960.0], steps=5)
    pattern = PatternRecognition().detect_head_and_shoulders(flat_bars(closes))
    assert pattern.pattern_type == PatternType.HEAD_AND_SHOULDERS
    assert pattern.direction == PatternDirection.BEARISH
    assert pattern.confidence == 0.9
    assert pattern.details['head']['value'] == 1205.0
    assert pattern.details['neckline'] == 995.0
    assert pattern.target == pytest.approx(785.0)


def test_inverse_head_and_shoulders_detected():
    closes = zigzag([1000.0, 900.0, 1000.0, 800.0, 1000.0, 900.0, 1040.0], steps=5)
    pattern = PatternRecognition().detect_inverse_head_and_shoulders(flat_bars(closes))
    assert pattern.pattern_type == PatternType.INVERSE_HEAD_AND_SHOULDERS
    assert pattern.direction == PatternDirection.BULLISH
    assert pattern.details['head']['value'] == 795.0
    assert pattern.details['neckline'] == 1005.0
    assert pattern.target == pytest.approx(1215.0)


def test_ascending_and_descending_triangles():
    recognizer = PatternRecognition()
    rising_lows = zigzag([1000.0, 1100.0, 1015.0, 1100.0, 1030.0, 1100.0, 1045.0, 1100.0, 1060.0, 1100.0, 1075.0])
    ascending = recognizer.detect_ascending_triangle(flat_bars(rising_lows))
    assert ascending.direction == PatternDirection.BULLISH
    assert ascending.details['resistance_level'] == pytest.approx(1105.0)
    assert ascending.target == pytest.approx(1215.0)
    assert recognizer.detect_descending_triangle(flat_bars(rising_lows)) is None

    falling_highs = zigzag([1100.0, 1000.0, 1085.0, 1000.0, 1070.0, 1000.0, 1055.0, 1000.0, 1040.0, 1000.0, 1025.0])
    descending = recognizer.detect_descending_triangle(flat_bars(falling_highs))
    assert descending.direction == PatternDirection.BEARISH
    assert descending.details['support_level'] == pytest.approx(995.0)
    assert descending.target == pytest.approx(885.0)


def test_symmetrical_triangle():
    closes = zigzag([1000.0, 1100.0, 1010.0, 1090.0, 1020.0, 1080.0, 1030.0, 1070.0, 1040.0, 1060.0, 1050.0])
    pattern = PatternRecognition().detect_symmetrical_triangle(flat_bars(closes))
    assert pattern.direction == PatternDirection.NEUTRAL
    assert pattern.details['resistance_slope'] < 0 < pattern.details['support_slope']


def test_flags_follow_the_pole():
    recognizer = PatternRecognition()
    bull = [1000.0 + 10 * i for i in range(10)] + [1088.0 - 2 * i for i in range(10)]
    flag = recognizer.detect_bullish_flag(flat_bars(bull))
    assert flag.direction == PatternDirection.BULLISH
    assert flag.details['pole_move'] == 9.0
    assert flag.target == pytest.approx(1180.0)
    assert recognizer.detect_bearish_flag(flat_bars(bull)) is None

    bear = [1000.0 - 10 * i for i in range(10)] + [912.0 + 2 * i for i in range(10)]
    flag = recognizer.detect_bearish_flag(flat_bars(bear))
    assert flag.direction == PatternDirection.BEARISH
    assert flag.details['pole_move'] == -9.0
    assert flag.target == pytest.approx(820.0)


def test_rectangle_counts_touches():
    closes = [1000.0, 1025.0, 1050.0, 1025.0] * 8
    pattern = PatternRecognition().detect_rectangle(flat_bars(closes))
    assert pattern.pattern_type == PatternType.RECTANGLE
    assert pattern.details == {
        'resistance': 1055.0,
        'support': 995.0,
        'range_percent': 5.85,
        'top_touches': 8,
        'bottom_touches': 7,
    }
    assert PatternRecognition().detect_rectangle(flat_bars([1000.0, 1001.0] * 15)) is None


def test_pattern_confidence_is_a_fraction():
    bars = make_bars([100.0 + (i % 7) * 3 - (i % 4) for i in range(80)])
    for pattern in PatternRecognition().detect_all_patterns(bars):
        assert 0.0 <= pattern.confidence <= 1.0


def test_hammer_candle():
    bars = flat_bars([100.0, 100.0])
    bars.append(Bar(timestamp=START + timedelta(minutes=10), open=100.0, high=101.1, low=95.0, close=101.0))
    types = {p.pattern_type for p in PatternRecognition().detect_candlestick_patterns(bars)}
    assert PatternType.HAMMER in types


def test_fibonacci_levels_follow_trend():
    ti = TechnicalIndicators()
    closes = [100.0 + i for i in range(50)]
    assert ti.fibonacci_levels(flat_bars(closes[:10])) is None

    up = ti.fibonacci_levels(flat_bars(closes))
    assert up.trend == 'UPTREND'
    assert (up.swing_low, up.swing_high) == (95.0, 154.0)
    assert up.retracement_levels['0.000'] == 95.0
    assert up.retracement_levels['0.500'] == 124.5
    assert up.retracement_levels['1.000'] == 154.0
    assert up.extension_levels['1.618'] == pytest.approx(190.46)

    down = ti.fibonacci_levels(flat_bars(list(reversed(closes))))
    assert down.trend == 'DOWNTREND'
    assert down.retracement_levels['0.000'] == 154.0
    assert down.retracement_levels['1.000'] == 95.0


def test_pivot_points():
    bar = Bar(timestamp=START, open=95.0, high=110.0, low=90.0, close=100.0)
    pivots = TechnicalIndicators().pivot_points(bar)
    assert pivots.standard == {'pivot': 100.0, 'r1': 110.0, 'r2': 120.0, 'r3': 130.0, 's1': 90.0, 's2': 80.0, 's3': 70.0}
    assert pivots.fibonacci['r1'] == 107.64
    assert pivots.fibonacci['s3'] == 80.0
    assert pivots.camarilla['r1'] == 101.83
    assert pivots.camarilla['s4'] == 89.0
    assert pivots.woodie['pivot'] == 100.0


def test_volume_profile_point_of_control():
    ti = TechnicalIndicators()
    assert ti.volume_profile([]) is None
    assert ti.volume_profile(flat_bars([100.0, 100.0], wick=0.0)) is None

    profile = ti.volume_profile(flat_bars([100.0] * 5 + [200.0]))
    assert profile.total_volume == 600.0
    assert profile.poc_price == 97.75
    assert (profile.value_area_low, profile.value_area_high) == (95.0, 100.5)
    assert len(profile.profile) == 20
    assert profile.profile[-1]['volume'] == 100.0


def test_support_and_resistance_levels():
    wave = [90.0, 94.0, 98.0, 102.0, 106.0, 110.0, 106.0, 102.0, 98.0, 94.0]
    levels = PatternRecognition().find_support_resistance(flat_bars(wave * 4 + [90.0]))
    assert [(lv.price, lv.touches, lv.kind) for lv in levels] == [
        (115.0, 4, 'resistance'),
        (85.0, 3, 'support'),
    ]
    assert PatternRecognition().find_support_resistance([]) == []
