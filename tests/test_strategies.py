from datetime import timedelta

import pytest

from conftest import START, TIMEFRAMES, make_bars, make_snapshot, uptrend_bars
from src.core.models import Bar, DecisionType, Direction, Signal, Trade, TradeSide
from src.strategies import (
    BreakoutStrategy,
    MarketMakingStrategy,
    MeanReversionStrategy,
    ScalpingStrategy,
    StrategyConfig,
    StrategyManager,
    TradingStrategy,
    TrendFollowingStrategy,
    create_default_strategies,
)
from src.utils.exceptions import StrategyNotFoundError


class ExplodingStrategy(TradingStrategy):
    def __init__(self):
        super().__init__(StrategyConfig(name='Exploding'))

    def evaluate(self, snapshot):
        raise RuntimeError('boom')

    def required_timeframes(self):
        return ['5m']

    def stop_loss(self, entry, side, snapshot, analysis=None):
        return entry


def trend_snapshot():
    bars = uptrend_bars()
    return make_snapshot({tf: bars for tf in TIMEFRAMES})


def downtrend_snapshot():
    deltas = [-100.0, -100.0, -100.0, -100.0, 130.0]
    price = 53240.0
    closes = []
    for i in range(60):
        price += deltas[i % 5]
        closes.append(price)
    bars = make_bars(closes, start_price=53240.0)
    return make_snapshot({tf: bars for tf in TIMEFRAMES})


def oversold_snapshot():
    closes = [1000.0 + (2.0 if i % 2 else 0.0) for i in range(57)] + [990.0, 975.0, 960.0]
    bars = make_bars(closes)
    bars[-1] = bars[-1].model_copy(update={'volume': 5000.0})
    return make_snapshot({tf: bars for tf in TIMEFRAMES})


def consolidation_snapshot(last_close):
    """Fifty-nine bars cycling 49800-50200 with a 5x volume bar closing at ``last_close``."""
    wave = [49800, 49880, 49960, 50040, 50120, 50200, 50120, 50040, 49960, 49880]
    bars = []
    for i in range(60):
        close = float(wave[i % 10]) if i < 59 else last_close
        bars.append(Bar(
            timestamp=START + timedelta(minutes=5 * i),
            open=close,
            high=close + 10,
            low=close - 10,
            close=close,
            volume=1000.0 if i < 59 else 5000.0,
        ))
    return make_snapshot({tf: bars for tf in TIMEFRAMES})


def hammer_snapshot():
    """Quiet one-minute tape ending on a high-volume hammer, with rising 5m and 15m series."""
    bars = [
        Bar(timestamp=START + timedelta(minutes=i), open=999.6, high=1000.1, low=999.5,
            close=1000.0, volume=1000.0)
        for i in range(29)
    ]
    bars.append(Bar(timestamp=START + timedelta(minutes=29), open=1001.5, high=1001.82,
                    low=1000.85, close=1001.8, volume=3000.0))
    ramp = make_bars([1000.0 + i for i in range(60)])
    return make_snapshot({'1m': bars, '5m': ramp, '15m': ramp})


def quoting_snapshot(side=None):
    """Flat one-minute market, optionally holding a position worth half the balance."""
    bars = make_bars([1000.0] * 60, step=timedelta(minutes=1))
    positions = []
    if side is not None:
        positions.append(Trade(symbol='BTCUSDT', side=side, entry_price=1000.0, quantity=5.0))
    return make_snapshot({'1m': bars}, open_positions=positions)


def test_trend_following_buys_uptrend():
    signal = TrendFollowingStrategy().evaluate(trend_snapshot())
    assert signal.direction == Direction.BUY
    assert signal.confidence == 100.0
    assert signal.strength >= 60
    assert signal.entry_price == 50000.0
    assert signal.stop_loss == 49000.0
    assert signal.take_profit == 52000.0
    assert signal.risk_reward_ratio == 2.0
    assert signal.recommended_leverage in (3, 5)


def test_trend_following_sells_downtrend():
    snapshot = downtrend_snapshot()
    signal = TrendFollowingStrategy().evaluate(snapshot)
    assert signal.direction == Direction.SELL
    price = snapshot.current_price()
    assert signal.stop_loss == round(price * 1.02, 2)
    assert signal.take_profit < price


def test_trend_following_holds_without_data():
    bars = uptrend_bars()[:10]
    signal = TrendFollowingStrategy().evaluate(make_snapshot({tf: bars for tf in TIMEFRAMES}))
    assert signal.direction == Direction.HOLD
    assert signal.reasons == ('Insufficient data across required timeframes',)


def test_leverage_ladder():
    assert TradingStrategy.leverage_for(90, 90) == 5
    assert TradingStrategy.leverage_for(70, 80) == 3
    assert TradingStrategy.leverage_for(60, 70) == 2
    assert TradingStrategy.leverage_for(10, 10) == 1


def test_take_profit_uses_reward_ratio():
    strategy = TrendFollowingStrategy()
    snapshot = trend_snapshot()
    assert strategy.take_profit(100.0, TradeSide.LONG, snapshot) == 104.0
    assert strategy.take_profit(100.0, TradeSide.SHORT, snapshot) == 96.0


def test_mean_reversion_buys_oversold_extreme():
    snapshot = oversold_snapshot()
    signal = MeanReversionStrategy().evaluate(snapshot)
    assert signal.direction == Direction.BUY
    assert signal.stop_loss == 936.0
    assert signal.take_profit > 960.0
    assert signal.recommended_leverage in (1, 2, 3)


def test_mean_reversion_insufficient_data():
    bars = make_bars([100.0] * 10)
    signal = MeanReversionStrategy().evaluate(make_snapshot({tf: bars for tf in TIMEFRAMES}))
    assert signal.direction == Direction.HOLD
    assert signal.reasons == ('Insufficient market data',)


def test_breakout_insufficient_data():
    bars = make_bars([100.0] * 10)
    signal = BreakoutStrategy().evaluate(make_snapshot({tf: bars for tf in TIMEFRAMES}))
    assert signal.reasons == ('Insufficient data for breakout analysis',)


def test_breakout_buys_resistance_break():
    signal = BreakoutStrategy().evaluate(consolidation_snapshot(50500.0))
    assert signal.direction == Direction.BUY
    breakout = signal.metadata['breakout']
    assert breakout['confirmations'] == 5
    assert breakout['level'] == pytest.approx(50210.0)
    assert signal.entry_price == 50500.0
    assert signal.stop_loss == pytest.approx(50148.57)
    assert signal.take_profit == pytest.approx(51378.57, abs=0.01)


def test_breakout_sells_support_break():
    signal = BreakoutStrategy().evaluate(consolidation_snapshot(49500.0))
    assert signal.direction == Direction.SELL
    breakout = signal.metadata['breakout']
    assert breakout['level'] == pytest.approx(49790.0)
    assert breakout['confirmations'] >= 4
    assert signal.stop_loss > 49790.0
    assert signal.take_profit < 49500.0


def test_scalping_buys_quality_setup():
    signal = ScalpingStrategy().evaluate(hammer_snapshot())
    assert signal.direction == Direction.BUY
    opportunity = signal.metadata['opportunity']
    assert opportunity['quality'] >= 0.7
    assert 'Bullish candle pattern: HAMMER' in signal.reasons
    assert signal.entry_price == 1001.8
    assert signal.stop_loss == pytest.approx(998.79)
    assert signal.take_profit == pytest.approx(1005.81)


def test_market_making_sells_down_long_inventory():
    signal = MarketMakingStrategy().evaluate(quoting_snapshot(TradeSide.LONG))
    assert signal.direction == Direction.SELL
    assert signal.metadata['inventory']['ratio'] == 0.5
    assert 'Inventory management: favoring SELL to rebalance' in signal.reasons
    # long inventory skews both quotes below mid
    assert signal.entry_price == pytest.approx(998.25)
    assert signal.take_profit == pytest.approx(996.75)
    assert signal.stop_loss > signal.entry_price


def test_market_making_buys_back_short_inventory():
    signal = MarketMakingStrategy().evaluate(quoting_snapshot(TradeSide.SHORT))
    assert signal.direction == Direction.BUY
    assert signal.metadata['inventory']['ratio'] == -0.5
    assert signal.entry_price == pytest.approx(1001.75)
    assert signal.take_profit == pytest.approx(1003.25)
    assert signal.stop_loss < signal.entry_price


def test_market_making_holds_when_flat():
    signal = MarketMakingStrategy().evaluate(quoting_snapshot())
    assert signal.direction == Direction.HOLD
    assert 'Balanced quoting (neutral market)' in signal.reasons
    assert signal.metadata['viability']['score'] == 0.85

def test_scalping_and_market_making_need_one_minute_bars():
    snapshot = trend_snapshot()
    assert ScalpingStrategy().evaluate(snapshot).reasons == ('Insufficient data for scalping',)
    assert MarketMakingStrategy().evaluate(snapshot).reasons == ('Insufficient data for market making',)


def test_every_strategy_returns_a_signal():
    bars = uptrend_bars(count=120)
    snapshot = make_snapshot({tf: bars for tf in ['1m', *TIMEFRAMES]})
    for strategy in create_default_strategies():
        signal = strategy.evaluate(snapshot)
        assert isinstance(signal, Signal)
        assert signal.symbol == 'BTCUSDT'
        assert signal.strategy_name == strategy.name
        if signal.is_actionable:
            assert signal.stop_loss is not None
            assert signal.take_profit is not None


def test_manager_contains_strategy_errors():
    manager = StrategyManager([TrendFollowingStrategy(), ExplodingStrategy()])
    signals = manager.evaluate_all(trend_snapshot())
    failed = [s for s in signals if s.strategy_name == 'Exploding'][0]
    assert failed.direction == Direction.HOLD
    assert failed.metadata == {'error': True}

    decision = manager.evaluate(trend_snapshot())
    assert decision.decision == DecisionType.BUY
    assert decision.market_conditions['strategy'] == 'TrendFollowing'
    assert len(decision.market_conditions['signals']) == 2
    assert decision.recommended_stop_loss == 49000.0


def test_best_signal_prefers_average_score():
    weak = Signal(strategy_name='a', symbol='BTCUSDT', direction=Direction.BUY, strength=90, confidence=40)
    strong = Signal(strategy_name='b', symbol='BTCUSDT', direction=Direction.SELL, strength=70, confidence=80)
    hold = Signal.hold('c', 'BTCUSDT', ['nothing'])
    assert StrategyManager.best_signal([weak, strong, hold]).strategy_name == 'b'
    assert StrategyManager.best_signal([hold]).direction == Direction.HOLD


def test_required_timeframes_union():
    manager = StrategyManager(create_default_strategies())
    timeframes = manager.required_timeframes()
    assert timeframes[:4] == TIMEFRAMES
    assert '1m' in timeframes
    assert manager.get_stats()['strategies'] == 5


def test_registry_operations():
    manager = StrategyManager([TrendFollowingStrategy(), MeanReversionStrategy()])
    assert manager.strategy_names == ['TrendFollowing', 'MeanReversion']
    assert manager.get_strategy('MeanReversion').name == 'MeanReversion'
    assert [s['name'] for s in manager.list_strategies()] == manager.strategy_names

    assert manager.remove_strategy('MeanReversion')
    assert not manager.remove_strategy('MeanReversion')
    with pytest.raises(StrategyNotFoundError):
        manager.get_strategy('MeanReversion')
