from datetime import timedelta

import pytest

from src.core.models import CloseReason, Decision, DecisionType, Trade, TradeSide, TradeStatus
from src.utils.date_utils import now_utc
from src.utils.exceptions import DatabaseError, DatabaseIntegrityError, InvalidStateTransitionError


def make_decision(**overrides):
    values = dict(
        symbol='BTCUSDT',
        decision=DecisionType.BUY,
        confidence=82.5,
        timeframes_analyzed=['5m', '1h'],
        market_conditions={'strategy': 'TrendFollowing'},
        recommended_leverage=3,
        recommended_stop_loss=49000.0,
        recommended_take_profit=52000.0,
    )
    values.update(overrides)
    return Decision(**values)


def make_trade(decision_id=None, **overrides):
    values = dict(
        symbol='BTCUSDT',
        side=TradeSide.LONG,
        entry_price=50000.0,
        quantity=0.2,
        leverage=3,
        stop_loss=49000.0,
        take_profit=52000.0,
        decision_id=decision_id,
    )
    values.update(overrides)
    return Trade(**values)


async def test_decision_round_trip(repository):
    decision = await repository.save_decision(make_decision())
    stored = await repository.get_decision(decision.id)
    assert stored.symbol == 'BTCUSDT'
    assert stored.decision == DecisionType.BUY
    assert stored.timeframes_analyzed == ['5m', '1h']
    assert stored.market_conditions == {'strategy': 'TrendFollowing'}
    assert stored.analyzed_at == decision.analyzed_at
    assert not stored.executed

    assert await repository.mark_decision_executed(decision.id)
    assert await repository.set_execution_error(decision.id, 'late')
    stored = await repository.get_decision(decision.id)
    assert stored.executed
    assert stored.execution_error == 'late'


async def test_duplicate_decision_id_rejected(repository):
    decision = await repository.save_decision(make_decision())
    with pytest.raises(DatabaseIntegrityError):
        await repository.save_decision(decision)


async def test_one_trade_per_decision(repository):
    decision = await repository.save_decision(make_decision())
    await repository.create_trade(make_trade(decision.id))
    with pytest.raises(DatabaseIntegrityError):
        await repository.create_trade(make_trade(decision.id))
    assert (await repository.get_trade_by_decision(decision.id)).decision_id == decision.id
    assert await repository.count_open_trades() == 1


async def test_trade_transitions_are_one_way(repository):
    trade = await repository.create_trade(make_trade())
    closed = await repository.close_trade(trade.id, 52000.0, 1200.0, 4.0, CloseReason.TAKE_PROFIT_HIT)
    assert closed.status == TradeStatus.CLOSED
    assert closed.close_reason == CloseReason.TAKE_PROFIT_HIT
    assert closed.closed_at is not None

    with pytest.raises(InvalidStateTransitionError):
        await repository.close_trade(trade.id, 53000.0, 1800.0, 6.0, CloseReason.TAKE_PROFIT_HIT)
    with pytest.raises(InvalidStateTransitionError):
        await repository.cancel_trade(trade.id)

    cancelled = await repository.cancel_trade((await repository.create_trade(make_trade())).id)
    assert cancelled.status == TradeStatus.CANCELLED
    assert cancelled.close_reason == CloseReason.EXTERNAL_CANCEL


async def test_realized_pnl_queries(repository):
    winner = await repository.create_trade(make_trade())
    loser = await repository.create_trade(make_trade())
    await repository.close_trade(winner.id, 52000.0, 1200.0, 4.0, CloseReason.TAKE_PROFIT_HIT)
    await repository.close_trade(loser.id, 49000.0, -600.0, -2.0, CloseReason.STOP_LOSS_HIT)
    await repository.create_trade(make_trade())

    assert await repository.realized_pnl_since(now_utc() - timedelta(hours=1)) == pytest.approx(600.0)
    assert await repository.realized_pnl_since(now_utc() + timedelta(hours=1)) == 0.0
    assert await repository.closed_pnl_history() == [1200.0, -600.0]
    assert len(await repository.list_open_trades('BTCUSDT')) == 1
    assert len(await repository.list_open_trades('ETHUSDT')) == 0

    stats = await repository.get_statistics()
    assert stats['trades'] == {'CLOSED': 2, 'OPEN': 1}


async def test_transaction_rolls_back(repository):
    decision = make_decision()
    with pytest.raises(RuntimeError):
        async with repository.transaction():
            await repository.save_decision(decision)
            raise RuntimeError('abort')
    assert await repository.get_decision(decision.id) is None

    async with repository.transaction():
        await repository.save_decision(decision)
    assert await repository.get_decision(decision.id) is not None


async def test_nested_transaction_rejected(repository):
    async with repository.transaction():
        with pytest.raises(DatabaseError):
            async with repository.transaction():
                pass


async def test_list_decisions(repository):
    await repository.save_decision(make_decision())
    await repository.save_decision(make_decision(symbol='ETHUSDT', decision=DecisionType.HOLD))
    decisions = await repository.list_decisions()
    assert {d.symbol for d in decisions} == {'BTCUSDT', 'ETHUSDT'}
