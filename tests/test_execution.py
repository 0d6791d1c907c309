import asyncio

import pytest

from src.core.models import CloseReason, Decision, DecisionType, Trade, TradeSide, TradeStatus
from src.core.result import ErrorKind, Result
from src.data.data_storage import TradeRepository
from src.execution.exchange import OrderSide
from src.execution.execution_engine import ExecutionEngine, ExecutionEngineConfig
from src.execution.retry import run_with_retry
from src.utils.exceptions import DatabaseError


class RecordingSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


def buy_decision(**overrides):
    values = dict(
        symbol='BTCUSDT',
        decision=DecisionType.BUY,
        confidence=85.0,
        recommended_leverage=3,
        recommended_stop_loss=49000.0,
        recommended_take_profit=52000.0,
    )
    values.update(overrides)
    return Decision(**values)


@pytest.fixture
def engine(repository, paper_exchange, risk_manager):
    return ExecutionEngine(repository, paper_exchange, risk_manager)


async def test_execute_opens_trade(engine, repository, paper_exchange):
    decision = await repository.save_decision(buy_decision())
    result = await engine.execute(decision.id)

    assert result.ok
    assert result.details['duplicate'] is False
    trade = result.value
    assert trade.side == TradeSide.LONG
    assert trade.entry_price == 50000.0
    assert trade.quantity == pytest.approx(0.2)
    assert trade.leverage == 3
    assert trade.decision_id == decision.id
    assert (await repository.get_decision(decision.id)).executed
    assert paper_exchange.calls['place_market_order'] == 1


async def test_execute_twice_places_one_order(engine, repository, paper_exchange):
    decision = await repository.save_decision(buy_decision())
    first = await engine.execute(decision.id)
    second = await engine.execute(decision.id)

    assert second.ok
    assert second.details['duplicate'] is True
    assert second.value.id == first.value.id
    assert paper_exchange.calls['place_market_order'] == 1
    assert len(await repository.list_open_trades()) == 1


async def test_concurrent_execution_is_idempotent(engine, repository, paper_exchange, risk_manager):
    decision = await repository.save_decision(buy_decision())
    other_engine = ExecutionEngine(repository, paper_exchange, risk_manager)

    results = await asyncio.gather(
        *(engine.execute(decision.id) for _ in range(3)),
        *(other_engine.execute(decision.id) for _ in range(3)),
    )

    assert all(r.ok for r in results)
    assert len({r.value.id for r in results}) == 1
    assert sum(1 for r in results if not r.details['duplicate']) == 1
    assert paper_exchange.calls['place_market_order'] == 1
    assert await repository.count_open_trades() == 1
    assert engine.pending_decisions == []
    assert other_engine.pending_decisions == []


async def test_retry_uses_backoff_schedule(engine, repository, paper_exchange):
    decision = await repository.save_decision(buy_decision())
    paper_exchange.inject_failure('place_market_order', times=2)
    sleep = RecordingSleep()

    result = await engine.execute_with_retry(decision.id, sleep=sleep)

    assert result.ok
    assert sleep.delays == [30.0, 60.0]
    assert paper_exchange.calls['place_market_order'] == 3
    assert await repository.count_open_trades() == 1


async def test_retries_exhausted_records_error(engine, repository, paper_exchange):
    decision = await repository.save_decision(buy_decision())
    paper_exchange.inject_failure('place_market_order', times=3)
    sleep = RecordingSleep()

    result = await engine.execute_with_retry(decision.id, sleep=sleep)

    assert not result.ok
    assert result.error_kind == ErrorKind.EXCHANGE_ERROR
    assert sleep.delays == [30.0, 60.0]
    stored = await repository.get_decision(decision.id)
    assert not stored.executed
    assert stored.execution_error == (
        'Execution failed after 3 attempts: Exchange error: Simulated place_market_order failure'
    )
    assert await repository.get_trade_by_decision(decision.id) is None


async def test_validation_failure_is_not_retried(engine, repository):
    decision = await repository.save_decision(buy_decision(recommended_stop_loss=50500.0))
    sleep = RecordingSleep()

    result = await engine.execute_with_retry(decision.id, sleep=sleep)

    assert result.error_kind == ErrorKind.VALIDATION_FAILURE
    assert sleep.delays == []
    stored = await repository.get_decision(decision.id)
    assert 'For LONG: Stop loss must be below entry price' in stored.execution_error


async def test_risk_rechecked_at_execution(engine, repository):
    for i in range(5):
        await repository.create_trade(
            Trade(symbol=f'COIN{i}USDT', side=TradeSide.LONG, entry_price=10.0, quantity=1.0, stop_loss=9.8)
        )
    decision = await repository.save_decision(buy_decision())

    result = await engine.execute(decision.id)

    assert result.error_kind == ErrorKind.RISK_LIMIT_EXCEEDED
    assert not result.retryable
    assert 'Maximum concurrent positions reached' in result.error


async def test_hold_and_missing_decisions(engine, repository):
    hold = await repository.save_decision(Decision(symbol='BTCUSDT'))
    result = await engine.execute(hold.id)
    assert result.error_kind == ErrorKind.VALIDATION_FAILURE
    assert (await repository.get_decision(hold.id)).execution_error == 'HOLD decision: nothing to execute'

    missing = await engine.execute('no-such-decision')
    assert missing.error_kind == ErrorKind.NOT_FOUND


async def test_close_decision_flattens_symbol(engine, repository, paper_exchange):
    opened = await engine.execute((await repository.save_decision(buy_decision())).id)
    paper_exchange.set_price('BTCUSDT', 51000.0)

    close = await repository.save_decision(
        Decision(symbol='BTCUSDT', decision=DecisionType.CLOSE, confidence=90.0)
    )
    result = await engine.execute(close.id)

    assert result.ok
    assert result.details['closed'] == [opened.value.id]
    trade = await repository.get_trade(opened.value.id)
    assert trade.status == TradeStatus.CLOSED
    assert trade.close_reason == CloseReason.SIGNAL_CLOSE
    assert trade.pnl == pytest.approx(1000.0 * 0.2 * 3)
    assert (await repository.get_decision(close.id)).executed


async def test_short_order_side(engine, repository, paper_exchange):
    decision = await repository.save_decision(
        buy_decision(decision=DecisionType.SELL, recommended_stop_loss=51000.0, recommended_take_profit=48000.0)
    )
    result = await engine.execute(decision.id)
    assert result.value.side == TradeSide.SHORT
    positions = await paper_exchange.get_open_positions()
    assert positions[0].side == TradeSide.SHORT
    assert OrderSide.opening(TradeSide.SHORT) == OrderSide.SELL


async def test_quantity_precision(risk_manager, repository, paper_exchange):
    config = ExecutionEngineConfig(quantity_precision={'ETHUSDT': 2})
    engine = ExecutionEngine(repository, paper_exchange, risk_manager, config)
    assert engine.calculate_quantity('ETHUSDT', 10000.0, 3000.0, 2950.0) == 4.0
    assert engine.calculate_quantity('ETHUSDT', 10000.0, 3000.0, 2999.0) == 200.0
    assert engine.calculate_quantity('BTCUSDT', 10000.0, 50000.0, 50000.0) == 0.0
    assert engine.precision_for('SOLUSDT') == 3


async def test_run_with_retry_stops_on_permanent_failure():
    attempts = []

    async def operation():
        attempts.append(1)
        return Result.failure(ErrorKind.VALIDATION_FAILURE, 'bad input')

    result = await run_with_retry(operation, sleep=RecordingSleep())
    assert result.error == 'bad input'
    assert len(attempts) == 1


async def test_workers_on_separate_connections_place_one_order(tmp_path, repository, paper_exchange, risk_manager):
    decision = await repository.save_decision(buy_decision())
    second_repository = TradeRepository.from_path(tmp_path / 'bot.db')
    await second_repository.connect()
    try:
        first = ExecutionEngine(repository, paper_exchange, risk_manager)
        second = ExecutionEngine(second_repository, paper_exchange, risk_manager)

        results = await asyncio.gather(first.execute(decision.id), second.execute(decision.id))
    finally:
        await second_repository.close()

    assert all(r.ok for r in results)
    assert sorted(r.details['duplicate'] for r in results) == [False, True]
    assert all('orphan_order_id' not in r.details for r in results)
    assert results[0].value.id == results[1].value.id
    assert paper_exchange.calls['place_market_order'] == 1
    assert await repository.count_open_trades() == 1


async def test_storage_failure_after_order_is_reported(engine, repository, paper_exchange, monkeypatch):
    decision = await repository.save_decision(buy_decision())

    async def failing_create_trade(trade):
        raise DatabaseError('Commit failed: disk I/O error')

    monkeypatch.setattr(repository, 'create_trade', failing_create_trade)

    result = await engine.execute(decision.id)

    assert result.error_kind == ErrorKind.STORAGE_ERROR
    assert not result.retryable
    order_id = result.details['order_id']
    assert order_id.startswith('paper-')
    stored = await repository.get_decision(decision.id)
    assert not stored.executed
    assert stored.execution_error == (
        f'Storage error: Commit failed: disk I/O error (exchange order {order_id} has no trade)'
    )
    assert engine.pending_decisions == []


async def test_protective_orders_follow_the_fill(risk_manager, repository, paper_exchange):
    engine = ExecutionEngine(
        repository, paper_exchange, risk_manager, ExecutionEngineConfig(place_protective_orders=True)
    )
    decision = await repository.save_decision(buy_decision())

    result = await engine.execute(decision.id)

    assert result.ok
    assert paper_exchange.calls['set_stop_loss'] == 1
    assert paper_exchange.calls['set_take_profit'] == 1


async def test_protective_orders_are_off_by_default(engine, repository, paper_exchange):
    await engine.execute((await repository.save_decision(buy_decision())).id)
    assert paper_exchange.calls['set_stop_loss'] == 0
    assert paper_exchange.calls['set_take_profit'] == 0


async def test_backfill_sets_missing_protective_orders(engine, repository, paper_exchange):
    opened = await engine.execute((await repository.save_decision(buy_decision())).id)
    manual = await repository.create_trade(
        Trade(symbol='ETHUSDT', side=TradeSide.SHORT, entry_price=3000.0, quantity=1.0, stop_loss=3100.0)
    )

    reports = {r['trade_id']: r for r in await engine.backfill_protective_orders()}

    assert set(reports) == {opened.value.id, manual.id}
    assert reports[opened.value.id]['stop_loss_order'] is not None
    assert reports[opened.value.id]['take_profit_order'] is not None
    assert reports[manual.id]['stop_loss_order'] is not None
    assert reports[manual.id]['take_profit_order'] is None
    assert all(r['errors'] == [] for r in reports.values())
    assert paper_exchange.calls['set_stop_loss'] == 2
    assert paper_exchange.calls['set_take_profit'] == 1


async def test_backfill_reports_failed_leg_and_continues(engine, repository, paper_exchange):
    await engine.execute((await repository.save_decision(buy_decision())).id)
    paper_exchange.inject_failure('set_stop_loss')

    [report] = await engine.backfill_protective_orders()

    assert report['stop_loss_order'] is None
    assert report['take_profit_order'] is not None
    assert report['errors'] == ['stop_loss: Simulated set_stop_loss failure']


async def test_backfill_without_open_trades(engine):
    assert await engine.backfill_protective_orders() == []


def test_slippage_is_adverse_distance():
    assert ExecutionEngine.slippage_pct(100.0, 100.5, TradeSide.LONG) == 0.5
    assert ExecutionEngine.slippage_pct(100.0, 100.5, TradeSide.SHORT) == -0.5
    assert ExecutionEngine.slippage_pct(100.0, 99.0, TradeSide.SHORT) == 1.0
    assert ExecutionEngine.slippage_pct(0.0, 99.0, TradeSide.LONG) == 0.0


async def test_paper_fill_has_no_slippage(engine, repository):
    result = await engine.execute((await repository.save_decision(buy_decision())).id)
    assert result.details['slippage_pct'] == 0.0
