import asyncio

import pytest

from src.core.models import CloseReason, Trade, TradeSide, TradeStatus
from src.core.result import ErrorKind
from src.monitoring.trade_monitor import TradeMonitor, close_trigger


def long_trade(**overrides):
    values = dict(
        symbol='BTCUSDT',
        side=TradeSide.LONG,
        entry_price=50000.0,
        quantity=0.2,
        leverage=3,
        stop_loss=49000.0,
        take_profit=52000.0,
    )
    values.update(overrides)
    return Trade(**values)


def short_trade(**overrides):
    values = dict(side=TradeSide.SHORT, stop_loss=51000.0, take_profit=48000.0)
    values.update(overrides)
    return long_trade(**values)


@pytest.fixture
def monitor(repository, paper_exchange):
    return TradeMonitor(repository, paper_exchange)


def test_close_triggers():
    assert close_trigger(long_trade(), 50000.0) is None
    assert close_trigger(long_trade(), 49000.0) == CloseReason.STOP_LOSS_HIT
    assert close_trigger(long_trade(), 52500.0) == CloseReason.TAKE_PROFIT_HIT
    assert close_trigger(short_trade(), 51000.0) == CloseReason.STOP_LOSS_HIT
    assert close_trigger(short_trade(), 47000.0) == CloseReason.TAKE_PROFIT_HIT
    assert close_trigger(long_trade(stop_loss=None, take_profit=None), 1.0) is None


def test_pnl_sign_follows_side():
    assert long_trade().pnl_at(52000.0) == (1200.0, 4.0)
    assert long_trade().pnl_at(49000.0) == (-600.0, -2.0)
    assert short_trade().pnl_at(48000.0) == (1200.0, 4.0)
    assert short_trade().pnl_at(51000.0) == (-600.0, -2.0)


async def test_take_profit_closes_long(monitor, repository, paper_exchange):
    trade = await repository.create_trade(long_trade())
    closed = []
    monitor.add_callback(closed.append)
    paper_exchange.set_price('BTCUSDT', 52000.0)

    results = await monitor.poll()

    assert results[0].ok
    stored = await repository.get_trade(trade.id)
    assert stored.status == TradeStatus.CLOSED
    assert stored.close_reason == CloseReason.TAKE_PROFIT_HIT
    assert stored.exit_price == 52000.0
    assert stored.pnl == 1200.0
    assert [t.id for t in closed] == [trade.id]
    assert monitor.stats.by_reason == {'TAKE_PROFIT_HIT': 1}


async def test_stop_loss_closes_short_at_a_loss(monitor, repository, paper_exchange):
    trade = await repository.create_trade(short_trade())
    paper_exchange.set_price('BTCUSDT', 51500.0)

    await monitor.poll()

    stored = await repository.get_trade(trade.id)
    assert stored.close_reason == CloseReason.STOP_LOSS_HIT
    assert stored.pnl == pytest.approx(-900.0)
    assert stored.pnl_percentage == pytest.approx(-3.0)


async def test_failed_close_leaves_trade_open(monitor, repository, paper_exchange):
    trade = await repository.create_trade(long_trade())
    paper_exchange.set_price('BTCUSDT', 48000.0)
    paper_exchange.inject_failure('close_position')

    results = await monitor.poll()

    assert results[0].error_kind == ErrorKind.EXCHANGE_ERROR
    assert (await repository.get_trade(trade.id)).status == TradeStatus.OPEN
    assert monitor.stats.close_failures == 1

    await monitor.poll()
    assert (await repository.get_trade(trade.id)).status == TradeStatus.CLOSED


async def test_untriggered_trade_stays_open(monitor, repository):
    trade = await repository.create_trade(long_trade())
    results = await monitor.poll()
    assert results[0].ok and results[0].value is None
    assert (await repository.get_trade(trade.id)).is_open


async def test_price_failure_is_reported(monitor, repository, paper_exchange):
    await repository.create_trade(long_trade())
    paper_exchange.inject_failure('get_current_price')
    results = await monitor.poll()
    assert results[0].error_kind == ErrorKind.EXCHANGE_ERROR


async def test_cancel_trade(monitor, repository):
    trade = await repository.create_trade(long_trade())
    result = await monitor.cancel_trade(trade.id)
    assert result.ok
    assert result.value.status == TradeStatus.CANCELLED

    again = await monitor.cancel_trade(trade.id)
    assert again.error_kind == ErrorKind.VALIDATION_FAILURE
    assert await monitor.poll() == []


async def test_concurrent_check_of_same_trade_is_skipped(monitor, repository, paper_exchange):
    trade = await repository.create_trade(long_trade())
    paper_exchange.set_latency(0.05)

    first, second = await asyncio.gather(monitor.check_trade(trade), monitor.check_trade(trade))

    assert first.ok and first.value is None
    assert second.ok and second.details == {'skipped': True}
    assert monitor.stats.skipped_in_flight == 1
    assert monitor.stats.checks == 1
