import asyncio

import pytest

from conftest import TIMEFRAMES, uptrend_bars
from src.core.result import ErrorKind
from src.data.data_cache import MarketDataCache
from src.data.market_data import CycleCoordinator, MarketDataConfig, MarketDataService


@pytest.fixture
def service(paper_exchange):
    for timeframe in TIMEFRAMES:
        paper_exchange.set_bars('BTCUSDT', timeframe, uptrend_bars())
    return MarketDataService(paper_exchange, MarketDataCache(), MarketDataConfig(ohlcv_limit=50))


async def test_analyze_triggers_fetch_when_cache_is_cold(service, paper_exchange):
    result = await service.analyze('BTCUSDT', TIMEFRAMES)
    assert result.error_kind == ErrorKind.DATA_UNAVAILABLE
    assert result.details['missing'] == TIMEFRAMES

    await service.wait_for_fetches()
    assert paper_exchange.calls['get_ohlcv'] == len(TIMEFRAMES)

    result = await service.analyze('BTCUSDT', TIMEFRAMES, account_balance=10000.0)
    assert result.ok
    snapshot = result.value
    assert snapshot.timeframes == tuple(TIMEFRAMES)
    assert len(snapshot.bars('1h')) == 50
    assert snapshot.current_price() == 50000.0
    assert snapshot.indicators('5m')['price'] == 50000.0


async def test_fetch_reports_failed_timeframes(service, paper_exchange):
    paper_exchange.inject_failure('get_ohlcv')
    result = await service.fetch('BTCUSDT', TIMEFRAMES)

    assert result.error_kind == ErrorKind.EXCHANGE_ERROR
    assert list(result.details['failed']) == ['5m']
    assert set(result.details['fetched']) == {'15m', '30m', '1h'}

    partial = await service.analyze('BTCUSDT', TIMEFRAMES)
    assert partial.details['missing'] == ['5m']


async def test_unknown_symbol_fails_fetch(service):
    result = await service.fetch('DOGEUSDT', ['5m'])
    assert not result.ok
    assert 'DOGEUSDT' in result.error


async def test_newer_cycle_cancels_older():
    coordinator = CycleCoordinator()
    release = asyncio.Event()

    async def slow():
        await release.wait()
        return 'slow'

    async def fast():
        return 'fast'

    first = asyncio.ensure_future(coordinator.run_latest('BTCUSDT', slow))
    await asyncio.sleep(0)
    assert coordinator.in_flight == 1

    assert await coordinator.run_latest('BTCUSDT', fast) == 'fast'
    with pytest.raises(asyncio.CancelledError):
        await first
    assert coordinator.in_flight == 0


async def test_cycles_for_different_keys_run_side_by_side():
    coordinator = CycleCoordinator()

    async def value(v):
        await asyncio.sleep(0)
        return v

    results = await asyncio.gather(
        coordinator.run_latest('BTCUSDT', lambda: value(1)),
        coordinator.run_latest('ETHUSDT', lambda: value(2)),
    )
    assert results == [1, 2]
