from datetime import timedelta

from conftest import START, make_bars
from src.data.data_cache import CacheConfig, MarketDataCache


class FakeClock:
    def __init__(self, now=START):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += timedelta(seconds=seconds)


async def test_entries_expire_after_ttl():
    clock = FakeClock()
    cache = MarketDataCache(CacheConfig(default_ttl_seconds=180), clock=clock)
    await cache.set('key', 'value')

    clock.advance(179)
    assert await cache.get('key') == 'value'
    clock.advance(1)
    assert await cache.get('key') is None
    assert cache.statistics.expirations == 1
    assert cache.size == 0


async def test_bars_are_stored_chronologically():
    cache = MarketDataCache(clock=FakeClock())
    bars = make_bars([100.0, 101.0, 102.0])
    stored = await cache.set_bars('btcusdt', '5m', reversed(bars))
    assert [b.close for b in stored] == [100.0, 101.0, 102.0]
    assert (await cache.get_bars('BTCUSDT', '5m'))[-1].close == 102.0


async def test_get_all_bars_reports_missing_and_stale():
    clock = FakeClock()
    cache = MarketDataCache(CacheConfig(default_ttl_seconds=60), clock=clock)
    await cache.set_bars('BTCUSDT', '5m', make_bars([100.0]))
    await cache.set_bars('BTCUSDT', '15m', make_bars([100.0]), ttl=10)
    clock.advance(30)

    found, missing = await cache.get_all_bars('BTCUSDT', ['5m', '15m', '1h'])
    assert list(found) == ['5m']
    assert missing == ['15m', '1h']


async def test_least_recently_used_is_evicted():
    clock = FakeClock()
    cache = MarketDataCache(CacheConfig(max_size=2), clock=clock)
    await cache.set('a', 1)
    clock.advance(1)
    await cache.set('b', 2)
    clock.advance(1)
    assert await cache.get('a') == 1
    clock.advance(1)
    await cache.set('c', 3)

    assert await cache.get('b') is None
    assert await cache.get('a') == 1
    assert cache.statistics.evictions == 1


async def test_delete_and_hit_rate():
    cache = MarketDataCache(clock=FakeClock())
    assert cache.statistics.hit_rate == 0.0
    await cache.set('key', 'value')

    assert await cache.get('key') == 'value'
    assert await cache.delete('key')
    assert not await cache.delete('key')
    assert await cache.get('key') is None
    assert cache.statistics.hit_rate == 50.0
