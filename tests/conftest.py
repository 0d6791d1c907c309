from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio

from src.core.models import Bar, MarketSnapshot, RiskConfig
from src.data.data_storage import TradeRepository
from src.execution.paper_exchange import PaperExchange
from src.risk.portfolio_risk import PortfolioRisk
from src.risk.risk_manager import RiskManager

START = datetime(2024, 1, 1, tzinfo=timezone.utc)
TIMEFRAMES = ['5m', '15m', '30m', '1h']


def make_bars(closes, start_price=None, step=timedelta(minutes=5), volume=1000.0):
    """Bars opening at the previous close with a 10 point wick either side."""
    bars = []
    prev = closes[0] if start_price is None else start_price
    for i, close in enumerate(closes):
        bars.append(Bar(
            timestamp=START + step * i,
            open=prev,
            high=max(prev, close) + 10,
            low=min(prev, close) - 10,
            close=close,
            volume=volume,
        ))
        prev = close
    return bars


def uptrend_closes(count=60, last=50000.0):
    """Four up bars of +100 then one down bar of -130, ending on a down bar at ``last``."""
    deltas = [100.0, 100.0, 100.0, 100.0, -130.0]
    steps = [deltas[i % 5] for i in range(count)]
    start = last - sum(steps)
    price = start
    closes = []
    for delta in steps:
        price += delta
        closes.append(price)
    return start, closes


def uptrend_bars(count=60, last=50000.0):
    start, closes = uptrend_closes(count, last)
    return make_bars(closes, start_price=start)


def make_snapshot(bars_by_timeframe, symbol='BTCUSDT', balance=10000.0, open_positions=(), risk_config=None):
    timeframes = tuple(bars_by_timeframe)
    return MarketSnapshot(
        symbol=symbol,
        timeframes=timeframes,
        bars_by_timeframe={tf: tuple(bars) for tf, bars in bars_by_timeframe.items()},
        open_positions=tuple(open_positions),
        account_balance=balance,
        risk_config=risk_config or RiskConfig(),
    )


@pytest.fixture
def risk_config():
    return RiskConfig()


@pytest.fixture
def risk_manager(risk_config):
    return RiskManager(risk_config=risk_config, portfolio=PortfolioRisk(risk_config))


@pytest.fixture
def paper_exchange():
    return PaperExchange(balance=10000.0, prices={'BTCUSDT': 50000.0, 'ETHUSDT': 3000.0})


@pytest_asyncio.fixture
async def repository(tmp_path):
    repo = TradeRepository.from_path(tmp_path / 'bot.db')
    await repo.connect()
    yield repo
    await repo.close()
