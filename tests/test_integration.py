import pytest

from conftest import TIMEFRAMES, make_bars, uptrend_bars
from src.core.models import CloseReason, DecisionType, TradeStatus
from src.core.result import ErrorKind
from src.core.trading_pipeline import PipelineConfig, TradingPipeline
from src.data.data_cache import MarketDataCache
from src.data.market_data import MarketDataService
from src.execution.execution_engine import ExecutionEngine
from src.monitoring.trade_monitor import TradeMonitor
from src.risk.risk_manager import RiskManager
from src.strategies.strategy_manager import StrategyManager
from src.strategies.trend_following_strategy import TrendFollowingStrategy


async def no_sleep(delay):
    return None


def build_pipeline(repository, exchange, risk_manager, **config):
    return TradingPipeline(
        repository=repository,
        exchange=exchange,
        market_data=MarketDataService(exchange, MarketDataCache()),
        strategy_manager=StrategyManager([TrendFollowingStrategy()]),
        risk_manager=risk_manager,
        engine=ExecutionEngine(repository, exchange, risk_manager),
        monitor=TradeMonitor(repository, exchange),
        config=PipelineConfig(symbols=['BTCUSDT'], timeframes=TIMEFRAMES, **config),
        sleep=no_sleep,
    )


@pytest.fixture
def trending_exchange(paper_exchange):
    for timeframe in TIMEFRAMES:
        paper_exchange.set_bars('BTCUSDT', timeframe, uptrend_bars())
    return paper_exchange


async def test_cycle_opens_and_monitor_closes(repository, trending_exchange, risk_manager):
    pipeline = build_pipeline(repository, trending_exchange, risk_manager)

    reports = await pipeline.run_once()

    assert len(reports) == 1
    report = reports[0]
    assert report.decision.decision == DecisionType.BUY
    assert report.gate.approved
    assert report.executed
    trade = report.execution.value
    assert trade.quantity == pytest.approx(0.2)
    assert trade.stop_loss == 49000.0
    assert trade.take_profit == 52000.0

    stored = await repository.get_decision(report.decision.id)
    assert stored.executed
    assert stored.execution_error is None
    assert stored.market_conditions['strategy'] == 'TrendFollowing'
    assert (await repository.get_trade(trade.id)).status == TradeStatus.OPEN

    trending_exchange.set_price('BTCUSDT', 52000.0)
    await pipeline.run_once()

    closed = await repository.get_trade(trade.id)
    assert closed.status == TradeStatus.CLOSED
    assert closed.close_reason == CloseReason.TAKE_PROFIT_HIT
    assert closed.pnl == pytest.approx(2000.0 * 0.2 * trade.leverage)


async def test_flat_market_saves_hold(repository, paper_exchange, risk_manager):
    for timeframe in TIMEFRAMES:
        paper_exchange.set_bars('BTCUSDT', timeframe, make_bars([50000.0] * 60))
    pipeline = build_pipeline(repository, paper_exchange, risk_manager)

    [report] = await pipeline.run_once()

    assert report.decision.decision == DecisionType.HOLD
    assert not report.executed
    assert report.error is None
    assert await repository.count_open_trades() == 0
    assert not (await repository.get_decision(report.decision.id)).executed


async def test_rejected_decision_is_saved_with_reason(repository, trending_exchange):
    risk_manager = RiskManager(bot_enabled=lambda: False)
    pipeline = build_pipeline(repository, trending_exchange, risk_manager)

    [report] = await pipeline.run_once()

    assert report.error_kind == ErrorKind.RISK_LIMIT_EXCEEDED
    stored = await repository.get_decision(report.decision.id)
    assert stored.decision == DecisionType.BUY
    assert stored.execution_error == 'Trading bot is disabled'
    assert not stored.executed
    assert trending_exchange.calls['place_market_order'] == 0


async def test_dry_run_does_not_execute(repository, trending_exchange, risk_manager):
    pipeline = build_pipeline(repository, trending_exchange, risk_manager, execute_trades=False)

    [report] = await pipeline.run_once()

    assert report.gate.approved
    assert report.execution is None
    assert trending_exchange.calls['place_market_order'] == 0


async def test_missing_market_data_skips_cycle(repository, paper_exchange, risk_manager):
    pipeline = build_pipeline(repository, paper_exchange, risk_manager)

    [report] = await pipeline.run_once()
    await pipeline.market_data.wait_for_fetches()

    assert report.error_kind == ErrorKind.DATA_UNAVAILABLE
    assert report.decision is None
    assert await repository.list_decisions() == []


async def test_credentials_check_reports_each_service(repository, paper_exchange, risk_manager):
    pipeline = build_pipeline(repository, paper_exchange, risk_manager)

    status = await pipeline.validate_credentials()

    assert status['exchange'] is True
    assert status['ai'] is False
    assert 'checked_at' in status


async def test_credentials_check_flags_rejected_exchange(repository, paper_exchange, risk_manager):
    pipeline = build_pipeline(repository, paper_exchange, risk_manager)
    paper_exchange.inject_failure('get_account_balance')

    status = await pipeline.validate_credentials()

    assert status['exchange'] is False
