import argparse
import asyncio
import logging
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))
from config.settings import get_settings
from src.ai.ai_decision_client import AIClientConfig, AIDecisionClient
from src.core.models import RiskConfig
from src.core.trading_pipeline import PipelineConfig, TradingPipeline
from src.data.data_cache import CacheConfig, MarketDataCache
from src.data.data_storage import StorageConfig, TradeRepository
from src.data.market_data import MarketDataConfig, MarketDataService
from src.execution.binance_exchange import BinanceConfig, BinanceFuturesExchange
from src.execution.execution_engine import ExecutionEngine, ExecutionEngineConfig
from src.execution.paper_exchange import PaperExchange
from src.monitoring.logging_config import LogFormat, LoggingConfig, LogLevel, configure_logging
from src.monitoring.trade_monitor import TradeMonitor, TradeMonitorConfig
from src.risk.portfolio_risk import PortfolioRisk
from src.risk.risk_manager import RiskManager
from src.strategies import StrategyManager, create_default_strategies


logger = logging.getLogger("run_bot")


def build_parser():
    parser = argparse.ArgumentParser(description="Futures trading bot")
    parser.add_argument('--once', action='store_true', help='run a single cycle and exit')
    parser.add_argument('--symbols', default='', help='comma-separated symbols overriding settings')
    parser.add_argument('--paper', action='store_true', help='trade against the in-memory paper exchange')
    parser.add_argument('--monitor-only', action='store_true', help='only poll open positions')
    parser.add_argument('--interval', type=float, default=None, help='seconds between cycles')
    parser.add_argument('--check-keys', action='store_true', help='validate exchange and AI credentials and exit')
    parser.add_argument('--backfill-sltp', action='store_true', help='place missing stop loss/take profit orders for open trades and exit')
    return parser


async def run(args):
    settings = get_settings()
    configure_logging(
        LoggingConfig(
            level=LogLevel(settings.log_level.value),
            format_type=LogFormat(settings.log_format.value),
            file_enabled=bool(settings.log_file),
            file_path=settings.log_file or "logs/futures_bot.log",
        )
    )

    symbols = [s.strip().upper() for s in args.symbols.split(',') if s.strip()] or list(settings.symbols)

    if args.paper:
        exchange = PaperExchange(balance=settings.risk.initial_balance)
    else:
        exchange = BinanceFuturesExchange(BinanceConfig.from_settings(settings.exchange))

    repository = TradeRepository(
        StorageConfig(sqlite_path=str(settings.database.sqlite_path), sqlite_wal_mode=settings.database.wal_mode)
    )
    await repository.connect()

    risk_config = RiskConfig.from_settings(settings.risk)
    risk_manager = RiskManager(
        risk_config=risk_config,
        portfolio=PortfolioRisk(risk_config),
        bot_enabled=lambda: settings.bot_enabled,
        default_leverage=settings.default_leverage,
    )
    engine = ExecutionEngine(repository, exchange, risk_manager, ExecutionEngineConfig.from_settings(settings))
    monitor = TradeMonitor(
        repository,
        exchange,
        TradeMonitorConfig(
            exchange_timeout=settings.exchange.request_timeout,
            poll_interval=float(settings.monitor_interval),
        ),
    )
    market_data = MarketDataService(
        exchange,
        MarketDataCache(CacheConfig(default_ttl_seconds=settings.cache.market_data_ttl, max_size=settings.cache.max_entries)),
        MarketDataConfig(ohlcv_limit=settings.exchange.ohlcv_limit, exchange_timeout=settings.exchange.request_timeout),
    )
    wants_ai = settings.ai.enabled or args.check_keys
    ai_client = AIDecisionClient(AIClientConfig.from_settings(settings.ai)) if wants_ai else None

    config = PipelineConfig.from_settings(settings).model_copy(update={"symbols": symbols})
    if args.interval:
        config = config.model_copy(update={"interval_seconds": args.interval})

    pipeline = TradingPipeline(
        repository=repository,
        exchange=exchange,
        market_data=market_data,
        strategy_manager=StrategyManager(create_default_strategies()),
        risk_manager=risk_manager,
        engine=engine,
        monitor=monitor,
        ai_client=ai_client,
        config=config,
    )

    try:
        if args.check_keys:
            print(await pipeline.validate_credentials())
        elif args.backfill_sltp:
            for report in await engine.backfill_protective_orders():
                print(report)
        elif args.monitor_only:
            if args.once:
                results = await monitor.poll()
                print(f'checked: {len(results)}')
            else:
                await monitor.run()
        elif args.once:
            reports = await pipeline.run_once()
            for report in reports:
                print(report.to_dict())
        else:
            await pipeline.run()
    finally:
        if ai_client is not None:
            await ai_client.stop()
        if isinstance(exchange, BinanceFuturesExchange):
            await exchange.close()
        await repository.close()


def main(argv=None):
    args = build_parser().parse_args(argv)
    try:
        asyncio.run(run(args))
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")


if __name__ == '__main__':
    main()
