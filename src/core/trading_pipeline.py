"""
Trading Pipeline Module for Futures Trading Bot.

This module wires the cycle stages together: fetch bars, analyze a
snapshot, decide (strategies or AI oracle), gate, persist, execute with
retries, then poll open positions. Each stage is an injected collaborator.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, Sequence

from pydantic import BaseModel, Field

from src.ai.ai_decision_client import AIDecisionClient
from src.core.models import Decision, DecisionType, MarketSnapshot, Trade
from src.core.result import ErrorKind, Result
from src.data.data_storage import TradeRepository
from src.data.market_data import CycleCoordinator, MarketDataService
from src.execution.exchange import DEFAULT_EXCHANGE_TIMEOUT, Exchange, call_with_timeout
from src.execution.execution_engine import ExecutionEngine
from src.execution.retry import DEFAULT_MAX_ATTEMPTS, DEFAULT_RETRY_DELAYS
from src.monitoring.logging_config import log_context
from src.monitoring.trade_monitor import TradeMonitor
from src.risk.portfolio_risk import load_portfolio_state
from src.risk.risk_manager import CHECK_TRADE_VALIDATION, GateResult, RiskManager
from src.strategies.strategy_manager import StrategyManager
from src.utils.date_utils import now_utc
from src.utils.exceptions import ExchangeError


logger = logging.getLogger(__name__)


class PipelineConfig(BaseModel):
    """Configuration for the trading cycle."""

    symbols: list[str] = Field(default_factory=lambda: ["BTCUSDT"])
    timeframes: list[str] = Field(default_factory=lambda: ["5m", "15m", "30m", "1h"])
    use_ai: bool = Field(default=False, description="Ask the AI oracle instead of the strategies")
    execute_trades: bool = Field(default=True)
    retry_delays: tuple[float, ...] = Field(default=DEFAULT_RETRY_DELAYS)
    max_attempts: int = Field(default=DEFAULT_MAX_ATTEMPTS, ge=1)
    exchange_timeout: float = Field(default=DEFAULT_EXCHANGE_TIMEOUT, gt=0.0)
    interval_seconds: float = Field(default=300.0, gt=0.0)

    @classmethod
    def from_settings(cls, settings: Any) -> "PipelineConfig":
        return cls(
            symbols=list(settings.symbols),
            timeframes=list(settings.timeframes),
            use_ai=settings.ai.enabled and settings.ai.is_configured,
            execute_trades=settings.execution.execute_trades,
            retry_delays=tuple(settings.execution.retry_delays),
            max_attempts=settings.execution.max_attempts,
            exchange_timeout=settings.exchange.request_timeout,
            interval_seconds=float(settings.analysis_interval),
        )


@dataclass
class CycleReport:
    """Outcome of one analysis cycle for a symbol."""

    symbol: str
    decision: Optional[Decision] = None
    gate: Optional[GateResult] = None
    execution: Optional[Result[Trade]] = None
    error_kind: Optional[ErrorKind] = None
    error: Optional[str] = None
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def executed(self) -> bool:
        return self.execution is not None and self.execution.ok

    def to_dict(self) -> dict[str, Any]:
        return {
            "symbol": self.symbol,
            "decision": self.decision.decision.value if self.decision else None,
            "decision_id": self.decision.id if self.decision else None,
            "confidence": self.decision.confidence if self.decision else None,
            "gate": self.gate.to_dict() if self.gate else None,
            "executed": self.executed,
            "error_kind": self.error_kind.value if self.error_kind else None,
            "error": self.error,
        }


class TradingPipeline:
    """
    Orchestrates fetch, analyze, decide, gate, execute and monitor.

    A newer cycle for a symbol cancels the older one still in flight.
    """

    def __init__(
        self,
        repository: TradeRepository,
        exchange: Exchange,
        market_data: MarketDataService,
        strategy_manager: StrategyManager,
        risk_manager: RiskManager,
        engine: ExecutionEngine,
        monitor: TradeMonitor,
        ai_client: Optional[AIDecisionClient] = None,
        config: Optional[PipelineConfig] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """
        Initialize TradingPipeline.

        Args:
            repository: Decision and trade repository
            exchange: Exchange client
            market_data: Fetch and analyze service
            strategy_manager: Strategy arbiter
            risk_manager: Risk gate
            engine: Execution engine
            monitor: Position monitor
            ai_client: AI oracle, used when ``config.use_ai`` is set
            config: Pipeline configuration
            sleep: Awaitable sleep for the retry backoff
        """
        self._repository = repository
        self._exchange = exchange
        self._market_data = market_data
        self._strategies = strategy_manager
        self._risk = risk_manager
        self._engine = engine
        self._monitor = monitor
        self._ai = ai_client
        self._config = config or PipelineConfig()
        self._sleep = sleep
        self._coordinator = CycleCoordinator()

        logger.info(
            f"TradingPipeline initialized (symbols={self._config.symbols}, "
            f"timeframes={self._config.timeframes}, ai={self._config.use_ai})"
        )

    @property
    def config(self) -> PipelineConfig:
        return self._config

    @property
    def market_data(self) -> MarketDataService:
        return self._market_data

    @property
    def coordinator(self) -> CycleCoordinator:
        return self._coordinator

    # =========================================================================
    # STAGES
    # =========================================================================

    async def fetch(self, symbol: str) -> Result[dict[str, int]]:
        return await self._market_data.fetch(symbol, self._config.timeframes)

    async def analyze(self, symbol: str) -> Result[MarketSnapshot]:
        """Build the snapshot for ``symbol`` from cached bars."""
        try:
            balance = await call_with_timeout(
                self._exchange.get_account_balance(), self._config.exchange_timeout, "get_account_balance"
            )
        except ExchangeError as e:
            return Result.failure(ErrorKind.EXCHANGE_ERROR, e.message)

        return await self._market_data.analyze(
            symbol,
            self._config.timeframes,
            open_positions=await self._repository.list_open_trades(symbol),
            account_balance=balance,
            risk_config=self._risk.config,
        )

    async def decide(self, snapshot: MarketSnapshot) -> Decision:
        """Decision from the AI oracle or, by default, the strategies."""
        if self._config.use_ai and self._ai is not None:
            ai_decision = await self._ai.analyze_and_decide(snapshot)
            return ai_decision.to_decision(list(snapshot.timeframes))
        return self._strategies.evaluate(snapshot)

    async def run_cycle(self, symbol: str) -> CycleReport:
        """
        Analyze, decide, gate, persist and execute for one symbol.

        Returns:
            CycleReport describing how far the cycle got
        """
        report = CycleReport(symbol=symbol)
        with log_context(symbol=symbol):
            analyzed = await self.analyze(symbol)
            if not analyzed.ok:
                logger.info(f"Skipping {symbol} cycle: {analyzed.error}")
                report.error_kind = analyzed.error_kind
                report.error = analyzed.error
                return report

            snapshot = analyzed.value
            decision = await self.decide(snapshot)
            report.decision = decision

            try:
                state = await load_portfolio_state(self._repository, self._exchange)
            except ExchangeError as e:
                report.error_kind = ErrorKind.EXCHANGE_ERROR
                report.error = e.message
                decision.execution_error = f"Exchange error: {e.message}"
                await self._repository.save_decision(decision)
                return report

            gate = self._risk.evaluate(decision, state, snapshot.current_price())
            report.gate = gate
            decision.risk_assessment.setdefault("gate", gate.to_dict())
            if not gate.approved and decision.decision != DecisionType.HOLD:
                decision.execution_error = gate.reason
                failed = gate.failed_check
                report.error_kind = ErrorKind.RISK_LIMIT_EXCEEDED
                if failed is not None and failed.name == CHECK_TRADE_VALIDATION:
                    report.error_kind = ErrorKind.VALIDATION_FAILURE
                report.error = gate.reason

            await self._repository.save_decision(decision)
            logger.info(
                f"Decision {decision.id}: {decision.decision.value} {symbol} "
                f"(confidence {decision.confidence}, approved={gate.approved})"
            )

            if not gate.approved or not self._config.execute_trades:
                return report

            with log_context(decision_id=decision.id):
                report.execution = await self._engine.execute_with_retry(
                    decision.id,
                    delays=self._config.retry_delays,
                    max_attempts=self._config.max_attempts,
                    sleep=self._sleep,
                )
            if not report.execution.ok:
                report.error_kind = report.execution.error_kind
                report.error = report.execution.error
        return report

    # =========================================================================
    # LOOPS
    # =========================================================================

    async def validate_credentials(self) -> dict[str, Any]:
        """
        Check the exchange and AI credentials before trading.

        The exchange check reads the account balance. The AI check only
        confirms that a key is configured, so it costs no completion call.

        Returns:
            ``exchange`` and ``ai`` flags with the check time
        """
        status: dict[str, Any] = {"exchange": False, "ai": False, "checked_at": now_utc().isoformat()}

        try:
            balance = await call_with_timeout(
                self._exchange.get_account_balance(), self._config.exchange_timeout, "get_account_balance"
            )
        except ExchangeError as e:
            logger.warning(f"Exchange credentials rejected: {e.message}")
        else:
            status["exchange"] = True
            logger.info(f"Exchange credentials valid (balance: {balance})")

        if self._ai is None or not self._ai.is_configured:
            logger.warning("AI API key not configured")
        else:
            status["ai"] = True
            logger.info("AI API key configured")

        logger.info(f"Credential check complete: {status}")
        return status

    async def run_once(self, symbols: Optional[Sequence[str]] = None) -> list[CycleReport]:
        """
        One full pass: fetch, cycle every symbol, then poll positions.

        Returns:
            Reports for the cycles that were not superseded
        """
        symbols = list(symbols or self._config.symbols)
        for symbol in symbols:
            fetched = await self.fetch(symbol)
            if not fetched.ok:
                logger.warning(f"Fetch for {symbol} incomplete: {fetched.error}")

        outcomes = await asyncio.gather(
            *(self._coordinator.run_latest(symbol, lambda s=symbol: self.run_cycle(s)) for symbol in symbols),
            return_exceptions=True,
        )

        reports: list[CycleReport] = []
        for symbol, outcome in zip(symbols, outcomes):
            if isinstance(outcome, asyncio.CancelledError):
                logger.info(f"Cycle for {symbol} was superseded")
            elif isinstance(outcome, BaseException):
                logger.error(f"Cycle for {symbol} failed: {outcome}", exc_info=outcome)
            else:
                reports.append(outcome)

        await self._monitor.poll()
        return reports

    async def run(self, stop_event: Optional[asyncio.Event] = None) -> None:
        """Run passes every ``interval_seconds`` until ``stop_event`` is set."""
        stop_event = stop_event or asyncio.Event()
        while not stop_event.is_set():
            reports = await self.run_once()
            logger.info(f"Cycle complete: {[r.to_dict() for r in reports]}")
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self._config.interval_seconds)
            except asyncio.TimeoutError:
                pass
        await self._coordinator.cancel_all()
