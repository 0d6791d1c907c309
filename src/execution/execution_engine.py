"""
Execution Engine for Futures Trading Bot.

This module executes approved decisions exactly once. Each call either
finds the trade already opened for the decision, or opens it inside a
repository transaction after re-checking the time-sensitive limits.
Outcomes are returned as ``Result`` values; retrying is up to the caller.
"""

import asyncio
import logging
from typing import Any, Optional, Sequence

from pydantic import BaseModel, Field

from src.core.models import CloseReason, Decision, DecisionType, Trade, TradeSide
from src.core.result import ErrorKind, Result
from src.data.data_storage import TradeRepository
from src.execution.exchange import (
    DEFAULT_EXCHANGE_TIMEOUT,
    Exchange,
    OrderSide,
    call_with_timeout,
)
from src.execution.retry import DEFAULT_MAX_ATTEMPTS, DEFAULT_RETRY_DELAYS, run_with_retry
from src.risk.portfolio_risk import PortfolioState
from src.risk.risk_manager import CHECK_TRADE_VALIDATION, RiskManager
from src.utils.date_utils import start_of_day_utc
from src.utils.exceptions import DatabaseError, DatabaseIntegrityError, ExchangeError
from src.utils.helpers import round_quantity


logger = logging.getLogger(__name__)


class ExecutionEngineConfig(BaseModel):
    """Configuration for the execution engine."""

    exchange_timeout: float = Field(default=DEFAULT_EXCHANGE_TIMEOUT, gt=0.0, description="Seconds per exchange call")
    quantity_precision: dict[str, int] = Field(default_factory=dict, description="Quantity decimals by symbol")
    default_precision: int = Field(default=3, ge=0, le=8)
    default_leverage: int = Field(default=1, ge=1, le=10)
    place_protective_orders: bool = Field(default=False, description="Mirror stop/target on the exchange")

    @classmethod
    def from_settings(cls, settings: Any) -> "ExecutionEngineConfig":
        """Build from ``config.settings.Settings``."""
        return cls(
            exchange_timeout=settings.exchange.request_timeout,
            quantity_precision=dict(settings.exchange.quantity_precision),
            default_precision=settings.exchange.default_quantity_precision,
            default_leverage=settings.default_leverage,
            place_protective_orders=settings.execution.place_protective_orders,
        )


class _ExecutionRejected(Exception):
    """Raised inside the transaction to roll it back with a categorized reason."""

    def __init__(self, kind: ErrorKind, reason: str) -> None:
        super().__init__(reason)
        self.kind = kind
        self.reason = reason


class ExecutionEngine:
    """
    Idempotent decision executor.

    Provides:
    - Duplicate detection by decision id
    - Time-sensitive risk re-check under a write transaction
    - Risk-based position sizing with per-symbol precision
    - Exchange calls bounded by a timeout
    - CLOSE decisions that flatten the symbol's open trades

    Concurrent calls for one decision id are serialized in-process. Across
    processes the trade lookup is repeated under BEGIN IMMEDIATE before any
    order is placed, and the UNIQUE constraint on ``trades.decision_id``
    backs it up.
    """

    def __init__(
        self,
        repository: TradeRepository,
        exchange: Exchange,
        risk_manager: RiskManager,
        config: Optional[ExecutionEngineConfig] = None,
    ) -> None:
        """
        Initialize ExecutionEngine.

        Args:
            repository: Decision and trade repository
            exchange: Exchange client
            risk_manager: Risk gate
            config: Engine configuration
        """
        self._repository = repository
        self._exchange = exchange
        self._risk = risk_manager
        self._config = config or ExecutionEngineConfig()
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}

        logger.info("ExecutionEngine initialized")

    @property
    def config(self) -> ExecutionEngineConfig:
        return self._config

    @property
    def pending_decisions(self) -> list[str]:
        """Decision ids with an execution in progress or waiting."""
        return list(self._locks)

    def precision_for(self, symbol: str) -> int:
        return self._config.quantity_precision.get(symbol.upper(), self._config.default_precision)

    def calculate_quantity(self, symbol: str, balance: float, entry_price: float, stop_loss: float) -> float:
        """
        Quantity risking ``risk_per_trade_pct`` of the balance at the stop.

        Args:
            symbol: Trading symbol (selects the rounding precision)
            balance: Account balance
            entry_price: Expected fill price
            stop_loss: Stop price

        Returns:
            Rounded quantity, 0 when entry equals stop
        """
        distance = abs(entry_price - stop_loss)
        if distance <= 0 or balance <= 0:
            return 0.0
        risk_amount = balance * self._risk.config.risk_per_trade_pct / 100
        return round_quantity(risk_amount / distance, self.precision_for(symbol))

    @staticmethod
    def slippage_pct(expected_price: float, fill_price: float, side: TradeSide) -> float:
        """Adverse fill distance in percent; negative when the fill beat the quote."""
        if expected_price <= 0:
            return 0.0
        move = (fill_price - expected_price) / expected_price * 100
        return round(move if side == TradeSide.LONG else -move, 4)

    # =========================================================================
    # EXECUTION
    # =========================================================================

    async def execute(self, decision_id: str) -> Result[Trade]:
        """
        Execute a decision at most once.

        Args:
            decision_id: Id of a stored decision

        Returns:
            Success with the trade (``duplicate=True`` if it already
            existed), or a categorized failure
        """
        lock = self._locks.setdefault(decision_id, asyncio.Lock())
        self._lock_users[decision_id] = self._lock_users.get(decision_id, 0) + 1
        try:
            async with lock:
                return await self._execute(decision_id)
        finally:
            self._lock_users[decision_id] -= 1
            if self._lock_users[decision_id] == 0:
                del self._lock_users[decision_id]
                del self._locks[decision_id]

    async def execute_with_retry(
        self,
        decision_id: str,
        delays: Sequence[float] = DEFAULT_RETRY_DELAYS,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        sleep: Any = asyncio.sleep,
    ) -> Result[Trade]:
        """
        Execute with the caller-side retry policy for exchange failures.

        Args:
            decision_id: Decision to execute
            delays: Backoff schedule in seconds
            max_attempts: Total attempts
            sleep: Awaitable sleep, injectable for tests

        Returns:
            Final Result
        """

        async def record_exhausted(result: Result[Trade]) -> None:
            await self._record_error(
                decision_id, f"Execution failed after {max_attempts} attempts: {result.error}"
            )

        return await run_with_retry(
            lambda: self.execute(decision_id),
            delays=delays,
            max_attempts=max_attempts,
            sleep=sleep,
            on_exhausted=record_exhausted,
            name=f"Execution of decision {decision_id}",
        )

    async def backfill_protective_orders(self) -> list[dict[str, Any]]:
        """
        Place stop loss and take profit orders for every OPEN trade.

        Covers positions opened while protective orders were disabled.
        A failed leg is reported and the remaining legs and trades are
        still attempted.

        Returns:
            One report per open trade with the order ids and errors
        """
        reports = [
            await self._place_protective_orders(trade)
            for trade in await self._repository.list_open_trades()
        ]
        complete = sum(1 for report in reports if not report["errors"])
        logger.info(f"Protective orders set for {complete}/{len(reports)} open trade(s)")
        return reports

    async def _execute(self, decision_id: str) -> Result[Trade]:
        decision = await self._repository.get_decision(decision_id)
        if decision is None:
            return Result.failure(ErrorKind.NOT_FOUND, f"Decision {decision_id} not found")

        existing = await self._repository.get_trade_by_decision(decision_id)
        if existing is not None:
            return await self._duplicate(decision, existing)

        if decision.decision == DecisionType.HOLD:
            reason = "HOLD decision: nothing to execute"
            await self._record_error(decision_id, reason)
            return Result.failure(ErrorKind.VALIDATION_FAILURE, reason)

        if decision.decision == DecisionType.CLOSE:
            return await self._execute_close(decision)

        if decision.executed:
            logger.info(f"Decision {decision_id} already executed")
            return Result.success(None, duplicate=True)

        order_id: Optional[str] = None
        try:
            async with self._repository.transaction():
                # Another worker may have committed while this one waited for the write lock.
                existing = await self._repository.get_trade_by_decision(decision_id)
                if existing is not None:
                    return await self._duplicate(decision, existing)
                current = await self._repository.get_decision(decision_id)
                if current is not None and current.executed:
                    logger.info(f"Decision {decision_id} executed by another worker")
                    return Result.success(None, duplicate=True)

                price = await self._call(self._exchange.get_current_price(decision.symbol), "get_current_price")
                state = await self._load_state()

                gate = self._risk.evaluate_time_sensitive(decision, state, price)
                if not gate.approved:
                    failed = gate.failed_check
                    kind = ErrorKind.RISK_LIMIT_EXCEEDED
                    if failed is not None and failed.name == CHECK_TRADE_VALIDATION:
                        kind = ErrorKind.VALIDATION_FAILURE
                    raise _ExecutionRejected(kind, gate.reason)

                stop = decision.recommended_stop_loss or 0.0
                quantity = self.calculate_quantity(decision.symbol, state.balance, price, stop)
                if quantity <= 0:
                    raise _ExecutionRejected(
                        ErrorKind.VALIDATION_FAILURE, f"Invalid position size calculated ({quantity})"
                    )

                side = decision.trade_side
                leverage = decision.recommended_leverage or self._config.default_leverage
                logger.info(
                    f"Placing {OrderSide.opening(side).value} order: {quantity} {decision.symbol} "
                    f"({leverage}x) for decision {decision_id}"
                )
                order = await self._call(
                    self._exchange.place_market_order(
                        decision.symbol, OrderSide.opening(side), quantity, leverage
                    ),
                    "place_market_order",
                )
                order_id = order.order_id

                trade = Trade(
                    symbol=decision.symbol,
                    side=side,
                    entry_price=order.price or price,
                    quantity=quantity,
                    leverage=leverage,
                    stop_loss=decision.recommended_stop_loss,
                    take_profit=decision.recommended_take_profit,
                    exchange_order_id=order.order_id,
                    decision_id=decision_id,
                )
                await self._repository.create_trade(trade)
                await self._repository.mark_decision_executed(decision_id)

        except _ExecutionRejected as e:
            await self._record_error(decision_id, e.reason)
            return Result.failure(e.kind, e.reason)

        except ExchangeError as e:
            reason = f"Exchange error: {e.message}"
            await self._record_error(decision_id, reason)
            return Result.failure(ErrorKind.EXCHANGE_ERROR, reason)

        except DatabaseIntegrityError as e:
            winner = await self._repository.get_trade_by_decision(decision_id)
            if winner is None:
                return await self._storage_failure(decision_id, e, order_id)
            logger.error(
                f"Decision {decision_id} was executed concurrently by trade {winner.id}; "
                f"exchange order {order_id} is not linked to a trade"
            )
            return await self._duplicate(decision, winner, orphan_order_id=order_id)

        except DatabaseError as e:
            return await self._storage_failure(decision_id, e, order_id)

        slippage = self.slippage_pct(price, trade.entry_price, trade.side)
        logger.info(
            f"Trade executed: {trade.side.value} {trade.quantity} {trade.symbol} @ {trade.entry_price} "
            f"(trade {trade.id}, decision {decision_id}, slippage {slippage}%)"
        )
        if self._config.place_protective_orders:
            await self._place_protective_orders(trade)
        return Result.success(trade, duplicate=False, slippage_pct=slippage)

    async def _duplicate(
        self,
        decision: Decision,
        trade: Trade,
        orphan_order_id: Optional[str] = None,
    ) -> Result[Trade]:
        if not decision.executed:
            await self._repository.mark_decision_executed(decision.id)
        logger.info(f"Decision {decision.id} already has trade {trade.id}; skipping")
        details: dict[str, Any] = {"duplicate": True}
        if orphan_order_id:
            details["orphan_order_id"] = orphan_order_id
        return Result.success(trade, **details)

    async def _storage_failure(
        self,
        decision_id: str,
        error: DatabaseError,
        order_id: Optional[str],
    ) -> Result[Trade]:
        """Report a failed write; a placed order is left for manual reconciliation."""
        reason = f"Storage error: {error.message}"
        if order_id:
            reason = f"{reason} (exchange order {order_id} has no trade)"
            logger.error(f"Decision {decision_id}: order {order_id} placed but trade not stored")
        try:
            await self._record_error(decision_id, reason)
        except DatabaseError as e:
            logger.error(f"Could not record execution error for decision {decision_id}: {e.message}")
        return Result.failure(ErrorKind.STORAGE_ERROR, reason, order_id=order_id)

    async def _execute_close(self, decision: Decision) -> Result[Trade]:
        """Close every open trade on the decision's symbol."""
        try:
            price = await self._call(self._exchange.get_current_price(decision.symbol), "get_current_price")
            state = await self._load_state()
        except ExchangeError as e:
            reason = f"Exchange error: {e.message}"
            await self._record_error(decision.id, reason)
            return Result.failure(ErrorKind.EXCHANGE_ERROR, reason)

        gate = self._risk.evaluate_time_sensitive(decision, state, price)
        if not gate.approved:
            await self._record_error(decision.id, gate.reason)
            return Result.failure(ErrorKind.RISK_LIMIT_EXCEEDED, gate.reason)

        closed: list[Trade] = []
        for trade in await self._repository.list_open_trades(decision.symbol):
            try:
                order = await self._call(
                    self._exchange.close_position(trade.symbol, trade.quantity, trade.side),
                    "close_position",
                )
            except ExchangeError as e:
                reason = f"Exchange error closing trade {trade.id}: {e.message}"
                await self._record_error(decision.id, reason)
                return Result.failure(ErrorKind.EXCHANGE_ERROR, reason, closed=[t.id for t in closed])

            exit_price = order.price or price
            pnl, pnl_pct = trade.pnl_at(exit_price)
            closed.append(
                await self._repository.close_trade(trade.id, exit_price, pnl, pnl_pct, CloseReason.SIGNAL_CLOSE)
            )

        await self._repository.mark_decision_executed(decision.id)
        logger.info(f"CLOSE decision {decision.id} closed {len(closed)} {decision.symbol} trade(s)")
        return Result.success(closed[-1] if closed else None, closed=[t.id for t in closed])

    # =========================================================================
    # HELPERS
    # =========================================================================

    async def _call(self, awaitable: Any, operation: str) -> Any:
        return await call_with_timeout(awaitable, self._config.exchange_timeout, operation)

    async def _load_state(self) -> PortfolioState:
        balance = await self._call(self._exchange.get_account_balance(), "get_account_balance")
        return PortfolioState(
            balance=balance,
            open_trades=await self._repository.list_open_trades(),
            realized_pnl_today=await self._repository.realized_pnl_since(start_of_day_utc()),
            closed_pnl_history=await self._repository.closed_pnl_history(),
        )

    async def _record_error(self, decision_id: str, reason: str) -> None:
        logger.warning(f"Decision {decision_id} not executed: {reason}")
        await self._repository.set_execution_error(decision_id, reason)

    async def _place_protective_orders(self, trade: Trade) -> dict[str, Any]:
        """Best effort; the position monitor enforces the levels regardless."""
        report: dict[str, Any] = {
            "trade_id": trade.id,
            "symbol": trade.symbol,
            "stop_loss_order": None,
            "take_profit_order": None,
            "errors": [],
        }
        legs = (
            ("stop_loss", trade.stop_loss, self._exchange.set_stop_loss),
            ("take_profit", trade.take_profit, self._exchange.set_take_profit),
        )
        for leg, level, place in legs:
            if not level:
                logger.warning(f"Trade {trade.id} has no {leg} level; skipping")
                continue
            try:
                order = await self._call(place(trade.symbol, level, trade.side), f"set_{leg}")
            except ExchangeError as e:
                logger.warning(f"Protective {leg} order for trade {trade.id} not placed: {e.message}")
                report["errors"].append(f"{leg}: {e.message}")
                continue
            report[f"{leg}_order"] = order.order_id
        return report
