"""
Data Storage Module for Futures Trading Bot.

This module provides the persistent repository for decisions and trades
using SQLite. A UNIQUE constraint on ``trades.decision_id`` guarantees
that no decision is ever executed twice, across workers and restarts.
"""

import asyncio
import logging
import sqlite3
from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, AsyncIterator, Optional, Union

import aiosqlite
from pydantic import BaseModel, Field

from src.core.models import CloseReason, Decision, DecisionType, Trade, TradeSide, TradeStatus
from src.utils.date_utils import format_timestamp, now_utc, parse_timestamp
from src.utils.exceptions import (
    DatabaseError,
    DatabaseIntegrityError,
    InvalidStateTransitionError,
)
from src.utils.helpers import ensure_directory, safe_json_dumps, safe_json_loads


logger = logging.getLogger(__name__)


class StorageConfig(BaseModel):
    """Configuration for the SQLite repository."""

    sqlite_path: str = Field(default="data/futures_bot.db")
    sqlite_wal_mode: bool = Field(default=True)
    busy_timeout: float = Field(default=30.0, ge=0.0, description="Seconds to wait for a write lock")
    auto_create_tables: bool = Field(default=True)


_SCHEMA = """
    -- Every analysis outcome, executed or not
    CREATE TABLE IF NOT EXISTS decisions (
        id TEXT PRIMARY KEY,
        symbol TEXT NOT NULL,
        timeframes_analyzed TEXT NOT NULL DEFAULT '[]',
        market_conditions TEXT NOT NULL DEFAULT '{}',
        decision TEXT NOT NULL CHECK (decision IN ('BUY', 'SELL', 'HOLD', 'CLOSE')),
        confidence REAL NOT NULL DEFAULT 0,
        reasoning TEXT NOT NULL DEFAULT '',
        risk_assessment TEXT NOT NULL DEFAULT '{}',
        recommended_leverage INTEGER,
        recommended_stop_loss REAL,
        recommended_take_profit REAL,
        executed INTEGER NOT NULL DEFAULT 0,
        execution_error TEXT,
        analyzed_at TEXT NOT NULL
    );

    CREATE INDEX IF NOT EXISTS idx_decisions_symbol ON decisions(symbol, analyzed_at);

    -- Positions; at most one per decision
    CREATE TABLE IF NOT EXISTS trades (
        id TEXT PRIMARY KEY,
        symbol TEXT NOT NULL,
        side TEXT NOT NULL CHECK (side IN ('LONG', 'SHORT')),
        entry_price REAL NOT NULL CHECK (entry_price > 0),
        quantity REAL NOT NULL CHECK (quantity > 0),
        leverage INTEGER NOT NULL DEFAULT 1 CHECK (leverage >= 1),
        stop_loss REAL,
        take_profit REAL,
        status TEXT NOT NULL DEFAULT 'OPEN' CHECK (status IN ('OPEN', 'CLOSED', 'CANCELLED')),
        exchange_order_id TEXT,
        decision_id TEXT UNIQUE REFERENCES decisions(id),
        exit_price REAL,
        pnl REAL,
        pnl_percentage REAL,
        close_reason TEXT,
        opened_at TEXT NOT NULL,
        closed_at TEXT
    );

    CREATE INDEX IF NOT EXISTS idx_trades_status ON trades(status);
    CREATE INDEX IF NOT EXISTS idx_trades_closed_at ON trades(status, closed_at);
"""


class TradeRepository:
    """
    Persistent repository for decisions and trades.

    Provides:
    - Decision audit trail with execution outcome
    - Trade lifecycle with monotonic status transitions
    - Realized PnL queries for the risk gate
    - Explicit write transactions (BEGIN IMMEDIATE)

    The single aiosqlite connection is guarded by an asyncio lock; the
    task holding an open ``transaction()`` reuses it without deadlocking.
    """

    def __init__(self, config: Optional[StorageConfig] = None) -> None:
        """
        Initialize TradeRepository.

        Args:
            config: Storage configuration
        """
        self._config = config or StorageConfig()
        self._db: Optional[aiosqlite.Connection] = None
        self._lock = asyncio.Lock()
        self._tx_owner: Optional[asyncio.Task] = None

        logger.info(f"TradeRepository initialized (path={self._config.sqlite_path})")

    @classmethod
    def from_path(cls, path: Union[str, Path]) -> "TradeRepository":
        """Repository backed by the SQLite file at ``path``."""
        return cls(StorageConfig(sqlite_path=str(path)))

    async def connect(self) -> None:
        """
        Open the connection and create tables.

        Raises:
            DatabaseError: If the database cannot be opened
        """
        if self._db is not None:
            return

        db_path = Path(self._config.sqlite_path)
        if str(db_path) != ":memory:":
            ensure_directory(db_path.parent)

        try:
            self._db = await aiosqlite.connect(
                str(db_path),
                isolation_level=None,
                timeout=self._config.busy_timeout,
            )
            self._db.row_factory = aiosqlite.Row

            if self._config.sqlite_wal_mode:
                await self._db.execute("PRAGMA journal_mode=WAL")
            await self._db.execute("PRAGMA foreign_keys=ON")

            if self._config.auto_create_tables:
                await self._db.executescript(_SCHEMA)
        except sqlite3.Error as e:
            logger.error(f"Database connection error: {e}")
            raise DatabaseError(f"Failed to connect: {e}", cause=e)

        logger.info(f"Connected to SQLite: {db_path}")

    async def close(self) -> None:
        """Close the connection."""
        if self._db:
            await self._db.close()
            self._db = None
            logger.info("Disconnected from database")

    async def __aenter__(self) -> "TradeRepository":
        await self.connect()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    def _require(self) -> aiosqlite.Connection:
        if self._db is None:
            raise DatabaseError("Repository is not connected")
        return self._db

    def _owns_transaction(self) -> bool:
        return self._tx_owner is not None and self._tx_owner is asyncio.current_task()

    @asynccontextmanager
    async def _guard(self) -> AsyncIterator[aiosqlite.Connection]:
        db = self._require()
        if self._owns_transaction():
            yield db
            return
        async with self._lock:
            yield db

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator["TradeRepository"]:
        """
        Write transaction using BEGIN IMMEDIATE.

        Commits when the block exits normally and rolls back on any
        exception, which is re-raised.

        Raises:
            DatabaseError: On nested use or a failed commit
        """
        db = self._require()
        if self._owns_transaction():
            raise DatabaseError("Nested transactions are not supported")

        async with self._lock:
            self._tx_owner = asyncio.current_task()
            try:
                await db.execute("BEGIN IMMEDIATE")
                try:
                    yield self
                except BaseException:
                    await db.execute("ROLLBACK")
                    raise
                try:
                    await db.execute("COMMIT")
                except sqlite3.Error as e:
                    await db.execute("ROLLBACK")
                    raise DatabaseError(f"Commit failed: {e}", cause=e)
            finally:
                self._tx_owner = None

    # =========================================================================
    # DECISIONS
    # =========================================================================

    async def save_decision(self, decision: Decision) -> Decision:
        """
        Insert a decision.

        Args:
            decision: Decision to persist

        Returns:
            The stored decision

        Raises:
            DatabaseIntegrityError: If the id already exists
        """
        async with self._guard() as db:
            try:
                await db.execute(
                    """
                    INSERT INTO decisions
                    (id, symbol, timeframes_analyzed, market_conditions, decision, confidence,
                     reasoning, risk_assessment, recommended_leverage, recommended_stop_loss,
                     recommended_take_profit, executed, execution_error, analyzed_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        decision.id,
                        decision.symbol,
                        safe_json_dumps(decision.timeframes_analyzed, "[]"),
                        safe_json_dumps(decision.market_conditions),
                        decision.decision.value,
                        decision.confidence,
                        decision.reasoning,
                        safe_json_dumps(decision.risk_assessment),
                        decision.recommended_leverage,
                        decision.recommended_stop_loss,
                        decision.recommended_take_profit,
                        int(decision.executed),
                        decision.execution_error,
                        format_timestamp(decision.analyzed_at),
                    ),
                )
            except sqlite3.IntegrityError as e:
                raise DatabaseIntegrityError(
                    f"Decision {decision.id} already stored", details={"decision_id": decision.id}, cause=e
                )
            except sqlite3.Error as e:
                raise DatabaseError(f"Failed to store decision: {e}", cause=e)

        logger.debug(f"Stored decision {decision.id} ({decision.symbol} {decision.decision.value})")
        return decision

    async def get_decision(self, decision_id: str) -> Optional[Decision]:
        """Get a decision by id."""
        async with self._guard() as db:
            async with db.execute("SELECT * FROM decisions WHERE id = ?", (decision_id,)) as cursor:
                row = await cursor.fetchone()
        return self._row_to_decision(row) if row else None

    async def mark_decision_executed(self, decision_id: str) -> bool:
        """
        Set ``executed`` on a decision.

        Returns:
            True if the decision exists
        """
        async with self._guard() as db:
            cursor = await db.execute(
                "UPDATE decisions SET executed = 1 WHERE id = ?", (decision_id,)
            )
            updated = cursor.rowcount > 0
            await cursor.close()
        return updated

    async def set_execution_error(self, decision_id: str, error: str) -> bool:
        """
        Record why a decision was not executed.

        Returns:
            True if the decision exists
        """
        async with self._guard() as db:
            cursor = await db.execute(
                "UPDATE decisions SET execution_error = ? WHERE id = ?", (error, decision_id)
            )
            updated = cursor.rowcount > 0
            await cursor.close()
        return updated

    async def list_decisions(
        self,
        symbol: Optional[str] = None,
        executed: Optional[bool] = None,
        limit: int = 50,
    ) -> list[Decision]:
        """
        List recent decisions, newest first.

        Args:
            symbol: Filter by symbol
            executed: Filter by executed flag
            limit: Maximum rows

        Returns:
            Decisions
        """
        query = "SELECT * FROM decisions WHERE 1=1"
        params: list[Any] = []
        if symbol:
            query += " AND symbol = ?"
            params.append(symbol)
        if executed is not None:
            query += " AND executed = ?"
            params.append(int(executed))
        query += " ORDER BY analyzed_at DESC LIMIT ?"
        params.append(limit)

        async with self._guard() as db:
            async with db.execute(query, params) as cursor:
                rows = await cursor.fetchall()
        return [self._row_to_decision(row) for row in rows]

    # =========================================================================
    # TRADES
    # =========================================================================

    async def create_trade(self, trade: Trade) -> Trade:
        """
        Insert a trade.

        Args:
            trade: Trade to persist

        Returns:
            The stored trade

        Raises:
            DatabaseIntegrityError: If a trade already references the decision
        """
        async with self._guard() as db:
            try:
                await db.execute(
                    """
                    INSERT INTO trades
                    (id, symbol, side, entry_price, quantity, leverage, stop_loss, take_profit,
                     status, exchange_order_id, decision_id, exit_price, pnl, pnl_percentage,
                     close_reason, opened_at, closed_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        trade.id,
                        trade.symbol,
                        trade.side.value,
                        trade.entry_price,
                        trade.quantity,
                        trade.leverage,
                        trade.stop_loss,
                        trade.take_profit,
                        trade.status.value,
                        trade.exchange_order_id,
                        trade.decision_id,
                        trade.exit_price,
                        trade.pnl,
                        trade.pnl_percentage,
                        trade.close_reason.value if trade.close_reason else None,
                        format_timestamp(trade.opened_at),
                        format_timestamp(trade.closed_at) if trade.closed_at else None,
                    ),
                )
            except sqlite3.IntegrityError as e:
                raise DatabaseIntegrityError(
                    f"Trade for decision {trade.decision_id} violates a constraint: {e}",
                    details={"decision_id": trade.decision_id, "trade_id": trade.id},
                    cause=e,
                )
            except sqlite3.Error as e:
                raise DatabaseError(f"Failed to store trade: {e}", cause=e)

        logger.info(
            f"Stored trade {trade.id}: {trade.side.value} {trade.quantity} {trade.symbol} @ {trade.entry_price}"
        )
        return trade

    async def get_trade(self, trade_id: str) -> Optional[Trade]:
        """Get a trade by id."""
        async with self._guard() as db:
            async with db.execute("SELECT * FROM trades WHERE id = ?", (trade_id,)) as cursor:
                row = await cursor.fetchone()
        return self._row_to_trade(row) if row else None

    async def get_trade_by_decision(self, decision_id: str) -> Optional[Trade]:
        """Get the trade opened for a decision, if any."""
        async with self._guard() as db:
            async with db.execute(
                "SELECT * FROM trades WHERE decision_id = ?", (decision_id,)
            ) as cursor:
                row = await cursor.fetchone()
        return self._row_to_trade(row) if row else None

    async def list_open_trades(self, symbol: Optional[str] = None) -> list[Trade]:
        """List OPEN trades, oldest first."""
        return await self.list_trades(status=TradeStatus.OPEN, symbol=symbol)

    async def list_trades(
        self,
        status: Optional[TradeStatus] = None,
        symbol: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> list[Trade]:
        """
        List trades, oldest first.

        Args:
            status: Filter by status
            symbol: Filter by symbol
            limit: Maximum rows

        Returns:
            Trades
        """
        query = "SELECT * FROM trades WHERE 1=1"
        params: list[Any] = []
        if status is not None:
            query += " AND status = ?"
            params.append(status.value)
        if symbol:
            query += " AND symbol = ?"
            params.append(symbol)
        query += " ORDER BY opened_at ASC"
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)

        async with self._guard() as db:
            async with db.execute(query, params) as cursor:
                rows = await cursor.fetchall()
        return [self._row_to_trade(row) for row in rows]

    async def count_open_trades(self) -> int:
        async with self._guard() as db:
            async with db.execute("SELECT COUNT(*) FROM trades WHERE status = 'OPEN'") as cursor:
                row = await cursor.fetchone()
        return int(row[0]) if row else 0

    async def close_trade(
        self,
        trade_id: str,
        exit_price: float,
        pnl: float,
        pnl_percentage: float,
        reason: CloseReason,
        closed_at: Optional[datetime] = None,
    ) -> Trade:
        """
        Transition a trade OPEN -> CLOSED.

        Raises:
            InvalidStateTransitionError: If the trade is not OPEN
        """
        closed_at = closed_at or now_utc()
        await self._transition(
            trade_id,
            TradeStatus.CLOSED,
            """
            UPDATE trades
            SET status = 'CLOSED', exit_price = ?, pnl = ?, pnl_percentage = ?,
                close_reason = ?, closed_at = ?
            WHERE id = ? AND status = 'OPEN'
            """,
            (exit_price, pnl, pnl_percentage, reason.value, format_timestamp(closed_at), trade_id),
        )
        trade = await self.get_trade(trade_id)
        logger.info(f"Trade {trade_id} closed ({reason.value}) at {exit_price}, PnL: {pnl}")
        return trade  # type: ignore[return-value]

    async def cancel_trade(self, trade_id: str, reason: CloseReason = CloseReason.EXTERNAL_CANCEL) -> Trade:
        """
        Transition a trade OPEN -> CANCELLED.

        Raises:
            InvalidStateTransitionError: If the trade is not OPEN
        """
        await self._transition(
            trade_id,
            TradeStatus.CANCELLED,
            """
            UPDATE trades SET status = 'CANCELLED', close_reason = ?, closed_at = ?
            WHERE id = ? AND status = 'OPEN'
            """,
            (reason.value, format_timestamp(now_utc()), trade_id),
        )
        trade = await self.get_trade(trade_id)
        logger.info(f"Trade {trade_id} cancelled ({reason.value})")
        return trade  # type: ignore[return-value]

    async def _transition(
        self,
        trade_id: str,
        target: TradeStatus,
        query: str,
        params: tuple,
    ) -> None:
        async with self._guard() as db:
            cursor = await db.execute(query, params)
            updated = cursor.rowcount
            await cursor.close()
            if updated:
                return
            async with db.execute("SELECT status FROM trades WHERE id = ?", (trade_id,)) as lookup:
                row = await lookup.fetchone()

        current = row["status"] if row else None
        raise InvalidStateTransitionError(
            f"Cannot move trade {trade_id} from {current} to {target.value}",
            details={"trade_id": trade_id, "from": current, "to": target.value},
        )

    # =========================================================================
    # PNL QUERIES
    # =========================================================================

    async def realized_pnl_since(self, since: datetime) -> float:
        """Summed PnL of trades closed at or after ``since``."""
        async with self._guard() as db:
            async with db.execute(
                "SELECT COALESCE(SUM(pnl), 0) FROM trades WHERE status = 'CLOSED' AND closed_at >= ?",
                (format_timestamp(since),),
            ) as cursor:
                row = await cursor.fetchone()
        return float(row[0]) if row else 0.0

    async def closed_pnl_history(self) -> list[float]:
        """PnL of every closed trade in closing order."""
        async with self._guard() as db:
            async with db.execute(
                "SELECT pnl FROM trades WHERE status = 'CLOSED' AND pnl IS NOT NULL ORDER BY closed_at ASC"
            ) as cursor:
                rows = await cursor.fetchall()
        return [float(row[0]) for row in rows]

    async def get_statistics(self) -> dict:
        """Row counts per table and trade status."""
        async with self._guard() as db:
            async with db.execute("SELECT COUNT(*) FROM decisions") as cursor:
                decisions = (await cursor.fetchone())[0]
            async with db.execute("SELECT status, COUNT(*) FROM trades GROUP BY status") as cursor:
                by_status = {row[0]: row[1] for row in await cursor.fetchall()}
        return {"decisions": decisions, "trades": by_status}

    # =========================================================================
    # ROW MAPPING
    # =========================================================================

    @staticmethod
    def _row_to_decision(row: aiosqlite.Row) -> Decision:
        return Decision(
            id=row["id"],
            symbol=row["symbol"],
            timeframes_analyzed=safe_json_loads(row["timeframes_analyzed"], []),
            market_conditions=safe_json_loads(row["market_conditions"], {}),
            decision=DecisionType(row["decision"]),
            confidence=row["confidence"],
            reasoning=row["reasoning"],
            risk_assessment=safe_json_loads(row["risk_assessment"], {}),
            recommended_leverage=row["recommended_leverage"],
            recommended_stop_loss=row["recommended_stop_loss"],
            recommended_take_profit=row["recommended_take_profit"],
            executed=bool(row["executed"]),
            execution_error=row["execution_error"],
            analyzed_at=parse_timestamp(row["analyzed_at"]),
        )

    @staticmethod
    def _row_to_trade(row: aiosqlite.Row) -> Trade:
        return Trade(
            id=row["id"],
            symbol=row["symbol"],
            side=TradeSide(row["side"]),
            entry_price=row["entry_price"],
            quantity=row["quantity"],
            leverage=row["leverage"],
            stop_loss=row["stop_loss"],
            take_profit=row["take_profit"],
            status=TradeStatus(row["status"]),
            exchange_order_id=row["exchange_order_id"],
            decision_id=row["decision_id"],
            exit_price=row["exit_price"],
            pnl=row["pnl"],
            pnl_percentage=row["pnl_percentage"],
            close_reason=CloseReason(row["close_reason"]) if row["close_reason"] else None,
            opened_at=parse_timestamp(row["opened_at"]),
            closed_at=parse_timestamp(row["closed_at"]),
        )
