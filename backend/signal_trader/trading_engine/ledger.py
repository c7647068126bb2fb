"""
Trade Ledger

Durable record of trades and their status; the source of truth for this
service's position state. Backed by SQLAlchemy async over aiosqlite, so the
same interface serves an in-memory database (process lifetime) and a file.

Every write is one transaction on one row and goes through a single-writer
lock. Any storage failure surfaces as PersistenceError; nothing is dropped.
"""

import asyncio
import logging
from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Union

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from signal_trader.database import build_engine, build_session_maker, init_db
from signal_trader.exceptions import AlreadyClosedError, NotFoundError, PersistenceError
from signal_trader.models import Side, Trade, TradeStatus

logger = logging.getLogger(__name__)


class TradeLedger:
    def __init__(self, engine: AsyncEngine):
        self._engine = engine
        self._session_maker = build_session_maker(engine)
        self._write_lock = asyncio.Lock()

    @classmethod
    def from_url(cls, database_url: str) -> "TradeLedger":
        return cls(build_engine(database_url))

    async def init(self):
        """Create the trades table if it does not exist."""
        try:
            await init_db(self._engine)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to initialize trade ledger: {e}") from e
        logger.info(f"Trade ledger ready ({self._engine.url.render_as_string(hide_password=True)})")

    async def close(self):
        await self._engine.dispose()
        logger.info("Trade ledger closed")

    # ----------------------------------------------------------
    # Writes
    # ----------------------------------------------------------

    async def insert(
        self,
        symbol: str,
        side: Union[Side, str],
        quantity: Decimal,
        entry_price: Decimal,
        *,
        order_id: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> int:
        """Record a newly opened trade and return its ledger id."""
        if not symbol:
            raise ValueError("symbol must be a non-empty string")
        if quantity <= 0:
            raise ValueError(f"quantity must be positive, got {quantity}")

        trade = Trade(
            symbol=symbol,
            side=Side(side),
            quantity=quantity,
            entry_price=entry_price,
            status=TradeStatus.OPEN,
            order_id=order_id,
            idempotency_key=idempotency_key,
            opened_at=datetime.utcnow(),
        )
        async with self._write_lock:
            try:
                async with self._session_maker() as session:
                    async with session.begin():
                        session.add(trade)
                        await session.flush()
                        trade_id = trade.id
            except SQLAlchemyError as e:
                logger.error(f"Error inserting trade {side} {quantity} {symbol} @ {entry_price}: {e}")
                raise PersistenceError(f"Failed to insert trade for {symbol}: {e}") from e

        logger.info(f"Trade {trade_id} recorded: {trade.side.value} {quantity} {symbol} @ {entry_price}")
        return trade_id

    async def mark_closed(
        self,
        trade_id: int,
        exit_price: Optional[Decimal] = None,
        closing_trade_id: Optional[int] = None,
    ) -> None:
        """Transition a trade Open -> Closed.

        Raises NotFoundError for unknown ids and AlreadyClosedError when the
        trade was closed before; the conditional UPDATE makes the first close
        win under concurrency.
        """
        async with self._write_lock:
            try:
                async with self._session_maker() as session:
                    async with session.begin():
                        result = await session.execute(
                            update(Trade)
                            .where(Trade.id == trade_id, Trade.status == TradeStatus.OPEN)
                            .values(
                                status=TradeStatus.CLOSED,
                                exit_price=exit_price,
                                closing_trade_id=closing_trade_id,
                                closed_at=datetime.utcnow(),
                            )
                        )
                        updated = result.rowcount
                        exists = True
                        if updated == 0:
                            exists = await session.get(Trade, trade_id) is not None
            except SQLAlchemyError as e:
                logger.error(f"Error closing trade {trade_id}: {e}")
                raise PersistenceError(f"Failed to close trade {trade_id}: {e}") from e

        if updated == 0:
            if not exists:
                raise NotFoundError(f"Trade {trade_id} not found")
            raise AlreadyClosedError(trade_id)
        logger.info(f"Trade {trade_id} closed (exit_price={exit_price})")

    # ----------------------------------------------------------
    # Reads
    # ----------------------------------------------------------

    async def get(self, trade_id: int) -> Trade:
        try:
            async with self._session_maker() as session:
                trade = await session.get(Trade, trade_id)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to read trade {trade_id}: {e}") from e
        if trade is None:
            raise NotFoundError(f"Trade {trade_id} not found")
        return trade

    async def find_by_idempotency_key(self, idempotency_key: str) -> Optional[Trade]:
        return await self._select_one(select(Trade).where(Trade.idempotency_key == idempotency_key))

    async def list_trades(
        self,
        status: Optional[TradeStatus] = None,
        symbol: Optional[str] = None,
    ) -> List[Trade]:
        query = select(Trade).order_by(Trade.id)
        if status is not None:
            query = query.where(Trade.status == TradeStatus(status))
        if symbol:
            query = query.where(Trade.symbol == symbol)
        return await self._select_all(query)

    async def list_open(self, symbol: str, side: Optional[Side] = None) -> List[Trade]:
        query = select(Trade).where(Trade.symbol == symbol, Trade.status == TradeStatus.OPEN).order_by(Trade.id)
        if side is not None:
            query = query.where(Trade.side == Side(side))
        return await self._select_all(query)

    async def _select_one(self, query) -> Optional[Trade]:
        try:
            async with self._session_maker() as session:
                result = await session.execute(query)
                return result.scalars().first()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Trade ledger read failed: {e}") from e

    async def _select_all(self, query) -> List[Trade]:
        try:
            async with self._session_maker() as session:
                result = await session.execute(query)
                return list(result.scalars().all())
        except SQLAlchemyError as e:
            raise PersistenceError(f"Trade ledger read failed: {e}") from e
