"""
Position reconciliation for SELL signals

Lists live exchange positions, issues one offsetting reduce-only order per
position and closes the matching ledger trades. Profit/loss is computed from
the confirmed exit fill and reported, never stored.
"""

import logging
from dataclasses import replace
from decimal import Decimal
from typing import Dict, List, Optional, Sequence

from signal_trader.exceptions import AlreadyClosedError, NotFoundError
from signal_trader.exchange_clients.base import ExchangeClient
from signal_trader.exchange_clients.bybit_ws import ByBitWSState
from signal_trader.models import Trade, calculate_profit_loss
from signal_trader.trading_engine.idempotency import order_key
from signal_trader.trading_engine.ledger import TradeLedger
from signal_trader.trading_engine.order_executor import OrderExecutionEngine
from signal_trader.trading_engine.symbol_locks import SymbolLocks
from signal_trader.trading_engine.trade_context import (
    CloseAction,
    ClosureResult,
    ExchangePosition,
    OrderConfirmation,
)

logger = logging.getLogger(__name__)

# Closures remembered for redelivered SELL signals
_MAX_REMEMBERED_CLOSURES = 1000


def plan_closures(positions: Sequence[ExchangePosition]) -> List[CloseAction]:
    """One offsetting action per open position: Buy -> Sell, Sell -> Buy, same size."""
    return [
        CloseAction(symbol=p.symbol, side=p.side.opposite, quantity=p.size)
        for p in positions
        if p.size > 0
    ]


def realized_profit_loss(
    position: ExchangePosition,
    exit_price: Decimal,
    entries: Sequence[Trade],
) -> Decimal:
    """P&L of flattening `position` at `exit_price`.

    Ledger entries (oldest first) contribute at their own fill prices up to
    the position size; any size they do not cover uses the exchange's
    average entry price.
    """
    remaining = position.size
    total = Decimal("0")
    for trade in entries:
        if remaining <= 0:
            break
        qty = min(trade.quantity, remaining)
        total += calculate_profit_loss(position.side, trade.entry_price, exit_price, qty)
        remaining -= qty
    if remaining > 0:
        total += calculate_profit_loss(position.side, position.entry_price, exit_price, remaining)
    return total


class PositionReconciler:
    def __init__(
        self,
        exchange: ExchangeClient,
        engine: OrderExecutionEngine,
        ledger: TradeLedger,
        symbol_locks: SymbolLocks,
        feed_state: Optional[ByBitWSState] = None,
    ):
        self._exchange = exchange
        self._engine = engine
        self._ledger = ledger
        self._locks = symbol_locks
        self._feed_state = feed_state
        self._closures: Dict[str, ClosureResult] = {}

    async def list_open_positions(self, symbol: Optional[str] = None) -> List[ExchangePosition]:
        """Live positions from the exchange. Raises ExchangeUnavailableError, never returns cached data."""
        return await self._exchange.list_positions(symbol)

    plan_closures = staticmethod(plan_closures)

    async def flatten(self, signal_key: str) -> List[ClosureResult]:
        """Close every open position once.

        Each symbol is re-listed under its lock so a BUY that completed while
        we waited is flattened too. A failure on one symbol does not stop the
        others; the first error is raised after all symbols were attempted.
        """
        positions = await self.list_open_positions()
        self._log_feed_drift(positions)
        if not positions:
            logger.info("No open positions to close")
            return []

        results: List[ClosureResult] = []
        errors: List[Exception] = []
        for symbol in dict.fromkeys(p.symbol for p in positions):
            try:
                async with self._locks.hold(symbol):
                    current = await self.list_open_positions(symbol)
                    for position in current:
                        for action in self.plan_closures([position]):
                            results.append(await self._close_position(position, action, signal_key))
            except Exception as e:
                logger.error(f"Error closing positions for {symbol}: {e}")
                errors.append(e)

        if errors:
            raise errors[0]
        logger.info(f"All open positions closed ({len(results)} closed)")
        return results

    async def _close_position(
        self,
        position: ExchangePosition,
        action: CloseAction,
        signal_key: str,
    ) -> ClosureResult:
        key = order_key(signal_key, action.symbol, action.side)
        confirmation = await self._engine.place_order(
            action.symbol,
            action.side,
            action.quantity,
            idempotency_key=key,
            reduce_only=True,
        )
        if confirmation.duplicate:
            return self._replay_closure(key, position, confirmation)
        exit_price = confirmation.fill_price

        entries = [
            t for t in await self._ledger.list_open(position.symbol, side=position.side)
            if t.id != confirmation.trade_id
        ]
        profit_loss = realized_profit_loss(position, exit_price, entries)

        closed_ids = []
        for trade in entries:
            if await self._close_trade(trade.id, exit_price, confirmation.trade_id):
                closed_ids.append(trade.id)
        # The exit leg is itself closed at its own fill price
        if confirmation.trade_id is not None:
            await self._close_trade(confirmation.trade_id, exit_price, None)

        logger.info(
            f"Position {position.side.value} {position.size} {position.symbol} closed @ {exit_price} - "
            f"Profit/Loss: {profit_loss} (trades closed: {closed_ids})"
        )
        result = ClosureResult(
            position=position,
            confirmation=confirmation,
            profit_loss=profit_loss,
            closed_trade_ids=closed_ids,
        )
        self._remember_closure(key, result)
        return result

    def _replay_closure(self, key: str, position: ExchangePosition,
                        confirmation: OrderConfirmation) -> ClosureResult:
        """A repeated close order changes nothing: the ledger was settled by the first delivery.

        Trades opened since then belong to a newer position and stay open.
        """
        original = self._closures.get(key)
        logger.info(
            f"Close order for {position.symbol} already handled by this signal "
            f"(trade {confirmation.trade_id}) - ledger left unchanged"
        )
        if original is not None:
            return replace(original, confirmation=confirmation, closed_trade_ids=list(original.closed_trade_ids))
        return ClosureResult(position=position, confirmation=confirmation, profit_loss=None)

    def _remember_closure(self, key: str, result: ClosureResult):
        self._closures[key] = result
        while len(self._closures) > _MAX_REMEMBERED_CLOSURES:
            del self._closures[next(iter(self._closures))]

    async def _close_trade(self, trade_id: int, exit_price: Decimal, closing_trade_id: Optional[int]) -> bool:
        try:
            await self._ledger.mark_closed(trade_id, exit_price=exit_price, closing_trade_id=closing_trade_id)
            return True
        except AlreadyClosedError:
            logger.warning(f"Trade {trade_id} was already closed - no-op")
        except NotFoundError:
            logger.warning(f"Trade {trade_id} disappeared from the ledger before closing")
        return False

    def _log_feed_drift(self, positions: Sequence[ExchangePosition]):
        if self._feed_state is None or not self._feed_state.connected:
            return
        listed = {p.symbol for p in positions}
        streamed = set(self._feed_state.get_positions())
        for symbol in sorted(streamed - listed):
            logger.warning(f"Realtime feed reports a {symbol} position that the REST listing does not")
        for symbol in sorted(listed - streamed):
            logger.info(f"REST listing reports a {symbol} position not yet seen on the realtime feed")
