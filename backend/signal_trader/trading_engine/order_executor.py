"""
Order execution for the trading engine

Places market orders with an idempotency key and a bounded retry policy,
then records each confirmed fill in the trade ledger exactly once.
"""

import asyncio
import logging
from dataclasses import replace
from decimal import Decimal
from typing import Any, Dict, Union

from signal_trader.exceptions import (
    ExchangeRejectedError,
    ExchangeUnavailableError,
    PersistenceError,
    UnrecordedFillError,
)
from signal_trader.exchange_clients.base import ExchangeClient
from signal_trader.models import Side
from signal_trader.trading_engine.idempotency import RecentOperations
from signal_trader.trading_engine.ledger import TradeLedger
from signal_trader.trading_engine.trade_context import OrderConfirmation

logger = logging.getLogger(__name__)


class OrderExecutionEngine:
    """
    Submits orders and records fills.

    Duplicate keys are answered from, in order: the recent-operations cache
    (concurrent duplicates share the in-flight operation), the ledger's
    unique idempotency_key, and ByBit's orderLinkId (a retried submission
    that already reached the exchange is looked up instead of repeated).
    """

    def __init__(
        self,
        exchange: ExchangeClient,
        ledger: TradeLedger,
        max_attempts: int = 3,
        retry_base_delay: float = 0.5,
        idempotency_ttl_seconds: float = 600.0,
    ):
        self._exchange = exchange
        self._ledger = ledger
        self._max_attempts = max_attempts
        self._retry_base_delay = retry_base_delay
        self._recent = RecentOperations(ttl_seconds=idempotency_ttl_seconds)

    async def place_order(
        self,
        symbol: str,
        side: Union[Side, str],
        quantity: Decimal,
        *,
        idempotency_key: str,
        reduce_only: bool = False,
    ) -> OrderConfirmation:
        """
        Place a market order and record its fill.

        Raises:
            ExchangeRejectedError: refused by the exchange, not retried
            ExchangeUnavailableError: transport failure after all attempts
            UnrecordedFillError: filled on the exchange but not written to the ledger
        """
        if not idempotency_key:
            raise ValueError("idempotency_key is required")
        side = Side(side)
        quantity = Decimal(quantity)

        op, is_new = self._recent.claim(idempotency_key)
        if not is_new:
            logger.info(f"Duplicate order request {idempotency_key} ({side.value} {quantity} {symbol}) - "
                        f"returning original result")
            confirmation = await op.wait()
            return replace(confirmation, duplicate=True)

        try:
            confirmation = await self._execute(symbol, side, quantity, idempotency_key, reduce_only)
        except Exception as e:
            self._recent.discard(idempotency_key)
            op.reject(e)
            raise
        except asyncio.CancelledError:
            self._recent.discard(idempotency_key)
            op.reject(ExchangeUnavailableError(f"Order {idempotency_key} was cancelled"))
            raise
        op.resolve(confirmation)
        return confirmation

    async def _execute(
        self,
        symbol: str,
        side: Side,
        quantity: Decimal,
        idempotency_key: str,
        reduce_only: bool,
    ) -> OrderConfirmation:
        existing = await self._ledger.find_by_idempotency_key(idempotency_key)
        if existing is not None:
            logger.info(f"Order {idempotency_key} already recorded as trade {existing.id} - not resubmitting")
            return OrderConfirmation(
                symbol=existing.symbol,
                side=existing.side,
                quantity=existing.quantity,
                fill_price=existing.entry_price,
                order_id=existing.order_id,
                idempotency_key=idempotency_key,
                trade_id=existing.id,
                duplicate=True,
            )

        fill = await self._submit_with_retry(symbol, side, quantity, idempotency_key, reduce_only)
        fill_price = Decimal(fill["average_filled_price"])
        filled_size = Decimal(fill["filled_size"])
        order_id = fill.get("order_id")
        logger.info(f"Order placed: {side.value} {filled_size} {symbol} @ {fill_price} (order_id={order_id})")
        if filled_size != quantity:
            logger.warning(f"Partial fill for {symbol}: requested {quantity}, filled {filled_size}")

        try:
            trade_id = await self._ledger.insert(
                symbol,
                side,
                filled_size,
                fill_price,
                order_id=order_id,
                idempotency_key=idempotency_key,
            )
        except PersistenceError as e:
            error = UnrecordedFillError(
                symbol=symbol,
                side=side.value,
                quantity=filled_size,
                fill_price=fill_price,
                order_id=order_id,
                idempotency_key=idempotency_key,
                cause=e,
            )
            logger.critical(str(error))
            raise error from e

        return OrderConfirmation(
            symbol=symbol,
            side=side,
            quantity=filled_size,
            fill_price=fill_price,
            order_id=order_id,
            idempotency_key=idempotency_key,
            trade_id=trade_id,
        )

    async def _submit_with_retry(
        self,
        symbol: str,
        side: Side,
        quantity: Decimal,
        idempotency_key: str,
        reduce_only: bool,
    ) -> Dict[str, Any]:
        for attempt in range(1, self._max_attempts + 1):
            try:
                return await self._exchange.create_market_order(
                    symbol,
                    side,
                    quantity,
                    order_link_id=idempotency_key,
                    reduce_only=reduce_only,
                )
            except ExchangeRejectedError as e:
                logger.error(f"Error placing order: {side.value} {quantity} {symbol} rejected: {e}")
                raise
            except ExchangeUnavailableError as e:
                if attempt >= self._max_attempts:
                    logger.error(
                        f"Error placing order: {side.value} {quantity} {symbol} failed after "
                        f"{self._max_attempts} attempts: {e}"
                    )
                    raise
                # Exponential backoff: 0.5s, 1s, 2s ...
                delay = self._retry_base_delay * (2 ** (attempt - 1))
                logger.warning(
                    f"Exchange unavailable placing {side.value} {quantity} {symbol}, "
                    f"retrying in {delay}s (attempt {attempt}/{self._max_attempts}): {e}"
                )
                await asyncio.sleep(delay)

        raise ExchangeUnavailableError(f"No response after {self._max_attempts} attempts")
