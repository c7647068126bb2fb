"""
ByBit Adapter

Implements the ExchangeClient ABC for ByBit V5.
All orders go as linear perpetual (category="linear") - USDT perps.
Wraps ByBitClient, confirms market order fills from order history and
translates ByBit failures into the domain exchange errors.
"""

import asyncio
import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

from signal_trader.exceptions import ExchangeRejectedError, ExchangeUnavailableError
from signal_trader.exchange_clients.base import ExchangeClient
from signal_trader.exchange_clients.bybit_client import (
    DUPLICATE_ORDER_LINK_ID,
    ByBitClient,
    ByBitError,
    ByBitTransportError,
)
from signal_trader.models import Side
from signal_trader.trading_engine.trade_context import ExchangePosition

logger = logging.getLogger(__name__)

# ByBit V5 order statuses
_FILLED_STATUSES = {"Filled", "PartiallyFilledCanceled"}
_REJECTED_STATUSES = {"Rejected", "Cancelled", "Deactivated"}


def _to_decimal(value: Any, default: str = "0") -> Decimal:
    try:
        return Decimal(str(value)) if value not in (None, "") else Decimal(default)
    except InvalidOperation:
        return Decimal(default)


def format_quantity(quantity: Decimal) -> str:
    """Plain (non-scientific) string form ByBit accepts for qty."""
    return format(Decimal(quantity).normalize(), "f")


class ByBitAdapter(ExchangeClient):
    """
    ExchangeClient implementation for ByBit V5 (unified account).

    - All trades use category="linear" (USDT linear perpetuals)
    - Position mode: one-way
    """

    def __init__(
        self,
        client: ByBitClient,
        category: str = "linear",
        fill_poll_attempts: int = 5,
        fill_poll_base_delay: float = 0.5,
    ):
        self._client = client
        self._category = category
        self._fill_poll_attempts = fill_poll_attempts
        self._fill_poll_base_delay = fill_poll_base_delay

    # ==========================================================
    # ORDERS
    # ==========================================================

    async def create_market_order(
        self,
        symbol: str,
        side: Side,
        quantity: Decimal,
        order_link_id: Optional[str] = None,
        reduce_only: bool = False,
    ) -> Dict[str, Any]:
        side = Side(side)
        order_id = None
        try:
            resp = await self._client.place_order(
                symbol=symbol,
                side=side.value,
                order_type="Market",
                qty=format_quantity(quantity),
                category=self._category,
                order_link_id=order_link_id,
                reduce_only=reduce_only,
            )
            order_id = resp.get("result", {}).get("orderId") or None
        except ByBitError as e:
            if e.code == DUPLICATE_ORDER_LINK_ID and order_link_id:
                # An earlier attempt reached ByBit; confirm that order instead
                logger.warning(f"orderLinkId {order_link_id} already used on ByBit, fetching existing order")
            else:
                raise ExchangeRejectedError(str(e), code=e.code) from e
        except ByBitTransportError as e:
            raise ExchangeUnavailableError(str(e)) from e

        return await self._await_fill(symbol, order_id=order_id, order_link_id=order_link_id)

    async def _await_fill(
        self,
        symbol: str,
        order_id: Optional[str] = None,
        order_link_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Poll order history until the market order reports its fill.

        Market order responses only carry an orderId; avgPrice appears in
        order history once the order is Filled. Backoff: 0.5s, 1s, 2s, 4s,
        then capped at 5s.
        """
        last_status = "UNKNOWN"
        for attempt in range(self._fill_poll_attempts):
            if attempt > 0:
                delay = min(self._fill_poll_base_delay * (2 ** (attempt - 1)), 5.0)
                logger.info(f"Waiting {delay}s for fill of {order_id or order_link_id} "
                            f"(attempt {attempt + 1}/{self._fill_poll_attempts})...")
                await asyncio.sleep(delay)

            try:
                resp = await self._client.get_order_history(
                    category=self._category,
                    symbol=symbol,
                    order_id=order_id,
                    order_link_id=None if order_id else order_link_id,
                )
            except ByBitTransportError as e:
                logger.warning(f"Order history unavailable for {order_id or order_link_id}: {e}")
                continue
            except ByBitError as e:
                raise ExchangeRejectedError(str(e), code=e.code) from e

            orders = resp.get("result", {}).get("list", [])
            if not orders:
                continue
            order = orders[0]
            last_status = order.get("orderStatus", "")
            filled_size = _to_decimal(order.get("cumExecQty"))
            avg_price = _to_decimal(order.get("avgPrice"))

            if last_status in _FILLED_STATUSES and filled_size > 0 and avg_price > 0:
                return {
                    "order_id": order.get("orderId", order_id),
                    "order_link_id": order.get("orderLinkId", order_link_id),
                    "symbol": order.get("symbol", symbol),
                    "side": order.get("side", ""),
                    "filled_size": filled_size,
                    "average_filled_price": avg_price,
                    "status": "FILLED",
                }
            if last_status in _REJECTED_STATUSES or (last_status in _FILLED_STATUSES and filled_size == 0):
                reason = order.get("rejectReason") or last_status
                raise ExchangeRejectedError(
                    f"ByBit order {order.get('orderId', order_id)} for {symbol} not filled: {reason}"
                )

        raise ExchangeUnavailableError(
            f"Fill for {symbol} order {order_id or order_link_id} not confirmed after "
            f"{self._fill_poll_attempts} attempts (last status: {last_status})"
        )

    # ==========================================================
    # POSITIONS
    # ==========================================================

    async def list_positions(self, symbol: Optional[str] = None) -> List[ExchangePosition]:
        try:
            resp = await self._client.get_positions(category=self._category, symbol=symbol)
        except ByBitError as e:
            # Auth failures land here too; never fall back to cached data
            raise ExchangeUnavailableError(f"Cannot list ByBit positions: {e}") from e
        except ByBitTransportError as e:
            raise ExchangeUnavailableError(f"Cannot list ByBit positions: {e}") from e

        positions = []
        for pos in resp.get("result", {}).get("list", []):
            size = _to_decimal(pos.get("size"))
            side = pos.get("side", "")
            if size <= 0 or side not in (Side.BUY.value, Side.SELL.value):
                continue
            positions.append(ExchangePosition(
                symbol=pos.get("symbol", ""),
                side=Side(side),
                size=size,
                entry_price=_to_decimal(pos.get("avgPrice")),
            ))
        return positions
