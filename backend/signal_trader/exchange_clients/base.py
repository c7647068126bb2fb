"""
ExchangeClient Abstract Base Class

The narrow interface the order execution engine and position reconciler need
from an exchange. Implementations normalise exchange payloads into Decimal
amounts and raise the domain exchange errors:

- ExchangeRejectedError: the exchange refused the request (not retried)
- ExchangeUnavailableError: transport failure, outcome unknown (retryable)
"""

from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Any, Dict, List, Optional

from signal_trader.models import Side
from signal_trader.trading_engine.trade_context import ExchangePosition


class ExchangeClient(ABC):

    @abstractmethod
    async def create_market_order(
        self,
        symbol: str,
        side: Side,
        quantity: Decimal,
        order_link_id: Optional[str] = None,
        reduce_only: bool = False,
    ) -> Dict[str, Any]:
        """
        Submit a market order and wait for its fill.

        Args:
            symbol: Exchange symbol (e.g., 'BTCUSDT')
            side: Side.BUY or Side.SELL
            quantity: Contract quantity
            order_link_id: Client order id; a repeated id never creates a
                second order
            reduce_only: Only reduce an existing position

        Returns:
            {
                "order_id": "...",
                "order_link_id": "...",
                "symbol": "BTCUSDT",
                "side": "Buy",
                "filled_size": Decimal,
                "average_filled_price": Decimal,
                "status": "FILLED",
            }
        """
        pass

    @abstractmethod
    async def list_positions(self, symbol: Optional[str] = None) -> List[ExchangePosition]:
        """Open positions with a non-zero size, freshly fetched from the exchange."""
        pass
