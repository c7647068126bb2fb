"""
Trade context dataclasses: the values threaded between the signal router,
order execution engine and position reconciler.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional

from signal_trader.models import Side


@dataclass
class OrderConfirmation:
    """A confirmed market order fill, as recorded in the ledger."""
    symbol: str
    side: Side
    quantity: Decimal
    fill_price: Decimal  # Exchange avgPrice, authoritative entry price
    order_id: Optional[str]
    idempotency_key: str
    trade_id: Optional[int] = None
    duplicate: bool = False  # True when a repeated key returned the original fill

    def as_dict(self) -> dict:
        return {
            "symbol": self.symbol,
            "side": self.side.value,
            "quantity": str(self.quantity),
            "fill_price": str(self.fill_price),
            "order_id": self.order_id,
            "trade_id": self.trade_id,
            "duplicate": self.duplicate,
        }


@dataclass(frozen=True)
class ExchangePosition:
    """Exchange-reported open position. Read-only reconciliation input."""
    symbol: str
    side: Side
    size: Decimal
    entry_price: Decimal


@dataclass(frozen=True)
class CloseAction:
    """Offsetting order that flattens one position."""
    symbol: str
    side: Side
    quantity: Decimal


@dataclass
class ClosureResult:
    """Outcome of flattening one position."""
    position: ExchangePosition
    confirmation: OrderConfirmation
    profit_loss: Optional[Decimal]  # None when a repeated close could not be matched to its original
    closed_trade_ids: List[int] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            "symbol": self.position.symbol,
            "position_side": self.position.side.value,
            "size": str(self.position.size),
            "exit_price": str(self.confirmation.fill_price),
            "profit_loss": str(self.profit_loss) if self.profit_loss is not None else None,
            "closed_trade_ids": list(self.closed_trade_ids),
            "order": self.confirmation.as_dict(),
        }
