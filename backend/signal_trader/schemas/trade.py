"""Trade-related Pydantic schemas"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel


class TradeResponse(BaseModel):
    id: int
    symbol: str
    side: str  # "Buy" or "Sell"
    quantity: Decimal
    entry_price: Decimal  # Exchange fill price
    status: str  # "Open" or "Closed"
    exit_price: Optional[Decimal] = None
    profit_loss: Optional[Decimal] = None  # Derived from entry/exit on every read
    closing_trade_id: Optional[int] = None
    order_id: Optional[str] = None
    opened_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None

    class Config:
        from_attributes = True

    @classmethod
    def from_trade(cls, trade) -> "TradeResponse":
        return cls(
            id=trade.id,
            symbol=trade.symbol,
            side=trade.side.value,
            quantity=trade.quantity,
            entry_price=trade.entry_price,
            status=trade.status.value,
            exit_price=trade.exit_price,
            profit_loss=trade.profit_loss,
            closing_trade_id=trade.closing_trade_id,
            order_id=trade.order_id,
            opened_at=trade.opened_at,
            closed_at=trade.closed_at,
        )
