"""Trading models: trade ledger rows and side/status enums."""

import enum
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    Numeric,
    String,
)

from signal_trader.database import Base


class Side(str, enum.Enum):
    BUY = "Buy"
    SELL = "Sell"

    @property
    def opposite(self) -> "Side":
        return Side.SELL if self is Side.BUY else Side.BUY


class TradeStatus(str, enum.Enum):
    OPEN = "Open"
    CLOSED = "Closed"


def calculate_profit_loss(side: Side, entry_price: Decimal, exit_price: Decimal, quantity: Decimal) -> Decimal:
    """Realized P&L of a leg opened on `side`.

    Long:  (exit - entry) * qty
    Short: (entry - exit) * qty
    """
    side = Side(side)
    if side is Side.BUY:
        return (exit_price - entry_price) * quantity
    return (entry_price - exit_price) * quantity


class Trade(Base):
    __tablename__ = "trades"

    id = Column(Integer, primary_key=True, autoincrement=True, index=True)
    symbol = Column(String, nullable=False, index=True)
    side = Column(Enum(Side, values_callable=lambda e: [m.value for m in e], native_enum=False), nullable=False)
    quantity = Column(Numeric(28, 10, asdecimal=True), nullable=False)
    entry_price = Column(Numeric(28, 10, asdecimal=True), nullable=False)  # Exchange fill price, immutable
    status = Column(
        Enum(TradeStatus, values_callable=lambda e: [m.value for m in e], native_enum=False),
        nullable=False,
        default=TradeStatus.OPEN,
        index=True,
    )

    order_id = Column(String, nullable=True)  # ByBit orderId
    idempotency_key = Column(String, nullable=True, unique=True)  # Also sent as ByBit orderLinkId

    # Set once by the close transition
    exit_price = Column(Numeric(28, 10, asdecimal=True), nullable=True)
    closing_trade_id = Column(Integer, ForeignKey("trades.id"), nullable=True)  # Exit leg that closed this trade

    opened_at = Column(DateTime, default=datetime.utcnow)
    closed_at = Column(DateTime, nullable=True)

    @property
    def is_open(self) -> bool:
        return self.status == TradeStatus.OPEN

    @property
    def profit_loss(self) -> Optional[Decimal]:
        """Derived on every read; None until the trade has an exit price."""
        if self.exit_price is None or self.entry_price is None:
            return None
        return calculate_profit_loss(self.side, self.entry_price, self.exit_price, self.quantity)

    def __repr__(self) -> str:
        return (
            f"<Trade id={self.id} {self.side.value if self.side else None} {self.quantity} {self.symbol} "
            f"@ {self.entry_price} status={self.status.value if self.status else None}>"
        )
