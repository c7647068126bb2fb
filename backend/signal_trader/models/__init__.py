"""
Database Models.

Model classes are re-exported here:
    from signal_trader.models import Trade, Side, TradeStatus
"""

from signal_trader.database import Base  # noqa: F401
from signal_trader.models.trading import Side, Trade, TradeStatus, calculate_profit_loss

__all__ = [
    "Base",
    "Side",
    "Trade",
    "TradeStatus",
    "calculate_profit_loss",
]
