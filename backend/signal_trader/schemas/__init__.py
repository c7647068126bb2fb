from signal_trader.schemas.trade import TradeResponse
from signal_trader.schemas.webhook import Recommendation, SignalData, WebhookPayload

__all__ = [
    "Recommendation",
    "SignalData",
    "TradeResponse",
    "WebhookPayload",
]
