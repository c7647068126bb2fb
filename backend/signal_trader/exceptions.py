"""
Domain exceptions for the signal trader.

Components raise these instead of fastapi.HTTPException so the trading engine
stays independent of the web framework. A global exception handler in main.py
translates them into HTTP responses; the webhook maps them to coarse codes.
"""

from decimal import Decimal
from typing import Optional


class AppError(Exception):
    """Base application error with an HTTP-equivalent status code."""

    def __init__(self, message: str, status_code: int = 400):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


class InvalidSignalError(AppError):
    """Malformed signal payload (400). Never retried."""

    def __init__(self, message: str):
        super().__init__(message, status_code=400)


class UnknownTopicError(InvalidSignalError):
    """Signal with a topic this service does not handle (400)."""

    def __init__(self, topic):
        self.topic = topic
        super().__init__(f"Unexpected topic: {topic!r}")


class ExchangeRejectedError(AppError):
    """Business rejection from the exchange (502). Never retried."""

    def __init__(self, message: str, code: int = 0):
        self.code = code
        super().__init__(message, status_code=502)


class ExchangeUnavailableError(AppError):
    """Exchange API unavailable (503). Retried with backoff by the order engine."""

    def __init__(self, message: str = "Exchange service unavailable"):
        super().__init__(message, status_code=503)


class PersistenceError(AppError):
    """Trade ledger I/O failure (500). Always escalated."""

    def __init__(self, message: str = "Trade ledger unavailable"):
        super().__init__(message, status_code=500)


class UnrecordedFillError(PersistenceError):
    """An order filled on the exchange but could not be written to the ledger.

    Carries the full order details so an operator can reconcile by hand.
    """

    def __init__(
        self,
        symbol: str,
        side: str,
        quantity: Decimal,
        fill_price: Decimal,
        order_id: Optional[str],
        idempotency_key: Optional[str],
        cause: Exception,
    ):
        self.symbol = symbol
        self.side = side
        self.quantity = quantity
        self.fill_price = fill_price
        self.order_id = order_id
        self.idempotency_key = idempotency_key
        super().__init__(
            f"FILLED BUT NOT RECORDED: {side} {quantity} {symbol} @ {fill_price} "
            f"(order_id={order_id}, key={idempotency_key}): {cause}"
        )


class NotFoundError(AppError):
    """Resource not found (404)."""

    def __init__(self, message: str = "Not found"):
        super().__init__(message, status_code=404)


class AlreadyClosedError(AppError):
    """Trade is already closed (409). Callers may treat it as a no-op."""

    def __init__(self, trade_id: int):
        self.trade_id = trade_id
        super().__init__(f"Trade {trade_id} is already closed", status_code=409)


class ShutdownInProgressError(AppError):
    """New signals are refused while shutting down (503)."""

    def __init__(self, message: str = "Shutdown in progress"):
        super().__init__(message, status_code=503)
