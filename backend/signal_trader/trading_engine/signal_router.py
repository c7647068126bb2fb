"""
Signal Router

Per-signal state machine:

    Received -> Validated -> Dispatched -> Completed
        |            |             |
        +------------+-------------+----> Failed

BUY signals open a position through the order execution engine; SELL
signals flatten every open position through the position reconciler.
Failures notify the operator and propagate to the HTTP layer. The whole
signal is never retried here; retries live inside the components.
"""

import enum
import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, List, Optional

from pydantic import ValidationError

from signal_trader.exceptions import InvalidSignalError, UnknownTopicError
from signal_trader.models import Side
from signal_trader.schemas.webhook import Recommendation, WebhookPayload
from signal_trader.services.notifier import TelegramNotifier
from signal_trader.trading_engine.idempotency import SignalKeyWindow, order_key
from signal_trader.trading_engine.order_executor import OrderExecutionEngine
from signal_trader.trading_engine.position_reconciler import PositionReconciler
from signal_trader.trading_engine.symbol_locks import SymbolLocks
from signal_trader.trading_engine.trade_context import ClosureResult, OrderConfirmation

logger = logging.getLogger(__name__)


class SignalState(str, enum.Enum):
    RECEIVED = "Received"
    VALIDATED = "Validated"
    DISPATCHED = "Dispatched"
    COMPLETED = "Completed"
    FAILED = "Failed"


_TRANSITIONS = {
    SignalState.RECEIVED: {SignalState.VALIDATED, SignalState.FAILED},
    SignalState.VALIDATED: {SignalState.DISPATCHED, SignalState.FAILED},
    SignalState.DISPATCHED: {SignalState.COMPLETED, SignalState.FAILED},
    SignalState.COMPLETED: set(),
    SignalState.FAILED: set(),
}


@dataclass
class SignalContext:
    signal_id: str
    payload: Any
    state: SignalState = SignalState.RECEIVED
    symbol: Optional[str] = None
    recommendation: Optional[Recommendation] = None
    error: Optional[Exception] = None
    history: List[SignalState] = field(default_factory=lambda: [SignalState.RECEIVED])
    orders: List[OrderConfirmation] = field(default_factory=list)
    closures: List[ClosureResult] = field(default_factory=list)
    received_at: datetime = field(default_factory=datetime.utcnow)

    def transition(self, new_state: SignalState):
        if new_state not in _TRANSITIONS[self.state]:
            raise RuntimeError(f"Illegal signal transition {self.state.value} -> {new_state.value}")
        self.state = new_state
        self.history.append(new_state)

    def fail(self, error: Exception):
        self.error = error
        self.transition(SignalState.FAILED)

    def as_dict(self) -> dict:
        result = {
            "signal_id": self.signal_id,
            "state": self.state.value,
            "symbol": self.symbol,
            "recommendation": self.recommendation.value if self.recommendation else None,
            "orders": [o.as_dict() for o in self.orders],
            "closures": [c.as_dict() for c in self.closures],
        }
        if self.error is not None:
            result["error"] = type(self.error).__name__
        return result


class SignalRouter:
    def __init__(
        self,
        engine: OrderExecutionEngine,
        reconciler: PositionReconciler,
        notifier: TelegramNotifier,
        symbol_locks: SymbolLocks,
        order_quantity: Decimal,
        topic: str = "notification.create",
        idempotency_window_seconds: int = 60,
    ):
        self._engine = engine
        self._reconciler = reconciler
        self._notifier = notifier
        self._locks = symbol_locks
        self._order_quantity = Decimal(order_quantity)
        self._topic = topic
        self._signal_keys = SignalKeyWindow(idempotency_window_seconds)

    def receive(self, payload: Any, request_id: Optional[str] = None) -> SignalContext:
        signal_id = self._signal_keys.key_for(payload, request_id)
        return SignalContext(signal_id=signal_id, payload=payload)

    async def handle(self, payload: Any, request_id: Optional[str] = None) -> SignalContext:
        ctx = self.receive(payload, request_id)
        await self.process(ctx)
        return ctx

    async def process(self, ctx: SignalContext) -> SignalContext:
        """Drive one signal to Completed, or to Failed and raise."""
        try:
            self._validate(ctx)
        except UnknownTopicError as e:
            logger.warning(f"Received unexpected topic: {e.topic!r} (signal {ctx.signal_id})")
            ctx.fail(e)
            raise
        except InvalidSignalError as e:
            logger.warning(f"Malformed signal {ctx.signal_id}: {e.message}")
            ctx.fail(e)
            raise

        ctx.transition(SignalState.DISPATCHED)
        try:
            if ctx.recommendation is Recommendation.BUY:
                await self._dispatch_buy(ctx)
            else:
                await self._dispatch_sell(ctx)
        except Exception as e:
            ctx.fail(e)
            logger.error(f"Error processing {ctx.recommendation.value} signal {ctx.signal_id} "
                         f"for {ctx.symbol}: {e}")
            self._notifier.notify(self._failure_message(ctx, e))
            raise

        ctx.transition(SignalState.COMPLETED)
        return ctx

    def _validate(self, ctx: SignalContext):
        payload = ctx.payload
        if not isinstance(payload, dict):
            raise InvalidSignalError("Payload must be a JSON object")
        topic = payload.get("topic")
        if topic is None:
            raise InvalidSignalError("Payload has no topic")
        if topic != self._topic:
            raise UnknownTopicError(topic)
        try:
            parsed = WebhookPayload.model_validate(payload)
        except ValidationError as e:
            fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
            raise InvalidSignalError(f"Invalid signal fields: {fields}") from e

        ctx.symbol = parsed.data.symbol
        ctx.recommendation = parsed.data.recommendation
        ctx.transition(SignalState.VALIDATED)
        logger.info(f"Signal {ctx.signal_id} validated: {ctx.recommendation.value} {ctx.symbol}")

    async def _dispatch_buy(self, ctx: SignalContext):
        async with self._locks.hold(ctx.symbol):
            confirmation = await self._engine.place_order(
                ctx.symbol,
                Side.BUY,
                self._order_quantity,
                idempotency_key=order_key(ctx.signal_id, ctx.symbol, Side.BUY),
            )
        ctx.orders.append(confirmation)

    async def _dispatch_sell(self, ctx: SignalContext):
        ctx.closures = await self._reconciler.flatten(ctx.signal_id)
        ctx.orders = [c.confirmation for c in ctx.closures]

    @staticmethod
    def _failure_message(ctx: SignalContext, error: Exception) -> str:
        if ctx.recommendation is Recommendation.BUY:
            action = f"placing order for {ctx.symbol}"
        else:
            action = "closing positions"
        return f"Error {action}: {type(error).__name__}: {error}"
