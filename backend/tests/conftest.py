"""
Shared test fixtures for the signal trader tests.

Provides reusable fixtures for:
- In-memory trade ledgers (aiosqlite)
- Mock exchange clients and notifiers
- Order execution engine / reconciler / router wiring
"""

from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

from signal_trader.models import Side
from signal_trader.services.notifier import TelegramNotifier
from signal_trader.trading_engine.ledger import TradeLedger
from signal_trader.trading_engine.order_executor import OrderExecutionEngine
from signal_trader.trading_engine.position_reconciler import PositionReconciler
from signal_trader.trading_engine.signal_router import SignalRouter
from signal_trader.trading_engine.symbol_locks import SymbolLocks
from signal_trader.trading_engine.trade_context import ExchangePosition

MEMORY_URL = "sqlite+aiosqlite:///:memory:"


def make_fill(symbol="BTCUSD", side="Buy", size="1", price="100", order_id="ord-1"):
    """Normalized fill dict as returned by ExchangeClient.create_market_order."""
    return {
        "order_id": order_id,
        "order_link_id": "",
        "symbol": symbol,
        "side": side,
        "filled_size": Decimal(size),
        "average_filled_price": Decimal(price),
        "status": "FILLED",
    }


def make_position(symbol, side, size, entry_price="100"):
    return ExchangePosition(
        symbol=symbol,
        side=Side(side),
        size=Decimal(str(size)),
        entry_price=Decimal(str(entry_price)),
    )


# ---------------------------------------------------------------------------
# Ledger
# ---------------------------------------------------------------------------


@pytest.fixture
async def ledger():
    """Fresh in-memory trade ledger per test."""
    trade_ledger = TradeLedger.from_url(MEMORY_URL)
    await trade_ledger.init()
    yield trade_ledger
    await trade_ledger.close()


# ---------------------------------------------------------------------------
# Mock collaborators
# ---------------------------------------------------------------------------


@pytest.fixture
def mock_exchange():
    """Mock exchange that fills every order at 100 and reports no positions."""
    exchange = MagicMock()

    async def _fill(symbol, side, quantity, order_link_id=None, reduce_only=False):
        return make_fill(symbol=symbol, side=getattr(side, "value", side), size=str(quantity),
                         price="100", order_id=f"ord-{order_link_id}")

    exchange.create_market_order = AsyncMock(side_effect=_fill)
    exchange.list_positions = AsyncMock(return_value=[])
    return exchange


@pytest.fixture
def mock_notifier():
    notifier = MagicMock(spec=TelegramNotifier)
    notifier.enabled = True
    notifier.notify = MagicMock()
    notifier.aclose = AsyncMock()
    return notifier


# ---------------------------------------------------------------------------
# Engine wiring
# ---------------------------------------------------------------------------


@pytest.fixture
def symbol_locks():
    return SymbolLocks()


@pytest.fixture
def engine(mock_exchange, ledger):
    return OrderExecutionEngine(mock_exchange, ledger, max_attempts=3, retry_base_delay=0)


@pytest.fixture
def reconciler(mock_exchange, engine, ledger, symbol_locks):
    return PositionReconciler(mock_exchange, engine, ledger, symbol_locks)


@pytest.fixture
def signal_router(engine, reconciler, mock_notifier, symbol_locks):
    return SignalRouter(
        engine,
        reconciler,
        mock_notifier,
        symbol_locks,
        order_quantity=Decimal("1"),
    )


# ---------------------------------------------------------------------------
# Sample data factories
# ---------------------------------------------------------------------------


@pytest.fixture
def fill_factory():
    return make_fill


@pytest.fixture
def position_factory():
    return make_position
