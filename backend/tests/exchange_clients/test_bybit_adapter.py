"""
Tests for backend/signal_trader/exchange_clients/bybit_adapter.py

Tests the ExchangeClient implementation for ByBit:
- Market order placement + fill confirmation from order history
- Duplicate orderLinkId handling
- Error translation into ExchangeRejectedError / ExchangeUnavailableError
- Position listing
"""

import pytest
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

from signal_trader.exceptions import ExchangeRejectedError, ExchangeUnavailableError
from signal_trader.exchange_clients.bybit_adapter import ByBitAdapter, _to_decimal, format_quantity
from signal_trader.exchange_clients.bybit_client import ByBitError, ByBitTransportError
from signal_trader.models import Side


def _history(*orders):
    return {"retCode": 0, "result": {"list": list(orders)}}


def _order(status="Filled", qty="1", avg_price="100", order_id="ord-1", side="Buy", symbol="BTCUSD"):
    return {
        "orderId": order_id,
        "orderLinkId": "link-1",
        "symbol": symbol,
        "side": side,
        "orderStatus": status,
        "cumExecQty": qty,
        "avgPrice": avg_price,
    }


@pytest.fixture
def mock_client():
    client = MagicMock()
    client.place_order = AsyncMock(return_value={"retCode": 0, "result": {"orderId": "ord-1"}})
    client.get_order_history = AsyncMock(return_value=_history(_order()))
    client.get_positions = AsyncMock(return_value={"retCode": 0, "result": {"list": []}})
    return client


@pytest.fixture
def adapter(mock_client):
    return ByBitAdapter(mock_client, category="linear", fill_poll_attempts=3, fill_poll_base_delay=0)


class TestHelpers:

    def test_to_decimal(self):
        assert _to_decimal("1.5") == Decimal("1.5")
        assert _to_decimal("") == Decimal("0")
        assert _to_decimal(None) == Decimal("0")
        assert _to_decimal("not-a-number") == Decimal("0")

    def test_format_quantity_plain(self):
        assert format_quantity(Decimal("1.000")) == "1"
        assert format_quantity(Decimal("0.0010")) == "0.001"
        assert format_quantity(Decimal("1E+2")) == "100"


class TestCreateMarketOrder:
    """Tests for ByBitAdapter.create_market_order()"""

    @pytest.mark.asyncio
    async def test_fill_confirmed_from_history(self, adapter, mock_client):
        fill = await adapter.create_market_order("BTCUSD", Side.BUY, Decimal("1"), order_link_id="link-1")

        mock_client.place_order.assert_awaited_once_with(
            symbol="BTCUSD", side="Buy", order_type="Market", qty="1",
            category="linear", order_link_id="link-1", reduce_only=False,
        )
        assert fill["order_id"] == "ord-1"
        assert fill["filled_size"] == Decimal("1")
        assert fill["average_filled_price"] == Decimal("100")
        assert fill["status"] == "FILLED"

    @pytest.mark.asyncio
    async def test_polls_until_filled(self, adapter, mock_client):
        mock_client.get_order_history = AsyncMock(side_effect=[
            _history(),
            _history(_order(status="New", qty="0", avg_price="")),
            _history(_order(avg_price="101.5")),
        ])
        fill = await adapter.create_market_order("BTCUSD", "Buy", Decimal("1"))
        assert fill["average_filled_price"] == Decimal("101.5")
        assert mock_client.get_order_history.await_count == 3

    @pytest.mark.asyncio
    async def test_partially_filled_canceled_counts_as_fill(self, adapter, mock_client):
        mock_client.get_order_history = AsyncMock(
            return_value=_history(_order(status="PartiallyFilledCanceled", qty="0.4"))
        )
        fill = await adapter.create_market_order("BTCUSD", Side.BUY, Decimal("1"))
        assert fill["filled_size"] == Decimal("0.4")

    @pytest.mark.asyncio
    async def test_unconfirmed_fill_is_unavailable(self, adapter, mock_client):
        mock_client.get_order_history = AsyncMock(return_value=_history(_order(status="New", qty="0")))
        with pytest.raises(ExchangeUnavailableError):
            await adapter.create_market_order("BTCUSD", Side.BUY, Decimal("1"))
        assert mock_client.get_order_history.await_count == 3

    @pytest.mark.asyncio
    async def test_history_transport_error_keeps_polling(self, adapter, mock_client):
        mock_client.get_order_history = AsyncMock(side_effect=[
            ByBitTransportError("timeout"),
            _history(_order()),
        ])
        fill = await adapter.create_market_order("BTCUSD", Side.BUY, Decimal("1"))
        assert fill["average_filled_price"] == Decimal("100")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", ["Rejected", "Cancelled", "Deactivated"])
    async def test_rejected_status_raises_rejected(self, adapter, mock_client, status):
        mock_client.get_order_history = AsyncMock(return_value=_history(_order(status=status, qty="0")))
        with pytest.raises(ExchangeRejectedError):
            await adapter.create_market_order("BTCUSD", Side.BUY, Decimal("1"))

    @pytest.mark.asyncio
    async def test_business_error_is_rejection(self, adapter, mock_client):
        mock_client.place_order = AsyncMock(side_effect=ByBitError("ab not enough for new order", 110007))
        with pytest.raises(ExchangeRejectedError) as exc_info:
            await adapter.create_market_order("BTCUSD", Side.BUY, Decimal("1"))
        assert exc_info.value.code == 110007
        mock_client.get_order_history.assert_not_called()

    @pytest.mark.asyncio
    async def test_transport_error_is_unavailable(self, adapter, mock_client):
        mock_client.place_order = AsyncMock(side_effect=ByBitTransportError("connection reset"))
        with pytest.raises(ExchangeUnavailableError):
            await adapter.create_market_order("BTCUSD", Side.BUY, Decimal("1"))

    @pytest.mark.asyncio
    async def test_duplicate_link_id_fetches_existing_order(self, adapter, mock_client):
        """A retried submission that already reached ByBit is confirmed, not repeated."""
        mock_client.place_order = AsyncMock(side_effect=ByBitError("OrderLinkedID is duplicate", 110072))

        fill = await adapter.create_market_order("BTCUSD", Side.BUY, Decimal("1"), order_link_id="link-1")

        assert fill["order_id"] == "ord-1"
        assert mock_client.get_order_history.call_args.kwargs["order_link_id"] == "link-1"

    @pytest.mark.asyncio
    async def test_reduce_only_passed(self, adapter, mock_client):
        await adapter.create_market_order("BTCUSD", Side.SELL, Decimal("2"), reduce_only=True)
        assert mock_client.place_order.call_args.kwargs["reduce_only"] is True


class TestListPositions:
    """Tests for ByBitAdapter.list_positions()"""

    @pytest.mark.asyncio
    async def test_maps_open_positions(self, adapter, mock_client):
        mock_client.get_positions = AsyncMock(return_value={"retCode": 0, "result": {"list": [
            {"symbol": "BTCUSD", "side": "Buy", "size": "1", "avgPrice": "100"},
            {"symbol": "ETHUSD", "side": "Sell", "size": "2", "avgPrice": "50.5"},
            {"symbol": "SOLUSD", "side": "", "size": "0", "avgPrice": "0"},
        ]}})

        positions = await adapter.list_positions()

        assert [(p.symbol, p.side, p.size, p.entry_price) for p in positions] == [
            ("BTCUSD", Side.BUY, Decimal("1"), Decimal("100")),
            ("ETHUSD", Side.SELL, Decimal("2"), Decimal("50.5")),
        ]

    @pytest.mark.asyncio
    async def test_symbol_filter_passed(self, adapter, mock_client):
        await adapter.list_positions("BTCUSD")
        mock_client.get_positions.assert_awaited_once_with(category="linear", symbol="BTCUSD")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [ByBitError("invalid api key", 10003), ByBitTransportError("timeout")])
    async def test_errors_are_unavailable(self, adapter, mock_client, error):
        mock_client.get_positions = AsyncMock(side_effect=error)
        with pytest.raises(ExchangeUnavailableError):
            await adapter.list_positions()
