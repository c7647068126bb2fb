"""
Tests for backend/signal_trader/exchange_clients/bybit_client.py

Tests the ByBit raw API client including:
- Response checking (_check_response)
- Order / order history / position calls (mocked pybit HTTP)
- Error classification: ByBitError vs ByBitTransportError
"""

import pytest
import requests
from unittest.mock import MagicMock

from pybit.exceptions import FailedRequestError, InvalidRequestError

from signal_trader.exchange_clients.bybit_client import (
    ByBitClient,
    ByBitError,
    ByBitTransportError,
    _check_response,
)


def _ok(result=None):
    return {"retCode": 0, "retMsg": "OK", "result": result or {}}


@pytest.fixture
def mock_http():
    http = MagicMock()
    http.place_order.return_value = _ok({"orderId": "ord-1", "orderLinkId": "link-1"})
    http.get_order_history.return_value = _ok({"list": []})
    http.get_positions.return_value = _ok({"list": []})
    return http


@pytest.fixture
def bybit_client(mock_http, monkeypatch):
    """ByBitClient with the pybit HTTP session swapped for a MagicMock."""
    monkeypatch.setattr("signal_trader.exchange_clients.bybit_client._BYBIT_MIN_INTERVAL", 0)
    client = ByBitClient(api_key="test-key", api_secret="test-secret", testnet=True)
    client._http = mock_http
    return client


class TestCheckResponse:
    """Tests for _check_response()"""

    def test_success_returns_response(self):
        resp = _ok({"a": 1})
        assert _check_response(resp) is resp

    def test_error_code_raises(self):
        with pytest.raises(ByBitError) as exc_info:
            _check_response({"retCode": 110007, "retMsg": "ab not enough for new order"})
        assert exc_info.value.code == 110007
        assert "110007" in str(exc_info.value)

    def test_missing_code_raises(self):
        with pytest.raises(ByBitError):
            _check_response({})

    def test_long_message_truncated(self):
        with pytest.raises(ByBitError) as exc_info:
            _check_response({"retCode": 1, "retMsg": "x" * 1000})
        assert len(str(exc_info.value)) < 300


class TestPlaceOrder:
    """Tests for ByBitClient.place_order()"""

    @pytest.mark.asyncio
    async def test_market_order_kwargs(self, bybit_client, mock_http):
        await bybit_client.place_order(
            symbol="BTCUSD", side="buy", order_type="Market", qty="1", order_link_id="link-1",
        )
        mock_http.place_order.assert_called_once_with(
            category="linear", symbol="BTCUSD", side="Buy", orderType="Market", qty="1", orderLinkId="link-1",
        )

    @pytest.mark.asyncio
    async def test_reduce_only_flag(self, bybit_client, mock_http):
        await bybit_client.place_order(
            symbol="ETHUSD", side="Sell", order_type="Market", qty="2", reduce_only=True,
        )
        assert mock_http.place_order.call_args.kwargs["reduceOnly"] is True

    @pytest.mark.asyncio
    async def test_error_response_raises_bybit_error(self, bybit_client, mock_http):
        mock_http.place_order.return_value = {"retCode": 10001, "retMsg": "params error"}
        with pytest.raises(ByBitError) as exc_info:
            await bybit_client.place_order(symbol="BTCUSD", side="Buy", order_type="Market", qty="1")
        assert exc_info.value.code == 10001


class TestErrorClassification:
    """pybit exceptions are mapped to business vs transport errors."""

    @pytest.mark.asyncio
    async def test_invalid_request_is_business_error(self, bybit_client, mock_http):
        mock_http.place_order.side_effect = InvalidRequestError(
            request="POST /v5/order/create", message="OrderLinkedID is duplicate",
            status_code=110072, time="now", resp_headers={},
        )
        with pytest.raises(ByBitError) as exc_info:
            await bybit_client.place_order(symbol="BTCUSD", side="Buy", order_type="Market", qty="1")
        assert exc_info.value.code == 110072

    @pytest.mark.asyncio
    async def test_server_error_is_transport_error(self, bybit_client, mock_http):
        mock_http.place_order.side_effect = FailedRequestError(
            request="POST /v5/order/create", message="Bad Gateway",
            status_code=502, time="now", resp_headers={},
        )
        with pytest.raises(ByBitTransportError) as exc_info:
            await bybit_client.place_order(symbol="BTCUSD", side="Buy", order_type="Market", qty="1")
        assert exc_info.value.status_code == 502

    @pytest.mark.asyncio
    async def test_client_http_error_is_business_error(self, bybit_client, mock_http):
        mock_http.place_order.side_effect = FailedRequestError(
            request="POST /v5/order/create", message="Forbidden",
            status_code=403, time="now", resp_headers={},
        )
        with pytest.raises(ByBitError):
            await bybit_client.place_order(symbol="BTCUSD", side="Buy", order_type="Market", qty="1")

    @pytest.mark.asyncio
    async def test_connection_error_is_transport_error(self, bybit_client, mock_http):
        mock_http.get_positions.side_effect = requests.exceptions.ConnectionError("connection refused")
        with pytest.raises(ByBitTransportError):
            await bybit_client.get_positions()

    @pytest.mark.asyncio
    async def test_timeout_is_transport_error(self, bybit_client, mock_http):
        mock_http.get_order_history.side_effect = requests.exceptions.ReadTimeout("timed out")
        with pytest.raises(ByBitTransportError):
            await bybit_client.get_order_history(order_id="ord-1")


class TestReads:
    """Tests for order history and positions."""

    @pytest.mark.asyncio
    async def test_order_history_by_link_id(self, bybit_client, mock_http):
        await bybit_client.get_order_history(symbol="BTCUSD", order_link_id="link-1", limit=1)
        mock_http.get_order_history.assert_called_once_with(
            category="linear", limit=1, symbol="BTCUSD", orderLinkId="link-1",
        )

    @pytest.mark.asyncio
    async def test_positions_default_settle_coin(self, bybit_client, mock_http):
        await bybit_client.get_positions()
        mock_http.get_positions.assert_called_once_with(category="linear", settleCoin="USDT")

    @pytest.mark.asyncio
    async def test_positions_by_symbol(self, bybit_client, mock_http):
        await bybit_client.get_positions(symbol="BTCUSD")
        mock_http.get_positions.assert_called_once_with(category="linear", symbol="BTCUSD")

    @pytest.mark.asyncio
    async def test_inverse_category_needs_no_settle_coin(self, bybit_client, mock_http):
        await bybit_client.get_positions(category="inverse")
        mock_http.get_positions.assert_called_once_with(category="inverse")
