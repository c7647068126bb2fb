"""
Tests for backend/signal_trader/routers/trades_router.py
"""

import pytest
from fastapi.testclient import TestClient

from signal_trader.config import Settings
from signal_trader.main import create_app

BUY = {"topic": "notification.create", "data": {"symbol": "BTCUSD", "recommendation": "BUY"}}


@pytest.fixture
def client(mock_exchange, mock_notifier):
    settings = Settings(
        _env_file=None,
        database_url="sqlite+aiosqlite:///:memory:",
        bybit_ws_enabled=False,
        order_retry_base_delay=0,
    )
    app = create_app(settings, exchange=mock_exchange, notifier=mock_notifier, feed=None)
    with TestClient(app) as test_client:
        yield test_client


class TestListTrades:

    def test_empty_ledger(self, client):
        response = client.get("/api/trades")
        assert response.status_code == 200
        assert response.json() == []

    def test_filters_by_symbol_and_status(self, client):
        client.post("/webhook", json=BUY)
        client.post("/webhook", json={**BUY, "data": {"symbol": "ETHUSD", "recommendation": "BUY"}})

        assert len(client.get("/api/trades").json()) == 2
        assert [t["symbol"] for t in client.get("/api/trades", params={"symbol": "ethusd"}).json()] == ["ETHUSD"]
        assert len(client.get("/api/trades", params={"status": "Open"}).json()) == 2
        assert client.get("/api/trades", params={"status": "closed"}).json() == []

    def test_invalid_status_is_400(self, client):
        response = client.get("/api/trades", params={"status": "pending"})
        assert response.status_code == 400


class TestGetTrade:

    def test_returns_trade(self, client):
        client.post("/webhook", json=BUY)
        response = client.get("/api/trades/1")

        assert response.status_code == 200
        trade = response.json()
        assert trade["symbol"] == "BTCUSD"
        assert trade["side"] == "Buy"
        assert trade["status"] == "Open"
        assert trade["profit_loss"] is None

    def test_unknown_trade_is_404(self, client):
        response = client.get("/api/trades/999")
        assert response.status_code == 404
        assert "999" in response.json()["detail"]
