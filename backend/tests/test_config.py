"""
Tests for backend/signal_trader/config.py
"""

from decimal import Decimal

import pytest
from pydantic import ValidationError

from signal_trader.config import Settings


class TestSettings:

    def test_defaults(self):
        settings = Settings(_env_file=None)
        assert settings.port == 3000
        assert settings.database_url == "sqlite+aiosqlite:///:memory:"
        assert settings.webhook_topic == "notification.create"
        assert settings.order_quantity == Decimal("1")
        assert settings.order_max_attempts == 3
        assert settings.bybit_category == "linear"

    def test_reads_environment(self, monkeypatch):
        monkeypatch.setenv("BYBIT_API_KEY", "key")
        monkeypatch.setenv("BYBIT_API_SECRET", "secret")
        monkeypatch.setenv("BYBIT_TESTNET", "true")
        monkeypatch.setenv("PORT", "8080")
        monkeypatch.setenv("ORDER_QUANTITY", "0.01")
        monkeypatch.setenv("BYBIT_WS_SYMBOLS", '["BTCUSDT", "ETHUSDT"]')

        settings = Settings(_env_file=None)

        assert settings.bybit_testnet is True
        assert settings.port == 8080
        assert settings.order_quantity == Decimal("0.01")
        assert settings.bybit_ws_symbols == ["BTCUSDT", "ETHUSDT"]
        assert settings.bybit_credentials_configured

    def test_credentials_flags(self):
        settings = Settings(_env_file=None, bybit_api_key="k", telegram_bot_token="t")
        assert not settings.bybit_credentials_configured
        assert not settings.telegram_enabled

        settings = Settings(_env_file=None, telegram_bot_token="t", telegram_chat_id="c")
        assert settings.telegram_enabled

    @pytest.mark.parametrize("quantity", ["0", "-1"])
    def test_non_positive_quantity_rejected(self, quantity):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, order_quantity=Decimal(quantity))

    def test_zero_attempts_rejected(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, order_max_attempts=0)
