"""
Exchange Client Factory

Builds the shared ByBit exchange client and realtime feed from settings.
Both are created once per process and injected into the trading engine.
"""

import logging
from typing import Optional

from signal_trader.config import Settings
from signal_trader.exchange_clients.base import ExchangeClient
from signal_trader.exchange_clients.bybit_adapter import ByBitAdapter
from signal_trader.exchange_clients.bybit_client import ByBitClient
from signal_trader.exchange_clients.bybit_ws import ByBitWSManager

logger = logging.getLogger(__name__)


def create_exchange_client(settings: Settings) -> ExchangeClient:
    if not settings.bybit_credentials_configured:
        logger.warning("BYBIT_API_KEY / BYBIT_API_SECRET not set - authenticated calls will fail")

    client = ByBitClient(
        api_key=settings.bybit_api_key,
        api_secret=settings.bybit_api_secret,
        testnet=settings.bybit_testnet,
        timeout=settings.bybit_request_timeout,
    )
    return ByBitAdapter(
        client,
        category=settings.bybit_category,
        fill_poll_attempts=settings.fill_poll_attempts,
    )


def create_feed_manager(settings: Settings) -> Optional[ByBitWSManager]:
    """Realtime feed, or None when disabled or without credentials."""
    if not settings.bybit_ws_enabled or not settings.bybit_credentials_configured:
        logger.info("ByBit realtime feed disabled")
        return None
    return ByBitWSManager(
        api_key=settings.bybit_api_key,
        api_secret=settings.bybit_api_secret,
        testnet=settings.bybit_testnet,
        symbols=settings.bybit_ws_symbols,
        category=settings.bybit_category,
    )
