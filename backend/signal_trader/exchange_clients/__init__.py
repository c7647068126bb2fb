"""
Exchange Client Layer

ByBit V5 is the only exchange. The ExchangeClient ABC keeps the trading
engine independent of pybit so tests can substitute mocks.

Usage:
    from signal_trader.exchange_clients.factory import create_exchange_client

    exchange = create_exchange_client(settings)
    positions = await exchange.list_positions()
"""

from signal_trader.exchange_clients.base import ExchangeClient

__all__ = ["ExchangeClient"]
