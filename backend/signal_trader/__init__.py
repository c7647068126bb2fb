"""Bybit signal trader: TradingView webhook signals to Bybit V5 market orders."""

__version__ = "1.0.0"
