"""
ByBit realtime feed

Subscribes to the private position stream and the public orderbook (depth 25)
through pybit's WebSocket client, which reconnects and resubscribes on its
own. The feed is passive: the position reconciler reads it only to log drift
against the REST listing. It never drives orders or ledger state.
"""

import logging
import threading
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)

ORDERBOOK_DEPTH = 25


class ByBitWSState:
    """Latest streamed positions and top of book, shared with pybit's threads."""

    def __init__(self):
        self._guard = threading.Lock()
        self._open_positions: Dict[str, dict] = {}
        self._books: Dict[str, dict] = {}
        self._is_connected = False
        self._updated_at: Optional[datetime] = None

    @property
    def connected(self) -> bool:
        return self._is_connected

    @connected.setter
    def connected(self, value: bool):
        with self._guard:
            self._is_connected = value

    def update_position(self, symbol: str, data: dict):
        """Store a position update; a zero size means the position is gone."""
        with self._guard:
            if Decimal(data.get("size") or "0") > 0:
                self._open_positions[symbol] = data
            else:
                self._open_positions.pop(symbol, None)
            self._updated_at = datetime.utcnow()

    def get_positions(self) -> Dict[str, dict]:
        with self._guard:
            return dict(self._open_positions)

    def update_book(self, symbol: str, best_bid: Optional[str], best_ask: Optional[str]):
        with self._guard:
            book = self._books.setdefault(symbol, {})
            if best_bid:
                book["bid"] = best_bid
            if best_ask:
                book["ask"] = best_ask
            self._updated_at = datetime.utcnow()

    def get_snapshot(self) -> dict:
        with self._guard:
            return {
                "connected": self._is_connected,
                "positions": dict(self._open_positions),
                "books": {symbol: dict(book) for symbol, book in self._books.items()},
                "last_update": self._updated_at.isoformat() if self._updated_at else None,
            }


class ByBitWSManager:
    """Runs the feed in a daemon thread and exposes it through `state`."""

    def __init__(
        self,
        api_key: str,
        api_secret: str,
        testnet: bool = False,
        symbols: Optional[List[str]] = None,
        category: str = "linear",
    ):
        self._credentials = (api_key, api_secret)
        self._testnet = testnet
        self._symbols = list(symbols or ["BTCUSDT"])
        self._category = category

        self.state = ByBitWSState()
        self._ws_private = None
        self._ws_public = None
        self._worker: Optional[threading.Thread] = None
        self._stopping = threading.Event()

    def start(self):
        if self._worker is not None and self._worker.is_alive():
            logger.warning("ByBit realtime feed already running")
            return
        self._stopping.clear()
        self._worker = threading.Thread(target=self._run_ws, name="bybit-feed", daemon=True)
        self._worker.start()
        logger.info(f"ByBit realtime feed starting (symbols: {self._symbols})")

    def stop(self):
        self._stopping.set()
        self.state.connected = False
        for ws in (self._ws_private, self._ws_public):
            if ws is not None:
                try:
                    ws.exit()
                except Exception as e:
                    logger.debug(f"Error closing ByBit WebSocket: {e}")
        if self._worker is not None:
            self._worker.join(timeout=5)
        logger.info("ByBit realtime feed stopped")

    def _run_ws(self):
        """Open both sockets, then idle until stop() is called."""
        api_key, api_secret = self._credentials
        try:
            from pybit.unified_trading import WebSocket

            self._ws_private = WebSocket(
                testnet=self._testnet, channel_type="private", api_key=api_key, api_secret=api_secret,
            )
            self._ws_private.position_stream(callback=self._on_position)

            self._ws_public = WebSocket(testnet=self._testnet, channel_type=self._category)
            for symbol in self._symbols:
                self._ws_public.orderbook_stream(depth=ORDERBOOK_DEPTH, symbol=symbol, callback=self._on_orderbook)

            self.state.connected = True
            logger.info("ByBit realtime feed connected")
            self._stopping.wait()
        except Exception as e:
            logger.error(f"ByBit realtime feed failed: {e}")
            self.state.connected = False

    # Callbacks run in pybit's threads

    def _on_position(self, message: dict):
        try:
            for update in message.get("data") or []:
                self.state.update_position(update.get("symbol", ""), {
                    "side": update.get("side", ""),
                    "size": update.get("size", "0"),
                    "entry_price": update.get("entryPrice") or update.get("avgPrice", "0"),
                    "mark_price": update.get("markPrice", "0"),
                    "unrealised_pnl": update.get("unrealisedPnl", "0"),
                })
        except Exception as e:
            logger.error(f"Bad position update from ByBit: {e}")

    def _on_orderbook(self, message: dict):
        """Keep only the best bid/ask from snapshots and deltas."""
        try:
            book = message.get("data") or {}
            symbol = book.get("s", "")
            if not symbol:
                return
            bids, asks = book.get("b") or [], book.get("a") or []
            best_bid = bids[0][0] if bids and Decimal(bids[0][1]) > 0 else None
            best_ask = asks[0][0] if asks and Decimal(asks[0][1]) > 0 else None
            self.state.update_book(symbol, best_bid, best_ask)
        except Exception as e:
            logger.error(f"Bad orderbook update from ByBit: {e}")
