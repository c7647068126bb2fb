"""Per-symbol serialization for order sequences."""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Dict

logger = logging.getLogger(__name__)


class SymbolLocks:
    """
    One asyncio.Lock per symbol.

    A BUY and a SELL-driven flatten for the same symbol never interleave;
    different symbols proceed concurrently.
    """

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}

    def lock_for(self, symbol: str) -> asyncio.Lock:
        return self._locks.setdefault(symbol.upper(), asyncio.Lock())

    def is_locked(self, symbol: str) -> bool:
        lock = self._locks.get(symbol.upper())
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def hold(self, symbol: str):
        lock = self.lock_for(symbol)
        if lock.locked():
            logger.debug(f"Waiting for {symbol} lock")
        async with lock:
            yield
