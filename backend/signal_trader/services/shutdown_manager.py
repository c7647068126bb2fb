"""
Graceful shutdown for signal processing

Signals are registered by id while they run. Once shutdown begins new
signals are refused, and the app waits for the registered ones so no order
is left between its fill and its ledger write when the ledger closes.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Dict, Optional, Set

from signal_trader.exceptions import ShutdownInProgressError

logger = logging.getLogger(__name__)


class ShutdownManager:
    """
    Usage:
        async with shutdown_manager.signal_in_flight(ctx.signal_id):
            await signal_router.process(ctx)

        await shutdown_manager.prepare_shutdown(timeout=60)
    """

    def __init__(self):
        self._shutting_down = False
        self._in_flight: Dict[str, int] = {}
        self._idle = asyncio.Event()
        self._idle.set()
        self._shutdown_requested_at: Optional[datetime] = None
        self._tasks: Set[asyncio.Task] = set()

    @property
    def is_shutting_down(self) -> bool:
        return self._shutting_down

    @property
    def in_flight_count(self) -> int:
        return sum(self._in_flight.values())

    @property
    def background_count(self) -> int:
        return len(self._tasks)

    def track(self, task: asyncio.Task) -> asyncio.Task:
        """Hold a reference to a signal task until it finishes; the loop keeps only weak ones."""
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def register(self, signal_id: str):
        if self._shutting_down:
            raise ShutdownInProgressError(f"Signal {signal_id} refused - shutdown in progress")
        self._in_flight[signal_id] = self._in_flight.get(signal_id, 0) + 1
        self._idle.clear()

    def unregister(self, signal_id: str):
        remaining = self._in_flight.get(signal_id, 0) - 1
        if remaining > 0:
            self._in_flight[signal_id] = remaining
        else:
            self._in_flight.pop(signal_id, None)
        if not self._in_flight:
            self._idle.set()

    @asynccontextmanager
    async def signal_in_flight(self, signal_id: str):
        self.register(signal_id)
        try:
            yield
        finally:
            self.unregister(signal_id)

    async def prepare_shutdown(self, timeout: float = 60.0) -> dict:
        """
        Refuse new signals and wait up to `timeout` seconds for running ones.

        Returns a dict with:
            ready: True when nothing is left in flight
            in_flight: ids of signals still running (empty when ready)
            waited_seconds: time spent waiting
            message: human-readable status
        """
        self._shutting_down = True
        self._shutdown_requested_at = datetime.utcnow()
        pending = self.in_flight_count
        logger.info(f"Shutdown requested - {pending} signals in flight")

        if pending:
            try:
                await asyncio.wait_for(self._idle.wait(), timeout=timeout)
            except asyncio.TimeoutError:
                still_running = sorted(self._in_flight)
                logger.warning(f"Shutdown timeout after {timeout}s - still in flight: {still_running}")
                return {
                    "ready": False,
                    "in_flight": still_running,
                    "waited_seconds": timeout,
                    "message": f"Timeout: {len(still_running)} signals still in flight after {timeout}s",
                }

        waited = (datetime.utcnow() - self._shutdown_requested_at).total_seconds()
        return {
            "ready": True,
            "in_flight": [],
            "waited_seconds": waited,
            "message": f"No signals in flight after {waited:.1f}s - ready for shutdown",
        }

    def get_status(self) -> dict:
        return {
            "shutting_down": self._shutting_down,
            "in_flight": sorted(self._in_flight),
            "background_tasks": len(self._tasks),
            "shutdown_requested_at": self._shutdown_requested_at.isoformat() if self._shutdown_requested_at else None,
        }
