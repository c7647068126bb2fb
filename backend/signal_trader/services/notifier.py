"""
Telegram Notifier

Best-effort operator alerts via the Telegram Bot API. Delivery failures are
logged and never raised. notify() schedules delivery as a background task so
error paths are not blocked; pending deliveries are drained on shutdown.
"""

import asyncio
import logging
from typing import Optional, Set

import httpx

logger = logging.getLogger(__name__)

TELEGRAM_API_URL = "https://api.telegram.org"
MAX_MESSAGE_LENGTH = 4096  # Telegram sendMessage limit


class TelegramNotifier:
    def __init__(
        self,
        bot_token: str,
        chat_id: str,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self._bot_token = bot_token
        self._chat_id = chat_id
        self._timeout = timeout
        self._client = client
        self._owns_client = client is None
        self._pending: Set[asyncio.Task] = set()

    @property
    def enabled(self) -> bool:
        return bool(self._bot_token and self._chat_id)

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        return self._client

    async def send_message(self, text: str) -> bool:
        """Deliver one message. Returns False instead of raising on failure."""
        if not self.enabled:
            logger.info(f"Telegram not configured, alert: {text}")
            return False

        url = f"{TELEGRAM_API_URL}/bot{self._bot_token}/sendMessage"
        payload = {"chat_id": self._chat_id, "text": text[:MAX_MESSAGE_LENGTH]}
        try:
            response = await self._get_client().post(url, json=payload)
            response.raise_for_status()
            return True
        except httpx.HTTPStatusError as e:
            logger.error(f"Telegram API error {e.response.status_code}: {e.response.text[:200]}")
        except httpx.HTTPError as e:
            logger.error(f"Failed to send Telegram message: {e}")
        return False

    def notify(self, text: str) -> asyncio.Task:
        """Fire-and-forget delivery; the task is tracked until it finishes."""
        task = asyncio.create_task(self.send_message(text))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def drain(self, timeout: float = 5.0):
        """Wait for pending deliveries (used on shutdown)."""
        if not self._pending:
            return
        done, not_done = await asyncio.wait(list(self._pending), timeout=timeout)
        if not_done:
            logger.warning(f"{len(not_done)} Telegram notifications still pending after {timeout}s")

    async def aclose(self):
        await self.drain()
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None
