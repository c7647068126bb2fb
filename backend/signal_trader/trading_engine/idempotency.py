"""
Idempotency keys and the recent-operations cache.

Webhook senders retry on timeouts, so the same signal can arrive more than
once. Every order carries a key derived from the signal identity plus symbol
and side; the key is checked here, against the ledger, and is sent to ByBit
as orderLinkId (max 36 chars).
"""

import asyncio
import hashlib
import json
import logging
import time
from typing import Any, Dict, Optional, Tuple

logger = logging.getLogger(__name__)

ORDER_KEY_LENGTH = 32


def _digest(text: str, length: int) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()[:length]


def _payload_id(payload: Any) -> Optional[Any]:
    if not isinstance(payload, dict):
        return None
    signal_id = payload.get("id")
    data = payload.get("data")
    if signal_id is None and isinstance(data, dict):
        signal_id = data.get("id")
    return None if signal_id in (None, "") else signal_id


def payload_fingerprint(payload: Any) -> str:
    """Hash of the canonical (key-sorted) JSON form of a payload."""
    return _digest(json.dumps(payload, sort_keys=True, default=str), 64)


def derive_signal_key(
    payload: Any,
    request_id: Optional[str] = None,
    first_seen: float = 0.0,
) -> str:
    """Identity of one inbound signal.

    Preference order: transport-level request id (Idempotency-Key or
    X-Request-Id header), then an `id` in the payload or its `data`, then a
    hash of the canonical payload together with the time it was first seen
    (see SignalKeyWindow).
    """
    if request_id:
        return _digest(f"request:{request_id}", 24)

    signal_id = _payload_id(payload)
    if signal_id is not None:
        return _digest(f"signal:{signal_id}", 24)

    return _digest(f"payload:{payload_fingerprint(payload)}:{first_seen!r}", 24)


class SignalKeyWindow:
    """Signal keys for payloads that carry no identity of their own.

    An identical payload seen again less than `window_seconds` after its
    first sighting gets the first sighting's key; once the window has
    passed it counts as a new alert.
    """

    def __init__(self, window_seconds: float = 60):
        self._window = max(float(window_seconds), 1.0)
        self._first_seen: Dict[str, float] = {}

    def __len__(self) -> int:
        return len(self._first_seen)

    def _purge(self, now: float):
        expired = [fp for fp, seen in self._first_seen.items() if now - seen >= self._window]
        for fp in expired:
            del self._first_seen[fp]

    def key_for(self, payload: Any, request_id: Optional[str] = None, now: Optional[float] = None) -> str:
        if request_id or _payload_id(payload) is not None:
            return derive_signal_key(payload, request_id)

        if now is None:
            now = time.monotonic()
        self._purge(now)
        first_seen = self._first_seen.setdefault(payload_fingerprint(payload), now)
        if first_seen != now:
            logger.info(f"Payload repeated {now - first_seen:.1f}s after first sighting - reusing its signal key")
        return derive_signal_key(payload, first_seen=first_seen)


def order_key(signal_key: str, symbol: str, side: str) -> str:
    """Per-order idempotency key: signal identity + symbol + side."""
    side_value = getattr(side, "value", side)
    return _digest(f"{signal_key}|{symbol}|{side_value}", ORDER_KEY_LENGTH)


class PendingOperation:
    """One in-flight or finished order for an idempotency key."""

    def __init__(self):
        self.done = asyncio.Event()
        self.result = None
        self.error: Optional[Exception] = None
        self.created_at = time.monotonic()

    def resolve(self, result):
        self.result = result
        self.done.set()

    def reject(self, error: Exception):
        self.error = error
        self.done.set()

    async def wait(self):
        await self.done.wait()
        if self.error is not None:
            raise self.error
        return self.result


class RecentOperations:
    """TTL cache of recent operations keyed by idempotency key.

    Concurrent duplicates wait on the first delivery's PendingOperation.
    Failed operations are discarded so a redelivery may try again.
    """

    def __init__(self, ttl_seconds: float = 600.0):
        self._ttl = ttl_seconds
        self._ops: Dict[str, PendingOperation] = {}

    def __len__(self) -> int:
        return len(self._ops)

    def _purge(self):
        cutoff = time.monotonic() - self._ttl
        expired = [k for k, op in self._ops.items() if op.done.is_set() and op.created_at < cutoff]
        for key in expired:
            del self._ops[key]

    def claim(self, key: str) -> Tuple[PendingOperation, bool]:
        """Return (operation, is_new). Only the caller with is_new=True executes."""
        self._purge()
        existing = self._ops.get(key)
        if existing is not None:
            return existing, False
        op = PendingOperation()
        self._ops[key] = op
        return op, True

    def discard(self, key: str):
        self._ops.pop(key, None)
