"""
ByBit V5 REST client

pybit's HTTP session is synchronous, so every call runs in a worker thread
via asyncio.to_thread(). Requests from one instance are spaced to respect the
order endpoint rate limit, and failures are split into two kinds:

- ByBitError: the request reached ByBit and was refused (retCode != 0,
  4xx, pybit InvalidRequestError)
- ByBitTransportError: network failure, timeout or 5xx; the outcome is unknown
"""

import asyncio
import logging
import time
from typing import Any, Dict, Optional

from pybit.exceptions import FailedRequestError, InvalidRequestError

logger = logging.getLogger(__name__)

# Order endpoints allow 10 req/s per UID
_BYBIT_MIN_INTERVAL = 0.10

# retCode for an orderLinkId that was already used
DUPLICATE_ORDER_LINK_ID = 110072

_MAX_ERROR_TEXT = 200


class ByBitError(Exception):
    """Refused by ByBit; `code` is the retCode or HTTP status."""

    def __init__(self, message: str, code: int = 0):
        self.code = code
        super().__init__(message)


class ByBitTransportError(Exception):
    """Network failure, timeout or 5xx: the outcome of the request is unknown."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


def _check_response(resp: dict) -> dict:
    """Raise ByBitError unless retCode is 0."""
    code = resp.get("retCode", -1)
    if code == 0:
        return resp
    text = (resp.get("retMsg") or "Unknown error")[:_MAX_ERROR_TEXT]
    raise ByBitError(f"ByBit API error ({code}): {text}", code)


def _params(**values) -> Dict[str, Any]:
    """pybit keyword arguments with unset (None / empty / False) values left out."""
    return {k: v for k, v in values.items() if v not in (None, "", False)}


class ByBitClient:
    """One shared instance per process; all methods are coroutines."""

    def __init__(
        self,
        api_key: str,
        api_secret: str,
        testnet: bool = False,
        timeout: int = 10,
    ):
        from pybit.unified_trading import HTTP

        self._http = HTTP(testnet=testnet, api_key=api_key, api_secret=api_secret, timeout=timeout)
        self._testnet = testnet
        self._spacing_lock = asyncio.Lock()
        self._last_request_time: float = 0.0
        logger.info(f"ByBit REST client ready ({'testnet' if testnet else 'mainnet'})")

    async def _wait_for_slot(self):
        async with self._spacing_lock:
            wait = _BYBIT_MIN_INTERVAL - (time.monotonic() - self._last_request_time)
            if wait > 0:
                await asyncio.sleep(wait)
            self._last_request_time = time.monotonic()

    async def _call(self, method, params: Dict[str, Any]) -> dict:
        await self._wait_for_slot()
        try:
            resp = await asyncio.to_thread(method, **params)
        except InvalidRequestError as e:
            code = e.status_code or 0
            raise ByBitError(f"ByBit API error ({code}): {str(e.message)[:_MAX_ERROR_TEXT]}", code) from e
        except FailedRequestError as e:
            status = e.status_code or 0
            text = str(e.message)[:_MAX_ERROR_TEXT]
            if status >= 500:
                raise ByBitTransportError(f"ByBit HTTP {status}: {text}", status) from e
            raise ByBitError(f"ByBit request failed ({status}): {text}", status) from e
        except OSError as e:
            # requests' ConnectionError / Timeout derive from OSError
            raise ByBitTransportError(f"ByBit transport error: {e}") from e
        return _check_response(resp)

    async def place_order(
        self,
        symbol: str,
        side: str,
        order_type: str,
        qty: str,
        category: str = "linear",
        price: Optional[str] = None,
        order_link_id: Optional[str] = None,
        time_in_force: Optional[str] = None,
        reduce_only: bool = False,
    ) -> dict:
        """POST /v5/order/create. Side is normalised to "Buy" / "Sell"."""
        params = {"category": category, "symbol": symbol, "side": side.capitalize(),
                  "orderType": order_type, "qty": qty}
        params.update(_params(price=price, orderLinkId=order_link_id,
                              timeInForce=time_in_force, reduceOnly=reduce_only))
        return await self._call(self._http.place_order, params)

    async def get_order_history(
        self,
        category: str = "linear",
        symbol: Optional[str] = None,
        order_id: Optional[str] = None,
        order_link_id: Optional[str] = None,
        limit: int = 50,
    ) -> dict:
        params = {"category": category, "limit": limit}
        params.update(_params(symbol=symbol, orderId=order_id, orderLinkId=order_link_id))
        return await self._call(self._http.get_order_history, params)

    async def get_positions(
        self,
        category: str = "linear",
        symbol: Optional[str] = None,
        settle_coin: Optional[str] = None,
    ) -> dict:
        """Open positions. Linear queries without a symbol need a settleCoin (USDT)."""
        if category == "linear" and not symbol and not settle_coin:
            settle_coin = "USDT"
        params = {"category": category}
        params.update(_params(symbol=symbol, settleCoin=settle_coin))
        return await self._call(self._http.get_positions, params)
