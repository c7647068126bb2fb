"""
Webhook Router - TradingView signal intake

POST /webhook accepts {topic, data: {symbol, recommendation}} and answers
with coarse status codes only:
- 200: signal processed
- 400: unknown topic or malformed payload
- 500: processing failed (operator notified, details in logs)
- 503: shutting down
- 504: processing exceeded the webhook timeout; it continues in the background
"""

import asyncio
import json
import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from signal_trader.exceptions import InvalidSignalError, ShutdownInProgressError
from signal_trader.trading_engine.signal_router import SignalContext

logger = logging.getLogger(__name__)

router = APIRouter(tags=["webhook"])


def _log_late_completion(ctx: SignalContext):
    def _callback(task: asyncio.Task):
        if task.cancelled():
            logger.error(f"Signal {ctx.signal_id} was cancelled after the webhook timed out")
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Signal {ctx.signal_id} failed after the webhook timed out: {error}")
        else:
            logger.info(f"Signal {ctx.signal_id} completed after the webhook timed out ({ctx.state.value})")
    return _callback


@router.post("/webhook")
async def handle_tradingview_webhook(request: Request):
    """Process one TradingView alert."""
    state = request.app.state
    signal_router = state.signal_router
    shutdown_manager = state.shutdown_manager

    if shutdown_manager.is_shutting_down:
        return JSONResponse(status_code=503, content={"status": "unavailable", "detail": "Shutting down"})

    try:
        payload = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        logger.warning("Webhook body is not valid JSON")
        return JSONResponse(status_code=400, content={"status": "rejected", "detail": "Malformed payload"})

    request_id = request.headers.get("Idempotency-Key") or request.headers.get("X-Request-Id")
    ctx = signal_router.receive(payload, request_id)

    async def _run():
        async with shutdown_manager.signal_in_flight(ctx.signal_id):
            return await signal_router.process(ctx)

    # The task is shielded: an upstream timeout or client disconnect must not
    # interrupt an order between fill and ledger write.
    task = shutdown_manager.track(asyncio.create_task(_run()))
    try:
        await asyncio.wait_for(asyncio.shield(task), timeout=state.settings.webhook_timeout_seconds)
    except asyncio.TimeoutError:
        logger.warning(f"Signal {ctx.signal_id} still processing after "
                       f"{state.settings.webhook_timeout_seconds}s - responding 504")
        task.add_done_callback(_log_late_completion(ctx))
        return JSONResponse(status_code=504, content={"status": "timeout", "signal_id": ctx.signal_id})
    except InvalidSignalError:
        return JSONResponse(status_code=400, content={"status": "rejected", "signal_id": ctx.signal_id})
    except ShutdownInProgressError:
        return JSONResponse(status_code=503, content={"status": "unavailable", "signal_id": ctx.signal_id})
    except Exception as e:
        logger.error(f"Error processing TradingView webhook {ctx.signal_id}: {e}")
        return JSONResponse(status_code=500, content={"status": "error", "signal_id": ctx.signal_id})

    return ctx.as_dict()
