import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from signal_trader.config import Settings
from signal_trader.exceptions import AppError
from signal_trader.exchange_clients.base import ExchangeClient
from signal_trader.exchange_clients.bybit_ws import ByBitWSManager
from signal_trader.exchange_clients.factory import create_exchange_client, create_feed_manager
from signal_trader.routers import trades_router, webhook_router
from signal_trader.services.notifier import TelegramNotifier
from signal_trader.services.shutdown_manager import ShutdownManager
from signal_trader.trading_engine.ledger import TradeLedger
from signal_trader.trading_engine.order_executor import OrderExecutionEngine
from signal_trader.trading_engine.position_reconciler import PositionReconciler
from signal_trader.trading_engine.signal_router import SignalRouter
from signal_trader.trading_engine.symbol_locks import SymbolLocks

logger = logging.getLogger(__name__)

_NO_FEED = object()


def configure_logging(level: str = "INFO"):
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def create_app(
    settings: Optional[Settings] = None,
    *,
    exchange: Optional[ExchangeClient] = None,
    notifier: Optional[TelegramNotifier] = None,
    ledger: Optional[TradeLedger] = None,
    feed=_NO_FEED,
) -> FastAPI:
    """
    Build the FastAPI app and wire its collaborators.

    The ledger, exchange client and notifier are created once here and
    shared by every request. Tests pass their own collaborators.
    """
    settings = settings or Settings()
    ledger = ledger or TradeLedger.from_url(settings.database_url)
    exchange = exchange or create_exchange_client(settings)
    notifier = notifier or TelegramNotifier(settings.telegram_bot_token, settings.telegram_chat_id)
    feed_manager: Optional[ByBitWSManager] = create_feed_manager(settings) if feed is _NO_FEED else feed

    symbol_locks = SymbolLocks()
    engine = OrderExecutionEngine(
        exchange,
        ledger,
        max_attempts=settings.order_max_attempts,
        retry_base_delay=settings.order_retry_base_delay,
        idempotency_ttl_seconds=settings.idempotency_ttl_seconds,
    )
    reconciler = PositionReconciler(
        exchange,
        engine,
        ledger,
        symbol_locks,
        feed_state=feed_manager.state if feed_manager else None,
    )
    signal_router = SignalRouter(
        engine,
        reconciler,
        notifier,
        symbol_locks,
        order_quantity=settings.order_quantity,
        topic=settings.webhook_topic,
        idempotency_window_seconds=settings.idempotency_window_seconds,
    )
    shutdown_manager = ShutdownManager()

    app = FastAPI(title="Bybit Signal Trader")
    app.state.settings = settings
    app.state.ledger = ledger
    app.state.exchange = exchange
    app.state.notifier = notifier
    app.state.feed_manager = feed_manager
    app.state.signal_router = signal_router
    app.state.shutdown_manager = shutdown_manager

    app.include_router(webhook_router)
    app.include_router(trades_router)

    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError):
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})

    @app.get("/health")
    async def health():
        return {
            "status": "shutting_down" if shutdown_manager.is_shutting_down else "ok",
            "in_flight_signals": shutdown_manager.in_flight_count,
            "feed_connected": feed_manager.state.connected if feed_manager else False,
            "shutdown": shutdown_manager.get_status(),
            "feed": feed_manager.state.get_snapshot() if feed_manager else None,
        }

    @app.on_event("startup")
    async def startup_event():
        await ledger.init()
        if feed_manager:
            feed_manager.start()
        if not notifier.enabled:
            logger.warning("TELEGRAM_BOT_TOKEN / TELEGRAM_CHAT_ID not set - alerts go to the log only")
        logger.info(f"Server listening on port {settings.port}")

    @app.on_event("shutdown")
    async def shutdown_event():
        logger.info("Shutting down - waiting for in-flight signals...")
        result = await shutdown_manager.prepare_shutdown(timeout=settings.shutdown_timeout_seconds)
        if result["ready"]:
            logger.info(result["message"])
        else:
            logger.warning(result["message"])

        if feed_manager:
            feed_manager.stop()
        await notifier.aclose()
        await ledger.close()
        logger.info("Shutdown complete")

    return app


def main():
    """Console entry point. uvicorn handles SIGINT/SIGTERM and runs the shutdown hooks."""
    import uvicorn

    settings = Settings()
    configure_logging(settings.log_level)
    app = create_app(settings)
    uvicorn.run(app, host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
