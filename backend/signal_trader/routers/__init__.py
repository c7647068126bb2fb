from signal_trader.routers.trades_router import router as trades_router
from signal_trader.routers.webhook_router import router as webhook_router

__all__ = ["trades_router", "webhook_router"]
