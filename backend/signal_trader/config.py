from decimal import Decimal
from typing import List

from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # ByBit V5 API
    bybit_api_key: str = ""
    bybit_api_secret: str = ""
    bybit_testnet: bool = False
    bybit_category: str = "linear"  # USDT linear perpetuals
    bybit_request_timeout: int = 10  # Seconds, passed to pybit

    # Realtime feed (position stream + orderbook depth 25)
    bybit_ws_enabled: bool = True
    bybit_ws_symbols: List[str] = ["BTCUSDT"]

    # Telegram notifier
    telegram_bot_token: str = ""
    telegram_chat_id: str = ""

    # Database
    # In-memory by default; use e.g. sqlite+aiosqlite:///./trades.db for durable storage
    database_url: str = "sqlite+aiosqlite:///:memory:"

    # HTTP server
    host: str = "0.0.0.0"
    port: int = 3000
    webhook_topic: str = "notification.create"
    webhook_timeout_seconds: float = 25.0

    # Order execution
    order_quantity: Decimal = Decimal("1")
    order_max_attempts: int = 3
    order_retry_base_delay: float = 0.5  # 0.5s, 1s, 2s ...
    fill_poll_attempts: int = 5

    # Idempotency
    idempotency_ttl_seconds: float = 600.0
    idempotency_window_seconds: int = 60  # Repeats of an id-less payload within this window are duplicates

    # Lifecycle / logging
    shutdown_timeout_seconds: float = 60.0
    log_level: str = "INFO"

    @field_validator("order_quantity")
    @classmethod
    def quantity_must_be_positive(cls, v: Decimal) -> Decimal:
        if v <= 0:
            raise ValueError("order_quantity must be positive")
        return v

    @field_validator("order_max_attempts", "fill_poll_attempts")
    @classmethod
    def at_least_one_attempt(cls, v: int) -> int:
        if v < 1:
            raise ValueError("attempt counts must be >= 1")
        return v

    @property
    def telegram_enabled(self) -> bool:
        return bool(self.telegram_bot_token and self.telegram_chat_id)

    @property
    def bybit_credentials_configured(self) -> bool:
        return bool(self.bybit_api_key and self.bybit_api_secret)

    class Config:
        env_file = ".env"
        case_sensitive = False
