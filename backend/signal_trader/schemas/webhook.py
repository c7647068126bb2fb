"""Inbound webhook (TradingView alert) schemas"""

import enum
from typing import Optional, Union

from pydantic import BaseModel, field_validator


class Recommendation(str, enum.Enum):
    BUY = "BUY"
    SELL = "SELL"


class SignalData(BaseModel):
    symbol: str
    recommendation: Recommendation
    id: Optional[Union[str, int]] = None

    @field_validator("symbol", mode="before")
    @classmethod
    def normalize_symbol(cls, v):
        if not isinstance(v, str) or not v.strip():
            raise ValueError("symbol must be a non-empty string")
        return v.strip().upper()

    @field_validator("recommendation", mode="before")
    @classmethod
    def normalize_recommendation(cls, v):
        if isinstance(v, str):
            return v.strip().upper()
        return v


class WebhookPayload(BaseModel):
    topic: str
    data: SignalData
    id: Optional[Union[str, int]] = None
