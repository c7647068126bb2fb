"""
Trades Router - read-only view of the trade ledger

Profit/loss is derived from entry and exit prices on every request.
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, HTTPException, Request

from signal_trader.models import TradeStatus
from signal_trader.schemas import TradeResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/trades", tags=["trades"])


@router.get("", response_model=List[TradeResponse])
async def list_trades(request: Request, status: Optional[str] = None, symbol: Optional[str] = None):
    trade_status = None
    if status:
        try:
            trade_status = TradeStatus(status.capitalize())
        except ValueError:
            raise HTTPException(status_code=400, detail=f"Invalid status: {status}. Expected Open or Closed")

    ledger = request.app.state.ledger
    trades = await ledger.list_trades(status=trade_status, symbol=symbol.upper() if symbol else None)
    return [TradeResponse.from_trade(t) for t in trades]


@router.get("/{trade_id}", response_model=TradeResponse)
async def get_trade(trade_id: int, request: Request):
    # NotFoundError is translated to 404 by the global AppError handler
    trade = await request.app.state.ledger.get(trade_id)
    return TradeResponse.from_trade(trade)
