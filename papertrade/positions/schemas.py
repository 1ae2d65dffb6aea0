"""Pydantic schemas for the position API."""
from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class PositionCloseIn(BaseModel):
    exit_price: float | None = Field(default=None, gt=0)
    # Lots to close; omitted closes the whole position
    quantity: float | None = Field(default=None, gt=0)


class PositionModifyIn(BaseModel):
    # 0 clears a protective level
    stop_loss: float | None = Field(default=None, ge=0)
    take_profit: float | None = Field(default=None, ge=0)
    trailing_stop_distance: float | None = Field(default=None, ge=0)


class PositionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    account_id: int
    symbol: str
    side: str
    quantity: float
    entry_price: float
    margin_used: float
    stop_loss: float | None
    take_profit: float | None
    trailing_stop_distance: float | None
    trailing_stop_price: float | None
    order_id: int | None
    current_price: float | None
    unrealized_pnl: float
    opened_at: datetime
    updated_at: datetime


class ClosedPositionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    position_id: int
    account_id: int
    symbol: str
    side: str
    quantity: float
    entry_price: float
    exit_price: float
    realized_pnl: float
    margin_used: float
    close_reason: str
    opened_at: datetime
    closed_at: datetime


class SwapChargeOut(BaseModel):
    position_id: int
    account_id: int
    symbol: str
    amount: float
