"""Pydantic schemas for the order API."""
from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class OrderSubmitIn(BaseModel):
    symbol: str = Field(..., examples=["EURUSD"], min_length=1, max_length=20)
    order_type: Literal["market", "limit", "stop", "stop_limit"] = "market"
    side: Literal["buy", "sell"]
    quantity: float = Field(..., gt=0)
    price: float | None = Field(default=None, gt=0)
    limit_price: float | None = Field(default=None, gt=0)
    stop_loss: float | None = Field(default=None, gt=0)
    take_profit: float | None = Field(default=None, gt=0)
    trailing_stop_distance: float | None = Field(default=None, gt=0)
    idempotency_key: str | None = Field(default=None, max_length=128)


class OrderModifyIn(BaseModel):
    quantity: float | None = Field(default=None, gt=0)
    price: float | None = Field(default=None, gt=0)
    limit_price: float | None = Field(default=None, gt=0)
    # 0 clears a protective level
    stop_loss: float | None = Field(default=None, ge=0)
    take_profit: float | None = Field(default=None, ge=0)


class OrderOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    account_id: int
    symbol: str
    order_type: str
    side: str
    quantity: float
    price: float | None
    limit_price: float | None
    stop_loss: float | None
    take_profit: float | None
    trailing_stop_distance: float | None
    status: Literal["pending", "filled", "cancelled", "rejected"]
    reason: str | None
    triggered_at: datetime | None
    fill_price: float | None
    commission: float
    position_id: int | None
    created_at: datetime
    filled_at: datetime | None
    idempotency_key: str | None
