"""Pydantic schemas for price ticks and quotes."""
from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class PriceTickIn(BaseModel):
    prices: dict[str, float] = Field(..., examples=[{"EURUSD": 1.1005}])


class PriceTickOut(BaseModel):
    prices: dict[str, float]
    subscribers: int


class QuoteOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    symbol: str
    price: float
    updated_at: datetime
