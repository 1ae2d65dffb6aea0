"""Pydantic schemas for the risk API."""
from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class RiskSnapshotOut(BaseModel):
    account_id: int
    balance: float
    unrealized_pnl: float
    equity: float
    margin_used: float
    free_margin: float
    # None while no margin is in use
    margin_level: float | None
    open_positions: int
    daily_realized_pnl: float
    daily_pnl: float
    orders_today: int
    kyc_status: str
    account_status: str
    risk_state: str
    candidate_margin: float | None = None


class RiskSettingsOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    account_id: int
    margin_call_level: float
    stop_out_level: float
    max_position_size: float
    max_total_exposure: float
    max_positions: int
    daily_loss_limit: float
    daily_trade_limit: int
    enforce_stop_loss: bool
    min_stop_loss_distance: float
    updated_at: datetime


class RiskSettingsIn(BaseModel):
    margin_call_level: float | None = Field(default=None, gt=0)
    stop_out_level: float | None = Field(default=None, ge=0)
    max_position_size: float | None = Field(default=None, gt=0)
    max_total_exposure: float | None = Field(default=None, ge=0)
    max_positions: int | None = Field(default=None, ge=1)
    daily_loss_limit: float | None = Field(default=None, ge=0)
    daily_trade_limit: int | None = Field(default=None, ge=1)
    enforce_stop_loss: bool | None = None
    min_stop_loss_distance: float | None = Field(default=None, ge=0)


class RiskCheckIn(BaseModel):
    symbol: str = Field(..., examples=["EURUSD"])
    side: Literal["buy", "sell"]
    quantity: float = Field(..., gt=0)
    price: float | None = Field(default=None, gt=0)


class RiskDecisionOut(BaseModel):
    allowed: bool
    reason: str | None = None
    metrics: RiskSnapshotOut


class EvaluationOut(BaseModel):
    account_id: int
    margin_level_before: float | None
    margin_level_after: float | None
    margin_call: bool
    closed_position_ids: list[int]


class RiskEventOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    account_id: int
    event_type: str
    margin_level: float | None
    equity: float
    margin_used: float
    position_id: int | None
    message: str
    created_at: datetime
