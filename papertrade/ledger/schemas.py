"""Pydantic schemas for the ledger API."""
from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class AmountIn(BaseModel):
    amount: float = Field(..., gt=0)
    description: str | None = Field(default=None, max_length=200)


class AdminFundIn(BaseModel):
    amount: float = Field(..., gt=0)
    description: str = Field(..., min_length=1, max_length=200)
    admin_id: str = Field(..., min_length=1, max_length=64)


class LedgerEntryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    account_id: int
    transaction_type: str
    amount: float
    balance_before: float
    balance_after: float
    description: str
    reference: str | None
    created_at: datetime


class ChainCheckOut(BaseModel):
    account_id: int
    consistent: bool
