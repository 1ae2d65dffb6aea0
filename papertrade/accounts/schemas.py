"""Pydantic schemas for account administration."""
from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class AccountCreateIn(BaseModel):
    owner_name: str | None = Field(default=None, max_length=120)
    currency: str | None = Field(default=None, examples=["USD"], min_length=3, max_length=10)
    initial_deposit: float = Field(default=0.0, ge=0)


class KycStatusIn(BaseModel):
    status: Literal["pending", "approved", "rejected", "resubmitted"]


class AccountStatusIn(BaseModel):
    status: Literal["active", "suspended"]


class AccountOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    owner_name: str | None
    currency: str
    balance: float
    margin_used: float
    kyc_status: str
    account_status: str
    risk_state: str
    created_at: datetime
    updated_at: datetime
