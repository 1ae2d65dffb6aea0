"""Ledger endpoints: entries, deposits, withdrawals and admin funding."""
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from papertrade.context import TradingContext, get_context
from papertrade.db import get_session
from papertrade.errors import TradingError
from papertrade.ledger.schemas import AdminFundIn, AmountIn, ChainCheckOut, LedgerEntryOut
from papertrade.ledger.service import LedgerService

router = APIRouter(prefix="/v1/ledger", tags=["ledger"])


@router.get("/{account_id}/entries", response_model=list[LedgerEntryOut])
async def get_entries(
    account_id: int,
    transaction_type: str | None = Query(default=None),
    limit: int = Query(default=100, ge=1, le=500),
    session: AsyncSession = Depends(get_session),
    ctx: TradingContext = Depends(get_context),
) -> list[LedgerEntryOut]:
    rows = await LedgerService(ctx).list_entries(session, account_id, transaction_type=transaction_type, limit=limit)
    return [LedgerEntryOut.model_validate(row) for row in rows]


@router.post("/{account_id}/deposit", response_model=LedgerEntryOut)
async def deposit(
    account_id: int,
    payload: AmountIn,
    session: AsyncSession = Depends(get_session),
    ctx: TradingContext = Depends(get_context),
) -> LedgerEntryOut:
    try:
        entry = await LedgerService(ctx).deposit(session, account_id, payload.amount, payload.description or "Deposit")
    except TradingError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.to_detail())
    return LedgerEntryOut.model_validate(entry)


@router.post("/{account_id}/withdraw", response_model=LedgerEntryOut)
async def withdraw(
    account_id: int,
    payload: AmountIn,
    session: AsyncSession = Depends(get_session),
    ctx: TradingContext = Depends(get_context),
) -> LedgerEntryOut:
    try:
        entry = await LedgerService(ctx).withdraw(
            session, account_id, payload.amount, payload.description or "Withdrawal"
        )
    except TradingError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.to_detail())
    return LedgerEntryOut.model_validate(entry)


@router.post("/{account_id}/fund", response_model=LedgerEntryOut)
async def admin_fund(
    account_id: int,
    payload: AdminFundIn,
    session: AsyncSession = Depends(get_session),
    ctx: TradingContext = Depends(get_context),
) -> LedgerEntryOut:
    try:
        entry = await LedgerService(ctx).admin_fund(
            session, account_id, payload.amount, payload.description, payload.admin_id
        )
    except TradingError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.to_detail())
    return LedgerEntryOut.model_validate(entry)


@router.get("/{account_id}/verify", response_model=ChainCheckOut)
async def verify(
    account_id: int,
    session: AsyncSession = Depends(get_session),
    ctx: TradingContext = Depends(get_context),
) -> ChainCheckOut:
    try:
        consistent = await LedgerService(ctx).verify_chain(session, account_id)
    except TradingError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.to_detail())
    return ChainCheckOut(account_id=account_id, consistent=consistent)
