"""Account administration endpoints."""
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from papertrade.accounts.schemas import AccountCreateIn, AccountOut, AccountStatusIn, KycStatusIn
from papertrade.accounts.service import AccountService
from papertrade.context import TradingContext, get_context
from papertrade.db import get_session
from papertrade.errors import TradingError
from papertrade.risk.schemas import RiskSnapshotOut
from papertrade.risk.service import RiskEngine

router = APIRouter(prefix="/v1/accounts", tags=["accounts"])


@router.post("", response_model=AccountOut, status_code=201)
async def create_account(
    payload: AccountCreateIn,
    session: AsyncSession = Depends(get_session),
    ctx: TradingContext = Depends(get_context),
) -> AccountOut:
    try:
        acct = await AccountService(ctx).open_account(
            session,
            owner_name=payload.owner_name,
            currency=payload.currency,
            initial_deposit=payload.initial_deposit,
        )
    except TradingError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.to_detail())
    return AccountOut.model_validate(acct)


@router.get("/{account_id}", response_model=AccountOut)
async def get_account(
    account_id: int,
    session: AsyncSession = Depends(get_session),
    ctx: TradingContext = Depends(get_context),
) -> AccountOut:
    try:
        acct = await AccountService(ctx).get_account(session, account_id)
    except TradingError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.to_detail())
    return AccountOut.model_validate(acct)


@router.get("/{account_id}/snapshot", response_model=RiskSnapshotOut)
async def account_snapshot(
    account_id: int,
    session: AsyncSession = Depends(get_session),
    ctx: TradingContext = Depends(get_context),
) -> RiskSnapshotOut:
    try:
        snapshot = await RiskEngine(ctx).snapshot(session, account_id)
    except TradingError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.to_detail())
    return RiskSnapshotOut(**snapshot)


@router.post("/{account_id}/kyc", response_model=AccountOut)
async def set_kyc_status(
    account_id: int,
    payload: KycStatusIn,
    session: AsyncSession = Depends(get_session),
    ctx: TradingContext = Depends(get_context),
) -> AccountOut:
    try:
        acct = await AccountService(ctx).set_kyc_status(session, account_id, payload.status)
    except TradingError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.to_detail())
    return AccountOut.model_validate(acct)


@router.post("/{account_id}/status", response_model=AccountOut)
async def set_account_status(
    account_id: int,
    payload: AccountStatusIn,
    session: AsyncSession = Depends(get_session),
    ctx: TradingContext = Depends(get_context),
) -> AccountOut:
    try:
        acct = await AccountService(ctx).set_account_status(session, account_id, payload.status)
    except TradingError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.to_detail())
    return AccountOut.model_validate(acct)
