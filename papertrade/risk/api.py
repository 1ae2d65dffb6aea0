"""Risk endpoints: settings, pre-trade checks, evaluation and events."""
from __future__ import annotations

import math

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from papertrade.accounts.queries import load_account
from papertrade.context import TradingContext, get_context
from papertrade.db import get_session, transaction_scope
from papertrade.errors import TradingError
from papertrade.marketdata.service import latest_price
from papertrade.risk.schemas import (
    EvaluationOut,
    RiskCheckIn,
    RiskDecisionOut,
    RiskEventOut,
    RiskSettingsIn,
    RiskSettingsOut,
    RiskSnapshotOut,
)
from papertrade.risk.service import OrderCandidate, RiskEngine

router = APIRouter(prefix="/v1/risk", tags=["risk"])


def _finite_or_none(value: float) -> float | None:
    return None if math.isinf(value) else value


@router.get("/{account_id}/settings", response_model=RiskSettingsOut)
async def get_settings(account_id: int, session: AsyncSession = Depends(get_session)) -> RiskSettingsOut:
    try:
        async with transaction_scope(session):
            await load_account(session, account_id)
            settings = await RiskEngine.get_settings(session, account_id)
    except TradingError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.to_detail())
    return RiskSettingsOut.model_validate(settings)


@router.put("/{account_id}/settings", response_model=RiskSettingsOut)
async def update_settings(
    account_id: int,
    payload: RiskSettingsIn,
    session: AsyncSession = Depends(get_session),
    ctx: TradingContext = Depends(get_context),
) -> RiskSettingsOut:
    try:
        settings = await RiskEngine(ctx).update_settings(session, account_id, payload.model_dump(exclude_none=True))
    except TradingError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.to_detail())
    return RiskSettingsOut.model_validate(settings)


@router.post("/{account_id}/check", response_model=RiskDecisionOut)
async def risk_check(
    account_id: int,
    payload: RiskCheckIn,
    session: AsyncSession = Depends(get_session),
) -> RiskDecisionOut:
    try:
        async with transaction_scope(session):
            acct = await load_account(session, account_id)
            price = payload.price if payload.price is not None else await latest_price(session, payload.symbol)
            decision = await RiskEngine.check_limits(
                session,
                acct,
                OrderCandidate(symbol=payload.symbol.upper(), side=payload.side, quantity=payload.quantity, price=price),
            )
    except TradingError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.to_detail())
    return RiskDecisionOut(allowed=decision.allowed, reason=decision.reason, metrics=RiskSnapshotOut(**decision.metrics))


@router.post("/{account_id}/evaluate", response_model=EvaluationOut)
async def evaluate(
    account_id: int,
    session: AsyncSession = Depends(get_session),
    ctx: TradingContext = Depends(get_context),
) -> EvaluationOut:
    try:
        result = await RiskEngine(ctx).evaluate(session, account_id)
    except TradingError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.to_detail())
    return EvaluationOut(
        account_id=result.account_id,
        margin_level_before=_finite_or_none(result.margin_level_before),
        margin_level_after=_finite_or_none(result.margin_level_after),
        margin_call=result.margin_call,
        closed_position_ids=result.closed_position_ids,
    )


@router.get("/{account_id}/events", response_model=list[RiskEventOut])
async def get_events(
    account_id: int,
    limit: int = Query(default=100, ge=1, le=500),
    session: AsyncSession = Depends(get_session),
    ctx: TradingContext = Depends(get_context),
) -> list[RiskEventOut]:
    try:
        rows = await RiskEngine(ctx).list_events(session, account_id, limit=limit)
    except TradingError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.to_detail())
    return [RiskEventOut.model_validate(row) for row in rows]
