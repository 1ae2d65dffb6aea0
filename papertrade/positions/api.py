"""Position endpoints."""
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from papertrade.context import TradingContext, get_context
from papertrade.db import get_session
from papertrade.errors import TradingError
from papertrade.positions.schemas import ClosedPositionOut, PositionCloseIn, PositionModifyIn, PositionOut, SwapChargeOut
from papertrade.positions.service import PositionBook

router = APIRouter(prefix="/v1/positions", tags=["positions"])


@router.get("/{account_id}", response_model=list[PositionOut])
async def get_positions(
    account_id: int,
    session: AsyncSession = Depends(get_session),
    ctx: TradingContext = Depends(get_context),
) -> list[PositionOut]:
    try:
        rows = await PositionBook(ctx).list_positions(session, account_id)
    except TradingError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.to_detail())
    return [PositionOut.model_validate(row) for row in rows]


@router.get("/{account_id}/closed", response_model=list[ClosedPositionOut])
async def get_closed_positions(
    account_id: int,
    limit: int = Query(default=100, ge=1, le=500),
    session: AsyncSession = Depends(get_session),
    ctx: TradingContext = Depends(get_context),
) -> list[ClosedPositionOut]:
    try:
        rows = await PositionBook(ctx).list_closed_positions(session, account_id, limit=limit)
    except TradingError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.to_detail())
    return [ClosedPositionOut.model_validate(row) for row in rows]


@router.post("/{account_id}/{position_id}/close", response_model=ClosedPositionOut)
async def close_position(
    account_id: int,
    position_id: int,
    payload: PositionCloseIn | None = None,
    session: AsyncSession = Depends(get_session),
    ctx: TradingContext = Depends(get_context),
) -> ClosedPositionOut:
    payload = payload or PositionCloseIn()
    try:
        closed = await PositionBook(ctx).close_position(
            session, account_id, position_id, payload.exit_price, quantity=payload.quantity
        )
    except TradingError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.to_detail())
    return ClosedPositionOut.model_validate(closed)


@router.patch("/{account_id}/{position_id}", response_model=PositionOut)
async def modify_position(
    account_id: int,
    position_id: int,
    payload: PositionModifyIn,
    session: AsyncSession = Depends(get_session),
    ctx: TradingContext = Depends(get_context),
) -> PositionOut:
    try:
        pos = await PositionBook(ctx).modify_position(
            session,
            account_id,
            position_id,
            stop_loss=payload.stop_loss,
            take_profit=payload.take_profit,
            trailing_stop_distance=payload.trailing_stop_distance,
        )
    except TradingError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.to_detail())
    return PositionOut.model_validate(pos)


@router.post("/swaps", response_model=list[SwapChargeOut])
async def apply_swaps(
    session: AsyncSession = Depends(get_session),
    ctx: TradingContext = Depends(get_context),
) -> list[SwapChargeOut]:
    """Book today's overnight financing; meant for a once-a-day scheduler."""
    try:
        charges = await PositionBook(ctx).apply_swaps(session)
    except TradingError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.to_detail())
    return [SwapChargeOut(**vars(c)) for c in charges]
