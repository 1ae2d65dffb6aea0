"""Order endpoints."""
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from papertrade.context import TradingContext, get_context
from papertrade.db import get_session
from papertrade.errors import TradingError
from papertrade.orders.schemas import OrderModifyIn, OrderOut, OrderSubmitIn
from papertrade.orders.service import OrderBook

router = APIRouter(prefix="/v1/orders", tags=["orders"])


@router.post("/{account_id}", response_model=OrderOut, status_code=201)
async def submit_order(
    account_id: int,
    payload: OrderSubmitIn,
    session: AsyncSession = Depends(get_session),
    ctx: TradingContext = Depends(get_context),
) -> OrderOut:
    try:
        order = await OrderBook(ctx).submit(session, account_id, payload)
    except TradingError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.to_detail())
    return OrderOut.model_validate(order)


@router.get("/{account_id}", response_model=list[OrderOut])
async def get_orders(
    account_id: int,
    status: str | None = Query(default=None),
    symbol: str | None = Query(default=None),
    limit: int = Query(default=100, ge=1, le=500),
    session: AsyncSession = Depends(get_session),
    ctx: TradingContext = Depends(get_context),
) -> list[OrderOut]:
    try:
        rows = await OrderBook(ctx).list_orders(session, account_id, status=status, symbol=symbol, limit=limit)
    except TradingError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.to_detail())
    return [OrderOut.model_validate(row) for row in rows]


@router.get("/{account_id}/{order_id}", response_model=OrderOut)
async def get_order(
    account_id: int,
    order_id: int,
    session: AsyncSession = Depends(get_session),
    ctx: TradingContext = Depends(get_context),
) -> OrderOut:
    try:
        order = await OrderBook(ctx).get_order(session, account_id, order_id)
    except TradingError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.to_detail())
    return OrderOut.model_validate(order)


@router.patch("/{account_id}/{order_id}", response_model=OrderOut)
async def modify_order(
    account_id: int,
    order_id: int,
    payload: OrderModifyIn,
    session: AsyncSession = Depends(get_session),
    ctx: TradingContext = Depends(get_context),
) -> OrderOut:
    try:
        order = await OrderBook(ctx).modify(session, account_id, order_id, payload)
    except TradingError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.to_detail())
    return OrderOut.model_validate(order)


@router.post("/{account_id}/{order_id}/cancel", response_model=OrderOut)
async def cancel_order(
    account_id: int,
    order_id: int,
    session: AsyncSession = Depends(get_session),
    ctx: TradingContext = Depends(get_context),
) -> OrderOut:
    try:
        order = await OrderBook(ctx).cancel(session, account_id, order_id)
    except TradingError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.to_detail())
    return OrderOut.model_validate(order)
