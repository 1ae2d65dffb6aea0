"""Price tick ingestion and quote lookup."""
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from papertrade.context import TradingContext, get_context
from papertrade.db import get_session
from papertrade.errors import TradingError
from papertrade.marketdata.schemas import PriceTickIn, PriceTickOut, QuoteOut
from papertrade.marketdata.service import list_quotes

router = APIRouter(prefix="/v1/prices", tags=["prices"])


@router.post("", response_model=PriceTickOut)
async def publish_prices(payload: PriceTickIn, ctx: TradingContext = Depends(get_context)) -> PriceTickOut:
    try:
        tick = await ctx.feed.publish(payload.prices)
    except TradingError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.to_detail())
    return PriceTickOut(prices=tick, subscribers=ctx.feed.subscriber_count)


@router.get("", response_model=list[QuoteOut])
async def get_quotes(session: AsyncSession = Depends(get_session)) -> list[QuoteOut]:
    return [QuoteOut.model_validate(q) for q in await list_quotes(session)]
