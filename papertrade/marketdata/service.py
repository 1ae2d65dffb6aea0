"""Quote storage: last traded price per symbol, last write wins."""
from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from papertrade.db import utcnow
from papertrade.errors import NotFound
from papertrade.marketdata.models import Quote


async def record_quotes(session: AsyncSession, prices: dict[str, float]) -> None:
    if not prices:
        return
    res = await session.execute(select(Quote).where(Quote.symbol.in_(list(prices))))
    existing = {q.symbol: q for q in res.scalars().all()}
    now = utcnow()
    for symbol, price in prices.items():
        quote = existing.get(symbol)
        if quote is None:
            session.add(Quote(symbol=symbol, price=float(price), updated_at=now))
        else:
            quote.price = float(price)
            quote.updated_at = now
    await session.flush()


async def latest_price(session: AsyncSession, symbol: str) -> float:
    res = await session.execute(select(Quote.price).where(Quote.symbol == symbol.upper()))
    price = res.scalar_one_or_none()
    if price is None:
        raise NotFound(f"No price available for {symbol.upper()}")
    return float(price)


async def list_quotes(session: AsyncSession) -> list[Quote]:
    res = await session.execute(select(Quote).order_by(Quote.symbol.asc()))
    return list(res.scalars().all())
