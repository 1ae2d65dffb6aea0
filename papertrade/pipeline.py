"""Price tick processing: mark positions, match orders, fire exits, check margin."""
from __future__ import annotations

import logging
from typing import Callable

from sqlalchemy.ext.asyncio import AsyncSession

from papertrade.context import TradingContext
from papertrade.errors import NotFound
from papertrade.orders.service import OrderBook
from papertrade.positions.service import PositionBook
from papertrade.risk.service import RiskEngine

logger = logging.getLogger(__name__)


class PriceTickHandler:
    """PriceFeed subscriber; each tick runs in its own session."""

    def __init__(self, ctx: TradingContext, session_factory: Callable[[], AsyncSession]) -> None:
        self.ctx = ctx
        self.session_factory = session_factory
        self.positions = PositionBook(ctx)
        self.orders = OrderBook(ctx)
        self.risk = RiskEngine(ctx)

    async def __call__(self, prices: dict[str, float]) -> None:
        async with self.session_factory() as session:
            touched = await self.positions.update_prices(session, prices)
            filled = await self.orders.match_pending(session, prices)
            closed = await self.positions.close_triggered(session, prices)

            touched.update(m.account_id for m in filled if m.status == "filled")
            for account_id in sorted(touched):
                try:
                    await self.risk.evaluate(session, account_id)
                except NotFound:
                    logger.debug("Account %s disappeared before evaluation", account_id)

        if filled or closed:
            logger.info(
                "Tick %s: %d orders matched, %d positions closed, %d accounts evaluated",
                ",".join(sorted(prices)),
                len(filled),
                len(closed),
                len(touched),
            )
