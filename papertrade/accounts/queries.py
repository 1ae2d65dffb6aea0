"""Shared account lookups used by every component."""
from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from papertrade.accounts.models import Account
from papertrade.db import maybe_for_update
from papertrade.errors import NotFound
from papertrade.positions.models import Position
from papertrade.risk.metrics import AccountMetrics, unrealized_pnl


async def load_account(session: AsyncSession, account_id: int, for_update: bool = False) -> Account:
    stmt = select(Account).where(Account.id == account_id)
    if for_update:
        stmt = maybe_for_update(session, stmt).execution_options(populate_existing=True)
    res = await session.execute(stmt)
    acct = res.scalar_one_or_none()
    if acct is None:
        raise NotFound(f"Account {account_id} not found")
    return acct


async def load_open_positions(session: AsyncSession, account_id: int) -> list[Position]:
    res = await session.execute(
        select(Position)
        .where(Position.account_id == account_id)
        .order_by(Position.opened_at.asc(), Position.id.asc())
    )
    return list(res.scalars().all())


def position_pnl(pos: Position) -> float:
    mark = pos.current_price if pos.current_price is not None else pos.entry_price
    return unrealized_pnl(pos.symbol, pos.side, pos.quantity, pos.entry_price, mark)


async def account_metrics(session: AsyncSession, acct: Account) -> AccountMetrics:
    positions = await load_open_positions(session, acct.id)
    return AccountMetrics.compute(
        balance=float(acct.balance),
        margin_used=float(acct.margin_used),
        position_pnls=[position_pnl(p) for p in positions],
    )
