"""Position book: opening, closing and marking positions."""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from papertrade.accounts.models import Account
from papertrade.accounts.queries import account_metrics, load_account, load_open_positions
from papertrade.context import TradingContext
from papertrade.db import maybe_for_update, transaction_scope, utcnow
from papertrade.errors import AlreadyClosed, InsufficientMargin, InvalidAmount, InvalidOrder, NotFound
from papertrade.instruments import get_instrument
from papertrade.ledger.models import LedgerEntry
from papertrade.ledger.service import post_entry
from papertrade.marketdata.feed import normalize_prices
from papertrade.marketdata.service import latest_price, record_quotes
from papertrade.orders.models import Order
from papertrade.positions.models import ClosedPosition, Position
from papertrade.risk.metrics import unrealized_pnl

logger = logging.getLogger(__name__)

QUANTITY_EPSILON = 1e-9


@dataclass(frozen=True)
class TriggeredClose:
    position_id: int
    account_id: int
    close_reason: str
    exit_price: float
    realized_pnl: float


@dataclass(frozen=True)
class SwapCharge:
    position_id: int
    account_id: int
    symbol: str
    amount: float


def check_protective_levels(
    side: str,
    reference_price: float,
    stop_loss: float | None,
    take_profit: float | None,
) -> None:
    """Stop loss must sit on the losing side of the reference price, take profit on the winning side."""
    side = side.lower()
    if stop_loss:
        if side == "buy" and stop_loss >= reference_price:
            raise InvalidOrder("Stop loss must be below entry price for buy positions")
        if side == "sell" and stop_loss <= reference_price:
            raise InvalidOrder("Stop loss must be above entry price for sell positions")
    if take_profit:
        if side == "buy" and take_profit <= reference_price:
            raise InvalidOrder("Take profit must be above entry price for buy positions")
        if side == "sell" and take_profit >= reference_price:
            raise InvalidOrder("Take profit must be below entry price for sell positions")


def exit_trigger(
    side: str,
    stop_loss: float | None,
    take_profit: float | None,
    price: float,
    trailing_stop: float | None = None,
) -> str | None:
    if side == "buy":
        if stop_loss and price <= stop_loss:
            return "stop_loss"
        if trailing_stop and price <= trailing_stop:
            return "trailing_stop"
        if take_profit and price >= take_profit:
            return "take_profit"
    else:
        if stop_loss and price >= stop_loss:
            return "stop_loss"
        if trailing_stop and price >= trailing_stop:
            return "trailing_stop"
        if take_profit and price <= take_profit:
            return "take_profit"
    return None


def ratchet_trailing_stop(
    side: str,
    distance: float,
    extreme_price: float | None,
    price: float,
) -> tuple[float, float] | None:
    """New (extreme_price, trailing_stop_price) when the tick sets a new best price, else None.

    The stop only ever moves in the position's favour.
    """
    if side == "buy":
        if extreme_price is None or price > extreme_price:
            return price, price - distance
    elif extreme_price is None or price < extreme_price:
        return price, price + distance
    return None


class PositionBook:
    def __init__(self, ctx: TradingContext) -> None:
        self.ctx = ctx

    async def _open_locked(
        self,
        session: AsyncSession,
        acct: Account,
        order: Order,
        fill_price: float,
    ) -> Position:
        spec = get_instrument(order.symbol)
        margin = spec.margin(order.quantity, fill_price)
        commission = spec.commission_for(order.quantity)

        metrics = await account_metrics(session, acct)
        if metrics.free_margin - margin - commission < 0:
            raise InsufficientMargin(
                f"Insufficient free margin: required={margin + commission:.2f}, free={metrics.free_margin:.2f}"
            )

        if commission > 0:
            await post_entry(
                session,
                acct,
                "fee",
                -commission,
                f"Commission for order #{order.id} {order.symbol}",
                reference=f"order:{order.id}",
            )

        now = utcnow()
        pos = Position(
            account_id=acct.id,
            symbol=order.symbol,
            side=order.side,
            quantity=float(order.quantity),
            entry_price=float(fill_price),
            margin_used=margin,
            stop_loss=order.stop_loss,
            take_profit=order.take_profit,
            order_id=order.id,
            opened_at=now,
            current_price=float(fill_price),
            unrealized_pnl=0.0,
            updated_at=now,
        )
        if order.trailing_stop_distance:
            pos.trailing_stop_distance = float(order.trailing_stop_distance)
            pos.extreme_price, pos.trailing_stop_price = ratchet_trailing_stop(
                order.side, pos.trailing_stop_distance, None, float(fill_price)
            )
        session.add(pos)
        acct.margin_used = float(acct.margin_used) + margin
        order.commission = commission
        await session.flush()

        logger.info(
            "Opened position %s account=%s %s %s %s @ %.5f margin=%.2f",
            pos.id,
            acct.id,
            pos.side,
            pos.quantity,
            pos.symbol,
            pos.entry_price,
            margin,
        )
        return pos

    async def open_position(self, session: AsyncSession, order: Order, fill_price: float) -> Position:
        async with self.ctx.locks.hold(order.account_id):
            async with transaction_scope(session):
                acct = await load_account(session, order.account_id, for_update=True)
                return await self._open_locked(session, acct, order, fill_price)

    async def _close_locked(
        self,
        session: AsyncSession,
        acct: Account,
        pos: Position,
        exit_price: float,
        reason: str = "manual",
        quantity: float | None = None,
    ) -> ClosedPosition:
        """Close ``quantity`` lots of the position (all of it when None).

        Margin and P&L are split in proportion; a partial close leaves the
        remainder open under the same id.
        """
        held = float(pos.quantity)
        qty = held if quantity is None else min(float(quantity), held)
        remaining = held - qty
        partial = remaining > QUANTITY_EPSILON
        if partial and remaining < get_instrument(pos.symbol).min_quantity - QUANTITY_EPSILON:
            raise InvalidAmount(
                f"Closing {qty:g} of {held:g} would leave less than the minimum {pos.symbol} quantity"
            )

        released = float(pos.margin_used) * qty / held if partial else float(pos.margin_used)
        pnl = unrealized_pnl(pos.symbol, pos.side, qty, pos.entry_price, exit_price)
        now = utcnow()
        closed = ClosedPosition(
            position_id=pos.id,
            account_id=acct.id,
            symbol=pos.symbol,
            side=pos.side,
            quantity=qty,
            entry_price=pos.entry_price,
            exit_price=float(exit_price),
            realized_pnl=pnl,
            margin_used=released,
            close_reason=reason,
            opened_at=pos.opened_at,
            closed_at=now,
        )
        session.add(closed)
        if partial:
            mark = pos.current_price if pos.current_price is not None else pos.entry_price
            pos.quantity = remaining
            pos.margin_used = float(pos.margin_used) - released
            pos.unrealized_pnl = unrealized_pnl(pos.symbol, pos.side, remaining, pos.entry_price, mark)
            pos.updated_at = now
        else:
            await session.delete(pos)
        await session.flush()

        open_positions = await load_open_positions(session, acct.id)
        acct.margin_used = sum(float(p.margin_used) for p in open_positions)

        await post_entry(
            session,
            acct,
            "realized_pnl",
            pnl,
            f"Closed {closed.side} {closed.quantity:g} {closed.symbol} @ {float(exit_price):.5f} ({reason})",
            reference=f"position:{closed.position_id}",
        )
        logger.info(
            "Closed position %s account=%s reason=%s qty=%g remaining=%g pnl=%.2f",
            closed.position_id,
            acct.id,
            reason,
            qty,
            remaining if partial else 0.0,
            pnl,
        )
        return closed

    async def _get_open_locked(self, session: AsyncSession, account_id: int, position_id: int) -> Position:
        stmt = maybe_for_update(
            session,
            select(Position).where(Position.id == position_id, Position.account_id == account_id),
        ).execution_options(populate_existing=True)
        res = await session.execute(stmt)
        pos = res.scalar_one_or_none()
        if pos is not None:
            return pos

        res_closed = await session.execute(
            select(ClosedPosition.id).where(
                ClosedPosition.position_id == position_id,
                ClosedPosition.account_id == account_id,
            ).limit(1)
        )
        if res_closed.scalar_one_or_none() is not None:
            raise AlreadyClosed(f"Position {position_id} is already closed")
        raise NotFound(f"Position {position_id} not found")

    async def close_position(
        self,
        session: AsyncSession,
        account_id: int,
        position_id: int,
        exit_price: float | None = None,
        reason: str = "manual",
        quantity: float | None = None,
    ) -> ClosedPosition:
        if exit_price is not None and (not math.isfinite(float(exit_price)) or float(exit_price) <= 0):
            raise InvalidAmount(f"Invalid exit price: {exit_price}")
        if quantity is not None and (not math.isfinite(float(quantity)) or float(quantity) <= 0):
            raise InvalidAmount(f"Invalid close quantity: {quantity}")

        async with self.ctx.locks.hold(account_id):
            async with transaction_scope(session):
                acct = await load_account(session, account_id, for_update=True)
                pos = await self._get_open_locked(session, account_id, position_id)
                price = float(exit_price) if exit_price is not None else await latest_price(session, pos.symbol)
                return await self._close_locked(session, acct, pos, price, reason, quantity)

    async def modify_position(
        self,
        session: AsyncSession,
        account_id: int,
        position_id: int,
        stop_loss: float | None = None,
        take_profit: float | None = None,
        trailing_stop_distance: float | None = None,
    ) -> Position:
        """Change protective levels; None keeps a level, 0 clears it.

        A new trailing distance restarts the trail from the current mark.
        """
        async with self.ctx.locks.hold(account_id):
            async with transaction_scope(session):
                pos = await self._get_open_locked(session, account_id, position_id)
                new_sl = pos.stop_loss if stop_loss is None else (stop_loss or None)
                new_tp = pos.take_profit if take_profit is None else (take_profit or None)
                check_protective_levels(pos.side, float(pos.entry_price), new_sl, new_tp)
                pos.stop_loss = new_sl
                pos.take_profit = new_tp

                if trailing_stop_distance is not None:
                    if not math.isfinite(float(trailing_stop_distance)) or float(trailing_stop_distance) < 0:
                        raise InvalidOrder(f"Invalid trailing stop distance: {trailing_stop_distance}")
                    if trailing_stop_distance:
                        mark = pos.current_price if pos.current_price is not None else pos.entry_price
                        pos.trailing_stop_distance = float(trailing_stop_distance)
                        pos.extreme_price, pos.trailing_stop_price = ratchet_trailing_stop(
                            pos.side, pos.trailing_stop_distance, None, float(mark)
                        )
                    else:
                        pos.trailing_stop_distance = None
                        pos.trailing_stop_price = None
                        pos.extreme_price = None

                pos.updated_at = utcnow()
                await session.flush()
                return pos

    async def update_prices(self, session: AsyncSession, prices: dict) -> set[int]:
        """Refresh quotes and the volatile fields of open positions.

        Takes no account lock and never touches the ledger. Rows are updated
        by primary key, so a position closed concurrently is simply skipped.
        Trailing stops are ratcheted here. Returns the ids of accounts
        holding positions in the ticked symbols.
        """
        tick = normalize_prices(prices)
        if not tick:
            return set()

        touched: set[int] = set()
        async with transaction_scope(session):
            await record_quotes(session, tick)
            res = await session.execute(select(Position).where(Position.symbol.in_(list(tick))))
            now = utcnow()
            for pos in res.scalars().all():
                price = tick[pos.symbol]
                values = {
                    "current_price": price,
                    "unrealized_pnl": unrealized_pnl(pos.symbol, pos.side, pos.quantity, pos.entry_price, price),
                    "updated_at": now,
                }
                if pos.trailing_stop_distance:
                    moved = ratchet_trailing_stop(pos.side, float(pos.trailing_stop_distance), pos.extreme_price, price)
                    if moved is not None:
                        values["extreme_price"], values["trailing_stop_price"] = moved
                await session.execute(
                    update(Position.__table__).where(Position.__table__.c.id == pos.id).values(**values)
                )
                for name, value in values.items():
                    set_committed_value(pos, name, value)
                touched.add(pos.account_id)
        return touched

    async def close_triggered(self, session: AsyncSession, prices: dict) -> list[TriggeredClose]:
        """Close positions whose stop loss, trailing stop or take profit the tick crossed."""
        tick = normalize_prices(prices)
        if not tick:
            return []

        async with transaction_scope(session):
            res = await session.execute(
                select(Position)
                .where(
                    Position.symbol.in_(list(tick)),
                    Position.stop_loss.is_not(None)
                    | Position.take_profit.is_not(None)
                    | Position.trailing_stop_price.is_not(None),
                )
                .order_by(Position.id.asc())
            )
            candidates = [
                (
                    p.account_id,
                    p.id,
                    tick[p.symbol],
                    exit_trigger(p.side, p.stop_loss, p.take_profit, tick[p.symbol], p.trailing_stop_price),
                )
                for p in res.scalars().all()
            ]

        closed: list[TriggeredClose] = []
        for account_id, position_id, price, reason in candidates:
            if reason is None:
                continue
            try:
                row = await self.close_position(session, account_id, position_id, price, reason)
            except (AlreadyClosed, NotFound):
                logger.debug("Position %s closed before its %s fired", position_id, reason)
                continue
            closed.append(TriggeredClose(position_id, account_id, reason, price, float(row.realized_pnl)))
        return closed

    async def apply_swaps(self, session: AsyncSession, as_of: datetime | None = None) -> list[SwapCharge]:
        """Book one night of financing on every open position as a ``swap`` ledger entry.

        Each position is booked at most once per UTC day, so a rerun for the
        same day changes nothing.
        """
        day = (as_of or utcnow()).date().isoformat()
        async with transaction_scope(session):
            res = await session.execute(select(Position.account_id).distinct().order_by(Position.account_id))
            account_ids = [row[0] for row in res.all()]

        charges: list[SwapCharge] = []
        for account_id in account_ids:
            async with self.ctx.locks.hold(account_id):
                async with transaction_scope(session):
                    acct = await load_account(session, account_id, for_update=True)
                    for pos in await load_open_positions(session, account_id):
                        reference = f"swap:{pos.id}:{day}"
                        booked = await session.execute(
                            select(LedgerEntry.id).where(
                                LedgerEntry.account_id == account_id,
                                LedgerEntry.reference == reference,
                            )
                        )
                        if booked.first() is not None:
                            continue
                        mark = pos.current_price if pos.current_price is not None else pos.entry_price
                        amount = round(get_instrument(pos.symbol).swap(pos.side, pos.quantity, mark), 2)
                        if amount == 0:
                            continue
                        await post_entry(
                            session,
                            acct,
                            "swap",
                            amount,
                            f"Overnight swap for position #{pos.id} {pos.symbol}",
                            reference=reference,
                        )
                        charges.append(SwapCharge(pos.id, account_id, pos.symbol, amount))

        logger.info("Swaps for %s booked on %d positions", day, len(charges))
        return charges

    async def list_positions(self, session: AsyncSession, account_id: int) -> list[Position]:
        await load_account(session, account_id)
        return await load_open_positions(session, account_id)

    async def list_closed_positions(self, session: AsyncSession, account_id: int, limit: int = 100) -> list[ClosedPosition]:
        await load_account(session, account_id)
        res = await session.execute(
            select(ClosedPosition)
            .where(ClosedPosition.account_id == account_id)
            .order_by(ClosedPosition.closed_at.desc(), ClosedPosition.id.desc())
            .limit(limit)
        )
        return list(res.scalars().all())
