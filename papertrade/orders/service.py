"""Order book: submission, modification, cancellation and fills."""
from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from papertrade.accounts.queries import load_account
from papertrade.context import TradingContext
from papertrade.db import maybe_for_update, transaction_scope, utcnow
from papertrade.errors import (
    AlreadyFilled,
    InsufficientFunds,
    InsufficientMargin,
    InvalidOrder,
    NotFound,
    RiskLimitExceeded,
)
from papertrade.instruments import get_instrument
from papertrade.marketdata.feed import normalize_prices
from papertrade.marketdata.service import latest_price
from papertrade.orders.matching import trigger_action
from papertrade.orders.models import Order
from papertrade.orders.schemas import OrderModifyIn, OrderSubmitIn
from papertrade.positions.models import Position
from papertrade.positions.service import PositionBook, check_protective_levels
from papertrade.risk.models import RiskSettings
from papertrade.risk.service import OrderCandidate, RiskEngine

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MatchResult:
    order_id: int
    account_id: int
    status: str
    fill_price: float | None
    position_id: int | None
    reason: str | None

    @classmethod
    def from_order(cls, order: Order) -> "MatchResult":
        return cls(order.id, order.account_id, order.status, order.fill_price, order.position_id, order.reason)


def _validate_quantity(symbol: str, quantity: float) -> None:
    spec = get_instrument(symbol)
    if not spec.settles_in_usd:
        raise InvalidOrder(f"{symbol} cannot be settled in USD")
    if quantity < spec.min_quantity:
        raise InvalidOrder(f"quantity below minimum {spec.min_quantity:g} for {symbol}")
    if quantity > spec.max_quantity:
        raise InvalidOrder(f"quantity above maximum {spec.max_quantity:g} for {symbol}")


def _validate_prices(order_type: str, price: float | None, limit_price: float | None) -> None:
    if order_type != "market" and price is None:
        raise InvalidOrder(f"{order_type} orders require a price")
    if order_type == "stop_limit" and limit_price is None:
        raise InvalidOrder("stop_limit orders require a limit_price")


def _reference_price(order_type: str, price: float | None, limit_price: float | None) -> float:
    """Expected fill price of a resting order."""
    if order_type == "stop_limit":
        return float(limit_price)
    return float(price)


def _check_stop_distance(
    settings: RiskSettings,
    symbol: str,
    reference_price: float,
    stop_loss: float | None,
) -> None:
    if not settings.enforce_stop_loss:
        return
    if not stop_loss:
        raise RiskLimitExceeded("A stop loss is required on every order")
    distance = get_instrument(symbol).pips(reference_price - stop_loss)
    minimum = float(settings.min_stop_loss_distance)
    if distance < minimum:
        raise RiskLimitExceeded(
            f"Stop loss distance {distance:.1f} pips is below minimum {minimum:g} pips"
        )


def _mark_rejected(order: Order, reason: str) -> None:
    order.status = "rejected"
    order.reason = reason[:255]
    order.updated_at = utcnow()


def _mark_filled(order: Order, pos: Position, fill_price: float) -> None:
    now = utcnow()
    order.status = "filled"
    order.reason = None
    order.fill_price = float(fill_price)
    order.position_id = pos.id
    order.filled_at = now
    order.updated_at = now


class OrderBook:
    def __init__(self, ctx: TradingContext) -> None:
        self.ctx = ctx
        self.positions = PositionBook(ctx)

    async def _load_order(self, session: AsyncSession, account_id: int, order_id: int) -> Order:
        stmt = maybe_for_update(
            session,
            select(Order).where(Order.id == order_id, Order.account_id == account_id),
        ).execution_options(populate_existing=True)
        res = await session.execute(stmt)
        order = res.scalar_one_or_none()
        if order is None:
            raise NotFound(f"Order {order_id} not found")
        return order

    @staticmethod
    async def _find_by_key(session: AsyncSession, account_id: int, key: str) -> Order | None:
        res = await session.execute(
            select(Order).where(Order.account_id == account_id, Order.idempotency_key == key)
        )
        return res.scalar_one_or_none()

    @staticmethod
    def _ensure_pending(order: Order) -> None:
        if order.status == "filled":
            raise AlreadyFilled(f"Order {order.id} is already filled")
        if order.status != "pending":
            raise InvalidOrder(f"Order {order.id} is {order.status}")

    async def submit(self, session: AsyncSession, account_id: int, payload: OrderSubmitIn) -> Order:
        symbol = payload.symbol.upper()
        _validate_quantity(symbol, payload.quantity)
        _validate_prices(payload.order_type, payload.price, payload.limit_price)

        async with self.ctx.locks.hold(account_id):
            async with transaction_scope(session):
                acct = await load_account(session, account_id, for_update=True)
                if payload.idempotency_key:
                    existing = await self._find_by_key(session, account_id, payload.idempotency_key)
                    if existing is not None:
                        logger.info("Order %s replayed for idempotency key %s", existing.id, payload.idempotency_key)
                        return existing

                settings = await RiskEngine.get_settings(session, account_id)

                if payload.order_type == "market":
                    reference = await latest_price(session, symbol)
                else:
                    reference = _reference_price(payload.order_type, payload.price, payload.limit_price)

                check_protective_levels(payload.side, reference, payload.stop_loss, payload.take_profit)
                _check_stop_distance(settings, symbol, reference, payload.stop_loss)

                decision = await RiskEngine.check_limits(
                    session,
                    acct,
                    OrderCandidate(symbol=symbol, side=payload.side, quantity=payload.quantity, price=reference),
                    settings,
                )
                if not decision.allowed:
                    logger.info("Order rejected account=%s: %s", account_id, decision.reason)
                    raise RiskLimitExceeded(decision.reason or "Risk check rejected order")

                now = utcnow()
                order = Order(
                    account_id=account_id,
                    symbol=symbol,
                    order_type=payload.order_type,
                    side=payload.side,
                    quantity=float(payload.quantity),
                    price=payload.price if payload.order_type != "market" else None,
                    limit_price=payload.limit_price if payload.order_type == "stop_limit" else None,
                    stop_loss=payload.stop_loss,
                    take_profit=payload.take_profit,
                    trailing_stop_distance=payload.trailing_stop_distance,
                    idempotency_key=payload.idempotency_key,
                    status="pending",
                    commission=0.0,
                    created_at=now,
                    updated_at=now,
                )
                session.add(order)
                await session.flush()

                if payload.order_type == "market":
                    pos = await self.positions._open_locked(session, acct, order, reference)
                    _mark_filled(order, pos, reference)
                    await session.flush()

        logger.info(
            "Order %s account=%s %s %s %g %s -> %s",
            order.id,
            account_id,
            order.order_type,
            order.side,
            order.quantity,
            order.symbol,
            order.status,
        )
        return order

    async def modify(self, session: AsyncSession, account_id: int, order_id: int, updates: OrderModifyIn) -> Order:
        async with self.ctx.locks.hold(account_id):
            async with transaction_scope(session):
                await load_account(session, account_id, for_update=True)
                order = await self._load_order(session, account_id, order_id)
                self._ensure_pending(order)

                quantity = updates.quantity if updates.quantity is not None else order.quantity
                price = updates.price if updates.price is not None else order.price
                limit_price = order.limit_price
                if updates.limit_price is not None:
                    if order.order_type != "stop_limit":
                        raise InvalidOrder("limit_price only applies to stop_limit orders")
                    limit_price = updates.limit_price
                stop_loss = order.stop_loss if updates.stop_loss is None else (updates.stop_loss or None)
                take_profit = order.take_profit if updates.take_profit is None else (updates.take_profit or None)

                _validate_quantity(order.symbol, quantity)
                settings = await RiskEngine.get_settings(session, account_id)
                if float(quantity) > float(settings.max_position_size):
                    raise RiskLimitExceeded(
                        f"Quantity {quantity:g} exceeds max position size {float(settings.max_position_size):g}"
                    )

                reference = _reference_price(order.order_type, price, limit_price)
                check_protective_levels(order.side, reference, stop_loss, take_profit)
                _check_stop_distance(settings, order.symbol, reference, stop_loss)

                order.quantity = float(quantity)
                order.price = price
                order.limit_price = limit_price
                order.stop_loss = stop_loss
                order.take_profit = take_profit
                order.updated_at = utcnow()
                await session.flush()
        logger.info("Order %s modified account=%s", order_id, account_id)
        return order

    async def cancel(self, session: AsyncSession, account_id: int, order_id: int) -> Order:
        """pending -> cancelled; repeated cancels are no-ops, filled orders are refused."""
        async with self.ctx.locks.hold(account_id):
            async with transaction_scope(session):
                order = await self._load_order(session, account_id, order_id)
                if order.status == "filled":
                    raise AlreadyFilled(f"Order {order_id} is already filled")
                if order.status != "pending":
                    return order
                order.status = "cancelled"
                order.reason = "cancelled_by_user"
                order.updated_at = utcnow()
                await session.flush()
        logger.info("Order %s cancelled account=%s", order_id, account_id)
        return order

    async def fill(self, session: AsyncSession, order_id: int, market_price: float) -> Order:
        """Fill a pending order at market_price.

        The account's limits are checked again at fill time. A fill refused by
        the risk engine or the position book (margin or funds) leaves the
        order rejected with the reason recorded instead of raising.
        """
        async with transaction_scope(session):
            res = await session.execute(select(Order.account_id).where(Order.id == order_id))
            account_id = res.scalar_one_or_none()
        if account_id is None:
            raise NotFound(f"Order {order_id} not found")

        async with self.ctx.locks.hold(account_id):
            async with transaction_scope(session):
                acct = await load_account(session, account_id, for_update=True)
                order = await self._load_order(session, account_id, order_id)
                self._ensure_pending(order)
                decision = await RiskEngine.check_limits(
                    session,
                    acct,
                    OrderCandidate(symbol=order.symbol, side=order.side, quantity=order.quantity, price=float(market_price)),
                    resting=True,
                )
                if not decision.allowed:
                    _mark_rejected(order, decision.reason or "Risk check rejected order")
                    await session.flush()
                    logger.warning("Order %s rejected on fill: %s", order_id, order.reason)
                    return order
                try:
                    pos = await self.positions._open_locked(session, acct, order, float(market_price))
                except (InsufficientMargin, InsufficientFunds) as exc:
                    _mark_rejected(order, exc.message)
                    await session.flush()
                    logger.warning("Order %s rejected on fill: %s", order_id, exc.message)
                    return order
                _mark_filled(order, pos, market_price)
                await session.flush()
        logger.info("Order %s filled @ %.5f position=%s", order_id, float(market_price), order.position_id)
        return order

    async def _arm(self, session: AsyncSession, account_id: int, order_id: int) -> bool:
        async with self.ctx.locks.hold(account_id):
            async with transaction_scope(session):
                order = await self._load_order(session, account_id, order_id)
                if order.status != "pending" or order.triggered_at is not None:
                    return False
                order.triggered_at = utcnow()
                order.updated_at = order.triggered_at
                await session.flush()
        logger.info("Order %s armed", order_id)
        return True

    async def match_pending(self, session: AsyncSession, prices: dict) -> list[MatchResult]:
        """Fill or arm resting orders whose trigger the tick crossed.

        Returns one result per order that left the book (filled or rejected).
        """
        tick = normalize_prices(prices)
        if not tick:
            return []

        async with transaction_scope(session):
            res = await session.execute(
                select(Order)
                .where(Order.status == "pending", Order.symbol.in_(list(tick)))
                .order_by(Order.created_at.asc(), Order.id.asc())
            )
            candidates = [
                (o.id, o.account_id, tick[o.symbol], trigger_action(
                    o.order_type, o.side, o.price, o.limit_price, o.triggered_at is not None, tick[o.symbol]
                ))
                for o in res.scalars().all()
            ]

        done: list[MatchResult] = []
        for order_id, account_id, price, action in candidates:
            if action is None:
                continue
            try:
                if action == "arm":
                    await self._arm(session, account_id, order_id)
                    continue
                order = await self.fill(session, order_id, price)
            except (AlreadyFilled, InvalidOrder, NotFound):
                logger.debug("Order %s left pending state before it could be matched", order_id)
                continue
            done.append(MatchResult.from_order(order))
        return done

    async def list_orders(
        self,
        session: AsyncSession,
        account_id: int,
        *,
        status: str | None = None,
        symbol: str | None = None,
        limit: int = 100,
    ) -> list[Order]:
        await load_account(session, account_id)
        stmt = select(Order).where(Order.account_id == account_id)
        if status:
            stmt = stmt.where(Order.status == status.lower())
        if symbol:
            stmt = stmt.where(Order.symbol == symbol.upper())
        stmt = stmt.order_by(Order.created_at.desc(), Order.id.desc()).limit(limit)
        res = await session.execute(stmt)
        return list(res.scalars().all())

    async def get_order(self, session: AsyncSession, account_id: int, order_id: int) -> Order:
        res = await session.execute(select(Order).where(Order.id == order_id, Order.account_id == account_id))
        order = res.scalar_one_or_none()
        if order is None:
            raise NotFound(f"Order {order_id} not found")
        return order
