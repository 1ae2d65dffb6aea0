import pytest
import pytest_asyncio
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from papertrade.accounts.queries import load_account
from papertrade.accounts.service import AccountService
from papertrade.context import TradingContext
from papertrade.db import Base, import_models, transaction_scope
from papertrade.errors import (
    AlreadyFilled,
    InsufficientMargin,
    InvalidOrder,
    NotFound,
    RiskLimitExceeded,
)
from papertrade.ledger.models import LedgerEntry
from papertrade.marketdata.service import record_quotes
from papertrade.orders.matching import trigger_action
from papertrade.orders.models import Order
from papertrade.orders.schemas import OrderModifyIn, OrderSubmitIn
from papertrade.orders.service import OrderBook
from papertrade.positions.models import Position
from papertrade.risk.service import RiskEngine


@pytest_asyncio.fixture
async def session():
    import_models()
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    Session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with Session() as s:
        yield s

    await engine.dispose()


@pytest.fixture
def ctx():
    return TradingContext()


async def seed(session: AsyncSession, ctx: TradingContext, deposit: float = 50000.0, kyc: str = "approved") -> int:
    accounts = AccountService(ctx)
    account_id = (await accounts.open_account(session, initial_deposit=deposit)).id
    await accounts.set_kyc_status(session, account_id, kyc)
    async with transaction_scope(session):
        await record_quotes(session, {"EURUSD": 1.1000, "AAPL": 200.0})
    return account_id


def limit_buy(price: float = 1.0950, stop_loss: float = 1.0930, **kwargs) -> OrderSubmitIn:
    return OrderSubmitIn(
        symbol="EURUSD", order_type="limit", side="buy", quantity=1.0, price=price, stop_loss=stop_loss, **kwargs
    )


async def order_count(session: AsyncSession) -> int:
    return int((await session.execute(select(func.count(Order.id)))).scalar() or 0)


@pytest.mark.parametrize(
    "order_type,side,price,limit_price,armed,market,expected",
    [
        ("limit", "buy", 1.10, None, False, 1.0999, "fill"),
        ("limit", "buy", 1.10, None, False, 1.1001, None),
        ("limit", "sell", 1.10, None, False, 1.1000, "fill"),
        ("stop", "buy", 1.10, None, False, 1.1000, "fill"),
        ("stop", "sell", 1.10, None, False, 1.1001, None),
        ("stop_limit", "buy", 1.10, 1.1010, False, 1.1005, "fill"),
        ("stop_limit", "buy", 1.10, 1.1002, False, 1.1005, "arm"),
        ("stop_limit", "buy", 1.10, 1.1002, True, 1.1001, "fill"),
        ("stop_limit", "sell", 1.10, 1.0990, False, 1.1005, None),
    ],
)
def test_trigger_action(order_type, side, price, limit_price, armed, market, expected):
    assert trigger_action(order_type, side, price, limit_price, armed, market) == expected


@pytest.mark.asyncio
async def test_market_order_fills_immediately(session, ctx):
    account_id = await seed(session, ctx)

    order = await OrderBook(ctx).submit(
        session, account_id, OrderSubmitIn(symbol="EURUSD", side="buy", quantity=1.0, stop_loss=1.0980)
    )

    assert order.status == "filled"
    assert order.fill_price == pytest.approx(1.1000)
    assert order.position_id is not None
    assert order.filled_at is not None
    acct = await load_account(session, account_id)
    assert acct.margin_used == pytest.approx(1100.0)


@pytest.mark.asyncio
async def test_stock_fill_charges_commission(session, ctx):
    account_id = await seed(session, ctx)

    order = await OrderBook(ctx).submit(
        session, account_id, OrderSubmitIn(symbol="AAPL", side="buy", quantity=10, stop_loss=190.0)
    )

    assert order.commission == pytest.approx(1.0)
    fees = (
        await session.execute(select(LedgerEntry).where(LedgerEntry.transaction_type == "fee"))
    ).scalars().all()
    assert [f.amount for f in fees] == [pytest.approx(-1.0)]
    assert fees[0].reference == f"order:{order.id}"


@pytest.mark.asyncio
async def test_kyc_gate_blocks_unapproved_accounts(session, ctx):
    account_id = await seed(session, ctx, kyc="pending")

    with pytest.raises(RiskLimitExceeded) as err:
        await OrderBook(ctx).submit(session, account_id, limit_buy())

    assert "KYC" in err.value.message
    assert await order_count(session) == 0


@pytest.mark.asyncio
async def test_suspended_account_cannot_trade(session, ctx):
    account_id = await seed(session, ctx)
    await AccountService(ctx).set_account_status(session, account_id, "suspended")

    with pytest.raises(RiskLimitExceeded):
        await OrderBook(ctx).submit(session, account_id, limit_buy())


@pytest.mark.asyncio
async def test_stop_loss_is_enforced(session, ctx):
    account_id = await seed(session, ctx)
    book = OrderBook(ctx)

    with pytest.raises(RiskLimitExceeded):
        await book.submit(session, account_id, limit_buy(stop_loss=None))
    with pytest.raises(RiskLimitExceeded):
        await book.submit(session, account_id, limit_buy(stop_loss=1.0945))

    await RiskEngine(ctx).update_settings(session, account_id, {"enforce_stop_loss": False})
    order = await book.submit(session, account_id, limit_buy(stop_loss=None))
    assert order.status == "pending"


@pytest.mark.asyncio
async def test_protective_levels_must_sit_on_the_right_side(session, ctx):
    account_id = await seed(session, ctx)
    book = OrderBook(ctx)

    with pytest.raises(InvalidOrder):
        await book.submit(session, account_id, limit_buy(stop_loss=1.0960))
    with pytest.raises(InvalidOrder):
        await book.submit(session, account_id, limit_buy(take_profit=1.0900))


@pytest.mark.asyncio
async def test_payload_validation(session, ctx):
    account_id = await seed(session, ctx)
    book = OrderBook(ctx)

    with pytest.raises(InvalidOrder):
        await book.submit(
            session, account_id, OrderSubmitIn(symbol="EURUSD", order_type="limit", side="buy", quantity=1.0)
        )
    with pytest.raises(InvalidOrder):
        await book.submit(
            session,
            account_id,
            OrderSubmitIn(symbol="EURUSD", order_type="stop_limit", side="buy", quantity=1.0, price=1.1010),
        )
    with pytest.raises(InvalidOrder):
        await book.submit(session, account_id, limit_buy().model_copy(update={"quantity": 0.001}))


@pytest.mark.asyncio
async def test_max_position_size_is_enforced(session, ctx):
    account_id = await seed(session, ctx)

    with pytest.raises(RiskLimitExceeded):
        await OrderBook(ctx).submit(session, account_id, limit_buy().model_copy(update={"quantity": 11.0}))


@pytest.mark.asyncio
async def test_market_order_without_margin_persists_nothing(session, ctx):
    account_id = await seed(session, ctx, deposit=500.0)

    with pytest.raises(InsufficientMargin):
        await OrderBook(ctx).submit(
            session, account_id, OrderSubmitIn(symbol="EURUSD", side="buy", quantity=1.0, stop_loss=1.0980)
        )

    assert await order_count(session) == 0
    assert (await session.execute(select(func.count(Position.id)))).scalar() == 0
    acct = await load_account(session, account_id)
    assert acct.margin_used == pytest.approx(0.0)


@pytest.mark.asyncio
async def test_cancel_lifecycle(session, ctx):
    account_id = await seed(session, ctx)
    book = OrderBook(ctx)
    order = await book.submit(session, account_id, limit_buy())

    cancelled = await book.cancel(session, account_id, order.id)
    assert cancelled.status == "cancelled"
    assert cancelled.reason == "cancelled_by_user"

    again = await book.cancel(session, account_id, order.id)
    assert again.id == order.id
    assert again.status == "cancelled"
    assert await order_count(session) == 1

    with pytest.raises(NotFound):
        await book.cancel(session, account_id + 1, order.id)


@pytest.mark.asyncio
async def test_cancel_filled_order_raises_already_filled(session, ctx):
    account_id = await seed(session, ctx)
    book = OrderBook(ctx)
    order_id = (await book.submit(session, account_id, limit_buy())).id
    await book.fill(session, order_id, 1.0950)

    with pytest.raises(AlreadyFilled):
        await book.cancel(session, account_id, order_id)

    # the failed cancel rolled back and expired every loaded row
    refreshed = await book.get_order(session, account_id, order_id)
    assert refreshed.status == "filled"


@pytest.mark.asyncio
async def test_modify_pending_order(session, ctx):
    account_id = await seed(session, ctx)
    book = OrderBook(ctx)
    order_id = (await book.submit(session, account_id, limit_buy())).id

    modified = await book.modify(session, account_id, order_id, OrderModifyIn(price=1.0940, stop_loss=1.0920))
    assert modified.price == pytest.approx(1.0940)
    assert modified.stop_loss == pytest.approx(1.0920)

    with pytest.raises(RiskLimitExceeded):
        await book.modify(session, account_id, order_id, OrderModifyIn(stop_loss=1.0935))
    with pytest.raises(RiskLimitExceeded):
        await book.modify(session, account_id, order_id, OrderModifyIn(quantity=20.0))

    unchanged = await book.get_order(session, account_id, order_id)
    assert unchanged.quantity == pytest.approx(1.0)
    assert unchanged.stop_loss == pytest.approx(1.0920)


@pytest.mark.asyncio
async def test_modify_terminal_orders(session, ctx):
    account_id = await seed(session, ctx)
    book = OrderBook(ctx)
    filled_id = (
        await book.submit(
            session, account_id, OrderSubmitIn(symbol="EURUSD", side="buy", quantity=1.0, stop_loss=1.0980)
        )
    ).id
    cancelled_id = (await book.submit(session, account_id, limit_buy())).id
    await book.cancel(session, account_id, cancelled_id)

    with pytest.raises(AlreadyFilled):
        await book.modify(session, account_id, filled_id, OrderModifyIn(quantity=2.0))
    with pytest.raises(InvalidOrder):
        await book.modify(session, account_id, cancelled_id, OrderModifyIn(quantity=2.0))


@pytest.mark.asyncio
async def test_match_pending_fills_limit_and_arms_stop_limit(session, ctx):
    account_id = await seed(session, ctx)
    book = OrderBook(ctx)
    limit_order = await book.submit(session, account_id, limit_buy())
    stop_limit = await book.submit(
        session,
        account_id,
        OrderSubmitIn(
            symbol="EURUSD",
            order_type="stop_limit",
            side="buy",
            quantity=1.0,
            price=1.1020,
            limit_price=1.1025,
            stop_loss=1.1000,
        ),
    )

    assert await book.match_pending(session, {"EURUSD": 1.0960}) == []

    done = await book.match_pending(session, {"EURUSD": 1.0950})
    assert [m.order_id for m in done] == [limit_order.id]
    assert done[0].fill_price == pytest.approx(1.0950)

    assert await book.match_pending(session, {"EURUSD": 1.1030}) == []
    armed = await book.get_order(session, account_id, stop_limit.id)
    assert armed.status == "pending"
    assert armed.triggered_at is not None

    done = await book.match_pending(session, {"EURUSD": 1.1024})
    assert [m.order_id for m in done] == [stop_limit.id]
    assert done[0].status == "filled"


@pytest.mark.asyncio
async def test_fill_without_margin_rejects_order(session, ctx):
    account_id = await seed(session, ctx, deposit=1000.0)
    book = OrderBook(ctx)
    order = await book.submit(session, account_id, limit_buy())

    result = await book.fill(session, order.id, 1.0950)

    assert result.status == "rejected"
    assert "Insufficient free margin" in result.reason
    assert (await session.execute(select(func.count(Position.id)))).scalar() == 0


@pytest.mark.asyncio
async def test_daily_trade_limit(session, ctx):
    account_id = await seed(session, ctx)
    await RiskEngine(ctx).update_settings(session, account_id, {"daily_trade_limit": 2})
    book = OrderBook(ctx)

    await book.submit(session, account_id, limit_buy())
    await book.submit(session, account_id, limit_buy())
    with pytest.raises(RiskLimitExceeded) as err:
        await book.submit(session, account_id, limit_buy())
    assert "Daily trade limit" in err.value.message


@pytest.mark.asyncio
async def test_list_orders_filters(session, ctx):
    account_id = await seed(session, ctx)
    book = OrderBook(ctx)
    first = await book.submit(session, account_id, limit_buy())
    await book.submit(session, account_id, limit_buy())
    await book.cancel(session, account_id, first.id)

    assert len(await book.list_orders(session, account_id)) == 2
    cancelled = await book.list_orders(session, account_id, status="cancelled")
    assert [o.id for o in cancelled] == [first.id]
    assert await book.list_orders(session, account_id, symbol="GBPUSD") == []


@pytest.mark.asyncio
async def test_resting_fills_respect_max_positions(session, ctx):
    account_id = await seed(session, ctx)
    await RiskEngine(ctx).update_settings(session, account_id, {"max_positions": 1})
    book = OrderBook(ctx)
    ids = [(await book.submit(session, account_id, limit_buy())).id for _ in range(3)]

    done = await book.match_pending(session, {"EURUSD": 1.0940})

    assert [(m.order_id, m.status) for m in done] == [
        (ids[0], "filled"),
        (ids[1], "rejected"),
        (ids[2], "rejected"),
    ]
    assert "Max open positions" in done[1].reason
    assert (await session.execute(select(func.count(Position.id)))).scalar() == 1


@pytest.mark.asyncio
async def test_resting_orders_of_suspended_account_are_rejected_on_fill(session, ctx):
    account_id = await seed(session, ctx)
    book = OrderBook(ctx)
    order_id = (await book.submit(session, account_id, limit_buy())).id
    await AccountService(ctx).set_account_status(session, account_id, "suspended")

    done = await book.match_pending(session, {"EURUSD": 1.0940})

    assert [(m.order_id, m.status, m.reason) for m in done] == [(order_id, "rejected", "Account is suspended")]
    assert (await session.execute(select(func.count(Position.id)))).scalar() == 0
    acct = await load_account(session, account_id)
    assert acct.margin_used == pytest.approx(0.0)


@pytest.mark.asyncio
async def test_fill_rechecks_kyc(session, ctx):
    account_id = await seed(session, ctx)
    book = OrderBook(ctx)
    order_id = (await book.submit(session, account_id, limit_buy())).id
    await AccountService(ctx).set_kyc_status(session, account_id, "resubmitted")

    result = await book.fill(session, order_id, 1.0940)

    assert result.status == "rejected"
    assert "KYC" in result.reason


@pytest.mark.asyncio
async def test_idempotency_key_returns_same_order(session, ctx):
    account_id = await seed(session, ctx)
    other_id = await seed(session, ctx)
    book = OrderBook(ctx)

    first = await book.submit(session, account_id, limit_buy(idempotency_key="retry-1"))
    again = await book.submit(session, account_id, limit_buy(idempotency_key="retry-1"))
    elsewhere = await book.submit(session, other_id, limit_buy(idempotency_key="retry-1"))

    assert again.id == first.id
    assert again.idempotency_key == "retry-1"
    assert elsewhere.id != first.id
    assert await order_count(session) == 2


@pytest.mark.asyncio
async def test_retried_market_order_opens_one_position(session, ctx):
    account_id = await seed(session, ctx)
    book = OrderBook(ctx)
    payload = OrderSubmitIn(symbol="EURUSD", side="buy", quantity=1.0, stop_loss=1.0980, idempotency_key="mkt-1")

    first = await book.submit(session, account_id, payload)
    again = await book.submit(session, account_id, payload)

    assert again.id == first.id
    assert again.position_id == first.position_id
    assert (await session.execute(select(func.count(Position.id)))).scalar() == 1
    assert (await load_account(session, account_id)).margin_used == pytest.approx(1100.0)


@pytest.mark.asyncio
async def test_cross_without_usd_leg_is_refused(session, ctx):
    account_id = await seed(session, ctx)
    async with transaction_scope(session):
        await record_quotes(session, {"EURGBP": 0.8600})

    with pytest.raises(InvalidOrder) as err:
        await OrderBook(ctx).submit(
            session, account_id, OrderSubmitIn(symbol="EURGBP", side="buy", quantity=1.0, stop_loss=0.8500)
        )

    assert "cannot be settled in USD" in err.value.message
    assert await order_count(session) == 0
