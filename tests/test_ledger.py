import math

import pytest
import pytest_asyncio
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from papertrade.accounts.queries import load_account
from papertrade.accounts.service import AccountService
from papertrade.config import Config
from papertrade.context import TradingContext
from papertrade.db import Base, import_models
from papertrade.errors import InsufficientFunds, InvalidAmount, NotFound
from papertrade.ledger.models import LedgerEntry
from papertrade.ledger.service import LedgerService, post_entry, validate_amount


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


async def entry_count(session: AsyncSession, account_id: int) -> int:
    res = await session.execute(select(func.count(LedgerEntry.id)).where(LedgerEntry.account_id == account_id))
    return int(res.scalar() or 0)


@pytest.mark.asyncio
async def test_open_account_books_initial_deposit(session, ctx):
    acct = await AccountService(ctx).open_account(session, owner_name="alice", initial_deposit=1000.0)

    assert acct.balance == pytest.approx(1000.0)
    assert acct.currency == Config.ACCOUNT_CURRENCY
    entries = await LedgerService(ctx).list_entries(session, acct.id)
    assert len(entries) == 1
    assert entries[0].transaction_type == "deposit"
    assert entries[0].balance_before == pytest.approx(0.0)
    assert entries[0].balance_after == pytest.approx(1000.0)


@pytest.mark.asyncio
async def test_chain_stays_consistent_across_entry_types(session, ctx):
    account_id = (await AccountService(ctx).open_account(session, initial_deposit=500.0)).id
    ledger = LedgerService(ctx)

    await ledger.deposit(session, account_id, 250.0)
    await ledger.withdraw(session, account_id, 100.0)
    await ledger.apply_entry(session, account_id, "realized_pnl", -42.5, "loss")
    await ledger.apply_entry(session, account_id, "realized_pnl", 0.0, "flat close")
    await ledger.apply_entry(session, account_id, "fee", -1.0, "commission")

    entries = list(reversed(await ledger.list_entries(session, account_id)))
    for prev, entry in zip(entries, entries[1:]):
        assert entry.balance_before == pytest.approx(prev.balance_after)
    for entry in entries:
        assert entry.balance_after == pytest.approx(entry.balance_before + entry.amount)

    acct = await load_account(session, account_id)
    assert acct.balance == pytest.approx(entries[-1].balance_after)
    assert acct.balance == pytest.approx(606.5)
    assert await ledger.verify_chain(session, account_id) is True


@pytest.mark.asyncio
async def test_verify_chain_detects_tampered_balance(session, ctx):
    acct = await AccountService(ctx).open_account(session, initial_deposit=100.0)
    acct.balance = 150.0
    await session.commit()

    assert await LedgerService(ctx).verify_chain(session, acct.id) is False


@pytest.mark.parametrize(
    "transaction_type,amount",
    [
        ("deposit", 0.0),
        ("deposit", -5.0),
        ("withdrawal", 10.0),
        ("fee", 1.0),
        ("funding", math.nan),
        ("realized_pnl", math.inf),
        ("swap", 0.0),
        ("bonus", 10.0),
    ],
)
def test_validate_amount_rejects_bad_sign_and_values(transaction_type, amount):
    with pytest.raises(InvalidAmount):
        validate_amount(transaction_type, amount)


def test_validate_amount_allows_zero_realized_pnl():
    assert validate_amount("realized_pnl", 0.0) == 0.0


def test_swap_entries_take_either_sign():
    assert validate_amount("swap", -0.75) == -0.75
    assert validate_amount("swap", 0.16) == 0.16


@pytest.mark.asyncio
async def test_withdrawal_cannot_overdraw(session, ctx):
    account_id = (await AccountService(ctx).open_account(session, initial_deposit=100.0)).id

    with pytest.raises(InsufficientFunds):
        await LedgerService(ctx).withdraw(session, account_id, 100.01)

    acct = await load_account(session, account_id)
    assert acct.balance == pytest.approx(100.0)
    assert await entry_count(session, account_id) == 1


@pytest.mark.asyncio
async def test_post_entry_fee_cannot_go_negative(session, ctx):
    account_id = (await AccountService(ctx).open_account(session, initial_deposit=0.5)).id

    with pytest.raises(InsufficientFunds):
        async with session.begin():
            acct = await load_account(session, account_id, for_update=True)
            await post_entry(session, acct, "fee", -1.0, "commission")

    acct = await load_account(session, account_id)
    assert acct.balance == pytest.approx(0.5)


@pytest.mark.asyncio
async def test_realized_loss_is_booked_without_clamping(session, ctx):
    account_id = (await AccountService(ctx).open_account(session, initial_deposit=10.0)).id

    entry = await LedgerService(ctx).apply_entry(session, account_id, "realized_pnl", -25.0, "gap loss")

    assert entry.balance_after == pytest.approx(-15.0)


@pytest.mark.asyncio
async def test_admin_fund_credits_funding_entry(session, ctx):
    account_id = (await AccountService(ctx).open_account(session)).id

    entry = await LedgerService(ctx).admin_fund(session, account_id, 100000.0, "competition prize", "admin-7")

    assert entry.transaction_type == "funding"
    assert entry.amount == pytest.approx(100000.0)
    assert "admin-7" in entry.description
    acct = await load_account(session, account_id)
    assert acct.balance == pytest.approx(100000.0)


@pytest.mark.asyncio
async def test_admin_fund_over_ceiling_is_rejected_before_mutation(session, ctx):
    account_id = (await AccountService(ctx).open_account(session, initial_deposit=50.0)).id

    with pytest.raises(InvalidAmount):
        await LedgerService(ctx).admin_fund(session, account_id, 100001.0, "fat finger", "admin-1")

    acct = await load_account(session, account_id)
    assert acct.balance == pytest.approx(50.0)
    assert await entry_count(session, account_id) == 1


@pytest.mark.asyncio
async def test_admin_fund_ceiling_holds_even_if_max_is_raised(session, ctx, monkeypatch):
    monkeypatch.setattr(Config, "ADMIN_FUNDING_MAX", 500000.0)
    account_id = (await AccountService(ctx).open_account(session)).id

    with pytest.raises(InvalidAmount):
        await LedgerService(ctx).admin_fund(session, account_id, 150000.0, "bonus", "admin-1")
    assert await entry_count(session, account_id) == 0


@pytest.mark.asyncio
async def test_admin_fund_rejects_non_positive_and_blank_description(session, ctx):
    account_id = (await AccountService(ctx).open_account(session)).id
    ledger = LedgerService(ctx)

    with pytest.raises(InvalidAmount):
        await ledger.admin_fund(session, account_id, 0.0, "zero", "admin-1")
    with pytest.raises(InvalidAmount):
        await ledger.admin_fund(session, account_id, -10.0, "negative", "admin-1")
    with pytest.raises(InvalidAmount):
        await ledger.admin_fund(session, account_id, 10.0, "   ", "admin-1")


@pytest.mark.asyncio
async def test_admin_fund_requires_active_account(session, ctx):
    accounts = AccountService(ctx)
    account_id = (await accounts.open_account(session)).id
    await accounts.set_account_status(session, account_id, "suspended")

    with pytest.raises(InvalidAmount):
        await LedgerService(ctx).admin_fund(session, account_id, 10.0, "top up", "admin-1")
    assert await entry_count(session, account_id) == 0


@pytest.mark.asyncio
async def test_unknown_account_raises_not_found(session, ctx):
    with pytest.raises(NotFound):
        await LedgerService(ctx).deposit(session, 999, 10.0)
