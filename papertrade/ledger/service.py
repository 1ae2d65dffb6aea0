"""Account ledger: the only writer of Account.balance."""
from __future__ import annotations

import logging
import math

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from papertrade.accounts.models import Account
from papertrade.accounts.queries import account_metrics, load_account
from papertrade.config import Config
from papertrade.context import TradingContext
from papertrade.db import transaction_scope, utcnow
from papertrade.errors import InsufficientFunds, InvalidAmount
from papertrade.ledger.models import TRANSACTION_TYPES, LedgerEntry

logger = logging.getLogger(__name__)

# Entry types that take money out of the account
DEBIT_TYPES = ("withdrawal", "fee")


def validate_amount(transaction_type: str, amount: float) -> float:
    if transaction_type not in TRANSACTION_TYPES:
        raise InvalidAmount(f"Unknown transaction type: {transaction_type}")
    try:
        value = float(amount)
    except (TypeError, ValueError):
        raise InvalidAmount(f"Amount is not a number: {amount!r}")
    if not math.isfinite(value):
        raise InvalidAmount("Amount must be a finite number")

    if transaction_type == "realized_pnl":
        return value
    if value == 0:
        raise InvalidAmount("Amount must be non-zero")
    if transaction_type in ("deposit", "funding") and value < 0:
        raise InvalidAmount(f"{transaction_type} amount must be positive")
    if transaction_type in DEBIT_TYPES and value > 0:
        raise InvalidAmount(f"{transaction_type} amount must be negative")
    return value


async def post_entry(
    session: AsyncSession,
    acct: Account,
    transaction_type: str,
    amount: float,
    description: str = "",
    reference: str | None = None,
) -> LedgerEntry:
    """Append an entry and move the balance.

    The caller must hold the account lock and an open transaction.
    """
    value = validate_amount(transaction_type, amount)
    balance_before = float(acct.balance)
    balance_after = balance_before + value
    if transaction_type in DEBIT_TYPES and balance_after < 0:
        raise InsufficientFunds(
            f"{transaction_type} of {abs(value):.2f} exceeds balance {balance_before:.2f}"
        )

    entry = LedgerEntry(
        account_id=acct.id,
        transaction_type=transaction_type,
        amount=value,
        balance_before=balance_before,
        balance_after=balance_after,
        description=description[:255],
        reference=reference,
        created_at=utcnow(),
    )
    session.add(entry)
    acct.balance = balance_after
    acct.updated_at = entry.created_at
    await session.flush()
    logger.info(
        "Ledger %s account=%s amount=%.2f balance %.2f -> %.2f",
        transaction_type,
        acct.id,
        value,
        balance_before,
        balance_after,
    )
    return entry


class LedgerService:
    def __init__(self, ctx: TradingContext) -> None:
        self.ctx = ctx

    async def apply_entry(
        self,
        session: AsyncSession,
        account_id: int,
        transaction_type: str,
        amount: float,
        description: str = "",
        reference: str | None = None,
    ) -> LedgerEntry:
        validate_amount(transaction_type, amount)
        async with self.ctx.locks.hold(account_id):
            async with transaction_scope(session):
                acct = await load_account(session, account_id, for_update=True)
                return await post_entry(session, acct, transaction_type, amount, description, reference)

    async def deposit(self, session: AsyncSession, account_id: int, amount: float, description: str = "Deposit") -> LedgerEntry:
        return await self.apply_entry(session, account_id, "deposit", amount, description)

    async def withdraw(
        self,
        session: AsyncSession,
        account_id: int,
        amount: float,
        description: str = "Withdrawal",
    ) -> LedgerEntry:
        try:
            value = -abs(float(amount))
        except (TypeError, ValueError):
            raise InvalidAmount(f"Amount is not a number: {amount!r}")
        value = validate_amount("withdrawal", value)
        async with self.ctx.locks.hold(account_id):
            async with transaction_scope(session):
                acct = await load_account(session, account_id, for_update=True)
                metrics = await account_metrics(session, acct)
                if abs(value) > float(acct.balance):
                    raise InsufficientFunds(
                        f"Withdrawal of {abs(value):.2f} exceeds balance {float(acct.balance):.2f}"
                    )
                if abs(value) > metrics.free_margin:
                    raise InsufficientFunds(
                        f"Withdrawal of {abs(value):.2f} exceeds free margin {metrics.free_margin:.2f}"
                    )
                return await post_entry(session, acct, "withdrawal", value, description)

    async def admin_fund(
        self,
        session: AsyncSession,
        account_id: int,
        amount: float,
        description: str,
        admin_id: str,
    ) -> LedgerEntry:
        """Credit a funding entry on behalf of an admin, capped per call."""
        value = validate_amount("funding", amount)
        cap = min(Config.ADMIN_FUNDING_MAX, Config.ADMIN_FUNDING_CEILING)
        if value > cap:
            raise InvalidAmount(f"Maximum funding amount is {cap:,.2f} per operation")
        if not description or not description.strip():
            raise InvalidAmount("Description is required")

        async with self.ctx.locks.hold(account_id):
            async with transaction_scope(session):
                acct = await load_account(session, account_id, for_update=True)
                if acct.account_status != "active":
                    raise InvalidAmount("Cannot fund inactive account")
                entry = await post_entry(
                    session,
                    acct,
                    "funding",
                    value,
                    f"Admin funding: {description.strip()} (by {admin_id})",
                )
        logger.info("Admin %s funded account=%s amount=%.2f", admin_id, account_id, value)
        return entry

    async def list_entries(
        self,
        session: AsyncSession,
        account_id: int,
        transaction_type: str | None = None,
        limit: int = 100,
    ) -> list[LedgerEntry]:
        stmt = select(LedgerEntry).where(LedgerEntry.account_id == account_id)
        if transaction_type:
            stmt = stmt.where(LedgerEntry.transaction_type == transaction_type)
        stmt = stmt.order_by(LedgerEntry.id.desc()).limit(limit)
        res = await session.execute(stmt)
        return list(res.scalars().all())

    async def verify_chain(self, session: AsyncSession, account_id: int, tolerance: float = 1e-6) -> bool:
        """Check every entry's arithmetic, the links between entries, and the live balance."""
        acct = await load_account(session, account_id)
        res = await session.execute(
            select(LedgerEntry).where(LedgerEntry.account_id == account_id).order_by(LedgerEntry.id.asc())
        )
        entries = list(res.scalars().all())

        previous_after = 0.0
        for entry in entries:
            if abs(float(entry.balance_before) + float(entry.amount) - float(entry.balance_after)) > tolerance:
                logger.warning("Ledger entry %s arithmetic mismatch", entry.id)
                return False
            if abs(float(entry.balance_before) - previous_after) > tolerance:
                logger.warning("Ledger entry %s does not chain from previous entry", entry.id)
                return False
            previous_after = float(entry.balance_after)

        if abs(float(acct.balance) - previous_after) > tolerance:
            logger.warning("Account %s balance does not match ledger", account_id)
            return False
        return True
