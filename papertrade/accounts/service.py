"""Account administration: opening accounts and the KYC gate."""
from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from papertrade.accounts.models import ACCOUNT_STATUSES, KYC_STATUSES, Account
from papertrade.accounts.queries import load_account
from papertrade.config import Config
from papertrade.context import TradingContext
from papertrade.db import transaction_scope, utcnow
from papertrade.errors import InvalidStatus
from papertrade.ledger.service import post_entry, validate_amount

logger = logging.getLogger(__name__)


class AccountService:
    def __init__(self, ctx: TradingContext) -> None:
        self.ctx = ctx

    async def open_account(
        self,
        session: AsyncSession,
        owner_name: str | None = None,
        currency: str | None = None,
        initial_deposit: float = 0.0,
    ) -> Account:
        if initial_deposit:
            validate_amount("deposit", initial_deposit)

        async with transaction_scope(session):
            now = utcnow()
            acct = Account(
                owner_name=owner_name,
                currency=(currency or Config.ACCOUNT_CURRENCY).upper(),
                balance=0.0,
                margin_used=0.0,
                kyc_status="pending",
                account_status="active",
                risk_state="normal",
                created_at=now,
                updated_at=now,
            )
            session.add(acct)
            await session.flush()
            if initial_deposit:
                async with self.ctx.locks.hold(acct.id):
                    await post_entry(session, acct, "deposit", initial_deposit, "Initial deposit")
        logger.info("Opened account %s currency=%s balance=%.2f", acct.id, acct.currency, float(acct.balance))
        return acct

    async def get_account(self, session: AsyncSession, account_id: int) -> Account:
        return await load_account(session, account_id)

    async def set_kyc_status(self, session: AsyncSession, account_id: int, status: str) -> Account:
        status = (status or "").lower()
        if status not in KYC_STATUSES:
            raise InvalidStatus(f"Unknown KYC status: {status!r}")
        return await self._set(session, account_id, "kyc_status", status)

    async def set_account_status(self, session: AsyncSession, account_id: int, status: str) -> Account:
        status = (status or "").lower()
        if status not in ACCOUNT_STATUSES:
            raise InvalidStatus(f"Unknown account status: {status!r}")
        return await self._set(session, account_id, "account_status", status)

    async def _set(self, session: AsyncSession, account_id: int, column: str, value: str) -> Account:
        async with self.ctx.locks.hold(account_id):
            async with transaction_scope(session):
                acct = await load_account(session, account_id, for_update=True)
                previous = getattr(acct, column)
                setattr(acct, column, value)
                acct.updated_at = utcnow()
                await session.flush()
        logger.info("Account %s %s %s -> %s", account_id, column, previous, value)
        return acct
