"""Process-wide trading context.

Created once by the application (or a test) and handed to every service,
instead of module-level mutable state.
"""
from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Optional

from fastapi import Request

from papertrade.marketdata.feed import PriceFeed
from papertrade.notifier import Notifier


class AccountLocks:
    """One asyncio.Lock per account id; accounts never share a lock."""

    def __init__(self) -> None:
        self._locks: dict[int, asyncio.Lock] = {}

    def get(self, account_id: int) -> asyncio.Lock:
        lock = self._locks.get(account_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[account_id] = lock
        return lock

    @asynccontextmanager
    async def hold(self, account_id: int):
        async with self.get(int(account_id)):
            yield

    def is_locked(self, account_id: int) -> bool:
        lock = self._locks.get(account_id)
        return lock is not None and lock.locked()


@dataclass
class TradingContext:
    locks: AccountLocks = field(default_factory=AccountLocks)
    feed: PriceFeed = field(default_factory=PriceFeed)
    notifier: Optional[Notifier] = None

    def close(self) -> None:
        self.feed.close()
        if self.notifier is not None:
            self.notifier.close()


def get_context(request: Request) -> TradingContext:
    """FastAPI dependency returning the context built by the application lifespan."""
    return request.app.state.trading
