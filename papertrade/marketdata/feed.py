"""Push-based price feed with explicit subscription lifecycle."""
from __future__ import annotations

import logging
import math
from typing import Awaitable, Callable, Dict

from papertrade.errors import InvalidAmount

logger = logging.getLogger(__name__)

PriceMap = Dict[str, float]
PriceCallback = Callable[[PriceMap], Awaitable[None]]


def normalize_prices(prices: dict) -> PriceMap:
    """Upper-case symbols and reject non-finite or non-positive prices."""
    out: PriceMap = {}
    for symbol, price in prices.items():
        try:
            value = float(price)
        except (TypeError, ValueError):
            raise InvalidAmount(f"Invalid price for {symbol}: {price!r}")
        if not math.isfinite(value) or value <= 0:
            raise InvalidAmount(f"Invalid price for {symbol}: {price}")
        out[str(symbol).upper()] = value
    return out


class Subscription:
    """Handle returned by PriceFeed.subscribe; unsubscribe() is idempotent."""

    def __init__(self, feed: "PriceFeed", callback: PriceCallback) -> None:
        self._feed = feed
        self.callback = callback
        self.active = True

    def unsubscribe(self) -> None:
        if not self.active:
            return
        self.active = False
        self._feed._remove(self)

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc) -> None:
        self.unsubscribe()


class PriceFeed:
    """Fan out price ticks to subscribers.

    Subscribers are awaited in subscription order. A subscriber that raises is
    logged and skipped; the remaining subscribers still receive the tick.
    """

    def __init__(self) -> None:
        self._subscriptions: list[Subscription] = []
        self.last_prices: PriceMap = {}

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def subscribe(self, callback: PriceCallback) -> Subscription:
        sub = Subscription(self, callback)
        self._subscriptions.append(sub)
        logger.debug("Price feed subscriber added (%d total)", len(self._subscriptions))
        return sub

    def _remove(self, sub: Subscription) -> None:
        try:
            self._subscriptions.remove(sub)
        except ValueError:
            return
        logger.debug("Price feed subscriber removed (%d left)", len(self._subscriptions))

    async def publish(self, prices: dict) -> PriceMap:
        tick = normalize_prices(prices)
        if not tick:
            return tick
        self.last_prices.update(tick)

        for sub in list(self._subscriptions):
            if not sub.active:
                continue
            try:
                await sub.callback(tick)
            except Exception as e:
                logger.warning("Price feed subscriber failed: %s", e, exc_info=True)
        return tick

    def close(self) -> None:
        for sub in list(self._subscriptions):
            sub.unsubscribe()
