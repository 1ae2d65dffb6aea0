"""Trigger rules for resting orders."""
from __future__ import annotations


def limit_reached(side: str, limit_price: float, price: float) -> bool:
    return price <= limit_price if side == "buy" else price >= limit_price


def stop_reached(side: str, stop_price: float, price: float) -> bool:
    return price >= stop_price if side == "buy" else price <= stop_price


def trigger_action(
    order_type: str,
    side: str,
    price: float | None,
    limit_price: float | None,
    armed: bool,
    market_price: float,
) -> str | None:
    """Return "fill", "arm" or None for a pending order at market_price.

    A stop_limit order arms once its stop is reached and from then on fills
    like a limit order on limit_price; both can happen on the same tick.
    """
    if order_type == "limit":
        return "fill" if limit_reached(side, price, market_price) else None
    if order_type == "stop":
        return "fill" if stop_reached(side, price, market_price) else None
    if order_type == "stop_limit":
        if not armed:
            if not stop_reached(side, price, market_price):
                return None
            if limit_price is None or limit_reached(side, limit_price, market_price):
                return "fill"
            return "arm"
        if limit_price is None or limit_reached(side, limit_price, market_price):
            return "fill"
        return None
    return None
