"""Pure account metric calculations (no persistence)."""
from __future__ import annotations

import math
from dataclasses import asdict, dataclass
from typing import Iterable

from papertrade.instruments import get_instrument


def direction(side: str) -> int:
    return 1 if side.lower() == "buy" else -1


def unrealized_pnl(symbol: str, side: str, quantity: float, entry_price: float, mark_price: float) -> float:
    return get_instrument(symbol).pnl(direction(side), quantity, entry_price, mark_price)


def margin_required(symbol: str, quantity: float, price: float) -> float:
    return get_instrument(symbol).margin(quantity, price)


def equity(balance: float, unrealized: Iterable[float]) -> float:
    return float(balance) + sum(float(u) for u in unrealized)


def free_margin(equity_value: float, margin_used: float) -> float:
    return float(equity_value) - float(margin_used)


def margin_level(equity_value: float, margin_used: float) -> float:
    """Equity over margin used, in percent; +inf with no margin in use."""
    if float(margin_used) <= 0:
        return math.inf
    return float(equity_value) / float(margin_used) * 100.0


@dataclass(frozen=True)
class AccountMetrics:
    balance: float
    unrealized_pnl: float
    equity: float
    margin_used: float
    free_margin: float
    margin_level: float
    open_positions: int

    @classmethod
    def compute(cls, balance: float, margin_used: float, position_pnls: list[float]) -> "AccountMetrics":
        eq = equity(balance, position_pnls)
        return cls(
            balance=float(balance),
            unrealized_pnl=eq - float(balance),
            equity=eq,
            margin_used=float(margin_used),
            free_margin=free_margin(eq, margin_used),
            margin_level=margin_level(eq, margin_used),
            open_positions=len(position_pnls),
        )

    def to_dict(self) -> dict:
        data = asdict(self)
        if math.isinf(self.margin_level):
            data["margin_level"] = None
        return data
