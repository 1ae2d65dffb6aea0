"""Per-symbol contract specifications.

Quantities are in lots. A lot covers ``contract_size`` units of the
instrument, so in the instrument's quote currency:

    notional = quantity * contract_size * price
    margin   = notional / leverage
    pnl      = (exit - entry) * quantity * contract_size * direction

Every amount is settled in USD. USD-quoted instruments need no conversion;
for USD-base pairs (USDJPY, USDCHF, USDCAD) a quote-currency amount is
divided by the pair's own price, so margin becomes units / leverage and
pnl becomes (exit - entry) * units / exit. Crosses without a USD leg
(EURGBP) resolve to forex specs that cannot settle and are refused.
"""
from __future__ import annotations

from dataclasses import dataclass, replace

SETTLEMENT_CURRENCY = "USD"


@dataclass(frozen=True)
class CommissionSchedule:
    per_unit: float = 0.0
    minimum: float = 0.0
    maximum: float | None = None

    def for_quantity(self, units: float) -> float:
        if self.per_unit <= 0:
            return 0.0
        fee = abs(units) * self.per_unit
        fee = max(fee, self.minimum)
        if self.maximum is not None:
            fee = min(fee, self.maximum)
        return round(fee, 2)


@dataclass(frozen=True)
class InstrumentSpec:
    symbol: str
    asset_class: str
    contract_size: float
    leverage: float
    pip_size: float
    min_quantity: float
    max_quantity: float
    commission: CommissionSchedule = CommissionSchedule()
    # Annualized overnight financing, percent of position value
    swap_long: float = 0.0
    swap_short: float = 0.0
    base_currency: str = ""
    quote_currency: str = SETTLEMENT_CURRENCY

    @property
    def settles_in_usd(self) -> bool:
        return SETTLEMENT_CURRENCY in (self.quote_currency, self.base_currency)

    def units(self, quantity: float) -> float:
        return float(quantity) * self.contract_size

    def to_settlement(self, amount: float, price: float) -> float:
        """Convert a quote-currency amount to USD at the instrument's own price."""
        if self.quote_currency == SETTLEMENT_CURRENCY:
            return float(amount)
        if self.base_currency == SETTLEMENT_CURRENCY:
            return float(amount) / float(price)
        raise ValueError(f"No USD conversion for {self.symbol}")

    def notional(self, quantity: float, price: float) -> float:
        return self.to_settlement(abs(self.units(quantity)) * float(price), price)

    def margin(self, quantity: float, price: float) -> float:
        return self.notional(quantity, price) / self.leverage

    def pnl(self, side_sign: int, quantity: float, entry_price: float, exit_price: float) -> float:
        move = (float(exit_price) - float(entry_price)) * self.units(quantity) * side_sign
        return self.to_settlement(move, exit_price)

    def swap(self, side: str, quantity: float, price: float, days: int = 1) -> float:
        """Signed financing for holding the position ``days`` nights; negative is a charge."""
        rate = self.swap_long if side == "buy" else self.swap_short
        return self.notional(quantity, price) * rate / 365.0 / 100.0 * days

    def pips(self, price_distance: float) -> float:
        return abs(float(price_distance)) / self.pip_size

    def commission_for(self, quantity: float) -> float:
        return self.commission.for_quantity(self.units(quantity))


STOCK_COMMISSION = CommissionSchedule(per_unit=0.02, minimum=1.0, maximum=50.0)

ASSET_CLASS_DEFAULTS: dict[str, InstrumentSpec] = {
    "forex": InstrumentSpec("", "forex", 10000.0, 10.0, 0.0001, 0.01, 100.0, swap_long=-2.5, swap_short=-2.5),
    "index": InstrumentSpec("", "index", 1.0, 20.0, 0.1, 0.1, 1000.0, swap_long=-2.0, swap_short=-2.0),
    "commodity": InstrumentSpec("", "commodity", 100.0, 20.0, 0.01, 0.01, 100.0, swap_long=-4.0, swap_short=-4.0),
    "stock": InstrumentSpec(
        "", "stock", 1.0, 5.0, 0.01, 1.0, 100000.0, STOCK_COMMISSION, swap_long=-3.0, swap_short=3.0
    ),
    "etf": InstrumentSpec(
        "", "etf", 1.0, 5.0, 0.01, 1.0, 100000.0, STOCK_COMMISSION, swap_long=-3.0, swap_short=3.0
    ),
    "crypto": InstrumentSpec("", "crypto", 1.0, 2.0, 0.01, 0.001, 1000.0, swap_long=-15.0, swap_short=-15.0),
}

SYMBOL_ASSET_CLASS: dict[str, str] = {
    "EURUSD": "forex",
    "GBPUSD": "forex",
    "USDJPY": "forex",
    "USDCHF": "forex",
    "AUDUSD": "forex",
    "USDCAD": "forex",
    "NZDUSD": "forex",
    "US500": "index",
    "US100": "index",
    "US30": "index",
    "XAUUSD": "commodity",
    "XAGUSD": "commodity",
    "WTIUSD": "commodity",
    "AAPL": "stock",
    "MSFT": "stock",
    "TSLA": "stock",
    "GOOGL": "stock",
    "SPY": "etf",
    "QQQ": "etf",
    "BTCUSD": "crypto",
    "ETHUSD": "crypto",
}

FALLBACK_SPEC = InstrumentSpec("", "other", 1.0, 10.0, 0.01, 0.01, 10000.0)

CURRENCIES = frozenset({"USD", "EUR", "GBP", "JPY", "CHF", "AUD", "CAD", "NZD"})


def get_instrument(symbol: str) -> InstrumentSpec:
    symbol = symbol.upper()
    asset_class = SYMBOL_ASSET_CLASS.get(symbol, "")
    if not asset_class and len(symbol) == 6 and symbol[:3] in CURRENCIES and symbol[3:] in CURRENCIES:
        asset_class = "forex"
    base = ASSET_CLASS_DEFAULTS.get(asset_class, FALLBACK_SPEC)
    spec = replace(base, symbol=symbol)
    if spec.asset_class == "forex":
        spec = replace(spec, base_currency=symbol[:3], quote_currency=symbol[3:])
        if symbol.endswith("JPY"):
            spec = replace(spec, pip_size=0.01)
    return spec
