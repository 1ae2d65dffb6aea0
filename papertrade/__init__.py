"""Paper-trading account core: ledger, positions, orders and risk."""

__version__ = "1.0.0"
