"""Append-only ledger persistence model."""
from sqlalchemy import Column, Integer, String, Float, DateTime, ForeignKey, Index
from sqlalchemy.sql import func

from papertrade.db import Base

TRANSACTION_TYPES = ("deposit", "withdrawal", "funding", "realized_pnl", "fee", "swap")


class LedgerEntry(Base):
    __tablename__ = "ledger"

    id = Column(Integer, primary_key=True, autoincrement=True)
    account_id = Column(Integer, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False)
    transaction_type = Column(String(20), nullable=False)
    amount = Column(Float, nullable=False)
    balance_before = Column(Float, nullable=False)
    balance_after = Column(Float, nullable=False)
    description = Column(String(255), nullable=False, default="")
    reference = Column(String(64), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=func.now())


Index("ix_ledger_account_created", LedgerEntry.account_id, LedgerEntry.created_at)
