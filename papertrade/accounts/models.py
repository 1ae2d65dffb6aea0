"""Account (profile) persistence model."""
from sqlalchemy import Column, Integer, String, Float, DateTime, CheckConstraint
from sqlalchemy.sql import func

from papertrade.db import Base

KYC_STATUSES = ("pending", "approved", "rejected", "resubmitted")
ACCOUNT_STATUSES = ("active", "suspended")
RISK_STATES = ("normal", "margin_call", "stop_out")


class Account(Base):
    __tablename__ = "accounts"
    __table_args__ = (
        CheckConstraint("margin_used >= 0", name="ck_accounts_margin_used_non_negative"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    owner_name = Column(String(120), nullable=True)
    currency = Column(String(10), nullable=False, default="USD")
    # Only ledger entries change balance
    balance = Column(Float, nullable=False, default=0.0)
    margin_used = Column(Float, nullable=False, default=0.0)
    kyc_status = Column(String(20), nullable=False, default="pending")
    account_status = Column(String(20), nullable=False, default="active")
    risk_state = Column(String(20), nullable=False, default="normal")
    created_at = Column(DateTime(timezone=True), nullable=False, default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, default=func.now(), onupdate=func.now())

    def __repr__(self) -> str:
        return (
            f"Account(id={self.id}, balance={self.balance}, "
            f"margin_used={self.margin_used}, kyc_status={self.kyc_status})"
        )
