"""Order persistence model."""
from sqlalchemy import Column, Integer, String, Float, DateTime, ForeignKey, Index, UniqueConstraint
from sqlalchemy.sql import func

from papertrade.db import Base

ORDER_TYPES = ("market", "limit", "stop", "stop_limit")
ORDER_STATUSES = ("pending", "filled", "cancelled", "rejected")
TERMINAL_STATUSES = ("filled", "cancelled", "rejected")


class Order(Base):
    __tablename__ = "orders"
    __table_args__ = (
        UniqueConstraint("account_id", "idempotency_key", name="uq_orders_account_idempotency_key"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    account_id = Column(Integer, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False)
    symbol = Column(String(20), nullable=False)
    order_type = Column(String(20), nullable=False)
    side = Column(String(4), nullable=False)
    quantity = Column(Float, nullable=False)
    # Limit price for limit orders, trigger price for stop and stop_limit
    price = Column(Float, nullable=True)
    limit_price = Column(Float, nullable=True)
    stop_loss = Column(Float, nullable=True)
    take_profit = Column(Float, nullable=True)
    trailing_stop_distance = Column(Float, nullable=True)
    status = Column(String(20), nullable=False, default="pending")
    reason = Column(String(255), nullable=True)
    triggered_at = Column(DateTime(timezone=True), nullable=True)
    fill_price = Column(Float, nullable=True)
    commission = Column(Float, nullable=False, default=0.0)
    position_id = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, default=func.now(), onupdate=func.now())
    filled_at = Column(DateTime(timezone=True), nullable=True)
    idempotency_key = Column(String(128), nullable=True)


Index("ix_orders_account_status", Order.account_id, Order.status)
Index("ix_orders_symbol_status", Order.symbol, Order.status)
