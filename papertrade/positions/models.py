"""Open and closed position persistence models."""
from sqlalchemy import Column, Integer, String, Float, DateTime, ForeignKey, Index
from sqlalchemy.sql import func

from papertrade.db import Base

CLOSE_REASONS = ("manual", "stop_loss", "take_profit", "trailing_stop", "stop_out")


class Position(Base):
    __tablename__ = "positions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    account_id = Column(Integer, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False)
    symbol = Column(String(20), nullable=False)
    side = Column(String(4), nullable=False)  # 'buy' or 'sell'
    quantity = Column(Float, nullable=False)
    entry_price = Column(Float, nullable=False)
    margin_used = Column(Float, nullable=False)
    stop_loss = Column(Float, nullable=True)
    take_profit = Column(Float, nullable=True)
    # Trailing stop: price distance, current stop and best price seen since it was set
    trailing_stop_distance = Column(Float, nullable=True)
    trailing_stop_price = Column(Float, nullable=True)
    extreme_price = Column(Float, nullable=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="SET NULL"), nullable=True)
    opened_at = Column(DateTime(timezone=True), nullable=False, default=func.now())
    # Volatile, refreshed by the price feed
    current_price = Column(Float, nullable=True)
    unrealized_pnl = Column(Float, nullable=False, default=0.0)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=func.now(), onupdate=func.now())


class ClosedPosition(Base):
    __tablename__ = "closed_positions"
    id = Column(Integer, primary_key=True, autoincrement=True)
    position_id = Column(Integer, nullable=False)
    account_id = Column(Integer, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False)
    symbol = Column(String(20), nullable=False)
    side = Column(String(4), nullable=False)
    quantity = Column(Float, nullable=False)
    entry_price = Column(Float, nullable=False)
    exit_price = Column(Float, nullable=False)
    realized_pnl = Column(Float, nullable=False)
    margin_used = Column(Float, nullable=False)
    close_reason = Column(String(20), nullable=False, default="manual")
    opened_at = Column(DateTime(timezone=True), nullable=False)
    closed_at = Column(DateTime(timezone=True), nullable=False, default=func.now())


Index("ix_positions_account_symbol", Position.account_id, Position.symbol)
Index("ix_closed_positions_account_closed", ClosedPosition.account_id, ClosedPosition.closed_at)
Index("ix_closed_positions_position", ClosedPosition.position_id)
