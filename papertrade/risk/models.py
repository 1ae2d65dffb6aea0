"""Risk settings and risk event persistence models."""
from sqlalchemy import Boolean, Column, Integer, String, Float, DateTime, ForeignKey, Index
from sqlalchemy.sql import func

from papertrade.db import Base


class RiskSettings(Base):
    __tablename__ = "risk_settings"

    account_id = Column(Integer, ForeignKey("accounts.id", ondelete="CASCADE"), primary_key=True)
    margin_call_level = Column(Float, nullable=False)
    stop_out_level = Column(Float, nullable=False)
    max_position_size = Column(Float, nullable=False)
    max_total_exposure = Column(Float, nullable=False)
    max_positions = Column(Integer, nullable=False)
    daily_loss_limit = Column(Float, nullable=False)
    daily_trade_limit = Column(Integer, nullable=False)
    enforce_stop_loss = Column(Boolean, nullable=False, default=True)
    min_stop_loss_distance = Column(Float, nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=func.now(), onupdate=func.now())


class RiskEvent(Base):
    __tablename__ = "risk_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    account_id = Column(Integer, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False)
    event_type = Column(String(20), nullable=False)  # 'margin_call' or 'stop_out'
    margin_level = Column(Float, nullable=True)
    equity = Column(Float, nullable=False)
    margin_used = Column(Float, nullable=False)
    position_id = Column(Integer, nullable=True)
    message = Column(String(255), nullable=False, default="")
    created_at = Column(DateTime(timezone=True), nullable=False, default=func.now())


Index("ix_risk_events_account_created", RiskEvent.account_id, RiskEvent.created_at)
