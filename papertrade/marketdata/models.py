"""Latest traded price per symbol."""
from sqlalchemy import Column, String, Float, DateTime, CheckConstraint
from sqlalchemy.sql import func

from papertrade.db import Base


class Quote(Base):
    __tablename__ = "quotes"
    __table_args__ = (
        CheckConstraint("price > 0", name="ck_quotes_price_positive"),
    )

    symbol = Column(String(20), primary_key=True)
    price = Column(Float, nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=func.now(), onupdate=func.now())

    def __repr__(self) -> str:
        return f"Quote(symbol={self.symbol}, price={self.price})"
