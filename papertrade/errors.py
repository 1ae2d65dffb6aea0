"""Domain error taxonomy.

Services raise these; the API layer maps them onto HTTP responses. None of
them is retried automatically: the caller has to send a corrected request.
"""
from __future__ import annotations


class TradingError(Exception):
    code = "trading_error"
    status_code = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_detail(self) -> dict:
        return {"code": self.code, "message": self.message}


class InsufficientFunds(TradingError):
    code = "insufficient_funds"


class InsufficientMargin(TradingError):
    code = "insufficient_margin"


class RiskLimitExceeded(TradingError):
    code = "risk_limit_exceeded"
    status_code = 422


class InvalidAmount(TradingError):
    code = "invalid_amount"


class InvalidOrder(TradingError):
    code = "invalid_order"


class InvalidSettings(TradingError):
    code = "invalid_settings"


class AlreadyClosed(TradingError):
    code = "already_closed"
    status_code = 409


class AlreadyFilled(TradingError):
    code = "already_filled"
    status_code = 409


class NotFound(TradingError):
    code = "not_found"
    status_code = 404


class InvalidStatus(TradingError):
    code = "invalid_status"
