"""Risk engine: derived account metrics, order limits and stop-out."""
from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass, field

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from papertrade.accounts.models import Account
from papertrade.accounts.queries import account_metrics, load_account, load_open_positions, position_pnl
from papertrade.config import Config
from papertrade.context import TradingContext
from papertrade.db import start_of_day, transaction_scope, utcnow
from papertrade.errors import InvalidSettings
from papertrade.instruments import get_instrument
from papertrade.ledger.models import LedgerEntry
from papertrade.orders.models import Order
from papertrade.positions.service import PositionBook
from papertrade.risk.metrics import AccountMetrics
from papertrade.risk.models import RiskEvent, RiskSettings

logger = logging.getLogger(__name__)

SETTINGS_FIELDS = (
    "margin_call_level",
    "stop_out_level",
    "max_position_size",
    "max_total_exposure",
    "max_positions",
    "daily_loss_limit",
    "daily_trade_limit",
    "enforce_stop_loss",
    "min_stop_loss_distance",
)


@dataclass(frozen=True)
class OrderCandidate:
    symbol: str
    side: str
    quantity: float
    price: float


@dataclass(frozen=True)
class RiskDecision:
    allowed: bool
    reason: str | None
    metrics: dict


@dataclass
class EvaluationResult:
    account_id: int
    margin_level_before: float
    margin_level_after: float
    margin_call: bool
    closed_position_ids: list[int] = field(default_factory=list)


def settings_to_dict(settings: RiskSettings) -> dict:
    return {name: getattr(settings, name) for name in SETTINGS_FIELDS}


def _level_or_none(level: float) -> float | None:
    return None if math.isinf(level) else level


class RiskEngine:
    def __init__(self, ctx: TradingContext) -> None:
        self.ctx = ctx
        self.positions = PositionBook(ctx)

    @staticmethod
    async def get_settings(session: AsyncSession, account_id: int) -> RiskSettings:
        res = await session.execute(select(RiskSettings).where(RiskSettings.account_id == account_id))
        settings = res.scalar_one_or_none()
        if settings is not None:
            return settings

        settings = RiskSettings(
            account_id=account_id,
            margin_call_level=Config.RISK_MARGIN_CALL_LEVEL,
            stop_out_level=Config.RISK_STOP_OUT_LEVEL,
            max_position_size=Config.RISK_MAX_POSITION_SIZE,
            max_total_exposure=Config.RISK_MAX_TOTAL_EXPOSURE,
            max_positions=Config.RISK_MAX_POSITIONS,
            daily_loss_limit=Config.RISK_DAILY_LOSS_LIMIT,
            daily_trade_limit=Config.RISK_DAILY_TRADE_LIMIT,
            enforce_stop_loss=Config.RISK_ENFORCE_STOP_LOSS,
            min_stop_loss_distance=Config.RISK_MIN_STOP_LOSS_DISTANCE,
            updated_at=utcnow(),
        )
        session.add(settings)
        await session.flush()
        return settings

    async def update_settings(self, session: AsyncSession, account_id: int, updates: dict) -> RiskSettings:
        unknown = set(updates) - set(SETTINGS_FIELDS)
        if unknown:
            raise InvalidSettings(f"Unknown risk settings: {', '.join(sorted(unknown))}")

        async with self.ctx.locks.hold(account_id):
            async with transaction_scope(session):
                await load_account(session, account_id, for_update=True)
                settings = await self.get_settings(session, account_id)
                merged = {**settings_to_dict(settings), **{k: v for k, v in updates.items() if v is not None}}

                if float(merged["stop_out_level"]) >= float(merged["margin_call_level"]):
                    raise InvalidSettings("stop_out_level must be below margin_call_level")
                if float(merged["stop_out_level"]) < 0:
                    raise InvalidSettings("stop_out_level must be at least 0")
                if float(merged["max_position_size"]) <= 0:
                    raise InvalidSettings("max_position_size must be positive")
                if int(merged["max_positions"]) < 1 or int(merged["daily_trade_limit"]) < 1:
                    raise InvalidSettings("max_positions and daily_trade_limit must be at least 1")
                for name in ("max_total_exposure", "daily_loss_limit", "min_stop_loss_distance"):
                    if float(merged[name]) < 0:
                        raise InvalidSettings(f"{name} must be at least 0")

                for name, value in merged.items():
                    setattr(settings, name, value)
                settings.updated_at = utcnow()
                await session.flush()
        logger.info("Risk settings updated for account=%s: %s", account_id, sorted(updates))
        return settings

    @staticmethod
    async def daily_activity(session: AsyncSession, account_id: int) -> tuple[float, int]:
        """Realized P&L booked today and number of orders accepted today (UTC)."""
        day_start = start_of_day(utcnow())
        res_pnl = await session.execute(
            select(func.coalesce(func.sum(LedgerEntry.amount), 0.0)).where(
                LedgerEntry.account_id == account_id,
                LedgerEntry.transaction_type == "realized_pnl",
                LedgerEntry.created_at >= day_start,
            )
        )
        res_orders = await session.execute(
            select(func.count(Order.id)).where(
                Order.account_id == account_id,
                Order.created_at >= day_start,
                Order.status != "rejected",
            )
        )
        return float(res_pnl.scalar() or 0.0), int(res_orders.scalar() or 0)

    @staticmethod
    def _metrics_dict(acct: Account, metrics: AccountMetrics, realized_today: float, orders_today: int) -> dict:
        return {
            "account_id": acct.id,
            **metrics.to_dict(),
            "daily_realized_pnl": realized_today,
            "daily_pnl": realized_today + metrics.unrealized_pnl,
            "orders_today": orders_today,
            "kyc_status": acct.kyc_status,
            "account_status": acct.account_status,
            "risk_state": acct.risk_state,
        }

    async def snapshot(self, session: AsyncSession, account_id: int) -> dict:
        acct = await load_account(session, account_id)
        metrics = await account_metrics(session, acct)
        realized_today, orders_today = await self.daily_activity(session, account_id)
        return self._metrics_dict(acct, metrics, realized_today, orders_today)

    @staticmethod
    async def check_limits(
        session: AsyncSession,
        acct: Account,
        candidate: OrderCandidate,
        settings: RiskSettings | None = None,
        resting: bool = False,
    ) -> RiskDecision:
        """Decide whether the candidate order may be accepted. Never mutates state.

        ``resting`` marks the fill of an order already counted against the
        daily trade limit when it was submitted.
        """
        if settings is None:
            settings = await RiskEngine.get_settings(session, acct.id)
        metrics = await account_metrics(session, acct)
        realized_today, orders_today = await RiskEngine.daily_activity(session, acct.id)
        snapshot = RiskEngine._metrics_dict(acct, metrics, realized_today, orders_today)

        spec = get_instrument(candidate.symbol)
        candidate_margin = spec.margin(candidate.quantity, candidate.price) if spec.settles_in_usd else 0.0
        snapshot["candidate_margin"] = candidate_margin

        def reject(reason: str) -> RiskDecision:
            return RiskDecision(False, reason, snapshot)

        if not spec.settles_in_usd:
            return reject(f"{candidate.symbol} cannot be settled in USD")
        if acct.kyc_status != Config.REQUIRED_KYC_STATUS:
            return reject(f"KYC status '{acct.kyc_status}' does not permit trading")
        if acct.account_status != "active":
            return reject(f"Account is {acct.account_status}")
        if float(candidate.quantity) > float(settings.max_position_size):
            return reject(
                f"Quantity {candidate.quantity:g} exceeds max position size {float(settings.max_position_size):g}"
            )
        if metrics.open_positions >= int(settings.max_positions):
            return reject("Max open positions limit reached")
        if metrics.margin_used + candidate_margin > float(settings.max_total_exposure):
            return reject("Max total exposure limit exceeded")
        if not resting and orders_today >= int(settings.daily_trade_limit):
            return reject("Daily trade limit reached")
        daily_loss = -(realized_today + metrics.unrealized_pnl)
        if float(settings.daily_loss_limit) > 0 and daily_loss > float(settings.daily_loss_limit):
            return reject("Daily loss limit exceeded")

        return RiskDecision(True, None, snapshot)

    async def _record_event(
        self,
        session: AsyncSession,
        acct: Account,
        event_type: str,
        metrics: AccountMetrics,
        message: str,
        position_id: int | None = None,
    ) -> RiskEvent:
        event = RiskEvent(
            account_id=acct.id,
            event_type=event_type,
            margin_level=_level_or_none(metrics.margin_level),
            equity=metrics.equity,
            margin_used=metrics.margin_used,
            position_id=position_id,
            message=message[:255],
            created_at=utcnow(),
        )
        session.add(event)
        await session.flush()
        return event

    async def evaluate(self, session: AsyncSession, account_id: int) -> EvaluationResult:
        """Raise a margin call and liquidate worst positions first while at or below stop-out."""
        alerts: list[tuple[str, dict]] = []

        async with self.ctx.locks.hold(account_id):
            async with transaction_scope(session):
                acct = await load_account(session, account_id, for_update=True)
                settings = await self.get_settings(session, account_id)
                metrics = await account_metrics(session, acct)
                result = EvaluationResult(
                    account_id=account_id,
                    margin_level_before=metrics.margin_level,
                    margin_level_after=metrics.margin_level,
                    margin_call=metrics.margin_level <= float(settings.margin_call_level),
                )

                if result.margin_call and acct.risk_state == "normal":
                    msg = (
                        f"Margin level {metrics.margin_level:.2f}% at or below "
                        f"margin call level {float(settings.margin_call_level):.2f}%"
                    )
                    await self._record_event(session, acct, "margin_call", metrics, msg)
                    alerts.append(("margin_call", {"message": msg, **metrics.to_dict()}))
                    logger.warning("Margin call account=%s: %s", account_id, msg)

                while metrics.margin_level <= float(settings.stop_out_level):
                    positions = await load_open_positions(session, account_id)
                    if not positions:
                        break
                    worst = min(positions, key=lambda p: (position_pnl(p), p.id))
                    mark = worst.current_price if worst.current_price is not None else worst.entry_price
                    level_before = metrics.margin_level
                    closed = await self.positions._close_locked(session, acct, worst, mark, "stop_out")
                    metrics = await account_metrics(session, acct)
                    msg = (
                        f"Stop out at margin level {level_before:.2f}%: closed position "
                        f"{closed.position_id} with P&L {closed.realized_pnl:.2f}"
                    )
                    await self._record_event(session, acct, "stop_out", metrics, msg, closed.position_id)
                    alerts.append(("stop_out", {"message": msg, "position_id": closed.position_id, **metrics.to_dict()}))
                    result.closed_position_ids.append(closed.position_id)
                    logger.warning("Stop out account=%s: %s", account_id, msg)

                result.margin_level_after = metrics.margin_level
                if result.closed_position_ids:
                    acct.risk_state = "stop_out"
                elif metrics.margin_level <= float(settings.margin_call_level):
                    if acct.risk_state == "normal":
                        acct.risk_state = "margin_call"
                else:
                    acct.risk_state = "normal"
                await session.flush()

        await self._send_alerts(account_id, alerts)
        return result

    async def _send_alerts(self, account_id: int, alerts: list[tuple[str, dict]]) -> None:
        notifier = self.ctx.notifier
        if notifier is None:
            return
        for event_type, data in alerts:
            if event_type == "margin_call":
                await asyncio.to_thread(notifier.send_margin_call, account_id, data)
            else:
                position_id = data.pop("position_id")
                await asyncio.to_thread(notifier.send_stop_out, account_id, position_id, data)

    async def list_events(self, session: AsyncSession, account_id: int, limit: int = 100) -> list[RiskEvent]:
        await load_account(session, account_id)
        res = await session.execute(
            select(RiskEvent)
            .where(RiskEvent.account_id == account_id)
            .order_by(RiskEvent.created_at.desc(), RiskEvent.id.desc())
            .limit(limit)
        )
        return list(res.scalars().all())
