"""Hourly no-show sweep and strike accounting.

A sweep tick expires stale blacklist entries, then walks every ORDERED order
whose shift has already ended and moves it to NO_SHOW, charging one strike to
its owner. Each order is processed in its own session so one failure never
aborts the rest of the batch.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from canteen.core.config import settings
from canteen.models import Order, Shift
from canteen.services.blacklist_policy import BlacklistPolicy
from canteen.services.clock import ClockService
from canteen.services.effects import AuditSink, Effect, Notifier, dispatch_effects
from canteen.services.order_lifecycle import SYSTEM_BLACKLIST, OrderLifecycle, OrderStatus
from canteen.utils.time import add_days, is_overnight, parse_hhmm, shift_end_at

logger = logging.getLogger(__name__)


@dataclass
class SweepResult:
    processed_orders: int = 0
    new_blacklists: int = 0
    affected_users: set[int] = field(default_factory=set)
    failed_orders: list[int] = field(default_factory=list)
    cancelled_orders: int = 0
    expired_blacklists: int = 0
    skipped: bool = False


@dataclass(frozen=True)
class NoShowStats:
    day: date
    total_orders: int
    picked_up: int
    no_shows: int
    pending: int
    cancelled: int

    @property
    def pickup_rate(self) -> float:
        served = self.picked_up + self.no_shows
        if served == 0:
            return 0.0
        return round(self.picked_up / served * 100, 1)


class NoShowSweeper:
    """Runs one sweep at a time; an overlapping call returns ``skipped``."""

    def __init__(
        self,
        session_factory: sessionmaker,
        clock: ClockService,
        notifier: Notifier | None = None,
        audit: AuditSink | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.clock = clock
        self.notifier = notifier
        self.audit = audit
        self.last_result: SweepResult | None = None
        self._guard = threading.Lock()

    def run_once(self) -> SweepResult:
        if not self._guard.acquire(blocking=False):
            logger.info("[NOSHOW] Sweep already running, skipping")
            return SweepResult(skipped=True)
        try:
            result = self._sweep()
        finally:
            self._guard.release()
        self.last_result = result
        return result

    def _sweep(self) -> SweepResult:
        result = SweepResult()
        with self.session_factory() as db:
            result.expired_blacklists = BlacklistPolicy(db, self.clock).expire_blacklists()
            candidates = self._collect_candidates(db)

        if not candidates:
            logger.info("[NOSHOW] No pending orders past shift end")
            return result

        logger.info("[NOSHOW] Processing %d pending orders past shift end", len(candidates))
        for order_id in candidates:
            try:
                effects = self._process_order(order_id, result)
            except Exception:
                logger.exception("[NOSHOW] Failed to process order %s", order_id)
                result.failed_orders.append(order_id)
                continue
            dispatch_effects(effects, self.notifier, self.audit)

        logger.info(
            "[NOSHOW] Sweep done: %d no-shows, %d new blacklists, %d orders cancelled, %d failures",
            result.processed_orders,
            result.new_blacklists,
            result.cancelled_orders,
            len(result.failed_orders),
        )
        return result

    def _collect_candidates(self, db: Session) -> list[int]:
        """ORDERED order ids whose shift has ended.

        Overnight shifts starting yesterday end today, so they are checked on
        both days.
        """
        now = self.clock.now()
        today = now.date()
        shifts = db.scalars(select(Shift).where(Shift.is_active.is_(True)).order_by(Shift.id)).all()

        order_ids: list[int] = []
        for shift in shifts:
            try:
                days = [day for day in self._ended_days(shift, today) if now > shift_end_at(day, shift)]
            except ValueError:
                logger.exception("[NOSHOW] Shift %s has unreadable times, skipping it", shift.id)
                continue
            for day in days:
                order_ids.extend(
                    db.scalars(
                        select(Order.id)
                        .where(
                            Order.shift_id == shift.id,
                            Order.order_date == day,
                            Order.status == OrderStatus.ORDERED.value,
                        )
                        .order_by(Order.id)
                    )
                )
        return order_ids

    @staticmethod
    def _ended_days(shift: Shift, today: date) -> list[date]:
        days = [today]
        if is_overnight(parse_hhmm(shift.start_time), parse_hhmm(shift.end_time)):
            days.append(add_days(today, -1))
        return days

    def _process_order(self, order_id: int, result: SweepResult) -> list[Effect]:
        with self.session_factory() as db:
            lifecycle = OrderLifecycle(db, self.clock)
            transition = lifecycle.mark_no_show(order_id, commit=False)
            if not transition.ok:
                # Checked in or cancelled since the candidates were collected.
                logger.info("[NOSHOW] Order %s skipped: %s", order_id, transition.reason.value)
                return []

            user_id = transition.order.user_id
            effects = list(transition.effects)
            strike = BlacklistPolicy(db, self.clock).record_strike(user_id)
            effects.extend(strike.effects)
            result.processed_orders += 1
            result.affected_users.add(user_id)
            logger.info("[NOSHOW] Order %s marked no-show, user %s now has %d strike(s)", order_id, user_id, strike.new_count)

            if strike.entry_created:
                result.new_blacklists += 1
                cancelled = lifecycle.cancel_user_orders(user_id, "User blacklisted due to no-shows", SYSTEM_BLACKLIST)
                result.cancelled_orders += cancelled.cancelled_count
                effects.extend(cancelled.effects)
        return effects


class NoShowScheduler:
    """Fires the sweep at minute ``grace_minutes`` of every hour."""

    def __init__(self, sweeper: NoShowSweeper, clock: ClockService, grace_minutes: int | None = None) -> None:
        self.sweeper = sweeper
        self.clock = clock
        self.grace_minutes = settings.noshow_grace_minutes if grace_minutes is None else grace_minutes
        self._task: asyncio.Task[None] | None = None
        self._stopping = asyncio.Event()

    def next_run_at(self, now: datetime) -> datetime:
        candidate = now.replace(minute=self.grace_minutes % 60, second=0, microsecond=0)
        if candidate <= now:
            candidate += timedelta(hours=1)
        return candidate

    async def start(self) -> None:
        if self._task is None or self._task.done():
            self._stopping.clear()
            self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        if self._task is None:
            return

        self._stopping.set()
        await self._task
        self._task = None

    async def _run(self) -> None:
        while not self._stopping.is_set():
            now = self.clock.now()
            delay = (self.next_run_at(now) - now).total_seconds()
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=max(1.0, delay))
                return
            except asyncio.TimeoutError:
                pass

            try:
                await asyncio.to_thread(self.sweeper.run_once)
            except SQLAlchemyError as exc:
                logger.warning("[NOSHOW] Sweep aborted by database error, retrying next hour: %s", exc)
            except Exception:
                logger.exception("[NOSHOW] Sweep failed, retrying next hour")


def noshow_stats(db: Session, day: date) -> NoShowStats:
    """Per-status order counts for one calendar day."""
    rows = db.execute(
        select(Order.status, func.count(Order.id)).where(Order.order_date == day).group_by(Order.status)
    ).all()
    counts = {status: count for status, count in rows}
    return NoShowStats(
        day=day,
        total_orders=sum(counts.values()),
        picked_up=counts.get(OrderStatus.PICKED_UP.value, 0),
        no_shows=counts.get(OrderStatus.NO_SHOW.value, 0),
        pending=counts.get(OrderStatus.ORDERED.value, 0),
        cancelled=counts.get(OrderStatus.CANCELLED.value, 0),
    )
