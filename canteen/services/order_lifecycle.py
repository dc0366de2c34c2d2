"""Order state machine: ORDERED -> PICKED_UP | NO_SHOW | CANCELLED.

Every transition re-checks ``status = 'ORDERED'`` in the UPDATE itself, so a
check-in racing a sweep-driven no-show (or two cancels) resolves to exactly
one winner; the loser gets ``RejectionReason.CONFLICT``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from canteen.errors import ConflictError, PolicyViolation, RejectionReason, ValidationError
from canteen.models import Order, Shift, User
from canteen.services.blacklist_policy import BlacklistPolicy
from canteen.services.clock import ClockService
from canteen.services.cutoff_policy import (
    CutoffPolicy,
    OrderabilityCheck,
    WeeklyPolicy,
    check_date_in_range,
    check_orderable,
    is_date_orderable_weekly,
    is_past_cutoff,
    minutes_until_cutoff,
    policy_from_settings,
)
from canteen.services.effects import Audit, Effect, Notify
from canteen.services.holiday_service import HolidayCheck, is_holiday
from canteen.services.settings_service import get_ordering_settings
from canteen.utils.time import break_window_at, shift_end_at, shift_start_at

logger = logging.getLogger(__name__)

CHECKIN_EARLY_MINUTES = 30
SYSTEM_POLICY_CHANGE = "System (Policy Change)"
SYSTEM_BLACKLIST = "System (Blacklist)"


class OrderStatus(str, Enum):
    ORDERED = "ORDERED"
    PICKED_UP = "PICKED_UP"
    NO_SHOW = "NO_SHOW"
    CANCELLED = "CANCELLED"


@dataclass
class TransitionResult:
    ok: bool
    reason: RejectionReason | None = None
    order: Order | None = None
    effects: list[Effect] = field(default_factory=list)
    detail: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def success(cls, order: Order, effects: list[Effect], **detail: Any) -> "TransitionResult":
        return cls(ok=True, order=order, effects=effects, detail=detail)

    @classmethod
    def failure(cls, reason: RejectionReason, order: Order | None = None, **detail: Any) -> "TransitionResult":
        return cls(ok=False, reason=reason, order=order, detail=detail)

    def unwrap(self) -> Order:
        """Return the order, raising the matching error for a refused transition."""
        if self.ok:
            return self.order
        if self.reason == RejectionReason.CONFLICT:
            raise ConflictError(detail=self.detail)
        raise PolicyViolation(self.reason, detail=self.detail)


@dataclass
class BulkCancelResult:
    cancelled_count: int = 0
    affected_users: set[int] = field(default_factory=set)
    effects: list[Effect] = field(default_factory=list)


@dataclass(frozen=True)
class ShiftAvailability:
    shift: Shift
    orderable: bool
    reason: RejectionReason | None
    cutoff_at: datetime | None
    minutes_until_cutoff: int
    holiday: HolidayCheck


def parse_order_date(value: str | date | None, default: date) -> date:
    """Parse YYYY-MM-DD into a calendar date; raises ValidationError for junk."""
    if value is None or value == "":
        return default
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(value.strip())
    except ValueError as exc:
        raise ValidationError(f"Invalid order date: {value!r}") from exc


class OrderLifecycle:
    """Validates and performs transitions for orders in one database session."""

    def __init__(self, db: Session, clock: ClockService) -> None:
        self.db = db
        self.clock = clock

    def _policy(self) -> CutoffPolicy:
        return policy_from_settings(get_ordering_settings(self.db))

    def _guarded_update(self, order: Order, new_status: OrderStatus, *, commit: bool = True, **values: Any) -> bool:
        """Move ``order`` out of ORDERED only if nobody else did first."""
        result = self.db.execute(
            update(Order)
            .where(Order.id == order.id, Order.status == OrderStatus.ORDERED.value)
            .values(status=new_status.value, **values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            self.db.rollback()
            logger.info("[ORDERS] Order %s lost a race moving to %s", order.id, new_status.value)
            return False
        if commit:
            self.db.commit()
            self.db.refresh(order)
        return True

    # create

    def create_order(self, user: User, shift_id: int, order_date: date) -> TransitionResult:
        now = self.clock.now()
        today = now.date()

        shift = self.db.get(Shift, shift_id)
        if shift is None:
            return TransitionResult.failure(RejectionReason.SHIFT_NOT_FOUND)

        blacklist = BlacklistPolicy(self.db, self.clock).active_entry(user.id)
        if blacklist is not None:
            return TransitionResult.failure(
                RejectionReason.BLACKLISTED,
                blacklist_id=blacklist.id,
                end_date=blacklist.end_date,
                blacklist_reason=blacklist.reason,
            )

        policy = self._policy()
        in_range = check_date_in_range(today, now, order_date, policy)
        if not in_range.orderable:
            return TransitionResult.failure(in_range.reason, **_policy_detail(policy))

        if not shift.is_active:
            return TransitionResult.failure(RejectionReason.SHIFT_INACTIVE)

        existing = self.db.scalar(
            select(Order.id).where(
                Order.user_id == user.id,
                Order.order_date == order_date,
                Order.status != OrderStatus.CANCELLED.value,
            )
        )
        if existing is not None:
            return TransitionResult.failure(RejectionReason.DUPLICATE_ORDER, existing_order_id=existing)

        holiday = is_holiday(self.db, order_date, shift.id)
        if holiday.blocked:
            return TransitionResult.failure(
                RejectionReason.HOLIDAY,
                holiday_name=holiday.name,
                shift_specific=holiday.shift_specific,
            )

        cutoff = check_orderable(now, shift, order_date, policy)
        if not cutoff.orderable:
            return TransitionResult.failure(cutoff.reason, cutoff_at=cutoff.cutoff_at, now=now)

        order = Order(
            user_id=user.id,
            shift_id=shift.id,
            order_date=order_date,
            status=OrderStatus.ORDERED.value,
            meal_price=shift.meal_price,
            created_at=self.clock.now_utc(),
        )
        self.db.add(order)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            return TransitionResult.failure(RejectionReason.DUPLICATE_ORDER)
        self.db.refresh(order)

        logger.info("[ORDERS] Order %s created for user %s on %s (%s)", order.id, user.id, order_date, shift.name)
        return TransitionResult.success(
            order,
            [
                Audit("ORDER_CREATED", "Order", order.id, after=order.snapshot(), context={"actor_id": user.id}),
                Notify("order:created", {"order_id": order.id, "user_id": user.id, "shift_id": shift.id, "order_date": order_date.isoformat()}),
            ],
        )

    # cancel

    def cancel_order(self, order_id: int, actor: User, reason: str | None = None) -> TransitionResult:
        order = self.db.get(Order, order_id)
        if order is None:
            return TransitionResult.failure(RejectionReason.ORDER_NOT_FOUND)
        if order.user_id != actor.id and not actor.is_elevated:
            return TransitionResult.failure(RejectionReason.FORBIDDEN)
        if order.status != OrderStatus.ORDERED.value:
            return TransitionResult.failure(RejectionReason.NOT_ORDERED, order, status=order.status)

        # Evaluated against the order's own date, not today.
        now = self.clock.now()
        policy = self._policy()
        if is_past_cutoff(now, order.shift, order.order_date, policy):
            detail: dict[str, Any] = {}
            if isinstance(policy, WeeklyPolicy):
                detail["weekly_reason"] = is_date_orderable_weekly(now, order.order_date, policy).reason
            return TransitionResult.failure(RejectionReason.CUTOFF_PASSED, order, **detail)

        default_reason = "Cancelled by user" if order.user_id == actor.id and not actor.is_elevated else "Cancelled by admin"
        return self._cancel(order, reason or default_reason, cancelled_by=actor.name, actor=actor)

    def _cancel(self, order: Order, reason: str, *, cancelled_by: str, actor: User | None = None) -> TransitionResult:
        before = order.snapshot()
        updated = self._guarded_update(
            order,
            OrderStatus.CANCELLED,
            cancel_reason=reason,
            cancelled_by=cancelled_by,
            cancelled_by_id=actor.id if actor is not None else None,
        )
        if not updated:
            return TransitionResult.failure(RejectionReason.CONFLICT, order)

        return TransitionResult.success(
            order,
            [
                Audit(
                    "ORDER_CANCELLED",
                    "Order",
                    order.id,
                    before=before,
                    after=order.snapshot(),
                    context={"actor_id": actor.id if actor is not None else None, "cancelled_by": cancelled_by, "reason": reason},
                ),
                Notify(
                    "order:cancelled",
                    {
                        "order_id": order.id,
                        "user_id": order.user_id,
                        "shift_id": order.shift_id,
                        "order_date": order.order_date.isoformat(),
                        "reason": reason,
                        "cancelled_by": cancelled_by,
                    },
                ),
            ],
        )

    def _cancel_many(self, orders: list[Order], reason: str, cancelled_by: str) -> BulkCancelResult:
        result = BulkCancelResult()
        for order in orders:
            transition = self._cancel(order, reason, cancelled_by=cancelled_by)
            if not transition.ok:
                continue
            result.cancelled_count += 1
            result.affected_users.add(order.user_id)
            result.effects.extend(transition.effects)
        return result

    def cancel_orders_beyond_date(self, boundary: date, reason: str) -> BulkCancelResult:
        """Cancel every ORDERED order dated strictly after ``boundary``."""
        orders = list(
            self.db.scalars(
                select(Order)
                .where(Order.status == OrderStatus.ORDERED.value, Order.order_date > boundary)
                .order_by(Order.order_date, Order.id)
            )
        )
        if orders:
            logger.info("[ORDERS] Cancelling %d orders beyond %s: %s", len(orders), boundary, reason)
        return self._cancel_many(orders, reason, SYSTEM_POLICY_CHANGE)

    def cancel_user_orders(self, user_id: int, reason: str, cancelled_by: str = SYSTEM_BLACKLIST) -> BulkCancelResult:
        """Cancel the user's ORDERED orders from today onwards."""
        orders = list(
            self.db.scalars(
                select(Order)
                .where(
                    Order.user_id == user_id,
                    Order.status == OrderStatus.ORDERED.value,
                    Order.order_date >= self.clock.today(),
                )
                .order_by(Order.order_date, Order.id)
            )
        )
        if orders:
            logger.info("[ORDERS] Cancelling %d orders for user %s: %s", len(orders), user_id, reason)
        return self._cancel_many(orders, reason, cancelled_by)

    # check-in

    def check_in(self, order_id: int, operator: User) -> TransitionResult:
        if not operator.is_elevated:
            return TransitionResult.failure(RejectionReason.FORBIDDEN)
        order = self.db.get(Order, order_id)
        if order is None:
            return TransitionResult.failure(RejectionReason.ORDER_NOT_FOUND)
        if order.status != OrderStatus.ORDERED.value:
            return TransitionResult.failure(RejectionReason.NOT_ORDERED, order, status=order.status)

        now = self.clock.now()
        opens_at, closes_at = checkin_window(order.order_date, order.shift)
        if now < opens_at:
            return TransitionResult.failure(RejectionReason.CHECKIN_TOO_EARLY, order, opens_at=opens_at)
        if now > closes_at:
            return TransitionResult.failure(RejectionReason.CHECKIN_TOO_LATE, order, closes_at=closes_at)

        before = order.snapshot()
        check_in_time = self.clock.now_utc()
        if not self._guarded_update(order, OrderStatus.PICKED_UP, check_in_time=check_in_time, checked_in_by_id=operator.id):
            return TransitionResult.failure(RejectionReason.CONFLICT, order)

        return TransitionResult.success(
            order,
            [
                Audit("ORDER_CHECKIN", "Order", order.id, before=before, after=order.snapshot(), context={"actor_id": operator.id}),
                Notify(
                    "order:checkin",
                    {"order_id": order.id, "user_id": order.user_id, "operator_id": operator.id, "check_in_time": check_in_time.isoformat()},
                ),
            ],
        )

    # no-show

    def mark_no_show(self, order_id: int, *, commit: bool = True) -> TransitionResult:
        """Sweeper-only transition; the caller records the strike."""
        order = self.db.get(Order, order_id)
        if order is None:
            return TransitionResult.failure(RejectionReason.ORDER_NOT_FOUND)
        if order.status != OrderStatus.ORDERED.value:
            return TransitionResult.failure(RejectionReason.NOT_ORDERED, order, status=order.status)

        shift_end = shift_end_at(order.order_date, order.shift)
        if not self.clock.now() > shift_end:
            return TransitionResult.failure(RejectionReason.SHIFT_NOT_ENDED, order, shift_end=shift_end)

        before = order.snapshot()
        if not self._guarded_update(order, OrderStatus.NO_SHOW, commit=commit):
            return TransitionResult.failure(RejectionReason.CONFLICT, order)

        after = {**before, "status": OrderStatus.NO_SHOW.value}
        return TransitionResult.success(
            order,
            [
                Audit(
                    "ORDER_NOSHOW",
                    "Order",
                    order.id,
                    before=before,
                    after=after,
                    context={"processed_by": "System Scheduler", "shift_name": order.shift.name},
                ),
                Notify(
                    "order:noshow",
                    {"order_id": order.id, "user_id": order.user_id, "shift_id": order.shift_id, "order_date": order.order_date.isoformat()},
                ),
            ],
        )

    # shift listing

    def shift_availability(self, for_date: date) -> list[ShiftAvailability]:
        """Active shifts for ``for_date`` with the same cutoff verdict ``create_order`` applies."""
        now = self.clock.now()
        policy = self._policy()
        shifts = self.db.scalars(select(Shift).where(Shift.is_active.is_(True)).order_by(Shift.start_time, Shift.id)).all()

        listing: list[ShiftAvailability] = []
        for shift in shifts:
            holiday = is_holiday(self.db, for_date, shift.id)
            check: OrderabilityCheck = check_orderable(now, shift, for_date, policy)
            reason = check.reason
            if check.orderable and holiday.blocked:
                reason = RejectionReason.HOLIDAY
            listing.append(
                ShiftAvailability(
                    shift=shift,
                    orderable=check.orderable and not holiday.blocked,
                    reason=reason,
                    cutoff_at=check.cutoff_at,
                    minutes_until_cutoff=minutes_until_cutoff(now, shift, for_date, policy),
                    holiday=holiday,
                )
            )
        return listing


def checkin_window(order_date: date, shift: Shift) -> tuple[datetime, datetime]:
    """Pickup window: the break window when configured, else 30 minutes before start to shift end."""
    break_window = break_window_at(order_date, shift)
    if break_window is not None:
        return break_window
    opens_at = shift_start_at(order_date, shift) - timedelta(minutes=CHECKIN_EARLY_MINUTES)
    return opens_at, shift_end_at(order_date, shift)


def _policy_detail(policy: CutoffPolicy) -> dict[str, Any]:
    if isinstance(policy, WeeklyPolicy):
        return {"cutoff_mode": "weekly", "max_weeks_ahead": policy.max_weeks_ahead}
    return {"cutoff_mode": "per-shift", "max_order_days_ahead": policy.max_order_days_ahead}
