"""Cutoff policy evaluation for per-shift and weekly ordering modes.

Everything in this module is pure: callers pass ``now`` (local wall clock from
``ClockService.now()``), the shift and the policy. The same functions back
order creation, cancellation and the shift listing so the three never drift.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Union

from canteen.errors import RejectionReason
from canteen.models.ordering_setting import OrderingSetting
from canteen.utils.time import ShiftTimes, add_days, at_time, days_from_monday, shift_start_at, week_start, weekday_of


@dataclass(frozen=True)
class PerShiftPolicy:
    """Cutoff is a fixed offset before each shift start."""

    cutoff_days: int = 0
    cutoff_hours: int = 6
    max_order_days_ahead: int = 7

    @property
    def lead_time(self) -> timedelta:
        return timedelta(days=self.cutoff_days, hours=self.cutoff_hours)


@dataclass(frozen=True)
class WeeklyPolicy:
    """A weekly cutoff decides which future weeks are open for ordering."""

    cutoff_weekday: int = 5
    cutoff_hour: int = 17
    cutoff_minute: int = 0
    orderable_weekdays: frozenset[int] = frozenset({1, 2, 3, 4, 5, 6})
    max_weeks_ahead: int = 1


CutoffPolicy = Union[PerShiftPolicy, WeeklyPolicy]


@dataclass(frozen=True)
class OrderabilityCheck:
    orderable: bool
    reason: RejectionReason | None = None
    cutoff_at: datetime | None = None

    @classmethod
    def ok(cls, cutoff_at: datetime | None = None) -> "OrderabilityCheck":
        return cls(orderable=True, cutoff_at=cutoff_at)

    @classmethod
    def rejected(cls, reason: RejectionReason, cutoff_at: datetime | None = None) -> "OrderabilityCheck":
        return cls(orderable=False, reason=reason, cutoff_at=cutoff_at)


def parse_weekday_csv(value: str) -> frozenset[int]:
    """Parse ``"1,2,3"`` into weekday numbers, skipping junk and out-of-range values."""
    days: set[int] = set()
    for part in value.split(","):
        part = part.strip()
        if not part.isdigit():
            continue
        day = int(part)
        if 0 <= day <= 6:
            days.add(day)
    return frozenset(days)


def format_weekday_csv(days: frozenset[int] | set[int] | list[int]) -> str:
    return ",".join(str(day) for day in sorted(set(days)))


def policy_from_settings(row: OrderingSetting) -> CutoffPolicy:
    """Select the active mode; fields of the inactive mode are never read."""
    if row.cutoff_mode == "weekly":
        return WeeklyPolicy(
            cutoff_weekday=row.weekly_cutoff_weekday,
            cutoff_hour=row.weekly_cutoff_hour,
            cutoff_minute=row.weekly_cutoff_minute,
            orderable_weekdays=parse_weekday_csv(row.orderable_weekdays),
            max_weeks_ahead=row.max_weeks_ahead,
        )
    return PerShiftPolicy(
        cutoff_days=row.cutoff_days,
        cutoff_hours=row.cutoff_hours,
        max_order_days_ahead=row.max_order_days_ahead,
    )


# Per-shift mode


def cutoff_instant(policy: PerShiftPolicy, shift: ShiftTimes, for_date: date) -> datetime:
    return shift_start_at(for_date, shift) - policy.lead_time


def max_orderable_date(today: date, policy: PerShiftPolicy) -> date:
    return add_days(today, policy.max_order_days_ahead)


# Weekly mode


def weekly_cutoff_instant(now: datetime, policy: WeeklyPolicy) -> datetime:
    """Cutoff instant of the week containing ``now``."""
    cutoff_day = add_days(week_start(now), days_from_monday(policy.cutoff_weekday))
    return at_time(cutoff_day, time(policy.cutoff_hour, policy.cutoff_minute))


def weekly_window_start(now: datetime, policy: WeeklyPolicy) -> date:
    """Monday of the first orderable week.

    Before this week's cutoff the window opens next Monday; once the cutoff
    has passed, next week is closed and the window opens the Monday after.
    """
    next_week_start = add_days(week_start(now), 7)
    if now >= weekly_cutoff_instant(now, policy):
        return add_days(next_week_start, 7)
    return next_week_start


def is_date_orderable_weekly(now: datetime, for_date: date, policy: WeeklyPolicy) -> OrderabilityCheck:
    cutoff_at = weekly_cutoff_instant(now, policy)
    order_week = week_start(for_date)
    if order_week <= week_start(now):
        return OrderabilityCheck.rejected(RejectionReason.CURRENT_OR_PAST_WEEK, cutoff_at)

    if weekday_of(for_date) not in policy.orderable_weekdays:
        return OrderabilityCheck.rejected(RejectionReason.WEEKDAY_NOT_ORDERABLE, cutoff_at)

    window_start = weekly_window_start(now, policy)
    if order_week < window_start:
        return OrderabilityCheck.rejected(RejectionReason.WEEKLY_CUTOFF_PASSED, cutoff_at)

    last_week = add_days(window_start, 7 * (policy.max_weeks_ahead - 1))
    if order_week > last_week:
        return OrderabilityCheck.rejected(RejectionReason.MAX_WEEKS_EXCEEDED, cutoff_at)

    return OrderabilityCheck.ok(cutoff_at)


# Mode-independent entry points


def is_past_cutoff(now: datetime, shift: ShiftTimes, for_date: date, policy: CutoffPolicy) -> bool:
    """True once ordering or cancelling ``shift`` on ``for_date`` is closed.

    The boundary is inclusive: ``now`` equal to the cutoff instant is past.
    """
    if isinstance(policy, WeeklyPolicy):
        return not is_date_orderable_weekly(now, for_date, policy).orderable
    return now >= cutoff_instant(policy, shift, for_date)


def check_date_in_range(today: date, now: datetime, for_date: date, policy: CutoffPolicy) -> OrderabilityCheck:
    """Date-level checks: not in the past and inside the orderable horizon."""
    if for_date < today:
        return OrderabilityCheck.rejected(RejectionReason.PAST_DATE)
    if isinstance(policy, WeeklyPolicy):
        return is_date_orderable_weekly(now, for_date, policy)
    if for_date > max_orderable_date(today, policy):
        return OrderabilityCheck.rejected(RejectionReason.MAX_DAYS_EXCEEDED)
    return OrderabilityCheck.ok()


def check_orderable(now: datetime, shift: ShiftTimes, for_date: date, policy: CutoffPolicy) -> OrderabilityCheck:
    """Full cutoff check for placing an order on ``shift`` at ``for_date``."""
    in_range = check_date_in_range(now.date(), now, for_date, policy)
    if not in_range.orderable:
        return in_range
    if isinstance(policy, WeeklyPolicy):
        return in_range

    cutoff_at = cutoff_instant(policy, shift, for_date)
    if now >= cutoff_at:
        return OrderabilityCheck.rejected(RejectionReason.CUTOFF_PASSED, cutoff_at)
    return OrderabilityCheck.ok(cutoff_at)


def minutes_until_cutoff(now: datetime, shift: ShiftTimes, for_date: date, policy: CutoffPolicy) -> int:
    if isinstance(policy, WeeklyPolicy):
        deadline = weekly_cutoff_instant(now, policy)
    else:
        deadline = cutoff_instant(policy, shift, for_date)
    return max(0, int((deadline - now).total_seconds() // 60))


def orderable_dates(now: datetime, policy: CutoffPolicy) -> list[date]:
    """Calendar dates a client may currently pick, in ascending order."""
    today = now.date()
    if isinstance(policy, PerShiftPolicy):
        return [add_days(today, offset) for offset in range(policy.max_order_days_ahead + 1)]

    window_start = weekly_window_start(now, policy)
    dates: list[date] = []
    for week in range(policy.max_weeks_ahead):
        monday = add_days(window_start, 7 * week)
        for weekday in policy.orderable_weekdays:
            dates.append(add_days(monday, days_from_monday(weekday)))
    return sorted(dates)
