"""Holiday lookup used to block ordering on closed days."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from canteen.models import Holiday


@dataclass(frozen=True)
class HolidayCheck:
    blocked: bool
    name: str | None = None
    shift_specific: bool = False


def is_holiday(db: Session, day: date, shift_id: int | None = None) -> HolidayCheck:
    """Return whether a full-day or shift-specific holiday blocks ``(day, shift_id)``."""
    shift_filter = Holiday.shift_id.is_(None)
    if shift_id is not None:
        shift_filter = or_(Holiday.shift_id.is_(None), Holiday.shift_id == shift_id)

    holiday = db.scalar(
        select(Holiday)
        .where(Holiday.holiday_date == day, Holiday.is_active.is_(True), shift_filter)
        .order_by(Holiday.shift_id.is_(None).desc(), Holiday.id)
        .limit(1)
    )
    if holiday is None:
        return HolidayCheck(blocked=False)
    return HolidayCheck(blocked=True, name=holiday.name, shift_specific=holiday.shift_id is not None)
