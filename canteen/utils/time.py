"""Calendar arithmetic for shifts, weeks and HH:MM wall-clock values.

All datetimes here are naive and expressed in the configured local timezone;
the clock service is responsible for producing such values.
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta
from typing import Protocol


class ShiftTimes(Protocol):
    start_time: str
    end_time: str


def parse_hhmm(value: str | time) -> time:
    """Parse time from HH:MM format string."""
    if isinstance(value, time):
        return value.replace(second=0, microsecond=0)
    parsed: time = time.fromisoformat(value)
    return time(hour=parsed.hour, minute=parsed.minute)


def add_days(value: date, days: int) -> date:
    return value + timedelta(days=days)


def weekday_of(value: date) -> int:
    """Return weekday number with 0=Sunday .. 6=Saturday."""
    return (value.weekday() + 1) % 7


def days_from_monday(weekday: int) -> int:
    """Offset of a Sunday-based weekday number from the Monday week start."""
    return 6 if weekday == 0 else weekday - 1


def week_start(value: date | datetime) -> date:
    """Return the Monday of the week containing ``value``."""
    day: date = value.date() if isinstance(value, datetime) else value
    return day - timedelta(days=day.weekday())


def at_time(day: date, value: time) -> datetime:
    return datetime.combine(day, value)


def is_overnight(start: str | time, end: str | time) -> bool:
    """Return True when the shift ends on the next calendar day."""
    return parse_hhmm(end) <= parse_hhmm(start)


def shift_start_at(day: date, shift: ShiftTimes) -> datetime:
    return at_time(day, parse_hhmm(shift.start_time))


def shift_end_at(day: date, shift: ShiftTimes) -> datetime:
    """Return the concrete end instant, rolling overnight shifts to ``day + 1``."""
    end: datetime = at_time(day, parse_hhmm(shift.end_time))
    if is_overnight(shift.start_time, shift.end_time):
        end += timedelta(days=1)
    return end


def break_window_at(day: date, shift: ShiftTimes) -> tuple[datetime, datetime] | None:
    """Return the concrete break window for ``day`` or None when not configured.

    A break starting before the shift start belongs to the next day (overnight
    shifts), and a break end not after its start rolls forward one more day.
    """
    break_start_raw = getattr(shift, "break_start_time", None)
    break_end_raw = getattr(shift, "break_end_time", None)
    if not break_start_raw or not break_end_raw:
        return None

    shift_start = shift_start_at(day, shift)
    break_start = at_time(day, parse_hhmm(break_start_raw))
    break_end = at_time(day, parse_hhmm(break_end_raw))
    if break_start < shift_start:
        break_start += timedelta(days=1)
    while break_end <= break_start:
        break_end += timedelta(days=1)
    return break_start, break_end
