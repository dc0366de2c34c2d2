"""Error taxonomy and rejection reasons for the ordering core."""

from __future__ import annotations

from enum import Enum
from typing import Any


class RejectionReason(str, Enum):
    """Reason codes surfaced verbatim to callers when a transition is refused."""

    INVALID_DATE = "INVALID_DATE"
    SHIFT_NOT_FOUND = "SHIFT_NOT_FOUND"
    ORDER_NOT_FOUND = "ORDER_NOT_FOUND"
    USER_NOT_FOUND = "USER_NOT_FOUND"
    PAST_DATE = "PAST_DATE"
    MAX_DAYS_EXCEEDED = "MAX_DAYS_EXCEEDED"
    CURRENT_OR_PAST_WEEK = "CURRENT_OR_PAST_WEEK"
    WEEKDAY_NOT_ORDERABLE = "WEEKDAY_NOT_ORDERABLE"
    WEEKLY_CUTOFF_PASSED = "WEEKLY_CUTOFF_PASSED"
    MAX_WEEKS_EXCEEDED = "MAX_WEEKS_EXCEEDED"
    SHIFT_INACTIVE = "SHIFT_INACTIVE"
    HOLIDAY = "HOLIDAY"
    CUTOFF_PASSED = "CUTOFF_PASSED"
    BLACKLISTED = "BLACKLISTED"
    DUPLICATE_ORDER = "DUPLICATE_ORDER"
    NOT_ORDERED = "NOT_ORDERED"
    FORBIDDEN = "FORBIDDEN"
    CHECKIN_TOO_EARLY = "CHECKIN_TOO_EARLY"
    CHECKIN_TOO_LATE = "CHECKIN_TOO_LATE"
    SHIFT_NOT_ENDED = "SHIFT_NOT_ENDED"
    CONFLICT = "CONFLICT"


class CanteenError(Exception):
    """Base class for ordering core errors."""


class ValidationError(CanteenError):
    """Malformed input rejected before any state is read."""


class PolicyViolation(CanteenError):
    """An ordering rule refused the request."""

    def __init__(self, reason: RejectionReason, message: str | None = None, detail: dict[str, Any] | None = None) -> None:
        self.reason = reason
        self.detail = detail or {}
        super().__init__(message or reason.value)


class ConflictError(PolicyViolation):
    """A concurrent transition won the race for the same row."""

    def __init__(self, message: str | None = None, detail: dict[str, Any] | None = None) -> None:
        super().__init__(RejectionReason.CONFLICT, message, detail)


class TransientError(CanteenError):
    """Persistence or time source temporarily unavailable."""


class TimeSourceError(TransientError):
    """Raised by a time source that could not produce an offset."""
