"""Ordering settings schemas."""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator


class OrderingSettingsRead(BaseModel):
    cutoff_mode: str
    cutoff_days: int
    cutoff_hours: int
    max_order_days_ahead: int
    weekly_cutoff_weekday: int
    weekly_cutoff_hour: int
    weekly_cutoff_minute: int
    orderable_weekdays: list[int]
    max_weeks_ahead: int
    blacklist_strikes: int
    blacklist_duration_days: int

    model_config = ConfigDict(from_attributes=True)


class OrderingSettingsUpdate(BaseModel):
    """Partial update; fields left out keep their stored value."""

    cutoff_mode: Literal["per-shift", "weekly"] | None = None
    cutoff_days: int | None = Field(default=None, ge=0, le=30)
    cutoff_hours: int | None = Field(default=None, ge=0, le=23)
    max_order_days_ahead: int | None = Field(default=None, ge=1, le=30)
    weekly_cutoff_weekday: int | None = Field(default=None, ge=0, le=6)
    weekly_cutoff_hour: int | None = Field(default=None, ge=0, le=23)
    weekly_cutoff_minute: int | None = Field(default=None, ge=0, le=59)
    orderable_weekdays: list[int] | None = None
    max_weeks_ahead: int | None = Field(default=None, ge=1, le=4)
    blacklist_strikes: int | None = Field(default=None, ge=1, le=10)
    blacklist_duration_days: int | None = Field(default=None, ge=0, le=365)

    @field_validator("orderable_weekdays")
    @classmethod
    def _check_weekdays(cls, value: list[int] | None) -> list[int] | None:
        if value is None:
            return value
        for day in value:
            if day < 0 or day > 6:
                raise ValueError("weekdays must be between 0 (Sunday) and 6 (Saturday)")
        return sorted(set(value))


class OrderingSettingsResponse(BaseModel):
    settings: OrderingSettingsRead
    cancelled_orders: int = 0
