"""Order API schemas."""

from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field


class OrderCreate(BaseModel):
    """Reserve one meal slot."""

    shift_id: int
    order_date: str = Field(description="Calendar date in YYYY-MM-DD")


class OrderCancel(BaseModel):
    reason: str | None = Field(default=None, max_length=500)


class OrderResponse(BaseModel):
    """Serialized order."""

    id: int
    user_id: int
    shift_id: int
    order_date: date
    status: str
    meal_price: Decimal
    created_at: datetime
    check_in_time: datetime | None = None
    cancel_reason: str | None = None
    cancelled_by: str | None = None

    model_config = ConfigDict(from_attributes=True)


class ShiftAvailabilityResponse(BaseModel):
    """Shift listing entry with the cutoff verdict for the requested date."""

    shift_id: int
    name: str
    start_time: str
    end_time: str
    meal_price: Decimal
    orderable: bool
    reason: str | None = None
    cutoff_at: datetime | None = None
    minutes_until_cutoff: int
    holiday_name: str | None = None


class ShiftListResponse(BaseModel):
    order_date: date
    server_time: datetime
    orderable_dates: list[date]
    shifts: list[ShiftAvailabilityResponse]
