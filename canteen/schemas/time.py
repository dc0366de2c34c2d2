"""Clock and no-show sweep schemas."""

from datetime import date, datetime

from pydantic import BaseModel, Field


class TimeInfoResponse(BaseModel):
    server_time: datetime
    utc_time: datetime
    timezone: str
    offset_ms: float
    last_sync_at: datetime | None = None


class SyncResponse(BaseModel):
    success: bool
    offset_ms: float
    source: str | None = None
    error: str | None = None


class TimezoneUpdate(BaseModel):
    timezone: str = Field(min_length=1, max_length=64)


class SweepResponse(BaseModel):
    skipped: bool
    processed_orders: int
    new_blacklists: int
    affected_users: list[int]
    failed_orders: list[int]
    cancelled_orders: int
    expired_blacklists: int


class NoShowStatsResponse(BaseModel):
    day: date
    total_orders: int
    picked_up: int
    no_shows: int
    pending: int
    cancelled: int
    pickup_rate: float
