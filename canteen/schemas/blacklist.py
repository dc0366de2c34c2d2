"""Blacklist schemas."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class BlacklistEntryRead(BaseModel):
    id: int
    user_id: int
    reason: str
    start_date: datetime
    end_date: datetime | None = None
    is_active: bool

    model_config = ConfigDict(from_attributes=True)


class BlacklistCreate(BaseModel):
    user_id: int
    reason: str = Field(min_length=1, max_length=500)
    end_date: datetime | None = None


class ResetStrikesRequest(BaseModel):
    reduce_by: int | None = Field(default=None, ge=1)


class ResetStrikesResponse(BaseModel):
    user_id: int
    previous_count: int
    new_count: int
    auto_unblocked: bool
