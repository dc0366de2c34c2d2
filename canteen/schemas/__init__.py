"""Schema exports."""

from canteen.schemas.blacklist import BlacklistCreate, BlacklistEntryRead, ResetStrikesRequest, ResetStrikesResponse
from canteen.schemas.order import OrderCancel, OrderCreate, OrderResponse, ShiftAvailabilityResponse, ShiftListResponse
from canteen.schemas.settings import OrderingSettingsRead, OrderingSettingsResponse, OrderingSettingsUpdate
from canteen.schemas.time import NoShowStatsResponse, SweepResponse, SyncResponse, TimeInfoResponse, TimezoneUpdate

__all__ = [
    "BlacklistCreate",
    "BlacklistEntryRead",
    "ResetStrikesRequest",
    "ResetStrikesResponse",
    "OrderCancel",
    "OrderCreate",
    "OrderResponse",
    "ShiftAvailabilityResponse",
    "ShiftListResponse",
    "OrderingSettingsRead",
    "OrderingSettingsResponse",
    "OrderingSettingsUpdate",
    "NoShowStatsResponse",
    "SweepResponse",
    "SyncResponse",
    "TimeInfoResponse",
    "TimezoneUpdate",
]
