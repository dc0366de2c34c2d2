"""Server clock endpoints."""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from canteen.api.deps import get_clock, get_clock_worker
from canteen.core.security import get_current_user, require_roles
from canteen.db.session import get_db
from canteen.models.user import User
from canteen.schemas.time import SyncResponse, TimeInfoResponse, TimezoneUpdate
from canteen.services.clock import ClockService, ClockSyncWorker
from canteen.services.settings_service import save_clock_timezone

router: APIRouter = APIRouter()


def _time_info(clock: ClockService) -> TimeInfoResponse:
    return TimeInfoResponse(
        server_time=clock.now(),
        utc_time=clock.now_utc(),
        timezone=clock.timezone_name,
        offset_ms=clock.offset_ms,
        last_sync_at=clock.last_sync_at,
    )


@router.get("", response_model=TimeInfoResponse)
def read_time(
    current_user: User = Depends(get_current_user),
    clock: ClockService = Depends(get_clock),
) -> TimeInfoResponse:
    return _time_info(clock)


@router.post("/sync", response_model=SyncResponse)
async def force_sync(
    current_user: User = Depends(require_roles("ADMIN")),
    worker: ClockSyncWorker = Depends(get_clock_worker),
) -> SyncResponse:
    """Resynchronize immediately; failures keep the previous offset."""
    result = await worker.sync_now()
    return SyncResponse(success=result.success, offset_ms=result.offset_ms, source=result.source, error=result.error)


@router.put("/timezone", response_model=TimeInfoResponse)
def update_timezone(
    payload: TimezoneUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles("ADMIN")),
    clock: ClockService = Depends(get_clock),
) -> TimeInfoResponse:
    clock.set_timezone(payload.timezone)
    save_clock_timezone(db, clock.timezone_name)
    return _time_info(clock)
