"""Shift listing with cutoff information."""

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from canteen.api.deps import get_clock
from canteen.core.security import get_current_user
from canteen.db.session import get_db
from canteen.errors import RejectionReason, ValidationError
from canteen.models.user import User
from canteen.schemas.order import ShiftAvailabilityResponse, ShiftListResponse
from canteen.services.clock import ClockService
from canteen.services.cutoff_policy import orderable_dates, policy_from_settings
from canteen.services.order_lifecycle import OrderLifecycle, parse_order_date
from canteen.services.settings_service import get_ordering_settings

router: APIRouter = APIRouter()


@router.get("/availability", response_model=ShiftListResponse)
def shift_availability(
    date_value: str | None = Query(default=None, alias="date"),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    clock: ClockService = Depends(get_clock),
) -> ShiftListResponse:
    try:
        for_date = parse_order_date(date_value, clock.today())
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail={"reason": RejectionReason.INVALID_DATE.value, "message": str(exc)}) from exc

    now = clock.now()
    listing = OrderLifecycle(db, clock).shift_availability(for_date)
    return ShiftListResponse(
        order_date=for_date,
        server_time=now,
        orderable_dates=orderable_dates(now, policy_from_settings(get_ordering_settings(db))),
        shifts=[
            ShiftAvailabilityResponse(
                shift_id=entry.shift.id,
                name=entry.shift.name,
                start_time=entry.shift.start_time,
                end_time=entry.shift.end_time,
                meal_price=entry.shift.meal_price,
                orderable=entry.orderable,
                reason=entry.reason.value if entry.reason else None,
                cutoff_at=entry.cutoff_at,
                minutes_until_cutoff=entry.minutes_until_cutoff,
                holiday_name=entry.holiday.name,
            )
            for entry in listing
        ],
    )
