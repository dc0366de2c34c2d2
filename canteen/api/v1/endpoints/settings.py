"""Ordering policy settings endpoints (admin)."""

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from canteen.api.deps import get_audit_sink, get_clock, get_notifier
from canteen.core.security import get_current_user, require_roles
from canteen.db.session import get_db
from canteen.errors import ValidationError
from canteen.models.user import User
from canteen.schemas.settings import OrderingSettingsRead, OrderingSettingsResponse, OrderingSettingsUpdate
from canteen.services.clock import ClockService
from canteen.services.effects import AuditSink, Notifier, dispatch_effects
from canteen.services.policy_settings import serialize_ordering_settings, update_ordering_settings
from canteen.services.settings_service import get_ordering_settings

router: APIRouter = APIRouter()


@router.get("/ordering", response_model=OrderingSettingsRead)
def read_ordering_settings(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> OrderingSettingsRead:
    return serialize_ordering_settings(get_ordering_settings(db))


@router.put("/ordering", response_model=OrderingSettingsResponse)
def write_ordering_settings(
    payload: OrderingSettingsUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles("ADMIN")),
    clock: ClockService = Depends(get_clock),
    notifier: Notifier = Depends(get_notifier),
    audit: AuditSink = Depends(get_audit_sink),
) -> OrderingSettingsResponse:
    try:
        result = update_ordering_settings(db, clock, payload, actor=current_user)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    dispatch_effects(result.effects, notifier, audit)
    return OrderingSettingsResponse(
        settings=serialize_ordering_settings(result.row),
        cancelled_orders=result.cancelled_orders,
    )
