"""Order endpoints."""

from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from canteen.api.deps import get_audit_sink, get_clock, get_notifier, http_error
from canteen.core.security import get_current_user
from canteen.db.session import get_db
from canteen.errors import PolicyViolation, RejectionReason, ValidationError
from canteen.models.order import Order
from canteen.models.user import User
from canteen.schemas.order import OrderCancel, OrderCreate, OrderResponse
from canteen.services.clock import ClockService
from canteen.services.effects import AuditSink, Notifier, dispatch_effects
from canteen.services.order_lifecycle import OrderLifecycle, TransitionResult, parse_order_date

router: APIRouter = APIRouter()


def _finish(result: TransitionResult, notifier: Notifier, audit: AuditSink) -> OrderResponse:
    try:
        order = result.unwrap()
    except PolicyViolation as exc:
        raise http_error(exc) from exc
    dispatch_effects(result.effects, notifier, audit)
    return OrderResponse.model_validate(order)


@router.post("", response_model=OrderResponse, status_code=201)
def create_order(
    payload: OrderCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    clock: ClockService = Depends(get_clock),
    notifier: Notifier = Depends(get_notifier),
    audit: AuditSink = Depends(get_audit_sink),
) -> OrderResponse:
    """Reserve a meal slot for the current user."""
    try:
        order_date: date = parse_order_date(payload.order_date, clock.today())
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail={"reason": RejectionReason.INVALID_DATE.value, "message": str(exc)}) from exc

    result = OrderLifecycle(db, clock).create_order(current_user, payload.shift_id, order_date)
    return _finish(result, notifier, audit)


@router.post("/{order_id}/cancel", response_model=OrderResponse)
def cancel_order(
    order_id: int,
    payload: OrderCancel | None = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    clock: ClockService = Depends(get_clock),
    notifier: Notifier = Depends(get_notifier),
    audit: AuditSink = Depends(get_audit_sink),
) -> OrderResponse:
    reason = payload.reason if payload is not None else None
    result = OrderLifecycle(db, clock).cancel_order(order_id, current_user, reason)
    return _finish(result, notifier, audit)


@router.post("/{order_id}/check-in", response_model=OrderResponse)
def check_in_order(
    order_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    clock: ClockService = Depends(get_clock),
    notifier: Notifier = Depends(get_notifier),
    audit: AuditSink = Depends(get_audit_sink),
) -> OrderResponse:
    """Canteen operator confirms the meal was picked up."""
    result = OrderLifecycle(db, clock).check_in(order_id, current_user)
    return _finish(result, notifier, audit)


@router.get("/me", response_model=list[OrderResponse])
def get_my_orders(
    date_from: date | None = Query(default=None),
    date_to: date | None = Query(default=None),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> list[OrderResponse]:
    """Return the current user's orders, newest date first."""
    query = db.query(Order).filter(Order.user_id == current_user.id)
    if date_from is not None:
        query = query.filter(Order.order_date >= date_from)
    if date_to is not None:
        query = query.filter(Order.order_date <= date_to)
    orders: list[Order] = query.order_by(Order.order_date.desc(), Order.id.desc()).all()
    return [OrderResponse.model_validate(order) for order in orders]
