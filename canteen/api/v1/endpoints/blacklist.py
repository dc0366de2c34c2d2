"""Blacklist administration endpoints."""

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import select
from sqlalchemy.orm import Session

from canteen.api.deps import get_audit_sink, get_clock, get_notifier
from canteen.core.security import require_roles
from canteen.db.session import get_db
from canteen.models import BlacklistEntry, User
from canteen.schemas.blacklist import BlacklistCreate, BlacklistEntryRead, ResetStrikesRequest, ResetStrikesResponse
from canteen.services.blacklist_policy import BlacklistPolicy
from canteen.services.clock import ClockService
from canteen.services.effects import AuditSink, Notifier, dispatch_effects
from canteen.services.order_lifecycle import SYSTEM_BLACKLIST, OrderLifecycle

router: APIRouter = APIRouter()


@router.get("", response_model=list[BlacklistEntryRead])
def list_blacklist(
    active_only: bool = Query(default=True),
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles("ADMIN", "CANTEEN")),
) -> list[BlacklistEntryRead]:
    statement = select(BlacklistEntry).order_by(BlacklistEntry.start_date.desc(), BlacklistEntry.id.desc())
    if active_only:
        statement = statement.where(BlacklistEntry.is_active.is_(True))
    return [BlacklistEntryRead.model_validate(entry) for entry in db.scalars(statement)]


@router.post("", response_model=BlacklistEntryRead, status_code=201)
def create_blacklist_entry(
    payload: BlacklistCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles("ADMIN")),
    clock: ClockService = Depends(get_clock),
    notifier: Notifier = Depends(get_notifier),
    audit: AuditSink = Depends(get_audit_sink),
) -> BlacklistEntryRead:
    if db.get(User, payload.user_id) is None:
        raise HTTPException(status_code=404, detail="User not found")

    entry, effects = BlacklistPolicy(db, clock).blacklist_user(payload.user_id, payload.reason, payload.end_date, actor=current_user)
    if entry is None:
        raise HTTPException(status_code=409, detail="User is already blacklisted")

    cancelled = OrderLifecycle(db, clock).cancel_user_orders(payload.user_id, f"User blacklisted: {payload.reason}", SYSTEM_BLACKLIST)
    dispatch_effects([*effects, *cancelled.effects], notifier, audit)
    return BlacklistEntryRead.model_validate(entry)


@router.post("/reset-strikes/{user_id}", response_model=ResetStrikesResponse)
def reset_strikes(
    user_id: int,
    payload: ResetStrikesRequest | None = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles("ADMIN")),
    clock: ClockService = Depends(get_clock),
    notifier: Notifier = Depends(get_notifier),
    audit: AuditSink = Depends(get_audit_sink),
) -> ResetStrikesResponse:
    reduce_by = payload.reduce_by if payload is not None else None
    result = BlacklistPolicy(db, clock).reset_strikes(user_id, reduce_by, actor=current_user)
    if result is None:
        raise HTTPException(status_code=404, detail="User not found")

    dispatch_effects(result.effects, notifier, audit)
    return ResetStrikesResponse(
        user_id=user_id,
        previous_count=result.previous_count,
        new_count=result.new_count,
        auto_unblocked=result.auto_unblocked,
    )


@router.post("/{entry_id}/unblock", response_model=BlacklistEntryRead)
def unblock(
    entry_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles("ADMIN")),
    clock: ClockService = Depends(get_clock),
    notifier: Notifier = Depends(get_notifier),
    audit: AuditSink = Depends(get_audit_sink),
) -> BlacklistEntryRead:
    result = BlacklistPolicy(db, clock).unblock(entry_id, actor=current_user)
    if result.entry is None:
        raise HTTPException(status_code=404, detail="Blacklist entry not found")
    if not result.unblocked:
        raise HTTPException(status_code=409, detail="Blacklist entry is not active")

    dispatch_effects(result.effects, notifier, audit)
    return BlacklistEntryRead.model_validate(result.entry)
