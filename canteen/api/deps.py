"""Request-scoped access to the long-lived services kept on ``app.state``."""

from fastapi import HTTPException, Request

from canteen.errors import PolicyViolation, RejectionReason
from canteen.services.clock import ClockService, ClockSyncWorker
from canteen.services.effects import AuditSink, Notifier
from canteen.services.noshow_sweeper import NoShowSweeper

REASON_STATUS: dict[RejectionReason, int] = {
    RejectionReason.SHIFT_NOT_FOUND: 404,
    RejectionReason.ORDER_NOT_FOUND: 404,
    RejectionReason.USER_NOT_FOUND: 404,
    RejectionReason.BLACKLISTED: 403,
    RejectionReason.CUTOFF_PASSED: 403,
    RejectionReason.FORBIDDEN: 403,
    RejectionReason.DUPLICATE_ORDER: 409,
    RejectionReason.CONFLICT: 409,
}


def get_clock(request: Request) -> ClockService:
    return request.app.state.clock


def get_notifier(request: Request) -> Notifier:
    return request.app.state.notifier


def get_audit_sink(request: Request) -> AuditSink:
    return request.app.state.audit_sink


def get_sweeper(request: Request) -> NoShowSweeper:
    return request.app.state.sweeper


def get_clock_worker(request: Request) -> ClockSyncWorker:
    return request.app.state.clock_worker


def http_error(exc: PolicyViolation) -> HTTPException:
    """Translate a refused transition into an HTTP error; policy rejections default to 400."""
    body: dict = {"reason": exc.reason.value}
    body.update({key: _jsonable(value) for key, value in exc.detail.items()})
    return HTTPException(status_code=REASON_STATUS.get(exc.reason, 400), detail=body)


def _jsonable(value):
    if hasattr(value, "isoformat"):
        return value.isoformat()
    if isinstance(value, RejectionReason):
        return value.value
    return value
