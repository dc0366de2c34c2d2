"""No-show sweep endpoints."""

import asyncio
from datetime import date

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from canteen.api.deps import get_clock, get_sweeper
from canteen.core.security import require_roles
from canteen.db.session import get_db
from canteen.models.user import User
from canteen.schemas.time import NoShowStatsResponse, SweepResponse
from canteen.services.clock import ClockService
from canteen.services.noshow_sweeper import NoShowSweeper, noshow_stats

router: APIRouter = APIRouter()


@router.post("/run", response_model=SweepResponse)
async def run_sweep(
    current_user: User = Depends(require_roles("ADMIN")),
    sweeper: NoShowSweeper = Depends(get_sweeper),
) -> SweepResponse:
    """Trigger a sweep now; returns ``skipped`` when one is already running."""
    result = await asyncio.to_thread(sweeper.run_once)
    return SweepResponse(
        skipped=result.skipped,
        processed_orders=result.processed_orders,
        new_blacklists=result.new_blacklists,
        affected_users=sorted(result.affected_users),
        failed_orders=result.failed_orders,
        cancelled_orders=result.cancelled_orders,
        expired_blacklists=result.expired_blacklists,
    )


@router.get("/stats", response_model=NoShowStatsResponse)
def read_stats(
    day: date | None = Query(default=None, alias="date"),
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles("ADMIN", "CANTEEN")),
    clock: ClockService = Depends(get_clock),
) -> NoShowStatsResponse:
    stats = noshow_stats(db, day or clock.today())
    return NoShowStatsResponse(
        day=stats.day,
        total_orders=stats.total_orders,
        picked_up=stats.picked_up,
        no_shows=stats.no_shows,
        pending=stats.pending,
        cancelled=stats.cancelled,
        pickup_rate=stats.pickup_rate,
    )
