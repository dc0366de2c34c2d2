"""FastAPI entrypoint for the canteen meal-slot ordering service."""

from __future__ import annotations

import logging

from fastapi import FastAPI
from sqlalchemy.orm import Session

from canteen.api.v1.api import api_router
from canteen.core.config import settings
from canteen.db import session as db_session
from canteen.db.base import Base
from canteen.services.audit_service import DatabaseAuditSink
from canteen.services.clock import ClockService, ClockSyncWorker, build_default_time_source
from canteen.services.noshow_sweeper import NoShowScheduler, NoShowSweeper
from canteen.services.notifications import NotificationHub
from canteen.services.settings_service import get_ordering_settings

logger = logging.getLogger(__name__)

app = FastAPI(title="Canteen Meal Ordering")
app.include_router(api_router, prefix="/api/v1")


def open_session() -> Session:
    """Session factory resolved at call time so tests can swap the engine."""
    return db_session.SessionLocal()


def configure_logging() -> None:
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


@app.on_event("startup")
async def startup() -> None:
    configure_logging()
    Base.metadata.create_all(bind=db_session.engine)
    with open_session() as db:
        get_ordering_settings(db)

    clock = ClockService()
    notifier = NotificationHub()
    audit_sink = DatabaseAuditSink(open_session)
    sweeper = NoShowSweeper(open_session, clock, notifier=notifier, audit=audit_sink)

    app.state.clock = clock
    app.state.notifier = notifier
    app.state.audit_sink = audit_sink
    app.state.sweeper = sweeper
    app.state.clock_worker = ClockSyncWorker(clock, build_default_time_source(), session_factory=open_session)
    app.state.noshow_scheduler = NoShowScheduler(sweeper, clock)

    if not settings.background_jobs_enabled:
        logger.info("[BOOTSTRAP] Background jobs disabled; clock sync and no-show sweep not scheduled")
        return

    await app.state.clock_worker.start()
    await app.state.noshow_scheduler.start()
    logger.info(
        "[BOOTSTRAP] Clock sync every %ss, no-show sweep at minute %s of each hour (%s)",
        settings.clock_sync_interval_seconds,
        settings.noshow_grace_minutes,
        clock.timezone_name,
    )


@app.on_event("shutdown")
async def shutdown() -> None:
    scheduler: NoShowScheduler | None = getattr(app.state, "noshow_scheduler", None)
    worker: ClockSyncWorker | None = getattr(app.state, "clock_worker", None)
    if scheduler is not None:
        await scheduler.stop()
    if worker is not None:
        await worker.stop()


@app.get("/")
def root() -> dict[str, str]:
    return {"status": "ok", "service": settings.app_name}
