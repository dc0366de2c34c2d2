"""No-show sweep and strike accounting tests."""

import asyncio
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path

from sqlalchemy import create_engine, func, select
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from canteen.db.base import Base
from canteen.models import AuditLog, BlacklistEntry, Order, OrderingSetting, Shift, User
from canteen.services import noshow_sweeper as sweeper_module
from canteen.services.audit_service import DatabaseAuditSink
from canteen.services.blacklist_policy import as_utc
from canteen.services.clock import ClockService
from canteen.services.noshow_sweeper import NoShowScheduler, NoShowSweeper, noshow_stats
from canteen.services.notifications import NotificationHub
from canteen.services.order_lifecycle import OrderLifecycle
from canteen.services.settings_service import get_ordering_settings

TODAY = date(2024, 1, 10)


def _build_test_engine(db_file: Path) -> Engine:
    return create_engine(
        f"sqlite:///{db_file}",
        connect_args={"check_same_thread": False},
    )


def _clock_at(hour: int, minute: int = 0) -> ClockService:
    instant = datetime(2024, 1, 10, hour, minute, tzinfo=timezone.utc)
    return ClockService("UTC", wall_clock=lambda: instant)


def _prepare_db(tmp_path: Path, strikes: int = 3, duration_days: int = 7) -> sessionmaker:
    engine = _build_test_engine(tmp_path / "noshow.db")
    testing_session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine)

    with testing_session_local() as db:
        db.add(OrderingSetting(id=1, blacklist_strikes=strikes, blacklist_duration_days=duration_days))
        db.add_all(
            [
                User(id=1, external_id="E001", name="Ana", role="USER"),
                User(id=2, external_id="E002", name="Budi", role="USER"),
                User(id=3, external_id="E003", name="Citra", role="USER"),
                Shift(id=1, name="Lunch", start_time="12:00", end_time="13:00", meal_price=Decimal("25.00")),
                Shift(id=2, name="Night", start_time="22:00", end_time="06:00", meal_price=Decimal("30.00")),
            ]
        )
        db.commit()
    return testing_session_local


def _add_order(session_local: sessionmaker, user_id: int, shift_id: int, order_date: date, status: str = "ORDERED") -> int:
    with session_local() as db:
        order = Order(user_id=user_id, shift_id=shift_id, order_date=order_date, status=status, meal_price=Decimal("25.00"))
        db.add(order)
        db.commit()
        return order.id


def _status(session_local: sessionmaker, order_id: int) -> str:
    with session_local() as db:
        return db.scalar(select(Order.status).where(Order.id == order_id))


def _strikes(session_local: sessionmaker, user_id: int) -> int:
    with session_local() as db:
        return db.scalar(select(User.no_show_count).where(User.id == user_id))


def test_sweep_marks_ended_shifts_only(tmp_path: Path) -> None:
    session_local = _prepare_db(tmp_path)
    ended = _add_order(session_local, 1, 1, TODAY)
    picked_up = _add_order(session_local, 2, 1, TODAY, status="PICKED_UP")
    tonight = _add_order(session_local, 3, 2, TODAY)

    result = NoShowSweeper(session_local, _clock_at(14)).run_once()

    assert result.processed_orders == 1
    assert result.affected_users == {1}
    assert _status(session_local, ended) == "NO_SHOW"
    assert _status(session_local, picked_up) == "PICKED_UP"
    assert _status(session_local, tonight) == "ORDERED"
    assert _strikes(session_local, 1) == 1
    assert _strikes(session_local, 2) == 0


def test_sweep_is_idempotent(tmp_path: Path) -> None:
    session_local = _prepare_db(tmp_path)
    _add_order(session_local, 1, 1, TODAY)
    _add_order(session_local, 2, 1, TODAY)
    sweeper = NoShowSweeper(session_local, _clock_at(14))

    first = sweeper.run_once()
    second = sweeper.run_once()

    assert first.processed_orders == 2
    assert second.processed_orders == 0
    assert _strikes(session_local, 1) == 1
    assert _strikes(session_local, 2) == 1


def test_overnight_shift_from_yesterday_is_swept(tmp_path: Path) -> None:
    session_local = _prepare_db(tmp_path)
    last_night = _add_order(session_local, 1, 2, TODAY - timedelta(days=1))
    tonight = _add_order(session_local, 2, 2, TODAY)
    lunch = _add_order(session_local, 3, 1, TODAY)

    result = NoShowSweeper(session_local, _clock_at(6, 30)).run_once()

    assert result.processed_orders == 1
    assert _status(session_local, last_night) == "NO_SHOW"
    assert _status(session_local, tonight) == "ORDERED"
    assert _status(session_local, lunch) == "ORDERED"


def test_third_strike_blacklists_once_and_cancels_pending_orders(tmp_path: Path) -> None:
    session_local = _prepare_db(tmp_path, strikes=3, duration_days=7)
    with session_local() as db:
        db.get(User, 1).no_show_count = 2
        db.commit()
    missed = _add_order(session_local, 1, 1, TODAY)
    upcoming = _add_order(session_local, 1, 1, TODAY + timedelta(days=2))
    clock = _clock_at(14)

    result = NoShowSweeper(session_local, clock).run_once()

    assert result.new_blacklists == 1
    assert result.cancelled_orders == 1
    assert _status(session_local, missed) == "NO_SHOW"
    assert _status(session_local, upcoming) == "CANCELLED"
    with session_local() as db:
        entries = db.scalars(select(BlacklistEntry).where(BlacklistEntry.user_id == 1)).all()
        assert len(entries) == 1
        assert entries[0].is_active
        assert as_utc(entries[0].end_date) == clock.now_utc() + timedelta(days=7)
        assert entries[0].reason == "Automatic blacklist: 3 no-shows (threshold: 3)"
        assert db.get(Order, upcoming).cancelled_by == "System (Blacklist)"

    # A fourth no-show while still blacklisted adds a strike but no new entry.
    _add_order(session_local, 1, 2, TODAY - timedelta(days=1))
    fourth = NoShowSweeper(session_local, _clock_at(14)).run_once()

    assert fourth.processed_orders == 1
    assert fourth.new_blacklists == 0
    assert _strikes(session_local, 1) == 4
    with session_local() as db:
        active = db.scalar(
            select(func.count(BlacklistEntry.id)).where(BlacklistEntry.user_id == 1, BlacklistEntry.is_active.is_(True))
        )
        assert active == 1


def test_failure_on_one_order_does_not_stop_the_batch(tmp_path: Path, monkeypatch) -> None:
    session_local = _prepare_db(tmp_path)
    broken = _add_order(session_local, 1, 1, TODAY)
    healthy = _add_order(session_local, 2, 1, TODAY)
    original = sweeper_module.BlacklistPolicy.record_strike

    def flaky_record_strike(self, user_id: int):
        if user_id == 1:
            raise RuntimeError("database hiccup")
        return original(self, user_id)

    monkeypatch.setattr(sweeper_module.BlacklistPolicy, "record_strike", flaky_record_strike)

    result = NoShowSweeper(session_local, _clock_at(14)).run_once()

    assert result.failed_orders == [broken]
    assert result.processed_orders == 1
    assert _status(session_local, broken) == "ORDERED"
    assert _status(session_local, healthy) == "NO_SHOW"
    assert _strikes(session_local, 1) == 0


def test_overlapping_run_is_skipped(tmp_path: Path) -> None:
    session_local = _prepare_db(tmp_path)
    sweeper = NoShowSweeper(session_local, _clock_at(14))

    sweeper._guard.acquire()
    try:
        result = sweeper.run_once()
    finally:
        sweeper._guard.release()

    assert result.skipped
    assert result.processed_orders == 0


def test_expired_blacklists_are_released_on_each_tick(tmp_path: Path) -> None:
    session_local = _prepare_db(tmp_path)
    with session_local() as db:
        db.add(
            BlacklistEntry(
                user_id=1,
                reason="old",
                start_date=datetime(2024, 1, 1, tzinfo=timezone.utc),
                end_date=datetime(2024, 1, 8, tzinfo=timezone.utc),
            )
        )
        db.commit()

    result = NoShowSweeper(session_local, _clock_at(14)).run_once()

    assert result.expired_blacklists == 1
    with session_local() as db:
        assert db.scalar(select(BlacklistEntry.is_active)) is False


def test_effects_reach_notifier_and_audit_log(tmp_path: Path) -> None:
    session_local = _prepare_db(tmp_path)
    _add_order(session_local, 1, 1, TODAY)
    hub = NotificationHub()
    events: list[str] = []
    hub.subscribe(lambda event, payload: events.append(event))

    NoShowSweeper(session_local, _clock_at(14), notifier=hub, audit=DatabaseAuditSink(session_local)).run_once()

    assert "order:noshow" in events
    with session_local() as db:
        actions = db.scalars(select(AuditLog.action_type)).all()
        assert "ORDER_NOSHOW" in actions
        log = db.scalar(select(AuditLog).where(AuditLog.action_type == "ORDER_NOSHOW"))
        assert log.actor_identifier == "System Scheduler"


def test_noshow_stats_counts_by_status(tmp_path: Path) -> None:
    session_local = _prepare_db(tmp_path)
    _add_order(session_local, 1, 1, TODAY, status="PICKED_UP")
    _add_order(session_local, 2, 1, TODAY, status="NO_SHOW")
    _add_order(session_local, 3, 2, TODAY)

    with session_local() as db:
        stats = noshow_stats(db, TODAY)

    assert stats.total_orders == 3
    assert (stats.picked_up, stats.no_shows, stats.pending, stats.cancelled) == (1, 1, 1, 0)
    assert stats.pickup_rate == 50.0


def test_scheduler_fires_at_grace_minute() -> None:
    scheduler = NoShowScheduler(sweeper=None, clock=_clock_at(14), grace_minutes=5)

    assert scheduler.next_run_at(datetime(2024, 1, 10, 14, 2)) == datetime(2024, 1, 10, 14, 5)
    assert scheduler.next_run_at(datetime(2024, 1, 10, 14, 5)) == datetime(2024, 1, 10, 15, 5)
    assert scheduler.next_run_at(datetime(2024, 1, 10, 23, 30)) == datetime(2024, 1, 11, 0, 5)


def test_shift_with_unreadable_times_does_not_stop_the_sweep(tmp_path: Path) -> None:
    session_local = _prepare_db(tmp_path)
    with session_local() as db:
        db.add(Shift(id=3, name="Breakfast", start_time="7am", end_time="8am", meal_price=Decimal("15.00")))
        db.commit()
    stuck = _add_order(session_local, 1, 3, TODAY)
    lunch = _add_order(session_local, 2, 1, TODAY)

    result = NoShowSweeper(session_local, _clock_at(14)).run_once()

    assert result.processed_orders == 1
    assert _status(session_local, lunch) == "NO_SHOW"
    assert _status(session_local, stuck) == "ORDERED"
    assert _strikes(session_local, 2) == 1


class _ExplodingSweeper:
    def __init__(self) -> None:
        self.calls = 0

    def run_once(self):
        self.calls += 1
        raise ValueError("Invalid isoformat string: '7am'")


def test_scheduler_keeps_running_after_failed_sweep(monkeypatch) -> None:
    sweeper = _ExplodingSweeper()
    scheduler = NoShowScheduler(sweeper=sweeper, clock=_clock_at(14), grace_minutes=5)
    monkeypatch.setattr(scheduler, "next_run_at", lambda now: now)

    async def scenario() -> bool:
        await scheduler.start()
        await asyncio.sleep(1.3)
        alive = not scheduler._task.done()
        await scheduler.stop()
        return alive

    assert asyncio.run(scenario())
    assert sweeper.calls >= 1


def test_first_sweep_on_fresh_settings_keeps_noshow_and_strike_together(tmp_path: Path) -> None:
    session_local = _prepare_db(tmp_path)
    with session_local() as db:
        db.delete(db.get(OrderingSetting, 1))
        db.commit()
    order_id = _add_order(session_local, 1, 1, TODAY)
    clock = _clock_at(14)

    with session_local() as db:
        assert OrderLifecycle(db, clock).mark_no_show(order_id, commit=False).ok
        assert get_ordering_settings(db, commit=False).blacklist_strikes == 3
        db.rollback()

    assert _status(session_local, order_id) == "ORDERED"
    with session_local() as db:
        assert db.get(OrderingSetting, 1) is None

    result = NoShowSweeper(session_local, clock).run_once()

    assert result.processed_orders == 1
    assert _status(session_local, order_id) == "NO_SHOW"
    assert _strikes(session_local, 1) == 1
    with session_local() as db:
        assert db.get(OrderingSetting, 1) is not None
