"""Strike reset, unblock and blacklist invariants."""

from datetime import date, datetime, timedelta, timezone
from pathlib import Path

from sqlalchemy import create_engine, func, select
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from canteen.db.base import Base
from canteen.models import BlacklistEntry, OrderingSetting, User
from canteen.services.blacklist_policy import BlacklistPolicy
from canteen.services.clock import ClockService
from canteen.services.effects import Notify

NOW = datetime(2024, 1, 10, 9, 0, tzinfo=timezone.utc)


def _build_test_engine(db_file: Path) -> Engine:
    return create_engine(
        f"sqlite:///{db_file}",
        connect_args={"check_same_thread": False},
    )


def _clock() -> ClockService:
    return ClockService("UTC", wall_clock=lambda: NOW)


def _prepare_db(tmp_path: Path, *, strikes: int = 3, duration_days: int = 7, no_show_count: int = 0) -> sessionmaker:
    engine = _build_test_engine(tmp_path / "blacklist.db")
    testing_session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine)

    with testing_session_local() as db:
        db.add(OrderingSetting(id=1, blacklist_strikes=strikes, blacklist_duration_days=duration_days))
        db.add(User(id=1, external_id="E001", name="Ana", role="USER", no_show_count=no_show_count))
        db.add(User(id=9, external_id="ADM", name="Admin", role="ADMIN"))
        db.commit()
    return testing_session_local


def _active_count(session_local: sessionmaker, user_id: int) -> int:
    with session_local() as db:
        return db.scalar(
            select(func.count(BlacklistEntry.id)).where(BlacklistEntry.user_id == user_id, BlacklistEntry.is_active.is_(True))
        )


def test_reset_below_threshold_auto_unblocks(tmp_path: Path) -> None:
    session_local = _prepare_db(tmp_path, no_show_count=2)
    with session_local() as db:
        strike = BlacklistPolicy(db, _clock()).record_strike(1)
        assert strike.crossed_threshold
        assert strike.entry_created

        result = BlacklistPolicy(db, _clock()).reset_strikes(1, reduce_by=2, actor=db.get(User, 9))

    assert result.previous_count == 3
    assert result.new_count == 1
    assert result.auto_unblocked
    assert any(isinstance(effect, Notify) and effect.event == "user:unblocked" for effect in result.effects)
    assert _active_count(session_local, 1) == 0


def test_reset_that_stays_at_threshold_keeps_ban(tmp_path: Path) -> None:
    session_local = _prepare_db(tmp_path, no_show_count=4)
    with session_local() as db:
        BlacklistPolicy(db, _clock()).blacklist_user(1, "manual", None)
        result = BlacklistPolicy(db, _clock()).reset_strikes(1, reduce_by=1)

    assert result.new_count == 3
    assert not result.auto_unblocked
    assert _active_count(session_local, 1) == 1


def test_reset_without_amount_clears_all_strikes(tmp_path: Path) -> None:
    session_local = _prepare_db(tmp_path, no_show_count=5)
    with session_local() as db:
        result = BlacklistPolicy(db, _clock()).reset_strikes(1)
        missing = BlacklistPolicy(db, _clock()).reset_strikes(404)

    assert result.new_count == 0
    assert missing is None


def test_manual_unblock_resets_strikes(tmp_path: Path) -> None:
    session_local = _prepare_db(tmp_path, no_show_count=3)
    with session_local() as db:
        entry, effects = BlacklistPolicy(db, _clock()).blacklist_user(1, "manual", None)
        assert effects
        result = BlacklistPolicy(db, _clock()).unblock(entry.id)
        again = BlacklistPolicy(db, _clock()).unblock(entry.id)

    assert result.unblocked
    assert not again.unblocked
    with session_local() as db:
        assert db.get(User, 1).no_show_count == 0
    assert _active_count(session_local, 1) == 0


def test_at_most_one_active_entry(tmp_path: Path) -> None:
    session_local = _prepare_db(tmp_path)
    with session_local() as db:
        first, _ = BlacklistPolicy(db, _clock()).blacklist_user(1, "first", None)
        second, second_effects = BlacklistPolicy(db, _clock()).blacklist_user(1, "second", None)

    assert first is not None
    assert second is None
    assert second_effects == []
    assert _active_count(session_local, 1) == 1


def test_zero_duration_means_indefinite(tmp_path: Path) -> None:
    session_local = _prepare_db(tmp_path, strikes=1, duration_days=0)
    with session_local() as db:
        strike = BlacklistPolicy(db, _clock()).record_strike(1)

        assert strike.entry_created
        assert strike.entry.end_date is None
        assert BlacklistPolicy(db, _clock()).is_blacklisted(1)


def test_expired_entry_is_not_active_and_allows_new_ban(tmp_path: Path) -> None:
    session_local = _prepare_db(tmp_path, strikes=1)
    with session_local() as db:
        db.add(BlacklistEntry(user_id=1, reason="old", start_date=NOW - timedelta(days=10), end_date=NOW - timedelta(days=3)))
        db.commit()
        policy = BlacklistPolicy(db, _clock())

        assert not policy.is_blacklisted(1)
        strike = policy.record_strike(1)

    assert strike.entry_created
    with session_local() as db:
        rows = db.scalars(select(BlacklistEntry).order_by(BlacklistEntry.id)).all()
        assert [row.is_active for row in rows] == [False, True]
        assert rows[1].end_date.date() == date(2024, 1, 17)
