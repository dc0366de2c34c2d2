"""Ordering settings update and reconciliation tests."""

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path

import pydantic
import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from canteen.db.base import Base
from canteen.errors import ValidationError
from canteen.models import Order, OrderingSetting, Shift, User
from canteen.schemas.settings import OrderingSettingsUpdate
from canteen.services.clock import ClockService
from canteen.services.policy_settings import update_ordering_settings
from canteen.services.settings_service import get_ordering_settings

TODAY = date(2024, 1, 10)


def _build_test_engine(db_file: Path) -> Engine:
    return create_engine(
        f"sqlite:///{db_file}",
        connect_args={"check_same_thread": False},
    )


def _clock() -> ClockService:
    return ClockService("UTC", wall_clock=lambda: datetime(2024, 1, 10, 8, 0, tzinfo=timezone.utc))


def _prepare_db(tmp_path: Path, max_days: int = 14) -> sessionmaker:
    engine = _build_test_engine(tmp_path / "settings.db")
    testing_session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine)

    with testing_session_local() as db:
        db.add(OrderingSetting(id=1, max_order_days_ahead=max_days))
        db.add(User(id=1, external_id="E001", name="Ana", role="USER"))
        db.add(User(id=9, external_id="ADM", name="Admin", role="ADMIN"))
        db.add(Shift(id=1, name="Lunch", start_time="12:00", end_time="13:00", meal_price=Decimal("25.00")))
        db.commit()
    return testing_session_local


def _seed_orders(session_local: sessionmaker, offsets: list[int]) -> dict[int, int]:
    ids: dict[int, int] = {}
    with session_local() as db:
        for offset in offsets:
            order = Order(user_id=1, shift_id=1, order_date=TODAY + timedelta(days=offset), meal_price=Decimal("25.00"))
            db.add(order)
            db.flush()
            ids[offset] = order.id
        db.commit()
    return ids


def test_shrinking_horizon_cancels_orders_beyond_it(tmp_path: Path) -> None:
    session_local = _prepare_db(tmp_path, max_days=14)
    ids = _seed_orders(session_local, [7, 8, 14])

    with session_local() as db:
        result = update_ordering_settings(db, _clock(), OrderingSettingsUpdate(max_order_days_ahead=7), actor=db.get(User, 9))

    assert result.cancelled_orders == 2
    with session_local() as db:
        statuses = {offset: db.scalar(select(Order.status).where(Order.id == order_id)) for offset, order_id in ids.items()}
        assert statuses == {7: "ORDERED", 8: "CANCELLED", 14: "CANCELLED"}
        cancelled = db.get(Order, ids[14])
        assert cancelled.cancelled_by == "System (Policy Change)"
        assert cancelled.cancel_reason == "Max order days reduced from 14 to 7"


def test_growing_horizon_cancels_nothing(tmp_path: Path) -> None:
    session_local = _prepare_db(tmp_path, max_days=7)
    _seed_orders(session_local, [7])

    with session_local() as db:
        result = update_ordering_settings(db, _clock(), OrderingSettingsUpdate(max_order_days_ahead=10))
        assert get_ordering_settings(db).max_order_days_ahead == 10

    assert result.cancelled_orders == 0


def test_weekly_mode_does_not_reconcile(tmp_path: Path) -> None:
    session_local = _prepare_db(tmp_path, max_days=14)
    ids = _seed_orders(session_local, [12])

    with session_local() as db:
        result = update_ordering_settings(
            db, _clock(), OrderingSettingsUpdate(cutoff_mode="weekly", max_order_days_ahead=3, orderable_weekdays=[5, 1, 1])
        )
        row = get_ordering_settings(db)
        assert row.orderable_weekdays == "1,5"
        assert row.cutoff_mode == "weekly"

    assert result.cancelled_orders == 0
    with session_local() as db:
        assert db.get(Order, ids[12]).status == "ORDERED"


def test_weekly_mode_requires_orderable_days(tmp_path: Path) -> None:
    session_local = _prepare_db(tmp_path)

    with session_local() as db:
        with pytest.raises(ValidationError):
            update_ordering_settings(db, _clock(), OrderingSettingsUpdate(cutoff_mode="weekly", orderable_weekdays=[]))


def test_out_of_range_values_are_rejected() -> None:
    with pytest.raises(pydantic.ValidationError):
        OrderingSettingsUpdate(cutoff_hours=24)
    with pytest.raises(pydantic.ValidationError):
        OrderingSettingsUpdate(orderable_weekdays=[7])
    with pytest.raises(pydantic.ValidationError):
        OrderingSettingsUpdate(blacklist_strikes=0)
