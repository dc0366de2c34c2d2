"""HTTP surface tests."""

from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path

from fastapi.testclient import TestClient
from sqlalchemy import create_engine, select
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from canteen.api.deps import get_clock
from canteen.core.config import settings
from canteen.core.security import create_access_token
from canteen.db import session as db_session
from canteen.db.base import Base
from canteen.main import app
from canteen.models import AuditLog, BlacklistEntry, Order, OrderingSetting, Shift, User
from canteen.services.clock import ClockService

FIXED_CLOCK = ClockService("UTC", wall_clock=lambda: datetime(2024, 1, 10, 5, 0, tzinfo=timezone.utc))


def _build_test_engine(db_file: Path) -> Engine:
    return create_engine(
        f"sqlite:///{db_file}",
        connect_args={"check_same_thread": False},
    )


def _prepare_db(tmp_path: Path, monkeypatch) -> sessionmaker:
    engine = _build_test_engine(tmp_path / "api.db")
    testing_session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine)
    monkeypatch.setattr(db_session, "engine", engine)
    monkeypatch.setattr(db_session, "SessionLocal", testing_session_local)
    monkeypatch.setattr(settings, "background_jobs_enabled", False)
    monkeypatch.setitem(app.dependency_overrides, get_clock, lambda: FIXED_CLOCK)

    with testing_session_local() as db:
        db.add(OrderingSetting(id=1, cutoff_days=0, cutoff_hours=6, max_order_days_ahead=7))
        db.add_all(
            [
                User(id=1, external_id="E001", name="Ana", role="USER"),
                User(id=2, external_id="E002", name="Budi", role="USER"),
                User(id=3, external_id="OP01", name="Canteen Desk", role="CANTEEN"),
                User(id=9, external_id="ADM", name="Admin", role="ADMIN"),
                Shift(id=1, name="Lunch", start_time="12:00", end_time="13:00", meal_price=Decimal("25.00")),
                Shift(id=2, name="Breakfast", start_time="07:00", end_time="08:00", meal_price=Decimal("15.00")),
            ]
        )
        db.commit()
    return testing_session_local


def _auth(user_id: int) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token({'sub': str(user_id)})}"}


def test_create_order_and_list_mine(tmp_path: Path, monkeypatch) -> None:
    session_local = _prepare_db(tmp_path, monkeypatch)

    with TestClient(app) as client:
        created = client.post("/api/v1/orders", json={"shift_id": 1, "order_date": "2024-01-10"}, headers=_auth(1))
        mine = client.get("/api/v1/orders/me", headers=_auth(1))
        others = client.get("/api/v1/orders/me", headers=_auth(2))

    assert created.status_code == 201
    body = created.json()
    assert body["status"] == "ORDERED"
    assert body["order_date"] == "2024-01-10"
    assert [order["id"] for order in mine.json()] == [body["id"]]
    assert others.json() == []

    with session_local() as db:
        actions = db.scalars(select(AuditLog.action_type)).all()
        assert actions == ["ORDER_CREATED"]


def test_create_order_rejections_map_to_status_codes(tmp_path: Path, monkeypatch) -> None:
    _prepare_db(tmp_path, monkeypatch)

    with TestClient(app) as client:
        client.post("/api/v1/orders", json={"shift_id": 1, "order_date": "2024-01-11"}, headers=_auth(1))
        duplicate = client.post("/api/v1/orders", json={"shift_id": 1, "order_date": "2024-01-11"}, headers=_auth(1))
        bad_date = client.post("/api/v1/orders", json={"shift_id": 1, "order_date": "next tuesday"}, headers=_auth(1))
        too_late = client.post("/api/v1/orders", json={"shift_id": 2, "order_date": "2024-01-10"}, headers=_auth(2))
        missing_shift = client.post("/api/v1/orders", json={"shift_id": 77, "order_date": "2024-01-10"}, headers=_auth(2))
        too_far = client.post("/api/v1/orders", json={"shift_id": 1, "order_date": "2024-02-10"}, headers=_auth(2))

    assert duplicate.status_code == 409
    assert duplicate.json()["detail"]["reason"] == "DUPLICATE_ORDER"
    assert bad_date.status_code == 400
    assert bad_date.json()["detail"]["reason"] == "INVALID_DATE"
    assert too_late.status_code == 403
    assert too_late.json()["detail"]["reason"] == "CUTOFF_PASSED"
    assert missing_shift.status_code == 404
    assert too_far.status_code == 400
    assert too_far.json()["detail"]["reason"] == "MAX_DAYS_EXCEEDED"


def test_requests_without_token_are_rejected(tmp_path: Path, monkeypatch) -> None:
    _prepare_db(tmp_path, monkeypatch)

    with TestClient(app) as client:
        response = client.get("/api/v1/orders/me")

    assert response.status_code in {401, 403}


def test_blacklisted_user_gets_403(tmp_path: Path, monkeypatch) -> None:
    session_local = _prepare_db(tmp_path, monkeypatch)
    with session_local() as db:
        db.add(BlacklistEntry(user_id=1, reason="manual", start_date=datetime(2024, 1, 1, tzinfo=timezone.utc)))
        db.commit()

    with TestClient(app) as client:
        response = client.post("/api/v1/orders", json={"shift_id": 1, "order_date": "2024-01-10"}, headers=_auth(1))

    assert response.status_code == 403
    assert response.json()["detail"]["reason"] == "BLACKLISTED"


def test_cancel_and_check_in_roles(tmp_path: Path, monkeypatch) -> None:
    _prepare_db(tmp_path, monkeypatch)

    with TestClient(app) as client:
        first = client.post("/api/v1/orders", json={"shift_id": 1, "order_date": "2024-01-10"}, headers=_auth(1)).json()
        second = client.post("/api/v1/orders", json={"shift_id": 1, "order_date": "2024-01-11"}, headers=_auth(1)).json()

        foreign_cancel = client.post(f"/api/v1/orders/{first['id']}/cancel", headers=_auth(2))
        own_cancel = client.post(f"/api/v1/orders/{second['id']}/cancel", json={"reason": "sick"}, headers=_auth(1))
        user_check_in = client.post(f"/api/v1/orders/{first['id']}/check-in", headers=_auth(2))
        early_check_in = client.post(f"/api/v1/orders/{first['id']}/check-in", headers=_auth(3))

    assert foreign_cancel.status_code == 403
    assert own_cancel.status_code == 200
    assert own_cancel.json()["status"] == "CANCELLED"
    assert own_cancel.json()["cancel_reason"] == "sick"
    assert user_check_in.status_code == 403
    assert early_check_in.status_code == 400
    assert early_check_in.json()["detail"]["reason"] == "CHECKIN_TOO_EARLY"


def test_shift_availability(tmp_path: Path, monkeypatch) -> None:
    _prepare_db(tmp_path, monkeypatch)

    with TestClient(app) as client:
        response = client.get("/api/v1/shifts/availability", params={"date": "2024-01-10"}, headers=_auth(1))

    assert response.status_code == 200
    body = response.json()
    shifts = {shift["name"]: shift for shift in body["shifts"]}
    assert shifts["Lunch"]["orderable"] is True
    assert shifts["Lunch"]["minutes_until_cutoff"] == 60
    assert shifts["Breakfast"]["orderable"] is False
    assert shifts["Breakfast"]["reason"] == "CUTOFF_PASSED"
    assert len(body["orderable_dates"]) == 8


def test_settings_update_requires_admin_and_reconciles(tmp_path: Path, monkeypatch) -> None:
    session_local = _prepare_db(tmp_path, monkeypatch)

    with TestClient(app) as client:
        order = client.post("/api/v1/orders", json={"shift_id": 1, "order_date": "2024-01-16"}, headers=_auth(1)).json()
        forbidden = client.put("/api/v1/settings/ordering", json={"max_order_days_ahead": 3}, headers=_auth(1))
        invalid = client.put("/api/v1/settings/ordering", json={"cutoff_hours": 30}, headers=_auth(9))
        updated = client.put("/api/v1/settings/ordering", json={"max_order_days_ahead": 3}, headers=_auth(9))
        current = client.get("/api/v1/settings/ordering", headers=_auth(1))

    assert forbidden.status_code == 403
    assert invalid.status_code == 422
    assert updated.status_code == 200
    assert updated.json()["cancelled_orders"] == 1
    assert current.json()["max_order_days_ahead"] == 3
    with session_local() as db:
        assert db.get(Order, order["id"]).status == "CANCELLED"


def test_blacklist_reset_strikes_and_unblock(tmp_path: Path, monkeypatch) -> None:
    session_local = _prepare_db(tmp_path, monkeypatch)
    with session_local() as db:
        db.get(User, 1).no_show_count = 3
        db.add(BlacklistEntry(user_id=1, reason="Automatic blacklist: 3 no-shows (threshold: 3)", start_date=datetime(2024, 1, 9, tzinfo=timezone.utc)))
        db.add(User(id=4, external_id="E004", name="Dewi", role="USER", no_show_count=3))
        db.add(BlacklistEntry(user_id=4, reason="manual", start_date=datetime(2024, 1, 9, tzinfo=timezone.utc)))
        db.commit()

    with TestClient(app) as client:
        listed = client.get("/api/v1/blacklist", headers=_auth(3))
        forbidden = client.post("/api/v1/blacklist/reset-strikes/1", headers=_auth(3))
        reset = client.post("/api/v1/blacklist/reset-strikes/1", json={"reduce_by": 2}, headers=_auth(9))
        entry_id = next(entry["id"] for entry in listed.json() if entry["user_id"] == 4)
        unblocked = client.post(f"/api/v1/blacklist/{entry_id}/unblock", headers=_auth(9))
        unknown = client.post("/api/v1/blacklist/reset-strikes/404", headers=_auth(9))

    assert listed.status_code == 200
    assert len(listed.json()) == 2
    assert forbidden.status_code == 403
    assert reset.json() == {"user_id": 1, "previous_count": 3, "new_count": 1, "auto_unblocked": True}
    assert unblocked.status_code == 200
    assert unblocked.json()["is_active"] is False
    assert unknown.status_code == 404
    with session_local() as db:
        assert db.get(User, 4).no_show_count == 0


def test_time_info_and_noshow_stats(tmp_path: Path, monkeypatch) -> None:
    _prepare_db(tmp_path, monkeypatch)

    with TestClient(app) as client:
        info = client.get("/api/v1/time", headers=_auth(1))
        stats = client.get("/api/v1/noshow/stats", headers=_auth(3))
        user_stats = client.get("/api/v1/noshow/stats", headers=_auth(1))

    assert info.status_code == 200
    assert info.json()["timezone"] == "UTC"
    assert info.json()["server_time"].startswith("2024-01-10T05:00")
    assert stats.status_code == 200
    assert stats.json()["day"] == "2024-01-10"
    assert stats.json()["total_orders"] == 0
    assert user_stats.status_code == 403
