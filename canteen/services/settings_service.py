"""Application settings helpers."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy.orm import Session

from canteen.models.app_setting import AppSetting
from canteen.models.ordering_setting import OrderingSetting

CLOCK_OFFSET_KEY: str = "clock_offset_ms"
CLOCK_LAST_SYNC_KEY: str = "clock_last_sync_at"
CLOCK_TIMEZONE_KEY: str = "clock_timezone"


@dataclass(frozen=True)
class ClockCheckpoint:
    offset_ms: float
    last_sync_at: datetime | None
    timezone_name: str | None


def get_ordering_settings(db: Session, *, commit: bool = True) -> OrderingSetting:
    """Return the singleton settings row, creating it with defaults when missing.

    With ``commit=False`` a missing row is only flushed, so it joins the
    caller's open transaction.
    """
    row: OrderingSetting | None = db.get(OrderingSetting, 1)
    if row is None:
        row = OrderingSetting(id=1)
        db.add(row)
        if not commit:
            db.flush()
            return row
        db.commit()
        db.refresh(row)
    return row


def get_app_values(db: Session, keys: list[str]) -> dict[str, str]:
    rows: list[AppSetting] = db.query(AppSetting).filter(AppSetting.key.in_(keys)).all()
    return {row.key: row.value for row in rows}


def save_app_values(db: Session, values: dict[str, str]) -> None:
    """Upsert key-value settings and commit."""
    for key, value in values.items():
        setting: AppSetting | None = db.query(AppSetting).filter(AppSetting.key == key).first()
        if setting is None:
            setting = AppSetting(key=key, value=value)
            db.add(setting)
        else:
            setting.value = value

    db.commit()


def load_clock_checkpoint(db: Session) -> ClockCheckpoint | None:
    """Read the last persisted clock state, or None when nothing was saved."""
    values = get_app_values(db, [CLOCK_OFFSET_KEY, CLOCK_LAST_SYNC_KEY, CLOCK_TIMEZONE_KEY])
    if not values:
        return None

    try:
        offset_ms = float(values.get(CLOCK_OFFSET_KEY, "0"))
    except ValueError:
        offset_ms = 0.0

    last_sync_at: datetime | None = None
    raw_last_sync = values.get(CLOCK_LAST_SYNC_KEY)
    if raw_last_sync:
        try:
            last_sync_at = datetime.fromisoformat(raw_last_sync)
        except ValueError:
            last_sync_at = None
        if last_sync_at is not None and last_sync_at.tzinfo is None:
            last_sync_at = last_sync_at.replace(tzinfo=timezone.utc)

    return ClockCheckpoint(
        offset_ms=offset_ms,
        last_sync_at=last_sync_at,
        timezone_name=values.get(CLOCK_TIMEZONE_KEY) or None,
    )


def save_clock_checkpoint(db: Session, *, offset_ms: float, last_sync_at: datetime | None) -> None:
    values = {CLOCK_OFFSET_KEY: f"{offset_ms:.0f}"}
    if last_sync_at is not None:
        values[CLOCK_LAST_SYNC_KEY] = last_sync_at.isoformat()
    save_app_values(db, values)


def save_clock_timezone(db: Session, timezone_name: str) -> None:
    save_app_values(db, {CLOCK_TIMEZONE_KEY: timezone_name})
