"""Admin updates to the ordering policy row."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy.orm import Session

from canteen.errors import ValidationError
from canteen.models import OrderingSetting, User
from canteen.schemas.settings import OrderingSettingsRead, OrderingSettingsUpdate
from canteen.services.clock import ClockService
from canteen.services.cutoff_policy import format_weekday_csv, parse_weekday_csv
from canteen.services.effects import Audit, Effect, Notify
from canteen.services.order_lifecycle import OrderLifecycle
from canteen.services.settings_service import get_ordering_settings
from canteen.utils.time import add_days

logger = logging.getLogger(__name__)


@dataclass
class SettingsUpdateResult:
    row: OrderingSetting
    cancelled_orders: int = 0
    effects: list[Effect] = field(default_factory=list)


def serialize_ordering_settings(row: OrderingSetting) -> OrderingSettingsRead:
    return OrderingSettingsRead(
        cutoff_mode=row.cutoff_mode,
        cutoff_days=row.cutoff_days,
        cutoff_hours=row.cutoff_hours,
        max_order_days_ahead=row.max_order_days_ahead,
        weekly_cutoff_weekday=row.weekly_cutoff_weekday,
        weekly_cutoff_hour=row.weekly_cutoff_hour,
        weekly_cutoff_minute=row.weekly_cutoff_minute,
        orderable_weekdays=sorted(parse_weekday_csv(row.orderable_weekdays)),
        max_weeks_ahead=row.max_weeks_ahead,
        blacklist_strikes=row.blacklist_strikes,
        blacklist_duration_days=row.blacklist_duration_days,
    )


def update_ordering_settings(
    db: Session,
    clock: ClockService,
    changes: OrderingSettingsUpdate,
    actor: User | None = None,
) -> SettingsUpdateResult:
    """Apply a partial settings update.

    When ``max_order_days_ahead`` shrinks in per-shift mode, ORDERED orders
    beyond the new horizon are cancelled once, right after the update commits.
    """
    row = get_ordering_settings(db)
    before = serialize_ordering_settings(row).model_dump()
    values: dict[str, Any] = changes.model_dump(exclude_unset=True, exclude_none=True)

    if "orderable_weekdays" in values:
        values["orderable_weekdays"] = format_weekday_csv(values["orderable_weekdays"])

    mode = values.get("cutoff_mode", row.cutoff_mode)
    weekdays = values.get("orderable_weekdays", row.orderable_weekdays)
    if mode == "weekly" and not parse_weekday_csv(weekdays):
        raise ValidationError("Weekly mode needs at least one orderable weekday")

    previous_max_days = row.max_order_days_ahead
    for key, value in values.items():
        setattr(row, key, value)
    db.commit()
    db.refresh(row)

    after = serialize_ordering_settings(row).model_dump()
    result = SettingsUpdateResult(row=row)
    result.effects.extend(
        [
            Audit(
                "ORDERING_SETTINGS_UPDATED",
                "OrderingSetting",
                row.id,
                before=before,
                after=after,
                context={"actor_id": actor.id if actor is not None else None},
            ),
            Notify("settings:updated", {"settings": after}),
        ]
    )

    if row.cutoff_mode == "per-shift" and row.max_order_days_ahead < previous_max_days:
        boundary = add_days(clock.today(), row.max_order_days_ahead)
        reason = f"Max order days reduced from {previous_max_days} to {row.max_order_days_ahead}"
        cancelled = OrderLifecycle(db, clock).cancel_orders_beyond_date(boundary, reason)
        result.cancelled_orders = cancelled.cancelled_count
        result.effects.extend(cancelled.effects)
        logger.info(
            "[SETTINGS] max_order_days_ahead %d -> %d, cancelled %d orders beyond %s",
            previous_max_days,
            row.max_order_days_ahead,
            cancelled.cancelled_count,
            boundary,
        )

    return result
