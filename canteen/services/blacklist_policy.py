"""Strike accounting and automatic blacklisting."""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from canteen.models import BlacklistEntry, User
from canteen.services.clock import ClockService
from canteen.services.effects import Audit, Effect, Notify
from canteen.services.settings_service import get_ordering_settings

logger = logging.getLogger(__name__)

_registry_lock = threading.Lock()
_user_locks: dict[int, threading.Lock] = {}


@contextmanager
def user_lock(user_id: int) -> Iterator[None]:
    """Serialize strike and blacklist writes for one user within this process."""
    with _registry_lock:
        lock = _user_locks.setdefault(user_id, threading.Lock())
    with lock:
        yield


def as_utc(value: datetime) -> datetime:
    # SQLite returns naive datetimes for timezone-aware columns.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass
class StrikeResult:
    new_count: int
    crossed_threshold: bool
    entry: BlacklistEntry | None = None
    entry_created: bool = False
    effects: list[Effect] = field(default_factory=list)


@dataclass
class ResetResult:
    previous_count: int
    new_count: int
    auto_unblocked: bool
    effects: list[Effect] = field(default_factory=list)


@dataclass
class UnblockResult:
    unblocked: bool
    entry: BlacklistEntry | None = None
    effects: list[Effect] = field(default_factory=list)


class BlacklistPolicy:
    """Used by the no-show sweeper and by admin strike/unblock actions."""

    def __init__(self, db: Session, clock: ClockService) -> None:
        self.db = db
        self.clock = clock

    def _live_filter(self, now_utc: datetime):
        return or_(BlacklistEntry.end_date.is_(None), BlacklistEntry.end_date > now_utc)

    def active_entry(self, user_id: int) -> BlacklistEntry | None:
        now_utc = self.clock.now_utc()
        return self.db.scalar(
            select(BlacklistEntry)
            .where(
                BlacklistEntry.user_id == user_id,
                BlacklistEntry.is_active.is_(True),
                self._live_filter(now_utc),
            )
            .limit(1)
        )

    def is_blacklisted(self, user_id: int) -> bool:
        return self.active_entry(user_id) is not None

    def _deactivate_expired(self, user_id: int | None = None) -> int:
        now_utc = self.clock.now_utc()
        statement = update(BlacklistEntry).where(
            BlacklistEntry.is_active.is_(True),
            BlacklistEntry.end_date.is_not(None),
            BlacklistEntry.end_date <= now_utc,
        )
        if user_id is not None:
            statement = statement.where(BlacklistEntry.user_id == user_id)
        result = self.db.execute(statement.values(is_active=False).execution_options(synchronize_session=False))
        return result.rowcount or 0

    def expire_blacklists(self) -> int:
        """Deactivate entries whose end date has passed."""
        count = self._deactivate_expired()
        self.db.commit()
        if count:
            logger.info("[BLACKLIST] Expired %d blacklist entries", count)
        return count

    def _end_date_for(self, duration_days: int) -> datetime | None:
        if duration_days <= 0:
            return None
        return self.clock.now_utc() + timedelta(days=duration_days)

    def _create_entry(self, user_id: int, reason: str, end_date: datetime | None) -> BlacklistEntry | None:
        """Create an entry unless one is active; relies on the partial unique index for races."""
        self._deactivate_expired(user_id)
        if self.active_entry(user_id) is not None:
            return None

        entry = BlacklistEntry(
            user_id=user_id,
            reason=reason,
            start_date=self.clock.now_utc(),
            end_date=end_date,
            is_active=True,
        )
        try:
            with self.db.begin_nested():
                self.db.add(entry)
        except IntegrityError:
            logger.warning("[BLACKLIST] Concurrent blacklist entry detected for user_id=%s", user_id)
            return None
        return entry

    def record_strike(self, user_id: int) -> StrikeResult:
        """Increment the no-show count and blacklist once the threshold is reached.

        Commits the session, including any pending changes made by the caller
        (the sweeper relies on this to commit the NO_SHOW transition together
        with the strike).
        """
        with user_lock(user_id):
            self.db.execute(
                update(User)
                .where(User.id == user_id)
                .values(no_show_count=User.no_show_count + 1)
                .execution_options(synchronize_session=False)
            )
            new_count: int = self.db.scalar(select(User.no_show_count).where(User.id == user_id)) or 0
            row = get_ordering_settings(self.db, commit=False)
            threshold = row.blacklist_strikes
            crossed = new_count >= threshold

            result = StrikeResult(new_count=new_count, crossed_threshold=crossed)
            if crossed:
                reason = f"Automatic blacklist: {new_count} no-shows (threshold: {threshold})"
                entry = self._create_entry(user_id, reason, self._end_date_for(row.blacklist_duration_days))
                if entry is not None:
                    result.entry = entry
                    result.entry_created = True
                else:
                    result.entry = self.active_entry(user_id)

            self.db.commit()

        if result.entry_created and result.entry is not None:
            entry = result.entry
            self.db.refresh(entry)
            end_date = entry.end_date.isoformat() if entry.end_date else None
            logger.info("[BLACKLIST] User %s blacklisted until %s", user_id, end_date or "further notice")
            result.effects.extend(
                [
                    Audit(
                        action="USER_BLACKLISTED",
                        entity="Blacklist",
                        entity_id=entry.id,
                        after={"user_id": user_id, "reason": entry.reason, "end_date": end_date},
                        context={"no_show_count": new_count, "threshold": threshold, "processed_by": "System Scheduler"},
                    ),
                    Notify(
                        "user:blacklisted",
                        {"user_id": user_id, "blacklist_id": entry.id, "end_date": end_date, "reason": "auto_noshow"},
                    ),
                ]
            )
        return result

    def reset_strikes(self, user_id: int, reduce_by: int | None = None, actor: User | None = None) -> ResetResult | None:
        """Reduce (or zero) the strike count; auto-unblock when it drops below the threshold.

        Returns None when the user does not exist.
        """
        actor_id = actor.id if actor is not None else None
        with user_lock(user_id):
            user = self.db.get(User, user_id)
            if user is None:
                return None
            previous = user.no_show_count
            new_count = max(0, previous - reduce_by) if reduce_by else 0
            user.no_show_count = new_count

            threshold = get_ordering_settings(self.db, commit=False).blacklist_strikes
            unblocked_entry: BlacklistEntry | None = None
            if new_count < threshold:
                unblocked_entry = self.active_entry(user_id)
                if unblocked_entry is not None:
                    unblocked_entry.is_active = False
                    unblocked_entry.end_date = self.clock.now_utc()
            self.db.commit()

        result = ResetResult(previous_count=previous, new_count=new_count, auto_unblocked=unblocked_entry is not None)
        logger.info("[BLACKLIST] Strikes for user %s: %d -> %d (auto-unblocked=%s)", user_id, previous, new_count, result.auto_unblocked)
        if unblocked_entry is not None:
            result.effects.extend(
                [
                    Audit(
                        action="USER_UNBLOCKED",
                        entity="Blacklist",
                        entity_id=unblocked_entry.id,
                        before={"is_active": True},
                        after={"is_active": False},
                        context={
                            "actor_id": actor_id,
                            "auto_unblock": True,
                            "reason": f"Auto-unblocked: strikes reduced from {previous} to {new_count} (below threshold {threshold})",
                        },
                    ),
                    Notify("user:unblocked", {"user_id": user_id, "auto_unblock": True}),
                ]
            )
        result.effects.extend(
            [
                Audit(
                    action="STRIKES_RESET",
                    entity="User",
                    entity_id=user_id,
                    before={"no_show_count": previous},
                    after={"no_show_count": new_count},
                    context={"actor_id": actor_id, "reduce_by": reduce_by or "all", "auto_unblocked": result.auto_unblocked},
                ),
                Notify(
                    "user:strikes-reset",
                    {"user_id": user_id, "previous_count": previous, "new_count": new_count, "auto_unblocked": result.auto_unblocked},
                ),
            ]
        )
        return result

    def unblock(self, entry_id: int, actor: User | None = None) -> UnblockResult:
        """Manually lift a ban; the user's strike count restarts from zero."""
        entry = self.db.get(BlacklistEntry, entry_id)
        if entry is None or not entry.is_active:
            return UnblockResult(unblocked=False, entry=entry)

        with user_lock(entry.user_id):
            entry.is_active = False
            entry.end_date = self.clock.now_utc()
            user = self.db.get(User, entry.user_id)
            if user is not None:
                user.no_show_count = 0
            self.db.commit()

        return UnblockResult(
            unblocked=True,
            entry=entry,
            effects=[
                Audit(
                    action="USER_UNBLOCKED",
                    entity="Blacklist",
                    entity_id=entry.id,
                    before={"is_active": True},
                    after={"is_active": False},
                    context={"actor_id": actor.id if actor is not None else None},
                ),
                Notify("user:unblocked", {"user_id": entry.user_id, "auto_unblock": False}),
            ],
        )

    def blacklist_user(
        self,
        user_id: int,
        reason: str,
        end_date: datetime | None,
        actor: User | None = None,
    ) -> tuple[BlacklistEntry | None, list[Effect]]:
        """Manual admin blacklist; returns (None, []) when an active entry already exists."""
        with user_lock(user_id):
            entry = self._create_entry(user_id, reason, as_utc(end_date) if end_date is not None else None)
            self.db.commit()
        if entry is None:
            return None, []

        self.db.refresh(entry)
        return entry, [
            Audit(
                action="USER_BLACKLISTED",
                entity="Blacklist",
                entity_id=entry.id,
                after={"user_id": user_id, "reason": reason},
                context={"actor_id": actor.id if actor is not None else None},
            ),
            Notify("user:blacklisted", {"user_id": user_id, "blacklist_id": entry.id, "reason": "manual"}),
        ]
