"""Audit log helpers."""

from __future__ import annotations

from typing import Any

from sqlalchemy.orm import Session, sessionmaker

from canteen.models import AuditLog, User

SYSTEM_ACTOR = "System Scheduler"


def log_action(
    db: Session,
    *,
    actor: User | None,
    action_type: str,
    entity: str | None = None,
    entity_id: int | None = None,
    before_snapshot: dict[str, Any] | None = None,
    after_snapshot: dict[str, Any] | None = None,
    context: dict[str, Any] | None = None,
) -> None:
    actor_identifier = SYSTEM_ACTOR
    actor_id = None
    if actor is not None:
        actor_id = actor.id
        actor_identifier = actor.external_id or actor.name

    db.add(
        AuditLog(
            actor_user_id=actor_id,
            actor_identifier=actor_identifier,
            action_type=action_type,
            entity=entity,
            entity_id=entity_id,
            before_snapshot=before_snapshot,
            after_snapshot=after_snapshot,
            context=context,
        )
    )


class DatabaseAuditSink:
    """Audit sink writing each record in its own short session."""

    def __init__(self, session_factory: sessionmaker) -> None:
        self.session_factory = session_factory

    def record(
        self,
        action: str,
        before: dict[str, Any] | None,
        after: dict[str, Any] | None,
        context: dict[str, Any],
    ) -> None:
        context = dict(context)
        actor_id = context.pop("actor_id", None)
        with self.session_factory() as db:
            actor = db.get(User, actor_id) if actor_id is not None else None
            log_action(
                db,
                actor=actor,
                action_type=action,
                entity=context.pop("entity", None),
                entity_id=context.pop("entity_id", None),
                before_snapshot=before,
                after_snapshot=after,
                context=context or None,
            )
            db.commit()
