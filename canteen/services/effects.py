"""Pending side effects returned by lifecycle transitions.

Transitions never talk to the notification or audit collaborators directly;
they return effects which the caller dispatches after the state write commits.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any, Protocol, Union

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Notify:
    event: str
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Audit:
    action: str
    entity: str
    entity_id: int | None = None
    before: dict[str, Any] | None = None
    after: dict[str, Any] | None = None
    context: dict[str, Any] = field(default_factory=dict)


Effect = Union[Notify, Audit]


class Notifier(Protocol):
    def emit(self, event: str, payload: dict[str, Any]) -> None: ...


class AuditSink(Protocol):
    def record(
        self,
        action: str,
        before: dict[str, Any] | None,
        after: dict[str, Any] | None,
        context: dict[str, Any],
    ) -> None: ...


def dispatch_effects(effects: Iterable[Effect], notifier: Notifier | None, audit: AuditSink | None) -> int:
    """Deliver effects; a failing delivery is logged and never propagates.

    Returns the number of effects that failed.
    """
    failures = 0
    for effect in effects:
        try:
            if isinstance(effect, Notify):
                if notifier is not None:
                    notifier.emit(effect.event, effect.payload)
            elif audit is not None:
                context = {"entity": effect.entity, "entity_id": effect.entity_id, **effect.context}
                audit.record(effect.action, effect.before, effect.after, context)
        except Exception:
            failures += 1
            logger.exception("[EFFECTS] Failed to dispatch %r", effect)
    return failures
