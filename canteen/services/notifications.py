"""In-process notification hub for real-time client updates."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)

Subscriber = Callable[[str, dict[str, Any]], None]


class NotificationHub:
    """Fire-and-forget broadcaster; transports subscribe with a callback."""

    def __init__(self) -> None:
        self._subscribers: list[Subscriber] = []
        self._lock = threading.Lock()

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        with self._lock:
            self._subscribers.append(callback)

        def _unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return _unsubscribe

    def emit(self, event: str, payload: dict[str, Any]) -> None:
        with self._lock:
            subscribers = list(self._subscribers)
        logger.debug("[NOTIFY] %s -> %d subscriber(s)", event, len(subscribers))
        for callback in subscribers:
            try:
                callback(event, payload)
            except Exception:
                logger.exception("[NOTIFY] Subscriber failed for %s", event)
