"""Event bus — broadcasts run and install updates to current subscribers."""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable

logger = logging.getLogger(__name__)

Subscriber = Callable[[Any], None]


class EventBus:
    """Synchronous fan-out of events to whoever is subscribed right now.

    There is no buffering: a subscriber only sees events published while it
    is registered. Consumers that miss events read the authoritative state
    from the store instead (polling path).
    """

    def __init__(self, name: str = "events"):
        self.name = name
        self._subscribers: list[Subscriber] = []
        self._lock = threading.Lock()

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register ``callback``; returns a function that unsubscribes it."""
        with self._lock:
            self._subscribers.append(callback)

        def _unsubscribe() -> None:
            self.unsubscribe(callback)

        return _unsubscribe

    def unsubscribe(self, callback: Subscriber) -> None:
        with self._lock:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def publish(self, event: Any) -> None:
        with self._lock:
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                callback(event)
            except Exception as e:
                # A broken consumer must not break the producer
                logger.warning("%s subscriber %r failed: %s", self.name, callback, e)
