"""
Change notifications for the public ranking.

Writers publish a Change whenever a priority enters, moves within or
leaves the approved set. Subscribers get every change and are expected to
re-run the full ranked query rather than apply the change themselves.
"""

import threading
from dataclasses import dataclass
from typing import Callable, Dict

import structlog

logger = structlog.get_logger(__name__)

ADDED = "added"
MODIFIED = "modified"
REMOVED = "removed"


@dataclass(frozen=True)
class Change:
    kind: str
    priority_id: str


class Subscription:
    def __init__(self, feed: "PriorityFeed", key: int):
        self._feed = feed
        self._key = key
        self.active = True

    def cancel(self) -> None:
        if self.active:
            self._feed._remove(self._key)
            self.active = False


class PriorityFeed:
    def __init__(self):
        self._lock = threading.Lock()
        self._listeners: Dict[int, Callable[[Change], None]] = {}
        self._next_key = 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._listeners)

    def subscribe(self, callback: Callable[[Change], None]) -> Subscription:
        with self._lock:
            key = self._next_key
            self._next_key += 1
            self._listeners[key] = callback
        logger.debug("feed_subscribed", subscription=key)
        return Subscription(self, key)

    def _remove(self, key: int) -> None:
        with self._lock:
            self._listeners.pop(key, None)
        logger.debug("feed_unsubscribed", subscription=key)

    def publish(self, kind: str, priority_id: str) -> None:
        change = Change(kind, priority_id)
        with self._lock:
            listeners = list(self._listeners.items())
        for key, callback in listeners:
            try:
                callback(change)
            except Exception:
                logger.exception("feed_listener_failed", subscription=key, kind=kind)
