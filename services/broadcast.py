"""In-process fan-out of live events to connected viewers."""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from threading import Lock
from typing import Any, Callable, Deque, List, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BroadcastEvent:
    topic: str
    payload: Any
    published_at: datetime


Subscriber = Callable[[BroadcastEvent], None]


class InMemoryBroadcaster:
    """Publishes events to subscriber callbacks and keeps a short history.

    ``publish`` never raises; a subscriber that fails is logged and skipped.
    """

    def __init__(self, buffer_size: int = 100) -> None:
        self._subscribers: List[Subscriber] = []
        self._recent: Deque[BroadcastEvent] = deque(maxlen=buffer_size)
        self._lock = Lock()

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def publish(self, topic: str, payload: Any) -> None:
        event = BroadcastEvent(topic=topic, payload=payload, published_at=datetime.now(timezone.utc))
        with self._lock:
            self._recent.append(event)
            subscribers = list(self._subscribers)

        for subscriber in subscribers:
            try:
                subscriber(event)
            except Exception:  # noqa: BLE001 - one viewer must not break the rest
                logger.exception("Broadcast subscriber failed", extra={"topic": topic})

    def recent(self, topic: Optional[str] = None, limit: Optional[int] = None) -> List[BroadcastEvent]:
        with self._lock:
            events = [event for event in self._recent if topic is None or event.topic == topic]
        if limit is not None:
            events = events[-limit:] if limit > 0 else []
        return events
