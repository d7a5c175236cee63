"""Bounded in-memory store of recently broadcast events.

Events are kept for at most ``max_age`` and the store never holds more than
``max_events`` entries after a write. A per-user index keeps
``get_for_user`` proportional to that user's events.
"""

import threading
from collections import defaultdict
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Final

from event_relay.config.logging_config import get_logger
from event_relay.domain.models import BaseEvent, EventStoreStats, utc_now

logger = get_logger(__name__)

DEFAULT_MAX_EVENTS: Final[int] = 1000
DEFAULT_MAX_AGE: Final[timedelta] = timedelta(hours=24)
DEFAULT_USER_LIMIT: Final[int] = 50


class EventStore:
    """Thread-safe event store keyed by event id."""

    def __init__(
        self,
        max_events: int = DEFAULT_MAX_EVENTS,
        max_age: timedelta = DEFAULT_MAX_AGE,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        if max_events <= 0:
            raise ValueError("max_events must be positive")
        self.max_events = max_events
        self.max_age = max_age
        self._clock = clock
        self._events: dict[str, BaseEvent] = {}
        self._by_user: dict[str, set[str]] = defaultdict(set)
        self._lock = threading.RLock()

    def store(self, event: BaseEvent) -> None:
        """Insert or replace an event; triggers cleanup when over capacity."""
        with self._lock:
            previous = self._events.get(event.id)
            if previous is not None and previous.user_id != event.user_id:
                self._unindex(previous)
            self._events[event.id] = event
            self._by_user[event.user_id].add(event.id)

            if len(self._events) > self.max_events:
                self.cleanup()

        logger.debug("event_stored", event_id=event.id, user_id=event.user_id)

    def get(self, event_id: str) -> BaseEvent | None:
        with self._lock:
            return self._events.get(event_id)

    def get_for_user(
        self, user_id: str, limit: int = DEFAULT_USER_LIMIT
    ) -> list[BaseEvent]:
        """Return the user's events, newest first, at most ``limit``."""
        with self._lock:
            events = [self._events[event_id] for event_id in self._by_user.get(user_id, ())]
        events.sort(key=lambda e: e.timestamp, reverse=True)
        return events[: max(limit, 0)]

    def cleanup(self) -> int:
        """Drop expired events, then the oldest ones while over capacity.

        Returns:
            Number of events removed
        """
        cutoff = self._clock() - self.max_age
        with self._lock:
            expired = [e for e in self._events.values() if e.timestamp < cutoff]
            for event in expired:
                self._remove(event)

            evicted = 0
            overflow = len(self._events) - self.max_events
            if overflow > 0:
                oldest = sorted(self._events.values(), key=lambda e: e.timestamp)
                for event in oldest[:overflow]:
                    self._remove(event)
                evicted = overflow

        removed = len(expired) + evicted
        if removed:
            logger.info(
                "event_store_cleanup_completed",
                expired=len(expired),
                evicted=evicted,
                remaining=len(self._events),
            )
        return removed

    def stats(self) -> EventStoreStats:
        with self._lock:
            timestamps = [e.timestamp for e in self._events.values()]
            user_count = sum(1 for ids in self._by_user.values() if ids)
        return EventStoreStats(
            total_events=len(timestamps),
            user_count=user_count,
            oldest_event=min(timestamps) if timestamps else None,
            newest_event=max(timestamps) if timestamps else None,
        )

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)

    def _remove(self, event: BaseEvent) -> None:
        self._events.pop(event.id, None)
        self._unindex(event)

    def _unindex(self, event: BaseEvent) -> None:
        user_ids = self._by_user.get(event.user_id)
        if user_ids is None:
            return
        user_ids.discard(event.id)
        if not user_ids:
            del self._by_user[event.user_id]
