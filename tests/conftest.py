"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import fnmatch
from collections.abc import Iterator
from datetime import datetime, timedelta
from typing import Any

import pytest
import pytz

from event_relay.adapters.memory_dedup_backend import InMemoryDedupBackend
from event_relay.adapters.memory_subscription_store import InMemorySubscriptionStore
from event_relay.domain.models import (
    CalendarAttendee,
    CalendarItem,
    ImportanceLevel,
    ImportantEmailData,
    ImportantEmailEvent,
    MailMessage,
    NewCalendarEvent,
    NewEventData,
)
from event_relay.services.event_broadcaster import EventBroadcaster
from event_relay.services.event_store import EventStore
from event_relay.services.notification_cache import NotificationCache
from event_relay.services.subscription_manager import SubscriptionManager

NOW = datetime(2030, 1, 15, 9, 0, tzinfo=pytz.UTC)
USER_ID = "user-1"
USER_EMAIL = "me@example.com"


def create_calendar_item(
    item_id: str,
    start_offset_minutes: float,
    duration_minutes: float,
    *,
    title: str | None = None,
    location: str | None = None,
    description: str | None = None,
    attendees: list[tuple[str, str]] | None = None,
    external_id: str | None = None,
    base: datetime = NOW,
) -> CalendarItem:
    """Build a calendar item starting ``start_offset_minutes`` after ``base``."""

    start = base + timedelta(minutes=start_offset_minutes)
    return CalendarItem(
        id=item_id,
        title=title if title is not None else f"Standup {item_id}",
        start_time=start,
        end_time=start + timedelta(minutes=duration_minutes),
        location=location,
        description=description,
        attendees=[
            CalendarAttendee(email=email, response_status=status)
            for email, status in (attendees or [])
        ],
        external_id=external_id,
    )


def create_message(
    message_id: str,
    subject: str,
    *,
    body: str | None = None,
    from_address: str | None = "someone@example.org",
    user_id: str = USER_ID,
) -> MailMessage:
    return MailMessage(
        id=message_id,
        user_id=user_id,
        subject=subject,
        body=body,
        from_address=from_address,
        received_time=NOW - timedelta(minutes=5),
    )


def create_new_event(
    item_id: str = "evt-1",
    *,
    user_id: str = USER_ID,
    event_id: str | None = None,
    timestamp: datetime = NOW,
) -> NewCalendarEvent:
    return NewCalendarEvent(
        id=event_id or f"calendar-new-{item_id}",
        user_id=user_id,
        timestamp=timestamp,
        data=NewEventData(
            event_id=item_id,
            title=f"Review {item_id}",
            start_time=NOW + timedelta(hours=3),
            end_time=NOW + timedelta(hours=4),
        ),
    )


def create_email_event(email_id: str = "m1", *, user_id: str = USER_ID) -> ImportantEmailEvent:
    return ImportantEmailEvent(
        id=f"gmail-{email_id}-1",
        user_id=user_id,
        data=ImportantEmailData(
            email_id=email_id,
            subject="URGENT: server down",
            from_address="ops@example.org",
            snippet="",
            importance=ImportanceLevel.HIGH,
            received_time=NOW,
        ),
    )


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.value = start

    def __call__(self) -> float:
        return self.value

    def advance(self, seconds: float) -> None:
        self.value += seconds


class FakeRedis:
    """Subset of redis.Redis (decode_responses=True) used by the adapters."""

    def __init__(self, clock: FakeClock | None = None) -> None:
        self.clock = clock or FakeClock()
        self.data: dict[str, str] = {}
        self.expiry: dict[str, float] = {}
        self.set_calls: list[dict[str, Any]] = []

    def _alive(self, key: str) -> bool:
        if key not in self.data:
            return False
        expires_at = self.expiry.get(key)
        if expires_at is not None and expires_at <= self.clock():
            self.data.pop(key, None)
            self.expiry.pop(key, None)
            return False
        return True

    def ping(self) -> bool:
        return True

    def get(self, key: str) -> str | None:
        return self.data[key] if self._alive(key) else None

    def set(
        self, key: str, value: str, ex: int | None = None, nx: bool = False
    ) -> bool | None:
        self.set_calls.append({"key": key, "ex": ex, "nx": nx})
        if nx and self._alive(key):
            return None
        self.data[key] = value
        if ex is not None:
            self.expiry[key] = self.clock() + ex
        else:
            self.expiry.pop(key, None)
        return True

    def delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            if self.data.pop(key, None) is not None:
                removed += 1
            self.expiry.pop(key, None)
        return removed

    def scan_iter(self, match: str | None = None) -> Iterator[str]:
        for key in list(self.data):
            if self._alive(key) and (match is None or fnmatch.fnmatch(key, match)):
                yield key


class RecordingTransport:
    """Channel transport that records publishes and can fail on demand."""

    def __init__(self, failures: list[Exception] | None = None) -> None:
        self.failures = list(failures or [])
        self.published: list[tuple[str | list[str], str, dict[str, Any]]] = []
        self.attempts = 0

    def publish(
        self, channel_name: str | list[str], event_type: str, payload: dict[str, Any]
    ) -> None:
        self.attempts += 1
        if self.failures:
            raise self.failures.pop(0)
        self.published.append((channel_name, event_type, payload))


class FakeGenerator:
    """Summary generator returning a canned reply and recording prompts."""

    def __init__(self, reply: str | None = "Heads up from Friday", error: Exception | None = None):
        self.reply = reply
        self.error = error
        self.calls: list[dict[str, Any]] = []

    def generate(self, prompt: str, *, user_id: str, max_tokens: int) -> str | None:
        self.calls.append({"prompt": prompt, "user_id": user_id, "max_tokens": max_tokens})
        if self.error is not None:
            raise self.error
        return self.reply


class RecordingRunner:
    """Enrichment runner double capturing submissions."""

    def __init__(self) -> None:
        self.submitted: list[tuple[str, dict[str, object]]] = []

    def submit(self, name: str, params: dict[str, object]) -> str:
        self.submitted.append((name, params))
        return f"job-{len(self.submitted)}"

    def status(self, job_id: str) -> dict[str, object]:
        return {"job_id": job_id, "status": "queued"}

    def failures(self) -> list[dict[str, object]]:
        return []


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def dedup_backend(fake_clock: FakeClock) -> InMemoryDedupBackend:
    return InMemoryDedupBackend(clock=fake_clock)


@pytest.fixture
def notification_cache(dedup_backend: InMemoryDedupBackend) -> NotificationCache:
    return NotificationCache(dedup_backend, threshold_minutes=30)


@pytest.fixture
def subscription_store() -> InMemorySubscriptionStore:
    return InMemorySubscriptionStore()


@pytest.fixture
def subscriptions(subscription_store: InMemorySubscriptionStore) -> SubscriptionManager:
    return SubscriptionManager(subscription_store)


@pytest.fixture
def event_store() -> EventStore:
    return EventStore(max_events=100, clock=lambda: NOW)


@pytest.fixture
def transport() -> RecordingTransport:
    return RecordingTransport()


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def broadcaster(
    event_store: EventStore,
    subscriptions: SubscriptionManager,
    notification_cache: NotificationCache,
    transport: RecordingTransport,
    sleeps: list[float],
) -> EventBroadcaster:
    """Broadcaster wired to in-memory collaborators and a recording transport."""

    return EventBroadcaster(
        event_store=event_store,
        subscriptions=subscriptions,
        notification_cache=notification_cache,
        transport=transport,
        retry_delay_seconds=1.0,
        sleep=sleeps.append,
    )
