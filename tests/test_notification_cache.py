"""Tests for the notification dedup cache and its in-memory backend."""

from __future__ import annotations

from datetime import timedelta

import pytest

from event_relay.adapters.memory_dedup_backend import InMemoryDedupBackend
from event_relay.domain.exceptions import SharedStoreError
from event_relay.domain.models import (
    ChatMessageData,
    ChatMessageEvent,
    DedupEntry,
    NotificationCategory,
    ReminderState,
    SummaryData,
    SummaryEvent,
    UpcomingCalendarEvent,
    UpcomingEventData,
)
from event_relay.services.conflict_detector import analyze_conflicts
from event_relay.services.notification_cache import (
    NotificationCache,
    build_cache_key,
    content_hash,
    dedup_key_for_event,
)
from tests.conftest import (
    NOW,
    USER_EMAIL,
    USER_ID,
    FakeClock,
    create_calendar_item,
    create_new_event,
)


def test_claim_suppresses_repeat_within_threshold(
    notification_cache: NotificationCache, fake_clock: FakeClock
) -> None:
    assert notification_cache.claim(USER_ID, "calendar", "new:a") is True
    assert notification_cache.claim(USER_ID, "calendar", "new:a") is False
    assert notification_cache.is_duplicate(USER_ID, "calendar", "new:a") is True

    fake_clock.advance(29 * 60)
    assert notification_cache.is_duplicate(USER_ID, "calendar", "new:a") is True

    fake_clock.advance(60)
    assert notification_cache.is_duplicate(USER_ID, "calendar", "new:a") is False
    assert notification_cache.claim(USER_ID, "calendar", "new:a") is True


def test_keys_are_scoped_by_user_and_category(
    notification_cache: NotificationCache,
) -> None:
    notification_cache.mark_notified(USER_ID, "calendar", "x")

    assert notification_cache.is_duplicate(USER_ID, "calendar", "x") is True
    assert notification_cache.is_duplicate("user-2", "calendar", "x") is False
    assert notification_cache.is_duplicate(USER_ID, "email", "x") is False


def test_release_allows_next_claim(notification_cache: NotificationCache) -> None:
    notification_cache.claim(USER_ID, "email", "m1")
    notification_cache.release(USER_ID, "email", "m1")

    assert notification_cache.claim(USER_ID, "email", "m1") is True


def test_batch_ids_are_order_independent(notification_cache: NotificationCache) -> None:
    notification_cache.mark_notified_by_ids(USER_ID, "calendar", ["b", "a"])

    assert notification_cache.is_duplicate_by_ids(USER_ID, "calendar", ["a", "b"])
    assert not notification_cache.is_duplicate_by_ids(USER_ID, "calendar", ["a"])
    assert notification_cache.generate_content_hash(["a", "b"]) == content_hash(
        ["b", "a"]
    )


def test_stats_report_live_entries(notification_cache: NotificationCache) -> None:
    notification_cache.mark_notified(USER_ID, "calendar", "a")
    notification_cache.mark_notified(USER_ID, "calendar", "b")

    assert notification_cache.stats() == {"size": 2, "threshold_minutes": 30}
    assert notification_cache.ttl_seconds == 1800


def test_backend_failures_never_suppress(mocker) -> None:
    backend = mocker.Mock()
    backend.get.side_effect = SharedStoreError("down")
    backend.set.side_effect = SharedStoreError("down")
    backend.set_if_absent.side_effect = SharedStoreError("down")
    backend.delete.side_effect = SharedStoreError("down")
    backend.size.side_effect = SharedStoreError("down")
    cache = NotificationCache(backend)

    assert cache.is_duplicate(USER_ID, "calendar", "a") is False
    assert cache.claim(USER_ID, "calendar", "a") is True
    cache.mark_notified(USER_ID, "calendar", "a")
    cache.release(USER_ID, "calendar", "a")
    assert cache.stats()["size"] is None


def test_threshold_must_be_positive(dedup_backend: InMemoryDedupBackend) -> None:
    with pytest.raises(ValueError):
        NotificationCache(dedup_backend, threshold_minutes=0)


def test_cache_key_layout() -> None:
    assert build_cache_key("u1", "conflict", "a|b") == "conflict:u1:a|b"
    assert len(content_hash(["x"])) == 16


def test_conflict_identity_ignores_pair_order() -> None:
    forward = analyze_conflicts(
        USER_ID,
        USER_EMAIL,
        [create_calendar_item("a", 60, 60), create_calendar_item("b", 90, 60)],
        now=NOW,
    ).conflicts[0]
    reverse = analyze_conflicts(
        USER_ID,
        USER_EMAIL,
        [create_calendar_item("b", 60, 60), create_calendar_item("a", 90, 60)],
        now=NOW,
    ).conflicts[0]

    assert dedup_key_for_event(forward) == dedup_key_for_event(reverse)
    assert dedup_key_for_event(forward).category == NotificationCategory.CONFLICT


def test_new_event_identity_ignores_event_id() -> None:
    first = create_new_event("a", event_id="calendar-new-a-1")
    second = create_new_event("a", event_id="calendar-new-a-2")

    assert dedup_key_for_event(first) == dedup_key_for_event(second)
    assert dedup_key_for_event(first).identity == "new:a"


def test_upcoming_reminder_states_are_separate_announcements() -> None:
    def upcoming(reminder: ReminderState) -> UpcomingCalendarEvent:
        return UpcomingCalendarEvent(
            id=f"calendar-upcoming-a-{reminder.value}",
            user_id=USER_ID,
            data=UpcomingEventData(
                event_id="a",
                title="Review",
                start_time=NOW + timedelta(minutes=10),
                end_time=NOW + timedelta(minutes=40),
                time_until_start=10,
                reminder=reminder,
            ),
        )

    soon = dedup_key_for_event(upcoming(ReminderState.SOON))
    starting = dedup_key_for_event(upcoming(ReminderState.STARTING))

    assert soon != starting
    assert starting.identity == "upcoming:a:starting"


def test_summary_and_chat_identities() -> None:
    summary = SummaryEvent(
        id="calendar-summary-1",
        user_id=USER_ID,
        data=SummaryData(
            message="Two events", batch_type="calendar", batch_id="b1", item_ids=["y", "x"]
        ),
    )
    triggered = ChatMessageEvent(
        id="chat-1",
        user_id=USER_ID,
        data=ChatMessageData(message="hi", trigger_event_id="calendar-new-a"),
    )
    free_form = ChatMessageEvent(
        id="chat-2", user_id=USER_ID, data=ChatMessageData(message="hi")
    )

    summary_key = dedup_key_for_event(summary)
    assert summary_key.category == "calendar"
    assert summary_key.identity == f"summary:{content_hash(['x', 'y'])}"
    assert dedup_key_for_event(triggered).identity == "trigger:calendar-new-a"
    assert dedup_key_for_event(free_form).identity.startswith("message:")


def test_memory_backend_sweeps_expired_entries(fake_clock: FakeClock) -> None:
    backend = InMemoryDedupBackend(sweep_interval_seconds=60, clock=fake_clock)
    backend.set(DedupEntry(key="a"), ttl_seconds=10)
    backend.set(DedupEntry(key="b"), ttl_seconds=100)

    fake_clock.advance(10)

    assert backend.get("a") is None
    assert backend.size() == 1
    assert backend.set_if_absent(DedupEntry(key="b"), ttl_seconds=10) is False
    assert backend.set_if_absent(DedupEntry(key="a"), ttl_seconds=10) is True

    fake_clock.advance(200)
    assert backend.sweep() == 2
    assert backend.size() == 0


def test_memory_backend_clear(dedup_backend: InMemoryDedupBackend) -> None:
    dedup_backend.set(DedupEntry(key="a"), ttl_seconds=60)
    dedup_backend.clear()

    assert dedup_backend.get("a") is None
