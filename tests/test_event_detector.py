"""Tests for important-email and calendar change detection."""

from __future__ import annotations

from datetime import datetime

from event_relay.domain.models import (
    EventPriority,
    EventType,
    ImportanceLevel,
    MailMessage,
    NewCalendarEvent,
    ReminderState,
    UpcomingCalendarEvent,
)
from event_relay.services.event_detector import EventDetector, create_snippet
from tests.conftest import USER_ID, create_calendar_item, create_message


def test_detects_only_high_and_urgent_messages(now: datetime) -> None:
    detector = EventDetector()
    messages = [
        create_message("m1", "URGENT: server down", body="<p>Server is <b>down</b></p>"),
        create_message("m2", "Lunch plans"),
        create_message("m3", "Re: urgent invoice"),
    ]

    events = detector.detect_important_messages(messages, now=now)

    assert [e.data.email_id for e in events] == ["m1", "m3"]
    first, second = events
    assert first.type == EventType.GMAIL_IMPORTANT_EMAIL
    assert first.id.startswith("gmail-m1-")
    assert first.priority == EventPriority.HIGH
    assert first.data.importance == ImportanceLevel.HIGH
    assert first.data.snippet == "Server is down"
    assert first.timestamp == now
    assert second.priority == EventPriority.URGENT


def test_missing_subject_and_sender_get_placeholders(now: datetime) -> None:
    message = MailMessage(
        id="m1", user_id=USER_ID, subject=None, body="urgent emergency"
    )

    (event,) = EventDetector().detect_important_messages([message], now=now)

    assert event.data.subject == "No Subject"
    assert event.data.from_address == "Unknown Sender"
    assert event.data.importance == ImportanceLevel.URGENT


def test_create_snippet_truncates_long_bodies() -> None:
    assert create_snippet(None) == ""
    assert create_snippet("x" * 150) == "x" * 100 + "..."
    assert create_snippet("<div>short</div>") == "short"


def test_new_and_upcoming_calendar_events(now: datetime) -> None:
    items = [
        create_calendar_item("a", 240, 60),
        create_calendar_item("b", 60, 60),
        create_calendar_item("c", 10, 30),
    ]

    events = EventDetector().detect_calendar_events(USER_ID, items, {"c"}, now=now)

    kinds = [(type(e).__name__, e.data.event_id) for e in events]
    assert kinds == [
        ("NewCalendarEvent", "a"),
        ("NewCalendarEvent", "b"),
        ("UpcomingCalendarEvent", "b"),
        ("UpcomingCalendarEvent", "c"),
    ]

    soon = events[2]
    starting = events[3]
    assert isinstance(soon, UpcomingCalendarEvent)
    assert isinstance(starting, UpcomingCalendarEvent)
    assert soon.data.time_until_start == 60
    assert soon.data.reminder == ReminderState.SOON
    assert soon.priority == EventPriority.HIGH
    assert starting.data.reminder == ReminderState.STARTING
    assert starting.priority == EventPriority.URGENT
    assert all(e.user_id == USER_ID for e in events)


def test_new_event_announced_once_per_provider_id(now: datetime) -> None:
    items = [
        create_calendar_item("a", 300, 60, external_id="ext-1"),
        create_calendar_item("b", 400, 60, external_id="ext-1"),
    ]

    events = EventDetector().detect_calendar_events(USER_ID, items, set(), now=now)

    assert len(events) == 1
    assert isinstance(events[0], NewCalendarEvent)
    assert events[0].data.event_id == "a"


def test_known_external_id_is_not_new(now: datetime) -> None:
    items = [create_calendar_item("local-1", 300, 60, external_id="ext-1")]

    assert EventDetector().detect_calendar_events(USER_ID, items, {"ext-1"}, now=now) == []


def test_upcoming_window_boundaries(now: datetime) -> None:
    items = [
        create_calendar_item("started", -5, 60),
        create_calendar_item("edge", 120, 30),
        create_calendar_item("later", 121, 30),
        create_calendar_item("seconds", 0.5, 30),
    ]
    known = {item.id for item in items}

    events = EventDetector().detect_calendar_events(USER_ID, items, known, now=now)

    upcoming = {e.data.event_id: e for e in events}
    assert set(upcoming) == {"edge", "seconds"}
    assert upcoming["edge"].data.reminder == ReminderState.SOON
    assert upcoming["seconds"].data.time_until_start == 0
    assert upcoming["seconds"].data.reminder == ReminderState.STARTING


def test_untitled_items_get_placeholder_title(now: datetime) -> None:
    item = create_calendar_item("a", 30, 30, title="")

    events = EventDetector().detect_calendar_events(USER_ID, [item], set(), now=now)

    assert {e.data.title for e in events} == {"No Title"}
