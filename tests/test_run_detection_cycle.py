"""End-to-end tests for one per-user detection cycle."""

from __future__ import annotations

import json
from datetime import datetime, timedelta
from pathlib import Path

from event_relay.adapters.snapshot_provider import JsonSnapshotProvider
from event_relay.domain.exceptions import PublishError
from event_relay.domain.models import CalendarItem, EventType, MailMessage, UserProfile
from event_relay.observability.metrics import PIPELINE_STAGE_DURATION_SECONDS
from event_relay.services.event_broadcaster import EventBroadcaster
from event_relay.services.event_detector import EventDetector
from event_relay.services.notification_cache import NotificationCache
from event_relay.use_cases.process_event_batch import EventBatchProcessor
from event_relay.use_cases.run_detection_cycle import run_detection_cycle
from tests.conftest import (
    USER_EMAIL,
    USER_ID,
    FakeClock,
    FakeGenerator,
    RecordingTransport,
    create_calendar_item,
    create_message,
)

USER = UserProfile(user_id=USER_ID, email=USER_EMAIL)


class _StaticProvider:
    def __init__(
        self,
        items: list[CalendarItem],
        messages: list[MailMessage],
        known_ids: set[str] | None = None,
    ) -> None:
        self.items = items
        self.messages = messages
        self.known_ids = known_ids or set()

    def fetch_calendar_items(self, user_id: str) -> list[CalendarItem]:
        return self.items

    def fetch_messages(self, user_id: str) -> list[MailMessage]:
        return self.messages

    def known_calendar_ids(self, user_id: str) -> set[str]:
        return self.known_ids


class _BrokenProvider(_StaticProvider):
    def fetch_calendar_items(self, user_id: str) -> list[CalendarItem]:
        raise OSError("snapshot unreadable")


def _provider() -> _StaticProvider:
    return _StaticProvider(
        items=[create_calendar_item("a", 30, 60), create_calendar_item("b", 60, 60)],
        messages=[create_message("m1", "URGENT: server down"), create_message("m2", "Lunch")],
    )


def test_cycle_detects_and_delivers_everything(
    broadcaster: EventBroadcaster, transport: RecordingTransport, now: datetime
) -> None:
    result = run_detection_cycle(
        USER, _provider(), EventDetector(), broadcaster, now=now
    )

    # 1 email + new/upcoming for both items + 1 overlap conflict
    assert result.detected_events == 6
    assert result.conflicts == 1
    assert result.delivered == 6
    assert result.failed == 0
    assert result.errors == []
    published_types = [p[1] for p in transport.published]
    assert published_types.count(EventType.CALENDAR_CONFLICT_DETECTED.value) == 1
    assert published_types.count(EventType.GMAIL_IMPORTANT_EMAIL.value) == 1


def test_second_cycle_is_fully_deduplicated(
    broadcaster: EventBroadcaster, transport: RecordingTransport, now: datetime
) -> None:
    provider = _provider()
    run_detection_cycle(USER, provider, EventDetector(), broadcaster, now=now)

    again = run_detection_cycle(USER, provider, EventDetector(), broadcaster, now=now)

    assert again.duplicates == 6
    assert again.delivered == 0
    assert len(transport.published) == 6


def test_cycle_with_batch_summaries(
    broadcaster: EventBroadcaster,
    notification_cache: NotificationCache,
    transport: RecordingTransport,
    now: datetime,
) -> None:
    generator = FakeGenerator()
    processor = EventBatchProcessor(generator, broadcaster, notification_cache)

    run_detection_cycle(
        USER,
        _provider(),
        EventDetector(),
        broadcaster,
        batch_processor=processor,
        now=now,
    )

    summaries = [p[2]["batch_type"] for p in transport.published if p[1] == "batch_summary"]
    assert sorted(summaries) == ["calendar", "conflict", "email"]
    assert len(generator.calls) == 3


def test_publish_failures_are_counted(
    broadcaster: EventBroadcaster, transport: RecordingTransport, now: datetime
) -> None:
    transport.failures = [PublishError("rejected")]

    result = run_detection_cycle(
        USER, _provider(), EventDetector(), broadcaster, now=now
    )

    assert result.failed == 1
    assert result.delivered == 5
    assert len(result.errors) == 1


def test_fetch_failure_ends_cycle_early(
    broadcaster: EventBroadcaster, transport: RecordingTransport, now: datetime
) -> None:
    result = run_detection_cycle(
        USER, _BrokenProvider([], []), EventDetector(), broadcaster, now=now
    )

    assert result.errors == ["fetch: snapshot unreadable"]
    assert result.detected_events == 0
    assert transport.published == []


def test_cycle_reuses_correlation_id_and_times_stages(
    broadcaster: EventBroadcaster, now: datetime
) -> None:
    counts_before = _stage_counts()

    result = run_detection_cycle(
        USER,
        _StaticProvider([], []),
        EventDetector(),
        broadcaster,
        now=now,
        correlation_id="cycle-123",
    )

    assert result.correlation_id == "cycle-123"
    counts_after = _stage_counts()
    for stage in ("fetch_snapshot", "detect_events", "analyze_conflicts", "broadcast"):
        assert counts_after.get(stage, 0.0) == counts_before.get(stage, 0.0) + 1


def _stage_counts() -> dict[str, float]:
    counts: dict[str, float] = {}
    for metric in PIPELINE_STAGE_DURATION_SECONDS.collect():
        for sample in metric.samples:
            if sample.name.endswith("_count"):
                counts[sample.labels["stage"]] = sample.value
    return counts


def test_important_email_is_announced_once_across_windows(
    tmp_path: Path,
    broadcaster: EventBroadcaster,
    transport: RecordingTransport,
    fake_clock: FakeClock,
    now: datetime,
) -> None:
    document = {
        "user": {"user_id": USER_ID, "email": USER_EMAIL},
        "messages": [
            {"id": "m1", "subject": "URGENT: server down", "from_address": "ops@example.org"}
        ],
    }
    (tmp_path / f"{USER_ID}.json").write_text(json.dumps(document), encoding="utf-8")
    provider = JsonSnapshotProvider(tmp_path)

    for cycle in range(3):
        current = now + timedelta(minutes=31 * cycle)
        run_detection_cycle(USER, provider, EventDetector(), broadcaster, now=current)
        provider.mark_cycle_complete(USER_ID)
        fake_clock.advance(31 * 60)

    emails = [
        payload["email_id"]
        for _, event_type, payload in transport.published
        if event_type == EventType.GMAIL_IMPORTANT_EMAIL.value
    ]
    assert emails == ["m1"]
