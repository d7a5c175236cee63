"""Event detection service.

Turns raw mailbox messages and calendar items into typed events:
- Important emails (high/urgent importance only)
- New calendar items (provider id not yet known)
- Upcoming calendar items (starting within the next two hours)

Detectors are pure over their inputs; ``now`` is injectable for tests.
"""

import re
from collections.abc import Iterable
from datetime import datetime, timedelta
from typing import Final
from uuid import uuid4

from event_relay.config.logging_config import get_logger
from event_relay.domain.models import (
    CalendarDetection,
    CalendarItem,
    EventPriority,
    ImportanceLevel,
    ImportantEmailData,
    ImportantEmailEvent,
    MailMessage,
    NewCalendarEvent,
    NewEventData,
    ReminderState,
    UpcomingCalendarEvent,
    UpcomingEventData,
    ensure_utc,
    utc_now,
)
from event_relay.domain.scoring_constants import SNIPPET_MAX_LENGTH
from event_relay.services.importance_scorer import ImportanceScorer

logger = get_logger(__name__)

UPCOMING_WINDOW: Final[timedelta] = timedelta(hours=2)
STARTING_THRESHOLD_MINUTES: Final[int] = 15

HTML_TAG_PATTERN: Final[re.Pattern[str]] = re.compile(r"<[^>]*>")


def _event_token() -> str:
    return uuid4().hex[:12]


def create_snippet(body: str | None, max_length: int = SNIPPET_MAX_LENGTH) -> str:
    """Strip HTML tags and truncate a message body for display.

    Example:
        >>> create_snippet("<p>Hello</p>")
        'Hello'
    """
    if not body:
        return ""
    plain = HTML_TAG_PATTERN.sub("", body).strip()
    if len(plain) > max_length:
        return plain[:max_length] + "..."
    return plain


class EventDetector:
    """Produce typed events from raw provider records."""

    def __init__(self, scorer: ImportanceScorer | None = None) -> None:
        self.scorer = scorer or ImportanceScorer()

    def detect_important_messages(
        self, messages: Iterable[MailMessage], now: datetime | None = None
    ) -> list[ImportantEmailEvent]:
        """Emit one event per message classified high or urgent.

        Args:
            messages: Messages imported this cycle
            now: Detection time (defaults to current UTC time)

        Returns:
            Important email events, in input order
        """
        detected_at = ensure_utc(now) if now else utc_now()
        events: list[ImportantEmailEvent] = []

        for message in messages:
            importance = self.scorer.classify_message(message)
            if importance not in (ImportanceLevel.HIGH, ImportanceLevel.URGENT):
                continue

            events.append(
                ImportantEmailEvent(
                    id=f"gmail-{message.id}-{_event_token()}",
                    user_id=message.user_id,
                    timestamp=detected_at,
                    priority=(
                        EventPriority.URGENT
                        if importance == ImportanceLevel.URGENT
                        else EventPriority.HIGH
                    ),
                    data=ImportantEmailData(
                        email_id=message.id,
                        subject=message.subject or "No Subject",
                        from_address=message.from_address or "Unknown Sender",
                        snippet=create_snippet(message.body),
                        importance=importance,
                        received_time=message.received_time,
                    ),
                )
            )
            logger.info(
                "important_email_detected",
                email_id=message.id,
                importance=importance.value,
            )

        return events

    def detect_calendar_events(
        self,
        user_id: str,
        items: Iterable[CalendarItem],
        existing_ids: set[str],
        now: datetime | None = None,
    ) -> list[CalendarDetection]:
        """Emit new-event and upcoming-event notifications for calendar items.

        An item is new when its provider id is absent from ``existing_ids``;
        each distinct id yields at most one new-event notification. Upcoming
        detection is independent of new/existing status.

        Args:
            user_id: Calendar owner
            items: Calendar items from the current snapshot
            existing_ids: Provider ids already known before this cycle
            now: Detection time (defaults to current UTC time)

        Returns:
            New and upcoming events in input order
        """
        current = ensure_utc(now) if now else utc_now()
        events: list[CalendarDetection] = []
        announced_new: set[str] = set()

        for item in items:
            provider_id = item.provider_id
            if provider_id not in existing_ids and provider_id not in announced_new:
                announced_new.add(provider_id)
                events.append(self._build_new_event(user_id, item, current))
                logger.info(
                    "calendar_new_event_detected",
                    event_id=item.id,
                    start_time=item.start_time.isoformat(),
                )

            upcoming = self._build_upcoming_event(user_id, item, current)
            if upcoming is not None:
                events.append(upcoming)
                logger.info(
                    "calendar_upcoming_event_detected",
                    event_id=item.id,
                    minutes_until_start=upcoming.data.time_until_start,
                    reminder=upcoming.data.reminder.value,
                )

        return events

    def _build_new_event(
        self, user_id: str, item: CalendarItem, now: datetime
    ) -> NewCalendarEvent:
        return NewCalendarEvent(
            id=f"calendar-new-{item.id}-{_event_token()}",
            user_id=user_id,
            timestamp=now,
            priority=self.scorer.calculate_calendar_priority(item),
            data=NewEventData(
                event_id=item.id,
                title=item.title or "No Title",
                start_time=item.start_time,
                end_time=item.end_time,
                location=item.location,
                description=item.description,
                attendees=list(item.attendees) or None,
            ),
        )

    def _build_upcoming_event(
        self, user_id: str, item: CalendarItem, now: datetime
    ) -> UpcomingCalendarEvent | None:
        time_until_start = item.start_time - now
        if time_until_start <= timedelta(0) or time_until_start > UPCOMING_WINDOW:
            return None

        minutes_until_start = int(time_until_start.total_seconds() // 60)
        reminder = (
            ReminderState.STARTING
            if minutes_until_start <= STARTING_THRESHOLD_MINUTES
            else ReminderState.SOON
        )

        return UpcomingCalendarEvent(
            id=f"calendar-upcoming-{item.id}-{_event_token()}",
            user_id=user_id,
            timestamp=now,
            priority=(
                EventPriority.URGENT
                if reminder == ReminderState.STARTING
                else EventPriority.HIGH
            ),
            data=UpcomingEventData(
                event_id=item.id,
                title=item.title or "No Title",
                start_time=item.start_time,
                end_time=item.end_time,
                location=item.location,
                time_until_start=minutes_until_start,
                reminder=reminder,
            ),
        )
