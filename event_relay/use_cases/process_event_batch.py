"""Batch summaries for calendar, email and conflict events.

One summary per batch of detected items; a batch whose item set was already
summarised within the dedup window is skipped.
"""

from collections.abc import Callable, Sequence
from typing import Final, Literal
from uuid import uuid4

from event_relay.config.logging_config import get_logger
from event_relay.domain.models import (
    BatchResult,
    CalendarDetection,
    ConflictEvent,
    ImportantEmailEvent,
    NewCalendarEvent,
    ReminderState,
    SummaryData,
    SummaryEvent,
    UpcomingCalendarEvent,
)
from event_relay.domain.protocols import SummaryGenerator
from event_relay.services.conflict_detector import conflict_identity
from event_relay.services.event_broadcaster import EventBroadcaster
from event_relay.services.notification_cache import NotificationCache
from event_relay.use_cases.event_to_chat import format_date, format_time

logger = get_logger(__name__)

SUMMARY_MAX_TOKENS: Final[int] = 300

BatchType = Literal["calendar", "email", "conflict"]


def build_calendar_summary_prompt(
    new_events: Sequence[NewCalendarEvent],
    upcoming_events: Sequence[UpcomingCalendarEvent],
) -> str:
    details = ""
    if new_events:
        details += "\nNew events added:\n"
        for event in new_events:
            data = event.data
            line = (
                f'- "{data.title}" on {format_date(data.start_time)} at '
                f"{format_time(data.start_time)}"
            )
            if data.location:
                line += f" at {data.location}"
            details += line + "\n"

    if upcoming_events:
        details += "\nUpcoming events:\n"
        for event in upcoming_events:
            data = event.data
            urgency = (
                "starting now"
                if data.reminder == ReminderState.STARTING
                else f"in {data.time_until_start} minutes"
            )
            details += f'- "{data.title}" {urgency}\n'

    return (
        "You are Friday, the user's AI assistant. Provide a concise, helpful summary "
        "of calendar updates. Be conversational and actionable.\n\n"
        f"Calendar updates detected:{details}\n"
        "Provide a brief, natural summary mentioning the key events and any "
        "preparation needed. Keep it conversational and under 2-3 sentences."
    )


def build_email_summary_prompt(events: Sequence[ImportantEmailEvent]) -> str:
    details = "\nImportant emails received:\n"
    for event in events:
        data = event.data
        details += (
            f'- "{data.subject}" from {data.from_address} '
            f"({data.importance.value} priority)\n"
        )
    return (
        "You are Friday, the user's AI assistant. Provide a concise summary of "
        f"important emails received. Be helpful and actionable.{details}\n"
        "Provide a brief, natural summary highlighting the important emails and "
        "suggest any needed actions. Keep it conversational and under 2-3 sentences."
    )


def build_conflict_summary_prompt(conflicts: Sequence[ConflictEvent]) -> str:
    details = "\nScheduling conflicts detected:\n"
    for conflict in conflicts:
        first, second = conflict.data.conflicting_events
        details += (
            f'- "{first.title}" and "{second.title}" '
            f"({conflict.data.conflict_type.value.replace('_', ' ')}, "
            f"{conflict.data.severity.value}) on {format_date(first.start_time)}\n"
        )
    return (
        "You are Friday, the user's AI assistant. Provide a concise summary of "
        f"scheduling conflicts in the user's calendar.{details}\n"
        "Briefly explain which events clash and suggest the most useful fix. "
        "Keep it conversational and under 2-3 sentences."
    )


class EventBatchProcessor:
    """Summarise batches of detected events and broadcast the summary."""

    def __init__(
        self,
        generator: SummaryGenerator,
        broadcaster: EventBroadcaster,
        notification_cache: NotificationCache,
    ) -> None:
        self.generator = generator
        self.broadcaster = broadcaster
        self.notification_cache = notification_cache

    def process_calendar_batch(
        self, user_id: str, events: Sequence[CalendarDetection]
    ) -> BatchResult:
        new_events = [e for e in events if isinstance(e, NewCalendarEvent)]
        upcoming_events = [e for e in events if isinstance(e, UpcomingCalendarEvent)]
        item_ids = [e.data.event_id for e in events]
        return self._process(
            user_id,
            "calendar",
            item_ids,
            lambda: build_calendar_summary_prompt(new_events, upcoming_events),
        )

    def process_email_batch(
        self, user_id: str, events: Sequence[ImportantEmailEvent]
    ) -> BatchResult:
        item_ids = [e.data.email_id for e in events]
        return self._process(
            user_id, "email", item_ids, lambda: build_email_summary_prompt(events)
        )

    def process_conflict_batch(
        self, user_id: str, conflicts: Sequence[ConflictEvent]
    ) -> BatchResult:
        item_ids = [conflict_identity(c) for c in conflicts]
        return self._process(
            user_id,
            "conflict",
            item_ids,
            lambda: build_conflict_summary_prompt(conflicts),
        )

    def _process(
        self,
        user_id: str,
        batch_type: BatchType,
        item_ids: list[str],
        build_prompt: Callable[[], str],
    ) -> BatchResult:
        batch_id = f"{batch_type}-batch-{uuid4().hex[:12]}"
        if not item_ids:
            return BatchResult(batch_id=batch_id)

        logger.info(
            "batch_processing_started",
            batch_id=batch_id,
            batch_type=batch_type,
            user_id=user_id,
            item_count=len(item_ids),
        )

        if self.notification_cache.is_duplicate_by_ids(user_id, batch_type, item_ids):
            logger.info(
                "batch_skipped_duplicate",
                batch_id=batch_id,
                batch_type=batch_type,
                user_id=user_id,
            )
            return BatchResult(
                batch_id=batch_id, duplicate=True, item_count=len(item_ids)
            )

        try:
            message = self.generator.generate(
                build_prompt(), user_id=user_id, max_tokens=SUMMARY_MAX_TOKENS
            )
        except Exception as exc:  # noqa: BLE001
            logger.exception(
                "batch_summary_generation_failed",
                batch_id=batch_id,
                batch_type=batch_type,
            )
            return BatchResult(
                batch_id=batch_id, item_count=len(item_ids), error=str(exc)
            )

        if not message:
            logger.warning("batch_summary_empty", batch_id=batch_id)
            return BatchResult(batch_id=batch_id, item_count=len(item_ids))

        event = SummaryEvent(
            id=f"{batch_type}-summary-{uuid4().hex[:12]}",
            user_id=user_id,
            data=SummaryData(
                message=message,
                batch_type=batch_type,
                batch_id=batch_id,
                item_ids=sorted(item_ids),
            ),
        )
        result = self.broadcaster.broadcast(event)
        delivered = result.success and not result.duplicate and result.subscriber_count > 0

        if delivered:
            self.notification_cache.mark_notified_by_ids(
                user_id,
                batch_type,
                item_ids,
                {"batch_id": batch_id, "item_count": len(item_ids)},
            )
            logger.info(
                "batch_summary_delivered",
                batch_id=batch_id,
                batch_type=batch_type,
                user_id=user_id,
            )

        return BatchResult(
            batch_id=batch_id,
            delivered=delivered,
            duplicate=result.duplicate,
            item_count=len(item_ids),
            error=result.error,
        )
