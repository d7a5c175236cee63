"""Convert calendar events into proactive assistant chat messages.

Runs inside the enrichment runner; failures are isolated from delivery of
the triggering event.
"""

import json
from datetime import datetime
from typing import Final

from event_relay.config.logging_config import get_logger
from event_relay.domain.models import (
    BaseEvent,
    BroadcastResult,
    NewCalendarEvent,
    ReminderState,
    UpcomingCalendarEvent,
)
from event_relay.domain.protocols import ConversationHistory, SummaryGenerator
from event_relay.services.event_broadcaster import EventBroadcaster, is_enrichable_event

logger = get_logger(__name__)

CHAT_MAX_TOKENS: Final[int] = 200
SOON_THRESHOLD_MINUTES: Final[int] = 30

BASE_CONTEXT: Final[str] = (
    "You are Friday, the user's AI assistant. A calendar event was just detected. "
    "Respond naturally and conversationally as if you're proactively helping manage "
    "their schedule. Keep it brief and helpful."
)


def format_date(value: datetime) -> str:
    return value.strftime("%b %d, %Y")


def format_time(value: datetime) -> str:
    return value.strftime("%H:%M")


def build_new_event_prompt(event: NewCalendarEvent) -> str:
    data = event.data
    details = (
        f'"{data.title}" on {format_date(data.start_time)} at '
        f"{format_time(data.start_time)}"
    )
    if data.location:
        details += f" at {data.location}"

    return (
        f"{BASE_CONTEXT}\n\n"
        f"A new event was just added to the calendar: {details}.\n\n"
        "Respond naturally as their assistant, acknowledging the new event and "
        "offering brief, helpful assistance if appropriate (like asking if they need "
        "preparation help or noting any relevant details). Keep it conversational "
        "and concise."
    )


def build_upcoming_event_prompt(event: UpcomingCalendarEvent) -> str:
    data = event.data
    if data.reminder == ReminderState.STARTING:
        urgency = "starting very soon"
    elif data.time_until_start <= SOON_THRESHOLD_MINUTES:
        urgency = f"starting in {data.time_until_start} minutes"
    else:
        urgency = f"coming up in {data.time_until_start} minutes"

    details = f'"{data.title}" {urgency} at {format_time(data.start_time)}'
    if data.location:
        details += f" at {data.location}"

    return (
        f"{BASE_CONTEXT}\n\n"
        f"Upcoming event reminder: {details}.\n\n"
        "Respond naturally as their assistant with a friendly heads-up about the "
        "upcoming event. Keep it brief and helpful - maybe mention preparation if "
        "relevant. Be conversational."
    )


def build_event_prompt(event: BaseEvent) -> str:
    """Pick the prompt template for an event."""
    if isinstance(event, NewCalendarEvent):
        return build_new_event_prompt(event)
    if isinstance(event, UpcomingCalendarEvent):
        return build_upcoming_event_prompt(event)

    details = json.dumps(event.data.model_dump(mode="json", exclude_none=True))
    return (
        f"{BASE_CONTEXT}\n\n"
        f"A calendar event was detected: {details}. "
        "Mention this to the user conversationally."
    )


class EventToChatConverter:
    """Generate, broadcast and persist a chat message for an event."""

    def __init__(
        self,
        generator: SummaryGenerator,
        broadcaster: EventBroadcaster,
        history: ConversationHistory | None = None,
    ) -> None:
        self.generator = generator
        self.broadcaster = broadcaster
        self.history = history

    def convert(self, event: BaseEvent) -> BroadcastResult | None:
        """Return the chat broadcast result, or None when nothing was sent.

        Generator and broadcast errors propagate to the runner, which records
        the job as failed.
        """
        if not is_enrichable_event(event):
            return None

        logger.info(
            "event_to_chat_started",
            event_id=event.id,
            event_type=event.type.value,
            user_id=event.user_id,
        )

        message = self.generator.generate(
            build_event_prompt(event), user_id=event.user_id, max_tokens=CHAT_MAX_TOKENS
        )
        if not message:
            logger.warning("event_to_chat_empty_message", event_id=event.id)
            return None

        result = self.broadcaster.broadcast_chat_message(
            event.user_id, message, trigger=event
        )
        self._save_to_history(event.user_id, message)

        logger.info(
            "event_to_chat_completed",
            event_id=event.id,
            chat_event_id=result.event_id,
            delivered=result.success and not result.duplicate,
            message_length=len(message),
        )
        return result

    def handle_job(self, params: dict[str, object]) -> dict[str, object]:
        """Enrichment runner entry point."""
        event = params["event"]
        if not isinstance(event, BaseEvent):
            raise TypeError("event_to_chat job requires an 'event' parameter")
        result = self.convert(event)
        return {"chat_event_id": result.event_id if result else None}

    def _save_to_history(self, user_id: str, message: str) -> None:
        if self.history is None:
            return
        try:
            self.history.save_message("assistant", user_id, message)
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "conversation_history_save_failed", user_id=user_id, error=str(exc)
            )
