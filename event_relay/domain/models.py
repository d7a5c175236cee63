"""Domain models for the event relay.

All models use Pydantic v2 for validation and serialization.
"""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Annotated, Any, Literal

import pytz
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


def utc_now() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(pytz.UTC)


def ensure_utc(value: datetime) -> datetime:
    """Normalize a datetime to aware UTC (naive values are taken as UTC)."""
    if value.tzinfo is None:
        return pytz.UTC.localize(value)
    return value.astimezone(pytz.UTC)


class EventType(StrEnum):
    """Kinds of events delivered over a user channel."""

    GMAIL_IMPORTANT_EMAIL = "gmail_important_email"
    CALENDAR_UPCOMING_EVENT = "calendar_upcoming_event"
    CALENDAR_NEW_EVENT = "calendar_new_event"
    CALENDAR_EVENT_REMINDER = "calendar_event_reminder"
    CALENDAR_CONFLICT_DETECTED = "calendar_conflict_detected"
    BATCH_SUMMARY = "batch_summary"
    SYSTEM_NOTIFICATION = "system_notification"
    CHAT_MESSAGE = "chat_message"


class EventPriority(StrEnum):
    """Delivery priority attached to every event."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class EventSource(StrEnum):
    """Subsystem that produced an event."""

    GMAIL_SYNC = "gmail_sync"
    CALENDAR_SYNC = "calendar_sync"
    SYSTEM = "system"


class ImportanceLevel(StrEnum):
    """Importance level assigned to a mailbox message."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class ReminderState(StrEnum):
    """How close an upcoming calendar item is."""

    SOON = "soon"
    STARTING = "starting"


class ConflictType(StrEnum):
    """Shape of a scheduling conflict."""

    EXACT_OVERLAP = "exact_overlap"
    PARTIAL_OVERLAP = "partial_overlap"
    BACK_TO_BACK = "back_to_back"


class ConflictSeverity(StrEnum):
    """How disruptive a conflict is."""

    MINOR = "minor"
    MODERATE = "moderate"
    MAJOR = "major"


class SuggestionAction(StrEnum):
    """Remediation proposed for a conflict."""

    RESCHEDULE = "reschedule"
    SHORTEN = "shorten"
    CANCEL = "cancel"
    ACCEPT_CONFLICT = "accept_conflict"


class NotificationCategory(StrEnum):
    """Dedup cache namespace for a logical change."""

    CALENDAR = "calendar"
    EMAIL = "email"
    CONFLICT = "conflict"
    CHAT = "chat"
    SYSTEM = "system"


# ---------------------------------------------------------------------------
# Raw provider records
# ---------------------------------------------------------------------------


class CalendarAttendee(BaseModel):
    """Attendee entry on a calendar item."""

    model_config = ConfigDict(extra="allow")

    email: str = Field(..., description="Attendee email address")
    response_status: str = Field(
        default="needsAction", description="accepted, declined, tentative, ..."
    )


class CalendarItem(BaseModel):
    """Interval-bearing calendar item imported from a provider snapshot."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Stored item identifier")
    title: str = Field(default="", description="Item title")
    start_time: datetime = Field(..., description="Start (UTC)")
    end_time: datetime = Field(..., description="End (UTC)")
    location: str | None = Field(default=None, description="Location text")
    description: str | None = Field(default=None, description="Free-form notes")
    attendees: list[CalendarAttendee] = Field(
        default_factory=list, description="Attendees with response status"
    )
    external_id: str | None = Field(
        default=None,
        description="Provider identifier used for the already-known check",
    )

    @field_validator("start_time", "end_time")
    @classmethod
    def _normalize_tz(cls, value: datetime) -> datetime:
        return ensure_utc(value)

    @model_validator(mode="after")
    def _check_interval(self) -> CalendarItem:
        if self.start_time >= self.end_time:
            raise ValueError("start_time must be before end_time")
        return self

    @property
    def provider_id(self) -> str:
        """Identifier compared against the known-ids set."""
        return self.external_id or self.id

    @property
    def duration_minutes(self) -> float:
        return (self.end_time - self.start_time).total_seconds() / 60


class MailMessage(BaseModel):
    """Mailbox message imported from a provider snapshot."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Stored message identifier")
    user_id: str = Field(..., description="Mailbox owner")
    subject: str | None = Field(default=None)
    from_address: str | None = Field(default=None)
    body: str | None = Field(default=None)
    received_time: datetime = Field(default_factory=utc_now)

    @field_validator("received_time")
    @classmethod
    def _normalize_tz(cls, value: datetime) -> datetime:
        return ensure_utc(value)


class UserProfile(BaseModel):
    """User whose snapshot is processed in a detection cycle."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    email: str = Field(..., description="Used to recognise declined invitations")


# ---------------------------------------------------------------------------
# Event payloads
# ---------------------------------------------------------------------------


class _Payload(BaseModel):
    model_config = ConfigDict(frozen=True)


class NewEventData(_Payload):
    event_id: str
    title: str
    start_time: datetime
    end_time: datetime
    location: str | None = None
    description: str | None = None
    attendees: list[CalendarAttendee] | None = None


class UpcomingEventData(_Payload):
    event_id: str
    title: str
    start_time: datetime
    end_time: datetime
    location: str | None = None
    time_until_start: int = Field(..., description="Minutes until start")
    reminder: ReminderState


class ImportantEmailData(_Payload):
    email_id: str
    subject: str
    from_address: str
    snippet: str
    importance: Literal[ImportanceLevel.HIGH, ImportanceLevel.URGENT]
    received_time: datetime


class ConflictingEvent(_Payload):
    """One side of a conflicting pair."""

    event_id: str
    title: str
    start_time: datetime
    end_time: datetime
    location: str | None = None


class ConflictSuggestion(_Payload):
    """Deterministic remediation option for a conflict."""

    action: SuggestionAction
    description: str
    event_id: str | None = None


class ConflictData(_Payload):
    conflict_id: str
    conflict_type: ConflictType
    severity: ConflictSeverity
    conflicting_events: tuple[ConflictingEvent, ConflictingEvent]
    overlap_minutes: int = Field(
        ..., description="Overlap (or gap, for back-to-back) in whole minutes"
    )
    suggestions: list[ConflictSuggestion]
    detected_at: datetime = Field(default_factory=utc_now)


class SummaryData(_Payload):
    message: str
    batch_type: Literal["calendar", "email", "conflict"]
    batch_id: str
    item_ids: list[str] = Field(default_factory=list)
    is_proactive: bool = True


class SystemNotificationData(_Payload):
    title: str
    message: str
    action_url: str | None = None


class ChatMessageData(_Payload):
    message: str
    is_proactive: bool = True
    trigger_event_type: EventType | None = None
    trigger_event_id: str | None = None


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------


class BaseEvent(BaseModel):
    """Fields shared by every event; immutable once created."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Unique event identifier")
    user_id: str = Field(..., description="Recipient user")
    type: EventType
    timestamp: datetime = Field(default_factory=utc_now)
    priority: EventPriority = EventPriority.MEDIUM
    source: EventSource = EventSource.SYSTEM
    data: _Payload

    @field_validator("timestamp")
    @classmethod
    def _normalize_tz(cls, value: datetime) -> datetime:
        return ensure_utc(value)

    def to_wire_payload(self) -> dict[str, Any]:
        """Build the channel payload: envelope fields plus type-specific data."""
        payload: dict[str, Any] = {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "priority": self.priority.value,
            "source": self.source.value,
        }
        payload.update(self.data.model_dump(mode="json", exclude_none=True))
        return payload


class NewCalendarEvent(BaseEvent):
    type: Literal[EventType.CALENDAR_NEW_EVENT] = EventType.CALENDAR_NEW_EVENT
    source: EventSource = EventSource.CALENDAR_SYNC
    data: NewEventData


class UpcomingCalendarEvent(BaseEvent):
    type: Literal[EventType.CALENDAR_UPCOMING_EVENT] = (
        EventType.CALENDAR_UPCOMING_EVENT
    )
    source: EventSource = EventSource.CALENDAR_SYNC
    data: UpcomingEventData


class ImportantEmailEvent(BaseEvent):
    type: Literal[EventType.GMAIL_IMPORTANT_EMAIL] = EventType.GMAIL_IMPORTANT_EMAIL
    source: EventSource = EventSource.GMAIL_SYNC
    data: ImportantEmailData


class ConflictEvent(BaseEvent):
    type: Literal[EventType.CALENDAR_CONFLICT_DETECTED] = (
        EventType.CALENDAR_CONFLICT_DETECTED
    )
    source: EventSource = EventSource.CALENDAR_SYNC
    data: ConflictData


class SummaryEvent(BaseEvent):
    type: Literal[EventType.BATCH_SUMMARY] = EventType.BATCH_SUMMARY
    data: SummaryData


class SystemNotificationEvent(BaseEvent):
    type: Literal[EventType.SYSTEM_NOTIFICATION] = EventType.SYSTEM_NOTIFICATION
    data: SystemNotificationData


class ChatMessageEvent(BaseEvent):
    type: Literal[EventType.CHAT_MESSAGE] = EventType.CHAT_MESSAGE
    data: ChatMessageData


Event = Annotated[
    NewCalendarEvent
    | UpcomingCalendarEvent
    | ImportantEmailEvent
    | ConflictEvent
    | SummaryEvent
    | SystemNotificationEvent
    | ChatMessageEvent,
    Field(discriminator="type"),
]
"""Discriminated union of every event delivered over a channel."""

CalendarDetection = NewCalendarEvent | UpcomingCalendarEvent


class ConflictAnalysis(BaseModel):
    """Result of one conflict detection pass."""

    has_conflicts: bool
    conflicts: list[ConflictEvent] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Delivery bookkeeping
# ---------------------------------------------------------------------------


class DedupKey(BaseModel):
    """Category plus identity of a logical change."""

    model_config = ConfigDict(frozen=True)

    category: str
    identity: str


class DedupEntry(BaseModel):
    """Cached record of an announced change."""

    key: str
    timestamp: datetime = Field(default_factory=utc_now)
    payload: dict[str, Any] = Field(default_factory=dict)


class Subscription(BaseModel):
    """Per-user record of which event types may be delivered."""

    user_id: str
    event_types: set[EventType] = Field(default_factory=set)
    is_active: bool = True
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class BroadcastResult(BaseModel):
    """Outcome of a single broadcast call."""

    success: bool
    subscriber_count: int = 0
    event_id: str
    error: str | None = None
    duplicate: bool = False


class EventStoreStats(BaseModel):
    total_events: int
    user_count: int
    oldest_event: datetime | None = None
    newest_event: datetime | None = None


class DetectionCycleResult(BaseModel):
    """Counts from one per-user detection cycle."""

    user_id: str
    correlation_id: str
    detected_events: int = 0
    conflicts: int = 0
    delivered: int = 0
    duplicates: int = 0
    failed: int = 0
    skipped_no_subscription: int = 0
    errors: list[str] = Field(default_factory=list)


class BatchResult(BaseModel):
    """Outcome of a batch summary attempt."""

    batch_id: str
    delivered: bool = False
    duplicate: bool = False
    item_count: int = 0
    error: str | None = None
