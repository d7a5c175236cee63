"""Calendar conflict detection service.

Rules:
1. Whole-day, out-of-office, already-started and declined items never conflict
2. Items are swept in start order; each item is compared with later items
   until the first one that starts after it ends (no further overlap possible)
3. Overlaps of at least ``min_overlap_for_detection`` minutes are reported
   as exact or partial overlaps
4. The first non-overlapping successor is reported as back-to-back when the
   gap is within ``back_to_back_threshold`` minutes

Pure functions; O(n²) worst case per user, early break per item.
"""

from collections.abc import Iterable, Sequence
from datetime import datetime
from uuid import uuid4

from pydantic import BaseModel, Field

from event_relay.config.logging_config import get_logger
from event_relay.domain.conflict_constants import (
    DECLINED_RESPONSE_STATUS,
    DEFAULT_BACK_TO_BACK_THRESHOLD_MINUTES,
    DEFAULT_MIN_OVERLAP_MINUTES,
    MAJOR_OVERLAP_MINUTES,
    MODERATE_OVERLAP_MINUTES,
    OUT_OF_OFFICE_KEYWORDS,
    UNTITLED_EVENT,
    WHOLE_DAY_MIN_HOURS,
)
from event_relay.domain.models import (
    CalendarItem,
    ConflictAnalysis,
    ConflictData,
    ConflictEvent,
    ConflictingEvent,
    ConflictSeverity,
    ConflictSuggestion,
    ConflictType,
    EventPriority,
    SuggestionAction,
    ensure_utc,
    utc_now,
)

logger = get_logger(__name__)


class ConflictDetectionOptions(BaseModel):
    """Tunable thresholds for a detection pass."""

    back_to_back_threshold: int = Field(
        default=DEFAULT_BACK_TO_BACK_THRESHOLD_MINUTES,
        description="Max gap (minutes) reported as back-to-back",
    )
    enable_back_to_back_detection: bool = Field(
        default=True, description="Report touching/near-touching items"
    )
    min_overlap_for_detection: int = Field(
        default=DEFAULT_MIN_OVERLAP_MINUTES,
        description="Min overlap (minutes) reported as a conflict",
    )


def _minutes_between(start: datetime, end: datetime) -> float:
    return (end - start).total_seconds() / 60


def _round_minutes(minutes: float) -> int:
    """Round half up, matching how durations are shown to users."""
    return int(minutes + 0.5)


def _plural_minutes(minutes: int) -> str:
    return f"{minutes} minute{'' if minutes == 1 else 's'}"


def is_whole_day_event(item: CalendarItem) -> bool:
    """Return True for items lasting 20 hours or more."""
    return item.duration_minutes / 60 >= WHOLE_DAY_MIN_HOURS


def is_out_of_office_event(item: CalendarItem) -> bool:
    """Return True when title or description contains a leave/blocker keyword."""
    title = item.title.lower()
    description = (item.description or "").lower()
    return any(
        keyword in title or keyword in description
        for keyword in OUT_OF_OFFICE_KEYWORDS
    )


def has_declined(item: CalendarItem, user_email: str) -> bool:
    """Return True when the user's attendee entry is declined."""
    email = user_email.lower()
    for attendee in item.attendees:
        if attendee.email.lower() == email:
            return attendee.response_status == DECLINED_RESPONSE_STATUS
    return False


def should_include_in_conflict_detection(
    item: CalendarItem, user_email: str, now: datetime
) -> bool:
    """Pre-filter applied before the sweep.

    Example:
        >>> should_include_in_conflict_detection(vacation_item, "me@x.io", now)
        False
    """
    if is_whole_day_event(item):
        return False
    if is_out_of_office_event(item):
        return False
    if has_declined(item, user_email):
        return False
    if item.start_time < now:
        return False
    return True


def calculate_conflict_severity(
    overlap_minutes: float, is_exact: bool
) -> ConflictSeverity:
    """Classify an overlap.

    Example:
        >>> calculate_conflict_severity(30, is_exact=False)
        <ConflictSeverity.MODERATE: 'moderate'>
    """
    if is_exact:
        return ConflictSeverity.MAJOR
    if overlap_minutes >= MAJOR_OVERLAP_MINUTES:
        return ConflictSeverity.MAJOR
    elif overlap_minutes >= MODERATE_OVERLAP_MINUTES:
        return ConflictSeverity.MODERATE
    else:
        return ConflictSeverity.MINOR


def generate_overlap_suggestions(
    first: CalendarItem,
    second: CalendarItem,
    overlap_minutes: float,
    is_exact: bool,
) -> list[ConflictSuggestion]:
    """Build remediation options for an overlapping pair.

    Always reschedule the shorter item (the first on ties) and always offer to
    accept the conflict; shorten when the overlap is under half of the shorter
    duration; cancel on exact duplicates.
    """
    first_duration = first.duration_minutes
    second_duration = second.duration_minutes
    shorter = first if first_duration <= second_duration else second
    shown_overlap = _round_minutes(overlap_minutes)

    suggestions = [
        ConflictSuggestion(
            action=SuggestionAction.RESCHEDULE,
            description=(
                f'Consider rescheduling "{shorter.title or UNTITLED_EVENT}" to avoid '
                f"the {shown_overlap}-minute conflict"
            ),
            event_id=shorter.id,
        )
    ]

    if overlap_minutes < min(first_duration, second_duration) / 2:
        suggestions.append(
            ConflictSuggestion(
                action=SuggestionAction.SHORTEN,
                description=(
                    f"Shorten one of the events by {_plural_minutes(shown_overlap)} "
                    "to eliminate overlap"
                ),
            )
        )

    if is_exact:
        suggestions.append(
            ConflictSuggestion(
                action=SuggestionAction.CANCEL,
                description="Consider canceling one of the duplicate events",
            )
        )

    suggestions.append(
        ConflictSuggestion(
            action=SuggestionAction.ACCEPT_CONFLICT,
            description="Accept the scheduling conflict if both events are necessary",
        )
    )
    return suggestions


def generate_back_to_back_suggestions(
    first: CalendarItem, second: CalendarItem, gap_minutes: float
) -> list[ConflictSuggestion]:
    """Build remediation options for a back-to-back pair."""
    gap = _round_minutes(abs(gap_minutes))
    gap_description = (
        "events are back-to-back with no gap"
        if gap == 0
        else f"only {_plural_minutes(gap)} between events"
    )
    first_title = first.title or UNTITLED_EVENT
    second_title = second.title or UNTITLED_EVENT

    suggestions: list[ConflictSuggestion] = []

    if first.location != second.location and (first.location or second.location):
        suggestions.append(
            ConflictSuggestion(
                action=SuggestionAction.RESCHEDULE,
                description=(
                    f'Consider adding travel time between "{first_title}" and '
                    f'"{second_title}" (different locations, {gap_description})'
                ),
            )
        )

    suggestions.append(
        ConflictSuggestion(
            action=SuggestionAction.SHORTEN,
            description=(
                f'Consider ending "{first_title}" early to create more transition '
                f"time (currently {gap_description})"
            ),
            event_id=first.id,
        )
    )

    suggestions.append(
        ConflictSuggestion(
            action=SuggestionAction.ACCEPT_CONFLICT,
            description=(
                "Accept the back-to-back scheduling (no gap) if no transition "
                "time is needed"
                if gap == 0
                else f"Accept the tight scheduling ({_plural_minutes(gap)} gap)"
            ),
        )
    )
    return suggestions


def _conflicting_event(item: CalendarItem) -> ConflictingEvent:
    return ConflictingEvent(
        event_id=item.id,
        title=item.title or UNTITLED_EVENT,
        start_time=item.start_time,
        end_time=item.end_time,
        location=item.location,
    )


def create_overlap_conflict(
    user_id: str,
    first: CalendarItem,
    second: CalendarItem,
    overlap_minutes: float,
    detected_at: datetime,
) -> ConflictEvent:
    """Build the conflict event for two overlapping items."""
    is_exact = (
        first.start_time == second.start_time and first.end_time == second.end_time
    )
    severity = calculate_conflict_severity(overlap_minutes, is_exact)

    return ConflictEvent(
        id=f"conflict-{first.id}-{second.id}-{uuid4().hex[:12]}",
        user_id=user_id,
        timestamp=detected_at,
        priority=(
            EventPriority.HIGH
            if severity == ConflictSeverity.MAJOR
            else EventPriority.MEDIUM
        ),
        data=ConflictData(
            conflict_id=f"{first.id}-{second.id}",
            conflict_type=(
                ConflictType.EXACT_OVERLAP if is_exact else ConflictType.PARTIAL_OVERLAP
            ),
            severity=severity,
            conflicting_events=(_conflicting_event(first), _conflicting_event(second)),
            overlap_minutes=_round_minutes(overlap_minutes),
            suggestions=generate_overlap_suggestions(
                first, second, overlap_minutes, is_exact
            ),
            detected_at=detected_at,
        ),
    )


def create_back_to_back_conflict(
    user_id: str,
    first: CalendarItem,
    second: CalendarItem,
    gap_minutes: float,
    detected_at: datetime,
) -> ConflictEvent:
    """Build the conflict event for two adjacent items."""
    return ConflictEvent(
        id=f"conflict-b2b-{first.id}-{second.id}-{uuid4().hex[:12]}",
        user_id=user_id,
        timestamp=detected_at,
        priority=EventPriority.LOW,
        data=ConflictData(
            conflict_id=f"b2b-{first.id}-{second.id}",
            conflict_type=ConflictType.BACK_TO_BACK,
            severity=ConflictSeverity.MINOR,
            conflicting_events=(_conflicting_event(first), _conflicting_event(second)),
            overlap_minutes=_round_minutes(abs(gap_minutes)),
            suggestions=generate_back_to_back_suggestions(first, second, gap_minutes),
            detected_at=detected_at,
        ),
    )


def analyze_conflicts(
    user_id: str,
    user_email: str,
    intervals: Iterable[CalendarItem],
    options: ConflictDetectionOptions | None = None,
    now: datetime | None = None,
) -> ConflictAnalysis:
    """Detect overlap and back-to-back conflicts among a user's calendar items.

    Args:
        user_id: Calendar owner
        user_email: Owner's email (used to skip declined invitations)
        intervals: Well-formed calendar items
        options: Detection thresholds (defaults when None)
        now: Reference time for the already-started filter

    Returns:
        ConflictAnalysis with one conflict event per conflicting pair

    Example:
        >>> analysis = analyze_conflicts("u1", "me@x.io", [standup, review])
        >>> analysis.conflicts[0].data.conflict_type
        <ConflictType.BACK_TO_BACK: 'back_to_back'>
    """
    config = options or ConflictDetectionOptions()
    current = ensure_utc(now) if now else utc_now()

    items = list(intervals)
    candidates = [
        item
        for item in items
        if should_include_in_conflict_detection(item, user_email, current)
    ]

    if len(candidates) < len(items):
        logger.debug(
            "conflict_detection_items_filtered",
            user_id=user_id,
            original_count=len(items),
            filtered_count=len(candidates),
        )

    ordered: Sequence[CalendarItem] = sorted(candidates, key=lambda i: i.start_time)
    conflicts: list[ConflictEvent] = []

    for index, first in enumerate(ordered):
        for second in ordered[index + 1 :]:
            if second.start_time >= first.end_time:
                gap_minutes = _minutes_between(first.end_time, second.start_time)
                if (
                    config.enable_back_to_back_detection
                    and gap_minutes <= config.back_to_back_threshold
                ):
                    conflicts.append(
                        create_back_to_back_conflict(
                            user_id, first, second, gap_minutes, current
                        )
                    )
                break

            overlap_start = max(first.start_time, second.start_time)
            overlap_end = min(first.end_time, second.end_time)
            overlap_minutes = _minutes_between(overlap_start, overlap_end)
            if overlap_minutes >= config.min_overlap_for_detection:
                conflicts.append(
                    create_overlap_conflict(
                        user_id, first, second, overlap_minutes, current
                    )
                )

    return ConflictAnalysis(has_conflicts=bool(conflicts), conflicts=conflicts)


def conflict_identity(conflict: ConflictEvent) -> str:
    """Stable dedup identity: the sorted pair of constituent item ids."""
    ids = sorted(event.event_id for event in conflict.data.conflicting_events)
    return "|".join(ids)


def log_conflict_detection(conflicts: Sequence[ConflictEvent]) -> None:
    """Emit a structured summary of a detection pass."""
    if not conflicts:
        logger.debug("calendar_conflicts_none_detected")
        return

    logger.info(
        "calendar_conflicts_detected",
        conflict_count=len(conflicts),
        conflict_types=[c.data.conflict_type.value for c in conflicts],
        severities=[c.data.severity.value for c in conflicts],
    )
    for conflict in conflicts:
        logger.info(
            "calendar_conflict_detected",
            conflict_id=conflict.data.conflict_id,
            conflict_type=conflict.data.conflict_type.value,
            severity=conflict.data.severity.value,
            overlap_minutes=conflict.data.overlap_minutes,
            titles=[e.title for e in conflict.data.conflicting_events],
        )
