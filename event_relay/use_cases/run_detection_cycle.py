"""One detection-and-delivery cycle for a single user.

Pipeline:
1. Fetch calendar items, mailbox messages and known ids from the provider
2. Detect important emails, new and upcoming calendar items
3. Analyze calendar conflicts
4. Broadcast every detected event (dedup and subscriptions apply)
5. Optionally summarise freshly delivered events per batch type
"""

from collections.abc import Sequence
from datetime import datetime

from event_relay.config.logging_config import get_logger
from event_relay.domain.models import (
    BaseEvent,
    BroadcastResult,
    ConflictEvent,
    DetectionCycleResult,
    ImportantEmailEvent,
    NewCalendarEvent,
    UpcomingCalendarEvent,
    UserProfile,
    ensure_utc,
    utc_now,
)
from event_relay.domain.protocols import SnapshotProvider
from event_relay.observability.tracing import correlation_scope, stage_timer
from event_relay.services.conflict_detector import (
    ConflictDetectionOptions,
    analyze_conflicts,
    log_conflict_detection,
)
from event_relay.services.event_broadcaster import EventBroadcaster
from event_relay.services.event_detector import EventDetector
from event_relay.use_cases.process_event_batch import EventBatchProcessor

logger = get_logger(__name__)


def _tally(result: DetectionCycleResult, outcome: BroadcastResult) -> None:
    if not outcome.success:
        result.failed += 1
        if outcome.error:
            result.errors.append(f"{outcome.event_id}: {outcome.error}")
    elif outcome.duplicate:
        result.duplicates += 1
    elif outcome.subscriber_count == 0:
        result.skipped_no_subscription += 1
    else:
        result.delivered += 1


def run_detection_cycle(
    user: UserProfile,
    provider: SnapshotProvider,
    detector: EventDetector,
    broadcaster: EventBroadcaster,
    conflict_options: ConflictDetectionOptions | None = None,
    batch_processor: EventBatchProcessor | None = None,
    now: datetime | None = None,
    correlation_id: str | None = None,
) -> DetectionCycleResult:
    """Detect and deliver events for one user.

    Args:
        user: User whose snapshot is processed
        provider: Source of calendar items, messages and known ids
        detector: Email/calendar event detector
        broadcaster: Delivery pipeline
        conflict_options: Conflict thresholds (defaults when None)
        batch_processor: Summarises delivered events when provided
        now: Reference time (defaults to current UTC time)
        correlation_id: Reuse an existing correlation id

    Returns:
        DetectionCycleResult with per-outcome counts
    """
    current = ensure_utc(now) if now else utc_now()

    with correlation_scope(correlation_id) as cid:
        result = DetectionCycleResult(user_id=user.user_id, correlation_id=cid)
        logger.info("detection_cycle_started", user_id=user.user_id)

        try:
            with stage_timer("fetch_snapshot"):
                items = provider.fetch_calendar_items(user.user_id)
                messages = provider.fetch_messages(user.user_id)
                known_ids = provider.known_calendar_ids(user.user_id)
        except Exception as exc:  # noqa: BLE001
            logger.exception("detection_cycle_fetch_failed", user_id=user.user_id)
            result.errors.append(f"fetch: {exc}")
            return result

        with stage_timer("detect_events"):
            email_events = detector.detect_important_messages(messages, now=current)
            calendar_events = detector.detect_calendar_events(
                user.user_id, items, known_ids, now=current
            )

        with stage_timer("analyze_conflicts"):
            analysis = analyze_conflicts(
                user.user_id, user.email, items, options=conflict_options, now=current
            )
            log_conflict_detection(analysis.conflicts)

        events: list[BaseEvent] = [*email_events, *calendar_events, *analysis.conflicts]
        result.detected_events = len(events)
        result.conflicts = len(analysis.conflicts)

        delivered: list[BaseEvent] = []
        with stage_timer("broadcast"):
            for event in events:
                outcome = broadcaster.broadcast(event)
                _tally(result, outcome)
                if outcome.success and not outcome.duplicate and outcome.subscriber_count:
                    delivered.append(event)

        if batch_processor is not None and delivered:
            with stage_timer("batch_summaries"):
                _summarise(user.user_id, delivered, batch_processor)

        logger.info(
            "detection_cycle_completed",
            user_id=user.user_id,
            detected=result.detected_events,
            conflicts=result.conflicts,
            delivered=result.delivered,
            duplicates=result.duplicates,
            failed=result.failed,
        )
        return result


def _summarise(
    user_id: str, delivered: Sequence[BaseEvent], processor: EventBatchProcessor
) -> None:
    calendar = [
        e for e in delivered if isinstance(e, NewCalendarEvent | UpcomingCalendarEvent)
    ]
    emails = [e for e in delivered if isinstance(e, ImportantEmailEvent)]
    conflicts = [e for e in delivered if isinstance(e, ConflictEvent)]

    if calendar:
        processor.process_calendar_batch(user_id, calendar)
    if emails:
        processor.process_email_batch(user_id, emails)
    if conflicts:
        processor.process_conflict_batch(user_id, conflicts)
