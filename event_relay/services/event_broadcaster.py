"""Event broadcaster: stores, gates, deduplicates and publishes events.

Per event, strictly in this order:
1. Record in the event store (failures are logged, never fatal)
2. Check the subscription, creating a default one once if missing
3. Claim the change in the notification cache; duplicates stop here
4. Publish on the user's channel, retrying once on transient failures
5. Hand applicable events to the enrichment runner (best effort)
"""

import errno
import time
from collections.abc import Callable, Iterable
from typing import Any, Final
from uuid import uuid4

from pydantic import TypeAdapter

from event_relay.config.logging_config import get_logger
from event_relay.domain.exceptions import (
    EnrichmentRejectedError,
    PublishError,
    TransientPublishError,
)
from event_relay.domain.models import (
    BaseEvent,
    BroadcastResult,
    ChatMessageData,
    ChatMessageEvent,
    Event,
    EventPriority,
    EventType,
    SummaryEvent,
    SystemNotificationData,
    SystemNotificationEvent,
    utc_now,
)
from event_relay.domain.protocols import ChannelTransport
from event_relay.observability.metrics import (
    BROADCASTS_TOTAL,
    DUPLICATES_SUPPRESSED_TOTAL,
    PUBLISH_RETRIES_TOTAL,
    SUBSCRIPTION_SELF_HEALS_TOTAL,
)
from event_relay.ports.enrichment_runner import EnrichmentRunnerPort
from event_relay.services.event_store import EventStore
from event_relay.services.notification_cache import (
    NotificationCache,
    dedup_key_for_event,
)
from event_relay.services.subscription_manager import SubscriptionManager

logger = get_logger(__name__)

GLOBAL_CHANNEL: Final[str] = "global-notifications"
ENRICHMENT_JOB_NAME: Final[str] = "event_to_chat"
DEFAULT_RETRY_DELAY_SECONDS: Final[float] = 1.0
SYSTEM_NOTIFICATION_TITLE: Final[str] = "System Notification"

ENRICHABLE_EVENT_TYPES: Final[frozenset[EventType]] = frozenset(
    {
        EventType.CALENDAR_NEW_EVENT,
        EventType.CALENDAR_UPCOMING_EVENT,
        EventType.CALENDAR_EVENT_REMINDER,
        EventType.BATCH_SUMMARY,
    }
)

_TRANSIENT_ERRNOS: Final[frozenset[int]] = frozenset({errno.ECONNRESET, errno.EPIPE})
_TRANSIENT_MESSAGE_MARKERS: Final[tuple[str, ...]] = ("socket", "connection")

_EVENT_ADAPTER: Final[TypeAdapter[Event]] = TypeAdapter(Event)


def is_enrichable_event(event: BaseEvent) -> bool:
    """Calendar events and calendar batch summaries get a follow-up chat message."""
    if event.type not in ENRICHABLE_EVENT_TYPES:
        return False
    if isinstance(event, SummaryEvent):
        return event.data.batch_type == "calendar"
    return True


def channel_name_for(user_id: str) -> str:
    """Private channel carrying one user's events."""
    return f"user-{user_id}"


def is_transient_publish_error(exc: BaseException) -> bool:
    """Return True for connection-level failures worth one retry."""
    if isinstance(exc, PublishError):
        return False
    if isinstance(exc, (TransientPublishError, ConnectionError, TimeoutError)):
        return True
    if isinstance(exc, OSError) and exc.errno in _TRANSIENT_ERRNOS:
        return True
    message = str(exc).lower()
    return any(marker in message for marker in _TRANSIENT_MESSAGE_MARKERS)


class EventBroadcaster:
    """Deliver events to per-user channels."""

    def __init__(
        self,
        event_store: EventStore,
        subscriptions: SubscriptionManager,
        notification_cache: NotificationCache,
        transport: ChannelTransport,
        enrichment_runner: EnrichmentRunnerPort | None = None,
        retry_delay_seconds: float = DEFAULT_RETRY_DELAY_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.event_store = event_store
        self.subscriptions = subscriptions
        self.notification_cache = notification_cache
        self.transport = transport
        self.enrichment_runner = enrichment_runner
        self.retry_delay_seconds = retry_delay_seconds
        self._sleep = sleep

    def broadcast(self, event: BaseEvent) -> BroadcastResult:
        """Store, gate, deduplicate and publish one event.

        Returns:
            BroadcastResult; ``success`` is False only when publishing failed
        """
        self._store(event)

        logger.info(
            "event_broadcast_started",
            event_id=event.id,
            user_id=event.user_id,
            event_type=event.type.value,
        )

        if not self._ensure_subscription(event):
            BROADCASTS_TOTAL.labels(
                event_type=event.type.value, outcome="no_subscription"
            ).inc()
            return BroadcastResult(success=True, subscriber_count=0, event_id=event.id)

        dedup_key = dedup_key_for_event(event)
        claimed = self.notification_cache.claim(
            event.user_id,
            dedup_key.category,
            dedup_key.identity,
            metadata={"event_id": event.id, "event_type": event.type.value},
        )
        if not claimed:
            DUPLICATES_SUPPRESSED_TOTAL.labels(category=dedup_key.category).inc()
            BROADCASTS_TOTAL.labels(
                event_type=event.type.value, outcome="duplicate"
            ).inc()
            logger.info(
                "event_broadcast_skipped_duplicate",
                event_id=event.id,
                user_id=event.user_id,
                category=dedup_key.category,
            )
            return BroadcastResult(
                success=True, subscriber_count=0, event_id=event.id, duplicate=True
            )

        channel = channel_name_for(event.user_id)
        try:
            self._publish_with_retry(channel, event.type.value, event.to_wire_payload())
        except Exception as exc:  # noqa: BLE001
            self.notification_cache.release(
                event.user_id, dedup_key.category, dedup_key.identity
            )
            BROADCASTS_TOTAL.labels(event_type=event.type.value, outcome="failed").inc()
            logger.error(
                "event_broadcast_failed",
                event_id=event.id,
                user_id=event.user_id,
                event_type=event.type.value,
                error=str(exc),
            )
            self._submit_enrichment(event)
            return BroadcastResult(
                success=False, subscriber_count=0, event_id=event.id, error=str(exc)
            )

        BROADCASTS_TOTAL.labels(event_type=event.type.value, outcome="delivered").inc()
        logger.info(
            "event_broadcast_succeeded",
            event_id=event.id,
            channel=channel,
            event_type=event.type.value,
            priority=event.priority.value,
        )
        self._submit_enrichment(event)
        return BroadcastResult(success=True, subscriber_count=1, event_id=event.id)

    def broadcast_to_user(
        self, user_id: str, event_type: EventType, data: dict[str, Any]
    ) -> BroadcastResult:
        """Wrap ``data`` in an event of ``event_type`` and broadcast it.

        Raises:
            pydantic.ValidationError: ``data`` does not fit ``event_type``
        """
        event = _EVENT_ADAPTER.validate_python(
            {
                "id": f"{int(time.time() * 1000)}-{uuid4().hex[:7]}",
                "user_id": user_id,
                "type": event_type,
                "timestamp": utc_now(),
                "priority": EventPriority.MEDIUM,
                "data": data,
            }
        )
        return self.broadcast(event)

    def broadcast_system_notification(
        self, message: str, user_ids: Iterable[str] | None = None
    ) -> BroadcastResult:
        """Publish a system notice to the given users, or globally.

        System notices bypass subscriptions and dedup.
        """
        targets = list(user_ids or [])
        data = SystemNotificationData(title=SYSTEM_NOTIFICATION_TITLE, message=message)
        event_id = f"system-{uuid4().hex[:12]}"

        deliveries: list[tuple[str, dict[str, Any]]] = []
        for user_id in targets:
            # One stored copy per recipient; the store is keyed by event id.
            event = SystemNotificationEvent(
                id=f"{event_id}-{user_id}", user_id=user_id, data=data
            )
            self._store(event)
            deliveries.append((channel_name_for(user_id), event.to_wire_payload()))

        if not targets:
            deliveries.append(
                (
                    GLOBAL_CHANNEL,
                    {
                        "id": event_id,
                        "timestamp": utc_now().isoformat(),
                        **data.model_dump(mode="json", exclude_none=True),
                    },
                )
            )

        delivered = 0
        errors: list[str] = []
        for channel, payload in deliveries:
            try:
                self._publish_with_retry(
                    channel, EventType.SYSTEM_NOTIFICATION.value, payload
                )
                delivered += 1
            except Exception as exc:  # noqa: BLE001
                errors.append(f"{channel}: {exc}")
                logger.error(
                    "system_notification_failed", channel=channel, error=str(exc)
                )

        logger.info(
            "system_notification_broadcast",
            target="global" if not targets else "users",
            channel_count=len(deliveries),
            delivered=delivered,
        )
        return BroadcastResult(
            success=not errors,
            subscriber_count=delivered,
            event_id=event_id,
            error="; ".join(errors) or None,
        )

    def broadcast_chat_message(
        self,
        user_id: str,
        message: str,
        trigger: BaseEvent | None = None,
    ) -> BroadcastResult:
        """Broadcast a proactive assistant message."""
        event = ChatMessageEvent(
            id=f"chat-message-{uuid4().hex[:12]}",
            user_id=user_id,
            data=ChatMessageData(
                message=message,
                is_proactive=True,
                trigger_event_type=trigger.type if trigger else None,
                trigger_event_id=trigger.id if trigger else None,
            ),
        )
        return self.broadcast(event)

    def cleanup(self) -> int:
        """Drop expired events from the event store."""
        return self.event_store.cleanup()

    # Internal helpers -------------------------------------------------

    def _store(self, event: BaseEvent) -> None:
        try:
            self.event_store.store(event)
        except Exception:  # noqa: BLE001
            logger.exception("event_store_failed", event_id=event.id)

    def _ensure_subscription(self, event: BaseEvent) -> bool:
        """Return False when delivery should be skipped for lack of subscription."""
        try:
            if self.subscriptions.has_active_subscription(event.user_id, event.type):
                return True

            logger.info(
                "subscription_missing",
                user_id=event.user_id,
                event_type=event.type.value,
            )
            self.subscriptions.initialize_default(event.user_id)
            SUBSCRIPTION_SELF_HEALS_TOTAL.inc()

            if self.subscriptions.has_active_subscription(event.user_id, event.type):
                logger.info("subscription_self_healed", user_id=event.user_id)
                return True
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "subscription_check_failed",
                user_id=event.user_id,
                error=str(exc),
            )
            return True

        logger.warning(
            "subscription_unavailable",
            user_id=event.user_id,
            event_type=event.type.value,
        )
        return False

    def _publish_with_retry(
        self, channel: str, event_type: str, payload: dict[str, Any]
    ) -> None:
        try:
            self.transport.publish(channel, event_type, payload)
            return
        except Exception as exc:
            if not is_transient_publish_error(exc):
                raise
            logger.warning(
                "publish_transient_failure",
                channel=channel,
                event_type=event_type,
                error=str(exc),
                retry_in_seconds=self.retry_delay_seconds,
            )

        self._sleep(self.retry_delay_seconds)
        try:
            self.transport.publish(channel, event_type, payload)
        except Exception:
            PUBLISH_RETRIES_TOTAL.labels(outcome="failed").inc()
            raise
        PUBLISH_RETRIES_TOTAL.labels(outcome="succeeded").inc()
        logger.info("publish_retry_succeeded", channel=channel, event_type=event_type)

    def _submit_enrichment(self, event: BaseEvent) -> None:
        if self.enrichment_runner is None or not is_enrichable_event(event):
            return
        try:
            self.enrichment_runner.submit(ENRICHMENT_JOB_NAME, {"event": event})
        except EnrichmentRejectedError:
            logger.warning("enrichment_skipped_queue_full", event_id=event.id)
        except Exception:  # noqa: BLE001
            logger.exception("enrichment_submit_failed", event_id=event.id)
