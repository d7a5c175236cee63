"""Per-user event subscriptions.

A user receives an event only while their subscription is active and lists
the event's type. State lives in a ``SubscriptionStore``.
"""

from collections.abc import Iterable
from typing import Final

from event_relay.config.logging_config import get_logger
from event_relay.domain.models import EventType, Subscription, utc_now
from event_relay.domain.protocols import SubscriptionStore

logger = get_logger(__name__)

DEFAULT_EVENT_TYPES: Final[frozenset[EventType]] = frozenset(
    {
        EventType.GMAIL_IMPORTANT_EMAIL,
        EventType.CALENDAR_UPCOMING_EVENT,
        EventType.CALENDAR_NEW_EVENT,
        EventType.CALENDAR_EVENT_REMINDER,
        EventType.CALENDAR_CONFLICT_DETECTED,
        EventType.BATCH_SUMMARY,
        EventType.CHAT_MESSAGE,
    }
)
"""Types enabled by a default subscription.

System notifications are opt-in and therefore excluded.
"""


class SubscriptionManager:
    """Create, toggle and query subscriptions."""

    def __init__(self, store: SubscriptionStore) -> None:
        self.store = store

    def has_active_subscription(self, user_id: str, event_type: EventType) -> bool:
        subscription = self.store.get(user_id)
        return (
            subscription is not None
            and subscription.is_active
            and event_type in subscription.event_types
        )

    def get_subscription(self, user_id: str) -> Subscription | None:
        return self.store.get(user_id)

    def create_or_update(
        self,
        user_id: str,
        event_types: Iterable[EventType],
        is_active: bool = True,
    ) -> Subscription:
        """Replace the user's type set and state, keeping the creation time."""
        now = utc_now()
        existing = self.store.get(user_id)
        subscription = Subscription(
            user_id=user_id,
            event_types=set(event_types),
            is_active=is_active,
            created_at=existing.created_at if existing else now,
            updated_at=now,
        )
        self.store.put(subscription)

        logger.info(
            "subscription_updated",
            user_id=user_id,
            event_types=sorted(t.value for t in subscription.event_types),
            is_active=is_active,
        )
        return subscription

    def enable(self, user_id: str) -> None:
        self._set_active(user_id, True)

    def disable(self, user_id: str) -> None:
        self._set_active(user_id, False)

    def delete(self, user_id: str) -> None:
        self.store.delete(user_id)
        logger.info("subscription_deleted", user_id=user_id)

    def initialize_default(self, user_id: str) -> Subscription:
        """Create an active default subscription unless one already exists.

        An existing subscription, including a disabled one, is returned
        unchanged so explicit opt-outs survive.
        """
        now = utc_now()
        candidate = Subscription(
            user_id=user_id,
            event_types=set(DEFAULT_EVENT_TYPES),
            is_active=True,
            created_at=now,
            updated_at=now,
        )
        if self.store.put_if_absent(candidate):
            logger.info("subscription_default_initialized", user_id=user_id)
            return candidate

        existing = self.store.get(user_id)
        if existing is None:
            # Deleted between the two calls; the next broadcast will retry.
            return candidate
        return existing

    def get_active_subscribers(self) -> list[str]:
        return sorted(s.user_id for s in self.store.list_all() if s.is_active)

    def _set_active(self, user_id: str, is_active: bool) -> None:
        subscription = self.store.get(user_id)
        if subscription is None:
            return
        updated = subscription.model_copy(
            update={"is_active": is_active, "updated_at": utc_now()}
        )
        self.store.put(updated)
        logger.info(
            "subscription_enabled" if is_active else "subscription_disabled",
            user_id=user_id,
        )
