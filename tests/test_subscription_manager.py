from __future__ import annotations

from event_relay.domain.models import EventType
from event_relay.services.subscription_manager import (
    DEFAULT_EVENT_TYPES,
    SubscriptionManager,
)


def test_initialize_default_creates_active_subscription(
    subscriptions: SubscriptionManager,
) -> None:
    subscription = subscriptions.initialize_default("u1")

    assert subscription.is_active is True
    assert subscription.event_types == set(DEFAULT_EVENT_TYPES)
    assert EventType.SYSTEM_NOTIFICATION not in subscription.event_types
    assert subscriptions.has_active_subscription("u1", EventType.CALENDAR_NEW_EVENT)
    assert not subscriptions.has_active_subscription("u1", EventType.SYSTEM_NOTIFICATION)


def test_initialize_default_keeps_existing_opt_out(
    subscriptions: SubscriptionManager,
) -> None:
    subscriptions.create_or_update("u1", [EventType.CHAT_MESSAGE], is_active=False)

    subscription = subscriptions.initialize_default("u1")

    assert subscription.is_active is False
    assert subscription.event_types == {EventType.CHAT_MESSAGE}


def test_create_or_update_preserves_creation_time(
    subscriptions: SubscriptionManager,
) -> None:
    created = subscriptions.create_or_update("u1", [EventType.CHAT_MESSAGE])

    updated = subscriptions.create_or_update(
        "u1", [EventType.CHAT_MESSAGE, EventType.BATCH_SUMMARY]
    )

    assert updated.created_at == created.created_at
    assert updated.updated_at >= created.updated_at
    assert subscriptions.get_subscription("u1").event_types == {
        EventType.CHAT_MESSAGE,
        EventType.BATCH_SUMMARY,
    }


def test_enable_and_disable(subscriptions: SubscriptionManager) -> None:
    subscriptions.initialize_default("u1")

    subscriptions.disable("u1")
    assert not subscriptions.has_active_subscription("u1", EventType.CHAT_MESSAGE)

    subscriptions.enable("u1")
    assert subscriptions.has_active_subscription("u1", EventType.CHAT_MESSAGE)


def test_toggling_unknown_user_is_a_no_op(subscriptions: SubscriptionManager) -> None:
    subscriptions.enable("ghost")
    subscriptions.disable("ghost")

    assert subscriptions.get_subscription("ghost") is None


def test_active_subscribers_sorted_and_delete(
    subscriptions: SubscriptionManager,
) -> None:
    for user_id in ("u3", "u1", "u2"):
        subscriptions.initialize_default(user_id)
    subscriptions.disable("u2")

    assert subscriptions.get_active_subscribers() == ["u1", "u3"]

    subscriptions.delete("u1")
    assert subscriptions.get_active_subscribers() == ["u3"]
    assert not subscriptions.has_active_subscription("u1", EventType.CHAT_MESSAGE)
