"""Per-process subscription store."""

import threading

from event_relay.domain.models import Subscription


class InMemorySubscriptionStore:
    """Dict-backed subscriptions; copies on read and write."""

    def __init__(self) -> None:
        self._subscriptions: dict[str, Subscription] = {}
        self._lock = threading.Lock()

    def get(self, user_id: str) -> Subscription | None:
        with self._lock:
            subscription = self._subscriptions.get(user_id)
            return subscription.model_copy(deep=True) if subscription else None

    def put(self, subscription: Subscription) -> None:
        with self._lock:
            self._subscriptions[subscription.user_id] = subscription.model_copy(
                deep=True
            )

    def put_if_absent(self, subscription: Subscription) -> bool:
        with self._lock:
            if subscription.user_id in self._subscriptions:
                return False
            self._subscriptions[subscription.user_id] = subscription.model_copy(
                deep=True
            )
            return True

    def delete(self, user_id: str) -> None:
        with self._lock:
            self._subscriptions.pop(user_id, None)

    def list_all(self) -> list[Subscription]:
        with self._lock:
            return [s.model_copy(deep=True) for s in self._subscriptions.values()]
