"""Redis-backed subscriptions visible to every worker process."""

from typing import Final

import redis

from event_relay.domain.exceptions import SharedStoreError
from event_relay.domain.models import Subscription


KEY_PREFIX: Final[str] = "subscription:"


class RedisSubscriptionStore:
    """Subscriptions stored as JSON at ``subscription:{user_id}``."""

    def __init__(self, client: redis.Redis, key_prefix: str = KEY_PREFIX) -> None:
        self._client = client
        self._prefix = key_prefix

    def _key(self, user_id: str) -> str:
        return f"{self._prefix}{user_id}"

    def get(self, user_id: str) -> Subscription | None:
        try:
            raw = self._client.get(self._key(user_id))
        except redis.RedisError as exc:
            raise SharedStoreError(f"Redis GET failed: {exc}") from exc
        return Subscription.model_validate_json(raw) if raw else None

    def put(self, subscription: Subscription) -> None:
        try:
            self._client.set(
                self._key(subscription.user_id), subscription.model_dump_json()
            )
        except redis.RedisError as exc:
            raise SharedStoreError(f"Redis SET failed: {exc}") from exc

    def put_if_absent(self, subscription: Subscription) -> bool:
        try:
            created = self._client.set(
                self._key(subscription.user_id),
                subscription.model_dump_json(),
                nx=True,
            )
        except redis.RedisError as exc:
            raise SharedStoreError(f"Redis SET NX failed: {exc}") from exc
        return bool(created)

    def delete(self, user_id: str) -> None:
        try:
            self._client.delete(self._key(user_id))
        except redis.RedisError as exc:
            raise SharedStoreError(f"Redis DEL failed: {exc}") from exc

    def list_all(self) -> list[Subscription]:
        subscriptions: list[Subscription] = []
        try:
            for key in self._client.scan_iter(match=f"{self._prefix}*"):
                raw = self._client.get(key)
                if raw:
                    subscriptions.append(Subscription.model_validate_json(raw))
        except redis.RedisError as exc:
            raise SharedStoreError(f"Redis SCAN failed: {exc}") from exc
        return subscriptions
