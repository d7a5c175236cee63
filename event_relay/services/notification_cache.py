"""Notification dedup cache.

Suppresses re-announcing the same logical change to the same user within a
time window. Entries live in a ``DedupBackend`` (Redis in production, an
in-process dict for local runs) and expire after ``threshold_minutes``.

Backend failures never suppress a notification: the cache degrades to
"not a duplicate" and logs the failure.
"""

import hashlib
from collections.abc import Iterable
from typing import Any, Final

from event_relay.config.logging_config import get_logger
from event_relay.domain.exceptions import SharedStoreError
from event_relay.domain.models import (
    BaseEvent,
    ChatMessageEvent,
    ConflictEvent,
    DedupEntry,
    DedupKey,
    ImportantEmailEvent,
    NewCalendarEvent,
    NotificationCategory,
    SummaryEvent,
    SystemNotificationEvent,
    UpcomingCalendarEvent,
)
from event_relay.domain.protocols import DedupBackend
from event_relay.services.conflict_detector import conflict_identity

logger = get_logger(__name__)

DEFAULT_THRESHOLD_MINUTES: Final[int] = 30
CONTENT_HASH_LENGTH: Final[int] = 16


def content_hash(contents: Iterable[str]) -> str:
    """Order-independent digest of a set of strings.

    Example:
        >>> content_hash(["b", "a"]) == content_hash(["a", "b"])
        True
    """
    joined = "|".join(sorted(contents))
    return hashlib.sha256(joined.encode("utf-8")).hexdigest()[:CONTENT_HASH_LENGTH]


def build_cache_key(user_id: str, category: str, identity: str) -> str:
    """Backend key for a (user, category, identity) triple."""
    return f"{category}:{user_id}:{identity}"


def dedup_key_for_event(event: BaseEvent) -> DedupKey:
    """Map an event onto the identity of the change it announces.

    - Conflicts: sorted pair of constituent item ids
    - New calendar items: item id
    - Upcoming reminders: item id plus reminder state (soon and starting are
      separate announcements)
    - Important emails: message id
    - Summaries: batch type plus the covered item ids
    - Chat/system messages: trigger event when known, else message content
    """
    if isinstance(event, ConflictEvent):
        return DedupKey(
            category=NotificationCategory.CONFLICT, identity=conflict_identity(event)
        )
    if isinstance(event, NewCalendarEvent):
        return DedupKey(
            category=NotificationCategory.CALENDAR,
            identity=f"new:{event.data.event_id}",
        )
    if isinstance(event, UpcomingCalendarEvent):
        return DedupKey(
            category=NotificationCategory.CALENDAR,
            identity=f"upcoming:{event.data.event_id}:{event.data.reminder.value}",
        )
    if isinstance(event, ImportantEmailEvent):
        return DedupKey(category=NotificationCategory.EMAIL, identity=event.data.email_id)
    if isinstance(event, SummaryEvent):
        item_ids = event.data.item_ids or [event.data.batch_id]
        return DedupKey(
            category=event.data.batch_type,
            identity=f"summary:{content_hash(item_ids)}",
        )
    if isinstance(event, ChatMessageEvent):
        if event.data.trigger_event_id:
            identity = f"trigger:{event.data.trigger_event_id}"
        else:
            identity = f"message:{content_hash([event.data.message])}"
        return DedupKey(category=NotificationCategory.CHAT, identity=identity)
    if isinstance(event, SystemNotificationEvent):
        return DedupKey(
            category=NotificationCategory.SYSTEM,
            identity=content_hash([event.data.title, event.data.message]),
        )
    return DedupKey(category=event.type.value, identity=event.id)


class NotificationCache:
    """TTL dedup cache keyed by user, category and change identity."""

    def __init__(
        self,
        backend: DedupBackend,
        threshold_minutes: int = DEFAULT_THRESHOLD_MINUTES,
    ) -> None:
        if threshold_minutes <= 0:
            raise ValueError("threshold_minutes must be positive")
        self.backend = backend
        self.threshold_minutes = threshold_minutes

    @property
    def ttl_seconds(self) -> int:
        return self.threshold_minutes * 60

    def is_duplicate(self, user_id: str, category: str, identity: str) -> bool:
        """Return True if the change was announced within the threshold."""
        key = build_cache_key(user_id, category, identity)
        try:
            entry = self.backend.get(key)
        except SharedStoreError as exc:
            logger.warning(
                "notification_cache_lookup_failed", key=key, error=str(exc)
            )
            return False

        if entry is None:
            return False

        logger.info(
            "notification_duplicate_detected",
            user_id=user_id,
            category=category,
            identity=identity,
            cached_at=entry.timestamp.isoformat(),
            threshold_minutes=self.threshold_minutes,
        )
        return True

    def mark_notified(
        self,
        user_id: str,
        category: str,
        identity: str,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Record an announcement; refreshes the window if already present."""
        entry = DedupEntry(
            key=build_cache_key(user_id, category, identity), payload=metadata or {}
        )
        try:
            self.backend.set(entry, self.ttl_seconds)
        except SharedStoreError as exc:
            logger.warning(
                "notification_cache_write_failed", key=entry.key, error=str(exc)
            )
            return

        logger.debug(
            "notification_cached",
            user_id=user_id,
            category=category,
            identity=identity,
            cache_size=self._safe_size(),
        )

    def claim(
        self,
        user_id: str,
        category: str,
        identity: str,
        metadata: dict[str, Any] | None = None,
    ) -> bool:
        """Atomically check and mark a change.

        Returns:
            True if the caller now owns the announcement, False if it is a
            duplicate. Backend failures return True.
        """
        entry = DedupEntry(
            key=build_cache_key(user_id, category, identity), payload=metadata or {}
        )
        try:
            claimed = self.backend.set_if_absent(entry, self.ttl_seconds)
        except SharedStoreError as exc:
            logger.warning(
                "notification_cache_claim_failed", key=entry.key, error=str(exc)
            )
            return True

        if not claimed:
            logger.info(
                "notification_duplicate_detected",
                user_id=user_id,
                category=category,
                identity=identity,
                threshold_minutes=self.threshold_minutes,
            )
        return claimed

    def release(self, user_id: str, category: str, identity: str) -> None:
        """Forget a claim so the next cycle can deliver again."""
        key = build_cache_key(user_id, category, identity)
        try:
            self.backend.delete(key)
        except SharedStoreError as exc:
            logger.warning("notification_cache_release_failed", key=key, error=str(exc))
            return
        logger.debug("notification_claim_released", key=key)

    def is_duplicate_by_ids(
        self, user_id: str, category: str, item_ids: Iterable[str]
    ) -> bool:
        """Duplicate check for a batch identified by its item ids."""
        return self.is_duplicate(user_id, category, content_hash(item_ids))

    def mark_notified_by_ids(
        self,
        user_id: str,
        category: str,
        item_ids: Iterable[str],
        metadata: dict[str, Any] | None = None,
    ) -> None:
        self.mark_notified(user_id, category, content_hash(item_ids), metadata)

    def generate_content_hash(self, contents: Iterable[str]) -> str:
        return content_hash(contents)

    def stats(self) -> dict[str, int | None]:
        return {
            "size": self._safe_size(),
            "threshold_minutes": self.threshold_minutes,
        }

    def _safe_size(self) -> int | None:
        try:
            return self.backend.size()
        except SharedStoreError:
            return None
