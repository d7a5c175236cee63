"""Protocol definitions for dependency inversion.

These abstract interfaces define contracts that adapters and external
collaborators must implement.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from typing import Any, Protocol, runtime_checkable

from event_relay.domain.models import (
    CalendarItem,
    DedupEntry,
    MailMessage,
    Subscription,
)


class SnapshotProvider(Protocol):
    """Raw-item provider for one user's calendar and mailbox snapshot."""

    def fetch_calendar_items(self, user_id: str) -> list[CalendarItem]:
        """Return well-formed calendar items for the user.

        Records that cannot produce a valid ``start < end`` pair are dropped
        by the provider.
        """
        ...

    def fetch_messages(self, user_id: str) -> list[MailMessage]:
        """Return mailbox messages imported in this cycle."""
        ...

    def known_calendar_ids(self, user_id: str) -> set[str]:
        """Return provider ids of calendar items already stored for the user."""
        ...


class RowPersistence(Protocol):
    """Relational persistence used upstream of the relay (interface only)."""

    def save_calendar_rows(
        self, user_id: str, rows: Sequence[dict[str, Any]]
    ) -> list[str]:
        """Upsert normalized calendar rows and return assigned identifiers."""
        ...

    def save_mail_rows(self, user_id: str, rows: Sequence[dict[str, Any]]) -> list[str]:
        """Upsert normalized mailbox rows and return assigned identifiers."""
        ...


@runtime_checkable
class ChannelTransport(Protocol):
    """Publish-capable real-time transport."""

    def publish(
        self, channel_name: str | list[str], event_type: str, payload: dict[str, Any]
    ) -> None:
        """Publish ``payload`` as ``event_type`` on the given channel(s).

        Raises:
            TransientPublishError: Connection-level failure worth one retry
            PublishError: Request rejected by the transport
        """
        ...


@runtime_checkable
class DedupBackend(Protocol):
    """Key-value storage for dedup entries with per-key expiry."""

    def get(self, key: str) -> DedupEntry | None:
        """Return the live entry for ``key`` or None if absent/expired."""
        ...

    def set(self, entry: DedupEntry, ttl_seconds: int) -> None:
        """Write ``entry`` with an expiry of ``ttl_seconds``."""
        ...

    def set_if_absent(self, entry: DedupEntry, ttl_seconds: int) -> bool:
        """Atomically write ``entry`` only if no live entry exists.

        Returns:
            True if the entry was written, False if one already existed
        """
        ...

    def delete(self, key: str) -> None:
        """Remove ``key`` if present."""
        ...

    def size(self) -> int | None:
        """Return number of entries, or None when the backend cannot tell."""
        ...


@runtime_checkable
class SubscriptionStore(Protocol):
    """Persistence for per-user subscriptions."""

    def get(self, user_id: str) -> Subscription | None: ...

    def put(self, subscription: Subscription) -> None: ...

    def put_if_absent(self, subscription: Subscription) -> bool:
        """Atomically create ``subscription`` unless one exists for the user."""
        ...

    def delete(self, user_id: str) -> None: ...

    def list_all(self) -> Iterable[Subscription]: ...


class SummaryGenerator(Protocol):
    """Natural-language generation collaborator (interface only)."""

    def generate(self, prompt: str, *, user_id: str, max_tokens: int) -> str | None:
        """Return generated text for ``prompt`` or None when nothing was produced."""
        ...


class ConversationHistory(Protocol):
    """Conversation store receiving proactive assistant messages."""

    def save_message(self, role: str, user_id: str, message: str) -> None: ...
