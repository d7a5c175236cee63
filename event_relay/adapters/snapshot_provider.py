"""File-based snapshot provider.

Reads one JSON document per user from a directory::

    {
      "user": {"user_id": "u1", "email": "me@example.com"},
      "calendar_items": [{"id": "...", "start_time": "...", "end_time": "..."}],
      "messages": [{"id": "...", "subject": "...", "body": "..."}],
      "known_calendar_ids": ["..."],
      "known_message_ids": ["..."]
    }

Malformed records are skipped with a warning.
"""

import json
from pathlib import Path
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from event_relay.config.logging_config import get_logger
from event_relay.domain.exceptions import ValidationError
from event_relay.domain.models import CalendarItem, MailMessage, UserProfile

logger = get_logger(__name__)


def parse_calendar_items(raw_items: list[dict[str, Any]]) -> list[CalendarItem]:
    """Validate raw calendar records, dropping the ones without a valid interval."""
    items: list[CalendarItem] = []
    for raw in raw_items:
        try:
            items.append(CalendarItem.model_validate(raw))
        except PydanticValidationError as exc:
            logger.warning(
                "calendar_item_skipped",
                item_id=raw.get("id") if isinstance(raw, dict) else None,
                error_count=exc.error_count(),
            )
    return items


def parse_messages(user_id: str, raw_messages: list[dict[str, Any]]) -> list[MailMessage]:
    messages: list[MailMessage] = []
    for raw in raw_messages:
        try:
            messages.append(MailMessage.model_validate({**raw, "user_id": user_id}))
        except (PydanticValidationError, TypeError) as exc:
            logger.warning(
                "mail_message_skipped",
                message_id=raw.get("id") if isinstance(raw, dict) else None,
                error=str(exc),
            )
    return messages


class JsonSnapshotProvider:
    """Serve per-user snapshots from ``{directory}/{user_id}.json``.

    Calendar and message ids fetched in a completed cycle are remembered in
    memory: calendar items are announced as new only once per process, and
    messages are scored only in the first cycle that sees them.
    """

    def __init__(self, directory: str | Path) -> None:
        self.directory = Path(directory)
        self._seen_ids: dict[str, set[str]] = {}
        self._fetched_ids: dict[str, set[str]] = {}
        self._seen_message_ids: dict[str, set[str]] = {}
        self._fetched_message_ids: dict[str, set[str]] = {}

    def list_users(self) -> list[UserProfile]:
        users: list[UserProfile] = []
        for path in sorted(self.directory.glob("*.json")):
            try:
                document = self._read(path)
                users.append(UserProfile.model_validate(document["user"]))
            except (KeyError, PydanticValidationError, ValidationError) as exc:
                logger.warning("snapshot_user_skipped", path=str(path), error=str(exc))
        return users

    def fetch_calendar_items(self, user_id: str) -> list[CalendarItem]:
        items = parse_calendar_items(self._document(user_id).get("calendar_items") or [])
        self._fetched_ids[user_id] = {item.provider_id for item in items}
        return items

    def fetch_messages(self, user_id: str) -> list[MailMessage]:
        document = self._document(user_id)
        known = set(document.get("known_message_ids") or [])
        known |= self._seen_message_ids.get(user_id, set())
        messages = [
            message
            for message in parse_messages(user_id, document.get("messages") or [])
            if message.id not in known
        ]
        self._fetched_message_ids[user_id] = {message.id for message in messages}
        return messages

    def known_calendar_ids(self, user_id: str) -> set[str]:
        known = set(self._document(user_id).get("known_calendar_ids") or [])
        return known | self._seen_ids.get(user_id, set())

    def mark_cycle_complete(self, user_id: str) -> None:
        """Treat what the finished cycle fetched as known from now on."""
        fetched = self._fetched_ids.pop(user_id, set())
        self._seen_ids.setdefault(user_id, set()).update(fetched)
        messages = self._fetched_message_ids.pop(user_id, set())
        self._seen_message_ids.setdefault(user_id, set()).update(messages)

    def _document(self, user_id: str) -> dict[str, Any]:
        path = self.directory / f"{user_id}.json"
        if not path.exists():
            return {}
        return self._read(path)

    @staticmethod
    def _read(path: Path) -> dict[str, Any]:
        try:
            with open(path, encoding="utf-8") as f:
                document = json.load(f)
        except (json.JSONDecodeError, OSError) as exc:
            raise ValidationError(f"Unreadable snapshot {path}: {exc}") from exc
        if not isinstance(document, dict):
            raise ValidationError(f"Snapshot {path} must be a JSON object")
        return document
