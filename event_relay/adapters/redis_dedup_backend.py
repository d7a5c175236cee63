"""Redis-backed dedup storage shared by every worker process.

Entries are JSON strings with native key expiry; claims use ``SET NX EX`` so
concurrent broadcasters agree on a single owner.
"""

from typing import Final

import redis
from pydantic import ValidationError as PydanticValidationError

from event_relay.config.logging_config import get_logger
from event_relay.domain.exceptions import SharedStoreError
from event_relay.domain.models import DedupEntry

logger = get_logger(__name__)

DEFAULT_KEY_PREFIX: Final[str] = "notification:"


class RedisDedupBackend:
    """Dedup backend over a redis-py client (``decode_responses=True``)."""

    def __init__(
        self, client: redis.Redis, key_prefix: str = DEFAULT_KEY_PREFIX
    ) -> None:
        self._client = client
        self._prefix = key_prefix

    def get(self, key: str) -> DedupEntry | None:
        try:
            raw = self._client.get(self._prefix + key)
        except redis.RedisError as exc:
            raise SharedStoreError(f"Redis GET failed: {exc}") from exc

        if raw is None:
            return None
        try:
            return DedupEntry.model_validate_json(raw)
        except PydanticValidationError:
            logger.warning("dedup_entry_corrupt", key=key)
            return DedupEntry(key=key)

    def set(self, entry: DedupEntry, ttl_seconds: int) -> None:
        try:
            self._client.set(
                self._prefix + entry.key, entry.model_dump_json(), ex=ttl_seconds
            )
        except redis.RedisError as exc:
            raise SharedStoreError(f"Redis SET failed: {exc}") from exc

    def set_if_absent(self, entry: DedupEntry, ttl_seconds: int) -> bool:
        try:
            created = self._client.set(
                self._prefix + entry.key,
                entry.model_dump_json(),
                ex=ttl_seconds,
                nx=True,
            )
        except redis.RedisError as exc:
            raise SharedStoreError(f"Redis SET NX failed: {exc}") from exc
        return bool(created)

    def delete(self, key: str) -> None:
        try:
            self._client.delete(self._prefix + key)
        except redis.RedisError as exc:
            raise SharedStoreError(f"Redis DEL failed: {exc}") from exc

    def size(self) -> int:
        try:
            return sum(1 for _ in self._client.scan_iter(match=f"{self._prefix}*"))
        except redis.RedisError as exc:
            raise SharedStoreError(f"Redis SCAN failed: {exc}") from exc
