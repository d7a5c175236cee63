"""Per-process dedup backend with lazy expiry and periodic sweeps."""

import threading
import time
from collections.abc import Callable
from typing import Final

from event_relay.config.logging_config import get_logger
from event_relay.domain.models import DedupEntry

logger = get_logger(__name__)

SWEEP_INTERVAL_SECONDS: Final[float] = 5 * 60


class InMemoryDedupBackend:
    """Dict-backed dedup storage.

    Expired entries are invisible to reads immediately and physically
    removed by ``sweep()``, which also runs on access at most once every
    ``sweep_interval_seconds``.
    """

    def __init__(
        self,
        sweep_interval_seconds: float = SWEEP_INTERVAL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._entries: dict[str, tuple[DedupEntry, float]] = {}
        self._lock = threading.Lock()
        self._clock = clock
        self._sweep_interval = sweep_interval_seconds
        self._last_sweep = clock()

    def get(self, key: str) -> DedupEntry | None:
        with self._lock:
            self._maybe_sweep()
            return self._live_entry(key)

    def set(self, entry: DedupEntry, ttl_seconds: int) -> None:
        with self._lock:
            self._maybe_sweep()
            self._entries[entry.key] = (entry, self._clock() + ttl_seconds)

    def set_if_absent(self, entry: DedupEntry, ttl_seconds: int) -> bool:
        with self._lock:
            self._maybe_sweep()
            if self._live_entry(entry.key) is not None:
                return False
            self._entries[entry.key] = (entry, self._clock() + ttl_seconds)
            return True

    def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def size(self) -> int:
        with self._lock:
            now = self._clock()
            return sum(1 for _, expires_at in self._entries.values() if expires_at > now)

    def sweep(self) -> int:
        """Remove expired entries; returns how many were dropped."""
        with self._lock:
            return self._sweep()

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def _live_entry(self, key: str) -> DedupEntry | None:
        item = self._entries.get(key)
        if item is None:
            return None
        entry, expires_at = item
        if expires_at <= self._clock():
            del self._entries[key]
            return None
        return entry

    def _maybe_sweep(self) -> None:
        if self._clock() - self._last_sweep >= self._sweep_interval:
            self._sweep()

    def _sweep(self) -> int:
        now = self._clock()
        self._last_sweep = now
        expired = [key for key, (_, expires_at) in self._entries.items() if expires_at <= now]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.debug(
                "dedup_cache_sweep_completed",
                removed=len(expired),
                remaining=len(self._entries),
            )
        return len(expired)
