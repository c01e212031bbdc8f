"""In-memory TTL cache for weather snapshots."""

import time
from dataclasses import dataclass
from typing import Callable

from weather_app.core.config import settings
from weather_app.core.logging import get_logger
from weather_app.models.weather import CacheStats, WeatherSnapshot

logger = get_logger(__name__)

Clock = Callable[[], float]


@dataclass(frozen=True)
class CacheEntry:
    """Cached snapshot and the clock reading at which it was stored."""

    key: str
    value: WeatherSnapshot
    created_at: float


class SnapshotCache:
    """Snapshot cache keyed by location key.

    Expired entries are dropped on read and purged on the next write.
    """

    def __init__(self, ttl: float | None = None, clock: Clock = time.monotonic):
        """Initialize cache.

        Args:
            ttl: Entry lifetime in seconds, defaults to settings.cache_ttl
            clock: Monotonic time source in seconds
        """
        self.ttl = ttl if ttl is not None else settings.cache_ttl
        self.clock = clock
        self._entries: dict[str, CacheEntry] = {}

    def _is_fresh(self, entry: CacheEntry, now: float) -> bool:
        return now - entry.created_at < self.ttl

    def get(self, key: str) -> WeatherSnapshot | None:
        """Get a fresh snapshot.

        Args:
            key: Location key

        Returns:
            Cached snapshot or None if missing or expired
        """
        entry = self._entries.get(key)
        if entry is None:
            return None

        if not self._is_fresh(entry, self.clock()):
            del self._entries[key]
            logger.info("cache_expired", key=key)
            return None

        return entry.value

    def set(self, key: str, value: WeatherSnapshot) -> CacheEntry:
        """Store a snapshot, replacing any previous entry, then purge stale ones."""
        entry = CacheEntry(key=key, value=value, created_at=self.clock())
        self._entries[key] = entry
        self.purge_expired()
        logger.info("cache_set", key=key, ttl=self.ttl)
        return entry

    def purge_expired(self) -> int:
        """Drop every expired entry; returns how many were removed."""
        now = self.clock()
        stale = [key for key, entry in self._entries.items() if not self._is_fresh(entry, now)]
        for key in stale:
            del self._entries[key]
        if stale:
            logger.info("cache_purged", removed=len(stale))
        return len(stale)

    def clear(self) -> None:
        self._entries.clear()
        logger.info("cache_cleared")

    def stats(self) -> CacheStats:
        now = self.clock()
        valid = sum(1 for entry in self._entries.values() if self._is_fresh(entry, now))
        return CacheStats(
            total_entries=len(self._entries),
            valid_entries=valid,
            expired_entries=len(self._entries) - valid,
            ttl_seconds=self.ttl,
        )

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries
