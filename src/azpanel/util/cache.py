"""In-memory TTL cache with prefix invalidation.

Keys follow an ``operation:qualifier:...`` convention (``webapp:show:rg:name``)
so a mutation can drop one family of reads with ``invalidate_by_prefix``.
Expired entries are dropped lazily by the lookup that finds them; there is no
background sweeper.
"""

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Generic, TypeVar

logger = logging.getLogger(__name__)

V = TypeVar("V")


@dataclass(frozen=True)
class CacheEntry(Generic[V]):
    """A cached value and its absolute expiry time (clock seconds)."""

    key: str
    value: V
    expires_at: float


class TTLCache(Generic[V]):
    """Thread-safe time-to-live cache guarded by one coarse lock.

    Args:
        should_cache: Optional predicate; values it rejects are never stored
        clock: Monotonic time source in seconds (injectable for tests)
    """

    def __init__(
        self,
        should_cache: Callable[[V], bool] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._entries: dict[str, CacheEntry[V]] = {}
        self._lock = threading.Lock()
        self._should_cache = should_cache
        self._clock = clock

    def get(self, key: str) -> V | None:
        """Return the cached value, or None on a miss or after expiry."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if self._clock() <= entry.expires_at:
                return entry.value
            del self._entries[key]
            return None

    def set(self, key: str, value: V, ttl: float) -> bool:
        """Store a value for ttl seconds, replacing any existing entry.

        Returns:
            True if stored, False if should_cache rejected the value
        """
        if self._should_cache is not None and not self._should_cache(value):
            logger.debug("Not caching rejected value for %s", key)
            return False
        with self._lock:
            self._entries[key] = CacheEntry(key, value, self._clock() + ttl)
        return True

    def invalidate_by_prefix(self, prefix: str) -> int:
        """Remove every key starting with prefix, compared case-insensitively.

        Returns:
            Number of entries removed
        """
        folded = prefix.casefold()
        with self._lock:
            doomed = [k for k in self._entries if k.casefold().startswith(folded)]
            for key in doomed:
                del self._entries[key]
        if doomed:
            logger.debug("Invalidated %d cache entries with prefix %r", len(doomed), prefix)
        return len(doomed)

    def clear(self) -> None:
        """Remove all entries."""
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and self.get(key) is not None
