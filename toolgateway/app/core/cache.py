"""In-process TTL cache for idempotent tool results.

Entries expire lazily: an expired entry is only removed when it is read
(or by an explicit ``cleanup_expired`` call). There is no background sweeper.

All operations are synchronous. Under the single-threaded event loop a
single call is never interleaved with another task, so no lock is needed.
"""

import hashlib
import json
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Optional


@dataclass
class _CacheEntry:
    """Internal cache entry with TTL tracking."""

    value: Any
    expires_at: float | None = None

    def is_expired(self, now: float) -> bool:
        """Check if the entry has expired at ``now``."""
        if self.expires_at is None:
            return False
        return now > self.expires_at


class TTLCache:
    """Key/value store with per-entry expiry.

    Args:
        max_size: Optional bound on the number of entries. When set, inserting
            into a full cache evicts the least recently used entry. ``None``
            leaves the cache unbounded.
        clock: Monotonic time source in seconds (injectable for tests).

    Example:
        >>> cache = TTLCache()
        >>> cache.set("k", {"content": "hi"}, ttl_seconds=300)
        >>> cache.get("k")
        {'content': 'hi'}
    """

    def __init__(
        self,
        max_size: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_size is not None and max_size < 1:
            raise ValueError("max_size must be at least 1")
        self._data: OrderedDict[str, _CacheEntry] = OrderedDict()
        self._max_size = max_size
        self._clock = clock

    @property
    def max_size(self) -> Optional[int]:
        return self._max_size

    def get(self, key: str) -> Any | None:
        """Retrieve a value from the cache.

        Args:
            key: The cache key to look up.

        Returns:
            The cached value, or None if not found or expired. An expired
            entry is deleted as a side effect.
        """
        entry = self._data.get(key)
        if entry is None:
            return None
        if entry.is_expired(self._clock()):
            del self._data[key]
            return None
        self._data.move_to_end(key)
        return entry.value

    def set(self, key: str, value: Any, ttl_seconds: Optional[float] = None) -> None:
        """Store a value, overwriting any existing entry for the key.

        Args:
            key: The cache key.
            value: The value to store.
            ttl_seconds: Time-to-live in seconds; None means never expire.
        """
        expires_at = self._clock() + ttl_seconds if ttl_seconds is not None else None
        if key in self._data:
            self._data.move_to_end(key)
        self._data[key] = _CacheEntry(value=value, expires_at=expires_at)
        if self._max_size is not None:
            while len(self._data) > self._max_size:
                self._data.popitem(last=False)

    def delete(self, key: str) -> None:
        """Remove a value from the cache if present."""
        self._data.pop(key, None)

    def clear(self) -> None:
        """Clear all entries from the cache."""
        self._data.clear()

    def cleanup_expired(self) -> int:
        """Remove all expired entries from the cache.

        Returns:
            Number of entries removed.
        """
        now = self._clock()
        expired_keys = [key for key, entry in self._data.items() if entry.is_expired(now)]
        for key in expired_keys:
            del self._data[key]
        return len(expired_keys)

    def __len__(self) -> int:
        return len(self._data)

    def __contains__(self, key: object) -> bool:
        # Membership does not evict; it reports raw storage.
        return key in self._data


def make_cache_key(*parts: Any) -> str:
    """Build a stable cache key from arbitrary JSON-serialisable parts."""
    normalized = json.dumps(parts, sort_keys=True, ensure_ascii=False, default=str)
    return hashlib.sha256(normalized.encode("utf-8")).hexdigest()
