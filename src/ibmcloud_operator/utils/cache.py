"""Time-bounded cache used for provider lookups and tokens."""

from __future__ import annotations

import threading
import time
from typing import Any, Callable, Optional


class TTLCache:
    """A small thread-safe cache whose entries expire after ``ttl`` seconds.

    Entries may also carry their own TTL, used for tokens whose lifetime is
    dictated by the issuer.
    """

    def __init__(self, ttl: float = 300.0, clock: Callable[[], float] = time.monotonic) -> None:
        self._ttl = ttl
        self._clock = clock
        self._entries: dict[str, tuple[Any, float]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[Any]:
        """Get an entry if it hasn't expired.

        Args:
            key: Cache key

        Returns:
            Cached value or None if not found or expired
        """
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if self._clock() >= expires_at:
                del self._entries[key]
                return None
            return value

    def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        """Store a value, expiring after ``ttl`` or the cache default."""
        with self._lock:
            self._entries[key] = (value, self._clock() + (self._ttl if ttl is None else ttl))

    def get_or_set(self, key: str, factory: Callable[[], Any]) -> Any:
        """Return the cached value, computing and storing it on a miss."""
        value = self.get(key)
        if value is None:
            value = factory()
            self.set(key, value)
        return value

    def invalidate(self, pattern: Optional[str] = None) -> None:
        """Invalidate cache entries.

        Args:
            pattern: Optional substring to match keys (if None, clears all)
        """
        with self._lock:
            if pattern is None:
                self._entries.clear()
                return
            for key in [k for k in self._entries if pattern in k]:
                del self._entries[key]

    def __len__(self) -> int:
        return len(self._entries)


def make_cache_key(*parts: str) -> str:
    """Create a cache key from its parts, e.g. ("plan", "cloudantnosqldb", "lite")."""
    return ":".join(parts)
