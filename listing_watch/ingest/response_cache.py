"""In-memory response cache with per-entry expiry.

Used to avoid repeating identical upstream queries within a short window.
Entries carry an absolute expiry instant; reads treat expired entries as
absent and evict them, and a periodic ``sweep`` removes entries that are
never read again.
"""

import logging
import threading
import time
from typing import Any, Callable, Optional

from listing_watch import metrics

logger = logging.getLogger(__name__)


class ResponseCache:
    """
    Key/value store with absolute per-entry expiry.

    The cache has no notion of what it stores; callers choose the TTL per
    key category.
    """

    def __init__(
        self,
        default_ttl: float = 3600.0,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.default_ttl = default_ttl
        self._clock = clock or time.monotonic
        self._entries: dict[str, tuple[Any, float]] = {}
        self._lock = threading.Lock()

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        """Store a value that expires ``ttl`` seconds from now."""
        expires_at = self._clock() + (self.default_ttl if ttl is None else ttl)
        with self._lock:
            self._entries[key] = (value, expires_at)

    def get(self, key: str, default: Any = None) -> Optional[Any]:
        """Return the value if it has not expired, else ``default``."""
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return default
            value, expires_at = entry
            if now < expires_at:
                return value
            # Lazy eviction
            del self._entries[key]
            return default

    def has(self, key: str) -> bool:
        """Whether ``get`` would return a value for ``key``."""
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            return entry is not None and now < entry[1]

    def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def sweep(self) -> int:
        """
        Evict every expired entry.

        Returns:
            Number of entries removed
        """
        now = self._clock()
        with self._lock:
            expired = [key for key, (_, expires_at) in self._entries.items() if expires_at <= now]
            for key in expired:
                del self._entries[key]
            remaining = len(self._entries)

        metrics.update_cache_entries(remaining)
        if expired:
            logger.debug(f"Cache sweep evicted {len(expired)} entries ({remaining} remaining)")
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
