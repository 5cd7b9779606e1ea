"""Thread-safe in-memory LRU cache with per-entry expiry.

Used by the NexHealth client to absorb the duplicate reads that
at-least-once webhook delivery produces (the voice platform can resend the
same ``findAndConfirmPatient`` call seconds apart).

* ``OrderedDict`` gives O(1) promotion and eviction.
* Entries expire ``ttl_seconds`` after they are written; an expired entry
  behaves exactly like a miss and is dropped on access.
* The store is bounded by entry count, not bytes.  Patient search pages
  are small and short-lived.
* Prefix invalidation lets a write clear every related read, e.g. all
  ``patients:<subdomain>:<location>:*`` searches after a patient is
  created.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import OrderedDict
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_MAX_ENTRIES = 512
DEFAULT_TTL_SECONDS = 120.0


class ExpiringLRUCache:
    """Least-recently-used cache whose entries also expire after a TTL."""

    def __init__(
        self,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._max_entries = max_entries
        self._ttl = ttl_seconds
        self._clock = clock
        # key → (value, expires_at)
        self._store: OrderedDict[str, tuple[Any, float]] = OrderedDict()
        self._lock = threading.Lock()

    # ── Core operations ──────────────────────────────────────────────

    def get(self, key: str) -> Any | None:
        """Return the live cached value (promoting it to MRU) or ``None``."""
        with self._lock:
            entry = self._store.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if expires_at <= self._clock():
                del self._store[key]
                logger.debug("Cache: expired %s", key)
                return None
            self._store.move_to_end(key)
            return value

    def put(self, key: str, value: Any, ttl_seconds: float | None = None) -> None:
        """Insert or overwrite *key*, evicting the LRU entry when full."""
        ttl = self._ttl if ttl_seconds is None else ttl_seconds
        with self._lock:
            self._store.pop(key, None)
            while len(self._store) >= self._max_entries:
                evicted_key, _ = self._store.popitem(last=False)
                logger.debug("Cache: evicted %s", evicted_key)
            self._store[key] = (value, self._clock() + ttl)

    def invalidate(self, key: str) -> bool:
        """Remove a single key.  Returns ``True`` if the key existed."""
        with self._lock:
            return self._store.pop(key, None) is not None

    def invalidate_prefix(self, prefix: str) -> int:
        """Remove every key that starts with *prefix*.  Returns count removed."""
        with self._lock:
            keys = [k for k in self._store if k.startswith(prefix)]
            for key in keys:
                del self._store[key]
            return len(keys)

    def clear(self) -> None:
        with self._lock:
            self._store.clear()

    # ── Introspection ────────────────────────────────────────────────

    @property
    def entry_count(self) -> int:
        """Number of entries held, including any not yet noticed as expired."""
        return len(self._store)

    def has(self, key: str) -> bool:
        """Check for a live entry *without* promoting it."""
        with self._lock:
            entry = self._store.get(key)
            return entry is not None and entry[1] > self._clock()
