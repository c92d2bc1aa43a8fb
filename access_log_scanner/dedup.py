"""
Bounded, TTL-expiring "seen" set.

Shared between the ingestion boundary and any other producer that may hand
the same content over twice (agents resubmit a whole batch on any non-2xx
response).
"""

import collections
import threading
import time
import typing

DEFAULT_MAX_ENTRIES = 100000
DEFAULT_TTL_SECONDS = 600.0


class DedupCache:
    """
    LRU cache of fingerprints with a per-entry TTL.

    Args:
        max_entries (int): Capacity; non-positive values use the default (100000).
        ttl (float): Entry lifetime in seconds; non-positive values use the default (600).
        clock (callable): Monotonic time source, injectable for tests.

    Note:
        - Recency is updated on insert and on every repeat hit (access order).
        - Expiry is lazy: expired entries are dropped when looked up again or
          when they reach the eviction end of the LRU order.
        - All operations hold a single lock.
    """

    def __init__(
        self,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        ttl: float = DEFAULT_TTL_SECONDS,
        clock: typing.Callable[[], float] = time.monotonic,
    ):
        self.max_entries = max_entries if max_entries and max_entries > 0 else DEFAULT_MAX_ENTRIES
        self.ttl = ttl if ttl and ttl > 0 else DEFAULT_TTL_SECONDS
        self._clock = clock
        self._lock = threading.Lock()
        # key -> expires_at; most recently used at the end
        self._items: "collections.OrderedDict[str, float]" = collections.OrderedDict()

    def seen(self, key: str) -> bool:
        """
        Report whether `key` was seen within its TTL, recording it either way.

        Returns:
            bool: True if the key was present and unexpired (its TTL is refreshed),
            False if it was absent or expired (it is inserted with a fresh TTL).
        """
        with self._lock:
            now = self._clock()
            expires_at = self._items.get(key)
            if expires_at is not None:
                if expires_at > now:
                    self._items[key] = now + self.ttl
                    self._items.move_to_end(key)
                    return True
                del self._items[key]

            self._items[key] = now + self.ttl
            if len(self._items) > self.max_entries:
                self._items.popitem(last=False)
            return False

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def __contains__(self, key: str) -> bool:
        """Peek without touching recency or TTL."""
        with self._lock:
            expires_at = self._items.get(key)
            return expires_at is not None and expires_at > self._clock()
