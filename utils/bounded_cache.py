from __future__ import annotations

import threading
import time
from collections import OrderedDict
from typing import Any, Callable, Hashable

# Returned by get() on a miss; a cached None is a valid (negative) entry.
MISSING: Any = object()


class BoundedTTLCache:
    """Thread-safe LRU cache with a per-entry time-to-live.

    - at most `capacity` entries; inserting beyond that evicts the least
      recently used entry
    - entries older than `ttl_seconds` are treated as absent and removed on read
    - `None` values are stored like any other, so "not found" answers from a
      remote service are cached too

    `clock` defaults to time.monotonic and is injectable for tests.
    """

    def __init__(
        self,
        *,
        capacity: int,
        ttl_seconds: float,
        clock: Callable[[], float] | None = None,
    ):
        if capacity <= 0:
            raise ValueError("capacity must be > 0")
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be > 0")

        self._capacity = int(capacity)
        self._ttl_seconds = float(ttl_seconds)
        self._clock = clock or time.monotonic
        self._lock = threading.Lock()
        self._entries: OrderedDict[Hashable, tuple[float, Any]] = OrderedDict()

    @property
    def capacity(self) -> int:
        return self._capacity

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: Hashable) -> bool:
        return self.get(key) is not MISSING

    def get(self, key: Hashable, default: Any = MISSING) -> Any:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return default
            stored_at, value = entry
            if now - stored_at >= self._ttl_seconds:
                del self._entries[key]
                return default
            self._entries.move_to_end(key)
            return value

    def set(self, key: Hashable, value: Any) -> None:
        now = self._clock()
        with self._lock:
            self._entries[key] = (now, value)
            self._entries.move_to_end(key)
            while len(self._entries) > self._capacity:
                self._entries.popitem(last=False)

    def evict_expired(self) -> int:
        """Drop every expired entry; return how many were removed."""

        now = self._clock()
        with self._lock:
            expired = [
                k
                for k, (stored_at, _v) in self._entries.items()
                if now - stored_at >= self._ttl_seconds
            ]
            for k in expired:
                del self._entries[k]
            return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
