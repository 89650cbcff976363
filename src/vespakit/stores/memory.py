"""In-process store for counters and cached search bodies."""

from __future__ import annotations

import copy
import threading
import time
from collections.abc import Callable
from typing import Any


class InMemoryStore:
    """A :class:`~vespakit.stores.CounterStore` and :class:`~vespakit.stores.CacheStore`
    backed by a dict and a lock.

    Visible only inside one process. Use
    :class:`~vespakit.stores.redis.RedisStore` when several processes share a
    Vespa deployment's limits.

    Cached values are deep-copied on the way in and on the way out, so a
    caller mutating a returned body never changes what the next hit sees.
    The async methods do no I/O and complete without suspending.

    Args:
        clock: Monotonic time source, injectable for tests.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._data: dict[str, tuple[Any, float | None]] = {}

    def _live(self, key: str) -> Any | None:
        # Caller holds the lock.
        entry = self._data.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and self._clock() >= expires_at:
            del self._data[key]
            return None
        return value

    # -- counters ------------------------------------------------------------

    def get(self, key: str) -> int:
        with self._lock:
            value = self._live(key)
        return int(value) if value is not None else 0

    def incr(self, key: str, ttl: float | None = None, *, refresh: bool = False) -> int:
        with self._lock:
            current = self._live(key)
            new = 1 if current is None else int(current) + 1
            if current is None or (refresh and ttl):
                expires_at = self._clock() + ttl if ttl else None
            else:
                expires_at = self._data[key][1]
            self._data[key] = (new, expires_at)
            return new

    def decr(self, key: str) -> int:
        with self._lock:
            current = self._live(key)
            if current is None:
                return 0
            new = max(int(current) - 1, 0)
            self._data[key] = (new, self._data[key][1])
            return new

    async def aincr(self, key: str, ttl: float | None = None, *, refresh: bool = False) -> int:
        return self.incr(key, ttl, refresh=refresh)

    async def adecr(self, key: str) -> int:
        return self.decr(key)

    # -- cache ---------------------------------------------------------------

    def get_value(self, key: str) -> Any | None:
        with self._lock:
            value = self._live(key)
        return copy.deepcopy(value)

    def put(self, key: str, value: Any, ttl: float) -> None:
        stored = copy.deepcopy(value)
        with self._lock:
            self._data[key] = (stored, self._clock() + ttl if ttl > 0 else None)

    def forget(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    async def aget_value(self, key: str) -> Any | None:
        return self.get_value(key)

    async def aput(self, key: str, value: Any, ttl: float) -> None:
        self.put(key, value, ttl)

    async def aforget(self, key: str) -> None:
        self.forget(key)

    def clear(self) -> None:
        with self._lock:
            self._data.clear()
