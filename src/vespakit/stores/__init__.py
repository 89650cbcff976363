"""Pluggable counter and cache stores for vespakit.

Admission counters and cached search bodies live outside the client so that
every caller sharing a client (and every process sharing a store) sees the
same state. :class:`CounterStore` and :class:`CacheStore` are the contracts;
:class:`~vespakit.stores.memory.InMemoryStore` serves a single process and
:class:`~vespakit.stores.redis.RedisStore` serves a fleet.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from vespakit.stores.memory import InMemoryStore
    from vespakit.stores.redis import RedisStore


@runtime_checkable
class CounterStore(Protocol):
    """Atomic integer counters with optional expiry.

    Every operation has an ``a``-prefixed coroutine twin for async callers.
    """

    def get(self, key: str) -> int: ...

    def incr(self, key: str, ttl: float | None = None, *, refresh: bool = False) -> int:
        """Atomically add one and return the new value.

        When *ttl* is given and the key did not exist, the key expires
        *ttl* seconds after creation. Later increments keep that expiry
        unless *refresh* is true, in which case every increment pushes the
        expiry to *ttl* seconds from now.
        """
        ...

    def decr(self, key: str) -> int:
        """Atomically subtract one, never going below zero, and return the new value."""
        ...

    async def aincr(self, key: str, ttl: float | None = None, *, refresh: bool = False) -> int: ...

    async def adecr(self, key: str) -> int: ...


@runtime_checkable
class CacheStore(Protocol):
    """Key-value cache with per-entry TTL.

    Returned values never alias what was stored.
    """

    def get_value(self, key: str) -> Any | None: ...

    def put(self, key: str, value: Any, ttl: float) -> None: ...

    def forget(self, key: str) -> None:
        """Remove *key*. Removing an absent key is a no-op."""
        ...

    async def aget_value(self, key: str) -> Any | None: ...

    async def aput(self, key: str, value: Any, ttl: float) -> None: ...

    async def aforget(self, key: str) -> None: ...


def create_store(url: str) -> InMemoryStore | RedisStore:
    """Build a store from a URL: ``memory://`` or ``redis://`` / ``rediss://``."""
    scheme = url.split("://", 1)[0].lower() if "://" in url else ""
    if scheme == "memory":
        from vespakit.stores.memory import InMemoryStore

        return InMemoryStore()
    if scheme in ("redis", "rediss", "unix"):
        from vespakit.stores.redis import RedisStore

        return RedisStore.from_url(url)
    raise ValueError(f"Unsupported store URL {url!r}: expected memory:// or redis://")


__all__ = ["CacheStore", "CounterStore", "create_store"]
