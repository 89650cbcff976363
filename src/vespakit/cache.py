"""Content-addressed memoization of search bodies.

Entries are keyed by a hash of the ``(query, options)`` pair and live in a
:class:`~vespakit.stores.CacheStore`. The cache is advisory: concurrent misses
on the same key both compute, and the last writer wins.
"""

from __future__ import annotations

import hashlib
import json
import logging
from collections.abc import Awaitable, Callable, Mapping
from typing import Any

from vespakit.stores import CacheStore

logger = logging.getLogger(__name__)


def cache_key(query: str, options: Mapping[str, Any] | None = None, prefix: str = "") -> str:
    """Deterministic key for a ``(query, options)`` pair.

    Options are serialized with sorted keys, so insertion order does not
    change the key.
    """
    payload = json.dumps([query, dict(options or {})], sort_keys=True, default=str)
    digest = hashlib.sha256(payload.encode("utf-8")).hexdigest()
    return f"{prefix}{digest}"


class SearchCache:
    """Get-or-compute cache over a :class:`~vespakit.stores.CacheStore`.

    A TTL of 0 or less bypasses the cache entirely.
    """

    def __init__(self, store: CacheStore, prefix: str = "vespakit:search:") -> None:
        self._store = store
        self._prefix = prefix

    def key(self, query: str, options: Mapping[str, Any] | None = None) -> str:
        return cache_key(query, options, self._prefix)

    def get_or_compute(
        self,
        query: str,
        options: Mapping[str, Any] | None,
        ttl: float,
        compute: Callable[[], Any],
    ) -> Any:
        if ttl <= 0:
            return compute()
        key = self.key(query, options)
        cached = self._store.get_value(key)
        if cached is not None:
            logger.debug("Vespa cache hit key=%s query=%r", key, query)
            return cached
        logger.debug("Vespa cache miss key=%s query=%r", key, query)
        value = compute()
        self._store.put(key, value, ttl)
        return value

    async def aget_or_compute(
        self,
        query: str,
        options: Mapping[str, Any] | None,
        ttl: float,
        compute: Callable[[], Awaitable[Any]],
    ) -> Any:
        if ttl <= 0:
            return await compute()
        key = self.key(query, options)
        cached = await self._store.aget_value(key)
        if cached is not None:
            logger.debug("Vespa cache hit key=%s query=%r", key, query)
            return cached
        logger.debug("Vespa cache miss key=%s query=%r", key, query)
        value = await compute()
        await self._store.aput(key, value, ttl)
        return value

    def invalidate(self, query: str, options: Mapping[str, Any] | None = None) -> None:
        self._store.forget(self.key(query, options))

    async def ainvalidate(self, query: str, options: Mapping[str, Any] | None = None) -> None:
        await self._store.aforget(self.key(query, options))
