"""
Admission control: rate limiting and concurrency throttling.

Both limiters keep their counter in a :class:`~vespakit.stores.CounterStore`
so that every caller sharing the store shares the limit. Neither limiter
queues or blocks: a call over the ceiling fails immediately, before any
network traffic.

Usage::

    admission = AdmissionController.from_config(config, store)
    with admission.admit():
        ...  # one search call

    async with admission.aadmit():
        ...  # one async search call
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Iterator
from contextlib import asynccontextmanager, contextmanager

from vespakit.config import VespaConfig
from vespakit.models import RateLimitExceeded, ThrottleExceeded
from vespakit.stores import CounterStore

logger = logging.getLogger(__name__)


class RateLimiter:
    """Fixed-window limiter: at most *limit* calls per *window* seconds.

    The window starts with the first call after the previous one expired.
    A *limit* of 0 disables the limiter.
    """

    def __init__(self, store: CounterStore, key: str, limit: int, window: float) -> None:
        self._store = store
        self.key = key
        self.limit = limit
        self.window = window

    @property
    def enabled(self) -> bool:
        return self.limit > 0

    def _verdict(self, count: int) -> None:
        if count > self.limit:
            logger.warning(
                "Rate limit exceeded key=%s count=%d limit=%d window=%.0fs",
                self.key,
                count,
                self.limit,
                self.window,
            )
            raise RateLimitExceeded(self.limit, self.window)

    def check(self) -> None:
        """Count one call; raise RateLimitExceeded if it is over the limit."""
        if not self.enabled:
            return
        self._verdict(self._store.incr(self.key, ttl=self.window))

    async def acheck(self) -> None:
        if not self.enabled:
            return
        self._verdict(await self._store.aincr(self.key, ttl=self.window))

    def current(self) -> int:
        return self._store.get(self.key)


class Throttle:
    """Bounds the number of calls in flight at once.

    :meth:`acquire` and :meth:`release` must be paired; prefer :meth:`slot`,
    which releases on every exit path. A *limit* of 0 disables the throttle.

    Every acquire pushes the counter's expiry to *ttl* seconds out, so slots
    held by a process that died mid-call are reclaimed once the key has gone
    *ttl* seconds without an acquire.
    """

    def __init__(self, store: CounterStore, key: str, limit: int, ttl: float = 300.0) -> None:
        self._store = store
        self.key = key
        self.limit = limit
        self.ttl = ttl

    @property
    def enabled(self) -> bool:
        return self.limit > 0

    def _over(self, count: int) -> bool:
        if count <= self.limit:
            return False
        logger.warning(
            "Throttle exceeded key=%s in_flight=%d limit=%d",
            self.key,
            count - 1,
            self.limit,
        )
        return True

    def acquire(self) -> None:
        if not self.enabled:
            return
        if self._over(self._store.incr(self.key, ttl=self.ttl, refresh=True)):
            self._store.decr(self.key)
            raise ThrottleExceeded(self.limit)

    def release(self) -> None:
        if not self.enabled:
            return
        self._store.decr(self.key)

    async def aacquire(self) -> None:
        if not self.enabled:
            return
        if self._over(await self._store.aincr(self.key, ttl=self.ttl, refresh=True)):
            await self._store.adecr(self.key)
            raise ThrottleExceeded(self.limit)

    async def arelease(self) -> None:
        if not self.enabled:
            return
        await self._store.adecr(self.key)

    @contextmanager
    def slot(self) -> Iterator[None]:
        self.acquire()
        try:
            yield
        finally:
            self.release()

    @asynccontextmanager
    async def aslot(self) -> AsyncIterator[None]:
        await self.aacquire()
        try:
            yield
        finally:
            await self.arelease()

    def in_flight(self) -> int:
        return self._store.get(self.key)


class AdmissionController:
    """Rate limiter followed by throttle, as one gate."""

    def __init__(self, rate_limiter: RateLimiter, throttle: Throttle) -> None:
        self.rate_limiter = rate_limiter
        self.throttle = throttle

    @classmethod
    def from_config(cls, config: VespaConfig, store: CounterStore) -> AdmissionController:
        return cls(
            RateLimiter(store, config.rate_limit_key, config.rate_limit, config.rate_window),
            Throttle(store, config.throttle_key, config.throttle_limit, config.throttle_ttl),
        )

    @contextmanager
    def admit(self) -> Iterator[None]:
        """Gate one call. The throttle slot is released however the block exits."""
        self.rate_limiter.check()
        with self.throttle.slot():
            yield

    @asynccontextmanager
    async def aadmit(self) -> AsyncIterator[None]:
        """Async twin of :meth:`admit`, using the store's coroutine methods."""
        await self.rate_limiter.acheck()
        async with self.throttle.aslot():
            yield
