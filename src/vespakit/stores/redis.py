"""Redis-backed store shared across processes.

Requires the ``redis`` package::

    pip install vespakit[redis]
"""

from __future__ import annotations

import json
import logging
from typing import Any

import redis
import redis.asyncio as aioredis

logger = logging.getLogger(__name__)

# INCR and set the expiry in one round trip: on creation, or on every
# increment when ARGV[2] is '1'.
_INCR_SCRIPT = """
local value = redis.call('INCR', KEYS[1])
local ttl_ms = tonumber(ARGV[1])
if ttl_ms > 0 and (value == 1 or ARGV[2] == '1') then
    redis.call('PEXPIRE', KEYS[1], ttl_ms)
end
return value
"""

_DECR_SCRIPT = """
local value = tonumber(redis.call('GET', KEYS[1]) or '0')
if value <= 0 then
    return 0
end
return redis.call('DECR', KEYS[1])
"""


_CORRUPT = object()


def _incr_args(ttl: float | None, refresh: bool) -> list[int]:
    return [int(ttl * 1000) if ttl else 0, 1 if refresh else 0]


class RedisStore:
    """A :class:`~vespakit.stores.CounterStore` and :class:`~vespakit.stores.CacheStore`
    on top of ``redis.Redis``, with an optional ``redis.asyncio.Redis`` for
    the ``a*`` methods.

    Counter updates run as Lua scripts so increment-and-expire and
    floor-at-zero decrement are atomic on the server. Cached values are stored
    as JSON.
    """

    def __init__(self, client: redis.Redis, async_client: aioredis.Redis | None = None) -> None:
        self._client = client
        self._incr = client.register_script(_INCR_SCRIPT)
        self._decr = client.register_script(_DECR_SCRIPT)
        self._async_client = async_client
        if async_client is not None:
            self._aincr = async_client.register_script(_INCR_SCRIPT)
            self._adecr = async_client.register_script(_DECR_SCRIPT)

    @classmethod
    def from_url(cls, url: str) -> RedisStore:
        logger.info("Using Redis store at %s", url.split("@")[-1])
        return cls(
            redis.Redis.from_url(url, decode_responses=True),
            aioredis.from_url(url, decode_responses=True),
        )

    def _require_async(self) -> aioredis.Redis:
        if self._async_client is None:
            raise RuntimeError("RedisStore was created without an async client")
        return self._async_client

    # -- counters ------------------------------------------------------------

    def get(self, key: str) -> int:
        raw = self._client.get(key)
        return int(raw) if raw is not None else 0

    def incr(self, key: str, ttl: float | None = None, *, refresh: bool = False) -> int:
        return int(self._incr(keys=[key], args=_incr_args(ttl, refresh)))

    def decr(self, key: str) -> int:
        return int(self._decr(keys=[key]))

    async def aincr(self, key: str, ttl: float | None = None, *, refresh: bool = False) -> int:
        self._require_async()
        return int(await self._aincr(keys=[key], args=_incr_args(ttl, refresh)))

    async def adecr(self, key: str) -> int:
        self._require_async()
        return int(await self._adecr(keys=[key]))

    # -- cache ---------------------------------------------------------------

    def _decode(self, key: str, raw: str | None) -> Any | None:
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning("Discarding undecodable cache entry key=%s", key)
            return _CORRUPT

    def get_value(self, key: str) -> Any | None:
        value = self._decode(key, self._client.get(key))
        if value is _CORRUPT:
            self._client.delete(key)
            return None
        return value

    def put(self, key: str, value: Any, ttl: float) -> None:
        payload = json.dumps(value, default=str)
        if ttl > 0:
            self._client.set(key, payload, px=int(ttl * 1000))
        else:
            self._client.set(key, payload)

    def forget(self, key: str) -> None:
        self._client.delete(key)

    async def aget_value(self, key: str) -> Any | None:
        client = self._require_async()
        value = self._decode(key, await client.get(key))
        if value is _CORRUPT:
            await client.delete(key)
            return None
        return value

    async def aput(self, key: str, value: Any, ttl: float) -> None:
        client = self._require_async()
        payload = json.dumps(value, default=str)
        if ttl > 0:
            await client.set(key, payload, px=int(ttl * 1000))
        else:
            await client.set(key, payload)

    async def aforget(self, key: str) -> None:
        await self._require_async().delete(key)

    def close(self) -> None:
        self._client.close()

    async def aclose(self) -> None:
        if self._async_client is not None:
            await self._async_client.aclose()

