"""Tests for vespakit.stores -- in-memory store and the store factory."""

from __future__ import annotations

import pytest

from vespakit.stores import CacheStore, CounterStore, create_store
from vespakit.stores.memory import InMemoryStore


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class TestInMemoryCounters:
    def test_incr_from_zero(self) -> None:
        store = InMemoryStore()
        assert store.get("k") == 0
        assert store.incr("k") == 1
        assert store.incr("k") == 2
        assert store.get("k") == 2

    def test_ttl_set_on_creation_only(self) -> None:
        clock = FakeClock()
        store = InMemoryStore(clock=clock)
        store.incr("k", ttl=10)
        clock.now = 9
        store.incr("k", ttl=10)
        clock.now = 10
        assert store.get("k") == 0

    def test_decr_floors_at_zero(self) -> None:
        store = InMemoryStore()
        assert store.decr("missing") == 0
        store.incr("k")
        assert store.decr("k") == 0
        assert store.decr("k") == 0

    def test_refresh_pushes_expiry_forward(self) -> None:
        clock = FakeClock()
        store = InMemoryStore(clock=clock)
        store.incr("k", ttl=10, refresh=True)
        clock.now = 9
        assert store.incr("k", ttl=10, refresh=True) == 2
        clock.now = 18
        assert store.get("k") == 2
        clock.now = 19
        assert store.get("k") == 0

    def test_decr_keeps_expiry(self) -> None:
        clock = FakeClock()
        store = InMemoryStore(clock=clock)
        store.incr("k", ttl=10)
        store.incr("k", ttl=10)
        store.decr("k")
        clock.now = 10
        assert store.get("k") == 0

    async def test_async_counters(self) -> None:
        store = InMemoryStore()
        assert await store.aincr("k") == 1
        assert await store.aincr("k") == 2
        assert await store.adecr("k") == 1
        assert store.get("k") == 1


class TestInMemoryCache:
    def test_put_get_forget(self) -> None:
        store = InMemoryStore()
        store.put("k", {"a": 1}, ttl=60)
        assert store.get_value("k") == {"a": 1}
        store.forget("k")
        assert store.get_value("k") is None
        store.forget("k")

    def test_returned_value_is_a_copy(self) -> None:
        store = InMemoryStore()
        body = {"root": {"children": [{"id": "a"}]}}
        store.put("k", body, ttl=60)
        body["root"]["children"].append({"id": "late"})
        first = store.get_value("k")
        first["root"]["children"].clear()
        assert store.get_value("k") == {"root": {"children": [{"id": "a"}]}}

    async def test_async_put_get_forget(self) -> None:
        store = InMemoryStore()
        await store.aput("k", {"a": [1]}, ttl=60)
        value = await store.aget_value("k")
        value["a"].append(2)
        assert await store.aget_value("k") == {"a": [1]}
        await store.aforget("k")
        assert await store.aget_value("k") is None

    def test_expiry(self) -> None:
        clock = FakeClock()
        store = InMemoryStore(clock=clock)
        store.put("k", "v", ttl=5)
        clock.now = 4.9
        assert store.get_value("k") == "v"
        clock.now = 5
        assert store.get_value("k") is None

    def test_non_positive_ttl_never_expires(self) -> None:
        clock = FakeClock()
        store = InMemoryStore(clock=clock)
        store.put("k", "v", ttl=0)
        clock.now = 1e9
        assert store.get_value("k") == "v"

    def test_clear(self) -> None:
        store = InMemoryStore()
        store.put("a", 1, ttl=10)
        store.incr("b")
        store.clear()
        assert store.get_value("a") is None
        assert store.get("b") == 0


class TestCreateStore:
    def test_memory_url(self) -> None:
        store = create_store("memory://")
        assert isinstance(store, InMemoryStore)
        assert isinstance(store, CounterStore)
        assert isinstance(store, CacheStore)

    @pytest.mark.parametrize("url", ["", "ftp://host", "localhost:6379"])
    def test_unsupported_url(self, url: str) -> None:
        with pytest.raises(ValueError, match="Unsupported store URL"):
            create_store(url)
