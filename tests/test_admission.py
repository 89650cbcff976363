"""Tests for vespakit.admission -- rate limiter, throttle and the combined gate."""

from __future__ import annotations

import pytest

from vespakit.admission import AdmissionController, RateLimiter, Throttle
from vespakit.config import VespaConfig
from vespakit.models import RateLimitExceeded, ThrottleExceeded
from vespakit.stores.memory import InMemoryStore


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(clock: FakeClock) -> InMemoryStore:
    return InMemoryStore(clock=clock)


class TestRateLimiter:
    def test_allows_up_to_limit(self, store: InMemoryStore) -> None:
        limiter = RateLimiter(store, "t:rate", limit=3, window=60)
        for _ in range(3):
            limiter.check()
        with pytest.raises(RateLimitExceeded) as exc_info:
            limiter.check()
        assert exc_info.value.limit == 3
        assert exc_info.value.window == 60

    def test_window_expiry_resets_count(self, store: InMemoryStore, clock: FakeClock) -> None:
        limiter = RateLimiter(store, "t:rate", limit=2, window=60)
        limiter.check()
        limiter.check()
        with pytest.raises(RateLimitExceeded):
            limiter.check()
        clock.now += 60
        limiter.check()
        assert limiter.current() == 1

    def test_window_starts_at_first_call(self, store: InMemoryStore, clock: FakeClock) -> None:
        limiter = RateLimiter(store, "t:rate", limit=1, window=60)
        limiter.check()
        clock.now += 30
        with pytest.raises(RateLimitExceeded):
            limiter.check()
        clock.now += 29
        with pytest.raises(RateLimitExceeded):
            limiter.check()

    def test_rejected_calls_are_counted(self, store: InMemoryStore) -> None:
        limiter = RateLimiter(store, "t:rate", limit=1, window=60)
        limiter.check()
        with pytest.raises(RateLimitExceeded):
            limiter.check()
        assert limiter.current() == 2

    def test_zero_limit_disables(self, store: InMemoryStore) -> None:
        limiter = RateLimiter(store, "t:rate", limit=0, window=60)
        for _ in range(50):
            limiter.check()
        assert limiter.current() == 0


class TestThrottle:
    def test_rejects_over_limit_and_rolls_back(self, store: InMemoryStore) -> None:
        throttle = Throttle(store, "t:throttle", limit=2)
        throttle.acquire()
        throttle.acquire()
        with pytest.raises(ThrottleExceeded) as exc_info:
            throttle.acquire()
        assert exc_info.value.limit == 2
        assert throttle.in_flight() == 2

    def test_release_frees_slot(self, store: InMemoryStore) -> None:
        throttle = Throttle(store, "t:throttle", limit=1)
        throttle.acquire()
        throttle.release()
        throttle.acquire()
        assert throttle.in_flight() == 1

    def test_release_never_goes_negative(self, store: InMemoryStore) -> None:
        throttle = Throttle(store, "t:throttle", limit=1)
        throttle.release()
        throttle.release()
        assert throttle.in_flight() == 0

    def test_slot_releases_on_exception(self, store: InMemoryStore) -> None:
        throttle = Throttle(store, "t:throttle", limit=1)
        with pytest.raises(RuntimeError):
            with throttle.slot():
                assert throttle.in_flight() == 1
                raise RuntimeError("boom")
        assert throttle.in_flight() == 0

    def test_zero_limit_disables(self, store: InMemoryStore) -> None:
        throttle = Throttle(store, "t:throttle", limit=0)
        for _ in range(20):
            throttle.acquire()
        assert throttle.in_flight() == 0

    def test_leaked_slot_expires_after_ttl(self, store: InMemoryStore, clock: FakeClock) -> None:
        throttle = Throttle(store, "t:throttle", limit=1, ttl=30)
        throttle.acquire()  # never released, as if the holder crashed
        clock.now += 29
        with pytest.raises(ThrottleExceeded):
            throttle.acquire()
        clock.now += 30
        throttle.acquire()
        assert throttle.in_flight() == 1

    def test_each_acquire_extends_expiry(self, store: InMemoryStore, clock: FakeClock) -> None:
        throttle = Throttle(store, "t:throttle", limit=5, ttl=30)
        throttle.acquire()
        clock.now += 20
        throttle.acquire()
        clock.now += 20
        assert throttle.in_flight() == 2

    async def test_async_slot_releases_on_exception(self, store: InMemoryStore) -> None:
        throttle = Throttle(store, "t:throttle", limit=1)
        with pytest.raises(RuntimeError):
            async with throttle.aslot():
                assert throttle.in_flight() == 1
                with pytest.raises(ThrottleExceeded):
                    await throttle.aacquire()
                raise RuntimeError("boom")
        assert throttle.in_flight() == 0


class TestAdmissionController:
    def test_from_config_uses_prefixed_keys(self, store: InMemoryStore) -> None:
        config = VespaConfig(counter_prefix="svc", rate_limit=5, throttle_limit=2)
        admission = AdmissionController.from_config(config, store)
        assert admission.rate_limiter.key == "svc:rate"
        assert admission.throttle.key == "svc:throttle"
        assert admission.rate_limiter.limit == 5
        assert admission.throttle.limit == 2
        assert admission.throttle.ttl == config.throttle_ttl

    def test_admit_counts_rate_and_holds_slot(self, store: InMemoryStore) -> None:
        config = VespaConfig(rate_limit=10, throttle_limit=1)
        admission = AdmissionController.from_config(config, store)
        with admission.admit():
            assert admission.throttle.in_flight() == 1
            with pytest.raises(ThrottleExceeded):
                with admission.admit():
                    pass
        assert admission.throttle.in_flight() == 0
        assert admission.rate_limiter.current() == 2

    def test_rate_rejection_takes_no_slot(self, store: InMemoryStore) -> None:
        config = VespaConfig(rate_limit=1, throttle_limit=5)
        admission = AdmissionController.from_config(config, store)
        with admission.admit():
            pass
        with pytest.raises(RateLimitExceeded):
            with admission.admit():
                pass
        assert admission.throttle.in_flight() == 0

    def test_shared_store_shares_limits(self, store: InMemoryStore) -> None:
        config = VespaConfig(rate_limit=2, throttle_limit=5)
        first = AdmissionController.from_config(config, store)
        second = AdmissionController.from_config(config, store)
        with first.admit():
            pass
        with second.admit():
            pass
        with pytest.raises(RateLimitExceeded):
            with first.admit():
                pass

    async def test_aadmit_uses_async_store_methods(self) -> None:
        class AsyncOnlyStore(InMemoryStore):
            def incr(self, key: str, ttl: float | None = None, *, refresh: bool = False) -> int:
                raise AssertionError("sync incr called from async path")

            def decr(self, key: str) -> int:
                raise AssertionError("sync decr called from async path")

            async def aincr(
                self, key: str, ttl: float | None = None, *, refresh: bool = False
            ) -> int:
                return InMemoryStore.incr(self, key, ttl, refresh=refresh)

            async def adecr(self, key: str) -> int:
                return InMemoryStore.decr(self, key)

        store = AsyncOnlyStore()
        config = VespaConfig(rate_limit=1, throttle_limit=1)
        admission = AdmissionController.from_config(config, store)
        async with admission.aadmit():
            assert admission.throttle.in_flight() == 1
        assert admission.throttle.in_flight() == 0
        with pytest.raises(RateLimitExceeded):
            async with admission.aadmit():
                pass
