"""
Tests for the public listing cache: TTL, single-flight refresh, failure recovery
"""
import asyncio
import gc
import logging

import pytest

from partymarket.cache import PublicProfilesCache


class FakeClock:
    def __init__(self, now=0.0):
        self.now = now

    def __call__(self):
        return self.now


class CountingLoader:
    """Loader that returns a new list per call and can be held open"""

    def __init__(self, fail_times=0):
        self.calls = 0
        self.fail_times = fail_times
        self.release = asyncio.Event()
        self.release.set()

    async def __call__(self):
        self.calls += 1
        await self.release.wait()
        if self.calls <= self.fail_times:
            raise RuntimeError("upstream query failed")
        return [{"id": f"profile-{self.calls}"}]


@pytest.fixture
def clock():
    return FakeClock()


class TestCacheHits:
    @pytest.mark.asyncio
    async def test_second_call_returns_same_object_without_loading(self, clock):
        loader = CountingLoader()
        cache = PublicProfilesCache(loader, ttl_seconds=300, clock=clock)

        first = await cache.get()
        clock.now = 10
        second = await cache.get()

        assert second is first
        assert loader.calls == 1
        assert cache.hits == 1
        assert cache.misses == 1

    @pytest.mark.asyncio
    async def test_ttl_boundary(self, clock):
        loader = CountingLoader()
        cache = PublicProfilesCache(loader, ttl_seconds=300, clock=clock)

        first = await cache.get()

        clock.now = 299
        assert await cache.get() is first
        assert loader.calls == 1

        clock.now = 301
        refreshed = await cache.get()
        assert loader.calls == 2
        assert refreshed is not first
        assert refreshed == [{"id": "profile-2"}]

    @pytest.mark.asyncio
    async def test_force_refresh_bypasses_fresh_data(self, clock):
        loader = CountingLoader()
        cache = PublicProfilesCache(loader, ttl_seconds=300, clock=clock)

        await cache.get()
        refreshed = await cache.get(force_refresh=True)

        assert loader.calls == 2
        assert refreshed == [{"id": "profile-2"}]
        assert cache.data is refreshed

    @pytest.mark.asyncio
    async def test_empty_listing_is_cached(self, clock):
        calls = 0

        async def loader():
            nonlocal calls
            calls += 1
            return []

        cache = PublicProfilesCache(loader, ttl_seconds=300, clock=clock)
        await cache.get()
        await cache.get()

        assert calls == 1

    @pytest.mark.asyncio
    async def test_invalidate_forces_next_load(self, clock):
        loader = CountingLoader()
        cache = PublicProfilesCache(loader, ttl_seconds=300, clock=clock)

        await cache.get()
        cache.invalidate()
        await cache.get()

        assert loader.calls == 2


class TestSingleFlight:
    @pytest.mark.asyncio
    async def test_concurrent_misses_share_one_load(self, clock):
        loader = CountingLoader()
        loader.release.clear()
        cache = PublicProfilesCache(loader, ttl_seconds=300, clock=clock)

        tasks = [asyncio.ensure_future(cache.get()) for _ in range(10)]
        await asyncio.sleep(0)
        assert cache.refresh_in_progress

        loader.release.set()
        results = await asyncio.gather(*tasks)

        assert loader.calls == 1
        assert all(result is results[0] for result in results)
        assert cache.reused == 9
        assert not cache.refresh_in_progress

    @pytest.mark.asyncio
    async def test_forced_refresh_joins_running_refresh(self, clock):
        loader = CountingLoader()
        loader.release.clear()
        cache = PublicProfilesCache(loader, ttl_seconds=300, clock=clock)

        normal = asyncio.ensure_future(cache.get())
        await asyncio.sleep(0)
        forced = asyncio.ensure_future(cache.get(force_refresh=True))
        await asyncio.sleep(0)

        loader.release.set()
        first, second = await asyncio.gather(normal, forced)

        assert loader.calls == 1
        assert first is second

    @pytest.mark.asyncio
    async def test_cancelled_waiter_does_not_cancel_shared_load(self, clock):
        loader = CountingLoader()
        loader.release.clear()
        cache = PublicProfilesCache(loader, ttl_seconds=300, clock=clock)

        starter = asyncio.ensure_future(cache.get())
        follower = asyncio.ensure_future(cache.get())
        await asyncio.sleep(0)

        starter.cancel()
        await asyncio.sleep(0)
        loader.release.set()

        assert await follower == [{"id": "profile-1"}]
        assert cache.is_fresh()

    @pytest.mark.asyncio
    async def test_failure_with_no_remaining_waiters_is_logged(self, clock, caplog):
        loop = asyncio.get_running_loop()
        unhandled = []
        loop.set_exception_handler(lambda _, context: unhandled.append(context["message"]))

        loader = CountingLoader(fail_times=1)
        loader.release.clear()
        cache = PublicProfilesCache(loader, ttl_seconds=300, clock=clock)

        only_waiter = asyncio.ensure_future(cache.get())
        await asyncio.sleep(0)
        only_waiter.cancel()
        await asyncio.sleep(0)

        with caplog.at_level(logging.ERROR, logger="partymarket.cache"):
            loader.release.set()
            for _ in range(5):
                await asyncio.sleep(0)

        assert not cache.refresh_in_progress
        assert "upstream query failed" in caplog.text
        gc.collect()
        assert unhandled == []
        loop.set_exception_handler(None)


class TestFailures:
    @pytest.mark.asyncio
    async def test_failure_propagates_and_next_call_retries(self, clock):
        loader = CountingLoader(fail_times=1)
        cache = PublicProfilesCache(loader, ttl_seconds=300, clock=clock)

        with pytest.raises(RuntimeError, match="upstream query failed"):
            await cache.get()

        assert not cache.refresh_in_progress
        assert cache.data is None

        assert await cache.get() == [{"id": "profile-2"}]
        assert loader.calls == 2

    @pytest.mark.asyncio
    async def test_failure_reaches_every_concurrent_waiter(self, clock):
        loader = CountingLoader(fail_times=1)
        loader.release.clear()
        cache = PublicProfilesCache(loader, ttl_seconds=300, clock=clock)

        tasks = [asyncio.ensure_future(cache.get()) for _ in range(3)]
        await asyncio.sleep(0)
        loader.release.set()
        results = await asyncio.gather(*tasks, return_exceptions=True)

        assert loader.calls == 1
        assert all(isinstance(r, RuntimeError) for r in results)
        assert not cache.refresh_in_progress

    @pytest.mark.asyncio
    async def test_failed_refresh_keeps_previous_data(self, clock):
        loader = CountingLoader()
        cache = PublicProfilesCache(loader, ttl_seconds=300, clock=clock)
        first = await cache.get()

        loader.fail_times = 2
        clock.now = 400
        with pytest.raises(RuntimeError):
            await cache.get()

        assert cache.data is first


class TestObservability:
    @pytest.mark.asyncio
    async def test_debug_events_emitted(self, clock, caplog):
        cache = PublicProfilesCache(CountingLoader(), ttl_seconds=300, clock=clock)

        with caplog.at_level(logging.DEBUG, logger="partymarket.debug"):
            await cache.get()
            await cache.get()

        events = [r.debug_event for r in caplog.records if hasattr(r, "debug_event")]
        assert [e["message"] for e in events] == ["Profiles fetched", "Cache hit"]
        assert events[0]["data"]["profiles"] == 1
        assert events[1]["data"]["cachedCount"] == 1
        assert "durationMs" in events[1]["data"]

    @pytest.mark.asyncio
    async def test_stats(self, clock):
        cache = PublicProfilesCache(CountingLoader(), ttl_seconds=300, clock=clock)
        assert cache.stats()["cached_count"] == 0
        assert cache.stats()["age_seconds"] is None

        await cache.get()
        clock.now = 42
        stats = cache.stats()

        assert stats["cached_count"] == 1
        assert stats["age_seconds"] == 42
        assert stats["fresh"] is True
        assert stats["misses"] == 1
