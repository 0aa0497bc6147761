"""
In-process caching for the public profile listing.

One slot holds the last aggregated listing and when it was taken. Concurrent
cache misses share a single in-flight refresh instead of each running the
full aggregation.
"""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Optional

from .config import PUBLIC_PROFILES_CACHE_TTL_SECONDS
from .monitoring import send_debug_log

logger = logging.getLogger(__name__)


class PublicProfilesCache:
    """
    TTL cache with single-flight refresh.

    Args:
        loader: Coroutine function producing a fresh listing
        ttl_seconds: How long a listing is served without touching the loader
        clock: Monotonic time source (seconds)
        location: Tag attached to debug events

    A forced refresh skips the freshness check but still joins a refresh
    that is already running, so at most one loader call is in progress.
    State is only mutated between await points on the event loop, so no
    lock is needed.
    """

    def __init__(
        self,
        loader: Callable[[], Awaitable[list[dict[str, Any]]]],
        ttl_seconds: float = PUBLIC_PROFILES_CACHE_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        location: str = "profiles/public:get_public_profiles",
    ):
        self.loader = loader
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self.location = location

        self.data: Optional[list[dict[str, Any]]] = None
        self.timestamp: float = 0.0
        self._inflight: Optional[asyncio.Future] = None

        self.hits = 0
        self.misses = 0
        self.reused = 0

    def is_fresh(self) -> bool:
        return self.data is not None and (self.clock() - self.timestamp) < self.ttl_seconds

    @property
    def refresh_in_progress(self) -> bool:
        return self._inflight is not None

    async def get(self, force_refresh: bool = False) -> list[dict[str, Any]]:
        """Return the cached listing, refreshing it when stale or forced"""
        started_at = time.perf_counter()

        if not force_refresh and self.is_fresh():
            self.hits += 1
            logger.debug("✅ Cache HIT: public profiles")
            send_debug_log(
                self.location,
                "Cache hit",
                {"durationMs": _elapsed_ms(started_at), "cachedCount": len(self.data)},
            )
            return self.data

        if self._inflight is not None:
            self.reused += 1
            logger.debug("Reusing in-flight public profiles refresh")
            data = await asyncio.shield(self._inflight)
            send_debug_log(
                self.location,
                "In-flight reused",
                {"durationMs": _elapsed_ms(started_at), "cachedCount": len(data)},
            )
            return data

        self.misses += 1
        logger.info(f"❌ Cache MISS: public profiles (forced={force_refresh}) - fetching")
        self._inflight = asyncio.ensure_future(self._refresh())
        self._inflight.add_done_callback(_log_refresh_failure)
        data = await asyncio.shield(self._inflight)
        send_debug_log(
            self.location,
            "Profiles fetched",
            {"durationMs": _elapsed_ms(started_at), "profiles": len(data)},
        )
        return data

    async def _refresh(self) -> list[dict[str, Any]]:
        try:
            data = await self.loader()
            self.data = data
            self.timestamp = self.clock()
            return data
        finally:
            # A failed refresh must not leave later callers waiting on it
            self._inflight = None

    def invalidate(self) -> None:
        self.data = None
        self.timestamp = 0.0
        logger.debug("✅ Cache DELETE: public profiles")

    def stats(self) -> dict:
        """Counters for the health endpoint"""
        age = round(self.clock() - self.timestamp, 1) if self.data is not None else None
        return {
            "cached_count": len(self.data) if self.data is not None else 0,
            "age_seconds": age,
            "ttl_seconds": self.ttl_seconds,
            "fresh": self.is_fresh(),
            "refresh_in_progress": self.refresh_in_progress,
            "hits": self.hits,
            "misses": self.misses,
            "inflight_reused": self.reused,
        }


def _log_refresh_failure(task: asyncio.Future) -> None:
    # Reading the exception marks it retrieved even when every waiter was cancelled
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.error(f"❌ Public profiles refresh failed: {error}")


def _elapsed_ms(started_at: float) -> int:
    return round((time.perf_counter() - started_at) * 1000)
