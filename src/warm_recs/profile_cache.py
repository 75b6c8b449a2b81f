"""
In-memory profile cache with TTL expiry, LRU eviction and stale fallback.

One instance is meant to live for the whole process and be passed to every
recommender that needs profile enrichment.
"""

import asyncio
import logging
import math
import time
from dataclasses import dataclass, replace
from typing import Awaitable, Callable, Iterable

from .config import (
    PROFILE_CACHE_TTL_SECONDS,
    PROFILE_CACHE_MAX_SIZE,
    PROFILE_CACHE_EVICT_FRACTION,
)
from .errors import GraphAPIError
from .metrics import RecommendationMetrics
from .models import UserRecord

logger = logging.getLogger(__name__)


@dataclass
class _CacheEntry:
    profile: UserRecord
    inserted_at: float
    last_accessed_at: float
    access_count: int


class ProfileEnrichmentCache:
    """
    Bounded TTL cache of user profiles keyed by user id.

    ``get`` serves fresh entries, refetches expired or missing ones, and
    falls back to an expired entry when the refetch fails. Concurrent misses
    for the same id share a single in-flight fetch.
    """

    def __init__(
        self,
        fetch_profile: Callable[[int], Awaitable[UserRecord]],
        ttl_seconds: float = PROFILE_CACHE_TTL_SECONDS,
        max_size: int = PROFILE_CACHE_MAX_SIZE,
        evict_fraction: float = PROFILE_CACHE_EVICT_FRACTION,
        clock: Callable[[], float] = time.monotonic,
        metrics: RecommendationMetrics | None = None,
    ):
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        if not (0.0 <= evict_fraction <= 1.0):
            raise ValueError("evict_fraction must be in [0, 1]")

        self._fetch_profile = fetch_profile
        self.ttl_seconds = ttl_seconds
        self.max_size = max_size
        self.evict_fraction = evict_fraction
        self._clock = clock
        self.metrics = metrics
        self._entries: dict[int, _CacheEntry] = {}
        self._inflight: dict[int, asyncio.Future] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, user_id: int) -> bool:
        return user_id in self._entries

    def _is_fresh(self, entry: _CacheEntry, now: float) -> bool:
        return (now - entry.inserted_at) < self.ttl_seconds

    def _touch(self, entry: _CacheEntry, now: float) -> UserRecord:
        entry.access_count += 1
        entry.last_accessed_at = now
        return replace(entry.profile)

    def _count(self, counter_name: str, amount: int = 1) -> None:
        if self.metrics is not None:
            getattr(self.metrics, counter_name).inc(amount)

    async def get(self, user_id: int) -> UserRecord:
        """Return the profile for ``user_id``, fetching it when missing or expired."""
        now = self._clock()
        entry = self._entries.get(user_id)

        if entry and self._is_fresh(entry, now):
            logger.debug(f"Cache HIT for {user_id} (age: {now - entry.inserted_at:.0f}s)")
            self._count("cache_hits")
            return self._touch(entry, now)

        logger.debug(f"Cache MISS for {user_id} - fetching fresh data")
        self._count("cache_misses")

        pending = self._inflight.get(user_id)
        if pending is None:
            pending = asyncio.ensure_future(self._fetch_and_store(user_id))
            self._inflight[user_id] = pending

        try:
            profile = await pending
        except GraphAPIError as exc:
            stale = self._entries.get(user_id)
            if stale is None:
                raise
            logger.warning(f"Using expired cache data for {user_id} as fallback: {exc}")
            self._count("cache_stale_fallbacks")
            stale.last_accessed_at = self._clock()
            return replace(stale.profile)

        return replace(profile)

    async def _fetch_and_store(self, user_id: int) -> UserRecord:
        try:
            profile = await self._fetch_profile(user_id)
            self.set(user_id, profile)
            return profile
        finally:
            self._inflight.pop(user_id, None)

    async def get_many(self, user_ids: Iterable[int]) -> dict[int, UserRecord]:
        """
        Profiles for several ids. Ids whose fetch fails (with no stale copy)
        are left out of the result rather than failing the whole call.
        """
        result: dict[int, UserRecord] = {}
        uncached: list[int] = []
        now = self._clock()

        for user_id in dict.fromkeys(user_ids):
            entry = self._entries.get(user_id)
            if entry and self._is_fresh(entry, now):
                self._count("cache_hits")
                result[user_id] = self._touch(entry, now)
            else:
                uncached.append(user_id)

        # No batch endpoint assumed; fetch one by one
        for user_id in uncached:
            try:
                result[user_id] = await self.get(user_id)
            except GraphAPIError as exc:
                logger.warning(f"Failed to fetch profile for {user_id}: {exc}")

        return result

    def set(self, user_id: int, profile: UserRecord) -> None:
        """Insert or overwrite a profile, evicting first if the cache is full."""
        if len(self._entries) >= self.max_size and user_id not in self._entries:
            self._evict_least_recently_used()

        now = self._clock()
        self._entries[user_id] = _CacheEntry(
            profile=replace(profile),
            inserted_at=now,
            last_accessed_at=now,
            access_count=1,
        )
        logger.debug(f"Cached profile for {user_id} ({profile.handle})")

    def invalidate(self, user_id: int) -> bool:
        removed = self._entries.pop(user_id, None) is not None
        if removed:
            logger.debug(f"Invalidated cache for {user_id}")
        return removed

    def clear(self) -> None:
        size = len(self._entries)
        self._entries.clear()
        logger.info(f"Cleared profile cache ({size} entries)")

    def stats(self) -> dict:
        now = self._clock()
        ages = [now - entry.inserted_at for entry in self._entries.values()]
        return {
            "size": len(self._entries),
            "total_accesses": sum(entry.access_count for entry in self._entries.values()),
            "average_age_seconds": round(sum(ages) / len(ages), 1) if ages else 0.0,
            "oldest_entry_age_seconds": round(max(ages), 1) if ages else 0.0,
        }

    def _evict_least_recently_used(self) -> None:
        # Oldest 10% by last access, at least one
        to_remove = max(1, math.floor(len(self._entries) * self.evict_fraction))
        victims = sorted(self._entries.items(), key=lambda item: item[1].last_accessed_at)[:to_remove]
        for user_id, _ in victims:
            del self._entries[user_id]
            logger.debug(f"Evicted LRU cache entry for {user_id}")
        self._count("cache_evictions", len(victims))
