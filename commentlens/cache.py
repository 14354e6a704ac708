"""Two-tier result cache.

Tier 1 is an in-process map bounded by ``max_entries``; the oldest insertion
is evicted first. Tier 2 is the result store: on a tier-1 miss the stored
result is fresh if its own ``analyzed_at`` is within the TTL, and a fresh
hit is copied into tier 1 with that timestamp.
"""

import asyncio
import heapq
import itertools
import logging
import time
from dataclasses import dataclass
from typing import Callable, Protocol

from commentlens.models import AnalysisResult

logger = logging.getLogger(__name__)

POST_PREFIX = "post:"
JOB_PREFIX = "job:"


def post_key(post_id: str) -> str:
    """Cache key for the latest result of a post."""
    return f"{POST_PREFIX}{post_id}"


def job_key(job_id: str) -> str:
    """Cache key for the result of a job."""
    return f"{JOB_PREFIX}{job_id}"


class ResultStore(Protocol):
    """Store lookups backing the second tier."""

    def find_latest_result(self, post_id: str) -> AnalysisResult | None: ...

    def get_result_by_job(self, job_id: str) -> AnalysisResult | None: ...


@dataclass
class CacheEntry:
    """A cached result with its insertion time."""
    key: str
    result: AnalysisResult
    inserted_at: float
    ttl_seconds: float

    def is_expired(self, now: float) -> bool:
        return now - self.inserted_at > self.ttl_seconds


class ResultCache:
    """Caches analysis results by post and by job."""

    def __init__(
        self,
        store: ResultStore | None = None,
        ttl_seconds: float = 3600,
        max_entries: int = 1000,
        enabled: bool = True,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize the cache.

        Args:
            store: Second-tier lookup. None disables the second tier.
            ttl_seconds: Freshness window for both tiers.
            max_entries: Capacity of the in-process tier.
            enabled: When False every lookup misses and puts are ignored.
            clock: Time source, in Unix seconds.
        """
        self.store = store
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self.enabled = enabled
        self._clock = clock

        self._entries: dict[str, CacheEntry] = {}
        # (inserted_at, sequence, key); stale items are skipped on eviction
        self._order: list[tuple[float, int, str]] = []
        self._entry_seq: dict[str, int] = {}
        self._counter = itertools.count()

        self.hits = 0
        self.misses = 0

    async def get(self, key: str) -> AnalysisResult | None:
        """Look up a result in memory, then in the store."""
        if not self.enabled:
            return None

        now = self._clock()
        entry = self._entries.get(key)
        if entry is not None:
            if not entry.is_expired(now):
                self.hits += 1
                return entry.result
            self._remove(key)

        result = await self._lookup_store(key)
        if result is not None and now - result.analyzed_at <= self.ttl_seconds:
            self._insert(key, result, result.analyzed_at)
            self.hits += 1
            logger.debug(f"[Cache] Store hit for {key}")
            return result

        self.misses += 1
        return None

    def put(self, key: str, result: AnalysisResult, inserted_at: float | None = None) -> None:
        """Store a result in the in-process tier."""
        if not self.enabled:
            return
        self._insert(key, result, self._clock() if inserted_at is None else inserted_at)

    def invalidate(self, key: str) -> bool:
        """Remove a key from the in-process tier."""
        return self._remove(key)

    def purge_expired(self) -> int:
        """Remove expired in-process entries.

        Returns:
            Number of entries removed.
        """
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
        for key in expired:
            self._remove(key)
        if expired:
            logger.info(f"[Cache] Purged {len(expired)} expired entries")
        return len(expired)

    def clear(self) -> None:
        """Drop every in-process entry and reset counters."""
        self._entries.clear()
        self._order.clear()
        self._entry_seq.clear()
        self.hits = 0
        self.misses = 0

    def stats(self) -> dict:
        """Entry counts and hit rate."""
        now = self._clock()
        expired = sum(1 for entry in self._entries.values() if entry.is_expired(now))
        lookups = self.hits + self.misses
        return {
            "enabled": self.enabled,
            "total_entries": len(self._entries),
            "valid_entries": len(self._entries) - expired,
            "expired_entries": expired,
            "max_entries": self.max_entries,
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate": round(self.hits / lookups, 4) if lookups else 0.0,
            "ttl_seconds": self.ttl_seconds,
        }

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    async def _lookup_store(self, key: str) -> AnalysisResult | None:
        if self.store is None:
            return None
        if key.startswith(POST_PREFIX):
            return await asyncio.to_thread(self.store.find_latest_result, key[len(POST_PREFIX):])
        if key.startswith(JOB_PREFIX):
            return await asyncio.to_thread(self.store.get_result_by_job, key[len(JOB_PREFIX):])
        return None

    def _insert(self, key: str, result: AnalysisResult, inserted_at: float) -> None:
        if key in self._entries:
            self._remove(key)
        while len(self._entries) >= self.max_entries and self._evict_oldest():
            pass

        seq = next(self._counter)
        self._entries[key] = CacheEntry(key, result, inserted_at, self.ttl_seconds)
        self._entry_seq[key] = seq
        heapq.heappush(self._order, (inserted_at, seq, key))

    def _evict_oldest(self) -> bool:
        while self._order:
            _, seq, key = heapq.heappop(self._order)
            if self._entry_seq.get(key) == seq:
                self._remove(key)
                logger.debug(f"[Cache] Evicted {key}")
                return True
        return False

    def _remove(self, key: str) -> bool:
        if key not in self._entries:
            return False
        del self._entries[key]
        self._entry_seq.pop(key, None)
        if len(self._order) > 2 * max(len(self._entries), 1):
            self._compact()
        return True

    def _compact(self) -> None:
        """Rebuild the eviction index from live entries only."""
        self._order = [
            (entry.inserted_at, self._entry_seq[key], key)
            for key, entry in self._entries.items()
        ]
        heapq.heapify(self._order)
