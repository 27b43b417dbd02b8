"""Principal-keyed cache of fetched verification records.

One entry per principal holding every record fetched from that principal's
collection, plus the fetch timestamp. An entry is fresh while
now - fetched_at < TTL (24 hours by default). Refreshes replace the entry
wholesale; records are never merged across fetches.

Entries live in the key/value store as one map under
VERIFICATION_CACHE_STORAGE_KEY:
    {principal: {"records": [...], "timestamp": <unix seconds>}}

Every mutation reads the map, changes one key and writes it back while
holding an asyncio.Lock, so concurrent fan-out branches for different
principals cannot drop each other's writes.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from community_verifier.core.config import (
    VERIFICATION_CACHE_STORAGE_KEY,
    VERIFICATION_CACHE_TTL_SECONDS,
)

from .models import CacheEntry, VerificationRecord
from .storage import KeyValueStore, get_store

log = logging.getLogger(__name__)


@dataclass
class CacheMetrics:
    """Metrics for cache operations.

    Attributes:
        hits: Lookups that found a fresh entry.
        misses: Lookups that found nothing usable.
        expirations: Lookups that found a stale entry.
        invalidations: Entries removed by remove() or clear().
    """

    hits: int = 0
    misses: int = 0
    expirations: int = 0
    invalidations: int = 0

    def hit_rate(self) -> float:
        """Calculate cache hit rate.

        Returns:
            Hit rate as float (0.0 to 1.0), or 0.0 if no requests.
        """
        total = self.hits + self.misses
        return self.hits / total if total > 0 else 0.0

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "hits": self.hits,
            "misses": self.misses,
            "expirations": self.expirations,
            "invalidations": self.invalidations,
            "hit_rate": round(self.hit_rate(), 4),
        }

    def reset(self) -> None:
        """Reset all metrics to zero."""
        self.hits = 0
        self.misses = 0
        self.expirations = 0
        self.invalidations = 0


class VerificationCache:
    """Persisted principal -> (records, fetched_at) map with a fixed TTL.

    Pure key/value: no network I/O, no knowledge of pagination.
    """

    def __init__(
        self,
        store: Optional[KeyValueStore] = None,
        ttl_seconds: float = VERIFICATION_CACHE_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize cache.

        Args:
            store: Backing key/value store. Uses the process store if omitted.
            ttl_seconds: Freshness window for entries.
            clock: Source of the current Unix time.
        """
        self._store = store if store is not None else get_store()
        self._ttl = ttl_seconds
        self._clock = clock
        self._lock = asyncio.Lock()
        self._metrics = CacheMetrics()

    @property
    def ttl_seconds(self) -> float:
        return self._ttl

    def metrics(self) -> CacheMetrics:
        return self._metrics

    # ---- Internal helpers (must be called with lock held) ----

    def _read_map(self) -> Dict[str, Any]:
        data = self._store.get(VERIFICATION_CACHE_STORAGE_KEY)
        if not isinstance(data, dict):
            if data is not None:
                log.warning("Discarding verification cache that is not a JSON object")
            return {}
        return data

    def _write_map(self, data: Dict[str, Any]) -> None:
        self._store.set(VERIFICATION_CACHE_STORAGE_KEY, data)

    # ---- Public API ----

    async def get(self, principal: str) -> Optional[CacheEntry]:
        """Return the entry for principal, fresh or not.

        A stored entry that cannot be decoded is dropped and treated as absent.
        """
        async with self._lock:
            data = self._read_map()
            raw = data.get(principal)
            if raw is None:
                return None
            try:
                return CacheEntry.from_dict(principal, raw)
            except (KeyError, TypeError, ValueError) as e:
                log.warning(f"Dropping corrupt cache entry for {principal}: {e}")
                del data[principal]
                self._write_map(data)
                return None

    def is_valid(self, entry: CacheEntry) -> bool:
        """True while the entry is younger than the TTL."""
        return self._clock() - entry.fetched_at < self._ttl

    async def get_valid(self, principal: str) -> Optional[CacheEntry]:
        """Return the entry for principal only if it is still fresh."""
        entry = await self.get(principal)
        if entry is None:
            self._metrics.misses += 1
            log.debug(f"Verification cache miss: {principal}")
            return None
        if not self.is_valid(entry):
            self._metrics.expirations += 1
            self._metrics.misses += 1
            log.debug(
                f"Verification cache expired: {principal} "
                f"(age={self._clock() - entry.fetched_at:.0f}s)"
            )
            return None
        self._metrics.hits += 1
        log.debug(f"Verification cache hit: {principal} ({len(entry.records)} records)")
        return entry

    async def put(self, principal: str, records: List[VerificationRecord]) -> CacheEntry:
        """Store records for principal stamped with the current time.

        Replaces any prior entry for principal.
        """
        entry = CacheEntry(principal=principal, records=list(records), fetched_at=self._clock())
        async with self._lock:
            data = self._read_map()
            data[principal] = entry.to_dict()
            self._write_map(data)
        log.debug(f"Cached {len(entry.records)} records for {principal}")
        return entry

    async def remove(self, principal: str) -> bool:
        """Remove principal's entry.

        Returns:
            True if an entry existed.
        """
        async with self._lock:
            data = self._read_map()
            if principal not in data:
                return False
            del data[principal]
            self._write_map(data)
            self._metrics.invalidations += 1
            log.info(f"Verification cache entry removed: {principal}")
            return True

    async def clear(self) -> int:
        """Remove every entry.

        Returns:
            Number of entries removed.
        """
        async with self._lock:
            count = len(self._read_map())
            self._store.delete(VERIFICATION_CACHE_STORAGE_KEY)
            self._metrics.invalidations += count
            log.info(f"Verification cache cleared ({count} entries)")
            return count

    async def size(self) -> int:
        """Current number of entries, fresh or stale."""
        async with self._lock:
            return len(self._read_map())


# Module-level singleton
_verification_cache: Optional[VerificationCache] = None


def get_verification_cache() -> VerificationCache:
    """Get the module-level verification cache singleton."""
    global _verification_cache
    if _verification_cache is None:
        _verification_cache = VerificationCache()
    return _verification_cache


def reset_verification_cache() -> None:
    """Reset the module-level verification cache singleton (for testing)."""
    global _verification_cache
    _verification_cache = None
