"""
Thread-safe TTL cache for upstream responses.

This module provides the process-wide memoization of FPL API payloads. Every
cache key carries an explicit resource family, and the family decides how
long an entry stays fresh.
"""

import time
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Mapping, Optional
import logging

from .constants import (
    BOOTSTRAP_CACHE_TTL,
    FIXTURES_CACHE_TTL,
    PLAYER_CACHE_TTL,
    LEAGUE_CACHE_TTL,
    ENTRY_CACHE_TTL,
    LIVE_CACHE_TTL
)

logger = logging.getLogger(__name__)


class ResourceFamily(str, Enum):
    """Resource classes of the FPL API, grouped by how often they change."""
    BOOTSTRAP = 'bootstrap'
    FIXTURES = 'fixtures'
    PLAYER = 'player'
    LEAGUE = 'league'
    ENTRY = 'entry'
    LIVE = 'live'


DEFAULT_TTLS: Dict[ResourceFamily, float] = {
    ResourceFamily.BOOTSTRAP: BOOTSTRAP_CACHE_TTL,
    ResourceFamily.FIXTURES: FIXTURES_CACHE_TTL,
    ResourceFamily.PLAYER: PLAYER_CACHE_TTL,
    ResourceFamily.LEAGUE: LEAGUE_CACHE_TTL,
    ResourceFamily.ENTRY: ENTRY_CACHE_TTL,
    ResourceFamily.LIVE: LIVE_CACHE_TTL,
}


@dataclass(frozen=True)
class CacheKey:
    """Cache key tagged with its resource family.

    The string form (``name``) is what pattern invalidation matches against,
    e.g. ``entry:123:picks:5``.
    """
    family: ResourceFamily
    name: str

    @classmethod
    def build(cls, family: ResourceFamily, *parts: Any) -> 'CacheKey':
        """Build a key as ``family[:part...]``."""
        name = ':'.join([family.value] + [str(part) for part in parts])
        return cls(family, name)

    @classmethod
    def parse(cls, name: str) -> 'CacheKey':
        """Rebuild a key from its string form, e.g. ``live:12``.

        Raises:
            ValueError: the prefix before the first ':' is not a known family
        """
        prefix = name.split(':', 1)[0]
        try:
            family = ResourceFamily(prefix)
        except ValueError as e:
            raise ValueError(
                f"Cache key '{name}' does not start with a known family "
                f"({', '.join(f.value for f in ResourceFamily)})"
            ) from e
        return cls(family, name)

    def __str__(self):
        return self.name


@dataclass
class CacheEntry:
    """A stored payload and the time of its last successful write."""
    key: CacheKey
    payload: Any
    stored_at: float


class TTLPolicy:
    """
    Maps resource families to TTLs in seconds.

    Args:
        overrides: Optional mapping of family name (or ResourceFamily) to TTL
            seconds, e.g. ``{'live': 30}``
    """

    def __init__(self, overrides: Optional[Mapping] = None):
        self._ttls: Dict[ResourceFamily, float] = dict(DEFAULT_TTLS)
        for family, ttl in (overrides or {}).items():
            try:
                family = ResourceFamily(family)
            except ValueError as e:
                raise ValueError(f"Unknown cache family '{family}'") from e
            if ttl is None or float(ttl) < 0:
                raise ValueError(f"TTL for {family.value} must be >= 0, got {ttl}")
            self._ttls[family] = float(ttl)

    def ttl_for(self, key: CacheKey) -> float:
        """TTL in seconds for the family of ``key``."""
        return self._ttls[key.family]

    def as_dict(self) -> Dict[str, float]:
        return {family.value: ttl for family, ttl in self._ttls.items()}


class CacheManager:
    """
    Thread-safe TTL cache for storing API responses.

    Features:
    - Freshness decided per entry from its family TTL
    - No capacity bound: stale entries stay until overwritten or invalidated,
      they just fail the freshness check on read
    - Substring based invalidation for administrative use
    - Cache hit/miss metrics for monitoring
    """

    def __init__(self, ttl_policy: Optional[TTLPolicy] = None,
                 clock: Callable[[], float] = time.time):
        self.ttl_policy = ttl_policy or TTLPolicy()
        self._clock = clock
        self._cache: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()
        self._stats = {
            'hits': 0,
            'misses': 0,
            'stores': 0
        }

    def _is_fresh(self, entry: CacheEntry, now: float) -> bool:
        return now - entry.stored_at < self.ttl_policy.ttl_for(entry.key)

    def lookup(self, key: CacheKey) -> Optional[CacheEntry]:
        """
        Get the entry for ``key`` if it exists and is fresh.

        Args:
            key: Cache key

        Returns:
            The fresh CacheEntry, None for a miss (never cached or expired)
        """
        with self._lock:
            entry = self._cache.get(key.name)
            if entry is None or not self._is_fresh(entry, self._clock()):
                self._stats['misses'] += 1
                logger.debug("Cache miss for key: %s", key)
                return None

            self._stats['hits'] += 1
            logger.debug("Cache hit for key: %s", key)
            return entry

    def get(self, key: CacheKey) -> Optional[Any]:
        """Get the cached payload for ``key`` if fresh, None otherwise."""
        entry = self.lookup(key)
        return entry.payload if entry is not None else None

    def put(self, key: CacheKey, payload: Any) -> CacheEntry:
        """
        Store a payload with the current timestamp, overwriting any prior entry.

        Args:
            key: Cache key
            payload: JSON-compatible value, stored verbatim
        """
        with self._lock:
            entry = CacheEntry(key=key, payload=payload, stored_at=self._clock())
            self._cache[key.name] = entry
            self._stats['stores'] += 1
        logger.debug("Cached value for key: %s (TTL: %ss)",
                     key, self.ttl_policy.ttl_for(key))
        return entry

    def invalidate(self, pattern: str = '') -> int:
        """
        Remove every entry whose key contains ``pattern``.

        An empty pattern clears the whole cache.

        Returns:
            Number of entries removed
        """
        if not pattern:
            return self.clear_all()

        with self._lock:
            matching = [name for name in self._cache if pattern in name]
            for name in matching:
                del self._cache[name]
        logger.info("Invalidated %d cache entries matching '%s'", len(matching), pattern)
        return len(matching)

    def clear_all(self) -> int:
        """Clear all cache entries and return how many existed."""
        with self._lock:
            count = len(self._cache)
            self._cache.clear()
        logger.info("Cache cleared (%d entries removed)", count)
        return count

    def keys(self) -> list:
        """Names of all stored keys, fresh or stale."""
        with self._lock:
            return list(self._cache)

    def get_stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        with self._lock:
            now = self._clock()
            families: Dict[str, int] = {}
            fresh = 0
            for entry in self._cache.values():
                families[entry.key.family.value] = families.get(entry.key.family.value, 0) + 1
                if self._is_fresh(entry, now):
                    fresh += 1
            total_requests = self._stats['hits'] + self._stats['misses']
            hit_rate = (self._stats['hits'] / total_requests * 100) if total_requests > 0 else 0

            return {
                **self._stats,
                'hit_rate': hit_rate,
                'keys': len(self._cache),
                'fresh_keys': fresh,
                'families': families
            }

    def reset_stats(self):
        """Reset cache statistics."""
        with self._lock:
            self._stats = {'hits': 0, 'misses': 0, 'stores': 0}
