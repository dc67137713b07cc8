"""
In-memory cache of latest-version lookups with TTL-based expiration.

Latest-version resolution is a pure function of registry state, so the
result for one (registry, name) pair can be shared between every referrer
that imports the same dependency during a run.
"""

import threading
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

from .cli_config import get_config


@dataclass(frozen=True)
class CacheKey:
    """Cache key for latest-version lookups."""

    package_name: str
    registry_type: str

    def __str__(self) -> str:
        return f"{self.registry_type}:{self.package_name}"


@dataclass
class CacheEntry:
    """Cache entry with TTL and access tracking."""

    key: CacheKey
    latest_version: str
    created_at: float
    last_accessed: float
    ttl_seconds: int
    access_count: int = 0

    def is_expired(self) -> bool:
        return (time.time() - self.created_at) >= self.ttl_seconds

    def touch(self) -> None:
        """Update last access time and increment access count."""
        self.last_accessed = time.time()
        self.access_count += 1


class CacheStats:
    """Cache performance statistics."""

    def __init__(self):
        self.hits = 0
        self.misses = 0
        self.evictions = 0
        self.expired_removals = 0
        self._lock = threading.Lock()

    def record_hit(self) -> None:
        with self._lock:
            self.hits += 1

    def record_miss(self) -> None:
        with self._lock:
            self.misses += 1

    def record_eviction(self) -> None:
        with self._lock:
            self.evictions += 1

    def record_expired_removal(self) -> None:
        with self._lock:
            self.expired_removals += 1

    def get_stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        with self._lock:
            total_requests = self.hits + self.misses
            return {
                "hits": self.hits,
                "misses": self.misses,
                "evictions": self.evictions,
                "expired_removals": self.expired_removals,
                "total_requests": total_requests,
                "hit_rate_percent": (
                    (self.hits / total_requests) * 100.0 if total_requests else 0.0
                ),
            }


class VersionCacheManager:
    """
    Thread-safe cache of latest versions.

    Features:
    - TTL-based expiration
    - LRU eviction once `max_size` is reached
    - Only successful lookups are stored; failures are retried next time
    """

    def __init__(
        self,
        max_size: Optional[int] = None,
        default_ttl: Optional[int] = None,
        enabled: Optional[bool] = None,
    ):
        config = get_config()

        self.max_size = max_size or config.performance.max_cache_size
        self.default_ttl = (
            default_ttl
            if default_ttl is not None
            else config.performance.cache_ttl_seconds
        )
        self.enabled = (
            enabled if enabled is not None else config.performance.enable_caching
        )

        self._cache: Dict[str, CacheEntry] = {}
        self._lock = threading.RLock()
        self._stats = CacheStats()

    def _evict_lru(self) -> None:
        if not self._cache:
            return
        lru_key = min(self._cache.keys(), key=lambda k: self._cache[k].last_accessed)
        del self._cache[lru_key]
        self._stats.record_eviction()

    def get(self, package_name: str, registry_type: str) -> Optional[str]:
        """
        Get the cached latest version for a package.

        Args:
            package_name: Registry-qualified dependency name
            registry_type: Cache namespace of the registry client

        Returns:
            Latest version or None if not cached or expired
        """
        if not self.enabled:
            return None

        key_str = str(CacheKey(package_name, registry_type))

        with self._lock:
            entry = self._cache.get(key_str)

            if entry is None:
                self._stats.record_miss()
                return None

            if entry.is_expired():
                del self._cache[key_str]
                self._stats.record_expired_removal()
                self._stats.record_miss()
                return None

            entry.touch()
            self._stats.record_hit()
            return entry.latest_version

    def put(
        self,
        package_name: str,
        registry_type: str,
        latest_version: str,
        ttl_seconds: Optional[int] = None,
    ) -> None:
        """Store a latest-version lookup."""
        if not self.enabled:
            return

        key = CacheKey(package_name, registry_type)
        now = time.time()

        with self._lock:
            if str(key) not in self._cache and len(self._cache) >= self.max_size:
                self._evict_lru()

            self._cache[str(key)] = CacheEntry(
                key=key,
                latest_version=latest_version,
                created_at=now,
                last_accessed=now,
                ttl_seconds=ttl_seconds if ttl_seconds is not None else self.default_ttl,
            )

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()

    def get_stats(self) -> Dict[str, Any]:
        """Get cache statistics including current size."""
        with self._lock:
            stats = self._stats.get_stats()
            stats["size"] = len(self._cache)
            stats["max_size"] = self.max_size
            stats["enabled"] = self.enabled
            return stats


# Global cache manager instance
_global_cache_manager: Optional[VersionCacheManager] = None


def get_cache_manager() -> VersionCacheManager:
    """Get the global cache manager instance."""
    global _global_cache_manager

    if _global_cache_manager is None:
        _global_cache_manager = VersionCacheManager()

    return _global_cache_manager


def reset_cache_manager() -> None:
    """Reset the global cache manager (useful for testing)."""
    global _global_cache_manager

    if _global_cache_manager:
        _global_cache_manager.clear()
    _global_cache_manager = None
