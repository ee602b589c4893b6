"""
Caching utilities using cachetools.

Provides TTL-based caches with automatic expiration. Caches are owned by a
``CacheRegistry`` instance instead of a module-level dict: each pipeline
context builds its own registry, so two imports never share (or clear) each
other's cached ticker metadata or FX rates.

The caches are plain TTLCache objects and are not thread-safe; a registry
must only be used from the event loop that owns it.
"""
from typing import Any, Dict, List, Optional

import structlog
from cachetools import TTLCache

logger = structlog.get_logger(__name__)


class CacheRegistry:
    """Named TTL caches scoped to one owner (pipeline context, test, CLI run)."""

    def __init__(self, owner: str = "default"):
        self.owner = owner
        self._caches: Dict[str, TTLCache] = {}

    def get_ttl_cache(self, name: str, maxsize: int = 1000, ttl: int = 3600) -> TTLCache:
        """
        Get or create a named TTL cache with automatic expiration.

        Args:
            name: Cache identifier (e.g., 'ticker_info', 'fx_rates')
            maxsize: Maximum number of entries in cache (default: 1000)
            ttl: Time-to-live in seconds (default: 3600 = 1 hour)

        Returns:
            TTLCache instance (created on first request, reused afterwards)
        """
        if name not in self._caches:
            logger.debug(
                "Creating new TTL cache",
                owner=self.owner,
                cache_name=name,
                maxsize=maxsize,
                ttl_seconds=ttl
                )
            self._caches[name] = TTLCache(maxsize=maxsize, ttl=ttl)

        return self._caches[name]

    def clear_cache(self, name: str) -> bool:
        """
        Clear a named cache.

        Returns:
            True if cache existed and was cleared, False if not found
        """
        if name in self._caches:
            self._caches[name].clear()
            logger.info("Cache cleared", owner=self.owner, cache_name=name)
            return True
        return False

    def clear_all_caches(self) -> int:
        """Clear every cache of this registry, returning how many were cleared."""
        for cache in self._caches.values():
            cache.clear()
        return len(self._caches)

    def get_cache_stats(self, name: str) -> Optional[Dict[str, Any]]:
        """Size/maxsize/ttl of a named cache, or None if not found."""
        if name not in self._caches:
            return None

        cache = self._caches[name]
        return {
            "name": name,
            "current_size": len(cache),
            "maxsize": cache.maxsize,
            "ttl": cache.ttl
            }

    def list_caches(self) -> List[Dict[str, Any]]:
        """Stats for every cache of this registry."""
        return [self.get_cache_stats(name) for name in self._caches]
