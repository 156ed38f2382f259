"""Concrete implementation of the namespaced TTL Caching Service.

Each namespace is an in-memory LRU store with its own size limit and TTL.
Expired entries are treated as absent on read (lazy expiry) and purged by a
periodic background sweep. Keys are ``provider:operation:<stable JSON of params>``.
"""

import asyncio
import json
import logging
import sys
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from novelcli.domain.errors import validation_error
from novelcli.domain.interfaces.cache import MISSING, CacheService
from novelcli.domain.models.common import CacheKey
from novelcli.infrastructure.config.pipeline_config import CacheConfig, NamespaceConfig

logger = logging.getLogger(__name__)

TRANSLATION = "translation"
API = "api"
CONTENT = "content"
SCRAPING = "scraping"


def make_cache_key(provider: str, operation: str, *params: Any) -> CacheKey:
    """Builds a deterministic key; dict params are serialized with sorted keys."""
    serialized = json.dumps(list(params), sort_keys=True, ensure_ascii=False, default=str)
    return CacheKey(f"{provider}:{operation}:{serialized}")


@dataclass
class CacheEntry:
    """Internal representation of a cache entry."""
    value: Any
    inserted_at: float
    last_access: float


class NamespaceCache:
    """LRU store with a fixed TTL. Entry order in the dict is access order."""

    def __init__(self, name: str, config: NamespaceConfig, clock: Callable[[], float] = time.time):
        self.name = name
        self.max_size = config.max_size
        self.ttl = config.ttl
        self._clock = clock
        self._entries: "OrderedDict[CacheKey, CacheEntry]" = OrderedDict()
        self.hits = 0
        self.misses = 0
        self.evictions = 0

    def __len__(self) -> int:
        return len(self._entries)

    def _is_expired(self, entry: CacheEntry, now: float) -> bool:
        return now - entry.inserted_at > self.ttl

    def get(self, key: CacheKey) -> Any:
        now = self._clock()
        entry = self._entries.get(key)
        if entry is None or self._is_expired(entry, now):
            if entry is not None:
                del self._entries[key]
            self.misses += 1
            return MISSING
        entry.last_access = now
        self._entries.move_to_end(key)
        self.hits += 1
        return entry.value

    def set(self, key: CacheKey, value: Any) -> None:
        now = self._clock()
        if key in self._entries:
            self._entries[key] = CacheEntry(value=value, inserted_at=now, last_access=now)
            self._entries.move_to_end(key)
            return
        if len(self._entries) >= self.max_size:
            evicted_key, _ = self._entries.popitem(last=False)
            self.evictions += 1
            logger.debug(f"Cache[{self.name}] evicted LRU entry: {evicted_key[:80]}")
        self._entries[key] = CacheEntry(value=value, inserted_at=now, last_access=now)

    def delete_prefix(self, prefix: str) -> int:
        doomed = [k for k in self._entries if k.startswith(prefix)]
        for key in doomed:
            del self._entries[key]
        return len(doomed)

    def cleanup_expired(self) -> int:
        now = self._clock()
        expired = [k for k, e in self._entries.items() if self._is_expired(e, now)]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def clear(self) -> None:
        self._entries.clear()

    def get_stats(self) -> Dict[str, Any]:
        now = self._clock()
        lookups = self.hits + self.misses
        expired = sum(1 for e in self._entries.values() if self._is_expired(e, now))
        approx_bytes = sum(sys.getsizeof(k) + sys.getsizeof(e.value) for k, e in self._entries.items())
        return {
            "size": len(self._entries),
            "max_size": self.max_size,
            "ttl": self.ttl,
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate": (self.hits / lookups * 100) if lookups else 0.0,
            "evictions": self.evictions,
            "expired_entries": expired,
            "memory_bytes": approx_bytes,
        }


class CacheManager(CacheService):
    """Namespaced cache with a background expiry sweep."""

    def __init__(self, config: Optional[CacheConfig] = None, clock: Callable[[], float] = time.time):
        """Initializes the caching service."""
        self.config = config or CacheConfig()
        self._namespaces: Dict[str, NamespaceCache] = {
            name: NamespaceCache(name, ns_config, clock=clock)
            for name, ns_config in self.config.namespaces.items()
        }
        self._sweeper: Optional[asyncio.Task] = None
        summary = ", ".join(f"{n}({c.max_size}, ttl={c.ttl:.0f}s)" for n, c in self.config.namespaces.items())
        logger.info(f"CacheManager initialized: {summary}")

    def _namespace(self, namespace: str) -> NamespaceCache:
        try:
            return self._namespaces[namespace]
        except KeyError:
            raise validation_error(f"Unknown cache namespace: {namespace}", field="namespace", value=namespace) from None

    # --- CacheService Interface Implementation ---

    def get(self, namespace: str, provider: str, operation: str, *params: Any) -> Any:
        value = self._namespace(namespace).get(make_cache_key(provider, operation, *params))
        logger.debug(f"Cache[{namespace}] {'miss' if value is MISSING else 'hit'}: {provider}:{operation}")
        return value

    def set(self, namespace: str, provider: str, operation: str, value: Any, *params: Any) -> None:
        self._namespace(namespace).set(make_cache_key(provider, operation, *params), value)

    def clear_namespace(self, namespace: str) -> None:
        self._namespace(namespace).clear()
        logger.info(f"Cache namespace '{namespace}' cleared")

    def clear_provider(self, namespace: str, provider: str) -> int:
        removed = self._namespace(namespace).delete_prefix(f"{provider}:")
        logger.info(f"Removed {removed} '{provider}' entries from cache namespace '{namespace}'")
        return removed

    def clear_all(self) -> None:
        for cache in self._namespaces.values():
            cache.clear()
        logger.info("All cache namespaces cleared")

    def cleanup_expired(self) -> int:
        """Purges expired entries from every namespace; returns how many were removed."""
        removed = sum(cache.cleanup_expired() for cache in self._namespaces.values())
        if removed:
            logger.debug(f"Cache sweep removed {removed} expired entries")
        return removed

    def get_stats(self) -> Dict[str, Dict[str, Any]]:
        return {name: cache.get_stats() for name, cache in self._namespaces.items()}

    # --- Pipeline helpers ---

    def cache_translation(self, provider: str, text: str, target_language: str, translation: Any) -> None:
        self.set(TRANSLATION, provider, "translate", translation, text, target_language)

    def get_cached_translation(self, provider: str, text: str, target_language: str) -> Any:
        return self.get(TRANSLATION, provider, "translate", text, target_language)

    def cache_chapter_content(self, url: str, content: Any) -> None:
        self.set(CONTENT, "scraper", "chapter", content, url)

    def get_cached_chapter_content(self, url: str) -> Any:
        return self.get(CONTENT, "scraper", "chapter", url)

    def cache_api_response(self, provider: str, endpoint: str, params: Dict[str, Any], response: Any) -> None:
        self.set(API, provider, endpoint, response, params)

    def get_cached_api_response(self, provider: str, endpoint: str, params: Dict[str, Any]) -> Any:
        return self.get(API, provider, endpoint, params)

    def cache_scraping_result(self, url: str, selector: str, result: Any) -> None:
        self.set(SCRAPING, "scraper", selector, result, url)

    def get_cached_scraping_result(self, url: str, selector: str) -> Any:
        return self.get(SCRAPING, "scraper", selector, url)

    # --- Background sweep ---

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.config.cleanup_interval)
            self.cleanup_expired()

    def start_sweeper(self) -> None:
        """Starts the periodic expiry sweep on the running event loop."""
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.get_running_loop().create_task(self._sweep_loop())
            logger.debug(f"Cache sweeper started (every {self.config.cleanup_interval:.0f}s)")

    async def stop_sweeper(self) -> None:
        if self._sweeper is None:
            return
        self._sweeper.cancel()
        try:
            await self._sweeper
        except asyncio.CancelledError:
            pass
        self._sweeper = None
        logger.debug("Cache sweeper stopped")

    async def __aenter__(self) -> "CacheManager":
        self.start_sweeper()
        return self

    async def __aexit__(self, exc_type: Any, exc: Optional[BaseException], tb: Any) -> None:
        await self.stop_sweeper()
