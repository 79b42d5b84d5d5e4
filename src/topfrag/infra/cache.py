"""
Caching for derived match statistics.

Provides:
- CacheStore: in-process key/value store with per-entry TTL
- MatchCacheManager: keys namespaced by match id and component name, with
  bulk invalidation once new events arrive for a match
- filter_cache_key: stable keys for filtered components
"""

from __future__ import annotations

import hashlib
import json
import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 1800

# Components cleared together whenever a match's data changes
STANDARD_COMPONENTS = (
    "match-details",
    "player-stats",
    "utility-analysis",
    "grenade-explorer",
    "head-to-head",
)


@dataclass
class CacheEntry:
    """A cached value and the monotonic time it stops being valid."""

    value: Any
    expires_at: float | None = None

    def is_expired(self, now: float | None = None) -> bool:
        if self.expires_at is None:
            return False
        return (now if now is not None else time.monotonic()) >= self.expires_at


class CacheStore:
    """Thread-safe in-process cache with optional per-entry TTL."""

    def __init__(self) -> None:
        self._entries: dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return default
            if entry.is_expired():
                del self._entries[key]
                return default
            return entry.value

    def set(self, key: str, value: Any, ttl: int | float | None = None) -> None:
        expires_at = time.monotonic() + ttl if ttl else None
        with self._lock:
            self._entries[key] = CacheEntry(value=value, expires_at=expires_at)

    def has(self, key: str) -> bool:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return False
            if entry.is_expired():
                del self._entries[key]
                return False
            return True

    def forget(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def forget_prefix(self, prefix: str) -> int:
        """Forget every key starting with prefix. Returns how many were removed."""
        with self._lock:
            keys = [key for key in self._entries if key.startswith(prefix)]
            for key in keys:
                del self._entries[key]
            return len(keys)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


def filter_cache_key(component: str, filters: dict[str, Any] | None) -> str:
    """``component_<md5 of filters>``, or ``component_default`` with no filters."""
    if not filters:
        return f"{component}_default"
    encoded = json.dumps(filters, sort_keys=True, default=str)
    return f"{component}_{hashlib.md5(encoded.encode()).hexdigest()}"


class MatchCacheManager:
    """
    Caches derived statistics per match and component.

    Keys look like ``match_{match_id}_component_{component}``. When caching
    is disabled, remember() always calls the producer and nothing is stored.
    """

    def __init__(
        self,
        store: CacheStore | None = None,
        ttl: int = DEFAULT_TTL_SECONDS,
        enabled: bool = True,
    ):
        self.store = store if store is not None else CacheStore()
        self.ttl = ttl
        self.enabled = enabled

    @staticmethod
    def key(component: str, match_id: int) -> str:
        return f"match_{match_id}_component_{component}"

    @staticmethod
    def match_data_key(match_id: int) -> str:
        return f"match_data_{match_id}"

    def cache(self, component: str, match_id: int, data: Any) -> None:
        if not self.enabled:
            return
        self.store.set(self.key(component, match_id), data, self.ttl)

    def get(self, component: str, match_id: int, default: Any = None) -> Any:
        if not self.enabled:
            return default
        return self.store.get(self.key(component, match_id), default)

    def has(self, component: str, match_id: int) -> bool:
        if not self.enabled:
            return False
        return self.store.has(self.key(component, match_id))

    def remember(self, component: str, match_id: int, producer: Callable[[], Any]) -> Any:
        """Return the cached value, computing and storing it on a miss."""
        return self.remember_key(self.key(component, match_id), producer)

    def remember_key(self, key: str, producer: Callable[[], Any], ttl: int | None = None) -> Any:
        """remember() for a raw key not tied to one match, e.g. per-player dashboards."""
        if not self.enabled:
            return producer()

        sentinel = object()
        cached = self.store.get(key, sentinel)
        if cached is not sentinel:
            return cached

        value = producer()
        self.store.set(key, value, ttl if ttl is not None else self.ttl)
        return value

    def forget_prefix(self, prefix: str) -> int:
        return self.store.forget_prefix(prefix)

    def invalidate_component(self, match_id: int, component: str) -> None:
        self.store.forget(self.key(component, match_id))
        self.invalidate_complete(match_id)

    def invalidate_complete(self, match_id: int) -> None:
        for component in STANDARD_COMPONENTS:
            self.store.forget(self.key(component, match_id))

    def invalidate_all(self, match_id: int) -> None:
        """Drop every cached component of a match, filtered variants included."""
        self.invalidate_complete(match_id)
        removed = self.store.forget_prefix(f"match_{match_id}_component_")
        self.store.forget(self.match_data_key(match_id))
        logger.debug(f"Invalidated cache for match {match_id} ({removed} filtered entries)")


# Global cache manager (lazy initialization)
_cache_manager: MatchCacheManager | None = None


def get_cache_manager() -> MatchCacheManager:
    """Get the global cache manager, configured from TopFragConfig.cache."""
    global _cache_manager
    if _cache_manager is None:
        from topfrag.core.config import get_config

        cache_config = get_config().cache
        _cache_manager = MatchCacheManager(
            CacheStore(), ttl=cache_config.ttl_seconds, enabled=cache_config.enabled
        )
    return _cache_manager


def set_cache_manager(manager: MatchCacheManager | None) -> None:
    global _cache_manager
    _cache_manager = manager
