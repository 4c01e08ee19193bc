"""
In-process TTL cache with tag-based invalidation.

The cache is constructed explicitly and handed to the components that use
it (see ``MatchingService``); there is no module-level instance. Entries are
associated with tags at write time, and writes elsewhere in the system
invalidate by tag instead of matching key patterns.

Example:
    cache = TaggedTTLCache(default_ttl=300)
    cache.set("insights:u1", insights, tags=["insights:u1", "metrics"])
    cache.invalidate_tags("metrics")
    cache.close()
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Hashable, Iterable, Optional, Set

from .settings import DEFAULT_CACHE_TTL, MAX_CACHE_TTL

logger = logging.getLogger(__name__)

_MISSING = object()


@dataclass
class _Entry:
    value: Any
    expires_at: float
    tags: Set[str] = field(default_factory=set)


class TaggedTTLCache:
    """Thread-safe TTL cache keyed by hashable keys, invalidated by tag.

    TTLs are clamped to ``max_ttl``. After ``close()`` the cache is empty
    and further writes raise ``RuntimeError``.
    """

    def __init__(
        self,
        default_ttl: float = DEFAULT_CACHE_TTL,
        max_ttl: float = MAX_CACHE_TTL,
        clock: Callable[[], float] = time.monotonic,
    ):
        if default_ttl <= 0:
            raise ValueError("default_ttl must be positive")
        self.max_ttl = max_ttl
        self.default_ttl = min(default_ttl, max_ttl)
        self._clock = clock
        self._entries: Dict[Hashable, _Entry] = {}
        self._tag_index: Dict[str, Set[Hashable]] = {}
        # bumped on every invalidation of a tag / on clear()
        self._tag_generations: Dict[str, int] = {}
        self._epoch = 0
        self._lock = threading.RLock()
        self._closed = False
        self.hits = 0
        self.misses = 0

    def __enter__(self) -> "TaggedTTLCache":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def __len__(self) -> int:
        with self._lock:
            self._purge_expired()
            return len(self._entries)

    @property
    def closed(self) -> bool:
        return self._closed

    def get(self, key: Hashable, default: Any = None) -> Any:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self.misses += 1
                return default
            if entry.expires_at <= self._clock():
                self._remove(key)
                self.misses += 1
                return default
            self.hits += 1
            return entry.value

    def set(
        self,
        key: Hashable,
        value: Any,
        ttl: Optional[float] = None,
        tags: Iterable[str] = (),
    ) -> None:
        ttl = self.default_ttl if ttl is None else ttl
        if ttl <= 0:
            raise ValueError("ttl must be positive")
        ttl = min(ttl, self.max_ttl)

        with self._lock:
            if self._closed:
                raise RuntimeError("cache is closed")
            if key in self._entries:
                self._remove(key)
            entry = _Entry(value=value, expires_at=self._clock() + ttl, tags=set(tags))
            self._entries[key] = entry
            for tag in entry.tags:
                self._tag_index.setdefault(tag, set()).add(key)

    def get_or_compute(
        self,
        key: Hashable,
        compute: Callable[[], Any],
        ttl: Optional[float] = None,
        tags: Iterable[str] = (),
    ) -> Any:
        """Return the cached value, computing and storing it on a miss.

        ``compute`` runs outside the lock; concurrent misses may compute
        the same value twice, the last write wins. If any of ``tags`` is
        invalidated (or the cache cleared) while ``compute`` runs, the
        value is returned but not stored.
        """
        tags = tuple(tags)
        value = self.get(key, _MISSING)
        if value is not _MISSING:
            return value

        with self._lock:
            snapshot = self._generation_snapshot(tags)
        value = compute()

        with self._lock:
            if self._generation_snapshot(tags) != snapshot:
                logger.debug("Discarding value for %r: invalidated during compute", key)
                return value
            self.set(key, value, ttl=ttl, tags=tags)
        return value

    def invalidate(self, key: Hashable) -> bool:
        with self._lock:
            if key not in self._entries:
                return False
            self._remove(key)
            return True

    def invalidate_tags(self, *tags: str) -> int:
        """Drop every entry carrying any of ``tags``; returns the number dropped."""
        removed = 0
        with self._lock:
            for tag in tags:
                for key in list(self._tag_index.get(tag, ())):
                    if key in self._entries:
                        self._remove(key)
                        removed += 1
                self._tag_index.pop(tag, None)
                self._tag_generations[tag] = self._tag_generations.get(tag, 0) + 1
        if removed:
            logger.debug("Invalidated %d cache entries for tags %s", removed, tags)
        return removed

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._tag_index.clear()
            self._epoch += 1

    def close(self) -> None:
        with self._lock:
            self.clear()
            self._closed = True

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            total = self.hits + self.misses
            return {
                "entries": len(self._entries),
                "tags": len(self._tag_index),
                "hits": self.hits,
                "misses": self.misses,
                "hit_rate": self.hits / total if total else 0.0,
            }

    def _remove(self, key: Hashable) -> None:
        entry = self._entries.pop(key)
        for tag in entry.tags:
            keys = self._tag_index.get(tag)
            if keys is None:
                continue
            keys.discard(key)
            if not keys:
                del self._tag_index[tag]

    def _generation_snapshot(self, tags) -> tuple:
        return (self._epoch, tuple(self._tag_generations.get(tag, 0) for tag in tags))

    def _purge_expired(self) -> None:
        now = self._clock()
        for key in [k for k, e in self._entries.items() if e.expires_at <= now]:
            self._remove(key)
