"""
Result caching.

The engine only depends on the ``ResultCache`` protocol (``get`` / ``put``
with an optional per-entry TTL).  ``QueryCache`` is the process-local
implementation: dict-based, thread-safe, size-bounded with oldest-first
eviction.  ``get_cache`` builds it once per process from settings.
"""
from __future__ import annotations

import hashlib
import threading
import time
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Protocol

from src.core.config import get_settings
from src.core.logging import get_logger

logger = get_logger(__name__)


class ResultCache(Protocol):
    def get(self, key: str) -> Any | None: ...

    def put(self, key: str, value: Any, ttl: float | None = None) -> None: ...


def make_key(*parts: Any) -> str:
    """Deterministic cache key; string parts are case/whitespace-normalised."""
    raw = "|".join(p.strip().lower() if isinstance(p, str) else repr(p) for p in parts)
    return hashlib.sha256(raw.encode()).hexdigest()


@dataclass
class CacheEntry:
    key: str
    value: Any
    created_at: float
    ttl: float
    hit_count: int = 0

    @property
    def is_expired(self) -> bool:
        return (time.time() - self.created_at) > self.ttl


class QueryCache:
    """In-memory TTL cache.

    Parameters
    ----------
    ttl : float
        Default time-to-live in seconds.
    max_size : int
        Maximum number of entries; the oldest entry is evicted when full.
    """

    def __init__(self, ttl: float = 300.0, max_size: int = 256):
        self._store: dict[str, CacheEntry] = {}
        self._lock = threading.Lock()
        self._ttl = ttl
        self._max_size = max_size
        self._hits = 0
        self._misses = 0

    def get(self, key: str) -> Any | None:
        """Cached value, or ``None`` on miss / expiry."""
        with self._lock:
            entry = self._store.get(key)
            if entry is None or entry.is_expired:
                if entry is not None:
                    del self._store[key]
                self._misses += 1
                return None
            entry.hit_count += 1
            self._hits += 1
        logger.debug("Cache HIT key=%s hits=%d", key[:16], entry.hit_count)
        return entry.value

    def put(self, key: str, value: Any, ttl: float | None = None) -> None:
        with self._lock:
            if len(self._store) >= self._max_size and key not in self._store:
                self._evict_oldest()
            self._store[key] = CacheEntry(
                key=key, value=value, created_at=time.time(),
                ttl=self._ttl if ttl is None else ttl,
            )
            size = len(self._store)
        logger.debug("Cache PUT key=%s size=%d", key[:16], size)

    def invalidate(self, key: str | None = None) -> int:
        """Remove one entry, or everything when *key* is None.  Returns count removed."""
        with self._lock:
            if key is None:
                count = len(self._store)
                self._store.clear()
                return count
            return 1 if self._store.pop(key, None) is not None else 0

    def cleanup_expired(self) -> int:
        with self._lock:
            expired = [k for k, v in self._store.items() if v.is_expired]
            for k in expired:
                del self._store[k]
            return len(expired)

    def stats(self) -> dict[str, Any]:
        with self._lock:
            total = self._hits + self._misses
            return {
                "size": len(self._store),
                "max_size": self._max_size,
                "ttl_seconds": self._ttl,
                "hits": self._hits,
                "misses": self._misses,
                "hit_rate": round(self._hits / total, 3) if total else 0.0,
            }

    def _evict_oldest(self) -> None:
        if self._store:
            oldest = min(self._store, key=lambda k: self._store[k].created_at)
            del self._store[oldest]


@lru_cache
def get_cache() -> QueryCache:
    """The process-wide cache, sized from settings."""
    settings = get_settings()
    return QueryCache(ttl=settings.cache_ttl_seconds, max_size=settings.cache_max_size)
