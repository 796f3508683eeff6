"""
Render cache — memoized template output keyed by pattern + variables.

A bounded LRU with optional TTL. Keys are digests of the pattern and of
the canonical JSON form of the variable bag, so two renders with equal
inputs always share an entry and a hit is byte-identical to a fresh
render.

Each renderer owns its cache instance; there is no module-level cache.
"""

from __future__ import annotations

import hashlib
import json
import logging
import threading
import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_MAX_SIZE = 512

CacheKey = tuple[str, str]


def _digest(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def make_key(pattern: str, variables: dict[str, Any]) -> CacheKey | None:
    """Cache key for a render: (sha256(pattern), sha256(canonical variables)).

    None when the variables have no canonical form (e.g. a map mixing int
    and str keys); such renders are not cached.
    """
    try:
        serialized = json.dumps(variables, sort_keys=True, default=str, ensure_ascii=False)
    except (TypeError, ValueError):
        return None
    return _digest(pattern), _digest(serialized)


@dataclass
class _Entry:
    content: str
    stored_at: float


class RenderCache:
    """Thread-safe LRU cache of rendered output.

    Args:
        max_size: Maximum number of entries; the least recently used entry
                  is evicted past this.
        ttl_seconds: Entry lifetime. None means entries never expire.
        clock: Monotonic time source (injectable for tests).
    """

    def __init__(
        self,
        max_size: int = DEFAULT_MAX_SIZE,
        ttl_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self.max_size = max_size
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: OrderedDict[CacheKey, _Entry] = OrderedDict()
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._expirations = 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _expired(self, entry: _Entry, now: float) -> bool:
        return self.ttl_seconds is not None and now - entry.stored_at >= self.ttl_seconds

    # ── Lookup / store ──────────────────────────────────────────────

    def get(self, pattern: str, variables: dict[str, Any]) -> str | None:
        """Return cached output, or None on miss (or expiry)."""
        key = make_key(pattern, variables)
        if key is None:
            logger.debug("Variables have no canonical form; not caching")
            with self._lock:
                self._misses += 1
            return None
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None
            if self._expired(entry, self._clock()):
                del self._entries[key]
                self._expirations += 1
                self._misses += 1
                return None
            self._entries.move_to_end(key)
            self._hits += 1
            return entry.content

    def put(self, pattern: str, variables: dict[str, Any], content: str) -> None:
        key = make_key(pattern, variables)
        if key is None:
            return
        with self._lock:
            self._entries[key] = _Entry(content=content, stored_at=self._clock())
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_size:
                self._entries.popitem(last=False)
                self._evictions += 1

    # ── Invalidation ────────────────────────────────────────────────

    def invalidate(self, pattern: str) -> int:
        """Drop every entry rendered from ``pattern``. Returns the count removed."""
        pattern_key = _digest(pattern)
        with self._lock:
            stale = [k for k in self._entries if k[0] == pattern_key]
            for k in stale:
                del self._entries[k]
        if stale:
            logger.debug("Invalidated %d cached render(s) for pattern", len(stale))
        return len(stale)

    def invalidate_all(self) -> int:
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
        return count

    def invalidate_expired(self) -> int:
        """Purge expired entries eagerly. A no-op without a TTL."""
        if self.ttl_seconds is None:
            return 0
        now = self._clock()
        with self._lock:
            stale = [k for k, e in self._entries.items() if self._expired(e, now)]
            for k in stale:
                del self._entries[k]
            self._expirations += len(stale)
        return len(stale)

    # ── Stats ───────────────────────────────────────────────────────

    def stats(self) -> dict[str, Any]:
        with self._lock:
            lookups = self._hits + self._misses
            return {
                "size": len(self._entries),
                "max_size": self.max_size,
                "ttl_seconds": self.ttl_seconds,
                "hits": self._hits,
                "misses": self._misses,
                "evictions": self._evictions,
                "expirations": self._expirations,
                "hit_rate": round(self._hits / lookups, 4) if lookups else 0.0,
            }
