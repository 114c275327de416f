"""
In-process cache tier with TTL expiry and LRU eviction.

Sits in front of the shared Redis tier so that hot keys are served without
network I/O. Two ceilings are enforced on every insert: an entry count and an
approximate memory budget. Both are resolved by evicting the least recently
used entries first.
"""

import asyncio
import json
import re
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple, TYPE_CHECKING

from shared.logging import get_logger

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


DEFAULT_TTL = 60.0
DEFAULT_MAX_ENTRIES = 1000
DEFAULT_MAX_MEMORY_MB = 100
DEFAULT_SWEEP_INTERVAL = 60.0

BYTES_PER_CHAR = 2
ENTRY_OVERHEAD_BYTES = 48


def estimate_size(value: Any) -> int:
    """Approximate the footprint of a value from its JSON form."""
    serialized = json.dumps(value, default=str)
    return len(serialized) * BYTES_PER_CHAR + ENTRY_OVERHEAD_BYTES


def compile_pattern(pattern: str) -> "re.Pattern[str]":
    """Compile a glob where ``*`` is the only wildcard."""
    return re.compile(".*".join(re.escape(part) for part in pattern.split("*")))


@dataclass
class CacheEntry:
    """A stored value plus its bookkeeping."""

    value: Any
    expires_at: float
    last_accessed: float
    size: int


class MemoryCache:
    """Bounded in-memory cache with per-entry TTL."""

    def __init__(
        self,
        default_ttl: float = DEFAULT_TTL,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        max_memory_mb: float = DEFAULT_MAX_MEMORY_MB,
        *,
        namespace: str = "",
        sweep_interval: float = DEFAULT_SWEEP_INTERVAL,
        debug: bool = False,
        clock: Callable[[], float] = time.monotonic,
        metrics: Optional["MetricsCollector"] = None,
    ):
        self.default_ttl = default_ttl
        self.max_entries = max_entries
        self.max_memory_mb = max_memory_mb
        self.max_size_bytes = int(max_memory_mb * 1024 * 1024)
        self.namespace = namespace
        self.sweep_interval = sweep_interval
        self.debug = debug
        self.logger = get_logger("cache.memory")
        self.metrics = metrics

        self._clock = clock
        # Iteration order is LRU order: oldest access first
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._current_size = 0
        self._lock = threading.RLock()
        self._sweep_task: Optional[asyncio.Task] = None

        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._expirations = 0

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        """Store a value, evicting least recently used entries if needed."""
        cache_key = self._namespaced(key)
        size = estimate_size(value)
        now = self._clock()
        expires_at = now + (self.default_ttl if ttl is None else ttl)

        with self._lock:
            self._remove(cache_key)

            if size > self.max_size_bytes:
                self.logger.warning(
                    "Value exceeds local cache budget; not cached",
                    key=cache_key,
                    size=size,
                    max_size_bytes=self.max_size_bytes,
                )
                self._publish_usage()
                return

            if self._current_size + size > self.max_size_bytes:
                self._evict_for(size)

            if len(self._entries) >= self.max_entries:
                self._evict_lru()

            self._entries[cache_key] = CacheEntry(
                value=value,
                expires_at=expires_at,
                last_accessed=now,
                size=size,
            )
            self._current_size += size
            self._publish_usage()

        if self.debug:
            self.logger.debug(
                "Set key",
                key=cache_key,
                size=size,
                ttl=expires_at - now,
                entries=len(self._entries),
                size_kb=round(self._current_size / 1024),
            )

    def lookup(self, key: str) -> Tuple[Any, bool]:
        """Return ``(value, found)`` so cached ``None`` is not mistaken for a miss."""
        cache_key = self._namespaced(key)
        now = self._clock()

        with self._lock:
            entry = self._entries.get(cache_key)
            if entry is None:
                self._misses += 1
                if self.debug:
                    self.logger.debug("Miss", key=cache_key)
                return None, False

            if now >= entry.expires_at:
                self._expire(cache_key)
                self._misses += 1
                if self.debug:
                    self.logger.debug("Expired entry", key=cache_key)
                return None, False

            entry.last_accessed = now
            self._entries.move_to_end(cache_key)
            self._hits += 1

        if self.debug:
            self.logger.debug("Hit", key=cache_key)
        return entry.value, True

    def get(self, key: str, default: Any = None) -> Any:
        """Get a value, or ``default`` if absent or expired."""
        value, found = self.lookup(key)
        return value if found else default

    def has(self, key: str) -> bool:
        """Check that a key exists and has not expired, without touching LRU order."""
        cache_key = self._namespaced(key)
        with self._lock:
            entry = self._entries.get(cache_key)
            if entry is None:
                return False
            if self._clock() >= entry.expires_at:
                self._expire(cache_key)
                return False
            return True

    def delete(self, key: str) -> bool:
        """Delete a key; returns whether it existed."""
        cache_key = self._namespaced(key)
        with self._lock:
            existed = self._remove(cache_key)
            if existed:
                self._publish_usage()

        if existed and self.debug:
            self.logger.debug("Deleted key", key=cache_key)
        return existed

    def clear(self) -> None:
        """Remove every entry."""
        with self._lock:
            self._entries.clear()
            self._current_size = 0
            self._publish_usage()
        if self.debug:
            self.logger.debug("Cache cleared")

    def delete_pattern(self, pattern: str) -> int:
        """Delete all keys matching a ``*`` glob, expressed without the namespace."""
        regex = compile_pattern(pattern)
        count = 0

        with self._lock:
            for cache_key in list(self._entries):
                if regex.fullmatch(self._strip_namespace(cache_key)):
                    self._remove(cache_key)
                    count += 1
            if count:
                self._publish_usage()

        if count and self.debug:
            self.logger.debug("Deleted keys matching pattern", pattern=pattern, count=count)
        return count

    def keys(self) -> List[str]:
        """Live keys in the caller's key space."""
        now = self._clock()
        with self._lock:
            return [
                self._strip_namespace(cache_key)
                for cache_key, entry in self._entries.items()
                if now < entry.expires_at
            ]

    def stats(self) -> Dict[str, Any]:
        """Snapshot of occupancy and counters."""
        with self._lock:
            entries = len(self._entries)
            size_bytes = self._current_size
        return {
            "entries": entries,
            "size_bytes": size_bytes,
            "size_kb": round(size_bytes / 1024),
            "size_mb": round(size_bytes / (1024 * 1024), 2),
            "max_entries": self.max_entries,
            "max_size_bytes": self.max_size_bytes,
            "max_size_mb": self.max_memory_mb,
            "hits": self._hits,
            "misses": self._misses,
            "evictions": self._evictions,
            "expirations": self._expirations,
        }

    def __len__(self) -> int:
        return len(self._entries)

    def cleanup_expired(self) -> int:
        """Purge every expired entry. Returns how many were removed."""
        now = self._clock()
        cleaned = 0

        # Snapshot first; each removal takes the lock on its own
        for cache_key, entry in list(self._entries.items()):
            if now >= entry.expires_at:
                with self._lock:
                    current = self._entries.get(cache_key)
                    if current is entry:
                        self._expire(cache_key)
                        cleaned += 1

        if cleaned:
            with self._lock:
                self._publish_usage()
            if self.debug:
                self.logger.debug("Cleaned up expired entries", count=cleaned)
        return cleaned

    async def start(self) -> None:
        """Start the periodic expiry sweep on the running event loop."""
        if self._sweep_task is None or self._sweep_task.done():
            self._sweep_task = asyncio.create_task(self._sweep_loop())
            self.logger.info("Memory cache sweep started", interval=self.sweep_interval, namespace=self.namespace)

    async def stop(self) -> None:
        """Stop the periodic sweep."""
        task, self._sweep_task = self._sweep_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        self.logger.info("Memory cache sweep stopped", namespace=self.namespace)

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval)
            try:
                self.cleanup_expired()
            except Exception as exc:  # pragma: no cover - keep sweeping on unexpected errors
                self.logger.error("Memory cache sweep failed", error=str(exc))

    def _namespaced(self, key: str) -> str:
        return f"{self.namespace}:{key}" if self.namespace else key

    def _strip_namespace(self, cache_key: str) -> str:
        if self.namespace:
            return cache_key[len(self.namespace) + 1:]
        return cache_key

    def _remove(self, cache_key: str) -> bool:
        """Drop an entry and its size. Caller holds the lock."""
        entry = self._entries.pop(cache_key, None)
        if entry is None:
            return False
        self._current_size -= entry.size
        return True

    def _expire(self, cache_key: str) -> None:
        if self._remove(cache_key):
            self._expirations += 1
            if self.metrics:
                self.metrics.record_eviction("expired")

    def _evict_for(self, size_needed: int) -> int:
        """Evict LRU entries until ``size_needed`` more bytes fit the budget."""
        evicted = 0
        freed = 0
        while self._entries and self._current_size + size_needed > self.max_size_bytes:
            cache_key, entry = next(iter(self._entries.items()))
            self._remove(cache_key)
            freed += entry.size
            evicted += 1

        self._evictions += evicted
        if self.metrics:
            self.metrics.record_eviction("memory", evicted)
        if self.debug:
            self.logger.debug("Evicted entries for space", count=evicted, freed_kb=round(freed / 1024))
        return evicted

    def _evict_lru(self) -> bool:
        """Evict the single least recently used entry."""
        if not self._entries:
            return False
        cache_key = next(iter(self._entries))
        self._remove(cache_key)
        self._evictions += 1
        if self.metrics:
            self.metrics.record_eviction("max_entries")
        if self.debug:
            self.logger.debug("LRU eviction", key=cache_key)
        return True

    def _publish_usage(self) -> None:
        if self.metrics:
            self.metrics.record_local_usage(len(self._entries), self._current_size)
