"""In-memory LRU cache with per-entry TTL, plus a periodic cleanup task."""

import asyncio
import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Hashable, Iterable, Optional

from ..config import CACHE_CLEANUP_INTERVAL_SECONDS, CACHE_MAX_ENTRIES, CACHE_TTL_SECONDS

logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    value: Any
    created_at: float
    ttl: float

    def expired(self, now: float) -> bool:
        # A zero TTL is expired from the moment it is written
        return now - self.created_at >= self.ttl


class ExpiringLRUCache:
    """
    Size-bounded, time-bounded key-value store.

    Used to memoize expensive per-image derivations (garment analysis,
    auto patches) keyed by content hash. Entries expire after their TTL
    (checked lazily on ``get`` and in bulk by ``cleanup``); when the store
    is full, the least-recently-used entry is evicted.
    """

    def __init__(
        self,
        max_size: int = CACHE_MAX_ENTRIES,
        default_ttl: float = CACHE_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        name: str = "cache",
    ):
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self.max_size = max_size
        self.default_ttl = default_ttl
        self.name = name
        self._clock = clock
        self._entries: "OrderedDict[Hashable, CacheEntry]" = OrderedDict()
        self._lock = threading.Lock()

    def get(self, key: Hashable) -> Optional[Any]:
        """Return the cached value, or None if absent or expired."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if entry.expired(self._clock()):
                del self._entries[key]
                return None
            self._entries.move_to_end(key)
            return entry.value

    def set(self, key: Hashable, value: Any, ttl: Optional[float] = None) -> None:
        """Store a value, evicting the least-recently-used entry when full."""
        with self._lock:
            if key in self._entries:
                del self._entries[key]
            elif len(self._entries) >= self.max_size:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug(f"[{self.name}] evicted {evicted}")
            self._entries[key] = CacheEntry(
                value=value,
                created_at=self._clock(),
                ttl=self.default_ttl if ttl is None else ttl,
            )

    def delete(self, key: Hashable) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def cleanup(self) -> int:
        """Drop every expired entry. Returns the number removed."""
        with self._lock:
            now = self._clock()
            expired = [key for key, entry in self._entries.items() if entry.expired(now)]
            for key in expired:
                del self._entries[key]
        return len(expired)

    def __contains__(self, key: Hashable) -> bool:
        with self._lock:
            entry = self._entries.get(key)
            return entry is not None and not entry.expired(self._clock())

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class CacheJanitor:
    """Runs ``cleanup()`` on a set of caches at a fixed interval."""

    def __init__(
        self,
        caches: Iterable[ExpiringLRUCache],
        interval: float = CACHE_CLEANUP_INTERVAL_SECONDS,
    ):
        self.caches = list(caches)
        self.interval = interval
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def sweep(self) -> int:
        removed = 0
        for cache in self.caches:
            removed += cache.cleanup()
        if removed:
            logger.info(f"Cache cleanup removed {removed} expired entries")
        return removed

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            self.sweep()

    def start(self) -> None:
        """Start the background sweep on the running event loop."""
        if not self.running:
            self._task = asyncio.get_running_loop().create_task(self._run())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
