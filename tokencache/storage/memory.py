from __future__ import annotations

import math
import threading
import time
from typing import Callable, Dict, Optional, Tuple

from tokencache.logging import get_logger


class MemoryCache:
    """In-process expiring key-value store.

    Mirrors the primitives of ``RedisCache`` for tests and local development.
    Expiry is lazy: a key past its deadline is dropped the next time it is
    touched. Keys nobody touches again are swept by writes: once the earliest
    known deadline has passed, the next ``set_if_absent`` purges every expired
    key, at most once per ``purge_interval`` seconds. The clock is injectable
    so expiry can be driven without sleeping.
    """

    def __init__(
        self,
        *,
        clock: Optional[Callable[[], float]] = None,
        purge_interval: float = 1.0,
    ) -> None:
        self.logger = get_logger(__name__)
        self._clock = clock or time.monotonic
        self._data: Dict[str, Tuple[str, float]] = {}
        self._data_lock = threading.RLock()
        self._purge_interval = purge_interval
        self._last_purge = self._clock()
        self._next_purge_at = math.inf

    def verify_connection(self) -> None:
        return None

    def _live_entry(self, key: str) -> Optional[Tuple[str, float]]:
        entry = self._data.get(key)
        if entry is None:
            return None
        if entry[1] <= self._clock():
            del self._data[key]
            return None
        return entry

    def _schedule_purge(self, deadline: float) -> None:
        candidate = max(deadline, self._last_purge + self._purge_interval)
        if candidate < self._next_purge_at:
            self._next_purge_at = candidate

    def _purge_locked(self, now: float) -> int:
        expired = [key for key, (_, deadline) in self._data.items() if deadline <= now]
        for key in expired:
            del self._data[key]
        self._last_purge = now
        self._next_purge_at = math.inf
        if self._data:
            self._schedule_purge(min(deadline for _, deadline in self._data.values()))
        return len(expired)

    async def set_if_absent(self, key: str, value: str, ttl_seconds: int) -> bool:
        with self._data_lock:
            now = self._clock()
            if now >= self._next_purge_at:
                removed = self._purge_locked(now)
                if removed:
                    self.logger.debug("memory_cache_purged", removed=removed)
            if self._live_entry(key) is not None:
                return False
            deadline = now + max(1, math.ceil(ttl_seconds))
            self._data[key] = (value, deadline)
            self._schedule_purge(deadline)
            return True

    async def get(self, key: str) -> Optional[str]:
        with self._data_lock:
            entry = self._live_entry(key)
            return entry[0] if entry else None

    async def delete(self, key: str) -> int:
        with self._data_lock:
            if self._live_entry(key) is None:
                return 0
            del self._data[key]
            return 1

    async def ttl(self, key: str) -> Optional[int]:
        with self._data_lock:
            entry = self._live_entry(key)
            if entry is None:
                return None
            return max(0, int(entry[1] - self._clock()))

    def purge_expired(self) -> int:
        """Drop every expired key; returns how many were removed."""
        with self._data_lock:
            removed = self._purge_locked(self._clock())
        if removed:
            self.logger.debug("memory_cache_purged", removed=removed)
        return removed

    def __len__(self) -> int:
        with self._data_lock:
            return len(self._data)

    async def close(self) -> None:
        with self._data_lock:
            self._data.clear()
            self._next_purge_at = math.inf
