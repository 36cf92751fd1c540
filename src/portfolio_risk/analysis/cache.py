"""TTL cache shared across requests, with single-flight recomputation per key."""

import logging
import threading
import time
from collections.abc import Callable, Hashable
from concurrent.futures import Future
from dataclasses import dataclass
from typing import Any, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class _Entry:
    value: Any
    expires_at: float


class StatisticsCache:
    """Expiring key/value cache.

    Fresh reads take no lock. On a miss, the first caller for a key computes the
    value while later callers for the same key block on its future and share
    the result (or its exception). Expired entries are dropped when read and
    swept whenever a new value is stored, so keys that are never asked for
    again (an earlier as-of date) do not accumulate.
    """

    def __init__(
        self,
        ttl_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[Hashable, _Entry] = {}
        self._inflight: dict[Hashable, Future] = {}
        self._lock = threading.RLock()
        self.hits = 0
        self.misses = 0
        self.computations = 0

    def get(self, key: Hashable) -> Any | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.expires_at <= self._clock():
            with self._lock:
                if self._entries.get(key) is entry:
                    del self._entries[key]
            return None
        return entry.value

    def put(self, key: Hashable, value: Any) -> None:
        now = self._clock()
        with self._lock:
            self._evict_expired(now)
            self._entries[key] = _Entry(value, now + self.ttl_seconds)

    def _evict_expired(self, now: float) -> None:
        expired = [k for k, e in self._entries.items() if e.expires_at <= now]
        for k in expired:
            del self._entries[k]
        if expired:
            logger.debug("Evicted %d expired cache entries", len(expired))

    def get_or_compute(self, key: Hashable, compute: Callable[[], T]) -> T:
        cached = self.get(key)
        if cached is not None:
            self.hits += 1
            logger.debug("Cache hit for %s", key)
            return cached

        with self._lock:
            cached = self.get(key)
            if cached is not None:
                self.hits += 1
                return cached
            future = self._inflight.get(key)
            leader = future is None
            if leader:
                future = Future()
                self._inflight[key] = future
                self.misses += 1

        if not leader:
            logger.debug("Waiting on in-flight computation for %s", key)
            return future.result()

        try:
            self.computations += 1
            value = compute()
            self.put(key, value)
            future.set_result(value)
            return value
        except BaseException as e:
            future.set_exception(e)
            raise
        finally:
            with self._lock:
                self._inflight.pop(key, None)

    def invalidate(self, key: Hashable) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        now = self._clock()
        return sum(1 for e in list(self._entries.values()) if e.expires_at > now)
