"""
CS2 Portfolio - TTL Cache
Generic in-memory memo with a freshness window and an injectable clock.

Entries are never evicted, only superseded. A stale entry stays readable so
callers can fall back to it when a re-fetch fails. Concurrent misses for the
same key share one in-flight fetch.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Generic, Hashable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class CacheEntry(Generic[T]):
    value: T
    fetched_at: float


class TtlCache(Generic[T]):
    """Keyed memo with a single TTL.

    Usage:
        cache = TtlCache(ttl=300, name="PriceCache")
        value = await cache.get_or_fetch(key, fetch_coro_fn)
    """

    def __init__(self, ttl: float, clock: Callable[[], float] = time.time,
                 name: str = "TtlCache"):
        self.ttl = ttl
        self.clock = clock
        self.name = name
        self._entries: Dict[Hashable, CacheEntry[T]] = {}
        self._inflight: Dict[Hashable, asyncio.Future] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: Hashable) -> bool:
        return key in self._entries

    def is_fresh(self, entry: CacheEntry[T]) -> bool:
        return self.clock() - entry.fetched_at < self.ttl

    def get_entry(self, key: Hashable) -> Optional[CacheEntry[T]]:
        """Return the entry for key regardless of freshness."""
        return self._entries.get(key)

    def get_fresh(self, key: Hashable) -> Optional[CacheEntry[T]]:
        """Return the entry for key only while it is inside the TTL."""
        entry = self._entries.get(key)
        if entry is not None and self.is_fresh(entry):
            return entry
        return None

    def put(self, key: Hashable, value: T) -> CacheEntry[T]:
        entry = CacheEntry(value=value, fetched_at=self.clock())
        self._entries[key] = entry
        return entry

    def touch(self, key: Hashable) -> None:
        """Restamp an existing entry as fetched now."""
        entry = self._entries.get(key)
        if entry is not None:
            entry.fetched_at = self.clock()

    def discard(self, key: Hashable) -> None:
        self._entries.pop(key, None)

    async def get_or_fetch(self, key: Hashable,
                           fetch: Callable[[], Awaitable[Optional[T]]],
                           serve_stale: bool = True) -> Optional[T]:
        """Return a fresh value, fetching at most once per key at a time.

        ``fetch`` returns None to signal failure. On failure the stale entry
        (if any) is left untouched and, with serve_stale, returned instead.
        """
        fresh = self.get_fresh(key)
        if fresh is not None:
            logger.debug(f"{self.name}: cache hit for {key!r}")
            return fresh.value

        pending = self._inflight.get(key)
        if pending is not None:
            return await asyncio.shield(pending)

        future = asyncio.get_running_loop().create_future()
        self._inflight[key] = future
        try:
            value = await fetch()
            if value is not None:
                self.put(key, value)
            else:
                stale = self._entries.get(key) if serve_stale else None
                if stale is not None:
                    logger.info(f"{self.name}: refresh failed for {key!r}, serving stale entry")
                    value = stale.value
            future.set_result(value)
            return value
        except Exception as e:
            future.set_exception(e)
            # Mark retrieved so an unawaited future doesn't log a warning
            future.exception()
            raise
        finally:
            if not future.done():
                future.cancel()
            del self._inflight[key]

    def stats(self) -> Dict[str, Any]:
        now = self.clock()
        fresh = sum(1 for e in self._entries.values() if now - e.fetched_at < self.ttl)
        return {
            "entries": len(self._entries),
            "fresh": fresh,
            "inflight": len(self._inflight),
            "ttl": self.ttl,
        }
