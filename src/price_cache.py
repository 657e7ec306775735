"""
CS2 Portfolio - Price Cache
Memoizes per-item live unit prices from the Steam priceoverview endpoint.

A fresh entry is served without touching the network. On a miss or a stale
entry one upstream lookup is issued; failures (network, non-200, 429,
unparsable price) are non-fatal and resolve to None so the snapshot falls
back to the baseline price. A failure is remembered for one TTL window, so
a persistently failing item costs at most one lookup per window. The last
good quote stays readable through peek() but is never served as live.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from config import PRICE_CACHE_TTL, SETTLEMENT_CURRENCY
from ttl_cache import TtlCache

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PriceQuote:
    value: float
    currency: str


class PriceCache:
    def __init__(self, client, ttl: float = PRICE_CACHE_TTL,
                 clock: Callable[[], float] = time.time,
                 currency: str = SETTLEMENT_CURRENCY):
        self._client = client
        self._clock = clock
        self.ttl = ttl
        self.currency = currency
        self._cache: TtlCache[PriceQuote] = TtlCache(ttl=ttl, clock=clock, name="PriceCache")
        # name -> time of the last failed lookup
        self._failed_at: Dict[str, float] = {}

    async def resolve_live_price(self, market_hash_name: str) -> Optional[PriceQuote]:
        """Fresh cached quote, else one upstream lookup. None when unavailable."""
        if not market_hash_name:
            return None

        if self._cache.get_fresh(market_hash_name) is None and self._failed_recently(
                market_hash_name):
            logger.debug(f"PriceCache: {market_hash_name} failed recently, skipping lookup")
            return None

        async def _fetch() -> Optional[PriceQuote]:
            loop = asyncio.get_running_loop()
            try:
                value = await loop.run_in_executor(
                    None, self._client.lookup_price, market_hash_name)
            except Exception as e:
                logger.warning(f"PriceCache: lookup for {market_hash_name} failed: {e}")
                value = None
            if value is None:
                self._failed_at[market_hash_name] = self._clock()
                return None
            self._failed_at.pop(market_hash_name, None)
            logger.debug(f"PriceCache: {market_hash_name} = {value:.2f} {self.currency}")
            return PriceQuote(value=value, currency=self.currency)

        return await self._cache.get_or_fetch(market_hash_name, _fetch, serve_stale=False)

    def peek(self, market_hash_name: str) -> Optional[PriceQuote]:
        """Last known quote without fetching, fresh or not."""
        entry = self._cache.get_entry(market_hash_name)
        return entry.value if entry else None

    def get_stats(self) -> dict:
        stats = self._cache.stats()
        now = self._clock()
        stats["failing"] = sum(1 for t in self._failed_at.values() if now - t < self.ttl)
        return stats

    def _failed_recently(self, market_hash_name: str) -> bool:
        failed_at = self._failed_at.get(market_hash_name)
        return failed_at is not None and self._clock() - failed_at < self.ttl
