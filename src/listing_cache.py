"""
CS2 Portfolio - Listing Page Cache
Memoizes raw Steam listing pages. Shared by image extraction and price
history extraction so both only cost one upstream fetch per TTL window.
"""

import asyncio
import logging
import time
from typing import Callable, Optional

from config import LISTING_CACHE_TTL
from steam_client import SteamError
from ttl_cache import TtlCache

logger = logging.getLogger(__name__)


class ListingCache:
    def __init__(self, client, ttl: float = LISTING_CACHE_TTL,
                 clock: Callable[[], float] = time.time):
        self._client = client
        self._cache: TtlCache[str] = TtlCache(ttl=ttl, clock=clock, name="ListingCache")

    async def get_page(self, market_hash_name: str) -> Optional[str]:
        """Listing HTML, or None if it couldn't be fetched and nothing is cached."""
        if not market_hash_name:
            return None

        async def _fetch() -> Optional[str]:
            loop = asyncio.get_running_loop()
            try:
                return await loop.run_in_executor(
                    None, self._client.fetch_listing_page, market_hash_name)
            except SteamError as e:
                logger.warning(f"ListingCache: fetch failed for {market_hash_name}: {e}")
                return None

        return await self._cache.get_or_fetch(market_hash_name, _fetch)

    def get_stats(self) -> dict:
        return self._cache.stats()
