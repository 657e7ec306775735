"""
CS2 Portfolio - Image Cache
Resolves an item's image and persists the bytes under
IMAGE_CACHE_DIR/<sha1(market_hash_name)><ext>.

Resolution order:
1. Durable storage. The stored format isn't known up front, so each
   supported extension is probed in IMAGE_CACHE_EXTENSIONS order. A file on
   disk is authoritative regardless of in-memory freshness.
2. Fresh in-memory entry (including cached "no image" results; upstream
   failures are not cached).
3. Listing page → image URL → download → persist. Any other stored variant
   of the same item is deleted first. A failed download/persist degrades to
   the raw Steam URL.
"""

import asyncio
import hashlib
import logging
import os
import tempfile
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, Tuple

from config import (
    IMAGE_CACHE_DIR,
    IMAGE_CACHE_EXTENSIONS,
    IMAGE_CACHE_TTL,
    IMAGE_WEB_PREFIX,
)
from steam_client import content_type_to_extension, extract_image_url
from ttl_cache import TtlCache

logger = logging.getLogger(__name__)

STATUS_OK = "ok"
STATUS_NOT_FOUND = "not_found"
STATUS_UPSTREAM_ERROR = "upstream_error"


@dataclass
class ImageRecord:
    reference: Optional[str]
    status: str = STATUS_OK
    # Confirmed on-disk file; lets the next lookup skip the extension probe
    path: Optional[Path] = None


def hash_market_hash_name(market_hash_name: str) -> str:
    return hashlib.sha1(market_hash_name.encode("utf-8")).hexdigest()


class ImageCache:
    def __init__(self, client, listing_cache,
                 cache_dir: Path = IMAGE_CACHE_DIR,
                 web_prefix: str = IMAGE_WEB_PREFIX,
                 extensions: Tuple[str, ...] = IMAGE_CACHE_EXTENSIONS,
                 ttl: float = IMAGE_CACHE_TTL,
                 clock: Callable[[], float] = time.time):
        self._client = client
        self._listing_cache = listing_cache
        self.cache_dir = Path(cache_dir)
        self.web_prefix = web_prefix.rstrip("/")
        self.extensions = tuple(extensions)
        self._cache: TtlCache[ImageRecord] = TtlCache(ttl=ttl, clock=clock, name="ImageCache")
        self.cache_dir.mkdir(parents=True, exist_ok=True)

    # ─── Public API ──────────────────────────────

    async def resolve_item_image(self, market_hash_name: str) -> Optional[str]:
        """Image reference (local web path or raw URL), or None."""
        record = await self.lookup(market_hash_name)
        return record.reference

    async def lookup(self, market_hash_name: str) -> ImageRecord:
        """Full resolution result, including why nothing was found."""
        if not market_hash_name:
            return ImageRecord(reference=None, status=STATUS_NOT_FOUND)

        loop = asyncio.get_running_loop()

        entry = self._cache.get_entry(market_hash_name)
        if entry is not None and entry.value.path is not None:
            if await loop.run_in_executor(None, entry.value.path.exists):
                self._cache.touch(market_hash_name)
                return entry.value
            # File was removed behind our back
            self._cache.discard(market_hash_name)

        path = await loop.run_in_executor(None, self.find_cached_path, market_hash_name)
        if path is not None:
            record = ImageRecord(reference=self._web_path(path), path=path)
            self._cache.put(market_hash_name, record)
            return record

        record = await self._cache.get_or_fetch(
            market_hash_name, lambda: self._fetch(market_hash_name))
        if record is None:
            return ImageRecord(reference=None, status=STATUS_UPSTREAM_ERROR)
        return record

    def known_reference(self, market_hash_name: str) -> Optional[str]:
        """Whatever reference is already in memory; never fetches."""
        entry = self._cache.get_entry(market_hash_name)
        return entry.value.reference if entry else None

    def find_cached_path(self, market_hash_name: str) -> Optional[Path]:
        digest = hash_market_hash_name(market_hash_name)
        for ext in self.extensions:
            candidate = self.cache_dir / f"{digest}{ext}"
            if candidate.exists():
                return candidate
        return None

    def persist(self, market_hash_name: str, data: bytes, content_type: str) -> Path:
        """Write image bytes atomically, removing other-format variants first."""
        digest = hash_market_hash_name(market_hash_name)
        extension = content_type_to_extension(content_type)
        path = self.cache_dir / f"{digest}{extension}"

        self._remove_stale_variants(digest, extension)

        self.cache_dir.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=self.cache_dir, prefix=".", suffix=".img.tmp")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            os.replace(tmp_path, path)
        except Exception:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise
        return path

    def get_stats(self) -> dict:
        return self._cache.stats()

    # ─── Internals ───────────────────────────────

    async def _fetch(self, market_hash_name: str) -> Optional[ImageRecord]:
        page = await self._listing_cache.get_page(market_hash_name)
        if page is None:
            # Not cached; the next lookup retries upstream
            return None

        image_url = extract_image_url(page)
        if not image_url:
            logger.info(f"ImageCache: no image found in listing for {market_hash_name}")
            return ImageRecord(reference=None, status=STATUS_NOT_FOUND)

        loop = asyncio.get_running_loop()
        try:
            data, content_type = await loop.run_in_executor(
                None, self._client.download_image, image_url)
            path = await loop.run_in_executor(
                None, self.persist, market_hash_name, data, content_type)
        except Exception as e:
            logger.error(f"ImageCache: failed to persist image for {market_hash_name}: {e}")
            return ImageRecord(reference=image_url)

        logger.info(f"ImageCache: stored {market_hash_name} as {path.name}")
        return ImageRecord(reference=self._web_path(path), path=path)

    def _remove_stale_variants(self, digest: str, extension_to_keep: str):
        for ext in self.extensions:
            if ext == extension_to_keep:
                continue
            variant = self.cache_dir / f"{digest}{ext}"
            try:
                variant.unlink()
            except FileNotFoundError:
                pass
            except OSError as e:
                logger.warning(f"ImageCache: failed to remove cached variant {variant}: {e}")

    def _web_path(self, path: Path) -> str:
        return f"{self.web_prefix}/{path.name}"
