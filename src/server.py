"""
server.py — FastAPI backend for the CS2 portfolio dashboard.

Wires the caches and aggregators together, refreshes the snapshot and the
merged history in the background, and exposes them as JSON.

Endpoints:
  GET  /api/portfolio                         → PortfolioSnapshot
  GET  /api/history?limit=N                   → most recent N history points
  GET  /api/item-meta?marketHashName=         → {success, image}
  GET  /api/price?marketHashName=&currency=   → raw Steam priceoverview payload
  GET  /api/status                            → cache statistics
  GET  /cached_images/{file}                  → persisted item images
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from config import (
    HISTORY_DEFAULT_LIMIT,
    HISTORY_FILE,
    HISTORY_MAX_POINTS,
    IMAGE_CACHE_DIR,
    IMAGE_WEB_PREFIX,
    PORTFOLIO_FILE,
    SNAPSHOT_REFRESH_INTERVAL,
    STEAM_APP_ID,
    STEAM_CURRENCY_CODE,
)
from history import HistoryAggregator
from history_store import HistoryStore, HistoryStoreError
from image_cache import STATUS_NOT_FOUND, STATUS_UPSTREAM_ERROR, ImageCache
from item_catalog import ItemCatalog
from listing_cache import ListingCache
from portfolio import SnapshotAggregator
from price_cache import PriceCache
from steam_client import SteamError, SteamMarketClient

logger = logging.getLogger("server")


# ---------------------------------------------------------------------------
# Component wiring
# ---------------------------------------------------------------------------
@dataclass
class Services:
    client: SteamMarketClient
    catalog: ItemCatalog
    price_cache: PriceCache
    listing_cache: ListingCache
    image_cache: ImageCache
    history_store: HistoryStore
    snapshots: SnapshotAggregator
    history: HistoryAggregator


def build_services() -> Services:
    client = SteamMarketClient()
    catalog = ItemCatalog(PORTFOLIO_FILE)
    price_cache = PriceCache(client)
    listing_cache = ListingCache(client)
    image_cache = ImageCache(client, listing_cache)
    history_store = HistoryStore(HISTORY_FILE)
    snapshots = SnapshotAggregator(catalog, price_cache, history_store, image_cache)
    history = HistoryAggregator(catalog, listing_cache, history_store, snapshots)
    return Services(
        client=client,
        catalog=catalog,
        price_cache=price_cache,
        listing_cache=listing_cache,
        image_cache=image_cache,
        history_store=history_store,
        snapshots=snapshots,
        history=history,
    )


services: Optional[Services] = None


async def refresh_loop(svc: Services, interval: float = SNAPSHOT_REFRESH_INTERVAL):
    """Rebuild the snapshot periodically and re-merge history when it's due."""
    while True:
        try:
            if svc.catalog.items:
                await svc.snapshots.build_snapshot()
                if svc.history.refresh_due():
                    await svc.history.refresh()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Background refresh failed: {e}", exc_info=True)
        await asyncio.sleep(interval)


# ---------------------------------------------------------------------------
# FastAPI app
# ---------------------------------------------------------------------------
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build components and start the background refresh task."""
    global services

    services = build_services()
    services.catalog.load()
    refresh_task = asyncio.create_task(refresh_loop(services))

    logger.info("CS2 portfolio server ready")
    try:
        yield
    finally:
        refresh_task.cancel()


app = FastAPI(title="CS2 Portfolio API", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET"],
    allow_headers=["*"],
)

app.mount(IMAGE_WEB_PREFIX, StaticFiles(directory=str(IMAGE_CACHE_DIR), check_dir=False),
          name="cached_images")


def _error(status_code: int, error: str) -> JSONResponse:
    return JSONResponse({"success": False, "error": error}, status_code=status_code)


# ---------------------------------------------------------------------------
# REST endpoints
# ---------------------------------------------------------------------------
@app.get("/api/portfolio")
async def get_portfolio():
    if not services.catalog.items:
        return _error(503, "portfolio_unavailable")
    snapshot = await services.snapshots.build_snapshot()
    return {"success": True, **snapshot.to_dict()}


@app.get("/api/history")
async def get_history(limit: Optional[str] = None):
    if limit is None or limit == "":
        n = HISTORY_DEFAULT_LIMIT
    else:
        try:
            n = int(limit)
        except ValueError:
            return _error(400, "invalid_limit")
    n = max(1, min(n, HISTORY_MAX_POINTS))

    try:
        points = await services.history.get_history(n)
    except HistoryStoreError as e:
        logger.error(f"History request failed: {e}")
        return _error(500, "history_unavailable")
    return {"success": True, "entries": [p.to_dict() for p in points]}


@app.get("/api/item-meta")
async def get_item_meta(marketHashName: Optional[str] = None):
    if not marketHashName:
        return _error(400, "missing_market_hash_name")

    record = await services.image_cache.lookup(marketHashName)
    if record.status == STATUS_UPSTREAM_ERROR:
        return _error(502, "steam_item_meta_fetch_failed")
    if record.status == STATUS_NOT_FOUND or not record.reference:
        return _error(404, "image_not_found")

    headers = {"Cache-Control": "public, max-age=86400"} if record.path else None
    return JSONResponse({"success": True, "image": record.reference}, headers=headers)


@app.get("/api/price")
async def get_price(marketHashName: Optional[str] = None,
                    currency: str = STEAM_CURRENCY_CODE,
                    appid: str = STEAM_APP_ID):
    if not marketHashName:
        return _error(400, "missing_market_hash_name")

    loop = asyncio.get_running_loop()
    try:
        data = await loop.run_in_executor(
            None, lambda: services.client.fetch_price_overview(
                marketHashName, currency=currency, app_id=appid))
    except SteamError as e:
        logger.error(f"Steam price fetch failed: {e}")
        return _error(502, "steam_price_fetch_failed")
    return JSONResponse(data, headers={"Cache-Control": "public, max-age=60"})


@app.get("/api/status")
async def get_status():
    snapshot = services.snapshots.last_snapshot
    return {
        "items_loaded": services.catalog.loaded,
        "item_count": len(services.catalog.items),
        "rate_limited": services.client.is_rate_limited(),
        "last_snapshot_value": snapshot.totals.value if snapshot else None,
        "last_history_refresh": services.history.last_refresh or None,
        "price_cache": services.price_cache.get_stats(),
        "listing_cache": services.listing_cache.get_stats(),
        "image_cache": services.image_cache.get_stats(),
    }
