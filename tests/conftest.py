"""Shared fixtures for the CS2 portfolio test suite."""

import json
import os
import sys
import tempfile
import threading
from pathlib import Path

import pytest

# Keep config's default data dir out of the real home directory
os.environ.setdefault("CS2P_DATA_DIR", tempfile.mkdtemp(prefix="cs2p-test-"))

# Ensure src/ is importable
PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT / "src"))

from item_catalog import ItemFixture
from steam_client import SteamError


# ── Fakes ────────────────────────────────────────────────

class FakeClock:
    """Manually advanced clock; starts at 2024-03-14 12:00 local time."""

    def __init__(self, start=None):
        from datetime import datetime
        self.now = start if start is not None else datetime(2024, 3, 14, 12, 0).timestamp()

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class FakeSteamClient:
    """Stands in for SteamMarketClient; counts calls per method and item."""

    def __init__(self, prices=None, pages=None, images=None):
        self.prices = dict(prices or {})     # name -> float | None
        self.pages = dict(pages or {})       # name -> str | SteamError
        self.images = dict(images or {})     # url -> (bytes, content_type) | SteamError
        self.price_calls = {}
        self.page_calls = {}
        self.image_calls = {}
        self.overview = {"success": True, "lowest_price": "1,23€", "volume": "10"}
        self._lock = threading.Lock()

    def _count(self, calls, key):
        with self._lock:
            calls[key] = calls.get(key, 0) + 1

    def lookup_price(self, market_hash_name):
        self._count(self.price_calls, market_hash_name)
        value = self.prices.get(market_hash_name)
        if isinstance(value, Exception):
            raise value
        return value

    def fetch_price_overview(self, market_hash_name, currency=None, app_id="730"):
        if isinstance(self.overview, Exception):
            raise self.overview
        return dict(self.overview, market_hash_name=market_hash_name, currency=currency)

    def fetch_listing_page(self, market_hash_name):
        self._count(self.page_calls, market_hash_name)
        page = self.pages.get(market_hash_name)
        if page is None:
            raise SteamError("HTTP 500")
        if isinstance(page, Exception):
            raise page
        return page

    def download_image(self, url):
        self._count(self.image_calls, url)
        result = self.images.get(url)
        if result is None:
            raise SteamError("HTTP 404")
        if isinstance(result, Exception):
            raise result
        return result

    def is_rate_limited(self):
        return False


# ── Helper factories ─────────────────────────────────────

def make_item(market_hash_name="Kilowatt Case", quantity=1, baseline=1.0,
              currency="EUR", type="Case", **kwargs):
    """Shorthand to create an ItemFixture for testing."""
    return ItemFixture(
        market_hash_name=market_hash_name,
        name=kwargs.pop("name", market_hash_name),
        description=kwargs.pop("description", ""),
        type=type,
        quantity=quantity,
        baseline_unit_price=baseline,
        baseline_currency=currency,
        **kwargs,
    )


def make_listing_page(image_url=None, history=None, og=True):
    """Build a minimal Steam listing page with an image and a line1 series."""
    parts = ["<html><head>"]
    if image_url and og:
        parts.append(f'<meta property="og:image" content="{image_url}">')
    parts.append("</head><body>")
    if image_url and not og:
        parts.append(f'<script>var g_rgAssets = {{"icon_url":"{image_url}"}};</script>')
    if history is not None:
        parts.append(f"<script>var line1={json.dumps(history)};</script>")
    parts.append("</body></html>")
    return "\n".join(parts)


# ── Fixtures ─────────────────────────────────────────────

@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fake_client():
    return FakeSteamClient()
