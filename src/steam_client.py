"""
CS2 Portfolio - Steam Community Market Client
Blocking HTTP client for the three upstream documents we consume:

1. GET /market/priceoverview/  → {success, lowest_price, median_price}
2. GET /market/listings/730/{name} → HTML listing page (image + price history)
3. GET {image url}              → raw image bytes

Rate limiting: minimum interval between requests with a thread-safe lock,
plus a global cool-down after HTTP 429. Callers on the event loop run these
methods through run_in_executor.

The parse helpers at module level are pure and do not touch the network.
"""

import html
import json
import logging
import re
import threading
import time
from datetime import date, datetime
from typing import Callable, List, Optional, Tuple
from urllib.parse import quote

import requests

from config import (
    DEFAULT_RETRY_AFTER,
    MIN_REQUEST_INTERVAL,
    REQUEST_TIMEOUT,
    STEAM_APP_ID,
    STEAM_CURRENCY_CODE,
    STEAM_LISTING_BASE,
    STEAM_PRICE_ENDPOINT,
    USER_AGENT,
)

logger = logging.getLogger(__name__)


class SteamError(Exception):
    """Upstream unavailable or returned something we can't use."""


# ─── Parsing ─────────────────────────────────────

_PRICE_JUNK = re.compile(r"[^\d,.\-]")
_THOUSANDS_DOT = re.compile(r"^[1-9]\d{0,2}(\.\d{3})+$")


def parse_price_string(raw) -> Optional[float]:
    """Parse a localized Steam price like "1.234,56€" or "0,03€" into a float.

    Handles thousands separators, decimal commas, "--" placeholders for whole
    amounts ("12,--€") and strips currency glyphs. Returns None when nothing
    numeric is left.
    """
    if raw is None:
        return None
    if isinstance(raw, (int, float)) and not isinstance(raw, bool):
        return float(raw)

    text = str(raw).replace("--", "00")
    text = _PRICE_JUNK.sub("", text)
    # Abbreviated currency names ("pуб.") leave a dangling separator behind
    text = text.rstrip(",.")
    if not text or not any(ch.isdigit() for ch in text):
        return None

    if "," in text and "." in text:
        # Whichever separator comes last is the decimal separator
        if text.rfind(",") > text.rfind("."):
            text = text.replace(".", "").replace(",", ".")
        else:
            text = text.replace(",", "")
    elif "," in text:
        text = text.replace(",", ".")
    elif _THOUSANDS_DOT.match(text):
        text = text.replace(".", "")

    try:
        return float(text)
    except ValueError:
        return None


_OG_IMAGE = re.compile(
    r"""<meta[^>]+property=["']og:image["'][^>]+content=["']([^"']+)["']""",
    re.IGNORECASE,
)
_ECONOMY_IMAGE = re.compile(r"https://[^\"\\]*economy/image/[^\"\\]*")


def decode_image_url(value: Optional[str]) -> Optional[str]:
    """Undo the JS/HTML escaping Steam applies to embedded image URLs."""
    if not value:
        return None
    try:
        decoded = json.loads('"' + value.replace('"', '\\"') + '"')
    except ValueError:
        decoded = (
            value.replace("\\/", "/")
            .replace("\\u0026", "&")
        )
    return html.unescape(decoded)


def extract_image_url(page: str) -> Optional[str]:
    """Find the item image in a listing page.

    Prefers the og:image meta tag, falls back to the first economy/image URL
    anywhere in the document.
    """
    if not page:
        return None
    m = _OG_IMAGE.search(page)
    if m and m.group(1):
        return decode_image_url(m.group(1))
    m = _ECONOMY_IMAGE.search(page)
    if m:
        return decode_image_url(m.group(0))
    return None


_HISTORY_LINE = re.compile(r"var\s+line1\s*=\s*(\[.*?\]);", re.DOTALL)


def parse_history_date(raw) -> Optional[date]:
    """Parse Steam's "Mar 14 2024 01: +0" (or an ISO date) into a date."""
    if not isinstance(raw, str):
        return None
    text = raw.strip()
    try:
        return datetime.strptime(text[:11], "%b %d %Y").date()
    except ValueError:
        pass
    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        return None


def extract_price_history(page: str) -> List[Tuple[date, float]]:
    """Pull the embedded [[dateString, price, volume], ...] series out of a page.

    Points with an unparsable date or price are dropped. Order is preserved
    as found; callers sort/collapse as they need.
    """
    if not page:
        return []
    m = _HISTORY_LINE.search(page)
    if not m:
        return []
    try:
        raw_points = json.loads(m.group(1))
    except ValueError:
        logger.debug("SteamClient: price history payload is not valid JSON")
        return []
    if not isinstance(raw_points, list):
        return []

    points = []
    for raw in raw_points:
        if not isinstance(raw, (list, tuple)) or len(raw) < 2:
            continue
        day = parse_history_date(raw[0])
        price = parse_price_string(raw[1])
        if day is None or price is None:
            continue
        points.append((day, price))
    return points


def content_type_to_extension(content_type: Optional[str]) -> str:
    ct = (content_type or "").lower()
    if "png" in ct:
        return ".png"
    if "webp" in ct:
        return ".webp"
    if "jpeg" in ct:
        return ".jpeg"
    if "jpg" in ct:
        return ".jpg"
    return ".png"


def listing_url(market_hash_name: str) -> str:
    return f"{STEAM_LISTING_BASE}{quote(market_hash_name, safe='')}"


# ─── Client ──────────────────────────────────────

class SteamMarketClient:
    """
    Blocking Steam Community Market client.

    Usage:
        client = SteamMarketClient()
        price = client.lookup_price("Kilowatt Case")      # float or None
        page = client.fetch_listing_page("Kilowatt Case")  # str, raises SteamError
    """

    def __init__(self, session: Optional[requests.Session] = None,
                 timeout: float = REQUEST_TIMEOUT,
                 min_interval: float = MIN_REQUEST_INTERVAL,
                 currency: str = STEAM_CURRENCY_CODE,
                 clock: Callable[[], float] = time.time,
                 sleep: Callable[[float], None] = time.sleep):
        self._session = session or requests.Session()
        self._session.headers.update({"User-Agent": USER_AGENT})
        self.timeout = timeout
        self.currency = currency
        self._clock = clock
        self._sleep = sleep

        # Rate limiting
        self._min_interval = min_interval
        self._last_request_time = 0.0
        self._rate_lock = threading.Lock()
        # When Steam returns 429, don't call again until this time
        self._rate_limited_until = 0.0

    # ─── Public API ──────────────────────────────

    def fetch_price_overview(self, market_hash_name: str,
                             currency: Optional[str] = None,
                             app_id: str = STEAM_APP_ID) -> dict:
        """Raw priceoverview payload. Raises SteamError on any failure."""
        params = {
            "appid": app_id,
            "currency": currency or self.currency,
            "market_hash_name": market_hash_name,
        }
        resp = self._get(STEAM_PRICE_ENDPOINT, params=params,
                         headers={"Accept": "application/json"})
        try:
            return resp.json()
        except ValueError as e:
            raise SteamError(f"priceoverview returned invalid JSON: {e}") from e

    def lookup_price(self, market_hash_name: str) -> Optional[float]:
        """Current unit price in the client currency, or None on any failure."""
        try:
            data = self.fetch_price_overview(market_hash_name)
        except SteamError as e:
            logger.warning(f"SteamClient: price lookup failed for {market_hash_name}: {e}")
            return None

        if not isinstance(data, dict) or not data.get("success"):
            logger.warning(f"SteamClient: price lookup unsuccessful for {market_hash_name}")
            return None

        raw = data.get("lowest_price") or data.get("median_price")
        price = parse_price_string(raw)
        if price is None:
            logger.warning(
                f"SteamClient: unparsable price {raw!r} for {market_hash_name}")
        return price

    def fetch_listing_page(self, market_hash_name: str) -> str:
        """Raw listing page HTML. Raises SteamError on any failure."""
        resp = self._get(listing_url(market_hash_name),
                         headers={"Accept-Language": "en-US,en;q=0.9"})
        return resp.text

    def download_image(self, url: str) -> Tuple[bytes, str]:
        """Image bytes and declared content type. Raises SteamError."""
        resp = self._get(url, headers={
            "Accept": "image/avif,image/webp,image/apng,image/*,*/*;q=0.8",
        })
        return resp.content, resp.headers.get("Content-Type", "")

    # ─── Internals ───────────────────────────────

    def is_rate_limited(self) -> bool:
        return self._clock() < self._rate_limited_until

    def _set_rate_limited(self, retry_after: float):
        self._rate_limited_until = self._clock() + retry_after
        logger.warning(
            f"SteamClient: rate limited for {retry_after:.0f}s, pausing all requests")

    def _rate_limit(self):
        """Space requests at least min_interval apart."""
        with self._rate_lock:
            elapsed = self._clock() - self._last_request_time
            if elapsed < self._min_interval:
                self._sleep(self._min_interval - elapsed)
            self._last_request_time = self._clock()

    def _get(self, url: str, **kwargs) -> requests.Response:
        if self.is_rate_limited():
            wait = int(self._rate_limited_until - self._clock())
            raise SteamError(f"rate limited ({wait}s remaining)")

        self._rate_limit()
        try:
            resp = self._session.get(url, timeout=self.timeout, **kwargs)
        except (requests.ConnectionError, requests.Timeout) as e:
            raise SteamError(f"{type(e).__name__}: {e}") from e
        except requests.RequestException as e:
            raise SteamError(str(e)) from e

        if resp.status_code == 429:
            try:
                retry_after = float(resp.headers.get("Retry-After", DEFAULT_RETRY_AFTER))
            except (TypeError, ValueError):
                retry_after = DEFAULT_RETRY_AFTER
            self._set_rate_limited(retry_after)
            raise SteamError("HTTP 429")
        if resp.status_code != 200:
            raise SteamError(f"HTTP {resp.status_code}")
        return resp
