"""
CS2 Portfolio - Configuration
All tunable constants in one place.
"""

import os
from pathlib import Path

from dotenv import load_dotenv
load_dotenv()

# ─────────────────────────────────────────────
# Paths
# ─────────────────────────────────────────────
APP_DIR = Path(__file__).resolve().parent.parent

# Durable state (history log, cached images)
DATA_DIR = Path(os.environ.get(
    "CS2P_DATA_DIR", str(Path(os.path.expanduser("~")) / ".cs2-portfolio")
))

# Read-only item fixture
PORTFOLIO_FILE = Path(os.environ.get(
    "CS2P_PORTFOLIO_FILE", str(APP_DIR / "data" / "portfolio.json")
))

# ─────────────────────────────────────────────
# Server
# ─────────────────────────────────────────────
HOST = os.environ.get("HOST", "127.0.0.1")
PORT = int(os.environ.get("PORT", "3000"))

# ─────────────────────────────────────────────
# Steam Community Market
# ─────────────────────────────────────────────
STEAM_APP_ID = "730"  # Counter-Strike 2
STEAM_PRICE_ENDPOINT = "https://steamcommunity.com/market/priceoverview/"
STEAM_LISTING_BASE = f"https://steamcommunity.com/market/listings/{STEAM_APP_ID}/"

# Steam's numeric currency code; 3 = EUR
STEAM_CURRENCY_CODE = "3"

# Currency of the price history embedded in anonymous listing pages
STEAM_HISTORY_CURRENCY = "USD"

USER_AGENT = "cs2-portfolio-tool/1.0"

# Per-request timeout (seconds)
REQUEST_TIMEOUT = float(os.environ.get("CS2P_REQUEST_TIMEOUT", "10"))

# Steam throttles aggressively (~20 requests/minute per IP)
MIN_REQUEST_INTERVAL = float(os.environ.get("CS2P_MIN_REQUEST_INTERVAL", "1.0"))

# Cool-down after HTTP 429 when Steam sends no Retry-After header
DEFAULT_RETRY_AFTER = 60

# ─────────────────────────────────────────────
# Currency
# ─────────────────────────────────────────────
SETTLEMENT_CURRENCY = "EUR"

# 1 unit of currency = X EUR
CURRENCY_RATES = {
    "EUR": 1.0,
    "USD": 0.92,
    "GBP": 1.17,
    "CHF": 1.04,
    "PLN": 0.23,
}

# ─────────────────────────────────────────────
# Cache freshness windows (seconds)
# ─────────────────────────────────────────────
PRICE_CACHE_TTL = 300            # 5 minutes
LISTING_CACHE_TTL = 3600         # 1 hour
IMAGE_CACHE_TTL = 30 * 86400     # 30 days

# ─────────────────────────────────────────────
# Image cache
# ─────────────────────────────────────────────
IMAGE_CACHE_DIR = DATA_DIR / "cached_images"
IMAGE_WEB_PREFIX = "/cached_images"

# Probe order when looking for a persisted image
IMAGE_CACHE_EXTENSIONS = (".png", ".jpg", ".jpeg", ".webp")

# ─────────────────────────────────────────────
# History
# ─────────────────────────────────────────────
HISTORY_FILE = DATA_DIR / "history.json"
HISTORY_MAX_POINTS = 90
HISTORY_DEFAULT_LIMIT = 30

# ─────────────────────────────────────────────
# Background refresh (seconds)
# ─────────────────────────────────────────────
SNAPSHOT_REFRESH_INTERVAL = 900        # 15 minutes
HISTORY_REFRESH_INTERVAL = 6 * 3600    # 6 hours

# ─────────────────────────────────────────────
# Logging
# ─────────────────────────────────────────────
LOG_LEVEL = os.environ.get("CS2P_LOG_LEVEL", "INFO")
LOG_FILE = DATA_DIR / "portfolio.log"
