"""
CS2 Portfolio - Item Catalog
Loads the read-only item fixture (data/portfolio.json).

The fixture is loaded once; if loading never succeeded, the next access
retries so a fixed file is picked up without a restart.
"""

import json
import logging
import threading
from pathlib import Path
from typing import List

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from config import PORTFOLIO_FILE, SETTLEMENT_CURRENCY
from steam_client import listing_url

logger = logging.getLogger(__name__)


class ItemFixture(BaseModel):
    model_config = ConfigDict(frozen=True)

    market_hash_name: str = Field(min_length=1)
    name: str
    description: str = ""
    type: str = ""
    quantity: int = Field(ge=0)
    baseline_unit_price: float = Field(ge=0)
    baseline_currency: str = SETTLEMENT_CURRENCY

    @property
    def market_url(self) -> str:
        return listing_url(self.market_hash_name)


class ItemCatalog:
    def __init__(self, path: Path = PORTFOLIO_FILE):
        self.path = Path(path)
        self._items: List[ItemFixture] = []
        self._loaded = False
        self._lock = threading.Lock()

    @property
    def loaded(self) -> bool:
        return self._loaded

    @property
    def items(self) -> List[ItemFixture]:
        if not self._loaded:
            self.load()
        return list(self._items)

    def load(self) -> bool:
        """Parse and validate the fixture. Returns True once loaded."""
        with self._lock:
            if self._loaded:
                return True
            try:
                with open(self.path, encoding="utf-8") as f:
                    raw = json.load(f)
            except FileNotFoundError:
                logger.error(f"ItemCatalog: fixture not found at {self.path}")
                return False
            except (OSError, json.JSONDecodeError) as e:
                logger.error(f"ItemCatalog: failed to read {self.path}: {e}")
                return False

            if isinstance(raw, dict):
                raw = raw.get("items", [])
            if not isinstance(raw, list):
                logger.error(f"ItemCatalog: {self.path} does not contain an item list")
                return False

            try:
                items = [ItemFixture.model_validate(entry) for entry in raw]
            except ValidationError as e:
                logger.error(f"ItemCatalog: invalid fixture {self.path}: {e}")
                return False

            self._items = items
            self._loaded = True
            logger.info(f"ItemCatalog: loaded {len(items)} items from {self.path}")
            return True

    @classmethod
    def from_items(cls, items: List[ItemFixture]) -> "ItemCatalog":
        catalog = cls(path=Path("<memory>"))
        catalog._items = list(items)
        catalog._loaded = True
        return catalog
