"""
CS2 Portfolio - Snapshot Aggregator
Joins the item fixture with live (or baseline) prices and computes per-item
and total valuation against baseline.

Building a snapshot is a write: the total value is upserted into the daily
history log for today's date.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Callable, Dict, List, Optional

from config import CURRENCY_RATES, SETTLEMENT_CURRENCY
from history_store import HistoryPoint, HistoryStoreError
from item_catalog import ItemFixture

logger = logging.getLogger(__name__)

PRICE_SOURCE_LIVE = "live"
PRICE_SOURCE_BASELINE = "baseline"


def convert_to_settlement(value: float, currency: str,
                          rates: Dict[str, float] = CURRENCY_RATES) -> float:
    """Convert value in currency to the settlement currency via the fixed rate table."""
    rate = rates.get((currency or "").upper())
    if rate is None:
        logger.warning(f"Portfolio: no conversion rate for {currency!r}, assuming 1:1")
        rate = 1.0
    return value * rate


def change_percent(change_value: float, baseline_value: float) -> float:
    # 0 rather than inf/NaN when there's no baseline to compare against
    if baseline_value == 0:
        return 0.0
    return change_value / baseline_value * 100


@dataclass
class EnrichedItem:
    market_hash_name: str
    name: str
    description: str
    type: str
    quantity: int
    unit_price: float
    baseline_unit_price: float
    total_value: float
    baseline_value: float
    unit_change_value: float
    change_value: float
    change_percent: float
    price_source: str
    currency: str
    market_url: str
    image: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "marketHashName": self.market_hash_name,
            "name": self.name,
            "description": self.description,
            "type": self.type,
            "quantity": self.quantity,
            "unitPrice": self.unit_price,
            "baselineUnitPrice": self.baseline_unit_price,
            "totalValue": self.total_value,
            "baselineValue": self.baseline_value,
            "unitChangeValue": self.unit_change_value,
            "changeValue": self.change_value,
            "changePercent": self.change_percent,
            "priceSource": self.price_source,
            "currency": self.currency,
            "marketUrl": self.market_url,
            "image": self.image,
        }


@dataclass
class PortfolioTotals:
    value: float = 0.0
    baseline: float = 0.0
    change_value: float = 0.0
    change_percent: float = 0.0
    item_count: int = 0
    case_count: int = 0

    def to_dict(self) -> dict:
        return {
            "value": self.value,
            "baseline": self.baseline,
            "changeValue": self.change_value,
            "changePercent": self.change_percent,
            "itemCount": self.item_count,
            "caseCount": self.case_count,
        }


@dataclass
class PortfolioSnapshot:
    generated_at: float
    totals: PortfolioTotals
    items: List[EnrichedItem] = field(default_factory=list)
    currency: str = SETTLEMENT_CURRENCY

    def to_dict(self) -> dict:
        return {
            "generatedAt": datetime.fromtimestamp(self.generated_at, tz=timezone.utc).isoformat(),
            "currency": self.currency,
            "totals": self.totals.to_dict(),
            "items": [item.to_dict() for item in self.items],
        }


class SnapshotAggregator:
    """
    Builds PortfolioSnapshots.

    Usage:
        aggregator = SnapshotAggregator(catalog, price_cache, history_store)
        snapshot = await aggregator.build_snapshot()
    """

    def __init__(self, catalog, price_cache, history_store, image_cache=None,
                 clock: Callable[[], float] = time.time,
                 rates: Dict[str, float] = CURRENCY_RATES,
                 settlement_currency: str = SETTLEMENT_CURRENCY):
        self._catalog = catalog
        self._price_cache = price_cache
        self._history_store = history_store
        self._image_cache = image_cache
        self._clock = clock
        self._rates = rates
        self.settlement_currency = settlement_currency
        self.last_snapshot: Optional[PortfolioSnapshot] = None

    def baseline_total(self) -> float:
        """Portfolio value at baseline prices, in settlement currency."""
        return sum(
            convert_to_settlement(item.baseline_unit_price, item.baseline_currency, self._rates)
            * item.quantity
            for item in self._catalog.items
        )

    async def build_snapshot(self) -> PortfolioSnapshot:
        items = self._catalog.items
        # gather keeps input order, so totals don't depend on completion order
        quotes = await asyncio.gather(*(self._resolve(item) for item in items))

        enriched = []
        total_value = 0.0
        total_baseline = 0.0
        case_count = 0
        for item, quote in zip(items, quotes):
            baseline_unit = convert_to_settlement(
                item.baseline_unit_price, item.baseline_currency, self._rates)
            if quote is not None:
                unit_price = convert_to_settlement(quote.value, quote.currency, self._rates)
                source = PRICE_SOURCE_LIVE
            else:
                unit_price = baseline_unit
                source = PRICE_SOURCE_BASELINE

            value = unit_price * item.quantity
            baseline_value = baseline_unit * item.quantity
            change_value = (unit_price - baseline_unit) * item.quantity
            total_value += value
            total_baseline += baseline_value
            if item.type.lower() == "case":
                case_count += item.quantity

            enriched.append(EnrichedItem(
                market_hash_name=item.market_hash_name,
                name=item.name,
                description=item.description,
                type=item.type,
                quantity=item.quantity,
                unit_price=round(unit_price, 2),
                baseline_unit_price=round(baseline_unit, 2),
                total_value=round(value, 2),
                baseline_value=round(baseline_value, 2),
                unit_change_value=round(unit_price - baseline_unit, 2),
                change_value=round(change_value, 2),
                change_percent=round(change_percent(change_value, baseline_value), 2),
                price_source=source,
                currency=self.settlement_currency,
                market_url=item.market_url,
                image=self._image_cache.known_reference(item.market_hash_name)
                if self._image_cache else None,
            ))

        total_change = total_value - total_baseline
        totals = PortfolioTotals(
            value=round(total_value, 2),
            baseline=round(total_baseline, 2),
            change_value=round(total_change, 2),
            change_percent=round(change_percent(total_change, total_baseline), 2),
            item_count=len(enriched),
            case_count=case_count,
        )
        now = self._clock()
        snapshot = PortfolioSnapshot(
            generated_at=now, totals=totals, items=enriched,
            currency=self.settlement_currency,
        )
        self.last_snapshot = snapshot

        live = sum(1 for e in enriched if e.price_source == PRICE_SOURCE_LIVE)
        logger.info(
            f"Portfolio: snapshot {totals.value:.2f} {self.settlement_currency} "
            f"({live}/{len(enriched)} live prices)")

        await self._record_history(totals.value, now)
        return snapshot

    async def _resolve(self, item: ItemFixture):
        try:
            return await self._price_cache.resolve_live_price(item.market_hash_name)
        except Exception as e:
            logger.warning(f"Portfolio: price resolution for {item.market_hash_name} failed: {e}")
            return None

    async def _record_history(self, value: float, now: float):
        point = HistoryPoint(date=date.fromtimestamp(now), value=value, timestamp=now)
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, self._history_store.upsert, point)
        except HistoryStoreError as e:
            logger.error(f"Portfolio: failed to record daily history: {e}")
