"""
CS2 Portfolio - History Aggregator
Builds the daily portfolio-value series from each item's Steam price history.

Pipeline:
1. Fetch every item's listing page (via ListingCache) concurrently and pull
   out its sparse daily price series.
2. Merge: scale by quantity, walk every calendar day between the earliest
   and latest date, forward-filling each item's last known price.
3. Items with no series at all contribute their baseline value as a
   constant offset on every day, so the total isn't underreported.
4. Keep the newest HISTORY_MAX_POINTS days and persist them as the log.

When no item has any upstream history the persisted log (plus today's
fallback total) is served instead.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from datetime import time as dt_time
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from config import (
    CURRENCY_RATES,
    HISTORY_MAX_POINTS,
    HISTORY_REFRESH_INTERVAL,
    SETTLEMENT_CURRENCY,
    STEAM_HISTORY_CURRENCY,
)
from history_store import HistoryPoint
from item_catalog import ItemFixture
from portfolio import convert_to_settlement
from steam_client import extract_price_history

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ItemHistoryPoint:
    date: date
    price: float


def _day_timestamp(day: date) -> float:
    return datetime.combine(day, dt_time()).timestamp()


def merge_portfolio_history(
    per_item_series: Sequence[Tuple[ItemFixture, List[ItemHistoryPoint]]],
    fallback_total_if_all_empty: float = 0.0,
    today: Optional[date] = None,
    now: Optional[float] = None,
    rates: Dict[str, float] = CURRENCY_RATES,
    series_currency: str = SETTLEMENT_CURRENCY,
    max_points: int = HISTORY_MAX_POINTS,
) -> List[HistoryPoint]:
    """Merge per-item sparse series into one gap-free daily portfolio series.

    Result dates are strictly increasing with exactly one point per day from
    the earliest known date to the latest. Independent of item order.
    """
    now = time.time() if now is None else now
    today = date.fromtimestamp(now) if today is None else today

    scaled: List[Dict[date, float]] = []
    offset = 0.0
    for item, series in per_item_series:
        if not series:
            offset += convert_to_settlement(
                item.baseline_unit_price, item.baseline_currency, rates) * item.quantity
            continue
        by_date = {}
        for point in series:
            by_date[point.date] = convert_to_settlement(
                point.price, series_currency, rates) * item.quantity
        scaled.append(by_date)

    all_dates = set()
    for by_date in scaled:
        all_dates.update(by_date)

    if not all_dates:
        if fallback_total_if_all_empty > 0:
            return [HistoryPoint(date=today, value=round(fallback_total_if_all_empty, 2),
                                 timestamp=now)]
        return []

    start, end = min(all_dates), max(all_dates)
    last_known: Dict[int, float] = {}
    merged = []
    day = start
    while day <= end:
        for idx, by_date in enumerate(scaled):
            if day in by_date:
                last_known[idx] = by_date[day]
        if last_known:
            value = sum(last_known.values()) + offset
            merged.append(HistoryPoint(date=day, value=round(value, 2),
                                       timestamp=_day_timestamp(day)))
        day += timedelta(days=1)

    return merged[-max_points:] if max_points > 0 else []


class HistoryAggregator:
    """
    Usage:
        aggregator = HistoryAggregator(catalog, listing_cache, history_store,
                                       snapshot_aggregator)
        points = await aggregator.get_history(limit=30)
    """

    def __init__(self, catalog, listing_cache, history_store, snapshot_aggregator=None,
                 clock: Callable[[], float] = time.time,
                 rates: Dict[str, float] = CURRENCY_RATES,
                 series_currency: str = STEAM_HISTORY_CURRENCY,
                 refresh_interval: float = HISTORY_REFRESH_INTERVAL):
        self._catalog = catalog
        self._listing_cache = listing_cache
        self._history_store = history_store
        self._snapshot_aggregator = snapshot_aggregator
        self._clock = clock
        self._rates = rates
        self.series_currency = series_currency
        self.refresh_interval = refresh_interval
        self.last_refresh: float = 0.0

    async def fetch_item_history(self, market_hash_name: str) -> List[ItemHistoryPoint]:
        """Sorted daily series for one item; empty means "no data", never an error."""
        try:
            page = await self._listing_cache.get_page(market_hash_name)
        except Exception as e:
            logger.warning(f"History: listing fetch for {market_hash_name} failed: {e}")
            return []
        if not page:
            return []

        # Steam reports hourly points for recent weeks; keep the last per day
        by_date = {}
        for day, price in extract_price_history(page):
            by_date[day] = price
        if not by_date:
            logger.debug(f"History: no price series in listing for {market_hash_name}")
        return [ItemHistoryPoint(date=d, price=by_date[d]) for d in sorted(by_date)]

    def fallback_total(self) -> float:
        if self._snapshot_aggregator is None:
            return 0.0
        snapshot = self._snapshot_aggregator.last_snapshot
        if snapshot is not None:
            return snapshot.totals.value
        return self._snapshot_aggregator.baseline_total()

    async def refresh(self) -> List[HistoryPoint]:
        """Re-merge from upstream and persist. Raises HistoryStoreError on write failure."""
        items = self._catalog.items
        series = await asyncio.gather(
            *(self.fetch_item_history(item.market_hash_name) for item in items))
        self.last_refresh = self._clock()

        loop = asyncio.get_running_loop()
        now = self._clock()
        with_data = sum(1 for s in series if s)

        if not with_data:
            logger.info("History: no upstream series available, using persisted log")
            seeded = merge_portfolio_history(
                list(zip(items, series)), self.fallback_total(),
                today=date.fromtimestamp(now), now=now, rates=self._rates,
                series_currency=self.series_currency,
            )
            if seeded:
                return await loop.run_in_executor(None, self._history_store.upsert, seeded[0])
            return await loop.run_in_executor(None, self._history_store.load)

        merged = merge_portfolio_history(
            list(zip(items, series)), self.fallback_total(),
            today=date.fromtimestamp(now), now=now, rates=self._rates,
            series_currency=self.series_currency,
            max_points=self._history_store.max_points,
        )
        logger.info(
            f"History: merged {len(merged)} days from {with_data}/{len(items)} item series")
        return await loop.run_in_executor(None, self._history_store.replace, merged)

    def refresh_due(self) -> bool:
        return self._clock() - self.last_refresh >= self.refresh_interval

    async def get_history(self, limit: int) -> List[HistoryPoint]:
        """Most recent limit points, refreshing from upstream when due."""
        if self.refresh_due():
            points = await self.refresh()
        else:
            loop = asyncio.get_running_loop()
            points = await loop.run_in_executor(None, self._history_store.load)
        return points[-limit:] if limit > 0 else []
