"""Tests for history.py — per-item series fetch and the portfolio merge."""

import asyncio
import random
from datetime import date, timedelta

from conftest import FakeClock, FakeSteamClient, make_item, make_listing_page
from history import HistoryAggregator, ItemHistoryPoint, merge_portfolio_history
from history_store import HistoryPoint, HistoryStore
from item_catalog import ItemCatalog
from listing_cache import ListingCache
from portfolio import SnapshotAggregator
from price_cache import PriceCache

D0 = date(2024, 3, 1)
RATES = {"EUR": 1.0, "USD": 0.5}


def _series(*pairs):
    return [ItemHistoryPoint(date=D0 + timedelta(days=offset), price=price)
            for offset, price in pairs]


def _values(points):
    return [(p.date, p.value) for p in points]


# ── Merge ────────────────────────────────────────────────

def test_gap_filling_forward_fills_each_item():
    a = make_item("A", quantity=1, baseline=1.0)
    b = make_item("B", quantity=1, baseline=1.0)
    merged = merge_portfolio_history([
        (a, _series((0, 10.0))),
        (b, _series((0, 5.0), (2, 7.0))),
    ])
    assert _values(merged) == [
        (D0, 15.0),
        (D0 + timedelta(days=1), 15.0),
        (D0 + timedelta(days=2), 17.0),
    ]


def test_quantity_scales_prices():
    a = make_item("A", quantity=3, baseline=1.0)
    b = make_item("B", quantity=10, baseline=1.0)
    merged = merge_portfolio_history([(a, _series((0, 2.0))), (b, _series((0, 0.5)))])
    assert _values(merged) == [(D0, 11.0)]


def test_merge_is_idempotent_and_order_independent():
    items = [make_item(f"I{i}", quantity=i + 1, baseline=1.0) for i in range(5)]
    rng = random.Random(7)
    pairs = []
    for item in items:
        offsets = sorted(rng.sample(range(20), 6))
        pairs.append((item, _series(*[(o, rng.randint(1, 20) * 0.25) for o in offsets])))

    first = merge_portfolio_history(pairs, today=D0, now=0)
    second = merge_portfolio_history(pairs, today=D0, now=0)
    shuffled = list(pairs)
    rng.shuffle(shuffled)
    third = merge_portfolio_history(shuffled, today=D0, now=0)

    assert _values(first) == _values(second) == _values(third)


def test_output_dates_are_contiguous_and_increasing():
    a = make_item("A", quantity=1, baseline=1.0)
    b = make_item("B", quantity=1, baseline=1.0)
    merged = merge_portfolio_history([
        (a, _series((3, 1.0), (9, 2.0))),
        (b, _series((0, 1.0), (15, 4.0))),
    ])
    dates = [p.date for p in merged]
    assert dates[0] == D0
    assert dates[-1] == D0 + timedelta(days=15)
    assert all(later - earlier == timedelta(days=1) for earlier, later in zip(dates, dates[1:]))


def test_item_without_series_adds_baseline_offset():
    a = make_item("A", quantity=1, baseline=1.0)
    missing = make_item("Missing", quantity=4, baseline=2.5)
    merged = merge_portfolio_history([(a, _series((0, 3.0), (1, 4.0))), (missing, [])])
    assert [p.value for p in merged] == [13.0, 14.0]


def test_offset_uses_converted_baseline():
    a = make_item("A", quantity=1, baseline=1.0)
    missing = make_item("Missing", quantity=2, baseline=10.0, currency="USD")
    merged = merge_portfolio_history(
        [(a, _series((0, 3.0))), (missing, [])], rates=RATES)
    assert [p.value for p in merged] == [13.0]


def test_series_currency_is_converted():
    a = make_item("A", quantity=2, baseline=1.0)
    merged = merge_portfolio_history([(a, _series((0, 3.0)))], rates=RATES,
                                     series_currency="USD")
    assert [p.value for p in merged] == [3.0]


def test_all_empty_seeds_fallback_for_today():
    today = date(2024, 3, 14)
    merged = merge_portfolio_history(
        [(make_item("A"), []), (make_item("B"), [])],
        fallback_total_if_all_empty=123.456, today=today, now=1_710_000_000)
    assert len(merged) == 1
    assert merged[0].date == today
    assert merged[0].value == 123.46


def test_all_empty_without_fallback_is_empty():
    assert merge_portfolio_history([(make_item("A"), [])]) == []
    assert merge_portfolio_history([(make_item("A"), [])], fallback_total_if_all_empty=0) == []
    assert merge_portfolio_history([]) == []


def test_truncates_to_most_recent_points():
    a = make_item("A", quantity=1, baseline=1.0)
    merged = merge_portfolio_history([(a, _series((0, 1.0), (119, 2.0)))], max_points=90)
    assert len(merged) == 90
    assert merged[-1].date == D0 + timedelta(days=119)
    assert merged[0].date == D0 + timedelta(days=30)


# ── Aggregator ──────────────────────────────────────────

def _history_page(*pairs):
    return make_listing_page(history=[
        [(D0 + timedelta(days=offset)).strftime("%b %d %Y 01: +0"), price, "5"]
        for offset, price in pairs
    ])


def _history_aggregator(items, pages, tmp_path, clock=None, with_snapshots=True):
    clock = clock or FakeClock()
    client = FakeSteamClient(pages=pages, prices={i.market_hash_name: None for i in items})
    catalog = ItemCatalog.from_items(items)
    store = HistoryStore(tmp_path / "history.json")
    snapshots = None
    if with_snapshots:
        snapshots = SnapshotAggregator(catalog, PriceCache(client, clock=clock), store,
                                       clock=clock, rates={"EUR": 1.0})
    aggregator = HistoryAggregator(
        catalog, ListingCache(client, ttl=3600, clock=clock), store, snapshots,
        clock=clock, rates={"EUR": 1.0}, series_currency="EUR", refresh_interval=600)
    return aggregator, store, client


def test_fetch_item_history_collapses_hourly_points(tmp_path):
    page = make_listing_page(history=[
        ["Mar 02 2024 01: +0", 1.0, "1"],
        ["Mar 01 2024 05: +0", 0.8, "1"],
        ["Mar 01 2024 01: +0", 0.5, "1"],
        ["Mar 01 2024 09: +0", 0.9, "1"],
    ])
    aggregator, _, _ = _history_aggregator([make_item("A")], {"A": page}, tmp_path)
    series = asyncio.run(aggregator.fetch_item_history("A"))
    assert series == [ItemHistoryPoint(D0, 0.9), ItemHistoryPoint(D0 + timedelta(days=1), 1.0)]


def test_fetch_item_history_failure_is_empty(tmp_path):
    aggregator, _, _ = _history_aggregator([make_item("A")], {}, tmp_path)
    assert asyncio.run(aggregator.fetch_item_history("A")) == []

    aggregator, _, _ = _history_aggregator(
        [make_item("B")], {"B": "<html>no series</html>"}, tmp_path)
    assert asyncio.run(aggregator.fetch_item_history("B")) == []


def test_refresh_merges_and_persists(tmp_path):
    items = [make_item("A", quantity=1, baseline=1.0), make_item("B", quantity=2, baseline=1.0),
             make_item("C", quantity=1, baseline=4.0)]
    pages = {"A": _history_page((0, 10.0)), "B": _history_page((0, 5.0), (2, 7.0))}
    aggregator, store, _ = _history_aggregator(items, pages, tmp_path)

    points = asyncio.run(aggregator.refresh())
    # C has no listing → constant baseline offset of 4
    assert [p.value for p in points] == [24.0, 24.0, 28.0]
    assert _values(store.load()) == _values(points)


def test_refresh_supersedes_previous_log(tmp_path):
    items = [make_item("A", quantity=1, baseline=1.0)]
    aggregator, store, _ = _history_aggregator(
        items, {"A": _history_page((0, 1.0))}, tmp_path)
    store.upsert(HistoryPoint(date=date(2023, 1, 1), value=99.0, timestamp=0))
    points = asyncio.run(aggregator.refresh())
    assert _values(store.load()) == _values(points) == [(D0, 1.0)]


def test_refresh_without_upstream_keeps_log_and_seeds_today(tmp_path):
    clock = FakeClock()
    items = [make_item("A", quantity=2, baseline=1.5)]
    aggregator, store, _ = _history_aggregator(items, {}, tmp_path, clock=clock)
    store.upsert(HistoryPoint(date=date(2024, 3, 10), value=2.0, timestamp=0))

    points = asyncio.run(aggregator.refresh())
    assert _values(points) == [(date(2024, 3, 10), 2.0), (date.fromtimestamp(clock()), 3.0)]


def test_fallback_prefers_last_snapshot_total(tmp_path):
    items = [make_item("A", quantity=2, baseline=1.5)]
    aggregator, _, client = _history_aggregator(items, {}, tmp_path)
    client.prices["A"] = 4.0
    asyncio.run(aggregator._snapshot_aggregator.build_snapshot())
    assert aggregator.fallback_total() == 8.0

    bare, _, _ = _history_aggregator(items, {}, tmp_path, with_snapshots=False)
    assert bare.fallback_total() == 0.0


def test_get_history_refreshes_only_when_due(tmp_path):
    clock = FakeClock()
    items = [make_item("A", quantity=1, baseline=1.0)]
    aggregator, _, client = _history_aggregator(
        items, {"A": _history_page((0, 1.0), (1, 2.0), (2, 3.0))}, tmp_path, clock=clock)

    async def run():
        first = await aggregator.get_history(2)
        clock.advance(60)
        second = await aggregator.get_history(30)
        return first, second

    first, second = asyncio.run(run())
    assert [p.value for p in first] == [2.0, 3.0]
    assert [p.value for p in second] == [1.0, 2.0, 3.0]
    assert client.page_calls == {"A": 1}
    assert not aggregator.refresh_due()
    clock.advance(600)
    assert aggregator.refresh_due()
