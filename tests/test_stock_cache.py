"""Unit tests for the stock cache fed by item searches."""

from __future__ import annotations

from decimal import Decimal
from unittest.mock import Mock

from invoice_guard.models import ItemPage, ItemRecord
from invoice_guard.stock_cache import StockCache


def _item(item_id: str, available: str | None, code: str = "") -> ItemRecord:
    return ItemRecord(
        item_id=item_id,
        code=code,
        name=f"Item {item_id}",
        price=Decimal("1"),
        available=Decimal(available) if available is not None else None,
        min_stock=Decimal("2"),
    )


def _page(*items: ItemRecord) -> ItemPage:
    return ItemPage(items=tuple(items), total_elements=len(items), total_pages=1 if items else 0)


def test_record_caches_reported_stock():
    """Items with a stock figure become entries."""

    cache = StockCache()
    entry = cache.record(_item("I1", "7"))
    assert entry is not None
    assert cache["I1"].available == Decimal("7")
    assert cache["I1"].min_stock == Decimal("2")
    assert cache.available("I1") == Decimal("7")


def test_items_without_stock_stay_unknown():
    """A missing figure evicts any older entry instead of guessing."""

    cache = StockCache()
    cache.record(_item("I1", "7"))
    assert cache.record(_item("I1", None)) is None
    assert "I1" not in cache
    assert cache.available("I1") is None


def test_record_page_counts_cached_items():
    """record_page reports how many items carried stock."""

    cache = StockCache()
    assert cache.record_page(_page(_item("I1", "1"), _item("I2", None))) == 1
    assert len(cache) == 1


def test_warm_searches_only_uncached_lines(line_factory):
    """warm looks up missing items by code and leaves cached ones alone."""

    cache = StockCache()
    cache.record(_item("I1", "5"))
    store = Mock(name="store")
    store.fetch_items_by_query.return_value = _page(_item("I2", "3", code="C-2"))

    missing = cache.warm(store, [line_factory("I1"), line_factory("I2", code="C-2"), line_factory(None)])

    store.fetch_items_by_query.assert_called_once_with("C-2", 0, 50)
    assert missing == 0
    assert cache.available("I2") == Decimal("3")


def test_warm_reports_items_still_unknown(line_factory):
    """Items the search does not return remain unknown."""

    cache = StockCache()
    store = Mock(name="store")
    store.fetch_items_by_query.return_value = _page()
    assert cache.warm(store, [line_factory("I9")]) == 1
    store.fetch_items_by_query.assert_called_once_with("I9", 0, 50)


def test_forget_and_clear():
    """Stale entries can be dropped individually or all at once."""

    cache = StockCache()
    cache.record_page(_page(_item("I1", "1"), _item("I2", "2")))
    cache.forget(["I1", "missing"])
    assert list(cache) == ["I2"]
    cache.clear()
    assert len(cache) == 0
