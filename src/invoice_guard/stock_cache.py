"""Stock oracle backed by a cache of item search results.

The cache is advisory: it only ever holds what the store returned the last
time an item was searched or fetched, and it may be stale by the time an
invoice is saved. The store re-validates stock on persist.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import TYPE_CHECKING, Dict, Iterable, Iterator, Optional

from . import log
from .models import InvoiceLine, ItemPage, ItemRecord, StockEntry

if TYPE_CHECKING:
    from .store import InvoiceStore


DEFAULT_PAGE_SIZE = 50


class StockCache(Mapping):
    """Read-only mapping of item reference to :class:`StockEntry`.

    Only fetch responses write to the cache, through :meth:`record` and the
    helpers built on it. Items whose stock the store did not report are not
    cached, so lookups for them stay "unknown".
    """

    def __init__(self, entries: Optional[Iterable[StockEntry]] = None) -> None:
        self._entries: Dict[str, StockEntry] = {}
        for entry in entries or ():
            self._entries[entry.item_id] = entry

    def __getitem__(self, item_id: str) -> StockEntry:
        return self._entries[item_id]

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def available(self, item_id: str):
        """Best-known available quantity for ``item_id`` or ``None`` if unknown."""
        entry = self._entries.get(item_id)
        return entry.available if entry is not None else None

    def record(self, item: ItemRecord) -> Optional[StockEntry]:
        """Cache the stock figures of one search result.

        Returns:
            StockEntry | None: The cached entry, or ``None`` when the item
                carried no stock figure.
        """
        if item.available is None:
            log.debug("Item %s has no stock figure; left uncached", item.item_id)
            self._entries.pop(item.item_id, None)
            return None
        entry = StockEntry(
            item_id=item.item_id,
            available=item.available,
            min_stock=item.min_stock,
            code=item.code,
            name=item.name,
        )
        self._entries[item.item_id] = entry
        return entry

    def record_page(self, page: ItemPage) -> int:
        """Cache every item of ``page`` and return how many were stored."""
        stored = sum(1 for item in page.items if self.record(item) is not None)
        log.debug("Cached stock for %d of %d item(s)", stored, len(page.items))
        return stored

    def refresh(self, store: "InvoiceStore", search: str = "", page_size: int = DEFAULT_PAGE_SIZE) -> ItemPage:
        """Run one item search through ``store`` and cache its first page."""
        page = store.fetch_items_by_query(search, 0, page_size)
        self.record_page(page)
        return page

    def warm(self, store: "InvoiceStore", lines: Iterable[InvoiceLine], page_size: int = DEFAULT_PAGE_SIZE) -> int:
        """Look up every uncached item referenced by ``lines``.

        Items are searched by code when the line has one, by identifier
        otherwise. Returns the number of lines still unknown afterwards.
        """
        missing = 0
        for line in lines:
            if line.item_id is None or line.item_id in self._entries:
                continue
            self.refresh(store, line.code or line.item_id, page_size)
            if line.item_id not in self._entries:
                missing += 1
        if missing:
            log.info("Stock unknown for %d item(s) after warming the cache", missing)
        return missing

    def forget(self, item_ids: Iterable[str]) -> None:
        """Drop entries a write has made stale."""
        for item_id in item_ids:
            self._entries.pop(item_id, None)

    def clear(self) -> None:
        self._entries.clear()


__all__ = ["DEFAULT_PAGE_SIZE", "StockCache"]
