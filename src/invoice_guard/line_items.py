"""Line-item validator.

Per-line rules evaluated against two read-only references: the baseline
captured when an existing invoice was loaded, and the advisory stock
snapshot. Blocking rules raise :class:`~invoice_guard.errors.QuantityError`
subclasses; advisory findings are returned as plain records so that the
save guard can turn them into confirmation prompts.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Iterable, List, Mapping, Optional

from . import log
from .constants import LARGE_ADJUSTMENT_PERCENT, ZERO, StockLevel
from .errors import ExceedsStock, QuantityError, QuantityIncreaseOnEdit
from .models import (
    BaselineSnapshot,
    InvoiceDraft,
    InvoiceLine,
    PriceChange,
    QuantityIncrease,
    StockCheck,
    StockEntry,
)


StockLookup = Mapping[str, StockEntry]


@dataclass(frozen=True)
class QuantityAdjustment:
    """A line whose quantity moved far from its baseline during an edit."""

    item_label: str
    original: Decimal
    requested: Decimal
    percent: Decimal


def stock_entry_for(line: InvoiceLine, stock: Optional[StockLookup]) -> Optional[StockEntry]:
    """Find the stock entry describing ``line``'s item.

    The item reference is tried first. Lines picked from an older search may
    only carry the item code, so a code match is accepted as a fallback.
    """
    if not stock:
        return None
    if line.item_id is not None:
        entry = stock.get(line.item_id)
        if entry is not None:
            return entry
    if line.code:
        for entry in stock.values():
            if entry.code == line.code:
                return entry
    return None


def validate_quantity(
    line: InvoiceLine,
    baseline: Optional[BaselineSnapshot] = None,
    stock: Optional[StockLookup] = None,
    deduct_from_stock: bool = True,
) -> None:
    """Validate a single line's quantity against stock and baseline.

    Args:
        line (InvoiceLine): Line being edited.
        baseline (BaselineSnapshot | None): Snapshot of the invoice as loaded.
            ``None`` for new invoices.
        stock (Mapping[str, StockEntry] | None): Advisory stock snapshot.
        deduct_from_stock (bool): When ``False`` no stock constraint applies,
            whatever the snapshot says.

    Raises:
        ExceedsStock: If a snapshot entry exists and the quantity is larger
            than the available amount.
        QuantityIncreaseOnEdit: If the item was on the invoice when it was
            loaded and the quantity is larger than its baseline quantity.
            Existing invoices may only have quantities reduced.

    A deduct-enabled line without a snapshot entry passes; the save guard
    reports it separately as unverifiable.
    """
    if deduct_from_stock:
        entry = stock_entry_for(line, stock)
        if entry is not None and line.quantity > entry.available:
            log.debug(
                "Line '%s' exceeds stock: requested=%s available=%s",
                line.label,
                line.quantity,
                entry.available,
            )
            raise ExceedsStock(line.label, entry.available, line.quantity)

    if baseline is not None:
        original = baseline.get(line.item_id)
        if original is not None and line.quantity > original.quantity:
            raise QuantityIncreaseOnEdit(
                [QuantityIncrease(line.label, original.quantity, line.quantity)]
            )


def validate_lines(
    draft: InvoiceDraft,
    baseline: Optional[BaselineSnapshot] = None,
    stock: Optional[StockLookup] = None,
) -> Dict[int, QuantityError]:
    """Revalidate every line of ``draft`` and collect the violations.

    Used while the user edits lines, so that each row can show its own error
    without running the full save sequence.

    Returns:
        dict[int, QuantityError]: Violations keyed by line index. Lines that
            pass are absent.
    """
    problems: Dict[int, QuantityError] = {}
    for index, line in enumerate(draft.lines):
        try:
            validate_quantity(line, baseline, stock, draft.deduct_from_stock)
        except QuantityError as exc:
            problems[index] = exc
    return problems


def detect_price_changes(
    lines: Iterable[InvoiceLine],
    baseline: Optional[BaselineSnapshot],
) -> List[PriceChange]:
    """List lines whose price differs from the price they were loaded with.

    Returns an empty list for new invoices and when nothing changed; a
    non-empty list means the user must confirm before saving.
    """
    if baseline is None:
        return []
    changes: List[PriceChange] = []
    for line in lines:
        original = baseline.get(line.item_id)
        if original is not None and line.price != original.price:
            changes.append(PriceChange(line.label, original.price, line.price))
    return changes


def detect_quantity_increases(
    lines: Iterable[InvoiceLine],
    baseline: Optional[BaselineSnapshot],
) -> List[QuantityIncrease]:
    """List lines whose quantity grew past the baseline quantity."""
    if baseline is None:
        return []
    increases: List[QuantityIncrease] = []
    for line in lines:
        original = baseline.get(line.item_id)
        if original is not None and line.quantity > original.quantity:
            increases.append(QuantityIncrease(line.label, original.quantity, line.quantity))
    return increases


def adjustment_percent(original: Decimal, requested: Decimal) -> Decimal:
    """Relative change from ``original`` to ``requested`` in percent.

    A change from zero counts as a full (100%) change.
    """
    if original <= ZERO:
        return Decimal("100")
    return abs(requested - original) / original * Decimal("100")


def detect_large_adjustments(
    lines: Iterable[InvoiceLine],
    baseline: Optional[BaselineSnapshot],
    threshold: Decimal = LARGE_ADJUSTMENT_PERCENT,
) -> List[QuantityAdjustment]:
    """List edited lines whose quantity moved by more than ``threshold`` percent."""
    if baseline is None:
        return []
    adjustments: List[QuantityAdjustment] = []
    for line in lines:
        original = baseline.get(line.item_id)
        if original is None or line.quantity == original.quantity:
            continue
        percent = adjustment_percent(original.quantity, line.quantity)
        if percent > threshold:
            adjustments.append(
                QuantityAdjustment(line.label, original.quantity, line.quantity, percent)
            )
    return adjustments


def classify_stock(line: InvoiceLine, stock: Optional[StockLookup]) -> StockCheck:
    """Compare a line's quantity with the stock snapshot.

    With available stock ``s``, minimum stock ``m`` and requested quantity
    ``r``: ``r > s`` is insufficient, ``s - r == 0`` runs the item out,
    ``0 < s - r <= m`` leaves it low, anything above ``m`` is sufficient.
    Without a snapshot entry the line is unverifiable.
    """
    entry = stock_entry_for(line, stock)
    if entry is None:
        return StockCheck(line=line, level=StockLevel.UNVERIFIABLE)

    remaining = entry.available - line.quantity
    if remaining < ZERO:
        level = StockLevel.INSUFFICIENT
    elif remaining == ZERO:
        level = StockLevel.WILL_GO_OUT_OF_STOCK
    elif remaining <= entry.min_stock:
        level = StockLevel.WILL_GO_LOW
    else:
        level = StockLevel.SUFFICIENT
    return StockCheck(line=line, level=level, available=entry.available, min_stock=entry.min_stock)


def check_stock(lines: Iterable[InvoiceLine], stock: Optional[StockLookup]) -> List[StockCheck]:
    """Classify every non-free line with a positive quantity.

    Free lines still consume stock in the backend, but the save flow only
    vets chargeable lines before submission.
    """
    return [
        classify_stock(line, stock)
        for line in lines
        if not line.is_free and line.quantity > ZERO
    ]


__all__ = [
    "StockLookup",
    "QuantityAdjustment",
    "stock_entry_for",
    "validate_quantity",
    "validate_lines",
    "detect_price_changes",
    "detect_quantity_increases",
    "adjustment_percent",
    "detect_large_adjustments",
    "classify_stock",
    "check_stock",
]
