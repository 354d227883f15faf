"""Invoice totals calculator.

Totals are recomputed every time a line changes, so the arithmetic stays in
full :class:`~decimal.Decimal` precision and is only quantized to cents by
:func:`format_money` when a value is shown to the user.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Optional

from . import log
from .constants import CENT, ZERO
from .models import InvoiceDraft, InvoiceLine, InvoiceRecord


@dataclass(frozen=True)
class InvoiceTotals:
    """Derived monetary figures for a list of lines."""

    subtotal: Decimal
    discount: Decimal
    total_after_discount: Decimal
    free_items_value: Optional[Decimal] = None


def format_money(amount: Decimal) -> str:
    """Render ``amount`` with two decimal places for presentation.

    Args:
        amount (Decimal): Unrounded monetary value.

    Returns:
        str: ``amount`` rounded half-up to cents, e.g. ``"50.00"``.
    """
    return str(Decimal(amount).quantize(CENT, rounding=ROUND_HALF_UP))


def line_total(line: InvoiceLine) -> Decimal:
    """Return the contribution of ``line`` to the invoice subtotal.

    Free lines always contribute zero even though they still consume stock.
    """
    if line.is_free:
        return ZERO
    return line.quantity * line.price


def calculate_subtotal(lines: Iterable[InvoiceLine]) -> Decimal:
    """Sum ``quantity * price`` over every non-free line."""
    subtotal = ZERO
    for line in lines:
        subtotal += line_total(line)
    return subtotal


def calculate_totals(
    lines: Iterable[InvoiceLine],
    discount: Decimal = ZERO,
    *,
    free_items_value: Optional[Decimal] = None,
) -> InvoiceTotals:
    """Compute subtotal and discount-adjusted total for ``lines``.

    The calculation reads the lines without modifying them, so calling it
    repeatedly on an unchanged list yields identical results.

    Args:
        lines (Iterable[InvoiceLine]): Invoice lines in display order.
        discount (Decimal): Absolute discount in currency units.
        free_items_value (Decimal | None): Value of free lines as reported by
            the store after save. Passed through untouched because it is
            derived from backend aggregates rather than from the lines.

    Returns:
        InvoiceTotals: Unrounded totals for the supplied lines.
    """
    subtotal = calculate_subtotal(lines)
    total_after_discount = subtotal - discount
    log.debug(
        "Calculated totals: subtotal=%s discount=%s total=%s",
        subtotal,
        discount,
        total_after_discount,
    )
    return InvoiceTotals(
        subtotal=subtotal,
        discount=discount,
        total_after_discount=total_after_discount,
        free_items_value=free_items_value,
    )


def totals_for_draft(draft: InvoiceDraft) -> InvoiceTotals:
    """Shortcut computing :class:`InvoiceTotals` for a draft."""
    return calculate_totals(draft.lines, draft.discount)


def free_items_value_from_record(record: InvoiceRecord) -> Decimal:
    """Derive the value of free lines from store-reported aggregates.

    The store reports the total before discount (free lines included) and the
    final total; the difference minus the discount is what the free lines
    were worth. Negative results, which only appear when the aggregates are
    inconsistent, are clamped to zero.
    """
    value = record.total_before_discount - record.total_amount - record.discount
    return value if value > ZERO else ZERO


def max_initial_payment(totals: InvoiceTotals) -> Decimal:
    """Largest initial payment the payment cross-check will accept."""
    return max(totals.total_after_discount, ZERO)


__all__ = [
    "InvoiceTotals",
    "format_money",
    "line_total",
    "calculate_subtotal",
    "calculate_totals",
    "totals_for_draft",
    "free_items_value_from_record",
    "max_initial_payment",
]
