"""Invoice status machine and payment cross-check.

Statuses only move forward: ``PENDING -> DEPT -> PAID``. ``DELETED`` is a
tombstone reached through a dedicated delete action; it is never offered as
a target here and nothing leaves it.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Dict, FrozenSet, Optional, Tuple

from . import log
from .constants import ZERO, InvoiceStatus
from .errors import IllegalStatusTransition, PaymentViolation
from .totals import format_money


SELECTABLE_STATUSES: Tuple[InvoiceStatus, ...] = (
    InvoiceStatus.PENDING,
    InvoiceStatus.DEPT,
    InvoiceStatus.PAID,
)

TRANSITIONS: Dict[InvoiceStatus, FrozenSet[InvoiceStatus]] = {
    InvoiceStatus.PENDING: frozenset(SELECTABLE_STATUSES),
    InvoiceStatus.DEPT: frozenset({InvoiceStatus.DEPT, InvoiceStatus.PAID}),
    InvoiceStatus.PAID: frozenset({InvoiceStatus.PAID}),
    InvoiceStatus.DELETED: frozenset(),
}


def allowed_statuses(current: Optional[InvoiceStatus]) -> Tuple[InvoiceStatus, ...]:
    """Return the statuses an invoice may be saved with.

    Args:
        current (InvoiceStatus | None): Status of the invoice as loaded, or
            ``None`` for an invoice that has not been persisted yet.

    Returns:
        tuple[InvoiceStatus, ...]: Legal target statuses in lifecycle order.
            New invoices may start in any selectable status.
    """
    if current is None:
        return SELECTABLE_STATUSES
    targets = TRANSITIONS[current]
    return tuple(status for status in SELECTABLE_STATUSES if status in targets)


def is_transition_allowed(current: Optional[InvoiceStatus], requested: InvoiceStatus) -> bool:
    return requested in allowed_statuses(current)


def validate_transition(current: Optional[InvoiceStatus], requested: InvoiceStatus) -> None:
    """Ensure ``requested`` is reachable from ``current``.

    Raises:
        IllegalStatusTransition: If ``requested`` is not in the successor set
            of ``current``. This covers every attempt to leave ``PAID`` or
            ``DELETED`` and every regression such as ``DEPT -> PENDING``.
    """
    allowed = allowed_statuses(current)
    if requested in allowed:
        return
    current_label = current.value if current is not None else "NEW"
    log.warning("Rejected status transition %s -> %s", current_label, requested.value)
    raise IllegalStatusTransition(
        current_label,
        requested.value,
        [status.value for status in allowed],
    )


def validate_payment(
    status: InvoiceStatus,
    initial_payment: Decimal,
    total_after_discount: Decimal,
) -> None:
    """Cross-check the initial payment against the requested status.

    Overpayment is rejected for every status before the status-specific rules
    run: ``DEPT`` needs a positive payment and ``PAID`` needs the full total.

    Args:
        status (InvoiceStatus): Status the invoice will be saved with.
        initial_payment (Decimal): Amount paid when the invoice is saved.
        total_after_discount (Decimal): Invoice total after the discount.

    Raises:
        PaymentViolation: When any of the three rules fails. The detail names
            the expected and received amounts.
    """
    if initial_payment > total_after_discount:
        log.warning(
            "Overpayment rejected: payment=%s total=%s",
            initial_payment,
            total_after_discount,
        )
        raise PaymentViolation(
            f"Initial payment ({format_money(initial_payment)}) cannot exceed "
            f"invoice total ({format_money(total_after_discount)})"
        )
    if status is InvoiceStatus.DEPT and initial_payment <= ZERO:
        log.warning("DEPT status rejected without initial payment")
        raise PaymentViolation("DEPT requires an initial payment greater than 0")
    if status is InvoiceStatus.PAID and initial_payment < total_after_discount:
        log.warning(
            "PAID status rejected: payment=%s total=%s",
            initial_payment,
            total_after_discount,
        )
        raise PaymentViolation(
            f"PAID requires full payment, expected {format_money(total_after_discount)}, "
            f"got {format_money(initial_payment)}"
        )


__all__ = [
    "SELECTABLE_STATUSES",
    "TRANSITIONS",
    "allowed_statuses",
    "is_transition_allowed",
    "validate_transition",
    "validate_payment",
]
