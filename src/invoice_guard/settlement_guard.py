"""Settlement guard.

Validates a proposed settlement against the remaining balance the store
reported for its invoice. Nothing here writes ``amount_settled`` or the
remaining balance; the store recomputes both once a settlement is accepted.
"""

from __future__ import annotations

import re
from decimal import Decimal
from typing import Callable, Dict, List, Mapping, Optional, Tuple

from . import log
from .constants import ZERO, CardType, InvoiceStatus, PaymentMethod
from .errors import (
    BusinessRuleViolation,
    ExceedsRemainingBalance,
    InconsistentBalance,
    InvoiceNotSettleable,
    MissingPaymentDetails,
    NonPositiveAmount,
)
from .models import InvoiceRecord, SettlementDraft
from .outcomes import Approved, Blocked, Outcome


LAST4_PATTERN = re.compile(r"^\d{4}$")
PHONE_PATTERN = re.compile(r"^\+?[0-9]{10,15}$")
CARD_TYPES = frozenset(card.value for card in CardType)


def _is_card_type(value: str) -> bool:
    return value.lower() in CARD_TYPES


# Each entry: (field, required, check)
_DETAIL_RULES: Dict[PaymentMethod, Tuple[Tuple[str, bool, Optional[Callable[[str], object]]], ...]] = {
    PaymentMethod.CASH: (),
    PaymentMethod.CARD: (
        ("card_last4", True, LAST4_PATTERN.match),
        ("card_type", True, _is_card_type),
    ),
    PaymentMethod.TRANSFER: (
        ("bank_name", True, None),
        ("account_last4", False, LAST4_PATTERN.match),
    ),
    PaymentMethod.CHECK: (
        ("check_number", True, None),
        ("bank_name", True, None),
    ),
    PaymentMethod.MOBILE_MONEY: (
        ("transaction_id", True, None),
        ("phone_number", True, PHONE_PATTERN.match),
    ),
}

CLOSED_STATUSES = frozenset({InvoiceStatus.PAID, InvoiceStatus.DELETED})


def validate_settlement(amount: Decimal, remaining_balance: Decimal) -> None:
    """Check that ``0 < amount <= remaining_balance``.

    Args:
        amount (Decimal): Proposed settlement amount.
        remaining_balance (Decimal): Remaining balance as last reported by
            the store. It may be stale; the store re-validates on persist.

    Raises:
        NonPositiveAmount: If ``amount`` is zero or negative.
        ExceedsRemainingBalance: If ``amount`` is larger than the balance.
            Settling exactly the remaining balance is accepted.
    """
    if amount <= ZERO:
        log.warning("Settlement rejected: non-positive amount %s", amount)
        raise NonPositiveAmount(amount)
    if amount > remaining_balance:
        log.warning(
            "Settlement rejected: amount=%s exceeds remaining=%s",
            amount,
            remaining_balance,
        )
        raise ExceedsRemainingBalance(amount, remaining_balance)


def validate_payment_details(method: PaymentMethod, details: Mapping[str, str]) -> None:
    """Check the method-specific fields of a settlement.

    Cash needs nothing. Card needs a four digit ``card_last4`` and a
    ``card_type`` naming one of the :class:`CardType` networks; transfer
    needs ``bank_name`` and accepts an optional four digit
    ``account_last4``; check needs ``check_number`` and ``bank_name``;
    mobile money needs ``transaction_id`` and a ``phone_number`` of 10 to 15
    digits with an optional leading ``+``.

    Raises:
        MissingPaymentDetails: Naming every field that is absent or malformed.
    """
    invalid: List[str] = []
    for name, required, check in _DETAIL_RULES.get(method, ()):
        value = (details.get(name) or "").strip()
        if not value:
            if required:
                invalid.append(name)
            continue
        if check is not None and not check(value):
            invalid.append(name)
    if invalid:
        log.warning("Settlement rejected: invalid %s details %s", method.value, invalid)
        raise MissingPaymentDetails(method.value, invalid)


def is_settleable(record: InvoiceRecord) -> bool:
    """Whether ``record`` can still receive a settlement."""
    return record.status not in CLOSED_STATUSES and record.remaining_amount > ZERO


def suggested_settlement_amount(record: InvoiceRecord) -> Decimal:
    """Amount a new settlement is prefilled with: the whole remaining balance."""
    return max(record.remaining_amount, ZERO)


def reconcile_balance(record: InvoiceRecord) -> None:
    """Check ``remaining = total - settled`` on a fetched invoice.

    The remaining balance must also be zero once the invoice is ``PAID`` and
    never negative before that.

    Raises:
        InconsistentBalance: When the store's figures disagree.
    """
    expected = record.total_amount - record.amount_settled
    if record.status is InvoiceStatus.PAID:
        expected = ZERO
    if record.remaining_amount != expected or record.remaining_amount < ZERO:
        log.error(
            "Invoice %s balance mismatch: remaining=%s expected=%s",
            record.invoice_id,
            record.remaining_amount,
            expected,
        )
        raise InconsistentBalance(record.invoice_id, expected, record.remaining_amount)


def evaluate_settlement(draft: SettlementDraft, record: InvoiceRecord) -> Outcome:
    """Run every settlement rule for ``draft`` against its invoice.

    Args:
        draft (SettlementDraft): Settlement as entered.
        record (InvoiceRecord): Latest store view of the invoice.

    Returns:
        Outcome: :class:`Approved` or :class:`Blocked`. Settlements raise no
            advisory prompts.

    Raises:
        ValueError: If ``draft`` targets a different invoice than ``record``.
    """
    if draft.invoice_id is not None and draft.invoice_id != record.invoice_id:
        raise ValueError(
            f"Settlement for invoice '{draft.invoice_id}' checked against '{record.invoice_id}'"
        )
    try:
        if not is_settleable(record):
            raise InvoiceNotSettleable(
                record.invoice_id, record.status.value, record.remaining_amount
            )
        validate_settlement(draft.amount, record.remaining_amount)
        validate_payment_details(draft.payment_method, draft.details)
    except BusinessRuleViolation as exc:
        return Blocked(reason=exc)
    return Approved()


__all__ = [
    "LAST4_PATTERN",
    "PHONE_PATTERN",
    "validate_settlement",
    "validate_payment_details",
    "is_settleable",
    "suggested_settlement_amount",
    "reconcile_balance",
    "evaluate_settlement",
]
