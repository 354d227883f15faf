"""Exception taxonomy for the invoice rule engine.

Two families live here. :class:`BusinessRuleViolation` subclasses are raised
by the local guards; they are detected before any network call and carry a
message the user can act on. :class:`StoreError` wraps failures reported by
the external store after a guard has already approved the attempt.
"""

from __future__ import annotations

from decimal import Decimal
from enum import Enum
from typing import Iterable, Optional, Sequence, Tuple

from .models import QuantityIncrease, StockCheck
from .totals import format_money


class BusinessRuleViolation(Exception):
    """Raised when a requested operation violates a domain constraint."""


class IncompleteInvoice(BusinessRuleViolation):
    """Raised when required invoice fields are missing."""

    def __init__(self, missing: Sequence[str]) -> None:
        self.missing = tuple(missing)
        super().__init__("Invoice is incomplete: missing " + ", ".join(self.missing))


class PaymentViolation(BusinessRuleViolation):
    """Raised when the initial payment does not fit the status or total."""

    def __init__(self, detail: str) -> None:
        self.detail = detail
        super().__init__(detail)


class IllegalStatusTransition(BusinessRuleViolation):
    """Raised when an existing invoice is moved to a status it cannot reach."""

    def __init__(self, current: str, requested: str, allowed: Iterable[str]) -> None:
        self.current = current
        self.requested = requested
        self.allowed = tuple(allowed)
        super().__init__(
            f"Cannot change invoice status from {current} to {requested}; "
            f"allowed: {', '.join(self.allowed)}"
        )


class QuantityError(BusinessRuleViolation):
    """Base class for per-line quantity violations."""


class ExceedsStock(QuantityError):
    """Raised when a line requests more than the known available stock."""

    def __init__(self, item_label: str, available: Decimal, requested: Decimal) -> None:
        self.item_label = item_label
        self.available = available
        self.requested = requested
        super().__init__(
            f'"{item_label}" exceeds available stock '
            f"(requested {requested}, available {available})"
        )


class QuantityIncreaseOnEdit(QuantityError):
    """Raised when editing an invoice would increase a line quantity."""

    def __init__(self, increases: Sequence[QuantityIncrease]) -> None:
        self.increases: Tuple[QuantityIncrease, ...] = tuple(increases)
        listing = "\n".join(
            f"{entry.item_label}: {entry.original} -> {entry.requested} units"
            for entry in self.increases
        )
        super().__init__(
            "Cannot increase item quantities when editing an invoice.\n\n"
            f"Increased items:\n{listing}\n\n"
            "To add more items, please create a new invoice."
        )

    @property
    def original(self) -> Decimal:
        return self.increases[0].original

    @property
    def requested(self) -> Decimal:
        return self.increases[0].requested


class BelowMinimumAmount(BusinessRuleViolation):
    """Raised when the invoice total is under the minimum invoice amount."""

    def __init__(self, total: Decimal, minimum: Decimal) -> None:
        self.total = total
        self.minimum = minimum
        super().__init__(
            f"Invoice total ({format_money(total)}) must be at least {format_money(minimum)}"
        )


class InsufficientStock(BusinessRuleViolation):
    """Raised when one or more lines request more than the available stock."""

    def __init__(self, lines: Sequence[StockCheck]) -> None:
        self.lines: Tuple[StockCheck, ...] = tuple(lines)
        listing = "\n".join(
            f"{check.line.label} ({check.line.code}): Insufficient stock. "
            f"Available: {check.available}, Requested: {check.line.quantity}"
            for check in self.lines
        )
        super().__init__(
            "Cannot save invoice - insufficient stock:\n\n"
            f"{listing}\n\n"
            "Please reduce quantities or select different items."
        )


class SettlementError(BusinessRuleViolation):
    """Base class for settlement validation failures."""


class NonPositiveAmount(SettlementError):
    """Raised when a settlement amount is zero or negative."""

    def __init__(self, amount: Decimal) -> None:
        self.amount = amount
        super().__init__("Settlement amount must be greater than 0")


class ExceedsRemainingBalance(SettlementError):
    """Raised when a settlement amount is larger than the remaining balance."""

    def __init__(self, amount: Decimal, remaining: Decimal) -> None:
        self.amount = amount
        self.remaining = remaining
        super().__init__(
            f"Settlement amount ({format_money(amount)}) cannot exceed "
            f"remaining balance ({format_money(remaining)})"
        )


class MissingPaymentDetails(SettlementError):
    """Raised when method-specific settlement fields are absent or malformed."""

    def __init__(self, method: str, fields: Sequence[str]) -> None:
        self.method = method
        self.fields = tuple(fields)
        super().__init__(
            f"Payment method '{method}' requires valid: {', '.join(self.fields)}"
        )


class InvoiceNotSettleable(SettlementError):
    """Raised when an invoice can no longer receive settlements."""

    def __init__(self, invoice_id: str, status: str, remaining: Decimal) -> None:
        self.invoice_id = invoice_id
        self.status = status
        self.remaining = remaining
        super().__init__(
            f"Invoice '{invoice_id}' cannot be settled "
            f"(status {status}, remaining {format_money(remaining)})"
        )


class InconsistentBalance(BusinessRuleViolation):
    """Raised when a fetched invoice breaks the remaining-balance invariant."""

    def __init__(self, invoice_id: str, expected: Decimal, reported: Decimal) -> None:
        self.invoice_id = invoice_id
        self.expected = expected
        self.reported = reported
        super().__init__(
            f"Invoice '{invoice_id}' reports remaining {format_money(reported)}, "
            f"expected {format_money(expected)}"
        )


class InvalidAdjustment(BusinessRuleViolation):
    """Raised when a manual stock adjustment cannot be applied."""


class MissingReference(BusinessRuleViolation):
    """Raised when a referenced item or invoice is unknown to the store."""


class ConfirmationDeclined(BusinessRuleViolation):
    """Raised when the user does not confirm the prompts of an operation."""

    def __init__(self, kinds: Iterable[str]) -> None:
        self.kinds = tuple(kinds)
        super().__init__("Cancelled: not confirmed (" + ", ".join(self.kinds) + ")")


class ErrorCategory(str, Enum):
    """Advisory classification of store failures, used for message selection."""

    AUTH = "AUTH"
    CONFLICT = "CONFLICT"
    TRANSIENT = "TRANSIENT"
    UNKNOWN = "UNKNOWN"


class StoreError(Exception):
    """Raised when the external store rejects or fails a request."""

    def __init__(
        self,
        code: Optional[str],
        description: Optional[str],
        *,
        status: Optional[int] = None,
        category: Optional[ErrorCategory] = None,
    ) -> None:
        self.code = code
        self.description = description
        self.status = status
        self.category = category or classify_status(status)
        super().__init__(description or code or "Store request failed")

    @property
    def retryable(self) -> bool:
        """Whether resubmitting after a correction or a wait can succeed."""
        return self.category is not ErrorCategory.AUTH


def classify_status(status: Optional[int]) -> ErrorCategory:
    """Map an HTTP status code onto an :class:`ErrorCategory`."""
    if status is None:
        return ErrorCategory.UNKNOWN
    if status in (401, 403):
        return ErrorCategory.AUTH
    if status in (400, 409, 422):
        return ErrorCategory.CONFLICT
    if status in (408, 429) or status >= 500:
        return ErrorCategory.TRANSIENT
    return ErrorCategory.UNKNOWN


__all__ = [
    "BusinessRuleViolation",
    "IncompleteInvoice",
    "PaymentViolation",
    "IllegalStatusTransition",
    "QuantityError",
    "ExceedsStock",
    "QuantityIncreaseOnEdit",
    "BelowMinimumAmount",
    "InsufficientStock",
    "SettlementError",
    "NonPositiveAmount",
    "ExceedsRemainingBalance",
    "MissingPaymentDetails",
    "InvoiceNotSettleable",
    "InconsistentBalance",
    "InvalidAdjustment",
    "MissingReference",
    "ConfirmationDeclined",
    "ErrorCategory",
    "StoreError",
    "classify_status",
]
