"""Unit tests for the invoice status machine and payment cross-check."""

from __future__ import annotations

from decimal import Decimal

import pytest

from invoice_guard import status
from invoice_guard.constants import InvoiceStatus
from invoice_guard.errors import IllegalStatusTransition, PaymentViolation


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------


def test_new_invoice_may_start_in_any_selectable_status():
    """New invoices are offered PENDING, DEPT and PAID."""

    assert status.allowed_statuses(None) == (
        InvoiceStatus.PENDING,
        InvoiceStatus.DEPT,
        InvoiceStatus.PAID,
    )


@pytest.mark.parametrize(
    ("current", "expected"),
    [
        (InvoiceStatus.PENDING, (InvoiceStatus.PENDING, InvoiceStatus.DEPT, InvoiceStatus.PAID)),
        (InvoiceStatus.DEPT, (InvoiceStatus.DEPT, InvoiceStatus.PAID)),
        (InvoiceStatus.PAID, (InvoiceStatus.PAID,)),
        (InvoiceStatus.DELETED, ()),
    ],
)
def test_allowed_statuses_only_move_forward(current, expected):
    """Each status exposes its successor set in lifecycle order."""

    assert status.allowed_statuses(current) == expected


def test_deleted_is_never_offered():
    """DELETED is reached through a separate action, never selected."""

    for current in (None, *InvoiceStatus):
        assert InvoiceStatus.DELETED not in status.allowed_statuses(current)


def test_validate_transition_rejects_regression():
    """Moving DEPT back to PENDING raises IllegalStatusTransition."""

    with pytest.raises(IllegalStatusTransition) as excinfo:
        status.validate_transition(InvoiceStatus.DEPT, InvoiceStatus.PENDING)
    assert excinfo.value.current == "DEPT"
    assert excinfo.value.allowed == ("DEPT", "PAID")


def test_validate_transition_rejects_leaving_paid():
    """PAID invoices stay PAID."""

    with pytest.raises(IllegalStatusTransition):
        status.validate_transition(InvoiceStatus.PAID, InvoiceStatus.DEPT)


def test_validate_transition_accepts_forward_move():
    """PENDING to PAID is legal."""

    status.validate_transition(InvoiceStatus.PENDING, InvoiceStatus.PAID)
    assert status.is_transition_allowed(InvoiceStatus.DEPT, InvoiceStatus.PAID)


# ---------------------------------------------------------------------------
# Payment cross-check
# ---------------------------------------------------------------------------


def test_overpayment_is_rejected_for_any_status():
    """An initial payment above the total is always a violation."""

    for requested in (InvoiceStatus.PENDING, InvoiceStatus.DEPT, InvoiceStatus.PAID):
        with pytest.raises(PaymentViolation, match="cannot exceed"):
            status.validate_payment(requested, Decimal("60"), Decimal("50"))


def test_dept_requires_positive_payment():
    """DEPT without an initial payment is rejected."""

    with pytest.raises(PaymentViolation, match="DEPT requires"):
        status.validate_payment(InvoiceStatus.DEPT, Decimal("0"), Decimal("50"))


def test_paid_requires_full_payment():
    """PAID with a partial payment names expected and received amounts."""

    with pytest.raises(PaymentViolation) as excinfo:
        status.validate_payment(InvoiceStatus.PAID, Decimal("40"), Decimal("50"))
    assert "expected 50.00, got 40.00" in str(excinfo.value)


def test_valid_payments_pass():
    """Payments consistent with the status raise nothing."""

    status.validate_payment(InvoiceStatus.PENDING, Decimal("0"), Decimal("50"))
    status.validate_payment(InvoiceStatus.DEPT, Decimal("10"), Decimal("50"))
    status.validate_payment(InvoiceStatus.PAID, Decimal("50"), Decimal("50"))
