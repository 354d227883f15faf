"""Integration tests describing the end-to-end invoice workflows.

These scenarios run the workflow layer against the workbook store, so every
guard decision is followed by the store's own re-validation exactly as it is
in production against the REST backend.
"""

from __future__ import annotations

from dataclasses import replace
from decimal import Decimal

import pytest

from invoice_guard import core_logic
from invoice_guard.constants import AdjustmentReason, InvoiceStatus, PaymentMethod, PromptKind
from invoice_guard.errors import (
    ExceedsRemainingBalance,
    InvoiceNotSettleable,
    QuantityIncreaseOnEdit,
)
from invoice_guard.models import InvoiceDraft, InvoiceLine, SettlementDraft
from invoice_guard.stock_adjustment import StockAdjustment


def _line(item_id: str, quantity: str, price: str) -> InvoiceLine:
    return InvoiceLine(item_id=item_id, quantity=Decimal(quantity), price=Decimal(price))


def _accept_all(log):
    def _confirm(prompts):
        log.append([prompt.kind for prompt in prompts])
        return True

    return _confirm


def test_invoice_edit_and_settlement_lifecycle(runtime_context):
    """Create, edit, settle and unsettle an invoice through the workflow layer."""

    context = runtime_context
    asked = []

    # New invoice for 5 widgets, deducting stock.
    draft = InvoiceDraft(client_id="CL-1", lines=(_line("I1", "5", "10"),))
    created = core_logic.save_invoice(context, draft, confirm=_accept_all(asked))
    assert created.total_amount == Decimal("50")
    assert asked == []

    # Editing captures the baseline once; increasing a quantity is blocked.
    opened = core_logic.open_invoice(context, created.invoice_id)
    bigger = InvoiceDraft(
        client_id="CL-1",
        lines=(_line("I1", "6", "10"),),
        invoice_id=created.invoice_id,
    )
    with pytest.raises(QuantityIncreaseOnEdit):
        core_logic.save_invoice(context, bigger, opened.baseline, confirm=_accept_all(asked))

    # Reducing the quantity with a new price asks for confirmation.
    smaller = InvoiceDraft(
        client_id="CL-1",
        lines=(_line("I1", "4", "11"),),
        invoice_id=created.invoice_id,
    )
    edited = core_logic.save_invoice(context, smaller, opened.baseline, confirm=_accept_all(asked))
    # 5 -> 4 is exactly the 20% threshold, so only the price change is asked
    assert asked == [[PromptKind.PRICE_CHANGE]]
    assert edited.total_amount == Decimal("44")
    assert core_logic.find_item(context, "I1").available == Decimal("16")

    # Partial settlement leaves a balance and moves the invoice to DEPT.
    settlement = core_logic.record_settlement(
        context, SettlementDraft(invoice_id=edited.invoice_id, amount=Decimal("30"))
    )
    assert settlement.invoice_remaining_amount == Decimal("14")
    assert [record.invoice_id for record in core_logic.list_settleable_invoices(context)] == [
        edited.invoice_id
    ]

    with pytest.raises(ExceedsRemainingBalance):
        core_logic.record_settlement(
            context, SettlementDraft(invoice_id=edited.invoice_id, amount=Decimal("15"))
        )

    # Settling the rest pays the invoice off; nothing more can be settled.
    core_logic.record_settlement(
        context,
        SettlementDraft(
            invoice_id=edited.invoice_id,
            amount=Decimal("14"),
            payment_method=PaymentMethod.CARD,
            details={"card_last4": "4242", "card_type": "visa"},
        ),
    )
    paid = context.store.get_invoice(edited.invoice_id)
    assert paid.status is InvoiceStatus.PAID
    assert core_logic.list_settleable_invoices(context) == []
    with pytest.raises(InvoiceNotSettleable):
        core_logic.record_settlement(
            context, SettlementDraft(invoice_id=edited.invoice_id, amount=Decimal("1"))
        )

    # Deleting the first settlement reopens the balance.
    reopened = core_logic.delete_settlement(context, settlement.settlement_id, edited.invoice_id)
    assert reopened.status is InvoiceStatus.DEPT
    assert reopened.remaining_amount == Decimal("30")


def test_stock_prompts_and_adjustment(runtime_context):
    """Low stock warnings follow manual stock adjustments."""

    context = runtime_context
    asked = []

    core_logic.adjust_stock(
        context,
        StockAdjustment("I2", Decimal("12"), AdjustmentReason.PURCHASE, unit_cost=Decimal("18")),
        confirm=_accept_all(asked),
    )
    assert asked == [[PromptKind.LARGE_ADJUSTMENT]]

    draft = InvoiceDraft(client_id="CL-2", lines=(_line("I2", "10", "25"),))
    core_logic.save_invoice(context, draft, confirm=_accept_all(asked))
    assert asked[-1] == [PromptKind.LOW_STOCK]
    assert core_logic.find_item(context, "I2").available == Decimal("2")


def test_paid_invoice_can_be_edited_after_settlements(runtime_context):
    """Editing an invoice paid off by settlements keeps its paid amount."""

    context = runtime_context
    draft = InvoiceDraft(
        client_id="CL-1",
        lines=(_line("I1", "5", "10"),),
        status=InvoiceStatus.DEPT,
        initial_payment=Decimal("10"),
    )
    created = core_logic.save_invoice(context, draft)
    settlement = core_logic.record_settlement(
        context, SettlementDraft(invoice_id=created.invoice_id, amount=Decimal("40"))
    )
    assert settlement.invoice_status is InvoiceStatus.PAID

    # The edit draft carries the full 50 paid so far.
    opened = core_logic.open_invoice(context, created.invoice_id)
    edit = replace(opened.draft(), client_id="CL-9")
    assert edit.initial_payment == Decimal("50")

    edited = core_logic.save_invoice(context, edit, opened.baseline)
    assert edited.client_id == "CL-9"
    assert edited.status is InvoiceStatus.PAID
    assert edited.amount_settled == Decimal("50")
    assert edited.initial_payment == Decimal("10")
    assert edited.remaining_amount == Decimal("0")
    assert core_logic.find_item(context, "I1").available == Decimal("15")

    # Removing the settlement leaves only the up-front payment.
    reopened = core_logic.delete_settlement(context, settlement.settlement_id, created.invoice_id)
    assert reopened.status is InvoiceStatus.DEPT
    assert reopened.remaining_amount == Decimal("40")
