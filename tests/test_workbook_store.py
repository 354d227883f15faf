"""Tests for the workbook-backed store and its sheet helpers."""

from __future__ import annotations

from decimal import Decimal

import openpyxl
import pytest

from invoice_guard import workbook_store
from invoice_guard.constants import InvoiceStatus
from invoice_guard.errors import ErrorCategory, StoreError
from invoice_guard.workbook_store import WorkbookInvoiceStore


@pytest.fixture
def wb_store(store_workbook_path) -> WorkbookInvoiceStore:
    return WorkbookInvoiceStore(store_workbook_path)


def _payload(*items, **overrides) -> dict:
    payload = {
        "clientId": "CL-1",
        "status": "PENDING",
        "discountAmount": Decimal("0"),
        "vatPercentage": Decimal("0"),
        "initialPayment": Decimal("0"),
        "paymentMethod": "cash",
        "deductFromStock": "Y",
        "items": list(items) or [{"itemId": "I1", "quantity": Decimal("5"), "unitPrice": Decimal("10")}],
    }
    payload.update(overrides)
    return payload


def _available(wb_store: WorkbookInvoiceStore, item_id: str) -> Decimal:
    return wb_store.fetch_items_by_query(item_id, 0, 10).items[0].available


# ---------------------------------------------------------------------------
# Workbook lifecycle and sheet helpers
# ---------------------------------------------------------------------------


def test_open_missing_workbook(tmp_path):
    """Opening a missing file raises FileNotFoundError."""

    with pytest.raises(FileNotFoundError):
        WorkbookInvoiceStore(tmp_path / "missing.xlsx")


def test_schema_check_reports_missing_sheet(store_workbook_path):
    """A workbook without the settlements sheet is rejected."""

    workbook = openpyxl.load_workbook(store_workbook_path)
    workbook.remove(workbook["Settlements"])
    with pytest.raises(ValueError, match="Settlements"):
        workbook_store.ensure_schema(workbook)


def test_locate_row_compares_as_text(wb_store):
    """Row lookup works on the identifier text."""

    assert workbook_store.locate_row(wb_store.workbook, "Items", "ItemID", "I2") == 3
    assert workbook_store.locate_row(wb_store.workbook, "Items", "ItemID", "nope") is None
    with pytest.raises(KeyError):
        workbook_store.locate_row(wb_store.workbook, "Items", "Missing", "I1")


def test_next_identifier_increments_highest_suffix():
    """Identifiers continue after the highest existing number."""

    assert workbook_store.next_identifier("INV-", []) == "INV-00001"
    assert workbook_store.next_identifier("INV-", ["INV-00002", "INV-00010", "X-99"]) == "INV-00011"


# ---------------------------------------------------------------------------
# Items
# ---------------------------------------------------------------------------


def test_item_search_matches_and_paginates(wb_store):
    """Searches match id, code or name and report page counts."""

    page = wb_store.fetch_items_by_query("", 0, 2)
    assert [item.item_id for item in page.items] == ["I1", "I2"]
    assert page.total_elements == 3
    assert page.total_pages == 2

    assert [item.item_id for item in wb_store.fetch_items_by_query("gadget", 0, 10).items] == ["I2"]


def test_item_status_is_derived_from_stock(wb_store):
    """Items report IN_STOCK, LOW_STOCK or OUT_OF_STOCK."""

    assert wb_store.fetch_items_by_query("I1", 0, 10).items[0].status == "IN_STOCK"
    item = wb_store.adjust_stock("I1", {"newQuantity": Decimal("4"), "reason": "DAMAGED"})
    assert item.status == "LOW_STOCK"


def test_adjust_stock_persists_to_disk(wb_store, store_workbook_path):
    """Adjustments are saved immediately."""

    wb_store.adjust_stock("I3", {"newQuantity": Decimal("0"), "reason": "THEFT_LOSS"})
    reopened = WorkbookInvoiceStore(store_workbook_path)
    assert _available(reopened, "I3") == Decimal("0")


def test_adjust_unknown_item(wb_store):
    """Unknown items are reported as not found."""

    with pytest.raises(StoreError) as excinfo:
        wb_store.adjust_stock("I9", {"newQuantity": Decimal("1")})
    assert excinfo.value.status == 404


# ---------------------------------------------------------------------------
# Invoices
# ---------------------------------------------------------------------------


def test_create_invoice_deducts_stock_and_sets_totals(wb_store):
    """A new invoice gets an id, totals and reduces stock."""

    record = wb_store.persist_invoice(
        _payload(
            {"itemId": "I1", "quantity": Decimal("5"), "unitPrice": Decimal("10")},
            {"itemId": "I3", "quantity": Decimal("2"), "unitPrice": Decimal("1.50"), "isFree": True},
            discountAmount=Decimal("5"),
            initialPayment=Decimal("10"),
        )
    )
    assert record.invoice_id == "INV-00001"
    assert record.total_before_discount == Decimal("53")
    assert record.total_amount == Decimal("45")
    assert record.amount_settled == Decimal("10")
    assert record.remaining_amount == Decimal("35")
    assert _available(wb_store, "I1") == Decimal("15")
    assert _available(wb_store, "I3") == Decimal("98")


def test_invoice_without_deduction_keeps_stock(wb_store):
    """deductFromStock=N leaves quantities alone and skips the stock check."""

    wb_store.persist_invoice(
        _payload({"itemId": "I2", "quantity": Decimal("50"), "unitPrice": Decimal("1")}, deductFromStock="N")
    )
    assert _available(wb_store, "I2") == Decimal("6")


def test_insufficient_stock_is_rejected_without_changes(wb_store):
    """The store re-validates stock and leaves the workbook untouched."""

    with pytest.raises(StoreError) as excinfo:
        wb_store.persist_invoice(
            _payload({"itemId": "I2", "quantity": Decimal("7"), "unitPrice": Decimal("25")})
        )
    assert excinfo.value.category is ErrorCategory.CONFLICT
    assert "Insufficient stock" in excinfo.value.description
    assert wb_store.list_invoices() == []
    assert _available(wb_store, "I2") == Decimal("6")


def test_editing_invoice_returns_released_stock(wb_store):
    """Reducing a line on edit gives the difference back to stock."""

    created = wb_store.persist_invoice(_payload())
    updated = wb_store.persist_invoice(
        _payload(
            {"itemId": "I1", "quantity": Decimal("3"), "unitPrice": Decimal("10")},
            invoiceId=created.invoice_id,
        )
    )
    assert updated.invoice_id == created.invoice_id
    assert updated.total_amount == Decimal("30")
    assert [line.quantity for line in updated.lines] == [Decimal("3")]
    assert _available(wb_store, "I1") == Decimal("17")


def test_get_unknown_invoice(wb_store):
    """Missing invoices raise a 404 StoreError."""

    with pytest.raises(StoreError) as excinfo:
        wb_store.get_invoice("INV-404")
    assert excinfo.value.status == 404


# ---------------------------------------------------------------------------
# Settlements
# ---------------------------------------------------------------------------


def test_partial_settlement_moves_pending_to_dept(wb_store):
    """A partial settlement leaves a balance and marks the invoice DEPT."""

    invoice = wb_store.persist_invoice(_payload())
    settlement = wb_store.persist_settlement(
        {"invoiceId": invoice.invoice_id, "settlementAmount": Decimal("20"), "paymentMethod": "cash"}
    )
    assert settlement.settlement_id == "STL-00001"
    assert settlement.invoice_remaining_amount == Decimal("30")
    assert settlement.invoice_status is InvoiceStatus.DEPT
    assert wb_store.get_invoice(invoice.invoice_id).amount_settled == Decimal("20")


def test_full_settlement_marks_paid(wb_store):
    """Settling the remaining balance marks the invoice PAID."""

    invoice = wb_store.persist_invoice(_payload())
    wb_store.persist_settlement({"invoiceId": invoice.invoice_id, "settlementAmount": Decimal("50")})
    record = wb_store.get_invoice(invoice.invoice_id)
    assert record.status is InvoiceStatus.PAID
    assert record.remaining_amount == Decimal("0")


def test_settlement_over_balance_is_rejected(wb_store):
    """The store enforces the remaining balance too."""

    invoice = wb_store.persist_invoice(_payload())
    with pytest.raises(StoreError):
        wb_store.persist_settlement({"invoiceId": invoice.invoice_id, "settlementAmount": Decimal("51")})


def test_deleting_settlement_restores_balance(wb_store):
    """Deleting a settlement reopens a PAID invoice as DEPT."""

    invoice = wb_store.persist_invoice(_payload())
    settlement = wb_store.persist_settlement(
        {"invoiceId": invoice.invoice_id, "settlementAmount": Decimal("50")}
    )
    wb_store.delete_settlement(settlement.settlement_id)
    record = wb_store.get_invoice(invoice.invoice_id)
    assert record.status is InvoiceStatus.DEPT
    assert record.remaining_amount == Decimal("50")
    assert wb_store.list_settlements(invoice.invoice_id) == []


def test_editing_settled_invoice_counts_payments_once(wb_store):
    """On update initialPayment is the total paid, not an extra payment."""

    invoice = wb_store.persist_invoice(_payload())
    wb_store.persist_settlement({"invoiceId": invoice.invoice_id, "settlementAmount": Decimal("50")})

    updated = wb_store.persist_invoice(
        _payload(invoiceId=invoice.invoice_id, status="PAID", initialPayment=Decimal("50"))
    )
    assert updated.amount_settled == Decimal("50")
    assert updated.initial_payment == Decimal("0")
    assert updated.status is InvoiceStatus.PAID
    assert _available(wb_store, "I1") == Decimal("15")
