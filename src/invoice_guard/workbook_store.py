"""Workbook implementation of :class:`~invoice_guard.store.InvoiceStore`.

Keeps items, invoices, invoice lines and settlements in an ``openpyxl``
workbook so that the rule engine can run without the REST backend. The store
behaves like the backend does: it re-validates stock and balances on every
write, deducts stock for invoices that ask for it, and recomputes the settled
amount and remaining balance whenever a settlement is added or deleted.

The module is split the same way as the rest of the data layer:

1. Workbook lifecycle: opening, checking and saving the file.
2. Sheet operations: typed rows, iteration, lookup and in-place updates.
3. :class:`WorkbookInvoiceStore`: the store operations built on top.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import openpyxl
from openpyxl.workbook import Workbook

from . import log
from .constants import ZERO, InvoiceStatus, PaymentMethod, SheetName
from .errors import ErrorCategory, StoreError
from .models import InvoiceLine, InvoiceRecord, ItemPage, ItemRecord, SettlementRecord
from .stock_adjustment import predict_status
from .store import to_datetime, to_decimal, to_flag
from .totals import format_money


ITEMS_SHEET = SheetName.ITEMS.value
INVOICES_SHEET = SheetName.INVOICES.value
INVOICE_LINES_SHEET = SheetName.INVOICE_LINES.value
SETTLEMENTS_SHEET = SheetName.SETTLEMENTS.value

SHEET_COLUMNS: Dict[str, List[str]] = {
    ITEMS_SHEET: ["ItemID", "Code", "Name", "Price", "TotalQuantity", "MinStock"],
    INVOICES_SHEET: [
        "InvoiceID",
        "ClientID",
        "Status",
        "Discount",
        "VatPercentage",
        "PaymentMethod",
        "DeductFromStock",
        "InitialPayment",
        "TotalBeforeDiscount",
        "TotalAmount",
        "AmountSettled",
        "InvoiceDate",
        "UpdatedAt",
    ],
    INVOICE_LINES_SHEET: ["InvoiceID", "ItemID", "Quantity", "UnitPrice", "IsFree"],
    SETTLEMENTS_SHEET: [
        "SettlementID",
        "InvoiceID",
        "Amount",
        "SettlementDate",
        "PaymentMethod",
        "ReferenceNumber",
        "Notes",
    ],
}

INVOICE_ID_PREFIX = "INV-"
SETTLEMENT_ID_PREFIX = "STL-"


@dataclass(frozen=True)
class ItemRow:
    """In-memory view of a row from the ``Items`` sheet."""

    item_id: str
    code: str
    name: str
    price: Decimal
    total_quantity: Decimal
    min_stock: Decimal


@dataclass(frozen=True)
class InvoiceRow:
    """In-memory view of a row from the ``Invoices`` sheet."""

    invoice_id: str
    client_id: str
    status: InvoiceStatus
    discount: Decimal
    vat_percentage: Decimal
    payment_method: PaymentMethod
    deduct_from_stock: bool
    initial_payment: Decimal
    total_before_discount: Decimal
    total_amount: Decimal
    amount_settled: Decimal
    invoice_date: Optional[str]
    updated_at: Optional[str]


@dataclass(frozen=True)
class InvoiceLineRow:
    """In-memory view of a row from the ``InvoiceLines`` sheet."""

    invoice_id: str
    item_id: str
    quantity: Decimal
    unit_price: Decimal
    is_free: bool


@dataclass(frozen=True)
class SettlementRow:
    """In-memory view of a row from the ``Settlements`` sheet."""

    settlement_id: str
    invoice_id: str
    amount: Decimal
    settlement_date: str
    payment_method: PaymentMethod
    reference_number: Optional[str]
    notes: Optional[str]


# ---------------------------------------------------------------------------
# Workbook lifecycle
# ---------------------------------------------------------------------------


def open_workbook(data_file: Path) -> Workbook:
    """Open the store workbook.

    Raises:
        FileNotFoundError: If ``data_file`` does not exist after ``~``
            expansion and resolution.
    """
    data_file = Path(data_file).expanduser().resolve()
    if not data_file.exists():
        raise FileNotFoundError(f"Workbook not found: {data_file}")
    return openpyxl.load_workbook(data_file)


def save_workbook(workbook: Workbook, destination: Path) -> None:
    """Write ``workbook`` to ``destination``, creating parent folders."""
    dest = Path(destination).expanduser().resolve()
    dest.parent.mkdir(parents=True, exist_ok=True)
    workbook.save(dest)


def ensure_schema(workbook: Workbook) -> None:
    """Check that every sheet and header column the store uses is present.

    Raises:
        ValueError: Naming the first missing sheet or the missing columns.
    """
    for sheet_name, columns in SHEET_COLUMNS.items():
        if sheet_name not in workbook.sheetnames:
            log.error("Workbook is missing sheet '%s'", sheet_name)
            raise ValueError(f"Workbook is missing sheet: {sheet_name}")
        headers = [cell.value for cell in workbook[sheet_name][1]]
        missing = [column for column in columns if column not in headers]
        if missing:
            log.error("Sheet '%s' is missing columns %s", sheet_name, missing)
            raise ValueError(f"Sheet '{sheet_name}' is missing columns: {', '.join(missing)}")


# ---------------------------------------------------------------------------
# Sheet operations
# ---------------------------------------------------------------------------


def _header_map(workbook: Workbook, sheet_name: str) -> Dict[str, int]:
    sheet = workbook[sheet_name]
    return {cell.value: idx + 1 for idx, cell in enumerate(sheet[1])}


def _iter_raw(workbook: Workbook, sheet_name: str) -> Iterable[Tuple[object, ...]]:
    """Yield the values of every non-empty data row, in sheet column order."""
    header_map = _header_map(workbook, sheet_name)
    order = [header_map[column] - 1 for column in SHEET_COLUMNS[sheet_name]]
    for raw in workbook[sheet_name].iter_rows(min_row=2, values_only=True):
        if any(cell is not None for cell in raw):
            yield tuple(raw[index] if index < len(raw) else None for index in order)


def iter_items(workbook: Workbook) -> Iterable[ItemRow]:
    for raw in _iter_raw(workbook, ITEMS_SHEET):
        yield deserialize_item(raw)


def iter_invoices(workbook: Workbook) -> Iterable[InvoiceRow]:
    for raw in _iter_raw(workbook, INVOICES_SHEET):
        yield deserialize_invoice(raw)


def iter_invoice_lines(workbook: Workbook, invoice_id: Optional[str] = None) -> Iterable[InvoiceLineRow]:
    """Yield invoice lines, optionally only those of ``invoice_id``."""
    for raw in _iter_raw(workbook, INVOICE_LINES_SHEET):
        row = deserialize_invoice_line(raw)
        if invoice_id is None or row.invoice_id == invoice_id:
            yield row


def iter_settlements(workbook: Workbook, invoice_id: Optional[str] = None) -> Iterable[SettlementRow]:
    """Yield settlements, optionally only those of ``invoice_id``."""
    for raw in _iter_raw(workbook, SETTLEMENTS_SHEET):
        row = deserialize_settlement(raw)
        if invoice_id is None or row.invoice_id == invoice_id:
            yield row


def locate_row(workbook: Workbook, sheet_name: str, key_column: str, key_value: str) -> Optional[int]:
    """Find the first row whose ``key_column`` equals ``key_value``.

    Values are compared as text, so identifiers Excel turned into numbers
    still match.

    Returns:
        int | None: 1-based worksheet row index, or ``None`` if absent.

    Raises:
        KeyError: If ``key_column`` is not a header of ``sheet_name``.
    """
    header_map = _header_map(workbook, sheet_name)
    if key_column not in header_map:
        raise KeyError(f"Unknown column: {key_column}")
    key_index = header_map[key_column] - 1

    for row_idx, row in enumerate(workbook[sheet_name].iter_rows(min_row=2, values_only=True), start=2):
        cell_value = row[key_index]
        if cell_value is not None and str(cell_value) == str(key_value):
            return row_idx
    return None


def update_row(workbook: Workbook, sheet_name: str, row_index: int, field_values: Mapping[str, Any]) -> None:
    """Overwrite selected columns of one row, leaving the others untouched.

    Raises:
        KeyError: If a field is not a header of ``sheet_name``.
    """
    header_map = _header_map(workbook, sheet_name)
    sheet = workbook[sheet_name]
    for name, value in field_values.items():
        if name not in header_map:
            raise KeyError(f"Unknown {sheet_name} field: {name}")
        sheet.cell(row=row_index, column=header_map[name], value=value)


def delete_rows_where(workbook: Workbook, sheet_name: str, key_column: str, key_value: str) -> int:
    """Delete every row whose ``key_column`` equals ``key_value``.

    Returns:
        int: Number of rows removed.
    """
    header_map = _header_map(workbook, sheet_name)
    key_index = header_map[key_column] - 1
    sheet = workbook[sheet_name]
    matches = [
        row_idx
        for row_idx, row in enumerate(sheet.iter_rows(min_row=2, values_only=True), start=2)
        if row[key_index] is not None and str(row[key_index]) == str(key_value)
    ]
    # bottom-up keeps the remaining indices valid
    for row_idx in reversed(matches):
        sheet.delete_rows(row_idx)
    return len(matches)


def append_row(workbook: Workbook, sheet_name: str, values: Sequence[object]) -> None:
    workbook[sheet_name].append(list(values))


def read_row(workbook: Workbook, sheet_name: str, row_index: int) -> Tuple[object, ...]:
    """Values of row ``row_index`` in sheet column order."""
    header_map = _header_map(workbook, sheet_name)
    cells = workbook[sheet_name][row_index]
    return tuple(cells[header_map[column] - 1].value for column in SHEET_COLUMNS[sheet_name])


def serialize_item(record: ItemRow) -> List[object]:
    return [
        record.item_id,
        record.code,
        record.name,
        record.price,
        record.total_quantity,
        record.min_stock,
    ]


def serialize_invoice(record: InvoiceRow) -> List[object]:
    return [
        record.invoice_id,
        record.client_id,
        record.status.value,
        record.discount,
        record.vat_percentage,
        record.payment_method.value,
        record.deduct_from_stock,
        record.initial_payment,
        record.total_before_discount,
        record.total_amount,
        record.amount_settled,
        record.invoice_date,
        record.updated_at,
    ]


def serialize_invoice_line(record: InvoiceLineRow) -> List[object]:
    return [record.invoice_id, record.item_id, record.quantity, record.unit_price, record.is_free]


def serialize_settlement(record: SettlementRow) -> List[object]:
    return [
        record.settlement_id,
        record.invoice_id,
        record.amount,
        record.settlement_date,
        record.payment_method.value,
        record.reference_number,
        record.notes,
    ]


def _text(value: object) -> Optional[str]:
    return str(value) if value is not None else None


def deserialize_item(raw_row: Sequence[object]) -> ItemRow:
    """Convert raw ``Items`` cells into an :class:`ItemRow`.

    Numbers come back from Excel as ``int``/``float`` and are normalised to
    :class:`~decimal.Decimal`; identifiers and names are coerced to ``str``.
    """
    item_id, code, name, price, total_quantity, min_stock = raw_row
    return ItemRow(
        item_id=str(item_id),
        code=str(code) if code is not None else "",
        name=str(name) if name is not None else "",
        price=to_decimal(price),
        total_quantity=to_decimal(total_quantity),
        min_stock=to_decimal(min_stock),
    )


def deserialize_invoice(raw_row: Sequence[object]) -> InvoiceRow:
    (
        invoice_id,
        client_id,
        status,
        discount,
        vat_percentage,
        payment_method,
        deduct_from_stock,
        initial_payment,
        total_before_discount,
        total_amount,
        amount_settled,
        invoice_date,
        updated_at,
    ) = raw_row
    return InvoiceRow(
        invoice_id=str(invoice_id),
        client_id=str(client_id) if client_id is not None else "",
        status=InvoiceStatus(str(status)),
        discount=to_decimal(discount),
        vat_percentage=to_decimal(vat_percentage),
        payment_method=PaymentMethod(str(payment_method or PaymentMethod.CASH.value)),
        deduct_from_stock=to_flag(deduct_from_stock),
        initial_payment=to_decimal(initial_payment),
        total_before_discount=to_decimal(total_before_discount),
        total_amount=to_decimal(total_amount),
        amount_settled=to_decimal(amount_settled),
        invoice_date=_text(invoice_date),
        updated_at=_text(updated_at),
    )


def deserialize_invoice_line(raw_row: Sequence[object]) -> InvoiceLineRow:
    invoice_id, item_id, quantity, unit_price, is_free = raw_row
    return InvoiceLineRow(
        invoice_id=str(invoice_id),
        item_id=str(item_id),
        quantity=to_decimal(quantity),
        unit_price=to_decimal(unit_price),
        is_free=to_flag(is_free),
    )


def deserialize_settlement(raw_row: Sequence[object]) -> SettlementRow:
    settlement_id, invoice_id, amount, settlement_date, payment_method, reference_number, notes = raw_row
    return SettlementRow(
        settlement_id=str(settlement_id),
        invoice_id=str(invoice_id),
        amount=to_decimal(amount),
        settlement_date=str(settlement_date) if settlement_date is not None else "",
        payment_method=PaymentMethod(str(payment_method or PaymentMethod.CASH.value)),
        reference_number=_text(reference_number),
        notes=_text(notes),
    )


def next_identifier(prefix: str, existing: Iterable[str]) -> str:
    """Return ``prefix`` followed by one more than the highest numeric suffix."""
    highest = 0
    for value in existing:
        if value.startswith(prefix) and value[len(prefix):].isdigit():
            highest = max(highest, int(value[len(prefix):]))
    return f"{prefix}{highest + 1:05d}"


def item_record(row: ItemRow) -> ItemRecord:
    """Expose an ``Items`` row the way the item search reports it."""
    return ItemRecord(
        item_id=row.item_id,
        code=row.code,
        name=row.name,
        price=row.price,
        available=row.total_quantity,
        min_stock=row.min_stock,
        status=predict_status(row.total_quantity, row.min_stock).value,
    )


def _conflict(description: str) -> StoreError:
    log.warning("Workbook store rejected request: %s", description)
    return StoreError("400", description, status=400, category=ErrorCategory.CONFLICT)


def _not_found(description: str) -> StoreError:
    log.warning("Workbook store lookup failed: %s", description)
    return StoreError("404", description, status=404, category=ErrorCategory.UNKNOWN)


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class WorkbookInvoiceStore:
    """Invoice store persisted to an ``openpyxl`` workbook.

    Every successful write is saved to ``data_file`` immediately. Failed
    writes raise :class:`StoreError` before anything is modified.

    Args:
        data_file (Path): Workbook created by
            :func:`invoice_guard.setup_workbook.create_store_workbook`.

    Raises:
        FileNotFoundError: If ``data_file`` does not exist.
        ValueError: If the workbook lacks a required sheet or column.
    """

    def __init__(self, data_file: Path) -> None:
        self.data_file = Path(data_file).expanduser().resolve()
        self.workbook = open_workbook(self.data_file)
        ensure_schema(self.workbook)

    def _persist(self) -> None:
        save_workbook(self.workbook, self.data_file)

    def _items(self) -> Dict[str, ItemRow]:
        return {row.item_id: row for row in iter_items(self.workbook)}

    def _invoice_row(self, invoice_id: str) -> Tuple[int, InvoiceRow]:
        row_index = locate_row(self.workbook, INVOICES_SHEET, "InvoiceID", invoice_id)
        if row_index is None:
            raise _not_found(f"Invoice not found: {invoice_id}")
        return row_index, deserialize_invoice(read_row(self.workbook, INVOICES_SHEET, row_index))

    def _to_record(self, row: InvoiceRow) -> InvoiceRecord:
        items = self._items()
        lines = []
        for line in iter_invoice_lines(self.workbook, row.invoice_id):
            item = items.get(line.item_id)
            lines.append(
                InvoiceLine(
                    item_id=line.item_id,
                    quantity=line.quantity,
                    price=line.unit_price,
                    name=item.name if item else "",
                    code=item.code if item else "",
                    is_free=line.is_free,
                )
            )
        return InvoiceRecord(
            invoice_id=row.invoice_id,
            client_id=row.client_id,
            status=row.status,
            lines=tuple(lines),
            discount=row.discount,
            vat_percentage=row.vat_percentage,
            payment_method=row.payment_method,
            deduct_from_stock=row.deduct_from_stock,
            total_before_discount=row.total_before_discount,
            total_amount=row.total_amount,
            amount_settled=row.amount_settled,
            remaining_amount=row.total_amount - row.amount_settled,
            initial_payment=row.initial_payment,
            invoice_number=row.invoice_id,
            created_at=to_datetime(row.invoice_date),
            updated_at=to_datetime(row.updated_at),
        )

    # ------------------------------------------------------------------
    # Items
    # ------------------------------------------------------------------

    def fetch_items_by_query(self, search: str, page: int, page_size: int) -> ItemPage:
        """Case-insensitive substring search over item id, code and name."""
        if page < 0 or page_size <= 0:
            raise _conflict("Invalid page request")
        needle = (search or "").strip().lower()
        matches = [
            row
            for row in iter_items(self.workbook)
            if not needle
            or needle in row.item_id.lower()
            or needle in row.code.lower()
            or needle in row.name.lower()
        ]
        start = page * page_size
        items = tuple(item_record(row) for row in matches[start:start + page_size])
        total_pages = -(-len(matches) // page_size)
        log.debug("Item search %r matched %d item(s)", search, len(matches))
        return ItemPage(items=items, total_elements=len(matches), total_pages=total_pages)

    def adjust_stock(self, item_id: str, payload: Mapping[str, Any]) -> ItemRecord:
        """Set an item's on-hand quantity to ``payload['newQuantity']``."""
        row_index = locate_row(self.workbook, ITEMS_SHEET, "ItemID", item_id)
        if row_index is None:
            raise _not_found(f"Item not found: {item_id}")
        new_quantity = to_decimal(payload.get("newQuantity"), None)
        if new_quantity is None or new_quantity < ZERO:
            raise _conflict("New quantity must be zero or positive")
        update_row(self.workbook, ITEMS_SHEET, row_index, {"TotalQuantity": new_quantity})
        self._persist()
        row = deserialize_item(read_row(self.workbook, ITEMS_SHEET, row_index))
        log.info(
            "Stock for item %s set to %s (%s)",
            item_id,
            new_quantity,
            payload.get("reason"),
        )
        return item_record(row)

    # ------------------------------------------------------------------
    # Invoices
    # ------------------------------------------------------------------

    def get_invoice(self, invoice_id: str) -> InvoiceRecord:
        _, row = self._invoice_row(invoice_id)
        return self._to_record(row)

    def list_invoices(self) -> List[InvoiceRecord]:
        return [self._to_record(row) for row in iter_invoices(self.workbook)]

    def persist_invoice(self, payload: Mapping[str, Any]) -> InvoiceRecord:
        """Create or update an invoice from a backend-shaped payload.

        Stock is checked against what is on hand plus what this invoice
        already holds, so reducing a line on edit never fails for stock.
        Free lines consume stock like any other line.

        On update ``initialPayment`` is the total paid on the invoice, as the
        editor prefills it with ``amountSettled``. Settlements already
        recorded are never counted twice; the row keeps only the part not
        covered by them.

        Raises:
            StoreError: If an item or the invoice is unknown, stock or the
                balance would go negative, or the invoice was deleted.
        """
        invoice_id = payload.get("invoiceId")
        existing: Optional[InvoiceRow] = None
        existing_index: Optional[int] = None
        if invoice_id is not None:
            invoice_id = str(invoice_id)
            existing_index, existing = self._invoice_row(invoice_id)
            if existing.status is InvoiceStatus.DELETED:
                raise _conflict(f"Invoice {invoice_id} is deleted and cannot be edited")

        try:
            status = InvoiceStatus(str(payload.get("status", InvoiceStatus.PENDING.value)).upper())
            payment_method = PaymentMethod(payload.get("paymentMethod") or PaymentMethod.CASH.value)
        except ValueError as exc:
            raise _conflict(str(exc)) from exc

        client_id = payload.get("clientId")
        entries = payload.get("items") or ()
        if not client_id or not entries:
            raise _conflict("Client and at least one item are required")

        deduct = to_flag(payload.get("deductFromStock"))
        new_lines = [
            InvoiceLineRow(
                invoice_id=invoice_id or "",
                item_id=str(entry.get("itemId")),
                quantity=to_decimal(entry.get("quantity")),
                unit_price=to_decimal(entry.get("unitPrice")),
                is_free=to_flag(entry.get("isFree")),
            )
            for entry in entries
        ]

        held: Dict[str, Decimal] = {}
        if existing is not None and existing.deduct_from_stock:
            for line in iter_invoice_lines(self.workbook, invoice_id):
                held[line.item_id] = held.get(line.item_id, ZERO) + line.quantity

        requested: Dict[str, Decimal] = {}
        for line in new_lines:
            requested[line.item_id] = requested.get(line.item_id, ZERO) + line.quantity

        items = self._items()
        for item_id, quantity in requested.items():
            item = items.get(item_id)
            if item is None:
                raise _not_found(f"Item not found: {item_id}")
            available = item.total_quantity + held.get(item_id, ZERO)
            if deduct and quantity > available:
                raise _conflict(
                    f"Insufficient stock for {item.name or item_id}. "
                    f"Available: {available}, Requested: {quantity}"
                )

        discount = to_decimal(payload.get("discountAmount"))
        total_before_discount = sum((line.quantity * line.unit_price for line in new_lines), ZERO)
        chargeable = sum(
            (line.quantity * line.unit_price for line in new_lines if not line.is_free), ZERO
        )
        total_amount = chargeable - discount
        if total_amount < ZERO:
            raise _conflict("Discount cannot exceed the invoice subtotal")

        initial_payment = to_decimal(payload.get("initialPayment"))
        settled = initial_payment
        if existing is not None:
            # on update initialPayment carries the total settled so far
            from_settlements = sum(
                (row.amount for row in iter_settlements(self.workbook, invoice_id)), ZERO
            )
            settled = max(initial_payment, from_settlements)
            initial_payment = settled - from_settlements
        if settled > total_amount:
            raise _conflict(
                f"Amount settled ({format_money(settled)}) cannot exceed "
                f"invoice total ({format_money(total_amount)})"
            )

        # validation passed; apply stock movements
        for item_id in set(held) | set(requested):
            row_index = locate_row(self.workbook, ITEMS_SHEET, "ItemID", item_id)
            if row_index is None:
                continue
            item = items[item_id]
            new_quantity = item.total_quantity + held.get(item_id, ZERO)
            if deduct:
                new_quantity -= requested.get(item_id, ZERO)
            if new_quantity != item.total_quantity:
                update_row(self.workbook, ITEMS_SHEET, row_index, {"TotalQuantity": new_quantity})

        now = datetime.now(UTC).isoformat()
        if invoice_id is None:
            invoice_id = next_identifier(
                INVOICE_ID_PREFIX, (row.invoice_id for row in iter_invoices(self.workbook))
            )
        else:
            delete_rows_where(self.workbook, INVOICE_LINES_SHEET, "InvoiceID", invoice_id)

        for line in new_lines:
            append_row(
                self.workbook,
                INVOICE_LINES_SHEET,
                serialize_invoice_line(
                    InvoiceLineRow(invoice_id, line.item_id, line.quantity, line.unit_price, line.is_free)
                ),
            )

        row = InvoiceRow(
            invoice_id=invoice_id,
            client_id=str(client_id),
            status=status,
            discount=discount,
            vat_percentage=to_decimal(payload.get("vatPercentage")),
            payment_method=payment_method,
            deduct_from_stock=deduct,
            initial_payment=initial_payment,
            total_before_discount=total_before_discount,
            total_amount=total_amount,
            amount_settled=settled,
            invoice_date=payload.get("invoiceDate") or (existing.invoice_date if existing else now),
            updated_at=now,
        )
        if existing_index is None:
            append_row(self.workbook, INVOICES_SHEET, serialize_invoice(row))
        else:
            update_row(
                self.workbook,
                INVOICES_SHEET,
                existing_index,
                dict(zip(SHEET_COLUMNS[INVOICES_SHEET], serialize_invoice(row))),
            )

        self._persist()
        log.info(
            "Invoice %s %s: total=%s settled=%s status=%s",
            invoice_id,
            "updated" if existing is not None else "created",
            total_amount,
            settled,
            status.value,
        )
        return self._to_record(row)

    # ------------------------------------------------------------------
    # Settlements
    # ------------------------------------------------------------------

    def list_settlements(self, invoice_id: str) -> List[SettlementRecord]:
        return [
            SettlementRecord(
                settlement_id=row.settlement_id,
                invoice_id=row.invoice_id,
                amount=row.amount,
                settlement_date=to_datetime(row.settlement_date) or datetime.now(UTC),
                payment_method=row.payment_method,
                reference_number=row.reference_number,
                notes=row.notes,
            )
            for row in iter_settlements(self.workbook, invoice_id)
        ]

    def persist_settlement(self, payload: Mapping[str, Any]) -> SettlementRecord:
        """Record a settlement and recompute the invoice balance.

        A settlement that clears the balance marks the invoice ``PAID``; a
        partial settlement on a ``PENDING`` invoice moves it to ``DEPT``.

        Raises:
            StoreError: If the invoice is unknown or closed, or the amount is
                not within ``(0, remaining]``.
        """
        invoice_id = str(payload.get("invoiceId"))
        row_index, invoice = self._invoice_row(invoice_id)
        remaining = invoice.total_amount - invoice.amount_settled
        if invoice.status in (InvoiceStatus.PAID, InvoiceStatus.DELETED) or remaining <= ZERO:
            raise _conflict(f"Invoice {invoice_id} has no remaining balance to settle")

        amount = to_decimal(payload.get("settlementAmount"))
        if amount <= ZERO:
            raise _conflict("Settlement amount must be greater than 0")
        if amount > remaining:
            raise _conflict(
                f"Settlement amount ({format_money(amount)}) exceeds remaining balance "
                f"({format_money(remaining)})"
            )

        try:
            payment_method = PaymentMethod(payload.get("paymentMethod") or PaymentMethod.CASH.value)
        except ValueError as exc:
            raise _conflict(str(exc)) from exc

        settlement = SettlementRow(
            settlement_id=next_identifier(
                SETTLEMENT_ID_PREFIX,
                (row.settlement_id for row in iter_settlements(self.workbook)),
            ),
            invoice_id=invoice_id,
            amount=amount,
            settlement_date=str(payload.get("settlementDate") or datetime.now(UTC).isoformat()),
            payment_method=payment_method,
            reference_number=payload.get("referenceNumber") or None,
            notes=payload.get("notes") or None,
        )
        append_row(self.workbook, SETTLEMENTS_SHEET, serialize_settlement(settlement))

        settled = invoice.amount_settled + amount
        remaining = invoice.total_amount - settled
        status = invoice.status
        if remaining == ZERO:
            status = InvoiceStatus.PAID
        elif status is InvoiceStatus.PENDING:
            status = InvoiceStatus.DEPT
        update_row(
            self.workbook,
            INVOICES_SHEET,
            row_index,
            {
                "AmountSettled": settled,
                "Status": status.value,
                "UpdatedAt": datetime.now(UTC).isoformat(),
            },
        )
        self._persist()
        log.info(
            "Settlement %s of %s recorded for invoice %s; remaining=%s",
            settlement.settlement_id,
            amount,
            invoice_id,
            remaining,
        )
        return SettlementRecord(
            settlement_id=settlement.settlement_id,
            invoice_id=invoice_id,
            amount=amount,
            settlement_date=to_datetime(settlement.settlement_date) or datetime.now(UTC),
            payment_method=payment_method,
            reference_number=settlement.reference_number,
            notes=settlement.notes,
            invoice_remaining_amount=remaining,
            invoice_status=status,
        )

    def delete_settlement(self, settlement_id: str) -> None:
        """Remove a settlement and give its amount back to the invoice balance.

        A ``PAID`` invoice that has a balance again returns to ``DEPT``.
        """
        row_index = locate_row(self.workbook, SETTLEMENTS_SHEET, "SettlementID", settlement_id)
        if row_index is None:
            raise _not_found(f"Settlement not found: {settlement_id}")
        settlement = deserialize_settlement(read_row(self.workbook, SETTLEMENTS_SHEET, row_index))
        invoice_index, invoice = self._invoice_row(settlement.invoice_id)

        self.workbook[SETTLEMENTS_SHEET].delete_rows(row_index)
        settled = invoice.amount_settled - settlement.amount
        status = invoice.status
        if status is InvoiceStatus.PAID and invoice.total_amount - settled > ZERO:
            status = InvoiceStatus.DEPT
        update_row(
            self.workbook,
            INVOICES_SHEET,
            invoice_index,
            {
                "AmountSettled": settled,
                "Status": status.value,
                "UpdatedAt": datetime.now(UTC).isoformat(),
            },
        )
        self._persist()
        log.info(
            "Settlement %s deleted; invoice %s settled=%s status=%s",
            settlement_id,
            invoice.invoice_id,
            settled,
            status.value,
        )


__all__ = [
    "SHEET_COLUMNS",
    "ItemRow",
    "InvoiceRow",
    "InvoiceLineRow",
    "SettlementRow",
    "open_workbook",
    "save_workbook",
    "ensure_schema",
    "iter_items",
    "iter_invoices",
    "iter_invoice_lines",
    "iter_settlements",
    "locate_row",
    "update_row",
    "delete_rows_where",
    "serialize_item",
    "deserialize_item",
    "next_identifier",
    "item_record",
    "WorkbookInvoiceStore",
]
