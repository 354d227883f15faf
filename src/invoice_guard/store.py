"""Invoice store interface and the payload/response translation around it.

The rule engine never talks to a backend directly. It depends on the
:class:`InvoiceStore` protocol below, which both the REST client
(:mod:`invoice_guard.http_store`) and the workbook store
(:mod:`invoice_guard.workbook_store`) implement. Payloads and responses use
the backend's camelCase field names; the helpers here convert between them
and the domain records.
"""

from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Mapping, Optional, Protocol

from . import log
from .constants import ZERO, InvoiceStatus, PaymentMethod
from .errors import ErrorCategory, StoreError
from .line_items import StockLookup, stock_entry_for
from .models import (
    InvoiceDraft,
    InvoiceLine,
    InvoiceRecord,
    ItemPage,
    ItemRecord,
    SettlementDraft,
    SettlementRecord,
)


# Keys the backend has used for an item's available quantity, in priority order.
STOCK_QUANTITY_KEYS = (
    "total_quantity",
    "totalQuantity",
    "currentStock",
    "current_stock",
    "availableQuantity",
    "available_quantity",
)

# Backend messages that say nothing useful to the user.
GENERIC_ERROR_MESSAGES = ("unexpected error occurred.",)
GENERIC_ERROR_PREFIXES = ("http failure response",)

# Settlement detail fields, snake_case name to payload key.
SETTLEMENT_DETAIL_KEYS = {
    "card_last4": "cardLast4",
    "card_type": "cardType",
    "bank_name": "bankName",
    "account_last4": "accountLast4",
    "check_number": "checkNumber",
    "check_date": "checkDate",
    "transaction_id": "transactionId",
    "phone_number": "phoneNumber",
}


class InvoiceStore(Protocol):
    """Operations the rule engine needs from the persistence layer."""

    def fetch_items_by_query(self, search: str, page: int, page_size: int) -> ItemPage:
        ...

    def persist_invoice(self, payload: Mapping[str, Any]) -> InvoiceRecord:
        ...

    def persist_settlement(self, payload: Mapping[str, Any]) -> SettlementRecord:
        ...

    def get_invoice(self, invoice_id: str) -> InvoiceRecord:
        ...

    def list_invoices(self) -> List[InvoiceRecord]:
        ...

    def delete_settlement(self, settlement_id: str) -> None:
        ...

    def adjust_stock(self, item_id: str, payload: Mapping[str, Any]) -> ItemRecord:
        ...


# ---------------------------------------------------------------------------
# Value coercion
# ---------------------------------------------------------------------------


def to_decimal(value: Any, default: Optional[Decimal] = ZERO) -> Optional[Decimal]:
    """Convert a JSON or worksheet value to :class:`Decimal`.

    Floats go through ``str`` so that ``0.1`` stays ``Decimal("0.1")``.
    Empty values and unparsable text yield ``default``.
    """
    if value is None or value == "":
        return default
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        return Decimal(int(value))
    if isinstance(value, float):
        return Decimal(str(value))
    try:
        return Decimal(str(value).strip())
    except InvalidOperation:
        log.warning("Unparsable numeric value %r", value)
        return default


def to_datetime(value: Any) -> Optional[datetime]:
    """Parse an ISO 8601 timestamp; naive values are taken as UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value).strip())
        except ValueError:
            log.warning("Unparsable timestamp %r", value)
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def to_flag(value: Any) -> bool:
    """Interpret the backend's ``'Y'``/``'N'`` flags and plain booleans."""
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    return str(value).strip().upper() in ("Y", "YES", "TRUE", "1")


def _optional_str(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)


# ---------------------------------------------------------------------------
# Payloads
# ---------------------------------------------------------------------------


def build_invoice_payload(draft: InvoiceDraft) -> Dict[str, Any]:
    """Translate ``draft`` into the backend's invoice request body.

    ``invoiceId`` is only present for existing invoices; its presence tells
    the store to update rather than create. Monetary values stay
    :class:`Decimal` and are encoded by the store.
    """
    invoice_date = draft.invoice_date or datetime.now(UTC)
    payload: Dict[str, Any] = {
        "clientId": draft.client_id,
        "discountAmount": draft.discount,
        "vatPercentage": draft.vat_percentage,
        "initialPayment": draft.initial_payment,
        "deductFromStock": "Y" if draft.deduct_from_stock else "N",
        "paymentMethod": draft.payment_method.value,
        "status": draft.status.value,
        "invoiceDate": invoice_date.isoformat(),
        "items": [
            {
                "itemId": line.item_id,
                "quantity": line.quantity,
                "unitPrice": line.price,
                "isFree": line.is_free,
            }
            for line in draft.lines
        ],
    }
    if draft.invoice_id is not None:
        payload["invoiceId"] = draft.invoice_id
    return payload


def parse_invoice_draft(raw: Mapping[str, Any]) -> InvoiceDraft:
    """Build an :class:`InvoiceDraft` from a payload-shaped mapping.

    Accepts the same field names :func:`build_invoice_payload` produces, plus
    optional ``name``/``code`` on each item for readable messages.

    Raises:
        ValueError: On unknown statuses or payment methods and on negative
            amounts.
    """
    lines = tuple(
        InvoiceLine(
            item_id=_optional_str(entry.get("itemId")),
            quantity=to_decimal(entry.get("quantity")),
            price=to_decimal(entry.get("unitPrice")),
            name=str(entry.get("name") or entry.get("itemName") or ""),
            code=str(entry.get("code") or entry.get("itemCode") or ""),
            is_free=to_flag(entry.get("isFree")),
        )
        for entry in raw.get("items") or ()
    )
    deduct = raw.get("deductFromStock")
    return InvoiceDraft(
        client_id=_optional_str(raw.get("clientId")),
        lines=lines,
        status=InvoiceStatus(str(raw.get("status") or InvoiceStatus.PENDING.value).upper()),
        discount=to_decimal(raw.get("discountAmount")),
        vat_percentage=to_decimal(raw.get("vatPercentage")),
        initial_payment=to_decimal(raw.get("initialPayment")),
        payment_method=PaymentMethod(raw.get("paymentMethod") or PaymentMethod.CASH.value),
        deduct_from_stock=True if deduct is None else to_flag(deduct),
        invoice_id=_optional_str(raw.get("invoiceId")),
        invoice_date=to_datetime(raw.get("invoiceDate")),
    )


def build_settlement_payload(draft: SettlementDraft) -> Dict[str, Any]:
    """Translate ``draft`` into the backend's settlement request body.

    Only the method-specific fields that were filled in are sent.
    """
    settlement_date = draft.settlement_date or datetime.now(UTC)
    payload: Dict[str, Any] = {
        "invoiceId": draft.invoice_id,
        "settlementAmount": draft.amount,
        "settlementDate": settlement_date.isoformat(),
        "paymentMethod": draft.payment_method.value,
        "referenceNumber": draft.reference_number,
        "notes": draft.notes,
    }
    for name, key in SETTLEMENT_DETAIL_KEYS.items():
        value = (draft.details.get(name) or "").strip()
        if value:
            payload[key] = value
    return payload


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------


def stock_quantity(raw: Mapping[str, Any]) -> Optional[Decimal]:
    """Return the first stock figure found in ``raw``, or ``None``."""
    for key in STOCK_QUANTITY_KEYS:
        value = raw.get(key)
        if value is not None and value != "":
            return to_decimal(value, None)
    return None


def parse_item(raw: Mapping[str, Any]) -> ItemRecord:
    """Build an :class:`ItemRecord` from one item search result."""
    price = raw.get("final_price", raw.get("finalPrice", raw.get("price")))
    min_stock = raw.get("min_stock", raw.get("minStock"))
    return ItemRecord(
        item_id=str(raw.get("id", raw.get("itemId"))),
        code=str(raw.get("code") or ""),
        name=str(raw.get("name") or ""),
        price=to_decimal(price),
        available=stock_quantity(raw),
        min_stock=to_decimal(min_stock),
        status=_optional_str(raw.get("status")),
    )


def parse_item_page(raw: Mapping[str, Any]) -> ItemPage:
    """Build an :class:`ItemPage` from the item search ``responseData``."""
    items = tuple(parse_item(entry) for entry in raw.get("data") or ())
    return ItemPage(
        items=items,
        total_elements=int(raw.get("totalElements", len(items))),
        total_pages=int(raw.get("totalPages", 1 if items else 0)),
    )


def parse_invoice_line(raw: Mapping[str, Any]) -> InvoiceLine:
    return InvoiceLine(
        item_id=_optional_str(raw.get("itemId")),
        quantity=to_decimal(raw.get("quantity")),
        price=to_decimal(raw.get("unitPrice")),
        name=str(raw.get("itemName") or ""),
        code=str(raw.get("itemCode") or ""),
        is_free=to_flag(raw.get("isFree")),
    )


def parse_invoice(raw: Mapping[str, Any]) -> InvoiceRecord:
    """Build an :class:`InvoiceRecord` from an invoice ``responseData``.

    When the backend omits ``remainingAmount`` it is derived from the total
    and the settled amount.
    """
    total_amount = to_decimal(raw.get("totalAmount"))
    amount_settled = to_decimal(raw.get("amountSettled"))
    remaining = to_decimal(raw.get("remainingAmount"), None)
    if remaining is None:
        remaining = total_amount - amount_settled
    return InvoiceRecord(
        invoice_id=str(raw.get("invoiceId", raw.get("id"))),
        client_id=str(raw.get("clientId") or ""),
        status=InvoiceStatus(str(raw.get("status", InvoiceStatus.PENDING.value)).upper()),
        lines=tuple(parse_invoice_line(entry) for entry in raw.get("items") or ()),
        discount=to_decimal(raw.get("discountAmount")),
        vat_percentage=to_decimal(raw.get("vatPercentage")),
        payment_method=PaymentMethod(raw.get("paymentMethod") or PaymentMethod.CASH.value),
        deduct_from_stock=to_flag(raw.get("deductFromStock")),
        total_before_discount=to_decimal(raw.get("totalAmountBeforeDiscount", raw.get("totalAmount"))),
        total_amount=total_amount,
        amount_settled=amount_settled,
        remaining_amount=remaining,
        initial_payment=to_decimal(raw.get("initialPayment")),
        invoice_number=_optional_str(raw.get("invoiceNumber")),
        client_name=_optional_str(raw.get("clientName")),
        created_at=to_datetime(raw.get("invoiceDate", raw.get("createdAt"))),
        updated_at=to_datetime(raw.get("updatedAt")),
    )


def parse_settlement(raw: Mapping[str, Any]) -> SettlementRecord:
    """Build a :class:`SettlementRecord` from a settlement ``responseData``."""
    invoice_status = raw.get("invoiceStatus")
    return SettlementRecord(
        settlement_id=str(raw.get("settlementId", raw.get("id"))),
        invoice_id=str(raw.get("invoiceId")),
        amount=to_decimal(raw.get("settlementAmount", raw.get("amount"))),
        settlement_date=to_datetime(raw.get("settlementDate")) or datetime.now(UTC),
        payment_method=PaymentMethod(raw.get("paymentMethod") or PaymentMethod.CASH.value),
        reference_number=_optional_str(raw.get("referenceNumber")),
        notes=_optional_str(raw.get("notes")),
        invoice_remaining_amount=to_decimal(raw.get("invoiceRemainingAmount"), None),
        invoice_status=InvoiceStatus(str(invoice_status).upper()) if invoice_status else None,
    )


# ---------------------------------------------------------------------------
# Error messaging
# ---------------------------------------------------------------------------


def is_generic_message(message: str) -> bool:
    lowered = message.strip().lower()
    return lowered in GENERIC_ERROR_MESSAGES or lowered.startswith(GENERIC_ERROR_PREFIXES)


def local_stock_message(draft: InvoiceDraft, stock: Optional[StockLookup]) -> Optional[str]:
    """Explain a failed save using the local stock snapshot, if it can.

    The first line that exceeds its known stock, or whose stock is unknown,
    is reported. Returns ``None`` when the draft does not deduct from stock
    or every line fits.
    """
    if not draft.deduct_from_stock:
        return None
    for line in draft.lines:
        entry = stock_entry_for(line, stock)
        if entry is None:
            return (
                f'Unable to verify stock for "{line.label}". Please ensure the quantity '
                f"{line.quantity} is within available inventory."
            )
        if line.quantity > entry.available:
            return (
                f'Unable to save invoice: "{line.label}" exceeds available stock '
                f"(requested {line.quantity}, available {entry.available})."
            )
    return None


def describe_store_error(
    error: StoreError,
    draft: Optional[InvoiceDraft] = None,
    stock: Optional[StockLookup] = None,
) -> str:
    """Pick the message shown to the user when persisting an invoice fails.

    The store's own description is used verbatim unless it is one of the
    backend's generic messages. Otherwise a local stock explanation is
    preferred, then a server-error hint for HTTP 500, then a stock-validation
    hint when the draft has lines, then a plain retry message.
    """
    description = (error.description or "").strip()
    if description and not is_generic_message(description):
        return description

    if error.category is ErrorCategory.AUTH:
        return "You are not authorized to save this invoice. Please sign in again."

    if draft is not None:
        stock_message = local_stock_message(draft, stock)
        if stock_message:
            return stock_message

    if error.status == 500:
        return "Server error while saving invoice. Please review item quantities or try again later."

    if draft is not None and draft.lines:
        return "Unable to create invoice due to stock validation. Please review item quantities."

    return "Failed to save invoice. Please try again."


def describe_settlement_error(error: StoreError) -> str:
    """Message shown when persisting a settlement fails."""
    description = (error.description or "").strip()
    if description and not is_generic_message(description):
        return description
    return "Failed to create settlement"


__all__ = [
    "STOCK_QUANTITY_KEYS",
    "InvoiceStore",
    "to_decimal",
    "to_datetime",
    "to_flag",
    "build_invoice_payload",
    "parse_invoice_draft",
    "build_settlement_payload",
    "stock_quantity",
    "parse_item",
    "parse_item_page",
    "parse_invoice_line",
    "parse_invoice",
    "parse_settlement",
    "is_generic_message",
    "local_stock_message",
    "describe_store_error",
    "describe_settlement_error",
]
