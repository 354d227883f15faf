"""Enumerations and policy constants shared across invoice-guard modules.

Centralises the identifiers exchanged with the inventory backend so that the
rule engine, the store adapters, and the CLI rely on a single source of truth
for statuses, payment methods, and stock levels.
"""

from __future__ import annotations

from decimal import Decimal
from enum import Enum


# Smallest invoice total (after discount) the business accepts.
MINIMUM_INVOICE_AMOUNT = Decimal("10.00")

# Relative quantity change, in percent, above which an edit is flagged.
LARGE_ADJUSTMENT_PERCENT = Decimal("20")

# Envelope code the backend returns for successful calls.
SUCCESS_ERROR_CODE = "000000"

CENT = Decimal("0.01")
ZERO = Decimal("0")


class InvoiceStatus(str, Enum):
    """Enumerate the lifecycle states of an invoice."""

    PENDING = "PENDING"
    DEPT = "DEPT"
    PAID = "PAID"
    DELETED = "DELETED"


class PaymentMethod(str, Enum):
    """Enumerate the payment mechanisms accepted for invoices and settlements."""

    CASH = "cash"
    CARD = "card"
    TRANSFER = "transfer"
    CHECK = "check"
    MOBILE_MONEY = "money"


class CardType(str, Enum):
    """Card networks accepted for card settlements."""

    VISA = "visa"
    MASTERCARD = "mastercard"
    AMEX = "amex"
    DISCOVER = "discover"
    OTHER = "other"


class StockLevel(str, Enum):
    """Outcome of comparing a requested quantity with the known stock."""

    SUFFICIENT = "SUFFICIENT"
    INSUFFICIENT = "INSUFFICIENT"
    WILL_GO_LOW = "WILL_GO_LOW"
    WILL_GO_OUT_OF_STOCK = "WILL_GO_OUT_OF_STOCK"
    UNVERIFIABLE = "UNVERIFIABLE"


class StockStatus(str, Enum):
    """Stock status an item carries in the inventory backend."""

    IN_STOCK = "IN_STOCK"
    LOW_STOCK = "LOW_STOCK"
    OUT_OF_STOCK = "OUT_OF_STOCK"


class AdjustmentReason(str, Enum):
    """Reasons accepted for a manual stock adjustment."""

    PHYSICAL_COUNT = "PHYSICAL_COUNT"
    PURCHASE = "PURCHASE"
    CUSTOMER_RETURN = "CUSTOMER_RETURN"
    SUPPLIER_RETURN = "SUPPLIER_RETURN"
    DAMAGED = "DAMAGED"
    THEFT_LOSS = "THEFT_LOSS"
    EXPIRED_DISPOSAL = "EXPIRED_DISPOSAL"
    CORRECTION = "CORRECTION"


class PromptKind(str, Enum):
    """Kinds of advisory confirmation, listed in presentation priority."""

    PRICE_CHANGE = "PRICE_CHANGE"
    OUT_OF_STOCK = "OUT_OF_STOCK"
    LOW_STOCK = "LOW_STOCK"
    UNVERIFIABLE_STOCK = "UNVERIFIABLE_STOCK"
    LARGE_ADJUSTMENT = "LARGE_ADJUSTMENT"
    STATUS_CHANGE = "STATUS_CHANGE"


class SheetName(str, Enum):
    """Enumerate the worksheet names managed by the workbook store."""

    ITEMS = "Items"
    INVOICES = "Invoices"
    INVOICE_LINES = "InvoiceLines"
    SETTLEMENTS = "Settlements"


__all__ = [
    "MINIMUM_INVOICE_AMOUNT",
    "LARGE_ADJUSTMENT_PERCENT",
    "SUCCESS_ERROR_CODE",
    "CENT",
    "ZERO",
    "InvoiceStatus",
    "PaymentMethod",
    "CardType",
    "StockLevel",
    "StockStatus",
    "AdjustmentReason",
    "PromptKind",
    "SheetName",
]
