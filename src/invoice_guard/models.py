"""Domain records exchanged between the rule engine and the invoice store.

Drafts (``InvoiceDraft``, ``SettlementDraft``) are owned by an editing
session and are never mutated by the guards. Records (``InvoiceRecord``,
``SettlementRecord``, ``ItemRecord``) describe what the store reported at
fetch time. Snapshots (``BaselineSnapshot``, ``StockEntry``) are derived,
read-only views captured for validation.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Dict, Mapping, Optional, Tuple

from .constants import ZERO, InvoiceStatus, PaymentMethod, StockLevel


@dataclass(frozen=True)
class InvoiceLine:
    """One item entry on an invoice."""

    item_id: Optional[str]
    quantity: Decimal
    price: Decimal
    name: str = ""
    code: str = ""
    is_free: bool = False

    def __post_init__(self) -> None:
        if self.quantity < ZERO:
            raise ValueError("Line quantity must be zero or positive")
        if self.price < ZERO:
            raise ValueError("Line price must be zero or positive")

    @property
    def label(self) -> str:
        """Human readable name used in messages."""
        return self.name or self.code or self.item_id or "Selected item"


@dataclass(frozen=True)
class InvoiceDraft:
    """Invoice as edited in the current session, before it is persisted."""

    client_id: Optional[str]
    lines: Tuple[InvoiceLine, ...]
    status: InvoiceStatus = InvoiceStatus.PENDING
    discount: Decimal = ZERO
    vat_percentage: Decimal = ZERO
    initial_payment: Decimal = ZERO
    payment_method: PaymentMethod = PaymentMethod.CASH
    deduct_from_stock: bool = True
    invoice_id: Optional[str] = None
    invoice_date: Optional[datetime] = None

    def __post_init__(self) -> None:
        if self.discount < ZERO:
            raise ValueError("Discount must be zero or positive")
        if self.initial_payment < ZERO:
            raise ValueError("Initial payment must be zero or positive")

    @property
    def is_new(self) -> bool:
        return self.invoice_id is None


@dataclass(frozen=True)
class InvoiceRecord:
    """Invoice as reported by the store, including backend aggregates."""

    invoice_id: str
    client_id: str
    status: InvoiceStatus
    lines: Tuple[InvoiceLine, ...]
    discount: Decimal
    vat_percentage: Decimal
    payment_method: PaymentMethod
    deduct_from_stock: bool
    total_before_discount: Decimal
    total_amount: Decimal
    amount_settled: Decimal
    remaining_amount: Decimal
    initial_payment: Decimal = ZERO
    invoice_number: Optional[str] = None
    client_name: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass(frozen=True)
class BaselineLine:
    """Quantity and price a line had when its invoice was loaded."""

    quantity: Decimal
    price: Decimal


@dataclass(frozen=True)
class BaselineSnapshot:
    """Immutable capture of an existing invoice taken once at load time."""

    invoice_id: str
    status: InvoiceStatus
    lines: Mapping[str, BaselineLine] = field(default_factory=dict)

    @classmethod
    def capture(cls, record: InvoiceRecord) -> "BaselineSnapshot":
        """Build the baseline for ``record``, keyed by item reference.

        Lines without an item reference cannot be matched later and are
        skipped. When an item appears on several lines the first occurrence
        wins.
        """
        lines: Dict[str, BaselineLine] = {}
        for line in record.lines:
            if line.item_id is None or line.item_id in lines:
                continue
            lines[line.item_id] = BaselineLine(quantity=line.quantity, price=line.price)
        return cls(invoice_id=record.invoice_id, status=record.status, lines=lines)

    def get(self, item_id: Optional[str]) -> Optional[BaselineLine]:
        if item_id is None:
            return None
        return self.lines.get(item_id)


@dataclass(frozen=True)
class StockEntry:
    """Best-known stock figures for one item."""

    item_id: str
    available: Decimal
    min_stock: Decimal = ZERO
    code: str = ""
    name: str = ""


@dataclass(frozen=True)
class ItemRecord:
    """Item row returned by the store's item search."""

    item_id: str
    code: str
    name: str
    price: Decimal
    available: Optional[Decimal]
    min_stock: Decimal = ZERO
    status: Optional[str] = None


@dataclass(frozen=True)
class ItemPage:
    """One page of an item search."""

    items: Tuple[ItemRecord, ...]
    total_elements: int
    total_pages: int


@dataclass(frozen=True)
class PriceChange:
    """A line whose price differs from its baseline price."""

    item_label: str
    original_price: Decimal
    new_price: Decimal


@dataclass(frozen=True)
class QuantityIncrease:
    """A line whose quantity exceeds its baseline quantity."""

    item_label: str
    original: Decimal
    requested: Decimal


@dataclass(frozen=True)
class StockCheck:
    """Classification of one line against the stock snapshot."""

    line: InvoiceLine
    level: StockLevel
    available: Optional[Decimal] = None
    min_stock: Decimal = ZERO

    @property
    def remaining_after(self) -> Optional[Decimal]:
        if self.available is None:
            return None
        return self.available - self.line.quantity


@dataclass(frozen=True)
class SettlementDraft:
    """Settlement being entered against an invoice."""

    invoice_id: Optional[str]
    amount: Decimal
    payment_method: PaymentMethod = PaymentMethod.CASH
    settlement_date: Optional[datetime] = None
    reference_number: Optional[str] = None
    notes: Optional[str] = None
    details: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class SettlementRecord:
    """Settlement accepted by the store."""

    settlement_id: str
    invoice_id: str
    amount: Decimal
    settlement_date: datetime
    payment_method: PaymentMethod
    reference_number: Optional[str] = None
    notes: Optional[str] = None
    invoice_remaining_amount: Optional[Decimal] = None
    invoice_status: Optional[InvoiceStatus] = None


__all__ = [
    "InvoiceLine",
    "InvoiceDraft",
    "InvoiceRecord",
    "BaselineLine",
    "BaselineSnapshot",
    "StockEntry",
    "ItemRecord",
    "ItemPage",
    "PriceChange",
    "QuantityIncrease",
    "StockCheck",
    "SettlementDraft",
    "SettlementRecord",
]
