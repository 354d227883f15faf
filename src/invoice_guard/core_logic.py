"""Workflow layer for invoice-guard.

This module wires the pure guards to an :class:`~invoice_guard.store.InvoiceStore`.
Each workflow loads what it needs from the store, runs the matching guard,
asks for confirmation when the guard requires it, and only then issues the
persist call. A rejected or declined attempt never reaches the store, and a
failed persist leaves the caller's draft untouched.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from . import log
from .config import BACKEND_HTTP, BACKEND_WORKBOOK, Settings, StoreSettings, load_settings
from .errors import ConfirmationDeclined, MissingReference, StoreError
from .http_store import HttpInvoiceStore
from .models import (
    BaselineSnapshot,
    InvoiceDraft,
    InvoiceRecord,
    ItemPage,
    ItemRecord,
    SettlementDraft,
    SettlementRecord,
)
from .outcomes import Blocked, ConfirmCallback, NeedsConfirmation, Outcome, resolve
from .save_guard import evaluate
from .settlement_guard import evaluate_settlement, is_settleable, reconcile_balance
from .stock_adjustment import StockAdjustment, build_adjustment_payload, evaluate_adjustment
from .stock_cache import DEFAULT_PAGE_SIZE, StockCache
from .store import (
    InvoiceStore,
    build_invoice_payload,
    build_settlement_payload,
    describe_settlement_error,
    describe_store_error,
)
from .workbook_store import WorkbookInvoiceStore


@dataclass(frozen=True)
class RuntimeContext:
    """Container for settings, the store, and the stock cache used by workflows."""

    settings: Settings
    store: InvoiceStore
    stock: StockCache = field(default_factory=StockCache, repr=False, compare=False)


@dataclass(frozen=True)
class OpenedInvoice:
    """An existing invoice loaded for editing, with its baseline."""

    record: InvoiceRecord
    baseline: BaselineSnapshot

    def draft(self) -> InvoiceDraft:
        """Start an edit from the stored invoice.

        The initial payment is prefilled with everything settled so far, which
        is how the store reads ``initialPayment`` on an update.
        """
        record = self.record
        return InvoiceDraft(
            client_id=record.client_id,
            lines=record.lines,
            status=record.status,
            discount=record.discount,
            vat_percentage=record.vat_percentage,
            initial_payment=record.amount_settled,
            payment_method=record.payment_method,
            deduct_from_stock=record.deduct_from_stock,
            invoice_id=record.invoice_id,
            invoice_date=record.created_at,
        )


def build_store(settings: StoreSettings) -> InvoiceStore:
    """Instantiate the store backend named in ``settings``.

    Raises:
        ValueError: If the backend is not supported.
        FileNotFoundError: If the workbook backend's file is missing.
    """
    if settings.backend == BACKEND_HTTP:
        return HttpInvoiceStore(settings.base_url, token=settings.token, timeout=settings.timeout)
    if settings.backend == BACKEND_WORKBOOK and settings.data_file is not None:
        return WorkbookInvoiceStore(settings.data_file)
    raise ValueError(f"Unsupported store backend: {settings.backend}")


def load_runtime_context(config_path: Optional[Path] = None) -> RuntimeContext:
    """Load configuration and connect the configured store.

    Args:
        config_path (Path | None): Optional override path for ``config.ini``.
            When omitted the configuration is searched for upward from the
            current working directory.

    Returns:
        RuntimeContext: Context with an empty stock cache.

    Raises:
        FileNotFoundError: If the configuration file or the workbook cannot
            be located.
        KeyError: When mandatory configuration options are missing.
    """
    settings = load_settings(config_path)
    store = build_store(settings.store)
    log.info("Loaded runtime context using the '%s' store", settings.store.backend)
    return RuntimeContext(settings=settings, store=store)


def _settle(outcome: Outcome, confirm: Optional[ConfirmCallback]) -> None:
    """Raise unless ``outcome`` ends approved after asking ``confirm``.

    Without a ``confirm`` callable every prompt counts as declined.
    """
    if isinstance(outcome, Blocked):
        raise outcome.reason
    if confirm is not None:
        outcome = resolve(outcome, confirm)
    if isinstance(outcome, NeedsConfirmation):
        kinds = [prompt.kind.value for prompt in outcome.prompts]
        log.info("Operation cancelled; unconfirmed prompts: %s", ", ".join(kinds))
        raise ConfirmationDeclined(kinds)


# ---------------------------------------------------------------------------
# Items and stock
# ---------------------------------------------------------------------------


def search_items(
    context: RuntimeContext,
    search: str = "",
    *,
    page: int = 0,
    page_size: int = DEFAULT_PAGE_SIZE,
) -> ItemPage:
    """Search items through the store and cache the stock figures returned."""
    result = context.store.fetch_items_by_query(search, page, page_size)
    context.stock.record_page(result)
    return result


def find_item(context: RuntimeContext, item_id: str) -> ItemRecord:
    """Look up one item by identifier.

    Raises:
        MissingReference: If the search returns no item with ``item_id``.
    """
    for item in search_items(context, item_id).items:
        if item.item_id == item_id:
            return item
    log.warning("Item '%s' not found", item_id)
    raise MissingReference(f"Item not found: {item_id}")


def adjust_stock(
    context: RuntimeContext,
    adjustment: StockAdjustment,
    confirm: Optional[ConfirmCallback] = None,
) -> ItemRecord:
    """Validate, confirm and apply a manual stock adjustment.

    Raises:
        MissingReference: If the item is unknown.
        InvalidAdjustment: If a blocking adjustment rule fails.
        ConfirmationDeclined: If the adjustment prompt is not confirmed.
        StoreError: If the store rejects the adjustment.
    """
    item = find_item(context, adjustment.item_id)
    outcome = evaluate_adjustment(item, adjustment, context.settings.policy)
    _settle(outcome, confirm)
    updated = context.store.adjust_stock(adjustment.item_id, build_adjustment_payload(adjustment))
    context.stock.record(updated)
    log.info(
        "Adjusted stock for item '%s' from %s to %s (%s)",
        adjustment.item_id,
        item.available,
        adjustment.new_quantity,
        adjustment.reason.value,
    )
    return updated


# ---------------------------------------------------------------------------
# Invoices
# ---------------------------------------------------------------------------


def open_invoice(context: RuntimeContext, invoice_id: str) -> OpenedInvoice:
    """Load an invoice for editing and capture its baseline once.

    The stock cache is warmed for the invoice's items so that the save guard
    can classify them. A failed warm-up leaves those items unverifiable.
    """
    record = context.store.get_invoice(invoice_id)
    baseline = BaselineSnapshot.capture(record)
    try:
        context.stock.warm(context.store, record.lines)
    except StoreError as exc:
        log.warning("Unable to load stock for invoice '%s': %s", invoice_id, exc)
    log.info("Opened invoice '%s' in status %s", invoice_id, record.status.value)
    return OpenedInvoice(record=record, baseline=baseline)


def evaluate_invoice(
    context: RuntimeContext,
    draft: InvoiceDraft,
    baseline: Optional[BaselineSnapshot] = None,
) -> Outcome:
    """Run the save guard for ``draft`` with the context's stock and policy.

    Items of the draft missing from the stock cache are looked up first when
    the draft deducts from stock. An existing invoice saved without a
    baseline is opened first so its edit rules still apply.
    """
    if not draft.is_new and baseline is None:
        baseline = open_invoice(context, draft.invoice_id).baseline
    if draft.deduct_from_stock:
        try:
            context.stock.warm(context.store, draft.lines)
        except StoreError as exc:
            log.warning("Unable to refresh stock before validation: %s", exc)
    return evaluate(draft, baseline, context.stock, context.settings.policy)


def save_invoice(
    context: RuntimeContext,
    draft: InvoiceDraft,
    baseline: Optional[BaselineSnapshot] = None,
    confirm: Optional[ConfirmCallback] = None,
) -> InvoiceRecord:
    """Validate, confirm and persist an invoice.

    Args:
        context (RuntimeContext): Runtime context with the store.
        draft (InvoiceDraft): Invoice to create (no id) or update.
        baseline (BaselineSnapshot | None): Baseline from
            :func:`open_invoice` when editing. Captured from the store when
            an existing invoice is saved without one.
        confirm (Callable | None): Receives every prompt at once and returns
            ``True`` to proceed. ``None`` declines all prompts.

    Returns:
        InvoiceRecord: The invoice as stored, with backend aggregates.

    Raises:
        BusinessRuleViolation: If a blocking rule fails.
        ConfirmationDeclined: If a prompt is not confirmed.
        StoreError: If the store rejects the persist call. The description
            is replaced by the message to show the user.
    """
    outcome = evaluate_invoice(context, draft, baseline)
    _settle(outcome, confirm)

    payload = build_invoice_payload(draft)
    try:
        record = context.store.persist_invoice(payload)
    except StoreError as exc:
        message = describe_store_error(exc, draft, context.stock)
        log.error("Saving invoice failed (%s): %s", exc.category.value, message)
        raise StoreError(exc.code, message, status=exc.status, category=exc.category) from exc

    context.stock.forget(line.item_id for line in draft.lines if line.item_id)
    log.info(
        "Saved invoice '%s' (status=%s, total=%s, remaining=%s)",
        record.invoice_id,
        record.status.value,
        record.total_amount,
        record.remaining_amount,
    )
    return record


# ---------------------------------------------------------------------------
# Settlements
# ---------------------------------------------------------------------------


def list_settleable_invoices(context: RuntimeContext) -> List[InvoiceRecord]:
    """Invoices that are neither paid nor deleted and still have a balance."""
    return [record for record in context.store.list_invoices() if is_settleable(record)]


def record_settlement(context: RuntimeContext, draft: SettlementDraft) -> SettlementRecord:
    """Validate a settlement against the current invoice balance and persist it.

    The invoice is reloaded first so that the check runs against the latest
    remaining balance the store reports.

    Raises:
        MissingReference: If the draft names no invoice.
        InconsistentBalance: If the store's balance figures disagree.
        SettlementError: If a settlement rule fails.
        StoreError: If the store rejects the settlement.
    """
    if not draft.invoice_id:
        raise MissingReference("Settlement has no invoice")
    record = context.store.get_invoice(draft.invoice_id)
    reconcile_balance(record)
    _settle(evaluate_settlement(draft, record), None)

    try:
        settlement = context.store.persist_settlement(build_settlement_payload(draft))
    except StoreError as exc:
        message = describe_settlement_error(exc)
        log.error("Recording settlement failed: %s", message)
        raise StoreError(exc.code, message, status=exc.status, category=exc.category) from exc

    log.info(
        "Recorded settlement '%s' of %s for invoice '%s'",
        settlement.settlement_id,
        settlement.amount,
        settlement.invoice_id,
    )
    return settlement


def delete_settlement(context: RuntimeContext, settlement_id: str, invoice_id: str) -> InvoiceRecord:
    """Delete a settlement and return the invoice with its recomputed balance."""
    try:
        context.store.delete_settlement(settlement_id)
    except StoreError as exc:
        description = (exc.description or "").strip() or "Failed to delete settlement"
        log.error("Deleting settlement '%s' failed: %s", settlement_id, description)
        raise
    record = context.store.get_invoice(invoice_id)
    log.info(
        "Deleted settlement '%s'; invoice '%s' remaining=%s",
        settlement_id,
        invoice_id,
        record.remaining_amount,
    )
    return record


__all__ = [
    "RuntimeContext",
    "OpenedInvoice",
    "build_store",
    "load_runtime_context",
    "search_items",
    "find_item",
    "adjust_stock",
    "open_invoice",
    "evaluate_invoice",
    "save_invoice",
    "list_settleable_invoices",
    "record_settlement",
    "delete_settlement",
]
