"""Save guard: the rule sequence an invoice passes before it is persisted.

:func:`evaluate` is a pure function of the draft, the baseline captured at
load time, and the advisory stock snapshot. It never prompts the user and
never talks to the store; it returns an outcome telling the caller whether to
persist, to stop, or to ask for confirmation first.
"""

from __future__ import annotations

from decimal import Decimal
from typing import List, Optional, Sequence

from . import log
from .config import Policy
from .constants import PromptKind, StockLevel
from .errors import (
    BelowMinimumAmount,
    BusinessRuleViolation,
    IncompleteInvoice,
    InsufficientStock,
    QuantityIncreaseOnEdit,
)
from .line_items import (
    QuantityAdjustment,
    StockLookup,
    check_stock,
    detect_large_adjustments,
    detect_price_changes,
    detect_quantity_increases,
)
from .models import BaselineSnapshot, InvoiceDraft, PriceChange, StockCheck
from .outcomes import Approved, Blocked, NeedsConfirmation, Outcome, Prompt
from .status import validate_payment, validate_transition
from .totals import format_money, totals_for_draft


DEFAULT_POLICY = Policy()


def require_complete(draft: InvoiceDraft) -> None:
    """Ensure the client, at least one line, and every line's item are set.

    Raises:
        IncompleteInvoice: Listing every missing field.
    """
    missing: List[str] = []
    if not draft.client_id:
        missing.append("client")
    if not draft.lines:
        missing.append("line items")
    for index, line in enumerate(draft.lines, start=1):
        if not line.item_id:
            missing.append(f"item on line {index}")
    if missing:
        log.warning("Invoice draft incomplete: %s", ", ".join(missing))
        raise IncompleteInvoice(missing)


def require_minimum_amount(total_after_discount: Decimal, minimum: Decimal) -> None:
    """Reject totals below ``minimum``; a total equal to it is accepted."""
    if total_after_discount < minimum:
        log.warning("Invoice total %s below minimum %s", total_after_discount, minimum)
        raise BelowMinimumAmount(total_after_discount, minimum)


def price_change_prompt(changes: Sequence[PriceChange]) -> Prompt:
    return Prompt(
        kind=PromptKind.PRICE_CHANGE,
        title="Price changed. Price changes may affect agreements with the client. Do you want to proceed?",
        details=tuple(
            f"{change.item_label}: {format_money(change.original_price)} -> {format_money(change.new_price)}"
            for change in changes
        ),
    )


def stock_prompts(checks: Sequence[StockCheck]) -> List[Prompt]:
    """Turn non-blocking stock findings into prompts, most severe first."""
    out_of_stock = [check for check in checks if check.level is StockLevel.WILL_GO_OUT_OF_STOCK]
    low = [check for check in checks if check.level is StockLevel.WILL_GO_LOW]
    unverifiable = [check for check in checks if check.level is StockLevel.UNVERIFIABLE]

    prompts: List[Prompt] = []
    if out_of_stock:
        prompts.append(
            Prompt(
                kind=PromptKind.OUT_OF_STOCK,
                title="This invoice will put items out of stock. Do you want to proceed?",
                details=tuple(
                    f"{check.line.label}: Will be OUT OF STOCK (0 remaining)" for check in out_of_stock
                ),
            )
        )
    if low:
        prompts.append(
            Prompt(
                kind=PromptKind.LOW_STOCK,
                title="This invoice will leave items low on stock. Do you want to proceed?",
                details=tuple(
                    f"{check.line.label}: Will be LOW STOCK "
                    f"({check.remaining_after} remaining, min: {check.min_stock})"
                    for check in low
                ),
            )
        )
    if unverifiable:
        prompts.append(
            Prompt(
                kind=PromptKind.UNVERIFIABLE_STOCK,
                title="Stock cannot be verified for some items. Do you want to proceed?",
                details=tuple(
                    f"{check.line.label}: Unable to verify stock (item not in cache). "
                    "Please ensure sufficient stock."
                    for check in unverifiable
                ),
            )
        )
    return prompts


def large_adjustment_prompt(adjustments: Sequence[QuantityAdjustment]) -> Prompt:
    return Prompt(
        kind=PromptKind.LARGE_ADJUSTMENT,
        title="Large quantity adjustment. Are you sure?",
        details=tuple(
            f"{entry.item_label}: {entry.original} -> {entry.requested} units ({entry.percent:.1f}%)"
            for entry in adjustments
        ),
    )


def status_change_prompt(baseline: BaselineSnapshot, draft: InvoiceDraft) -> Prompt:
    return Prompt(
        kind=PromptKind.STATUS_CHANGE,
        title="Status change notice. Proceed with the change?",
        details=(f"Status will change: {baseline.status.value} -> {draft.status.value}",),
    )


def _run_rules(
    draft: InvoiceDraft,
    baseline: Optional[BaselineSnapshot],
    stock: Optional[StockLookup],
    policy: Policy,
) -> List[Prompt]:
    """Run every rule in order and return the prompts that need an answer.

    Blocking failures propagate as :class:`BusinessRuleViolation` and stop
    the sequence at the first failing step.
    """
    # 1. required fields
    require_complete(draft)

    # 2. status legality and payment cross-check; totals are final here
    totals = totals_for_draft(draft)
    validate_transition(baseline.status if baseline is not None else None, draft.status)
    validate_payment(draft.status, draft.initial_payment, totals.total_after_discount)

    # 3. price changes need confirmation but do not block
    price_changes = detect_price_changes(draft.lines, baseline)

    # 4. quantities may only shrink on edit
    increases = detect_quantity_increases(draft.lines, baseline)
    if increases:
        log.warning("Quantity increase on edit rejected for %d line(s)", len(increases))
        raise QuantityIncreaseOnEdit(increases)

    # 5. minimum invoice amount
    require_minimum_amount(totals.total_after_discount, policy.minimum_invoice_amount)

    # 6. stock, only when the invoice deducts from stock
    checks: List[StockCheck] = []
    if draft.deduct_from_stock:
        checks = check_stock(draft.lines, stock)
        insufficient = [check for check in checks if check.level is StockLevel.INSUFFICIENT]
        if insufficient:
            log.warning("Insufficient stock for %d line(s)", len(insufficient))
            raise InsufficientStock(insufficient)

    prompts: List[Prompt] = []
    if price_changes:
        prompts.append(price_change_prompt(price_changes))
    prompts.extend(stock_prompts(checks))
    if baseline is not None:
        adjustments = detect_large_adjustments(
            draft.lines, baseline, policy.large_adjustment_percent
        )
        if adjustments:
            prompts.append(large_adjustment_prompt(adjustments))
        if draft.status is not baseline.status:
            prompts.append(status_change_prompt(baseline, draft))
    return prompts


def evaluate(
    draft: InvoiceDraft,
    baseline: Optional[BaselineSnapshot] = None,
    stock: Optional[StockLookup] = None,
    policy: Policy = DEFAULT_POLICY,
) -> Outcome:
    """Decide whether ``draft`` may be persisted.

    Steps run in a fixed order and the first blocking failure wins:

    1. required fields (client, lines, item on every line);
    2. status transition legality and the payment cross-check;
    3. price changes against the baseline (confirmation);
    4. quantity increases against the baseline (blocking);
    5. minimum invoice amount;
    6. stock levels when the draft deducts from stock (insufficient stock
       blocks, low/out-of-stock and unverifiable lines need confirmation).

    Prompts are ordered price change, out of stock, low stock, unverifiable
    stock, large adjustment, then the status-change notice.

    Args:
        draft (InvoiceDraft): Invoice as edited. Never modified.
        baseline (BaselineSnapshot | None): Capture taken when an existing
            invoice was opened. Required for existing invoices and ignored
            for new drafts.
        stock (Mapping[str, StockEntry] | None): Advisory stock snapshot.
        policy (Policy): Thresholds to enforce.

    Returns:
        Outcome: :class:`Blocked` with the violation, :class:`NeedsConfirmation`
            with the prompts to present, or :class:`Approved`.

    Raises:
        ValueError: If an existing invoice has no ``baseline`` or the
            baseline was captured for a different invoice.
    """
    if draft.is_new:
        baseline = None
    elif baseline is None:
        raise ValueError(f"Invoice '{draft.invoice_id}' must be opened before it can be validated")
    elif baseline.invoice_id != draft.invoice_id:
        raise ValueError(
            f"Baseline for invoice '{baseline.invoice_id}' cannot validate '{draft.invoice_id}'"
        )

    try:
        prompts = _run_rules(draft, baseline, stock, policy)
    except BusinessRuleViolation as exc:
        log.info("Invoice save blocked: %s", type(exc).__name__)
        return Blocked(reason=exc)

    if prompts:
        log.info(
            "Invoice save needs confirmation: %s",
            ", ".join(prompt.kind.value for prompt in prompts),
        )
        return NeedsConfirmation(prompts=tuple(prompts))
    return Approved()


__all__ = [
    "DEFAULT_POLICY",
    "require_complete",
    "require_minimum_amount",
    "price_change_prompt",
    "stock_prompts",
    "large_adjustment_prompt",
    "status_change_prompt",
    "evaluate",
]
