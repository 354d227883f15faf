"""Rules for manual stock adjustments.

An adjustment sets an item's quantity to a new absolute value for a stated
reason. The checks mirror the invoice save guard: blocking problems produce a
:class:`Blocked` outcome, and the single most severe advisory finding
produces one confirmation prompt.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Optional

from . import log
from .config import Policy
from .constants import CENT, ZERO, AdjustmentReason, PromptKind, StockStatus
from .errors import BusinessRuleViolation, InvalidAdjustment
from .line_items import adjustment_percent
from .models import ItemRecord
from .outcomes import Approved, Blocked, NeedsConfirmation, Outcome, Prompt


@dataclass(frozen=True)
class StockAdjustment:
    """Requested change of an item's on-hand quantity."""

    item_id: str
    new_quantity: Decimal
    reason: AdjustmentReason
    notes: Optional[str] = None
    unit_cost: Optional[Decimal] = None


def predict_status(new_quantity: Decimal, min_stock: Decimal) -> StockStatus:
    """Stock status the item will carry once ``new_quantity`` is on hand."""
    if new_quantity == ZERO:
        return StockStatus.OUT_OF_STOCK
    if new_quantity <= min_stock:
        return StockStatus.LOW_STOCK
    return StockStatus.IN_STOCK


def current_status(item: ItemRecord) -> StockStatus:
    """Status the store reported for ``item``; unknown values count as in stock."""
    try:
        return StockStatus(str(item.status).upper())
    except ValueError:
        return StockStatus.IN_STOCK


def _readable(status: StockStatus) -> str:
    return status.value.replace("_", " ")


def validate_adjustment(item: ItemRecord, adjustment: StockAdjustment) -> None:
    """Check the blocking rules of an adjustment.

    Raises:
        InvalidAdjustment: If the adjustment targets another item, the new
            quantity is negative or unchanged, or a purchase has no unit
            cost of at least one cent.
    """
    if adjustment.item_id != item.item_id:
        raise InvalidAdjustment(
            f"Adjustment for item '{adjustment.item_id}' applied to '{item.item_id}'"
        )
    if adjustment.new_quantity < ZERO:
        raise InvalidAdjustment("New quantity must be zero or positive")
    current = item.available or ZERO
    if adjustment.new_quantity == current:
        raise InvalidAdjustment("No quantity change detected")
    if adjustment.reason is AdjustmentReason.PURCHASE:
        if adjustment.unit_cost is None or adjustment.unit_cost < CENT:
            raise InvalidAdjustment("A purchase adjustment requires a unit cost of at least 0.01")


def adjustment_prompt(
    item: ItemRecord,
    adjustment: StockAdjustment,
    threshold: Decimal,
) -> Optional[Prompt]:
    """Build the one confirmation an adjustment needs, if any.

    Priority is out of stock, then low stock, then a change larger than
    ``threshold`` percent, then a plain status change.
    """
    current = item.available or ZERO
    new_quantity = adjustment.new_quantity
    predicted = predict_status(new_quantity, item.min_stock)
    before = current_status(item)
    status_changes = predicted is not before
    change = new_quantity - current
    percent = adjustment_percent(current, new_quantity)

    if predicted is StockStatus.OUT_OF_STOCK:
        return Prompt(
            kind=PromptKind.OUT_OF_STOCK,
            title="This adjustment will cause the item to be OUT OF STOCK. Are you sure you want to proceed?",
            details=(
                f"Current Stock: {current} units",
                f"After Adjustment: {new_quantity} units",
                f"Minimum Required: {item.min_stock} units",
            ),
        )
    if predicted is StockStatus.LOW_STOCK:
        return Prompt(
            kind=PromptKind.LOW_STOCK,
            title="This adjustment will cause LOW STOCK status. Proceed anyway?",
            details=(
                f"After Adjustment: {new_quantity} units",
                f"Minimum Required: {item.min_stock} units",
                f"Remaining Buffer: {new_quantity - item.min_stock} units",
            ),
        )
    if percent > threshold:
        details = [
            f"Current: {current} units",
            f"New: {new_quantity} units",
            f"Change: {'+' if change > ZERO else ''}{change} units",
        ]
        if status_changes:
            details.append(f"Status Change: {_readable(before)} -> {_readable(predicted)}")
        return Prompt(
            kind=PromptKind.LARGE_ADJUSTMENT,
            title=f"You are changing the quantity by {percent:.1f}%. Are you sure?",
            details=tuple(details),
        )
    if status_changes:
        return Prompt(
            kind=PromptKind.STATUS_CHANGE,
            title="Status change notice. Proceed with adjustment?",
            details=(f"Status will change: {_readable(before)} -> {_readable(predicted)}",),
        )
    return None


def evaluate_adjustment(
    item: ItemRecord,
    adjustment: StockAdjustment,
    policy: Policy = Policy(),
) -> Outcome:
    """Decide whether ``adjustment`` may be sent to the store.

    Args:
        item (ItemRecord): Item as last fetched, with its stock figures.
        adjustment (StockAdjustment): Requested change.
        policy (Policy): Supplies the large-adjustment threshold.

    Returns:
        Outcome: :class:`Blocked`, :class:`NeedsConfirmation` with exactly one
            prompt, or :class:`Approved`.
    """
    try:
        validate_adjustment(item, adjustment)
    except BusinessRuleViolation as exc:
        log.warning("Stock adjustment for %s rejected: %s", item.item_id, exc)
        return Blocked(reason=exc)

    prompt = adjustment_prompt(item, adjustment, policy.large_adjustment_percent)
    if prompt is not None:
        return NeedsConfirmation(prompts=(prompt,))
    return Approved()


def build_adjustment_payload(adjustment: StockAdjustment) -> Dict[str, Any]:
    """Request body for the store's adjust-stock call."""
    payload: Dict[str, Any] = {
        "newQuantity": adjustment.new_quantity,
        "reason": adjustment.reason.value,
        "notes": adjustment.notes or "",
    }
    if adjustment.unit_cost is not None:
        payload["unitCost"] = adjustment.unit_cost
    return payload


__all__ = [
    "StockAdjustment",
    "predict_status",
    "current_status",
    "validate_adjustment",
    "adjustment_prompt",
    "evaluate_adjustment",
    "build_adjustment_payload",
]
